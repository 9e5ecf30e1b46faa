"""
=============================================================================
LEADERBOARD.PY — Rankings Diarios por Sala
=============================================================================
Cada día se guarda una "foto fija" del ranking de cada sala.

Para cada equipo:
  total_points       → suma de TODOS sus puntos hasta la fecha (incluida)
  points_last7_days  → suma desde fecha - 6 días
  last_score_date    → último día con cualquier fila de puntos (aunque sea 0)
  member_count       → miembros ACTUALES (no los que había en esa fecha)

Orden: total ↓, últimos 7 días ↓, nombre del equipo ↑.

Fecha por defecto: "ayer en UTC+8", igual para todo el mundo
(no depende de la zona de cada usuario).
"""

import logging
from datetime import date, datetime, timedelta
from typing import Optional

from sqlalchemy.orm import Session

from checkins import assert_room_member
from config import REFERENCE_TIMEZONE, LEADERBOARD_WINDOW_DAYS
from database import upsert
from errors import SnapshotNotFoundError
from models import LeaderboardSnapshot, Room, Team, TeamScore, User, utcnow
from stats import count_team_members, ranking_key
from utils import local_today, parse_date

logger = logging.getLogger("fitrooms.leaderboard")

DEFAULTED_NOTE = "Sin fecha: se muestra el ranking del día anterior en UTC+8"


def default_snapshot_date(now: Optional[datetime] = None,
                          reference_tz: str = REFERENCE_TIMEZONE) -> date:
    """Ayer, en la zona de referencia"""
    return local_today(reference_tz, now) - timedelta(days=1)


def build_ranking(teams, member_counts: dict, scores, snapshot_date: date) -> list[dict]:
    """
    Ranking de una sala a una fecha. Las fechas salen como texto ISO
    porque el ranking se guarda en una columna JSON.
    """
    window_start = snapshot_date - timedelta(days=LEADERBOARD_WINDOW_DAYS - 1)
    totals, last7, last_dates = {}, {}, {}

    for score in scores:
        if score.score_date > snapshot_date:
            continue
        totals[score.team_id] = totals.get(score.team_id, 0) + score.points
        if score.score_date >= window_start:
            last7[score.team_id] = last7.get(score.team_id, 0) + score.points
        if score.team_id not in last_dates or score.score_date > last_dates[score.team_id]:
            last_dates[score.team_id] = score.score_date

    ranking = []
    for team in teams:
        last_date = last_dates.get(team.id)
        ranking.append({
            "team_id": team.id,
            "team_name": team.name,
            "member_count": member_counts.get(team.id, 0),
            "total_points": totals.get(team.id, 0),
            "points_last7_days": last7.get(team.id, 0),
            "last_score_date": last_date.isoformat() if last_date else None,
        })

    ranking.sort(key=ranking_key)
    return ranking


def build_snapshot(db: Session, room_id: int, snapshot_date: date,
                   dry_run: bool = False) -> Optional[list[dict]]:
    """
    Calcula (y si no es dry run, guarda) el ranking de una sala.
    Sala sin equipos → None, no se guarda nada.
    """
    teams = db.query(Team).filter(Team.room_id == room_id).order_by(Team.created_at, Team.id).all()
    if not teams:
        return None

    scores = db.query(TeamScore).filter(
        TeamScore.room_id == room_id,
        TeamScore.score_date <= snapshot_date
    ).order_by(TeamScore.score_date).all()

    ranking = build_ranking(
        teams,
        count_team_members(db, [team.id for team in teams]),
        scores,
        snapshot_date,
    )

    if not dry_run:
        upsert(db, LeaderboardSnapshot,
               {"room_id": room_id, "snapshot_date": snapshot_date, "ranking": ranking, "created_at": utcnow()},
               keys=("room_id", "snapshot_date"),
               update=("ranking", "created_at"))
        db.commit()

    return ranking


def build_all_snapshots(db: Session, snapshot_date=None, dry_run: bool = False,
                        now: Optional[datetime] = None,
                        reference_tz: str = REFERENCE_TIMEZONE) -> dict:
    """
    Recorre todas las salas (por orden de creación). Cada sala se guarda
    por separado: si una falla, se cuenta y se sigue.
    """
    snapshot_date = parse_date(snapshot_date, "date") or default_snapshot_date(now, reference_tz)

    result = {
        "dry_run": dry_run,
        "snapshot_date": snapshot_date,
        "rooms_processed": 0,
        "upserted": 0,
        "failures": 0,
        "rooms": [],
    }

    rooms = db.query(Room).order_by(Room.created_at, Room.id).all()
    for room in rooms:
        try:
            ranking = build_snapshot(db, room.id, snapshot_date, dry_run=dry_run)
            if ranking is None:
                continue
            result["rooms_processed"] += 1
            result["rooms"].append({"room_id": room.id, "ranking": ranking})
            if not dry_run:
                result["upserted"] += 1
        except Exception as e:
            db.rollback()
            result["failures"] += 1
            logger.error(f"❌ Error en el ranking de la sala {room.id}: {e}")

    logger.info(
        f"🏆 Rankings {snapshot_date} {'(dry run) ' if dry_run else ''}"
        f"salas={result['rooms_processed']} guardadas={result['upserted']} fallos={result['failures']}"
    )
    return result


def get_leaderboard(db: Session, user: User, room_id: int, snapshot_date=None,
                    now: Optional[datetime] = None,
                    reference_tz: str = REFERENCE_TIMEZONE) -> dict:
    """
    Ranking guardado de una sala. Solo para miembros.
    meta.defaulted_date indica si la fecha vino del usuario o es la de por defecto.
    """
    explicit = parse_date(snapshot_date, "date")
    assert_room_member(db, user.id, room_id)

    used_date = explicit or default_snapshot_date(now, reference_tz)
    snapshot = db.query(LeaderboardSnapshot).filter(
        LeaderboardSnapshot.room_id == room_id,
        LeaderboardSnapshot.snapshot_date == used_date
    ).first()
    if snapshot is None:
        raise SnapshotNotFoundError(f"No hay ranking guardado para {used_date.isoformat()}")

    return {
        "room_id": snapshot.room_id,
        "snapshot_date": snapshot.snapshot_date,
        "ranking": snapshot.ranking,
        "created_at": snapshot.created_at,
        "meta": {
            "used_date": used_date,
            "defaulted_date": explicit is None,
            "note": DEFAULTED_NOTE if explicit is None else None,
        },
    }
