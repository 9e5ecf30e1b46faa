"""
=============================================================================
STATS.PY — Rachas, Puntos y Estadísticas de Sala
=============================================================================
Gestiona:
  - Estadísticas personales (días cumplidos, tasas, rachas, historial)
  - Desglose de puntos del equipo por motivo
  - Racha actual y más larga del equipo
  - Marcador en vivo de la sala
  - Recalcular las rachas de un equipo desde las estadísticas diarias

Regla de racha (personal y de equipo):
  Un día continúa la racha solo si el día ANTERIOR de la secuencia también
  se cumplió Y está exactamente a 1 día de distancia. Un hueco (un día
  sin fila) corta la racha aunque los dos días de los lados se cumplieran.
"""

import logging
from datetime import date, datetime, timedelta
from typing import Optional

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from checkins import assert_room_member, team_members, user_team_in_room
from config import (
    PERSONAL_HISTORY_LIMIT, RECENT_WINDOW, REFERENCE_TIMEZONE,
    TEAM_HISTORY_LIMIT, LEADERBOARD_WINDOW_DAYS
)
from errors import TeamNotFoundError, UpstreamError
from models import DailyStat, Team, TeamMember, TeamScore, TeamStreak, User
from utils import local_today, sort_key

logger = logging.getLogger("fitrooms.stats")


# =============================================================================
# ===================== RACHAS ================================================
# =============================================================================

def streak_runs(days: list[tuple]) -> list[dict]:
    """
    Rachas de una secuencia [(fecha, cumplido), ...] ordenada por fecha.
    Devuelve [{"start_date", "end_date", "length"}, ...] en orden.
    """
    runs = []
    previous = None
    for day, done in days:
        if done:
            if previous and previous[1] and (day - previous[0]).days == 1:
                runs[-1]["end_date"] = day
                runs[-1]["length"] += 1
            else:
                runs.append({"start_date": day, "end_date": day, "length": 1})
        previous = (day, done)
    return runs


def build_personal_stats(entries) -> dict:
    """
    Resumen personal a partir de las filas de DailyStat (orden ascendente).

    recent_completion_rate usa las últimas 7 FILAS, no los últimos 7 días
    del calendario.
    """
    if not entries:
        return {
            "total_days": 0,
            "completed_days": 0,
            "missed_days": 0,
            "completion_rate": 0,
            "recent_completion_rate": 0,
            "current_streak": 0,
            "longest_streak": 0,
            "last_checkin_date": None,
            "first_tracked_date": None,
            "history": [],
        }

    days = [(entry.stat_date, bool(entry.did_checkin)) for entry in entries]
    runs = streak_runs(days)

    total = len(days)
    completed = sum(1 for _, done in days if done)
    last_day, last_done = days[-1]
    current = runs[-1]["length"] if last_done and runs and runs[-1]["end_date"] == last_day else 0

    checked_days = [day for day, done in days if done]
    recent = days[-RECENT_WINDOW:]

    return {
        "total_days": total,
        "completed_days": completed,
        "missed_days": total - completed,
        "completion_rate": completed / total,
        "recent_completion_rate": sum(1 for _, done in recent if done) / len(recent),
        "current_streak": current,
        "longest_streak": max((run["length"] for run in runs), default=0),
        "last_checkin_date": checked_days[-1] if checked_days else None,
        "first_tracked_date": days[0][0],
        "history": [
            {"date": day, "did_checkin": done}
            for day, done in days[-PERSONAL_HISTORY_LIMIT:]
        ],
    }


def pick_current_streak(streaks) -> Optional[TeamStreak]:
    """
    La racha con el end_date más reciente (en empate, la primera que aparece).
    No comprueba que llegue hasta hoy: una racha antigua sigue siendo la
    "actual" mientras no se guarde otra más nueva.
    """
    current = None
    for streak in streaks:
        if current is None or streak.end_date > current.end_date:
            current = streak
    return current


def pick_longest_streak(streaks) -> Optional[TeamStreak]:
    """La racha más larga; en empate, la que termina más tarde"""
    longest = None
    for streak in streaks:
        if longest is None or streak.length > longest.length or (
            streak.length == longest.length and streak.end_date > longest.end_date
        ):
            longest = streak
    return longest


def streak_summary(streak: Optional[TeamStreak]) -> Optional[dict]:
    if streak is None:
        return None
    return {"length": streak.length, "start_date": streak.start_date, "end_date": streak.end_date}


# =============================================================================
# ===================== PUNTOS DEL EQUIPO =====================================
# =============================================================================

def build_team_reason_breakdown(scores) -> list[dict]:
    """
    Puntos agrupados por motivo.
    Orden: más puntos → más veces → motivo alfabético.
    """
    buckets = {}
    for score in scores:
        bucket = buckets.setdefault(score.reason, {"reason": score.reason, "total_points": 0, "occurrences": 0})
        bucket["total_points"] += score.points
        bucket["occurrences"] += 1

    return sorted(
        buckets.values(),
        key=lambda b: (-b["total_points"], -b["occurrences"], sort_key(b["reason"])),
    )


def build_team_history(scores, limit: int = TEAM_HISTORY_LIMIT) -> list[dict]:
    """Últimos eventos de puntos (score_date descendente)"""
    ordered = sorted(scores, key=lambda s: s.score_date, reverse=True)
    return [
        {"date": score.score_date, "points": score.points, "reason": score.reason}
        for score in ordered[:limit]
    ]


def ranking_key(entry: dict) -> tuple:
    """Orden del ranking: total ↓, últimos 7 días ↓, nombre ↑"""
    return (-entry["total_points"], -entry["points_last7_days"], sort_key(entry["team_name"]))


def build_scoreboard(teams, member_counts: dict, scores, today: date,
                     user_team_id: Optional[int] = None) -> list[dict]:
    """
    Marcador en vivo de la sala. "Últimos 7 días" cuenta desde today - 6.
    member_counts → {team_id: número de miembros}
    """
    threshold = today - timedelta(days=LEADERBOARD_WINDOW_DAYS - 1)
    board = {
        team.id: {
            "team_id": team.id,
            "team_name": team.name,
            "total_points": 0,
            "points_last7_days": 0,
            "last_score_date": None,
            "member_count": member_counts.get(team.id, 0),
            "is_user_team": team.id == user_team_id,
        }
        for team in teams
    }

    for score in scores:
        entry = board.get(score.team_id)
        if entry is None:
            continue
        entry["total_points"] += score.points
        if entry["last_score_date"] is None or score.score_date > entry["last_score_date"]:
            entry["last_score_date"] = score.score_date
        if score.score_date >= threshold:
            entry["points_last7_days"] += score.points

    return sorted(board.values(), key=ranking_key)


def count_team_members(db: Session, team_ids: list[int]) -> dict:
    if not team_ids:
        return {}
    rows = db.query(TeamMember.team_id, func.count(TeamMember.id)).filter(
        TeamMember.team_id.in_(team_ids)
    ).group_by(TeamMember.team_id).all()
    return {team_id: count for team_id, count in rows}


# =============================================================================
# ===================== ESTADÍSTICAS DE SALA ==================================
# =============================================================================

def build_team_stats(db: Session, team: Team, scoreboard: list[dict]) -> dict:
    members = db.query(TeamMember).filter(
        TeamMember.team_id == team.id
    ).order_by(TeamMember.joined_at, TeamMember.id).all()
    scores = db.query(TeamScore).filter(
        TeamScore.team_id == team.id
    ).order_by(TeamScore.score_date).all()
    streaks = db.query(TeamStreak).filter(
        TeamStreak.team_id == team.id
    ).order_by(TeamStreak.start_date).all()

    entry = next((e for e in scoreboard if e["team_id"] == team.id), None)

    return {
        "team_id": team.id,
        "team_name": team.name,
        "members": [
            {
                "user_id": m.user_id,
                "username": m.user.username if m.user else "",
                "display_name": m.user.display_name if m.user else None,
                "joined_at": m.joined_at,
            }
            for m in members
        ],
        "total_points": sum(score.points for score in scores),
        "points_last7_days": entry["points_last7_days"] if entry else 0,
        "reason_breakdown": build_team_reason_breakdown(scores),
        "current_streak": streak_summary(pick_current_streak(streaks)),
        "longest_streak": streak_summary(pick_longest_streak(streaks)),
        "history": build_team_history(scores),
    }


def get_room_stats(db: Session, user: User, room_id: int, now: Optional[datetime] = None) -> dict:
    """
    Todo lo que ve un miembro en la pantalla de estadísticas de la sala:
    sus números personales, los de su equipo (si tiene) y el marcador.
    """
    room = assert_room_member(db, user.id, room_id)

    entries = db.query(DailyStat).filter(
        DailyStat.room_id == room_id,
        DailyStat.user_id == user.id
    ).order_by(DailyStat.stat_date).all()

    teams = db.query(Team).filter(Team.room_id == room_id).order_by(Team.created_at, Team.id).all()
    room_scores = db.query(TeamScore).filter(
        TeamScore.room_id == room_id
    ).order_by(TeamScore.score_date).all()

    user_team = user_team_in_room(db, user.id, room_id)
    scoreboard = build_scoreboard(
        teams,
        count_team_members(db, [team.id for team in teams]),
        room_scores,
        today=local_today(REFERENCE_TIMEZONE, now),
        user_team_id=user_team.id if user_team else None,
    )

    return {
        "room": {"id": room.id, "name": room.name, "code": room.code},
        "personal": build_personal_stats(entries),
        "team": build_team_stats(db, user_team, scoreboard) if user_team else None,
        "scoreboard": scoreboard,
    }


# =============================================================================
# ===================== RECALCULAR RACHAS DE EQUIPO ===========================
# =============================================================================

def team_days(db: Session, team: Team) -> list[tuple]:
    """
    [(fecha, cumplido)] del equipo. Un día cuenta como cumplido cuando
    TODOS los miembros actuales tienen su fila liquidada con check-in en
    la sala del equipo.
    """
    members = team_members(db, team.id)
    if not members:
        return []

    rows = db.query(DailyStat).filter(
        DailyStat.room_id == team.room_id,
        DailyStat.user_id.in_(members)
    ).all()

    by_day = {}
    for row in rows:
        by_day.setdefault(row.stat_date, {})[row.user_id] = bool(row.did_checkin)

    return [
        (day, all(by_day[day].get(member_id, False) for member_id in members))
        for day in sorted(by_day)
    ]


def rebuild_team_streaks(db: Session, team_id: int) -> list[dict]:
    """Sustituye las rachas guardadas del equipo por las recalculadas"""
    team = db.query(Team).filter(Team.id == team_id).first()
    if team is None:
        raise TeamNotFoundError()

    runs = streak_runs(team_days(db, team))
    try:
        db.query(TeamStreak).filter(TeamStreak.team_id == team.id).delete(synchronize_session=False)
        db.add_all([TeamStreak(team_id=team.id, **run) for run in runs])
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"❌ Error guardando rachas del equipo {team_id}: {e}")
        raise UpstreamError()

    logger.info(f"🔥 Rachas recalculadas: equipo {team.name} ({len(runs)} rachas)")
    return runs


def rebuild_all_team_streaks(db: Session) -> dict:
    """Recalcula todos los equipos; un fallo no para a los demás"""
    result = {"teams_processed": 0, "failures": 0}
    for (team_id,) in db.query(Team.id).order_by(Team.id).all():
        try:
            rebuild_team_streaks(db, team_id)
            result["teams_processed"] += 1
        except Exception as e:
            db.rollback()
            result["failures"] += 1
            logger.error(f"❌ Error en rachas del equipo {team_id}: {e}")
    logger.info(f"🔥 Rachas: {result['teams_processed']} equipos, {result['failures']} fallos")
    return result
