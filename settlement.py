"""
=============================================================================
SETTLEMENT.PY — Liquidación Diaria
=============================================================================
Convierte los check-ins en estadísticas diarias: una fila por
(usuario, sala, día) con did_checkin = True/False.

¿Cuándo se liquida a un usuario?
  - Sin fecha explícita: solo cuando SU reloj local ha llegado a las 23:59.
    Antes de eso el día no ha terminado y no se le puede marcar un fallo.
    Por eso el job puede ejecutarse cada cuarto de hora para todas las
    zonas: los que aún no han llegado se recogen en una pasada posterior.
  - Con fecha explícita (re-liquidar o corregir un día): se procesa a
    todos, sin comprobar la hora.

Volver a liquidar el mismo día sobrescribe did_checkin (upsert), así que
el job es idempotente. Cada usuario se guarda en su propia transacción:
si uno falla, se cuenta y se sigue con el siguiente.
"""

import logging
from datetime import date, datetime, time, timezone
from typing import Optional

from sqlalchemy.orm import Session

from checkins import checkin_rooms
from config import REFERENCE_TIMEZONE, SETTLEMENT_HOUR, SETTLEMENT_MINUTE
from database import upsert
from models import DailyStat, RoomMember, User
from utils import as_aware, local_now, parse_date, validate_timezone

logger = logging.getLogger("fitrooms.settlement")


def window_open(local: datetime) -> bool:
    return (local.hour, local.minute) >= (SETTLEMENT_HOUR, SETTLEMENT_MINUTE)


def window_reached(tz_name: Optional[str], now: Optional[datetime] = None) -> bool:
    """¿Ha llegado el reloj local del usuario a las 23:59?"""
    return window_open(local_now(tz_name, now))


def settlement_clock(explicit_date: date) -> datetime:
    """Con fecha explícita, el reloj se fija a las 23:59 UTC de ese día"""
    return datetime.combine(explicit_date, time(SETTLEMENT_HOUR, SETTLEMENT_MINUTE), tzinfo=timezone.utc)


def pending_stats(db: Session, user: User, stat_date: date) -> list[dict]:
    """Filas que le tocan al usuario para ese día, una por sala"""
    room_ids = [row.room_id for row in db.query(RoomMember.room_id).filter(
        RoomMember.user_id == user.id
    ).order_by(RoomMember.room_id).all()]
    if not room_ids:
        return []

    checked = checkin_rooms(db, user.id, stat_date)
    return [
        {
            "user_id": user.id,
            "room_id": room_id,
            "stat_date": stat_date,
            "did_checkin": room_id in checked,
        }
        for room_id in room_ids
    ]


def settle_daily_stats(db: Session, for_date=None, tz: Optional[str] = None,
                       dry_run: bool = False, now: Optional[datetime] = None) -> dict:
    """
    Ejecuta la liquidación.

    Parámetros:
      for_date → día a liquidar (YYYY-MM-DD). Sin él, "hoy" de cada usuario.
      tz      → fuerza una zona horaria para todos los usuarios.
      dry_run → calcula pero no guarda nada.
      now     → instante de referencia (por defecto, ahora). Se fija una
                sola vez: todos los usuarios se liquidan con el mismo reloj.
    """
    explicit = parse_date(for_date, "date")
    if tz:
        validate_timezone(tz)
    clock = settlement_clock(explicit) if explicit else as_aware(now)

    result = {
        "dry_run": dry_run,
        "stat_date": explicit,
        "processed_users": 0,
        "skipped_users": 0,
        "failures": 0,
        "count": 0,
        "stats": [],
    }

    users = db.query(User).order_by(User.id).all()
    for user in users:
        user_tz = tz or user.timezone or REFERENCE_TIMEZONE
        try:
            local = local_now(user_tz, clock)
            if explicit is None and not window_open(local):
                result["skipped_users"] += 1
                continue

            stat_date = explicit or local.date()
            rows = pending_stats(db, user, stat_date)

            if rows and not dry_run:
                for row in rows:
                    upsert(db, DailyStat, row,
                           keys=("user_id", "room_id", "stat_date"),
                           update=("did_checkin",))
                db.commit()

            result["processed_users"] += 1
            result["stats"].extend(rows)

        except Exception as e:
            db.rollback()
            result["failures"] += 1
            logger.error(f"❌ Error liquidando al usuario {user.id}: {e}")

    result["count"] = len(result["stats"])
    logger.info(
        f"📊 Liquidación {'(dry run) ' if dry_run else ''}"
        f"procesados={result['processed_users']} saltados={result['skipped_users']} "
        f"filas={result['count']} fallos={result['failures']}"
    )
    return result
