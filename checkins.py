"""
=============================================================================
CHECKINS.PY — Check-ins y Pertenencia a Salas
=============================================================================
El registro, las invitaciones y la subida de fotos viven en otras partes
del sistema. Aquí solo está lo que necesita el núcleo:

  ¿Es miembro de la sala?      → is_room_member / assert_room_member
  ¿Quién está en la sala?      → room_members / team_members
  ¿Hizo check-in ese día?      → has_checkin (lo usa la liquidación diaria)
  Registrar un check-in        → record_checkin (duplicado → ConflictError)
"""

import logging
from datetime import date, datetime
from typing import Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from errors import ConflictError, NotRoomMemberError, RoomNotFoundError, UpstreamError
from models import Checkin, Room, RoomMember, Team, TeamMember, User, utcnow
from utils import local_today, parse_date

logger = logging.getLogger("fitrooms.checkins")

CHECKIN_LIST_DEFAULT = 7
CHECKIN_LIST_MAX = 30


# ─────────────────────────────────────────────────────────────────────────────
# PERTENENCIA
# ─────────────────────────────────────────────────────────────────────────────

def get_room(db: Session, room_id: int) -> Room:
    room = db.query(Room).filter(Room.id == room_id).first()
    if room is None:
        raise RoomNotFoundError()
    return room


def is_room_member(db: Session, user_id: int, room_id: int) -> bool:
    return db.query(RoomMember.id).filter(
        RoomMember.room_id == room_id,
        RoomMember.user_id == user_id
    ).first() is not None


def assert_room_member(db: Session, user_id: int, room_id: int) -> Room:
    """La sala si existe y el usuario es miembro; si no, el error que toque"""
    room = get_room(db, room_id)
    if not is_room_member(db, user_id, room_id):
        raise NotRoomMemberError()
    return room


def room_members(db: Session, room_id: int) -> list[int]:
    rows = db.query(RoomMember.user_id).filter(
        RoomMember.room_id == room_id
    ).order_by(RoomMember.joined_at, RoomMember.id).all()
    return [row.user_id for row in rows]


def team_members(db: Session, team_id: int) -> list[int]:
    rows = db.query(TeamMember.user_id).filter(
        TeamMember.team_id == team_id
    ).order_by(TeamMember.joined_at, TeamMember.id).all()
    return [row.user_id for row in rows]


def user_team_in_room(db: Session, user_id: int, room_id: int) -> Optional[Team]:
    """Equipo del usuario dentro de la sala (como mucho uno)"""
    return db.query(Team).join(TeamMember, TeamMember.team_id == Team.id).filter(
        Team.room_id == room_id,
        TeamMember.user_id == user_id
    ).first()


# ─────────────────────────────────────────────────────────────────────────────
# CHECK-INS
# ─────────────────────────────────────────────────────────────────────────────

def has_checkin(db: Session, user_id: int, room_id: int, day: date) -> bool:
    return db.query(Checkin.id).filter(
        Checkin.user_id == user_id,
        Checkin.room_id == room_id,
        Checkin.for_date == day
    ).first() is not None


def checkin_rooms(db: Session, user_id: int, day: date) -> set[int]:
    """Salas en las que el usuario hizo check-in ese día"""
    rows = db.query(Checkin.room_id).filter(
        Checkin.user_id == user_id,
        Checkin.for_date == day
    ).all()
    return {row.room_id for row in rows}


def record_checkin(db: Session, user: User, room_id: int, for_date=None,
                   photo_url: Optional[str] = None, taken_at: Optional[datetime] = None,
                   now: Optional[datetime] = None) -> Checkin:
    """
    Guarda el check-in del día. Sin for_date → "hoy" en la zona del usuario.
    Un segundo check-in para el mismo (usuario, sala, día) → ConflictError.
    """
    day = parse_date(for_date, "for_date") or local_today(user.timezone, now)
    assert_room_member(db, user.id, room_id)

    checkin = Checkin(
        room_id=room_id,
        user_id=user.id,
        for_date=day,
        photo_url=photo_url,
        taken_at=taken_at or utcnow(),
    )
    try:
        db.add(checkin)
        db.commit()
    except IntegrityError:
        db.rollback()
        logger.info(f"Check-in duplicado: user {user.id}, sala {room_id}, {day}")
        raise ConflictError("Ya hay un check-in para ese día")
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"❌ Error guardando check-in de user {user.id}: {e}")
        raise UpstreamError()
    db.refresh(checkin)

    logger.info(f"📸 Check-in: {user.username} en sala {room_id} ({day})")
    return checkin


def list_checkins(db: Session, user: User, room_id: int, limit: Optional[int] = None) -> list[Checkin]:
    """Últimos check-ins del usuario en la sala (entre 1 y 30, 7 por defecto)"""
    assert_room_member(db, user.id, room_id)
    limit = CHECKIN_LIST_DEFAULT if limit is None else min(max(int(limit), 1), CHECKIN_LIST_MAX)
    return db.query(Checkin).filter(
        Checkin.room_id == room_id,
        Checkin.user_id == user.id
    ).order_by(Checkin.for_date.desc()).limit(limit).all()
