"""
=============================================================================
MODELS.PY — Todos los Modelos (Tablas) de la Base de Datos
=============================================================================
Cada clase aquí = una tabla en la base de datos.
Cada atributo de la clase = una columna en esa tabla.

RELACIONES:
  USER
  ├── room_members[] ──→ ROOM ──→ teams[] ──→ team_members[]
  ├── checkins[]          (foto diaria por sala)
  ├── plans[] ──→ plan_overrides[]
  └── daily_stats[]       (resultado de la liquidación diaria)

  TEAM
  ├── team_scores[]       (puntos, solo se añaden, nunca se editan)
  └── team_streaks[]      (rachas de días seguidos cumpliendo)

  ROOM
  └── leaderboards[]      (foto fija del ranking por día)

Las tablas de usuarios, salas, equipos y check-ins las gestionan otras
partes del sistema (registro, invitaciones, subida de fotos). Aquí solo
se declaran con las columnas que necesita el núcleo.
"""

from datetime import datetime, timezone
from sqlalchemy import (
    Column, Integer, String, Boolean, Text, Date, DateTime, ForeignKey, JSON,
    UniqueConstraint, Index
)
from sqlalchemy.orm import relationship

from config import REFERENCE_TIMEZONE
from database import Base


def utcnow() -> datetime:
    """Instante actual en UTC, sin tzinfo (así lo guardan todas las columnas)"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


# =============================================================================
# ===================== TABLA 1: USERS ========================================
# =============================================================================

class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    username = Column(String(32), unique=True, nullable=False, index=True)
    display_name = Column(String(100), nullable=True)

    timezone = Column(String(50), default=REFERENCE_TIMEZONE)
    # timezone → zona IANA del usuario ("Europe/Madrid", "Asia/Shanghai"...)
    # Se usa para el bloqueo de planes y para la liquidación diaria.

    created_at = Column(DateTime, default=utcnow)

    plans = relationship("Plan", back_populates="user", cascade="all, delete-orphan")
    room_memberships = relationship("RoomMember", back_populates="user", cascade="all, delete-orphan")
    team_memberships = relationship("TeamMember", back_populates="user", cascade="all, delete-orphan")


# =============================================================================
# ===================== TABLA 2: ROOMS ========================================
# =============================================================================

class Room(Base):
    __tablename__ = "rooms"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(50), nullable=False)
    code = Column(String(6), unique=True, nullable=False)
    # code → código de invitación de 6 caracteres (A-Z, 0-9)
    owner_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime, default=utcnow)

    members = relationship("RoomMember", back_populates="room", cascade="all, delete-orphan")
    teams = relationship("Team", back_populates="room", cascade="all, delete-orphan",
                         order_by="Team.created_at")


class RoomMember(Base):
    __tablename__ = "room_members"

    id = Column(Integer, primary_key=True, autoincrement=True)
    room_id = Column(Integer, ForeignKey("rooms.id"), nullable=False)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    joined_at = Column(DateTime, default=utcnow)

    __table_args__ = (
        UniqueConstraint('room_id', 'user_id', name='uq_room_member'),
    )

    room = relationship("Room", back_populates="members")
    user = relationship("User", back_populates="room_memberships")


# =============================================================================
# ===================== TABLA 3: TEAMS ========================================
# =============================================================================
# Un equipo son 2-3 personas dentro de una sala. Los puntos y las rachas
# se calculan por equipo.

class Team(Base):
    __tablename__ = "teams"

    id = Column(Integer, primary_key=True, autoincrement=True)
    room_id = Column(Integer, ForeignKey("rooms.id"), nullable=False, index=True)
    name = Column(String(50), nullable=False)
    created_at = Column(DateTime, default=utcnow)

    room = relationship("Room", back_populates="teams")
    members = relationship("TeamMember", back_populates="team", cascade="all, delete-orphan",
                           order_by="TeamMember.joined_at")
    scores = relationship("TeamScore", back_populates="team", cascade="all, delete-orphan")
    streaks = relationship("TeamStreak", back_populates="team", cascade="all, delete-orphan")


class TeamMember(Base):
    __tablename__ = "team_members"

    id = Column(Integer, primary_key=True, autoincrement=True)
    team_id = Column(Integer, ForeignKey("teams.id"), nullable=False)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    joined_at = Column(DateTime, default=utcnow)

    __table_args__ = (
        UniqueConstraint('team_id', 'user_id', name='uq_team_member'),
    )

    team = relationship("Team", back_populates="members")
    user = relationship("User", back_populates="team_memberships")


# =============================================================================
# ===================== TABLA 4: CHECKINS =====================================
# =============================================================================
# Una foto por usuario, por sala y por día. La foto en sí vive en el
# almacenamiento de ficheros; aquí solo guardamos la ruta.

class Checkin(Base):
    __tablename__ = "checkins"

    id = Column(Integer, primary_key=True, autoincrement=True)
    room_id = Column(Integer, ForeignKey("rooms.id"), nullable=False)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    for_date = Column(Date, nullable=False)
    photo_url = Column(String(500), nullable=True)
    taken_at = Column(DateTime, default=utcnow)

    # ── Restricción única: un check-in por usuario por sala por día ──
    __table_args__ = (
        UniqueConstraint('user_id', 'room_id', 'for_date', name='uq_checkin_day'),
    )


# =============================================================================
# ===================== TABLA 5: PLANS ========================================
# =============================================================================

class Plan(Base):
    __tablename__ = "plans"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)

    title = Column(String(100), nullable=False)
    details = Column(JSON, nullable=True)
    # details → datos libres del plan (ej: {"sets": 3, "notes": "piernas"})

    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=True)
    recurrence_rule = Column(String(500), nullable=True)
    # recurrence_rule → regla tipo RFC 5545 ("FREQ=WEEKLY;BYDAY=MO,WE,FR")
    # Sin regla: un solo día (start_date) o todos los días hasta end_date.

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    user = relationship("User", back_populates="plans")
    overrides = relationship(
        "PlanOverride", back_populates="plan",
        order_by=lambda: (PlanOverride.created_at.desc(), PlanOverride.for_date.desc(), PlanOverride.id.desc()),
    )
    # Sin cascade delete: al borrar el plan, los overrides se quedan
    # (plan_id → NULL) como registro de auditoría.


# =============================================================================
# ===================== TABLA 6: PLAN_OVERRIDES ===============================
# =============================================================================
# Justificante para editar/borrar un plan ya bloqueado. Solo se añaden,
# nunca se modifican. Puede haber varios para el mismo plan y día.

class PlanOverride(Base):
    __tablename__ = "plan_overrides"

    id = Column(Integer, primary_key=True, autoincrement=True)
    plan_id = Column(Integer, ForeignKey("plans.id", ondelete="SET NULL"), nullable=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)

    reason = Column(String(20), nullable=False)
    # reason → "period", "weather", "other"
    for_date = Column(Date, nullable=False)
    note = Column(Text, nullable=True)
    # note → obligatoria si reason = "other"

    created_at = Column(DateTime, default=utcnow)

    plan = relationship("Plan", back_populates="overrides")


# =============================================================================
# ===================== TABLA 7: DAILY_STATS ==================================
# =============================================================================
# Una fila por usuario, por sala y por día. Solo la escribe la liquidación
# diaria (upsert: volver a liquidar el mismo día sobrescribe did_checkin).

class DailyStat(Base):
    __tablename__ = "daily_stats"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    room_id = Column(Integer, ForeignKey("rooms.id"), nullable=False)
    stat_date = Column(Date, nullable=False)
    did_checkin = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, default=utcnow)

    __table_args__ = (
        UniqueConstraint('user_id', 'room_id', 'stat_date', name='uq_daily_stat'),
        Index('idx_daily_stats_room_date', 'room_id', 'stat_date'),
    )


# =============================================================================
# ===================== TABLA 8: TEAM_SCORES ==================================
# =============================================================================
# Puntos del equipo. Puede haber varias filas el mismo día con razones
# distintas ("all_members_completed" + "streak_bonus_3").

class TeamScore(Base):
    __tablename__ = "team_scores"

    id = Column(Integer, primary_key=True, autoincrement=True)
    team_id = Column(Integer, ForeignKey("teams.id"), nullable=False, index=True)
    room_id = Column(Integer, ForeignKey("rooms.id"), nullable=False, index=True)
    score_date = Column(Date, nullable=False)
    points = Column(Integer, nullable=False, default=0)
    reason = Column(String(100), nullable=False)
    created_at = Column(DateTime, default=utcnow)

    team = relationship("Team", back_populates="scores")


# =============================================================================
# ===================== TABLA 9: TEAM_STREAKS =================================
# =============================================================================

class TeamStreak(Base):
    __tablename__ = "team_streaks"

    id = Column(Integer, primary_key=True, autoincrement=True)
    team_id = Column(Integer, ForeignKey("teams.id"), nullable=False, index=True)
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=False)
    length = Column(Integer, nullable=False)

    team = relationship("Team", back_populates="streaks")


# =============================================================================
# ===================== TABLA 10: LEADERBOARDS ================================
# =============================================================================
# Foto fija del ranking de una sala en una fecha. Reconstruir la misma
# fecha sobrescribe la fila (nunca se duplica).

class LeaderboardSnapshot(Base):
    __tablename__ = "leaderboards"

    id = Column(Integer, primary_key=True, autoincrement=True)
    room_id = Column(Integer, ForeignKey("rooms.id"), nullable=False)
    snapshot_date = Column(Date, nullable=False)
    ranking = Column(JSON, nullable=False)
    # ranking → lista ordenada de dicts (team_id, team_name, member_count,
    #            total_points, points_last7_days, last_score_date)
    created_at = Column(DateTime, default=utcnow)

    __table_args__ = (
        UniqueConstraint('room_id', 'snapshot_date', name='uq_leaderboard_day'),
    )
