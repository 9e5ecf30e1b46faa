"""
=============================================================================
SCHEMAS.PY — Esquemas de Validación (Pydantic)
=============================================================================
  - Models (SQLAlchemy) → definen las TABLAS de la BD
  - Schemas (Pydantic) → definen qué DATOS acepta/devuelve la API

Las fechas de entrada llegan como texto y las valida el núcleo
(formato estricto YYYY-MM-DD).

Convención de nombres:
  XxxCreate → para crear algo nuevo (POST)
  XxxUpdate → para reemplazar algo (PATCH)
  XxxResponse → lo que devuelve la API (GET)
"""

from pydantic import BaseModel, Field, computed_field, model_validator
from datetime import date, datetime
from typing import Literal, Optional

from recurrence import build_rule, describe_rule


# =============================================================================
# ===================== REPETICIÓN ============================================
# =============================================================================

class RuleShape(BaseModel):
    """
    Forma cómoda de una regla de repetición.
      none           → sin repetición
      weekly         → weekdays = ["MO", "WE", "FR"]
      daily_interval → interval = 2 (un día sí, un día no)
      custom         → custom = "FREQ=MONTHLY;BYMONTHDAY=1"
    """
    mode: Literal["none", "weekly", "daily_interval", "custom"] = "none"
    weekdays: list[str] = []
    interval: int = 1
    custom: str = ""

    def to_rule(self) -> Optional[str]:
        return build_rule(self.mode, self.weekdays, self.interval, self.custom)


# =============================================================================
# ===================== PLANES ================================================
# =============================================================================

class OverrideRequest(BaseModel):
    """Justificante para editar/borrar un plan bloqueado"""
    reason: str = Field(description="period | weather | other")
    note: Optional[str] = None
    for_date: Optional[str] = None


class PlanCreate(BaseModel):
    title: str
    start_date: str
    end_date: Optional[str] = None
    details: Optional[dict] = None
    recurrence_rule: Optional[str] = None
    recurrence: Optional[RuleShape] = None
    # recurrence_rule → la regla en texto; recurrence → la forma cómoda.
    # Solo uno de los dos.

    @model_validator(mode="after")
    def one_rule_source(self):
        if self.recurrence_rule is not None and self.recurrence is not None:
            raise ValueError("Envíe recurrence_rule o recurrence, no los dos")
        return self

    def rule(self) -> Optional[str]:
        if self.recurrence is not None:
            return self.recurrence.to_rule()
        return self.recurrence_rule


class PlanUpdate(PlanCreate):
    """Reemplazo completo: lo que no se envía queda a NULL"""
    for_date: Optional[str] = None
    override: Optional[OverrideRequest] = None


class OverrideResponse(BaseModel):
    id: int
    plan_id: Optional[int] = None
    user_id: int
    reason: str
    for_date: date
    note: Optional[str] = None
    created_at: Optional[datetime] = None
    model_config = {"from_attributes": True}


class PlanResponse(BaseModel):
    id: int
    user_id: int
    title: str
    details: Optional[dict] = None
    start_date: date
    end_date: Optional[date] = None
    recurrence_rule: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    overrides: list[OverrideResponse] = []
    model_config = {"from_attributes": True}

    @computed_field
    @property
    def recurrence(self) -> RuleShape:
        return RuleShape(**describe_rule(self.recurrence_rule))


class PlanDeleteResponse(BaseModel):
    deleted: int
    override_id: Optional[int] = None


class LockStatusResponse(BaseModel):
    plan_id: int
    for_date: date
    timezone: str
    lock_instant: datetime
    locked: bool
    override_reasons: list[str]


class Occurrence(BaseModel):
    plan_id: int
    title: str
    date: date


class CalendarDay(BaseModel):
    date: date
    occurrences: list[Occurrence]


class CalendarResponse(BaseModel):
    start: date
    end: date
    days: list[CalendarDay]


# =============================================================================
# ===================== CHECK-INS =============================================
# =============================================================================

class CheckinCreate(BaseModel):
    room_id: int
    for_date: Optional[str] = None
    photo_url: Optional[str] = Field(default=None, max_length=500)


class CheckinResponse(BaseModel):
    id: int
    room_id: int
    user_id: int
    for_date: date
    photo_url: Optional[str] = None
    taken_at: Optional[datetime] = None
    model_config = {"from_attributes": True}


# =============================================================================
# ===================== ESTADÍSTICAS ==========================================
# =============================================================================

class HistoryEntry(BaseModel):
    date: date
    did_checkin: bool


class PersonalStats(BaseModel):
    total_days: int
    completed_days: int
    missed_days: int
    completion_rate: float
    recent_completion_rate: float
    current_streak: int
    longest_streak: int
    last_checkin_date: Optional[date] = None
    first_tracked_date: Optional[date] = None
    history: list[HistoryEntry]


class TeamMemberInfo(BaseModel):
    user_id: int
    username: str
    display_name: Optional[str] = None
    joined_at: Optional[datetime] = None


class ReasonBreakdown(BaseModel):
    reason: str
    total_points: int
    occurrences: int


class StreakSummary(BaseModel):
    length: int
    start_date: date
    end_date: date


class TeamHistoryEntry(BaseModel):
    date: date
    points: int
    reason: str


class TeamStats(BaseModel):
    team_id: int
    team_name: str
    members: list[TeamMemberInfo]
    total_points: int
    points_last7_days: int
    reason_breakdown: list[ReasonBreakdown]
    current_streak: Optional[StreakSummary] = None
    longest_streak: Optional[StreakSummary] = None
    history: list[TeamHistoryEntry]


class ScoreboardEntry(BaseModel):
    team_id: int
    team_name: str
    total_points: int
    points_last7_days: int
    last_score_date: Optional[date] = None
    member_count: int
    is_user_team: bool


class RoomInfo(BaseModel):
    id: int
    name: str
    code: str


class RoomStatsResponse(BaseModel):
    room: RoomInfo
    personal: PersonalStats
    team: Optional[TeamStats] = None
    scoreboard: list[ScoreboardEntry]


# =============================================================================
# ===================== RANKINGS ==============================================
# =============================================================================

class RankingEntry(BaseModel):
    team_id: int
    team_name: str
    member_count: int
    total_points: int
    points_last7_days: int
    last_score_date: Optional[date] = None


class LeaderboardMeta(BaseModel):
    used_date: date
    defaulted_date: bool
    note: Optional[str] = None


class LeaderboardResponse(BaseModel):
    room_id: int
    snapshot_date: date
    ranking: list[RankingEntry]
    created_at: Optional[datetime] = None
    meta: LeaderboardMeta


# =============================================================================
# ===================== ADMIN (JOBS) ==========================================
# =============================================================================

class SettleRequest(BaseModel):
    date: Optional[str] = None
    tz: Optional[str] = None
    dry_run: bool = False


class DailyStatEntry(BaseModel):
    user_id: int
    room_id: int
    stat_date: date
    did_checkin: bool


class SettlementResult(BaseModel):
    dry_run: bool
    stat_date: Optional[date] = None
    processed_users: int
    skipped_users: int
    failures: int
    count: int
    stats: list[DailyStatEntry]


class SnapshotRequest(BaseModel):
    date: Optional[str] = None
    dry_run: bool = False


class RoomRanking(BaseModel):
    room_id: int
    ranking: list[RankingEntry]


class SnapshotBatchResult(BaseModel):
    dry_run: bool
    snapshot_date: date
    rooms_processed: int
    upserted: int
    failures: int
    rooms: list[RoomRanking]


class StreakRebuildResponse(BaseModel):
    team_id: int
    streaks: list[StreakSummary]
