"""
=============================================================================
MAIN.PY — La API de FitRooms
=============================================================================
Este archivo define TODOS los endpoints de la API REST.

Organización por secciones:
  1. PLANS       → CRUD de planes, calendario, bloqueo y overrides
  2. CHECKINS    → Check-in diario por sala
  3. STATS       → Estadísticas personales, de equipo y marcador
  4. LEADERBOARD → Ranking guardado de una sala
  5. ADMIN       → Lanzar los jobs a mano (liquidación, rankings, rachas)

El usuario llega ya autenticado (JWT, ver auth.py). Los errores del
núcleo (errors.py) se traducen aquí a códigos HTTP.
"""

import hmac
import logging
import traceback
from datetime import datetime, timezone
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Depends, HTTPException, status, Query, Request, Header
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

import config
from config import OVERRIDE_REASONS, SCHEDULER_ENABLED
from database import get_db, init_db
from models import User
from schemas import *
from auth import get_current_user
from errors import (
    FitRoomsError, PlanNotFoundError, PlanLockedError, InvalidInputError,
    ConflictError, UpstreamError, NotRoomMemberError, RoomNotFoundError,
    SnapshotNotFoundError, TeamNotFoundError
)
import checkins
import leaderboard
import plans
import settlement
import stats
from utils import parse_date

# ─────────────────────────────────────────────────────────────────────────────
# LOGGING
# ─────────────────────────────────────────────────────────────────────────────

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(name)s] %(levelname)s: %(message)s"
)
logger = logging.getLogger("fitrooms.api")


# ─────────────────────────────────────────────────────────────────────────────
# LIFESPAN (Arranque y apagado)
# ─────────────────────────────────────────────────────────────────────────────

@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Arranque:
      1. Inicializar BD (crear tablas)
      2. Arrancar los jobs automáticos (si SCHEDULER_ENABLED)

    Apagado:
      - Parar el scheduler limpiamente
    """
    logger.info("🚀 Arrancando FitRooms...")

    init_db()
    logger.info("✅ Base de datos inicializada")

    if SCHEDULER_ENABLED:
        from scheduler import create_scheduler, start_scheduler
        create_scheduler()
        start_scheduler()
    else:
        logger.warning("⚠️ Scheduler desactivado (SCHEDULER_ENABLED=0)")

    logger.info("🎉 FitRooms operativo")

    yield  # ← La aplicación está corriendo

    logger.info("🛑 Apagando FitRooms...")
    if SCHEDULER_ENABLED:
        from scheduler import stop_scheduler
        stop_scheduler()
    logger.info("👋 Apagado completo")


# ─────────────────────────────────────────────────────────────────────────────
# APLICACIÓN FASTAPI
# ─────────────────────────────────────────────────────────────────────────────

app = FastAPI(
    title="FitRooms API",
    description="Planes de entrenamiento, liquidación diaria y rankings por sala",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ─────────────────────────────────────────────────────────────────────────────
# ERRORES DEL NÚCLEO → HTTP
# ─────────────────────────────────────────────────────────────────────────────

ERROR_STATUS = {
    PlanNotFoundError: status.HTTP_404_NOT_FOUND,
    PlanLockedError: status.HTTP_423_LOCKED,
    InvalidInputError: status.HTTP_422_UNPROCESSABLE_ENTITY,
    ConflictError: status.HTTP_409_CONFLICT,
    UpstreamError: status.HTTP_500_INTERNAL_SERVER_ERROR,
    NotRoomMemberError: status.HTTP_403_FORBIDDEN,
    RoomNotFoundError: status.HTTP_404_NOT_FOUND,
    SnapshotNotFoundError: status.HTTP_404_NOT_FOUND,
    TeamNotFoundError: status.HTTP_404_NOT_FOUND,
}


@app.exception_handler(FitRoomsError)
async def fitrooms_error_handler(request: Request, exc: FitRoomsError):
    """Cada error del núcleo con su código HTTP y un "code" estable"""
    status_code = ERROR_STATUS.get(type(exc), status.HTTP_500_INTERNAL_SERVER_ERROR)
    if status_code >= 500:
        logger.error(f"❌ {exc.code} en {request.url}: {exc.message}")
    return JSONResponse(
        status_code=status_code,
        content={"detail": exc.message, "code": exc.code}
    )


@app.exception_handler(PlanLockedError)
async def plan_locked_handler(request: Request, exc: PlanLockedError):
    """
    Plan bloqueado: además del error, se devuelve lo necesario para que
    el cliente ofrezca el override (día, instante del bloqueo y motivos).
    """
    return JSONResponse(
        status_code=status.HTTP_423_LOCKED,
        content={
            "detail": exc.message,
            "code": exc.code,
            "plan_id": exc.plan_id,
            "for_date": exc.for_date.isoformat(),
            "lock_instant": exc.lock_instant.isoformat(),
            "override_reasons": list(OVERRIDE_REASONS),
        }
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Captura errores no manejados y devuelve detalles útiles"""
    error_msg = str(exc)
    error_trace = traceback.format_exc()
    logger.error(f"❌ Error no manejado en {request.url}: {error_msg}\n{error_trace}")
    return JSONResponse(
        status_code=500,
        content={
            "detail": error_msg,
            "type": type(exc).__name__,
            "path": str(request.url)
        }
    )


# ─────────────────────────────────────────────────────────────────────────────
# DEPENDENCIA: ADMIN
# ─────────────────────────────────────────────────────────────────────────────

def require_admin(x_admin_token: Optional[str] = Header(default=None)):
    """Los jobs manuales exigen la cabecera X-Admin-Token"""
    if not config.ADMIN_TOKEN:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Endpoints de admin deshabilitados (falta ADMIN_TOKEN)"
        )
    if not x_admin_token or not hmac.compare_digest(x_admin_token, config.ADMIN_TOKEN):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Token de admin incorrecto"
        )


# =============================================================================
# ===================== HEALTH CHECK ==========================================
# =============================================================================

@app.get("/", tags=["Health"])
def health_check():
    """Verifica que la API está viva"""
    return {
        "status": "ok",
        "app": "FitRooms",
        "version": "1.0.0",
        "timestamp": datetime.now(timezone.utc).isoformat()
    }


# =============================================================================
# ===================== SECCIÓN 1: PLANS ======================================
# =============================================================================

@app.get("/plans", response_model=list[PlanResponse], tags=["Plans"])
def list_plans(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    """Planes del usuario con sus overrides (los que empiezan más tarde primero)"""
    return plans.list_plans(db, user)


@app.post("/plans", response_model=PlanResponse, tags=["Plans"])
def create_plan(data: PlanCreate, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    """Crea un plan. Los planes nuevos nunca están bloqueados."""
    return plans.create_plan(
        db, user,
        title=data.title,
        start_date=data.start_date,
        end_date=data.end_date,
        recurrence_rule=data.rule(),
        details=data.details,
    )


@app.get("/plans/calendar", response_model=CalendarResponse, tags=["Plans"])
def plan_calendar(
    start: Optional[str] = None,
    end: Optional[str] = None,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """
    Ocurrencias de los planes agrupadas por día.
    Sin start/end → el mes actual en semanas completas (domingo a sábado).
    """
    return plans.plan_calendar(db, user, parse_date(start, "start"), parse_date(end, "end"))


@app.patch("/plans/{plan_id}", response_model=PlanResponse, tags=["Plans"])
def update_plan(
    plan_id: int,
    data: PlanUpdate,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """
    Reemplaza el plan. Si el día ya está bloqueado hace falta "override";
    sin él → 423 con los datos para pedirlo.
    """
    return plans.update_plan(
        db, user, plan_id,
        title=data.title,
        start_date=data.start_date,
        end_date=data.end_date,
        recurrence_rule=data.rule(),
        details=data.details,
        for_date=data.for_date,
        override=data.override.model_dump() if data.override else None,
    )


@app.delete("/plans/{plan_id}", response_model=PlanDeleteResponse, tags=["Plans"])
def delete_plan(
    plan_id: int,
    for_date: Optional[str] = None,
    reason: Optional[str] = Query(default=None, description="period | weather | other"),
    note: Optional[str] = None,
    override_date: Optional[str] = None,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Borra el plan. Con 'reason' se registra el override en la misma operación."""
    override = None
    if reason is not None:
        override = {"reason": reason, "note": note, "for_date": override_date}
    return plans.delete_plan(db, user, plan_id, for_date=for_date, override=override)


@app.post("/plans/{plan_id}/override", response_model=OverrideResponse, tags=["Plans"])
def request_override(
    plan_id: int,
    data: OverrideRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Registra un override sin tocar el plan"""
    return plans.request_override(db, user, plan_id, data.reason, data.note, data.for_date)


@app.get("/plans/{plan_id}/overrides", response_model=list[OverrideResponse], tags=["Plans"])
def list_overrides(plan_id: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    """Historial de overrides del plan, el más reciente primero"""
    return plans.list_overrides(db, user, plan_id)


@app.get("/plans/{plan_id}/lock", response_model=LockStatusResponse, tags=["Plans"])
def lock_status(
    plan_id: int,
    date: Optional[str] = None,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """¿Está bloqueado el plan ese día? (por defecto, su start_date)"""
    return plans.lock_status(db, user, plan_id, parse_date(date, "date"))


# =============================================================================
# ===================== SECCIÓN 2: CHECKINS ===================================
# =============================================================================

@app.post("/checkins", response_model=CheckinResponse, tags=["Checkins"])
def create_checkin(data: CheckinCreate, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    """Check-in del día (uno por sala y día; el segundo → 409)"""
    return checkins.record_checkin(db, user, data.room_id, data.for_date, data.photo_url)


@app.get("/checkins", response_model=list[CheckinResponse], tags=["Checkins"])
def list_checkins(
    room_id: int,
    limit: Optional[int] = None,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Últimos check-ins del usuario en la sala"""
    return checkins.list_checkins(db, user, room_id, limit)


# =============================================================================
# ===================== SECCIÓN 3: STATS ======================================
# =============================================================================

@app.get("/stats", response_model=RoomStatsResponse, tags=["Stats"])
def room_stats(room_id: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    """Estadísticas personales, del equipo y marcador en vivo de la sala"""
    return stats.get_room_stats(db, user, room_id)


# =============================================================================
# ===================== SECCIÓN 4: LEADERBOARD ================================
# =============================================================================

@app.get("/leaderboards", response_model=LeaderboardResponse, tags=["Leaderboard"])
def get_leaderboard(
    room_id: int,
    date: Optional[str] = None,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Ranking guardado. Sin fecha → el de ayer en UTC+8 (ver meta)."""
    return leaderboard.get_leaderboard(db, user, room_id, snapshot_date=date)


# =============================================================================
# ===================== SECCIÓN 5: ADMIN ======================================
# =============================================================================

@app.post("/admin/settle", response_model=SettlementResult, tags=["Admin"],
          dependencies=[Depends(require_admin)])
def run_settlement(data: Optional[SettleRequest] = None, db: Session = Depends(get_db)):
    """Lanza la liquidación diaria (date, tz y dry_run opcionales)"""
    data = data or SettleRequest()
    return settlement.settle_daily_stats(db, for_date=data.date, tz=data.tz, dry_run=data.dry_run)


@app.post("/admin/leaderboards", response_model=SnapshotBatchResult, tags=["Admin"],
          dependencies=[Depends(require_admin)])
def run_leaderboards(data: Optional[SnapshotRequest] = None, db: Session = Depends(get_db)):
    """Construye los rankings de todas las salas"""
    data = data or SnapshotRequest()
    return leaderboard.build_all_snapshots(db, snapshot_date=data.date, dry_run=data.dry_run)


@app.post("/admin/teams/{team_id}/streaks", response_model=StreakRebuildResponse, tags=["Admin"],
          dependencies=[Depends(require_admin)])
def run_team_streaks(team_id: int, db: Session = Depends(get_db)):
    """Recalcula las rachas de un equipo desde las estadísticas diarias"""
    runs = stats.rebuild_team_streaks(db, team_id)
    return {"team_id": team_id, "streaks": runs}
