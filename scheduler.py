"""
=============================================================================
SCHEDULER.PY — Jobs Automáticos
=============================================================================
Tareas:
  1. Liquidación diaria → minutos 14, 29, 44 y 59 de cada hora (UTC).
     Cada usuario solo se liquida cuando su reloj local marca 23:59, así
     que una pasada cada cuarto de hora cubre las zonas con desfase de
     hora entera, media hora y cuarto de hora.
  2. Rankings → todos los días a las 00:10 en la zona de referencia
     (fecha por defecto: ayer en UTC+8).
  3. Rachas de equipo → justo después de los rankings (00:20).

Usa APScheduler con CronTrigger. Cada job abre su propia sesión de BD.
Los jobs son funciones normales (no async): AsyncIOScheduler las ejecuta
en su pool de hilos.
"""

import logging
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from config import REFERENCE_TIMEZONE
from database import SessionLocal
from leaderboard import build_all_snapshots
from settlement import settle_daily_stats
from stats import rebuild_all_team_streaks

logger = logging.getLogger("fitrooms.scheduler")

scheduler: AsyncIOScheduler = None


# =============================================================================
# ===================== JOBS ==================================================
# =============================================================================

def settlement_job():
    """Liquidación de los usuarios que acaban de llegar a las 23:59"""
    db = SessionLocal()
    try:
        settle_daily_stats(db)
    except Exception as e:
        logger.error(f"❌ Error en la liquidación diaria: {e}")
    finally:
        db.close()


def leaderboard_job():
    """Foto fija del ranking de ayer (UTC+8) para todas las salas"""
    db = SessionLocal()
    try:
        build_all_snapshots(db)
    except Exception as e:
        logger.error(f"❌ Error construyendo rankings: {e}")
    finally:
        db.close()


def team_streaks_job():
    db = SessionLocal()
    try:
        rebuild_all_team_streaks(db)
    except Exception as e:
        logger.error(f"❌ Error recalculando rachas: {e}")
    finally:
        db.close()


# =============================================================================
# ===================== INICIALIZAR SCHEDULER =================================
# =============================================================================

def create_scheduler() -> AsyncIOScheduler:
    """Crea y configura el scheduler con las tareas automáticas"""
    global scheduler

    scheduler = AsyncIOScheduler(timezone="UTC")

    scheduler.add_job(
        settlement_job,
        CronTrigger(minute="14,29,44,59"),
        id="settle_daily_stats",
        name="Liquidación diaria",
        replace_existing=True
    )

    scheduler.add_job(
        leaderboard_job,
        CronTrigger(hour=0, minute=10, timezone=REFERENCE_TIMEZONE),
        id="build_leaderboard_snapshot",
        name="Rankings diarios",
        replace_existing=True
    )

    scheduler.add_job(
        team_streaks_job,
        CronTrigger(hour=0, minute=20, timezone=REFERENCE_TIMEZONE),
        id="rebuild_team_streaks",
        name="Rachas de equipo",
        replace_existing=True
    )

    logger.info("⏰ Scheduler configurado: liquidación cada 15 min + rankings y rachas diarios")
    return scheduler


def start_scheduler():
    """Arranca el scheduler"""
    global scheduler
    if scheduler and not scheduler.running:
        scheduler.start()
        logger.info("⏰ Scheduler arrancado")


def stop_scheduler():
    """Para el scheduler"""
    global scheduler
    if scheduler and scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("⏰ Scheduler parado")
