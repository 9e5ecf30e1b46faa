"""
=============================================================================
CONFIG.PY — Configuración Global de FitRooms
=============================================================================
Todas las constantes que dependen del entorno viven aquí.
Cada una se lee con os.getenv y tiene un valor por defecto para desarrollo.

Zona de referencia (REFERENCE_TIMEZONE):
  Es la zona horaria "oficial" del sistema (UTC+8).
  → Se usa como zona por defecto cuando un usuario no tiene una configurada.
  → Se usa para calcular la fecha por defecto de los rankings
    ("ayer en UTC+8"), independientemente de la zona de cada usuario.
"""

import os


# ─────────────────────────────────────────────────────────────────────────────
# ZONA HORARIA DE REFERENCIA
# ─────────────────────────────────────────────────────────────────────────────

REFERENCE_TIMEZONE = os.getenv("REFERENCE_TIMEZONE", "Asia/Shanghai")

# ─────────────────────────────────────────────────────────────────────────────
# BLOQUEO DE PLANES
# ─────────────────────────────────────────────────────────────────────────────
# A las 10:00 (hora local del usuario) el plan de ese día queda bloqueado.
# A partir de ahí, editar o borrar exige un override justificado.

LOCK_HOUR = int(os.getenv("LOCK_HOUR", "10"))

OVERRIDE_REASONS = ("period", "weather", "other")

# ─────────────────────────────────────────────────────────────────────────────
# LIQUIDACIÓN DIARIA
# ─────────────────────────────────────────────────────────────────────────────
# Un usuario solo se liquida cuando su reloj local llega a las 23:59.
# Antes de eso el día no ha terminado y no se puede marcar como "fallado".

SETTLEMENT_HOUR = int(os.getenv("SETTLEMENT_HOUR", "23"))
SETTLEMENT_MINUTE = int(os.getenv("SETTLEMENT_MINUTE", "59"))

# ─────────────────────────────────────────────────────────────────────────────
# ESTADÍSTICAS
# ─────────────────────────────────────────────────────────────────────────────

PERSONAL_HISTORY_LIMIT = 30   # últimas N entradas en el historial personal
RECENT_WINDOW = 7             # últimas N filas para la tasa reciente
TEAM_HISTORY_LIMIT = 12       # últimos N eventos de puntos del equipo
LEADERBOARD_WINDOW_DAYS = 7   # ventana de "puntos últimos 7 días"

# ─────────────────────────────────────────────────────────────────────────────
# ADMIN Y SCHEDULER
# ─────────────────────────────────────────────────────────────────────────────

ADMIN_TOKEN = os.getenv("ADMIN_TOKEN")
# ADMIN_TOKEN → secreto para lanzar los jobs a mano (cabecera X-Admin-Token).
# Si no está definido, los endpoints de admin quedan deshabilitados.

SCHEDULER_ENABLED = os.getenv("SCHEDULER_ENABLED", "1") == "1"
