"""
=============================================================================
ERRORS.PY — Errores del Núcleo
=============================================================================
Cada error es una clase propia para que la API los distinga por TIPO,
nunca comparando textos.

  PlanNotFoundError    → el plan no existe O no es tuyo (mismo error)
  PlanLockedError      → plan bloqueado, hace falta un override
  InvalidInputError    → datos mal formados (se rechazan antes de tocar la BD)
  ConflictError        → fila duplicada (ej: dos check-ins el mismo día)
  UpstreamError        → fallo de la base de datos
  NotRoomMemberError   → no perteneces a la sala
  RoomNotFoundError    → la sala no existe
  SnapshotNotFoundError → no hay ranking guardado para esa fecha
  TeamNotFoundError    → el equipo no existe

main.py traduce cada clase a su código HTTP.
"""

from datetime import date, datetime
from typing import Optional


class FitRoomsError(Exception):
    """Base de todos los errores del núcleo"""
    code = "error"
    message = "Error interno"

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or self.message)
        self.message = message or self.message


class PlanNotFoundError(FitRoomsError):
    code = "plan_not_found"
    message = "El plan no existe o no tiene acceso"


class PlanLockedError(FitRoomsError):
    """
    El plan de ese día ya pasó su hora de bloqueo.
    Lleva la fecha y el instante del bloqueo para que el cliente pueda
    ofrecer el flujo de override en vez de un error sin salida.
    """
    code = "plan_locked"
    message = "El plan está bloqueado, solicite un override"

    def __init__(self, plan_id: int, for_date: date, lock_instant: datetime):
        super().__init__()
        self.plan_id = plan_id
        self.for_date = for_date
        self.lock_instant = lock_instant


class InvalidInputError(FitRoomsError):
    code = "invalid_input"
    message = "Datos no válidos"


class ConflictError(FitRoomsError):
    code = "conflict"
    message = "El registro ya existe"


class UpstreamError(FitRoomsError):
    code = "upstream_failure"
    message = "Error en la base de datos"


class NotRoomMemberError(FitRoomsError):
    code = "not_room_member"
    message = "Solo los miembros de la sala pueden hacer esto"


class RoomNotFoundError(FitRoomsError):
    code = "room_not_found"
    message = "La sala no existe"


class SnapshotNotFoundError(FitRoomsError):
    code = "snapshot_not_found"
    message = "No hay ranking guardado para esa fecha"


class TeamNotFoundError(FitRoomsError):
    code = "team_not_found"
    message = "El equipo no existe"
