"""
=============================================================================
UTILS.PY — Utilidades de Fechas, Zonas Horarias y Ordenación
=============================================================================
Reglas comunes a todo el núcleo:
  - Un "instante" es un datetime con zona (aware). Si llega uno sin zona,
    se interpreta como UTC.
  - Una "fecha" (stat_date, snapshot_date, for_date...) es un date sin hora.
  - Las zonas horarias se resuelven con pytz en el momento de usarlas,
    nunca se cachean por usuario.
"""

import logging
import re
import unicodedata
from datetime import date, datetime, timezone
from typing import Optional, Union

import pytz

from config import REFERENCE_TIMEZONE
from errors import InvalidInputError

logger = logging.getLogger("fitrooms.utils")

DATE_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")


# ─────────────────────────────────────────────────────────────────────────────
# ZONAS HORARIAS
# ─────────────────────────────────────────────────────────────────────────────

def get_timezone(name: Optional[str]):
    """
    Devuelve la zona pytz del usuario.
    Sin zona (o con una zona desconocida) → zona de referencia (UTC+8).
    """
    if not name:
        return pytz.timezone(REFERENCE_TIMEZONE)
    try:
        return pytz.timezone(name)
    except pytz.UnknownTimeZoneError:
        logger.warning(f"Zona horaria desconocida '{name}', usando {REFERENCE_TIMEZONE}")
        return pytz.timezone(REFERENCE_TIMEZONE)


def validate_timezone(name: str) -> str:
    """Como get_timezone, pero una zona desconocida es un error de entrada"""
    try:
        pytz.timezone(name)
    except pytz.UnknownTimeZoneError:
        raise InvalidInputError(f"Zona horaria desconocida: {name}")
    return name


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def as_aware(instant: Optional[datetime]) -> datetime:
    """None → ahora; sin zona → UTC"""
    if instant is None:
        return utc_now()
    if instant.tzinfo is None:
        return instant.replace(tzinfo=timezone.utc)
    return instant


def local_now(tz_name: Optional[str], now: Optional[datetime] = None) -> datetime:
    """Hora local (con zona) del usuario en el instante dado"""
    return as_aware(now).astimezone(get_timezone(tz_name))


def local_today(tz_name: Optional[str], now: Optional[datetime] = None) -> date:
    """Fecha de "hoy" en la zona del usuario"""
    return local_now(tz_name, now).date()


# ─────────────────────────────────────────────────────────────────────────────
# FECHAS
# ─────────────────────────────────────────────────────────────────────────────

def parse_date(value: Union[str, date, None], field: str = "date") -> Optional[date]:
    """
    Acepta un date o un texto "YYYY-MM-DD" (estricto).
    Cualquier otra cosa → InvalidInputError.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()
    if not DATE_PATTERN.match(text):
        raise InvalidInputError(f"{field} debe tener el formato YYYY-MM-DD")
    try:
        return date.fromisoformat(text)
    except ValueError:
        raise InvalidInputError(f"{field} no es una fecha válida")


# ─────────────────────────────────────────────────────────────────────────────
# ORDENACIÓN DE NOMBRES
# ─────────────────────────────────────────────────────────────────────────────

def sort_key(text: Optional[str]) -> tuple:
    """
    Clave de ordenación para títulos y nombres de equipo.
    Ignora mayúsculas y acentos ("Ágil" va junto a "agil") y desempata
    por el texto original para que el orden sea siempre el mismo.
    """
    text = text or ""
    decomposed = unicodedata.normalize("NFKD", text)
    folded = "".join(ch for ch in decomposed if not unicodedata.combining(ch)).casefold()
    return (folded, text)
