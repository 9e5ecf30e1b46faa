"""
=============================================================================
RECURRENCE.PY — Expansión de Planes Recurrentes
=============================================================================
Un plan puede repetirse según una regla tipo RFC 5545 guardada como texto:
  "FREQ=WEEKLY;BYDAY=MO,WE,FR"   → lunes, miércoles y viernes
  "FREQ=DAILY;INTERVAL=2"        → un día sí, un día no
  cualquier otra regla válida     → se pasa tal cual al evaluador

La regla se interpreta con dateutil.rrule, anclada en start_date.
Todo el resto del sistema solo ve dos cosas:
  - parse_rule(texto, ancla) → objeto con occurrences_between / next_occurrence
  - expand(plan, desde, hasta) → fechas en las que el plan está activo

Sin regla:
  - sin end_date → el plan solo existe el día start_date
  - con end_date → todos los días entre start_date y end_date

Si una regla guardada no se puede interpretar, se registra en el log y
el plan simplemente no produce fechas (no rompe el listado).
"""

import logging
import re
from datetime import date, datetime, time, timedelta, timezone
from typing import Optional

from dateutil.rrule import rrulestr

from errors import InvalidInputError
from utils import sort_key

logger = logging.getLogger("fitrooms.recurrence")

WEEKDAY_CODES = ["MO", "TU", "WE", "TH", "FR", "SA", "SU"]

RULE_MODES = ("none", "weekly", "daily_interval", "custom")

# Las ocurrencias son fechas: solo reglas diarias o más amplias.
SUB_DAILY = re.compile(r"FREQ\s*=\s*(HOURLY|MINUTELY|SECONDLY)", re.IGNORECASE)

# UNTIL en UTC ("...Z") exige un ancla con zona; UNTIL sin zona, un ancla sin zona.
UTC_UNTIL = re.compile(r"UNTIL\s*=\s*\d{8}(T\d{6})?Z", re.IGNORECASE)


# =============================================================================
# ===================== EVALUADOR DE REGLAS ===================================
# =============================================================================

class RecurrenceRule:
    """Regla ya interpretada y anclada en una fecha de inicio"""

    def __init__(self, text: str, anchor: date):
        if SUB_DAILY.search(text):
            raise InvalidInputError("La regla de repetición debe ser diaria o más amplia")
        self._tz = timezone.utc if UTC_UNTIL.search(text) else None
        try:
            self._rule = rrulestr(text, dtstart=self._at(anchor, time.min))
        except (ValueError, TypeError, OverflowError) as e:
            raise InvalidInputError(f"Regla de repetición no válida: {e}")
        self.text = text
        self.anchor = anchor

    def _at(self, day: date, moment: time) -> datetime:
        return datetime.combine(day, moment, tzinfo=self._tz)

    def occurrences_between(self, start: date, end: date) -> list[date]:
        """Fechas de la regla dentro de [start, end], ordenadas y sin repetir"""
        if end < start:
            return []
        try:
            instants = self._rule.between(
                self._at(start, time.min),
                self._at(end, time.max),
                inc=True,
            )
        except (ValueError, TypeError, OverflowError) as e:
            raise InvalidInputError(f"Regla de repetición no válida: {e}")
        return sorted({instant.date() for instant in instants})

    def next_occurrence(self, after: date) -> Optional[date]:
        """Primera fecha estrictamente posterior a 'after' (o None si ya no hay)"""
        try:
            instant = self._rule.after(self._at(after, time.max))
        except (ValueError, TypeError, OverflowError) as e:
            raise InvalidInputError(f"Regla de repetición no válida: {e}")
        return instant.date() if instant else None


def parse_rule(text: str, anchor: date) -> RecurrenceRule:
    return RecurrenceRule(text, anchor)


def normalize_rule(text: Optional[str], anchor: Optional[date] = None) -> Optional[str]:
    """
    Limpia una regla antes de guardarla.
    Vacía → None. Si no se puede interpretar → InvalidInputError.
    """
    if text is None:
        return None
    cleaned = text.strip()
    if not cleaned:
        return None
    parse_rule(cleaned, anchor or date.today())
    return cleaned


# =============================================================================
# ===================== EXPANSIÓN =============================================
# =============================================================================

def expand(plan, window_start: date, window_end: date) -> list[date]:
    """
    Fechas en las que el plan está activo dentro de la ventana visible.

    Cada fecha devuelta cumple:
      window_start <= fecha <= window_end
      plan.start_date <= fecha <= (plan.end_date o window_end)
    """
    plan_end = plan.end_date or window_end
    low = max(window_start, plan.start_date)
    high = min(window_end, plan_end)
    if low > high:
        return []

    rule_text = (plan.recurrence_rule or "").strip()
    if rule_text:
        try:
            rule = parse_rule(rule_text, plan.start_date)
            return rule.occurrences_between(low, high)
        except InvalidInputError as e:
            logger.warning(f"⚠️ Regla no válida en plan {plan.id} ({rule_text!r}): {e}")
            return []

    if plan.end_date is None:
        # Plan de un solo día
        return [plan.start_date] if low <= plan.start_date <= high else []

    days = []
    cursor = low
    while cursor <= high:
        days.append(cursor)
        cursor += timedelta(days=1)
    return days


def occurs_on(plan, day: date) -> bool:
    """¿El plan está activo ese día?"""
    return day in expand(plan, day, day)


def group_occurrences(plans, window_start: date, window_end: date) -> dict:
    """
    Vista de calendario: {fecha: [ocurrencias]}.
    Dentro de cada día, las ocurrencias van ordenadas por título.
    """
    calendar = {}
    for plan in plans:
        for day in expand(plan, window_start, window_end):
            calendar.setdefault(day, []).append({
                "plan_id": plan.id,
                "title": plan.title,
                "date": day,
            })

    for items in calendar.values():
        items.sort(key=lambda item: sort_key(item["title"]))

    return dict(sorted(calendar.items()))


def month_window(anchor: date) -> tuple[date, date]:
    """
    Ventana del calendario mensual: el mes de 'anchor' completado con
    semanas enteras de domingo a sábado.
    """
    first = anchor.replace(day=1)
    next_month = (first + timedelta(days=32)).replace(day=1)
    last = next_month - timedelta(days=1)

    start = first - timedelta(days=(first.weekday() + 1) % 7)
    end = last + timedelta(days=(5 - last.weekday()) % 7)
    return start, end


# =============================================================================
# ===================== FORMAS DE REGLA =======================================
# =============================================================================
# El formulario de planes ofrece tres formas cómodas más "sin repetición".
# Cada forma se convierte en texto de regla y vuelve a reconocerse al leerla.

def weekly_rule(weekdays: list[str]) -> str:
    """["MO", "WE", "FR"] → "FREQ=WEEKLY;BYDAY=MO,WE,FR" """
    codes = []
    for day in weekdays or []:
        code = str(day).strip().upper()
        if code not in WEEKDAY_CODES:
            raise InvalidInputError(f"Día de la semana no válido: {day}")
        if code not in codes:
            codes.append(code)
    if not codes:
        raise InvalidInputError("Seleccione al menos un día de repetición")
    return f"FREQ=WEEKLY;BYDAY={','.join(codes)}"


def daily_rule(interval: Optional[int] = 1) -> str:
    """Intervalo < 1 se corrige a 1"""
    try:
        interval = max(1, int(interval or 1))
    except (TypeError, ValueError):
        interval = 1
    return "FREQ=DAILY" if interval == 1 else f"FREQ=DAILY;INTERVAL={interval}"


def custom_rule(text: Optional[str]) -> str:
    cleaned = (text or "").strip()
    if not cleaned:
        raise InvalidInputError("Escriba la regla de repetición personalizada")
    return cleaned


def build_rule(mode: str, weekdays: Optional[list[str]] = None,
               interval: Optional[int] = 1, custom: Optional[str] = None) -> Optional[str]:
    if mode == "none":
        return None
    if mode == "weekly":
        return weekly_rule(weekdays or [])
    if mode == "daily_interval":
        return daily_rule(interval)
    if mode == "custom":
        return custom_rule(custom)
    raise InvalidInputError(f"Modo de repetición no válido: {mode}")


def describe_rule(rule: Optional[str]) -> dict:
    """
    Reconoce la forma de una regla guardada.
    Las reglas que no encajan exactamente en "weekly" o "daily_interval"
    se devuelven como "custom" con el texto original.
    """
    text = (rule or "").strip()
    if not text:
        return {"mode": "none", "weekdays": [], "interval": 1, "custom": ""}

    body = text[len("RRULE:"):] if text.upper().startswith("RRULE:") else text
    parts = {}
    for chunk in body.split(";"):
        if "=" not in chunk:
            parts = None
            break
        key, value = chunk.split("=", 1)
        parts[key.strip().upper()] = value.strip().upper()

    if parts:
        freq = parts.get("FREQ")
        keys = set(parts)

        if freq == "WEEKLY" and keys == {"FREQ", "BYDAY"}:
            days = [d.strip() for d in parts["BYDAY"].split(",") if d.strip()]
            if days and all(d in WEEKDAY_CODES for d in days):
                return {"mode": "weekly", "weekdays": days, "interval": 1, "custom": ""}

        if freq == "DAILY" and keys <= {"FREQ", "INTERVAL"}:
            raw = parts.get("INTERVAL", "1")
            if raw.isdigit():
                return {"mode": "daily_interval", "weekdays": [], "interval": max(1, int(raw)), "custom": ""}

    return {"mode": "custom", "weekdays": [], "interval": 1, "custom": text}
