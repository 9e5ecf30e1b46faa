"""
=============================================================================
PLANS.PY — Planes de Entrenamiento, Bloqueo y Overrides
=============================================================================
Tres piezas que trabajan juntas:

  1. RELOJ DE BLOQUEO
     El plan de un día se bloquea a las 10:00 hora local del usuario.
     La zona se lee del perfil del usuario en cada comprobación.

  2. REGISTRO DE OVERRIDES
     Un override es un justificante (periodo, clima u otro motivo) que
     autoriza UNA edición o borrado de un plan ya bloqueado.
     Solo se añaden, nunca se modifican ni se borran.

  3. OPERACIONES SOBRE PLANES
     Crear → sin comprobar bloqueo.
     Editar / Borrar:
       - Solo el dueño. Si no es tuyo → PlanNotFoundError (igual que si
         no existiera, para no revelar qué planes existen).
       - Sin override → se comprueba el bloqueo del día objetivo
         (for_date explícito o, si no, start_date del plan).
       - Con override → no se comprueba el bloqueo; la edición y el
         override se guardan en la MISMA transacción.
       - Editar reemplaza todo: lo que no se envía queda a NULL.

Estados por (plan, día):
  DESBLOQUEADO ──10:00 local──→ BLOQUEADO ──override──→ edición autorizada
"""

import logging
from datetime import date, datetime, time
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from config import LOCK_HOUR, OVERRIDE_REASONS, REFERENCE_TIMEZONE
from errors import InvalidInputError, PlanLockedError, PlanNotFoundError, UpstreamError
from models import Plan, PlanOverride, User
from recurrence import group_occurrences, month_window, normalize_rule
from utils import as_aware, get_timezone, local_today, parse_date

logger = logging.getLogger("fitrooms.plans")

TITLE_MIN_LENGTH = 2
TITLE_MAX_LENGTH = 100


# =============================================================================
# ===================== RELOJ DE BLOQUEO ======================================
# =============================================================================

def lock_instant(plan_date: date, tz_name: Optional[str]) -> datetime:
    """
    Instante (con zona) a partir del cual el plan de 'plan_date' queda
    bloqueado: las LOCK_HOUR:00 de ese día en la zona del usuario.

    Se usa localize() y no replace(tzinfo=...) porque con pytz replace
    tomaría el desfase histórico (LMT) de la zona.
    """
    tz = get_timezone(tz_name)
    return tz.localize(datetime.combine(plan_date, time(LOCK_HOUR, 0)))


def is_locked(plan_date: date, tz_name: Optional[str], now: Optional[datetime] = None) -> bool:
    return as_aware(now) >= lock_instant(plan_date, tz_name)


def lock_status(db: Session, user: User, plan_id: int,
                for_date: Optional[date] = None, now: Optional[datetime] = None) -> dict:
    """Estado de bloqueo de un plan para un día (por defecto, su start_date)"""
    plan = get_owned_plan(db, user, plan_id)
    target = for_date or plan.start_date
    instant = lock_instant(target, user.timezone)
    return {
        "plan_id": plan.id,
        "for_date": target,
        "timezone": user.timezone or REFERENCE_TIMEZONE,
        "lock_instant": instant,
        "locked": as_aware(now) >= instant,
        "override_reasons": list(OVERRIDE_REASONS),
    }


# =============================================================================
# ===================== REGISTRO DE OVERRIDES =================================
# =============================================================================

def clean_override(reason: str, note: Optional[str]) -> tuple:
    """
    Valida motivo y nota. Devuelve (reason, note) listos para guardar.
      - reason debe ser "period", "weather" u "other"
      - "other" exige nota no vacía
      - la nota se guarda sin espacios sobrantes; vacía → None
    """
    if reason not in OVERRIDE_REASONS:
        raise InvalidInputError(f"Motivo de override no válido: {reason}")
    cleaned = (note or "").strip() or None
    if reason == "other" and not cleaned:
        raise InvalidInputError("El motivo 'other' necesita una nota")
    return reason, cleaned


def record_override(db: Session, plan_id: int, user_id: int, reason: str,
                    for_date: date, note: Optional[str] = None) -> PlanOverride:
    """
    Añade un override al registro. No comprueba si el plan estaba
    bloqueado (eso es cosa de quien llama) y no hace commit.
    """
    reason, note = clean_override(reason, note)
    override = PlanOverride(
        plan_id=plan_id,
        user_id=user_id,
        reason=reason,
        for_date=for_date,
        note=note,
    )
    db.add(override)
    db.flush()
    logger.info(f"📝 Override registrado: plan {plan_id}, {for_date}, motivo {reason}")
    return override


def newest_first(overrides) -> list:
    """Más reciente primero; sin created_at se ordena por for_date"""
    return sorted(
        overrides,
        key=lambda o: (o.created_at is not None, o.created_at or datetime.min, o.for_date, o.id or 0),
        reverse=True,
    )


def list_overrides(db: Session, user: User, plan_id: int) -> list[PlanOverride]:
    plan = get_owned_plan(db, user, plan_id)
    return newest_first(plan.overrides)


# =============================================================================
# ===================== VALIDACIÓN ============================================
# =============================================================================

def clean_plan_fields(title: str, start_date, end_date=None, recurrence_rule: Optional[str] = None) -> dict:
    """
    Valida los campos de un plan ANTES de tocar la base de datos.
      - título de 2 a 100 caracteres (sin espacios sobrantes)
      - fechas en formato YYYY-MM-DD
      - end_date >= start_date
      - la regla de repetición debe poder interpretarse
    """
    cleaned_title = (title or "").strip()
    if not TITLE_MIN_LENGTH <= len(cleaned_title) <= TITLE_MAX_LENGTH:
        raise InvalidInputError(
            f"El título debe tener entre {TITLE_MIN_LENGTH} y {TITLE_MAX_LENGTH} caracteres"
        )

    start = parse_date(start_date, "start_date")
    if start is None:
        raise InvalidInputError("start_date es obligatorio")
    end = parse_date(end_date, "end_date")
    if end is not None and end < start:
        raise InvalidInputError("end_date no puede ser anterior a start_date")

    return {
        "title": cleaned_title,
        "start_date": start,
        "end_date": end,
        "recurrence_rule": normalize_rule(recurrence_rule, start),
    }


# =============================================================================
# ===================== OPERACIONES SOBRE PLANES ==============================
# =============================================================================

def get_owned_plan(db: Session, user: User, plan_id: int) -> Plan:
    """El plan si existe Y es del usuario; si no, PlanNotFoundError"""
    plan = db.query(Plan).filter(Plan.id == plan_id, Plan.user_id == user.id).first()
    if plan is None:
        raise PlanNotFoundError()
    return plan


def list_plans(db: Session, user: User) -> list[Plan]:
    """Planes del usuario, los que empiezan más tarde primero"""
    return db.query(Plan).filter(Plan.user_id == user.id).order_by(
        Plan.start_date.desc(), Plan.id.desc()
    ).all()


def plan_calendar(db: Session, user: User, start: Optional[date] = None,
                  end: Optional[date] = None, now: Optional[datetime] = None) -> dict:
    """
    Ocurrencias de todos los planes del usuario agrupadas por día.
    Sin ventana → el mes actual (zona de referencia) en semanas completas.
    """
    if start is None or end is None:
        default_start, default_end = month_window(local_today(REFERENCE_TIMEZONE, now))
        start = start or default_start
        end = end or default_end
    if end < start:
        raise InvalidInputError("end no puede ser anterior a start")

    days = group_occurrences(list_plans(db, user), start, end)
    return {
        "start": start,
        "end": end,
        "days": [{"date": day, "occurrences": items} for day, items in days.items()],
    }


def create_plan(db: Session, user: User, title: str, start_date, end_date=None,
                recurrence_rule: Optional[str] = None, details: Optional[dict] = None) -> Plan:
    fields = clean_plan_fields(title, start_date, end_date, recurrence_rule)

    plan = Plan(user_id=user.id, details=details, **fields)
    try:
        db.add(plan)
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"❌ Error creando plan de {user.username}: {e}")
        raise UpstreamError()
    db.refresh(plan)

    logger.info(f"➕ Plan creado: {plan.title} (user: {user.username})")
    return plan


def _check_lock(plan: Plan, user: User, target: date, override: Optional[dict], now) -> None:
    if override is not None:
        return
    instant = lock_instant(target, user.timezone)
    if as_aware(now) >= instant:
        logger.info(f"🔒 Plan {plan.id} bloqueado para {target} (user: {user.username})")
        raise PlanLockedError(plan.id, target, instant)


def _clean_override_request(override: Optional[dict]) -> Optional[dict]:
    """Valida el override que acompaña a una edición/borrado (o None)"""
    if override is None:
        return None
    reason, note = clean_override(override.get("reason"), override.get("note"))
    return {
        "reason": reason,
        "note": note,
        "for_date": parse_date(override.get("for_date"), "for_date"),
    }


def update_plan(db: Session, user: User, plan_id: int, title: str, start_date,
                end_date=None, recurrence_rule: Optional[str] = None,
                details: Optional[dict] = None, for_date=None,
                override: Optional[dict] = None, now: Optional[datetime] = None) -> Plan:
    """
    Reemplaza los campos del plan.

    override → {"reason": ..., "note": ..., "for_date": ...} o None.
    El día que se comprueba es for_date si se envía; si no, el start_date
    actual del plan. El override se guarda para su propio for_date o,
    si no lo trae, para ese mismo día.
    """
    fields = clean_plan_fields(title, start_date, end_date, recurrence_rule)
    target_date = parse_date(for_date, "for_date")
    override = _clean_override_request(override)

    plan = get_owned_plan(db, user, plan_id)
    target = target_date or plan.start_date
    _check_lock(plan, user, target, override, now)

    try:
        for key, value in fields.items():
            setattr(plan, key, value)
        plan.details = details
        if override is not None:
            record_override(db, plan.id, user.id, override["reason"],
                            override["for_date"] or target, override["note"])
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"❌ Error actualizando plan {plan_id}: {e}")
        raise UpstreamError()
    db.refresh(plan)

    logger.info(f"✏️ Plan actualizado: {plan.title} (user: {user.username})")
    return plan


def delete_plan(db: Session, user: User, plan_id: int, for_date=None,
                override: Optional[dict] = None, now: Optional[datetime] = None) -> dict:
    """
    Borra el plan. Con override, el override se escribe primero y el
    borrado después, todo en la misma transacción. El override sobrevive
    al plan (plan_id queda a NULL).
    """
    target_date = parse_date(for_date, "for_date")
    override = _clean_override_request(override)

    plan = get_owned_plan(db, user, plan_id)
    target = target_date or plan.start_date
    _check_lock(plan, user, target, override, now)

    override_id = None
    try:
        if override is not None:
            record = record_override(db, plan.id, user.id, override["reason"],
                                     override["for_date"] or target, override["note"])
            override_id = record.id
        db.delete(plan)
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"❌ Error borrando plan {plan_id}: {e}")
        raise UpstreamError()

    logger.info(f"🗑️ Plan borrado: {plan_id} (user: {user.username})")
    return {"deleted": plan_id, "override_id": override_id}


def request_override(db: Session, user: User, plan_id: int, reason: str,
                     note: Optional[str] = None, for_date=None) -> PlanOverride:
    """Override suelto, sin editar el plan (por defecto para su start_date)"""
    reason, note = clean_override(reason, note)
    target_date = parse_date(for_date, "for_date")

    plan = get_owned_plan(db, user, plan_id)
    try:
        override = record_override(db, plan.id, user.id, reason, target_date or plan.start_date, note)
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"❌ Error guardando override del plan {plan_id}: {e}")
        raise UpstreamError()
    db.refresh(override)
    return override
