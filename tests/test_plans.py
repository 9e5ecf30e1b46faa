"""
Tests de planes: reloj de bloqueo, registro de overrides y operaciones.

Cubre:
- lock_instant / is_locked por zona horaria
- overrides: motivos válidos, nota obligatoria en "other", orden del historial
- editar / borrar: dueño, bloqueo, override en la misma transacción
- validación antes de tocar la BD
"""

from datetime import date, datetime, timedelta, timezone

import pytest

from errors import InvalidInputError, PlanLockedError, PlanNotFoundError
from models import Plan, PlanOverride
from plans import (
    create_plan, delete_plan, is_locked, list_overrides, list_plans, lock_instant,
    lock_status, plan_calendar, record_override, request_override, update_plan
)

UTC8 = timezone(timedelta(hours=8))

BEFORE_LOCK = datetime(2024, 1, 1, 9, 0, tzinfo=UTC8)
AFTER_LOCK = datetime(2024, 1, 1, 12, 0, tzinfo=UTC8)


@pytest.fixture
def owner(make):
    return make.user("ana", timezone="Asia/Shanghai")


@pytest.fixture
def plan(db, owner):
    return create_plan(db, owner, title="Piernas", start_date="2024-01-01",
                       details={"sets": 3})


class TestLockClock:

    def test_unlocked_one_second_before_ten(self):
        now = datetime(2024, 1, 1, 9, 59, 59, tzinfo=UTC8)

        assert is_locked(date(2024, 1, 1), "Asia/Shanghai", now) is False

    def test_locked_at_ten_sharp(self):
        now = datetime(2024, 1, 1, 10, 0, 0, tzinfo=UTC8)

        assert is_locked(date(2024, 1, 1), "Asia/Shanghai", now) is True

    def test_lock_instant_follows_user_zone(self):
        instant = lock_instant(date(2024, 7, 1), "Europe/Madrid")

        assert instant.astimezone(timezone.utc) == datetime(2024, 7, 1, 8, 0, tzinfo=timezone.utc)

    def test_missing_zone_uses_reference_zone(self):
        instant = lock_instant(date(2024, 1, 1), None)

        assert instant.astimezone(timezone.utc) == datetime(2024, 1, 1, 2, 0, tzinfo=timezone.utc)

    def test_naive_now_is_read_as_utc(self):
        assert is_locked(date(2024, 1, 1), "Asia/Shanghai", datetime(2024, 1, 1, 1, 59)) is False
        assert is_locked(date(2024, 1, 1), "Asia/Shanghai", datetime(2024, 1, 1, 2, 0)) is True

    def test_lock_status_report(self, db, owner, plan):
        status = lock_status(db, owner, plan.id, now=AFTER_LOCK)

        assert status["locked"] is True
        assert status["for_date"] == date(2024, 1, 1)
        assert status["override_reasons"] == ["period", "weather", "other"]


class TestOverrideLedger:

    def test_other_without_note_is_rejected(self, db, owner, plan):
        with pytest.raises(InvalidInputError):
            record_override(db, plan.id, owner.id, "other", date(2024, 1, 1), "   ")

    def test_other_with_note_is_stored_trimmed(self, db, owner, plan):
        override = record_override(db, plan.id, owner.id, "other", date(2024, 1, 1), "  rodilla  ")
        db.commit()

        assert override.note == "rodilla"

    def test_blank_note_is_stored_as_none(self, db, owner, plan):
        override = record_override(db, plan.id, owner.id, "weather", date(2024, 1, 1), "  ")

        assert override.note is None

    def test_unknown_reason_is_rejected(self, db, owner, plan):
        with pytest.raises(InvalidInputError):
            record_override(db, plan.id, owner.id, "lazy", date(2024, 1, 1))

    def test_overrides_are_listed_newest_first(self, db, owner, plan):
        first = request_override(db, owner, plan.id, "period")
        second = request_override(db, owner, plan.id, "weather", for_date="2024-01-02")
        first.created_at = datetime(2024, 1, 1, 8, 0)
        second.created_at = datetime(2024, 1, 2, 8, 0)
        db.commit()

        history = list_overrides(db, owner, plan.id)

        assert [o.id for o in history] == [second.id, first.id]

    def test_standalone_override_defaults_to_start_date(self, db, owner, plan):
        override = request_override(db, owner, plan.id, "period")

        assert override.for_date == date(2024, 1, 1)
        assert db.query(Plan).filter(Plan.id == plan.id).one().title == "Piernas"


class TestCreateAndList:

    def test_create_trims_title_and_rule(self, db, owner):
        plan = create_plan(db, owner, "  Cardio  ", "2024-02-01", recurrence_rule="  FREQ=DAILY ")

        assert plan.title == "Cardio"
        assert plan.recurrence_rule == "FREQ=DAILY"

    def test_create_accepts_rule_with_utc_until(self, db, owner):
        plan = create_plan(db, owner, "Cardio", "2024-01-01",
                           recurrence_rule="FREQ=DAILY;UNTIL=20240105T000000Z")

        calendar = plan_calendar(db, owner, date(2024, 1, 1), date(2024, 1, 31))

        assert plan.recurrence_rule == "FREQ=DAILY;UNTIL=20240105T000000Z"
        assert len(calendar["days"]) == 5

    @pytest.mark.parametrize("kwargs", [
        {"title": "x", "start_date": "2024-01-01"},
        {"title": "Cardio", "start_date": "2024/01/01"},
        {"title": "Cardio", "start_date": "2024-02-30"},
        {"title": "Cardio", "start_date": "2024-01-10", "end_date": "2024-01-09"},
        {"title": "Cardio", "start_date": "2024-01-10", "recurrence_rule": "FREQ=NUNCA"},
        {"title": "C" * 101, "start_date": "2024-01-10"},
    ])
    def test_invalid_input_never_reaches_the_database(self, db, owner, kwargs):
        with pytest.raises(InvalidInputError):
            create_plan(db, owner, **kwargs)

        assert db.query(Plan).count() == 0

    def test_list_plans_latest_start_first(self, db, owner):
        create_plan(db, owner, "Uno", "2024-01-01")
        create_plan(db, owner, "Tres", "2024-03-01")
        create_plan(db, owner, "Dos", "2024-02-01")

        assert [p.title for p in list_plans(db, owner)] == ["Tres", "Dos", "Uno"]

    def test_list_plans_only_own(self, db, make, owner, plan):
        other = make.user("bea")

        assert list_plans(db, other) == []

    def test_calendar_groups_plans(self, db, owner):
        create_plan(db, owner, "Yoga", "2024-01-01", end_date="2024-01-03")
        create_plan(db, owner, "Carrera", "2024-01-02")

        calendar = plan_calendar(db, owner, date(2024, 1, 1), date(2024, 1, 31))

        assert [d["date"] for d in calendar["days"]] == [date(2024, 1, 1), date(2024, 1, 2), date(2024, 1, 3)]
        assert [o["title"] for o in calendar["days"][1]["occurrences"]] == ["Carrera", "Yoga"]

    def test_calendar_default_window_is_current_month(self, db, owner):
        now = datetime(2024, 2, 15, 12, 0, tzinfo=UTC8)

        calendar = plan_calendar(db, owner, now=now)

        assert calendar["start"] == date(2024, 1, 28)
        assert calendar["end"] == date(2024, 3, 2)


class TestUpdate:

    def test_locked_update_without_override_fails(self, db, owner, plan):
        with pytest.raises(PlanLockedError) as exc:
            update_plan(db, owner, plan.id, "Brazos", "2024-01-01", now=AFTER_LOCK)

        assert exc.value.for_date == date(2024, 1, 1)
        assert exc.value.plan_id == plan.id
        db.refresh(plan)
        assert plan.title == "Piernas"

    def test_locked_update_with_weather_override_appends_one_record(self, db, owner, plan):
        updated = update_plan(db, owner, plan.id, "Brazos", "2024-01-01",
                              override={"reason": "weather"}, now=AFTER_LOCK)

        overrides = db.query(PlanOverride).filter(PlanOverride.plan_id == plan.id).all()
        assert updated.title == "Brazos"
        assert len(overrides) == 1
        assert overrides[0].reason == "weather"
        assert overrides[0].for_date == date(2024, 1, 1)

    def test_override_with_other_and_no_note_blocks_the_update(self, db, owner, plan):
        with pytest.raises(InvalidInputError):
            update_plan(db, owner, plan.id, "Brazos", "2024-01-01",
                        override={"reason": "other", "note": ""}, now=AFTER_LOCK)

        db.refresh(plan)
        assert plan.title == "Piernas"
        assert db.query(PlanOverride).count() == 0

    def test_update_before_lock_needs_no_override(self, db, owner, plan):
        updated = update_plan(db, owner, plan.id, "Brazos", "2024-01-01", now=BEFORE_LOCK)

        assert updated.title == "Brazos"
        assert db.query(PlanOverride).count() == 0

    def test_explicit_for_date_is_the_one_checked(self, db, owner, plan):
        now = datetime(2024, 1, 3, 12, 0, tzinfo=UTC8)

        updated = update_plan(db, owner, plan.id, "Brazos", "2024-01-01",
                              for_date="2024-01-05", now=now)

        assert updated.title == "Brazos"

    def test_override_for_date_defaults_to_checked_day(self, db, owner, plan):
        now = datetime(2024, 1, 6, 12, 0, tzinfo=UTC8)

        update_plan(db, owner, plan.id, "Brazos", "2024-01-01", for_date="2024-01-05",
                    override={"reason": "period"}, now=now)

        assert db.query(PlanOverride).one().for_date == date(2024, 1, 5)

    def test_update_is_a_full_replace(self, db, owner):
        plan = create_plan(db, owner, "Yoga", "2030-01-01", end_date="2030-01-31",
                           recurrence_rule="FREQ=DAILY", details={"mat": True})

        updated = update_plan(db, owner, plan.id, "Yoga", "2030-01-01", now=BEFORE_LOCK)

        assert updated.end_date is None
        assert updated.recurrence_rule is None
        assert updated.details is None

    def test_other_users_plan_looks_missing(self, db, make, plan):
        intruder = make.user("eva")

        with pytest.raises(PlanNotFoundError):
            update_plan(db, intruder, plan.id, "Hack", "2024-01-01", now=BEFORE_LOCK)

    def test_missing_plan(self, db, owner):
        with pytest.raises(PlanNotFoundError):
            update_plan(db, owner, 999, "Nada", "2024-01-01", now=BEFORE_LOCK)

    def test_lock_uses_the_users_own_zone(self, db, make):
        madrid = make.user("lucia", timezone="Europe/Madrid")
        plan = create_plan(db, madrid, "Remo", "2024-01-01")
        # 12:00 en UTC+8 son las 05:00 en Madrid: aún no está bloqueado
        updated = update_plan(db, madrid, plan.id, "Remo largo", "2024-01-01", now=AFTER_LOCK)

        assert updated.title == "Remo largo"


class TestDelete:

    def test_locked_delete_without_override_fails(self, db, owner, plan):
        with pytest.raises(PlanLockedError):
            delete_plan(db, owner, plan.id, now=AFTER_LOCK)

        assert db.query(Plan).count() == 1

    def test_locked_delete_with_override_keeps_the_record(self, db, owner, plan):
        result = delete_plan(db, owner, plan.id, override={"reason": "other", "note": "lesión"},
                             now=AFTER_LOCK)

        override = db.query(PlanOverride).one()
        assert result == {"deleted": plan.id, "override_id": override.id}
        assert db.query(Plan).count() == 0
        assert override.plan_id is None
        assert override.note == "lesión"

    def test_delete_before_lock(self, db, owner, plan):
        delete_plan(db, owner, plan.id, now=BEFORE_LOCK)

        assert db.query(Plan).count() == 0
        assert db.query(PlanOverride).count() == 0

    def test_delete_other_users_plan(self, db, make, plan):
        with pytest.raises(PlanNotFoundError):
            delete_plan(db, make.user("eva"), plan.id, now=BEFORE_LOCK)
