from datetime import datetime, time, timedelta

import pytest

from app.core.constants import CAPACITY_MODE_TABLE_BASED, SCHEDULE_RECURRENCE, SLOT_AVAILABLE, SLOT_CANCELLED, SLOT_FULL
from app.core.errors import OfferingNotFound
from app.db.session import session_scope
from app.models.schedule_definition import ScheduleDefinition
from app.models.slot_instance import SlotInstance
from app.services.allocation.materializer import SlotMaterializer, service_period_starts
from tests.conftest import NOW, load


def _slots(session_factory, offering_id):
    db = session_factory()
    try:
        return (
            db.query(SlotInstance)
            .filter(SlotInstance.offering_id == offering_id)
            .order_by(SlotInstance.start_at.asc())
            .all()
        )
    finally:
        db.close()


def test_service_period_starts_respect_end_and_last_seating():
    definition = ScheduleDefinition(
        days_of_week=[0],
        start_time=time(18, 0),
        end_time=time(20, 0),
        interval_minutes=30,
    )
    day = NOW.date()
    assert [t.time() for t in service_period_starts(definition, day)] == [
        time(18, 0),
        time(18, 30),
        time(19, 0),
        time(19, 30),
    ]
    definition.last_seating = time(20, 0)
    assert service_period_starts(definition, day)[-1].time() == time(20, 0)
    assert service_period_starts(definition, day + timedelta(days=1)) == []


def test_materialize_fills_horizon_once(session_factory, make_offering, make_definition):
    offering = make_offering()
    make_definition(offering.id, max_per_slot=6)
    materializer = SlotMaterializer(session_factory, horizon_days=6)

    first = materializer.materialize_upcoming_slots(today=NOW.date())
    assert first == {"definitions": 1, "created": 28, "failed": []}
    slots = _slots(session_factory, offering.id)
    assert len(slots) == 28
    assert all(s.total_capacity == 6 and s.remaining_capacity == 6 for s in slots)

    second = materializer.materialize_upcoming_slots(today=NOW.date())
    assert second["created"] == 0
    assert len(_slots(session_factory, offering.id)) == 28


def test_rerun_after_watermark_reset_creates_nothing(session_factory, make_offering, make_definition):
    offering = make_offering()
    definition = make_definition(offering.id)
    materializer = SlotMaterializer(session_factory, horizon_days=3)
    materializer.materialize_upcoming_slots(today=NOW.date())
    with session_scope(session_factory) as db:
        db.get(ScheduleDefinition, definition.id).last_generated = None
    assert materializer.materialize_upcoming_slots(today=NOW.date())["created"] == 0
    assert load(session_factory, ScheduleDefinition, definition.id).last_generated is not None


def test_weekday_mask(session_factory, make_offering, make_definition):
    offering = make_offering()
    make_definition(offering.id, days_of_week=[0])
    result = SlotMaterializer(session_factory, horizon_days=6).materialize_upcoming_slots(today=NOW.date())
    assert result["created"] == 4
    assert {s.slot_date for s in _slots(session_factory, offering.id)} == {NOW.date()}


def test_one_bad_definition_does_not_stop_others(session_factory, make_offering, make_definition):
    bad = make_definition(make_offering().id, start_time=time(22, 0), end_time=time(20, 0))
    good_offering = make_offering()
    make_definition(good_offering.id, days_of_week=[0])

    result = SlotMaterializer(session_factory, horizon_days=6).materialize_upcoming_slots(today=NOW.date())
    assert result["failed"] == [bad.id]
    assert result["created"] == 4
    assert len(_slots(session_factory, good_offering.id)) == 4


def test_inactive_definitions_are_skipped(session_factory, make_offering, make_definition):
    offering = make_offering()
    make_definition(offering.id, is_active=False)
    result = SlotMaterializer(session_factory, horizon_days=3).materialize_upcoming_slots(today=NOW.date())
    assert result["definitions"] == 0
    assert _slots(session_factory, offering.id) == []


def test_recurrence_definition(session_factory, make_offering, make_definition):
    offering = make_offering()
    make_definition(
        offering.id,
        kind=SCHEDULE_RECURRENCE,
        frequency="WEEKLY",
        dtstart=datetime.combine(NOW.date(), time(19, 0)),
        duration_minutes=90,
        max_per_slot=40,
    )
    SlotMaterializer(session_factory, horizon_days=13).materialize_upcoming_slots(today=NOW.date())
    slots = _slots(session_factory, offering.id)
    assert [s.start_at for s in slots] == [
        datetime.combine(NOW.date(), time(19, 0)),
        datetime.combine(NOW.date() + timedelta(days=7), time(19, 0)),
    ]
    assert slots[0].end_at - slots[0].start_at == timedelta(minutes=90)
    assert slots[0].total_capacity == 40


def test_table_based_capacity_comes_from_tables(session_factory, make_offering, make_definition):
    offering = make_offering(tables=(2, 4, 4), capacity_mode=CAPACITY_MODE_TABLE_BASED)
    make_definition(offering.id, days_of_week=[0], max_per_slot=99)
    SlotMaterializer(session_factory, horizon_days=0).materialize_upcoming_slots(today=NOW.date())
    assert {s.total_capacity for s in _slots(session_factory, offering.id)} == {10}


def test_overlapping_definitions_share_slots(session_factory, make_offering, make_definition):
    offering = make_offering()
    make_definition(offering.id, days_of_week=[0])
    make_definition(offering.id, days_of_week=[0], start_time=time(19, 0), end_time=time(21, 0))
    SlotMaterializer(session_factory, horizon_days=0).materialize_upcoming_slots(today=NOW.date())
    starts = [s.start_at.time() for s in _slots(session_factory, offering.id)]
    assert starts == [time(18, 0), time(18, 30), time(19, 0), time(19, 30), time(20, 0), time(20, 30)]


def test_availability_generates_missing_day_lazily(booking_engine, session_factory, make_offering, make_definition):
    offering = make_offering()
    make_definition(offering.id, days_of_week=[0], max_per_slot=8)
    day = NOW.date()

    slots = booking_engine.get_available_slots(offering.id, day)
    assert len(slots) == 4
    assert len(booking_engine.get_available_slots(offering.id, day)) == 4
    assert len(_slots(session_factory, offering.id)) == 4
    assert booking_engine.get_available_slots(offering.id, day + timedelta(days=1)) == []


def test_cancelled_slots_are_not_listed(booking_engine, make_offering, make_slot):
    offering = make_offering()
    open_slot = make_slot(offering.id)
    make_slot(offering.id, start_at=open_slot.start_at + timedelta(hours=1), status=SLOT_CANCELLED)
    slots = booking_engine.get_available_slots(offering.id, open_slot.slot_date)
    assert [s.id for s in slots] == [open_slot.id]


def test_unknown_offering(booking_engine):
    with pytest.raises(OfferingNotFound):
        booking_engine.get_available_slots(404, NOW.date())


def test_lazy_generation_skips_malformed_stored_rule(booking_engine, session_factory, make_offering, make_definition):
    offering = make_offering()
    # Written straight to the table, bypassing schedule validation.
    broken = make_definition(
        offering.id,
        kind=SCHEDULE_RECURRENCE,
        frequency="HOURLY",
        dtstart=datetime.combine(NOW.date(), time(12, 0)),
    )
    make_definition(offering.id, days_of_week=[0])

    slots = booking_engine.get_available_slots(offering.id, NOW.date())
    assert [s.start_at.time() for s in slots] == [time(18, 0), time(18, 30), time(19, 0), time(19, 30)]
    assert all(s.schedule_definition_id != broken.id for s in _slots(session_factory, offering.id))


def test_zero_capacity_slots_start_full(session_factory, make_offering, make_definition):
    offering = make_offering()
    make_definition(offering.id, days_of_week=[0], max_per_slot=0)
    SlotMaterializer(session_factory, horizon_days=0).materialize_upcoming_slots(today=NOW.date())
    slots = _slots(session_factory, offering.id)
    assert len(slots) == 4
    assert {(s.status, s.remaining_capacity) for s in slots} == {(SLOT_FULL, 0)}


def test_positive_capacity_slots_start_available(session_factory, make_offering, make_definition):
    offering = make_offering()
    make_definition(offering.id, days_of_week=[0], max_per_slot=2)
    SlotMaterializer(session_factory, horizon_days=0).materialize_upcoming_slots(today=NOW.date())
    assert {s.status for s in _slots(session_factory, offering.id)} == {SLOT_AVAILABLE}
