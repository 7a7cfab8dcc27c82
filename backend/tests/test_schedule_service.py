from datetime import datetime, time

import pytest

from app.core.errors import InvalidScheduleDefinition, OfferingNotFound, ScheduleDefinitionNotFound, Unauthorized
from app.services.schedule_service import (
    create_schedule_definition,
    deactivate_schedule_definition,
    definition_to_dict,
    list_schedule_definitions,
    update_schedule_definition,
)
from tests.conftest import HOST

DINNER = {
    "name": "Dinner",
    "max_per_slot": 20,
    "days_of_week": [3, 4, 5],
    "start_time": time(17, 30),
    "end_time": time(22, 0),
    "last_seating": time(21, 0),
}


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


def test_create_service_period_defaults(db, make_offering):
    offering = make_offering()
    row = create_schedule_definition(db, HOST, offering.id, DINNER)
    assert row.id is not None
    assert row.kind == "service_period"
    assert row.interval_minutes == 30
    assert row.is_active
    data = definition_to_dict(row)
    assert data["start_time"] == "17:30:00"
    assert data["days_of_week"] == [3, 4, 5]


def test_create_recurrence(db, make_offering):
    offering = make_offering()
    row = create_schedule_definition(
        db,
        HOST,
        offering.id,
        {"kind": "recurrence", "max_per_slot": 80, "frequency": "MONTHLY", "dtstart": datetime(2030, 1, 31, 20, 0), "by_month_day": [-1]},
    )
    assert row.recurrence_interval == 1
    assert row.duration_minutes == 120


@pytest.mark.parametrize(
    "data",
    [
        dict(DINNER, start_time=time(23, 0)),
        dict(DINNER, last_seating=time(23, 0)),
        dict(DINNER, days_of_week=[7]),
        {"kind": "recurrence", "max_per_slot": 10, "frequency": "HOURLY", "dtstart": datetime(2030, 1, 1)},
        {"kind": "recurrence", "max_per_slot": 10, "frequency": "DAILY"},
        {"kind": "weekly-ish", "max_per_slot": 10},
    ],
)
def test_create_rejects_invalid(db, make_offering, data):
    offering = make_offering()
    with pytest.raises(InvalidScheduleDefinition):
        create_schedule_definition(db, HOST, offering.id, data)


def test_only_owner_may_manage(db, make_offering):
    offering = make_offering()
    with pytest.raises(Unauthorized):
        create_schedule_definition(db, "other-host", offering.id, DINNER)
    with pytest.raises(OfferingNotFound):
        create_schedule_definition(db, HOST, 404, DINNER)


def test_update_resets_watermark(db, make_offering):
    offering = make_offering()
    row = create_schedule_definition(db, HOST, offering.id, DINNER)
    row.last_generated = datetime(2030, 4, 1)
    db.commit()

    updated = update_schedule_definition(db, HOST, offering.id, row.id, {"max_per_slot": 12, "last_seating": None})
    assert updated.max_per_slot == 12
    assert updated.last_seating is None
    assert updated.last_generated is None
    assert updated.start_time == time(17, 30)


def test_invalid_update_is_rolled_back(db, session_factory, make_offering):
    offering = make_offering()
    row = create_schedule_definition(db, HOST, offering.id, DINNER)
    with pytest.raises(InvalidScheduleDefinition):
        update_schedule_definition(db, HOST, offering.id, row.id, {"end_time": time(17, 0)})
    fresh = session_factory()
    try:
        [stored] = list_schedule_definitions(fresh, HOST, offering.id)
    finally:
        fresh.close()
    assert stored.end_time == time(22, 0)


def test_deactivate_hides_from_list(db, make_offering):
    offering = make_offering()
    keep = create_schedule_definition(db, HOST, offering.id, DINNER)
    drop = create_schedule_definition(db, HOST, offering.id, dict(DINNER, name="Lunch", start_time=time(11, 0), end_time=time(14, 0), last_seating=None))
    deactivate_schedule_definition(db, HOST, offering.id, drop.id)
    assert [d.id for d in list_schedule_definitions(db, HOST, offering.id)] == [keep.id]
    assert len(list_schedule_definitions(db, HOST, offering.id, include_inactive=True)) == 2


def test_definition_must_belong_to_offering(db, make_offering):
    first, second = make_offering(), make_offering()
    row = create_schedule_definition(db, HOST, first.id, DINNER)
    with pytest.raises(ScheduleDefinitionNotFound):
        deactivate_schedule_definition(db, HOST, second.id, row.id)
