"""
Schedule definitions: host-facing create / update / deactivate / list.

Only the offering's host may touch its definitions. Definitions are never deleted while
slots reference them; deactivate stops future generation. Any edit clears the generation
watermark so the next materializer run re-walks the whole horizon.
"""
import logging
from typing import Any

from sqlalchemy.orm import Session

from app.core.constants import SCHEDULE_RECURRENCE, SCHEDULE_SERVICE_PERIOD
from app.core.errors import (
    InvalidScheduleDefinition,
    OfferingNotFound,
    RecurrenceExpansionError,
    ScheduleDefinitionNotFound,
    Unauthorized,
)
from app.core.timeutil import utcnow
from app.models.offering import Offering
from app.models.schedule_definition import ScheduleDefinition
from app.services.allocation.materializer import rule_from_definition, validate_service_period
from app.services.allocation.recurrence import validate_rule

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = (
    "name",
    "kind",
    "max_per_slot",
    "days_of_week",
    "start_time",
    "end_time",
    "last_seating",
    "interval_minutes",
    "frequency",
    "recurrence_interval",
    "dtstart",
    "count",
    "until",
    "by_weekday",
    "by_month_day",
    "by_month",
    "duration_minutes",
)
LIST_FIELDS = ("days_of_week", "by_weekday", "by_month_day", "by_month")


def validate_definition(definition: ScheduleDefinition) -> None:
    """Raise InvalidScheduleDefinition if the definition cannot produce slots."""
    if definition.kind == SCHEDULE_SERVICE_PERIOD:
        validate_service_period(definition)
        return
    if definition.kind != SCHEDULE_RECURRENCE:
        raise InvalidScheduleDefinition(f"Unknown schedule kind {definition.kind!r}")
    if definition.max_per_slot is None or definition.max_per_slot < 0:
        raise InvalidScheduleDefinition("max_per_slot must be >= 0")
    if not definition.duration_minutes or definition.duration_minutes <= 0:
        raise InvalidScheduleDefinition("duration_minutes must be positive")
    try:
        validate_rule(rule_from_definition(definition))
    except RecurrenceExpansionError as e:
        raise InvalidScheduleDefinition(str(e)) from e


def _owned_offering(db: Session, host_id: str, offering_id: int) -> Offering:
    offering = db.get(Offering, offering_id)
    if offering is None:
        raise OfferingNotFound(offering_id)
    if offering.host_id != host_id:
        raise Unauthorized(f"Host {host_id} does not own offering {offering_id}")
    return offering


def _owned_definition(db: Session, host_id: str, offering_id: int, definition_id: int) -> ScheduleDefinition:
    _owned_offering(db, host_id, offering_id)
    definition = db.get(ScheduleDefinition, definition_id)
    if definition is None or definition.offering_id != offering_id:
        raise ScheduleDefinitionNotFound(definition_id)
    return definition


def create_schedule_definition(db: Session, host_id: str, offering_id: int, data: dict[str, Any]) -> ScheduleDefinition:
    _owned_offering(db, host_id, offering_id)
    definition = ScheduleDefinition(offering_id=offering_id, is_active=True)
    for field in EDITABLE_FIELDS:
        if data.get(field) is not None:
            setattr(definition, field, data[field])
    definition.kind = definition.kind or SCHEDULE_SERVICE_PERIOD
    if definition.kind == SCHEDULE_SERVICE_PERIOD and definition.interval_minutes is None:
        definition.interval_minutes = 30
    if definition.kind == SCHEDULE_RECURRENCE:
        definition.recurrence_interval = definition.recurrence_interval or 1
        definition.duration_minutes = definition.duration_minutes or 120
    validate_definition(definition)
    db.add(definition)
    db.commit()
    db.refresh(definition)
    logger.info("Schedule definition %s created for offering %s (%s)", definition.id, offering_id, definition.kind)
    return definition


def update_schedule_definition(
    db: Session,
    host_id: str,
    offering_id: int,
    definition_id: int,
    data: dict[str, Any],
) -> ScheduleDefinition:
    """Partial update. Fields absent from `data` are left alone."""
    definition = _owned_definition(db, host_id, offering_id, definition_id)
    for field in EDITABLE_FIELDS:
        if field in data:
            value = data[field]
            if value is None and field in LIST_FIELDS:
                value = []
            setattr(definition, field, value)
    try:
        validate_definition(definition)
    except InvalidScheduleDefinition:
        db.rollback()
        raise
    definition.last_generated = None
    definition.updated_at = utcnow()
    db.commit()
    db.refresh(definition)
    logger.info("Schedule definition %s updated", definition_id)
    return definition


def deactivate_schedule_definition(db: Session, host_id: str, offering_id: int, definition_id: int) -> ScheduleDefinition:
    definition = _owned_definition(db, host_id, offering_id, definition_id)
    definition.is_active = False
    definition.updated_at = utcnow()
    db.commit()
    db.refresh(definition)
    logger.info("Schedule definition %s deactivated", definition_id)
    return definition


def list_schedule_definitions(
    db: Session,
    host_id: str,
    offering_id: int,
    include_inactive: bool = False,
) -> list[ScheduleDefinition]:
    _owned_offering(db, host_id, offering_id)
    q = db.query(ScheduleDefinition).filter(ScheduleDefinition.offering_id == offering_id)
    if not include_inactive:
        q = q.filter(ScheduleDefinition.is_active.is_(True))
    return q.order_by(ScheduleDefinition.id.asc()).all()


def definition_to_dict(d: ScheduleDefinition) -> dict[str, Any]:
    def _iso(v: Any) -> Any:
        return v.isoformat() if v is not None and hasattr(v, "isoformat") else v

    return {
        "id": d.id,
        "offering_id": d.offering_id,
        "name": d.name,
        "kind": d.kind,
        "max_per_slot": d.max_per_slot,
        "is_active": d.is_active,
        "days_of_week": d.days_of_week or [],
        "start_time": _iso(d.start_time),
        "end_time": _iso(d.end_time),
        "last_seating": _iso(d.last_seating),
        "interval_minutes": d.interval_minutes,
        "frequency": d.frequency,
        "recurrence_interval": d.recurrence_interval,
        "dtstart": _iso(d.dtstart),
        "count": d.count,
        "until": _iso(d.until),
        "by_weekday": d.by_weekday or [],
        "by_month_day": d.by_month_day or [],
        "by_month": d.by_month or [],
        "duration_minutes": d.duration_minutes,
        "last_generated": _iso(d.last_generated),
    }
