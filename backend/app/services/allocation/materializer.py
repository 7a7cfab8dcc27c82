"""
Slot materializer: expand active schedule definitions into slot_instances over a rolling horizon.

Safe to re-run and to run concurrently: every slot is checked by (offering_id, start_at)
before insert, and the unique constraint backs that check up. A failure in one definition
is logged and does not stop the others.
"""
import logging
from datetime import date, datetime, time, timedelta

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.config import settings
from app.core.constants import SCHEDULE_RECURRENCE, SCHEDULE_SERVICE_PERIOD, SLOT_AVAILABLE, SLOT_CANCELLED, SLOT_FULL
from app.core.errors import InvalidScheduleDefinition, RecurrenceExpansionError
from app.core.timeutil import utcnow
from app.db.session import SessionFactory, session_scope
from app.models.offering import Offering
from app.models.schedule_definition import ScheduleDefinition
from app.models.slot_instance import SlotInstance
from app.services.allocation.capacity_mode import CapacityMode, capacity_mode_for
from app.services.allocation.recurrence import RecurrenceRule, expand

logger = logging.getLogger(__name__)

# Attempts per definition when a concurrent run inserts the same slot first.
_MAX_ATTEMPTS = 2


def validate_service_period(definition: ScheduleDefinition) -> None:
    if definition.start_time is None or definition.end_time is None:
        raise InvalidScheduleDefinition("Service period needs start_time and end_time")
    if definition.start_time >= definition.end_time:
        raise InvalidScheduleDefinition("start_time must be before end_time")
    if not definition.interval_minutes or definition.interval_minutes <= 0:
        raise InvalidScheduleDefinition("interval_minutes must be positive")
    if definition.max_per_slot is None or definition.max_per_slot < 0:
        raise InvalidScheduleDefinition("max_per_slot must be >= 0")
    if definition.last_seating is not None and not (
        definition.start_time <= definition.last_seating <= definition.end_time
    ):
        raise InvalidScheduleDefinition("last_seating must fall within the service window")
    for d in definition.days_of_week or []:
        if not 0 <= int(d) <= 6:
            raise InvalidScheduleDefinition(f"days_of_week value out of range: {d!r}")


def rule_from_definition(definition: ScheduleDefinition) -> RecurrenceRule:
    return RecurrenceRule(
        frequency=(definition.frequency or "").upper(),
        dtstart=definition.dtstart,
        interval=definition.recurrence_interval or 1,
        count=definition.count,
        until=definition.until,
        by_weekday=tuple(definition.by_weekday or ()),
        by_month_day=tuple(definition.by_month_day or ()),
        by_month=tuple(definition.by_month or ()),
    )


def service_period_starts(definition: ScheduleDefinition, day: date) -> list[datetime]:
    """Seating times on `day`: start_time stepped by interval up to last_seating (or before end_time)."""
    if day.weekday() not in {int(d) for d in (definition.days_of_week or [])}:
        return []
    step = timedelta(minutes=definition.interval_minutes)
    current = datetime.combine(day, definition.start_time)
    if definition.last_seating is not None:
        last = datetime.combine(day, definition.last_seating)
        within = lambda t: t <= last  # noqa: E731
    else:
        end = datetime.combine(day, definition.end_time)
        within = lambda t: t < end  # noqa: E731
    out = []
    while within(current):
        out.append(current)
        current += step
    return out


def occurrences(definition: ScheduleDefinition, start: date, end: date) -> list[tuple[datetime, datetime]]:
    """(start_at, end_at) pairs implied by the definition for days in [start, end]."""
    if definition.kind == SCHEDULE_RECURRENCE:
        if definition.max_per_slot is None or definition.max_per_slot < 0:
            raise InvalidScheduleDefinition("max_per_slot must be >= 0")
        duration = timedelta(minutes=definition.duration_minutes or 120)
        window_start = datetime.combine(start, time.min)
        window_end = datetime.combine(end, time.max)
        return [(occ, occ + duration) for occ in expand(rule_from_definition(definition), window_start, window_end)]
    if definition.kind != SCHEDULE_SERVICE_PERIOD:
        raise InvalidScheduleDefinition(f"Unknown schedule kind {definition.kind!r}")
    validate_service_period(definition)
    step = timedelta(minutes=definition.interval_minutes)
    out = []
    day = start
    while day <= end:
        out.extend((s, s + step) for s in service_period_starts(definition, day))
        day += timedelta(days=1)
    return out


class SlotMaterializer:
    def __init__(self, session_factory: SessionFactory, horizon_days: int | None = None):
        self.session_factory = session_factory
        self.horizon_days = horizon_days if horizon_days is not None else settings.materialize_horizon_days

    def materialize_definition(
        self,
        db: Session,
        definition: ScheduleDefinition,
        start: date,
        end: date,
        mode: CapacityMode,
    ) -> int:
        """Insert missing slots for one definition in [start, end]. Returns how many were created."""
        capacity = mode.slot_capacity(definition)
        # Expanded up front so a bad definition fails before anything is flushed.
        planned = occurrences(definition, start, end)
        created = 0
        for start_at, end_at in planned:
            exists = (
                db.query(SlotInstance.id)
                .filter(SlotInstance.offering_id == definition.offering_id, SlotInstance.start_at == start_at)
                .first()
            )
            if exists:
                continue
            db.add(
                SlotInstance(
                    offering_id=definition.offering_id,
                    schedule_definition_id=definition.id,
                    slot_date=start_at.date(),
                    start_at=start_at,
                    end_at=end_at,
                    total_capacity=capacity,
                    remaining_capacity=capacity,
                    status=SLOT_AVAILABLE if capacity > 0 else SLOT_FULL,
                )
            )
            # Flush per slot so the existence check sees slots from overlapping definitions.
            db.flush()
            created += 1
        return created

    def _run_one(self, definition_id: int, start: date, end: date, now: datetime) -> int:
        for attempt in range(1, _MAX_ATTEMPTS + 1):
            try:
                with session_scope(self.session_factory) as db:
                    definition = db.get(ScheduleDefinition, definition_id)
                    offering = db.get(Offering, definition.offering_id)
                    mode = capacity_mode_for(db, offering)
                    created = self.materialize_definition(db, definition, start, end, mode)
                    watermark = datetime.combine(end, time.min)
                    if definition.last_generated is None or definition.last_generated < watermark:
                        definition.last_generated = watermark
                    return created
            except IntegrityError:
                if attempt == _MAX_ATTEMPTS:
                    raise
                logger.info("Definition %s raced another run; retrying (attempt %s)", definition_id, attempt)
        return 0

    def materialize_upcoming_slots(self, today: date | None = None, now: datetime | None = None) -> dict:
        """
        Periodic entry point: fill the horizon for every active definition.
        Returns {definitions, created, failed}.
        """
        now = now or utcnow()
        today = today or now.date()
        horizon_end = today + timedelta(days=self.horizon_days)
        db = self.session_factory()
        try:
            rows = (
                db.query(ScheduleDefinition.id, ScheduleDefinition.last_generated)
                .join(Offering, Offering.id == ScheduleDefinition.offering_id)
                .filter(ScheduleDefinition.is_active.is_(True), Offering.is_active.is_(True))
                .order_by(ScheduleDefinition.id.asc())
                .all()
            )
        finally:
            db.close()

        created = 0
        failed: list[int] = []
        for definition_id, last_generated in rows:
            # Watermark only narrows the window; existence checks keep it correct either way.
            start = today
            if last_generated is not None and last_generated.date() > today:
                start = min(last_generated.date(), horizon_end)
            try:
                created += self._run_one(definition_id, start, horizon_end, now)
            except Exception as e:
                failed.append(definition_id)
                logger.exception("Slot generation failed for schedule definition %s: %s", definition_id, e)
        logger.info(
            "Materialized %s slots from %s definitions (%s failed) through %s",
            created,
            len(rows),
            len(failed),
            horizon_end,
        )
        return {"definitions": len(rows), "created": created, "failed": failed}

    def ensure_slots_for_date(self, db: Session, offering_id: int, day: date) -> int:
        """
        Lazy path for availability queries: generate the day's slots from active definitions
        when none exist yet. Runs in the caller's transaction. Returns how many were created.
        """
        offering = db.get(Offering, offering_id)
        if offering is None:
            return 0
        mode = capacity_mode_for(db, offering)
        definitions = (
            db.query(ScheduleDefinition)
            .filter(ScheduleDefinition.offering_id == offering_id, ScheduleDefinition.is_active.is_(True))
            .order_by(ScheduleDefinition.id.asc())
            .all()
        )
        created = 0
        for definition in definitions:
            try:
                created += self.materialize_definition(db, definition, day, day, mode)
            except (InvalidScheduleDefinition, RecurrenceExpansionError) as e:
                logger.warning("Skipping schedule definition %s for %s: %s", definition.id, day, e)
        return created


def slots_for_date(db: Session, offering_id: int, day: date) -> list[SlotInstance]:
    return (
        db.query(SlotInstance)
        .filter(
            SlotInstance.offering_id == offering_id,
            SlotInstance.slot_date == day,
            SlotInstance.status != SLOT_CANCELLED,
        )
        .order_by(SlotInstance.start_at.asc())
        .all()
    )
