"""
Booking status transitions shared by the allocator, the webhook handlers and the reaper.

A transition is a conditional UPDATE on the expected prior state, so two writers racing
on the same booking cannot both win. Capacity is released in the same transaction as the
status flip that pays for it.
"""
import logging

from sqlalchemy.orm import Session

from app.core.constants import RELEASABLE_STATUSES
from app.core.errors import BookingNotFound, DoubleReleaseGuard, ModificationNotAllowed
from app.core.timeutil import utcnow
from app.models.booking import Booking
from app.models.booking_modification import BookingModification
from app.services.allocation.ledger import CapacityLedger

logger = logging.getLogger(__name__)

_RELEASE_ATTEMPTS = 3


def get_booking(db: Session, booking_id: int) -> Booking:
    booking = db.get(Booking, booking_id)
    if booking is None:
        raise BookingNotFound(booking_id)
    return booking


def transition(
    db: Session,
    booking_id: int,
    from_statuses: tuple[str, ...],
    values: dict,
    *,
    payment_statuses: tuple[str, ...] | None = None,
    seats: tuple[int, int] | None = None,
) -> bool:
    """
    Apply `values` only if the booking is still in one of `from_statuses` (and, when given,
    still holds `seats` as (slot_id, party_size)). Returns True if it was.
    """
    q = db.query(Booking).filter(Booking.id == booking_id, Booking.status.in_(from_statuses))
    if payment_statuses is not None:
        q = q.filter(Booking.payment_status.in_(payment_statuses))
    if seats is not None:
        q = q.filter(Booking.slot_id == seats[0], Booking.party_size == seats[1])
    values = dict(values)
    values[Booking.updated_at] = utcnow()
    updated = q.update(values, synchronize_session=False)
    cached = db.identity_map.get(db.identity_key(Booking, booking_id)) if updated else None
    if cached is not None:
        db.expire(cached)
    return bool(updated)


def record_modification(
    db: Session,
    booking_id: int,
    modification_type: str,
    *,
    old_value: dict | None = None,
    new_value: dict | None = None,
    reason: str | None = None,
    modified_by: str = "system",
    refund_amount_cents: int | None = None,
    refund_status: str | None = None,
) -> BookingModification:
    mod = BookingModification(
        booking_id=booking_id,
        modification_type=modification_type,
        old_value=old_value,
        new_value=new_value,
        reason=reason,
        modified_by=modified_by,
        refund_amount_cents=refund_amount_cents,
        refund_status=refund_status,
    )
    db.add(mod)
    db.flush()
    return mod


def release_booking(
    db: Session,
    booking_id: int,
    values: dict,
    *,
    from_statuses: tuple[str, ...] = RELEASABLE_STATUSES,
    payment_statuses: tuple[str, ...] | None = None,
) -> Booking:
    """
    Flip a booking out of a capacity-holding state and give its seats back, in the caller's
    transaction. Raises DoubleReleaseGuard when the booking already left `from_statuses`.

    The flip is also conditional on the seats read (slot and party size), so a party size
    or slot change committed in between makes it re-read instead of releasing stale seats.
    """
    booking = get_booking(db, booking_id)
    for attempt in range(1, _RELEASE_ATTEMPTS + 1):
        slot_id, party_size = booking.slot_id, booking.party_size
        if transition(
            db,
            booking_id,
            from_statuses,
            values,
            payment_statuses=payment_statuses,
            seats=(slot_id, party_size),
        ):
            CapacityLedger(db).release(slot_id, party_size)
            db.refresh(booking)
            return booking
        db.refresh(booking)
        still_held = booking.status in from_statuses and (
            payment_statuses is None or booking.payment_status in payment_statuses
        )
        if not still_held:
            raise DoubleReleaseGuard(booking_id, booking.status)
        logger.info("Booking %s seats changed during release; re-reading (attempt %s)", booking_id, attempt)
    raise ModificationNotAllowed("Booking changed concurrently; retry")
