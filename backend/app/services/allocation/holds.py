"""
Checkout holds: short-lived placeholders created while a guest is on the payment page.

Holds never touch remaining_capacity. They only lower the spots reported to other guests
and checked when another hold is taken. A booking consumes its session's hold.
"""
import logging
from datetime import datetime, timedelta

from sqlalchemy import func
from sqlalchemy.orm import Session

from app.config import settings
from app.core.constants import SLOT_CANCELLED
from app.core.errors import InsufficientCapacity, InvalidPartySize, SlotNotFound, SlotUnavailable
from app.core.timeutil import utcnow
from app.db.session import SessionFactory, session_scope
from app.models.booking_hold import BookingHold
from app.models.slot_instance import SlotInstance

logger = logging.getLogger(__name__)


def held_seats(db: Session, slot_id: int, now: datetime, exclude_session: str | None = None) -> int:
    q = db.query(func.coalesce(func.sum(BookingHold.party_size), 0)).filter(
        BookingHold.slot_id == slot_id,
        BookingHold.expires_at > now,
    )
    if exclude_session:
        q = q.filter(BookingHold.session_id != exclude_session)
    return int(q.scalar() or 0)


def held_by_slot(db: Session, slot_ids: list[int], now: datetime) -> dict[int, int]:
    if not slot_ids:
        return {}
    rows = (
        db.query(BookingHold.slot_id, func.sum(BookingHold.party_size))
        .filter(BookingHold.slot_id.in_(slot_ids), BookingHold.expires_at > now)
        .group_by(BookingHold.slot_id)
        .all()
    )
    return {slot_id: int(total or 0) for slot_id, total in rows}


def consume_hold(db: Session, session_id: str) -> int:
    """Drop every hold of the session inside the booking transaction. Returns rows deleted."""
    return (
        db.query(BookingHold)
        .filter(BookingHold.session_id == session_id)
        .delete(synchronize_session=False)
    )


def delete_expired_holds(db: Session, now: datetime) -> int:
    return (
        db.query(BookingHold)
        .filter(BookingHold.expires_at <= now)
        .delete(synchronize_session=False)
    )


class HoldService:
    def __init__(self, session_factory: SessionFactory, hold_minutes: int | None = None):
        self.session_factory = session_factory
        self.hold_minutes = hold_minutes if hold_minutes is not None else settings.checkout_hold_minutes

    def create_hold(self, slot_id: int, party_size: int, session_id: str, now: datetime | None = None) -> BookingHold:
        """
        Hold party_size seats for the checkout session. Replaces the session's previous hold.
        Raises InsufficientCapacity when remaining minus other sessions' holds is too small.
        """
        now = now or utcnow()
        session_id = (session_id or "").strip()
        if not session_id:
            raise InvalidPartySize("session_id is required")
        if party_size < 1:
            raise InvalidPartySize(f"Party size must be at least 1, got {party_size}")
        with session_scope(self.session_factory) as db:
            # Delete first: the write takes the database lock before the availability read.
            consume_hold(db, session_id)
            slot = db.get(SlotInstance, slot_id)
            if slot is None:
                raise SlotNotFound(slot_id)
            if slot.status == SLOT_CANCELLED:
                raise SlotUnavailable(slot_id)
            available = slot.remaining_capacity - held_seats(db, slot_id, now, exclude_session=session_id)
            if party_size > available:
                raise InsufficientCapacity(slot_id, party_size, max(available, 0))
            hold = BookingHold(
                slot_id=slot_id,
                session_id=session_id,
                party_size=party_size,
                expires_at=now + timedelta(minutes=self.hold_minutes),
            )
            db.add(hold)
            db.flush()
            logger.info("Hold %s: %s seats on slot %s for session %s", hold.id, party_size, slot_id, session_id)
            return hold

    def release_hold(self, session_id: str) -> int:
        with session_scope(self.session_factory) as db:
            deleted = consume_hold(db, session_id)
        if deleted:
            logger.info("Released %s hold(s) for session %s", deleted, session_id)
        return deleted
