"""
Capacity ledger: the only code that writes slot_instances.remaining_capacity.

Both operations are a single conditional UPDATE evaluated by the database, so concurrent
callers across processes serialize on the row lock instead of racing a read-then-write.
The ledger never commits; it joins the caller's transaction so the capacity change and
the booking row it pays for commit (or roll back) together.
"""
import logging

from sqlalchemy import and_, case
from sqlalchemy.orm import Session

from app.core.constants import SLOT_AVAILABLE, SLOT_CANCELLED, SLOT_FULL
from app.core.errors import InsufficientCapacity, InvalidPartySize, SlotNotFound, SlotUnavailable
from app.models.slot_instance import SlotInstance
from app.services.allocation.capacity_mode import CapacityMode

logger = logging.getLogger(__name__)


class CapacityLedger:
    def __init__(self, db: Session):
        self.db = db

    def _expire_cached(self, slot_id: int) -> None:
        # Bulk UPDATE bypasses the identity map; drop stale copies of this slot.
        for obj in list(self.db.identity_map.values()):
            if isinstance(obj, SlotInstance) and obj.id == slot_id:
                self.db.expire(obj, ["remaining_capacity", "status"])

    def remaining(self, slot_id: int) -> int:
        value = (
            self.db.query(SlotInstance.remaining_capacity)
            .filter(SlotInstance.id == slot_id)
            .scalar()
        )
        if value is None:
            raise SlotNotFound(slot_id)
        return value

    def reserve(self, slot_id: int, party_size: int, mode: CapacityMode | None = None) -> int:
        """
        Take party_size seats from the slot. Returns the remaining count.
        Raises InsufficientCapacity (nothing changed), SlotNotFound, SlotUnavailable, InvalidPartySize.
        """
        if party_size < 1:
            raise InvalidPartySize(f"Party size must be at least 1, got {party_size}")
        if mode is not None and not mode.accepts_party(party_size):
            raise InvalidPartySize(f"No table seats a party of {party_size}")

        new_remaining = SlotInstance.remaining_capacity - party_size
        updated = (
            self.db.query(SlotInstance)
            .filter(
                SlotInstance.id == slot_id,
                SlotInstance.status != SLOT_CANCELLED,
                SlotInstance.remaining_capacity >= party_size,
            )
            .update(
                {
                    SlotInstance.remaining_capacity: new_remaining,
                    SlotInstance.status: case((new_remaining == 0, SLOT_FULL), else_=SlotInstance.status),
                },
                synchronize_session=False,
            )
        )
        if not updated:
            row = (
                self.db.query(SlotInstance.status, SlotInstance.remaining_capacity)
                .filter(SlotInstance.id == slot_id)
                .first()
            )
            if row is None:
                raise SlotNotFound(slot_id)
            if row.status == SLOT_CANCELLED:
                raise SlotUnavailable(slot_id)
            raise InsufficientCapacity(slot_id, party_size, row.remaining_capacity)

        self._expire_cached(slot_id)
        remaining = self.remaining(slot_id)
        logger.debug("Reserved %s on slot %s; remaining=%s", party_size, slot_id, remaining)
        return remaining

    def release(self, slot_id: int, party_size: int) -> int:
        """
        Give party_size seats back, clamped at total_capacity. FULL flips back to AVAILABLE.
        Returns the remaining count.
        """
        if party_size < 1:
            raise InvalidPartySize(f"Party size must be at least 1, got {party_size}")

        reopened = case(
            (SlotInstance.status == SLOT_FULL, SLOT_AVAILABLE),
            else_=SlotInstance.status,
        )
        incremented = SlotInstance.remaining_capacity + party_size
        updated = (
            self.db.query(SlotInstance)
            .filter(SlotInstance.id == slot_id, incremented <= SlotInstance.total_capacity)
            .update(
                {SlotInstance.remaining_capacity: incremented, SlotInstance.status: reopened},
                synchronize_session=False,
            )
        )
        if not updated:
            # Over-release: clamp at total rather than break the bounds invariant.
            clamped = (
                self.db.query(SlotInstance)
                .filter(SlotInstance.id == slot_id)
                .update(
                    {
                        SlotInstance.remaining_capacity: SlotInstance.total_capacity,
                        SlotInstance.status: case(
                            (and_(SlotInstance.status == SLOT_FULL, SlotInstance.total_capacity > 0), SLOT_AVAILABLE),
                            else_=SlotInstance.status,
                        ),
                    },
                    synchronize_session=False,
                )
            )
            if not clamped:
                raise SlotNotFound(slot_id)
            logger.warning(
                "Release of %s on slot %s would exceed total capacity; clamped to total",
                party_size,
                slot_id,
            )

        self._expire_cached(slot_id)
        remaining = self.remaining(slot_id)
        logger.debug("Released %s on slot %s; remaining=%s", party_size, slot_id, remaining)
        return remaining
