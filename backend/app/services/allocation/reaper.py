"""
Hold/expiry reaper: the periodic sweep that reclaims capacity nobody is going to pay for.

Each run:
  1. deletes checkout holds past their expiry
  2. expires PENDING-payment bookings older than the abandonment threshold, one
     transaction per booking (status flip + seat release commit together)
  3. expires waitlist claims past their window
  4. runs one promotion per released booking and per expired claim, after commit

Overlapping runs are safe: every flip is conditional on the prior state, so a booking
released by one run is skipped by the other.
"""
import logging
from datetime import datetime, timedelta

from app.config import settings
from app.core.constants import BOOKING_CANCELLED, BOOKING_PENDING, MOD_PAYMENT_EXPIRED, PAYMENT_EXPIRED, PAYMENT_PENDING
from app.core.errors import DoubleReleaseGuard
from app.core.timeutil import utcnow
from app.db.session import SessionFactory, session_scope
from app.models.booking import Booking
from app.services.allocation.holds import delete_expired_holds
from app.services.allocation.transitions import record_modification, release_booking
from app.services.allocation.waitlist import WaitlistPromoter

logger = logging.getLogger(__name__)


class HoldReaper:
    def __init__(
        self,
        session_factory: SessionFactory,
        promoter: WaitlistPromoter,
        abandon_minutes: int | None = None,
    ):
        self.session_factory = session_factory
        self.promoter = promoter
        self.abandon_minutes = abandon_minutes if abandon_minutes is not None else settings.hold_abandon_minutes

    def _expire_booking(self, booking_id: int, now: datetime) -> int | None:
        """Release one abandoned booking. Returns its slot id, or None if another writer got there first."""
        try:
            with session_scope(self.session_factory) as db:
                booking = release_booking(
                    db,
                    booking_id,
                    {Booking.status: BOOKING_CANCELLED, Booking.payment_status: PAYMENT_EXPIRED, Booking.cancelled_at: now},
                    from_statuses=(BOOKING_PENDING,),
                    payment_statuses=(PAYMENT_PENDING,),
                )
                record_modification(
                    db,
                    booking_id,
                    MOD_PAYMENT_EXPIRED,
                    old_value={"status": BOOKING_PENDING, "payment_status": PAYMENT_PENDING},
                    new_value={"status": BOOKING_CANCELLED, "payment_status": PAYMENT_EXPIRED},
                    reason=f"Payment not completed within {self.abandon_minutes} minutes",
                )
                return booking.slot_id
        except DoubleReleaseGuard as e:
            logger.warning("Reaper skipped booking %s: %s", booking_id, e)
            return None

    def reap_expired_holds(self, now: datetime | None = None) -> dict:
        now = now or utcnow()
        cutoff = now - timedelta(minutes=self.abandon_minutes)

        with session_scope(self.session_factory) as db:
            holds_deleted = delete_expired_holds(db, now)

        db = self.session_factory()
        try:
            stale_ids = [
                booking_id
                for (booking_id,) in db.query(Booking.id)
                .filter(
                    Booking.status == BOOKING_PENDING,
                    Booking.payment_status == PAYMENT_PENDING,
                    Booking.created_at < cutoff,
                )
                .order_by(Booking.created_at.asc())
                .all()
            ]
        finally:
            db.close()

        released_slots: list[int] = []
        failed = 0
        for booking_id in stale_ids:
            try:
                slot_id = self._expire_booking(booking_id, now)
            except Exception as e:
                failed += 1
                logger.exception("Reaper failed on booking %s: %s", booking_id, e)
                continue
            if slot_id is not None:
                released_slots.append(slot_id)

        claim_slots = self.promoter.expire_claims(now)

        promoted = 0
        for slot_id in released_slots + claim_slots:
            try:
                if self.promoter.promote(slot_id, now=now) is not None:
                    promoted += 1
            except Exception as e:
                logger.exception("Promotion after sweep failed for slot %s: %s", slot_id, e)

        summary = {
            "holds_deleted": holds_deleted,
            "bookings_expired": len(released_slots),
            "claims_expired": len(claim_slots),
            "promoted": promoted,
            "failed": failed,
        }
        if holds_deleted or released_slots or claim_slots or failed:
            logger.info("Reaper sweep: %s", summary)
        return summary
