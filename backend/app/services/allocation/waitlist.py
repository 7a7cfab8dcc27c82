"""
Waitlist: join a full slot, and promote one waiting party each time capacity frees up.

Selection: ACTIVE entries whose party fits the free spots, highest priority first, then
oldest first. The chosen entry moves to NOTIFIED with a claim window; capacity is not
reserved for it. Parties that do not fit stay ACTIVE for a later round.
"""
import logging
from datetime import datetime, timedelta

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.config import settings
from app.core.constants import SLOT_CANCELLED, WAITLIST_ACTIVE, WAITLIST_CONVERTED, WAITLIST_EXPIRED, WAITLIST_NOTIFIED
from app.core.errors import AlreadyOnWaitlist, InvalidPartySize, SlotNotFound, SlotUnavailable
from app.core.timeutil import utcnow
from app.db.session import SessionFactory, session_scope
from app.models.slot_instance import SlotInstance
from app.models.waitlist_entry import WaitlistEntry
from app.services.notification_service import NotificationService

logger = logging.getLogger(__name__)


def normalize_email(email: str) -> str:
    return (email or "").strip().lower()


def convert_claims(db: Session, slot_id: int, guest_email: str, booking_id: int, now: datetime) -> int:
    """
    Mark the guest's waiting or notified (unexpired) entries for this slot CONVERTED.
    Runs in the booking transaction. Returns rows changed.
    """
    return (
        db.query(WaitlistEntry)
        .filter(
            WaitlistEntry.slot_id == slot_id,
            WaitlistEntry.guest_email == normalize_email(guest_email),
            or_(
                WaitlistEntry.status == WAITLIST_ACTIVE,
                (WaitlistEntry.status == WAITLIST_NOTIFIED) & (WaitlistEntry.expires_at >= now),
            ),
        )
        .update(
            {WaitlistEntry.status: WAITLIST_CONVERTED, WaitlistEntry.converted_booking_id: booking_id},
            synchronize_session=False,
        )
    )


class WaitlistPromoter:
    def __init__(
        self,
        session_factory: SessionFactory,
        notifications: NotificationService | None = None,
        claim_hours: int | None = None,
    ):
        self.session_factory = session_factory
        self.notifications = notifications
        self.claim_hours = claim_hours if claim_hours is not None else settings.waitlist_claim_hours

    def join_waitlist(
        self,
        offering_id: int,
        slot_id: int,
        party_size: int,
        guest_name: str,
        guest_email: str,
        guest_phone: str | None = None,
        priority: int = 0,
    ) -> WaitlistEntry:
        """Add the guest to the slot's waitlist. Raises AlreadyOnWaitlist if they are already waiting."""
        if party_size < 1:
            raise InvalidPartySize(f"Party size must be at least 1, got {party_size}")
        email = normalize_email(guest_email)
        if not email:
            raise InvalidPartySize("guest_email is required")
        try:
            with session_scope(self.session_factory) as db:
                slot = db.get(SlotInstance, slot_id)
                if slot is None or slot.offering_id != offering_id:
                    raise SlotNotFound(slot_id)
                if slot.status == SLOT_CANCELLED:
                    raise SlotUnavailable(slot_id)
                existing = (
                    db.query(WaitlistEntry.id)
                    .filter(
                        WaitlistEntry.slot_id == slot_id,
                        WaitlistEntry.guest_email == email,
                        WaitlistEntry.status == WAITLIST_ACTIVE,
                    )
                    .first()
                )
                if existing:
                    raise AlreadyOnWaitlist(slot_id)
                entry = WaitlistEntry(
                    offering_id=offering_id,
                    slot_id=slot_id,
                    guest_name=(guest_name or "Guest").strip() or "Guest",
                    guest_email=email,
                    guest_phone=guest_phone,
                    party_size=party_size,
                    status=WAITLIST_ACTIVE,
                    priority=priority,
                    created_at=utcnow(),
                )
                db.add(entry)
                db.flush()
        except IntegrityError as e:
            # Partial unique index caught a concurrent join.
            raise AlreadyOnWaitlist(slot_id) from e
        logger.info("Waitlist entry %s: %s (party %s) on slot %s", entry.id, email, party_size, slot_id)
        return entry

    def _spots(self, db: Session, slot_id: int) -> int:
        value = db.query(SlotInstance.remaining_capacity).filter(SlotInstance.id == slot_id).scalar()
        if value is None:
            raise SlotNotFound(slot_id)
        return value

    def promote(self, slot_id: int, spots_available: int | None = None, now: datetime | None = None) -> WaitlistEntry | None:
        """
        One promotion cycle for one capacity-release event. Call only after the release has
        committed. Returns the NOTIFIED entry, or None when nobody fits.
        """
        now = now or utcnow()
        with session_scope(self.session_factory) as db:
            spots = spots_available if spots_available is not None else self._spots(db, slot_id)
            if spots <= 0:
                return None
            candidates = (
                db.query(WaitlistEntry.id)
                .filter(
                    WaitlistEntry.slot_id == slot_id,
                    WaitlistEntry.status == WAITLIST_ACTIVE,
                    WaitlistEntry.party_size <= spots,
                )
                .order_by(WaitlistEntry.priority.desc(), WaitlistEntry.created_at.asc(), WaitlistEntry.id.asc())
                .all()
            )
            promoted = None
            for (entry_id,) in candidates:
                # A concurrent promoter may have taken the head; the next one is ours.
                updated = (
                    db.query(WaitlistEntry)
                    .filter(WaitlistEntry.id == entry_id, WaitlistEntry.status == WAITLIST_ACTIVE)
                    .update(
                        {
                            WaitlistEntry.status: WAITLIST_NOTIFIED,
                            WaitlistEntry.notified_at: now,
                            WaitlistEntry.expires_at: now + timedelta(hours=self.claim_hours),
                        },
                        synchronize_session=False,
                    )
                )
                if updated:
                    promoted = db.get(WaitlistEntry, entry_id)
                    db.refresh(promoted)
                    break
        if promoted is None:
            logger.info("No eligible waitlist entry for slot %s (%s spots)", slot_id, spots)
            return None
        logger.info(
            "Promoted waitlist entry %s (party %s) on slot %s; claim expires %s",
            promoted.id,
            promoted.party_size,
            slot_id,
            promoted.expires_at,
        )
        if self.notifications is not None:
            self.notifications.send_waitlist_available(promoted.id)
        return promoted

    def expire_claims(self, now: datetime | None = None) -> list[int]:
        """NOTIFIED entries past their claim window become EXPIRED. Returns the slot id of each expired entry."""
        now = now or utcnow()
        with session_scope(self.session_factory) as db:
            due = (
                db.query(WaitlistEntry.id, WaitlistEntry.slot_id)
                .filter(WaitlistEntry.status == WAITLIST_NOTIFIED, WaitlistEntry.expires_at < now)
                .order_by(WaitlistEntry.expires_at.asc())
                .all()
            )
            slot_ids = []
            for entry_id, slot_id in due:
                updated = (
                    db.query(WaitlistEntry)
                    .filter(WaitlistEntry.id == entry_id, WaitlistEntry.status == WAITLIST_NOTIFIED)
                    .update({WaitlistEntry.status: WAITLIST_EXPIRED}, synchronize_session=False)
                )
                if updated:
                    slot_ids.append(slot_id)
        if slot_ids:
            logger.info("Expired %s waitlist claim(s)", len(slot_ids))
        return slot_ids
