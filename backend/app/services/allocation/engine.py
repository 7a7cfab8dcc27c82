"""
BookingEngine: the allocation core's public surface, wired from one session factory.

Routes, scheduled jobs and scripts build it with build_engine(); tests pass their own
session factory, gateway and notifier.
"""
import logging
from datetime import date, datetime

from sqlalchemy.exc import IntegrityError

from app.core.errors import OfferingNotFound
from app.core.timeutil import utcnow
from app.db.session import SessionFactory, session_scope
from app.models.booking import Booking
from app.models.booking_hold import BookingHold
from app.models.offering import Offering
from app.models.slot_instance import SlotInstance
from app.models.waitlist_entry import WaitlistEntry
from app.services.allocation.allocator import BookingAllocator, GuestInfo
from app.services.allocation.holds import HoldService, held_by_slot
from app.services.allocation.materializer import SlotMaterializer, slots_for_date
from app.services.allocation.reaper import HoldReaper
from app.services.allocation.waitlist import WaitlistPromoter
from app.services.email_notify import Notifier
from app.services.notification_service import NotificationService
from app.services.payments.base import PaymentGateway
from app.services.reminder_service import send_upcoming_reminders

logger = logging.getLogger(__name__)


class BookingEngine:
    def __init__(
        self,
        session_factory: SessionFactory,
        gateway: PaymentGateway | None,
        notifier: Notifier | None = None,
        *,
        horizon_days: int | None = None,
        claim_hours: int | None = None,
        abandon_minutes: int | None = None,
        hold_minutes: int | None = None,
        cutoff_hours: int | None = None,
    ):
        self.session_factory = session_factory
        self.gateway = gateway
        self.notifications = NotificationService(session_factory, notifier) if notifier is not None else None
        self.materializer = SlotMaterializer(session_factory, horizon_days=horizon_days)
        self.promoter = WaitlistPromoter(session_factory, self.notifications, claim_hours=claim_hours)
        self.holds = HoldService(session_factory, hold_minutes=hold_minutes)
        self.allocator = BookingAllocator(
            session_factory,
            gateway,
            self.promoter,
            self.notifications,
            cutoff_hours=cutoff_hours,
        )
        self.reaper = HoldReaper(session_factory, self.promoter, abandon_minutes=abandon_minutes)

    # --- availability ---

    def get_available_slots(self, offering_id: int, day: date) -> list[SlotInstance]:
        """Non-cancelled slots on `day`, generating them from active definitions when none exist."""
        for attempt in (1, 2):
            try:
                with session_scope(self.session_factory) as db:
                    if db.get(Offering, offering_id) is None:
                        raise OfferingNotFound(offering_id)
                    slots = slots_for_date(db, offering_id, day)
                    if slots:
                        return slots
                    created = self.materializer.ensure_slots_for_date(db, offering_id, day)
                    if created:
                        db.flush()
                        logger.info("Generated %s slots on demand for offering %s on %s", created, offering_id, day)
                    return slots_for_date(db, offering_id, day)
            except IntegrityError:
                # A concurrent request generated the same day first; read what it wrote.
                if attempt == 2:
                    raise
        return []

    def availability(self, offering_id: int, day: date, now: datetime | None = None) -> list[dict]:
        """Slots with the spots a new guest can actually take: remaining minus live checkout holds."""
        now = now or utcnow()
        slots = self.get_available_slots(offering_id, day)
        db = self.session_factory()
        try:
            held = held_by_slot(db, [s.id for s in slots], now)
        finally:
            db.close()
        return [
            {
                "id": s.id,
                "offering_id": s.offering_id,
                "date": s.slot_date.isoformat(),
                "start_at": s.start_at.isoformat(),
                "end_at": s.end_at.isoformat(),
                "total_capacity": s.total_capacity,
                "remaining_capacity": s.remaining_capacity,
                "available": max(0, s.remaining_capacity - held.get(s.id, 0)),
                "status": s.status,
            }
            for s in slots
        ]

    # --- guest path ---

    def create_booking(
        self,
        slot_id: int,
        party_size: int,
        guest: GuestInfo,
        payment_method: str | None = None,
        **kwargs,
    ) -> Booking:
        return self.allocator.create_booking(slot_id, party_size, guest, payment_method, **kwargs)

    def cancel_booking(self, booking_id: int, reason: str | None = None, **kwargs) -> Booking:
        return self.allocator.cancel_booking(booking_id, reason, **kwargs)

    def join_waitlist(self, offering_id: int, slot_id: int, party_size: int, guest: GuestInfo, priority: int = 0) -> WaitlistEntry:
        return self.promoter.join_waitlist(
            offering_id,
            slot_id,
            party_size,
            guest.name,
            guest.email,
            guest_phone=guest.phone,
            priority=priority,
        )

    def create_hold(self, slot_id: int, party_size: int, session_id: str, now: datetime | None = None) -> BookingHold:
        return self.holds.create_hold(slot_id, party_size, session_id, now=now)

    def release_hold(self, session_id: str) -> int:
        return self.holds.release_hold(session_id)

    def handle_gateway_event(self, event_type: str, intent_id: str, booking_number: str | None = None) -> Booking | None:
        return self.allocator.handle_gateway_event(event_type, intent_id, booking_number)

    # --- periodic entry points ---

    def materialize_upcoming_slots(self, today: date | None = None) -> dict:
        return self.materializer.materialize_upcoming_slots(today=today)

    def reap_expired_holds(self, now: datetime | None = None) -> dict:
        return self.reaper.reap_expired_holds(now=now)

    def promote_waitlist(self, slot_id: int, spots_available: int | None = None, now: datetime | None = None) -> WaitlistEntry | None:
        return self.promoter.promote(slot_id, spots_available, now=now)

    def send_upcoming_reminders(self, now: datetime | None = None) -> dict:
        if self.notifications is None:
            return {"due": 0, "sent": 0, "failed": 0}
        return send_upcoming_reminders(self.session_factory, self.notifications, now=now)


def build_engine(session_factory: SessionFactory | None = None) -> BookingEngine:
    """Engine wired to the app database, Stripe and SMTP from settings."""
    from app.db.session import SessionLocal
    from app.services.email_notify import SmtpNotifier
    from app.services.payments.stripe_gateway import StripeGateway

    return BookingEngine(session_factory or SessionLocal, StripeGateway(), SmtpNotifier())
