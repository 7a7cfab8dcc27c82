"""
Booking allocator: turn (slot, party) into a booking, and drive it through payment,
cancellation, host actions and modifications.

Creation runs in three phases:
  1. one transaction: reserve seats via the ledger, insert the PENDING booking
  2. no transaction: charge through the gateway
  3. one transaction: record the intent / confirm, or compensate on a definitive failure
A failed reservation leaves nothing behind. Waitlist promotion always runs after the
releasing transaction has committed.
"""
import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy.orm import Session

from app.config import settings
from app.core.constants import (
    BOOKING_CANCELLED,
    BOOKING_CHECKED_IN,
    BOOKING_COMPLETED,
    BOOKING_CONFIRMED,
    BOOKING_NO_SHOW,
    BOOKING_NUMBER_ALPHABET,
    BOOKING_NUMBER_LENGTH,
    BOOKING_NUMBER_PREFIX,
    BOOKING_PENDING,
    MOD_CANCELLATION,
    MOD_DATE_CHANGE,
    MOD_HOST_CANCELLATION,
    MOD_PARTY_SIZE_DECREASE,
    MOD_PARTY_SIZE_INCREASE,
    MOD_PAYMENT_CAPTURED,
    MOD_PAYMENT_FAILED,
    MOD_STATUS_CHANGE,
    PAYMENT_CAPTURED,
    PAYMENT_EXPIRED,
    PAYMENT_FAILED,
    PAYMENT_FULLY_REFUNDED,
    PAYMENT_PENDING,
    POLICY_FLEXIBLE,
    POLICY_MODERATE,
    POLICY_STRICT,
    RELEASABLE_STATUSES,
    SLOT_CANCELLED,
)
from app.core.errors import (
    BookingNotFound,
    DoubleReleaseGuard,
    InvalidPartySize,
    InvalidStateTransition,
    ModificationNotAllowed,
    PaymentGatewayError,
    SlotNotFound,
    SlotUnavailable,
    Unauthorized,
)
from app.core.timeutil import utcnow
from app.db.session import SessionFactory, session_scope
from app.models.booking import Booking
from app.models.booking_modification import BookingModification
from app.models.offering import Offering
from app.models.slot_instance import SlotInstance
from app.services.allocation.capacity_mode import capacity_mode_for
from app.services.allocation.holds import consume_hold
from app.services.allocation.ledger import CapacityLedger
from app.services.allocation.transitions import get_booking, record_modification, release_booking, transition
from app.services.allocation.waitlist import WaitlistPromoter, convert_claims, normalize_email
from app.services.notification_service import NotificationService
from app.services.payments.base import EVENT_PAYMENT_FAILED, EVENT_PAYMENT_SUCCEEDED, PaymentGateway

logger = logging.getLogger(__name__)

REFUND_PENDING = "PENDING"
REFUND_COMPLETED = "COMPLETED"
REFUND_FAILED = "FAILED"

WALK_IN_PAYMENT_METHOD = "walk_in"

# A success event for a released booking in one of these was never captured before; refund it.
UNCAPTURED_PAYMENT_STATUSES = (PAYMENT_PENDING, PAYMENT_FAILED, PAYMENT_EXPIRED)

# Host actions: target status -> statuses it may be applied from.
HOST_TRANSITIONS = {
    BOOKING_CONFIRMED: (BOOKING_PENDING,),
    BOOKING_CHECKED_IN: (BOOKING_PENDING, BOOKING_CONFIRMED),
    BOOKING_COMPLETED: (BOOKING_CHECKED_IN,),
    BOOKING_NO_SHOW: (BOOKING_PENDING, BOOKING_CONFIRMED),
}


@dataclass
class GuestInfo:
    name: str
    email: str
    phone: str | None = None
    special_requests: str | None = None


def generate_booking_number() -> str:
    suffix = "".join(secrets.choice(BOOKING_NUMBER_ALPHABET) for _ in range(BOOKING_NUMBER_LENGTH))
    return f"{BOOKING_NUMBER_PREFIX}{suffix}"


def refund_amount_for(policy: str, amount_cents: int, hours_until_start: float, cancelled_by: str = "guest") -> int:
    """
    Cents to refund on cancellation.
    FLEXIBLE: full at >= 24h. MODERATE: full at >= 7 days, half at >= 24h. STRICT: full at >= 14 days.
    A host cancellation always refunds in full.
    """
    if amount_cents <= 0:
        return 0
    if cancelled_by == "host":
        return amount_cents
    if policy == POLICY_FLEXIBLE:
        return amount_cents if hours_until_start >= 24 else 0
    if policy == POLICY_MODERATE:
        if hours_until_start >= 168:
            return amount_cents
        if hours_until_start >= 24:
            return amount_cents // 2
        return 0
    if policy == POLICY_STRICT:
        return amount_cents if hours_until_start >= 336 else 0
    return 0


def _hours_until(slot: SlotInstance, now: datetime) -> float:
    return (slot.start_at - now).total_seconds() / 3600


def _check_host(offering: Offering, host_id: str | None) -> None:
    if host_id is not None and offering.host_id != host_id:
        raise Unauthorized(f"Host {host_id} does not own offering {offering.id}")


def _check_party_bounds(offering: Offering, party_size: int) -> None:
    if party_size < 1:
        raise InvalidPartySize(f"Party size must be at least 1, got {party_size}")
    if offering.min_party_size and party_size < offering.min_party_size:
        raise InvalidPartySize(f"Minimum party size is {offering.min_party_size}")
    if offering.max_party_size and party_size > offering.max_party_size:
        raise InvalidPartySize(f"Maximum party size is {offering.max_party_size}")


class BookingAllocator:
    def __init__(
        self,
        session_factory: SessionFactory,
        gateway: PaymentGateway | None,
        promoter: WaitlistPromoter,
        notifications: NotificationService | None = None,
        cutoff_hours: int | None = None,
    ):
        self.session_factory = session_factory
        self.gateway = gateway
        self.promoter = promoter
        self.notifications = notifications
        self.cutoff_hours = cutoff_hours if cutoff_hours is not None else settings.modification_cutoff_hours

    # --- helpers ---

    def _load_slot(self, db: Session, slot_id: int) -> tuple[SlotInstance, Offering]:
        slot = db.get(SlotInstance, slot_id)
        if slot is None:
            raise SlotNotFound(slot_id)
        if slot.status == SLOT_CANCELLED:
            raise SlotUnavailable(slot_id)
        return slot, db.get(Offering, slot.offering_id)

    def _unique_booking_number(self, db: Session) -> str:
        for _ in range(10):
            number = generate_booking_number()
            if not db.query(Booking.id).filter(Booking.booking_number == number).first():
                return number
        raise RuntimeError("Could not allocate a unique booking number")

    def _promote(self, slot_id: int) -> None:
        try:
            self.promoter.promote(slot_id)
        except Exception as e:
            logger.exception("Waitlist promotion for slot %s failed: %s", slot_id, e)

    def _notify(self, method: str, *args) -> None:
        if self.notifications is not None:
            getattr(self.notifications, method)(*args)

    def get_booking(self, booking_ref: int | str) -> Booking:
        db = self.session_factory()
        try:
            if isinstance(booking_ref, int):
                booking = db.get(Booking, booking_ref)
            else:
                booking = db.query(Booking).filter(Booking.booking_number == booking_ref).first()
            if booking is None:
                raise BookingNotFound(booking_ref)
            return booking
        finally:
            db.close()

    def list_modifications(self, booking_id: int) -> list[BookingModification]:
        db = self.session_factory()
        try:
            return (
                db.query(BookingModification)
                .filter(BookingModification.booking_id == booking_id)
                .order_by(BookingModification.id.asc())
                .all()
            )
        finally:
            db.close()

    # --- create ---

    def create_booking(
        self,
        slot_id: int,
        party_size: int,
        guest: GuestInfo,
        payment_method: str | None = None,
        *,
        hold_session_id: str | None = None,
        now: datetime | None = None,
    ) -> Booking:
        """
        Reserve seats and create the booking. Raises InsufficientCapacity (nothing created),
        PaymentGatewayError (definitive: booking cancelled and seats released).
        An ambiguous gateway failure returns the PENDING booking; the webhook settles it.
        """
        now = now or utcnow()
        with session_scope(self.session_factory) as db:
            slot, offering = self._load_slot(db, slot_id)
            _check_party_bounds(offering, party_size)
            amount = (offering.base_price_cents or 0) * party_size
            if amount > 0 and not (payment_method or "").strip():
                raise PaymentGatewayError("A payment method is required", definitive=True)
            if amount > 0 and self.gateway is None:
                raise PaymentGatewayError("No payment gateway configured", definitive=True)

            CapacityLedger(db).reserve(slot_id, party_size, capacity_mode_for(db, offering))
            if hold_session_id:
                consume_hold(db, hold_session_id)

            paid = amount == 0
            booking = Booking(
                booking_number=self._unique_booking_number(db),
                slot_id=slot_id,
                offering_id=offering.id,
                guest_name=(guest.name or "Guest").strip() or "Guest",
                guest_email=normalize_email(guest.email),
                guest_phone=guest.phone,
                special_requests=guest.special_requests,
                party_size=party_size,
                total_amount_cents=amount,
                payment_method=payment_method,
                payment_status=PAYMENT_CAPTURED if paid else PAYMENT_PENDING,
                status=BOOKING_CONFIRMED if paid else BOOKING_PENDING,
                created_at=now,
                updated_at=now,
            )
            db.add(booking)
            db.flush()
            converted = convert_claims(db, slot_id, booking.guest_email, booking.id, now)
            currency = offering.currency or settings.currency
        logger.info(
            "Booking %s created: slot %s, party %s, amount %s%s",
            booking.booking_number,
            slot_id,
            party_size,
            amount,
            f", converted {converted} waitlist entr{'y' if converted == 1 else 'ies'}" if converted else "",
        )

        if amount == 0:
            self._notify("send_booking_confirmation", booking.id)
            return booking

        try:
            result = self.gateway.charge(
                payment_method,
                amount,
                currency=currency,
                metadata={"booking_id": booking.id, "booking_number": booking.booking_number},
            )
        except PaymentGatewayError as e:
            if not e.definitive:
                logger.warning("Charge for booking %s is ambiguous; awaiting webhook: %s", booking.booking_number, e)
                return booking
            self._compensate_failed_charge(booking.id, str(e))
            e.booking_number = booking.booking_number
            raise

        with session_scope(self.session_factory) as db:
            db.query(Booking).filter(Booking.id == booking.id).update(
                {Booking.payment_intent_id: result.intent_id}, synchronize_session=False
            )
        booking.payment_intent_id = result.intent_id
        if result.succeeded:
            return self.confirm_payment(result.intent_id, booking_number=booking.booking_number)
        return booking

    def _compensate_failed_charge(self, booking_id: int, reason: str) -> None:
        try:
            with session_scope(self.session_factory) as db:
                booking = release_booking(
                    db,
                    booking_id,
                    {Booking.status: BOOKING_CANCELLED, Booking.payment_status: PAYMENT_FAILED, Booking.cancelled_at: utcnow()},
                    from_statuses=(BOOKING_PENDING,),
                )
                record_modification(
                    db,
                    booking_id,
                    MOD_PAYMENT_FAILED,
                    old_value={"status": BOOKING_PENDING},
                    new_value={"status": BOOKING_CANCELLED, "payment_status": PAYMENT_FAILED},
                    reason=reason,
                )
                slot_id = booking.slot_id
        except DoubleReleaseGuard as e:
            logger.warning("Skip compensation: %s", e)
            return
        logger.info("Booking %s cancelled after declined charge; seats released", booking_id)
        self._promote(slot_id)

    def create_walk_in(
        self,
        slot_id: int,
        party_size: int,
        guest: GuestInfo,
        *,
        host_id: str | None = None,
        now: datetime | None = None,
    ) -> Booking:
        """Seat a party at the door: no gateway, CHECKED_IN with a zero captured amount."""
        now = now or utcnow()
        with session_scope(self.session_factory) as db:
            slot, offering = self._load_slot(db, slot_id)
            _check_host(offering, host_id)
            if party_size < 1:
                raise InvalidPartySize(f"Party size must be at least 1, got {party_size}")
            CapacityLedger(db).reserve(slot_id, party_size, capacity_mode_for(db, offering))
            booking = Booking(
                booking_number=self._unique_booking_number(db),
                slot_id=slot_id,
                offering_id=offering.id,
                guest_name=(guest.name or "Walk-in").strip() or "Walk-in",
                guest_email=normalize_email(guest.email) or "walk-in@local",
                guest_phone=guest.phone,
                special_requests=guest.special_requests,
                party_size=party_size,
                total_amount_cents=0,
                payment_method=WALK_IN_PAYMENT_METHOD,
                payment_status=PAYMENT_CAPTURED,
                status=BOOKING_CHECKED_IN,
                is_walk_in=True,
                checked_in_at=now,
                created_at=now,
                updated_at=now,
            )
            db.add(booking)
            db.flush()
        logger.info("Walk-in %s seated: slot %s, party %s", booking.booking_number, slot_id, party_size)
        return booking

    # --- gateway webhooks ---

    def _find_by_intent(self, db: Session, intent_id: str, booking_number: str | None) -> Booking | None:
        booking = None
        if intent_id:
            booking = db.query(Booking).filter(Booking.payment_intent_id == intent_id).first()
        if booking is None and booking_number:
            booking = db.query(Booking).filter(Booking.booking_number == booking_number).first()
        return booking

    def confirm_payment(self, intent_id: str, booking_number: str | None = None) -> Booking | None:
        """
        payment_intent.succeeded: PENDING -> CONFIRMED / CAPTURED and send the confirmation.
        Redelivery is a no-op. A success for a booking already released is refunded.
        """
        with session_scope(self.session_factory) as db:
            booking = self._find_by_intent(db, intent_id, booking_number)
            if booking is None:
                logger.warning("payment succeeded for unknown intent %s", intent_id)
                return None
            old_status = booking.status
            # A host may have confirmed the booking before the payment settled.
            confirmed = transition(
                db,
                booking.id,
                (BOOKING_PENDING, BOOKING_CONFIRMED),
                {
                    Booking.status: BOOKING_CONFIRMED,
                    Booking.payment_status: PAYMENT_CAPTURED,
                    Booking.payment_intent_id: intent_id or booking.payment_intent_id,
                },
                payment_statuses=(PAYMENT_PENDING,),
            )
            if confirmed:
                record_modification(
                    db,
                    booking.id,
                    MOD_PAYMENT_CAPTURED,
                    old_value={"status": old_status, "payment_status": PAYMENT_PENDING},
                    new_value={"status": BOOKING_CONFIRMED, "payment_status": PAYMENT_CAPTURED},
                )
            db.refresh(booking)
        if confirmed:
            logger.info("Booking %s confirmed by payment %s", booking.booking_number, intent_id)
            self._notify("send_booking_confirmation", booking.id)
            return booking
        if booking.status == BOOKING_CANCELLED and booking.payment_status in UNCAPTURED_PAYMENT_STATUSES:
            return self._refund_late_capture(booking, intent_id)
        logger.info("Duplicate success for booking %s (status=%s); ignoring", booking.booking_number, booking.status)
        return booking

    def _refund_late_capture(self, booking: Booking, intent_id: str) -> Booking:
        logger.warning(
            "Payment %s captured after booking %s was released (%s); refunding",
            intent_id,
            booking.booking_number,
            booking.payment_status,
        )
        refund_status = REFUND_FAILED
        if self.gateway is not None and intent_id:
            try:
                self.gateway.refund(intent_id, booking.total_amount_cents)
                refund_status = REFUND_COMPLETED
            except PaymentGatewayError as e:
                logger.error("Refund of late capture %s failed: %s", intent_id, e)
        with session_scope(self.session_factory) as db:
            values = {Booking.payment_intent_id: intent_id}
            if refund_status == REFUND_COMPLETED:
                values.update(
                    {
                        Booking.payment_status: PAYMENT_FULLY_REFUNDED,
                        Booking.refunded_amount_cents: booking.total_amount_cents,
                    }
                )
            transition(db, booking.id, (BOOKING_CANCELLED,), values)
            record_modification(
                db,
                booking.id,
                MOD_PAYMENT_CAPTURED,
                old_value={"payment_status": booking.payment_status},
                new_value={"payment_status": values.get(Booking.payment_status, booking.payment_status)},
                reason="Payment captured after release",
                refund_amount_cents=booking.total_amount_cents,
                refund_status=refund_status,
            )
            booking = get_booking(db, booking.id)
        return booking

    def fail_payment(self, intent_id: str, booking_number: str | None = None) -> Booking | None:
        """payment_intent.payment_failed: CANCELLED / FAILED, release seats, then promote."""
        try:
            with session_scope(self.session_factory) as db:
                booking = self._find_by_intent(db, intent_id, booking_number)
                if booking is None:
                    logger.warning("payment failed for unknown intent %s", intent_id)
                    return None
                booking = release_booking(
                    db,
                    booking.id,
                    {Booking.status: BOOKING_CANCELLED, Booking.payment_status: PAYMENT_FAILED, Booking.cancelled_at: utcnow()},
                    from_statuses=(BOOKING_PENDING,),
                    payment_statuses=(PAYMENT_PENDING,),
                )
                record_modification(
                    db,
                    booking.id,
                    MOD_PAYMENT_FAILED,
                    old_value={"status": BOOKING_PENDING, "payment_status": PAYMENT_PENDING},
                    new_value={"status": BOOKING_CANCELLED, "payment_status": PAYMENT_FAILED},
                    reason=f"Payment {intent_id} failed",
                )
        except DoubleReleaseGuard as e:
            logger.warning("Ignoring payment failure for %s: %s", intent_id, e)
            return self._find_detached(intent_id, booking_number)
        logger.info("Booking %s cancelled: payment %s failed", booking.booking_number, intent_id)
        self._promote(booking.slot_id)
        return booking

    def _find_detached(self, intent_id: str, booking_number: str | None) -> Booking | None:
        db = self.session_factory()
        try:
            return self._find_by_intent(db, intent_id, booking_number)
        finally:
            db.close()

    def handle_gateway_event(self, event_type: str, intent_id: str, booking_number: str | None = None) -> Booking | None:
        if event_type == EVENT_PAYMENT_SUCCEEDED:
            return self.confirm_payment(intent_id, booking_number)
        if event_type == EVENT_PAYMENT_FAILED:
            return self.fail_payment(intent_id, booking_number)
        logger.debug("Ignoring gateway event %s", event_type)
        return None

    # --- cancel ---

    def cancel_booking(
        self,
        booking_id: int,
        reason: str | None = None,
        cancelled_by: str = "guest",
        *,
        host_id: str | None = None,
        now: datetime | None = None,
    ) -> Booking:
        """
        Cancel, release seats and refund per the offering's policy. A refund failure is
        recorded on the modification row and never undoes the cancellation.
        """
        now = now or utcnow()
        with session_scope(self.session_factory) as db:
            booking = get_booking(db, booking_id)
            offering = db.get(Offering, booking.offering_id)
            if cancelled_by == "host":
                _check_host(offering, host_id)
            if booking.status not in RELEASABLE_STATUSES:
                raise InvalidStateTransition(booking_id, booking.status, BOOKING_CANCELLED)
            old_status = booking.status
            try:
                booking = release_booking(db, booking_id, {Booking.status: BOOKING_CANCELLED, Booking.cancelled_at: now})
            except DoubleReleaseGuard as e:
                raise InvalidStateTransition(booking_id, e.status, BOOKING_CANCELLED) from e
            # Priced from the released row.
            refund = 0
            if booking.payment_status == PAYMENT_CAPTURED:
                refund = refund_amount_for(
                    offering.cancellation_policy,
                    booking.total_amount_cents,
                    _hours_until(db.get(SlotInstance, booking.slot_id), now),
                    cancelled_by,
                )
            mod = record_modification(
                db,
                booking_id,
                MOD_HOST_CANCELLATION if cancelled_by == "host" else MOD_CANCELLATION,
                old_value={"status": old_status},
                new_value={"status": BOOKING_CANCELLED},
                reason=reason,
                modified_by=host_id or cancelled_by,
                refund_amount_cents=refund,
                refund_status=REFUND_PENDING if refund else None,
            )
            mod_id = mod.id
        logger.info("Booking %s cancelled by %s; refund %s", booking.booking_number, cancelled_by, refund)

        if refund > 0:
            booking = self._issue_refund(booking, refund, mod_id, now)
        self._promote(booking.slot_id)
        self._notify("send_cancellation", booking.id, refund)
        return booking

    def _issue_refund(self, booking: Booking, amount: int, mod_id: int, now: datetime) -> Booking:
        ok = False
        if self.gateway is not None and booking.payment_intent_id:
            try:
                self.gateway.refund(booking.payment_intent_id, amount)
                ok = True
            except PaymentGatewayError as e:
                logger.error("Refund of %s for booking %s failed: %s", amount, booking.booking_number, e)
        else:
            logger.error("Refund of %s for booking %s skipped: no gateway or intent", amount, booking.booking_number)
        with session_scope(self.session_factory) as db:
            mod = db.get(BookingModification, mod_id)
            mod.refund_status = REFUND_COMPLETED if ok else REFUND_FAILED
            if ok:
                mod.refunded_at = now
                refunded = (booking.refunded_amount_cents or 0) + amount
                values = {Booking.refunded_amount_cents: refunded}
                if refunded >= booking.total_amount_cents:
                    values[Booking.payment_status] = PAYMENT_FULLY_REFUNDED
                db.query(Booking).filter(Booking.id == booking.id).update(values, synchronize_session=False)
            booking = get_booking(db, booking.id)
            db.refresh(booking)
        return booking

    # --- host actions ---

    def _host_transition(
        self,
        booking_id: int,
        target: str,
        extra: dict | None = None,
        *,
        host_id: str | None = None,
    ) -> Booking:
        allowed = HOST_TRANSITIONS[target]
        with session_scope(self.session_factory) as db:
            booking = get_booking(db, booking_id)
            _check_host(db.get(Offering, booking.offering_id), host_id)
            old_status = booking.status
            values = {Booking.status: target}
            values.update(extra or {})
            if not transition(db, booking_id, allowed, values):
                raise InvalidStateTransition(booking_id, old_status, target)
            record_modification(
                db,
                booking_id,
                MOD_STATUS_CHANGE,
                old_value={"status": old_status},
                new_value={"status": target},
                modified_by=host_id or "host",
            )
            booking = get_booking(db, booking_id)
        logger.info("Booking %s: %s -> %s", booking.booking_number, old_status, target)
        return booking

    def confirm_booking(self, booking_id: int, *, host_id: str | None = None) -> Booking:
        return self._host_transition(booking_id, BOOKING_CONFIRMED, host_id=host_id)

    def check_in(self, booking_id: int, *, host_id: str | None = None, now: datetime | None = None) -> Booking:
        return self._host_transition(
            booking_id, BOOKING_CHECKED_IN, {Booking.checked_in_at: now or utcnow()}, host_id=host_id
        )

    def check_out(self, booking_id: int, *, host_id: str | None = None, now: datetime | None = None) -> Booking:
        return self._host_transition(
            booking_id, BOOKING_COMPLETED, {Booking.checked_out_at: now or utcnow()}, host_id=host_id
        )

    def mark_no_show(self, booking_id: int, *, host_id: str | None = None) -> Booking:
        return self._host_transition(booking_id, BOOKING_NO_SHOW, host_id=host_id)

    # --- modifications ---

    def _check_modifiable(self, booking: Booking, slot: SlotInstance, now: datetime) -> None:
        if booking.status not in RELEASABLE_STATUSES:
            raise ModificationNotAllowed(f"Booking in status {booking.status} cannot be modified")
        if slot.start_at - now < timedelta(hours=self.cutoff_hours):
            raise ModificationNotAllowed(f"Bookings cannot be changed within {self.cutoff_hours} hours of the start")

    def modify_party_size(
        self,
        booking_id: int,
        new_size: int,
        *,
        modified_by: str = "guest",
        now: datetime | None = None,
    ) -> Booking:
        """
        Move seats by the difference through the ledger. The price difference is charged
        (larger party) or refunded (smaller party) after commit.
        """
        now = now or utcnow()
        with session_scope(self.session_factory) as db:
            booking = get_booking(db, booking_id)
            slot = db.get(SlotInstance, booking.slot_id)
            offering = db.get(Offering, booking.offering_id)
            self._check_modifiable(booking, slot, now)
            _check_party_bounds(offering, new_size)
            old_size, old_total = booking.party_size, booking.total_amount_cents
            delta = new_size - old_size
            if delta == 0:
                return booking
            mode = capacity_mode_for(db, offering)
            if not mode.accepts_party(new_size):
                raise InvalidPartySize(f"No table seats a party of {new_size}")
            price_diff = (offering.base_price_cents or 0) * delta
            if price_diff and booking.payment_status == PAYMENT_PENDING:
                # The in-flight charge is for the old total.
                raise ModificationNotAllowed("Payment is still processing; try again once it completes")
            ledger = CapacityLedger(db)
            if delta > 0:
                ledger.reserve(booking.slot_id, delta)
            else:
                ledger.release(booking.slot_id, -delta)
            new_total = old_total + price_diff
            updated = (
                db.query(Booking)
                .filter(
                    Booking.id == booking_id,
                    Booking.slot_id == booking.slot_id,
                    Booking.party_size == old_size,
                    Booking.status.in_(RELEASABLE_STATUSES),
                )
                .update(
                    {Booking.party_size: new_size, Booking.total_amount_cents: new_total, Booking.updated_at: now},
                    synchronize_session=False,
                )
            )
            if not updated:
                raise ModificationNotAllowed("Booking changed concurrently; retry")
            refund = -price_diff if price_diff < 0 and booking.payment_status == PAYMENT_CAPTURED else 0
            mod = record_modification(
                db,
                booking_id,
                MOD_PARTY_SIZE_INCREASE if delta > 0 else MOD_PARTY_SIZE_DECREASE,
                old_value={"party_size": old_size, "total_amount_cents": old_total},
                new_value={"party_size": new_size, "total_amount_cents": new_total},
                modified_by=modified_by,
                refund_amount_cents=refund or None,
                refund_status=REFUND_PENDING if refund else None,
            )
            mod_id = mod.id
            payment_status = booking.payment_status
            payment_method = booking.payment_method
            currency = offering.currency or settings.currency
            booking = get_booking(db, booking_id)
            db.refresh(booking)
        logger.info("Booking %s party %s -> %s", booking.booking_number, old_size, new_size)

        if delta < 0:
            if refund:
                booking = self._issue_refund(booking, refund, mod_id, now)
            self._promote(booking.slot_id)
        elif price_diff > 0 and payment_status == PAYMENT_CAPTURED:
            self._charge_difference(booking, price_diff, payment_method, currency, old_size, old_total, mod_id)
        return self.get_booking(booking_id)

    def _charge_difference(
        self,
        booking: Booking,
        amount: int,
        payment_method: str | None,
        currency: str,
        old_size: int,
        old_total: int,
        mod_id: int,
    ) -> None:
        try:
            if self.gateway is None or not payment_method:
                raise PaymentGatewayError("No payment method on file for the difference", definitive=True)
            result = self.gateway.charge(
                payment_method,
                amount,
                currency=currency,
                metadata={"booking_id": booking.id, "booking_number": booking.booking_number, "type": "party_size"},
            )
        except PaymentGatewayError as e:
            if not e.definitive:
                logger.warning("Charge of difference for %s is ambiguous: %s", booking.booking_number, e)
                return
            self._revert_party_size(booking, old_size, old_total, str(e))
            e.booking_number = booking.booking_number
            raise
        with session_scope(self.session_factory) as db:
            mod = db.get(BookingModification, mod_id)
            mod.new_value = dict(mod.new_value or {}, payment_intent_id=result.intent_id)

    def _revert_party_size(self, booking: Booking, old_size: int, old_total: int, reason: str) -> None:
        delta = booking.party_size - old_size
        with session_scope(self.session_factory) as db:
            updated = (
                db.query(Booking)
                .filter(Booking.id == booking.id, Booking.party_size == booking.party_size)
                .update({Booking.party_size: old_size, Booking.total_amount_cents: old_total}, synchronize_session=False)
            )
            if not updated:
                logger.warning("Booking %s changed before party size revert; leaving as is", booking.booking_number)
                return
            CapacityLedger(db).release(booking.slot_id, delta)
            record_modification(
                db,
                booking.id,
                MOD_PARTY_SIZE_DECREASE,
                old_value={"party_size": booking.party_size, "total_amount_cents": booking.total_amount_cents},
                new_value={"party_size": old_size, "total_amount_cents": old_total},
                reason=f"Reverted: {reason}",
            )
        self._promote(booking.slot_id)

    def change_slot(
        self,
        booking_id: int,
        new_slot_id: int,
        *,
        modified_by: str = "guest",
        now: datetime | None = None,
    ) -> Booking:
        """Move the booking to another slot of the same offering: reserve new and release old in one transaction."""
        now = now or utcnow()
        with session_scope(self.session_factory) as db:
            booking = get_booking(db, booking_id)
            old_slot = db.get(SlotInstance, booking.slot_id)
            self._check_modifiable(booking, old_slot, now)
            new_slot, offering = self._load_slot(db, new_slot_id)
            if new_slot.offering_id != booking.offering_id:
                raise ModificationNotAllowed("Slot belongs to a different offering")
            if new_slot.id == old_slot.id:
                return booking
            ledger = CapacityLedger(db)
            ledger.reserve(new_slot.id, booking.party_size, capacity_mode_for(db, offering))
            ledger.release(old_slot.id, booking.party_size)
            updated = (
                db.query(Booking)
                .filter(
                    Booking.id == booking_id,
                    Booking.slot_id == old_slot.id,
                    Booking.party_size == booking.party_size,
                    Booking.status.in_(RELEASABLE_STATUSES),
                )
                .update({Booking.slot_id: new_slot.id, Booking.updated_at: now}, synchronize_session=False)
            )
            if not updated:
                raise ModificationNotAllowed("Booking changed concurrently; retry")
            record_modification(
                db,
                booking_id,
                MOD_DATE_CHANGE,
                old_value={"slot_id": old_slot.id, "start_at": old_slot.start_at.isoformat()},
                new_value={"slot_id": new_slot.id, "start_at": new_slot.start_at.isoformat()},
                modified_by=modified_by,
            )
            old_slot_id = old_slot.id
            booking = get_booking(db, booking_id)
            db.refresh(booking)
        logger.info("Booking %s moved from slot %s to %s", booking.booking_number, old_slot_id, new_slot_id)
        self._promote(old_slot_id)
        return booking
