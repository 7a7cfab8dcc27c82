"""
Guest-facing messages: booking confirmation, cancellation, waitlist spot available, reminder.

Every method loads what it needs in its own session, sends through the injected Notifier,
records the attempt in notification_log, and returns True/False. Nothing here raises:
booking correctness never depends on delivery.
"""
import logging

from sqlalchemy import update

from app.config import settings
from app.core.constants import (
    NOTIFY_CANCELLATION,
    NOTIFY_CONFIRMATION,
    NOTIFY_REMINDER,
    NOTIFY_WAITLIST_AVAILABLE,
)
from app.db.session import SessionFactory, session_scope
from app.models.booking import Booking
from app.models.notification_log import NotificationLog
from app.models.offering import Offering
from app.models.slot_instance import SlotInstance
from app.models.waitlist_entry import WaitlistEntry
from app.services.email_notify import Notifier

logger = logging.getLogger(__name__)

LOG_SENT = "SENT"
LOG_FAILED = "FAILED"
LOG_SKIPPED = "SKIPPED"


def format_money(cents: int, currency: str = "usd") -> str:
    amount = f"{(cents or 0) / 100:,.2f}"
    if (currency or "").lower() == "usd":
        return f"${amount}"
    return f"{amount} {currency.upper()}"


def _when(slot: SlotInstance) -> str:
    return slot.start_at.strftime("%A, %B %d at %H:%M")


class NotificationService:
    def __init__(self, session_factory: SessionFactory, notifier: Notifier, app_url: str | None = None):
        self.session_factory = session_factory
        self.notifier = notifier
        self.app_url = (app_url or settings.app_url).rstrip("/")

    def _deliver(
        self,
        kind: str,
        to: str,
        subject: str,
        body: str,
        *,
        booking_id: int | None = None,
        waitlist_entry_id: int | None = None,
    ) -> bool:
        if not getattr(self.notifier, "configured", True):
            status, ok = LOG_SKIPPED, False
        else:
            try:
                ok = bool(self.notifier.send(to, subject, body))
            except Exception as e:
                logger.exception("Notifier raised sending %s to %s: %s", kind, to, e)
                ok = False
            status = LOG_SENT if ok else LOG_FAILED
        try:
            with session_scope(self.session_factory) as db:
                db.add(
                    NotificationLog(
                        to=to,
                        subject=subject,
                        type=kind,
                        status=status,
                        booking_id=booking_id,
                        waitlist_entry_id=waitlist_entry_id,
                    )
                )
        except Exception as e:
            logger.exception("Failed to record %s notification for %s: %s", kind, to, e)
        return ok

    def _load_booking(self, booking_id: int) -> dict | None:
        db = self.session_factory()
        try:
            row = (
                db.query(Booking, SlotInstance, Offering)
                .join(SlotInstance, SlotInstance.id == Booking.slot_id)
                .join(Offering, Offering.id == Booking.offering_id)
                .filter(Booking.id == booking_id)
                .first()
            )
            if row is None:
                return None
            booking, slot, offering = row
            return {
                "id": booking.id,
                "booking_number": booking.booking_number,
                "guest_name": booking.guest_name,
                "guest_email": booking.guest_email,
                "party_size": booking.party_size,
                "total_amount_cents": booking.total_amount_cents,
                "currency": offering.currency,
                "offering_name": offering.name,
                "offering_slug": offering.slug,
                "when": _when(slot),
            }
        finally:
            db.close()

    def send_booking_confirmation(self, booking_id: int) -> bool:
        """Send the confirmation and stamp confirmation_sent on delivery."""
        try:
            info = self._load_booking(booking_id)
            if info is None:
                logger.warning("Confirmation skipped: booking %s not found", booking_id)
                return False
            subject = f"Booking confirmed: {info['offering_name']} ({info['booking_number']})"
            body = "\n".join(
                [
                    f"Hi {info['guest_name']},",
                    "",
                    f"Your booking at {info['offering_name']} is confirmed.",
                    f"When: {info['when']}",
                    f"Guests: {info['party_size']}",
                    f"Total: {format_money(info['total_amount_cents'], info['currency'])}",
                    f"Booking number: {info['booking_number']}",
                    "",
                    f"Manage your booking: {self.app_url}/bookings/{info['booking_number']}",
                ]
            )
            ok = self._deliver(NOTIFY_CONFIRMATION, info["guest_email"], subject, body, booking_id=booking_id)
            if ok:
                with session_scope(self.session_factory) as db:
                    db.execute(update(Booking).where(Booking.id == booking_id).values(confirmation_sent=True))
            return ok
        except Exception as e:
            logger.exception("Confirmation for booking %s failed: %s", booking_id, e)
            return False

    def send_cancellation(self, booking_id: int, refund_cents: int = 0) -> bool:
        try:
            info = self._load_booking(booking_id)
            if info is None:
                return False
            subject = f"Booking cancelled: {info['offering_name']} ({info['booking_number']})"
            lines = [
                f"Hi {info['guest_name']},",
                "",
                f"Your booking at {info['offering_name']} on {info['when']} has been cancelled.",
            ]
            if refund_cents > 0:
                lines.append(f"Refund: {format_money(refund_cents, info['currency'])}")
            return self._deliver(NOTIFY_CANCELLATION, info["guest_email"], subject, "\n".join(lines), booking_id=booking_id)
        except Exception as e:
            logger.exception("Cancellation notice for booking %s failed: %s", booking_id, e)
            return False

    def send_waitlist_available(self, entry_id: int) -> bool:
        """Tell a promoted guest a spot opened, with a booking link valid until the claim expires."""
        try:
            db = self.session_factory()
            try:
                row = (
                    db.query(WaitlistEntry, SlotInstance, Offering)
                    .join(SlotInstance, SlotInstance.id == WaitlistEntry.slot_id)
                    .join(Offering, Offering.id == WaitlistEntry.offering_id)
                    .filter(WaitlistEntry.id == entry_id)
                    .first()
                )
                if row is None:
                    logger.warning("Waitlist notice skipped: entry %s not found", entry_id)
                    return False
                entry, slot, offering = row
                to = entry.guest_email
                subject = f"A spot opened up at {offering.name}"
                expires = entry.expires_at.strftime("%H:%M UTC") if entry.expires_at else "soon"
                body = "\n".join(
                    [
                        f"Hi {entry.guest_name},",
                        "",
                        f"A spot for {entry.party_size} just opened at {offering.name} on {_when(slot)}.",
                        f"It is held for you until {expires}.",
                        "",
                        f"Book now: {self.app_url}/book/{offering.slug}?slot={slot.id}&waitlist={entry.id}",
                    ]
                )
            finally:
                db.close()
            return self._deliver(NOTIFY_WAITLIST_AVAILABLE, to, subject, body, waitlist_entry_id=entry_id)
        except Exception as e:
            logger.exception("Waitlist notice for entry %s failed: %s", entry_id, e)
            return False

    def send_reminder(self, booking_id: int) -> bool:
        try:
            info = self._load_booking(booking_id)
            if info is None:
                return False
            subject = f"Reminder: {info['offering_name']} tomorrow"
            body = "\n".join(
                [
                    f"Hi {info['guest_name']},",
                    "",
                    f"See you at {info['offering_name']} on {info['when']} (party of {info['party_size']}).",
                    f"Booking number: {info['booking_number']}",
                ]
            )
            return self._deliver(NOTIFY_REMINDER, info["guest_email"], subject, body, booking_id=booking_id)
        except Exception as e:
            logger.exception("Reminder for booking %s failed: %s", booking_id, e)
            return False
