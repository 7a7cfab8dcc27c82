"""Day-before reminders for confirmed bookings."""
import logging
from datetime import datetime, timedelta

from app.config import settings
from app.core.constants import BOOKING_CONFIRMED
from app.core.timeutil import utcnow
from app.db.session import SessionFactory, session_scope
from app.models.booking import Booking
from app.models.slot_instance import SlotInstance
from app.services.notification_service import NotificationService

logger = logging.getLogger(__name__)

# Half-width of the window around now + lead time; the job runs every 15 minutes.
WINDOW_MINUTES = 30


def send_upcoming_reminders(
    session_factory: SessionFactory,
    notifications: NotificationService,
    now: datetime | None = None,
    lead_hours: int | None = None,
) -> dict:
    """
    Remind CONFIRMED bookings whose slot starts within lead_hours +/- 30 minutes.
    Each booking is claimed (reminder_sent flipped) before sending so overlapping runs do not
    double-send; a failed send clears the flag for the next run.
    """
    now = now or utcnow()
    lead = timedelta(hours=lead_hours if lead_hours is not None else settings.reminder_lead_hours)
    window = timedelta(minutes=WINDOW_MINUTES)
    db = session_factory()
    try:
        due = [
            booking_id
            for (booking_id,) in db.query(Booking.id)
            .join(SlotInstance, SlotInstance.id == Booking.slot_id)
            .filter(
                Booking.status == BOOKING_CONFIRMED,
                Booking.reminder_sent.is_(False),
                SlotInstance.start_at >= now + lead - window,
                SlotInstance.start_at <= now + lead + window,
            )
            .order_by(SlotInstance.start_at.asc())
            .all()
        ]
    finally:
        db.close()

    sent = failed = 0
    for booking_id in due:
        with session_scope(session_factory) as db:
            claimed = (
                db.query(Booking)
                .filter(Booking.id == booking_id, Booking.reminder_sent.is_(False))
                .update({Booking.reminder_sent: True}, synchronize_session=False)
            )
        if not claimed:
            continue
        if notifications.send_reminder(booking_id):
            sent += 1
            continue
        failed += 1
        with session_scope(session_factory) as db:
            db.query(Booking).filter(Booking.id == booking_id).update(
                {Booking.reminder_sent: False}, synchronize_session=False
            )
    if due:
        logger.info("Reminders: %s due, %s sent, %s failed", len(due), sent, failed)
    return {"due": len(due), "sent": sent, "failed": failed}
