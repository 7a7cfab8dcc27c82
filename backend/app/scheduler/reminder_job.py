"""Runs every 15 min: email reminders for confirmed bookings starting in about a day."""
import logging

from app.services.allocation.engine import build_engine

logger = logging.getLogger(__name__)


def run_reminder_job() -> dict | None:
    try:
        return build_engine().send_upcoming_reminders()
    except Exception as e:
        logger.exception("Reminder job failed: %s", e)
        return None
