"""Runs every hour: fill the rolling horizon with slots from active schedule definitions."""
import logging

from app.services.allocation.engine import build_engine

logger = logging.getLogger(__name__)


def run_materialize_job() -> dict | None:
    try:
        return build_engine().materialize_upcoming_slots()
    except Exception as e:
        logger.exception("Materialize job failed: %s", e)
        return None
