"""Runs every 2 min: drop expired holds, expire abandoned payments and stale waitlist claims, promote."""
import logging

from app.services.allocation.engine import build_engine

logger = logging.getLogger(__name__)


def run_reap_job() -> dict | None:
    try:
        return build_engine().reap_expired_holds()
    except Exception as e:
        logger.exception("Reap job failed: %s", e)
        return None
