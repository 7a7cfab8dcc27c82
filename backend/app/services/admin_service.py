"""
Admin: clear booking data. Tables are listed in app.db.tables (child-first order).
Scheduler state is in-memory; restart the backend for a fully fresh scheduler.
"""
import logging

from sqlalchemy import text
from sqlalchemy.orm import Session

from app.db.tables import ALL_TABLE_NAMES, TRANSIENT_TABLE_NAMES

logger = logging.getLogger(__name__)


def _delete_tables(db: Session, tables: tuple[str, ...]) -> dict[str, int]:
    deleted: dict[str, int] = {}
    try:
        for table in tables:
            deleted[table] = db.execute(text(f'DELETE FROM "{table}"')).rowcount
        db.commit()
    except Exception:
        db.rollback()
        raise
    return deleted


def clear_transient(db: Session) -> dict[str, int]:
    """Delete in-flight checkout holds only. Bookings, slots and waitlists are untouched."""
    deleted = _delete_tables(db, TRANSIENT_TABLE_NAMES)
    logger.info("clear_transient: %s", deleted)
    return deleted


def reset_all(db: Session) -> dict[str, int]:
    """Delete every row from every table. Returns table -> deleted count."""
    logger.info("reset_all: starting (full reset)")
    deleted = _delete_tables(db, ALL_TABLE_NAMES)
    logger.info("reset_all: done %s", deleted)
    return deleted
