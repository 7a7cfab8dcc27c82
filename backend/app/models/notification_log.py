"""Outbound notification attempts (confirmation, reminder, waitlist alert). Delivery failures are recorded, not retried."""
from sqlalchemy import Column, DateTime, Integer, String

from app.core.timeutil import utcnow
from app.db.base import Base


class NotificationLog(Base):
    __tablename__ = "notification_log"

    id = Column(Integer, primary_key=True, autoincrement=True)
    to = Column(String(255), nullable=False)
    subject = Column(String(255), nullable=False)
    type = Column(String(32), nullable=False, index=True)
    status = Column(String(16), nullable=False)  # SENT | FAILED | SKIPPED
    booking_id = Column(Integer, nullable=True, index=True)
    waitlist_entry_id = Column(Integer, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
