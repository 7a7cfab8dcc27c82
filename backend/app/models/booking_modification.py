"""Append-only audit trail for booking status, capacity and refund changes."""
from sqlalchemy import JSON, Column, DateTime, ForeignKey, Integer, String, Text

from app.core.timeutil import utcnow
from app.db.base import Base


class BookingModification(Base):
    __tablename__ = "booking_modifications"

    id = Column(Integer, primary_key=True, autoincrement=True)
    booking_id = Column(Integer, ForeignKey("bookings.id"), nullable=False, index=True)
    modification_type = Column(String(32), nullable=False)
    old_value = Column(JSON, nullable=True)
    new_value = Column(JSON, nullable=True)
    reason = Column(Text, nullable=True)
    modified_by = Column(String(64), nullable=True)  # guest | host | system | host id
    refund_amount_cents = Column(Integer, nullable=True)
    refund_status = Column(String(16), nullable=True)  # PENDING | COMPLETED | FAILED
    refunded_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
