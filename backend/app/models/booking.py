"""Reservation against one slot. Holds seats until CANCELLED; rows are never deleted."""
from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String, Text

from app.core.constants import BOOKING_PENDING, PAYMENT_PENDING
from app.core.timeutil import utcnow
from app.db.base import Base


class Booking(Base):
    __tablename__ = "bookings"

    id = Column(Integer, primary_key=True, autoincrement=True)
    booking_number = Column(String(16), nullable=False, unique=True)
    slot_id = Column(Integer, ForeignKey("slot_instances.id"), nullable=False, index=True)
    offering_id = Column(Integer, ForeignKey("offerings.id"), nullable=False, index=True)

    guest_name = Column(String(255), nullable=False)
    guest_email = Column(String(255), nullable=False, index=True)
    guest_phone = Column(String(64), nullable=True)
    party_size = Column(Integer, nullable=False)
    special_requests = Column(Text, nullable=True)

    total_amount_cents = Column(Integer, nullable=False, default=0)
    refunded_amount_cents = Column(Integer, nullable=False, default=0)
    payment_method = Column(String(128), nullable=True)  # gateway payment method reference
    payment_intent_id = Column(String(128), nullable=True, index=True)
    payment_status = Column(String(16), nullable=False, default=PAYMENT_PENDING)
    status = Column(String(16), nullable=False, default=BOOKING_PENDING)

    is_walk_in = Column(Boolean, nullable=False, default=False)
    confirmation_sent = Column(Boolean, nullable=False, default=False)
    reminder_sent = Column(Boolean, nullable=False, default=False)
    checked_in_at = Column(DateTime, nullable=True)
    checked_out_at = Column(DateTime, nullable=True)
    cancelled_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow, index=True)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)
