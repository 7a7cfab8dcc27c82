"""Short-lived checkout placeholder. Reduces reported availability; never touches remaining_capacity."""
from sqlalchemy import Column, DateTime, ForeignKey, Integer, String

from app.core.timeutil import utcnow
from app.db.base import Base


class BookingHold(Base):
    __tablename__ = "booking_holds"

    id = Column(Integer, primary_key=True, autoincrement=True)
    slot_id = Column(Integer, ForeignKey("slot_instances.id"), nullable=False, index=True)
    session_id = Column(String(128), nullable=False, index=True)
    party_size = Column(Integer, nullable=False)
    expires_at = Column(DateTime, nullable=False, index=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
