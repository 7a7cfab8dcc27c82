"""
Waitlist for a full slot. Served by priority desc, then created_at asc.
At most one ACTIVE entry per (slot, guest_email), enforced by a partial unique index.
"""
from sqlalchemy import Column, DateTime, ForeignKey, Index, Integer, String, text

from app.core.constants import WAITLIST_ACTIVE
from app.core.timeutil import utcnow
from app.db.base import Base


class WaitlistEntry(Base):
    __tablename__ = "waitlist_entries"
    __table_args__ = (
        Index(
            "uq_waitlist_entries_active_guest_slot",
            "slot_id",
            "guest_email",
            unique=True,
            postgresql_where=text("status = 'ACTIVE'"),
            sqlite_where=text("status = 'ACTIVE'"),
        ),
        Index("ix_waitlist_entries_slot_status", "slot_id", "status"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    offering_id = Column(Integer, ForeignKey("offerings.id"), nullable=False)
    slot_id = Column(Integer, ForeignKey("slot_instances.id"), nullable=False)
    guest_name = Column(String(255), nullable=False)
    guest_email = Column(String(255), nullable=False)
    guest_phone = Column(String(64), nullable=True)
    party_size = Column(Integer, nullable=False)
    status = Column(String(16), nullable=False, default=WAITLIST_ACTIVE)  # ACTIVE | NOTIFIED | EXPIRED | CONVERTED
    priority = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    notified_at = Column(DateTime, nullable=True)
    expires_at = Column(DateTime, nullable=True)  # claim window end once NOTIFIED
    converted_booking_id = Column(Integer, ForeignKey("bookings.id"), nullable=True)
