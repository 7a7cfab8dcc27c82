"""Concrete bookable slot. remaining_capacity is written only by CapacityLedger. Never deleted."""
from sqlalchemy import CheckConstraint, Column, Date, DateTime, ForeignKey, Integer, String, UniqueConstraint

from app.core.constants import SLOT_AVAILABLE
from app.core.timeutil import utcnow
from app.db.base import Base


class SlotInstance(Base):
    __tablename__ = "slot_instances"
    __table_args__ = (
        UniqueConstraint("offering_id", "start_at", name="uq_slot_instances_offering_start"),
        CheckConstraint(
            "remaining_capacity >= 0 AND remaining_capacity <= total_capacity",
            name="ck_slot_instances_remaining_bounds",
        ),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    offering_id = Column(Integer, ForeignKey("offerings.id"), nullable=False, index=True)
    schedule_definition_id = Column(Integer, ForeignKey("schedule_definitions.id"), nullable=True)
    slot_date = Column(Date, nullable=False, index=True)
    start_at = Column(DateTime, nullable=False)  # venue-local wall clock
    end_at = Column(DateTime, nullable=False)
    total_capacity = Column(Integer, nullable=False)
    remaining_capacity = Column(Integer, nullable=False)
    status = Column(String(16), nullable=False, default=SLOT_AVAILABLE)  # AVAILABLE | FULL | CANCELLED
    created_at = Column(DateTime, nullable=False, default=utcnow)
