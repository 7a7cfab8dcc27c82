"""
Recurring availability template: either a service period (weekday mask + seating window)
or a recurrence rule (frequency/interval/count/until + by-* filters). Soft-deactivated only.
"""
from sqlalchemy import JSON, Boolean, Column, DateTime, ForeignKey, Integer, String, Time

from app.core.constants import SCHEDULE_SERVICE_PERIOD
from app.core.timeutil import utcnow
from app.db.base import Base


class ScheduleDefinition(Base):
    __tablename__ = "schedule_definitions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    offering_id = Column(Integer, ForeignKey("offerings.id"), nullable=False, index=True)
    name = Column(String(128), nullable=True)
    kind = Column(String(16), nullable=False, default=SCHEDULE_SERVICE_PERIOD)  # service_period | recurrence
    max_per_slot = Column(Integer, nullable=False, default=0)
    is_active = Column(Boolean, nullable=False, default=True)
    last_generated = Column(DateTime, nullable=True)  # watermark: horizon end of the last successful run

    # service_period
    days_of_week = Column(JSON, nullable=False, default=list)  # 0=Mon .. 6=Sun
    start_time = Column(Time, nullable=True)
    end_time = Column(Time, nullable=True)  # end of service
    last_seating = Column(Time, nullable=True)  # defaults to the last start before end_time
    interval_minutes = Column(Integer, nullable=False, default=30)

    # recurrence
    frequency = Column(String(8), nullable=True)  # DAILY | WEEKLY | MONTHLY | YEARLY
    recurrence_interval = Column(Integer, nullable=False, default=1)
    dtstart = Column(DateTime, nullable=True)
    count = Column(Integer, nullable=True)
    until = Column(DateTime, nullable=True)
    by_weekday = Column(JSON, nullable=False, default=list)
    by_month_day = Column(JSON, nullable=False, default=list)
    by_month = Column(JSON, nullable=False, default=list)
    duration_minutes = Column(Integer, nullable=False, default=120)

    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)
