"""Bookable offering (restaurant or event). Capacity mode decides how slot capacity is computed."""
from sqlalchemy import Boolean, Column, DateTime, Integer, String

from app.core.constants import CAPACITY_MODE_SIMPLE, POLICY_FLEXIBLE
from app.core.timeutil import utcnow
from app.db.base import Base


class Offering(Base):
    __tablename__ = "offerings"

    id = Column(Integer, primary_key=True, autoincrement=True)
    host_id = Column(String(64), nullable=False, index=True)  # opaque id from the identity provider
    name = Column(String(255), nullable=False)
    slug = Column(String(255), nullable=False, unique=True)
    base_price_cents = Column(Integer, nullable=False, default=0)
    currency = Column(String(8), nullable=False, default="usd")
    capacity_mode = Column(String(16), nullable=False, default=CAPACITY_MODE_SIMPLE)  # simple | table_based
    min_party_size = Column(Integer, nullable=True)
    max_party_size = Column(Integer, nullable=True)
    cancellation_policy = Column(String(16), nullable=False, default=POLICY_FLEXIBLE)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
