"""Physical table; only used by table_based offerings."""
from sqlalchemy import Boolean, Column, ForeignKey, Integer, String

from app.db.base import Base


class DiningTable(Base):
    __tablename__ = "dining_tables"

    id = Column(Integer, primary_key=True, autoincrement=True)
    offering_id = Column(Integer, ForeignKey("offerings.id"), nullable=False, index=True)
    table_number = Column(String(32), nullable=False)
    capacity = Column(Integer, nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
