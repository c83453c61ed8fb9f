"""Time-off model definitions."""

from datetime import datetime

from sqlalchemy import Column, DateTime, Integer, String
from therapy_backend.database import Base


class TimeOff(Base):
    """Represents blocked time, weekly or for a date range."""
    __tablename__ = "time_off"

    id = Column(Integer, primary_key=True)
    therapist_id = Column(String, index=True, nullable=False)
    start_time = Column(DateTime, nullable=False)
    end_time = Column(DateTime, nullable=False)
    recurrence = Column(String, nullable=True)
    reason = Column(String, nullable=True)
    created_at = Column(DateTime, default=datetime.now)
