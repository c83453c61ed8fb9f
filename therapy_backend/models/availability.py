"""Availability model definitions."""

from datetime import datetime

from sqlalchemy import Column, DateTime, Integer, String
from therapy_backend.database import Base


class Availability(Base):
    """Represents a therapist's working hours, weekly or for one date."""
    __tablename__ = "availability"

    id = Column(Integer, primary_key=True)
    therapist_id = Column(String, index=True, nullable=False)
    start_time = Column(DateTime, nullable=False)
    end_time = Column(DateTime, nullable=False)
    recurrence = Column(String, nullable=True)  # weekly:Mon,Wed; NULL for one date
    created_at = Column(DateTime, default=datetime.now)
