"""Appointment model definitions."""

from datetime import datetime

from sqlalchemy import Boolean, Column, DateTime, Index, Integer, String, text
from therapy_backend.database import Base


class Appointment(Base):
    """Represents a booked client session."""
    __tablename__ = "appointments"
    __table_args__ = (
        # One live booking per therapist and start time, even on the forced path.
        Index(
            "uq_appointments_therapist_start",
            "therapist_id",
            "start_time",
            unique=True,
            sqlite_where=text("status != 'cancelled'"),
            postgresql_where=text("status != 'cancelled'"),
        ),
    )

    id = Column(Integer, primary_key=True)
    therapist_id = Column(String, index=True, nullable=False)
    client_id = Column(String, nullable=True)
    client_name = Column(String, nullable=True)
    start_time = Column(DateTime, nullable=False)
    end_time = Column(DateTime, nullable=False)
    status = Column(String, default="pending")
    notes = Column(String, nullable=True)
    overrides_time_off = Column(Boolean, default=False)
    override_reason = Column(String, nullable=True)
    created_at = Column(DateTime, default=datetime.now)
