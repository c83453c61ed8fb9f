import logging

from fastapi import HTTPException, status
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from therapy_backend.database import (
    SessionLocal,
    ensure_appointment_schema,
    ensure_availability_schema,
    ensure_time_off_schema,
)
from therapy_backend.models.appointment import Appointment
from therapy_backend.models.availability import Availability
from therapy_backend.models.time_off import TimeOff

logger = logging.getLogger(__name__)

DATABASE_UNAVAILABLE_DETAIL = 'Database unavailable. Verify DATABASE_URL and database credentials.'


def database_unavailable(exc: SQLAlchemyError) -> HTTPException:
    logger.exception('Database error: %s', exc)
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail=DATABASE_UNAVAILABLE_DETAIL,
    )


def ensure_database_ready() -> None:
    try:
        ensure_availability_schema()
        ensure_time_off_schema()
        ensure_appointment_schema()
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def normalize_therapist_id(value: str) -> str:
    normalized = value.strip()
    if not normalized:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail='Therapist id is required.',
        )
    return normalized


def load_schedule(db: Session, therapist_id: str) -> tuple[list[Availability], list[TimeOff], list[Appointment]]:
    """Read a therapist's three record sets in one session."""
    availability = db.query(Availability).filter(Availability.therapist_id == therapist_id).all()
    time_off = db.query(TimeOff).filter(TimeOff.therapist_id == therapist_id).all()
    appointments = db.query(Appointment).filter(Appointment.therapist_id == therapist_id).all()
    return availability, time_off, appointments
