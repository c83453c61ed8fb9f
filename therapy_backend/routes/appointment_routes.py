import logging
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, field_validator, model_validator
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from therapy_backend.models.appointment import Appointment
from therapy_backend.routes.dependencies import (
    database_unavailable,
    ensure_database_ready,
    get_db,
    load_schedule,
    normalize_therapist_id,
)
from therapy_backend.scheduling.conflicts import ConflictReport, check_conflicts, needs_override_reason
from therapy_backend.scheduling.errors import SchedulingError
from therapy_backend.scheduling.records import AppointmentStatus, parse_status

logger = logging.getLogger(__name__)

router = APIRouter(tags=['appointments'])

MAX_APPOINTMENT_NOTES_LENGTH = 600
MAX_OVERRIDE_REASON_LENGTH = 200
BOOKABLE_STATUSES = {AppointmentStatus.PENDING, AppointmentStatus.CONFIRMED}


def _optional_text(value: str | None, limit: int, label: str) -> str | None:
    if value is None:
        return None

    normalized = value.strip()
    if not normalized:
        return None

    if len(normalized) > limit:
        raise ValueError(f'{label} must be {limit} characters or fewer.')

    return normalized


class ConflictCheckRequest(BaseModel):
    therapist_id: str
    start_time: datetime
    end_time: datetime
    exclude_appointment_id: int | None = None

    @field_validator('therapist_id')
    @classmethod
    def validate_therapist_id(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError('Therapist id is required.')
        return normalized

    @model_validator(mode='after')
    def validate_range(self) -> 'ConflictCheckRequest':
        if self.end_time <= self.start_time:
            raise ValueError('End time must be after start time.')
        return self


class CreateAppointmentRequest(ConflictCheckRequest):
    client_id: str | None = None
    client_name: str | None = None
    status: AppointmentStatus = AppointmentStatus.PENDING
    notes: str | None = None
    force: bool = False
    override_reason: str | None = None

    @field_validator('status')
    @classmethod
    def validate_status(cls, value: AppointmentStatus) -> AppointmentStatus:
        if value not in BOOKABLE_STATUSES:
            raise ValueError('New appointments must be pending or confirmed.')
        return value

    @field_validator('notes')
    @classmethod
    def validate_notes(cls, value: str | None) -> str | None:
        return _optional_text(value, MAX_APPOINTMENT_NOTES_LENGTH, 'Notes')

    @field_validator('override_reason')
    @classmethod
    def validate_override_reason(cls, value: str | None) -> str | None:
        return _optional_text(value, MAX_OVERRIDE_REASON_LENGTH, 'Override reason')


class UpdateStatusRequest(BaseModel):
    therapist_id: str
    status: str

    @field_validator('status')
    @classmethod
    def validate_status(cls, value: str) -> str:
        try:
            return parse_status(value).value
        except SchedulingError as exc:
            raise ValueError('Invalid appointment status.') from exc


class AppointmentResponse(BaseModel):
    id: int
    therapist_id: str
    client_id: str | None = None
    client_name: str | None = None
    start_time: datetime
    end_time: datetime
    status: str
    notes: str | None = None
    overrides_time_off: bool = False
    override_reason: str | None = None

    class Config:
        from_attributes = True


def build_conflict_report(db: Session, data: ConflictCheckRequest) -> ConflictReport:
    availability, time_off, appointments = load_schedule(db, data.therapist_id)
    return check_conflicts(
        data.start_time.date(),
        data.start_time,
        data.end_time,
        availability,
        time_off,
        appointments,
        owner_id=data.therapist_id,
        exclude_appointment_id=data.exclude_appointment_id,
    )


@router.post('/conflicts', response_model=ConflictReport)
def check_appointment_conflicts(data: ConflictCheckRequest, db: Session = Depends(get_db)):
    ensure_database_ready()

    try:
        return build_conflict_report(db, data)
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc


@router.post('', response_model=AppointmentResponse, status_code=status.HTTP_201_CREATED)
def create_appointment(data: CreateAppointmentRequest, db: Session = Depends(get_db)):
    ensure_database_ready()

    try:
        # Checked in the same transaction as the insert.
        report = build_conflict_report(db, data)

        if report.has_conflict and not data.force:
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail={
                    'message': 'The requested time conflicts with your schedule.',
                    'conflicts': report.model_dump(mode='json'),
                },
            )

        overrides_time_off = needs_override_reason(report)
        if overrides_time_off and not data.override_reason:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail='An override reason is required to book over time-off.',
            )

        appointment = Appointment(
            therapist_id=data.therapist_id,
            client_id=data.client_id,
            client_name=data.client_name,
            start_time=data.start_time,
            end_time=data.end_time,
            status=data.status.value,
            notes=data.notes,
            overrides_time_off=overrides_time_off,
            override_reason=data.override_reason if overrides_time_off else None,
        )
        db.add(appointment)
        db.commit()
        db.refresh(appointment)

        if report.has_conflict:
            logger.info('Appointment %s booked over conflicts: %s', appointment.id, report)

        return appointment
    except IntegrityError as exc:
        db.rollback()
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail='This time is already booked.',
        ) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable(exc) from exc


@router.get('', response_model=list[AppointmentResponse])
def list_appointments(
    therapist_id: str = Query(...),
    start: datetime | None = Query(default=None),
    end: datetime | None = Query(default=None),
    include_cancelled: bool = Query(default=False),
    db: Session = Depends(get_db),
):
    therapist_id = normalize_therapist_id(therapist_id)
    ensure_database_ready()

    try:
        query = db.query(Appointment).filter(Appointment.therapist_id == therapist_id)
        if start is not None:
            query = query.filter(Appointment.end_time > start)
        if end is not None:
            query = query.filter(Appointment.start_time < end)
        if not include_cancelled:
            query = query.filter(Appointment.status != AppointmentStatus.CANCELLED.value)

        return query.order_by(Appointment.start_time.asc()).all()
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc


@router.patch('/{appointment_id}/status', response_model=AppointmentResponse)
def update_appointment_status(
    appointment_id: int,
    data: UpdateStatusRequest,
    db: Session = Depends(get_db),
):
    therapist_id = normalize_therapist_id(data.therapist_id)
    ensure_database_ready()

    try:
        appointment = db.query(Appointment).filter(
            Appointment.id == appointment_id,
            Appointment.therapist_id == therapist_id,
        ).first()

        if not appointment:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail='Appointment not found.',
            )

        appointment.status = data.status
        db.commit()
        db.refresh(appointment)

        return appointment
    except IntegrityError as exc:
        db.rollback()
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail='Another appointment is already booked at this time.',
        ) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable(exc) from exc
