import os
from datetime import datetime

import pytest
from fastapi import HTTPException
from pydantic import ValidationError
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

os.environ.setdefault('DATABASE_URL', 'sqlite:///./test.db')

from therapy_backend.routes.appointment_routes import (  # noqa: E402
    ConflictCheckRequest,
    CreateAppointmentRequest,
    UpdateStatusRequest,
    check_appointment_conflicts,
    create_appointment,
    list_appointments,
    update_appointment_status,
)
from therapy_backend.database import Base  # noqa: E402
from therapy_backend.models.appointment import Appointment  # noqa: E402
from therapy_backend.models.availability import Availability  # noqa: E402
from therapy_backend.models.time_off import TimeOff  # noqa: E402


@pytest.fixture
def booking_db(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setattr('therapy_backend.routes.appointment_routes.ensure_database_ready', lambda: None)

    engine = create_engine('sqlite:///:memory:')
    testing_session_local = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    tables = [Availability.__table__, TimeOff.__table__, Appointment.__table__]
    Base.metadata.create_all(bind=engine, tables=tables)

    db = testing_session_local()
    db.add_all([
        Availability(
            therapist_id='t-1',
            start_time=datetime(2026, 1, 5, 9, 0),
            end_time=datetime(2026, 1, 5, 17, 0),
            recurrence='weekly:Mon',
        ),
        TimeOff(
            therapist_id='t-1',
            start_time=datetime(2026, 1, 5, 12, 0),
            end_time=datetime(2026, 1, 5, 13, 0),
            recurrence='weekly:Mon',
            reason='lunch',
        ),
    ])
    db.commit()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine, tables=tables)


def booking(start: datetime, end: datetime, **fields) -> CreateAppointmentRequest:
    return CreateAppointmentRequest(therapist_id='t-1', client_id='c-1', start_time=start, end_time=end, **fields)


def test_conflict_request_rejects_inverted_range() -> None:
    with pytest.raises(ValidationError):
        ConflictCheckRequest(
            therapist_id='t-1',
            start_time=datetime(2030, 1, 7, 11, 0),
            end_time=datetime(2030, 1, 7, 10, 0),
        )


def test_create_request_rejects_finished_status() -> None:
    with pytest.raises(ValidationError):
        booking(datetime(2030, 1, 7, 10, 0), datetime(2030, 1, 7, 11, 0), status='completed')


def test_update_status_request_maps_legacy_status() -> None:
    assert UpdateStatusRequest(therapist_id='t-1', status='Scheduled').status == 'confirmed'

    with pytest.raises(ValidationError):
        UpdateStatusRequest(therapist_id='t-1', status='lost')


def test_conflict_check_reports_lunch(booking_db) -> None:
    report = check_appointment_conflicts(
        ConflictCheckRequest(
            therapist_id='t-1',
            start_time=datetime(2030, 1, 7, 12, 15),
            end_time=datetime(2030, 1, 7, 12, 45),
        ),
        db=booking_db,
    )

    assert report.has_conflict
    assert report.time_off_conflict.severity.value == 'medium'


def test_create_appointment_inside_availability(booking_db) -> None:
    appointment = create_appointment(
        booking(datetime(2030, 1, 7, 10, 0), datetime(2030, 1, 7, 11, 0), client_name='Sam', notes='  intake '),
        db=booking_db,
    )

    assert appointment.id is not None
    assert appointment.status == 'pending'
    assert appointment.notes == 'intake'
    assert not appointment.overrides_time_off


def test_conflicting_appointment_is_refused_with_report(booking_db) -> None:
    with pytest.raises(HTTPException) as exception_info:
        create_appointment(booking(datetime(2030, 1, 7, 12, 15), datetime(2030, 1, 7, 12, 45)), db=booking_db)

    assert exception_info.value.status_code == 409
    conflicts = exception_info.value.detail['conflicts']
    assert conflicts['time_off_conflict']['severity'] == 'medium'
    assert booking_db.query(Appointment).count() == 0


def test_forcing_through_time_off_requires_reason(booking_db) -> None:
    with pytest.raises(HTTPException) as exception_info:
        create_appointment(
            booking(datetime(2030, 1, 7, 12, 15), datetime(2030, 1, 7, 12, 45), force=True),
            db=booking_db,
        )

    assert exception_info.value.status_code == 400
    assert exception_info.value.detail == 'An override reason is required to book over time-off.'


def test_forced_booking_records_override(booking_db) -> None:
    appointment = create_appointment(
        booking(
            datetime(2030, 1, 7, 12, 15),
            datetime(2030, 1, 7, 12, 45),
            force=True,
            override_reason='Client emergency',
        ),
        db=booking_db,
    )

    assert appointment.overrides_time_off
    assert appointment.override_reason == 'Client emergency'


def test_same_start_cannot_be_double_booked_even_when_forced(booking_db) -> None:
    create_appointment(
        booking(datetime(2030, 1, 7, 10, 0), datetime(2030, 1, 7, 11, 0), status='confirmed'),
        db=booking_db,
    )

    with pytest.raises(HTTPException) as exception_info:
        create_appointment(
            booking(datetime(2030, 1, 7, 10, 0), datetime(2030, 1, 7, 10, 30), force=True),
            db=booking_db,
        )

    assert exception_info.value.status_code == 409
    assert exception_info.value.detail == 'This time is already booked.'
    assert booking_db.query(Appointment).count() == 1


def test_cancelled_booking_frees_its_start_time(booking_db) -> None:
    first = create_appointment(
        booking(datetime(2030, 1, 7, 10, 0), datetime(2030, 1, 7, 11, 0)),
        db=booking_db,
    )
    update_appointment_status(
        appointment_id=first.id,
        data=UpdateStatusRequest(therapist_id='t-1', status='cancelled'),
        db=booking_db,
    )

    second = create_appointment(
        booking(datetime(2030, 1, 7, 10, 0), datetime(2030, 1, 7, 11, 0)),
        db=booking_db,
    )

    assert second.id != first.id


def test_list_appointments_hides_cancelled_by_default(booking_db) -> None:
    kept = create_appointment(booking(datetime(2030, 1, 7, 14, 0), datetime(2030, 1, 7, 15, 0)), db=booking_db)
    dropped = create_appointment(booking(datetime(2030, 1, 7, 10, 0), datetime(2030, 1, 7, 11, 0)), db=booking_db)
    update_appointment_status(
        appointment_id=dropped.id,
        data=UpdateStatusRequest(therapist_id='t-1', status='cancelled'),
        db=booking_db,
    )

    visible = list_appointments(therapist_id='t-1', start=None, end=None, include_cancelled=False, db=booking_db)
    everything = list_appointments(therapist_id='t-1', start=None, end=None, include_cancelled=True, db=booking_db)

    assert [appointment.id for appointment in visible] == [kept.id]
    assert [appointment.id for appointment in everything] == [dropped.id, kept.id]


def test_update_status_for_unknown_appointment(booking_db) -> None:
    with pytest.raises(HTTPException) as exception_info:
        update_appointment_status(
            appointment_id=999,
            data=UpdateStatusRequest(therapist_id='t-1', status='confirmed'),
            db=booking_db,
        )

    assert exception_info.value.status_code == 404
    assert exception_info.value.detail == 'Appointment not found.'
