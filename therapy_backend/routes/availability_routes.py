import logging
from datetime import date, datetime, time, timedelta

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, field_validator, model_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from therapy_backend.core import config
from therapy_backend.models.availability import Availability
from therapy_backend.models.time_off import TimeOff
from therapy_backend.routes.dependencies import (
    database_unavailable,
    ensure_database_ready,
    get_db,
    load_schedule,
    normalize_therapist_id,
)
from therapy_backend.scheduling.intervals import END_OF_DAY
from therapy_backend.scheduling.merge import MergePlan, plan_merge
from therapy_backend.scheduling.records import normalize_availability, normalize_time_off
from therapy_backend.scheduling.recurrence import build_recurrence
from therapy_backend.scheduling.slots import OpenSlot, generate_open_slots
from therapy_backend.scheduling.timeline import TimeBlock, resolve_range, resolve_timeline

logger = logging.getLogger(__name__)

router = APIRouter(tags=['availability'])

MAX_REASON_LENGTH = 200
PENDING_RECORD_ID = 'pending'


def _validate_weekdays(value: list[int] | None) -> list[int] | None:
    if value is None:
        return None
    if not value:
        raise ValueError('Pick at least one day of the week.')
    if any(day < 0 or day > 6 for day in value):
        raise ValueError('Days of the week run from 0 (Sunday) to 6 (Saturday).')
    return sorted(set(value))


class CreateWindowRequest(BaseModel):
    therapist_id: str
    start_time: time
    end_time: time
    days: list[int] | None = None
    on_date: date | None = None
    merge: bool = False
    force: bool = False

    @field_validator('therapist_id')
    @classmethod
    def validate_therapist_id(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError('Therapist id is required.')
        return normalized

    @field_validator('days')
    @classmethod
    def validate_days(cls, value: list[int] | None) -> list[int] | None:
        return _validate_weekdays(value)

    @model_validator(mode='after')
    def validate_range(self) -> 'CreateWindowRequest':
        if (self.days is None) == (self.on_date is None):
            raise ValueError('Provide either recurring days or a single date.')
        if self.end_time <= self.start_time:
            raise ValueError('End time must be after start time.')
        return self


class CreateTimeOffRequest(BaseModel):
    therapist_id: str
    days: list[int] | None = None
    start_date: date | None = None
    end_date: date | None = None
    start_time: time | None = None
    end_time: time | None = None
    all_day: bool = False
    reason: str | None = None
    merge: bool = False
    force: bool = False

    @field_validator('therapist_id')
    @classmethod
    def validate_therapist_id(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError('Therapist id is required.')
        return normalized

    @field_validator('days')
    @classmethod
    def validate_days(cls, value: list[int] | None) -> list[int] | None:
        return _validate_weekdays(value)

    @field_validator('reason')
    @classmethod
    def validate_reason(cls, value: str | None) -> str | None:
        if value is None:
            return None

        normalized = value.strip()
        if not normalized:
            return None

        if len(normalized) > MAX_REASON_LENGTH:
            raise ValueError(f'Reason must be {MAX_REASON_LENGTH} characters or fewer.')

        return normalized

    @model_validator(mode='after')
    def validate_range(self) -> 'CreateTimeOffRequest':
        if (self.days is None) == (self.start_date is None):
            raise ValueError('Provide either recurring days or a start date.')
        if self.days is not None and self.end_date is not None:
            raise ValueError('Recurring time-off cannot have an end date.')
        if self.end_date is not None and self.end_date < self.start_date:
            raise ValueError('End date must not be before start date.')

        if self.all_day:
            return self

        if self.start_time is None or self.end_time is None:
            raise ValueError('Start and end times are required unless the time-off is all day.')
        if self.start_date is not None and self.end_date not in (None, self.start_date):
            return self
        if self.end_time <= self.start_time:
            raise ValueError('End time must be after start time.')
        return self


class WindowResponse(BaseModel):
    id: int
    therapist_id: str
    start_time: datetime
    end_time: datetime
    recurrence: str | None = None
    created_at: datetime | None = None

    class Config:
        from_attributes = True


class TimeOffResponse(BaseModel):
    id: int
    therapist_id: str
    start_time: datetime
    end_time: datetime
    recurrence: str | None = None
    reason: str | None = None
    created_at: datetime | None = None

    class Config:
        from_attributes = True


def window_bounds(data: CreateWindowRequest, today: date) -> tuple[datetime, datetime, str | None]:
    if data.days is not None:
        return (
            datetime.combine(today, data.start_time),
            datetime.combine(today, data.end_time),
            build_recurrence(data.days),
        )
    return datetime.combine(data.on_date, data.start_time), datetime.combine(data.on_date, data.end_time), None


def time_off_bounds(data: CreateTimeOffRequest, today: date) -> tuple[datetime, datetime, str | None]:
    if data.days is not None:
        if data.all_day:
            return datetime.combine(today, time()), datetime.combine(today, END_OF_DAY), build_recurrence(data.days)
        return (
            datetime.combine(today, data.start_time),
            datetime.combine(today, data.end_time),
            build_recurrence(data.days),
        )

    last_date = data.end_date or data.start_date
    if data.all_day:
        # All-day ranges end at the following midnight, which is exclusive.
        return (
            datetime.combine(data.start_date, time()),
            datetime.combine(last_date + timedelta(days=1), time()),
            None,
        )
    return datetime.combine(data.start_date, data.start_time), datetime.combine(last_date, data.end_time), None


def merge_conflict(plan: MergePlan) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_409_CONFLICT,
        detail={
            'message': 'This range overlaps an existing entry. Resubmit with merge to combine them.',
            'merge_plan': plan.model_dump(mode='json'),
        },
    )


def apply_merge(db: Session, model, plan: MergePlan, therapist_id: str):
    """Rewrite the replaced rows to the planned ranges.

    Replaced rows are reused in id order, surplus rows are deleted and extra
    ranges get new rows. Returns the row holding the first range.
    """
    replaced_ids = [int(record_id) for record_id in plan.replaced_ids]
    rows = db.query(model).filter(
        model.therapist_id == therapist_id,
        model.id.in_(replaced_ids),
    ).order_by(model.id.asc()).all()

    written = []
    for index, merged in enumerate(plan.ranges):
        if index < len(rows):
            row = rows[index]
        else:
            row = model(therapist_id=therapist_id)
            db.add(row)
        row.start_time = merged.start_time
        row.end_time = merged.end_time
        row.recurrence = merged.recurrence.to_descriptor() if merged.recurrence else None
        if model is TimeOff:
            row.reason = merged.reason
        written.append(row)

    for row in rows[len(plan.ranges):]:
        db.delete(row)

    logger.info('Merged %s rows into %s %s rows', len(rows), len(written), model.__tablename__)
    return written[0]


def get_owned_row(db: Session, model, row_id: int, therapist_id: str, missing_detail: str):
    row = db.query(model).filter(model.id == row_id, model.therapist_id == therapist_id).first()
    if not row:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=missing_detail,
        )
    return row


def check_range_days(days: int) -> None:
    if days > config.MAX_RANGE_DAYS:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f'A range can cover at most {config.MAX_RANGE_DAYS} days.',
        )


@router.post('/windows', response_model=WindowResponse, status_code=status.HTTP_201_CREATED)
def create_window(data: CreateWindowRequest, db: Session = Depends(get_db)):
    ensure_database_ready()

    start_time, end_time, recurrence = window_bounds(data, date.today())

    try:
        candidate = normalize_availability({
            'id': PENDING_RECORD_ID,
            'therapist_id': data.therapist_id,
            'start_time': start_time,
            'end_time': end_time,
            'recurrence': recurrence,
        })
        existing = db.query(Availability).filter(Availability.therapist_id == data.therapist_id).all()
        plan = None if data.force else plan_merge(candidate, existing)

        if plan and not data.merge:
            raise merge_conflict(plan)

        if plan:
            window = apply_merge(db, Availability, plan, data.therapist_id)
        else:
            window = Availability(
                therapist_id=data.therapist_id,
                start_time=start_time,
                end_time=end_time,
                recurrence=recurrence,
            )
            db.add(window)

        db.commit()
        db.refresh(window)

        return window
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable(exc) from exc


@router.get('/windows', response_model=list[WindowResponse])
def list_windows(
    therapist_id: str = Query(...),
    db: Session = Depends(get_db),
):
    therapist_id = normalize_therapist_id(therapist_id)
    ensure_database_ready()

    try:
        return db.query(Availability).filter(
            Availability.therapist_id == therapist_id,
        ).order_by(Availability.start_time.asc()).all()
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc


@router.delete('/windows/{window_id}', status_code=status.HTTP_204_NO_CONTENT)
def remove_window(
    window_id: int,
    therapist_id: str = Query(...),
    db: Session = Depends(get_db),
):
    therapist_id = normalize_therapist_id(therapist_id)
    ensure_database_ready()

    try:
        window = get_owned_row(db, Availability, window_id, therapist_id, 'Availability window not found.')
        db.delete(window)
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable(exc) from exc


@router.post('/time-off', response_model=TimeOffResponse, status_code=status.HTTP_201_CREATED)
def create_time_off(data: CreateTimeOffRequest, db: Session = Depends(get_db)):
    ensure_database_ready()

    start_time, end_time, recurrence = time_off_bounds(data, date.today())

    try:
        candidate = normalize_time_off({
            'id': PENDING_RECORD_ID,
            'therapist_id': data.therapist_id,
            'start_time': start_time,
            'end_time': end_time,
            'recurrence': recurrence,
            'reason': data.reason,
        })
        existing = db.query(TimeOff).filter(TimeOff.therapist_id == data.therapist_id).all()
        plan = None if data.force else plan_merge(candidate, existing)

        if plan and not data.merge:
            raise merge_conflict(plan)

        if plan:
            time_off = apply_merge(db, TimeOff, plan, data.therapist_id)
        else:
            time_off = TimeOff(
                therapist_id=data.therapist_id,
                start_time=start_time,
                end_time=end_time,
                recurrence=recurrence,
                reason=data.reason,
            )
            db.add(time_off)

        db.commit()
        db.refresh(time_off)

        return time_off
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable(exc) from exc


@router.get('/time-off', response_model=list[TimeOffResponse])
def list_time_off(
    therapist_id: str = Query(...),
    db: Session = Depends(get_db),
):
    therapist_id = normalize_therapist_id(therapist_id)
    ensure_database_ready()

    try:
        return db.query(TimeOff).filter(
            TimeOff.therapist_id == therapist_id,
        ).order_by(TimeOff.start_time.asc()).all()
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc


@router.delete('/time-off/{time_off_id}', status_code=status.HTTP_204_NO_CONTENT)
def remove_time_off(
    time_off_id: int,
    therapist_id: str = Query(...),
    db: Session = Depends(get_db),
):
    therapist_id = normalize_therapist_id(therapist_id)
    ensure_database_ready()

    try:
        time_off = get_owned_row(db, TimeOff, time_off_id, therapist_id, 'Time-off not found.')
        db.delete(time_off)
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable(exc) from exc


@router.get('/timeline', response_model=list[TimeBlock])
def get_timeline(
    therapist_id: str = Query(...),
    day: date = Query(..., alias='date'),
    db: Session = Depends(get_db),
):
    therapist_id = normalize_therapist_id(therapist_id)
    ensure_database_ready()

    try:
        availability, time_off, appointments = load_schedule(db, therapist_id)
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc

    return resolve_timeline(day, availability, time_off, appointments, today=date.today())


@router.get('/week', response_model=dict[str, list[TimeBlock]])
def get_week(
    therapist_id: str = Query(...),
    start_date: date = Query(...),
    days: int = Query(default=config.WEEK_VIEW_DAYS, ge=1),
    db: Session = Depends(get_db),
):
    therapist_id = normalize_therapist_id(therapist_id)
    check_range_days(days)
    ensure_database_ready()

    try:
        availability, time_off, appointments = load_schedule(db, therapist_id)
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc

    end_date = start_date + timedelta(days=days - 1)
    return resolve_range(start_date, end_date, availability, time_off, appointments, today=date.today())


@router.get('/open-slots', response_model=list[OpenSlot])
def list_open_slots(
    therapist_id: str = Query(...),
    day: date = Query(..., alias='date'),
    duration_minutes: int = Query(default=config.DEFAULT_SLOT_MINUTES, ge=5, le=24 * 60),
    step_minutes: int | None = Query(default=None, ge=5),
    db: Session = Depends(get_db),
):
    therapist_id = normalize_therapist_id(therapist_id)
    ensure_database_ready()

    try:
        availability, time_off, appointments = load_schedule(db, therapist_id)
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc

    now = datetime.now()
    blocks = resolve_timeline(day, availability, time_off, appointments, today=now.date())
    return generate_open_slots(
        day,
        blocks,
        duration_minutes,
        step_minutes=step_minutes,
        not_before=now if day <= now.date() else None,
    )
