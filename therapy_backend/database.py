import logging
from threading import Lock

from sqlalchemy import create_engine, inspect, text
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import declarative_base, sessionmaker

from therapy_backend.core import config
from therapy_backend.scheduling.recurrence import recurrence_from_legacy

logger = logging.getLogger(__name__)

_connect_args = {"check_same_thread": False} if config.DATABASE_URL.startswith("sqlite") else {}

engine = create_engine(config.DATABASE_URL, echo=config.DATABASE_ECHO, connect_args=_connect_args)

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
)

Base = declarative_base()

_schema_lock = Lock()
_range_schema_checked: set[str] = set()
_appointment_schema_checked = False


def _backfill_legacy_recurrence(connection, table_name: str, existing_columns: set[str]) -> None:
    """Fill ``recurrence`` from the older ``day_of_week`` + ``is_recurring`` pair."""
    if not {"day_of_week", "is_recurring"} <= existing_columns:
        return

    rows = connection.execute(
        text(f"SELECT id, day_of_week, is_recurring FROM {table_name} WHERE recurrence IS NULL")
    ).all()

    migrated = 0
    for row_id, day_of_week, is_recurring in rows:
        recurrence = recurrence_from_legacy(day_of_week, bool(is_recurring))
        if recurrence is None:
            continue
        connection.execute(
            text(f"UPDATE {table_name} SET recurrence = :recurrence WHERE id = :id"),
            {"recurrence": recurrence, "id": row_id},
        )
        migrated += 1

    if migrated:
        logger.info("Backfilled recurrence for %s %s rows", migrated, table_name)


def _ensure_range_schema(table_name: str) -> None:
    if table_name in _range_schema_checked:
        return

    with _schema_lock:
        if table_name in _range_schema_checked:
            return

        inspector = inspect(engine)

        if table_name not in inspector.get_table_names():
            _range_schema_checked.add(table_name)
            return

        existing_columns = {column["name"] for column in inspector.get_columns(table_name)}
        migration_steps = [
            ("therapist_id", f"ALTER TABLE {table_name} ADD COLUMN therapist_id VARCHAR"),
            ("recurrence", f"ALTER TABLE {table_name} ADD COLUMN recurrence VARCHAR"),
            ("created_at", f"ALTER TABLE {table_name} ADD COLUMN created_at TIMESTAMP"),
        ]
        if table_name == "time_off":
            migration_steps.append(("reason", "ALTER TABLE time_off ADD COLUMN reason VARCHAR"))

        with engine.begin() as connection:
            for column_name, statement in migration_steps:
                if column_name not in existing_columns:
                    connection.execute(text(statement))
            _backfill_legacy_recurrence(connection, table_name, existing_columns)
            connection.execute(
                text(
                    f"CREATE INDEX IF NOT EXISTS idx_{table_name}_therapist_start "
                    f"ON {table_name}(therapist_id, start_time)"
                )
            )

        _range_schema_checked.add(table_name)


def ensure_availability_schema() -> None:
    _ensure_range_schema("availability")


def ensure_time_off_schema() -> None:
    _ensure_range_schema("time_off")


def ensure_appointment_schema() -> None:
    global _appointment_schema_checked

    if _appointment_schema_checked:
        return

    with _schema_lock:
        if _appointment_schema_checked:
            return

        inspector = inspect(engine)

        if 'appointments' not in inspector.get_table_names():
            _appointment_schema_checked = True
            return

        existing_columns = {column['name'] for column in inspector.get_columns('appointments')}
        migration_steps = [
            ('therapist_id', 'ALTER TABLE appointments ADD COLUMN therapist_id VARCHAR'),
            ('client_id', 'ALTER TABLE appointments ADD COLUMN client_id VARCHAR'),
            ('client_name', 'ALTER TABLE appointments ADD COLUMN client_name VARCHAR'),
            ('notes', 'ALTER TABLE appointments ADD COLUMN notes VARCHAR'),
            ('overrides_time_off', 'ALTER TABLE appointments ADD COLUMN overrides_time_off BOOLEAN DEFAULT FALSE'),
            ('override_reason', 'ALTER TABLE appointments ADD COLUMN override_reason VARCHAR'),
        ]

        with engine.begin() as connection:
            for column_name, statement in migration_steps:
                if column_name not in existing_columns:
                    connection.execute(text(statement))
            connection.execute(
                text('CREATE INDEX IF NOT EXISTS idx_appointments_time_range ON appointments(start_time, end_time)')
            )

        try:
            with engine.begin() as connection:
                connection.execute(
                    text(
                        "CREATE UNIQUE INDEX IF NOT EXISTS uq_appointments_therapist_start "
                        "ON appointments(therapist_id, start_time) WHERE status != 'cancelled'"
                    )
                )
        except IntegrityError:
            logger.warning('Live appointments share a start time; uq_appointments_therapist_start not created')

        _appointment_schema_checked = True
