import logging
import os

import pytest
from sqlalchemy import create_engine, text

os.environ.setdefault('DATABASE_URL', 'sqlite:///./test.db')

from therapy_backend import database  # noqa: E402


@pytest.fixture
def legacy_engine(monkeypatch: pytest.MonkeyPatch, tmp_path):
    engine = create_engine(f'sqlite:///{tmp_path / "legacy.db"}')
    monkeypatch.setattr(database, 'engine', engine)
    monkeypatch.setattr(database, '_appointment_schema_checked', False)
    yield engine
    engine.dispose()


def index_sql(engine, name: str) -> str | None:
    with engine.connect() as connection:
        return connection.execute(
            text("SELECT sql FROM sqlite_master WHERE type = 'index' AND name = :name"),
            {'name': name},
        ).scalar()


def test_appointment_schema_upgrade_adds_columns_and_unique_start_index(legacy_engine) -> None:
    with legacy_engine.begin() as connection:
        connection.execute(text(
            'CREATE TABLE appointments (id INTEGER PRIMARY KEY, start_time TIMESTAMP, end_time TIMESTAMP, status VARCHAR)'
        ))

    database.ensure_appointment_schema()

    with legacy_engine.connect() as connection:
        columns = {row[1] for row in connection.execute(text('PRAGMA table_info(appointments)'))}
    assert {'therapist_id', 'client_id', 'overrides_time_off'} <= columns

    sql = index_sql(legacy_engine, 'uq_appointments_therapist_start')
    assert sql is not None
    assert 'UNIQUE' in sql.upper()
    assert database._appointment_schema_checked


def test_appointment_schema_upgrade_tolerates_existing_duplicate_starts(legacy_engine, caplog: pytest.LogCaptureFixture) -> None:
    with legacy_engine.begin() as connection:
        connection.execute(text(
            'CREATE TABLE appointments ('
            'id INTEGER PRIMARY KEY, therapist_id VARCHAR, start_time TIMESTAMP, end_time TIMESTAMP, status VARCHAR)'
        ))
        connection.execute(text(
            "INSERT INTO appointments (therapist_id, start_time, end_time, status) VALUES "
            "('t-1', '2030-01-07 13:00:00', '2030-01-07 14:00:00', 'confirmed'), "
            "('t-1', '2030-01-07 13:00:00', '2030-01-07 14:00:00', 'pending')"
        ))

    with caplog.at_level(logging.WARNING):
        database.ensure_appointment_schema()

    assert index_sql(legacy_engine, 'uq_appointments_therapist_start') is None
    assert 'share a start time' in caplog.text
    assert database._appointment_schema_checked
