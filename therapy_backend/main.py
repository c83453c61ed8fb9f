import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.exc import SQLAlchemyError

from therapy_backend.core import config
from therapy_backend.database import (
    Base,
    engine,
    ensure_appointment_schema,
    ensure_availability_schema,
    ensure_time_off_schema,
)
from therapy_backend.models import appointment, availability, time_off  # noqa: F401
from therapy_backend.routes import appointment_routes, availability_routes

logging.basicConfig(
    level=config.LOG_LEVEL,
    format='%(asctime)s %(levelname)s %(name)s: %(message)s',
)

logger = logging.getLogger(__name__)

config.validate_runtime_config()

app = FastAPI(title='Therapy Hours API')

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=['*'],
    allow_headers=['*'],
)


@app.on_event('startup')
def initialize_database() -> None:
    try:
        Base.metadata.create_all(bind=engine)
        ensure_availability_schema()
        ensure_time_off_schema()
        ensure_appointment_schema()
    except SQLAlchemyError:
        logger.exception('Database initialization failed. Check DATABASE_URL and database credentials.')


@app.get('/')
def root():
    return {'status': 'Therapy Hours API Running', 'environment': config.APP_ENV}


app.include_router(availability_routes.router, prefix='/availability')
app.include_router(appointment_routes.router, prefix='/appointments')
