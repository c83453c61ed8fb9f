import os

from dotenv import load_dotenv

load_dotenv()


def _get_bool(value: str | None, default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _get_list(value: str | None, default: list[str]) -> list[str]:
    if not value:
        return default
    return [item.strip() for item in value.split(",") if item.strip()]


APP_ENV = os.getenv("APP_ENV", "development")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./therapy_hours.db")
DATABASE_ECHO = _get_bool(os.getenv("DATABASE_ECHO"), default=False)

ALLOWED_ORIGINS = _get_list(os.getenv("ALLOWED_ORIGINS"), ["http://localhost:3000"])

DEFAULT_SLOT_MINUTES = int(os.getenv("DEFAULT_SLOT_MINUTES", "50"))
WEEK_VIEW_DAYS = int(os.getenv("WEEK_VIEW_DAYS", "7"))
MAX_RANGE_DAYS = int(os.getenv("MAX_RANGE_DAYS", "31"))


def validate_runtime_config() -> None:
    if APP_ENV.lower() == "production" and DATABASE_URL.startswith("sqlite"):
        raise RuntimeError("DATABASE_URL must point at a server database in production.")
    if DEFAULT_SLOT_MINUTES <= 0:
        raise RuntimeError("DEFAULT_SLOT_MINUTES must be positive.")
