import os
from dataclasses import dataclass

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

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite+aiosqlite:///./scheduling.db")
DB_ECHO = _get_bool(os.getenv("DB_ECHO"), default=False)

DEFAULT_TIMEZONE = os.getenv("DEFAULT_TIMEZONE", "America/Los_Angeles")
THERAPIST_DEFAULT_CODE = os.getenv("THERAPIST_DEFAULT_CODE", "")

STORE_TIMEOUT_SECONDS = float(os.getenv("STORE_TIMEOUT_SECONDS", "5"))
DEFAULT_WINDOW_HOURS = int(os.getenv("DEFAULT_WINDOW_HOURS", "96"))
DEFAULT_SLOT_LIMIT = int(os.getenv("DEFAULT_SLOT_LIMIT", "8"))
MAX_SLOT_LIMIT = int(os.getenv("MAX_SLOT_LIMIT", "50"))

CORS_ALLOWED_ORIGINS = _get_list(os.getenv("CORS_ALLOWED_ORIGINS"), ["http://localhost:5173"])

JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY", "change-me")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")

API_HOST = os.getenv("API_HOST", "127.0.0.1")
API_PORT = int(os.getenv("API_PORT", "8000"))


@dataclass(frozen=True)
class SchedulingConfig:
    """Settings the resolver and the scheduling engine are built with."""

    default_timezone: str = "America/Los_Angeles"
    default_therapist_code: str | None = None
    store_timeout_seconds: float = 5.0
    default_window_hours: int = 96
    default_slot_limit: int = 8
    max_slot_limit: int = 50


def load_scheduling_config() -> SchedulingConfig:
    return SchedulingConfig(
        default_timezone=DEFAULT_TIMEZONE,
        default_therapist_code=THERAPIST_DEFAULT_CODE.strip() or None,
        store_timeout_seconds=STORE_TIMEOUT_SECONDS,
        default_window_hours=DEFAULT_WINDOW_HOURS,
        default_slot_limit=DEFAULT_SLOT_LIMIT,
        max_slot_limit=MAX_SLOT_LIMIT,
    )


def validate_runtime_config() -> None:
    if APP_ENV.lower() == "production" and JWT_SECRET_KEY == "change-me":
        raise RuntimeError("JWT_SECRET_KEY must be set in production.")
    if STORE_TIMEOUT_SECONDS <= 0:
        raise RuntimeError("STORE_TIMEOUT_SECONDS must be positive.")
