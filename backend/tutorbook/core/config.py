# backend/tutorbook/core/config.py
"""
Runtime settings for the booking engine.

Values come from the process environment first, then from ``backend/.env``
when present. Names are case-insensitive (``DATABASE_URL`` and
``database_url`` are equivalent).
"""

from decimal import Decimal
import logging
import os
from pathlib import Path
from typing import Literal, Optional

from dotenv import load_dotenv
from pydantic import Field, SecretStr, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


def is_running_tests() -> bool:
    """
    Detect if code is running under pytest.

    PYTEST_CURRENT_TEST is set automatically by pytest during test runs.
    """
    return os.getenv("PYTEST_CURRENT_TEST") is not None


# Load .env file only if not in CI
if not os.getenv("CI"):
    env_path = Path(__file__).parent.parent.parent / ".env"  # backend/.env
    if env_path.exists():
        logger.debug("[CONFIG] Loading environment from %s", env_path)
        load_dotenv(env_path)


class Settings(BaseSettings):
    environment: str = Field(default="development", description="deployment environment name")

    # Persistence
    database_url: str = Field(
        default="sqlite:///./tutorbook.db",
        description="SQLAlchemy URL; PostgreSQL in production, SQLite for local runs and tests",
    )
    database_echo: bool = Field(default=False, description="Log every SQL statement")

    # Redis (Celery broker and the distributed tutor lock)
    redis_url: str = Field(default="redis://localhost:6379/0")
    lock_backend: Literal["redis", "local"] = Field(
        default="redis",
        description="'local' keeps tutor locks in-process only (single worker, tests)",
    )
    lock_namespace: str = Field(default="tutorbook")
    tutor_lock_ttl_seconds: int = Field(default=30, ge=1)
    tutor_lock_wait_seconds: float = Field(default=10.0, gt=0)

    # Payments
    stripe_secret_key: Optional[SecretStr] = Field(default=None)
    stripe_currency: str = Field(default="eur")
    platform_fee_percentage: Decimal = Field(default=Decimal("15"), ge=0, le=100)
    payment_timeout_seconds: int = Field(
        default=8, ge=1, description="Upper bound for any single payment provider call"
    )

    # Group quorum scheduler
    group_cutoff_hours: int = Field(default=24, ge=1)
    group_quorum_interval_minutes: int = Field(default=15, ge=1)

    # Slot generation window, local tutor time; end is exclusive
    slot_window_start_hour: int = Field(default=8, ge=0, le=23)
    slot_window_end_hour: int = Field(default=22, ge=1, le=24)

    availability_default_days: int = Field(default=30, ge=1)
    availability_max_days: int = Field(default=92, ge=1)

    default_tutor_timezone: str = Field(default="Europe/Dublin")

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("stripe_currency")
    @classmethod
    def _lowercase_currency(cls, value: str) -> str:
        return value.strip().lower()

    @model_validator(mode="after")
    def _check_window(self) -> "Settings":
        if self.slot_window_end_hour <= self.slot_window_start_hour:
            raise ValueError("slot_window_end_hour must be after slot_window_start_hour")
        return self

    @property
    def is_testing(self) -> bool:
        return self.environment.lower() == "test" or is_running_tests()

    @property
    def is_production(self) -> bool:
        return self.environment.lower() in {"prod", "production"}


settings = Settings()
