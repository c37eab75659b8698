# backend/studio/core/config.py
from dataclasses import dataclass
from decimal import Decimal
import logging
import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


logger = logging.getLogger(__name__)

# Load .env file only if not in CI
if not os.getenv("CI"):
    env_path = Path(__file__).parent.parent.parent / ".env"  # Goes up to backend/.env
    logger.debug(f"[CONFIG] Looking for .env at: {env_path}")
    load_dotenv(env_path)


class Settings(BaseSettings):
    environment: str = Field(default="development", description="Deployment environment name")

    # Database
    database_url: str = Field(
        default="sqlite:///./studio.db",
        validation_alias=AliasChoices("DATABASE_URL", "STUDIO_DATABASE_URL"),
        description="SQLAlchemy URL of the scheduling store",
    )
    database_echo: bool = Field(default=False, description="Echo SQL statements")
    sqlite_busy_timeout_seconds: float = Field(
        default=30.0,
        description="How long a SQLite writer waits for the database lock before failing",
    )

    # Celery / outbox delivery
    redis_url: str = Field(default="redis://localhost:6379", description="Redis URL")
    celery_broker_url: Optional[str] = Field(
        default=None, description="Explicit Celery broker (falls back to redis_url)"
    )
    outbox_batch_size: int = Field(default=200, ge=1, description="Outbox rows per dispatch run")
    outbox_dispatch_interval_seconds: float = Field(default=15.0, gt=0)
    pass_expiry_interval_seconds: float = Field(default=3600.0, gt=0)

    # Booking policy
    booking_cancellation_window_hours: int = Field(
        default=24,
        ge=0,
        description="Cancellations at least this many hours before class start are free",
    )
    booking_credit_price: Decimal = Field(
        default=Decimal("1000"),
        ge=0,
        description="Price of one credit when a client books without a pass (HUF)",
    )
    studio_timezone: str = Field(
        default="Europe/Budapest", description="Timezone used to render local times"
    )

    # Monitoring
    slow_operation_threshold_seconds: float = Field(default=1.0, gt=0)

    model_config = SettingsConfigDict(
        env_file=".env" if not os.getenv("CI") else None,
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("studio_timezone")
    @classmethod
    def _validate_timezone(cls, value: str) -> str:
        import pytz

        try:
            pytz.timezone(value)
        except pytz.UnknownTimeZoneError as exc:
            raise ValueError(f"Unknown timezone: {value}") from exc
        return value

    @property
    def broker_url(self) -> str:
        """Broker used by Celery, ensuring a Redis database number is present."""
        url = self.celery_broker_url or os.getenv("CELERY_BROKER_URL") or self.redis_url
        if url.startswith("redis") and not any(url.endswith(f"/{i}") for i in range(16)):
            url = f"{url}/0"
        return url


@dataclass(frozen=True)
class BookingPolicy:
    """Explicit booking configuration handed to the booking orchestrator."""

    cancellation_window_hours: int = 24
    credit_price: Decimal = Decimal("1000")

    def __post_init__(self) -> None:
        if self.cancellation_window_hours < 0:
            raise ValueError("cancellation_window_hours must be >= 0")
        if Decimal(self.credit_price) < 0:
            raise ValueError("credit_price must be >= 0")

    @classmethod
    def from_settings(cls, source: Optional[Settings] = None) -> "BookingPolicy":
        cfg = source or settings
        return cls(
            cancellation_window_hours=cfg.booking_cancellation_window_hours,
            credit_price=Decimal(cfg.booking_credit_price),
        )


settings = Settings()
