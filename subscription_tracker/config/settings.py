"""
Application Settings for Subscription Tracker

Centralized configuration using Pydantic Settings with .env support.
All environment variables are validated at startup.
"""

from functools import lru_cache
from typing import Literal, Optional
from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    NOTIFICATION_BACKEND controls how renewal reminders are delivered:
    - log: Write the rendered reminder to the application log (default for dev)
    - smtp: Deliver by email through the configured SMTP server
    """

    # Application Settings
    app_name: str = "Subscription Tracker"
    environment: str = "development"
    debug: bool = False
    log_level: str = "INFO"

    # CORS Configuration
    allowed_origins: list[str] = [
        "http://localhost:5173",
        "http://localhost:3000",
        "http://127.0.0.1:5173",
    ]

    # Database Configuration (SQLModel/SQLAlchemy)
    database_url: str = "sqlite+aiosqlite:///./subscription_tracker.db"
    database_pool_size: int = 5
    database_max_overflow: int = 10
    database_pool_timeout: int = 30
    database_echo: bool = False

    # Reminder Configuration
    # Days before renewal at which a reminder fires, furthest first
    reminder_milestones: list[int] = [7, 5, 2, 1]

    # Retry Configuration (notification delivery step)
    notification_max_attempts: int = 3
    retry_base_delay: float = 1.0
    retry_max_delay: float = 10.0

    # Workflow Scheduler
    scheduler_enabled: bool = True
    scheduler_poll_interval_seconds: float = 5.0
    scheduler_batch_size: int = 20
    scheduler_max_concurrent_runs: int = 10
    scheduler_lease_seconds: int = 300

    # Notification Delivery
    notification_backend: Literal["log", "smtp"] = "log"
    smtp_host: Optional[str] = None
    smtp_port: int = 587
    smtp_username: Optional[str] = None
    smtp_password: Optional[str] = None
    smtp_use_tls: bool = True
    smtp_timeout_seconds: float = 30.0
    email_from: Optional[str] = None

    # Links embedded in reminder messages
    account_url: str = "http://localhost:5173/account"
    support_url: Optional[str] = None

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("reminder_milestones")
    @classmethod
    def validate_milestones(cls, value: list[int]) -> list[int]:
        """Milestones must be positive, unique day counts; stored furthest first."""
        if not value:
            raise ValueError("REMINDER_MILESTONES must contain at least one day count")
        if any(days <= 0 for days in value):
            raise ValueError("REMINDER_MILESTONES must be positive day counts")
        if len(set(value)) != len(value):
            raise ValueError("REMINDER_MILESTONES must not contain duplicates")
        return sorted(value, reverse=True)

    @model_validator(mode="after")
    def validate_notification_backend(self) -> "Settings":
        """Validate delivery settings based on selected notification_backend."""
        if self.notification_backend == "smtp":
            missing = [
                name for name in ("smtp_host", "email_from")
                if not getattr(self, name)
            ]
            if missing:
                raise ValueError(
                    f"{', '.join(key.upper() for key in missing)} required when NOTIFICATION_BACKEND=smtp"
                )

        if self.notification_max_attempts < 1:
            raise ValueError("NOTIFICATION_MAX_ATTEMPTS must be >= 1")

        # log backend doesn't require any credentials

        return self

    @property
    def is_production(self) -> bool:
        """Check if running in production."""
        return self.environment.lower() == "production"

    @property
    def is_development(self) -> bool:
        """Check if running in development."""
        return self.environment.lower() == "development"

    @property
    def is_sqlite(self) -> bool:
        """Check if the configured database is SQLite."""
        return self.database_url.startswith("sqlite")


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


# Convenience export for direct import
settings = get_settings()
