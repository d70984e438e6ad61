"""Application configuration via pydantic-settings."""

from __future__ import annotations

from decimal import Decimal
from functools import lru_cache
from typing import List, Literal, Optional

from pydantic import Field, computed_field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = "RentFlow"
    app_version: str = "1.0.0"
    environment: Literal["development", "staging", "production", "test"] = "development"
    debug: bool = False
    api_prefix: str = "/api/v1"
    log_level: str = "INFO"

    # Server
    host: str = "0.0.0.0"
    port: int = 8000
    workers: int = 4

    # Database
    postgres_host: str = "localhost"
    postgres_port: int = 5432
    postgres_user: str = "rentflow"
    postgres_password: str = Field(default="rentflow_secret")
    postgres_db: str = "rentflow"
    db_pool_size: int = 20
    db_max_overflow: int = 10
    database_dsn: Optional[str] = None  # full async URL, wins over postgres_*

    @computed_field
    @property
    def database_url(self) -> str:
        """Async database connection URL."""
        if self.database_dsn:
            return self.database_dsn
        return (
            f"postgresql+asyncpg://{self.postgres_user}:{self.postgres_password}"
            f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
        )

    # Redis
    redis_host: str = "localhost"
    redis_port: int = 6379
    redis_password: Optional[str] = None
    redis_db: int = 0

    @computed_field
    @property
    def redis_url(self) -> str:
        """Redis connection URL."""
        auth = f":{self.redis_password}@" if self.redis_password else ""
        return f"redis://{auth}{self.redis_host}:{self.redis_port}/{self.redis_db}"

    # Payment gateway
    payment_gateway: Literal["manual", "stripe"] = "manual"
    stripe_secret_key: Optional[str] = None
    stripe_webhook_secret: Optional[str] = None

    # CORS
    cors_origins: List[str] = ["http://localhost:3000", "http://localhost:8080"]

    # Pricing (percentages, e.g. 10 for 10%)
    currency: str = "USD"
    service_fee_percent: Decimal = Decimal("10")
    tax_percent: Decimal = Decimal("0")
    platform_commission_percent: Decimal = Decimal("10")

    # Booking lifecycle
    check_in_early_minutes: int = 0
    booking_request_ttl_hours: int = 48
    deposit_hold_grace_days: int = 7

    # Dispute SLA by priority
    dispute_sla_urgent_hours: int = 24
    dispute_sla_high_hours: int = 48
    dispute_sla_medium_hours: int = 72
    dispute_sla_low_hours: int = 120

    # Payout
    payout_time_hour: int = 6  # 6 AM UTC
    minimum_payout_amount: Decimal = Decimal("50")
    payout_stall_minutes: int = 60

    # Notifications
    notification_webhook_url: Optional[str] = None
    notification_timeout_seconds: float = 10.0
    outbox_max_attempts: int = 5
    outbox_batch_size: int = 100


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
