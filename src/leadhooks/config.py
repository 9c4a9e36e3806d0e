"""Configuration management for Leadhooks."""

import logging
import warnings
from typing import Literal

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """Leadhooks configuration loaded from environment variables.

    All settings can be overridden via environment variables with
    the LEADHOOKS_ prefix. For example:
        LEADHOOKS_DATABASE_URL=postgresql+asyncpg://crm:crm@db/crm
        LEADHOOKS_DNS_FAIL_CLOSED=true

    Storage Notes:
        - Without LEADHOOKS_DATABASE_URL the in-memory store is used, so
          pending retries do not survive a restart
        - Using the in-memory store in production logs a warning
    """

    # Environment
    env: Literal["development", "production", "test"] = Field(
        default="development",
        description="Environment: development, production, or test",
    )

    # Storage
    database_url: str | None = Field(
        default=None,
        description="SQLAlchemy async database URL (in-memory store if not set)",
    )

    # Delivery
    webhook_user_agent: str = Field(
        default="Leadhooks-Webhook/1.0",
        min_length=1,
        description="User-Agent header sent with every webhook delivery",
    )
    delivery_timeout_seconds: float = Field(
        default=30.0,
        gt=0.0,
        le=30.0,
        description="Per-attempt HTTP timeout, capped at 30 seconds",
    )
    max_response_body_bytes: int = Field(
        default=10_000,
        ge=0,
        le=1_000_000,
        description="Maximum response body bytes read and stored per attempt",
    )
    max_concurrent_deliveries: int = Field(
        default=10,
        ge=1,
        le=100,
        description="Maximum concurrent deliveries within one dispatch",
    )
    dns_fail_closed: bool = Field(
        default=False,
        description=(
            "Treat DNS resolution failure as unsafe. Defaults to fail-open: "
            "the HTTP call is attempted and fails on its own."
        ),
    )

    # Failure tracking
    failure_threshold: int = Field(
        default=10,
        ge=1,
        le=1000,
        description="Consecutive failures after which an endpoint is disabled",
    )

    # Retry worker
    retry_worker_enabled: bool = Field(
        default=True,
        description="Run the pending-delivery poll loop inside the API process",
    )
    retry_poll_interval_seconds: float = Field(
        default=5.0,
        gt=0.0,
        le=300.0,
        description="Seconds between polls for due retries",
    )
    retry_batch_size: int = Field(
        default=100,
        ge=1,
        le=1000,
        description="Maximum pending deliveries claimed per poll",
    )
    retry_claim_lease_seconds: int = Field(
        default=300,
        ge=30,
        le=3600,
        description=(
            "How long a claimed retry stays invisible to other workers. "
            "Must exceed the delivery timeout."
        ),
    )

    # Logging
    log_level: str = Field(
        default="INFO",
        description="Log level: DEBUG, INFO, WARNING, ERROR, CRITICAL",
    )
    log_format: Literal["json", "text"] = Field(
        default="json",
        description="Log format: json (production) or text (development)",
    )

    model_config = {
        "env_prefix": "LEADHOOKS_",
        "env_file": ".env",
        "env_file_encoding": "utf-8",
    }

    @field_validator("log_level")
    @classmethod
    def normalize_log_level(cls, value: str) -> str:
        level = value.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"unknown log level: {value}")
        return level

    @model_validator(mode="after")
    def warn_on_volatile_storage(self) -> "Settings":
        """Warn when production runs without a durable retry store."""
        if self.env == "production" and not self.database_url:
            warnings.warn(
                "LEADHOOKS_DATABASE_URL is not set in production. Pending webhook "
                "retries are kept in memory and will be lost on restart.",
                UserWarning,
                stacklevel=2,
            )
            logger.warning("Running in production with the in-memory webhook store")
        return self

    @property
    def uses_database(self) -> bool:
        """Whether a SQL database backs the webhook store."""
        return bool(self.database_url)

