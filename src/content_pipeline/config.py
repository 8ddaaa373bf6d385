"""Content pipeline configuration using pydantic-settings.

This module defines the ContentPipelineSettings class that reads
configuration from environment variables with the CONTENT_PIPELINE_
prefix. Every field has a default so the service starts locally with the
in-memory store; production deployments set CONTENT_PIPELINE_DATABASE_URL.
"""

import math
from typing import List, Optional

from pydantic import ValidationInfo, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from src.content_pipeline.events.emitter import EventSinkType


_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class ContentPipelineSettings(BaseSettings):
    """Content status service configuration from environment variables.

    All environment variables are prefixed with CONTENT_PIPELINE_
    (e.g., CONTENT_PIPELINE_DATABASE_URL).
    """

    model_config = SettingsConfigDict(
        env_prefix="CONTENT_PIPELINE_",
        case_sensitive=False,
    )

    # -------------------------------------------------------------------------
    # Database Configuration
    # -------------------------------------------------------------------------
    # PostgreSQL connection string. Unset means the in-memory store.
    database_url: Optional[str] = None

    # Connection pool bounds
    db_min_pool_size: int = 2
    db_max_pool_size: int = 10

    # -------------------------------------------------------------------------
    # Query Configuration
    # -------------------------------------------------------------------------
    # Hours without a stage change before a processing item counts as stuck
    stuck_threshold_hours: float = 24.0

    # Default and maximum number of audit entries returned per history call
    history_limit: int = 50
    max_history_limit: int = 500

    # Default and maximum page size for stage listings
    page_size: int = 50
    max_page_size: int = 200

    # -------------------------------------------------------------------------
    # Batch Configuration
    # -------------------------------------------------------------------------
    # Largest batch accepted by the batch endpoint
    max_batch_size: int = 100

    # -------------------------------------------------------------------------
    # Events and Logging
    # -------------------------------------------------------------------------
    # Comma-separated event sinks: logging, metrics
    event_sinks: str = "logging,metrics"

    log_level: str = "INFO"

    # -------------------------------------------------------------------------
    # Server Configuration
    # -------------------------------------------------------------------------
    # Host address to bind the server to
    host: str = "0.0.0.0"

    # Port number for the server
    port: int = 8080

    # -------------------------------------------------------------------------
    # Validators
    # -------------------------------------------------------------------------
    @field_validator("database_url")
    @classmethod
    def validate_database_url(cls, v: Optional[str]) -> Optional[str]:
        """Validate the database URL format when one is given."""
        if v is None:
            return v
        if not v.strip():
            raise ValueError("database_url cannot be empty")
        if not v.startswith(("postgresql://", "postgres://")):
            raise ValueError(
                "database_url must start with postgresql:// or postgres://"
            )
        return v

    @field_validator(
        "db_min_pool_size",
        "db_max_pool_size",
        "history_limit",
        "max_history_limit",
        "page_size",
        "max_page_size",
        "max_batch_size",
    )
    @classmethod
    def validate_positive(cls, v: int, info: ValidationInfo) -> int:
        if v < 1:
            raise ValueError(f"{info.field_name} must be at least 1")
        return v

    @field_validator("stuck_threshold_hours")
    @classmethod
    def validate_stuck_threshold(cls, v: float) -> float:
        if not math.isfinite(v) or v < 0:
            raise ValueError("stuck_threshold_hours must be finite and not negative")
        return v

    @field_validator("event_sinks")
    @classmethod
    def validate_event_sinks(cls, v: str) -> str:
        """Validate that every listed sink is known."""
        known = {sink.value for sink in EventSinkType}
        for name in _split(v):
            if name not in known:
                raise ValueError(
                    f"Unknown event sink {name!r}; expected one of {sorted(known)}"
                )
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.strip().upper()
        if level not in _LOG_LEVELS:
            raise ValueError(f"log_level must be one of {', '.join(_LOG_LEVELS)}")
        return level

    @field_validator("port")
    @classmethod
    def validate_port(cls, v: int) -> int:
        """Validate that port is in valid range."""
        if not 1 <= v <= 65535:
            raise ValueError("port must be between 1 and 65535")
        return v

    @property
    def sink_types(self) -> List[EventSinkType]:
        """The configured event sinks as EventSinkType values."""
        return [EventSinkType(name) for name in _split(self.event_sinks)]


def _split(value: str) -> List[str]:
    return [part.strip().lower() for part in value.split(",") if part.strip()]


def get_settings() -> ContentPipelineSettings:
    """Create and return a ContentPipelineSettings instance.

    Raises:
        pydantic.ValidationError: If a field is invalid.
    """
    return ContentPipelineSettings()
