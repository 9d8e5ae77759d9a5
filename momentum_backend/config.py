"""
Configuration and settings for the Momentum backend.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Literal, Optional

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Environment-backed settings for the FastAPI service."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    api_prefix: str = Field(default="/api")
    log_level: str = Field(default="INFO")

    # Database (Postgres expected)
    database_url: Optional[str] = Field(default=None)

    # Development toggles
    use_in_memory_backends: bool = Field(
        default=False,
        validation_alias=AliasChoices(
            "use_in_memory_backends", "MOMENTUM_USE_IN_MEMORY_BACKENDS"
        ),
    )

    # Queue (Redis)
    redis_url: Optional[str] = Field(default=None)
    redis_queue_key: str = Field(default="momentum:jobs")

    # App Store receipt verification
    apple_shared_secret: Optional[str] = Field(default=None)
    apple_production_url: str = Field(
        default="https://buy.itunes.apple.com/verifyReceipt"
    )
    apple_sandbox_url: str = Field(
        default="https://sandbox.itunes.apple.com/verifyReceipt"
    )
    apple_start_environment: Literal["production", "sandbox"] = Field(
        default="production"
    )
    apple_request_timeout: float = Field(default=30.0)

    # Usage limits
    weekly_chat_limit: int = Field(default=10, ge=0)
    chat_usage_retention_weeks: int = Field(default=4, ge=1)
    free_goal_limit: int = Field(default=1, ge=0)
    premium_trial_days: int = Field(default=7, ge=1)

    # Used when a profile is created without a timezone
    default_timezone: str = Field(default="UTC")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()
