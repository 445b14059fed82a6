"""Application configuration."""

import os
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_ENVIRONMENT = os.getenv("ENVIRONMENT", "local")


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Storage and analysis are both optional: without Supabase credentials meals
    are kept in process memory, and without an OpenAI key every analysis uses
    the standard estimates.
    """

    supabase_url: str | None = None
    supabase_service_key: str | None = None
    photo_bucket: str = "meal-photos"
    openai_api_key: str | None = None
    openai_model: str = "gpt-4o-mini"
    openai_reasoning_effort: str | None = None
    openai_store: bool = False
    openai_timeout_seconds: float = 20.0
    jwt_secret_key: str = "change-me"
    jwt_expiration_minutes: int = 60 * 24 * 7
    timezone: str = "UTC"
    fallback_carbs_g: float = 30.0
    conversation_ttl_seconds: int = 60 * 60
    log_level: str = "INFO"
    environment: str = _ENVIRONMENT

    model_config = SettingsConfigDict(
        env_file=(f".env.{_ENVIRONMENT}", ".env"),
        extra="ignore",
    )

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, value: str) -> str:
        if not is_valid_timezone(value):
            raise ValueError(f"Unknown timezone: {value}")
        return value

    @property
    def database_configured(self) -> bool:
        """Return True when hosted Postgres credentials are present."""
        return bool(self.supabase_url and self.supabase_service_key)

    @property
    def analysis_configured(self) -> bool:
        """Return True when the language model can be reached."""
        return bool(self.openai_api_key)


def is_valid_timezone(value: str) -> bool:
    """Return True when the value names a known IANA timezone."""
    try:
        ZoneInfo(value)
    except (ZoneInfoNotFoundError, ValueError):
        return False
    return True
