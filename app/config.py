"""Application settings.

Loaded once at startup from the environment (and an optional .env file).
Explicit environment values take precedence over .env entries, which take
precedence over the defaults below. Credentials have no default: a missing
AI_API_KEY or AUTH_JWT_SECRET fails startup.
"""
from functools import lru_cache
from typing import Optional

from pydantic import SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Runtime configuration for the chat relay."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    DATABASE_URL: str = "sqlite:///./agency_chat.db"

    # Upstream completion provider (OpenAI-compatible)
    AI_BASE_URL: str = "https://api.aimlapi.com/v1"
    AI_API_KEY: SecretStr
    AI_DEFAULT_MODEL: str = "gpt-4o"
    AI_TEMPERATURE: float = 0.7
    AI_TIMEOUT: float = 600.0
    AI_MAX_RETRIES: int = 2

    # Identity provider access tokens
    AUTH_JWT_SECRET: SecretStr
    AUTH_JWT_ALGORITHM: str = "HS256"
    AUTH_JWT_AUDIENCE: Optional[str] = "authenticated"

    CORS_ORIGINS: list[str] = ["*"]
    LOG_LEVEL: str = "INFO"

    @field_validator("AI_API_KEY", "AUTH_JWT_SECRET")
    @classmethod
    def _require_secret(cls, value: SecretStr) -> SecretStr:
        if not value.get_secret_value().strip():
            raise ValueError("must not be blank")
        return value

    @field_validator("AI_BASE_URL")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")

    @field_validator("AUTH_JWT_AUDIENCE")
    @classmethod
    def _blank_audience_disables_check(cls, value: Optional[str]) -> Optional[str]:
        return value or None

    def secrets(self) -> list[str]:
        """Secret values that must never reach a log line."""
        return [
            self.AI_API_KEY.get_secret_value(),
            self.AUTH_JWT_SECRET.get_secret_value(),
        ]


@lru_cache
def get_settings() -> Settings:
    """Load settings once; raises pydantic.ValidationError if incomplete."""
    return Settings()
