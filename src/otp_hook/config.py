"""
Application configuration with environment-driven settings.

Telephony provider credentials live in `otp_hook.telephony.config`.
"""

from functools import lru_cache
import os
from typing import Literal

from pydantic import Field, field_validator
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
    app_name: str = "otp-hook"
    app_env: Literal["dev", "qa", "uat", "prod"] = "dev"
    debug: bool = False
    log_level: str = "INFO"

    # Shared secret the identity provider sends in the `auth_secret` header
    auth_secret: str = Field(
        default="",
        description="Shared secret expected in the auth_secret request header",
    )

    # Shutdown: how long to wait for in-flight voice playbacks
    shutdown_grace_seconds: float = Field(
        default=10.0,
        ge=0,
        le=300,
        description="Seconds to wait for pending voice playbacks on shutdown.",
    )

    @field_validator("log_level", mode="before")
    @classmethod
    def normalize_log_level(cls, v: str) -> str:
        return str(v).strip().upper() or "INFO"


@lru_cache
def _get_settings_cached() -> Settings:
    return Settings()


def get_settings() -> Settings:
    # Under pytest env vars change between tests; never serve a frozen copy.
    if os.environ.get("PYTEST_CURRENT_TEST"):
        return Settings()
    return _get_settings_cached()
