"""
Telephony provider configuration.

All provider credentials come from the environment (prefix SIGNALWIRE_).
Missing values are not validated here: the first provider call fails and the
failure is reported through the hook's error envelope.
"""

from enum import Enum

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class ProviderType(str, Enum):
    """Supported telephony provider types."""

    SIGNALWIRE = "signalwire"
    MOCK = "mock"


class TelephonyConfig(BaseSettings):
    """Telephony provider configuration from environment."""

    model_config = SettingsConfigDict(
        env_prefix="SIGNALWIRE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Provider selection
    provider_type: ProviderType = Field(default=ProviderType.SIGNALWIRE)

    # Provider credentials
    project_id: str = Field(default="")
    api_token: str = Field(default="")
    space: str = Field(
        default="",
        description="SignalWire space host, e.g. example.signalwire.com",
    )
    from_number: str = Field(default="")

    # Speech
    voice: str = Field(default="polly.Ruth")
    callback_base_url: str = Field(
        default="",
        description="Public base URL of this service, e.g. https://otp.example.com; "
        "SignalWire requests the end-of-speech callback under it",
    )

    # Timeouts / polling
    request_timeout_seconds: float = Field(default=10.0, gt=0, le=60)
    poll_interval_seconds: float = Field(default=1.0, gt=0, le=30)
    playback_timeout_seconds: float = Field(default=120.0, ge=5, le=900)
    connect_hold_seconds: int = Field(default=60, ge=5, le=600)

    @property
    def base_url(self) -> str:
        host = self.space.strip().rstrip("/")
        for scheme in ("https://", "http://"):
            if host.startswith(scheme):
                host = host[len(scheme):]
        return f"https://{host}"


def get_telephony_config() -> TelephonyConfig:
    return TelephonyConfig()
