"""
Telephony provider factory.

Single source of truth for configuration:
- use TelephonyConfig (Pydantic Settings) which loads from OS env + .env
- never read raw os.getenv("SIGNALWIRE_*") here
"""

from __future__ import annotations

from functools import lru_cache

from otp_hook.shared.logging import get_logger
from otp_hook.telephony.config import ProviderType, TelephonyConfig
from otp_hook.telephony.config import get_telephony_config as _get_settings_telephony_config
from otp_hook.telephony.interface import LineTypeLookup, TelephonyProvider
from otp_hook.telephony.mock_adapter import MockTelephonyAdapter
from otp_hook.telephony.signalwire_adapter import SignalWireAdapter

logger = get_logger(__name__)


def _mask(s: str, keep: int = 6) -> str:
    if not s:
        return ""
    if len(s) <= keep:
        return "*" * len(s)
    return f"{s[:keep]}***"


@lru_cache(maxsize=1)
def get_telephony_config() -> TelephonyConfig:
    """Return cached TelephonyConfig loaded from OS env + .env."""
    return _get_settings_telephony_config()


def build_telephony_provider(cfg: TelephonyConfig) -> SignalWireAdapter | MockTelephonyAdapter:
    """Create the provider adapter selected by `cfg.provider_type`."""
    logger.info(
        "Telephony config resolved",
        extra={
            "provider_type": getattr(cfg.provider_type, "value", str(cfg.provider_type)),
            "project_id": _mask(cfg.project_id),
            "space": cfg.space,
            "from_number": cfg.from_number,
            "voice": cfg.voice,
            "callback_base_url": cfg.callback_base_url,
            "request_timeout_seconds": cfg.request_timeout_seconds,
        },
    )

    if cfg.provider_type == ProviderType.SIGNALWIRE:
        return SignalWireAdapter(cfg)

    if cfg.provider_type == ProviderType.MOCK:
        return MockTelephonyAdapter()

    raise ValueError(f"Unsupported telephony provider_type: {cfg.provider_type}")


@lru_cache(maxsize=1)
def get_telephony_provider() -> TelephonyProvider:
    """Create and cache the telephony provider using TelephonyConfig."""
    return build_telephony_provider(get_telephony_config())


def get_line_type_lookup() -> LineTypeLookup:
    """Return the carrier lookup port.

    Both adapters implement lookup and delivery, so this is the cached
    provider seen through its lookup interface.
    """
    provider = get_telephony_provider()
    if not isinstance(provider, LineTypeLookup):
        raise TypeError(f"{type(provider).__name__} does not implement carrier lookup")
    return provider
