"""
Domain models for OTP delivery.
"""

from dataclasses import dataclass
from enum import Enum

from otp_hook.delivery.errors import MissingParameterError
from otp_hook.telephony.interface import CarrierInfo


class DeliveryChannel(str, Enum):
    """Delivery channels accepted in messageProfile.deliveryChannel."""

    SMS = "sms"
    CALL = "call"


class DeliveryStatus(str, Enum):
    SUCCESSFUL = "SUCCESSFUL"
    FAILED = "FAILED"


class LineType(str, Enum):
    """Carrier line-type classification."""

    MOBILE = "wireless"
    LANDLINE = "landline"
    VOIP = "voip"
    UNKNOWN = "unknown"

    @classmethod
    def from_reported(cls, value: str | None) -> "LineType":
        """Classify a line type as reported by the carrier service."""
        reported = (value or "").strip().lower()
        if reported in ("wireless", "mobile"):
            return cls.MOBILE
        if reported == "landline":
            return cls.LANDLINE
        if reported == "voip":
            return cls.VOIP
        return cls.UNKNOWN


SMS_CAPABLE_LINE_TYPES = frozenset({LineType.MOBILE, LineType.VOIP})


@dataclass(frozen=True)
class LineTypeInfo:
    """Result of a line-type lookup. Used only to gate SMS."""

    line_type: LineType
    raw: str | None = None
    carrier_name: str | None = None

    @classmethod
    def from_carrier(cls, carrier: CarrierInfo) -> "LineTypeInfo":
        raw = carrier.linetype.strip().lower() if carrier.linetype else None
        return cls(
            line_type=LineType.from_reported(raw),
            raw=raw or None,
            carrier_name=carrier.carrier_name,
        )

    @property
    def sms_capable(self) -> bool:
        return self.line_type in SMS_CAPABLE_LINE_TYPES

    @property
    def label(self) -> str:
        """Line type as detected, or "unknown" when none was reported."""
        return self.raw or LineType.UNKNOWN.value


@dataclass(frozen=True)
class DeliveryRequest:
    """One OTP delivery, built once per hook invocation."""

    phone_number: str
    otp_code: str
    channel: DeliveryChannel

    def __post_init__(self) -> None:
        if not self.phone_number or not self.otp_code:
            raise MissingParameterError("Missing phone number or OTP")


@dataclass(frozen=True)
class DeliveryResult:
    """Outcome of a deliverer, consumed by the response builder."""

    status: DeliveryStatus
    provider_name: str
    transaction_id: str
