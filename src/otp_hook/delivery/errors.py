"""
Delivery failure taxonomy.

Each error is converted to the hook's error envelope at the top level; the
message text becomes both the summary and the reason shown to the caller.
"""


class OtpDeliveryError(Exception):
    """Base exception for OTP delivery failures."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class AuthenticationError(OtpDeliveryError):
    """The auth_secret header is absent or does not match."""


class MissingParameterError(OtpDeliveryError):
    """The phone number or the OTP code is missing."""


class UnsupportedChannelError(OtpDeliveryError):
    """The delivery channel is neither sms nor call."""


class IneligibleLineTypeError(OtpDeliveryError):
    """The number's line type cannot receive SMS."""

    def __init__(self, line_type: str, message: str | None = None) -> None:
        super().__init__(
            message
            or f"Cannot send SMS to non-mobile number. Detected line type: {line_type}"
        )
        self.line_type = line_type


class LookupFailedError(IneligibleLineTypeError):
    """The carrier lookup could not be completed.

    Eligibility is unknown, so SMS is blocked the same way an ineligible
    line type is.
    """

    def __init__(self, detail: str) -> None:
        super().__init__("unknown", f"Lookup failed: {detail}")
        self.detail = detail


class DeliveryFailedError(OtpDeliveryError):
    """The provider rejected or never accepted the SMS."""


class CallPlacementError(OtpDeliveryError):
    """The outbound voice call could not be placed."""


class ServiceConfigurationError(OtpDeliveryError):
    """Settings are invalid, so the delivery service cannot be built."""
