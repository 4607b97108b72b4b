"""
Inbound telephony inline hook payload.

Only the fields used for delivery are modelled; the identity provider sends
more (locale, message template, expiry) which are ignored.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from otp_hook.delivery.errors import MissingParameterError


class MessageProfile(BaseModel):
    """data.messageProfile of the inline hook request."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)

    phone_number: str | None = Field(default=None, alias="phoneNumber")
    otp_code: str | None = Field(default=None, alias="otpCode")
    delivery_channel: str | None = Field(default=None, alias="deliveryChannel")

    @field_validator("phone_number", "otp_code", "delivery_channel", mode="before")
    @classmethod
    def coerce_to_text(cls, v: Any) -> str | None:
        if v is None or isinstance(v, (dict, list)):
            return None
        text = str(v).strip()
        return text or None


class InlineHookData(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    message_profile: MessageProfile = Field(alias="messageProfile")


class InlineHookRequest(BaseModel):
    """Telephony inline hook request body."""

    model_config = ConfigDict(extra="ignore")

    data: InlineHookData


def parse_message_profile(body: Any) -> MessageProfile:
    """Extract data.messageProfile from a decoded request body.

    Raises:
        MissingParameterError: the body does not carry a message profile.
    """
    try:
        return InlineHookRequest.model_validate(body).data.message_profile
    except ValidationError as e:
        raise MissingParameterError("Missing phone number or OTP") from e
