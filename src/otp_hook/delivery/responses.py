"""
Response envelopes returned to the identity provider.

The identity provider parses exactly one of two shapes:

    {"commands": [{"type": "com.okta.telephony.action",
                   "value": [{"status", "provider", "transactionId"}]}]}

    {"error": {"errorSummary", "errorCauses": [{"errorSummary", "reason"}]}}
"""

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from otp_hook.delivery.models import DeliveryResult

TELEPHONY_ACTION = "com.okta.telephony.action"


class _Envelope(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")


class TelephonyActionValue(_Envelope):
    status: str = Field(..., description="SUCCESSFUL or FAILED")
    provider: str = Field(..., description="Telephony provider name")
    transaction_id: str = Field(..., alias="transactionId")


class TelephonyCommand(_Envelope):
    type: Literal["com.okta.telephony.action"] = TELEPHONY_ACTION
    value: list[TelephonyActionValue]


class SuccessEnvelope(_Envelope):
    commands: list[TelephonyCommand]


class ErrorCause(_Envelope):
    error_summary: str = Field(..., alias="errorSummary")
    reason: str


class ErrorBody(_Envelope):
    error_summary: str = Field(..., alias="errorSummary")
    error_causes: list[ErrorCause] = Field(..., alias="errorCauses")


class ErrorEnvelope(_Envelope):
    error: ErrorBody


ResponseEnvelope = SuccessEnvelope | ErrorEnvelope


class ResponseBuilder:
    """Shapes delivery outcomes into the two envelope types."""

    @staticmethod
    def success(result: DeliveryResult) -> SuccessEnvelope:
        return SuccessEnvelope(
            commands=[
                TelephonyCommand(
                    value=[
                        TelephonyActionValue(
                            status=result.status.value,
                            provider=result.provider_name,
                            transaction_id=result.transaction_id,
                        )
                    ]
                )
            ]
        )

    @staticmethod
    def error(message: str) -> ErrorEnvelope:
        return ErrorEnvelope(
            error=ErrorBody(
                error_summary=message,
                error_causes=[ErrorCause(error_summary=message, reason=message)],
            )
        )

    @classmethod
    def from_exception(cls, exc: BaseException) -> ErrorEnvelope:
        return cls.error(str(exc) or type(exc).__name__)
