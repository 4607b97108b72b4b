"""
SMS delivery of OTP codes.
"""

from otp_hook.delivery.errors import DeliveryFailedError
from otp_hook.delivery.models import DeliveryRequest, DeliveryResult, DeliveryStatus
from otp_hook.shared.logging import get_logger, mask_phone
from otp_hook.telephony.interface import TelephonyProvider, TelephonyProviderError

logger = get_logger(__name__)

SMS_BODY_TEMPLATE = "Your verification code is: {code}"


def render_sms_body(code: str) -> str:
    return SMS_BODY_TEMPLATE.format(code=code)


class SmsDeliverer:
    """Sends the OTP as a text message to an SMS-capable number."""

    def __init__(self, provider: TelephonyProvider, from_number: str) -> None:
        self._provider = provider
        self._from_number = from_number

    async def deliver(self, request: DeliveryRequest) -> DeliveryResult:
        try:
            receipt = await self._provider.send_message(
                from_number=self._from_number,
                to=request.phone_number,
                body=render_sms_body(request.otp_code),
            )
        except TelephonyProviderError as e:
            raise DeliveryFailedError(f"SMS delivery failed: {e}") from e

        logger.info(
            "SMS accepted by provider",
            extra={"to": mask_phone(request.phone_number), "message_id": receipt.message_id},
        )
        return DeliveryResult(
            status=DeliveryStatus.SUCCESSFUL,
            provider_name=self._provider.name,
            transaction_id=receipt.message_id,
        )
