"""
Telephony inline hook orchestration.

    authenticate -> parse profile -> dispatch (lookup + SMS | call) -> envelope

`OtpDeliveryService.handle` never raises: every failure is logged and
returned as the error envelope so the identity provider always receives a
normal reply.
"""

from collections.abc import Mapping
from typing import Any

from otp_hook.delivery.auth import RequestAuthenticator
from otp_hook.delivery.dispatcher import ChannelDispatcher
from otp_hook.delivery.eligibility import EligibilityChecker
from otp_hook.delivery.errors import OtpDeliveryError
from otp_hook.delivery.responses import ResponseBuilder, ResponseEnvelope
from otp_hook.delivery.schemas import parse_message_profile
from otp_hook.delivery.sms import SmsDeliverer
from otp_hook.delivery.voice import DEFAULT_VOICE, VoiceDeliverer
from otp_hook.shared.logging import get_logger, mask_phone
from otp_hook.telephony.interface import LineTypeLookup, TelephonyProvider

logger = get_logger(__name__)


class OtpDeliveryService:
    def __init__(
        self,
        authenticator: RequestAuthenticator,
        dispatcher: ChannelDispatcher,
    ) -> None:
        self._authenticator = authenticator
        self._dispatcher = dispatcher

    @property
    def voice(self) -> VoiceDeliverer:
        return self._dispatcher.voice

    async def handle(self, headers: Mapping[str, str], body: Any) -> ResponseEnvelope:
        """Deliver the OTP described by one inline hook event.

        Args:
            headers: Request headers, any key casing.
            body: Decoded JSON body (None when the body was not JSON).

        Returns:
            SuccessEnvelope or ErrorEnvelope.
        """
        try:
            self._authenticator.authenticate(headers)
            profile = parse_message_profile(body)
            request = self._dispatcher.parse(profile)

            logger.info(
                "Delivering OTP",
                extra={
                    "channel": request.channel.value,
                    "to": mask_phone(request.phone_number),
                },
            )
            result = await self._dispatcher.dispatch(request)
        except OtpDeliveryError as e:
            logger.warning(
                "OTP delivery failed",
                extra={"error_type": type(e).__name__, "error": e.message},
            )
            return ResponseBuilder.error(e.message)
        except Exception as e:
            logger.exception("Unexpected error during OTP delivery")
            return ResponseBuilder.from_exception(e)

        logger.info(
            "OTP delivery accepted",
            extra={
                "channel": request.channel.value,
                "provider": result.provider_name,
                "transaction_id": result.transaction_id,
            },
        )
        return ResponseBuilder.success(result)


def create_delivery_service(
    auth_secret: str,
    provider: TelephonyProvider,
    lookup: LineTypeLookup,
    from_number: str,
    voice: str = DEFAULT_VOICE,
) -> OtpDeliveryService:
    """Wire the delivery components around the given provider ports."""
    dispatcher = ChannelDispatcher(
        eligibility=EligibilityChecker(lookup),
        sms=SmsDeliverer(provider, from_number),
        voice=VoiceDeliverer(provider, from_number, voice=voice),
    )
    return OtpDeliveryService(
        authenticator=RequestAuthenticator(auth_secret),
        dispatcher=dispatcher,
    )
