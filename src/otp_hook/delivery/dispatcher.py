"""
Delivery channel selection.
"""

from otp_hook.delivery.eligibility import EligibilityChecker
from otp_hook.delivery.errors import MissingParameterError, UnsupportedChannelError
from otp_hook.delivery.models import DeliveryChannel, DeliveryRequest, DeliveryResult
from otp_hook.delivery.schemas import MessageProfile
from otp_hook.delivery.sms import SmsDeliverer
from otp_hook.delivery.voice import VoiceDeliverer


class ChannelDispatcher:
    """Validates the message profile and routes it to SMS or voice."""

    def __init__(
        self,
        eligibility: EligibilityChecker,
        sms: SmsDeliverer,
        voice: VoiceDeliverer,
    ) -> None:
        self._eligibility = eligibility
        self._sms = sms
        self._voice = voice

    @property
    def voice(self) -> VoiceDeliverer:
        return self._voice

    def parse(self, profile: MessageProfile) -> DeliveryRequest:
        """Build a DeliveryRequest from the message profile.

        Raises:
            MissingParameterError: phone number or OTP code absent.
            UnsupportedChannelError: channel other than sms/call, or absent.
        """
        if not profile.phone_number or not profile.otp_code:
            raise MissingParameterError("Missing phone number or OTP")

        channel = (profile.delivery_channel or "").strip().lower()
        try:
            delivery_channel = DeliveryChannel(channel)
        except ValueError:
            raise UnsupportedChannelError(
                "Unsupported delivery channel. Must be 'sms' or 'call'."
            ) from None

        return DeliveryRequest(
            phone_number=profile.phone_number,
            otp_code=profile.otp_code,
            channel=delivery_channel,
        )

    async def dispatch(self, request: DeliveryRequest) -> DeliveryResult:
        match request.channel:
            case DeliveryChannel.SMS:
                await self._eligibility.check(request.phone_number)
                return await self._sms.deliver(request)
            case DeliveryChannel.CALL:
                return await self._voice.deliver(request)
        raise UnsupportedChannelError("Unsupported delivery channel. Must be 'sms' or 'call'.")
