"""
Line-type eligibility for SMS delivery.

SMS is only attempted for mobile and VoIP lines. A lookup that cannot be
completed blocks SMS as well; it is never retried.
"""

from otp_hook.delivery.errors import IneligibleLineTypeError, LookupFailedError
from otp_hook.delivery.models import LineTypeInfo
from otp_hook.shared.logging import get_logger, mask_phone
from otp_hook.telephony.interface import LineTypeLookup, TelephonyProviderError

logger = get_logger(__name__)


class EligibilityChecker:
    def __init__(self, lookup: LineTypeLookup) -> None:
        self._lookup = lookup

    async def check(self, phone_number: str) -> LineTypeInfo:
        """Return the line type of `phone_number` if it can receive SMS.

        Raises:
            LookupFailedError: the lookup service call failed.
            IneligibleLineTypeError: the line type is not mobile or VoIP.
        """
        try:
            carrier = await self._lookup.lookup_carrier(phone_number)
        except TelephonyProviderError as e:
            raise LookupFailedError(str(e)) from e

        info = LineTypeInfo.from_carrier(carrier)
        logger.info(
            "Line type resolved",
            extra={
                "to": mask_phone(phone_number),
                "line_type": info.label,
                "sms_capable": info.sms_capable,
            },
        )
        if not info.sms_capable:
            raise IneligibleLineTypeError(info.label)
        return info
