"""
FastAPI router for the telephony inline hook.

The identity provider waits synchronously for this endpoint, so it always
answers 200 with one of the two envelopes, whatever happened.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Annotated, Any

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse, Response

from otp_hook.config import get_settings
from otp_hook.delivery.errors import ServiceConfigurationError
from otp_hook.delivery.service import OtpDeliveryService, create_delivery_service
from otp_hook.shared.logging import get_logger, new_correlation_id
from otp_hook.telephony.factory import (
    get_line_type_lookup,
    get_telephony_config,
    get_telephony_provider,
)
from otp_hook.telephony.interface import TelephonyProvider
from otp_hook.telephony.signalwire_adapter import HANGUP_DOCUMENT, SignalWireAdapter

logger = get_logger(__name__)

router = APIRouter(prefix="/hooks", tags=["hooks"])


@lru_cache(maxsize=1)
def get_delivery_service() -> OtpDeliveryService:
    """Build and cache the delivery service from settings.

    Raises:
        ServiceConfigurationError: settings failed validation. Not cached, so
            a corrected environment is picked up by the next request.
    """
    try:
        settings = get_settings()
        telephony_cfg = get_telephony_config()
        provider = get_telephony_provider()
        lookup = get_line_type_lookup()
    except (ValueError, TypeError) as e:
        logger.exception("Delivery service configuration is invalid")
        raise ServiceConfigurationError("Delivery service is not configured") from e

    if not settings.auth_secret:
        logger.warning("AUTH_SECRET is not configured; every hook request will be rejected")

    return create_delivery_service(
        auth_secret=settings.auth_secret,
        provider=provider,
        lookup=lookup,
        from_number=telephony_cfg.from_number,
        voice=telephony_cfg.voice,
    )


async def _read_json(request: Request) -> Any:
    try:
        return await request.json()
    except ValueError:
        logger.warning("Inline hook body is not valid JSON")
        return None


@router.post("/telephony")
async def telephony_hook(
    request: Request,
    service: Annotated[OtpDeliveryService, Depends(get_delivery_service)],
) -> JSONResponse:
    """Deliver an OTP by SMS or voice call for the identity provider."""
    new_correlation_id(request.headers.get("x-request-id"))

    body = await _read_json(request)
    envelope = await service.handle(request.headers, body)
    return JSONResponse(status_code=200, content=envelope.to_payload())


@router.post("/telephony/playback/{call_sid}")
async def playback_finished(
    call_sid: str,
    provider: Annotated[TelephonyProvider, Depends(get_telephony_provider)],
    token: str = "",
) -> Response:
    """End-of-speech callback requested by SignalWire's <Redirect> verb.

    Answers with the cXML document that continues the call.
    """
    if isinstance(provider, SignalWireAdapter):
        document = provider.acknowledge_speech_end(call_sid, token)
    else:
        document = HANGUP_DOCUMENT
    return Response(content=document, media_type="application/xml")
