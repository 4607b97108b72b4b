"""
Pytest configuration and shared fixtures.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator, Callable
from typing import Any

import pytest
import pytest_asyncio

from otp_hook.delivery.service import OtpDeliveryService, create_delivery_service
from otp_hook.telephony.mock_adapter import MockTelephonyAdapter

AUTH_SECRET = "test-shared-secret"
FROM_NUMBER = "+15550000000"
TO_NUMBER = "+15551234567"


def build_hook_body(
    phone_number: Any = TO_NUMBER,
    otp_code: Any = "123456",
    delivery_channel: Any = "SMS",
) -> dict[str, Any]:
    """Telephony inline hook body as the identity provider sends it."""
    profile: dict[str, Any] = {
        "msgTemplate": "Your code is ${code}",
        "otpExpires": "2026-10-18T10:05:00.000Z",
    }
    if phone_number is not None:
        profile["phoneNumber"] = phone_number
    if otp_code is not None:
        profile["otpCode"] = otp_code
    if delivery_channel is not None:
        profile["deliveryChannel"] = delivery_channel
    return {
        "eventType": "com.okta.telephony.provider",
        "data": {"messageProfile": profile},
    }


@pytest.fixture
def make_hook_body() -> Callable[..., dict[str, Any]]:
    return build_hook_body


@pytest.fixture
def auth_headers() -> dict[str, str]:
    return {"auth_secret": AUTH_SECRET, "content-type": "application/json"}


@pytest.fixture
def mock_adapter() -> MockTelephonyAdapter:
    return MockTelephonyAdapter()


@pytest_asyncio.fixture
async def delivery_service(
    mock_adapter: MockTelephonyAdapter,
) -> AsyncGenerator[OtpDeliveryService, None]:
    service = create_delivery_service(
        auth_secret=AUTH_SECRET,
        provider=mock_adapter,
        lookup=mock_adapter,
        from_number=FROM_NUMBER,
    )
    yield service
    # Release held playbacks so no task outlives the test's event loop.
    mock_adapter.release_playback()
    await service.voice.drain(timeout=1.0)
