"""
Mock telephony provider adapter for testing and local development.

Implements both provider ports in memory. Every lookup, message, dial and
playback is recorded so tests can assert on provider traffic.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Any

from otp_hook.shared.logging import get_logger, mask_phone
from otp_hook.telephony.interface import (
    CallDialError,
    CallStatus,
    CarrierInfo,
    LineTypeLookup,
    LineTypeLookupError,
    MessageReceipt,
    MessageSendError,
    Playback,
    PlaybackError,
    PlaybackListener,
    PlaybackState,
    TelephonyProvider,
    VoiceCall,
)

logger = get_logger(__name__)

PLAYBACK_ENDED = "ended"
PLAYBACK_FAILED = "failed"
PLAYBACK_RAISES = "raises"


@dataclass(frozen=True)
class SentMessage:
    from_number: str
    to: str
    body: str
    message_id: str


@dataclass(frozen=True)
class DialedCall:
    from_number: str
    to: str
    call_sid: str


@dataclass
class SpokenText:
    text: str
    voice: str
    events: list[str] = field(default_factory=list)


class MockVoiceCall(VoiceCall):
    """In-memory call handle driven by the owning MockTelephonyAdapter."""

    def __init__(self, adapter: "MockTelephonyAdapter", sid: str) -> None:
        self._adapter = adapter
        self._sid = sid
        self.status = CallStatus.QUEUED
        self.hangup_count = 0
        self.speech: SpokenText | None = None

    @property
    def sid(self) -> str:
        return self._sid

    def _playback(self, state: PlaybackState, error_message: str | None = None) -> Playback:
        return Playback(
            call_sid=self._sid,
            state=state,
            call_status=self.status,
            error_message=error_message,
        )

    async def play_tts(
        self,
        text: str,
        voice: str,
        listener: PlaybackListener,
    ) -> None:
        adapter = self._adapter
        self.speech = SpokenText(text=text, voice=voice)
        self.status = CallStatus.IN_PROGRESS

        await listener.on_started(self._playback(PlaybackState.PLAYING))
        self.speech.events.append("started")

        await adapter.playback_gate.wait()

        outcome = adapter.playback_outcome
        if outcome == PLAYBACK_RAISES:
            raise PlaybackError(message=adapter.fail_error, error_code=adapter.fail_code)

        await listener.on_updated(self._playback(PlaybackState.PLAYING))
        self.speech.events.append("updated")

        if outcome == PLAYBACK_FAILED:
            self.status = CallStatus.FAILED
            await listener.on_failed(self._playback(PlaybackState.ERROR, adapter.fail_error))
            self.speech.events.append("failed")
            return

        await listener.on_ended(self._playback(PlaybackState.FINISHED))
        self.speech.events.append("ended")

    async def hangup(self) -> None:
        self.hangup_count += 1
        if self._adapter.hangup_fails:
            raise PlaybackError(message="Mock hangup failure", error_code="MOCK_ERROR")
        self.status = CallStatus.COMPLETED


class MockTelephonyAdapter(LineTypeLookup, TelephonyProvider):
    """Mock telephony provider for testing."""

    name = "MockTelephony"

    def __init__(self, default_linetype: str | None = "wireless") -> None:
        self._default_linetype = default_linetype
        self.reset()

    def reset(self) -> None:
        self.lookups: list[str] = []
        self.messages: list[SentMessage] = []
        self.dials: list[DialedCall] = []
        self.voice_calls: list[MockVoiceCall] = []
        self._linetypes: dict[str, str | None] = {}
        self._next_id = 1
        self._failing: set[str] = set()
        self.fail_error = "Mock failure"
        self.fail_code = "MOCK_ERROR"
        self.playback_outcome = PLAYBACK_ENDED
        self.hangup_fails = False
        self.playback_gate = asyncio.Event()
        self.playback_gate.set()

    def configure_linetype(self, phone_number: str, linetype: str | None) -> None:
        self._linetypes[phone_number] = linetype

    def configure_failure(
        self,
        operation: str,
        should_fail: bool = True,
        error_message: str = "Mock failure",
        error_code: str = "MOCK_ERROR",
    ) -> None:
        """Make `operation` ("lookup", "send" or "dial") raise a provider error."""
        if should_fail:
            self._failing.add(operation)
        else:
            self._failing.discard(operation)
        self.fail_error = error_message
        self.fail_code = error_code

    def configure_playback(self, outcome: str = PLAYBACK_ENDED, hold: bool = False) -> None:
        """Script the next playbacks; `hold` blocks them until `release_playback`."""
        self.playback_outcome = outcome
        if hold:
            self.playback_gate.clear()
        else:
            self.playback_gate.set()

    def release_playback(self) -> None:
        self.playback_gate.set()

    def _next_sid(self, prefix: str) -> str:
        sid = f"MOCK_{prefix}_{self._next_id:06d}"
        self._next_id += 1
        return sid

    @property
    def last_call(self) -> MockVoiceCall | None:
        return self.voice_calls[-1] if self.voice_calls else None

    async def lookup_carrier(self, phone_number: str) -> CarrierInfo:
        self.lookups.append(phone_number)
        if "lookup" in self._failing:
            raise LineTypeLookupError(message=self.fail_error, error_code=self.fail_code)

        linetype = self._linetypes.get(phone_number, self._default_linetype)
        return CarrierInfo(
            phone_number=phone_number,
            linetype=linetype,
            carrier_name="Mock Carrier",
            raw_response={"mock": True, "carrier": {"linetype": linetype}},
        )

    async def send_message(
        self,
        from_number: str,
        to: str,
        body: str,
    ) -> MessageReceipt:
        logger.info("Mock: Sending message", extra={"to": mask_phone(to)})
        if "send" in self._failing:
            raise MessageSendError(message=self.fail_error, error_code=self.fail_code)

        message_id = self._next_sid("MSG")
        self.messages.append(SentMessage(from_number, to, body, message_id))
        return MessageReceipt(
            message_id=message_id,
            status="queued",
            raw_response={"mock": True, "sid": message_id},
        )

    async def dial_phone(self, from_number: str, to: str) -> MockVoiceCall:
        logger.info("Mock: Placing call", extra={"to": mask_phone(to)})
        if "dial" in self._failing:
            raise CallDialError(message=self.fail_error, error_code=self.fail_code)

        call = MockVoiceCall(self, self._next_sid("CALL"))
        self.dials.append(DialedCall(from_number, to, call.sid))
        self.voice_calls.append(call)
        return call

    def provider_traffic(self) -> dict[str, Any]:
        """Counts of provider calls, by kind."""
        return {
            "lookups": len(self.lookups),
            "messages": len(self.messages),
            "dials": len(self.dials),
        }
