"""
Voice-call delivery of OTP codes.

The hook answers as soon as the call is placed. Speech playback and hangup
continue in a detached task that is never awaited by the request path.
Session states: placed -> playing -> ended, or failed from placed or playing.

Only a finished playback hangs the call up. A failed playback leaves the call
to the provider's own timeout.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from xml.sax.saxutils import escape

from otp_hook.delivery.errors import CallPlacementError
from otp_hook.delivery.models import DeliveryRequest, DeliveryResult, DeliveryStatus
from otp_hook.shared.logging import get_logger, mask_phone
from otp_hook.telephony.interface import (
    Playback,
    TelephonyProvider,
    TelephonyProviderError,
    VoiceCall,
)

logger = get_logger(__name__)

DEFAULT_VOICE = "polly.Ruth"


def space_digits(code: str) -> str:
    """Separate every character so speech engines read digits one by one."""
    return " ".join(code)


def build_speech_markup(code: str) -> str:
    """SSML that reads the code slowly, pauses, then reads it again."""
    spaced = escape(space_digits(code))
    return (
        "<speak>"
        "Hello! Your verification code is "
        f'<prosody rate="x-slow">{spaced}</prosody> '
        '<break time="1s"/> '
        "Again, your verification code is "
        f'<prosody rate="x-slow">{spaced}</prosody>'
        "</speak>"
    )


class VoiceSessionState(str, Enum):
    PLACED = "placed"
    PLAYING = "playing"
    ENDED = "ended"
    FAILED = "failed"


_TRANSITIONS: dict[VoiceSessionState, frozenset[VoiceSessionState]] = {
    VoiceSessionState.PLACED: frozenset({VoiceSessionState.PLAYING, VoiceSessionState.FAILED}),
    VoiceSessionState.PLAYING: frozenset({VoiceSessionState.ENDED, VoiceSessionState.FAILED}),
    VoiceSessionState.ENDED: frozenset(),
    VoiceSessionState.FAILED: frozenset(),
}


class InvalidSessionTransition(Exception):
    """A playback event arrived that the session state does not allow."""


@dataclass
class VoiceSession:
    """Lifecycle of one placed call. Acts as the call's playback listener."""

    call: VoiceCall
    state: VoiceSessionState = VoiceSessionState.PLACED
    history: list[VoiceSessionState] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.history.append(self.state)

    @property
    def is_terminal(self) -> bool:
        return not _TRANSITIONS[self.state]

    def transition(self, new_state: VoiceSessionState) -> None:
        if new_state not in _TRANSITIONS[self.state]:
            raise InvalidSessionTransition(
                f"Cannot move voice session from {self.state.value} to {new_state.value}"
            )
        self.state = new_state
        self.history.append(new_state)

    def fail(self) -> None:
        """Mark the session failed unless it already finished."""
        if not self.is_terminal:
            self.transition(VoiceSessionState.FAILED)

    async def on_started(self, playback: Playback) -> None:
        self.transition(VoiceSessionState.PLAYING)
        logger.info("Playback started", extra={"call_sid": self.call.sid})

    async def on_updated(self, playback: Playback) -> None:
        logger.info(
            "Playback updated",
            extra={
                "call_sid": self.call.sid,
                "playback_state": playback.state.value,
                "call_status": playback.call_status.value if playback.call_status else None,
            },
        )

    async def on_ended(self, playback: Playback) -> None:
        self.transition(VoiceSessionState.ENDED)
        logger.info(
            "Playback ended",
            extra={"call_sid": self.call.sid, "playback_state": playback.state.value},
        )
        await self.call.hangup()

    async def on_failed(self, playback: Playback) -> None:
        self.fail()
        logger.warning(
            "Playback failed",
            extra={"call_sid": self.call.sid, "error": playback.error_message},
        )


class VoiceDeliverer:
    """Places the call and hands playback to a detached task."""

    def __init__(
        self,
        provider: TelephonyProvider,
        from_number: str,
        voice: str = DEFAULT_VOICE,
    ) -> None:
        self._provider = provider
        self._from_number = from_number
        self._voice = voice
        # References only; keeps running tasks from being garbage-collected.
        self._tasks: set[asyncio.Task[None]] = set()

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def deliver(self, request: DeliveryRequest) -> DeliveryResult:
        try:
            call = await self._provider.dial_phone(
                from_number=self._from_number,
                to=request.phone_number,
            )
        except TelephonyProviderError as e:
            raise CallPlacementError(f"Call placement failed: {e}") from e

        logger.info(
            "Call placed",
            extra={"to": mask_phone(request.phone_number), "call_sid": call.sid},
        )

        session = VoiceSession(call=call)
        self._spawn_playback(session, build_speech_markup(request.otp_code))

        return DeliveryResult(
            status=DeliveryStatus.SUCCESSFUL,
            provider_name=self._provider.name,
            transaction_id=call.sid,
        )

    def _spawn_playback(self, session: VoiceSession, markup: str) -> asyncio.Task[None]:
        task = asyncio.create_task(
            self._run_playback(session, markup),
            name=f"voice-playback-{session.call.sid}",
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _run_playback(self, session: VoiceSession, markup: str) -> None:
        try:
            await session.call.play_tts(markup, self._voice, session)
        except asyncio.CancelledError:
            session.fail()
            logger.warning("Voice playback cancelled", extra={"call_sid": session.call.sid})
            raise
        except Exception:
            session.fail()
            logger.exception(
                "Voice playback task failed",
                extra={"call_sid": session.call.sid, "session_state": session.state.value},
            )

    async def drain(self, timeout: float | None = None) -> None:
        """Wait for in-flight playbacks; cancel those still running after `timeout`."""
        if not self._tasks:
            return

        _, still_running = await asyncio.wait(set(self._tasks), timeout=timeout)
        for task in still_running:
            task.cancel()
        if still_running:
            logger.warning(
                "Cancelled unfinished voice playbacks",
                extra={"count": len(still_running)},
            )
            await asyncio.gather(*still_running, return_exceptions=True)
