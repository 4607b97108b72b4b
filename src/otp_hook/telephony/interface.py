"""
Telephony provider interface definition.

Two capability ports are injected into the delivery core:
- LineTypeLookup: carrier information for a phone number
- TelephonyProvider: messaging and voice (dial, speech playback, hangup)
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Protocol


class CallStatus(str, Enum):
    """Call status values."""

    QUEUED = "queued"
    INITIATED = "initiated"
    RINGING = "ringing"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"
    BUSY = "busy"
    NO_ANSWER = "no-answer"
    FAILED = "failed"
    CANCELED = "canceled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_CALL_STATUSES


TERMINAL_CALL_STATUSES = frozenset(
    {
        CallStatus.COMPLETED,
        CallStatus.BUSY,
        CallStatus.NO_ANSWER,
        CallStatus.FAILED,
        CallStatus.CANCELED,
    }
)


class PlaybackState(str, Enum):
    """Speech playback states reported to a PlaybackListener."""

    PLAYING = "playing"
    FINISHED = "finished"
    ERROR = "error"


@dataclass(frozen=True)
class CarrierInfo:
    """Carrier information returned by a line-type lookup."""

    phone_number: str
    linetype: str | None = None
    carrier_name: str | None = None
    raw_response: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class MessageReceipt:
    """Provider acknowledgement of an accepted text message."""

    message_id: str
    status: str | None = None
    raw_response: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Playback:
    """Snapshot of a speech playback on a live call."""

    call_sid: str
    state: PlaybackState
    call_status: CallStatus | None = None
    error_message: str | None = None


class TelephonyProviderError(Exception):
    """Base exception for telephony provider errors."""

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        provider_response: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.error_code = error_code
        self.provider_response = provider_response or {}


class LineTypeLookupError(TelephonyProviderError):
    """Error querying the carrier lookup service."""


class MessageSendError(TelephonyProviderError):
    """Error sending a text message."""


class CallDialError(TelephonyProviderError):
    """Error placing an outbound call."""


class PlaybackError(TelephonyProviderError):
    """Error controlling a live call (speech push, hangup)."""


class PlaybackListener(Protocol):
    """Callbacks invoked while a call plays synthesized speech."""

    async def on_started(self, playback: Playback) -> None: ...

    async def on_updated(self, playback: Playback) -> None: ...

    async def on_ended(self, playback: Playback) -> None: ...

    async def on_failed(self, playback: Playback) -> None: ...


class VoiceCall(ABC):
    """Handle on a placed outbound call."""

    @property
    @abstractmethod
    def sid(self) -> str:
        """Provider call identifier."""
        ...

    @abstractmethod
    async def play_tts(
        self,
        text: str,
        voice: str,
        listener: PlaybackListener,
    ) -> None:
        """Speak `text` once the call is connected.

        Returns after the playback reached a final state (ended or failed),
        having reported every transition to `listener`.
        """
        ...

    @abstractmethod
    async def hangup(self) -> None:
        """Terminate the call."""
        ...


class LineTypeLookup(ABC):
    """Port for phone-number carrier lookups."""

    @abstractmethod
    async def lookup_carrier(self, phone_number: str) -> CarrierInfo:
        """Return carrier information for an E.164 number.

        Raises:
            LineTypeLookupError: network, HTTP or decoding failure.
        """
        ...


class TelephonyProvider(ABC):
    """Port for messaging and voice delivery."""

    name: str = "unknown"

    @abstractmethod
    async def send_message(
        self,
        from_number: str,
        to: str,
        body: str,
    ) -> MessageReceipt:
        """Send a text message.

        Raises:
            MessageSendError: the provider rejected or never received the send.
        """
        ...

    @abstractmethod
    async def dial_phone(self, from_number: str, to: str) -> VoiceCall:
        """Place an outbound call.

        Raises:
            CallDialError: the call could not be placed.
        """
        ...

    async def aclose(self) -> None:
        """Release provider resources."""
        return None
