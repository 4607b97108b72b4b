"""
SignalWire telephony provider adapter.

Talks to the SignalWire REST APIs with httpx:
- carrier lookup:  /api/relay/rest/lookup/phone_number/{number}?include=carrier
- messaging/voice: compatibility (cXML) API under /api/laml/2010-04-01

Voice playback is driven through the call resource. Speech is pushed as a
cXML <Say> document once the call is in progress, followed by a <Redirect> to
this service's playback callback. The callback marks the end of speech and
answers with a <Pause> that keeps the line open until the call is hung up
explicitly. A call that ends before the callback arrives is a failed playback.
"""

from __future__ import annotations

import hmac
import re
import secrets
from base64 import b64encode
from typing import Any
from urllib.parse import quote, urlencode
from xml.sax.saxutils import escape, quoteattr

import anyio
import httpx

from otp_hook.shared.logging import get_logger, mask_phone
from otp_hook.telephony.config import TelephonyConfig, get_telephony_config
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
    TelephonyProviderError,
    VoiceCall,
)

logger = get_logger(__name__)

LAML_API_PATH = "/api/laml/2010-04-01"
LOOKUP_API_PATH = "/api/relay/rest/lookup/phone_number"
PLAYBACK_CALLBACK_PATH = "/hooks/telephony/playback"

HANGUP_DOCUMENT = "<Response><Hangup/></Response>"

PENDING_CALL_STATUSES = frozenset(
    {CallStatus.QUEUED, CallStatus.INITIATED, CallStatus.RINGING}
)

_SPEAK_TAG = re.compile(r"</?speak>")


def _parse_call_status(value: Any, call_sid: str) -> CallStatus:
    try:
        return CallStatus(str(value or "").lower())
    except ValueError:
        logger.warning(
            "Unknown SignalWire call status",
            extra={"status": value, "call_sid": call_sid},
        )
        return CallStatus.FAILED


def _playback_state(status: CallStatus) -> PlaybackState:
    # Before the end-of-speech callback any terminal status is a failure.
    return PlaybackState.ERROR if status.is_terminal else PlaybackState.PLAYING


def _hold_document(seconds: int) -> str:
    return f'<Response><Pause length="{seconds}"/></Response>'


def _say_document(markup: str, voice: str, callback_url: str) -> str:
    """Wrap speech markup in a cXML <Say> document.

    The <speak> root is dropped; its inner SSML tags are kept. The trailing
    <Redirect> reports the end of speech to `callback_url`.
    """
    inner = _SPEAK_TAG.sub("", markup).strip()
    return (
        f"<Response><Say voice={quoteattr(voice)}>{inner}</Say>"
        f'<Redirect method="POST">{escape(callback_url)}</Redirect></Response>'
    )


class SignalWireCall(VoiceCall):
    """Live outbound call placed through SignalWire."""

    def __init__(
        self,
        adapter: SignalWireAdapter,
        sid: str,
        status: CallStatus = CallStatus.QUEUED,
    ) -> None:
        self._adapter = adapter
        self._sid = sid
        self._status = status

    @property
    def sid(self) -> str:
        return self._sid

    @property
    def status(self) -> CallStatus:
        return self._status

    async def _refresh_status(self) -> CallStatus:
        self._status = await self._adapter.get_call_status(self._sid)
        return self._status

    async def _wait_until_connected(self) -> CallStatus:
        status = self._status
        while status in PENDING_CALL_STATUSES:
            await anyio.sleep(self._adapter.config.poll_interval_seconds)
            status = await self._refresh_status()
        return status

    def _playback(
        self,
        state: PlaybackState,
        error_message: str | None = None,
    ) -> Playback:
        return Playback(
            call_sid=self._sid,
            state=state,
            call_status=self._status,
            error_message=error_message,
        )

    async def play_tts(
        self,
        text: str,
        voice: str,
        listener: PlaybackListener,
    ) -> None:
        config = self._adapter.config
        callback_url, speech_done = self._adapter.expect_speech_end(self._sid)
        finished = False
        try:
            with anyio.fail_after(config.playback_timeout_seconds):
                status = await self._wait_until_connected()
                if status is not CallStatus.IN_PROGRESS:
                    await listener.on_failed(
                        self._playback(
                            PlaybackState.ERROR,
                            f"Call ended before connecting: {status.value}",
                        )
                    )
                    return

                await self._adapter.update_call(
                    self._sid,
                    {"Twiml": _say_document(text, voice, callback_url)},
                )
                await listener.on_started(self._playback(PlaybackState.PLAYING))

                last_status = status
                while True:
                    with anyio.move_on_after(config.poll_interval_seconds):
                        await speech_done.wait()
                    if speech_done.is_set():
                        finished = True
                        break

                    status = await self._refresh_status()
                    if status is not last_status:
                        last_status = status
                        await listener.on_updated(self._playback(_playback_state(status)))
                    if status.is_terminal:
                        await listener.on_failed(
                            self._playback(
                                PlaybackState.ERROR,
                                f"Call ended during playback: {status.value}",
                            )
                        )
                        return
        except TimeoutError:
            await listener.on_failed(
                self._playback(PlaybackState.ERROR, "Playback timed out")
            )
        except TelephonyProviderError as e:
            await listener.on_failed(self._playback(PlaybackState.ERROR, str(e)))
        finally:
            self._adapter.forget_speech_end(self._sid)

        # Outside the guarded block: errors raised by the listener (a failed
        # hangup) belong to the caller, not to playback.
        if finished:
            await listener.on_ended(self._playback(PlaybackState.FINISHED))

    async def hangup(self) -> None:
        # Pre-flight: the provider may already have ended the call.
        status = await self._refresh_status()
        if status.is_terminal:
            logger.info(
                "Call already ended; hangup skipped",
                extra={"call_sid": self._sid, "call_status": status.value},
            )
            return

        await self._adapter.update_call(self._sid, {"Status": "completed"})
        self._status = CallStatus.COMPLETED
        logger.info("Call hung up", extra={"call_sid": self._sid})


class SignalWireAdapter(LineTypeLookup, TelephonyProvider):
    """SignalWire REST adapter implementing lookup, messaging and voice."""

    name = "SignalWire"

    def __init__(
        self,
        config: TelephonyConfig | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._config = config or get_telephony_config()
        self._http_client = http_client
        self._owns_client = http_client is None
        # call sid -> (callback token, end-of-speech event)
        self._speech_ends: dict[str, tuple[str, anyio.Event]] = {}

    @property
    def config(self) -> TelephonyConfig:
        return self._config

    def _playback_callback_url(self, call_sid: str, token: str) -> str:
        base = self._config.callback_base_url.strip().rstrip("/")
        query = urlencode({"token": token})
        return f"{base}{PLAYBACK_CALLBACK_PATH}/{quote(call_sid, safe='')}?{query}"

    def expect_speech_end(self, call_sid: str) -> tuple[str, anyio.Event]:
        """Register a call for the end-of-speech callback.

        Returns:
            The callback URL to redirect to after speech, and the event the
            callback sets.
        """
        token = secrets.token_urlsafe(16)
        event = anyio.Event()
        self._speech_ends[call_sid] = (token, event)
        return self._playback_callback_url(call_sid, token), event

    def forget_speech_end(self, call_sid: str) -> None:
        self._speech_ends.pop(call_sid, None)

    def acknowledge_speech_end(self, call_sid: str, token: str) -> str:
        """Handle the end-of-speech callback for `call_sid`.

        Returns:
            The cXML document for the call: a hold while the pending playback
            hangs up, or a hangup when the call or token is not recognized.
        """
        pending = self._speech_ends.get(call_sid)
        if pending is None or not hmac.compare_digest(
            pending[0].encode("utf-8"), token.encode("utf-8")
        ):
            logger.warning(
                "Unexpected playback callback",
                extra={"call_sid": call_sid, "pending": pending is not None},
            )
            return HANGUP_DOCUMENT

        pending[1].set()
        logger.info("Speech finished", extra={"call_sid": call_sid})
        return _hold_document(self._config.connect_hold_seconds)

    def _get_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                timeout=httpx.Timeout(self._config.request_timeout_seconds)
            )
        return self._http_client

    async def aclose(self) -> None:
        if self._owns_client and self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None

    def _get_headers(self) -> dict[str, str]:
        credentials = f"{self._config.project_id}:{self._config.api_token}"
        return {
            "Authorization": "Basic " + b64encode(credentials.encode("utf-8")).decode("ascii"),
            "Accept": "application/json",
        }

    def _get_api_url(self, endpoint: str) -> str:
        return (
            f"{self._config.base_url}{LAML_API_PATH}"
            f"/Accounts/{self._config.project_id}{endpoint}"
        )

    async def _request(
        self,
        method: str,
        url: str,
        error_cls: type[TelephonyProviderError],
        operation: str,
        **kwargs: Any,
    ) -> dict[str, Any]:
        client = self._get_client()
        try:
            response = await client.request(method, url, headers=self._get_headers(), **kwargs)
        except httpx.HTTPError as e:
            logger.error(
                "SignalWire request failed",
                extra={"operation": operation, "error": str(e)},
            )
            raise error_cls(
                message=f"HTTP error: {e!s}",
                error_code="HTTP_ERROR",
            ) from e

        if response.status_code >= 400:
            try:
                error_data = response.json() if response.content else {}
            except ValueError:
                error_data = {}
            if not isinstance(error_data, dict):
                error_data = {"errors": error_data}
            logger.error(
                "SignalWire API error",
                extra={
                    "operation": operation,
                    "status_code": response.status_code,
                    "error": error_data,
                },
            )
            raise error_cls(
                message=error_data.get("message")
                or f"{operation} failed with status {response.status_code}",
                error_code=str(error_data.get("code", response.status_code)),
                provider_response=error_data,
            )

        try:
            data = response.json()
        except ValueError as e:
            raise error_cls(
                message=f"{operation} returned an invalid JSON body",
                error_code="INVALID_RESPONSE",
            ) from e
        if not isinstance(data, dict):
            raise error_cls(
                message=f"{operation} returned an unexpected body",
                error_code="INVALID_RESPONSE",
            )
        return data

    async def lookup_carrier(self, phone_number: str) -> CarrierInfo:
        url = (
            f"{self._config.base_url}{LOOKUP_API_PATH}/"
            f"{quote(phone_number, safe='')}"
        )
        logger.info("Looking up carrier", extra={"to": mask_phone(phone_number)})

        data = await self._request(
            "GET",
            url,
            LineTypeLookupError,
            "Carrier lookup",
            params={"include": "carrier"},
        )
        carrier = data.get("carrier") or {}
        if not isinstance(carrier, dict):
            carrier = {}
        linetype = carrier.get("linetype")

        return CarrierInfo(
            phone_number=phone_number,
            linetype=str(linetype).lower() if linetype else None,
            carrier_name=carrier.get("lec") or carrier.get("name"),
            raw_response=data,
        )

    async def send_message(
        self,
        from_number: str,
        to: str,
        body: str,
    ) -> MessageReceipt:
        logger.info("Sending SignalWire message", extra={"to": mask_phone(to)})

        data = await self._request(
            "POST",
            self._get_api_url("/Messages.json"),
            MessageSendError,
            "Message send",
            data={"From": from_number, "To": to, "Body": body},
        )
        message_id = data.get("sid")
        if not message_id:
            raise MessageSendError(
                message="Message send returned no message id",
                error_code="MISSING_SID",
                provider_response=data,
            )
        return MessageReceipt(
            message_id=message_id,
            status=data.get("status"),
            raw_response=data,
        )

    async def dial_phone(self, from_number: str, to: str) -> SignalWireCall:
        if not self._config.callback_base_url.strip():
            # Without the callback the end of speech cannot be observed.
            logger.error("SignalWire callback_base_url is not configured")
            raise CallDialError(
                message="Voice callback URL is not configured",
                error_code="CONFIG_ERROR",
            )

        logger.info("Placing SignalWire call", extra={"to": mask_phone(to)})

        hold = _hold_document(self._config.connect_hold_seconds)
        data = await self._request(
            "POST",
            self._get_api_url("/Calls.json"),
            CallDialError,
            "Call placement",
            data={"From": from_number, "To": to, "Twiml": hold},
        )
        call_sid = data.get("sid")
        if not call_sid:
            raise CallDialError(
                message="Call placement returned no call sid",
                error_code="MISSING_SID",
                provider_response=data,
            )
        return SignalWireCall(
            self,
            call_sid,
            _parse_call_status(data.get("status", "queued"), call_sid),
        )

    async def get_call_status(self, call_sid: str) -> CallStatus:
        data = await self._request(
            "GET",
            self._get_api_url(f"/Calls/{call_sid}.json"),
            PlaybackError,
            "Call status",
        )
        return _parse_call_status(data.get("status"), call_sid)

    async def update_call(self, call_sid: str, fields: dict[str, str]) -> dict[str, Any]:
        return await self._request(
            "POST",
            self._get_api_url(f"/Calls/{call_sid}.json"),
            PlaybackError,
            "Call update",
            data=fields,
        )
