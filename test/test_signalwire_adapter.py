"""Tests for the SignalWire REST adapter (httpx MockTransport, no network)."""

from __future__ import annotations

import re
from base64 import b64encode
from collections.abc import Callable, Iterator
from urllib.parse import parse_qs

import httpx
import pytest

from otp_hook.delivery.voice import VoiceSession, VoiceSessionState
from otp_hook.telephony.config import TelephonyConfig
from otp_hook.telephony.interface import (
    CallDialError,
    CallStatus,
    LineTypeLookupError,
    MessageSendError,
    Playback,
    PlaybackError,
    PlaybackState,
)
from otp_hook.telephony.signalwire_adapter import HANGUP_DOCUMENT, SignalWireAdapter, SignalWireCall

SPACE = "example.signalwire.com"
PROJECT = "proj-123"
TOKEN = "PT_token"
ACCOUNT_PATH = f"/api/laml/2010-04-01/Accounts/{PROJECT}"

Handler = Callable[[httpx.Request], httpx.Response]


@pytest.fixture
def signalwire_config() -> TelephonyConfig:
    return TelephonyConfig(
        project_id=PROJECT,
        api_token=TOKEN,
        space=SPACE,
        from_number="+15550000000",
        callback_base_url="https://otp.example.com",
        poll_interval_seconds=0.001,
    )


def _adapter(config: TelephonyConfig, handler: Handler) -> SignalWireAdapter:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return SignalWireAdapter(config=config, http_client=client)


def _form(request: httpx.Request) -> dict[str, str]:
    return {k: v[0] for k, v in parse_qs(request.content.decode("utf-8")).items()}


class RecordingListener:
    def __init__(self) -> None:
        self.events: list[tuple[str, Playback]] = []

    async def on_started(self, playback: Playback) -> None:
        self.events.append(("started", playback))

    async def on_updated(self, playback: Playback) -> None:
        self.events.append(("updated", playback))

    async def on_ended(self, playback: Playback) -> None:
        self.events.append(("ended", playback))

    async def on_failed(self, playback: Playback) -> None:
        self.events.append(("failed", playback))

    @property
    def names(self) -> list[str]:
        return [name for name, _ in self.events]


class TestLookupCarrier:
    @pytest.mark.asyncio
    async def test_lookup_request_and_line_type(self, signalwire_config: TelephonyConfig) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(
                200,
                json={"e164": "+15551234567", "carrier": {"lec": "Verizon", "linetype": "Wireless"}},
            )

        adapter = _adapter(signalwire_config, handler)
        info = await adapter.lookup_carrier("+15551234567")

        request = seen[0]
        assert request.method == "GET"
        assert request.url.host == SPACE
        assert request.url.raw_path.decode() == (
            "/api/relay/rest/lookup/phone_number/%2B15551234567?include=carrier"
        )
        expected_auth = "Basic " + b64encode(f"{PROJECT}:{TOKEN}".encode()).decode()
        assert request.headers["authorization"] == expected_auth
        assert info.linetype == "wireless"
        assert info.carrier_name == "Verizon"

    @pytest.mark.asyncio
    async def test_missing_carrier_yields_no_line_type(self, signalwire_config: TelephonyConfig) -> None:
        adapter = _adapter(signalwire_config, lambda r: httpx.Response(200, json={"e164": "+1"}))

        info = await adapter.lookup_carrier("+15551234567")

        assert info.linetype is None

    @pytest.mark.asyncio
    async def test_http_status_error(self, signalwire_config: TelephonyConfig) -> None:
        adapter = _adapter(signalwire_config, lambda r: httpx.Response(404, json={}))

        with pytest.raises(LineTypeLookupError) as exc_info:
            await adapter.lookup_carrier("+15551234567")

        assert exc_info.value.error_code == "404"
        assert str(exc_info.value) == "Carrier lookup failed with status 404"

    @pytest.mark.asyncio
    async def test_network_error(self, signalwire_config: TelephonyConfig) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("Connection refused", request=request)

        adapter = _adapter(signalwire_config, handler)

        with pytest.raises(LineTypeLookupError) as exc_info:
            await adapter.lookup_carrier("+15551234567")

        assert exc_info.value.error_code == "HTTP_ERROR"
        assert "Connection refused" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_non_json_body(self, signalwire_config: TelephonyConfig) -> None:
        adapter = _adapter(signalwire_config, lambda r: httpx.Response(200, text="<html>"))

        with pytest.raises(LineTypeLookupError) as exc_info:
            await adapter.lookup_carrier("+15551234567")

        assert exc_info.value.error_code == "INVALID_RESPONSE"


class TestSendMessage:
    @pytest.mark.asyncio
    async def test_send_posts_form_and_returns_sid(self, signalwire_config: TelephonyConfig) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(201, json={"sid": "SM_TEST_1", "status": "queued"})

        adapter = _adapter(signalwire_config, handler)
        receipt = await adapter.send_message("+15550000000", "+15551234567", "Your verification code is: 1")

        assert receipt.message_id == "SM_TEST_1"
        assert seen[0].method == "POST"
        assert seen[0].url.path == f"{ACCOUNT_PATH}/Messages.json"
        assert _form(seen[0]) == {
            "From": "+15550000000",
            "To": "+15551234567",
            "Body": "Your verification code is: 1",
        }

    @pytest.mark.asyncio
    async def test_api_error_carries_provider_code(self, signalwire_config: TelephonyConfig) -> None:
        adapter = _adapter(
            signalwire_config,
            lambda r: httpx.Response(400, json={"code": 21211, "message": "Invalid 'To' Phone Number"}),
        )

        with pytest.raises(MessageSendError) as exc_info:
            await adapter.send_message("+15550000000", "+1", "x")

        assert str(exc_info.value) == "Invalid 'To' Phone Number"
        assert exc_info.value.error_code == "21211"

    @pytest.mark.asyncio
    async def test_missing_sid(self, signalwire_config: TelephonyConfig) -> None:
        adapter = _adapter(signalwire_config, lambda r: httpx.Response(201, json={"status": "queued"}))

        with pytest.raises(MessageSendError) as exc_info:
            await adapter.send_message("+15550000000", "+15551234567", "x")

        assert exc_info.value.error_code == "MISSING_SID"


class TestDialPhone:
    @pytest.mark.asyncio
    async def test_dial_holds_line_and_returns_call(self, signalwire_config: TelephonyConfig) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(201, json={"sid": "CA_TEST_1", "status": "queued"})

        adapter = _adapter(signalwire_config, handler)
        call = await adapter.dial_phone("+15550000000", "+15551234567")

        assert isinstance(call, SignalWireCall)
        assert call.sid == "CA_TEST_1"
        assert call.status == CallStatus.QUEUED
        form = _form(seen[0])
        assert seen[0].url.path == f"{ACCOUNT_PATH}/Calls.json"
        assert form["From"] == "+15550000000"
        assert form["To"] == "+15551234567"
        assert form["Twiml"] == '<Response><Pause length="60"/></Response>'

    @pytest.mark.asyncio
    async def test_dial_error(self, signalwire_config: TelephonyConfig) -> None:
        adapter = _adapter(
            signalwire_config,
            lambda r: httpx.Response(401, json={"message": "Unauthorized"}),
        )

        with pytest.raises(CallDialError, match="Unauthorized"):
            await adapter.dial_phone("+15550000000", "+15551234567")

    @pytest.mark.asyncio
    async def test_dial_refused_without_callback_url(self, signalwire_config: TelephonyConfig) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(201, json={"sid": "CA_TEST_1", "status": "queued"})

        config = signalwire_config.model_copy(update={"callback_base_url": ""})
        adapter = _adapter(config, handler)

        with pytest.raises(CallDialError) as exc_info:
            await adapter.dial_phone("+15550000000", "+15551234567")

        assert exc_info.value.error_code == "CONFIG_ERROR"
        assert seen == []


def _call_handler(
    statuses: Iterator[str],
    updates: list[dict[str, str]],
    on_twiml: Callable[[str], None] | None = None,
) -> Handler:
    """Serve call status polls from `statuses`; record call updates."""

    def handler(request: httpx.Request) -> httpx.Response:
        if request.method == "GET":
            return httpx.Response(200, json={"sid": "CA1", "status": next(statuses)})
        form = _form(request)
        updates.append(form)
        if on_twiml is not None and "Twiml" in form:
            on_twiml(form["Twiml"])
        return httpx.Response(200, json={"sid": "CA1", "status": "in-progress"})

    return handler


def _redirect_url(twiml: str) -> httpx.URL:
    match = re.search(r'<Redirect method="POST">(.*)</Redirect>', twiml)
    assert match is not None
    return httpx.URL(match.group(1))


class _SpeechCallback:
    """Plays SignalWire's part: requests the <Redirect> once speech is pushed."""

    def __init__(self) -> None:
        self.adapter: SignalWireAdapter | None = None
        self.documents: list[str] = []

    def __call__(self, twiml: str) -> None:
        assert self.adapter is not None
        url = _redirect_url(twiml)
        call_sid = url.path.rsplit("/", 1)[-1]
        self.documents.append(self.adapter.acknowledge_speech_end(call_sid, url.params["token"]))


class TestPlayTts:
    @pytest.mark.asyncio
    async def test_speech_pushed_after_connect_then_ended(
        self,
        signalwire_config: TelephonyConfig,
    ) -> None:
        updates: list[dict[str, str]] = []
        callback = _SpeechCallback()
        statuses = iter(["ringing", "in-progress"])
        adapter = _adapter(signalwire_config, _call_handler(statuses, updates, callback))
        callback.adapter = adapter
        call = SignalWireCall(adapter, "CA1", CallStatus.QUEUED)
        listener = RecordingListener()

        await call.play_tts(
            '<speak>Code <prosody rate="x-slow">1 2</prosody></speak>',
            "polly.Ruth",
            listener,
        )

        twiml = updates[0]["Twiml"]
        assert twiml.startswith(
            '<Response><Say voice="polly.Ruth">Code <prosody rate="x-slow">1 2</prosody></Say>'
        )
        url = _redirect_url(twiml)
        assert url.host == "otp.example.com"
        assert url.path == "/hooks/telephony/playback/CA1"
        assert url.params["token"]
        assert callback.documents == ['<Response><Pause length="60"/></Response>']
        assert listener.names == ["started", "ended"]
        assert listener.events[-1][1].state == PlaybackState.FINISHED

    @pytest.mark.asyncio
    async def test_ended_playback_sends_explicit_hangup(
        self,
        signalwire_config: TelephonyConfig,
    ) -> None:
        updates: list[dict[str, str]] = []
        callback = _SpeechCallback()
        # The only status poll is the hangup pre-flight: the line is held open.
        adapter = _adapter(signalwire_config, _call_handler(iter(["in-progress"]), updates, callback))
        callback.adapter = adapter
        call = SignalWireCall(adapter, "CA1", CallStatus.IN_PROGRESS)
        session = VoiceSession(call=call)

        await call.play_tts("<speak>1</speak>", "polly.Ruth", session)

        assert [list(u) for u in updates] == [["Twiml"], ["Status"]]
        assert updates[1] == {"Status": "completed"}
        assert session.state == VoiceSessionState.ENDED
        assert call.status == CallStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_caller_hanging_up_mid_speech_is_a_failure(
        self,
        signalwire_config: TelephonyConfig,
    ) -> None:
        updates: list[dict[str, str]] = []
        adapter = _adapter(signalwire_config, _call_handler(iter(["completed"]), updates))
        call = SignalWireCall(adapter, "CA1", CallStatus.IN_PROGRESS)
        session = VoiceSession(call=call)

        await call.play_tts("<speak>1</speak>", "polly.Ruth", session)

        assert len(updates) == 1
        assert session.state == VoiceSessionState.FAILED

    @pytest.mark.asyncio
    async def test_unanswered_call_fails_without_speech(
        self,
        signalwire_config: TelephonyConfig,
    ) -> None:
        updates: list[dict[str, str]] = []
        adapter = _adapter(signalwire_config, _call_handler(iter(["ringing", "no-answer"]), updates))
        call = SignalWireCall(adapter, "CA1", CallStatus.QUEUED)
        listener = RecordingListener()

        await call.play_tts("<speak>1</speak>", "polly.Ruth", listener)

        assert updates == []
        assert listener.names == ["failed"]
        assert listener.events[0][1].call_status == CallStatus.NO_ANSWER

    @pytest.mark.asyncio
    async def test_call_dropped_during_playback_fails(
        self,
        signalwire_config: TelephonyConfig,
    ) -> None:
        updates: list[dict[str, str]] = []
        adapter = _adapter(signalwire_config, _call_handler(iter(["failed"]), updates))
        call = SignalWireCall(adapter, "CA1", CallStatus.IN_PROGRESS)
        listener = RecordingListener()

        await call.play_tts("<speak>1</speak>", "polly.Ruth", listener)

        assert len(updates) == 1
        assert listener.names == ["started", "updated", "failed"]
        assert listener.events[1][1].state == PlaybackState.ERROR

    @pytest.mark.asyncio
    async def test_provider_error_reported_as_failed(
        self,
        signalwire_config: TelephonyConfig,
    ) -> None:
        adapter = _adapter(signalwire_config, lambda r: httpx.Response(500, json={"message": "boom"}))
        call = SignalWireCall(adapter, "CA1", CallStatus.IN_PROGRESS)
        listener = RecordingListener()

        await call.play_tts("<speak>1</speak>", "polly.Ruth", listener)

        assert listener.names == ["failed"]
        assert listener.events[0][1].error_message == "boom"

    @pytest.mark.asyncio
    async def test_error_from_ended_listener_is_not_a_playback_failure(
        self,
        signalwire_config: TelephonyConfig,
    ) -> None:
        class FailingHangupListener(RecordingListener):
            async def on_ended(self, playback: Playback) -> None:
                await super().on_ended(playback)
                raise PlaybackError(message="hangup rejected")

        callback = _SpeechCallback()
        adapter = _adapter(signalwire_config, _call_handler(iter([]), [], callback))
        callback.adapter = adapter
        call = SignalWireCall(adapter, "CA1", CallStatus.IN_PROGRESS)
        listener = FailingHangupListener()

        with pytest.raises(PlaybackError, match="hangup rejected"):
            await call.play_tts("<speak>1</speak>", "polly.Ruth", listener)

        assert listener.names == ["started", "ended"]


class TestSpeechCallback:
    @pytest.mark.asyncio
    async def test_wrong_token_hangs_up_without_marking_speech_done(
        self,
        signalwire_config: TelephonyConfig,
    ) -> None:
        adapter = SignalWireAdapter(config=signalwire_config)
        _, speech_done = adapter.expect_speech_end("CA1")

        document = adapter.acknowledge_speech_end("CA1", "forged")

        assert document == HANGUP_DOCUMENT
        assert not speech_done.is_set()

    @pytest.mark.asyncio
    async def test_unknown_or_finished_call_hangs_up(
        self,
        signalwire_config: TelephonyConfig,
    ) -> None:
        adapter = SignalWireAdapter(config=signalwire_config)
        url, _ = adapter.expect_speech_end("CA1")
        adapter.forget_speech_end("CA1")

        assert adapter.acknowledge_speech_end("CA1", httpx.URL(url).params["token"]) == HANGUP_DOCUMENT
        assert adapter.acknowledge_speech_end("CA404", "x") == HANGUP_DOCUMENT

    @pytest.mark.asyncio
    async def test_callback_url_uses_configured_base(self, signalwire_config: TelephonyConfig) -> None:
        config = signalwire_config.model_copy(update={"callback_base_url": "https://otp.example.com/base/"})
        adapter = SignalWireAdapter(config=config)

        url, _ = adapter.expect_speech_end("CA1")

        assert url.startswith("https://otp.example.com/base/hooks/telephony/playback/CA1?token=")


class TestHangup:
    @pytest.mark.asyncio
    async def test_hangup_live_call(self, signalwire_config: TelephonyConfig) -> None:
        updates: list[dict[str, str]] = []
        adapter = _adapter(signalwire_config, _call_handler(iter(["in-progress"]), updates))
        call = SignalWireCall(adapter, "CA1", CallStatus.IN_PROGRESS)

        await call.hangup()

        assert updates == [{"Status": "completed"}]
        assert call.status == CallStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_hangup_skipped_when_call_already_ended(
        self,
        signalwire_config: TelephonyConfig,
    ) -> None:
        updates: list[dict[str, str]] = []
        adapter = _adapter(signalwire_config, _call_handler(iter(["completed"]), updates))
        call = SignalWireCall(adapter, "CA1", CallStatus.IN_PROGRESS)

        await call.hangup()

        assert updates == []


class TestClientLifecycle:
    @pytest.mark.asyncio
    async def test_injected_client_is_not_closed(self, signalwire_config: TelephonyConfig) -> None:
        client = httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(200)))
        adapter = SignalWireAdapter(config=signalwire_config, http_client=client)

        await adapter.aclose()

        assert client.is_closed is False
        await client.aclose()
