from __future__ import annotations

import asyncio
import json
import sys
from pathlib import Path

import pytest

REPO_ROOT = Path(__file__).resolve().parents[1]
SRC_PATH = REPO_ROOT / "src"
if str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))

from fastapi import WebSocketDisconnect  # noqa: E402

from calls.errors import RecognizerTransportError, SynthesisFailure  # noqa: E402
from config.settings import Settings  # noqa: E402
from speech.recognizer import BaseRecognizer, TranscriptEvent  # noqa: E402
from speech.tts import BaseSynthesizer  # noqa: E402

GREETING_AUDIO = b"\xff" * 10


def make_settings(**overrides) -> Settings:
    values = {
        "keepalive_interval_seconds": 60.0,
        "reply_timeout_seconds": 1.0,
        "outbound_frame_bytes": 3200,
        "reminder_message": "Please confirm your medications.",
        "fallback_reply": "Thank you.",
    }
    values.update(overrides)
    return Settings(**values)


def start_frame(stream_sid: str | None = "S1", call_sid: str | None = "C1") -> str:
    start: dict = {}
    if stream_sid is not None:
        start["streamSid"] = stream_sid
    if call_sid is not None:
        start["callSid"] = call_sid
    return json.dumps({"event": "start", "streamSid": stream_sid, "start": start})


def media_frame(stream_sid: str | None = "S1", payload: str = "/w==", track: str = "inbound") -> str:
    return json.dumps(
        {"event": "media", "streamSid": stream_sid, "media": {"track": track, "payload": payload}}
    )


def mark_frame(name: str, stream_sid: str = "S1") -> str:
    return json.dumps({"event": "mark", "streamSid": stream_sid, "mark": {"name": name}})


def stop_frame(stream_sid: str = "S1") -> str:
    return json.dumps({"event": "stop", "streamSid": stream_sid, "stop": {"callSid": "C1"}})


async def wait_until(predicate, timeout: float = 2.0) -> None:
    async def _poll() -> None:
        while not predicate():
            await asyncio.sleep(0.001)

    await asyncio.wait_for(_poll(), timeout)


class FakeWebSocket:
    """Stands in for the Starlette WebSocket under MediaChannel."""

    def __init__(self) -> None:
        self._incoming: asyncio.Queue[str | Exception | None] = asyncio.Queue()
        self.sent: list[dict] = []
        self.fail_sends = False

    def push(self, text: str) -> None:
        self._incoming.put_nowait(text)

    def disconnect(self) -> None:
        self._incoming.put_nowait(None)

    def fail(self, error: Exception) -> None:
        self._incoming.put_nowait(error)

    async def receive_text(self) -> str:
        text = await self._incoming.get()
        if text is None:
            raise WebSocketDisconnect(code=1000)
        if isinstance(text, Exception):
            raise text
        return text

    async def send_text(self, data: str) -> None:
        if self.fail_sends:
            raise RuntimeError('Cannot call "send" once a close message has been sent.')
        self.sent.append(json.loads(data))

    def sent_events(self, event: str) -> list[dict]:
        return [message for message in self.sent if message["event"] == event]


class FakeRecognizer(BaseRecognizer):
    def __init__(self, session_id: str, events: asyncio.Queue, *, fail_connect: bool = False) -> None:
        self.session_id = session_id
        self.events = events
        self.fail_connect = fail_connect
        self.fail_sends = False
        self.finish_error: Exception | None = None
        self.connected = False
        self.audio: list[bytes] = []
        self.finish_calls = 0

    async def connect(self) -> None:
        if self.fail_connect:
            raise RecognizerTransportError("connect refused")
        self.connected = True

    async def send_audio(self, chunk: bytes) -> None:
        if self.fail_sends:
            raise RecognizerTransportError("socket closed")
        self.audio.append(chunk)

    async def finish(self) -> None:
        self.finish_calls += 1
        self.connected = False
        if self.finish_error is not None:
            raise self.finish_error

    def emit(self, text: str, *, is_final: bool = False, end_of_utterance: bool = False) -> None:
        self.events.put_nowait(
            TranscriptEvent(text=text, is_final=is_final, end_of_utterance=end_of_utterance)
        )


class RecognizerFactoryStub:
    def __init__(self, *, fail_connect: bool = False) -> None:
        self.fail_connect = fail_connect
        self.instances: list[FakeRecognizer] = []

    def __call__(self, session_id: str, events: asyncio.Queue) -> FakeRecognizer:
        recognizer = FakeRecognizer(session_id, events, fail_connect=self.fail_connect)
        self.instances.append(recognizer)
        return recognizer

    @property
    def last(self) -> FakeRecognizer:
        return self.instances[-1]


class FakeSynthesizer(BaseSynthesizer):
    def __init__(self, *, fail_on: set[str] | None = None) -> None:
        self.fail_on = fail_on or set()
        self.texts: list[str] = []
        self.gate: asyncio.Event | None = None

    async def synthesize(self, text: str) -> bytes:
        self.texts.append(text)
        if self.gate is not None and text != "Please confirm your medications.":
            await self.gate.wait()
        if text in self.fail_on:
            raise SynthesisFailure(f"cannot speak {text!r}")
        return GREETING_AUDIO if text == "Please confirm your medications." else text.encode()


class FakeReplyGenerator:
    def __init__(self, *, delay: float = 0.0) -> None:
        self.delay = delay
        self.utterances: list[str] = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def generate(self, utterance: str) -> str:
        self.utterances.append(utterance)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            return f"reply to {utterance}"
        finally:
            self.in_flight -= 1


class ListAuditSink:
    def __init__(self) -> None:
        self.records = []

    def emit(self, record) -> None:
        self.records.append(record)


@pytest.fixture()
def settings() -> Settings:
    return make_settings()


@pytest.fixture(scope="session")
def app():
    import importlib

    main = importlib.import_module("main")
    return main.app
