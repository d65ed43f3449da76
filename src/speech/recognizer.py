"""Streaming speech-to-text sessions backed by Deepgram live transcription.

References:
- https://developers.deepgram.com/docs/getting-started-with-live-streaming-audio
- https://developers.deepgram.com/docs/understanding-end-of-speech-detection
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any
from urllib.parse import urlencode

from websockets.asyncio.client import connect as ws_connect
from websockets.exceptions import ConnectionClosed, WebSocketException

from calls.errors import RecognizerTransportError
from config.settings import Settings, get_settings

LOGGER = logging.getLogger(__name__)

DEEPGRAM_KEEPALIVE_SECONDS = 8.0


@dataclass(frozen=True, slots=True)
class TranscriptEvent:
    """One recognizer hypothesis.

    ``end_of_utterance`` marks a turn boundary; it can arrive on its own with
    empty text.
    """

    text: str
    is_final: bool
    end_of_utterance: bool = False


class BaseRecognizer(ABC):
    """Interface for streaming recognizers.

    Implementations put :class:`TranscriptEvent` objects onto the queue they
    were created with.
    """

    @abstractmethod
    async def connect(self) -> None:
        """Open the streaming session."""

    @abstractmethod
    async def send_audio(self, chunk: bytes) -> None:
        """Forward one audio chunk. Raises RecognizerTransportError."""

    @abstractmethod
    async def finish(self) -> None:
        """Signal end of stream and release the connection."""


RecognizerFactory = Callable[[str, "asyncio.Queue[Any]"], BaseRecognizer]


def transcript_event_from_message(data: dict[str, Any]) -> TranscriptEvent | None:
    """Map a Deepgram live message to a transcript event."""

    msg_type = data.get("type")
    if msg_type == "UtteranceEnd":
        return TranscriptEvent(text="", is_final=False, end_of_utterance=True)
    if msg_type != "Results":
        return None

    alternatives = (data.get("channel") or {}).get("alternatives") or []
    text = str(alternatives[0].get("transcript") or "") if alternatives else ""
    is_final = bool(data.get("is_final", False))
    speech_final = bool(data.get("speech_final", False))

    if not text and not speech_final:
        return None
    return TranscriptEvent(text=text, is_final=is_final, end_of_utterance=speech_final)


class DeepgramRecognizer(BaseRecognizer):
    """One Deepgram live connection, bound to a single call session."""

    def __init__(
        self,
        session_id: str,
        events: asyncio.Queue[Any],
        *,
        settings: Settings | None = None,
        connect=ws_connect,
    ) -> None:
        self._settings = settings or get_settings()
        if not self._settings.deepgram_api_key:
            raise ValueError("Deepgram API key must be configured.")

        self._session_id = session_id
        self._events = events
        self._connect = connect
        self._ws = None
        self._receive_task: asyncio.Task | None = None
        self._keepalive_task: asyncio.Task | None = None
        self._closing = False
        self._bytes_sent = 0

    def _url(self) -> str:
        s = self._settings
        query = urlencode(
            {
                "model": s.deepgram_model,
                "language": s.deepgram_language,
                "encoding": s.deepgram_encoding,
                "sample_rate": s.deepgram_sample_rate,
                "channels": 1,
                "punctuate": "true",
                "interim_results": "true",
                "vad_events": "true",
                "utterance_end_ms": s.deepgram_utterance_end_ms,
                "endpointing": s.deepgram_endpointing_ms,
            }
        )
        return f"{s.deepgram_url}?{query}"

    async def connect(self) -> None:
        headers = {"Authorization": f"Token {self._settings.deepgram_api_key}"}
        try:
            self._ws = await self._connect(
                self._url(),
                additional_headers=headers,
                ping_interval=20,
                ping_timeout=20,
            )
        except (OSError, WebSocketException) as exc:
            raise RecognizerTransportError(f"Deepgram connect failed: {exc}") from exc

        self._receive_task = asyncio.create_task(self._receive_loop())
        self._keepalive_task = asyncio.create_task(self._keepalive_loop())
        LOGGER.info("Deepgram recognizer connected for session %s", self._session_id)

    async def send_audio(self, chunk: bytes) -> None:
        if self._ws is None or self._closing:
            raise RecognizerTransportError("Recognizer is not connected")
        try:
            await self._ws.send(chunk)
        except (ConnectionClosed, OSError) as exc:
            raise RecognizerTransportError(f"Deepgram send failed: {exc}") from exc
        self._bytes_sent += len(chunk)

    async def finish(self) -> None:
        if self._closing:
            return
        self._closing = True

        if self._keepalive_task is not None:
            self._keepalive_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._keepalive_task

        try:
            if self._ws is not None:
                # CloseStream flushes any buffered audio into final results first.
                await self._ws.send(json.dumps({"type": "CloseStream"}))
                await self._ws.close()
        except (ConnectionClosed, OSError) as exc:
            raise RecognizerTransportError(f"Deepgram close failed: {exc}") from exc
        finally:
            if self._receive_task is not None:
                self._receive_task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await self._receive_task
            LOGGER.info(
                "Deepgram recognizer closed for session %s (%.1f KB sent)",
                self._session_id,
                self._bytes_sent / 1024,
            )

    async def _receive_loop(self) -> None:
        try:
            async for message in self._ws:
                try:
                    data = json.loads(message)
                except json.JSONDecodeError:
                    LOGGER.warning("Invalid JSON from Deepgram for session %s", self._session_id)
                    continue

                if data.get("type") == "Error":
                    LOGGER.error(
                        "Deepgram error for session %s: %s",
                        self._session_id,
                        data.get("message") or data.get("description"),
                    )
                    continue

                event = transcript_event_from_message(data)
                if event is not None:
                    self._events.put_nowait(event)
        except ConnectionClosed as exc:
            if not self._closing:
                LOGGER.warning("Deepgram connection closed for session %s: %s", self._session_id, exc)
        except Exception:
            LOGGER.exception("Deepgram receive loop failed for session %s", self._session_id)

    async def _keepalive_loop(self) -> None:
        # Deepgram drops connections that see no audio for about 10 seconds.
        while not self._closing:
            await asyncio.sleep(DEEPGRAM_KEEPALIVE_SECONDS)
            try:
                await self._ws.send(json.dumps({"type": "KeepAlive"}))
            except (ConnectionClosed, OSError):
                LOGGER.debug("Deepgram keepalive failed for session %s", self._session_id)
                return


def build_recognizer(session_id: str, events: asyncio.Queue[Any]) -> BaseRecognizer:
    """Factory returning the configured recognizer."""

    return DeepgramRecognizer(session_id, events)
