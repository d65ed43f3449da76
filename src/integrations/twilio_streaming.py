"""Twilio Media Streams message framing.

Inbound frames are parsed into small typed events; outbound frames are built
as plain dicts ready for ``json.dumps``.

References:
- https://www.twilio.com/docs/voice/media-streams/websocket-messages
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Union

from telephony.codec import encode_media_payload


@dataclass(frozen=True, slots=True)
class StartEvent:
    stream_sid: str | None
    call_sid: str | None
    custom_parameters: dict[str, str]


@dataclass(frozen=True, slots=True)
class MediaEvent:
    stream_sid: str | None
    track: str
    payload: str


@dataclass(frozen=True, slots=True)
class MarkEvent:
    stream_sid: str | None
    name: str


@dataclass(frozen=True, slots=True)
class StopEvent:
    stream_sid: str | None


ChannelEvent = Union[StartEvent, MediaEvent, MarkEvent, StopEvent]


def _section(message: dict[str, Any], key: str) -> dict[str, Any]:
    value = message.get(key)
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ValueError(f"Twilio frame field {key!r} is not an object")
    return value


def _text(value: Any) -> str | None:
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def parse_twilio_ws_message(text: str) -> ChannelEvent | None:
    """Parse one Twilio WebSocket text frame.

    Returns None for events the call flow does not act on (``connected``, ``dtmf``...).

    Raises:
        ValueError: if the frame or one of its event sections is not a JSON object.
    """

    message = json.loads(text)
    if not isinstance(message, dict):
        raise ValueError("Twilio frame is not a JSON object")

    event = str(message.get("event") or "")
    stream_sid = _text(message.get("streamSid"))

    if event == "start":
        start = _section(message, "start")
        params = _section(start, "customParameters")
        return StartEvent(
            stream_sid=_text(start.get("streamSid")) or stream_sid,
            call_sid=_text(start.get("callSid")),
            custom_parameters={str(k): str(v) for k, v in params.items()},
        )
    if event == "media":
        media = _section(message, "media")
        return MediaEvent(
            stream_sid=stream_sid,
            track=str(media.get("track") or "inbound"),
            payload=str(media.get("payload") or ""),
        )
    if event == "mark":
        mark = _section(message, "mark")
        return MarkEvent(stream_sid=stream_sid, name=str(mark.get("name") or ""))
    if event == "stop":
        return StopEvent(stream_sid=stream_sid)
    return None


def build_media_message(stream_sid: str, audio: bytes) -> dict[str, Any]:
    return {
        "streamSid": stream_sid,
        "event": "media",
        "media": {"payload": encode_media_payload(audio)},
    }


def build_mark_message(stream_sid: str, name: str) -> dict[str, Any]:
    # Twilio echoes a mark back once all media sent before it has played.
    return {
        "streamSid": stream_sid,
        "event": "mark",
        "mark": {"name": name},
    }
