"""Twilio Media Streams entry points.

- ``POST /calls/incoming`` answers a call with TwiML that opens a media stream.
- ``WS /calls/stream`` runs one call session per connection.
"""

from __future__ import annotations

import logging
from xml.sax.saxutils import escape

from fastapi import APIRouter, Depends, Request, Response, WebSocket

from api.dependencies import (
    get_audit_sink,
    get_recognizer_factory,
    get_registry,
    get_reply_generator,
    get_synthesizer,
)
from api.schemas import CallStatusResponse
from calls.audit import AuditSink
from calls.channel import MediaChannel
from calls.orchestrator import CallOrchestrator
from calls.registry import SessionRegistry
from calls.replies import ReplyGenerator
from config.settings import get_settings
from speech.recognizer import RecognizerFactory
from speech.tts import BaseSynthesizer

LOGGER = logging.getLogger(__name__)

router = APIRouter(prefix="/calls", tags=["calls"])


def _to_ws_url(http_url: str) -> str:
    if http_url.startswith("https://"):
        return "wss://" + http_url.removeprefix("https://")
    if http_url.startswith("http://"):
        return "ws://" + http_url.removeprefix("http://")
    return http_url


def _twiml_stream(*, stream_url: str) -> str:
    stream = escape(stream_url, {'"': "&quot;"})
    return (
        "<?xml version=\"1.0\" encoding=\"UTF-8\"?>"
        "<Response>"
        "<Connect>"
        f"<Stream url=\"{stream}\" />"
        "</Connect>"
        "</Response>"
    )


def _stream_url(request: Request) -> str:
    settings = get_settings()
    if settings.public_base_url:
        return _to_ws_url(f"{settings.public_base_url.rstrip('/')}/api/calls/stream")
    # Fallback to request host. This may not work behind proxies; prefer PUBLIC_BASE_URL.
    return _to_ws_url(str(request.url_for("call_media_stream")))


@router.post("/incoming")
async def incoming_call(request: Request) -> Response:
    xml = _twiml_stream(stream_url=_stream_url(request))
    # Twilio expects application/xml
    return Response(content=xml, media_type="application/xml")


@router.websocket("/stream")
async def call_media_stream(
    websocket: WebSocket,
    registry: SessionRegistry = Depends(get_registry),
    recognizer_factory: RecognizerFactory = Depends(get_recognizer_factory),
    synthesizer: BaseSynthesizer = Depends(get_synthesizer),
    reply_generator: ReplyGenerator = Depends(get_reply_generator),
    audit_sink: AuditSink = Depends(get_audit_sink),
) -> None:
    await websocket.accept()
    channel = MediaChannel(websocket)
    orchestrator = CallOrchestrator(
        channel,
        registry,
        recognizer_factory=recognizer_factory,
        synthesizer=synthesizer,
        reply_generator=reply_generator,
        audit_sink=audit_sink,
    )
    try:
        await orchestrator.run()
    finally:
        await channel.close()


@router.get("/status", response_model=CallStatusResponse)
async def call_status(registry: SessionRegistry = Depends(get_registry)) -> CallStatusResponse:
    return CallStatusResponse(active_sessions=len(registry))
