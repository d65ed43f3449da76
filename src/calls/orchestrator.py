"""Call session orchestration for one Twilio media stream."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from fastapi import WebSocketDisconnect

from calls.audit import AuditRecord, AuditSink
from calls.channel import MediaChannel
from calls.errors import (
    ChannelSendOnClosed,
    DuplicateSession,
    MalformedStartEvent,
    RecognizerTransportError,
    SynthesisFailure,
    UnknownSession,
)
from calls.registry import SessionRegistry
from calls.replies import ReplyGenerator
from calls.session import CallStatus, Session, SessionState, TurnState
from config.settings import Settings, get_settings
from integrations.twilio_streaming import (
    MarkEvent,
    MediaEvent,
    StartEvent,
    StopEvent,
    build_mark_message,
    build_media_message,
    parse_twilio_ws_message,
)
from speech.recognizer import RecognizerFactory, TranscriptEvent
from speech.tts import BaseSynthesizer
from telephony.codec import decode_media_payload, iter_frames, to_recognizer_audio

LOGGER = logging.getLogger(__name__)

KEEPALIVE_MARK_PREFIX = "keepalive-"


@dataclass(frozen=True, slots=True)
class ChannelClosed:
    error: BaseException | None = None


@dataclass(frozen=True, slots=True)
class KeepaliveTick:
    pass


class CallOrchestrator:
    """Drives one media-stream connection from ``start`` to teardown.

    Twilio frames, recognizer transcripts and keepalive ticks all land on one
    queue consumed by :meth:`run`, so session state has a single writer.
    Replies are produced by a worker task that takes one utterance at a time;
    inbound audio keeps flowing to the recognizer while a reply is in flight.
    """

    def __init__(
        self,
        channel: MediaChannel,
        registry: SessionRegistry,
        *,
        recognizer_factory: RecognizerFactory,
        synthesizer: BaseSynthesizer,
        reply_generator: ReplyGenerator,
        audit_sink: AuditSink,
        settings: Settings | None = None,
    ) -> None:
        self._channel = channel
        self._registry = registry
        self._recognizer_factory = recognizer_factory
        self._synthesizer = synthesizer
        self._reply_generator = reply_generator
        self._audit_sink = audit_sink
        self._settings = settings or get_settings()

        self._events: asyncio.Queue[Any] = asyncio.Queue()
        self._replies: asyncio.Queue[str | None] = asyncio.Queue()
        self._state = SessionState.INIT
        self._session: Session | None = None
        self._keepalive_task: asyncio.Task | None = None
        self._probes_sent = 0
        self._recognizer_failures = 0

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def session(self) -> Session | None:
        return self._session

    @property
    def _log_id(self) -> str:
        return self._session.session_id if self._session else "-"

    async def run(self) -> None:
        """Process channel and recognizer events until the session ends."""

        reader = asyncio.create_task(self._read_channel())
        worker = asyncio.create_task(self._reply_worker())
        try:
            while self._state is not SessionState.TERMINATED:
                event = await self._events.get()
                if isinstance(event, ChannelClosed):
                    await self._handle_channel_closed(event)
                    break
                await self._dispatch(event)
        finally:
            reader.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await reader
            await self._teardown(CallStatus.DISCONNECTED)
            # An in-flight reply is allowed to finish; its audio is dropped if the channel closed.
            self._replies.put_nowait(None)
            await worker

    async def _read_channel(self) -> None:
        try:
            while True:
                text = await self._channel.receive_text()
                try:
                    event = parse_twilio_ws_message(text)
                except ValueError as exc:
                    LOGGER.warning("Invalid frame on session %s: %s", self._log_id, exc)
                    continue
                if event is not None:
                    self._events.put_nowait(event)
        except WebSocketDisconnect:
            self._events.put_nowait(ChannelClosed())
        except Exception as exc:
            self._events.put_nowait(ChannelClosed(error=exc))

    async def _dispatch(self, event: Any) -> None:
        try:
            if isinstance(event, StartEvent):
                await self._handle_start(event)
            elif isinstance(event, MediaEvent):
                await self._handle_media(event)
            elif isinstance(event, TranscriptEvent):
                self._handle_transcript(event)
            elif isinstance(event, MarkEvent):
                await self._handle_mark(event)
            elif isinstance(event, KeepaliveTick):
                await self._probe_liveness()
            elif isinstance(event, StopEvent):
                await self._handle_stop(event)
        except (MalformedStartEvent, UnknownSession) as exc:
            LOGGER.warning("Dropped %s: %s", type(event).__name__, exc.detail)
        except Exception:
            LOGGER.exception("Failed to handle %s on session %s", type(event).__name__, self._log_id)

    async def _require_session(self, stream_sid: str | None) -> Session:
        if not stream_sid:
            raise UnknownSession("Event carries no streamSid")
        session = await self._registry.get(stream_sid)
        if session is None or session is not self._session:
            raise UnknownSession(f"No active session {stream_sid} on this channel")
        return session

    async def _handle_start(self, event: StartEvent) -> None:
        if self._state is not SessionState.INIT:
            LOGGER.warning("Ignoring repeated start on session %s", self._log_id)
            return
        if not event.stream_sid or not event.call_sid:
            raise MalformedStartEvent(
                f"Start event missing identifiers (streamSid={event.stream_sid!r}, callSid={event.call_sid!r})"
            )

        try:
            session = await self._registry.create(event.stream_sid, event.call_sid, self._channel)
        except DuplicateSession as exc:
            LOGGER.error("Rejected start for call %s: %s", event.call_sid, exc.detail)
            return

        LOGGER.info("Media stream started: session=%s call=%s", session.session_id, session.call_id)

        try:
            await self._open_recognizer(session)
            greeting = await self._synthesizer.synthesize(self._settings.reminder_message)
        except (RecognizerTransportError, SynthesisFailure) as exc:
            LOGGER.error("Session setup failed for %s: %s", session.session_id, exc.detail)
            await self._abort_setup(session)
            return
        except Exception:
            LOGGER.exception("Unexpected session setup failure for %s", session.session_id)
            await self._abort_setup(session)
            return

        self._session = session
        self._state = SessionState.ACTIVE
        self._keepalive_task = asyncio.create_task(self._keepalive_timer())
        await self._send_audio(session, greeting)

    async def _open_recognizer(self, session: Session) -> None:
        try:
            recognizer = self._recognizer_factory(session.session_id, self._events)
        except ValueError as exc:
            raise RecognizerTransportError(f"Recognizer unavailable: {exc}") from exc
        # Attach before connecting so a half-open handle is still released on failure.
        await self._registry.attach_recognizer(session.session_id, recognizer)
        await recognizer.connect()

    async def _abort_setup(self, session: Session) -> None:
        await self._release_recognizer(session.session_id)
        await self._registry.remove(session.session_id)

    async def _release_recognizer(self, session_id: str) -> None:
        recognizer = await self._registry.release_recognizer(session_id)
        if recognizer is None:
            return
        try:
            await recognizer.finish()
        except RecognizerTransportError as exc:
            LOGGER.warning("Recognizer release failed for session %s: %s", session_id, exc.detail)
        except Exception:
            LOGGER.exception("Unexpected recognizer release failure for session %s", session_id)

    async def _handle_media(self, event: MediaEvent) -> None:
        if event.track != "inbound":
            return
        session = await self._require_session(event.stream_sid)
        recognizer = await self._registry.recognizer(session.session_id)
        if recognizer is None:
            return

        try:
            frame = decode_media_payload(event.payload)
        except ValueError as exc:
            LOGGER.warning("Dropping media frame on session %s: %s", session.session_id, exc)
            return

        try:
            await recognizer.send_audio(to_recognizer_audio(frame, self._settings.deepgram_encoding))
        except RecognizerTransportError as exc:
            self._recognizer_failures += 1
            level = logging.WARNING if self._recognizer_failures == 1 else logging.DEBUG
            LOGGER.log(
                level,
                "Recognizer send failed on session %s (%d so far): %s",
                session.session_id,
                self._recognizer_failures,
                exc.detail,
            )

    def _handle_transcript(self, event: TranscriptEvent) -> None:
        session = self._session
        if session is None or self._state is not SessionState.ACTIVE:
            return

        utterance = session.transcripts.add(event)
        if utterance is None:
            return

        session.transcript_log.append(utterance)
        LOGGER.info("Patient said on session %s: %r", session.session_id, utterance)
        self._replies.put_nowait(utterance)

    async def _reply_worker(self) -> None:
        while True:
            utterance = await self._replies.get()
            if utterance is None or self._state is not SessionState.ACTIVE:
                return
            await self._respond(utterance)

    async def _respond(self, utterance: str) -> None:
        session = self._session
        session.turn = TurnState.RESPONDING
        try:
            reply = await asyncio.wait_for(
                self._reply_generator.generate(utterance),
                timeout=self._settings.reply_timeout_seconds,
            )
            audio = await self._synthesizer.synthesize(reply)
            await self._send_audio(session, audio)
        except asyncio.TimeoutError:
            LOGGER.warning("Reply generation timed out on session %s; skipping turn", session.session_id)
        except SynthesisFailure as exc:
            LOGGER.error("Reply synthesis failed on session %s: %s", session.session_id, exc.detail)
        except Exception:
            LOGGER.exception("Reply sequence failed on session %s", session.session_id)
        finally:
            session.turn = TurnState.LISTENING

    async def _send_audio(self, session: Session, audio: bytes) -> bool:
        for frame in iter_frames(audio, self._settings.outbound_frame_bytes):
            if not await self._send(build_media_message(session.session_id, frame)):
                return False
        return True

    async def _send(self, message: dict[str, Any]) -> bool:
        if not self._channel.is_open:
            LOGGER.debug("Suppressed %s on closed channel (session %s)", message["event"], self._log_id)
            return False
        try:
            await self._channel.send_json(message)
        except ChannelSendOnClosed as exc:
            LOGGER.debug("Suppressed %s on session %s: %s", message["event"], self._log_id, exc.detail)
            return False
        return True

    async def _keepalive_timer(self) -> None:
        while True:
            await asyncio.sleep(self._settings.keepalive_interval_seconds)
            self._events.put_nowait(KeepaliveTick())

    async def _probe_liveness(self) -> None:
        session = self._session
        if session is None or self._state is not SessionState.ACTIVE:
            return
        if not session.liveness:
            # Missed acks are informational; only stop/close/error end a call.
            LOGGER.debug("No keepalive acknowledgment on session %s since last probe", session.session_id)
        session.liveness = False
        self._probes_sent += 1
        await self._send(build_mark_message(session.session_id, f"{KEEPALIVE_MARK_PREFIX}{self._probes_sent}"))

    async def _handle_mark(self, event: MarkEvent) -> None:
        session = await self._require_session(event.stream_sid)
        if event.name.startswith(KEEPALIVE_MARK_PREFIX):
            session.acknowledge_keepalive()

    async def _handle_stop(self, event: StopEvent) -> None:
        await self._require_session(event.stream_sid)
        LOGGER.info("Media stream stopped: session=%s", self._log_id)
        await self._teardown(CallStatus.COMPLETED)

    async def _handle_channel_closed(self, event: ChannelClosed) -> None:
        self._channel.mark_closed()
        if event.error is not None:
            LOGGER.warning("Media channel error on session %s: %s", self._log_id, event.error)
        else:
            LOGGER.info("Media channel closed on session %s", self._log_id)
        await self._teardown(CallStatus.DISCONNECTED)

    async def _teardown(self, status: CallStatus) -> None:
        if self._state is not SessionState.ACTIVE:
            return
        session = self._session
        self._state = SessionState.TERMINATED

        if self._keepalive_task is not None:
            self._keepalive_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._keepalive_task

        await self._release_recognizer(session.session_id)

        record = AuditRecord(
            session_id=session.session_id,
            call_id=session.call_id,
            status=status,
            transcript=session.joined_transcript(),
            started_at=session.started_at,
            ended_at=datetime.now(timezone.utc),
            turns=len(session.transcript_log),
        )
        try:
            self._audit_sink.emit(record)
        except Exception:
            LOGGER.exception("Audit sink failed for session %s", session.session_id)

        await self._registry.remove(session.session_id)
        self._replies.put_nowait(None)
        LOGGER.info("Session %s terminated (%s)", session.session_id, status.value)
