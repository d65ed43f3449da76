"""Per-call session state."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING

from speech.recognizer import TranscriptEvent

if TYPE_CHECKING:  # pragma: no cover
    from calls.channel import MediaChannel
    from speech.recognizer import BaseRecognizer


class SessionState(str, Enum):
    INIT = "init"
    ACTIVE = "active"
    TERMINATED = "terminated"


class TurnState(str, Enum):
    LISTENING = "listening"
    RESPONDING = "responding"


class CallStatus(str, Enum):
    COMPLETED = "completed"
    DISCONNECTED = "disconnected"


@dataclass
class TranscriptAccumulator:
    """Collects recognizer output until the caller finishes an utterance.

    Interim text is only ever kept as the latest hypothesis. Final fragments are
    queued in arrival order and joined with single spaces when the recognizer
    signals end-of-utterance; the queue is cleared after every join.
    """

    interim: str = ""
    pending_finals: list[str] = field(default_factory=list)

    def add(self, event: TranscriptEvent) -> str | None:
        """Feed one recognizer event; return a completed utterance, if any."""

        text = event.text.strip()
        if event.is_final:
            if text:
                self.pending_finals.append(text)
            self.interim = ""
        elif text:
            self.interim = text

        if not event.end_of_utterance or not self.pending_finals:
            return None

        utterance = " ".join(self.pending_finals)
        self.pending_finals.clear()
        self.interim = ""
        return utterance


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Session:
    session_id: str
    call_id: str
    channel: MediaChannel
    started_at: datetime = field(default_factory=_utcnow)
    transcript_log: list[str] = field(default_factory=list)
    recognizer: BaseRecognizer | None = None
    liveness: bool = True
    last_ack_at: datetime | None = None
    transcripts: TranscriptAccumulator = field(default_factory=TranscriptAccumulator)
    turn: TurnState = TurnState.LISTENING

    def joined_transcript(self) -> str:
        return " ".join(self.transcript_log)

    def acknowledge_keepalive(self) -> None:
        self.liveness = True
        self.last_ack_at = _utcnow()
