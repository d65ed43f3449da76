"""End-of-call audit records."""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Protocol

from calls.session import CallStatus

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class AuditRecord:
    session_id: str
    call_id: str
    status: CallStatus
    transcript: str
    started_at: datetime
    ended_at: datetime
    turns: int

    def as_dict(self) -> dict:
        data = asdict(self)
        data["status"] = self.status.value
        data["started_at"] = self.started_at.isoformat()
        data["ended_at"] = self.ended_at.isoformat()
        return data


class AuditSink(Protocol):
    def emit(self, record: AuditRecord) -> None:  # pragma: no cover - protocol stub
        ...


class LoggingAuditSink:
    """Writes audit records to the ``calls.audit`` logger."""

    def emit(self, record: AuditRecord) -> None:
        LOGGER.info(
            "Call %s ended status=%s turns=%d transcript=%r",
            record.call_id,
            record.status.value,
            record.turns,
            record.transcript,
            extra={"audit": record.as_dict()},
        )
