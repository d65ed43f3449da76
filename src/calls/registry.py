"""Registry of active call sessions.

One registry is shared by every media-stream connection in the process; each
session's own state is only ever touched by the orchestrator that owns it.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from calls.errors import DuplicateSession, UnknownSession
from calls.session import Session
from speech.recognizer import BaseRecognizer

if TYPE_CHECKING:  # pragma: no cover
    from calls.channel import MediaChannel

LOGGER = logging.getLogger(__name__)


class SessionRegistry:
    """Maps stream ids to sessions and to their speech recognizer handles."""

    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self._sessions: dict[str, Session] = {}
        self._recognizers: dict[str, BaseRecognizer] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def session_ids(self) -> list[str]:
        return list(self._sessions)

    async def create(self, session_id: str, call_id: str, channel: MediaChannel) -> Session:
        async with self._lock:
            if session_id in self._sessions:
                raise DuplicateSession(f"Session {session_id} is already active")
            session = Session(session_id=session_id, call_id=call_id, channel=channel)
            self._sessions[session_id] = session
        LOGGER.debug("Registered session %s (call %s)", session_id, call_id)
        return session

    async def get(self, session_id: str) -> Session | None:
        async with self._lock:
            return self._sessions.get(session_id)

    async def remove(self, session_id: str) -> None:
        async with self._lock:
            session = self._sessions.pop(session_id, None)
            self._recognizers.pop(session_id, None)
        if session is not None:
            LOGGER.debug("Removed session %s", session_id)

    async def attach_recognizer(self, session_id: str, recognizer: BaseRecognizer) -> None:
        async with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                raise UnknownSession(f"Cannot attach recognizer to unknown session {session_id}")
            self._recognizers[session_id] = recognizer
            session.recognizer = recognizer

    async def recognizer(self, session_id: str) -> BaseRecognizer | None:
        async with self._lock:
            return self._recognizers.get(session_id)

    async def release_recognizer(self, session_id: str) -> BaseRecognizer | None:
        """Detach and return the recognizer; later calls return None."""

        async with self._lock:
            recognizer = self._recognizers.pop(session_id, None)
            session = self._sessions.get(session_id)
            if session is not None:
                session.recognizer = None
            return recognizer
