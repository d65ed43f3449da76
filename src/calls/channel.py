"""Duplex media channel wrapper around the Twilio WebSocket."""

from __future__ import annotations

import json
import logging
from typing import Any

from fastapi import WebSocket, WebSocketDisconnect
from starlette.websockets import WebSocketState

from calls.errors import ChannelSendOnClosed

LOGGER = logging.getLogger(__name__)


class MediaChannel:
    """Tracks whether the socket is still writable.

    Once closed, ``send_json`` raises ChannelSendOnClosed instead of touching
    the socket.
    """

    def __init__(self, websocket: WebSocket) -> None:
        self._websocket = websocket
        self._open = True

    @property
    def is_open(self) -> bool:
        return self._open

    def mark_closed(self) -> None:
        self._open = False

    async def close(self) -> None:
        """Close the socket from our side if the peer has not already done so."""

        self._open = False
        if self._websocket.application_state == WebSocketState.CONNECTED:
            try:
                await self._websocket.close()
            except RuntimeError as exc:
                LOGGER.debug("Media channel already closed: %s", exc)

    async def receive_text(self) -> str:
        return await self._websocket.receive_text()

    async def send_json(self, message: dict[str, Any]) -> None:
        if not self._open:
            raise ChannelSendOnClosed()
        try:
            await self._websocket.send_text(json.dumps(message))
        except (WebSocketDisconnect, RuntimeError, OSError) as exc:
            self._open = False
            raise ChannelSendOnClosed(f"Send failed: {exc}") from exc
