"""Client for self-hosted vLLM or other OpenAI-compatible inference endpoints."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import Any

import httpx

from calls.errors import ReplyGenerationFailure
from config.settings import Settings, get_settings
from llm.base import BaseLLMClient

LOGGER = logging.getLogger(__name__)


class VLLMClient(BaseLLMClient):
    """Minimal chat client for a self-hosted inference server."""

    def __init__(
        self,
        *,
        settings: Settings | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        settings = settings or get_settings()
        if not settings.llm_endpoint:
            raise ValueError("Self-hosted LLM endpoint must be configured.")

        self._endpoint = settings.llm_endpoint.rstrip("/")
        self._model = settings.llm_model
        self._api_key = settings.llm_api_key
        self._max_tokens = settings.llm_max_tokens
        self._timeout = settings.reply_timeout_seconds
        self._transport = transport

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        return headers

    async def chat(
        self,
        messages: Iterable[dict[str, str]],
        *,
        temperature: float = 0.3,
        max_tokens: int | None = None,
    ) -> str:
        request = {
            "model": self._model,
            "messages": list(messages),
            "temperature": temperature,
            "max_tokens": max_tokens or self._max_tokens,
            "stream": False,
        }

        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                response = await client.post(
                    f"{self._endpoint}/v1/chat/completions",
                    json=request,
                    headers=self._headers(),
                )
            response.raise_for_status()
            body = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise ReplyGenerationFailure(f"{self._endpoint}: {exc}") from exc

        return _first_message_content(body)


def _first_message_content(body: Any) -> str:
    """Pull the assistant text out of an OpenAI-compatible completion body."""

    choices = body.get("choices") if isinstance(body, dict) else None
    if not choices:
        raise ReplyGenerationFailure("Completion contains no choices.")
    message = choices[0].get("message") or {}
    content = message.get("content")
    if content is None:
        LOGGER.debug("Completion finished with reason %r and no content", choices[0].get("finish_reason"))
        return ""
    return str(content)
