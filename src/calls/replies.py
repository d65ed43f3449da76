"""Reply generation for patient utterances."""

from __future__ import annotations

import logging

from calls.errors import ReplyGenerationFailure
from config.settings import Settings, get_settings
from llm.base import BaseLLMClient

LOGGER = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You are a helpful healthcare assistant responding to patients about their medication. "
    "Keep responses brief (under 30 words), compassionate, and focused on medication adherence. "
    "Don't introduce yourself in every message. Don't ask follow-up questions."
)


def build_reply_messages(utterance: str) -> list[dict[str, str]]:
    return [
        {"role": "system", "content": SYSTEM_PROMPT},
        {
            "role": "user",
            "content": f'Patient said: "{utterance}". Provide a brief, helpful response.',
        },
    ]


class ReplyGenerator:
    """Turns one patient utterance into a short spoken reply.

    Provider failures never propagate: the configured fallback reply is returned
    instead, so callers only have to deal with timeouts.
    """

    def __init__(self, llm: BaseLLMClient, *, settings: Settings | None = None) -> None:
        self._llm = llm
        self._settings = settings or get_settings()

    async def generate(self, utterance: str) -> str:
        LOGGER.info("Generating reply for: %r", utterance)
        try:
            reply = await self._request(utterance)
        except ReplyGenerationFailure as exc:
            LOGGER.error("Reply generation failed, using fallback: %s", exc.detail)
            return self._settings.fallback_reply

        LOGGER.info("Generated reply: %r", reply)
        return reply

    async def _request(self, utterance: str) -> str:
        try:
            reply = await self._llm.chat(build_reply_messages(utterance), temperature=0.3)
        except ReplyGenerationFailure:
            raise
        except Exception as exc:  # provider SDKs raise their own error hierarchies
            raise ReplyGenerationFailure(f"{type(exc).__name__}: {exc}") from exc

        reply = reply.strip()
        if not reply:
            raise ReplyGenerationFailure("LLM returned an empty reply.")
        return reply
