"""Text-to-speech synthesis for the phone channel."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod

import httpx

from calls.errors import SynthesisFailure
from config.settings import Settings, get_settings
from telephony.codec import to_channel_audio

LOGGER = logging.getLogger(__name__)

ELEVENLABS_API_URL = "https://api.elevenlabs.io/v1"


class BaseSynthesizer(ABC):
    """Interface for all text-to-speech synthesizers."""

    @abstractmethod
    async def synthesize(self, text: str) -> bytes:
        """Return 8kHz mu-law audio for ``text``. Raises SynthesisFailure."""


class ElevenLabsSynthesizer(BaseSynthesizer):
    """ElevenLabs REST synthesis requesting telephony-ready output."""

    def __init__(
        self,
        *,
        settings: Settings | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        if not self._settings.elevenlabs_api_key:
            raise ValueError("ElevenLabs API key must be configured.")
        self._transport = transport

    def _headers(self) -> dict[str, str]:
        return {
            "xi-api-key": self._settings.elevenlabs_api_key or "",
            "Content-Type": "application/json",
            "Accept": "*/*",
        }

    async def synthesize(self, text: str) -> bytes:
        s = self._settings
        url = f"{ELEVENLABS_API_URL}/text-to-speech/{s.elevenlabs_voice_id}"
        payload = {
            "text": text,
            "model_id": s.elevenlabs_model,
            "voice_settings": {"stability": 0.5, "similarity_boost": 0.5},
        }

        try:
            async with httpx.AsyncClient(
                timeout=s.elevenlabs_timeout_seconds, transport=self._transport
            ) as client:
                response = await client.post(
                    url,
                    params={"output_format": s.elevenlabs_output_format},
                    json=payload,
                    headers=self._headers(),
                )
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise SynthesisFailure(f"ElevenLabs request failed: {exc}") from exc

        audio = response.content
        if not audio:
            raise SynthesisFailure("ElevenLabs returned no audio.")

        try:
            return to_channel_audio(audio, s.elevenlabs_output_format)
        except ValueError as exc:
            raise SynthesisFailure(str(exc)) from exc


def build_synthesizer() -> BaseSynthesizer:
    """Factory returning the configured synthesizer."""

    return ElevenLabsSynthesizer()
