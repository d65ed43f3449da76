"""Application-wide configuration loading and validation."""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

MEDICATION_REMINDER_MESSAGE = (
    "Hello, this is a reminder from your healthcare provider to confirm your medications "
    "for the day. Please confirm if you have taken your Aspirin, Cardivol, and Metformin today."
)

FALLBACK_REPLY = "Thank you for your response. Your healthcare provider has been notified."


class Settings(BaseSettings):
    """Centralized environment configuration."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    environment: Literal["local", "dev", "prod"] = Field(default="local")
    log_level: str = Field(default="INFO")

    public_base_url: str | None = Field(
        default=None,
        description="Public base URL for Twilio webhooks (e.g. https://<ngrok>.ngrok-free.app).",
    )

    # Call script
    reminder_message: str = Field(default=MEDICATION_REMINDER_MESSAGE)
    fallback_reply: str = Field(
        default=FALLBACK_REPLY,
        description="Spoken when the language model cannot produce a reply.",
    )

    # Media stream session
    keepalive_interval_seconds: float = Field(default=10.0, gt=0)
    reply_timeout_seconds: float = Field(
        default=15.0,
        gt=0,
        description="Upper bound for reply generation before the turn is skipped.",
    )
    outbound_frame_bytes: int = Field(
        default=3200,
        gt=0,
        description="Bytes of 8kHz mu-law audio per outbound media frame (3200 = 400ms).",
    )

    # Speech recognition (Deepgram live streaming)
    deepgram_api_key: str | None = Field(default=None)
    deepgram_url: str = Field(default="wss://api.deepgram.com/v1/listen")
    deepgram_model: str = Field(default="nova-2")
    deepgram_language: str = Field(default="en-US")
    deepgram_encoding: Literal["mulaw", "linear16"] = Field(default="mulaw")
    deepgram_utterance_end_ms: int = Field(default=1000)
    deepgram_endpointing_ms: int = Field(default=300)

    # Text to speech (ElevenLabs)
    elevenlabs_api_key: str | None = Field(default=None)
    elevenlabs_voice_id: str = Field(default="gOkFV1JMCt0G0n9xmBwV")
    elevenlabs_model: str = Field(default="eleven_turbo_v2_5")
    elevenlabs_output_format: str = Field(
        default="ulaw_8000",
        description="ulaw_8000 is sent as-is; pcm_<rate> is converted to 8kHz mu-law.",
    )
    elevenlabs_timeout_seconds: float = Field(default=30.0)

    # LLM connectivity
    llm_provider: Literal["openai", "self_hosted_vllm"] = Field(default="openai")
    llm_endpoint: str | None = Field(
        default=None, description="Base URL for a self-hosted or OpenAI-compatible server."
    )
    llm_api_key: str | None = Field(default=None)
    llm_model: str = Field(default="gpt-4o")
    llm_max_tokens: int = Field(default=120)

    @property
    def deepgram_sample_rate(self) -> int:
        return 8000 if self.deepgram_encoding == "mulaw" else 16000


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached Settings instance."""

    return Settings()
