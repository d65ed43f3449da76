"""Conversions between Twilio media frames and speech-service audio."""

from __future__ import annotations

import base64
import binascii
from collections.abc import Iterator
from typing import Final

import numpy as np

from telephony.g711 import pcm16_resample, ulaw_decode, ulaw_encode

CHANNEL_SAMPLE_RATE: Final[int] = 8000


def decode_media_payload(payload_b64: str) -> bytes:
    """Decode a Twilio media payload.

    Raises:
        ValueError: if the payload is not valid base64.
    """

    try:
        return base64.b64decode(payload_b64, validate=True)
    except binascii.Error as exc:
        raise ValueError(f"Invalid media payload: {exc}") from exc


def encode_media_payload(audio: bytes) -> str:
    return base64.b64encode(audio).decode("ascii")


def to_recognizer_audio(ulaw: bytes, encoding: str) -> bytes:
    """Convert an inbound 8kHz mu-law frame to what the recognizer was opened with."""

    if encoding == "mulaw":
        return ulaw
    if encoding == "linear16":
        pcm16k = pcm16_resample(ulaw_decode(ulaw), CHANNEL_SAMPLE_RATE, 16000)
        return pcm16k.astype("<i2").tobytes()
    raise ValueError(f"Unsupported recognizer encoding: {encoding}")


def to_channel_audio(audio: bytes, output_format: str) -> bytes:
    """Convert synthesized audio into 8kHz mu-law for the phone channel.

    Supports ElevenLabs output formats ``ulaw_8000`` and ``pcm_<rate>``.
    """

    if output_format == "ulaw_8000":
        return audio
    if output_format.startswith("pcm_"):
        src_rate = int(output_format.removeprefix("pcm_"))
        usable = len(audio) - (len(audio) % 2)
        pcm = np.frombuffer(audio[:usable], dtype="<i2").astype(np.int16)
        return ulaw_encode(pcm16_resample(pcm, src_rate, CHANNEL_SAMPLE_RATE))
    raise ValueError(f"Unsupported synthesizer output format: {output_format}")


def iter_frames(audio: bytes, frame_bytes: int) -> Iterator[bytes]:
    if frame_bytes <= 0:
        raise ValueError("frame_bytes must be positive")
    for i in range(0, len(audio), frame_bytes):
        yield audio[i : i + frame_bytes]
