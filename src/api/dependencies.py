"""Shared FastAPI dependencies.

Separated to avoid circular imports between route modules. Provider clients
are built lazily so importing the app never requires API keys.
"""

from __future__ import annotations

from functools import lru_cache

from fastapi.requests import HTTPConnection

from calls.audit import AuditSink, LoggingAuditSink
from calls.registry import SessionRegistry
from calls.replies import ReplyGenerator
from speech.recognizer import RecognizerFactory, build_recognizer
from speech.tts import BaseSynthesizer, build_synthesizer


def get_registry(connection: HTTPConnection) -> SessionRegistry:
    return connection.app.state.registry


@lru_cache(maxsize=1)
def _synthesizer_factory() -> BaseSynthesizer:
    return build_synthesizer()


def get_synthesizer() -> BaseSynthesizer:
    return _synthesizer_factory()


@lru_cache(maxsize=1)
def _reply_generator_factory() -> ReplyGenerator:
    from llm.factory import build_llm_client

    return ReplyGenerator(build_llm_client())


def get_reply_generator() -> ReplyGenerator:
    return _reply_generator_factory()


def get_recognizer_factory() -> RecognizerFactory:
    return build_recognizer


def get_audit_sink() -> AuditSink:
    return LoggingAuditSink()
