"""Error taxonomy for call sessions.

Only setup errors end a session before it starts; everything raised while a
call is active is caught by the orchestrator and logged with session context.
"""

from __future__ import annotations


class CallError(Exception):
    default_detail: str = "Call session error"

    def __init__(self, detail: str | None = None) -> None:
        super().__init__(detail or self.default_detail)
        self.detail = detail or self.default_detail


class MalformedStartEvent(CallError):
    default_detail = "Start event is missing streamSid or callSid."


class UnknownSession(CallError):
    default_detail = "No active session for this stream."


class DuplicateSession(CallError):
    default_detail = "A session with this stream id is already active."


class RecognizerTransportError(CallError):
    default_detail = "Speech recognizer transport failed."


class SynthesisFailure(CallError):
    default_detail = "Speech synthesis failed."


class ReplyGenerationFailure(CallError):
    default_detail = "Reply generation failed."


class ChannelSendOnClosed(CallError):
    default_detail = "Media channel is closed."
