"""API-facing Pydantic models."""

from __future__ import annotations

from pydantic import BaseModel, Field


class HealthResponse(BaseModel):
    status: str = "ok"


class CallStatusResponse(BaseModel):
    status: str = "ok"
    active_sessions: int = Field(description="Media streams with a live call session.")
