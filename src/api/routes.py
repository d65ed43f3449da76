"""Top-level API router."""

from __future__ import annotations

from fastapi import APIRouter

from api.call_routes import router as call_router
from api.schemas import HealthResponse

router = APIRouter()
router.include_router(call_router)


@router.get("/health", response_model=HealthResponse)
async def health() -> HealthResponse:
    return HealthResponse()
