"""Entry point for the medication reminder voice agent service.

Run locally with ``uvicorn main:app --app-dir src`` or ``python src/main.py``.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from api.routes import router as api_router
from calls.registry import SessionRegistry
from config.settings import get_settings

LOGGER = logging.getLogger("medication_reminder")


@asynccontextmanager
async def lifespan(app: FastAPI):
    registry = SessionRegistry()
    app.state.registry = registry
    LOGGER.info("Call service ready (environment=%s)", settings.environment)
    yield
    if len(registry):
        LOGGER.warning("Shutting down with %d active call(s): %s", len(registry), registry.session_ids())


settings = get_settings()

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)

app = FastAPI(
    title="Medication Reminder Voice Agent",
    description="Streams outbound reminder calls through speech recognition, an LLM and speech synthesis.",
    lifespan=lifespan,
)
app.include_router(api_router, prefix="/api")


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000, log_level=settings.log_level.lower())
