# =============================================================================
# FastAPI Application
# =============================================================================
#
# Run locally:
#   uvicorn buildermatch.main:app --reload
#
# Routes:
#   GET  /health           → liveness check
#   POST /search/agentic   → agentic teammate search
# =============================================================================

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from buildermatch.api.search import router as search_router
from buildermatch.config import settings
from buildermatch.db.engine import dispose_engine
from buildermatch.models.responses import HealthResponse

logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    logger.info("Starting %s v%s", settings.app_name, settings.app_version)
    yield
    await dispose_engine()


app = FastAPI(
    title=settings.app_name,
    description="Agentic teammate search: plan, retrieve, rank, evaluate, refine",
    version=settings.app_version,
    lifespan=lifespan,
)

app.include_router(search_router)


@app.get("/health", response_model=HealthResponse, tags=["Health"])
async def health() -> HealthResponse:
    return HealthResponse(version=settings.app_version, service=settings.app_name)
