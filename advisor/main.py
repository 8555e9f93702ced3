# =============================================================================
# FastAPI Application Entry Point
# =============================================================================
#
# Run with:
#   uvicorn advisor.main:app --reload
#
# Logging is configured once here; every other module only calls
# logging.getLogger(__name__).
# =============================================================================

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from advisor.api.chat import router as chat_router
from advisor.config import settings
from advisor.db.engine import async_engine
from advisor.models.responses import HealthResponse

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    logger.info("Starting %s v%s", settings.app_name, settings.app_version)
    yield
    await async_engine.dispose()
    logger.info("Shutdown complete")


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description=(
        "Financial advisor agent: portfolio-aware answers with tool calls, "
        "knowledge-base retrieval and a per-session trade ledger."
    ),
    debug=settings.debug,
    lifespan=lifespan,
)

app.include_router(chat_router)


@app.get("/health", response_model=HealthResponse, tags=["Health"])
async def health() -> HealthResponse:
    return HealthResponse(version=settings.app_version, service=settings.app_name)
