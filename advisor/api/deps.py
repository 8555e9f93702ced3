# =============================================================================
# API Dependencies — Turn Dependencies for Route Handlers
# =============================================================================
#
# Route handlers receive the engine's collaborators through FastAPI's
# dependency injection, so tests can swap them with
# app.dependency_overrides[get_turn_dependencies].
# =============================================================================

from __future__ import annotations

import logging

from fastapi import HTTPException

from advisor.agents.orchestrator import TurnDependencies, get_default_dependencies

logger = logging.getLogger(__name__)


def get_turn_dependencies() -> TurnDependencies:
    """
    Production dependencies, built on first use.

    Raises:
        HTTPException 503: If a provider is not configured (missing key).
    """
    try:
        return get_default_dependencies()
    except ValueError as e:
        logger.error("Configuration error: %s", e)
        raise HTTPException(
            status_code=503,
            detail=f"Service configuration error: {e}",
        ) from e
