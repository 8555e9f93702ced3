# =============================================================================
# Chat API — Blocking and Streaming Advisor Turns
# =============================================================================
#
#   POST /chat          run one turn, return answer + trades + sources
#   POST /chat/stream   run one turn as Server-Sent Events
#
# SSE EVENTS (one JSON object per `data:` line):
#   {"type": "status",  "status": "Planning..."}
#   {"type": "content", "content": "<answer increment>"}
#   {"type": "error",   "error": "<message>"}
#   {"type": "done",    "session_id": "<id>"}
#
# A client disconnect sets the turn's cancel event; the engine then stops
# calling the model and tools and the turn is not persisted.
# =============================================================================

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import AsyncIterator
from contextlib import aclosing
from datetime import UTC, datetime
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import StreamingResponse

from advisor.agents.orchestrator import (
    ZERO_WIDTH_SPACE,
    TurnDependencies,
    TurnFailedError,
    is_status,
    process_turn,
    stream_turn,
)
from advisor.api.deps import get_turn_dependencies
from advisor.models.requests import ChatRequest
from advisor.models.responses import ChatResponse, SourceDocument, TradeResponse

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Chat"])


# ---------------------------------------------------------------------------
# SSE Formatting
# ---------------------------------------------------------------------------


def format_sse_event(event_data: dict[str, Any]) -> str:
    return f"data: {json.dumps(event_data)}\n\n"


def to_sse_event(increment: str, status_prefix: str) -> str:
    """Map one engine increment onto its SSE event."""
    if is_status(increment, status_prefix):
        text = increment[len(status_prefix):]
        if text.startswith("Error:"):
            return format_sse_event({"type": "error", "error": text[len("Error:"):].strip()})
        return format_sse_event({"type": "status", "status": text})

    if increment.startswith(ZERO_WIDTH_SPACE + status_prefix):
        increment = increment[len(ZERO_WIDTH_SPACE):]
    return format_sse_event({"type": "content", "content": increment})


# ---------------------------------------------------------------------------
# POST /chat — Blocking turn
# ---------------------------------------------------------------------------


@router.post(
    "/chat",
    response_model=ChatResponse,
    summary="Ask the financial advisor",
    description=(
        "Run one advisor turn: gather portfolio, market and knowledge-base "
        "context, plan and call tools as needed, and return the final answer "
        "with any trades logged to the session ledger."
    ),
)
async def chat_endpoint(
    request: ChatRequest,
    deps: TurnDependencies = Depends(get_turn_dependencies),
) -> ChatResponse:
    """
    Error handling:
    - Missing API key → 503 Service Unavailable (raised by the dependency)
    - Store or engine failure → 502 Bad Gateway
    - Model failures → 200 with an apology answer (degraded, not an error)
    """
    logger.info(
        "Chat request: session=%s, message='%s'",
        request.session_id,
        request.message[:80],
    )

    try:
        result = await process_turn(
            request.message,
            request.session_id,
            deps,
            enable_reasoning=request.enable_reasoning,
            document_count=request.document_count,
        )
    except TurnFailedError as e:
        raise HTTPException(
            status_code=502,
            detail=f"Advisor service error: {e}",
        ) from e

    return ChatResponse(
        answer=result.answer,
        executed_trades=[TradeResponse.from_trade(t) for t in result.executed_trades],
        sources=[SourceDocument.from_scored(s) for s in result.sources],
        session_id=request.session_id,
        timestamp=datetime.now(UTC),
    )


# ---------------------------------------------------------------------------
# POST /chat/stream — Streaming turn (SSE)
# ---------------------------------------------------------------------------


@router.post(
    "/chat/stream",
    summary="Ask the financial advisor (streaming)",
    description=(
        "Same turn as POST /chat, delivered as Server-Sent Events: status "
        "events while context is gathered and tools run, then content "
        "events as the answer is generated."
    ),
)
async def chat_stream_endpoint(
    http_request: Request,
    request: ChatRequest,
    deps: TurnDependencies = Depends(get_turn_dependencies),
) -> StreamingResponse:
    logger.info(
        "Chat stream request: session=%s, message='%s'",
        request.session_id,
        request.message[:80],
    )
    cancel = asyncio.Event()
    prefix = deps.settings.status_prefix

    async def generate_stream() -> AsyncIterator[str]:
        async with aclosing(
            stream_turn(
                request.message,
                request.session_id,
                deps,
                cancel,
                enable_reasoning=request.enable_reasoning,
                document_count=request.document_count,
            )
        ) as increments:
            async for increment in increments:
                if await http_request.is_disconnected():
                    logger.info("[%s] Client disconnected; cancelling turn", request.session_id)
                    cancel.set()
                    return
                yield to_sse_event(increment, prefix)

        if not cancel.is_set():
            yield format_sse_event({"type": "done", "session_id": request.session_id})

    return StreamingResponse(
        generate_stream(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )
