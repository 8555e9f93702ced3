# =============================================================================
# LangGraph Orchestrator — Plan/FinalAnswer Turn Engine
# =============================================================================
#
# One turn = one run of a compiled LangGraph StateGraph:
#
#   START ──▶ gather_context ──▶ retrieve ──▶ plan ─┬─▶ execute_plan ──▶ finalize ─┐
#                                                  ├─▶ direct_answer ─────────────┤
#                                                  └─(cancelled)──────────────────┤
#                                                                                 ▼
#                                                              complete ──▶ END
#
#   gather_context  history, session, portfolio concurrently; then quotes
#                   for holdings ∪ symbols mentioned in the query
#   retrieve        proactive knowledge-base search, document_count deep
#                   (failure → no documents)
#   plan            one blocking model call; output through the sanitizer
#   execute_plan    tool steps strictly in declared order → transcript;
#                   session metadata noted after each registered tool
#   finalize        one streaming model call over the transcript
#   direct_answer   sanitized planning output is the answer
#   complete        persist user + assistant message in one write; log trades
#
# STREAMING:
#   Nodes push increments through LangGraph's StreamWriter. With
#   stream_mode="custom" they reach the caller as they are written; with
#   ainvoke() the writer is a no-op and only the final state matters.
#   An increment is a status marker iff it starts with the status prefix
#   ("STATUS:"). Content that would itself start with the prefix is sent
#   with a leading zero-width space.
#
# CANCELLATION:
#   An asyncio.Event travels in the state. It is checked before every
#   model and tool call and between streamed increments. A cancelled
#   turn reaches neither the model again nor the persistence step.
#   Closing the iterator returned by stream_turn() has the same effect.
#   Persistence runs under asyncio.shield: once started, the exchange and
#   its trades are written in full even if the turn is cancelled.
#
# enable_reasoning routes both model calls to settings.llm_reasoning_model
# (when set); document_count overrides settings.retrieval_top_k.
#
# State holds non-serialisable objects (dependencies, the cancel event).
# Safe as long as no checkpointer is configured on the graph.
# =============================================================================

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import AsyncIterator
from contextlib import aclosing
from dataclasses import dataclass, field
from typing import Any

from langgraph.graph import END, START, StateGraph
from langgraph.types import StreamWriter
from typing_extensions import TypedDict

from advisor.agents.tools import KNOWLEDGE_BASE_TOOL, KnowledgeBaseTool, ToolRegistry, build_registry
from advisor.agents.trades import TradeExecutor
from advisor.config import HeuristicTables, Settings, get_heuristics, get_settings, settings
from advisor.models.domain import (
    ChatMessage,
    PortfolioSnapshot,
    Quote,
    ScoredDocument,
    Session,
    Trade,
    TurnResult,
)
from advisor.models.outputs import DEFAULT_FINAL_PROMPT, FINAL_ANSWER_TYPE, PLAN_TYPE
from advisor.services.context import AggregatedContext, aggregate, extract_symbols
from advisor.services.llm import LLMProvider, generate, generate_stream, get_llm_provider
from advisor.services.prompts import build_final_prompt, build_prompt
from advisor.services.sanitizer import clean_output, filter_commentary
from advisor.services.store import ContextStore

logger = logging.getLogger(__name__)

ZERO_WIDTH_SPACE = "\u200b"


class TurnFailedError(Exception):
    """A turn failed for a reason that has no safe local default."""


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------


@dataclass
class TurnDependencies:
    """Collaborators a turn runs against. Built once and shared across turns."""

    llm: LLMProvider
    store: ContextStore
    registry: ToolRegistry
    tables: HeuristicTables = field(default_factory=get_heuristics)
    settings: Settings = field(default_factory=get_settings)


_default_dependencies: TurnDependencies | None = None


def get_default_dependencies() -> TurnDependencies:
    """
    Lazily build the production dependencies (SqlStore, configured LLM,
    OpenAI embeddings).

    Raises:
        ValueError: If the LLM provider has no API key configured.
    """
    global _default_dependencies
    if _default_dependencies is None:
        from advisor.services.embedder import OpenAIEmbeddingProvider
        from advisor.services.retrieval import Retriever
        from advisor.services.store import SqlStore

        store = SqlStore()
        tables = get_heuristics()
        _default_dependencies = TurnDependencies(
            llm=get_llm_provider(),
            store=store,
            registry=build_registry(
                store, Retriever(OpenAIEmbeddingProvider(), store), tables,
            ),
            tables=tables,
        )
    return _default_dependencies


# ---------------------------------------------------------------------------
# Agent State Schema
# ---------------------------------------------------------------------------


class AgentState(TypedDict, total=False):
    """
    State that flows through the turn graph.

    total=False so nodes only return the keys they update.
    """

    # --- Input (set by caller) ---
    query: str
    session_id: str
    deps: TurnDependencies
    cancel: asyncio.Event
    enable_reasoning: bool
    document_count: int | None

    # --- Context (gather_context, retrieve) ---
    history: list[ChatMessage]
    session: Session
    portfolio: PortfolioSnapshot | None
    quotes: list[Quote]
    documents: list[ScoredDocument]
    context: AggregatedContext

    # --- Planning ---
    model_output: dict[str, Any]  # sanitized Plan / FinalAnswer payload
    model_text: str               # cleaned planning text
    transcript: str

    # --- Output ---
    answer: str
    executed_trades: list[Trade]
    cancelled: bool


# ---------------------------------------------------------------------------
# Increment Helpers
# ---------------------------------------------------------------------------


def is_status(increment: str, prefix: str = settings.status_prefix) -> bool:
    return increment.startswith(prefix)


def escape_content(text: str, prefix: str = settings.status_prefix) -> str:
    """Keep content off the status channel."""
    return ZERO_WIDTH_SPACE + text if text.startswith(prefix) else text


def _status(state: AgentState, writer: StreamWriter, text: str) -> None:
    writer(f"{state['deps'].settings.status_prefix}{text}")


def _content(state: AgentState, writer: StreamWriter, text: str) -> None:
    if text:
        writer(escape_content(text, state["deps"].settings.status_prefix))


def _cancelled(state: AgentState) -> bool:
    if state.get("cancelled"):
        return True
    cancel = state.get("cancel")
    return cancel is not None and cancel.is_set()


def _model(state: AgentState) -> str | None:
    """Model override for this turn, or None for the provider default."""
    if state.get("enable_reasoning"):
        return state["deps"].settings.llm_reasoning_model
    return None


def _answer_text(payload: dict[str, Any]) -> str | None:
    """answer_verbose if non-blank, else answer_plain if non-blank."""
    for key in ("answer_verbose", "answer_plain"):
        value = payload.get(key)
        if isinstance(value, str) and value.strip():
            return value
    return None


# ---------------------------------------------------------------------------
# Node Functions
# ---------------------------------------------------------------------------
# Each node receives the full state and returns a partial update dict.
# ---------------------------------------------------------------------------


async def gather_context_node(state: AgentState, writer: StreamWriter) -> dict:
    """Load history, session and portfolio concurrently, then quotes."""
    if _cancelled(state):
        return {"cancelled": True}

    deps = state["deps"]
    session_id = state["session_id"]
    _status(state, writer, "Analyzing request...")

    logger.info("[%s] Fetching context: history, session, portfolio", session_id)
    history, session, portfolio = await asyncio.gather(
        deps.store.get_chat_history(session_id, deps.settings.history_limit),
        deps.store.get_session(session_id),
        deps.store.get_portfolio(session_id),
    )

    if portfolio is None:
        logger.info("[%s] No portfolio snapshot for session", session_id)
    else:
        logger.info(
            "[%s] Portfolio: %d holdings, total=%.2f, cash=%.2f",
            session_id, len(portfolio.holdings), portfolio.total_value, portfolio.cash_balance,
        )

    symbols = extract_symbols(state["query"], deps.tables)
    if portfolio is not None:
        symbols |= {h.symbol.upper() for h in portfolio.holdings}

    quotes: list[Quote] = []
    if symbols:
        try:
            quotes = await deps.store.get_quotes(sorted(symbols))
        except Exception:
            logger.warning("[%s] Quote lookup failed; continuing without market data",
                           session_id, exc_info=True)

    return {
        "history": history,
        "session": session,
        "portfolio": portfolio,
        "quotes": quotes,
    }


async def retrieve_node(state: AgentState, writer: StreamWriter) -> dict:
    """Proactive knowledge-base search before the first model call."""
    if _cancelled(state):
        return {"cancelled": True}

    deps = state["deps"]
    session_id = state["session_id"]
    documents: list[ScoredDocument] = []

    tool = deps.registry.get(KNOWLEDGE_BASE_TOOL)
    if isinstance(tool, KnowledgeBaseTool):
        _status(state, writer, "Checking knowledge base...")
        try:
            top_k = state.get("document_count") or deps.settings.retrieval_top_k
            documents = await tool.search(state["query"], top_k)
        except Exception:
            logger.warning("[%s] Retrieval failed; continuing without documents",
                           session_id, exc_info=True)
        logger.info("[%s] Retrieved %d documents", session_id, len(documents))

    context = aggregate(
        state.get("session"),
        state.get("portfolio"),
        state.get("quotes", []),
        documents,
    )
    return {"documents": documents, "context": context}


async def plan_node(state: AgentState, writer: StreamWriter) -> dict:
    """One blocking planning call, sanitized in agent mode."""
    if _cancelled(state):
        return {"cancelled": True}

    deps = state["deps"]
    _status(state, writer, "Planning...")

    prompt = build_prompt(
        query=state["query"],
        context=state["context"],
        history=state.get("history", []),
        tools=deps.registry.catalogue(),
        history_limit=deps.settings.history_limit,
        session_id=state["session_id"],
    )
    raw = await generate(deps.llm, prompt.turn, system=prompt.system, model=_model(state))
    cleaned = clean_output(raw, "agent", deps.tables.scratchpad_tags)

    logger.info(
        "[%s] Planning output: type=%s%s",
        state["session_id"],
        cleaned.payload.get("type"),
        " (fallback)" if cleaned.is_fallback else "",
    )
    return {"model_output": cleaned.payload, "model_text": cleaned.text}


def route_after_plan(state: AgentState) -> str:
    if _cancelled(state):
        return "complete"
    kind = str(state.get("model_output", {}).get("type", "")).lower()
    return "execute_plan" if kind == PLAN_TYPE else "direct_answer"


async def execute_plan_node(state: AgentState, writer: StreamWriter) -> dict:
    """Dispatch each step in order; collect a newline-joined transcript."""
    if _cancelled(state):
        return {"cancelled": True}

    deps = state["deps"]
    session_id = state["session_id"]
    _status(state, writer, "Executing plan...")

    lines: list[str] = []
    for step in state["model_output"].get("steps", []):
        if _cancelled(state):
            return {"cancelled": True}

        name = str(step.get("tool", ""))
        args = step.get("args") or {}
        logger.info("[%s] Tool call: %s | reason: %s", session_id, name, step.get("why", ""))
        _status(state, writer, f"Calling {name}...")

        if name not in deps.registry:
            lines.append(await deps.registry.resolve(name).execute(args))
            continue

        try:
            output = await deps.registry.resolve(name).execute(args)
        except Exception as e:
            logger.exception("[%s] Tool '%s' raised", session_id, name)
            output = json.dumps({"error": f"{type(e).__name__}: {e}"})
        lines.append(f"Tool '{name}' output: {output}")
        await _record_tool_call(state, name, args)

    return {"transcript": "\n".join(lines)}


async def _record_tool_call(state: AgentState, tool: str, args: Any) -> None:
    """Best effort: a metadata write failure never fails the plan."""
    symbol = args.get("symbol") if isinstance(args, dict) else None
    try:
        await state["deps"].store.update_metadata(
            state["session_id"],
            symbol=symbol if isinstance(symbol, str) and symbol.strip() else None,
            tool=tool,
        )
    except Exception:
        logger.warning("[%s] Session metadata update failed after '%s'",
                       state["session_id"], tool, exc_info=True)


async def finalize_node(state: AgentState, writer: StreamWriter) -> dict:
    """Stream the final answer; forward increments as they arrive."""
    if _cancelled(state):
        return {"cancelled": True}

    deps = state["deps"]
    session_id = state["session_id"]
    _status(state, writer, "Finalizing answer...")

    instruction = state["model_output"].get("final_prompt") or DEFAULT_FINAL_PROMPT
    prompt = build_final_prompt(instruction, state.get("transcript", ""))

    parts: list[str] = []
    try:
        increments = generate_stream(deps.llm, prompt.turn, system=prompt.system, model=_model(state))
        async with aclosing(increments) as stream:
            async for increment in stream:
                if _cancelled(state):
                    logger.info("[%s] Cancelled during final stream", session_id)
                    return {"cancelled": True}
                parts.append(increment)
                _content(state, writer, increment)
    except Exception as e:
        logger.exception("[%s] Final stream failed", session_id)
        error_text = f"\n\n[Error generating response: {e}]"
        parts.append(error_text)
        _content(state, writer, error_text)

    accumulated = "".join(parts)
    parsed = clean_output(accumulated, "agent", deps.tables.scratchpad_tags)
    answer = accumulated
    if not parsed.is_fallback and parsed.payload.get("type") == FINAL_ANSWER_TYPE:
        answer = _answer_text(parsed.payload) or accumulated

    return {"answer": answer}


async def direct_answer_node(state: AgentState, writer: StreamWriter) -> dict:
    """The sanitized planning output is the terminal content."""
    if _cancelled(state):
        return {"cancelled": True}

    answer = _answer_text(state["model_output"])
    if answer is None:
        answer = state.get("model_text", "")

    _status(state, writer, "Finalizing answer...")
    _content(state, writer, answer)
    return {"answer": answer}


async def complete_node(state: AgentState, writer: StreamWriter) -> dict:
    """Persist the exchange exactly once and log any recommended trades."""
    session_id = state["session_id"]
    if _cancelled(state):
        logger.info("[%s] Turn cancelled; nothing persisted", session_id)
        return {"cancelled": True, "executed_trades": []}

    answer = state.get("answer", "")
    trades = await asyncio.shield(_persist(state["deps"], session_id, state["query"], answer))
    logger.info("[%s] Turn complete: %d chars, %d trades", session_id, len(answer), len(trades))
    return {"executed_trades": trades}


async def _persist(deps: TurnDependencies, session_id: str, query: str, answer: str) -> list[Trade]:
    await deps.store.add_exchange(
        session_id,
        ChatMessage(role="user", content=query),
        ChatMessage(role="assistant", content=answer),
    )
    return await TradeExecutor(deps.store).parse_and_execute(answer, session_id)


# ---------------------------------------------------------------------------
# Graph Assembly
# ---------------------------------------------------------------------------
# Compiled once at module level and reused for every turn.
# ---------------------------------------------------------------------------

_builder = StateGraph(AgentState)
_builder.add_node("gather_context", gather_context_node)
_builder.add_node("retrieve", retrieve_node)
_builder.add_node("plan", plan_node)
_builder.add_node("execute_plan", execute_plan_node)
_builder.add_node("finalize", finalize_node)
_builder.add_node("direct_answer", direct_answer_node)
_builder.add_node("complete", complete_node)

_builder.add_edge(START, "gather_context")
_builder.add_edge("gather_context", "retrieve")
_builder.add_edge("retrieve", "plan")
_builder.add_conditional_edges(
    "plan",
    route_after_plan,
    {
        "execute_plan": "execute_plan",
        "direct_answer": "direct_answer",
        "complete": "complete",
    },
)
_builder.add_edge("execute_plan", "finalize")
_builder.add_edge("finalize", "complete")
_builder.add_edge("direct_answer", "complete")
_builder.add_edge("complete", END)

graph = _builder.compile()


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def _initial_state(
    query: str,
    session_id: str,
    deps: TurnDependencies,
    cancel: asyncio.Event | None,
    enable_reasoning: bool = False,
    document_count: int | None = None,
) -> AgentState:
    state: AgentState = {
        "query": query,
        "session_id": session_id,
        "deps": deps,
        "enable_reasoning": enable_reasoning,
        "document_count": document_count,
    }
    if cancel is not None:
        state["cancel"] = cancel
    return state


async def process_turn(
    query: str,
    session_id: str,
    deps: TurnDependencies | None = None,
    *,
    enable_reasoning: bool = False,
    document_count: int | None = None,
) -> TurnResult:
    """
    Run one blocking turn and return its result.

    When the answer carries an advice payload, commentary sentences
    containing banned phrases are removed from the returned answer.

    `enable_reasoning` selects settings.llm_reasoning_model for both model
    calls; `document_count` overrides settings.retrieval_top_k.

    Raises:
        ValueError: If default dependencies cannot be built (missing key).
        TurnFailedError: For failures with no safe local default
            (e.g., the context store is unreachable).
    """
    deps = deps or get_default_dependencies()
    logger.info("[%s] Processing turn: '%s'", session_id, query[:80])

    try:
        final = await graph.ainvoke(
            _initial_state(query, session_id, deps, None, enable_reasoning, document_count)
        )
    except Exception as e:
        logger.exception("[%s] Turn failed", session_id)
        raise TurnFailedError(str(e)) from e

    answer = final.get("answer", "")
    if not clean_output(answer, "advice", deps.tables.scratchpad_tags).is_fallback:
        answer = filter_commentary(answer, deps.tables.banned_phrases)

    return TurnResult(
        answer=answer,
        executed_trades=final.get("executed_trades", []),
        sources=final.get("documents", []),
    )


async def stream_turn(
    query: str,
    session_id: str,
    deps: TurnDependencies | None = None,
    cancel: asyncio.Event | None = None,
    *,
    enable_reasoning: bool = False,
    document_count: int | None = None,
) -> AsyncIterator[str]:
    """
    Run one turn, yielding status markers interleaved with content.

    Stops on completion, when `cancel` is set, or when the caller closes
    the iterator. Unexpected failures end the stream with a status error
    marker instead of raising.
    """
    deps = deps or get_default_dependencies()
    cancel = cancel or asyncio.Event()
    prefix = deps.settings.status_prefix
    logger.info("[%s] Streaming turn: '%s'", session_id, query[:80])

    try:
        async with aclosing(
            graph.astream(
                _initial_state(query, session_id, deps, cancel, enable_reasoning, document_count),
                stream_mode="custom",
            )
        ) as stream:
            async for increment in stream:
                if cancel.is_set():
                    break
                yield increment
                if cancel.is_set():
                    break
    except Exception as e:
        logger.exception("[%s] Streaming turn failed", session_id)
        yield f"{prefix}Error: {e}"

    if cancel.is_set():
        logger.info("[%s] Stream cancelled by caller", session_id)
