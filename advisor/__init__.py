# =============================================================================
# Financial Advisor Agent
# =============================================================================
# Answers free-text financial questions for a session by aggregating
# portfolio, market and knowledge-base context, driving a model through a
# two-phase Plan/FinalAnswer protocol with tool calls, and streaming the
# answer while logging recommended trades to a per-session ledger.
#
# Package structure:
#   advisor/
#   ├── api/          → FastAPI route handlers (blocking + SSE chat)
#   ├── agents/       → LangGraph turn engine, tool registry, trade executor
#   ├── db/           → Async engine, session scope, ORM models (pgvector)
#   ├── models/       → Domain dataclasses and Pydantic V2 schemas
#   └── services/     → Retrieval, context, prompts, sanitizer, LLM, store
# =============================================================================
