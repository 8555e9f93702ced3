# =============================================================================
# Shared Test Fixtures — Fake Providers and In-Memory Store
# =============================================================================
#
# Everything here runs without API keys, a database or network access:
#   - FakeLLM: scripted complete() replies and stream() increments
#   - FakeEmbedder: keyword-count vectors, so similarity is predictable
#   - InMemoryStore seeded with quotes and knowledge-base documents
# =============================================================================

from __future__ import annotations

import asyncio
from collections.abc import Callable, Iterable

import pytest

from advisor.agents.orchestrator import TurnDependencies
from advisor.agents.tools import ToolRegistry, build_registry
from advisor.config import HeuristicTables, Settings, get_settings
from advisor.models.domain import Document, Holding, PortfolioSnapshot, Quote
from advisor.services.llm import LLMResponse
from advisor.services.retrieval import Retriever
from advisor.services.store import InMemoryStore

SESSION_ID = "test-session"

# Each keyword group is one embedding dimension
_KEYWORD_GROUPS = (
    ("aapl", "apple", "iphone"),
    ("fed", "rate", "rates", "inflation"),
    ("bitcoin", "btc", "crypto"),
)


class FakeLLM:
    """
    Scripted LLMProvider.

    complete() returns `replies` in order (an Exception item is raised);
    stream() yields `chunks`, raising `stream_error` after them if set.
    Every call's messages, system prompt and model override are recorded.
    """

    def __init__(
        self,
        replies: Iterable[str | Exception] = (),
        chunks: Iterable[str] = (),
        stream_error: Exception | None = None,
    ) -> None:
        self.replies = list(replies)
        self.chunks = list(chunks)
        self.stream_error = stream_error
        self.complete_calls: list[dict] = []
        self.stream_calls: list[dict] = []

    async def complete(self, messages, system=None, temperature=None, max_tokens=None, model=None):
        self.complete_calls.append({"messages": messages, "system": system, "model": model})
        reply = self.replies.pop(0) if self.replies else ""
        if isinstance(reply, Exception):
            raise reply
        return LLMResponse(content=reply, model="fake-model", input_tokens=10, output_tokens=5)

    async def stream(self, messages, system=None, temperature=None, max_tokens=None, model=None):
        self.stream_calls.append({"messages": messages, "system": system, "model": model})
        for chunk in self.chunks:
            await asyncio.sleep(0)
            yield chunk
        if self.stream_error is not None:
            raise self.stream_error

    @property
    def planning_prompt(self) -> str:
        return self.complete_calls[0]["messages"][0]["content"]

    @property
    def final_prompt(self) -> str:
        return self.stream_calls[0]["messages"][0]["content"]


class FakeEmbedder:
    """Counts keyword-group hits; text with no keywords embeds to zeros."""

    def __init__(self, error: Exception | None = None) -> None:
        self.error = error
        self.calls: list[str] = []

    async def embed(self, text: str) -> list[float]:
        self.calls.append(text)
        if self.error is not None:
            raise self.error
        words = text.lower().replace("?", " ").replace(".", " ").split()
        return [float(sum(w in group for w in words)) for group in _KEYWORD_GROUPS]


def make_document(doc_id: str, title: str, embedding: Iterable[float], content: str = "") -> Document:
    return Document(
        id=doc_id,
        title=title,
        content=content or f"{title} body text.",
        source="Reuters",
        category="news",
        embedding=tuple(embedding),
    )


@pytest.fixture
def config() -> Settings:
    return get_settings()


@pytest.fixture
def tables(config: Settings) -> HeuristicTables:
    return HeuristicTables.from_settings(config)


@pytest.fixture
def documents() -> list[Document]:
    return [
        make_document("doc-apple", "Apple beats iPhone estimates", [2.0, 0.0, 0.0]),
        make_document("doc-fed", "Fed holds rates steady", [0.0, 2.0, 0.0]),
        make_document("doc-btc", "Bitcoin rallies", [0.0, 0.0, 1.0]),
    ]


@pytest.fixture
def store(documents: list[Document]) -> InMemoryStore:
    return InMemoryStore(
        documents=documents,
        quotes=[
            Quote(symbol="AAPL", price=190.0, change_percent=1.25),
            Quote(symbol="MSFT", price=410.5, change_percent=-0.5),
            Quote(symbol="BTC", price=65000.0, change_percent=3.0),
        ],
    )


@pytest.fixture
def portfolio() -> PortfolioSnapshot:
    return PortfolioSnapshot(
        session_id=SESSION_ID,
        holdings=[Holding(symbol="MSFT", quantity=10, avg_cost=300.0, current_price=410.5)],
        total_value=14105.0,
        cash_balance=10000.0,
    )


@pytest.fixture
def make_deps(store: InMemoryStore, tables: HeuristicTables, config: Settings) -> Callable[..., TurnDependencies]:
    """
    Factory for TurnDependencies around the shared store.

    Pass `tools` for an explicit registry; otherwise the standard tool set
    is built with a FakeEmbedder-backed retriever (or `embedder`).
    """

    def _make(llm: FakeLLM, tools=None, embedder: FakeEmbedder | None = None) -> TurnDependencies:
        if tools is not None:
            registry = ToolRegistry(tools)
        else:
            retriever = Retriever(embedder or FakeEmbedder(), store)
            registry = build_registry(store, retriever, tables, config)
        return TurnDependencies(llm=llm, store=store, registry=registry, tables=tables, settings=config)

    return _make
