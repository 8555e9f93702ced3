# =============================================================================
# Context Store — Session, Portfolio, History, Ledger, Quotes, Documents
# =============================================================================
#
# The agent engine reads and writes all external state through one
# ContextStore. Two implementations:
#
#   ContextStore (Protocol)
#   ├── InMemoryStore  dict-backed; tests and local development
#   └── SqlStore       SQLAlchemy async over PostgreSQL + pgvector
#
# Semantics shared by both:
#   - get_session creates and stores the default profile on a miss
#   - get_portfolio returns the latest snapshot or None
#   - get_chat_history returns the last N messages, oldest first
#   - add_exchange writes the user and assistant messages together or not
#     at all
#   - update_metadata records the last tool, symbol and call count
#   - append_trade finds or creates the session ledger, then appends
#   - get_quotes returns only symbols that have a cached quote
# =============================================================================

from __future__ import annotations

import copy
import logging
from collections.abc import Iterable
from typing import Protocol

from sqlalchemy import select

from advisor.config import Settings, settings
from advisor.db.engine import session_scope
from advisor.db.models import (
    ChatMessageRow,
    KnowledgeDocumentRow,
    LedgerTradeRow,
    MarketQuoteRow,
    PortfolioSnapshotRow,
    SessionRow,
    TradeLedgerRow,
)
from advisor.models.domain import (
    ChatMessage,
    Document,
    Holding,
    PortfolioSnapshot,
    Quote,
    Session,
    Trade,
    utcnow,
)

logger = logging.getLogger(__name__)


class ContextStore(Protocol):
    async def get_session(self, session_id: str) -> Session:
        ...

    async def get_portfolio(self, session_id: str) -> PortfolioSnapshot | None:
        ...

    async def save_portfolio(self, snapshot: PortfolioSnapshot) -> None:
        ...

    async def get_chat_history(self, session_id: str, limit: int = 6) -> list[ChatMessage]:
        ...

    async def add_exchange(self, session_id: str, user: ChatMessage, assistant: ChatMessage) -> None:
        ...

    async def update_metadata(
        self, session_id: str, symbol: str | None = None, tool: str | None = None,
    ) -> None:
        ...

    async def append_trade(self, session_id: str, trade: Trade) -> None:
        ...

    async def get_ledger(self, session_id: str) -> list[Trade]:
        ...

    async def get_quotes(self, symbols: Iterable[str]) -> list[Quote]:
        ...

    async def list_documents(self) -> list[Document]:
        ...


def default_session(session_id: str, config: Settings = settings) -> Session:
    return Session(
        session_id=session_id,
        risk_profile=config.default_risk_profile,
        investment_goal=config.default_investment_goal,
        total_portfolio_value=config.default_portfolio_value,
    )


def _normalise_symbols(symbols: Iterable[str]) -> list[str]:
    seen: dict[str, None] = {}
    for symbol in symbols:
        if symbol and symbol.strip():
            seen.setdefault(symbol.strip().upper(), None)
    return list(seen)


# ---------------------------------------------------------------------------
# In-Memory Implementation
# ---------------------------------------------------------------------------


class InMemoryStore:
    """
    Dict-backed ContextStore.

    Portfolios are copied on read and write so callers cannot mutate
    stored state without calling save_portfolio().
    """

    def __init__(
        self,
        documents: Iterable[Document] = (),
        quotes: Iterable[Quote] = (),
        config: Settings = settings,
    ) -> None:
        self._config = config
        self.sessions: dict[str, Session] = {}
        self.portfolios: dict[str, PortfolioSnapshot] = {}
        self.messages: dict[str, list[ChatMessage]] = {}
        self.ledgers: dict[str, list[Trade]] = {}
        self.quotes: dict[str, Quote] = {q.symbol.upper(): q for q in quotes}
        self.documents: list[Document] = list(documents)

    async def get_session(self, session_id: str) -> Session:
        if session_id not in self.sessions:
            self.sessions[session_id] = default_session(session_id, self._config)
        return self.sessions[session_id]

    async def get_portfolio(self, session_id: str) -> PortfolioSnapshot | None:
        snapshot = self.portfolios.get(session_id)
        return copy.deepcopy(snapshot) if snapshot else None

    async def save_portfolio(self, snapshot: PortfolioSnapshot) -> None:
        self.portfolios[snapshot.session_id] = copy.deepcopy(snapshot)

    async def get_chat_history(self, session_id: str, limit: int = 6) -> list[ChatMessage]:
        if limit <= 0:
            return []
        return list(self.messages.get(session_id, [])[-limit:])

    async def add_exchange(self, session_id: str, user: ChatMessage, assistant: ChatMessage) -> None:
        self.messages.setdefault(session_id, []).extend((user, assistant))

    async def update_metadata(
        self, session_id: str, symbol: str | None = None, tool: str | None = None,
    ) -> None:
        session = await self.get_session(session_id)
        session.record_tool_call(symbol, tool)

    async def append_trade(self, session_id: str, trade: Trade) -> None:
        self.ledgers.setdefault(session_id, []).append(trade)

    async def get_ledger(self, session_id: str) -> list[Trade]:
        return list(self.ledgers.get(session_id, []))

    async def get_quotes(self, symbols: Iterable[str]) -> list[Quote]:
        return [
            self.quotes[s] for s in _normalise_symbols(symbols) if s in self.quotes
        ]

    async def list_documents(self) -> list[Document]:
        return list(self.documents)


# ---------------------------------------------------------------------------
# SQLAlchemy Implementation
# ---------------------------------------------------------------------------


class SqlStore:
    """
    ContextStore over PostgreSQL.

    Each operation runs in its own short-lived session (session_scope),
    so a cancelled turn never leaves a half-committed transaction.
    """

    def __init__(self, config: Settings = settings) -> None:
        self._config = config

    async def get_session(self, session_id: str) -> Session:
        async with session_scope() as db:
            row = await db.get(SessionRow, session_id)
            if row is None:
                db.add(self._default_row(session_id))
                logger.info("[%s] Created default session profile", session_id)
                return default_session(session_id, self._config)

            return Session(
                session_id=row.session_id,
                risk_profile=row.risk_profile,
                investment_goal=row.investment_goal,
                total_portfolio_value=row.total_portfolio_value,
                last_symbol=row.last_symbol,
                last_tool=row.last_tool,
                last_action_at=row.last_action_at,
                tool_call_count=row.tool_call_count,
                created_at=row.created_at,
                updated_at=row.updated_at,
            )

    def _default_row(self, session_id: str) -> SessionRow:
        profile = default_session(session_id, self._config)
        return SessionRow(
            session_id=session_id,
            risk_profile=profile.risk_profile,
            investment_goal=profile.investment_goal,
            total_portfolio_value=profile.total_portfolio_value,
            tool_call_count=0,
        )

    async def get_portfolio(self, session_id: str) -> PortfolioSnapshot | None:
        async with session_scope() as db:
            result = await db.execute(
                select(PortfolioSnapshotRow)
                .where(PortfolioSnapshotRow.session_id == session_id)
                .order_by(PortfolioSnapshotRow.created_at.desc(), PortfolioSnapshotRow.id.desc())
                .limit(1)
            )
            row = result.scalar_one_or_none()

        if row is None:
            logger.debug("[%s] No portfolio snapshot found", session_id)
            return None

        return PortfolioSnapshot(
            session_id=row.session_id,
            holdings=[
                Holding(
                    symbol=h["symbol"],
                    quantity=int(h.get("quantity", 0)),
                    avg_cost=float(h.get("avg_cost", 0.0)),
                    current_price=float(h.get("current_price", 0.0)),
                )
                for h in (row.holdings or [])
            ],
            total_value=row.total_value,
            cash_balance=row.cash_balance,
            created_at=row.created_at,
        )

    async def save_portfolio(self, snapshot: PortfolioSnapshot) -> None:
        async with session_scope() as db:
            db.add(
                PortfolioSnapshotRow(
                    session_id=snapshot.session_id,
                    holdings=[
                        {
                            "symbol": h.symbol,
                            "quantity": h.quantity,
                            "avg_cost": h.avg_cost,
                            "current_price": h.current_price,
                        }
                        for h in snapshot.holdings
                    ],
                    total_value=snapshot.total_value,
                    cash_balance=snapshot.cash_balance,
                    created_at=snapshot.created_at,
                )
            )

    async def get_chat_history(self, session_id: str, limit: int = 6) -> list[ChatMessage]:
        if limit <= 0:
            return []
        async with session_scope() as db:
            result = await db.execute(
                select(ChatMessageRow)
                .where(ChatMessageRow.session_id == session_id)
                .order_by(ChatMessageRow.created_at.desc(), ChatMessageRow.id.desc())
                .limit(limit)
            )
            rows = list(result.scalars().all())

        rows.reverse()  # oldest first
        return [
            ChatMessage(role=r.role, content=r.content, created_at=r.created_at)
            for r in rows
        ]

    async def add_exchange(self, session_id: str, user: ChatMessage, assistant: ChatMessage) -> None:
        async with session_scope() as db:
            db.add_all([
                ChatMessageRow(
                    session_id=session_id,
                    role=message.role,
                    content=message.content,
                    created_at=message.created_at,
                )
                for message in (user, assistant)
            ])

    async def update_metadata(
        self, session_id: str, symbol: str | None = None, tool: str | None = None,
    ) -> None:
        async with session_scope() as db:
            row = await db.get(SessionRow, session_id, with_for_update=True)
            if row is None:
                row = self._default_row(session_id)
                db.add(row)
            if symbol is not None:
                row.last_symbol = symbol[:64]
            if tool is not None:
                row.last_tool = tool
            row.last_action_at = utcnow()
            row.tool_call_count = (row.tool_call_count or 0) + 1

    async def append_trade(self, session_id: str, trade: Trade) -> None:
        async with session_scope() as db:
            result = await db.execute(
                select(TradeLedgerRow).where(TradeLedgerRow.session_id == session_id)
            )
            ledger = result.scalar_one_or_none()
            if ledger is None:
                ledger = TradeLedgerRow(session_id=session_id)
                db.add(ledger)
                await db.flush()

            db.add(
                LedgerTradeRow(
                    ledger_id=ledger.id,
                    symbol=trade.symbol,
                    action=trade.action,
                    quantity=trade.quantity,
                    price=trade.price,
                    reasoning=trade.reasoning,
                    executed_at=trade.executed_at,
                )
            )

    async def get_ledger(self, session_id: str) -> list[Trade]:
        async with session_scope() as db:
            result = await db.execute(
                select(TradeLedgerRow).where(TradeLedgerRow.session_id == session_id)
            )
            ledger = result.scalar_one_or_none()
            if ledger is None:
                return []
            return [
                Trade(
                    symbol=t.symbol,
                    action=t.action,
                    quantity=t.quantity,
                    price=t.price,
                    executed_at=t.executed_at,
                    reasoning=t.reasoning,
                )
                for t in ledger.trades
            ]

    async def get_quotes(self, symbols: Iterable[str]) -> list[Quote]:
        wanted = _normalise_symbols(symbols)
        if not wanted:
            return []
        async with session_scope() as db:
            result = await db.execute(
                select(MarketQuoteRow).where(MarketQuoteRow.symbol.in_(wanted))
            )
            rows = {r.symbol: r for r in result.scalars().all()}

        return [
            Quote(
                symbol=rows[s].symbol,
                price=rows[s].price,
                change_percent=rows[s].change_percent,
                last_updated=rows[s].last_updated,
            )
            for s in wanted
            if s in rows
        ]

    async def list_documents(self) -> list[Document]:
        async with session_scope() as db:
            result = await db.execute(
                select(KnowledgeDocumentRow).order_by(KnowledgeDocumentRow.created_at)
            )
            rows = result.scalars().all()

        return [
            Document(
                id=r.id,
                title=r.title,
                content=r.content,
                source=r.source,
                category=r.category,
                embedding=tuple(float(x) for x in r.embedding) if r.embedding is not None else (),
                created_at=r.created_at,
            )
            for r in rows
        ]
