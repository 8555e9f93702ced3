# =============================================================================
# Database Models — SQLAlchemy ORM
# =============================================================================
#
# Persistent rows behind SqlStore (advisor/services/store.py). The agent
# core never touches these directly; SqlStore converts them to the
# dataclasses in advisor/models/domain.py.
#
# SCHEMA OVERVIEW:
#
# ┌──────────────────┐    ┌────────────────────────┐    ┌────────────────┐
# │ sessions         │    │ portfolio_snapshots    │    │ chat_messages  │
# ├──────────────────┤    ├────────────────────────┤    ├────────────────┤
# │ session_id (PK)  │    │ id (PK)                │    │ id (PK)        │
# │ risk_profile     │    │ session_id (idx)       │    │ session_id     │
# │ investment_goal  │    │ holdings (jsonb)       │    │ role           │
# │ total_value      │    │ total_value            │    │ content        │
# │ last_symbol      │    │ cash_balance           │    │ created_at     │
# │ last_tool        │    │ created_at             │    └────────────────┘
# │ last_action_at   │    └────────────────────────┘
# │ tool_call_count  │
# │ created_at       │
# │ updated_at       │
# └──────────────────┘
#
# ┌──────────────────┐    ┌────────────────────────┐    ┌────────────────┐
# │ trade_ledgers    │    │ ledger_trades          │    │ market_quotes  │
# ├──────────────────┤    ├────────────────────────┤    ├────────────────┤
# │ id (PK)          │─1:N▶ ledger_id (FK)         │    │ symbol (PK)    │
# │ session_id (uq)  │    │ symbol, action, qty    │    │ price          │
# └──────────────────┘    │ price (nullable)       │    │ change_percent │
#                         │ executed_at, reasoning │    │ last_updated   │
#                         └────────────────────────┘    └────────────────┘
#
# ┌──────────────────────────────────────────┐
# │ knowledge_documents                      │
# ├──────────────────────────────────────────┤
# │ id (PK, str), title, content, source,    │
# │ category, embedding vector(N), created_at│
# └──────────────────────────────────────────┘
#
# The latest portfolio snapshot per session (by created_at) is "the
# portfolio". Holdings are a JSONB list so a snapshot is one row.
# =============================================================================

from datetime import datetime

from pgvector.sqlalchemy import Vector
from sqlalchemy import (
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from advisor.config import settings


class Base(DeclarativeBase):
    """SQLAlchemy declarative base class."""

    pass


class SessionRow(Base):
    """Investor profile for one advisory session."""

    __tablename__ = "sessions"

    session_id: Mapped[str] = mapped_column(String(200), primary_key=True)
    risk_profile: Mapped[str] = mapped_column(String(50), nullable=False)
    investment_goal: Mapped[str] = mapped_column(String(100), nullable=False)
    total_portfolio_value: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)

    # Tool-call metadata, updated after each executed plan step
    last_symbol: Mapped[str | None] = mapped_column(String(64), nullable=True)
    last_tool: Mapped[str | None] = mapped_column(String(100), nullable=True)
    last_action_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    tool_call_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<SessionRow(session_id='{self.session_id}', risk={self.risk_profile})>"


class PortfolioSnapshotRow(Base):
    """Point-in-time holdings and cash for a session."""

    __tablename__ = "portfolio_snapshots"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    session_id: Mapped[str] = mapped_column(String(200), nullable=False)

    # [{"symbol": "AAPL", "quantity": 10, "avg_cost": 150.0, "current_price": 180.0}]
    holdings: Mapped[list] = mapped_column(JSONB, nullable=False, default=list)

    total_value: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    cash_balance: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )


class ChatMessageRow(Base):
    """One chat message; append-only per session."""

    __tablename__ = "chat_messages"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    session_id: Mapped[str] = mapped_column(String(200), nullable=False)
    role: Mapped[str] = mapped_column(String(20), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )


class KnowledgeDocumentRow(Base):
    """
    A knowledge-base document and its embedding.

    Written by an external ingestion process; read-only here.
    """

    __tablename__ = "knowledge_documents"

    id: Mapped[str] = mapped_column(String(100), primary_key=True)
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    source: Mapped[str] = mapped_column(String(200), nullable=False, default="")
    category: Mapped[str] = mapped_column(String(100), nullable=False, default="")

    embedding: Mapped[list[float] | None] = mapped_column(
        Vector(settings.embedding_dimensions),
        nullable=True,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )


class TradeLedgerRow(Base):
    """Per-session trade ledger header (found or created on first trade)."""

    __tablename__ = "trade_ledgers"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    session_id: Mapped[str] = mapped_column(String(200), nullable=False, unique=True)

    trades: Mapped[list["LedgerTradeRow"]] = relationship(
        "LedgerTradeRow",
        back_populates="ledger",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="LedgerTradeRow.id",
    )


class LedgerTradeRow(Base):
    """One simulated trade entry; append-only."""

    __tablename__ = "ledger_trades"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    ledger_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("trade_ledgers.id", ondelete="CASCADE"),
        nullable=False,
    )
    symbol: Mapped[str] = mapped_column(String(20), nullable=False)
    action: Mapped[str] = mapped_column(String(10), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    # Null for trades logged from advice text (no execution price)
    price: Mapped[float | None] = mapped_column(Float, nullable=True)
    reasoning: Mapped[str] = mapped_column(Text, nullable=False, default="")
    executed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    ledger: Mapped["TradeLedgerRow"] = relationship("TradeLedgerRow", back_populates="trades")


class MarketQuoteRow(Base):
    """Cached quote, maintained by an external market-data sync."""

    __tablename__ = "market_quotes"

    symbol: Mapped[str] = mapped_column(String(20), primary_key=True)
    price: Mapped[float] = mapped_column(Float, nullable=False)
    change_percent: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    last_updated: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )


# =============================================================================
# Database Indexes
# =============================================================================
# Snapshot and chat lookups are always "latest rows for a session".
# =============================================================================

portfolio_session_idx = Index(
    "idx_portfolio_session_created",
    PortfolioSnapshotRow.session_id,
    PortfolioSnapshotRow.created_at,
)

chat_session_idx = Index(
    "idx_chat_session_created",
    ChatMessageRow.session_id,
    ChatMessageRow.created_at,
)
