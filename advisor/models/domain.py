# =============================================================================
# Domain Records — Plain Dataclasses
# =============================================================================
#
# In-process representations of the records the agent reads and writes.
# They are deliberately independent of both the ORM rows
# (advisor/db/models.py) and the API schemas (models/responses.py), so the
# core can run against any ContextStore implementation.
#
# Ownership:
#   Quote, Document                      owned by external systems,
#                                        read-only here
#   PortfolioSnapshot                    replaced by the buy/sell tools
#   Session                              profile is external; tool-call
#                                        metadata is updated per step
#   ChatMessage, Trade                   appended at turn completion
# =============================================================================

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime


def utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass
class Session:
    """Per-session investor profile."""

    session_id: str
    risk_profile: str
    investment_goal: str
    total_portfolio_value: float
    last_symbol: str | None = None
    last_tool: str | None = None
    last_action_at: datetime | None = None
    tool_call_count: int = 0
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def record_tool_call(self, symbol: str | None, tool: str | None) -> None:
        """Note one executed tool step; None leaves the previous value."""
        if symbol is not None:
            self.last_symbol = symbol
        if tool is not None:
            self.last_tool = tool
        self.last_action_at = utcnow()
        self.updated_at = self.last_action_at
        self.tool_call_count += 1


@dataclass
class Holding:
    symbol: str
    quantity: int
    avg_cost: float
    current_price: float

    @property
    def market_value(self) -> float:
        return self.quantity * self.current_price


@dataclass
class PortfolioSnapshot:
    """Point-in-time view of a session's holdings and cash."""

    session_id: str
    holdings: list[Holding] = field(default_factory=list)
    total_value: float = 0.0
    cash_balance: float = 0.0
    created_at: datetime = field(default_factory=utcnow)

    def find_holding(self, symbol: str) -> Holding | None:
        wanted = symbol.upper()
        for holding in self.holdings:
            if holding.symbol.upper() == wanted:
                return holding
        return None

    def recompute_total(self) -> None:
        self.total_value = self.cash_balance + sum(
            h.market_value for h in self.holdings
        )

    def apply_buy(self, symbol: str, quantity: int, price: float) -> None:
        """
        Spend cash on `quantity` units at `price`.

        Raises:
            ValueError: If the cash balance does not cover the cost.
        """
        cost = price * quantity
        if self.cash_balance < cost:
            raise ValueError(
                f"Insufficient funds. Required: ${cost:,.2f}, "
                f"Available: ${self.cash_balance:,.2f}"
            )

        self.cash_balance -= cost
        holding = self.find_holding(symbol)
        if holding is None:
            self.holdings.append(
                Holding(symbol=symbol, quantity=quantity, avg_cost=price, current_price=price)
            )
        else:
            total_quantity = holding.quantity + quantity
            holding.avg_cost = (holding.avg_cost * holding.quantity + cost) / total_quantity
            holding.quantity = total_quantity
            holding.current_price = price

        self.recompute_total()
        self.created_at = utcnow()

    def apply_sell(self, symbol: str, quantity: int, price: float) -> None:
        """
        Sell `quantity` units at `price`; a position sold to zero is removed.

        Raises:
            ValueError: If fewer than `quantity` units are held.
        """
        holding = self.find_holding(symbol)
        available = holding.quantity if holding else 0
        if holding is None or available < quantity:
            raise ValueError(
                f"Insufficient shares. Requested: {quantity}, Available: {available}"
            )

        self.cash_balance += price * quantity
        holding.quantity -= quantity
        holding.current_price = price
        if holding.quantity == 0:
            self.holdings.remove(holding)

        self.recompute_total()
        self.created_at = utcnow()


@dataclass
class Quote:
    """Cached market price for one symbol."""

    symbol: str
    price: float
    change_percent: float = 0.0
    last_updated: datetime = field(default_factory=utcnow)


@dataclass
class ChatMessage:
    role: str  # "user" or "assistant"
    content: str
    created_at: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class Document:
    """
    A knowledge-base document with its precomputed embedding.

    Frozen: documents are produced by ingestion and never modified here.
    """

    id: str
    title: str
    content: str
    source: str
    category: str
    embedding: tuple[float, ...]
    created_at: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class ScoredDocument:
    document: Document
    score: float


@dataclass
class Trade:
    """One simulated trade in a session's ledger."""

    symbol: str
    action: str  # BUY, SELL, HOLD
    quantity: int
    price: float | None = None
    executed_at: datetime = field(default_factory=utcnow)
    reasoning: str = ""


@dataclass
class TurnResult:
    """Outcome of one blocking turn."""

    answer: str
    executed_trades: list[Trade] = field(default_factory=list)
    sources: list[ScoredDocument] = field(default_factory=list)
