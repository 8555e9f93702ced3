# =============================================================================
# Tool Registry — Closed Name → Tool Mapping
# =============================================================================
#
# Tools are the side-effecting capabilities a Plan can invoke. The set is
# fixed when the registry is built at startup; the model can only refer
# to tools by name, and an unmapped name resolves to UnknownTool rather
# than raising.
#
# TOOLS:
#   get_stock_price    cached quote for one symbol
#   get_profile        strategy, cash and holdings for a session
#   search_rag         top-k knowledge-base documents for a query
#   get_owned_shares   holdings for a session
#   buy_stock          simulated purchase; updates portfolio + ledger
#   sell_stock         simulated sale; updates portfolio + ledger
#
# CONTRACT:
#   execute(args: dict) -> str
#   The result is opaque text (JSON here). Tools catch their own
#   failures and return {"error": "..."} so one bad step never aborts a
#   plan.
# =============================================================================

from __future__ import annotations

import json
import logging
import uuid
from abc import ABC, abstractmethod
from collections.abc import Iterable
from typing import Any, Protocol

from advisor.config import HeuristicTables, Settings, settings
from advisor.models.domain import PortfolioSnapshot, ScoredDocument, Trade, utcnow
from advisor.services.context import snippet
from advisor.services.retrieval import Retriever
from advisor.services.store import ContextStore

logger = logging.getLogger(__name__)

KNOWLEDGE_BASE_TOOL = "search_rag"


class Tool(Protocol):
    name: str
    description: str

    async def execute(self, args: dict[str, Any]) -> str:
        ...


def _error(message: str) -> str:
    return json.dumps({"error": message})


def _timestamp() -> str:
    return utcnow().strftime("%Y-%m-%dT%H:%M:%SZ")


def normalise_symbol(symbol: str, tables: HeuristicTables) -> str:
    """Map a company/asset name to its ticker; otherwise upper-case."""
    clean = symbol.strip()
    return tables.ticker_aliases.get(clean.lower(), clean.upper())


def _positive_int(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    try:
        number = int(value)
    except (TypeError, ValueError):
        return None
    if isinstance(value, float) and value != number:
        return None
    return number if number > 0 else None


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------


class UnknownTool:
    """Stand-in returned for names the registry does not map."""

    description = "Unknown tool."

    def __init__(self, name: str) -> None:
        self.name = name

    async def execute(self, args: dict[str, Any]) -> str:
        return f"Tool '{self.name}' not found."


class ToolRegistry:
    def __init__(self, tools: Iterable[Tool]) -> None:
        self._tools: dict[str, Tool] = {}
        for tool in tools:
            if tool.name in self._tools:
                raise ValueError(f"Duplicate tool name '{tool.name}'")
            self._tools[tool.name] = tool

    def get(self, name: str) -> Tool | None:
        return self._tools.get(name)

    def resolve(self, name: str) -> Tool:
        """Registered tool for `name`, or an UnknownTool."""
        return self._tools.get(name) or UnknownTool(name)

    def catalogue(self) -> list[Tool]:
        return list(self._tools.values())

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)


# ---------------------------------------------------------------------------
# Market Tools
# ---------------------------------------------------------------------------


class GetStockPriceTool:
    name = "get_stock_price"
    description = (
        "Get current stock or crypto price. Args: symbol (string). "
        "For stocks use the ticker (e.g., AAPL, MSFT); for crypto use the "
        "simple symbol (e.g., BTC, ETH)."
    )

    def __init__(self, store: ContextStore, tables: HeuristicTables) -> None:
        self._store = store
        self._tables = tables

    async def execute(self, args: dict[str, Any]) -> str:
        try:
            raw = args.get("symbol")
            if not isinstance(raw, str) or not raw.strip():
                return _error("Missing symbol argument")

            symbol = normalise_symbol(raw, self._tables)
            quotes = await self._store.get_quotes([symbol])
            if not quotes:
                return _error(
                    f"Symbol '{raw}' not found. For stocks use ticker (e.g., AAPL). "
                    "For crypto use symbol (e.g., BTC, ETH)."
                )

            quote = quotes[0]
            return json.dumps({
                "symbol": quote.symbol,
                "price": quote.price,
                "change_percent": quote.change_percent,
                "currency": "USD",
                "timestamp": quote.last_updated.strftime("%Y-%m-%dT%H:%M:%SZ"),
                "source": "market-cache",
            })
        except Exception as e:
            logger.exception("get_stock_price failed")
            return _error(str(e))


# ---------------------------------------------------------------------------
# Profile Tools
# ---------------------------------------------------------------------------


class GetProfileTool:
    name = "get_profile"
    description = "Get user profile and portfolio. Args: user_id (string)"

    def __init__(self, store: ContextStore) -> None:
        self._store = store

    async def execute(self, args: dict[str, Any]) -> str:
        try:
            user_id = args.get("user_id")
            if not user_id:
                return _error("Missing user_id argument")

            session = await self._store.get_session(str(user_id))
            portfolio = await self._store.get_portfolio(str(user_id))
            return json.dumps({
                "user_id": user_id,
                "strategy": session.investment_goal,
                "risk_profile": session.risk_profile,
                "cash": portfolio.cash_balance if portfolio else 0,
                "holdings": _holdings(portfolio),
            })
        except Exception as e:
            logger.exception("get_profile failed")
            return _error(str(e))


class GetOwnedSharesTool:
    name = "get_owned_shares"
    description = "Get quantity of shares owned per symbol. Args: user_id (string)"

    def __init__(self, store: ContextStore) -> None:
        self._store = store

    async def execute(self, args: dict[str, Any]) -> str:
        try:
            user_id = args.get("user_id")
            if not user_id:
                return _error("Missing user_id argument")

            portfolio = await self._store.get_portfolio(str(user_id))
            return json.dumps({"user_id": user_id, "holdings": _holdings(portfolio)})
        except Exception as e:
            logger.exception("get_owned_shares failed")
            return _error(str(e))


def _holdings(portfolio: PortfolioSnapshot | None) -> list[dict[str, Any]]:
    if portfolio is None:
        return []
    return [{"symbol": h.symbol, "qty": h.quantity} for h in portfolio.holdings]


# ---------------------------------------------------------------------------
# Knowledge Base Tool
# ---------------------------------------------------------------------------


class KnowledgeBaseTool:
    """
    Semantic search over the knowledge base.

    `search()` returns structured results and raises RetrievalError on
    provider failure; the engine uses it for proactive retrieval.
    `execute()` is the plan-step form and never raises.
    """

    name = KNOWLEDGE_BASE_TOOL
    description = (
        "Search relevant financial news and documents. "
        "Args: query (string), top_k (int, default 3)"
    )

    def __init__(self, retriever: Retriever, default_top_k: int = 3) -> None:
        self._retriever = retriever
        self._default_top_k = default_top_k

    async def search(self, query: str, k: int | None = None) -> list[ScoredDocument]:
        return await self._retriever.retrieve(query, self._default_top_k if k is None else k)

    async def execute(self, args: dict[str, Any]) -> str:
        try:
            query = args.get("query")
            if not isinstance(query, str) or not query.strip():
                return _error("Missing query argument")

            top_k = _positive_int(args.get("top_k")) or self._default_top_k
            results = await self.search(query, top_k)
            return json.dumps([
                {
                    "id": r.document.id,
                    "title": r.document.title,
                    "snippet": snippet(r.document.content),
                    "timestamp": r.document.created_at.strftime("%Y-%m-%dT%H:%M:%SZ"),
                    "source": r.document.source,
                    "score": round(r.score, 4),
                }
                for r in results
            ])
        except Exception as e:
            logger.exception("search_rag failed")
            return _error(str(e))


# ---------------------------------------------------------------------------
# Trade Tools
# ---------------------------------------------------------------------------


class _TradeTool(ABC):
    """Shared argument handling and pricing for buy/sell."""

    action = ""

    def __init__(
        self,
        store: ContextStore,
        tables: HeuristicTables,
        config: Settings = settings,
    ) -> None:
        self._store = store
        self._tables = tables
        self._config = config

    async def execute(self, args: dict[str, Any]) -> str:
        try:
            raw_symbol = args.get("symbol")
            qty = _positive_int(args.get("qty"))
            user_id = args.get("user_id")
            if not isinstance(raw_symbol, str) or not raw_symbol.strip() or qty is None:
                return _error("Invalid symbol or quantity")
            if not user_id:
                return _error("Missing user_id argument")

            symbol = normalise_symbol(raw_symbol, self._tables)
            quotes = await self._store.get_quotes([symbol])
            if not quotes:
                return _error(f"Could not fetch price for {raw_symbol}")
            price = quotes[0].price

            portfolio = await self._load_portfolio(str(user_id))
            if portfolio is None:
                return _error("Portfolio not found")

            try:
                self._apply(portfolio, symbol, qty, price)
            except ValueError as e:
                return _error(str(e))

            await self._store.save_portfolio(portfolio)
            await self._store.append_trade(
                str(user_id),
                Trade(
                    symbol=symbol,
                    action=self.action,
                    quantity=qty,
                    price=price,
                    reasoning=f"User requested {self.action.lower()} of {qty} shares of {raw_symbol}",
                ),
            )

            logger.info(
                "[%s] Executed %s: %d %s @ $%.2f, cash now $%.2f",
                user_id, self.action, qty, symbol, price, portfolio.cash_balance,
            )
            return json.dumps(self._receipt(symbol, qty, price))
        except Exception as e:
            logger.exception("%s failed", self.name)
            return _error(str(e))

    async def _load_portfolio(self, session_id: str) -> PortfolioSnapshot | None:
        return await self._store.get_portfolio(session_id)

    @abstractmethod
    def _apply(self, portfolio: PortfolioSnapshot, symbol: str, qty: int, price: float) -> None:
        """Mutate the portfolio for this trade; ValueError rejects it."""

    def _receipt(self, symbol: str, qty: int, price: float) -> dict[str, Any]:
        return {
            "status": "ok",
            "order_id": f"o-{uuid.uuid4().hex[:8]}",
            "symbol": symbol,
            "executed_qty": qty,
            "avg_price": price,
            "timestamp": _timestamp(),
        }


class BuyStockTool(_TradeTool):
    name = "buy_stock"
    description = "Execute a stock purchase. Args: symbol (string), qty (int), user_id (string)"
    action = "BUY"

    async def _load_portfolio(self, session_id: str) -> PortfolioSnapshot:
        portfolio = await self._store.get_portfolio(session_id)
        if portfolio is None:
            cash = self._config.default_cash_balance
            portfolio = PortfolioSnapshot(session_id=session_id, cash_balance=cash, total_value=cash)
        return portfolio

    def _apply(self, portfolio: PortfolioSnapshot, symbol: str, qty: int, price: float) -> None:
        portfolio.apply_buy(symbol, qty, price)

    def _receipt(self, symbol: str, qty: int, price: float) -> dict[str, Any]:
        return {**super()._receipt(symbol, qty, price), "total_cost": price * qty}


class SellStockTool(_TradeTool):
    name = "sell_stock"
    description = "Execute a stock sale. Args: symbol (string), qty (int), user_id (string)"
    action = "SELL"

    def _apply(self, portfolio: PortfolioSnapshot, symbol: str, qty: int, price: float) -> None:
        portfolio.apply_sell(symbol, qty, price)

    def _receipt(self, symbol: str, qty: int, price: float) -> dict[str, Any]:
        return {**super()._receipt(symbol, qty, price), "total_proceeds": price * qty}


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------


def build_registry(
    store: ContextStore,
    retriever: Retriever | None,
    tables: HeuristicTables,
    config: Settings = settings,
) -> ToolRegistry:
    """
    Build the standard tool set.

    Without a retriever the knowledge-base tool is omitted, and the
    engine skips proactive retrieval.
    """
    tools: list[Tool] = [
        GetStockPriceTool(store, tables),
        GetProfileTool(store),
        GetOwnedSharesTool(store),
        BuyStockTool(store, tables, config),
        SellStockTool(store, tables, config),
    ]
    if retriever is not None:
        tools.insert(2, KnowledgeBaseTool(retriever, config.retrieval_top_k))
    return ToolRegistry(tools)