# =============================================================================
# Unit Tests — Tool Registry and Tools
# =============================================================================
#
# Tools run against the in-memory store; every failure must come back as
# an {"error": ...} JSON string rather than an exception.
# =============================================================================

from __future__ import annotations

import asyncio
import json

import pytest

from advisor.agents.tools import (
    KNOWLEDGE_BASE_TOOL,
    BuyStockTool,
    GetOwnedSharesTool,
    GetProfileTool,
    GetStockPriceTool,
    KnowledgeBaseTool,
    SellStockTool,
    ToolRegistry,
    UnknownTool,
    _TradeTool,
    build_registry,
    normalise_symbol,
)
from advisor.services.retrieval import Retriever
from conftest import SESSION_ID, FakeEmbedder


def _run(coro):
    """Helper to run async functions in sync tests."""
    return asyncio.run(coro)


def _call(tool, **args) -> dict:
    return json.loads(_run(tool.execute(args)))


# ---------------------------------------------------------------------------
# Test: Registry
# ---------------------------------------------------------------------------


class TestRegistry:
    def test_standard_tool_set(self, store, tables):
        registry = build_registry(store, Retriever(FakeEmbedder(), store), tables)
        assert [t.name for t in registry.catalogue()] == [
            "get_stock_price",
            "get_profile",
            "search_rag",
            "get_owned_shares",
            "buy_stock",
            "sell_stock",
        ]

    def test_without_retriever_omits_knowledge_base(self, store, tables):
        registry = build_registry(store, None, tables)
        assert KNOWLEDGE_BASE_TOOL not in registry
        assert len(registry) == 5

    def test_resolve_unknown_name(self, store, tables):
        registry = build_registry(store, None, tables)
        tool = registry.resolve("foo")
        assert isinstance(tool, UnknownTool)
        assert _run(tool.execute({})) == "Tool 'foo' not found."

    def test_get_returns_none_for_unknown(self, store, tables):
        assert build_registry(store, None, tables).get("foo") is None

    def test_duplicate_names_rejected(self, store):
        with pytest.raises(ValueError, match="Duplicate tool name"):
            ToolRegistry([GetProfileTool(store), GetProfileTool(store)])


# ---------------------------------------------------------------------------
# Test: Read-Only Tools
# ---------------------------------------------------------------------------


class TestStockPrice:
    def test_known_symbol(self, store, tables):
        result = _call(GetStockPriceTool(store, tables), symbol="AAPL")
        assert result["symbol"] == "AAPL"
        assert result["price"] == 190.0
        assert result["currency"] == "USD"

    def test_company_name_alias(self, store, tables):
        assert _call(GetStockPriceTool(store, tables), symbol="Apple")["symbol"] == "AAPL"

    def test_unknown_symbol(self, store, tables):
        result = _call(GetStockPriceTool(store, tables), symbol="ZZZZ")
        assert "not found" in result["error"]

    def test_missing_symbol(self, store, tables):
        assert _call(GetStockPriceTool(store, tables))["error"] == "Missing symbol argument"

    def test_normalise_symbol(self, tables):
        assert normalise_symbol(" bitcoin ", tables) == "BTC"
        assert normalise_symbol("nvda", tables) == "NVDA"


class TestProfileTools:
    def test_profile_with_portfolio(self, store, portfolio):
        _run(store.save_portfolio(portfolio))
        result = _call(GetProfileTool(store), user_id=SESSION_ID)
        assert result["strategy"] == "long_term_growth"
        assert result["cash"] == 10000.0
        assert result["holdings"] == [{"symbol": "MSFT", "qty": 10}]

    def test_profile_without_portfolio(self, store):
        result = _call(GetProfileTool(store), user_id="new-user")
        assert result["cash"] == 0
        assert result["holdings"] == []

    def test_profile_requires_user_id(self, store):
        assert "user_id" in _call(GetProfileTool(store))["error"]

    def test_owned_shares(self, store, portfolio):
        _run(store.save_portfolio(portfolio))
        result = _call(GetOwnedSharesTool(store), user_id=SESSION_ID)
        assert result["holdings"] == [{"symbol": "MSFT", "qty": 10}]


class TestKnowledgeBase:
    def test_search_returns_ranked_documents(self, store):
        tool = KnowledgeBaseTool(Retriever(FakeEmbedder(), store), default_top_k=2)
        results = _call(tool, query="fed rate decision")
        assert len(results) == 2
        assert results[0]["id"] == "doc-fed"
        assert results[0]["source"] == "Reuters"

    def test_top_k_argument(self, store):
        tool = KnowledgeBaseTool(Retriever(FakeEmbedder(), store))
        assert len(_call(tool, query="apple", top_k=1)) == 1

    def test_provider_failure_is_error_result(self, store):
        tool = KnowledgeBaseTool(Retriever(FakeEmbedder(error=TimeoutError("slow")), store))
        assert "Embedding provider failed" in _call(tool, query="apple")["error"]

    def test_missing_query(self, store):
        tool = KnowledgeBaseTool(Retriever(FakeEmbedder(), store))
        assert _call(tool)["error"] == "Missing query argument"


# ---------------------------------------------------------------------------
# Test: Trade Tools
# ---------------------------------------------------------------------------


class TestBuyStock:
    def test_buy_updates_portfolio_and_ledger(self, store, tables, portfolio):
        _run(store.save_portfolio(portfolio))
        result = _call(BuyStockTool(store, tables), symbol="AAPL", qty=10, user_id=SESSION_ID)
        assert result["status"] == "ok"
        assert result["total_cost"] == 1900.0

        updated = _run(store.get_portfolio(SESSION_ID))
        assert updated.cash_balance == pytest.approx(8100.0)
        assert updated.find_holding("AAPL").quantity == 10

        ledger = _run(store.get_ledger(SESSION_ID))
        assert [(t.action, t.symbol, t.quantity, t.price) for t in ledger] == [("BUY", "AAPL", 10, 190.0)]

    def test_buy_creates_portfolio_with_default_cash(self, store, tables, config):
        result = _call(BuyStockTool(store, tables, config), symbol="AAPL", qty=1, user_id="fresh")
        assert result["status"] == "ok"
        created = _run(store.get_portfolio("fresh"))
        assert created.cash_balance == pytest.approx(config.default_cash_balance - 190.0)

    def test_buy_averages_cost(self, store, tables, portfolio):
        _run(store.save_portfolio(portfolio))
        _call(BuyStockTool(store, tables), symbol="MSFT", qty=10, user_id=SESSION_ID)
        holding = _run(store.get_portfolio(SESSION_ID)).find_holding("MSFT")
        assert holding.quantity == 20
        assert holding.avg_cost == pytest.approx((300.0 * 10 + 410.5 * 10) / 20)

    def test_insufficient_funds(self, store, tables, portfolio):
        _run(store.save_portfolio(portfolio))
        result = _call(BuyStockTool(store, tables), symbol="BTC", qty=1, user_id=SESSION_ID)
        assert result["error"].startswith("Insufficient funds")
        assert _run(store.get_ledger(SESSION_ID)) == []

    @pytest.mark.parametrize("qty", [0, -1, "ten", 1.5, True, None])
    def test_invalid_quantity(self, store, tables, qty):
        result = _call(BuyStockTool(store, tables), symbol="AAPL", qty=qty, user_id=SESSION_ID)
        assert result["error"] == "Invalid symbol or quantity"

    def test_unknown_symbol(self, store, tables):
        result = _call(BuyStockTool(store, tables), symbol="ZZZZ", qty=1, user_id=SESSION_ID)
        assert result["error"] == "Could not fetch price for ZZZZ"


class TestSellStock:
    def test_sell_reduces_holding(self, store, tables, portfolio):
        _run(store.save_portfolio(portfolio))
        result = _call(SellStockTool(store, tables), symbol="MSFT", qty=4, user_id=SESSION_ID)
        assert result["total_proceeds"] == pytest.approx(1642.0)
        updated = _run(store.get_portfolio(SESSION_ID))
        assert updated.find_holding("MSFT").quantity == 6
        assert updated.cash_balance == pytest.approx(11642.0)

    def test_selling_everything_removes_holding(self, store, tables, portfolio):
        _run(store.save_portfolio(portfolio))
        _call(SellStockTool(store, tables), symbol="MSFT", qty=10, user_id=SESSION_ID)
        assert _run(store.get_portfolio(SESSION_ID)).holdings == []

    def test_insufficient_shares(self, store, tables, portfolio):
        _run(store.save_portfolio(portfolio))
        result = _call(SellStockTool(store, tables), symbol="MSFT", qty=11, user_id=SESSION_ID)
        assert result["error"] == "Insufficient shares. Requested: 11, Available: 10"

    def test_sell_without_portfolio(self, store, tables):
        result = _call(SellStockTool(store, tables), symbol="MSFT", qty=1, user_id="nobody")
        assert result["error"] == "Portfolio not found"


class TestTradeToolBase:
    def test_base_cannot_be_instantiated(self, store, tables):
        with pytest.raises(TypeError):
            _TradeTool(store, tables)

    def test_subclass_without_apply_is_abstract(self, store, tables):
        class HalfTool(_TradeTool):
            name = "half"
            description = "missing _apply"
            action = "BUY"

        with pytest.raises(TypeError):
            HalfTool(store, tables)
