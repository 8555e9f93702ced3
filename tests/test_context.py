# =============================================================================
# Unit Tests — Context Aggregator
# =============================================================================

from __future__ import annotations

from advisor.models.domain import ChatMessage, Holding, PortfolioSnapshot, Quote, ScoredDocument, Session
from advisor.services.context import (
    EMPTY_DOCUMENTS,
    EMPTY_HISTORY,
    EMPTY_MARKET,
    EMPTY_PORTFOLIO,
    aggregate,
    build_health_summary,
    extract_symbols,
    format_documents,
    format_history,
    format_market,
    format_portfolio,
    snippet,
)
from conftest import make_document


# ---------------------------------------------------------------------------
# Test: Placeholders
# ---------------------------------------------------------------------------


class TestPlaceholders:
    def test_every_block_has_non_blank_placeholder(self):
        context = aggregate(None, None, [], [])
        assert context.portfolio == EMPTY_PORTFOLIO
        assert context.market == EMPTY_MARKET
        assert context.documents == EMPTY_DOCUMENTS
        for block in (context.portfolio, context.market, context.documents):
            assert block.strip()

    def test_empty_history(self):
        assert format_history([]) == EMPTY_HISTORY

    def test_portfolio_without_holdings_shows_cash(self):
        portfolio = PortfolioSnapshot(session_id="s", cash_balance=2500.0)
        assert format_portfolio(portfolio) == "Portfolio is empty. Cash Balance: $2,500.00"


# ---------------------------------------------------------------------------
# Test: Formatting
# ---------------------------------------------------------------------------


class TestFormatting:
    def test_portfolio_lists_holdings(self, portfolio):
        text = format_portfolio(portfolio)
        assert "- MSFT: 10 shares @ $410.50 (avg cost: $300.00)" in text
        assert "Total Value: $14,105.00" in text
        assert "Cash Balance: $10,000.00" in text

    def test_market_line_format(self):
        quotes = [Quote(symbol="AAPL", price=190.0, change_percent=1.25),
                  Quote(symbol="MSFT", price=410.5, change_percent=-0.5)]
        assert format_market(quotes) == "- AAPL: $190.00 (+1.25%)\n- MSFT: $410.50 (-0.50%)"

    def test_documents_include_source_and_relevance(self):
        doc = make_document("d1", "Fed holds rates", [1.0], content="x" * 250)
        text = format_documents([ScoredDocument(document=doc, score=0.87654)])
        assert text.startswith("[Reuters] Fed holds rates\n")
        assert "(relevance: 0.877)" in text
        assert "x" * 200 + "..." in text

    def test_history_lines(self):
        messages = [ChatMessage(role="user", content="hi"), ChatMessage(role="assistant", content="hello")]
        assert format_history(messages) == "user: hi\nassistant: hello"

    def test_snippet_short_text_unchanged(self):
        assert snippet("short") == "short"

    def test_snippet_truncates(self):
        assert snippet("abcdef", length=3) == "abc..."


# ---------------------------------------------------------------------------
# Test: Health Summary
# ---------------------------------------------------------------------------


class TestHealthSummary:
    def test_without_portfolio(self):
        session = Session(
            session_id="s", risk_profile="moderate",
            investment_goal="long_term_growth", total_portfolio_value=50000.0,
        )
        text = build_health_summary(session, None)
        assert "moderate risk profile" in text
        assert "Portfolio is currently empty or not linked." in text

    def test_with_portfolio(self, portfolio):
        session = Session(
            session_id="s", risk_profile="aggressive",
            investment_goal="long_term_growth", total_portfolio_value=50000.0,
        )
        text = build_health_summary(session, portfolio)
        assert "Investment Strategy: long term growth" in text
        assert "Risk Tolerance: aggressive" in text
        assert "Active Positions: 1 holdings" in text
        assert "Top Allocation: MSFT ($4,105)" in text

    def test_zero_total_value_has_zero_cash_ratio(self):
        portfolio = PortfolioSnapshot(session_id="s", cash_balance=0.0, total_value=0.0)
        text = build_health_summary(None, portfolio)
        assert "(0.0% of portfolio)" in text


# ---------------------------------------------------------------------------
# Test: Symbol Extraction
# ---------------------------------------------------------------------------


class TestExtractSymbols:
    def test_upper_case_ticker(self, tables):
        assert extract_symbols("What is AAPL price?", tables) == {"AAPL"}

    def test_alias_lookup(self, tables):
        assert extract_symbols("should I buy apple or tesla?", tables) == {"AAPL", "TSLA"}

    def test_alias_is_whole_word(self, tables):
        # "pineapple" must not match "apple"
        assert extract_symbols("I like pineapple", tables) == set()

    def test_stopwords_excluded(self, tables):
        assert extract_symbols("SHOULD I BUY THE ETF", tables) == set()

    def test_lower_case_token_ignored(self, tables):
        assert extract_symbols("what about tsla", tables) == set()

    def test_deduplicated(self, tables):
        assert extract_symbols("Apple AAPL apple", tables) == {"AAPL"}

    def test_too_long_token_ignored(self, tables):
        assert extract_symbols("ABCDEFG", tables) == set()

    def test_empty_text(self, tables):
        assert extract_symbols("", tables) == set()

    def test_crypto_alias(self, tables):
        assert extract_symbols("Is Bitcoin going up?", tables) == {"BTC"}


class TestAggregate:
    def test_aggregates_all_blocks(self, portfolio):
        quotes = [Quote(symbol="MSFT", price=410.5, change_percent=0.0)]
        doc = make_document("d1", "Microsoft cloud growth", [1.0])
        context = aggregate(None, portfolio, quotes, [ScoredDocument(document=doc, score=0.5)])
        assert "MSFT" in context.portfolio
        assert "- MSFT: $410.50 (+0.00%)" == context.market
        assert "Microsoft cloud growth" in context.documents
        assert context.health.startswith("Financial Health Summary:")

    def test_holding_market_value(self):
        assert Holding(symbol="X", quantity=3, avg_cost=1.0, current_price=2.5).market_value == 7.5
