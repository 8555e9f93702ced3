# =============================================================================
# Context Aggregator — Portfolio, Market, Documents, History as Text
# =============================================================================
#
# Renders the per-turn context into the text blocks the Prompt Builder
# embeds, and extracts the ticker symbols a query mentions.
#
# Every function here is a pure function of its arguments and the
# read-only HeuristicTables. Each formatter returns a fixed placeholder
# when its input is absent, so the prompt always has all sections.
# =============================================================================

from __future__ import annotations

import re
from collections.abc import Sequence
from dataclasses import dataclass

from advisor.config import HeuristicTables
from advisor.models.domain import (
    ChatMessage,
    PortfolioSnapshot,
    Quote,
    ScoredDocument,
    Session,
)

EMPTY_PORTFOLIO = "Portfolio is empty or not found."
EMPTY_MARKET = "No real-time market data available."
EMPTY_DOCUMENTS = "No relevant documents found."
EMPTY_HISTORY = "No previous conversation."

SNIPPET_LENGTH = 200

# Candidate tickers: 2-5 ASCII letters, upper case, standing alone
_TICKER_TOKEN = re.compile(r"(?<![A-Za-z])[A-Z]{2,5}(?![A-Za-z])")


@dataclass
class AggregatedContext:
    portfolio: str
    market: str
    documents: str
    health: str = ""


def format_portfolio(portfolio: PortfolioSnapshot | None) -> str:
    if portfolio is None:
        return EMPTY_PORTFOLIO
    if not portfolio.holdings:
        return f"Portfolio is empty. Cash Balance: ${portfolio.cash_balance:,.2f}"

    lines = [
        f"- {h.symbol}: {h.quantity} shares @ ${h.current_price:,.2f} "
        f"(avg cost: ${h.avg_cost:,.2f})"
        for h in portfolio.holdings
    ]
    return (
        "Current Portfolio:\n"
        + "\n".join(lines)
        + f"\nTotal Value: ${portfolio.total_value:,.2f}"
        + f"\nCash Balance: ${portfolio.cash_balance:,.2f}"
    )


def format_market(quotes: Sequence[Quote]) -> str:
    if not quotes:
        return EMPTY_MARKET
    return "\n".join(
        f"- {q.symbol}: ${q.price:.2f} ({q.change_percent:+.2f}%)" for q in quotes
    )


def format_documents(results: Sequence[ScoredDocument]) -> str:
    if not results:
        return EMPTY_DOCUMENTS

    blocks = []
    for result in results:
        doc = result.document
        blocks.append(
            f"[{doc.source}] {doc.title}\n"
            f"{snippet(doc.content)}\n"
            f"(relevance: {result.score:.3f})"
        )
    return "\n\n".join(blocks)


def format_history(messages: Sequence[ChatMessage]) -> str:
    if not messages:
        return EMPTY_HISTORY
    return "\n".join(f"{m.role}: {m.content}" for m in messages)


def snippet(content: str, length: int = SNIPPET_LENGTH) -> str:
    """First `length` characters, with "..." appended when truncated."""
    if len(content) <= length:
        return content
    return content[:length] + "..."


def build_health_summary(session: Session | None, portfolio: PortfolioSnapshot | None) -> str:
    """
    One-paragraph financial health summary used to ground advice.

    Cash ratio is reported against total value (0% when total is zero);
    the top allocation is the holding with the largest market value.
    """
    risk = session.risk_profile if session else "Unknown"
    goal = session.investment_goal if session else "Not set"

    if portfolio is None:
        return (
            f"User Profile: {risk} risk profile. Goal: {goal}. "
            "Portfolio is currently empty or not linked."
        )

    total = portfolio.total_value
    cash = portfolio.cash_balance
    cash_ratio = (cash / total) * 100 if total > 0 else 0.0
    top = max(portfolio.holdings, key=lambda h: h.market_value, default=None)

    lines = [
        "Financial Health Summary:",
        f"- Total Assets: ${total:,.0f}",
        f"- Cash Position: ${cash:,.0f} ({cash_ratio:.1f}% of portfolio)",
        f"- Investment Strategy: {goal.replace('_', ' ') if session else 'General Investing'}",
        f"- Risk Tolerance: {session.risk_profile if session else 'Moderate'}",
        f"- Active Positions: {len(portfolio.holdings)} holdings",
    ]
    if top is not None:
        lines.append(f"- Top Allocation: {top.symbol} (${top.market_value:,.0f})")
    lines.append("This context should be used to ground all financial advice.")
    return "\n".join(lines)


def extract_symbols(text: str, tables: HeuristicTables) -> set[str]:
    """
    Ticker symbols mentioned in `text`.

    Two sources, merged:
      1. Known aliases matched as whole words, case-insensitively
         ("apple" → AAPL, "Bitcoin" → BTC)
      2. Upper-case tokens of 2-5 ASCII letters not in the stop-word
         table ("TSLA" yes, "CEO" no, "tsla" no)
    """
    if not text:
        return set()

    symbols: set[str] = set()
    lowered = text.lower()
    for alias, ticker in tables.ticker_aliases.items():
        if re.search(rf"(?<![a-z0-9]){re.escape(alias)}(?![a-z0-9])", lowered):
            symbols.add(ticker.upper())

    for token in _TICKER_TOKEN.findall(text):
        if token not in tables.symbol_stopwords:
            symbols.add(token)

    return symbols


def aggregate(
    session: Session | None,
    portfolio: PortfolioSnapshot | None,
    quotes: Sequence[Quote],
    documents: Sequence[ScoredDocument],
) -> AggregatedContext:
    return AggregatedContext(
        portfolio=format_portfolio(portfolio),
        market=format_market(quotes),
        documents=format_documents(documents),
        health=build_health_summary(session, portfolio),
    )
