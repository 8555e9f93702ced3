# =============================================================================
# Trade Action Executor — Ledger Entries from Advice Text
# =============================================================================
#
# After a turn completes, the final answer may end with an advice block:
#
#   ...commentary...
#   ```json
#   {"trades": [{"symbol": "AAPL", "action": "BUY", "qty": 10}],
#    "disclaimer_required": true, "intent": "TRADE"}
#   ```
#
# parse_and_execute() locates that block with the same brace-span rule as
# the Output Sanitizer, logs each well-formed trade to the session ledger
# and returns them. It never raises: absent or malformed input yields [],
# and individual malformed items are skipped.
#
# Prices are left unset; nothing is filled at market here.
# =============================================================================

from __future__ import annotations

import logging
from typing import Any

from pydantic import ValidationError

from advisor.models.domain import Trade
from advisor.models.outputs import TradeInstruction
from advisor.services.sanitizer import parse_json_object, strip_code_fences
from advisor.services.store import ContextStore

logger = logging.getLogger(__name__)


class TradeExecutor:
    def __init__(self, store: ContextStore) -> None:
        self._store = store

    async def parse_and_execute(self, final_text: str | None, session_id: str) -> list[Trade]:
        instructions = parse_trades(final_text)
        if not instructions:
            return []

        executed: list[Trade] = []
        for instruction in instructions:
            trade = Trade(
                symbol=instruction.symbol.upper(),
                action=instruction.action,
                quantity=instruction.qty,
                reasoning="Recommended in advisor response",
            )
            try:
                await self._store.append_trade(session_id, trade)
            except Exception:
                logger.exception(
                    "[%s] Failed to log trade %s %s", session_id, trade.action, trade.symbol,
                )
                continue
            executed.append(trade)
            logger.info(
                "[%s] Logged trade: %s %d %s", session_id, trade.action, trade.quantity, trade.symbol,
            )

        return executed


def parse_trades(final_text: str | None) -> list[TradeInstruction]:
    """Well-formed trade instructions in `final_text`, in order."""
    if not isinstance(final_text, str) or not final_text:
        return []

    payload = parse_json_object(strip_code_fences(final_text))
    if payload is None:
        return []

    items = payload.get("trades")
    if not isinstance(items, list):
        return []

    instructions: list[TradeInstruction] = []
    for item in items:
        instruction = _parse_item(item)
        if instruction is not None:
            instructions.append(instruction)
    return instructions


def _parse_item(item: Any) -> TradeInstruction | None:
    if not isinstance(item, dict):
        return None
    qty = item.get("qty")
    # bool is an int subclass; "10" and 10.5 are not integer quantities
    if isinstance(qty, bool) or not isinstance(qty, int):
        return None
    try:
        return TradeInstruction.model_validate(item)
    except ValidationError:
        logger.debug("Skipping malformed trade item: %r", item)
        return None
