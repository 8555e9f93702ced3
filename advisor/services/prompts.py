# =============================================================================
# Prompt Builder — Plan/FinalAnswer Protocol Prompts
# =============================================================================
#
# Composes model input for the two model calls of a turn:
#
#   Planning call  (build_prompt)
#     system: fixed instructions (tool catalogue, operating rules,
#             response-format contract)
#     turn:   aggregated context, last-N chat messages, the literal query
#
#   Final call     (build_final_prompt)
#     the plan's final_prompt plus the tool transcript; asks for plain
#     conversational text with an optional trailing advice JSON block
#
# The response-format contract obliges the model to emit exactly one of
# two tagged JSON shapes (Plan or FinalAnswer). The Output Sanitizer
# enforces it on the way back.
# =============================================================================

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from typing import Protocol

from advisor.models.domain import ChatMessage
from advisor.services.context import AggregatedContext, format_history


class DescribedTool(Protocol):
    name: str
    description: str


@dataclass
class BuiltPrompt:
    system: str
    turn: str

    @property
    def text(self) -> str:
        return f"{self.system}\n\n{self.turn}"


# ---------------------------------------------------------------------------
# Fixed Instructions
# ---------------------------------------------------------------------------

_ROLE = (
    "You are FinAssist, a financial portfolio assistant. You answer the "
    "user's question using ONLY the supplied context (portfolio, market "
    "prices, retrieved news and documents, conversation history) and the "
    "results of the tools listed below."
)

_RULES = (
    "Operating rules:\n"
    "- Call a tool when the question needs data the context does not "
    "contain (current prices, holdings, profile, news)\n"
    "- Never invent prices, holdings or news\n"
    "- Use the user's risk profile and goal to ground recommendations\n"
    "- Never promise returns or describe an investment as risk-free\n"
    "- Keep answers concise and end advice with a short note that this is "
    "informational, not licensed financial advice"
)

_FORMAT_CONTRACT = """\
Response format (MANDATORY):
Reply with exactly ONE JSON object and nothing else. No markdown, no \
commentary before or after it. It must be one of these two shapes.

1) If you need tools, a plan:
{
  "type": "plan",
  "steps": [
    {"tool": "<tool name>", "args": {"<arg>": "<value>"}, "why": "<reason>"}
  ],
  "final_prompt": "<instruction for writing the final answer from the tool results>"
}

2) If you can answer now, a final answer:
{
  "type": "final_answer",
  "answer_plain": "<short plain-text answer>",
  "answer_verbose": "<full answer>"
}

Steps run in the order given. Only use tool names from the catalogue."""

_FINAL_INSTRUCTIONS = """\
You are writing the FINAL message the user will see.
- Write plain, natural conversational text. Do NOT wrap the answer in JSON.
- Cite sources from the tool results naturally (e.g., "According to ...").
- End with a brief note that you are not a licensed financial advisor.
- Only if you recommend concrete trades, append ONE fenced JSON block at \
the very end, and nothing after it:
```json
{
  "trades": [{"symbol": "TICKER", "action": "BUY", "qty": 10}],
  "disclaimer_required": true,
  "intent": "TRADE"
}
```"""


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def build_tool_catalogue(tools: Sequence[DescribedTool]) -> str:
    if not tools:
        return "Available tools: none."
    lines = [f"- {tool.name}: {tool.description}" for tool in tools]
    return "Available tools:\n" + "\n".join(lines)


def build_system_prompt(tools: Sequence[DescribedTool]) -> str:
    return "\n\n".join(
        [_ROLE, build_tool_catalogue(tools), _RULES, _FORMAT_CONTRACT]
    )


def build_prompt(
    query: str,
    context: AggregatedContext,
    history: Sequence[ChatMessage],
    tools: Sequence[DescribedTool],
    history_limit: int = 6,
    session_id: str | None = None,
) -> BuiltPrompt:
    """
    Build the planning-call prompt.

    Only the last `history_limit` messages are included; the query is
    embedded verbatim as the final section. When `session_id` is given
    the model is told to pass it as `user_id` to session-scoped tools.
    """
    recent = list(history)[-history_limit:] if history_limit > 0 else []

    sections = [
        "=== CONTEXT ===",
        context.health or "",
        f"Portfolio:\n{context.portfolio}",
        f"Market Prices:\n{context.market}",
        f"Recent News & Documents:\n{context.documents}",
        "=== END CONTEXT ===",
        f"Conversation so far:\n{format_history(recent)}",
        f"Session ID (use as user_id for tools): {session_id}" if session_id else "",
        f"User Query: {query}",
    ]
    turn = "\n\n".join(s for s in sections if s)

    return BuiltPrompt(system=build_system_prompt(tools), turn=turn)


def build_final_prompt(final_instruction: str, tool_transcript: str) -> BuiltPrompt:
    """Build the Final-phase prompt from a plan's instruction and tool output."""
    turn = (
        f"Tool Results:\n{tool_transcript or '(no tool output)'}\n\n"
        f"{final_instruction}\n\n"
        "Begin your response now in plain text:"
    )
    return BuiltPrompt(system=_FINAL_INSTRUCTIONS, turn=turn)
