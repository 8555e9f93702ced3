# =============================================================================
# Model Output Schemas — Pydantic V2
# =============================================================================
#
# The shapes a generative model is instructed to emit. The sanitizer uses
# these purely for validation; callers receive plain dicts.
#
#   Agent mode (planning call):
#     Plan        {"type": "plan", "steps": [...], "final_prompt": "..."}
#     FinalAnswer {"type": "final_answer", "answer_plain": "...",
#                  "answer_verbose": "..."}
#
#   Advice mode (trade recommendations):
#     AdvicePayload {"trades": [...], "disclaimer_required": true,
#                    "intent": "TRADE" | "INFO"}
# =============================================================================

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator

PLAN_TYPE = "plan"
FINAL_ANSWER_TYPE = "final_answer"

DEFAULT_FINAL_PROMPT = "Provide a helpful response based on the tool results."


def _lower_type(value: Any) -> Any:
    return value.lower() if isinstance(value, str) else value


class PlanStep(BaseModel):
    tool: str = Field(min_length=1)
    args: dict[str, Any] = Field(default_factory=dict)
    why: str = ""


class Plan(BaseModel):
    type: Literal["plan"]
    steps: list[PlanStep]
    final_prompt: str = DEFAULT_FINAL_PROMPT

    @field_validator("type", mode="before")
    @classmethod
    def normalise_type(cls, value: Any) -> Any:
        return _lower_type(value)


class FinalAnswer(BaseModel):
    type: Literal["final_answer"]
    answer_plain: str
    answer_verbose: str

    @field_validator("type", mode="before")
    @classmethod
    def normalise_type(cls, value: Any) -> Any:
        return _lower_type(value)


class TradeInstruction(BaseModel):
    symbol: str = Field(min_length=1)
    action: str
    qty: int = Field(gt=0)

    @field_validator("action")
    @classmethod
    def check_action(cls, value: str) -> str:
        action = value.strip().upper()
        if action not in {"BUY", "SELL", "HOLD"}:
            raise ValueError(f"unsupported trade action '{value}'")
        return action


class AdvicePayload(BaseModel):
    trades: list[TradeInstruction]
    disclaimer_required: bool
    intent: str

    @field_validator("intent")
    @classmethod
    def check_intent(cls, value: str) -> str:
        if value.upper() not in {"TRADE", "INFO"}:
            raise ValueError(f"unsupported intent '{value}'")
        return value
