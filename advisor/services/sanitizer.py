# =============================================================================
# Output Sanitizer — Structured Output from Noisy Model Text
# =============================================================================
#
# Models wrap their JSON in commentary, code fences and scratchpad blocks.
# This module turns any such text into a schema-conforming value:
#
#   1. STRIP SCRATCHPAD  remove <think>…</think> style segments
#                        (case-insensitive, non-greedy, spanning lines)
#   2. UNFENCE           unwrap a ```json … ``` wrapper around the payload;
#                        fences inside string values are kept
#   3. LOCATE            first "{" to last "}"; text before is commentary,
#                        text after is discarded
#   4. VALIDATE          json.loads + Pydantic schema for the mode
#   5. FALLBACK          canonical payload on any failure
#
# sanitize() is total: it never raises, whatever the input.
#
# MODES:
#   "advice" → AdvicePayload, fallback {"trades": [], "disclaimer_required":
#              true, "intent": "INFO"}
#   "agent"  → Plan | FinalAnswer, fallback is a FinalAnswer carrying the
#              cleaned text, so a non-JSON reply still becomes an answer
#
# filter_commentary() is the content-safety pass for the advice path: it
# drops commentary sentences containing a banned phrase and leaves the
# trailing structured payload byte-for-byte intact.
# =============================================================================

from __future__ import annotations

import json
import logging
import re
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any, Literal

from pydantic import ValidationError

from advisor.config import get_heuristics
from advisor.models.outputs import (
    FINAL_ANSWER_TYPE,
    PLAN_TYPE,
    AdvicePayload,
    FinalAnswer,
    Plan,
)

logger = logging.getLogger(__name__)

SanitizeMode = Literal["advice", "agent"]

# An opening fence (optionally with a language tag) at the end of the
# commentary, immediately before the payload's first brace.
_TRAILING_FENCE_OPENER = re.compile(r"```[ \t]*[A-Za-z0-9_-]*[ \t]*\r?\n?[ \t]*$")
# The matching closing fence right after the payload's last brace.
_LEADING_FENCE_CLOSER = re.compile(r"^\s*```")
_SENTENCE_SPLIT = re.compile(r"(?<=[.!?])\s+")


def advice_fallback() -> dict[str, Any]:
    return {"trades": [], "disclaimer_required": True, "intent": "INFO"}


def agent_fallback(text: str) -> dict[str, Any]:
    return {
        "type": FINAL_ANSWER_TYPE,
        "answer_plain": text,
        "answer_verbose": text,
    }


@dataclass
class SanitizedOutput:
    """
    Result of cleaning one model reply.

    text: the reply with scratchpad segments and the payload fence removed
    payload: the validated structured value, or the mode's fallback
    is_fallback: True when payload is the fallback
    """

    text: str
    payload: dict[str, Any]
    is_fallback: bool


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def sanitize(raw_text: str | None, mode: SanitizeMode = "advice") -> dict[str, Any]:
    """Return the structured value in `raw_text`, or the mode's fallback."""
    return clean_output(raw_text, mode).payload


def clean_output(
    raw_text: str | None,
    mode: SanitizeMode = "advice",
    scratchpad_tags: Iterable[str] | None = None,
) -> SanitizedOutput:
    """
    Run the full strip → unfence → locate → validate pipeline.

    Args:
        raw_text: Raw model output. None and non-strings are treated as "".
        mode: "advice" or "agent" (see module header).
        scratchpad_tags: Marker names to strip. Defaults to the configured
            heuristic tables.
    """
    text = raw_text if isinstance(raw_text, str) else ""
    tags = tuple(scratchpad_tags) if scratchpad_tags is not None else (
        get_heuristics().scratchpad_tags
    )

    cleaned = strip_code_fences(strip_scratchpad(text, tags)).strip()
    payload = _parse_payload(cleaned, mode)

    if payload is None:
        logger.debug("Sanitizer fallback (mode=%s, length=%d)", mode, len(text))
        fallback = advice_fallback() if mode == "advice" else agent_fallback(cleaned)
        return SanitizedOutput(text=cleaned, payload=fallback, is_fallback=True)

    return SanitizedOutput(text=cleaned, payload=payload, is_fallback=False)


def strip_scratchpad(text: str, tags: Iterable[str]) -> str:
    """Remove every <tag>…</tag> segment for the given marker names."""
    for tag in tags:
        pattern = re.compile(
            rf"<{re.escape(tag)}\b[^>]*>.*?</{re.escape(tag)}\s*>",
            re.IGNORECASE | re.DOTALL,
        )
        text = pattern.sub("", text)
    return text


def strip_code_fences(text: str) -> str:
    """
    Unwrap the code fence around the structured payload, if there is one.

    Only an opening fence directly before the first "{" paired with a
    closing fence directly after the last "}" is removed. Fences elsewhere,
    including any inside JSON string values, are left untouched.
    """
    located = locate_payload(text)
    if located is None:
        return text

    commentary, span = located
    rest = text[len(commentary) + len(span):]
    opener = _TRAILING_FENCE_OPENER.search(commentary)
    closer = _LEADING_FENCE_CLOSER.match(rest)
    if opener is None or closer is None:
        return text
    return commentary[:opener.start()] + span + rest[closer.end():]


def locate_payload(text: str) -> tuple[str, str] | None:
    """
    Split text at the outermost brace span.

    Returns (commentary, span) where span runs from the first "{" to the
    last "}" inclusive, or None when no such span exists.
    """
    start = text.find("{")
    end = text.rfind("}")
    if start < 0 or end <= start:
        return None
    return text[:start], text[start : end + 1]


def parse_json_object(text: str) -> dict[str, Any] | None:
    """Parse the located brace span as a JSON object, or return None."""
    located = locate_payload(text)
    if located is None:
        return None
    try:
        value = json.loads(located[1])
    except (json.JSONDecodeError, ValueError):
        return None
    return value if isinstance(value, dict) else None


def filter_commentary(
    raw_text: str,
    banned_phrases: Iterable[str] | None = None,
) -> str:
    """
    Drop commentary sentences that contain a banned phrase.

    The commentary is everything before the structured payload (including
    an opening code fence directly in front of it). The payload and
    whatever follows it are returned unchanged.
    """
    if not raw_text:
        return raw_text or ""

    phrases = tuple(
        p.lower() for p in (
            banned_phrases if banned_phrases is not None
            else get_heuristics().banned_phrases
        ) if p
    )

    split_at = _payload_start(raw_text)
    commentary, payload = raw_text[:split_at], raw_text[split_at:]
    if not phrases or not commentary.strip():
        return raw_text

    sentences = [s for s in _SENTENCE_SPLIT.split(commentary.strip()) if s]
    kept = [
        s for s in sentences
        if not any(phrase in s.lower() for phrase in phrases)
    ]
    dropped = len(sentences) - len(kept)
    if dropped == 0:
        return raw_text

    logger.info("Content filter dropped %d commentary sentence(s)", dropped)
    rebuilt = " ".join(kept)
    if not payload:
        return rebuilt
    return f"{rebuilt}\n\n{payload}" if rebuilt else payload


# ---------------------------------------------------------------------------
# Internal Helpers
# ---------------------------------------------------------------------------


def _payload_start(text: str) -> int:
    """Index where the structured payload (or its opening fence) begins."""
    located = locate_payload(text)
    if located is None:
        return len(text)
    brace = len(located[0])
    fence = _TRAILING_FENCE_OPENER.search(text[:brace])
    return fence.start() if fence else brace


def _parse_payload(cleaned: str, mode: SanitizeMode) -> dict[str, Any] | None:
    value = parse_json_object(cleaned)
    if value is None:
        return None

    try:
        if mode == "advice":
            AdvicePayload.model_validate(value)
        else:
            kind = str(value.get("type", "")).lower()
            if kind == PLAN_TYPE:
                Plan.model_validate(value)
            elif kind == FINAL_ANSWER_TYPE:
                FinalAnswer.model_validate(value)
            else:
                return None
    except ValidationError as e:
        logger.debug(
            "Sanitizer schema validation failed (mode=%s): %d error(s)",
            mode, e.error_count(),
        )
        return None

    return value
