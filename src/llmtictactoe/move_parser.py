"""
Move parsing helpers for agent replies.

Agents are asked for a square number 1-9. The reply may contain reasoning that mentions
other numbers, so the LAST standalone digit 1-9 in the reply is authoritative.
Conversion to the engine's 0-8 index happens only in square_to_index().
"""
from __future__ import annotations

import re
from typing import TypedDict

SQUARE_RE = re.compile(r"\b([1-9])\b")


class ParsedMove(TypedDict, total=False):
    ok: bool
    square: int
    index: int
    reason: str


def _strip_code_fence(text: str) -> str:
    """Remove simple ``` fences if present."""
    text = text.strip()
    if text.startswith("```") and text.endswith("```"):
        inner = text.split("\n", 1)
        if len(inner) == 2:
            return inner[1].rsplit("\n", 1)[0].strip()
    return text


def square_to_index(square: int) -> int:
    return square - 1


def index_to_square(index: int) -> int:
    return index + 1


def parse_square(raw_text: str | None) -> ParsedMove:
    """Return the last square number 1-9 in the reply, or a reason on failure."""
    cleaned = _strip_code_fence(raw_text or "")
    if not cleaned:
        return {"ok": False, "reason": "empty_reply"}
    matches = SQUARE_RE.findall(cleaned)
    if not matches:
        return {"ok": False, "reason": "no_square_number"}
    square = int(matches[-1])
    return {"ok": True, "square": square, "index": square_to_index(square)}


__all__ = ["parse_square", "square_to_index", "index_to_square", "ParsedMove"]
