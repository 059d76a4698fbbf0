"""
Prompt builders and config for agent move requests using a modular template.

Callers supply system instructions and a template string with placeholders
that are substituted per turn.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict

DEFAULT_SYSTEM = "You are playing Tic-Tac-Toe as Player {SIDE}. When asked for a move, answer with the number of one empty square."

DEFAULT_TEMPLATE = """You are Player {SIDE} in a game of Tic-Tac-Toe.

Rules:
{RULES}

Current Game State:
{BOARD}

Move Format:
{MOVE_FORMAT}

Based on the current board and rules, what is your next move? Please respond with only the number of the square (1-9) you choose."""

DEFAULT_CORRECTION_TEMPLATE = """Important: Your previous attempt (attempt {ATTEMPT} of {MAX_ATTEMPTS}) resulted in an error: "{ERROR}".
{HINT}

Current Game State:
{BOARD}

Please respond with only the number of an empty square (1-9)."""

FORMAT_HINT = "Invalid format in previous response. Please provide only the move number (1-9)."


@dataclass
class PromptConfig:
    """Configuration for shaping move prompts using a custom template."""

    system_instructions: str = DEFAULT_SYSTEM
    template: str = DEFAULT_TEMPLATE
    correction_template: str = DEFAULT_CORRECTION_TEMPLATE


def render_custom_prompt(template: str, values: Dict[str, str]) -> str:
    """Replace known placeholders in the template. Unknown tokens are left intact."""
    rendered = template or ""
    for key, val in values.items():
        rendered = rendered.replace(f"{{{key}}}", val)
    return rendered
