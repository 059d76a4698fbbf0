from __future__ import annotations
"""
Completion client over an OpenAI-compatible chat-completions endpoint (OpenRouter by default).

The agent protocol does not care which SDK or provider is in use. It talks to a
Completer with `messages` + `model` and gets raw text back, or a CompletionError.
"""
import asyncio
import logging
import random
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Protocol, TYPE_CHECKING

from openai import AsyncOpenAI, OpenAIError

from .config import SETTINGS
from .errors import CompletionError

if TYPE_CHECKING:  # pragma: no cover
    from .catalog import ModelCatalog

log = logging.getLogger("llm_client")


class Completer(Protocol):
    async def send(self, messages: List[Dict[str, str]], model: Optional[str]) -> str:
        """Return the assistant text for the conversation, or raise CompletionError."""
        ...


@dataclass
class UsageTotals:
    input_tokens: int = 0
    output_tokens: int = 0
    cost: float = 0.0
    requests: int = 0

    def to_dict(self) -> dict:
        return {
            "input_tokens": self.input_tokens,
            "output_tokens": self.output_tokens,
            "cost": round(self.cost, 6),
            "requests": self.requests,
        }


@dataclass
class OpenRouterCompleter:
    """Chat-completions transport with jittered exponential backoff and usage accounting."""

    api_key: Optional[str] = None
    base_url: Optional[str] = None
    timeout_s: float = SETTINGS.responses_timeout_s
    retries: int = SETTINGS.responses_retries
    catalog: Optional["ModelCatalog"] = None
    client: Optional[AsyncOpenAI] = None
    usage: Dict[str, UsageTotals] = field(default_factory=dict)

    def __post_init__(self):
        if self.client is None:
            self.client = AsyncOpenAI(
                api_key=self.api_key or SETTINGS.llm_api_key or None,
                base_url=self.base_url or SETTINGS.api_base or None,
            )

    async def send(self, messages: List[Dict[str, str]], model: Optional[str]) -> str:
        if not model:
            raise CompletionError("Model is required; configure the agent seat with a model id.")
        delay = 0.5
        last_exc: Exception | None = None
        for attempt in range(self.retries + 1):
            try:
                rsp = await self.client.chat.completions.create(
                    model=model,
                    messages=messages,
                    timeout=self.timeout_s,
                )
            except OpenAIError as exc:
                last_exc = exc
                if attempt >= self.retries:
                    log.exception("Chat request failed after %d attempts", attempt + 1)
                    break
                sleep_s = delay * (2 ** attempt) * (0.8 + 0.4 * random.random())
                await asyncio.sleep(min(sleep_s, 10.0))
                continue
            self._record_usage(model, rsp)
            text = _extract_text(rsp)
            if not text:
                log.warning("Empty response from model %s", model)
            return text.strip()
        raise CompletionError(f"LLM API Error: {last_exc}") from last_exc

    def _record_usage(self, model: str, rsp) -> None:
        totals = self.usage.setdefault(model, UsageTotals())
        totals.requests += 1
        usage = getattr(rsp, "usage", None)
        if usage is None:
            return
        inp = getattr(usage, "prompt_tokens", 0) or 0
        out = getattr(usage, "completion_tokens", 0) or 0
        totals.input_tokens += inp
        totals.output_tokens += out
        info = self.catalog.get(model) if self.catalog else None
        if info is not None:
            totals.cost += inp / 1_000_000 * info.prompt_cost_per_m + out / 1_000_000 * info.completion_cost_per_m


def _extract_text(rsp) -> str:
    if not getattr(rsp, "choices", None):
        return ""
    msg = rsp.choices[0].message
    content = getattr(msg, "content", None)
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = []
        for c in content:
            if isinstance(c, dict):
                if c.get("type") == "text" and isinstance(c.get("text"), str):
                    parts.append(c["text"])
                continue
            t = getattr(c, "text", None)
            if isinstance(t, str):
                parts.append(t)
        return "\n".join(parts)
    return ""
