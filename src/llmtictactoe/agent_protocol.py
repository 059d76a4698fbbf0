"""
AgentMoveProtocol: turn one agent seat's free-text replies into one applied board move.

Flow per request_move():
1) Build the prompt (rules, board, move format; on retry a correction for the last failure).
2) Append it to the seat transcript and await the completer.
3) Parse the LAST square number 1-9 in the reply; apply it through BoardEngine.apply_move.
4) Parse failures and illegal squares each consume one attempt and feed a correction back.
5) Transport failures abort the request at once; an exhausted budget stalls the turn.

The transcript is append-only per seat and doubles as the chat context sent to the model
(error entries are kept for display only and are never sent).
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from .board import BoardEngine, Mark
from .config import SETTINGS
from .errors import (
    AgentError,
    AgentExhaustedError,
    AgentFailure,
    CompletionError,
    IllegalSquareFailure,
    ParseFailure,
    StaleResponseError,
    TransportError,
)
from .llm_client import Completer
from .move_parser import parse_square, square_to_index
from .prompting import FORMAT_HINT, PromptConfig, render_custom_prompt

ROLES = ("system", "user", "assistant", "error")
SENT_ROLES = ("system", "user", "assistant")


@dataclass(frozen=True)
class ChatTurn:
    role: str
    text: str
    agent_label: Optional[str] = None

    def __post_init__(self):
        if self.role not in ROLES:
            raise ValueError(f"Unknown chat role: {self.role}")

    def to_dict(self) -> dict:
        d = {"role": self.role, "content": self.text}
        if self.agent_label:
            d["model"] = self.agent_label
        return d


@dataclass(frozen=True)
class AgentMoveResult:
    """Either the accepted index, or the terminal AgentError; failures lists every consumed attempt."""

    ok: bool
    seat: Mark
    index: Optional[int] = None
    attempts: int = 0
    raw: Optional[str] = None
    error: Optional[AgentError] = None
    failures: tuple = ()

    @property
    def square(self) -> Optional[int]:
        return None if self.index is None else self.index + 1


@dataclass
class AgentMoveProtocol:
    seat: Mark
    completer: Completer
    model: Optional[str] = None
    max_attempts: int = SETTINGS.agent_max_attempts
    prompt_cfg: PromptConfig = field(default_factory=PromptConfig)
    transcript: List[ChatTurn] = field(default_factory=list)

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self.log = logging.getLogger(f"AgentMoveProtocol.{self.seat}")

    def label(self) -> str:
        return self.model or f"Agent_{self.seat}"

    def reset(self) -> None:
        self.transcript = []

    def history(self) -> List[ChatTurn]:
        return list(self.transcript)

    # ---------------- Prompt building -----------------
    def _values(self, engine: BoardEngine) -> Dict[str, str]:
        return {
            "SIDE": str(self.seat),
            "RULES": engine.describe_rules(),
            "BOARD": engine.describe_board(),
            "MOVE_FORMAT": engine.describe_move_format(),
        }

    def build_prompt(self, engine: BoardEngine, failure: Optional[AgentFailure] = None, attempt: int = 1) -> str:
        values = self._values(engine)
        if failure is None:
            return render_custom_prompt(self.prompt_cfg.template, values)
        if isinstance(failure, IllegalSquareFailure):
            hint = engine.describe_invalid_move_hint(str(failure.cause))
        else:
            hint = f"{FORMAT_HINT}\n{engine.describe_move_format()}"
        values.update({
            "ATTEMPT": str(attempt - 1),
            "MAX_ATTEMPTS": str(self.max_attempts),
            "ERROR": str(failure),
            "HINT": hint,
        })
        return render_custom_prompt(self.prompt_cfg.correction_template, values)

    def build_messages(self) -> List[Dict[str, str]]:
        return [{"role": t.role, "content": t.text} for t in self.transcript if t.role in SENT_ROLES]

    def _append(self, role: str, text: str) -> None:
        self.transcript.append(ChatTurn(role, text, self.label() if role == "assistant" else None))

    # ---------------- Move request -----------------
    async def request_move(self, engine: BoardEngine) -> AgentMoveResult:
        generation, move_count = engine.generation, engine.move_count
        if engine.status.terminal or engine.side_to_move is not self.seat:
            raise RuntimeError(f"request_move called for {self.seat} but the engine is not waiting on that seat")
        if not self.transcript:
            self._append("system", render_custom_prompt(self.prompt_cfg.system_instructions, {"SIDE": str(self.seat)}))

        failures: List[AgentFailure] = []
        raw: Optional[str] = None
        for attempt in range(1, self.max_attempts + 1):
            prompt = self.build_prompt(engine, failures[-1] if failures else None, attempt)
            self._append("user", prompt)
            self.log.info("%s move attempt %d/%d", self.label(), attempt, self.max_attempts)
            try:
                raw = await self.completer.send(self.build_messages(), self.model)
            except CompletionError as exc:
                if self._stale(engine, generation, move_count):
                    return self._stale_result(attempt, failures)
                self._append("error", str(exc))
                self.log.error("%s completion failed on attempt %d: %s", self.label(), attempt, exc)
                return AgentMoveResult(ok=False, seat=self.seat, attempts=attempt, error=TransportError(str(exc)), failures=tuple(failures))
            if self._stale(engine, generation, move_count):
                return self._stale_result(attempt, failures, raw)

            self._append("assistant", raw)
            self.log.debug("%s raw reply: %r", self.label(), raw)

            parsed = parse_square(raw)
            if not parsed.get("ok"):
                failure: AgentFailure = ParseFailure(raw)
                failures.append(failure)
                self._append("error", f"LLM Format Error: {failure}")
                self.log.warning("%s format error on attempt %d (%s)", self.label(), attempt, parsed.get("reason"))
                continue

            square = parsed["square"]
            result = engine.apply_move(square_to_index(square), self.seat)
            if not result.ok:
                failure = IllegalSquareFailure(square, result.error)
                failures.append(failure)
                self._append("error", f"LLM Invalid Move: {result.error}")
                self.log.warning("%s invalid move on attempt %d: %s", self.label(), attempt, result.error)
                continue

            self.log.info("%s played square %d", self.label(), square)
            return AgentMoveResult(ok=True, seat=self.seat, index=result.index, attempts=attempt, raw=raw, failures=tuple(failures))

        exhausted = AgentExhaustedError(self.max_attempts)
        self.log.error("%s: %s", self.label(), exhausted)
        return AgentMoveResult(ok=False, seat=self.seat, attempts=self.max_attempts, raw=raw, error=exhausted, failures=tuple(failures))

    @staticmethod
    def _stale(engine: BoardEngine, generation: int, move_count: int) -> bool:
        return engine.generation != generation or engine.move_count != move_count

    def _stale_result(self, attempt: int, failures: List[AgentFailure], raw: Optional[str] = None) -> AgentMoveResult:
        self.log.warning("%s reply arrived after the board changed; discarding", self.label())
        return AgentMoveResult(ok=False, seat=self.seat, attempts=attempt, raw=raw, error=StaleResponseError(), failures=tuple(failures))
