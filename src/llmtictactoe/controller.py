"""
TurnController: one Tic-Tac-Toe game between two seats, each Human or Agent.

- Owns a BoardEngine, the X/O PlayerConfigs and one AgentMoveProtocol per agent seat.
- submit_human_move() / advance_if_agent_turn() serialize turns and return a TurnOutcome
  carrying an immutable GameSnapshot; expected failures are values, never raised.
- Records the finished game in the MatchHistoryLedger exactly once per game.
- restart() and swap_seats() are separate operations; in-flight agent replies that arrive
  after a restart are discarded by the protocol's stale-response guard.
- export_history() / dump_history_json() give a structured per-move record for viewers.

"""
from __future__ import annotations

import json
import logging
import os
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Dict, List, Optional

from .agent_protocol import AgentMoveProtocol, AgentMoveResult, ChatTurn
from .board import BoardEngine, GameStatus, Mark
from .config import SETTINGS
from .errors import AgentError, MoveError, NotYourTurnError, PersistenceError, SeatBusyError
from .history import LedgerWrite, MatchHistoryLedger, MatchRecord, Outcome
from .llm_client import Completer
from .move_parser import index_to_square
from .players import PlayerConfig
from .prompting import PromptConfig

GAME_KIND = "TicTacToe"


@dataclass(frozen=True)
class GameSnapshot:
    cells: tuple
    status: GameStatus
    side_to_move: Mark
    seats: tuple  # (PlayerConfig for X, PlayerConfig for O)
    status_message: str
    awaiting: Optional[Mark]
    thinking: tuple  # seats with an agent request in flight

    def config_for(self, seat: Mark) -> PlayerConfig:
        return self.seats[0] if seat is Mark.X else self.seats[1]

    def to_dict(self) -> dict:
        return {
            "board": [str(c) if c is not None else None for c in self.cells],
            "status": self.status.value,
            "side_to_move": str(self.side_to_move),
            "awaiting": str(self.awaiting) if self.awaiting else None,
            "seats": {"X": self.seats[0].to_dict(), "O": self.seats[1].to_dict()},
            "status_message": self.status_message,
            "thinking": [str(s) for s in self.thinking],
        }


@dataclass(frozen=True)
class TurnOutcome:
    """What happened on one controller call.

    error: the move was rejected (MoveError) or the agent turn stalled (AgentError).
    history_error: the game finished but the durable history write failed.
    """

    ok: bool
    snapshot: GameSnapshot
    index: Optional[int] = None
    error: Optional[Exception] = None
    agent: Optional[AgentMoveResult] = None
    recorded: Optional[MatchRecord] = None
    history_error: Optional[PersistenceError] = None

    @property
    def stalled(self) -> bool:
        return isinstance(self.error, AgentError)

    @property
    def rejected(self) -> bool:
        return isinstance(self.error, MoveError)


ProtocolFactory = Callable[[Mark, PlayerConfig], AgentMoveProtocol]


class TurnController:
    def __init__(
        self,
        completer: Optional[Completer] = None,
        ledger: Optional[MatchHistoryLedger] = None,
        x: Optional[PlayerConfig] = None,
        o: Optional[PlayerConfig] = None,
        max_attempts: int = SETTINGS.agent_max_attempts,
        prompt_cfg: Optional[PromptConfig] = None,
        protocol_factory: Optional[ProtocolFactory] = None,
    ):
        self.log = logging.getLogger("TurnController")
        self.engine = BoardEngine()
        self.completer = completer
        self.ledger = ledger
        self.max_attempts = max_attempts
        self.prompt_cfg = prompt_cfg or PromptConfig()
        self._protocol_factory = protocol_factory or self._default_protocol
        self._configs: Dict[Mark, PlayerConfig] = {
            Mark.X: x or PlayerConfig.human(),
            Mark.O: o or PlayerConfig.human(),
        }
        self._protocols: Dict[Mark, Optional[AgentMoveProtocol]] = {}
        for seat in Mark:
            self._protocols[seat] = self._build_protocol(seat)
        # seat -> engine generation of the request in flight
        self._pending: Dict[Mark, int] = {}
        self._recorded_generation: Optional[int] = None
        self.last_write: Optional[LedgerWrite] = None
        self.moves: List[dict] = []
        self.start_ts = time.time()

    # ---------------- Seats -----------------
    def _default_protocol(self, seat: Mark, config: PlayerConfig) -> AgentMoveProtocol:
        if self.completer is None:
            raise ValueError("An agent seat needs a completer")
        return AgentMoveProtocol(
            seat=seat,
            completer=self.completer,
            model=config.agent_model_id,
            max_attempts=self.max_attempts,
            prompt_cfg=self.prompt_cfg,
        )

    def _build_protocol(self, seat: Mark) -> Optional[AgentMoveProtocol]:
        config = self._configs[seat]
        if not config.is_agent:
            return None
        return self._protocol_factory(seat, config)

    def config_for(self, seat: Mark) -> PlayerConfig:
        return self._configs[seat]

    def protocol_for(self, seat: Mark) -> Optional[AgentMoveProtocol]:
        return self._protocols[seat]

    def transcript(self, seat: Mark) -> List[ChatTurn]:
        proto = self._protocols[seat]
        return proto.history() if proto else []

    def configure_seat(self, seat: Mark, config: PlayerConfig) -> TurnOutcome:
        """Replace a seat's config. Refused while that seat's agent request is in flight."""
        if seat in self._pending:
            return TurnOutcome(ok=False, snapshot=self.snapshot(), error=SeatBusyError(seat))
        if config == self._configs[seat]:
            return TurnOutcome(ok=True, snapshot=self.snapshot())
        self.log.info("Setting Player %s config: %s", seat, config)
        self._configs[seat] = config
        self._protocols[seat] = self._build_protocol(seat)
        return TurnOutcome(ok=True, snapshot=self.snapshot())

    def swap_seats(self) -> TurnOutcome:
        """Exchange the X and O configs. Transcripts start over for the new roles."""
        if self._pending:
            busy = next(iter(self._pending))
            return TurnOutcome(ok=False, snapshot=self.snapshot(), error=SeatBusyError(busy))
        self._configs[Mark.X], self._configs[Mark.O] = self._configs[Mark.O], self._configs[Mark.X]
        for seat in Mark:
            self._protocols[seat] = self._build_protocol(seat)
        self.log.info("Swapped seats: X=%s O=%s", self._configs[Mark.X], self._configs[Mark.O])
        return TurnOutcome(ok=True, snapshot=self.snapshot())

    # ---------------- State -----------------
    def _awaiting(self) -> Optional[Mark]:
        if self.engine.status.terminal:
            return None
        return self.engine.side_to_move

    def status_message(self) -> str:
        status = self.engine.status
        if status is GameStatus.DRAW:
            return "Game over: Draw"
        if status.terminal:
            winner = status.winner
            return f"Game over: {winner} wins! ({self._configs[winner].label()})"
        seat = self.engine.side_to_move
        config = self._configs[seat]
        if config.is_agent:
            return f"Agent {seat} is thinking..."
        return f"Game ongoing. Human's turn ({seat})."

    def snapshot(self) -> GameSnapshot:
        board = self.engine.snapshot()
        return GameSnapshot(
            cells=board.cells,
            status=board.status,
            side_to_move=board.side_to_move,
            seats=(self._configs[Mark.X], self._configs[Mark.O]),
            status_message=self.status_message(),
            awaiting=self._awaiting(),
            thinking=tuple(s for s in Mark if s in self._pending),
        )

    def needs_agent_turn(self) -> bool:
        seat = self._awaiting()
        return seat is not None and self._configs[seat].is_agent

    # ---------------- Turns -----------------
    async def submit_human_move(self, index) -> TurnOutcome:
        seat = self._awaiting()
        if seat is None or self._configs[seat].is_agent:
            return TurnOutcome(ok=False, snapshot=self.snapshot(), error=NotYourTurnError())
        result = self.engine.apply_move(index, seat)
        if not result.ok:
            self.log.info("Invalid human move at %r: %s", index, result.error)
            return TurnOutcome(ok=False, snapshot=self.snapshot(), error=result.error)
        self._log_move(seat, result.index, actor="human")
        return await self._after_move(result.index)

    async def advance_if_agent_turn(self) -> TurnOutcome:
        seat = self._awaiting()
        if seat is None or not self._configs[seat].is_agent:
            return TurnOutcome(ok=True, snapshot=self.snapshot())
        if seat in self._pending:
            return TurnOutcome(ok=False, snapshot=self.snapshot(), error=SeatBusyError(seat))
        proto = self._protocols[seat]
        generation = self.engine.generation
        self._pending[seat] = generation
        try:
            result = await proto.request_move(self.engine)
        finally:
            if self._pending.get(seat) == generation:
                del self._pending[seat]
        if not result.ok:
            self.log.warning("Agent %s turn stalled: %s", seat, result.error)
            return TurnOutcome(ok=False, snapshot=self.snapshot(), error=result.error, agent=result)
        self._log_move(seat, result.index, actor="agent", model=proto.model, raw=result.raw, attempts=result.attempts)
        outcome = await self._after_move(result.index)
        return TurnOutcome(
            ok=True,
            snapshot=outcome.snapshot,
            index=result.index,
            agent=result,
            recorded=outcome.recorded,
            history_error=outcome.history_error,
        )

    async def play_agent_turns(self, max_turns: int = 9) -> TurnOutcome:
        """Advance while an agent is to move; stops on a stall, a human turn or game over."""
        outcome = TurnOutcome(ok=True, snapshot=self.snapshot())
        for _ in range(max_turns):
            if not self.needs_agent_turn():
                break
            outcome = await self.advance_if_agent_turn()
            if not outcome.ok:
                break
        return outcome

    async def _after_move(self, index: int) -> TurnOutcome:
        recorded = None
        history_error = None
        if self.engine.status.terminal:
            write = await self._record_match()
            if write is not None:
                recorded, history_error = write.record, write.error
        return TurnOutcome(ok=True, snapshot=self.snapshot(), index=index, recorded=recorded, history_error=history_error)

    async def _record_match(self) -> Optional[LedgerWrite]:
        generation = self.engine.generation
        if self.ledger is None or self._recorded_generation == generation:
            return None
        self._recorded_generation = generation
        status = self.engine.status
        if status is GameStatus.X_WINS:
            outcome = Outcome.SIDE_A
        elif status is GameStatus.O_WINS:
            outcome = Outcome.SIDE_B
        else:
            outcome = Outcome.DRAW
        side_a = self._configs[Mark.X].identity(Mark.X)
        side_b = self._configs[Mark.O].identity(Mark.O)
        self.log.info("Recording match: %s vs %s (%s)", side_a, side_b, status.value)
        write = await self.ledger.record_match(side_a, side_b, GAME_KIND, outcome)
        if write.error is not None:
            self.log.error("Failed to record match history: %s", write.error)
        self.last_write = write
        return write

    def restart(self) -> TurnOutcome:
        self.log.info("Resetting game")
        self.engine.reset()
        for proto in self._protocols.values():
            if proto is not None:
                proto.reset()
        self._pending.clear()
        self.moves = []
        self.start_ts = time.time()
        return TurnOutcome(ok=True, snapshot=self.snapshot())

    # ---------------- Export -----------------
    def _log_move(self, seat: Mark, index: int, actor: str, model: Optional[str] = None, raw: Optional[str] = None, attempts: int = 1) -> None:
        self.moves.append({
            "ply": len(self.moves) + 1,
            "side": str(seat),
            "square": index_to_square(index),
            "actor": actor,
            "model": model,
            "raw": raw,
            "attempts": attempts,
        })
        self.log.debug("Ply %d %s (%s) square %d", len(self.moves), seat, actor, index_to_square(index))

    def export_history(self) -> dict:
        """Return a structured representation of the game suitable for visualization."""
        snap = self.snapshot()
        data = {
            "game_kind": GAME_KIND,
            "players": {
                "X": self._configs[Mark.X].identity(Mark.X),
                "O": self._configs[Mark.O].identity(Mark.O),
            },
            "result": snap.status.value,
            "terminated": snap.status.terminal,
            "board": snap.to_dict()["board"],
            "moves": list(self.moves),
            "conversations": {
                str(seat): [t.to_dict() for t in self.transcript(seat)] for seat in Mark
            },
            "duration_s": round(time.time() - self.start_ts, 2),
        }
        return data

    def dump_history_json(self, path: Optional[str] = None) -> Optional[str]:
        """Write export_history() to path, or into SETTINGS.conversation_log_dir when path is a directory or unset."""
        path = path or SETTINGS.conversation_log_dir
        if not path:
            return None
        base, ext = os.path.splitext(path)
        if os.path.isdir(path) or ext == "":
            os.makedirs(path, exist_ok=True)
            ts = datetime.now().strftime("%Y%m%d-%H%M%S")
            path = os.path.join(path, f"hist_{ts}.json")
        else:
            dir_path = os.path.dirname(path)
            if dir_path:
                os.makedirs(dir_path, exist_ok=True)
        try:
            with open(path, "w", encoding="utf-8") as f:
                json.dump(self.export_history(), f, ensure_ascii=False, indent=2)
        except OSError:
            self.log.exception("Failed writing structured history")
            return None
        self.log.info("Wrote structured history to %s", path)
        return path
