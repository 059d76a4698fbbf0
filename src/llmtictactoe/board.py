"""
BoardEngine: centralized Tic-Tac-Toe state and prompt rendering helpers.

- Owns the 3x3 board (index 0..8, row-major), the side to move and the derived GameStatus.
- apply_move() validates and applies a move, returning a MoveResult instead of raising.
- describe_*() render rules, board and move format for agent prompts using squares 1-9.

Used by AgentMoveProtocol to build prompts and apply agent moves, and by TurnController
to apply human moves and detect the end of the game.

"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from .errors import GameOverError, MoveError, NotYourTurnError, OccupiedError, OutOfRangeError

log = logging.getLogger("BoardEngine")

WIN_LINES = (
    (0, 1, 2), (3, 4, 5), (6, 7, 8),  # rows
    (0, 3, 6), (1, 4, 7), (2, 5, 8),  # columns
    (0, 4, 8), (2, 4, 6),             # diagonals
)


class Mark(str, Enum):
    X = "X"
    O = "O"

    def __str__(self) -> str:
        return self.value

    @property
    def other(self) -> "Mark":
        return Mark.O if self is Mark.X else Mark.X


class GameStatus(str, Enum):
    ONGOING = "ongoing"
    DRAW = "draw"
    X_WINS = "x_wins"
    O_WINS = "o_wins"

    @property
    def terminal(self) -> bool:
        return self is not GameStatus.ONGOING

    @property
    def winner(self) -> Optional[Mark]:
        if self is GameStatus.X_WINS:
            return Mark.X
        if self is GameStatus.O_WINS:
            return Mark.O
        return None


@dataclass(frozen=True)
class BoardSnapshot:
    cells: tuple
    status: GameStatus
    side_to_move: Mark
    move_count: int
    generation: int


@dataclass(frozen=True)
class MoveResult:
    """Outcome of BoardEngine.apply_move: ok with the index, or the validation error."""

    ok: bool
    index: Optional[int] = None
    side: Optional[Mark] = None
    status: Optional[GameStatus] = None
    error: Optional[MoveError] = None


class BoardEngine:
    """Plain rule engine; knows nothing about players or I/O."""

    def __init__(self):
        self._cells: list[Optional[Mark]] = [None] * 9
        self._side_to_move = Mark.X
        self._status = GameStatus.ONGOING
        self._move_count = 0
        # bumped on every reset so late agent replies can detect a new game
        self._generation = 0

    # ---------------- Accessors -----------------
    @property
    def cells(self) -> list[Optional[Mark]]:
        return list(self._cells)

    @property
    def side_to_move(self) -> Mark:
        return self._side_to_move

    @property
    def status(self) -> GameStatus:
        return self._status

    @property
    def move_count(self) -> int:
        return self._move_count

    @property
    def generation(self) -> int:
        return self._generation

    def empty_squares(self) -> list[int]:
        """Return the empty squares using 1-9 numbering."""
        return [i + 1 for i, c in enumerate(self._cells) if c is None]

    def snapshot(self) -> BoardSnapshot:
        return BoardSnapshot(
            cells=tuple(self._cells),
            status=self._status,
            side_to_move=self._side_to_move,
            move_count=self._move_count,
            generation=self._generation,
        )

    # ---------------- Move Application -----------------
    def apply_move(self, index, as_side: Optional[Mark] = None) -> MoveResult:
        error = self._validate(index, as_side)
        if error is not None:
            log.debug("Rejected move %r for %s: %s", index, as_side or self._side_to_move, error)
            return MoveResult(ok=False, index=index if isinstance(index, int) else None, side=as_side, status=self._status, error=error)
        side = self._side_to_move
        self._cells[index] = side
        self._move_count += 1
        self._status = self._compute_status()
        if self._status is GameStatus.ONGOING:
            self._side_to_move = side.other
        log.debug("Applied %s at square %d; status=%s", side, index + 1, self._status.value)
        return MoveResult(ok=True, index=index, side=side, status=self._status)

    def reset(self) -> None:
        self._cells = [None] * 9
        self._side_to_move = Mark.X
        self._status = GameStatus.ONGOING
        self._move_count = 0
        self._generation += 1

    def _validate(self, index, as_side: Optional[Mark]) -> Optional[MoveError]:
        if self._status.terminal:
            return GameOverError()
        if not isinstance(index, int) or isinstance(index, bool) or not 0 <= index <= 8:
            return OutOfRangeError(index)
        if as_side is not None and as_side is not self._side_to_move:
            return NotYourTurnError(f"It is Player {self._side_to_move}'s turn, not Player {as_side}'s.")
        occupant = self._cells[index]
        if occupant is not None:
            return OccupiedError(index, occupant)
        return None

    def _compute_status(self) -> GameStatus:
        for a, b, c in WIN_LINES:
            mark = self._cells[a]
            if mark is not None and mark == self._cells[b] == self._cells[c]:
                return GameStatus.X_WINS if mark is Mark.X else GameStatus.O_WINS
        if all(c is not None for c in self._cells):
            return GameStatus.DRAW
        return GameStatus.ONGOING

    # ---------------- Prompt Rendering -----------------
    @staticmethod
    def describe_rules() -> str:
        return (
            "Tic-Tac-Toe is a two-player game. Player X and Player O take turns marking spaces in a 3x3 grid. "
            "The player who succeeds in placing three of their marks in a horizontal, vertical, or diagonal row "
            "wins the game. If all 9 squares are filled and no player has won, the game is a draw."
        )

    @staticmethod
    def describe_move_format() -> str:
        return (
            "To make a move, specify the number of the square you want to play (1-9). "
            "The squares are numbered from left-to-right, top-to-bottom:\n"
            " 1 | 2 | 3 \n-----------\n 4 | 5 | 6 \n-----------\n 7 | 8 | 9 \n"
            "Only provide the single digit corresponding to an empty square."
        )

    def describe_board(self) -> str:
        lines = ["Current Board State:", "('X' = Player X, 'O' = Player O, 'e' = empty)"]
        for row in range(3):
            vals = [str(c) if c is not None else "e" for c in self._cells[row * 3:row * 3 + 3]]
            lines.append(f" {vals[0]} | {vals[1]} | {vals[2]} ")
            if row < 2:
                lines.append("-----------")
        lines.append("")
        if self._status is GameStatus.ONGOING:
            empty = ", ".join(str(s) for s in self.empty_squares())
            lines.append(f"Game is ongoing. It's Player {self._side_to_move}'s turn.")
            lines.append(f"Empty squares: {empty}")
        elif self._status is GameStatus.DRAW:
            lines.append("Game over: It's a draw!")
        else:
            lines.append(f"Game over: Player {self._status.winner} wins!")
        return "\n".join(lines)

    @staticmethod
    def describe_invalid_move_hint(error_text: str) -> str:
        return f"Invalid move: {error_text} Please choose an empty square (1-9)."
