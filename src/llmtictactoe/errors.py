"""
Error taxonomy shared by the engine, the agent protocol, the controller and the ledger.

- Validation errors (MoveError subclasses): deterministic, recoverable, reported to the caller.
- Protocol failures (AgentFailure subclasses): consumed inside the agent retry loop.
- Terminal agent errors (AgentError subclasses): end an agent turn without a move.
- CompletionError / PersistenceError: collaborator failures (transport, history store).

Expected failures travel as values on result objects; the str() of each error is the
text shown to humans and re-rendered into correction prompts for agents.
"""
from __future__ import annotations


class TicTacToeError(Exception):
    """Base class for every error this package reports."""


# ---------------- Validation -----------------
class MoveError(TicTacToeError):
    pass


class OutOfRangeError(MoveError):
    def __init__(self, value):
        self.value = value
        if isinstance(value, int) and not isinstance(value, bool):
            shown = str(value + 1)
        else:
            shown = repr(value)
        super().__init__(f"Invalid square number: {shown}. Must correspond to an integer between 1 and 9.")


class OccupiedError(MoveError):
    def __init__(self, index: int, side):
        self.index = index
        self.side = side
        super().__init__(f"Square {index + 1} is already taken by {side}.")


class GameOverError(MoveError):
    def __init__(self, message: str = "Game is already over."):
        super().__init__(message)


class NotYourTurnError(MoveError):
    def __init__(self, message: str = "It is not your turn."):
        super().__init__(message)


class SeatBusyError(MoveError):
    def __init__(self, seat):
        self.seat = seat
        super().__init__(f"Seat {seat} has an agent request in flight.")


# ---------------- Agent protocol -----------------
class AgentFailure(TicTacToeError):
    """One failed attempt inside the agent retry loop."""


class ParseFailure(AgentFailure):
    def __init__(self, response: str):
        self.response = response
        super().__init__(f'Your response did not contain a valid move number (1-9). Response: "{response}"')


class IllegalSquareFailure(AgentFailure):
    def __init__(self, square: int, cause: MoveError):
        self.square = square
        self.cause = cause
        super().__init__(f"Square {square} cannot be played: {cause}")


class AgentError(TicTacToeError):
    """Terminal outcome of an agent turn; the turn stays unresolved."""


class AgentExhaustedError(AgentError):
    def __init__(self, attempts: int):
        self.attempts = attempts
        super().__init__(f"Agent failed to provide a valid move after {attempts} attempts.")


class TransportError(AgentError):
    pass


class StaleResponseError(AgentError):
    def __init__(self):
        super().__init__("The board changed while the agent was thinking; response discarded.")


# ---------------- Collaborators -----------------
class CompletionError(TicTacToeError):
    pass


class PersistenceError(TicTacToeError):
    pass
