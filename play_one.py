"""
Play one Tic-Tac-Toe game in the terminal.

Each seat is 'human' (moves typed at the prompt) or a model id (moves from the completion API).
Finished games are recorded in the JSON match history. A stalled agent turn asks whether to retry.
"""
import argparse
import asyncio
import json
import logging

from llmtictactoe.board import GameStatus, Mark
from llmtictactoe.config import SETTINGS
from llmtictactoe.controller import TurnController
from llmtictactoe.history import JsonHistoryStore, MatchHistoryLedger
from llmtictactoe.llm_client import OpenRouterCompleter
from llmtictactoe.players import PlayerConfig


def load_json_config(path: str) -> dict:
    try:
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        logging.getLogger("play_one").error("Failed to read config %s: %s", path, e)
        return {}


def _print_board(ctrl: TurnController) -> None:
    print()
    print(ctrl.engine.describe_board())


def _read_square(ctrl: TurnController) -> int | None:
    seat = ctrl.engine.side_to_move
    raw = input(f"Player {seat}, choose a square (1-9, q to quit): ").strip().lower()
    if raw in {"q", "quit"}:
        return None
    try:
        return int(raw) - 1
    except ValueError:
        return -1  # rejected by the engine with an out-of-range message


async def play(ctrl: TurnController) -> GameStatus | None:
    while not ctrl.engine.status.terminal:
        _print_board(ctrl)
        if ctrl.needs_agent_turn():
            outcome = await ctrl.advance_if_agent_turn()
            if outcome.ok:
                print(f"Agent {outcome.agent.seat} played square {outcome.agent.square}.")
            elif outcome.stalled:
                print(f"Agent stalled: {outcome.error}")
                if input("Retry the agent turn? [y/N]: ").strip().lower() != "y":
                    return None
        else:
            index = _read_square(ctrl)
            if index is None:
                return None
            outcome = await ctrl.submit_human_move(index)
            if not outcome.ok:
                print(f"Illegal move: {outcome.error} Try again.")
        if outcome.history_error:
            print(f"Warning: could not save this result: {outcome.history_error}")
    _print_board(ctrl)
    print(ctrl.status_message())
    return ctrl.engine.status


async def main_async(args, cfg_dict: dict) -> None:
    def pick(key, default=None):
        v = getattr(args, key, None)
        if v is not None:
            return v
        if cfg_dict.get(key) is not None:
            return cfg_dict[key]
        return default

    x = PlayerConfig.parse(pick("x", "human"))
    o = PlayerConfig.parse(pick("o", "human"))
    ledger = MatchHistoryLedger(JsonHistoryStore(pick("history", SETTINGS.history_path)))
    await ledger.load()
    completer = OpenRouterCompleter() if (x.is_agent or o.is_agent) else None
    ctrl = TurnController(
        completer=completer,
        ledger=ledger,
        x=x,
        o=o,
        max_attempts=int(pick("attempts", SETTINGS.agent_max_attempts)),
    )
    await play(ctrl)
    out = pick("history_out")
    if out:
        ctrl.dump_history_json(out)
    side_a = x.identity(Mark.X)
    side_b = o.identity(Mark.O)
    recent = ledger.get_for_pair(side_a, side_b)
    if recent:
        print(f"\nRecent results {side_a} vs {side_b}:")
        for rec in recent:
            print(f"  {rec.timestamp:%Y-%m-%d %H:%M:%S}  {rec.side_a} vs {rec.side_b}: {rec.winner}")
    if completer is not None and completer.usage:
        logging.getLogger("play_one").info("Token usage: %s", {m: u.to_dict() for m, u in completer.usage.items()})


if __name__ == "__main__":
    ap = argparse.ArgumentParser()
    ap.add_argument("--config", default=None, help="Optional JSON config file to load defaults from.")
    ap.add_argument("--x", default=None, help="Seat X: 'human' or a model id (e.g. openai/gpt-4o-mini)")
    ap.add_argument("--o", default=None, help="Seat O: 'human' or a model id")
    ap.add_argument("--attempts", type=int, default=None, help="Agent attempts per move before the turn stalls")
    ap.add_argument("--history", default=None, help="Path of the JSON match history file")
    ap.add_argument("--history-out", dest="history_out", default=None, help="Optional path or directory for the structured game history")
    ap.add_argument("--log-level", dest="log_level", default=None, help="Python logging level (e.g., INFO, DEBUG)")
    args = ap.parse_args()

    cfg_dict = load_json_config(args.config) if args.config else {}
    log_level = (args.log_level or cfg_dict.get("log_level") or "WARNING").upper()
    logging.basicConfig(level=getattr(logging, log_level, logging.WARNING), format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    asyncio.run(main_async(args, cfg_dict))
