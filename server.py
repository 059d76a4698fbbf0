"""
Minimal Flask API that wires the llmtictactoe engine into a UI.

Endpoints:
- POST /api/games                      -> start a game ({"x": "human"|<model id>, "o": ...}); agents move at once
- GET  /api/games/<id>                 -> current game state and seat conversations
- POST /api/games/<id>/move            -> submit a human move ({"square": 1-9}) and receive the agent reply
- POST /api/games/<id>/advance         -> (re)trigger a stalled or pending agent turn
- POST /api/games/<id>/restart         -> reset the board, keep seats (abandons a pending agent reply)
- POST /api/games/<id>/swap            -> swap X/O seat assignment
- PUT  /api/games/<id>/seats/<X|O>     -> reconfigure one seat ({"player": "human"|<model id>})
- GET  /api/history                    -> match history for every pair
- GET  /api/history/<a>/<b>            -> match history for one pair (order-independent)
- GET  /api/models                     -> model catalog for seat selectors

Games live in memory; match history is persisted through JsonHistoryStore (SETTINGS.history_path).
Every controller call runs on one background event loop. No lock is held while an agent thinks,
so a request that arrives meanwhile is decided by the controller (409 busy, or a restart that
makes the late reply stale).
"""
from __future__ import annotations

import asyncio
import logging
import threading
import time
import uuid
from typing import Dict, Optional

from flask import Flask, jsonify, request

from llmtictactoe.board import Mark
from llmtictactoe.catalog import ModelCatalog
from llmtictactoe.config import SETTINGS
from llmtictactoe.controller import TurnController, TurnOutcome
from llmtictactoe.errors import AgentExhaustedError, SeatBusyError, StaleResponseError, TransportError
from llmtictactoe.history import JsonHistoryStore, MatchHistoryLedger
from llmtictactoe.llm_client import Completer, OpenRouterCompleter
from llmtictactoe.players import PlayerConfig

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(message)s")

app = Flask(__name__)
games_lock = threading.Lock()
GAMES: Dict[str, dict] = {}
GAME_TTL_S = 3600  # drop inactive games after an hour to avoid leaks

CATALOG = ModelCatalog()
LEDGER = MatchHistoryLedger(JsonHistoryStore(SETTINGS.history_path))
COMPLETER: Optional[Completer] = None

_LOOP = asyncio.new_event_loop()
threading.Thread(target=_LOOP.run_forever, name="llmtictactoe-loop", daemon=True).start()


def _run(coro):
    return asyncio.run_coroutine_threadsafe(coro, _LOOP).result()


async def _invoke(fn, *args):
    return fn(*args)


def _call(fn, *args):
    """Run a synchronous controller call on the loop thread so it never races an agent turn."""
    return _run(_invoke(fn, *args))


def _get_completer() -> Completer:
    global COMPLETER
    if COMPLETER is None:
        COMPLETER = OpenRouterCompleter(catalog=CATALOG)
    return COMPLETER


def _ledger() -> MatchHistoryLedger:
    _run(LEDGER.load())
    return LEDGER


def _cleanup_stale_games(max_age_s: int = GAME_TTL_S):
    now = time.time()
    with games_lock:
        expired = [gid for gid, sess in GAMES.items() if now - sess.get("updated_at", now) > max_age_s]
        for gid in expired:
            GAMES.pop(gid, None)


def _get_session(game_id: str) -> Optional[dict]:
    _cleanup_stale_games()
    with games_lock:
        return GAMES.get(game_id)


# ---------------- Request parsing -----------------
def _parse_seat(raw: str) -> Optional[Mark]:
    try:
        return Mark(str(raw).upper())
    except ValueError:
        return None


def _parse_player(raw) -> Optional[PlayerConfig]:
    if raw is not None and not isinstance(raw, str):
        return None
    return PlayerConfig.parse(raw)


def _parse_attempts(raw) -> Optional[int]:
    if raw is None:
        return SETTINGS.agent_max_attempts
    if isinstance(raw, bool):
        return None
    try:
        value = int(raw)
    except (TypeError, ValueError):
        return None
    return value if value >= 1 else None


def _bad_request(message: str):
    return jsonify({"error": message, "error_kind": "invalid_request"}), 400


# ---------------- Responses -----------------
def _error_kind(error: Exception) -> str:
    if isinstance(error, SeatBusyError):
        return "seat_busy"
    if isinstance(error, AgentExhaustedError):
        return "agent_exhausted"
    if isinstance(error, TransportError):
        return "agent_transport_error"
    if isinstance(error, StaleResponseError):
        return "agent_stale_response"
    return "invalid_move"


def _serialize(session: dict, outcome: Optional[TurnOutcome] = None) -> dict:
    ctrl: TurnController = session["controller"]
    snap = outcome.snapshot if outcome else ctrl.snapshot()
    data = {
        "game_id": session["id"],
        **snap.to_dict(),
        "conversation": {str(seat): [t.to_dict() for t in ctrl.transcript(seat)] for seat in Mark},
        "moves": list(ctrl.moves),
    }
    if outcome is not None:
        data["stalled"] = outcome.stalled
        data["error"] = str(outcome.error) if outcome.error else None
        data["error_kind"] = _error_kind(outcome.error) if outcome.error else None
        data["history_error"] = str(outcome.history_error) if outcome.history_error else None
        if outcome.recorded is not None:
            data["recorded"] = outcome.recorded.to_dict()
    return data


def _respond(session: dict, outcome: TurnOutcome):
    session["updated_at"] = time.time()
    body = _call(_serialize, session, outcome)
    if outcome.ok or outcome.stalled:
        return jsonify(body)
    status = 409 if isinstance(outcome.error, SeatBusyError) else 400
    return jsonify(body), status


# ---------------- Controller flows -----------------
async def _human_then_agents(ctrl: TurnController, index) -> TurnOutcome:
    outcome = await ctrl.submit_human_move(index)
    if outcome.ok and ctrl.needs_agent_turn():
        outcome = await ctrl.play_agent_turns()
    return outcome


async def _reconfigure(ctrl: TurnController, seat: Mark, config: PlayerConfig) -> TurnOutcome:
    if config.is_agent and ctrl.completer is None:
        ctrl.completer = _get_completer()
    return ctrl.configure_seat(seat, config)


# ---------------- Routes -----------------
@app.route("/api/games", methods=["POST"])
def create_game():
    _cleanup_stale_games()
    data = request.get_json(force=True) or {}
    x = _parse_player(data.get("x"))
    o = _parse_player(data.get("o"))
    if x is None or o is None:
        return _bad_request("x and o must be 'human' or a model id string")
    max_attempts = _parse_attempts(data.get("max_attempts"))
    if max_attempts is None:
        return _bad_request("max_attempts must be a positive integer")
    completer = _get_completer() if (x.is_agent or o.is_agent) else None
    ctrl = TurnController(
        completer=completer,
        ledger=_ledger(),
        x=x,
        o=o,
        max_attempts=max_attempts,
    )
    game_id = data.get("game_id") or f"ttt_{int(time.time())}_{uuid.uuid4().hex[:6]}"
    session = {
        "id": str(game_id),
        "controller": ctrl,
        "created_at": time.time(),
        "updated_at": time.time(),
    }
    with games_lock:
        GAMES[session["id"]] = session
    outcome = _run(ctrl.play_agent_turns())
    return _respond(session, outcome)


@app.route("/api/games/<game_id>", methods=["GET"])
def get_game(game_id: str):
    session = _get_session(game_id)
    if not session:
        return jsonify({"error": "not found"}), 404
    return jsonify(_call(_serialize, session))


@app.route("/api/games/<game_id>/move", methods=["POST"])
def human_move(game_id: str):
    session = _get_session(game_id)
    if not session:
        return jsonify({"error": "not found"}), 404
    data = request.get_json(force=True) or {}
    if "square" not in data:
        return _bad_request("square is required")
    square = data["square"]
    index = square - 1 if isinstance(square, int) and not isinstance(square, bool) else square
    outcome = _run(_human_then_agents(session["controller"], index))
    return _respond(session, outcome)


@app.route("/api/games/<game_id>/advance", methods=["POST"])
def advance(game_id: str):
    session = _get_session(game_id)
    if not session:
        return jsonify({"error": "not found"}), 404
    outcome = _run(session["controller"].play_agent_turns())
    return _respond(session, outcome)


@app.route("/api/games/<game_id>/restart", methods=["POST"])
def restart(game_id: str):
    session = _get_session(game_id)
    if not session:
        return jsonify({"error": "not found"}), 404
    ctrl: TurnController = session["controller"]
    _call(ctrl.restart)
    outcome = _run(ctrl.play_agent_turns())
    return _respond(session, outcome)


@app.route("/api/games/<game_id>/swap", methods=["POST"])
def swap(game_id: str):
    session = _get_session(game_id)
    if not session:
        return jsonify({"error": "not found"}), 404
    outcome = _call(session["controller"].swap_seats)
    return _respond(session, outcome)


@app.route("/api/games/<game_id>/seats/<seat>", methods=["PUT"])
def configure_seat(game_id: str, seat: str):
    session = _get_session(game_id)
    if not session:
        return jsonify({"error": "not found"}), 404
    mark = _parse_seat(seat)
    if mark is None:
        return _bad_request("seat must be X or O")
    data = request.get_json(force=True) or {}
    config = _parse_player(data.get("player"))
    if config is None:
        return _bad_request("player must be 'human' or a model id string")
    outcome = _run(_reconfigure(session["controller"], mark, config))
    return _respond(session, outcome)


@app.route("/api/history", methods=["GET"])
def history_all():
    ledger = _ledger()
    return jsonify({key: [r.to_dict() for r in rows] for key, rows in ledger.get_all().items()})


@app.route("/api/history/<identity_a>/<identity_b>", methods=["GET"])
def history_pair(identity_a: str, identity_b: str):
    ledger = _ledger()
    return jsonify([r.to_dict() for r in ledger.get_for_pair(identity_a, identity_b)])


@app.route("/api/models", methods=["GET"])
def models():
    try:
        CATALOG.ensure_loaded()
    except Exception as exc:  # noqa: BLE001
        return jsonify({"error": "catalog_unavailable", "message": str(exc)}), 502
    return jsonify([m.to_dict() for m in CATALOG.models()])


@app.after_request
def add_cors_headers(response):
    response.headers["Access-Control-Allow-Origin"] = request.headers.get("Origin", "*")
    response.headers["Access-Control-Allow-Headers"] = "Content-Type, Authorization"
    response.headers["Access-Control-Allow-Methods"] = "GET, POST, PUT, OPTIONS"
    # Prevent caching so the UI always sees the freshest state/history
    response.headers["Cache-Control"] = "no-store, max-age=0"
    return response


@app.route("/api/<path:path>", methods=["OPTIONS"])
def cors_preflight(path: str):
    resp = app.make_response(("", 204))
    resp.headers["Access-Control-Allow-Origin"] = request.headers.get("Origin", "*")
    resp.headers["Access-Control-Allow-Headers"] = "Content-Type, Authorization"
    resp.headers["Access-Control-Allow-Methods"] = "GET, POST, PUT, OPTIONS"
    return resp


if __name__ == "__main__":
    app.run(host="0.0.0.0", port=8000, debug=True, threaded=True)
