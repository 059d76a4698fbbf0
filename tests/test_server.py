import asyncio
import time
import unittest
from unittest.mock import AsyncMock, MagicMock, patch

import server
from llmtictactoe.board import Mark
from llmtictactoe.catalog import ModelInfo
from llmtictactoe.errors import StaleResponseError
from llmtictactoe.history import MatchHistoryLedger, MemoryHistoryStore


def scripted(*replies):
    completer = AsyncMock()
    completer.send = AsyncMock(side_effect=list(replies))
    return completer


class ServerApiTests(unittest.TestCase):
    def setUp(self):
        self.ledger = MatchHistoryLedger(MemoryHistoryStore())
        self.completer = scripted("I'll take 5", "9")
        patches = [
            patch.object(server, "LEDGER", self.ledger),
            patch.object(server, "COMPLETER", self.completer),
            patch.dict(server.GAMES, clear=True),
        ]
        for p in patches:
            p.start()
            self.addCleanup(p.stop)
        self.client = server.app.test_client()

    def _new_game(self, x="human", o="human"):
        rsp = self.client.post("/api/games", json={"x": x, "o": o})
        self.assertEqual(rsp.status_code, 200)
        return rsp.get_json()

    def test_human_move_gets_agent_reply(self):
        game = self._new_game(o="test/model")
        self.assertEqual(game["status_message"], "Game ongoing. Human's turn (X).")
        rsp = self.client.post(f"/api/games/{game['game_id']}/move", json={"square": 1})
        self.assertEqual(rsp.status_code, 200)
        body = rsp.get_json()
        self.assertEqual(body["board"], ["X", None, None, None, "O", None, None, None, None])
        self.assertEqual(body["side_to_move"], "X")
        self.assertEqual(body["status"], "ongoing")
        self.assertEqual([t["role"] for t in body["conversation"]["O"]], ["system", "user", "assistant"])
        self.assertEqual(body["conversation"]["O"][-1]["model"], "test/model")

    def test_invalid_and_occupied_squares(self):
        game = self._new_game()
        url = f"/api/games/{game['game_id']}/move"
        rsp = self.client.post(url, json={"square": 10})
        self.assertEqual(rsp.status_code, 400)
        self.assertEqual(rsp.get_json()["error_kind"], "invalid_move")
        self.assertIn("Invalid square number: 10.", rsp.get_json()["error"])

        self.client.post(url, json={"square": 1})
        rsp = self.client.post(url, json={"square": 1})
        self.assertEqual(rsp.status_code, 400)
        self.assertEqual(rsp.get_json()["error"], "Square 1 is already taken by X.")

        rsp = self.client.post(url, json={})
        self.assertEqual(rsp.status_code, 400)

    def test_unknown_game_is_404(self):
        self.assertEqual(self.client.get("/api/games/nope").status_code, 404)
        self.assertEqual(self.client.post("/api/games/nope/move", json={"square": 1}).status_code, 404)

    def test_finished_game_appears_in_history(self):
        game = self._new_game()
        url = f"/api/games/{game['game_id']}/move"
        for square in (1, 4, 2, 5):
            self.client.post(url, json={"square": square})
        body = self.client.post(url, json={"square": 3}).get_json()
        self.assertEqual(body["status"], "x_wins")
        self.assertEqual(body["recorded"]["outcome"], "side_a")
        self.assertIsNone(body["history_error"])

        rows = self.client.get("/api/history/Human/Human").get_json()
        self.assertEqual(len(rows), 1)
        self.assertEqual(rows[0]["game_kind"], "TicTacToe")
        self.assertIn("Human_vs_Human", self.client.get("/api/history").get_json())

    def test_restart_and_swap(self):
        game = self._new_game(o="test/model")
        gid = game["game_id"]
        self.client.post(f"/api/games/{gid}/move", json={"square": 1})
        body = self.client.post(f"/api/games/{gid}/restart").get_json()
        self.assertEqual(body["board"], [None] * 9)
        self.assertEqual(body["conversation"]["O"], [])

        # after the swap the agent holds X and moves at once via /advance
        body = self.client.post(f"/api/games/{gid}/swap").get_json()
        self.assertEqual(body["seats"]["X"]["kind"], "agent")
        body = self.client.post(f"/api/games/{gid}/advance").get_json()
        self.assertEqual(body["board"][8], "X")
        self.assertEqual(body["side_to_move"], "O")

    def test_configure_seat(self):
        game = self._new_game()
        gid = game["game_id"]
        self.assertEqual(self.client.put(f"/api/games/{gid}/seats/Z", json={"player": "human"}).status_code, 400)
        rsp = self.client.put(f"/api/games/{gid}/seats/o", json={"player": "test/model"})
        self.assertEqual(rsp.status_code, 200)
        self.assertEqual(rsp.get_json()["seats"]["O"], {"kind": "agent", "agent_model_id": "test/model"})

    def test_stalled_agent_is_reported(self):
        self.completer.send = AsyncMock(side_effect=["x", "y", "z"])
        rsp = self.client.post("/api/games", json={"x": "test/model", "o": "human", "max_attempts": 3})
        self.assertEqual(rsp.status_code, 200)
        game = rsp.get_json()
        self.assertTrue(game["stalled"])
        self.assertEqual(game["error_kind"], "agent_exhausted")
        self.assertEqual(game["board"], [None] * 9)

    def test_requests_while_agent_thinks(self):
        release = asyncio.Event()

        async def slow_reply(messages, model):
            await release.wait()
            return "5"

        self.completer.send = AsyncMock(side_effect=slow_reply)
        gid = self._new_game()["game_id"]
        self.client.post(f"/api/games/{gid}/move", json={"square": 1})
        rsp = self.client.put(f"/api/games/{gid}/seats/O", json={"player": "test/model"})
        self.assertEqual(rsp.status_code, 200)
        ctrl = server.GAMES[gid]["controller"]

        # the agent turn runs on the server loop without any request holding the game
        pending = asyncio.run_coroutine_threadsafe(ctrl.advance_if_agent_turn(), server._LOOP)
        deadline = time.time() + 5
        while Mark.O not in server._call(ctrl.snapshot).thinking:
            self.assertLess(time.time(), deadline)
            time.sleep(0.01)

        rsp = self.client.put(f"/api/games/{gid}/seats/O", json={"player": "human"})
        self.assertEqual(rsp.status_code, 409)
        self.assertEqual(rsp.get_json()["error_kind"], "seat_busy")
        self.assertEqual(self.client.post(f"/api/games/{gid}/swap").status_code, 409)
        self.assertEqual(self.client.post(f"/api/games/{gid}/advance").status_code, 409)

        # X is human, so the restart returns at once and abandons the pending reply
        rsp = self.client.post(f"/api/games/{gid}/restart")
        self.assertEqual(rsp.status_code, 200)
        self.assertEqual(rsp.get_json()["board"], [None] * 9)
        self.assertEqual(rsp.get_json()["thinking"], [])

        server._LOOP.call_soon_threadsafe(release.set)
        outcome = pending.result(timeout=5)
        self.assertIsInstance(outcome.error, StaleResponseError)
        self.assertEqual(self.client.get(f"/api/games/{gid}").get_json()["board"], [None] * 9)

    def test_bad_game_options_are_rejected(self):
        for body in (
            {"x": "human", "o": "human", "max_attempts": "many"},
            {"x": "human", "o": "human", "max_attempts": -1},
            {"x": "human", "o": "human", "max_attempts": 0},
            {"x": 5, "o": "human"},
            {"x": "human", "o": ["test/model"]},
        ):
            with self.subTest(body=body):
                rsp = self.client.post("/api/games", json=body)
                self.assertEqual(rsp.status_code, 400)
                self.assertEqual(rsp.get_json()["error_kind"], "invalid_request")
        self.assertEqual(server.GAMES, {})

        gid = self._new_game()["game_id"]
        rsp = self.client.put(f"/api/games/{gid}/seats/O", json={"player": {"model": "m"}})
        self.assertEqual(rsp.status_code, 400)

    def test_models_endpoint(self):
        catalog = MagicMock()
        catalog.models.return_value = [ModelInfo("a/b", "A B", 8192, 1.0, 2.0)]
        with patch.object(server, "CATALOG", catalog):
            rows = self.client.get("/api/models").get_json()
        self.assertEqual(rows[0]["id"], "a/b")

        catalog.ensure_loaded.side_effect = RuntimeError("offline")
        with patch.object(server, "CATALOG", catalog):
            rsp = self.client.get("/api/models")
        self.assertEqual(rsp.status_code, 502)


if __name__ == "__main__":
    unittest.main()
