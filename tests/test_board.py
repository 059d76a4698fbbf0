import itertools
import unittest

from llmtictactoe.board import WIN_LINES, BoardEngine, GameStatus, Mark
from llmtictactoe.errors import GameOverError, NotYourTurnError, OccupiedError, OutOfRangeError


def play(engine: BoardEngine, *indices: int) -> None:
    for i in indices:
        result = engine.apply_move(i)
        assert result.ok, result.error


def filler_squares(line):
    """Three squares off the line that do not form a line of their own."""
    rest = [i for i in range(9) if i not in line]
    for trio in itertools.combinations(rest, 3):
        if trio not in WIN_LINES:
            return list(trio)
    raise AssertionError(f"no filler for {line}")


class BoardEngineTests(unittest.TestCase):
    def test_new_board_is_empty_with_x_to_move(self):
        engine = BoardEngine()
        self.assertEqual(engine.cells, [None] * 9)
        self.assertIs(engine.side_to_move, Mark.X)
        self.assertIs(engine.status, GameStatus.ONGOING)
        self.assertEqual(engine.empty_squares(), list(range(1, 10)))

    def test_moves_alternate_sides(self):
        engine = BoardEngine()
        first = engine.apply_move(4)
        self.assertTrue(first.ok)
        self.assertIs(first.side, Mark.X)
        self.assertIs(engine.side_to_move, Mark.O)
        second = engine.apply_move(0)
        self.assertIs(second.side, Mark.O)
        self.assertEqual(engine.move_count, 2)
        self.assertEqual(engine.cells[4], Mark.X)
        self.assertEqual(engine.cells[0], Mark.O)

    def test_every_win_line_is_detected_in_any_order(self):
        for line in WIN_LINES:
            others = filler_squares(line)
            for order in (list(line), list(reversed(line)), [line[1], line[2], line[0]]):
                with self.subTest(line=line, order=order, winner=Mark.X):
                    engine = BoardEngine()
                    play(engine, order[0], others[0], order[1], others[1])
                    self.assertIs(engine.status, GameStatus.ONGOING)
                    result = engine.apply_move(order[2])
                    self.assertIs(result.status, GameStatus.X_WINS)

                with self.subTest(line=line, order=order, winner=Mark.O):
                    engine = BoardEngine()
                    play(engine, others[0], order[0], others[1], order[1], others[2])
                    self.assertIs(engine.status, GameStatus.ONGOING)
                    result = engine.apply_move(order[2])
                    self.assertIs(result.status, GameStatus.O_WINS)
                    self.assertEqual(engine.move_count, 6)

    def test_win_ends_game_and_keeps_side_to_move(self):
        engine = BoardEngine()
        play(engine, 0, 3, 1, 4)
        result = engine.apply_move(2)
        self.assertTrue(result.ok)
        self.assertIs(result.status, GameStatus.X_WINS)
        self.assertIs(engine.status.winner, Mark.X)
        self.assertIs(engine.side_to_move, Mark.X)

    def test_full_board_without_line_is_draw(self):
        engine = BoardEngine()
        play(engine, 0, 1, 2, 4, 3, 5, 7, 6, 8)
        self.assertIs(engine.status, GameStatus.DRAW)
        self.assertIsNone(engine.status.winner)
        self.assertEqual(engine.empty_squares(), [])

    def test_moves_after_game_over_are_rejected_first(self):
        engine = BoardEngine()
        play(engine, 0, 3, 1, 4, 2)
        # game over wins over range and occupancy checks
        for index in (5, 0, 42):
            result = engine.apply_move(index)
            self.assertFalse(result.ok)
            self.assertIsInstance(result.error, GameOverError)
        self.assertEqual(engine.move_count, 5)

    def test_out_of_range_and_non_int_indices(self):
        engine = BoardEngine()
        for bad in (-1, 9, True, "5", 4.0, None):
            with self.subTest(bad=bad):
                result = engine.apply_move(bad)
                self.assertFalse(result.ok)
                self.assertIsInstance(result.error, OutOfRangeError)
        self.assertEqual(engine.move_count, 0)
        self.assertIn("Invalid square number: 10.", str(engine.apply_move(9).error))

    def test_occupied_square_names_the_occupant(self):
        engine = BoardEngine()
        play(engine, 0)
        result = engine.apply_move(0)
        self.assertFalse(result.ok)
        self.assertIsInstance(result.error, OccupiedError)
        self.assertEqual(str(result.error), "Square 1 is already taken by X.")
        self.assertIs(engine.side_to_move, Mark.O)

    def test_move_for_the_wrong_side_is_rejected(self):
        engine = BoardEngine()
        result = engine.apply_move(4, as_side=Mark.O)
        self.assertFalse(result.ok)
        self.assertIsInstance(result.error, NotYourTurnError)
        self.assertIsNone(engine.cells[4])

    def test_cells_and_snapshot_are_copies(self):
        engine = BoardEngine()
        cells = engine.cells
        cells[0] = Mark.O
        self.assertIsNone(engine.cells[0])
        snap = engine.snapshot()
        play(engine, 0)
        self.assertIsNone(snap.cells[0])
        self.assertEqual(snap.move_count, 0)

    def test_reset_clears_board_and_bumps_generation(self):
        engine = BoardEngine()
        play(engine, 0, 3, 1, 4, 2)
        engine.reset()
        self.assertEqual(engine.cells, [None] * 9)
        self.assertIs(engine.status, GameStatus.ONGOING)
        self.assertIs(engine.side_to_move, Mark.X)
        self.assertEqual(engine.move_count, 0)
        self.assertEqual(engine.generation, 1)

    def test_describe_board_uses_one_based_empty_squares(self):
        engine = BoardEngine()
        play(engine, 4)
        text = engine.describe_board()
        self.assertIn(" e | X | e ", text)
        self.assertIn("Player O's turn", text)
        self.assertIn("Empty squares: 1, 2, 3, 4, 6, 7, 8, 9", text)

    def test_describe_board_reports_result(self):
        engine = BoardEngine()
        play(engine, 0, 3, 1, 4, 2)
        self.assertIn("Game over: Player X wins!", engine.describe_board())


if __name__ == "__main__":
    unittest.main()
