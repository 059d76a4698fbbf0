import unittest

from llmtictactoe.board import Mark
from llmtictactoe.players import HUMAN_IDENTITY, PlayerConfig, PlayerKind
from llmtictactoe.prompting import render_custom_prompt


class PlayerConfigTests(unittest.TestCase):
    def test_parse(self):
        self.assertEqual(PlayerConfig.parse(None), PlayerConfig.human())
        self.assertEqual(PlayerConfig.parse(" Human "), PlayerConfig.human())
        cfg = PlayerConfig.parse("openai/gpt-4o-mini")
        self.assertIs(cfg.kind, PlayerKind.AGENT)
        self.assertEqual(cfg.agent_model_id, "openai/gpt-4o-mini")

    def test_identity(self):
        self.assertEqual(PlayerConfig.human().identity(Mark.X), HUMAN_IDENTITY)
        self.assertEqual(PlayerConfig.agent("m").identity(Mark.X), "m")
        self.assertEqual(PlayerConfig.agent(None).identity(Mark.O), "Agent_O")
        self.assertEqual(PlayerConfig.agent("m").label(), "Agent")


class RenderPromptTests(unittest.TestCase):
    def test_unknown_placeholders_are_left_intact(self):
        rendered = render_custom_prompt("{SIDE} plays; {OTHER}", {"SIDE": "X"})
        self.assertEqual(rendered, "X plays; {OTHER}")


if __name__ == "__main__":
    unittest.main()
