"""Seat configuration: who (or what) controls X and O."""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional

HUMAN_IDENTITY = "Human"


class PlayerKind(str, Enum):
    HUMAN = "human"
    AGENT = "agent"


@dataclass(frozen=True)
class PlayerConfig:
    kind: PlayerKind = PlayerKind.HUMAN
    agent_model_id: Optional[str] = None

    @classmethod
    def human(cls) -> "PlayerConfig":
        return cls(PlayerKind.HUMAN)

    @classmethod
    def agent(cls, model_id: Optional[str]) -> "PlayerConfig":
        return cls(PlayerKind.AGENT, model_id)

    @classmethod
    def parse(cls, value: Optional[str]) -> "PlayerConfig":
        """'human' (or empty) -> Human seat; anything else is taken as an agent model id."""
        raw = (value or "").strip()
        if not raw or raw.lower() == "human":
            return cls.human()
        return cls.agent(raw)

    @property
    def is_agent(self) -> bool:
        return self.kind is PlayerKind.AGENT

    def identity(self, seat) -> str:
        """Name used for match history: 'Human' or the model id (opaque, never validated here)."""
        if not self.is_agent:
            return HUMAN_IDENTITY
        return self.agent_model_id or f"Agent_{seat}"

    def label(self) -> str:
        return "Agent" if self.is_agent else HUMAN_IDENTITY

    def to_dict(self) -> dict:
        return {"kind": self.kind.value, "agent_model_id": self.agent_model_id}
