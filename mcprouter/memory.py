"""Conversation memory — bounded, ordered turn log."""
import logging
from collections import deque
from dataclasses import dataclass
from typing import Deque, List, Optional

logger = logging.getLogger(__name__)

ROLES = ("user", "assistant", "system")


@dataclass(frozen=True)
class Turn:
    role: str  # "user" | "assistant" | "system"
    text: str

    def __post_init__(self):
        if self.role not in ROLES:
            raise ValueError(f"Unknown turn role: {self.role}")


class ConversationMemory:
    """Keeps the most recent ``capacity`` turns, evicting oldest first."""

    def __init__(self, capacity: int = 10):
        if capacity < 1:
            raise ValueError("Memory capacity must be at least 1")
        self.capacity = capacity
        self._turns: Deque[Turn] = deque(maxlen=capacity)

    def append(self, turn: Turn):
        self._turns.append(turn)

    def add(self, role: str, text: str):
        self.append(Turn(role=role, text=text))

    def recent(self, limit: Optional[int] = None) -> List[Turn]:
        turns = list(self._turns)
        if limit is not None:
            turns = turns[-limit:] if limit > 0 else []
        return turns

    def clear(self):
        self._turns.clear()
        logger.info("Conversation memory cleared")

    def __len__(self) -> int:
        return len(self._turns)


def render_history(memory: ConversationMemory, limit: Optional[int] = None, include_system: bool = False) -> str:
    """Render history oldest-first as ``role: text`` lines."""
    if memory is None:
        return ""
    lines = [
        f"{t.role}: {t.text}"
        for t in memory.recent()
        if include_system or t.role != "system"
    ]
    if limit is not None:
        lines = lines[-limit:] if limit > 0 else []
    if not lines:
        return ""
    return "Conversation History:\n" + "\n".join(lines) + "\n"
