"""Per-conversation state: memory, the active flow and a turn lock."""
import asyncio
import time
import uuid
from typing import Optional

from .flows.base import FlowState
from .memory import ConversationMemory


class ChatSession:
    """One conversation. Turns are serialized through ``lock``; the registry is shared."""

    def __init__(self, memory_capacity: int = 10, session_id: Optional[str] = None):
        self.session_id = session_id or str(uuid.uuid4())[:8]
        self.memory = ConversationMemory(capacity=memory_capacity)
        self.flow_state: Optional[FlowState] = None
        self.lock = asyncio.Lock()

        now = time.monotonic()
        self.first_activity_time = now
        self.last_activity_time = now

    @property
    def in_flow(self) -> bool:
        return self.flow_state is not None

    def end_flow(self) -> Optional[FlowState]:
        """Drop the active flow state, returning it."""
        state, self.flow_state = self.flow_state, None
        return state

    def reset(self):
        self.memory.clear()
        self.flow_state = None

    def touch(self):
        """Update last activity timestamp."""
        self.last_activity_time = time.monotonic()

    def idle_seconds(self) -> float:
        return time.monotonic() - self.last_activity_time
