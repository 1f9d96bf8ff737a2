"""Flow types — descriptors, per-turn state and the Flow interface."""
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, FrozenSet, Mapping, Optional, Type

from ..llm import Oracle
from ..memory import ConversationMemory
from ..tools.executor import ToolExecutor
from ..tools.registry import ProviderRegistry


@dataclass(frozen=True)
class FlowDescriptor:
    id: str
    display_name: str
    description: str
    param_shape: Mapping[str, str] = field(default_factory=dict)


@dataclass
class FlowState:
    """Where a flow stands between turns. Threaded by the caller, never stored centrally."""
    flow_id: str
    stage: Enum
    params: Any


@dataclass
class StageOutcome:
    response: str
    next_stage: Enum
    # Run the next stage within the same turn
    chain: bool = False


@dataclass
class FlowContext:
    oracle: Oracle
    registry: ProviderRegistry
    executor: ToolExecutor
    user_text: str
    memory: Optional[ConversationMemory] = None
    history_turns: int = 10
    providers_dir: str = "mcp-servers"
    filesystem_provider_id: str = "filesystem"


class Flow(ABC):
    """A named multi-turn task: a stage enum, a typed params struct and one handler."""

    descriptor: FlowDescriptor
    stages: Type[Enum]
    initial_stage: Enum
    terminal_stages: FrozenSet[Enum] = frozenset()
    # Allowed moves out of each stage; staying put is always allowed
    transitions: Mapping[Enum, FrozenSet[Enum]] = {}

    @property
    def id(self) -> str:
        return self.descriptor.id

    def can_transition(self, current: Enum, target: Enum) -> bool:
        if target == current:
            return True
        if current in self.terminal_stages:
            return False
        return target in self.transitions.get(current, frozenset())

    def is_terminal(self, stage: Enum) -> bool:
        return stage in self.terminal_stages

    def coerce_stage(self, value: Any) -> Enum:
        if isinstance(value, self.stages):
            return value
        return self.stages(value)

    @abstractmethod
    def new_params(self, seed: Optional[Dict[str, Any]] = None) -> Any:
        """Fresh params struct, optionally seeded by the flow router."""

    @abstractmethod
    async def handle(self, stage: Enum, params: Any, ctx: FlowContext) -> StageOutcome:
        """Run one stage, mutating params in place."""
