"""Flow engine — runs the current stage of a flow and validates its transition."""
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from ..errors import DecisionMalformed
from ..llm import Oracle
from ..memory import ConversationMemory
from ..tools.executor import ToolExecutor
from ..tools.registry import ProviderRegistry
from .base import Flow, FlowContext, FlowState
from .registry import FlowRegistry

logger = logging.getLogger(__name__)

STAGE_FAILURE_TEXT = "Sorry, I lost track of that step. Could you say that again?"


@dataclass
class FlowResult:
    response: str
    state: FlowState
    completed: bool = False


class FlowEngine:
    def __init__(self, flows: FlowRegistry, oracle: Oracle, registry: ProviderRegistry,
                 executor: ToolExecutor, history_turns: int = 10,
                 providers_dir: str = "mcp-servers", filesystem_provider_id: str = "filesystem"):
        self.flows = flows
        self.oracle = oracle
        self.registry = registry
        self.executor = executor
        self.history_turns = history_turns
        self.providers_dir = providers_dir
        self.filesystem_provider_id = filesystem_provider_id

    def _flow(self, flow_id: str) -> Flow:
        flow = self.flows.get(flow_id)
        if flow is None:
            raise KeyError(f"Flow with ID {flow_id} not found")
        return flow

    def start(self, flow_id: str, seed_params: Optional[Dict[str, Any]] = None) -> FlowState:
        """Fresh state at the flow's initial stage; also the explicit restart."""
        flow = self._flow(flow_id)
        return FlowState(flow_id=flow_id, stage=flow.initial_stage, params=flow.new_params(seed_params))

    def context(self, user_text: str, memory: Optional[ConversationMemory] = None) -> FlowContext:
        return FlowContext(
            oracle=self.oracle,
            registry=self.registry,
            executor=self.executor,
            user_text=user_text,
            memory=memory,
            history_turns=self.history_turns,
            providers_dir=self.providers_dir,
            filesystem_provider_id=self.filesystem_provider_id,
        )

    async def run(self, flow_id: str, user_text: str, state: Optional[FlowState] = None,
                  memory: Optional[ConversationMemory] = None,
                  seed_params: Optional[Dict[str, Any]] = None) -> FlowResult:
        """Run the current stage (plus any chained successors) for one user turn.

        A handler asking for an undeclared transition keeps its current stage.
        Terminal stages are absorbing.
        """
        flow = self._flow(flow_id)
        if state is None or state.flow_id != flow_id:
            state = self.start(flow_id, seed_params)

        ctx = self.context(user_text, memory)
        stage = flow.coerce_stage(state.stage)
        responses: List[str] = []
        # Each chained hop must move forward, so this bounds the loop
        for _ in range(len(flow.stages)):
            try:
                outcome = await flow.handle(stage, state.params, ctx)
            except DecisionMalformed as e:
                logger.warning(f"[{flow_id}] stage {stage.value} could not parse oracle output: {e}")
                responses.append(STAGE_FAILURE_TEXT)
                break

            if outcome.response:
                responses.append(outcome.response.strip())

            target = outcome.next_stage
            if not flow.can_transition(stage, target):
                logger.error(f"[{flow_id}] rejected transition {stage.value} -> {target.value}")
                break

            moved = target != stage
            if moved:
                logger.info(f"[{flow_id}] {stage.value} -> {target.value}")
            stage = target
            if not (outcome.chain and moved) or flow.is_terminal(stage):
                break

        new_state = FlowState(flow_id=flow_id, stage=stage, params=state.params)
        return FlowResult(
            response="\n\n".join(r for r in responses if r),
            state=new_state,
            completed=flow.is_terminal(stage),
        )
