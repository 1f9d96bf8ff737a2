"""Flow router — decides whether a request starts a multi-turn flow."""
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ..llm import Oracle
from ..memory import ConversationMemory, render_history
from ..parsing import try_extract_json_object
from .base import FlowDescriptor

logger = logging.getLogger(__name__)

# Read-only listing/status requests always fall through to ordinary routing
_READ_ONLY = [
    re.compile(r"\b(?:list|show|display|which|what)\b.*\b(?:servers?|providers?|tools?|flows?)\b", re.IGNORECASE),
    re.compile(r"\b(?:servers?|providers?)\s+status\b", re.IGNORECASE),
    re.compile(r"\bstatus\s+of\b.*\b(?:servers?|providers?)\b", re.IGNORECASE),
]

_CREATE_WORDS = re.compile(r"\b(?:create|build|make|generate|write|new)\b", re.IGNORECASE)

FLOW_PROMPT = """You are an intelligent assistant designed to determine whether a user's query requires invoking a specialized flow or should be handled by the regular tool routing system.

{history}
User input: "{user_input}"

Available Flows:
{flow_list}

IMPORTANT GUIDELINES:
- If the user is asking to list, show, or get information about servers in this application, do NOT use a flow. These requests are handled by the regular tool routing system.
- Only use the provider_builder flow if the user explicitly wants to CREATE a new server, not if they want to LIST or USE existing servers.

Respond with a single JSON object:

{
  "shouldUseFlow": true | false,
  "flowId": "flow_id_if_applicable",
  "params": {"param1": "value1"},
  "reasoning": "Why this decision is appropriate."
}

Notes:
- If shouldUseFlow is false, flowId and params can be omitted.
- Only set shouldUseFlow to true if the query clearly asks to CREATE or BUILD something new.
- Extract any relevant parameters from the query to pass to the flow."""


@dataclass
class FlowRouting:
    use_flow: bool
    flow_id: Optional[str] = None
    seed_params: Dict[str, Any] = field(default_factory=dict)


NO_FLOW = FlowRouting(use_flow=False)


def is_read_only_request(text: str) -> bool:
    if _CREATE_WORDS.search(text):
        return False
    return any(p.search(text) for p in _READ_ONLY)


def flow_descriptions_for_llm(flows: List[FlowDescriptor]) -> str:
    lines = []
    for flow in flows:
        lines.append(f"Flow: {flow.display_name} (ID: {flow.id})")
        lines.append(f"Description: {flow.description}")
        if flow.param_shape:
            lines.append("Parameters:")
            for name, desc in flow.param_shape.items():
                lines.append(f"  - {name}: {desc}")
        lines.append("")
    return "\n".join(lines)


class FlowRouter:
    def __init__(self, oracle: Oracle, history_turns: int = 10):
        self.oracle = oracle
        self.history_turns = history_turns

    async def should_handle(self, user_text: str, memory: Optional[ConversationMemory],
                            flows: List[FlowDescriptor]) -> FlowRouting:
        if not flows:
            return NO_FLOW
        if is_read_only_request(user_text):
            logger.info(f"Flow router: read-only request, skipping flows: '{user_text}'")
            return NO_FLOW

        prompt = (FLOW_PROMPT
                  .replace("{flow_list}", flow_descriptions_for_llm(flows))
                  .replace("{history}", render_history(memory, limit=self.history_turns))
                  .replace("{user_input}", user_text))
        raw = await self.oracle.generate(prompt)
        logger.info(f"Flow routing raw: {raw[:200]}")

        payload = try_extract_json_object(raw, label="Flow routing")
        if payload is None:
            return NO_FLOW
        should = payload.get("shouldUseFlow")
        if not isinstance(should, bool) or not should:
            return NO_FLOW

        flow_id = payload.get("flowId")
        known = {f.id for f in flows}
        if flow_id not in known:
            logger.warning(f"Flow router picked unknown flow {flow_id!r}")
            return NO_FLOW

        params = payload.get("params")
        seed = params if isinstance(params, dict) else {}
        logger.info(f"Flow router: -> {flow_id} ({seed})")
        return FlowRouting(use_flow=True, flow_id=flow_id, seed_params=seed)
