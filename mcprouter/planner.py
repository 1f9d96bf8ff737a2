"""LLM planner — classifies a request into a validated Decision."""
import logging
import re
from typing import List, Optional

from .decisions import Decision, DirectAnswer, decode_decision
from .errors import DecisionMalformed
from .llm import Oracle
from .memory import ConversationMemory, render_history
from .parsing import extract_json_object, strip_control_chars
from .tools.models import ProviderDescriptor
from .tools.registry import tool_catalog_for_llm

logger = logging.getLogger(__name__)

DECISION_PROMPT = """You are an intelligent assistant designed to determine the appropriate action based on a user's query. Analyze the following information and decide what action to take.

{history}
User input: "{user_input}"

Available Tools:
{tool_list}

Based on the above, decide on the appropriate action to take. You can:

1. DIRECT ANSWER: Answer the user's question using your knowledge or the conversation history.
   - Use this for general knowledge questions, explanations, or when no specific tool is needed.
   - IMPORTANT: For general knowledge questions like "What is the capital of France?", ALWAYS use direct_answer, NOT invoke_tool.

2. INVOKE A TOOL: Use one of the available tools to fulfill the user's request.
   - Use this when the user's request requires computation or external data.
   - If the user did not give a value for a parameter, leave it out and list its name in "missing_parameters". Never invent values.

3. MANAGE SERVERS:
   - list_providers: show all registered servers
   - provider_status: show which servers are active or disabled
   - enable_provider / disable_provider: enable or temporarily disable a server
   - remove_provider: remove a server from the registry (optionally delete its files)
   - install_provider: install dependencies for a server

Respond with a single JSON object:

{
  "action": "direct_answer" | "invoke_tool" | "list_providers" | "provider_status" | "enable_provider" | "disable_provider" | "remove_provider" | "install_provider",
  "response": "Your message to the user explaining the action taken.",
  "reasoning": "Why this action is appropriate.",
  "tool": {
    "serverId": "server_id",
    "name": "tool_name",
    "parameters": {"param1": "value1"},
    "missing_parameters": ["param2"]
  },
  "server": {
    "id": "server_id",
    "deleteFiles": true | false
  }
}

Notes:
- "tool" is only required for invoke_tool; "server" only for enable_provider, disable_provider, remove_provider and install_provider.
- For numeric parameters use actual numbers (5), not strings ("5"). Convert word-form numbers ("five") to numerals.
- Use the conversation history to understand the context of the current request.

Examples:
- "What is the capital of France?" → {"action": "direct_answer", "response": "The capital of France is Paris.", "reasoning": "General knowledge."}
- "What is 5 plus 3?" → {"action": "invoke_tool", "response": "I'll calculate 5 plus 3 for you.", "reasoning": "Needs the add tool.", "tool": {"serverId": "calculator", "name": "add", "parameters": {"a": 5, "b": 3}, "missing_parameters": []}}
- "add two numbers" → {"action": "invoke_tool", "response": "Which two numbers should I add?", "reasoning": "Numbers not given.", "tool": {"serverId": "calculator", "name": "add", "parameters": {}, "missing_parameters": ["a", "b"]}}
- "remove the weather server and its files" → {"action": "remove_provider", "response": "Removing the weather server.", "reasoning": "User asked.", "server": {"id": "weather", "deleteFiles": true}}

IMPORTANT: Respond with valid JSON only."""

FALLBACK_TEMPLATE = ("I'm having trouble understanding how to process your request: \"{user_input}\". "
                     "Could you please rephrase or provide more details?")

_RESPONSE_FIELD = re.compile(r'"response"\s*:\s*"((?:[^"\\]|\\.)*)"', re.DOTALL)


class QueryRouter:
    """Turns free text into a Decision resolvable against the enabled providers.

    Parse and validation failures never escape: they become a DirectAnswer
    asking the user to clarify. OracleUnavailable does escape.
    """

    def __init__(self, oracle: Oracle, history_turns: int = 10):
        self.oracle = oracle
        self.history_turns = history_turns

    def build_prompt(self, user_text: str, memory: Optional[ConversationMemory],
                     providers: List[ProviderDescriptor]) -> str:
        history = render_history(memory, limit=self.history_turns)
        prompt = DECISION_PROMPT.replace("{tool_list}", tool_catalog_for_llm(providers))
        prompt = prompt.replace("{history}", history)
        return prompt.replace("{user_input}", user_text)

    async def decide(self, user_text: str, memory: Optional[ConversationMemory],
                     providers: List[ProviderDescriptor]) -> Decision:
        enabled = [p for p in providers if p.enabled]
        prompt = self.build_prompt(user_text, memory, enabled)
        raw = await self.oracle.generate(prompt)
        logger.info(f"Decision raw: {raw[:200]}")

        try:
            payload = extract_json_object(raw)
        except DecisionMalformed as e:
            logger.warning(f"Decision JSON parse failed: {e}")
            return self._fallback(user_text, raw, salvage=True)

        try:
            decision = decode_decision(payload, {p.id: p for p in enabled})
        except DecisionMalformed as e:
            logger.warning(f"Decision rejected: {e}")
            return self._fallback(user_text, raw, salvage=False)

        logger.info(f"Decision: {decision}")
        return decision

    def _fallback(self, user_text: str, raw: str, salvage: bool) -> DirectAnswer:
        if salvage:
            cleaned = strip_control_chars(raw or "").strip()
            fragment = salvage_response_text(cleaned)
            if fragment:
                return DirectAnswer(text=fragment, reasoning="Salvaged from malformed oracle response")
            if cleaned and "{" not in cleaned:
                # Plain prose instead of JSON: treat it as the answer
                return DirectAnswer(text=cleaned, reasoning="Oracle answered in prose")
        return DirectAnswer(text=FALLBACK_TEMPLATE.format(user_input=user_text),
                            reasoning="Error parsing oracle response")


def salvage_response_text(raw: str) -> Optional[str]:
    """Pull the "response" string out of a broken JSON object, if readable."""
    match = _RESPONSE_FIELD.search(raw or "")
    if not match:
        return None
    text = match.group(1).replace('\\"', '"').replace("\\n", "\n").strip()
    return text or None
