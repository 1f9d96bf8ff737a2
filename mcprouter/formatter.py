"""Response formatter — phrases tool results and errors for the user."""
import json
import logging
from typing import Optional

from .decisions import InvokeTool
from .llm import Oracle
from .memory import ConversationMemory, render_history
from .tools.models import ToolCallResult, ToolDescriptor

logger = logging.getLogger(__name__)

RESULT_PROMPT = """{history}
The user asked: "{user_input}"

The system executed a tool and got the following result:
{result}

Please format this result into a natural, user-friendly response.
Focus on the most important information and present it in a clear, concise way.
If the result is flagged as an error, explain what went wrong instead of presenting it as an answer.
If the user's query refers to previous parts of the conversation, acknowledge that context in your response."""

ERROR_PROMPT = """{history}
The user asked: "{user_input}"

The system encountered an error:
{error}

Please format this error into a helpful, user-friendly response that explains what went wrong
and possibly suggests alternatives or next steps (for example "list servers" to see what is available).
If the user's query refers to previous parts of the conversation, acknowledge that context in your response."""


class ResponseFormatter:
    def __init__(self, oracle: Oracle, history_turns: int = 10):
        self.oracle = oracle
        self.history_turns = history_turns

    async def format_result(self, result: ToolCallResult, user_text: str,
                            memory: Optional[ConversationMemory] = None) -> str:
        prompt = (RESULT_PROMPT
                  .replace("{result}", json.dumps(result.to_dict(), indent=2, ensure_ascii=False))
                  .replace("{history}", render_history(memory, limit=self.history_turns))
                  .replace("{user_input}", user_text))
        return await self.oracle.generate(prompt)

    async def format_error(self, error: Exception, user_text: str,
                           memory: Optional[ConversationMemory] = None) -> str:
        prompt = (ERROR_PROMPT
                  .replace("{error}", str(error))
                  .replace("{history}", render_history(memory, limit=self.history_turns))
                  .replace("{user_input}", user_text))
        return await self.oracle.generate(prompt)

    def ask_for_missing(self, decision: InvokeTool, tool: Optional[ToolDescriptor] = None) -> str:
        """Follow-up question for a tool call that lacks required arguments."""
        wanted = []
        for name in decision.missing_params:
            param = tool.param(name) if tool else None
            if param and param.description:
                wanted.append(f"- {name}: {param.description}")
            else:
                wanted.append(f"- {name}")
        lead = decision.response or f"I can do that with the {decision.tool_name} tool."
        return f"{lead}\nI still need the following before I can run it:\n" + "\n".join(wanted)
