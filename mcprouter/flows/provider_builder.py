"""Provider builder flow — creates and registers a new tool-provider through conversation.

Stages: intro → gathering_requirements → code_generation → save_code →
register_server → complete. Generated providers are Python modules built on
the ``mcp`` SDK's FastMCP server and are written through the filesystem
provider like any other tool call.
"""
import ast
import json
import logging
import re
import sys
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from ..errors import ProviderNotFound, ToolNotFound, TransportFailure
from ..memory import render_history
from ..parsing import coerce_bool, extract_code_block, try_extract_json_object
from ..tools.models import ProcessTransport, ProviderDescriptor, ToolDescriptor, ToolParam
from .base import Flow, FlowContext, FlowDescriptor, StageOutcome

logger = logging.getLogger(__name__)


class BuilderStage(str, Enum):
    INTRO = "intro"
    GATHERING_REQUIREMENTS = "gathering_requirements"
    CODE_GENERATION = "code_generation"
    SAVE_CODE = "save_code"
    REGISTER_SERVER = "register_server"
    COMPLETE = "complete"


@dataclass
class BuilderParams:
    server_type: str = ""
    server_name: str = ""
    server_description: str = ""
    # Manifest: [{"name", "description", "parameters": [{"name", "type", "description", "required"}]}]
    tools: List[Dict[str, Any]] = field(default_factory=list)
    code: str = ""
    slug: str = ""
    saved_path: str = ""
    descriptor: Optional[ProviderDescriptor] = None
    registered: bool = False


# Legacy phrase heuristic, used only when the oracle omits the explicit "ready" flag
_READY_PHRASES = ("generate the code", "create the server", "write the code", "let's make", "let me write")

PROVIDER_TEMPLATE = '''from mcp.server.fastmcp import FastMCP

mcp = FastMCP("Weather")


@mcp.tool()
def get_forecast(city: str, days: int = 1) -> str:
    """Get the weather forecast for a city."""
    return f"Sunny in {city} for {days} day(s)"


if __name__ == "__main__":
    mcp.run()
'''

INTRO_PROMPT = """You are an expert MCP (Model Context Protocol) server developer. The user wants to create a new MCP server. They said: "{user_input}"

We will build a Python MCP server using the official `mcp` package (FastMCP) and save it to the {providers_dir} folder.

{history}
Provide a helpful response that:
1. Acknowledges their request to build a server
2. Asks for specific details about what tools they want the server to provide, with their inputs and outputs
3. Keeps the response conversational and short

DO NOT ask what programming language they want to use - we will be using Python."""

GATHER_PROMPT = """You are an expert MCP server developer helping the user design a Python MCP server.

{history}
The user's latest input: "{user_input}"

Based on the conversation so far, work out the requirements:
- What tools should the server provide?
- What parameters should each tool accept, and of which type?
- What should each tool return?

If you have enough information to write the code, say so and set "ready" to true.
Otherwise ask specific questions and set "ready" to false.

Respond with a single JSON object:
{"response": "your message to the user", "ready": true | false}"""

EXTRACT_PROMPT = """Based on the following conversation, extract the key details for the MCP server.

{history}
User's latest input: "{user_input}"

Respond with JSON only:
{
  "serverName": "short name of the server",
  "serverDescription": "brief description of what the server does",
  "tools": [
    {
      "name": "tool_name",
      "description": "what the tool does",
      "parameters": [
        {"name": "parameter name", "type": "string|number|boolean", "description": "what it is for", "required": true}
      ]
    }
  ]
}"""

CODE_PROMPT = """You are an expert MCP server developer. Write the complete Python code for the MCP server discussed below.

{history}
User's latest input: "{user_input}"

Server details extracted so far:
{details}

{previous}
Follow this template exactly in structure (FastMCP server, one decorated function per tool,
type-annotated parameters, a docstring per tool, `mcp.run()` under `__main__`):

```python
{template}```

Put the complete code in a single ```python code block, then briefly explain what it does."""

NAME_PROMPT = """Suggest a short, filesystem-safe name for this MCP server (lowercase letters, digits and dashes only).

Server details:
{details}

Respond with JSON only: {"name": "weather-server"}"""

ENUMERATE_PROMPT = """List the tools exposed by this MCP server code.

```python
{code}
```

Respond with JSON only:
{"tools": [{"name": "tool_name", "description": "...", "parameters": [{"name": "...", "type": "string|number|boolean", "description": "...", "required": true}]}]}"""

INTENT_PROMPT = """{history}
The user's latest message: "{user_input}"

Question: {question}

Answer true only if the user's latest message explicitly and affirmatively says so.
Respond with JSON only: {"answer": true | false, "reasoning": "short explanation"}"""

COMPLETE_PROMPT = """You are an expert MCP server developer. The server creation process is complete.

{history}
User's latest input: "{user_input}"

Server that was created:
{details}

Respond to the user's query in the context of the server we've just created.
If they're asking about using or modifying the server, provide helpful guidance.
If they want to create another server, tell them to say "cancel flow" and then ask again."""


def _fill(template: str, /, **values: str) -> str:
    for key, value in values.items():
        template = template.replace("{" + key + "}", value)
    return template


def slugify(text: str, max_length: int = 48) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", (text or "").lower()).strip("-")
    return slug[:max_length].strip("-")


_ANNOTATION_TYPES = {
    "int": "number", "float": "number", "str": "string", "bool": "boolean",
    "list": "array", "List": "array", "dict": "object", "Dict": "object",
}


def _annotation_type(node: Optional[ast.expr]) -> str:
    if node is None:
        return "string"
    if isinstance(node, ast.Name):
        return _ANNOTATION_TYPES.get(node.id, "string")
    if isinstance(node, ast.Subscript):
        return _annotation_type(node.value)
    if isinstance(node, ast.Attribute):
        return _ANNOTATION_TYPES.get(node.attr, "string")
    return "string"


def _tool_decorator(func: ast.AST) -> Optional[ast.expr]:
    for deco in func.decorator_list:
        target = deco.func if isinstance(deco, ast.Call) else deco
        if isinstance(target, ast.Attribute) and target.attr == "tool":
            return deco
    return None


def tools_from_source(code: str) -> List[ToolDescriptor]:
    """Read the tool surface of a FastMCP module: ``@<server>.tool()`` functions."""
    try:
        tree = ast.parse(code)
    except SyntaxError as e:
        logger.warning(f"Generated code does not parse: {e}")
        return []

    tools = []
    for node in ast.walk(tree):
        if not isinstance(node, (ast.FunctionDef, ast.AsyncFunctionDef)):
            continue
        deco = _tool_decorator(node)
        if deco is None:
            continue
        name, description = node.name, ""
        if isinstance(deco, ast.Call):
            for kw in deco.keywords:
                if kw.arg in ("name", "description") and isinstance(kw.value, ast.Constant):
                    if kw.arg == "name":
                        name = str(kw.value.value)
                    else:
                        description = str(kw.value.value)
        if not description:
            doc = ast.get_docstring(node) or ""
            description = doc.strip().splitlines()[0] if doc.strip() else ""

        args = node.args.args
        first_default = len(args) - len(node.args.defaults)
        params = []
        for i, arg in enumerate(args):
            if arg.arg in ("self", "ctx", "context"):
                continue
            params.append(ToolParam(
                name=arg.arg,
                type=_annotation_type(arg.annotation),
                required=i < first_default,
            ))
        tools.append(ToolDescriptor(name=name, description=description, params=params))
    return tools


def tools_from_manifest(manifest: List[Dict[str, Any]]) -> List[ToolDescriptor]:
    tools = []
    for entry in manifest or []:
        if not isinstance(entry, dict) or not entry.get("name"):
            continue
        params = []
        for p in entry.get("parameters") or []:
            if isinstance(p, dict) and p.get("name"):
                params.append(ToolParam(
                    name=str(p["name"]),
                    type=str(p.get("type") or "string"),
                    description=str(p.get("description") or ""),
                    required=coerce_bool(p.get("required", True)),
                ))
        tools.append(ToolDescriptor(name=str(entry["name"]), description=str(entry.get("description") or ""),
                                    params=params))
    return tools


class ProviderBuilderFlow(Flow):
    descriptor = FlowDescriptor(
        id="provider_builder",
        display_name="Server Builder",
        description="Create new MCP servers through conversation",
        param_shape={
            "serverType": "Type of server to create",
            "serverName": "Name for the new server",
        },
    )
    stages = BuilderStage
    initial_stage = BuilderStage.INTRO
    terminal_stages = frozenset({BuilderStage.COMPLETE})
    transitions = {
        BuilderStage.INTRO: frozenset({BuilderStage.GATHERING_REQUIREMENTS}),
        BuilderStage.GATHERING_REQUIREMENTS: frozenset({BuilderStage.CODE_GENERATION}),
        BuilderStage.CODE_GENERATION: frozenset({BuilderStage.SAVE_CODE}),
        BuilderStage.SAVE_CODE: frozenset({BuilderStage.REGISTER_SERVER}),
        BuilderStage.REGISTER_SERVER: frozenset({BuilderStage.COMPLETE}),
        BuilderStage.COMPLETE: frozenset(),
    }

    def new_params(self, seed: Optional[Dict[str, Any]] = None) -> BuilderParams:
        seed = seed or {}
        return BuilderParams(
            server_type=str(seed.get("serverType") or seed.get("server_type") or ""),
            server_name=str(seed.get("serverName") or seed.get("server_name") or ""),
        )

    async def handle(self, stage: BuilderStage, params: BuilderParams, ctx: FlowContext) -> StageOutcome:
        handlers = {
            BuilderStage.INTRO: self._intro,
            BuilderStage.GATHERING_REQUIREMENTS: self._gather,
            BuilderStage.CODE_GENERATION: self._generate_code,
            BuilderStage.SAVE_CODE: self._save_code,
            BuilderStage.REGISTER_SERVER: self._register,
            BuilderStage.COMPLETE: self._complete,
        }
        return await handlers[stage](params, ctx)

    # ── helpers ─────────────────────────────────────────

    def _history(self, ctx: FlowContext) -> str:
        return render_history(ctx.memory, limit=ctx.history_turns)

    def _details(self, params: BuilderParams) -> str:
        return json.dumps({
            "serverName": params.server_name,
            "serverType": params.server_type,
            "serverDescription": params.server_description,
            "tools": params.tools,
        }, indent=2, ensure_ascii=False)

    async def _confirm(self, ctx: FlowContext, question: str) -> bool:
        """Oracle intent pass; anything but an explicit yes is a no."""
        raw = await ctx.oracle.generate(_fill(
            INTENT_PROMPT, history=self._history(ctx), user_input=ctx.user_text, question=question))
        payload = try_extract_json_object(raw, label="Intent")
        if payload is None:
            return False
        return coerce_bool(payload.get("answer"))

    async def _extract_manifest(self, params: BuilderParams, ctx: FlowContext):
        raw = await ctx.oracle.generate(_fill(EXTRACT_PROMPT, history=self._history(ctx), user_input=ctx.user_text))
        payload = try_extract_json_object(raw, label="Requirements extraction")
        if payload is None:
            return
        if isinstance(payload.get("serverName"), str) and payload["serverName"].strip():
            params.server_name = payload["serverName"].strip()
        if isinstance(payload.get("serverDescription"), str):
            params.server_description = payload["serverDescription"].strip()
        if isinstance(payload.get("tools"), list):
            params.tools = [t for t in payload["tools"] if isinstance(t, dict)]

    async def _write_code(self, params: BuilderParams, ctx: FlowContext) -> str:
        previous = ""
        if params.code:
            previous = f"Current version of the code (revise it according to the user's input):\n```python\n{params.code}\n```\n"
        response = await ctx.oracle.generate(_fill(
            CODE_PROMPT,
            history=self._history(ctx),
            user_input=ctx.user_text,
            details=self._details(params),
            previous=previous,
            template=PROVIDER_TEMPLATE,
        ))
        code = extract_code_block(response)
        if code:
            params.code = code
        else:
            logger.warning("Code generation response contained no code block")
        return response

    async def _ensure_slug(self, params: BuilderParams, ctx: FlowContext) -> str:
        if params.slug:
            return params.slug
        slug = slugify(params.server_name)
        if not slug:
            raw = await ctx.oracle.generate(_fill(NAME_PROMPT, details=self._details(params)))
            payload = try_extract_json_object(raw, label="Name suggestion")
            if payload and isinstance(payload.get("name"), str):
                slug = slugify(payload["name"])
        params.slug = slug or "custom-server"
        if not params.server_name:
            params.server_name = params.slug
        return params.slug

    async def _enumerate_tools(self, params: BuilderParams, ctx: FlowContext) -> List[ToolDescriptor]:
        raw = await ctx.oracle.generate(_fill(ENUMERATE_PROMPT, code=params.code))
        payload = try_extract_json_object(raw, label="Tool enumeration")
        if payload is None or not isinstance(payload.get("tools"), list):
            return []
        return tools_from_manifest(payload["tools"])

    async def _write_files(self, ctx: FlowContext, directory: str, files: Dict[str, str]) -> Optional[str]:
        """Write files through the filesystem provider. Returns an error message or None."""
        fs = ctx.filesystem_provider_id
        try:
            result = await ctx.executor.execute(fs, "create_directory", {"path": directory})
            if result.is_error:
                return result.text or "could not create directory"
            for name, content in files.items():
                result = await ctx.executor.execute(fs, "write_file", {"path": f"{directory}/{name}", "content": content})
                if result.is_error:
                    return result.text or f"could not write {name}"
        except (ProviderNotFound, ToolNotFound, TransportFailure) as e:
            return str(e)
        return None

    # ── stages ──────────────────────────────────────────

    async def _intro(self, params: BuilderParams, ctx: FlowContext) -> StageOutcome:
        response = await ctx.oracle.generate(_fill(
            INTRO_PROMPT, user_input=ctx.user_text, history=self._history(ctx), providers_dir=ctx.providers_dir))
        return StageOutcome(response, BuilderStage.GATHERING_REQUIREMENTS)

    async def _gather(self, params: BuilderParams, ctx: FlowContext) -> StageOutcome:
        raw = await ctx.oracle.generate(_fill(GATHER_PROMPT, history=self._history(ctx), user_input=ctx.user_text))
        payload = try_extract_json_object(raw, label="Requirements")
        if payload is not None and isinstance(payload.get("response"), str):
            response = payload["response"]
            ready = coerce_bool(payload.get("ready"))
        else:
            response = raw
            ready = any(phrase in raw.lower() for phrase in _READY_PHRASES)

        if not ready:
            return StageOutcome(response, BuilderStage.GATHERING_REQUIREMENTS)

        await self._extract_manifest(params, ctx)
        return StageOutcome(response, BuilderStage.CODE_GENERATION, chain=True)

    async def _generate_code(self, params: BuilderParams, ctx: FlowContext) -> StageOutcome:
        if params.code and await self._confirm(ctx, "Does the user want to save the generated server code now?"):
            return StageOutcome("", BuilderStage.SAVE_CODE, chain=True)

        response = await self._write_code(params, ctx)
        if params.code:
            response += "\n\nWhen you're happy with the code, tell me to save it."
        return StageOutcome(response, BuilderStage.CODE_GENERATION)

    async def _save_code(self, params: BuilderParams, ctx: FlowContext) -> StageOutcome:
        if not params.code:
            await self._write_code(params, ctx)
        if not params.code:
            return StageOutcome("I couldn't produce any code to save yet. Could you describe the tools once more?",
                                BuilderStage.SAVE_CODE)

        slug = await self._ensure_slug(params, ctx)
        directory = f"{ctx.providers_dir}/{slug}"
        manifest = {"name": params.server_name, "description": params.server_description, "tools": params.tools}
        error = await self._write_files(ctx, directory, {
            "server.py": params.code,
            "requirements.txt": "mcp\n",
            "manifest.json": json.dumps(manifest, indent=2, ensure_ascii=False),
        })
        if error:
            logger.error(f"Saving provider {slug} failed: {error}")
            return StageOutcome(f"I couldn't save the server files: {error}. Say \"save\" to try again.",
                                BuilderStage.SAVE_CODE)

        params.saved_path = f"{directory}/server.py"
        tools = tools_from_source(params.code) or tools_from_manifest(params.tools)
        if not tools:
            tools = await self._enumerate_tools(params, ctx)
        params.descriptor = ProviderDescriptor(
            id=slug,
            display_name=params.server_name or slug,
            description=params.server_description or f"Generated {params.server_type or 'MCP'} server",
            transport=ProcessTransport(command=sys.executable),
            tools=tools,
            enabled=True,
            filesystem_path=params.saved_path,
        )
        tool_names = ", ".join(t.name for t in tools) or "none detected"
        return StageOutcome(
            f"Saved the server to {params.saved_path} (with requirements.txt and manifest.json).\n"
            f"Tools: {tool_names}.\n"
            f"Would you like me to register it as '{slug}' so you can use it right away?",
            BuilderStage.REGISTER_SERVER,
        )

    async def _register(self, params: BuilderParams, ctx: FlowContext) -> StageOutcome:
        descriptor = params.descriptor
        if descriptor is None:
            return StageOutcome("There is no saved server to register.", BuilderStage.COMPLETE)

        if await self._confirm(ctx, "Does the user want to register the new server now?"):
            await ctx.registry.upsert(descriptor)
            params.registered = True
            return StageOutcome(
                f"Registered '{descriptor.display_name}' as '{descriptor.id}'. "
                f"Run \"install server {descriptor.id}\" to install its dependencies, then just ask me to use it.",
                BuilderStage.COMPLETE,
            )
        return StageOutcome(
            f"Okay, I won't register it. The files stay at {params.saved_path}.",
            BuilderStage.COMPLETE,
        )

    async def _complete(self, params: BuilderParams, ctx: FlowContext) -> StageOutcome:
        response = await ctx.oracle.generate(_fill(
            COMPLETE_PROMPT, history=self._history(ctx), user_input=ctx.user_text, details=self._details(params)))
        return StageOutcome(response, BuilderStage.COMPLETE)
