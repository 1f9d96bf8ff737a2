"""Per-turn dispatch: keyword commands → active flow → flow router → planner.

One turn is fully resolved (decision, optional tool call or flow stage,
memory update) before the session's next turn is accepted.
"""
import logging
import time
from typing import List, Optional

from .config import Settings, settings as default_settings
from .decisions import (
    Decision, DirectAnswer, InstallProviderDeps, InvokeTool, ListProviders, ProviderStatus,
    RemoveProvider, SetProviderEnabled,
)
from .defaults import build_store, default_flows, default_providers
from .errors import OracleUnavailable, ProviderNotFound, ToolNotFound, TransportFailure
from .flows.engine import FlowEngine
from .flows.registry import FlowRegistry
from .flows.router import FlowRouter
from .formatter import ResponseFormatter
from .llm import Oracle, create_oracle
from .planner import QueryRouter
from .session import ChatSession
from .tools.executor import ToolExecutor
from .tools.registry import ProviderRegistry
from .tools.router import CANCEL_FLOW, route as route_command

logger = logging.getLogger(__name__)

ORACLE_DOWN_TEXT = "Sorry, I can't reach the language model right now. Please try again in a moment."
NO_FLOW_TEXT = "There is no active flow to cancel."

MANAGEMENT_HINT = (
    "You can manage servers with these commands:\n"
    "- 'enable server <id>' - Enable a disabled server\n"
    "- 'disable server <id>' - Temporarily disable a server\n"
    "- 'remove server <id> [and delete files]' - Remove a server\n"
    "- 'install server <id>' - Install a server's dependencies\n"
    "- 'server status' - Check which servers are active\n"
)


class Orchestrator:
    def __init__(self, oracle: Oracle, registry: ProviderRegistry, flows: Optional[FlowRegistry] = None,
                 config: Optional[Settings] = None, executor: Optional[ToolExecutor] = None):
        self.config = config or default_settings
        self.oracle = oracle
        self.registry = registry
        self.flows = flows if flows is not None else FlowRegistry()
        self.executor = executor or ToolExecutor(registry, timeout=self.config.tool_timeout_s)

        turns = self.config.history_turns
        self.planner = QueryRouter(oracle, history_turns=turns)
        self.formatter = ResponseFormatter(oracle, history_turns=turns)
        self.flow_router = FlowRouter(oracle, history_turns=turns)
        self.flow_engine = FlowEngine(
            self.flows, oracle, registry, self.executor,
            history_turns=turns,
            providers_dir=self.config.providers_dir,
            filesystem_provider_id=self.config.filesystem_provider_id,
        )

    @classmethod
    async def create(cls, config: Optional[Settings] = None, oracle: Optional[Oracle] = None) -> "Orchestrator":
        """Build from settings: oracle, persisted registry with defaults, default flows."""
        config = config or default_settings
        registry = ProviderRegistry(store=build_store(config), install_timeout=config.install_timeout_s)
        await registry.load()
        for descriptor in default_providers(config):
            await registry.add_if_absent(descriptor)
        return cls(oracle or create_oracle(config), registry, default_flows(), config)

    def new_session(self) -> ChatSession:
        return ChatSession(memory_capacity=self.config.memory_capacity)

    async def refresh_catalog(self) -> int:
        """Introspect every enabled provider's live tools. Failures are logged, not raised."""
        refreshed = 0
        for provider in self.registry.enabled():
            try:
                tools = await self.executor.discover_tools(provider.id)
                refreshed += 1
                logger.info(f"Discovered {len(tools)} tools on {provider.id}")
            except (ProviderNotFound, TransportFailure) as e:
                logger.warning(f"Tool discovery failed for {provider.id}: {e}")
        return refreshed

    async def process_query(self, user_text: str, session: ChatSession) -> str:
        async with session.lock:
            session.touch()
            t0 = time.monotonic()
            session.memory.add("user", user_text)
            try:
                reply = await self._turn(user_text, session)
            except OracleUnavailable as e:
                logger.error(f"[{session.session_id}] Oracle unavailable: {e}")
                reply = ORACLE_DOWN_TEXT
            session.memory.add("assistant", reply)
            logger.info(f"[{session.session_id}] Turn resolved in {time.monotonic() - t0:.1f}s")
            return reply

    async def _turn(self, user_text: str, session: ChatSession) -> str:
        sid = session.session_id

        command = route_command(user_text)
        if command is not None:
            if command.command == CANCEL_FLOW:
                state = session.end_flow()
                if state is None:
                    return NO_FLOW_TEXT
                logger.info(f"[{sid}] Flow {state.flow_id} cancelled at {state.stage.value}")
                return "Okay, I've cancelled the current flow. What would you like to do next?"
            return await self._dispatch(command.decision, user_text, session)

        state = session.flow_state
        flow = self.flows.get(state.flow_id) if state is not None else None
        if state is not None and flow is None:
            logger.warning(f"[{sid}] Dropping state of unknown flow {state.flow_id}")
            session.end_flow()
            state = None

        if state is not None:
            if not flow.is_terminal(flow.coerce_stage(state.stage)):
                return await self._run_flow(state.flow_id, user_text, session)
            # A finished flow releases the session back to normal routing
            logger.info(f"[{sid}] Flow {state.flow_id} finished at {state.stage.value}; resuming normal routing")
            session.end_flow()

        routing = await self.flow_router.should_handle(user_text, session.memory, self.flows.descriptors())
        if routing.use_flow:
            session.flow_state = self.flow_engine.start(routing.flow_id, routing.seed_params)
            return await self._run_flow(routing.flow_id, user_text, session)
        decision = await self.planner.decide(user_text, session.memory, self.registry.list())
        return await self._dispatch(decision, user_text, session)

    async def _run_flow(self, flow_id: str, user_text: str, session: ChatSession) -> str:
        result = await self.flow_engine.run(flow_id, user_text, session.flow_state, session.memory)
        session.flow_state = result.state
        if result.completed:
            logger.info(f"[{session.session_id}] Flow {flow_id} reached {result.state.stage.value}")
        return result.response

    async def _dispatch(self, decision: Decision, user_text: str, session: ChatSession) -> str:
        try:
            if isinstance(decision, DirectAnswer):
                return decision.text
            if isinstance(decision, InvokeTool):
                return await self._invoke(decision, user_text, session)
            if isinstance(decision, ListProviders):
                return self.list_providers()
            if isinstance(decision, ProviderStatus):
                return self.provider_status()
            if isinstance(decision, SetProviderEnabled):
                return await self.set_enabled(decision.provider_id, decision.enabled)
            if isinstance(decision, RemoveProvider):
                return await self.remove_provider(decision.provider_id, decision.delete_files)
            if isinstance(decision, InstallProviderDeps):
                return await self.install_provider(decision.provider_id)
        except (ProviderNotFound, ToolNotFound, TransportFailure) as e:
            logger.warning(f"[{session.session_id}] {type(e).__name__}: {e}")
            return await self.formatter.format_error(e, user_text, session.memory)
        raise TypeError(f"Unhandled decision: {decision!r}")

    async def _invoke(self, decision: InvokeTool, user_text: str, session: ChatSession) -> str:
        provider = self.registry.get(decision.provider_id)
        tool = provider.get_tool(decision.tool_name) if provider else None
        if not decision.ready:
            return self.formatter.ask_for_missing(decision, tool)
        result = await self.executor.execute(decision.provider_id, decision.tool_name, decision.args)
        return await self.formatter.format_result(result, user_text, session.memory)

    # ── Management operations ───────────────────────────

    def list_providers(self) -> str:
        providers = self.registry.list()
        if not providers:
            return "No servers are currently registered."

        lines = ["Available servers:", ""]
        for p in providers:
            status = "🟢 Active" if p.enabled else "🔴 Disabled"
            lines.append(f"{p.display_name} (ID: {p.id}) - {status}")
            lines.append(f"Description: {p.description}")
            lines.append("Tools:")
            if not p.tools:
                lines.append("- (none discovered yet)")
            for tool in p.tools:
                lines.append(f"- {tool.name}: {tool.description}")
            lines.append("")
        return "\n".join(lines) + "\n" + MANAGEMENT_HINT

    def provider_status(self) -> str:
        providers = self.registry.list()
        if not providers:
            return "No servers are currently registered."

        active = [p for p in providers if p.enabled]
        disabled = [p for p in providers if not p.enabled]
        lines = ["Server Status:", "", f"Active Servers ({len(active)}):"]
        lines += [f"- {p.display_name} (ID: {p.id})" for p in active]
        lines += ["", f"Disabled Servers ({len(disabled)}):"]
        lines += [f"- {p.display_name} (ID: {p.id})" for p in disabled]
        return "\n".join(lines)

    def _not_found(self, provider_id: str) -> str:
        return f"Server with ID \"{provider_id}\" not found. Use 'list servers' to see available servers."

    async def set_enabled(self, provider_id: str, enabled: bool) -> str:
        provider = self.registry.get(provider_id)
        if provider is None:
            return self._not_found(provider_id)
        if provider.enabled == enabled:
            return f"Server \"{provider.display_name}\" is already {'active' if enabled else 'disabled'}."
        await self.registry.set_enabled(provider_id, enabled)
        if enabled and not provider.tools:
            try:
                tools = await self.executor.discover_tools(provider_id)
                logger.info(f"Discovered {len(tools)} tools on re-enabled {provider_id}")
            except (ProviderNotFound, TransportFailure) as e:
                logger.warning(f"Tool discovery failed for {provider_id}: {e}")
        if enabled:
            return f"Server \"{provider.display_name}\" has been activated and is now available for use."
        return f"Server \"{provider.display_name}\" has been deactivated and will not be used for query routing."

    async def remove_provider(self, provider_id: str, delete_files: bool = False) -> str:
        provider = self.registry.get(provider_id)
        if provider is None:
            return self._not_found(provider_id)
        name = provider.display_name
        await self.registry.remove(provider_id, delete_files=delete_files)
        if delete_files and provider.filesystem_path:
            return f"Server \"{name}\" has been removed and its files deleted."
        return f"Server \"{name}\" has been removed."

    async def install_provider(self, provider_id: str) -> str:
        provider = self.registry.get(provider_id)
        if provider is None:
            return self._not_found(provider_id)
        result = await self.registry.install_dependencies(provider_id)
        if result.ok:
            return f"Dependencies for server \"{provider.display_name}\" have been installed."
        text = f"Installing dependencies for server \"{provider.display_name}\" failed: {result.message}"
        tail = _tail(result.output)
        return f"{text}\n{tail}" if tail else text


def _tail(output: str, lines: int = 10) -> str:
    rows: List[str] = [r for r in (output or "").splitlines() if r.strip()]
    return "\n".join(rows[-lines:])
