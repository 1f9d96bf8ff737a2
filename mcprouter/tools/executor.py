"""Tool executor — opens one provider session per call, invokes, tears down."""
import asyncio
import logging
import time
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Optional, Tuple

from mcp import ClientSession, StdioServerParameters
from mcp.client.sse import sse_client
from mcp.client.stdio import stdio_client
from mcp.shared.exceptions import McpError

from ..errors import ProviderDisabled, ProviderNotFound, ToolNotFound, TransportFailure
from .models import ProcessTransport, ProviderDescriptor, StreamTransport, ToolCallResult, ToolDescriptor
from .registry import ProviderRegistry

logger = logging.getLogger(__name__)


def _root_cause(exc: BaseException) -> BaseException:
    """Unwrap task-group exception groups down to the first leaf."""
    while getattr(exc, "exceptions", None):
        exc = exc.exceptions[0]
    return exc


def _content_to_dicts(content) -> List[Dict[str, Any]]:
    items = []
    for item in content or []:
        if hasattr(item, "model_dump"):
            items.append(item.model_dump(mode="json", exclude_none=True))
        elif isinstance(item, dict):
            items.append(item)
        else:
            items.append({"type": "text", "text": str(item)})
    return items


class ToolExecutor:
    """Executes tools on registered providers.

    No pooling: every call spawns (or connects), handshakes, optionally
    introspects, invokes and closes. The whole session runs under one timeout,
    after which the session is cancelled and the child process terminated.
    """

    def __init__(self, registry: ProviderRegistry, timeout: float = 30.0, refresh_tools: bool = True):
        self.registry = registry
        self.timeout = timeout
        self.refresh_tools = refresh_tools

    def _resolve(self, provider_id: str, require_enabled: bool = True) -> ProviderDescriptor:
        descriptor = self.registry.get(provider_id)
        if descriptor is None:
            raise ProviderNotFound(provider_id)
        if require_enabled and not descriptor.enabled:
            raise ProviderDisabled(provider_id)
        return descriptor

    async def execute(self, provider_id: str, tool_name: str, args: Dict[str, Any]) -> ToolCallResult:
        """Invoke ``tool_name`` on ``provider_id``.

        Provider-reported failures come back as ``ToolCallResult(is_error=True)``;
        spawn/connect/handshake failures and timeouts raise TransportFailure.
        """
        descriptor = self._resolve(provider_id)
        if descriptor.tools and descriptor.get_tool(tool_name) is None:
            raise ToolNotFound(provider_id, tool_name)

        arg_str = ", ".join(f"{k}={v!r}" for k, v in args.items())
        logger.info(f"Executing tool: {provider_id}.{tool_name}({arg_str})")
        t0 = time.monotonic()

        live_tools, result = await self._with_timeout(descriptor, self._invoke(descriptor, tool_name, args))

        if live_tools and self.refresh_tools:
            await self.registry.update_tools(provider_id, live_tools)
        if result is None:
            raise ToolNotFound(provider_id, tool_name)

        elapsed = time.monotonic() - t0
        logger.info(f"Tool {provider_id}.{tool_name}: {elapsed:.1f}s -> {'error' if result.is_error else 'ok'}")
        return result

    async def discover_tools(self, provider_id: str) -> List[ToolDescriptor]:
        """Introspect a provider's live tool list and store it in the registry."""
        descriptor = self._resolve(provider_id, require_enabled=False)
        tools = await self._with_timeout(descriptor, self._list(descriptor))
        await self.registry.update_tools(provider_id, tools)
        return tools

    async def _with_timeout(self, descriptor: ProviderDescriptor, coro):
        try:
            return await asyncio.wait_for(coro, timeout=self.timeout)
        except asyncio.TimeoutError:
            logger.error(f"Provider {descriptor.id} timed out after {self.timeout}s")
            raise TransportFailure(descriptor.id, f"timed out after {self.timeout:.0f}s")
        except Exception as e:
            cause = _root_cause(e)
            logger.error(f"Provider {descriptor.id} session failed: {type(cause).__name__}: {cause}", exc_info=True)
            raise TransportFailure(descriptor.id, f"{type(cause).__name__}: {cause}") from e

    @asynccontextmanager
    async def _open_session(self, descriptor: ProviderDescriptor) -> AsyncIterator[ClientSession]:
        transport = descriptor.transport
        if isinstance(transport, ProcessTransport):
            params = StdioServerParameters(
                command=transport.command,
                args=descriptor.launch_args(),
                env=transport.env,
            )
            async with stdio_client(params) as (read, write):
                async with ClientSession(read, write) as session:
                    await session.initialize()
                    yield session
        elif isinstance(transport, StreamTransport):
            async with sse_client(transport.url) as (read, write):
                async with ClientSession(read, write) as session:
                    await session.initialize()
                    yield session
        else:
            raise ValueError(f"Unsupported transport for provider {descriptor.id}: {transport!r}")

    async def _list(self, descriptor: ProviderDescriptor) -> List[ToolDescriptor]:
        async with self._open_session(descriptor) as session:
            listed = await session.list_tools()
        return [
            ToolDescriptor.from_input_schema(t.name, t.description or "", t.inputSchema)
            for t in listed.tools
        ]

    async def _invoke(self, descriptor: ProviderDescriptor, tool_name: str,
                      args: Dict[str, Any]) -> Tuple[Optional[List[ToolDescriptor]], Optional[ToolCallResult]]:
        """Returns (live tools or None, result or None when the tool is missing).

        Nothing is raised from inside the session so that errors are not
        wrapped by the session's task group.
        """
        live_tools: Optional[List[ToolDescriptor]] = None
        result: Optional[ToolCallResult] = None
        async with self._open_session(descriptor) as session:
            try:
                listed = await session.list_tools()
                live_tools = [
                    ToolDescriptor.from_input_schema(t.name, t.description or "", t.inputSchema)
                    for t in listed.tools
                ]
            except McpError as e:
                logger.debug(f"Provider {descriptor.id} list_tools failed: {e}")

            if live_tools is None or any(t.name == tool_name for t in live_tools):
                try:
                    called = await session.call_tool(tool_name, arguments=args)
                    result = ToolCallResult(content=_content_to_dicts(called.content), is_error=bool(called.isError))
                except McpError as e:
                    logger.warning(f"Provider {descriptor.id} rejected {tool_name}: {e}")
                    result = ToolCallResult(content=[{"type": "text", "text": str(e)}], is_error=True)
        return live_tools, result
