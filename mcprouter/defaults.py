"""Default providers, default flows and store selection."""
import logging
import sys
from pathlib import Path
from typing import List, Optional

from .config import Settings, settings as default_settings
from .flows.provider_builder import ProviderBuilderFlow
from .flows.registry import FlowRegistry
from .tools.models import ProcessTransport, ProviderDescriptor
from .tools.store import JsonProviderStore, ProviderStore

logger = logging.getLogger(__name__)

_ROOT = Path(__file__).resolve().parent.parent
CALCULATOR_PATH = str(_ROOT / "servers" / "calculator" / "calculator_server.py")


def calculator_provider() -> ProviderDescriptor:
    # Tools come from the server itself via list_tools
    return ProviderDescriptor(
        id="calculator",
        display_name="Calculator",
        description="A server that provides mathematical operations",
        transport=ProcessTransport(command=sys.executable),
        tools=[],
        filesystem_path=CALCULATOR_PATH,
    )


def filesystem_provider(provider_id: str = "filesystem", root: str = ".") -> ProviderDescriptor:
    return ProviderDescriptor(
        id=provider_id,
        display_name="Filesystem",
        description="A server that provides filesystem operations",
        transport=ProcessTransport(command="npx", args=["-y", "@modelcontextprotocol/server-filesystem", root]),
        tools=[],
    )


def default_providers(config: Optional[Settings] = None) -> List[ProviderDescriptor]:
    config = config or default_settings
    return [calculator_provider(), filesystem_provider(config.filesystem_provider_id)]


def default_flows() -> FlowRegistry:
    flows = FlowRegistry()
    flows.add(ProviderBuilderFlow())
    return flows


def build_store(config: Optional[Settings] = None) -> Optional[ProviderStore]:
    """Store for the configured ``registry_backend``; None keeps the catalog in memory."""
    config = config or default_settings
    backend = config.registry_backend
    if backend == "json":
        return JsonProviderStore(config.registry_path)
    if backend == "sqlite":
        from .database import SqlProviderStore
        return SqlProviderStore(config.registry_db_path)
    if backend in ("none", "memory", ""):
        return None
    raise ValueError(f"Unsupported registry backend: {backend}")
