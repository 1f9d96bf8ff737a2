"""Tool-provider system — descriptors, registry, executor."""
from .models import ProviderDescriptor, ToolDescriptor, ToolParam, ProcessTransport, StreamTransport, ToolCallResult
from .registry import ProviderRegistry, InstallResult, tool_catalog_for_llm
from .executor import ToolExecutor
from .store import ProviderStore, JsonProviderStore
