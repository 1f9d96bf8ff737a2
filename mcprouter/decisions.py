"""Decision types produced by the planner, and their validating decoders.

A decision is one of a closed set of dataclasses. ``decode_decision`` maps the
oracle's ``action`` tag to exactly one decoder; unknown tags and invalid
payloads raise DecisionMalformed.
"""
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Union

from .errors import DecisionMalformed
from .tools.models import ProviderDescriptor


@dataclass(frozen=True)
class DirectAnswer:
    text: str
    reasoning: str = ""

    action = "direct_answer"


@dataclass(frozen=True)
class InvokeTool:
    provider_id: str
    tool_name: str
    args: Dict[str, Any] = field(default_factory=dict)
    missing_params: List[str] = field(default_factory=list)
    response: str = ""

    action = "invoke_tool"

    @property
    def ready(self) -> bool:
        return not self.missing_params


@dataclass(frozen=True)
class ListProviders:
    action = "list_providers"


@dataclass(frozen=True)
class ProviderStatus:
    action = "provider_status"


@dataclass(frozen=True)
class SetProviderEnabled:
    provider_id: str
    enabled: bool

    action = "set_provider_enabled"


@dataclass(frozen=True)
class RemoveProvider:
    provider_id: str
    delete_files: bool = False

    action = "remove_provider"


@dataclass(frozen=True)
class InstallProviderDeps:
    provider_id: str

    action = "install_provider"


Decision = Union[
    DirectAnswer, InvokeTool, ListProviders, ProviderStatus,
    SetProviderEnabled, RemoveProvider, InstallProviderDeps,
]

# Action tags the oracle is asked to emit
ACTIONS = (
    "direct_answer", "invoke_tool", "list_providers", "provider_status",
    "enable_provider", "disable_provider", "remove_provider", "install_provider",
)


def _text(payload: Dict[str, Any], key: str) -> str:
    value = payload.get(key)
    return value.strip() if isinstance(value, str) else ""


def _section(payload: Dict[str, Any], key: str) -> Dict[str, Any]:
    value = payload.get(key)
    if not isinstance(value, dict):
        raise DecisionMalformed(f"Missing '{key}' object for action {payload.get('action')!r}")
    return value


def _provider_id(payload: Dict[str, Any]) -> str:
    server = _section(payload, "server")
    provider_id = server.get("id")
    if not isinstance(provider_id, str) or not provider_id.strip():
        raise DecisionMalformed(f"Missing server id for action {payload.get('action')!r}")
    return provider_id.strip()


def _decode_direct(payload: Dict[str, Any], providers: Dict[str, ProviderDescriptor]) -> DirectAnswer:
    text = _text(payload, "response")
    if not text:
        raise DecisionMalformed("direct_answer without a response")
    return DirectAnswer(text=text, reasoning=_text(payload, "reasoning"))


def _decode_invoke(payload: Dict[str, Any], providers: Dict[str, ProviderDescriptor]) -> InvokeTool:
    tool_section = _section(payload, "tool")
    provider_id = tool_section.get("serverId")
    tool_name = tool_section.get("name")
    if not isinstance(provider_id, str) or not provider_id or not isinstance(tool_name, str) or not tool_name:
        raise DecisionMalformed("Missing tool information in oracle response")

    provider = providers.get(provider_id)
    if provider is None:
        raise DecisionMalformed(f"Server with ID {provider_id} not found")
    tool = provider.get_tool(tool_name)
    if tool is None:
        raise DecisionMalformed(f"Tool {tool_name} not found on server {provider_id}")

    raw_args = tool_section.get("parameters") or {}
    if not isinstance(raw_args, dict):
        raise DecisionMalformed("Tool parameters must be an object")
    args = {k: v for k, v in raw_args.items() if v is not None and v != ""}

    missing = [p.name for p in tool.required_params() if p.name not in args]
    reported = tool_section.get("missing_parameters") or []
    if isinstance(reported, list):
        for name in reported:
            # Only names the tool actually declares and that are still absent
            if isinstance(name, str) and tool.param(name) and name not in args and name not in missing:
                missing.append(name)

    return InvokeTool(
        provider_id=provider_id,
        tool_name=tool_name,
        args=args,
        missing_params=missing,
        response=_text(payload, "response"),
    )


def _decode_list(payload, providers) -> ListProviders:
    return ListProviders()


def _decode_status(payload, providers) -> ProviderStatus:
    return ProviderStatus()


def _decode_enable(payload, providers) -> SetProviderEnabled:
    return SetProviderEnabled(provider_id=_provider_id(payload), enabled=True)


def _decode_disable(payload, providers) -> SetProviderEnabled:
    return SetProviderEnabled(provider_id=_provider_id(payload), enabled=False)


def _decode_remove(payload, providers) -> RemoveProvider:
    delete_files = _section(payload, "server").get("deleteFiles", False)
    return RemoveProvider(provider_id=_provider_id(payload), delete_files=delete_files is True)


def _decode_install(payload, providers) -> InstallProviderDeps:
    return InstallProviderDeps(provider_id=_provider_id(payload))


_DECODERS: Dict[str, Callable[[Dict[str, Any], Dict[str, ProviderDescriptor]], Decision]] = {
    "direct_answer": _decode_direct,
    "invoke_tool": _decode_invoke,
    "list_providers": _decode_list,
    "provider_status": _decode_status,
    "enable_provider": _decode_enable,
    "disable_provider": _decode_disable,
    "remove_provider": _decode_remove,
    "install_provider": _decode_install,
}


def decode_decision(payload: Dict[str, Any], providers: Optional[Dict[str, ProviderDescriptor]] = None) -> Decision:
    """Decode a parsed oracle object into a Decision.

    ``providers`` is the live catalog of enabled providers keyed by id;
    invoke_tool decisions must resolve against it.
    """
    action = payload.get("action")
    if not isinstance(action, str):
        raise DecisionMalformed("Missing required field 'action'")
    decoder = _DECODERS.get(action.strip().lower())
    if decoder is None:
        raise DecisionMalformed(f"Unknown action {action!r}")
    return decoder(payload, providers or {})
