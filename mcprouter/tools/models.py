"""Provider and tool descriptors shared by the registry, executor and planner."""
import os
import sys
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union


@dataclass
class ToolParam:
    name: str
    type: str = "string"
    description: str = ""
    required: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "type": self.type, "description": self.description, "required": self.required}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ToolParam":
        return cls(
            name=str(data["name"]),
            type=str(data.get("type") or "string"),
            description=str(data.get("description") or ""),
            required=bool(data.get("required", True)),
        )


@dataclass
class ToolDescriptor:
    name: str
    description: str = ""
    params: List[ToolParam] = field(default_factory=list)

    def param(self, name: str) -> Optional[ToolParam]:
        for p in self.params:
            if p.name == name:
                return p
        return None

    def required_params(self) -> List[ToolParam]:
        return [p for p in self.params if p.required]

    @classmethod
    def from_input_schema(cls, name: str, description: str, schema: Optional[Dict[str, Any]]) -> "ToolDescriptor":
        """Build a descriptor from a JSON-Schema ``inputSchema`` as reported by list_tools."""
        schema = schema or {}
        properties = schema.get("properties") or {}
        required = set(schema.get("required") or [])
        params = []
        for pname, pschema in properties.items():
            pschema = pschema if isinstance(pschema, dict) else {}
            ptype = pschema.get("type", "any")
            if isinstance(ptype, list):
                ptype = "|".join(str(t) for t in ptype)
            params.append(ToolParam(
                name=pname,
                type=str(ptype),
                description=pschema.get("description", "") or pschema.get("title", ""),
                required=pname in required,
            ))
        return cls(name=name, description=description or "", params=params)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "params": [p.to_dict() for p in self.params],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ToolDescriptor":
        return cls(
            name=str(data["name"]),
            description=str(data.get("description") or ""),
            params=[ToolParam.from_dict(p) for p in data.get("params") or []],
        )


@dataclass
class ProcessTransport:
    """Spawn ``command args...`` and speak the protocol over stdin/stdout."""
    command: str
    args: List[str] = field(default_factory=list)
    env: Optional[Dict[str, str]] = None

    kind = "stdio"


@dataclass
class StreamTransport:
    """Open a server-pushed stream at ``url``."""
    url: str

    kind = "sse"


TransportSpec = Union[ProcessTransport, StreamTransport]


def transport_to_dict(spec: TransportSpec) -> Dict[str, Any]:
    if isinstance(spec, StreamTransport):
        return {"type": "sse", "url": spec.url}
    data: Dict[str, Any] = {"type": "stdio", "command": spec.command, "args": list(spec.args)}
    if spec.env:
        data["env"] = dict(spec.env)
    return data


def transport_from_dict(data: Dict[str, Any]) -> TransportSpec:
    kind = data.get("type", "stdio")
    if kind == "sse":
        return StreamTransport(url=str(data["url"]))
    if kind == "stdio":
        return ProcessTransport(
            command=str(data.get("command") or sys.executable),
            args=[str(a) for a in data.get("args") or []],
            env=data.get("env"),
        )
    raise ValueError(f"Unsupported connection type: {kind}")


@dataclass
class ProviderDescriptor:
    id: str
    display_name: str
    description: str
    transport: TransportSpec
    tools: List[ToolDescriptor] = field(default_factory=list)
    enabled: bool = True
    filesystem_path: Optional[str] = None
    install_command: Optional[List[str]] = None

    def get_tool(self, name: str) -> Optional[ToolDescriptor]:
        for tool in self.tools:
            if tool.name == name:
                return tool
        return None

    @property
    def directory(self) -> Optional[str]:
        """Directory owning the provider's files, if file-backed."""
        if not self.filesystem_path:
            return None
        return os.path.dirname(os.path.abspath(self.filesystem_path))

    def launch_args(self) -> List[str]:
        """Process args with the backing file prefixed, if any."""
        if not isinstance(self.transport, ProcessTransport):
            return []
        args = list(self.transport.args)
        if self.filesystem_path:
            args.insert(0, self.filesystem_path)
        return args

    def effective_install_command(self) -> Optional[List[str]]:
        if self.install_command:
            return list(self.install_command)
        if self.filesystem_path:
            return [sys.executable, "-m", "pip", "install", "-r", "requirements.txt"]
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.display_name,
            "description": self.description,
            "connection": transport_to_dict(self.transport),
            "tools": [t.to_dict() for t in self.tools],
            "disabled": not self.enabled,
            "path": self.filesystem_path,
            "install": self.install_command,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ProviderDescriptor":
        return cls(
            id=str(data["id"]),
            display_name=str(data.get("name") or data["id"]),
            description=str(data.get("description") or ""),
            transport=transport_from_dict(data.get("connection") or {}),
            tools=[ToolDescriptor.from_dict(t) for t in data.get("tools") or []],
            enabled=not data.get("disabled", False),
            filesystem_path=data.get("path"),
            install_command=data.get("install"),
        )


@dataclass
class ToolCallResult:
    """Result of a tool call. ``is_error`` marks a provider-reported failure."""
    content: List[Dict[str, Any]] = field(default_factory=list)
    is_error: bool = False

    @property
    def text(self) -> str:
        return "\n".join(c.get("text", "") for c in self.content if c.get("type") == "text")

    def to_dict(self) -> Dict[str, Any]:
        return {"content": self.content, "isError": self.is_error}
