"""Error taxonomy for the router core.

Only ``OracleUnavailable`` ends a turn. Registry and transport errors are turned
into conversational explanations at the orchestrator boundary, and
``DecisionMalformed`` never leaves the planner or flow layers.
"""


class RouterError(Exception):
    """Base class for every error raised by the router core."""


class OracleUnavailable(RouterError):
    """The text-generation service could not be reached or answered garbage."""


class DecisionMalformed(RouterError):
    """Oracle output could not be parsed or validated into a decision."""


class ProviderNotFound(RouterError):
    def __init__(self, provider_id: str, message: str = ""):
        self.provider_id = provider_id
        super().__init__(message or f"Provider '{provider_id}' not found")


class ProviderDisabled(ProviderNotFound):
    def __init__(self, provider_id: str):
        super().__init__(provider_id, f"Provider '{provider_id}' is disabled")


class ToolNotFound(RouterError):
    def __init__(self, provider_id: str, tool_name: str):
        self.provider_id = provider_id
        self.tool_name = tool_name
        super().__init__(f"Tool '{tool_name}' not found on provider '{provider_id}'")


class TransportFailure(RouterError):
    """Spawn, connect, handshake or timeout failure talking to a provider."""

    def __init__(self, provider_id: str, reason: str):
        self.provider_id = provider_id
        self.reason = reason
        super().__init__(f"Transport failure for provider '{provider_id}': {reason}")
