"""LLM request router for MCP tool-providers."""

__version__ = "0.1.0"
