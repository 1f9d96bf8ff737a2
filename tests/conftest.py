"""Shared fixtures: a scripted oracle and small provider catalogs."""
import json
import sys
from typing import List, Union

import pytest

from mcprouter.errors import OracleUnavailable
from mcprouter.llm import Oracle
from mcprouter.tools.models import ProcessTransport, ProviderDescriptor, ToolDescriptor, ToolParam
from mcprouter.tools.registry import ProviderRegistry


class FakeOracle(Oracle):
    """Returns queued replies in order and records every prompt it was given.

    A reply may be a dict (sent as JSON) or an exception instance (raised).
    """

    name = "fake"

    def __init__(self, *replies: Union[str, dict, Exception]):
        self.replies: List[Union[str, dict, Exception]] = list(replies)
        self.prompts: List[str] = []

    def queue(self, *replies: Union[str, dict, Exception]):
        self.replies.extend(replies)

    async def generate(self, prompt: str) -> str:
        self.prompts.append(prompt)
        if not self.replies:
            raise OracleUnavailable("no scripted reply left")
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        if isinstance(reply, dict):
            return json.dumps(reply)
        return reply


def calculator_descriptor(enabled: bool = True) -> ProviderDescriptor:
    ab = [ToolParam("a", "number", "First number"), ToolParam("b", "number", "Second number")]
    return ProviderDescriptor(
        id="calculator",
        display_name="Calculator",
        description="A server that provides mathematical operations",
        transport=ProcessTransport(command=sys.executable),
        tools=[
            ToolDescriptor("add", "Add two numbers together", list(ab)),
            ToolDescriptor("divide", "Divide the first number by the second", list(ab)),
        ],
        enabled=enabled,
        filesystem_path="servers/calculator/calculator_server.py",
    )


def weather_descriptor(enabled: bool = True) -> ProviderDescriptor:
    return ProviderDescriptor(
        id="weather",
        display_name="Weather",
        description="Weather forecasts",
        transport=ProcessTransport(command=sys.executable),
        tools=[ToolDescriptor("get_forecast", "Forecast for a city", [
            ToolParam("city", "string", "City name"),
            ToolParam("days", "number", "Number of days", required=False),
        ])],
        enabled=enabled,
    )


@pytest.fixture
def oracle():
    return FakeOracle()


@pytest.fixture
def registry():
    reg = ProviderRegistry()
    reg._providers = {
        "calculator": calculator_descriptor(),
        "weather": weather_descriptor(),
    }
    return reg
