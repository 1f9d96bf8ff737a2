"""Tests for mcprouter/orchestrator.py — per-turn dispatch, flows and management commands."""
from unittest.mock import AsyncMock

import pytest

from conftest import FakeOracle
from mcprouter.config import Settings
from mcprouter.defaults import default_flows
from mcprouter.errors import OracleUnavailable, TransportFailure
from mcprouter.flows.base import FlowState
from mcprouter.flows.provider_builder import BuilderParams, BuilderStage
from mcprouter.orchestrator import NO_FLOW_TEXT, ORACLE_DOWN_TEXT, Orchestrator
from mcprouter.tools.models import ToolCallResult
from mcprouter.tools.registry import InstallResult

CONFIG = Settings(registry_backend="none", memory_capacity=10, history_turns=10)

NO_FLOW = {"shouldUseFlow": False}


def _orchestrator(oracle, registry, executor=None):
    orch = Orchestrator(oracle, registry, default_flows(), CONFIG, executor=executor)
    return orch, orch.new_session()


def _ok(text):
    return ToolCallResult(content=[{"type": "text", "text": text}])


class TestQueryDispatch:
    @pytest.mark.asyncio
    async def test_direct_answer(self, registry):
        oracle = FakeOracle(NO_FLOW, {"action": "direct_answer", "response": "The capital of France is Paris."})
        executor = AsyncMock()
        orch, session = _orchestrator(oracle, registry, executor)

        reply = await orch.process_query("What is the capital of France?", session)
        assert reply == "The capital of France is Paris."
        executor.execute.assert_not_awaited()
        turns = session.memory.recent()
        assert [(t.role, t.text) for t in turns] == [
            ("user", "What is the capital of France?"),
            ("assistant", "The capital of France is Paris."),
        ]

    @pytest.mark.asyncio
    async def test_tool_call_is_formatted(self, registry):
        oracle = FakeOracle(
            NO_FLOW,
            {"action": "invoke_tool", "response": "Adding.",
             "tool": {"serverId": "calculator", "name": "add", "parameters": {"a": 5, "b": 3}}},
            "5 plus 3 is 8.",
        )
        executor = AsyncMock()
        executor.execute.return_value = _ok("8")
        orch, session = _orchestrator(oracle, registry, executor)

        reply = await orch.process_query("What is 5 plus 3?", session)
        assert reply == "5 plus 3 is 8."
        executor.execute.assert_awaited_once_with("calculator", "add", {"a": 5, "b": 3})
        assert '"text": "8"' in oracle.prompts[-1]

    @pytest.mark.asyncio
    async def test_missing_parameters_asks_without_executing(self, registry):
        oracle = FakeOracle(
            NO_FLOW,
            {"action": "invoke_tool", "response": "Which numbers?",
             "tool": {"serverId": "calculator", "name": "add", "parameters": {}, "missing_parameters": ["a", "b"]}},
        )
        executor = AsyncMock()
        orch, session = _orchestrator(oracle, registry, executor)

        reply = await orch.process_query("add two numbers", session)
        assert reply.startswith("Which numbers?")
        assert "- a: First number" in reply
        assert "- b: Second number" in reply
        executor.execute.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_transport_failure_is_explained(self, registry):
        oracle = FakeOracle(
            NO_FLOW,
            {"action": "invoke_tool",
             "tool": {"serverId": "calculator", "name": "add", "parameters": {"a": 1, "b": 2}}},
            "Sorry, the calculator is not responding right now.",
        )
        executor = AsyncMock()
        executor.execute.side_effect = TransportFailure("calculator", "timed out after 30s")
        orch, session = _orchestrator(oracle, registry, executor)

        reply = await orch.process_query("1 + 2", session)
        assert reply == "Sorry, the calculator is not responding right now."
        assert "timed out after 30s" in oracle.prompts[-1]
        assert session.memory.recent()[-1].text == reply

    @pytest.mark.asyncio
    async def test_oracle_unavailable_apologizes(self, registry):
        oracle = FakeOracle(OracleUnavailable("down"))
        orch, session = _orchestrator(oracle, registry)
        reply = await orch.process_query("hello", session)
        assert reply == ORACLE_DOWN_TEXT
        assert session.memory.recent()[-1].role == "assistant"

    @pytest.mark.asyncio
    async def test_malformed_decision_becomes_clarification(self, registry):
        oracle = FakeOracle(NO_FLOW, "{ broken")
        orch, session = _orchestrator(oracle, registry)
        reply = await orch.process_query("do the thing", session)
        assert "rephrase" in reply

    @pytest.mark.asyncio
    async def test_history_threaded_into_next_turn(self, registry):
        oracle = FakeOracle(NO_FLOW, {"action": "direct_answer", "response": "Noted."},
                            NO_FLOW, {"action": "direct_answer", "response": "It is 7."})
        orch, session = _orchestrator(oracle, registry)
        await orch.process_query("my number is 7", session)
        await orch.process_query("what is my number?", session)
        assert "user: my number is 7" in oracle.prompts[-1]
        assert "assistant: Noted." in oracle.prompts[-1]


class TestManagement:
    @pytest.mark.asyncio
    async def test_list_servers_keyword_skips_oracle(self, registry):
        oracle = FakeOracle()
        orch, session = _orchestrator(oracle, registry)
        await registry.set_enabled("weather", False)

        reply = await orch.process_query("list servers", session)
        assert oracle.prompts == []
        assert "Calculator (ID: calculator) - 🟢 Active" in reply
        assert "Weather (ID: weather) - 🔴 Disabled" in reply
        assert "- add: Add two numbers together" in reply
        assert "enable server <id>" in reply

    @pytest.mark.asyncio
    async def test_status(self, registry):
        orch, session = _orchestrator(FakeOracle(), registry)
        await registry.set_enabled("weather", False)
        reply = await orch.process_query("server status", session)
        assert "Active Servers (1):\n- Calculator (ID: calculator)" in reply
        assert "Disabled Servers (1):\n- Weather (ID: weather)" in reply

    @pytest.mark.asyncio
    async def test_disable_then_router_cannot_see_it(self, registry):
        oracle = FakeOracle(NO_FLOW, {"action": "direct_answer", "response": "ok"})
        orch, session = _orchestrator(oracle, registry)

        reply = await orch.process_query("deactivate server weather", session)
        assert "has been deactivated" in reply
        assert registry.get("weather").enabled is False

        await orch.process_query("weather in Oslo?", session)
        assert "Server: Weather" not in oracle.prompts[-1]

    @pytest.mark.asyncio
    async def test_already_active_and_already_disabled(self, registry):
        orch, session = _orchestrator(FakeOracle(), registry)
        assert await orch.process_query("enable server calculator", session) == \
            'Server "Calculator" is already active.'
        await orch.process_query("disable server calculator", session)
        assert await orch.process_query("disable server calculator", session) == \
            'Server "Calculator" is already disabled.'

    @pytest.mark.asyncio
    async def test_enable_without_tools_discovers_them(self, registry):
        executor = AsyncMock()
        orch, session = _orchestrator(FakeOracle(), registry, executor)
        await registry.set_enabled("weather", False)
        await registry.update_tools("weather", [])

        reply = await orch.process_query("enable server weather", session)
        assert "has been activated" in reply
        executor.discover_tools.assert_awaited_once_with("weather")

    @pytest.mark.asyncio
    async def test_enable_discovery_failure_still_enables(self, registry):
        executor = AsyncMock()
        executor.discover_tools.side_effect = TransportFailure("weather", "spawn failed")
        orch, session = _orchestrator(FakeOracle(), registry, executor)
        await registry.set_enabled("weather", False)
        await registry.update_tools("weather", [])

        reply = await orch.process_query("enable server weather", session)
        assert "has been activated" in reply
        assert registry.get("weather").enabled is True

    @pytest.mark.asyncio
    async def test_enable_with_known_tools_skips_discovery(self, registry):
        executor = AsyncMock()
        orch, session = _orchestrator(FakeOracle(), registry, executor)
        await registry.set_enabled("weather", False)
        await orch.process_query("enable server weather", session)
        executor.discover_tools.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unknown_server(self, registry):
        orch, session = _orchestrator(FakeOracle(), registry)
        reply = await orch.process_query("activate server nope", session)
        assert 'Server with ID "nope" not found' in reply

    @pytest.mark.asyncio
    async def test_oracle_decided_remove(self, registry):
        oracle = FakeOracle(NO_FLOW, {"action": "remove_provider", "server": {"id": "weather", "deleteFiles": False}})
        orch, session = _orchestrator(oracle, registry)
        reply = await orch.process_query("get rid of the weather thing", session)
        assert reply == 'Server "Weather" has been removed.'
        assert registry.get("weather") is None

    @pytest.mark.asyncio
    async def test_install_failure_surfaces_output(self, registry):
        orch, session = _orchestrator(FakeOracle(), registry)
        registry.install_dependencies = AsyncMock(return_value=InstallResult(
            ok=False, message="Install failed with code 1", returncode=1, output="ERROR: no such package\n"))
        reply = await orch.process_query("install server calculator", session)
        assert "failed: Install failed with code 1" in reply
        assert "ERROR: no such package" in reply

    @pytest.mark.asyncio
    async def test_install_success(self, registry):
        orch, session = _orchestrator(FakeOracle(), registry)
        registry.install_dependencies = AsyncMock(return_value=InstallResult(ok=True, returncode=0))
        reply = await orch.process_query("install server calculator", session)
        assert "have been installed" in reply


class TestFlows:
    @pytest.mark.asyncio
    async def test_flow_triggered_then_continued(self, registry):
        oracle = FakeOracle(
            {"shouldUseFlow": True, "flowId": "provider_builder", "params": {"serverType": "weather"}},
            "Great! What tools should it have?",
            {"response": "What should the forecast return?", "ready": False},
        )
        orch, session = _orchestrator(oracle, registry)

        r1 = await orch.process_query("create a weather server", session)
        assert r1 == "Great! What tools should it have?"
        assert session.flow_state.stage == BuilderStage.GATHERING_REQUIREMENTS
        assert session.flow_state.params.server_type == "weather"

        # active flow: no flow routing or planner call for this turn
        r2 = await orch.process_query("a forecast tool", session)
        assert r2 == "What should the forecast return?"
        assert len(oracle.prompts) == 3

    @pytest.mark.asyncio
    async def test_cancel_flow(self, registry):
        orch, session = _orchestrator(FakeOracle(), registry)
        session.flow_state = FlowState("provider_builder", BuilderStage.CODE_GENERATION, BuilderParams())
        reply = await orch.process_query("cancel flow", session)
        assert "cancelled" in reply
        assert session.flow_state is None
        assert await orch.process_query("cancel flow", session) == NO_FLOW_TEXT

    @pytest.mark.asyncio
    async def test_management_command_inside_flow_leaves_flow_alone(self, registry):
        orch, session = _orchestrator(FakeOracle(), registry)
        state = FlowState("provider_builder", BuilderStage.CODE_GENERATION, BuilderParams())
        session.flow_state = state
        await orch.process_query("list servers", session)
        assert session.flow_state is state

    @pytest.mark.asyncio
    async def test_completed_flow_hands_back_to_planner(self, registry):
        oracle = FakeOracle(NO_FLOW, {"action": "direct_answer", "response": "It is saved under mcp-servers/w."})
        orch, session = _orchestrator(oracle, registry)
        session.flow_state = FlowState("provider_builder", BuilderStage.COMPLETE, BuilderParams(server_name="w"))
        reply = await orch.process_query("where is it saved?", session)
        assert reply == "It is saved under mcp-servers/w."
        assert session.flow_state is None

    @pytest.mark.asyncio
    async def test_tool_call_after_completed_flow_reaches_executor(self, registry):
        oracle = FakeOracle(
            NO_FLOW,
            {"action": "invoke_tool", "response": "Adding.",
             "tool": {"serverId": "calculator", "name": "add", "parameters": {"a": 2, "b": 2}}},
            "2 plus 2 is 4.",
        )
        executor = AsyncMock()
        executor.execute.return_value = _ok("4")
        orch, session = _orchestrator(oracle, registry, executor)
        session.flow_state = FlowState("provider_builder", BuilderStage.COMPLETE, BuilderParams(server_name="w"))

        reply = await orch.process_query("what is 2 plus 2?", session)
        assert reply == "2 plus 2 is 4."
        executor.execute.assert_awaited_once_with("calculator", "add", {"a": 2, "b": 2})
        assert session.flow_state is None

    @pytest.mark.asyncio
    async def test_completed_flow_restarts_on_new_trigger(self, registry):
        oracle = FakeOracle({"shouldUseFlow": True, "flowId": "provider_builder", "params": {}},
                            "Sure, another one! What should it do?")
        orch, session = _orchestrator(oracle, registry)
        session.flow_state = FlowState("provider_builder", BuilderStage.COMPLETE, BuilderParams(server_name="old"))
        await orch.process_query("create another server", session)
        assert session.flow_state.stage == BuilderStage.GATHERING_REQUIREMENTS
        assert session.flow_state.params.server_name == ""

    @pytest.mark.asyncio
    async def test_state_of_unknown_flow_dropped(self, registry):
        oracle = FakeOracle(NO_FLOW, {"action": "direct_answer", "response": "hi"})
        orch, session = _orchestrator(oracle, registry)
        session.flow_state = FlowState("ghost_flow", BuilderStage.INTRO, None)
        assert await orch.process_query("hello", session) == "hi"
        assert session.flow_state is None


class TestCatalogRefresh:
    @pytest.mark.asyncio
    async def test_refresh_logs_failures(self, registry):
        executor = AsyncMock()
        executor.discover_tools.side_effect = [[], TransportFailure("weather", "spawn failed")]
        orch, _ = _orchestrator(FakeOracle(), registry, executor)
        assert await orch.refresh_catalog() == 1
        assert executor.discover_tools.await_count == 2

    @pytest.mark.asyncio
    async def test_create_adds_defaults_only_when_absent(self, tmp_path):
        config = Settings(registry_backend="json", registry_path=str(tmp_path / "servers.json"))
        first = await Orchestrator.create(config, oracle=FakeOracle())
        assert {p.id for p in first.registry.list()} == {"calculator", "filesystem"}
        await first.registry.set_enabled("calculator", False)

        second = await Orchestrator.create(config, oracle=FakeOracle())
        assert second.registry.get("calculator").enabled is False
