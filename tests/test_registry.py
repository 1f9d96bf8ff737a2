"""Tests for mcprouter/tools/registry.py — catalog lifecycle, install step and prompt rendering."""
import asyncio
import os
import sys
import threading
import time
from unittest.mock import AsyncMock, patch

import pytest

from conftest import calculator_descriptor, weather_descriptor
from mcprouter.tools.models import ProcessTransport, ProviderDescriptor, ToolDescriptor, ToolParam
from mcprouter.tools.registry import ProviderRegistry, tool_catalog_for_llm


def _file_backed(tmp_path, provider_id="weather", install_command=None):
    directory = tmp_path / provider_id
    directory.mkdir()
    server = directory / "server.py"
    server.write_text("print('hi')\n")
    return ProviderDescriptor(
        id=provider_id,
        display_name=provider_id.title(),
        description="test provider",
        transport=ProcessTransport(command=sys.executable),
        filesystem_path=str(server),
        install_command=install_command,
    )


class TestCatalog:
    @pytest.mark.asyncio
    async def test_upsert_and_get(self):
        reg = ProviderRegistry()
        await reg.upsert(calculator_descriptor())
        assert reg.get("calculator").display_name == "Calculator"
        assert reg.get("missing") is None

    @pytest.mark.asyncio
    async def test_upsert_replaces_in_place(self):
        reg = ProviderRegistry()
        await reg.upsert(calculator_descriptor())
        await reg.upsert(weather_descriptor())
        replacement = calculator_descriptor()
        replacement.description = "v2"
        await reg.upsert(replacement)
        assert [p.id for p in reg.list()] == ["calculator", "weather"]
        assert reg.get("calculator").description == "v2"

    @pytest.mark.asyncio
    async def test_add_if_absent_keeps_existing(self):
        reg = ProviderRegistry()
        await reg.upsert(calculator_descriptor(enabled=False))
        assert await reg.add_if_absent(calculator_descriptor(enabled=True)) is False
        assert reg.get("calculator").enabled is False
        assert await reg.add_if_absent(weather_descriptor()) is True

    @pytest.mark.asyncio
    async def test_list_includes_disabled_enabled_does_not(self, registry):
        await registry.set_enabled("weather", False)
        assert {p.id for p in registry.list()} == {"calculator", "weather"}
        assert [p.id for p in registry.enabled()] == ["calculator"]

    @pytest.mark.asyncio
    async def test_set_enabled_not_found(self, registry):
        assert await registry.set_enabled("nope", True) is False

    @pytest.mark.asyncio
    async def test_update_tools(self, registry):
        tools = [ToolDescriptor("sqrt", "Square root", [ToolParam("x", "number")])]
        assert await registry.update_tools("calculator", tools) is True
        assert [t.name for t in registry.get("calculator").tools] == ["sqrt"]
        assert await registry.update_tools("nope", tools) is False

    @pytest.mark.asyncio
    async def test_mutations_write_through_to_store(self):
        store = AsyncMock()
        reg = ProviderRegistry(store=store)
        await reg.upsert(calculator_descriptor())
        await reg.set_enabled("calculator", False)
        await reg.remove("calculator")
        assert store.upsert.await_count == 2
        store.delete.assert_awaited_once_with("calculator")

    @pytest.mark.asyncio
    async def test_store_failure_does_not_block_mutation(self):
        store = AsyncMock()
        store.upsert.side_effect = OSError("disk full")
        reg = ProviderRegistry(store=store)
        await reg.upsert(calculator_descriptor())
        assert reg.get("calculator") is not None

    @pytest.mark.asyncio
    async def test_load_replaces_catalog(self):
        store = AsyncMock()
        store.load_all.return_value = [weather_descriptor()]
        reg = ProviderRegistry(store=store)
        assert await reg.load() == 1
        assert [p.id for p in reg.list()] == ["weather"]

    @pytest.mark.asyncio
    async def test_concurrent_mutations_are_serialized(self):
        reg = ProviderRegistry()
        await asyncio.gather(*[
            reg.upsert(ProviderDescriptor(f"p{i}", f"P{i}", "", ProcessTransport(sys.executable)))
            for i in range(20)
        ])
        assert len(reg.list()) == 20


class TestRemove:
    @pytest.mark.asyncio
    async def test_remove_not_found(self, registry):
        assert await registry.remove("nope") is False

    @pytest.mark.asyncio
    async def test_remove_keeps_files_by_default(self, tmp_path):
        descriptor = _file_backed(tmp_path)
        reg = ProviderRegistry()
        await reg.upsert(descriptor)
        assert await reg.remove("weather") is True
        assert reg.get("weather") is None
        assert os.path.exists(descriptor.filesystem_path)

    @pytest.mark.asyncio
    async def test_remove_with_delete_files(self, tmp_path):
        descriptor = _file_backed(tmp_path)
        reg = ProviderRegistry()
        await reg.upsert(descriptor)
        assert await reg.remove("weather", delete_files=True) is True
        assert not (tmp_path / "weather").exists()

    @pytest.mark.asyncio
    async def test_delete_failure_still_removes(self, tmp_path):
        descriptor = _file_backed(tmp_path)
        reg = ProviderRegistry()
        await reg.upsert(descriptor)
        with patch("mcprouter.tools.registry.shutil.rmtree", side_effect=OSError("busy")):
            assert await reg.remove("weather", delete_files=True) is True
        assert reg.get("weather") is None

    @pytest.mark.asyncio
    async def test_directory_deleted_off_the_event_loop(self, tmp_path):
        descriptor = _file_backed(tmp_path)
        reg = ProviderRegistry()
        await reg.upsert(descriptor)
        threads = []
        with patch("mcprouter.tools.registry.shutil.rmtree", side_effect=lambda path: threads.append(threading.get_ident())):
            assert await reg.remove("weather", delete_files=True) is True
        assert len(threads) == 1
        assert threads[0] != threading.get_ident()

    @pytest.mark.asyncio
    async def test_refuses_to_delete_working_directory(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        descriptor = ProviderDescriptor("root", "Root", "", ProcessTransport(sys.executable),
                                        filesystem_path=str(tmp_path / "server.py"))
        (tmp_path / "server.py").write_text("")
        reg = ProviderRegistry()
        await reg.upsert(descriptor)
        assert await reg.remove("root", delete_files=True) is True
        assert (tmp_path / "server.py").exists()


class TestInstallDependencies:
    @pytest.mark.asyncio
    async def test_success(self, tmp_path):
        descriptor = _file_backed(tmp_path, install_command=[sys.executable, "-c", "print('installed')"])
        reg = ProviderRegistry()
        await reg.upsert(descriptor)
        result = await reg.install_dependencies("weather")
        assert result.ok
        assert result.returncode == 0
        assert "installed" in result.output

    @pytest.mark.asyncio
    async def test_non_zero_exit_is_failure(self, tmp_path):
        descriptor = _file_backed(tmp_path, install_command=[sys.executable, "-c", "import sys; sys.exit(3)"])
        reg = ProviderRegistry()
        await reg.upsert(descriptor)
        result = await reg.install_dependencies("weather")
        assert not result.ok
        assert result.returncode == 3

    @pytest.mark.asyncio
    async def test_runs_in_provider_directory(self, tmp_path):
        descriptor = _file_backed(tmp_path, install_command=[sys.executable, "-c", "import os; print(os.getcwd())"])
        reg = ProviderRegistry()
        await reg.upsert(descriptor)
        result = await reg.install_dependencies("weather")
        assert os.path.realpath(result.output.strip()) == os.path.realpath(str(tmp_path / "weather"))

    @pytest.mark.asyncio
    async def test_timeout_kills_install(self, tmp_path):
        descriptor = _file_backed(tmp_path, install_command=[sys.executable, "-c", "import time; time.sleep(30)"])
        reg = ProviderRegistry(install_timeout=0.5)
        await reg.upsert(descriptor)
        result = await reg.install_dependencies("weather")
        assert not result.ok
        assert "timed out" in result.message

    @pytest.mark.asyncio
    async def test_install_does_not_block_other_mutations(self, tmp_path):
        slow = _file_backed(tmp_path, provider_id="slow", install_command=[sys.executable, "-c", "import time; time.sleep(2)"])
        reg = ProviderRegistry()
        await reg.upsert(slow)
        await reg.upsert(weather_descriptor())

        install = asyncio.create_task(reg.install_dependencies("slow"))
        await asyncio.sleep(0.2)
        t0 = time.monotonic()
        assert await reg.set_enabled("weather", False) is True
        assert time.monotonic() - t0 < 0.5
        assert not install.done()
        assert (await install).ok

    @pytest.mark.asyncio
    async def test_same_provider_installs_once_at_a_time(self, tmp_path):
        descriptor = _file_backed(tmp_path, install_command=[sys.executable, "-c", "import time; time.sleep(1)"])
        reg = ProviderRegistry()
        await reg.upsert(descriptor)

        first = asyncio.create_task(reg.install_dependencies("weather"))
        await asyncio.sleep(0.2)
        second = await reg.install_dependencies("weather")
        assert not second.ok
        assert "already running" in second.message
        assert (await first).ok

        # guard released once the first install finished
        reg.get("weather").install_command = [sys.executable, "-c", "pass"]
        assert (await reg.install_dependencies("weather")).ok

    @pytest.mark.asyncio
    async def test_unstartable_command(self, tmp_path):
        descriptor = _file_backed(tmp_path, install_command=["definitely-not-a-real-binary-xyz"])
        reg = ProviderRegistry()
        await reg.upsert(descriptor)
        result = await reg.install_dependencies("weather")
        assert not result.ok
        assert "Could not start" in result.message

    @pytest.mark.asyncio
    async def test_not_found(self, registry):
        result = await registry.install_dependencies("nope")
        assert not result.ok
        assert "not found" in result.message

    @pytest.mark.asyncio
    async def test_no_install_step(self, registry):
        result = await registry.install_dependencies("weather")
        assert not result.ok
        assert "no install step" in result.message

    def test_default_install_command_for_file_backed(self, tmp_path):
        descriptor = _file_backed(tmp_path)
        assert descriptor.effective_install_command() == [
            sys.executable, "-m", "pip", "install", "-r", "requirements.txt"]


class TestCatalogForLLM:
    def test_empty(self):
        assert tool_catalog_for_llm([]) == "(no servers available)"

    def test_renders_tools_and_params(self):
        text = tool_catalog_for_llm([weather_descriptor()])
        assert "Server: Weather (ID: weather)" in text
        assert "Description: Weather forecasts" in text
        assert "- get_forecast: Forecast for a city" in text
        assert "    - city (string, required): City name" in text
        assert "    - days (number, optional): Number of days" in text

    def test_provider_without_tools(self):
        descriptor = ProviderDescriptor("fs", "Filesystem", "files", ProcessTransport("npx"))
        assert "(no tools discovered yet)" in tool_catalog_for_llm([descriptor])
