"""Tests for the server registry.

Process spawning and session establishment are replaced with recording
fakes so lease counting and shutdown ordering can be observed directly.
"""

import asyncio
from unittest.mock import AsyncMock

import pytest
from mcp.types import ListResourcesResult, ListToolsResult, Tool

from mcpz.client import registry as registry_module
from mcpz.client.registry import ServerRegistry, create_server_registry, plan_spawn
from mcpz.config.models import ServerEntry
from mcpz.errors import ConfigurationError, McpzError
from mcpz.search.models import SearchOptions
from mcpz.spawn.process import ProcessCloseResult


class FakeProcess:
    def __init__(self, name, events, result=ProcessCloseResult(False, False)):
        self.name = name
        self.events = events
        self.result = result

    async def close(self, signal, timeout):
        self.events.append(f"process:{self.name}")
        return self.result


class FakeRunner:
    def __init__(self, name, events):
        self.name = name
        self.events = events
        self.session = AsyncMock()
        self.session.list_tools.return_value = ListToolsResult(
            tools=[Tool(name=f"{name}_tool", description="Echo a message", inputSchema={"type": "object"})]
        )
        self.session.list_prompts.side_effect = RuntimeError("Method not found")
        self.session.list_resources.return_value = ListResourcesResult(resources=[])

    async def close(self):
        self.events.append(f"client:{self.name}")


class Harness:
    def __init__(self, monkeypatch, connect_delay=0.0, failing=()):
        self.events: list[str] = []
        self.spawned: list[str] = []
        self.handshakes: list[str] = []
        self.kill_results: dict[str, ProcessCloseResult] = {}

        async def fake_spawn(name, command, args=None, **kwargs):
            self.spawned.append(name)
            if name in failing:
                raise FileNotFoundError(command)
            return FakeProcess(name, self.events, self.kill_results.get(name, ProcessCloseResult(False, False)))

        async def fake_open_session(registry, name, **kwargs):
            self.handshakes.append(name)
            await asyncio.sleep(connect_delay)
            entry = registry.config[name]
            transport = "http" if entry.url else "stdio"
            return FakeRunner(name, self.events), transport

        monkeypatch.setattr(registry_module, "spawn_process", fake_spawn)
        monkeypatch.setattr(registry_module, "open_session", fake_open_session)


CONFIG = {
    "echo": {"command": "python", "args": ["echo.py"]},
    "web": {"url": "http://localhost:9100/mcp", "start": {"command": "python", "args": ["web.py"]}},
    "remote": {"url": "https://example.com/mcp"},
}


class TestRegistryConstruction:
    def test_missing_working_directory(self, tmp_path):
        with pytest.raises(ConfigurationError, match="does not exist"):
            ServerRegistry(CONFIG, cwd=tmp_path / "nope")

    def test_invalid_config_lists_every_error(self, tmp_path):
        with pytest.raises(ConfigurationError, match="Invalid servers configuration") as exc_info:
            ServerRegistry({"a": {"command": 1}, "b": {"type": "bogus"}}, cwd=tmp_path)

        message = str(exc_info.value)
        assert "a.command" in message
        assert "b.type" in message

    async def test_spawn_failure_is_not_fatal(self, monkeypatch, tmp_path):
        # Arrange
        harness = Harness(monkeypatch, failing=("broken",))
        config = {"broken": {"command": "missing-binary"}, "echo": {"command": "python"}}

        # Act
        registry = await create_server_registry(config, cwd=tmp_path)

        # Assert
        assert harness.spawned == ["broken", "echo"]
        assert set(registry.servers) == {"echo"}

    @pytest.mark.parametrize(
        ("dialects", "expected"),
        [
            (("servers",), ["echo"]),
            (("start",), ["web"]),
            (("servers", "start"), ["echo", "web"]),
        ],
    )
    async def test_dialects_choose_what_to_spawn(self, monkeypatch, tmp_path, dialects, expected):
        harness = Harness(monkeypatch)

        await create_server_registry(CONFIG, cwd=tmp_path, dialects=dialects)

        assert harness.spawned == expected


class TestPlanSpawn:
    def test_start_block_preferred_when_both_dialects(self):
        entry = ServerEntry(command="stdio-cmd", start={"command": "start-cmd", "env": {"A": "1"}})

        plan = plan_spawn(entry, ("servers", "start"))

        assert plan.command == "start-cmd"
        assert plan.env == {"A": "1"}

    def test_http_start_block_inherits_stdio(self):
        entry = ServerEntry(url="http://localhost:1/mcp", start={"command": "srv"})

        assert plan_spawn(entry, ("start",)).stdio == "inherit"
        assert plan_spawn(entry, ("servers",)) is None

    def test_stdio_command_is_piped(self):
        plan = plan_spawn(ServerEntry(command="srv", args=["a"]), ("servers",))

        assert plan.stdio == "pipe"
        assert plan.args == ["a"]


class TestRegistryConnect:
    async def test_unknown_server_lists_valid_names(self, monkeypatch, tmp_path):
        Harness(monkeypatch)
        registry = ServerRegistry(CONFIG, cwd=tmp_path)

        with pytest.raises(ConfigurationError, match="Available servers: echo, web, remote"):
            await registry.connect("nope")

    async def test_concurrent_stdio_connects_share_one_handshake(self, monkeypatch, tmp_path):
        # Arrange
        harness = Harness(monkeypatch, connect_delay=0.05)
        registry = await create_server_registry(CONFIG, cwd=tmp_path)

        # Act
        leases = await asyncio.gather(*(registry.connect("echo") for _ in range(5)))

        # Assert
        assert harness.handshakes == ["echo"]
        assert len(set(map(id, leases))) == 5
        assert len(registry.clients) == 5
        assert len({id(lease.native_client) for lease in leases}) == 1

    async def test_shared_client_closes_with_last_lease(self, monkeypatch, tmp_path):
        # Arrange
        harness = Harness(monkeypatch)
        registry = await create_server_registry(CONFIG, cwd=tmp_path)
        leases = [await registry.connect("echo") for _ in range(3)]

        # Act
        await leases[0].close()
        await leases[0].close()
        await leases[1].close()

        # Assert
        assert harness.events == []
        await leases[2].close()
        assert harness.events == ["client:echo"]
        assert registry.clients == set()

    async def test_reconnect_after_release_makes_new_connection(self, monkeypatch, tmp_path):
        harness = Harness(monkeypatch)
        registry = await create_server_registry(CONFIG, cwd=tmp_path)

        lease = await registry.connect("echo")
        await lease.close()
        await registry.connect("echo")

        assert harness.handshakes == ["echo", "echo"]

    async def test_failed_connect_is_not_cached(self, monkeypatch, tmp_path):
        # Arrange
        Harness(monkeypatch)
        calls = []

        async def flaky(registry, name, **kwargs):
            calls.append(name)
            if len(calls) == 1:
                raise ConnectionError("handshake failed")
            return FakeRunner(name, []), "stdio"

        monkeypatch.setattr(registry_module, "open_session", flaky)
        registry = await create_server_registry(CONFIG, cwd=tmp_path)

        # Act & Assert
        with pytest.raises(ConnectionError):
            await registry.connect("echo")
        lease = await registry.connect("echo")
        assert lease.server_name == "echo"

    async def test_http_connections_are_independent(self, monkeypatch, tmp_path):
        harness = Harness(monkeypatch)
        registry = await create_server_registry(CONFIG, cwd=tmp_path)

        first = await registry.connect("remote")
        second = await registry.connect("remote")

        assert harness.handshakes == ["remote", "remote"]
        assert first.native_client is not second.native_client
        await first.close()
        assert registry.clients == {second}


class TestRegistryClose:
    async def test_clients_close_before_processes(self, monkeypatch, tmp_path):
        # Arrange
        harness = Harness(monkeypatch)
        registry = await create_server_registry(CONFIG, cwd=tmp_path, dialects=("servers", "start"))
        await registry.connect("echo")
        await registry.connect("echo")
        await registry.connect("web")
        await registry.connect("remote")

        # Act
        result = await registry.close()

        # Assert
        client_events = [i for i, e in enumerate(harness.events) if e.startswith("client:")]
        process_events = [i for i, e in enumerate(harness.events) if e.startswith("process:")]
        assert len(client_events) == 3
        assert len(process_events) == 2
        assert max(client_events) < min(process_events)
        assert result.timed_out is False
        assert result.killed_count == 0
        assert registry.clients == set()

    async def test_aggregates_kill_results(self, monkeypatch, tmp_path):
        # Arrange
        harness = Harness(monkeypatch)
        harness.kill_results["echo"] = ProcessCloseResult(timed_out=True, killed=True)
        registry = await create_server_registry(CONFIG, cwd=tmp_path, dialects=("servers", "start"))

        # Act
        result = await registry.close()

        # Assert
        assert result.timed_out is True
        assert result.killed_count == 1

    async def test_client_close_errors_do_not_block_shutdown(self, monkeypatch, tmp_path):
        # Arrange
        harness = Harness(monkeypatch)
        registry = await create_server_registry(CONFIG, cwd=tmp_path)
        client = await registry.connect("remote")
        client._runner.close = AsyncMock(side_effect=RuntimeError("already broken"))

        # Act
        await registry.close()

        # Assert
        assert harness.events == ["process:echo"]

    async def test_context_manager(self, monkeypatch, tmp_path):
        harness = Harness(monkeypatch)

        async with ServerRegistry(CONFIG, cwd=tmp_path) as registry:
            await registry.connect("echo")

        assert harness.events == ["client:echo", "process:echo"]


class TestRegistrySearch:
    async def test_connects_and_searches(self, monkeypatch, tmp_path):
        # Arrange
        Harness(monkeypatch)
        registry = await create_server_registry(CONFIG, cwd=tmp_path)

        # Act
        response = await registry.search_capabilities(
            "echo", SearchOptions(servers=["echo", "remote"])
        )

        # Assert
        names = [result.name for result in response.results]
        assert names[0] == "echo_tool"
        assert "remote_tool" in names
        assert len(registry.clients) == 2

    async def test_reuses_connected_clients(self, monkeypatch, tmp_path):
        harness = Harness(monkeypatch)
        registry = await create_server_registry(CONFIG, cwd=tmp_path)
        await registry.connect("remote")

        await registry.search_capabilities("tool", SearchOptions(servers=["remote"]))

        assert harness.handshakes == ["remote"]

    async def test_unknown_server(self, monkeypatch, tmp_path):
        Harness(monkeypatch)
        registry = ServerRegistry(CONFIG, cwd=tmp_path)

        with pytest.raises(McpzError, match=r"unknown server\(s\) \[ghost\]"):
            await registry.search_capabilities("x", SearchOptions(servers=["ghost"]))

    async def test_any_connection_failure_is_reported(self, monkeypatch, tmp_path):
        # Arrange
        Harness(monkeypatch)

        async def partial_failure(registry, name, **kwargs):
            if name == "remote":
                raise ConnectionError("refused")
            return FakeRunner(name, []), "stdio"

        monkeypatch.setattr(registry_module, "open_session", partial_failure)
        registry = await create_server_registry(CONFIG, cwd=tmp_path)

        # Act & Assert
        with pytest.raises(McpzError, match=r"failed to connect to server\(s\) \[remote\]"):
            await registry.search_capabilities("x", SearchOptions(servers=["echo", "remote"]))

    async def test_no_reachable_servers(self, monkeypatch, tmp_path):
        Harness(monkeypatch)

        async def always_fail(registry, name, **kwargs):
            raise ConnectionError("down")

        monkeypatch.setattr(registry_module, "open_session", always_fail)
        registry = await create_server_registry(CONFIG, cwd=tmp_path)

        with pytest.raises(McpzError, match="unable to connect to any"):
            await registry.search_capabilities("x", SearchOptions(servers=["remote"]))

    async def test_empty_registry(self, tmp_path):
        registry = ServerRegistry({}, cwd=tmp_path)

        with pytest.raises(McpzError, match="no configured servers"):
            await registry.search_capabilities("x")
