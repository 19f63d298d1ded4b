"""Multi-server registry: spawns configured servers and hands out clients.

Stdio servers are single logical channels, so every ``connect()`` for the
same stdio name shares one session; each caller gets its own lease handle
and the session closes when the last lease is released. HTTP servers get a
fresh connection per call.
"""

from __future__ import annotations

import asyncio
import logging
import os
import signal as signals
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Literal, Self

from mcp.types import Implementation

from mcpz.client.connect import infer_transport_type, open_session
from mcpz.client.managed import ManagedClient
from mcpz.client.session import SessionRunner
from mcpz.config.models import ServerEntry, ServersConfig, parse_servers, validate_servers
from mcpz.errors import ConfigurationError, ConnectionFailedError, McpzError
from mcpz.search.index import build_capability_index, search_capabilities
from mcpz.search.models import SearchOptions, SearchResponse
from mcpz.spawn.process import DEFAULT_CLOSE_TIMEOUT, ServerProcess, spawn_process
from mcpz.utils.logging import get_logger, resolve_logger

default_logger = get_logger(__name__)

Dialect = Literal["servers", "start"]


@dataclass(frozen=True)
class RegistryCloseResult:
    timed_out: bool
    killed_count: int


@dataclass(frozen=True)
class SpawnPlan:
    command: str
    args: list[str]
    env: dict[str, str] | None
    stdio: Literal["pipe", "inherit"]


@dataclass
class _SharedConnection:
    runner: SessionRunner | None = None
    connecting: asyncio.Task[SessionRunner] | None = None
    refs: int = 0
    leases: set[ManagedClient] = field(default_factory=set)


def plan_spawn(entry: ServerEntry, dialects: Iterable[Dialect]) -> SpawnPlan | None:
    """Decide whether and how to launch ``entry`` for the active dialects.

    ``("servers",)`` launches stdio commands only, ``("start",)`` launches
    start blocks only, and both together prefer the start block and fall
    back to the stdio command.
    """
    dialects = set(dialects)
    try:
        is_stdio = infer_transport_type(entry) == "stdio"
    except ConfigurationError:
        is_stdio = False

    use_start = "start" in dialects and entry.start is not None
    use_stdio = "servers" in dialects and is_stdio and bool(entry.command)

    if use_start:
        start = entry.start
        return SpawnPlan(
            command=start.command,
            args=list(start.args or []),
            env=start.env,
            stdio="pipe" if is_stdio else "inherit",
        )
    if use_stdio:
        return SpawnPlan(
            command=entry.command,
            args=list(entry.args or []),
            env=entry.env,
            stdio="pipe",
        )
    return None


class ServerRegistry:
    """Owns spawned server processes and the clients connected to them.

    Configuration is validated on construction; processes are launched by
    :meth:`start` (or on entering the context manager) without waiting for
    readiness. Readiness is established lazily by :meth:`connect`.

    Args:
        config: Mapping of server name to entry (raw dicts or ``ServerEntry``)
        cwd: Working directory for spawned processes, must exist
        env: Base environment for spawned processes. When given,
            ``os.environ`` is not included.
        dialects: Which entries to spawn, see :func:`plan_spawn`
        logger: Optional logger override

    Raises:
        ConfigurationError: Missing working directory or invalid config
    """

    def __init__(
        self,
        config: Mapping[str, Any],
        *,
        cwd: str | os.PathLike[str] | None = None,
        env: Mapping[str, str] | None = None,
        dialects: Iterable[Dialect] = ("servers",),
        logger: logging.Logger | None = None,
    ):
        self._logger = resolve_logger(logger, default_logger)
        self.cwd = str(Path(cwd) if cwd is not None else Path.cwd())
        if not Path(self.cwd).is_dir():
            raise ConfigurationError(
                f"Cannot start servers: working directory '{self.cwd}' does not exist"
            )

        validation = validate_servers(dict(config))
        if not validation.valid:
            raise ConfigurationError(
                "Invalid servers configuration:\n" + "\n".join(validation.errors)
            )
        for warning in validation.warnings:
            self._logger.warning(warning)

        self.config: ServersConfig = parse_servers(dict(config))
        self.dialects = tuple(dialects)
        self._base_env = dict(env) if env is not None else None
        self.servers: dict[str, ServerProcess] = {}
        self.clients: set[ManagedClient] = set()
        self._shared: dict[str, _SharedConnection] = {}
        self._started = False
        self._start_lock = asyncio.Lock()

    async def start(self) -> None:
        """Launch every spawnable entry. Individual spawn failures are logged and skipped."""
        async with self._start_lock:
            if self._started:
                return
            self._started = True

            for name, entry in self.config.items():
                plan = plan_spawn(entry, self.dialects)
                if plan is None:
                    if entry.url:
                        self._logger.info(f"[{name}] external server (url: {entry.url})")
                    else:
                        self._logger.warning(
                            f"[{name}] skipping: no spawn configuration and no url"
                        )
                    continue

                try:
                    self.servers[name] = await spawn_process(
                        name,
                        plan.command,
                        plan.args,
                        cwd=self.cwd,
                        env=plan.env,
                        base_env=self._base_env,
                        stdio=plan.stdio,
                        logger=self._logger,
                    )
                    self._logger.info(f"[{name}] started")
                except OSError as e:
                    self._logger.warning(f"[{name}] start failed: {e}")

    def _entry(self, name: str) -> ServerEntry:
        if name not in self.config:
            available = ", ".join(self.config) or "none"
            raise ConfigurationError(
                f"Server '{name}' not found in config. Available servers: {available}"
            )
        return self.config[name]

    async def connect(
        self,
        name: str,
        *,
        authenticator_options: Mapping[str, Any] | None = None,
        client_info: Implementation | None = None,
    ) -> ManagedClient:
        """Connect to ``name`` and track the client for :meth:`close`.

        Concurrent calls for the same stdio server collapse into one
        connection attempt; every caller still gets its own handle.

        Raises:
            ConfigurationError: Unknown server name or inconsistent entry
        """
        entry = self._entry(name)
        await self.start()

        if infer_transport_type(entry) == "stdio":
            return await self._lease_stdio(name, client_info)

        runner, transport = await open_session(
            self,
            name,
            authenticator_options=authenticator_options,
            client_info=client_info,
            logger=self._logger,
        )
        client: ManagedClient

        async def release() -> None:
            self.clients.discard(client)
            await runner.close()

        client = ManagedClient(runner, name, transport, on_close=release)
        self.clients.add(client)
        return client

    async def _lease_stdio(
        self, name: str, client_info: Implementation | None
    ) -> ManagedClient:
        shared = self._shared.get(name)
        if shared is None:
            shared = _SharedConnection()
            self._shared[name] = shared

        if shared.runner is None:
            if shared.connecting is None:
                shared.connecting = asyncio.create_task(
                    self._open_shared(name, shared, client_info),
                    name=f"connect_{name}",
                )
            await asyncio.shield(shared.connecting)

        if shared.runner is None:
            raise ConnectionFailedError(f"Failed to connect to stdio server '{name}'")

        shared.refs += 1
        lease: ManagedClient

        async def release() -> None:
            self.clients.discard(lease)
            shared.leases.discard(lease)
            shared.refs = max(0, shared.refs - 1)
            if shared.refs == 0:
                if self._shared.get(name) is shared:
                    del self._shared[name]
                runner = shared.runner
                shared.runner = None
                if runner is not None:
                    await runner.close()

        lease = ManagedClient(shared.runner, name, "stdio", on_close=release)
        shared.leases.add(lease)
        self.clients.add(lease)
        return lease

    async def _open_shared(
        self,
        name: str,
        shared: _SharedConnection,
        client_info: Implementation | None,
    ) -> SessionRunner:
        try:
            runner, _ = await open_session(
                self, name, client_info=client_info, logger=self._logger
            )
        except BaseException:
            if self._shared.get(name) is shared:
                del self._shared[name]
            raise
        finally:
            shared.connecting = None
        shared.runner = runner
        return runner

    async def close(
        self,
        signal: int = signals.SIGINT,
        timeout: float = DEFAULT_CLOSE_TIMEOUT,
    ) -> RegistryCloseResult:
        """Close every tracked client, then every spawned process.

        Client close errors are logged and do not stop the remaining
        shutdown. Processes are closed in parallel.
        """
        self._logger.info(f"[registry] closing ({signals.Signals(signal).name})")

        clients = list(self.clients)
        results = await asyncio.gather(
            *(client.close() for client in clients), return_exceptions=True
        )
        for client, result in zip(clients, results):
            if isinstance(result, Exception):
                self._logger.debug(f"[{client.server_name}] client close failed: {result}")
        self.clients.clear()

        if not self.servers:
            return RegistryCloseResult(timed_out=False, killed_count=0)

        outcomes = await asyncio.gather(
            *(server.close(signal, timeout) for server in self.servers.values())
        )
        return RegistryCloseResult(
            timed_out=any(outcome.timed_out for outcome in outcomes),
            killed_count=sum(1 for outcome in outcomes if outcome.killed),
        )

    async def search_capabilities(
        self, query: str, options: SearchOptions | None = None
    ) -> SearchResponse:
        """Search tools, prompts and resources across servers.

        Reuses already connected clients and connects the rest. Every
        requested server must be reachable.

        Raises:
            McpzError: No servers, unknown names, or connection failures
        """
        options = options or SearchOptions()
        requested = list(options.servers) if options.servers else list(self.config)
        if not requested:
            raise McpzError("Cannot search capabilities: registry has no configured servers")

        unknown = [name for name in requested if name not in self.config]
        if unknown:
            raise McpzError(
                f"Cannot search capabilities: unknown server(s) [{', '.join(unknown)}]"
            )

        async def ensure_client(server_name: str) -> ManagedClient:
            for client in self.clients:
                if client.server_name == server_name and not client.closed:
                    return client
            return await self.connect(server_name)

        outcomes = await asyncio.gather(
            *(ensure_client(name) for name in requested), return_exceptions=True
        )

        connected: dict[str, ManagedClient] = {}
        failures: list[tuple[str, str]] = []
        for name, outcome in zip(requested, outcomes):
            if isinstance(outcome, ManagedClient):
                connected[name] = outcome
            elif isinstance(outcome, Exception):
                failures.append((name, str(outcome)))
            else:
                raise outcome

        if not connected:
            details = "; ".join(f"{name} ({reason})" for name, reason in failures)
            raise McpzError(
                "Cannot search capabilities: unable to connect to any requested servers."
                + (f" Connection failures: {details}" if details else "")
            )
        if failures:
            names = ", ".join(name for name, _ in failures)
            reasons = "; ".join(f"{name}: {reason}" for name, reason in failures)
            raise McpzError(
                f"Cannot search capabilities: failed to connect to server(s) [{names}]. "
                f"Reasons: {reasons}"
            )

        index = await build_capability_index(connected, logger=self._logger)
        return search_capabilities(index, query, options)

    async def __aenter__(self) -> Self:
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()


async def create_server_registry(
    config: Mapping[str, Any],
    *,
    cwd: str | os.PathLike[str] | None = None,
    env: Mapping[str, str] | None = None,
    dialects: Iterable[Dialect] = ("servers",),
    logger: logging.Logger | None = None,
) -> ServerRegistry:
    """Validate ``config`` and launch its servers without waiting for readiness.

    Example:
        registry = await create_server_registry(
            {"echo": {"command": "python", "args": ["echo_server.py"]}}
        )
        client = await registry.connect("echo")
        await registry.close()
    """
    registry = ServerRegistry(config, cwd=cwd, env=env, dialects=dialects, logger=logger)
    await registry.start()
    return registry
