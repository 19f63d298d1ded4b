"""Single server process spawning and shutdown."""

from __future__ import annotations

import asyncio
import logging
import os
import shutil
import signal as signals
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Literal

from mcpz.spawn.paths import resolve_args_paths
from mcpz.utils.logging import get_logger, resolve_logger, sanitize_env

default_logger = get_logger(__name__)

StdioMode = Literal["pipe", "inherit"]

DEFAULT_CLOSE_TIMEOUT = 0.5
KILL_REAP_TIMEOUT = 1.0


@dataclass(frozen=True)
class ProcessCloseResult:
    timed_out: bool
    killed: bool


@dataclass(frozen=True)
class ResolvedSpawnConfig:
    """The command line and environment a process was actually started with."""

    name: str
    command: str
    args: list[str]
    cwd: str
    env: dict[str, str]
    stdio: StdioMode


@dataclass
class ServerProcess:
    """Handle to one spawned server process.

    The registry owns the handle; connections attach to its pipes but never
    terminate it.
    """

    config: ResolvedSpawnConfig
    process: asyncio.subprocess.Process
    logger: logging.Logger = field(default=default_logger, repr=False)
    _exit_watcher: asyncio.Task | None = field(default=None, repr=False)

    @property
    def name(self) -> str:
        return self.config.name

    @property
    def pid(self) -> int:
        return self.process.pid

    @property
    def has_exited(self) -> bool:
        return self.process.returncode is not None

    async def close(
        self,
        signal: int = signals.SIGINT,
        timeout: float = DEFAULT_CLOSE_TIMEOUT,
    ) -> ProcessCloseResult:
        """Stop the process gracefully, killing it if ``timeout`` elapses.

        Safe to call repeatedly: an exited process returns immediately with
        nothing timed out or killed. Kill failures are treated as the process
        already being gone. A signal the platform cannot deliver (anything but
        SIGTERM on Windows) goes straight to a forced kill.

        Args:
            signal: Graceful signal to send first
            timeout: Seconds to wait for exit before sending SIGKILL

        Returns:
            ProcessCloseResult describing how the process ended
        """
        if self.has_exited:
            return ProcessCloseResult(timed_out=False, killed=False)

        try:
            self.process.send_signal(signal)
        except ProcessLookupError:
            return ProcessCloseResult(timed_out=False, killed=False)
        except ValueError as e:
            self.logger.debug(f"[{self.name}] cannot send signal {signal}: {e}")
            return await self._force_kill(timed_out=False)

        try:
            # wait() resolves once the process has exited and its pipes are closed
            await asyncio.wait_for(self.process.wait(), timeout)
            return ProcessCloseResult(timed_out=False, killed=False)
        except asyncio.TimeoutError:
            pass

        return await self._force_kill(timed_out=True)

    async def _force_kill(self, timed_out: bool) -> ProcessCloseResult:
        killed = False
        if not self.has_exited:
            try:
                self.process.kill()
                killed = True
            except ProcessLookupError:
                pass

        try:
            await asyncio.wait_for(self.process.wait(), KILL_REAP_TIMEOUT)
        except asyncio.TimeoutError:
            self.logger.warning(f"[{self.name}] did not exit after SIGKILL")

        return ProcessCloseResult(timed_out=timed_out, killed=killed)


def merge_env(
    env: Mapping[str, str | None] | None,
    base: Mapping[str, str | None] | None = None,
) -> dict[str, str]:
    """Overlay ``env`` on ``base`` (``os.environ`` when omitted), dropping ``None`` values."""
    merged = {**(os.environ if base is None else base), **(env or {})}
    return {key: value for key, value in merged.items() if value is not None}


async def spawn_process(
    name: str,
    command: str,
    args: list[str] | None = None,
    *,
    cwd: str | None = None,
    env: Mapping[str, str | None] | None = None,
    base_env: Mapping[str, str | None] | None = None,
    stdio: StdioMode = "inherit",
    logger: logging.Logger | None = None,
) -> ServerProcess:
    """Start a server process with resolved paths and merged environment.

    Args:
        name: Server name, used for logging
        command: Executable to run
        args: Arguments; path-like values are resolved against ``cwd``
        cwd: Working directory (defaults to the current directory)
        env: Variables layered over ``base_env``
        base_env: Base environment (defaults to ``os.environ``)
        stdio: ``"pipe"`` for stdin/stdout pipes, ``"inherit"`` to share ours
        logger: Optional logger override

    Returns:
        ServerProcess handle

    Raises:
        OSError: If the executable cannot be started
    """
    log = resolve_logger(logger, default_logger)
    cwd = cwd or os.getcwd()
    resolved_args = resolve_args_paths(args or [], cwd)
    resolved_env = merge_env(env, base_env)
    executable = shutil.which(command, path=resolved_env.get("PATH")) or command

    config = ResolvedSpawnConfig(
        name=name,
        command=command,
        args=resolved_args,
        cwd=cwd,
        env=resolved_env,
        stdio=stdio,
    )

    log.info(f"[{name}] → {command} {' '.join(resolved_args)}")
    log.debug(f"[{name}] spawn env overrides: {sanitize_env(env)}")

    pipe = asyncio.subprocess.PIPE if stdio == "pipe" else None
    process = await asyncio.create_subprocess_exec(
        executable,
        *resolved_args,
        cwd=cwd,
        env=resolved_env,
        stdin=pipe,
        stdout=pipe,
        stderr=None,
    )

    handle = ServerProcess(config=config, process=process, logger=log)
    handle._exit_watcher = asyncio.create_task(
        _log_exit(name, process, log), name=f"exit_watcher_{name}"
    )
    return handle


async def _log_exit(
    name: str, process: asyncio.subprocess.Process, log: logging.Logger
) -> None:
    returncode = await process.wait()
    if returncode < 0:
        log.info(f"[{name}] exited (signal={-returncode})")
    else:
        log.info(f"[{name}] exited (code={returncode})")
