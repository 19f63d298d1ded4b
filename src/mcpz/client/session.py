"""Lifetime management for one protocol session.

anyio cancel scopes (used by the ``mcp`` transports and ``ClientSession``)
must be exited by the task that entered them. A :class:`SessionRunner` keeps
the transport contexts and the session inside one dedicated task: it opens
them, reports readiness, then waits until asked to close and unwinds them
in that same task.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from contextlib import AsyncExitStack
from typing import Any

from mcp import ClientSession
from mcp.types import Implementation

from mcpz.errors import ConnectionFailedError
from mcpz.utils.logging import get_logger, resolve_logger

default_logger = get_logger(__name__)

CLIENT_INFO = Implementation(name="mcpz-client", version="0.1.0")

OpenTransport = Callable[[AsyncExitStack], Awaitable[tuple[Any, Any]]]


def unwrap_exception(error: BaseException) -> BaseException:
    """Return the first leaf of nested exception groups."""
    while isinstance(error, BaseExceptionGroup) and error.exceptions:
        error = error.exceptions[0]
    return error


class SessionRunner:
    """Runs one ``ClientSession`` in an owner task.

    Args:
        name: Label for logging and the task name
        open_transport: Coroutine that enters the transport context on the
            given exit stack and returns ``(read_stream, write_stream)``
        client_info: Implementation info sent during initialize
        logger: Optional logger override
    """

    def __init__(
        self,
        name: str,
        open_transport: OpenTransport,
        client_info: Implementation | None = None,
        logger: logging.Logger | None = None,
    ):
        self.name = name
        self._open_transport = open_transport
        self._client_info = client_info or CLIENT_INFO
        self._logger = resolve_logger(logger, default_logger)
        self._ready: asyncio.Future[ClientSession] | None = None
        self._stop = asyncio.Event()
        self._task: asyncio.Task | None = None
        self._session: ClientSession | None = None

    @property
    def session(self) -> ClientSession:
        if self._session is None:
            raise RuntimeError(f"Session for '{self.name}' is not connected")
        return self._session

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> ClientSession:
        """Open the transport and complete the initialize handshake.

        On failure the owner task is torn down before the error propagates.

        Raises:
            Exception: The transport or handshake error, unwrapped from any
                exception group
        """
        if self._task is not None:
            raise RuntimeError("Session runner already started")

        self._ready = asyncio.get_running_loop().create_future()
        self._task = asyncio.create_task(self._run(), name=f"mcp_session_{self.name}")

        try:
            await asyncio.wait({self._ready, self._task}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            await self.close()
            raise

        if self._ready.done() and not self._ready.cancelled() and self._ready.exception() is None:
            self._session = self._ready.result()
            return self._session

        error = self._startup_error()
        await self.close()
        raise error

    async def close(self) -> None:
        """Unwind the session and transport. Safe to call more than once."""
        task = self._task
        if task is None or task.done():
            self._consume_task(task)
            return

        if self._session is None:
            task.cancel()
        else:
            self._stop.set()

        try:
            await task
        except asyncio.CancelledError:
            if asyncio.current_task().cancelling():
                raise
        except (Exception, BaseExceptionGroup) as e:
            self._logger.debug(f"[{self.name}] session closed with error: {unwrap_exception(e)}")
        finally:
            self._session = None

    async def _run(self) -> None:
        try:
            async with AsyncExitStack() as stack:
                read_stream, write_stream = await self._open_transport(stack)
                session = await stack.enter_async_context(
                    ClientSession(
                        read_stream,
                        write_stream,
                        client_info=self._client_info,
                        message_handler=self._handle_message,
                    )
                )
                await session.initialize()
                if not self._ready.done():
                    self._ready.set_result(session)
                await self._stop.wait()
        except Exception as e:
            if not self._ready.done():
                self._ready.set_exception(unwrap_exception(e))
            else:
                self._logger.debug(f"[{self.name}] session ended: {unwrap_exception(e)}")

    async def _handle_message(self, message: Any) -> None:
        """Transport errors reach the session as plain exceptions.

        Before the handshake completes they fail the connection attempt;
        afterwards they are only logged.
        """
        if not isinstance(message, Exception):
            return
        if self._ready is not None and not self._ready.done():
            self._ready.set_exception(unwrap_exception(message))
        else:
            self._logger.warning(f"[{self.name}] transport error: {message}")

    def _startup_error(self) -> BaseException:
        if self._ready.done() and not self._ready.cancelled():
            return self._ready.exception()
        if self._task.done() and not self._task.cancelled() and self._task.exception():
            return unwrap_exception(self._task.exception())
        return ConnectionFailedError(f"Session for '{self.name}' ended before initialization")

    def _consume_task(self, task: asyncio.Task | None) -> None:
        if task is not None and task.done() and not task.cancelled():
            error = task.exception()
            if error is not None:
                self._logger.debug(f"[{self.name}] session task failed: {unwrap_exception(error)}")
        self._session = None
