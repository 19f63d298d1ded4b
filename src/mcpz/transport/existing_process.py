"""Transport over the stdio pipes of a process someone else owns.

The registry spawns stdio servers once; each logical connection attaches to
the running process through this adapter. Closing the adapter detaches it
and never terminates the process.
"""

from __future__ import annotations

import asyncio
import logging

import anyio
from anyio.streams.memory import MemoryObjectReceiveStream, MemoryObjectSendStream
from mcp.shared.message import SessionMessage
from pydantic import ValidationError

from mcpz.transport.framing import ReadBuffer, serialize_message
from mcpz.utils.logging import get_logger, resolve_logger

default_logger = get_logger(__name__)

READ_CHUNK_SIZE = 64 * 1024

ReadStream = MemoryObjectReceiveStream[SessionMessage | Exception]
WriteStream = MemoryObjectSendStream[SessionMessage]


class ExistingProcessTransport:
    """Memory-stream transport bridged to an already running process.

    ``start()`` returns ``(read_stream, write_stream)`` in the shape the
    protocol session expects. Parse errors are delivered on the read stream
    as exceptions; end of stdout closes it.
    """

    def __init__(
        self,
        process: asyncio.subprocess.Process,
        logger: logging.Logger | None = None,
    ):
        if process.stdin is None or process.stdout is None:
            raise ValueError("Process must be spawned with stdin and stdout pipes")
        self._process = process
        self._logger = resolve_logger(logger, default_logger)
        self._buffer = ReadBuffer()
        self._tasks: list[asyncio.Task] = []
        self._read_writer: MemoryObjectSendStream[SessionMessage | Exception] | None = None
        self._read_stream: ReadStream | None = None
        self._write_stream: WriteStream | None = None
        self._write_reader: MemoryObjectReceiveStream[SessionMessage] | None = None
        self._closed = False

    async def start(self) -> tuple[ReadStream, WriteStream]:
        if self._tasks:
            raise RuntimeError("Transport already started")

        self._read_writer, self._read_stream = anyio.create_memory_object_stream[
            SessionMessage | Exception
        ](0)
        self._write_stream, self._write_reader = anyio.create_memory_object_stream[
            SessionMessage
        ](0)

        pid = self._process.pid
        self._tasks = [
            asyncio.create_task(self._read_stdout(), name=f"stdout_reader_{pid}"),
            asyncio.create_task(self._write_stdin(), name=f"stdin_writer_{pid}"),
        ]
        return self._read_stream, self._write_stream

    async def send(self, message: SessionMessage) -> None:
        """Write one message directly to the process stdin."""
        if self._closed:
            raise ConnectionError("Transport is closed")
        try:
            self._process.stdin.write(serialize_message(message.message))
            await self._process.stdin.drain()
        except (BrokenPipeError, ConnectionResetError) as e:
            raise ConnectionError("Server process closed connection") from e

    async def close(self) -> None:
        """Detach from the process: stop I/O tasks, drop buffered bytes, close streams."""
        if self._closed:
            return
        self._closed = True

        for task in self._tasks:
            task.cancel()
        for task in self._tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
            except Exception as e:
                self._logger.debug(f"Transport task ended with error: {e}")
        self._tasks = []
        self._buffer.clear()

        for stream in (self._read_writer, self._read_stream, self._write_stream, self._write_reader):
            if stream is not None:
                await stream.aclose()

    async def __aenter__(self) -> tuple[ReadStream, WriteStream]:
        return await self.start()

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def _read_stdout(self) -> None:
        stdout = self._process.stdout
        try:
            while True:
                chunk = await stdout.read(READ_CHUNK_SIZE)
                if not chunk:
                    self._logger.debug(f"Process {self._process.pid} stdout closed")
                    break
                self._buffer.append(chunk)
                while True:
                    try:
                        message = self._buffer.read_message()
                    except (ValidationError, UnicodeDecodeError) as e:
                        self._logger.debug(f"Dropping unparseable line from server: {e}")
                        await self._read_writer.send(e)
                        continue
                    if message is None:
                        break
                    await self._read_writer.send(SessionMessage(message))
        except anyio.ClosedResourceError:
            pass
        finally:
            await self._read_writer.aclose()

    async def _write_stdin(self) -> None:
        try:
            async for session_message in self._write_reader:
                await self.send(session_message)
        except anyio.ClosedResourceError:
            pass
        except ConnectionError as e:
            self._logger.debug(f"Write to process {self._process.pid} failed: {e}")
