"""Tests for the session owner task."""

import anyio
import pytest

from mcpz.client.session import SessionRunner, unwrap_exception


class TestUnwrapException:
    def test_returns_first_leaf(self):
        error = ValueError("inner")
        group = ExceptionGroup("outer", [ExceptionGroup("middle", [error])])

        assert unwrap_exception(group) is error

    def test_plain_exception_unchanged(self):
        error = RuntimeError("x")
        assert unwrap_exception(error) is error


class TestSessionRunner:
    async def test_transport_failure_surfaces_from_start(self):
        # Arrange
        async def open_transport(stack):
            raise ConnectionRefusedError("Connection refused")

        runner = SessionRunner("broken", open_transport)

        # Act & Assert
        with pytest.raises(ConnectionRefusedError):
            await runner.start()
        assert not runner.is_running

    async def test_transport_error_before_handshake_fails_fast(self):
        # Arrange
        read_writer, read_stream = anyio.create_memory_object_stream(1)
        write_stream, write_reader = anyio.create_memory_object_stream(10)
        read_writer.send_nowait(ValueError("Missing session ID"))

        async def open_transport(stack):
            return read_stream, write_stream

        runner = SessionRunner("legacy", open_transport)

        # Act & Assert
        with pytest.raises(ValueError, match="Missing session ID"):
            await runner.start()
        assert not runner.is_running

        for stream in (read_writer, write_reader):
            await stream.aclose()

    async def test_session_before_start(self):
        async def open_transport(stack):
            raise AssertionError("not called")

        runner = SessionRunner("idle", open_transport)

        with pytest.raises(RuntimeError, match="not connected"):
            runner.session

    async def test_close_without_start_is_noop(self):
        async def open_transport(stack):
            raise AssertionError("not called")

        await SessionRunner("idle", open_transport).close()
