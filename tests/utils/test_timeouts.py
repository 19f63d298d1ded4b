"""Tests for the bounded-await helper."""

import asyncio

import pytest

from mcpz.errors import OperationTimeoutError
from mcpz.utils.network import get_free_port
from mcpz.utils.timeouts import with_timeout


class TestWithTimeout:
    async def test_returns_result_before_deadline(self):
        async def work():
            return 42

        assert await with_timeout(work(), 1.0, "quick work") == 42

    async def test_raises_named_timeout(self):
        # Arrange
        async def slow():
            await asyncio.sleep(5)

        # Act & Assert
        with pytest.raises(OperationTimeoutError, match="Timeout after 0.05s: slow work"):
            await with_timeout(slow(), 0.05, "slow work")

    async def test_inner_timeout_error_propagates_unchanged(self):
        async def fails():
            raise TimeoutError("inner")

        with pytest.raises(TimeoutError, match="inner") as exc_info:
            await with_timeout(fails(), 1.0, "inner work")
        assert not isinstance(exc_info.value, OperationTimeoutError)

    async def test_other_errors_propagate(self):
        async def fails():
            raise ValueError("boom")

        with pytest.raises(ValueError, match="boom"):
            await with_timeout(fails(), 1.0, "failing work")


class TestGetFreePort:
    def test_returns_bindable_port(self):
        import socket

        # Act
        port = get_free_port()

        # Assert
        assert 0 < port < 65536
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
            sock.bind(("127.0.0.1", port))
