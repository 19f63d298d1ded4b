"""Tests for the caller-facing client handle."""

from unittest.mock import AsyncMock, MagicMock

from mcp.types import (
    CallToolRequestParams,
    CallToolResult,
    GetPromptRequestParams,
    ReadResourceRequestParams,
    TextContent,
)
from pydantic import AnyUrl

from mcpz.client.managed import ManagedClient


def make_runner():
    runner = MagicMock()
    runner.session = AsyncMock()
    runner.close = AsyncMock()
    return runner


class TestManagedClient:
    def setup_method(self):
        # Arrange
        self.runner = make_runner()
        self.client = ManagedClient(self.runner, "echo", "stdio")

    async def test_call_tool_wraps_result(self):
        # Arrange
        self.runner.session.call_tool.return_value = CallToolResult(
            content=[TextContent(type="text", text='{"echo": "hi"}')]
        )

        # Act
        response = await self.client.call_tool("echo", {"message": "hi"})

        # Assert
        assert response.json() == {"echo": "hi"}
        self.runner.session.call_tool.assert_awaited_once_with("echo", {"message": "hi"})

    async def test_call_tool_defaults_arguments(self):
        self.runner.session.call_tool.return_value = CallToolResult(content=[])

        await self.client.call_tool("noop")

        self.runner.session.call_tool.assert_awaited_once_with("noop", {})

    async def test_call_tool_raw_takes_request_params(self):
        # Arrange
        expected = CallToolResult(content=[], isError=True)
        self.runner.session.call_tool.return_value = expected
        params = CallToolRequestParams(name="echo", arguments={"message": "hi"})

        # Act
        result = await self.client.call_tool_raw(params)

        # Assert
        assert result is expected
        self.runner.session.call_tool.assert_awaited_once_with("echo", {"message": "hi"})

    async def test_get_prompt_raw_takes_request_params(self):
        params = GetPromptRequestParams(name="greet", arguments={"person": "Ada"})

        await self.client.get_prompt_raw(params)

        self.runner.session.get_prompt.assert_awaited_once_with(
            "greet", arguments={"person": "Ada"}
        )

    async def test_read_resource_raw_takes_request_params(self):
        params = ReadResourceRequestParams(uri=AnyUrl("file:///tmp/b.txt"))

        await self.client.read_resource_raw(params)

        uri = self.runner.session.read_resource.call_args[0][0]
        assert str(uri) == "file:///tmp/b.txt"

    async def test_read_resource_passes_url(self):
        await self.client.read_resource("file:///tmp/a.txt")

        uri = self.runner.session.read_resource.call_args[0][0]
        assert str(uri) == "file:///tmp/a.txt"

    def test_native_client_is_session(self):
        assert self.client.native_client is self.runner.session

    async def test_close_is_idempotent(self):
        # Act
        await self.client.close()
        await self.client.close()

        # Assert
        self.runner.close.assert_awaited_once()
        assert self.client.closed

    async def test_close_callback_replaces_runner_close(self):
        # Arrange
        on_close = AsyncMock()
        client = ManagedClient(self.runner, "echo", "stdio", on_close=on_close)

        # Act
        async with client:
            pass

        # Assert
        on_close.assert_awaited_once()
        self.runner.close.assert_not_called()

    def test_repr(self):
        assert repr(self.client) == "ManagedClient(server='echo', transport='stdio', open)"
