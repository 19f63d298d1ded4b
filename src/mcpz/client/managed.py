"""Caller-facing client handle."""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import Any, Self

from mcp import ClientSession
from mcp.types import (
    CallToolRequestParams,
    CallToolResult,
    GetPromptRequestParams,
    GetPromptResult,
    ListPromptsResult,
    ListResourcesResult,
    ListToolsResult,
    ReadResourceRequestParams,
    ReadResourceResult,
)
from pydantic import AnyUrl

from mcpz.client.responses import PromptResponse, ResourceResponse, ToolResponse
from mcpz.client.session import SessionRunner

CloseCallback = Callable[[], Awaitable[None]]


class ManagedClient:
    """A connected server session plus convenience calls.

    Wraps the protocol ``ClientSession`` by composition. Calls come in pairs:
    ``call_tool(name, arguments)`` returns a :class:`ToolResponse` view, while
    ``call_tool_raw(params)`` takes the protocol request params and returns the
    protocol result as received (likewise for prompts and resources).

    ``close()`` runs ``on_close`` when one was given (the registry uses this
    to release a shared stdio lease) and otherwise closes the session itself.
    """

    def __init__(
        self,
        runner: SessionRunner,
        server_name: str,
        transport: str,
        on_close: CloseCallback | None = None,
    ):
        self._runner = runner
        self.server_name = server_name
        self.transport = transport
        self._on_close = on_close
        self._closed = False

    @property
    def native_client(self) -> ClientSession:
        return self._runner.session

    @property
    def closed(self) -> bool:
        return self._closed

    async def call_tool(self, name: str, arguments: dict[str, Any] | None = None) -> ToolResponse:
        params = CallToolRequestParams(name=name, arguments=arguments or {})
        return ToolResponse(await self.call_tool_raw(params))

    async def call_tool_raw(self, params: CallToolRequestParams) -> CallToolResult:
        return await self.native_client.call_tool(params.name, params.arguments)

    async def get_prompt(
        self, name: str, arguments: dict[str, str] | None = None
    ) -> PromptResponse:
        params = GetPromptRequestParams(name=name, arguments=arguments)
        return PromptResponse(await self.get_prompt_raw(params))

    async def get_prompt_raw(self, params: GetPromptRequestParams) -> GetPromptResult:
        return await self.native_client.get_prompt(params.name, arguments=params.arguments)

    async def read_resource(self, uri: str) -> ResourceResponse:
        return ResourceResponse(
            await self.read_resource_raw(ReadResourceRequestParams(uri=AnyUrl(uri)))
        )

    async def read_resource_raw(self, params: ReadResourceRequestParams) -> ReadResourceResult:
        return await self.native_client.read_resource(params.uri)

    async def list_tools(self) -> ListToolsResult:
        return await self.native_client.list_tools()

    async def list_prompts(self) -> ListPromptsResult:
        return await self.native_client.list_prompts()

    async def list_resources(self) -> ListResourcesResult:
        return await self.native_client.list_resources()

    async def close(self) -> None:
        """Close this handle. Later calls are no-ops."""
        if self._closed:
            return
        self._closed = True
        if self._on_close is not None:
            await self._on_close()
        else:
            await self._runner.close()

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    def __repr__(self) -> str:
        state = "closed" if self._closed else "open"
        return f"ManagedClient(server={self.server_name!r}, transport={self.transport!r}, {state})"
