"""Connection negotiation for configured MCP servers.

Picks the transport for a server entry, attaches to or spawns stdio
processes, and for HTTP servers waits for readiness, resolves OAuth, then
tries streamable HTTP before falling back to the legacy SSE transport.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator, Mapping
from contextlib import AsyncExitStack
from functools import partial
from typing import Any, Literal, Protocol
from urllib.parse import urlsplit

import httpx
from mcp import StdioServerParameters
from mcp.client.sse import sse_client
from mcp.client.stdio import stdio_client
from mcp.client.streamable_http import streamablehttp_client
from mcp.types import Implementation
from pydantic import ValidationError

from mcpz.auth.authenticator import DcrAuthenticator
from mcpz.auth.primitives.discovery import get_origin, probe_auth_capabilities
from mcpz.client.managed import ManagedClient
from mcpz.client.session import SessionRunner
from mcpz.config.models import ServerEntry
from mcpz.errors import ConfigurationError, ServerNotRunningError
from mcpz.spawn.process import ServerProcess
from mcpz.transport.existing_process import ExistingProcessTransport
from mcpz.transport.readiness import wait_for_http_ready
from mcpz.utils.logging import get_logger, resolve_logger
from mcpz.utils.network import get_free_port
from mcpz.utils.timeouts import with_timeout

default_logger = get_logger(__name__)

DISCOVERY_TIMEOUT = 5.0
STREAMABLE_HTTP_TIMEOUT = 30.0
SSE_TIMEOUT = 30.0

TransportType = Literal["stdio", "http"]

_HTTP_SCHEMES = ("http", "https")
_HTTP_TYPES = ("http", "sse-ide")
_LEGACY_SIGNATURES = ("Missing session ID", "404", "405")
_REFUSED_SIGNATURES = ("connection refused", "econnrefused", "all connection attempts failed")


class RegistryLike(Protocol):
    config: Mapping[str, ServerEntry]
    servers: Mapping[str, ServerProcess]


def _url_scheme(url: str) -> str:
    try:
        return urlsplit(url).scheme.lower()
    except ValueError as e:
        raise ConfigurationError(f"Invalid server URL: {url}") from e


def infer_transport_type(entry: ServerEntry) -> TransportType:
    """Resolve the transport for ``entry``.

    An explicit ``type`` wins but must agree with the URL scheme; otherwise
    an http(s) URL means HTTP, and no URL means stdio.

    Raises:
        ConfigurationError: On a type/URL conflict or an unsupported type or scheme
    """
    if entry.type:
        if entry.url:
            scheme = _url_scheme(entry.url)
            if scheme in _HTTP_SCHEMES and entry.type not in _HTTP_TYPES:
                raise ConfigurationError(
                    f"Conflicting transport: URL protocol '{scheme}:' requires type "
                    f"'http', but got '{entry.type}'"
                )
            if entry.type in _HTTP_TYPES and scheme not in _HTTP_SCHEMES:
                raise ConfigurationError(
                    f"Conflicting transport: type '{entry.type}' requires an http(s) "
                    f"URL, but got protocol '{scheme}:'"
                )

        if entry.type in _HTTP_TYPES:
            return "http"
        if entry.type == "stdio":
            return "stdio"
        raise ConfigurationError(f"Unsupported transport type: {entry.type}")

    if entry.url:
        scheme = _url_scheme(entry.url)
        if scheme in _HTTP_SCHEMES:
            return "http"
        raise ConfigurationError(f"Unsupported URL protocol: {scheme}:")

    return "stdio"


def _iter_causes(error: BaseException) -> Iterator[BaseException]:
    """Walk an exception, its causes, contexts and exception-group members."""
    seen: set[int] = set()
    pending = [error]
    while pending:
        current = pending.pop()
        if id(current) in seen:
            continue
        seen.add(id(current))
        yield current
        if isinstance(current, BaseExceptionGroup):
            pending.extend(current.exceptions)
        for linked in (current.__cause__, current.__context__):
            if linked is not None:
                pending.append(linked)


def is_connection_refused(error: BaseException) -> bool:
    for cause in _iter_causes(error):
        if isinstance(cause, ConnectionRefusedError):
            return True
        message = str(cause).lower()
        if any(signature in message for signature in _REFUSED_SIGNATURES):
            return True
    return False


def is_legacy_sse_signature(error: BaseException) -> bool:
    for cause in _iter_causes(error):
        if isinstance(cause, httpx.HTTPStatusError) and cause.response.status_code in (404, 405):
            return True
        if any(signature in str(cause) for signature in _LEGACY_SIGNATURES):
            return True
    return False


def _lookup_entry(servers: Mapping[str, Any], server_name: str) -> ServerEntry:
    if server_name not in servers:
        available = ", ".join(servers) or "none"
        raise ConfigurationError(
            f"Server '{server_name}' not found in config. Available servers: {available}"
        )
    entry = servers[server_name]
    if isinstance(entry, ServerEntry):
        return entry
    try:
        return ServerEntry.model_validate(entry)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid config for server '{server_name}': {e}") from e


async def _open_existing_process(
    process: ServerProcess, logger: logging.Logger, stack: AsyncExitStack
) -> tuple[Any, Any]:
    transport = ExistingProcessTransport(process.process, logger=logger)
    return await stack.enter_async_context(transport)


async def _open_stdio(params: StdioServerParameters, stack: AsyncExitStack) -> tuple[Any, Any]:
    return await stack.enter_async_context(stdio_client(params))


async def _open_streamable_http(
    url: str, headers: dict[str, str], stack: AsyncExitStack
) -> tuple[Any, Any]:
    read_stream, write_stream, _ = await stack.enter_async_context(
        streamablehttp_client(url, headers=headers or None)
    )
    return read_stream, write_stream


async def _open_sse(url: str, headers: dict[str, str], stack: AsyncExitStack) -> tuple[Any, Any]:
    return await stack.enter_async_context(sse_client(url, headers=headers or None))


async def open_session(
    registry_or_config: RegistryLike | Mapping[str, Any],
    server_name: str,
    *,
    authenticator_options: Mapping[str, Any] | None = None,
    client_info: Implementation | None = None,
    logger: logging.Logger | None = None,
) -> tuple[SessionRunner, str]:
    """Establish an initialized session for ``server_name``.

    Returns:
        The running session and the transport actually used
        (``"stdio"``, ``"http"`` or ``"sse"``)
    """
    log = resolve_logger(logger, default_logger)

    if isinstance(registry_or_config, Mapping):
        registry = None
        servers = registry_or_config
    else:
        registry = registry_or_config
        servers = registry_or_config.config

    entry = _lookup_entry(servers, server_name)
    transport_type = infer_transport_type(entry)
    handle = registry.servers.get(server_name) if registry is not None else None

    if transport_type == "stdio":
        if handle is not None:
            log.debug(f"[{server_name}] attaching to spawned process {handle.pid}")
            open_transport = partial(_open_existing_process, handle, log)
        else:
            if not entry.command:
                raise ConfigurationError(
                    f"Server '{server_name}' has stdio transport but missing 'command' field"
                )
            params = StdioServerParameters(
                command=entry.command,
                args=list(entry.args or []),
                env=dict(entry.env) if entry.env else None,
                cwd=entry.cwd,
            )
            open_transport = partial(_open_stdio, params)

        runner = SessionRunner(server_name, open_transport, client_info, log)
        await runner.start()
        return runner, "stdio"

    if not entry.url:
        raise ConfigurationError(
            f"Server '{server_name}' has http transport but missing 'url' field"
        )
    url = entry.url

    if handle is not None:
        log.debug(f"[{server_name}] waiting for HTTP server at {url}")
        await wait_for_http_ready(url, logger=log)
        log.debug(f"[{server_name}] HTTP server ready")

    headers = await _resolve_headers(entry, server_name, authenticator_options, log)
    return await _connect_http(server_name, url, headers, client_info, log)


async def _resolve_headers(
    entry: ServerEntry,
    server_name: str,
    authenticator_options: Mapping[str, Any] | None,
    log: logging.Logger,
) -> dict[str, str]:
    """Static headers, with a DCR bearer token replacing any configured Authorization."""
    headers = dict(entry.headers or {})
    base_url = get_origin(entry.url)

    capabilities = await with_timeout(
        probe_auth_capabilities(base_url, logger=log),
        DISCOVERY_TIMEOUT,
        "DCR capability discovery",
    )
    if not capabilities.supports_dcr:
        log.debug(f"Server '{server_name}' does not support DCR, connecting without authentication")
        return headers

    log.debug(f"Server '{server_name}' supports DCR authentication")
    port = get_free_port()
    options: dict[str, Any] = {
        "redirect_uri": f"http://localhost:{port}/callback",
        "headless": False,
        "logger": log,
        **(authenticator_options or {}),
    }
    authenticator = DcrAuthenticator(**options)
    try:
        tokens = await authenticator.ensure_authenticated(base_url, capabilities)
    finally:
        await authenticator.close()
    log.debug(f"Authentication complete for '{server_name}'")

    headers = {key: value for key, value in headers.items() if key.lower() != "authorization"}
    headers["Authorization"] = f"Bearer {tokens.access_token}"
    return headers


async def _connect_http(
    server_name: str,
    url: str,
    headers: dict[str, str],
    client_info: Implementation | None,
    log: logging.Logger,
) -> tuple[SessionRunner, str]:
    runner = SessionRunner(
        server_name, partial(_open_streamable_http, url, headers), client_info, log
    )
    try:
        await with_timeout(runner.start(), STREAMABLE_HTTP_TIMEOUT, "StreamableHTTP connection")
        return runner, "http"
    except Exception as e:
        await runner.close()
        if is_connection_refused(e):
            raise ServerNotRunningError(f"Server not running at {url}") from e
        if is_legacy_sse_signature(e):
            log.warning(f"Streamable HTTP failed ({e}), falling back to SSE transport")
        else:
            log.warning("Streamable HTTP connection failed, trying SSE transport as fallback")

    sse_runner = SessionRunner(server_name, partial(_open_sse, url, headers), client_info, log)
    try:
        await with_timeout(sse_runner.start(), SSE_TIMEOUT, "SSE connection")
    except Exception:
        await sse_runner.close()
        raise
    return sse_runner, "sse"


async def connect_mcp_client(
    registry_or_config: RegistryLike | Mapping[str, Any],
    server_name: str,
    *,
    authenticator_options: Mapping[str, Any] | None = None,
    client_info: Implementation | None = None,
    logger: logging.Logger | None = None,
) -> ManagedClient:
    """Connect to ``server_name`` and return a ready client.

    Accepts either a registry (stdio servers then attach to the registry's
    spawned processes, and spawned HTTP servers are polled for readiness) or
    a plain servers mapping.

    Args:
        registry_or_config: Server registry or ``{name: entry}`` mapping
        server_name: Configured server to connect to
        authenticator_options: Overrides for :class:`DcrAuthenticator`
            (``token_store``, ``headless``, ``mode``, ...)
        client_info: Implementation info sent during initialize
        logger: Optional logger override

    Raises:
        ConfigurationError: Unknown server or inconsistent entry
        ServerNotRunningError: The HTTP server refused the connection
        OperationTimeoutError: Discovery or a transport attempt timed out
        OAuth2Error: Authentication failed
    """
    runner, transport = await open_session(
        registry_or_config,
        server_name,
        authenticator_options=authenticator_options,
        client_info=client_info,
        logger=logger,
    )
    return ManagedClient(runner, server_name, transport)
