"""Exception hierarchy for registry, connection and response errors.

OAuth failures live in :mod:`mcpz.auth.models.errors`.
"""

from __future__ import annotations


class McpzError(Exception):
    """Base exception for all mcpz errors outside the OAuth subtree."""

    pass


class ConfigurationError(McpzError):
    """Raised when server configuration is invalid or a server is unknown."""

    pass


class ConnectionFailedError(McpzError):
    """Raised when a transport could not be established."""

    pass


class ServerNotRunningError(ConnectionFailedError):
    """Raised when the server refused the connection outright."""

    pass


class ServerNotReadyError(McpzError):
    """Raised when an HTTP server never answered the readiness poll."""

    pass


class OperationTimeoutError(McpzError):
    """Raised when a bounded operation exceeds its time limit."""

    pass


class ResponseError(McpzError):
    """Base class for errors raised while unwrapping protocol results.

    ``response`` holds the untouched protocol result.
    """

    def __init__(self, message: str, response: object | None = None):
        super().__init__(message)
        self.response = response


class ToolResponseError(ResponseError):
    """Raised when a tool result is an error or has no usable content."""

    pass


class PromptResponseError(ResponseError):
    """Raised when a prompt result has no usable content."""

    pass


class ResourceResponseError(ResponseError):
    """Raised when a resource result has no usable content."""

    pass
