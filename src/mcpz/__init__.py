"""Client-side MCP server registry, connection negotiation and OAuth."""

from mcpz.auth.authenticator import AuthMode, DcrAuthenticator
from mcpz.auth.primitives.discovery import OAuthDiscovery, probe_auth_capabilities
from mcpz.auth.services.callback import OAuthCallbackListener
from mcpz.auth.services.flow import InteractiveOAuthFlow, OAuthFlowOptions
from mcpz.auth.services.registration import DynamicClientRegistrar
from mcpz.auth.storage import FileTokenStore, MemoryTokenStore, TokenStore
from mcpz.client.connect import connect_mcp_client, infer_transport_type
from mcpz.client.managed import ManagedClient
from mcpz.client.registry import ServerRegistry, create_server_registry
from mcpz.config.models import ServerEntry, StartConfig, validate_servers
from mcpz.errors import (
    ConfigurationError,
    ConnectionFailedError,
    McpzError,
    OperationTimeoutError,
    ServerNotReadyError,
    ServerNotRunningError,
)
from mcpz.search.index import build_capability_index, search, search_capabilities
from mcpz.search.models import SearchOptions, SearchResponse, SearchResult
from mcpz.spawn.paths import resolve_args_paths, resolve_path
from mcpz.spawn.process import ServerProcess, spawn_process

__version__ = "0.1.0"

__all__ = [
    "AuthMode",
    "ConfigurationError",
    "ConnectionFailedError",
    "DcrAuthenticator",
    "DynamicClientRegistrar",
    "FileTokenStore",
    "InteractiveOAuthFlow",
    "ManagedClient",
    "McpzError",
    "MemoryTokenStore",
    "OAuthCallbackListener",
    "OAuthDiscovery",
    "OAuthFlowOptions",
    "OperationTimeoutError",
    "SearchOptions",
    "SearchResponse",
    "SearchResult",
    "ServerEntry",
    "ServerNotReadyError",
    "ServerNotRunningError",
    "ServerProcess",
    "ServerRegistry",
    "StartConfig",
    "TokenStore",
    "build_capability_index",
    "connect_mcp_client",
    "create_server_registry",
    "infer_transport_type",
    "probe_auth_capabilities",
    "resolve_args_paths",
    "resolve_path",
    "search",
    "search_capabilities",
    "spawn_process",
    "validate_servers",
]
