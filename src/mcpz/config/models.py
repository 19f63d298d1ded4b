"""Server configuration models.

Configuration arrives as a mapping of server name to entry, usually parsed
from a ``servers.json``-style document with camelCase keys.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

TransportKind = Literal["stdio", "http", "sse-ide", "ws-ide", "sdk"]


class StartConfig(BaseModel):
    """Local launch block for an HTTP server the registry should start."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    command: str
    args: list[str] | None = None
    env: dict[str, str] | None = None
    cwd: str | None = None


class ServerEntry(BaseModel):
    """One configured MCP server."""

    model_config = ConfigDict(frozen=True, extra="forbid", populate_by_name=True)

    type: TransportKind | None = None
    command: str | None = None
    args: list[str] | None = None
    env: dict[str, str] | None = None
    cwd: str | None = None
    url: str | None = None
    headers: dict[str, str] | None = None
    headers_helper: str | None = Field(default=None, alias="headersHelper")
    ide_name: str | None = Field(default=None, alias="ideName")
    auth_token: str | None = Field(default=None, alias="authToken")
    ide_running_in_windows: bool | None = Field(
        default=None, alias="ideRunningInWindows"
    )
    name: str | None = None
    start: StartConfig | None = None


ServersConfig = dict[str, ServerEntry]

_servers_adapter = TypeAdapter(ServersConfig)


@dataclass
class ValidationResult:
    valid: bool
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


def _format_error(error: Mapping[str, Any]) -> str:
    location = ".".join(str(part) for part in error.get("loc", ())) or "(root)"
    return f"{location}: {error.get('msg', 'invalid value')}"


def validate_servers(servers: Any) -> ValidationResult:
    """Validate a servers mapping, collecting every error rather than the first.

    Args:
        servers: Raw mapping (as parsed from JSON) or already-built entries

    Returns:
        ValidationResult with all error messages and non-fatal warnings
    """
    try:
        parsed = _servers_adapter.validate_python(servers)
    except ValidationError as e:
        return ValidationResult(
            valid=False, errors=[_format_error(err) for err in e.errors()]
        )

    warnings: list[str] = []
    for name, entry in parsed.items():
        if entry.type == "stdio" and not entry.command:
            warnings.append(f"{name}: stdio server has no command")
        if entry.type in ("http", "sse-ide") and not entry.url:
            warnings.append(f"{name}: {entry.type} server has no url")
        if entry.start is not None and entry.type == "stdio":
            warnings.append(f"{name}: start block is ignored for stdio servers")
    return ValidationResult(valid=True, warnings=warnings)


def parse_servers(servers: Mapping[str, Any]) -> ServersConfig:
    """Build typed entries from a servers mapping.

    Raises:
        ValidationError: If the mapping does not match the schema
    """
    return _servers_adapter.validate_python(servers)
