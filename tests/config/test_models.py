"""Tests for server configuration models and validation."""

import pytest
from pydantic import ValidationError

from mcpz.config.models import ServerEntry, parse_servers, validate_servers


class TestServerEntry:
    def test_accepts_camel_case_aliases(self):
        # Act
        entry = ServerEntry.model_validate(
            {"type": "sse-ide", "url": "http://localhost:1", "ideName": "vscode", "headersHelper": "x"}
        )

        # Assert
        assert entry.ide_name == "vscode"
        assert entry.headers_helper == "x"

    def test_is_immutable(self):
        entry = ServerEntry(command="python")
        with pytest.raises(ValidationError):
            entry.command = "node"

    def test_rejects_unknown_keys(self):
        with pytest.raises(ValidationError):
            ServerEntry.model_validate({"command": "python", "bogus": True})


class TestValidateServers:
    def test_valid_config(self):
        # Arrange
        config = {
            "echo": {"command": "python", "args": ["server.py"]},
            "remote": {"url": "https://example.com/mcp"},
            "local-http": {
                "type": "http",
                "url": "http://localhost:8080/mcp",
                "start": {"command": "python", "args": ["http.py"]},
            },
        }

        # Act
        result = validate_servers(config)

        # Assert
        assert result.valid
        assert result.errors == []

    def test_collects_every_error(self):
        # Arrange
        config = {
            "a": {"type": "carrier-pigeon"},
            "b": {"command": 5},
            "c": {"start": {"args": ["x"]}},
        }

        # Act
        result = validate_servers(config)

        # Assert
        assert not result.valid
        assert len(result.errors) >= 3
        joined = "\n".join(result.errors)
        assert joined.count("a.") >= 1
        assert "b.command" in joined
        assert "c.start.command" in joined

    def test_warnings_are_not_fatal(self):
        # Act
        result = validate_servers(
            {
                "no-command": {"type": "stdio"},
                "no-url": {"type": "http"},
                "odd-start": {"type": "stdio", "command": "x", "start": {"command": "y"}},
            }
        )

        # Assert
        assert result.valid
        assert len(result.warnings) == 3

    def test_parse_servers_builds_entries(self):
        servers = parse_servers({"echo": {"command": "python"}})
        assert isinstance(servers["echo"], ServerEntry)
