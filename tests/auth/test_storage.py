"""Tests for token stores."""

import json
import os
import stat

import pytest

from mcpz.auth.storage import FileTokenStore, MemoryTokenStore, TokenStore


class TestMemoryTokenStore:
    async def test_round_trip_and_delete(self):
        # Arrange
        store = MemoryTokenStore()

        # Act
        await store.set("tokens:https://a", {"access_token": "x"})

        # Assert
        assert await store.get("tokens:https://a") == {"access_token": "x"}
        assert await store.delete("tokens:https://a") is True
        assert await store.delete("tokens:https://a") is False
        assert await store.get("tokens:https://a") is None

    def test_satisfies_protocol(self):
        assert isinstance(MemoryTokenStore(), TokenStore)


class TestFileTokenStore:
    async def test_persists_across_instances(self, tmp_path):
        # Arrange
        path = tmp_path / "nested" / "tokens.json"

        # Act
        await FileTokenStore(path).set("k", {"access_token": "x"})
        value = await FileTokenStore(path).get("k")

        # Assert
        assert value == {"access_token": "x"}
        assert json.loads(path.read_text()) == {"k": {"access_token": "x"}}

    @pytest.mark.skipif(os.name == "nt", reason="POSIX permissions")
    async def test_file_is_private(self, tmp_path):
        path = tmp_path / "tokens.json"

        await FileTokenStore(path).set("k", "v")

        assert stat.S_IMODE(path.stat().st_mode) == 0o600

    async def test_missing_file_reads_empty(self, tmp_path):
        store = FileTokenStore(tmp_path / "absent.json")

        assert await store.get("k") is None
        assert await store.delete("k") is False

    async def test_delete_keeps_other_keys(self, tmp_path):
        # Arrange
        store = FileTokenStore(tmp_path / "tokens.json")
        await store.set("a", 1)
        await store.set("b", 2)

        # Act
        deleted = await store.delete("a")

        # Assert
        assert deleted is True
        assert await store.get("a") is None
        assert await store.get("b") == 2

    def test_default_location(self, tmp_path):
        store = FileTokenStore.default(tmp_path)
        assert store.path == tmp_path / ".mcpz" / "tokens.json"
