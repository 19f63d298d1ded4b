"""Token persistence.

The authenticator only needs an async key-value store. Values are plain
JSON-compatible dicts so any backend can hold them.
"""

from __future__ import annotations

import asyncio
import json
import os
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

DEFAULT_STORE_DIR = ".mcpz"
DEFAULT_STORE_FILE = "tokens.json"


@runtime_checkable
class TokenStore(Protocol):
    """Async key-value store for token sets."""

    async def get(self, key: str) -> Any | None: ...

    async def set(self, key: str, value: Any) -> None: ...

    async def delete(self, key: str) -> bool: ...


class MemoryTokenStore:
    """In-process store; contents vanish with the process."""

    def __init__(self) -> None:
        self._data: dict[str, Any] = {}

    async def get(self, key: str) -> Any | None:
        return self._data.get(key)

    async def set(self, key: str, value: Any) -> None:
        self._data[key] = value

    async def delete(self, key: str) -> bool:
        return self._data.pop(key, None) is not None


class FileTokenStore:
    """JSON file store.

    Writes go through a temporary file and ``os.replace`` so a crash never
    leaves a truncated file. Concurrent writers in other processes are not
    coordinated.
    """

    def __init__(self, path: str | os.PathLike[str]):
        self.path = Path(path)
        self._lock = asyncio.Lock()

    @classmethod
    def default(cls, cwd: str | os.PathLike[str] | None = None) -> FileTokenStore:
        """Per-project store at ``<cwd>/.mcpz/tokens.json``."""
        base = Path(cwd) if cwd is not None else Path.cwd()
        return cls(base / DEFAULT_STORE_DIR / DEFAULT_STORE_FILE)

    async def get(self, key: str) -> Any | None:
        async with self._lock:
            data = await asyncio.to_thread(self._read)
        return data.get(key)

    async def set(self, key: str, value: Any) -> None:
        async with self._lock:
            data = await asyncio.to_thread(self._read)
            data[key] = value
            await asyncio.to_thread(self._write, data)

    async def delete(self, key: str) -> bool:
        async with self._lock:
            data = await asyncio.to_thread(self._read)
            if key not in data:
                return False
            del data[key]
            await asyncio.to_thread(self._write, data)
            return True

    def _read(self) -> dict[str, Any]:
        try:
            content = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return {}
        if not content.strip():
            return {}
        data = json.loads(content)
        if not isinstance(data, dict):
            raise ValueError(f"Token store {self.path} does not contain a JSON object")
        return data

    def _write(self, data: dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp_path.write_text(json.dumps(data, indent=2), encoding="utf-8")
        os.chmod(tmp_path, 0o600)
        os.replace(tmp_path, self.path)
