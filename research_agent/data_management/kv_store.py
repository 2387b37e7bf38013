"""Key-value persistence used by the memory store.

Any durable store with ``get(key)`` / ``set(key, value)`` works. Two
implementations ship here:
- InMemoryKeyValueStore: process-local, used in tests and one-off runs
- JsonFileKeyValueStore: one JSON document on disk, all keys in one object

Usage:
    from research_agent.data_management.kv_store import JsonFileKeyValueStore

    store = JsonFileKeyValueStore("data/agent_memory.json")
    await store.set("research_agent:memory", {"memories": []})
    payload = await store.get("research_agent:memory")
"""

import asyncio
import copy
import json
from pathlib import Path
from typing import Any, Optional, Protocol

import structlog


class KeyValueStore(Protocol):
    """Minimal async key-value contract."""

    async def get(self, key: str) -> Optional[Any]:
        ...

    async def set(self, key: str, value: Any) -> None:
        ...


class InMemoryKeyValueStore:
    """Dictionary-backed store. Values are deep-copied on the way in and out."""

    def __init__(self) -> None:
        self._data: dict[str, Any] = {}
        self._lock = asyncio.Lock()

    async def get(self, key: str) -> Optional[Any]:
        async with self._lock:
            value = self._data.get(key)
            return copy.deepcopy(value)

    async def set(self, key: str, value: Any) -> None:
        async with self._lock:
            self._data[key] = copy.deepcopy(value)


class JsonFileKeyValueStore:
    """Store every key in a single JSON file.

    A missing or unreadable file is treated as an empty store, so first runs
    and corrupted files never prevent the agent from starting.
    """

    def __init__(self, persistence_path: str) -> None:
        """Initialize JsonFileKeyValueStore.

        Args:
            persistence_path: Path to the JSON file. Parent directories are
                created on first write.
        """
        self._path = Path(persistence_path)
        self._data: dict[str, Any] = {}
        self._lock = asyncio.Lock()
        self._logger = structlog.get_logger().bind(component="JsonFileKeyValueStore")
        self._load_from_file()

    async def get(self, key: str) -> Optional[Any]:
        async with self._lock:
            return copy.deepcopy(self._data.get(key))

    async def set(self, key: str, value: Any) -> None:
        async with self._lock:
            self._data[key] = copy.deepcopy(value)
            self._save_to_file()

    def _save_to_file(self) -> None:
        """Save to JSON file (synchronous)."""
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            with open(self._path, "w") as f:
                json.dump(self._data, f, indent=2, default=str)
        except OSError as e:
            self._logger.error("persistence_failed", path=str(self._path), error=str(e))

    def _load_from_file(self) -> None:
        """Load from JSON file (synchronous)."""
        if not self._path.exists():
            return
        try:
            with open(self._path, "r") as f:
                data = json.load(f)
            if isinstance(data, dict):
                self._data = data
            else:
                self._logger.warning("unexpected_payload", path=str(self._path))
        except (OSError, json.JSONDecodeError) as e:
            self._logger.error("load_failed", path=str(self._path), error=str(e))
            self._data = {}
