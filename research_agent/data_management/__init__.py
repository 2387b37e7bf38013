"""Data management package.

Storage adapters:
- MemoryStore: outcome learning persisted through a key-value store
- InMemoryKeyValueStore / JsonFileKeyValueStore: key-value backends
"""

from research_agent.data_management.kv_store import (
    InMemoryKeyValueStore,
    JsonFileKeyValueStore,
    KeyValueStore,
)
from research_agent.data_management.memory_store import MemoryStore, extract_query_pattern

__all__ = [
    "InMemoryKeyValueStore",
    "JsonFileKeyValueStore",
    "KeyValueStore",
    "MemoryStore",
    "extract_query_pattern",
]
