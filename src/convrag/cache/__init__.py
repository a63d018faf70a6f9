"""Generation cache and its backing stores."""

from .service import CacheConfig, GenerationCache, KeyValueGenerationCache, get_cache_key
from .store import InMemoryKeyValueStore, KeyValueStore, SQLiteKeyValueStore

__all__ = [
    "CacheConfig",
    "GenerationCache",
    "InMemoryKeyValueStore",
    "KeyValueGenerationCache",
    "KeyValueStore",
    "SQLiteKeyValueStore",
    "get_cache_key",
]
