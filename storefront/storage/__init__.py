# Durable storage

from .kv_store import KeyValueStore, MemoryStore, SqliteStore

__all__ = ["KeyValueStore", "MemoryStore", "SqliteStore"]
