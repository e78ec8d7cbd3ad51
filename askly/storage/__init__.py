"""Persistent key-value storage backends."""

from askly.storage.kv import InMemoryStore, KeyValueStore, SQLiteStore

__all__ = ["InMemoryStore", "KeyValueStore", "SQLiteStore"]
