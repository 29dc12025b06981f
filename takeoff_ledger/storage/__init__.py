"""Ledger persistence behind a key-value contract."""

from .kv import (
    FirestoreKeyValueStore,
    InMemoryKeyValueStore,
    JsonFileKeyValueStore,
    KeyValueStore,
    create_store,
)
from .ledger_store import LedgerStore, storage_key

__all__ = [
    "FirestoreKeyValueStore",
    "InMemoryKeyValueStore",
    "JsonFileKeyValueStore",
    "KeyValueStore",
    "LedgerStore",
    "create_store",
    "storage_key",
]
