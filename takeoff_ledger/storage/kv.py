"""
Key-value stores behind the ledger persistence boundary.

Every backend implements the same small async contract: ``get``, ``set``,
``delete`` and ``list_keys``. Values are JSON-compatible mappings.
"""

import asyncio
import json
import logging
import os
import tempfile
from abc import ABC, abstractmethod
from functools import lru_cache
from pathlib import Path
from typing import Any, Optional, Union
from urllib.parse import quote, unquote

import firebase_admin
from firebase_admin import credentials, firestore
from google.cloud.firestore_v1 import Client
from google.cloud.firestore_v1.base_query import FieldFilter

from ..config.settings import Settings, get_settings

logger = logging.getLogger(__name__)


class KeyValueStore(ABC):
    """Async get/set/delete/list contract."""

    @abstractmethod
    async def get(self, key: str) -> Optional[dict[str, Any]]:
        pass

    @abstractmethod
    async def set(self, key: str, value: dict[str, Any]) -> None:
        pass

    @abstractmethod
    async def delete(self, key: str) -> bool:
        """Remove ``key``; returns whether it existed."""
        pass

    @abstractmethod
    async def list_keys(self, prefix: str = "") -> list[str]:
        pass


class InMemoryKeyValueStore(KeyValueStore):
    """Process-local store, used by tests and ephemeral runs."""

    def __init__(self):
        self._data: dict[str, str] = {}

    async def get(self, key):
        raw = self._data.get(key)
        return json.loads(raw) if raw is not None else None

    async def set(self, key, value):
        # Stored as JSON text so callers never share mutable state with the store
        self._data[key] = json.dumps(value)

    async def delete(self, key):
        return self._data.pop(key, None) is not None

    async def list_keys(self, prefix=""):
        return sorted(k for k in self._data if k.startswith(prefix))


class JsonFileKeyValueStore(KeyValueStore):
    """One JSON file per key under ``directory``."""

    def __init__(self, directory: Union[str, Path]):
        self.directory = Path(directory)

    def _path(self, key: str) -> Path:
        return self.directory / f"{quote(key, safe='')}.json"

    def _read(self, key: str) -> Optional[dict[str, Any]]:
        path = self._path(key)
        if not path.exists():
            return None
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)

    def _write(self, key: str, value: dict[str, Any]) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=self.directory, suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(value, f, indent=2)
            os.replace(tmp_path, self._path(key))
        except BaseException:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
            raise

    def _delete(self, key: str) -> bool:
        path = self._path(key)
        if not path.exists():
            return False
        path.unlink()
        return True

    def _list(self, prefix: str) -> list[str]:
        if not self.directory.exists():
            return []
        keys = (unquote(p.name[: -len(".json")]) for p in self.directory.glob("*.json"))
        return sorted(k for k in keys if k.startswith(prefix))

    async def get(self, key):
        return await asyncio.to_thread(self._read, key)

    async def set(self, key, value):
        await asyncio.to_thread(self._write, key, value)

    async def delete(self, key):
        return await asyncio.to_thread(self._delete, key)

    async def list_keys(self, prefix=""):
        return await asyncio.to_thread(self._list, prefix)


def _initialize_firebase(settings: Settings) -> None:
    """Initialize Firebase Admin SDK if not already done."""
    if firebase_admin._apps:
        return

    if settings.google_application_credentials:
        cred = credentials.Certificate(settings.google_application_credentials)
        firebase_admin.initialize_app(cred)
    elif settings.firebase_project_id:
        firebase_admin.initialize_app(options={"projectId": settings.firebase_project_id})
    else:
        firebase_admin.initialize_app()


@lru_cache()
def get_firestore_client() -> Client:
    """Get the Firestore client (sync)."""
    _initialize_firebase(get_settings())
    return firestore.client()


class FirestoreKeyValueStore(KeyValueStore):
    """
    Firestore collection where each key is a document id.

    Documents hold ``{"key": ..., "value": {...}}`` so prefix listing can
    run as a range query on ``key``.
    """

    def __init__(self, collection: str = "ledgers", db: Optional[Client] = None):
        self.collection = collection
        self._db = db

    @property
    def db(self) -> Client:
        """Lazy-load Firestore client."""
        if self._db is None:
            self._db = get_firestore_client()
        return self._db

    def _doc(self, key: str):
        return self.db.collection(self.collection).document(key)

    def _read(self, key: str) -> Optional[dict[str, Any]]:
        doc = self._doc(key).get()
        if not doc.exists:
            return None
        return doc.to_dict().get("value")

    def _write(self, key: str, value: dict[str, Any]) -> None:
        self._doc(key).set({"key": key, "value": value})

    def _delete(self, key: str) -> bool:
        ref = self._doc(key)
        if not ref.get().exists:
            return False
        ref.delete()
        return True

    def _list(self, prefix: str) -> list[str]:
        query = self.db.collection(self.collection)
        if prefix:
            query = query.where(filter=FieldFilter("key", ">=", prefix)).where(
                filter=FieldFilter("key", "<", prefix + "\uf8ff")
            )
        return sorted(doc.id for doc in query.stream())

    async def get(self, key):
        return await asyncio.to_thread(self._read, key)

    async def set(self, key, value):
        await asyncio.to_thread(self._write, key, value)

    async def delete(self, key):
        return await asyncio.to_thread(self._delete, key)

    async def list_keys(self, prefix=""):
        return await asyncio.to_thread(self._list, prefix)


def create_store(settings: Optional[Settings] = None) -> KeyValueStore:
    """Store for the configured ``LEDGER_STORE_BACKEND``."""
    settings = settings or get_settings()
    backend = settings.ledger_store_backend
    if backend == "memory":
        return InMemoryKeyValueStore()
    if backend == "firestore":
        return FirestoreKeyValueStore(settings.firestore_collection)
    return JsonFileKeyValueStore(settings.ledger_store_dir)
