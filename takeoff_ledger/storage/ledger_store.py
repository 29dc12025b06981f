"""
Ledger persistence.

Snapshots are stored under ``ledger:<docId>:<runId>``. Loading replays
every stored record through the normal append path, so a stored snapshot
that breaks a ledger invariant fails to load instead of loading silently.
"""

import logging
from typing import Optional

from pydantic import ValidationError

from ..ledger import InferenceLedger, LedgerCorruptionError, LedgerError
from ..observability.tracing import traced
from .kv import KeyValueStore

logger = logging.getLogger(__name__)

KEY_PREFIX = "ledger"


def storage_key(doc_id: str, run_id: str) -> str:
    return f"{KEY_PREFIX}:{doc_id}:{run_id}"


class LedgerStore:
    """Save, load, delete and list ledger snapshots in a key-value store."""

    def __init__(self, store: KeyValueStore):
        self.store = store

    @traced("save_ledger")
    async def save_ledger(self, ledger: InferenceLedger, doc_id: str) -> str:
        key = storage_key(doc_id, ledger.run_id)
        await self.store.set(key, ledger.to_dict())
        logger.info(f"Saved ledger {ledger.id} under {key}")
        return key

    @traced("load_ledger")
    async def load_ledger(self, doc_id: str, run_id: str) -> Optional[InferenceLedger]:
        """
        Rebuild a stored ledger.

        Returns:
            The ledger, or None when nothing is stored under the key

        Raises:
            LedgerCorruptionError: If the stored snapshot cannot be replayed
        """
        key = storage_key(doc_id, run_id)
        data = await self.store.get(key)
        if data is None:
            return None

        try:
            return InferenceLedger.replay(data)
        except (ValidationError, LedgerError) as e:
            raise LedgerCorruptionError(str(e), key=key) from e

    async def delete_ledger(self, doc_id: str, run_id: str) -> bool:
        return await self.store.delete(storage_key(doc_id, run_id))

    async def list_ledger_keys(self, doc_id: Optional[str] = None) -> list[str]:
        prefix = f"{KEY_PREFIX}:{doc_id}:" if doc_id else f"{KEY_PREFIX}:"
        return await self.store.list_keys(prefix)

    async def list_run_ids(self, doc_id: str) -> list[str]:
        prefix = f"{KEY_PREFIX}:{doc_id}:"
        return [key[len(prefix):] for key in await self.list_ledger_keys(doc_id)]
