"""Exceptions raised at the ledger append and load boundaries."""

from typing import Optional


class LedgerError(Exception):
    """Base class for ledger errors."""


class LedgerValidationError(LedgerError):
    """An entity failed schema validation or reused an existing id."""

    def __init__(self, kind: str, detail: str):
        self.kind = kind
        self.detail = detail
        super().__init__(f"Invalid {kind}: {detail}")


class ReferentialIntegrityError(LedgerError):
    """An entity references ids that are not in the ledger."""

    def __init__(self, kind: str, missing: dict[str, list[str]]):
        self.kind = kind
        self.missing = missing
        parts = [f"missing {label}: [{', '.join(ids)}]" for label, ids in missing.items()]
        super().__init__(f"Invalid {kind}: {'; '.join(parts)}")


class LedgerCorruptionError(LedgerError):
    """A stored ledger snapshot could not be replayed."""

    def __init__(self, message: str, key: Optional[str] = None):
        self.key = key
        super().__init__(message if key is None else f"{key}: {message}")
