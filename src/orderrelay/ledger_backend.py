"""Abstract persistence interface for the processed-event ledger.

Defines the LedgerBackend Protocol that LedgerStore depends on.
Concrete implementations live in ``orderrelay.backends``.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol, runtime_checkable


class LedgerBackendError(Exception):
    """Base exception for ledger persistence failures."""


class LedgerConflictError(LedgerBackendError):
    """The stored revision no longer matches the one the write expected."""


@dataclass(frozen=True)
class StoredDocument:
    """Ledger content plus the backend's revision token for it."""

    content: str
    revision: str | None = None


@runtime_checkable
class LedgerBackend(Protocol):
    """Async key/document store with optimistic concurrency.

    ``write()`` returns the new revision token and raises
    ``LedgerConflictError`` when ``revision`` is stale (or is None while
    a document already exists).
    """

    async def read(self, key: str) -> StoredDocument | None: ...

    async def write(
        self, key: str, content: str, revision: str | None = None
    ) -> str: ...
