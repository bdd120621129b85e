"""LedgerBackend storing documents as files under a root directory.

The revision token is the SHA-256 of the file content, so a concurrent
writer that changed the file is detected on the next write.
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
import os
import tempfile
from pathlib import Path

from orderrelay.ledger_backend import LedgerBackendError, LedgerConflictError, StoredDocument

logger = logging.getLogger(__name__)


def content_revision(content: str) -> str:
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


class LocalFileBackend:
    """Filesystem persistence for runs on a single host (or a CI checkout)."""

    def __init__(self, root: str | os.PathLike[str] = ".") -> None:
        self._root = Path(root)

    def _path(self, key: str) -> Path:
        path = (self._root / key).resolve()
        if self._root.resolve() not in path.parents:
            raise LedgerBackendError(f"key {key!r} escapes the backend root")
        return path

    def _read_sync(self, path: Path) -> str | None:
        try:
            return path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as exc:
            raise LedgerBackendError(f"cannot read {path}: {exc}") from exc

    def _replace_sync(self, path: Path, content: str) -> None:
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.")
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(content)
            os.replace(tmp_name, path)
        except OSError as exc:
            raise LedgerBackendError(f"cannot write {path}: {exc}") from exc

    # Blocking filesystem calls run in a worker thread.

    async def read(self, key: str) -> StoredDocument | None:
        path = self._path(key)
        content = await asyncio.to_thread(self._read_sync, path)
        if content is None:
            return None
        return StoredDocument(content=content, revision=content_revision(content))

    async def write(
        self, key: str, content: str, revision: str | None = None
    ) -> str:
        path = self._path(key)
        current = await self.read(key)
        current_revision = current.revision if current else None
        if current_revision != revision:
            raise LedgerConflictError(
                f"{key}: expected revision {revision}, found {current_revision}"
            )

        await asyncio.to_thread(self._replace_sync, path, content)
        logger.debug("Wrote %s (%d bytes).", path, len(content))
        return content_revision(content)
