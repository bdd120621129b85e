"""Load and save the ProcessedLedger through a LedgerBackend.

Loading fails open (an unreadable ledger is treated as empty) and saving
never raises: a run that delivered events must still report them even
when the ledger write is lost.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Iterable

from orderrelay.constants import DEFAULT_LEDGER_CAPACITY, DEFAULT_LEDGER_KEY
from orderrelay.ledger import ProcessedLedger
from orderrelay.ledger_backend import LedgerConflictError

if TYPE_CHECKING:
    from orderrelay.ledger_backend import LedgerBackend

logger = logging.getLogger(__name__)


class LedgerStore:
    """Owns one ledger document for the duration of a run.

    - ``load()`` reads the document and remembers its revision token.
    - ``save()`` prunes to ``capacity`` (sparing the ``keep`` orders) and
      writes with that token.
    - On a revision conflict the remote ledger is re-read, merged into
      the local one, and the write retried up to ``conflict_retries`` times.
    """

    def __init__(
        self,
        backend: LedgerBackend,
        key: str = DEFAULT_LEDGER_KEY,
        capacity: int = DEFAULT_LEDGER_CAPACITY,
        conflict_retries: int = 1,
        retry_delay: float = 0.5,
    ) -> None:
        self._backend = backend
        self._key = key
        self._capacity = capacity
        self._conflict_retries = conflict_retries
        self._retry_delay = retry_delay
        self._revision: str | None = None

    @property
    def revision(self) -> str | None:
        """Revision token of the last document read or written."""
        return self._revision

    async def load(self) -> ProcessedLedger:
        """Return the stored ledger, or an empty one on miss/error."""
        try:
            doc = await self._backend.read(self._key)
        except Exception:
            logger.warning(
                "Failed to read ledger %s; continuing with an empty ledger.",
                self._key, exc_info=True,
            )
            return ProcessedLedger()

        if doc is None:
            logger.info("No ledger at %s yet; starting empty.", self._key)
            self._revision = None
            return ProcessedLedger()

        self._revision = doc.revision
        ledger = ProcessedLedger.from_json(doc.content)
        logger.info("Loaded ledger %s with %d order(s).", self._key, len(ledger))
        return ledger

    async def _reload_and_merge(self, ledger: ProcessedLedger) -> None:
        """Pick up a concurrent run's writes before retrying a conflicted save."""
        doc = await self._backend.read(self._key)
        if doc is None:
            self._revision = None
            return
        self._revision = doc.revision
        ledger.merge(ProcessedLedger.from_json(doc.content))

    async def save(self, ledger: ProcessedLedger, keep: Iterable[str] = ()) -> bool:
        """Persist ``ledger``. Returns True on success, False on failure (logged, not raised).

        ``keep`` names orders that must survive pruning (the current candidates).
        """
        protected = frozenset(keep)
        max_attempts = 1 + self._conflict_retries
        for attempt in range(max_attempts):
            dropped = ledger.prune(self._capacity, protected)
            if dropped:
                logger.info("Pruned %d oldest ledger entr(ies).", dropped)
            try:
                self._revision = await self._backend.write(
                    self._key, ledger.to_json(), self._revision
                )
                ledger.mark_saved()
                logger.info("Saved ledger %s (%d order(s)).", self._key, len(ledger))
                return True
            except LedgerConflictError:
                if attempt >= max_attempts - 1:
                    logger.warning(
                        "Ledger %s changed underneath this run; giving up after %d attempt(s).",
                        self._key, max_attempts,
                    )
                    return False
                logger.warning(
                    "Ledger %s revision conflict (attempt %d/%d); merging and retrying.",
                    self._key, attempt + 1, max_attempts,
                )
                try:
                    await asyncio.sleep(self._retry_delay)
                    await self._reload_and_merge(ledger)
                except Exception:
                    logger.warning(
                        "Failed to re-read ledger %s after conflict.", self._key,
                        exc_info=True,
                    )
                    return False
            except Exception:
                logger.warning("Failed to save ledger %s.", self._key, exc_info=True)
                return False
        return False
