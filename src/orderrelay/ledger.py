"""Processed-event ledger: which (order, event) pairs reached the sink.

No I/O here. Entries are kept in recency order (oldest
first); ``record()`` moves an entry to the newest position so pruning
from the front drops the least recently touched orders.
"""

from __future__ import annotations

import json
import logging
from collections import OrderedDict
from typing import Any, Iterable

from orderrelay.constants import LifecycleEvent

logger = logging.getLogger(__name__)

_SCHEMA_VERSION = 2


def _event_name(event: LifecycleEvent | str) -> str:
    return event.value if isinstance(event, LifecycleEvent) else str(event)


class ProcessedLedger:
    """Order id → set of event names confirmed delivered.

    ``from_json()`` returns an empty ledger on corrupt data (never blocks
    a run) and upgrades the v1 format, a bare list of order ids, by
    treating each id as having its purchase event delivered.
    """

    def __init__(self, entries: Iterable[tuple[str, Iterable[str]]] = ()) -> None:
        self._entries: OrderedDict[str, set[str]] = OrderedDict(
            (order_id, set(events)) for order_id, events in entries
        )
        self._touched: set[str] = set()
        self._changed = False

    # -- queries --------------------------------------------------------------

    def delivered(self, order_id: str) -> frozenset[str]:
        """Events already delivered for ``order_id`` (empty if unseen)."""
        return frozenset(self._entries.get(order_id, ()))

    def __contains__(self, order_id: object) -> bool:
        return order_id in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def order_ids(self) -> list[str]:
        """Order ids from least to most recently touched."""
        return list(self._entries)

    def as_dict(self) -> dict[str, set[str]]:
        return {order_id: set(events) for order_id, events in self._entries.items()}

    @property
    def changed(self) -> bool:
        """True once an event has been recorded since load (or last save)."""
        return self._changed

    @property
    def touched(self) -> frozenset[str]:
        return frozenset(self._touched)

    # -- mutations ------------------------------------------------------------

    def record(self, order_id: str, event: LifecycleEvent | str) -> bool:
        """Add ``event`` to the order's delivered set. Returns True if it was new."""
        events = self._entries.setdefault(order_id, set())
        self._entries.move_to_end(order_id)
        self._touched.add(order_id)
        name = _event_name(event)
        if name in events:
            return False
        events.add(name)
        self._changed = True
        return True

    def ensure(self, order_id: str) -> bool:
        """Create an empty entry for ``order_id`` if absent. Returns True if created.

        Used for orders that are evaluated but never delivered (test
        orders); does not mark the ledger as changed.
        """
        if order_id in self._entries:
            return False
        self._entries[order_id] = set()
        self._touched.add(order_id)
        return True

    def prune(self, capacity: int, keep: Iterable[str] = ()) -> int:
        """Drop the least recently touched entries beyond ``capacity``. Returns count dropped.

        Orders in ``keep`` are never dropped, even if that leaves the
        ledger above ``capacity``.
        """
        excess = len(self._entries) - max(capacity, 0)
        if excess <= 0:
            return 0
        protected = set(keep)
        victims = [order_id for order_id in self._entries if order_id not in protected]
        for order_id in victims[:excess]:
            del self._entries[order_id]
        return min(excess, len(victims))

    def merge(self, other: ProcessedLedger) -> None:
        """Fold another ledger's state into this one (set union per order).

        The result keeps ``other``'s recency order, then this ledger's
        entries; orders touched in this ledger end up newest.
        """
        merged: OrderedDict[str, set[str]] = OrderedDict(
            (order_id, set(events)) for order_id, events in other._entries.items()
        )
        for order_id, events in self._entries.items():
            merged.setdefault(order_id, set()).update(events)
        for order_id in self._entries:
            if order_id in self._touched:
                merged.move_to_end(order_id)
        self._entries = merged

    def mark_saved(self) -> None:
        self._changed = False

    # -- serialization --------------------------------------------------------

    def to_json(self, capacity: int | None = None) -> str:
        """Serialize, keeping only the newest ``capacity`` entries if given."""
        items = list(self._entries.items())
        if capacity is not None:
            items = items[-capacity:] if capacity > 0 else []
        return json.dumps({
            "v": _SCHEMA_VERSION,
            "orders": {
                order_id: sorted(events) for order_id, events in items
            },
        }, indent=2)

    @classmethod
    def from_json(cls, data: str) -> ProcessedLedger:
        """Deserialize from JSON. Returns an empty ledger on corrupt data.

        Accepts v2 (``{"v": 2, "orders": {...}}``), an unversioned
        ``{order_id: [events]}`` object, and the legacy v1 list of ids.
        """
        try:
            obj = json.loads(data)
        except (json.JSONDecodeError, TypeError):
            logger.warning("Ledger data is corrupt; starting from an empty ledger.")
            return cls()

        # Migration: v1 stored delivered order ids only
        if isinstance(obj, list):
            purchase = LifecycleEvent.PRODUCT_PURCHASED.value
            return cls(
                (str(order_id), {purchase})
                for order_id in obj
                if isinstance(order_id, (str, int))
            )

        if not isinstance(obj, dict):
            logger.warning("Ledger data is not a list or dict; starting from an empty ledger.")
            return cls()

        raw_orders: Any = obj.get("orders", {}) if "v" in obj else obj
        if not isinstance(raw_orders, dict):
            logger.warning("Ledger 'orders' is not a dict; starting from an empty ledger.")
            return cls()

        return cls(
            (str(order_id), {str(e) for e in events})
            for order_id, events in raw_orders.items()
            if isinstance(events, list)
        )
