"""orderrelay — Squarespace order lifecycle events to Klaviyo, at most once.

Idempotent event forwarding: each (order, lifecycle event) pair is
delivered once per ledger state, however often the relay is triggered.
"""

__version__ = "0.2.0"

from orderrelay.config import RelayConfig
from orderrelay.constants import LifecycleEvent
from orderrelay.orders import Order, LineItem, RefundRecord, OrderParseError
from orderrelay.classifier import classify
from orderrelay.payloads import EventPayload, build_payload
from orderrelay.ledger import ProcessedLedger
from orderrelay.ledger_backend import LedgerBackend, LedgerBackendError, LedgerConflictError, StoredDocument
from orderrelay.ledger_store import LedgerStore
from orderrelay.squarespace_client import SquarespaceClient, SquarespaceError
from orderrelay.klaviyo_client import KlaviyoClient, SendResult
from orderrelay.engine import ForwardingEngine, RunSummary, OrderOutcome, OrderNotFoundError
from orderrelay.backends import GitHubContentsBackend, LocalFileBackend

__all__ = [
    "RelayConfig",
    "LifecycleEvent",
    "Order",
    "LineItem",
    "RefundRecord",
    "OrderParseError",
    "classify",
    "EventPayload",
    "build_payload",
    "ProcessedLedger",
    "LedgerBackend",
    "LedgerBackendError",
    "LedgerConflictError",
    "StoredDocument",
    "LedgerStore",
    "SquarespaceClient",
    "SquarespaceError",
    "KlaviyoClient",
    "SendResult",
    "ForwardingEngine",
    "RunSummary",
    "OrderOutcome",
    "OrderNotFoundError",
    "GitHubContentsBackend",
    "LocalFileBackend",
]
