"""Constants for Squarespace → Klaviyo order event relaying."""

from enum import Enum


DEFAULT_POLL_WINDOW_MINUTES = 1440  # one day
DEFAULT_RECONCILE_LOOKBACK_MINUTES = 43200  # 30 days
DEFAULT_LEDGER_CAPACITY = 500
DEFAULT_LEDGER_KEY = "data/processed.json"

PAYWALL_LINE_ITEM_TYPE = "PAYWALL_PRODUCT"
EVENT_SOURCE = "Squarespace-poll"
REFUND_REASON_UNAVAILABLE = "not available"


class LifecycleEvent(str, Enum):
    """Marketing events derived from an order's state (never stored on it)."""

    PRODUCT_PURCHASED = "Product-Purchased"
    COURSE_PURCHASED = "Course-Purchased"
    ORDER_FULFILLED = "Order-Fulfilled"
    ORDER_REFUNDED = "Order-Refunded"
    ORDER_CANCELLED = "Order-Cancelled"


PURCHASE_EVENTS = frozenset({
    LifecycleEvent.PRODUCT_PURCHASED,
    LifecycleEvent.COURSE_PURCHASED,
})
