"""Derive the lifecycle events an order currently warrants."""

from __future__ import annotations

import re

from orderrelay.constants import LifecycleEvent
from orderrelay.orders import Order

# "unfulfilled" is a Shopify-style negation, not a fulfillment signal.
_FULFILLED_RE = re.compile(r"(?<!un)fulfilled|completed?|shipped")
_REFUND_RE = re.compile(r"refund|chargeback|charged_back|charged back")
_CANCEL_RE = re.compile(r"cancel")


def has_fulfillment_signal(order: Order) -> bool:
    return bool(_FULFILLED_RE.search(order.status_text))


def has_refund_signal(order: Order) -> bool:
    return bool(_REFUND_RE.search(order.status_text))


def has_cancel_signal(order: Order) -> bool:
    return bool(_CANCEL_RE.search(order.status_text))


def purchase_event(order: Order) -> LifecycleEvent:
    """Course purchase if any line item is a paywall product."""
    if order.has_course:
        return LifecycleEvent.COURSE_PURCHASED
    return LifecycleEvent.PRODUCT_PURCHASED


def classify(order: Order) -> list[LifecycleEvent]:
    """Return the order's events in chronological order, without duplicates.

    Every non-test order starts with its purchase event. Status signals
    (case-insensitive, over financial + fulfillment status) add
    fulfillment, refund and cancellation in that order. Test orders
    warrant nothing.
    """
    if order.testmode:
        return []

    events = [purchase_event(order)]
    if has_fulfillment_signal(order):
        events.append(LifecycleEvent.ORDER_FULFILLED)
    if has_refund_signal(order):
        events.append(LifecycleEvent.ORDER_REFUNDED)
    if has_cancel_signal(order):
        events.append(LifecycleEvent.ORDER_CANCELLED)

    return list(dict.fromkeys(events))
