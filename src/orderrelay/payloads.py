"""Klaviyo event payloads for order lifecycle events.

Pure transformation. ``build_payload()`` shapes the common
order properties and applies the per-event enrichment registered in
``_ENRICHERS``; every ``LifecycleEvent`` has an entry.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable

from orderrelay.constants import EVENT_SOURCE, REFUND_REASON_UNAVAILABLE, LifecycleEvent
from orderrelay.orders import Order


# ---------------------------------------------------------------------------
# Payload model
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CustomerProfile:
    email: str | None
    first_name: str | None = None
    last_name: str | None = None

    def to_dict(self) -> dict[str, Any]:
        attributes: dict[str, Any] = {"email": self.email}
        if self.first_name:
            attributes["first_name"] = self.first_name
        if self.last_name:
            attributes["last_name"] = self.last_name
        return attributes


@dataclass(frozen=True)
class EventPayload:
    """One Klaviyo event, rendered with ``to_dict()`` as a JSON:API document."""

    event: LifecycleEvent
    order_id: str
    time: str
    properties: dict[str, Any]
    profile: CustomerProfile
    enrichment: dict[str, Any] = field(default_factory=dict)

    @property
    def metric_name(self) -> str:
        return self.event.value

    def to_dict(self) -> dict[str, Any]:
        return {
            "data": {
                "type": "event",
                "attributes": {
                    "time": self.time,
                    "properties": {**self.properties, **self.enrichment},
                    "metric": {
                        "data": {
                            "type": "metric",
                            "attributes": {"name": self.metric_name},
                        }
                    },
                    "profile": {
                        "data": {
                            "type": "profile",
                            "attributes": self.profile.to_dict(),
                        }
                    },
                },
            }
        }


# ---------------------------------------------------------------------------
# Enrichment per event
# ---------------------------------------------------------------------------


def _no_enrichment(order: Order) -> dict[str, Any]:
    return {}


def _refund_enrichment(order: Order) -> dict[str, Any]:
    first = order.refunds[0] if order.refunds else None
    amount = first.amount if first and first.amount is not None else order.total
    reason = (
        (first.reason if first else None)
        or order.cancel_reason
        or REFUND_REASON_UNAVAILABLE
    )
    return {"refund_amount": amount, "refund_reason": reason, "status": "refunded"}


def _fulfilled_enrichment(order: Order) -> dict[str, Any]:
    return {"status": "fulfilled"}


def _cancelled_enrichment(order: Order) -> dict[str, Any]:
    return {"status": "cancelled"}


_ENRICHERS: dict[LifecycleEvent, Callable[[Order], dict[str, Any]]] = {
    LifecycleEvent.PRODUCT_PURCHASED: _no_enrichment,
    LifecycleEvent.COURSE_PURCHASED: _no_enrichment,
    LifecycleEvent.ORDER_FULFILLED: _fulfilled_enrichment,
    LifecycleEvent.ORDER_REFUNDED: _refund_enrichment,
    LifecycleEvent.ORDER_CANCELLED: _cancelled_enrichment,
}


# ---------------------------------------------------------------------------
# Builder
# ---------------------------------------------------------------------------


def order_properties(order: Order) -> dict[str, Any]:
    """Properties shared by every event for this order."""
    return {
        "order_id": order.id,
        "order_number": order.order_number,
        "total": order.total,
        "currency": order.currency,
        "items": [item.to_dict() for item in order.line_items],
        "source": EVENT_SOURCE,
    }


def build_payload(
    order: Order, event: LifecycleEvent, *, now: datetime | None = None,
) -> EventPayload:
    """Map (order, event) to the sink payload.

    The event time is the order's creation time, falling back to ``now``
    (current UTC time if not given) for orders without one.
    """
    if order.created_on is not None:
        event_time = order.created_on
    else:
        event_time = now or datetime.now(timezone.utc)

    return EventPayload(
        event=event,
        order_id=order.id,
        time=event_time.isoformat(),
        properties=order_properties(order),
        profile=CustomerProfile(
            email=order.customer_email,
            first_name=order.first_name,
            last_name=order.last_name,
        ),
        enrichment=_ENRICHERS[event](order),
    )
