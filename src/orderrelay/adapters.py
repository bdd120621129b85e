"""Interfaces the ForwardingEngine consumes for its order source and event sink.

SquarespaceClient and KlaviyoClient satisfy these; tests use fakes.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from orderrelay.klaviyo_client import SendResult
    from orderrelay.payloads import EventPayload


@runtime_checkable
class OrderSource(Protocol):
    """Read-only snapshot of storefront orders (raw API JSON).

    Raising from ``list_orders()`` fails the run; an empty list does not.
    """

    async def list_orders(self) -> list[dict[str, Any]]: ...

    async def get_order(self, order_ref: str) -> dict[str, Any] | None: ...


@runtime_checkable
class EventSink(Protocol):
    """Delivers one event; reports failure in the result rather than raising."""

    async def send(self, payload: EventPayload) -> SendResult: ...
