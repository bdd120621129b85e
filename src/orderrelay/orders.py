"""Read-only order model parsed from Squarespace Commerce API JSON.

Pure data model — no I/O. Parsing tolerates missing optional fields; an
order without an id or with an unreadable ``createdOn`` raises
``OrderParseError`` so the engine can isolate it.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from orderrelay.constants import PAYWALL_LINE_ITEM_TYPE


class OrderParseError(ValueError):
    """Raised when an order payload is too malformed to process."""


def _money_value(raw: Any) -> Any:
    """Squarespace money is ``{"value": "12.00", "currency": "USD"}``; accept bare values too."""
    if isinstance(raw, dict):
        return raw.get("value")
    return raw


def _money_currency(raw: Any) -> str | None:
    if isinstance(raw, dict):
        return raw.get("currency")
    return None


def parse_timestamp(raw: Any) -> datetime | None:
    """Parse an ISO-8601 timestamp (``Z`` suffix allowed) into an aware datetime."""
    if raw in (None, ""):
        return None
    if not isinstance(raw, str):
        raise OrderParseError(f"timestamp must be a string, got {type(raw).__name__}")
    try:
        parsed = datetime.fromisoformat(raw.replace("Z", "+00:00"))
    except ValueError as exc:
        raise OrderParseError(f"unreadable timestamp {raw!r}") from exc
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


# ---------------------------------------------------------------------------
# LineItem
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class LineItem:
    name: str | None = None
    sku: str | None = None
    quantity: int = 0
    unit_price: Any = None
    item_type: str | None = None

    @property
    def is_course(self) -> bool:
        return self.item_type == PAYWALL_LINE_ITEM_TYPE

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "sku": self.sku,
            "quantity": self.quantity,
            "price": self.unit_price,
            "type": self.item_type,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> LineItem:
        try:
            quantity = int(data.get("quantity") or 0)
        except (TypeError, ValueError) as exc:
            raise OrderParseError(f"bad line item quantity {data.get('quantity')!r}") from exc
        price = _money_value(data.get("unitPricePaid"))
        if price is None:
            price = data.get("price")
        return cls(
            name=data.get("productName") or data.get("name"),
            sku=data.get("sku"),
            quantity=quantity,
            unit_price=price,
            item_type=data.get("lineItemType"),
        )


# ---------------------------------------------------------------------------
# RefundRecord
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RefundRecord:
    amount: Any = None
    reason: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RefundRecord:
        return cls(
            amount=_money_value(data.get("amount")),
            reason=data.get("reason") or None,
        )


# ---------------------------------------------------------------------------
# Order
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Order:
    """One storefront order snapshot."""

    id: str
    order_number: str | None = None
    created_on: datetime | None = None
    financial_status: str = ""
    fulfillment_status: str = ""
    testmode: bool = False
    total: Any = None
    currency: str | None = None
    line_items: tuple[LineItem, ...] = ()
    customer_email: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    refunds: tuple[RefundRecord, ...] = ()
    cancel_reason: str | None = None

    @property
    def status_text(self) -> str:
        """Financial and fulfillment status, lower-cased, for signal matching."""
        return f"{self.financial_status} {self.fulfillment_status}".lower()

    @property
    def has_course(self) -> bool:
        return any(item.is_course for item in self.line_items)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Order:
        if not isinstance(data, dict):
            raise OrderParseError(f"order must be an object, got {type(data).__name__}")
        order_id = data.get("id")
        if not order_id:
            raise OrderParseError("order has no id")

        raw_items = data.get("lineItems") or []
        if not isinstance(raw_items, list):
            raise OrderParseError(f"order {order_id}: lineItems is not a list")
        raw_refunds = data.get("refunds") or []
        if not isinstance(raw_refunds, list):
            raw_refunds = []

        billing = data.get("billingAddress") or {}
        grand_total = data.get("grandTotal")
        # Squarespace sends testmode as a bool; older exports used the string
        testmode = data.get("testmode") in (True, "true", "TRUE", "True")

        order_number = data.get("orderNumber")
        return cls(
            id=str(order_id),
            order_number=str(order_number) if order_number is not None else None,
            created_on=parse_timestamp(data.get("createdOn")),
            financial_status=str(
                data.get("financialStatus") or data.get("paymentStatus") or ""
            ),
            fulfillment_status=str(data.get("fulfillmentStatus") or ""),
            testmode=testmode,
            total=_money_value(grand_total),
            currency=_money_currency(grand_total),
            line_items=tuple(
                LineItem.from_dict(item) for item in raw_items if isinstance(item, dict)
            ),
            customer_email=data.get("customerEmail"),
            first_name=billing.get("firstName") if isinstance(billing, dict) else None,
            last_name=billing.get("lastName") if isinstance(billing, dict) else None,
            refunds=tuple(
                RefundRecord.from_dict(r) for r in raw_refunds if isinstance(r, dict)
            ),
            cancel_reason=data.get("cancelReason") or data.get("cancellationReason"),
        )
