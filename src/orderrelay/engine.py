"""ForwardingEngine: relay order lifecycle events to the sink at most once per ledger state.

One ``run_once()`` call loads the ledger, fetches the order snapshot,
selects candidate orders, delivers each not-yet-delivered event in
chronological order, records confirmed deliveries immediately, and saves
the ledger once at the end if anything new was recorded.

Processing is strictly sequential: the ledger is a single in-memory
structure owned by the run, and a refund must never reach the sink
before its purchase.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Any, Callable

from orderrelay.classifier import classify, has_fulfillment_signal, has_refund_signal
from orderrelay.config import RelayConfig
from orderrelay.constants import PURCHASE_EVENTS, LifecycleEvent
from orderrelay.klaviyo_client import SendResult
from orderrelay.orders import Order, OrderParseError
from orderrelay.payloads import EventPayload, build_payload

if TYPE_CHECKING:
    from orderrelay.adapters import EventSink, OrderSource
    from orderrelay.ledger import ProcessedLedger
    from orderrelay.ledger_store import LedgerStore

logger = logging.getLogger(__name__)

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)
_PURCHASE_NAMES = frozenset(e.value for e in PURCHASE_EVENTS)


class OrderNotFoundError(LookupError):
    """The source has no order with the requested id or order number."""


# ---------------------------------------------------------------------------
# Run summary
# ---------------------------------------------------------------------------


@dataclass
class OrderOutcome:
    """What happened to one order during a run."""

    order_id: str
    sent: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)  # already delivered
    failed: list[str] = field(default_factory=list)
    testmode: bool = False
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"id": self.order_id}
        if self.testmode:
            result["skipped"] = True
            result["reason"] = "testmode"
        if self.sent:
            result["sent"] = self.sent
        if self.skipped:
            result["already_delivered"] = self.skipped
        if self.failed:
            result["failed"] = self.failed
        if self.error:
            result["error"] = self.error
        return result


@dataclass
class RunSummary:
    dry_run: bool = False
    started_at: str = ""
    fetched: int = 0
    candidates: int = 0
    orders: list[OrderOutcome] = field(default_factory=list)
    ledger_saved: bool | None = None  # None: nothing new to save

    @property
    def sent(self) -> int:
        return sum(len(o.sent) for o in self.orders)

    @property
    def skipped(self) -> int:
        return sum(len(o.skipped) for o in self.orders)

    @property
    def failed(self) -> int:
        return sum(len(o.failed) for o in self.orders)

    @property
    def errors(self) -> int:
        return sum(1 for o in self.orders if o.error)

    @property
    def test_orders(self) -> int:
        return sum(1 for o in self.orders if o.testmode)

    def to_dict(self) -> dict[str, Any]:
        return {
            "dry_run": self.dry_run,
            "started_at": self.started_at,
            "fetched": self.fetched,
            "candidates": self.candidates,
            "sent": self.sent,
            "skipped": self.skipped,
            "failed": self.failed,
            "errors": self.errors,
            "test_orders": self.test_orders,
            "ledger_saved": self.ledger_saved,
            "orders": [o.to_dict() for o in self.orders if o.sent or o.failed
                       or o.error or o.testmode],
        }


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


class ForwardingEngine:
    """Orchestrates source → classifier → ledger → payload → sink → ledger.

    Constructor takes every collaborator explicitly; configuration is the
    ``RelayConfig`` passed in, never the process environment.
    """

    def __init__(
        self,
        source: OrderSource,
        sink: EventSink,
        store: LedgerStore,
        config: RelayConfig | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._source = source
        self._sink = sink
        self._store = store
        self._config = config or RelayConfig()
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    @property
    def config(self) -> RelayConfig:
        return self._config

    # -- selection ------------------------------------------------------------

    def _reconciles(self, order: Order) -> bool:
        """True if a status signal makes this order worth revisiting after the window."""
        if self._config.reconcile_refunds and has_refund_signal(order):
            return True
        if self._config.reconcile_fulfillment and has_fulfillment_signal(order):
            return True
        return False

    def select_candidates(self, orders: list[Order], now: datetime) -> list[Order]:
        """Orders inside the recency window, plus older ones with a refund or
        fulfillment signal; oldest first."""
        window = timedelta(minutes=self._config.poll_window_minutes)
        lookback = (
            timedelta(minutes=self._config.reconcile_lookback_minutes)
            if self._config.reconcile_lookback_minutes is not None
            else None
        )

        def is_candidate(order: Order) -> bool:
            created = order.created_on
            if created is not None and now - created <= window:
                return True
            if not self._reconciles(order):
                return False
            if lookback is None:
                return True
            return created is not None and now - created <= lookback

        candidates = [o for o in orders if is_candidate(o)]
        candidates.sort(key=lambda o: o.created_on or _EPOCH)
        return candidates

    def events_for(self, order: Order) -> list[LifecycleEvent]:
        """Classified events, minus the kinds switched off in config."""
        events = classify(order)
        if not self._config.reconcile_refunds:
            events = [e for e in events if e is not LifecycleEvent.ORDER_REFUNDED]
        if not self._config.reconcile_fulfillment:
            events = [e for e in events if e is not LifecycleEvent.ORDER_FULFILLED]
        return events

    # -- per-order processing -------------------------------------------------

    def _parse_orders(
        self, raw_orders: list[dict[str, Any]], summary: RunSummary,
    ) -> list[Order]:
        orders: list[Order] = []
        for raw in raw_orders:
            try:
                orders.append(Order.from_dict(raw))
            except OrderParseError as exc:
                order_id = str(raw.get("id", "?")) if isinstance(raw, dict) else "?"
                logger.error("Skipping malformed order %s: %s", order_id, exc)
                summary.orders.append(OrderOutcome(order_id=order_id, error=str(exc)))
        return orders

    async def _deliver(self, payload: EventPayload) -> SendResult:
        try:
            return await self._sink.send(payload)
        except Exception as exc:
            logger.exception(
                "Sink raised for order %s (%s).", payload.order_id, payload.metric_name,
            )
            return SendResult(success=False, status_code=None, body_text=str(exc))

    async def _process_order(
        self, order: Order, ledger: ProcessedLedger, now: datetime,
    ) -> OrderOutcome:
        outcome = OrderOutcome(order_id=order.id)
        try:
            if order.testmode:
                ledger.ensure(order.id)
                outcome.testmode = True
                logger.info("Skipping test order %s.", order.id)
                return outcome

            delivered = ledger.delivered(order.id)
            # Legacy ledgers record any purchase as Product-Purchased
            purchased = bool(delivered & _PURCHASE_NAMES)
            for event in self.events_for(order):
                if event.value in delivered or (event in PURCHASE_EVENTS and purchased):
                    outcome.skipped.append(event.value)
                    continue

                payload = build_payload(order, event, now=now)

                if self._config.dry_run:
                    logger.info(
                        "[DRY-RUN] Would forward order %s as %r.", order.id, event.value,
                    )
                    ledger.record(order.id, event)
                    outcome.sent.append(event.value)
                    continue

                result = await self._deliver(payload)
                if result.success:
                    ledger.record(order.id, event)
                    outcome.sent.append(event.value)
                    logger.info(
                        "Forwarded order %s as %r (status %s).",
                        order.id, event.value, result.status_code,
                    )
                else:
                    outcome.failed.append(event.value)
                    logger.warning(
                        "Delivery of %r for order %s failed (status %s); will retry next run.",
                        event.value, order.id, result.status_code,
                    )
        except Exception as exc:
            logger.exception("Failed to process order %s.", order.id)
            outcome.error = str(exc) or type(exc).__name__
        return outcome

    async def _persist(
        self, ledger: ProcessedLedger, summary: RunSummary, candidates: list[Order],
    ) -> None:
        if not ledger.changed:
            logger.info("No new events recorded; ledger left as is.")
            return
        # Candidates stay in the ledger regardless of capacity
        keep = {order.id for order in candidates}
        summary.ledger_saved = await self._store.save(ledger, keep=keep)
        if not summary.ledger_saved:
            logger.error(
                "Ledger not persisted; %d delivered event(s) may be re-sent next run.",
                summary.sent,
            )

    # -- entry points ---------------------------------------------------------

    async def run_once(self) -> RunSummary:
        """Process one batch of orders to completion.

        Raises whatever the order source raises: a failed fetch fails
        the whole run before any ledger change.
        """
        now = self._clock()
        summary = RunSummary(dry_run=self._config.dry_run, started_at=now.isoformat())
        logger.info("Relay run started (dry_run=%s).", self._config.dry_run)

        ledger = await self._store.load()
        raw_orders = await self._source.list_orders()
        summary.fetched = len(raw_orders)

        orders = self._parse_orders(raw_orders, summary)
        candidates = self.select_candidates(orders, now)
        summary.candidates = len(candidates)
        logger.info(
            "Fetched %d order(s); %d candidate(s) to reconcile.",
            summary.fetched, summary.candidates,
        )

        for order in candidates:
            summary.orders.append(await self._process_order(order, ledger, now))

        await self._persist(ledger, summary, candidates)
        logger.info(
            "Relay run complete: sent=%d skipped=%d failed=%d errors=%d.",
            summary.sent, summary.skipped, summary.failed, summary.errors,
        )
        return summary

    async def forward_order(self, order_ref: str) -> RunSummary:
        """Reconcile a single order by id or order number, ignoring the recency window."""
        now = self._clock()
        summary = RunSummary(dry_run=self._config.dry_run, started_at=now.isoformat())

        ledger = await self._store.load()
        raw = await self._source.get_order(order_ref)
        if raw is None:
            raise OrderNotFoundError(f"Order not found: {order_ref}")
        summary.fetched = 1

        orders = self._parse_orders([raw], summary)
        for order in orders:
            summary.candidates += 1
            summary.orders.append(await self._process_order(order, ledger, now))

        await self._persist(ledger, summary, orders)
        return summary
