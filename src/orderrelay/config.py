"""Relay configuration — plain frozen dataclass, no pydantic.

The trigger (HTTP app, poll script) builds this from its own settings
and hands it to the ForwardingEngine.
"""

from dataclasses import dataclass

from orderrelay.constants import (
    DEFAULT_LEDGER_CAPACITY,
    DEFAULT_LEDGER_KEY,
    DEFAULT_POLL_WINDOW_MINUTES,
    DEFAULT_RECONCILE_LOOKBACK_MINUTES,
)


@dataclass(frozen=True)
class RelayConfig:
    poll_window_minutes: int = DEFAULT_POLL_WINDOW_MINUTES
    reconcile_refunds: bool = True
    reconcile_fulfillment: bool = True
    reconcile_lookback_minutes: int | None = DEFAULT_RECONCILE_LOOKBACK_MINUTES  # None = no cutoff
    dry_run: bool = False
    ledger_capacity: int = DEFAULT_LEDGER_CAPACITY
    ledger_key: str = DEFAULT_LEDGER_KEY
    conflict_retries: int = 1
