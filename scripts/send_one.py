#!/usr/bin/env python3
"""Manual trigger: reconcile one order by id or order number.

Usage: ORDER_ID=<id or order number> python scripts/send_one.py

Uses the same ledger as the poller, so events already delivered for the
order are not sent again. Delivery is live unless DRY_RUN=true. Exits 2
if any event failed, 1 if the order cannot be found or fetched.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import sys

from orderrelay.engine import OrderNotFoundError
from orderrelay.runtime import ConfigurationError, relay_from_env
from orderrelay.squarespace_client import SquarespaceError


async def _send(order_ref: str) -> int:
    async with relay_from_env() as engine:
        summary = await engine.forward_order(order_ref)
    print(json.dumps(summary.to_dict(), indent=2))
    return 2 if summary.failed or summary.errors else 0


def main() -> None:
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")
    order_ref = os.environ.get("ORDER_ID") or (sys.argv[1] if len(sys.argv) > 1 else "")
    if not order_ref:
        print("Set ORDER_ID (or pass it as an argument) to the order to send.", file=sys.stderr)
        sys.exit(1)
    try:
        code = asyncio.run(_send(order_ref))
    except (ConfigurationError, SquarespaceError, OrderNotFoundError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        code = 1
    sys.exit(code)


if __name__ == "__main__":
    main()
