#!/usr/bin/env python3
"""Scheduled trigger: poll Squarespace once and forward new events to Klaviyo.

Meant for a cron job (e.g. a scheduled CI workflow). Reads settings from
the environment:

  - SQUARESPACE_API_KEY, KLAVIYO_API_KEY
  - GITHUB_TOKEN + GITHUB_REPO for the committed ledger, or
    LEDGER_BACKEND=local to keep it in PROCESSED_FILE_PATH on disk
  - TEST_FORWARD=true to actually send (default is a dry run; DRY_RUN
    overrides either way)

Exits 1 if the order fetch fails or settings are missing.
"""

from __future__ import annotations

import asyncio
import json
import logging
import sys

from orderrelay.runtime import ConfigurationError, relay_from_env
from orderrelay.squarespace_client import SquarespaceError


async def _poll() -> int:
    async with relay_from_env(default_dry_run=True) as engine:
        summary = await engine.run_once()
    print(json.dumps(summary.to_dict(), indent=2))
    return 0


def main() -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        code = asyncio.run(_poll())
    except (ConfigurationError, SquarespaceError) as exc:
        logging.getLogger("orderrelay.poll").error("Poll failed: %s", exc)
        code = 1
    sys.exit(code)


if __name__ == "__main__":
    main()
