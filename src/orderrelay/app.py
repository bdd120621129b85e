"""HTTP triggers for the relay — FastAPI entry point.

Every endpoint that relays runs the same ``ForwardingEngine.run_once()``;
the webhook and the cron-driven poll differ only in who calls them.
"""

from __future__ import annotations

import logging
from contextlib import AbstractAsyncContextManager
from typing import Any, Callable

from fastapi import FastAPI
from fastapi.responses import JSONResponse

from orderrelay import __version__
from orderrelay.engine import ForwardingEngine
from orderrelay.runtime import ConfigurationError, relay_from_env, settings_from_env
from orderrelay.squarespace_client import SquarespaceError

logger = logging.getLogger(__name__)

RelayFactory = Callable[[], AbstractAsyncContextManager[ForwardingEngine]]


async def _run(relay_factory: RelayFactory, trigger: str) -> JSONResponse:
    logger.info("Relay triggered by %s.", trigger)
    try:
        async with relay_factory() as engine:
            summary = await engine.run_once()
    except ConfigurationError as exc:
        logger.error("Relay misconfigured: %s", exc)
        return JSONResponse({"ok": False, "error": "Server misconfigured"}, status_code=500)
    except SquarespaceError as exc:
        logger.error("Order fetch failed (%s): %s", exc.status_code, exc)
        return JSONResponse(
            {"ok": False, "error": f"Order fetch failed: {exc}"}, status_code=502,
        )

    body: dict[str, Any] = {"ok": True, "trigger": trigger, **summary.to_dict()}
    return JSONResponse(body)


def create_app(relay_factory: RelayFactory | None = None) -> FastAPI:
    """Build the app. ``relay_factory`` defaults to the environment-wired engine."""
    factory: RelayFactory = relay_factory or relay_from_env
    app = FastAPI(title="orderrelay", version=__version__)

    @app.post("/webhook")
    async def webhook() -> JSONResponse:
        # The body is not trusted as order state; the run re-reads the source.
        return await _run(factory, "webhook")

    @app.get("/poll")
    async def poll() -> JSONResponse:
        return await _run(factory, "poll")

    @app.get("/health")
    async def health() -> dict[str, Any]:
        try:
            settings = settings_from_env()
        except ConfigurationError as exc:
            return {"ok": False, "error": str(exc)}
        return {
            "ok": True,
            "version": __version__,
            "dry_run": settings.relay.dry_run,
            "ledger_backend": settings.ledger_backend,
            "env_present": settings.env_presence(),
        }

    return app
