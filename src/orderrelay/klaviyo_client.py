"""Async HTTP client for Klaviyo's Create Event API."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

import httpx

if TYPE_CHECKING:
    from orderrelay.payloads import EventPayload

logger = logging.getLogger(__name__)

_BASE_URL = "https://a.klaviyo.com/api"
KLAVIYO_REVISION = "2024-10-15"
_BODY_LOG_LIMIT = 250


@dataclass(frozen=True)
class SendResult:
    """Outcome of one delivery. ``success`` is True only on a 2xx response."""

    success: bool
    status_code: int | None = None
    body_text: str = ""


class KlaviyoClient:
    """Event sink for Klaviyo.

    ``send()`` never raises for HTTP or transport failures; they come back
    as ``SendResult(success=False)`` so one bad event cannot abort a run.
    """

    def __init__(self, api_key: str) -> None:
        self._client = httpx.AsyncClient(
            base_url=_BASE_URL,
            headers={
                "Authorization": f"Klaviyo-API-Key {api_key}",
                "Content-Type": "application/json",
                "Accept": "application/json",
                "revision": KLAVIYO_REVISION,
            },
            timeout=20.0,
        )

    async def send(self, payload: EventPayload) -> SendResult:
        """POST /events — create one event (Klaviyo answers 202 on success)."""
        try:
            response = await self._client.post("/events", json=payload.to_dict())
        except httpx.HTTPError as exc:
            logger.warning(
                "Klaviyo transport error for order %s (%s): %s",
                payload.order_id, payload.metric_name, exc,
            )
            return SendResult(success=False, status_code=None, body_text=str(exc))

        body = response.text
        if not response.is_success:
            logger.warning(
                "Klaviyo rejected %s for order %s: %d %s",
                payload.metric_name, payload.order_id,
                response.status_code, body[:_BODY_LOG_LIMIT],
            )
            return SendResult(success=False, status_code=response.status_code, body_text=body)
        return SendResult(success=True, status_code=response.status_code, body_text=body)

    # -- lifecycle ------------------------------------------------------------

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()

    async def __aenter__(self) -> KlaviyoClient:
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.close()
