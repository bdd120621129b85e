"""Async HTTP client for the Squarespace Commerce Orders API."""

from __future__ import annotations

import logging
from typing import Any

import httpx

logger = logging.getLogger(__name__)

_BASE_URL = "https://api.squarespace.com/1.0"
_USER_AGENT = "orderrelay (Squarespace to Klaviyo)"


# ---------------------------------------------------------------------------
# Exception hierarchy
# ---------------------------------------------------------------------------


class SquarespaceError(Exception):
    """Base exception for Squarespace operations."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class SquarespaceAuthError(SquarespaceError):
    """401/403 — bad or under-scoped API key."""


class SquarespaceRateLimitError(SquarespaceError):
    """429 — rate limited (retryable)."""


class SquarespaceServerError(SquarespaceError):
    """5xx — server-side error (retryable)."""


class SquarespaceConnectionError(SquarespaceError):
    """Network/DNS failure (retryable)."""


class SquarespaceTimeoutError(SquarespaceError):
    """Request timeout (retryable)."""


_STATUS_MAP: dict[int, type[SquarespaceError]] = {
    401: SquarespaceAuthError,
    403: SquarespaceAuthError,
    429: SquarespaceRateLimitError,
}


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------


class SquarespaceClient:
    """Read-only client for ``/commerce/orders``.

    Credentials are passed in; only ``orderrelay.runtime`` reads the environment.
    ``list_orders()`` walks every page so callers see a full snapshot.
    """

    def __init__(self, api_key: str, max_pages: int = 50) -> None:
        self._max_pages = max_pages
        self._client = httpx.AsyncClient(
            base_url=_BASE_URL,
            headers={
                "Authorization": f"Bearer {api_key}",
                "Content-Type": "application/json",
                "User-Agent": _USER_AGENT,
            },
            timeout=httpx.Timeout(connect=5.0, read=20.0, write=10.0, pool=5.0),
        )

    # -- internal request dispatcher -----------------------------------------

    async def _request(
        self,
        method: str,
        endpoint: str,
        params: dict[str, Any] | None = None,
    ) -> Any:
        """Send a request and map errors to the Squarespace exception hierarchy.

        Returns None on 404 so "no such resource" is not an error.
        """
        try:
            response = await self._client.request(method, endpoint, params=params)
        except httpx.ConnectError as exc:
            raise SquarespaceConnectionError(str(exc)) from exc
        except httpx.TimeoutException as exc:
            raise SquarespaceTimeoutError(str(exc)) from exc
        except httpx.HTTPError as exc:
            raise SquarespaceError(str(exc)) from exc

        if response.status_code == 404:
            return None
        if response.status_code >= 400:
            body = response.text
            exc_cls = _STATUS_MAP.get(response.status_code)
            if exc_cls is not None:
                raise exc_cls(body, status_code=response.status_code)
            if response.status_code >= 500:
                raise SquarespaceServerError(body, status_code=response.status_code)
            raise SquarespaceError(body, status_code=response.status_code)

        try:
            return response.json()
        except ValueError as exc:
            raise SquarespaceError(
                f"non-JSON response from {endpoint}", status_code=response.status_code
            ) from exc

    # -- public API methods ---------------------------------------------------

    async def list_orders(self) -> list[dict[str, Any]]:
        """GET /commerce/orders — every order, following ``nextPageCursor``."""
        orders: list[dict[str, Any]] = []
        params: dict[str, Any] | None = None
        for page in range(self._max_pages):
            data = await self._request("GET", "/commerce/orders", params=params)
            if not data:
                break
            result = data.get("result")
            if isinstance(result, list):
                orders.extend(result)

            pagination = data.get("pagination") or {}
            cursor = pagination.get("nextPageCursor")
            if not pagination.get("hasNextPage") or not cursor:
                break
            params = {"cursor": cursor}
        else:
            logger.warning(
                "Stopped paging orders after %d page(s); snapshot may be incomplete.",
                self._max_pages,
            )
        return orders

    async def get_order(self, order_ref: str) -> dict[str, Any] | None:
        """Find one order by id or order number. Returns None if absent."""
        try:
            data = await self._request("GET", f"/commerce/orders/{order_ref}")
        except SquarespaceError as exc:
            # An order number is not a valid id; fall back to scanning the list
            if exc.status_code != 400:
                raise
            data = None
        if data and data.get("id"):
            return data
        for order in await self.list_orders():
            if order.get("id") == order_ref or str(order.get("orderNumber")) == order_ref:
                return order
        return None

    # -- lifecycle ------------------------------------------------------------

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()

    async def __aenter__(self) -> SquarespaceClient:
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.close()
