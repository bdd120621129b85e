"""GitHubContentsBackend — LedgerBackend on a file in a GitHub repository.

Uses raw httpx against the repository contents API. The blob ``sha`` is
the revision token; GitHub rejects a PUT whose ``sha`` is stale, which
gives compare-and-swap semantics for free.

API endpoints:
- Read file: GET /repos/{repo}/contents/{path} -> JSON with base64 ``content`` and ``sha``
- Write file: PUT /repos/{repo}/contents/{path} -> JSON body ``{"message", "content", "sha"?}``
- Stale or missing ``sha``: HTTP 409 or 422
"""

from __future__ import annotations

import base64
import logging
from datetime import datetime, timezone
from typing import Any
from urllib.parse import quote

import httpx

from orderrelay.ledger_backend import LedgerBackendError, LedgerConflictError, StoredDocument

logger = logging.getLogger(__name__)

_BASE_URL = "https://api.github.com"
_COMMITTER = {"name": "sqsp-klaviyo-bot", "email": "noreply@example.com"}


class GitHubContentsBackend:
    """Ledger persistence as a JSON file committed to a GitHub repository.

    Every successful write is a commit, so the repository history doubles
    as an audit trail of ledger changes.
    """

    def __init__(self, token: str, repo: str, branch: str | None = None) -> None:
        self._repo = repo
        self._branch = branch
        self._client = httpx.AsyncClient(
            base_url=_BASE_URL,
            headers={
                "Authorization": f"token {token}",
                "Accept": "application/vnd.github.v3+json",
            },
            timeout=30.0,
        )

    def _url(self, key: str) -> str:
        return f"/repos/{self._repo}/contents/{quote(key)}"

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()

    async def __aenter__(self) -> GitHubContentsBackend:
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.close()

    async def read(self, key: str) -> StoredDocument | None:
        """Fetch and base64-decode the file. Returns None if it does not exist."""
        params = {"ref": self._branch} if self._branch else None
        try:
            resp = await self._client.get(self._url(key), params=params)
        except httpx.HTTPError as exc:
            raise LedgerBackendError(f"GitHub GET {key} failed: {exc}") from exc

        if resp.status_code == 404:
            return None
        if resp.status_code >= 400:
            raise LedgerBackendError(
                f"GitHub GET {key} failed: {resp.status_code} {resp.text}"
            )

        data = resp.json()
        try:
            content = base64.b64decode(data.get("content", "")).decode("utf-8")
        except (ValueError, UnicodeDecodeError) as exc:
            raise LedgerBackendError(f"GitHub file {key} is not valid base64 UTF-8") from exc
        return StoredDocument(content=content, revision=data.get("sha"))

    async def write(
        self, key: str, content: str, revision: str | None = None
    ) -> str:
        """Commit ``content`` to ``key``. Returns the new blob sha."""
        stamp = datetime.now(timezone.utc).isoformat()
        body: dict[str, Any] = {
            "message": f"Update processed orders @ {stamp}",
            "content": base64.b64encode(content.encode("utf-8")).decode("ascii"),
            "committer": _COMMITTER,
        }
        if revision:
            body["sha"] = revision
        if self._branch:
            body["branch"] = self._branch

        try:
            resp = await self._client.put(self._url(key), json=body)
        except httpx.HTTPError as exc:
            raise LedgerBackendError(f"GitHub PUT {key} failed: {exc}") from exc

        if resp.status_code in (409, 422):
            raise LedgerConflictError(
                f"GitHub PUT {key} rejected revision {revision}: {resp.status_code}"
            )
        if resp.status_code >= 400:
            raise LedgerBackendError(
                f"GitHub PUT {key} failed: {resp.status_code} {resp.text}"
            )

        data = resp.json()
        new_sha = (data.get("content") or {}).get("sha", "")
        logger.info("Committed %s to %s (sha %s).", key, self._repo, new_sha[:7])
        return new_sha
