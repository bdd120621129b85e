"""Build a ForwardingEngine from process environment settings.

This is the only module that reads environment variables; the engine
itself receives a ``RelayConfig``. Both triggers (the HTTP app and the
poll script) go through ``relay_from_env()``.
"""

from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import AsyncIterator, Mapping

from orderrelay.backends import GitHubContentsBackend, LocalFileBackend
from orderrelay.config import RelayConfig
from orderrelay.constants import (
    DEFAULT_LEDGER_CAPACITY,
    DEFAULT_LEDGER_KEY,
    DEFAULT_POLL_WINDOW_MINUTES,
    DEFAULT_RECONCILE_LOOKBACK_MINUTES,
)
from orderrelay.engine import ForwardingEngine
from orderrelay.klaviyo_client import KlaviyoClient
from orderrelay.ledger_backend import LedgerBackend
from orderrelay.ledger_store import LedgerStore
from orderrelay.squarespace_client import SquarespaceClient

logger = logging.getLogger(__name__)

ENV_VARS = (
    "SQUARESPACE_API_KEY",
    "KLAVIYO_API_KEY",
    "GITHUB_TOKEN",
    "GITHUB_REPO",
    "GITHUB_BRANCH",
    "LEDGER_BACKEND",
    "LEDGER_ROOT",
    "LEDGER_CAPACITY",
    "PROCESSED_FILE_PATH",
    "POLL_WINDOW_MINUTES",
    "RECONCILE_REFUNDS",
    "RECONCILE_FULFILLMENT",
    "RECONCILE_LOOKBACK_MINUTES",
    "TEST_FORWARD",
    "DRY_RUN",
)


class ConfigurationError(Exception):
    """Required settings are missing or malformed."""


def _env_bool(env: Mapping[str, str], name: str, default: bool) -> bool:
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _env_int(env: Mapping[str, str], name: str, default: int | None) -> int | None:
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}") from exc


@dataclass(frozen=True)
class RuntimeSettings:
    """Credentials and backend choice, plus the engine's RelayConfig."""

    squarespace_api_key: str | None = None
    klaviyo_api_key: str | None = None
    ledger_backend: str = "local"
    github_token: str | None = None
    github_repo: str | None = None
    github_branch: str | None = None
    local_root: str = "."
    relay: RelayConfig = field(default_factory=RelayConfig)
    present: frozenset[str] = frozenset()

    def env_presence(self) -> dict[str, bool]:
        """Which known variables are set (values are never reported)."""
        return {name: name in self.present for name in ENV_VARS}

    def validate(self) -> None:
        missing = []
        if not self.squarespace_api_key:
            missing.append("SQUARESPACE_API_KEY")
        if not self.klaviyo_api_key and not self.relay.dry_run:
            missing.append("KLAVIYO_API_KEY")
        if self.ledger_backend == "github":
            if not self.github_token:
                missing.append("GITHUB_TOKEN")
            if not self.github_repo:
                missing.append("GITHUB_REPO")
        if missing:
            raise ConfigurationError(f"Missing required settings: {', '.join(missing)}")


def settings_from_env(
    env: Mapping[str, str] | None = None,
    *,
    default_dry_run: bool = False,
) -> RuntimeSettings:
    """Read RuntimeSettings from ``env`` (defaults to ``os.environ``).

    Delivery is live unless ``DRY_RUN=true``. Triggers that default to a
    dry run (the scheduled poll script) pass ``default_dry_run=True``;
    for them ``TEST_FORWARD=true`` switches delivery on. A dry run records
    the delta as delivered without contacting Klaviyo.

    ``RECONCILE_LOOKBACK_MINUTES=0`` removes the reconciliation cutoff.
    """
    env = os.environ if env is None else env

    backend = (env.get("LEDGER_BACKEND") or "").strip().lower()
    if not backend:
        backend = "github" if env.get("GITHUB_REPO") else "local"
    if backend not in ("github", "local"):
        raise ConfigurationError(f"LEDGER_BACKEND must be 'github' or 'local', got {backend!r}")

    dry_default = default_dry_run and not _env_bool(env, "TEST_FORWARD", False)
    lookback = _env_int(env, "RECONCILE_LOOKBACK_MINUTES", DEFAULT_RECONCILE_LOOKBACK_MINUTES)

    relay = RelayConfig(
        poll_window_minutes=_env_int(env, "POLL_WINDOW_MINUTES", DEFAULT_POLL_WINDOW_MINUTES),
        reconcile_refunds=_env_bool(env, "RECONCILE_REFUNDS", True),
        reconcile_fulfillment=_env_bool(env, "RECONCILE_FULFILLMENT", True),
        reconcile_lookback_minutes=lookback if lookback and lookback > 0 else None,
        dry_run=_env_bool(env, "DRY_RUN", dry_default),
        ledger_capacity=_env_int(env, "LEDGER_CAPACITY", DEFAULT_LEDGER_CAPACITY),
        ledger_key=env.get("PROCESSED_FILE_PATH") or DEFAULT_LEDGER_KEY,
    )

    return RuntimeSettings(
        squarespace_api_key=env.get("SQUARESPACE_API_KEY") or None,
        klaviyo_api_key=env.get("KLAVIYO_API_KEY") or None,
        ledger_backend=backend,
        github_token=env.get("GITHUB_TOKEN") or None,
        github_repo=env.get("GITHUB_REPO") or None,
        github_branch=env.get("GITHUB_BRANCH") or None,
        local_root=env.get("LEDGER_ROOT") or ".",
        relay=relay,
        present=frozenset(name for name in ENV_VARS if env.get(name)),
    )


@asynccontextmanager
async def relay_from_env(
    env: Mapping[str, str] | None = None,
    *,
    default_dry_run: bool = False,
) -> AsyncIterator[ForwardingEngine]:
    """Yield a ForwardingEngine wired to live clients; closes them on exit."""
    settings = settings_from_env(env, default_dry_run=default_dry_run)
    settings.validate()

    source = SquarespaceClient(settings.squarespace_api_key or "")
    sink = KlaviyoClient(settings.klaviyo_api_key or "")
    github: GitHubContentsBackend | None = None
    backend: LedgerBackend
    if settings.ledger_backend == "github":
        github = GitHubContentsBackend(
            settings.github_token or "", settings.github_repo or "", settings.github_branch,
        )
        backend = github
    else:
        backend = LocalFileBackend(settings.local_root)

    store = LedgerStore(
        backend,
        key=settings.relay.ledger_key,
        capacity=settings.relay.ledger_capacity,
        conflict_retries=settings.relay.conflict_retries,
    )
    try:
        yield ForwardingEngine(source, sink, store, settings.relay)
    finally:
        await source.close()
        await sink.close()
        if github is not None:
            await github.close()
