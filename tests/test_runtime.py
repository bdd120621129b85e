"""Tests for environment-driven settings and relay wiring."""

import pytest

from orderrelay.backends import GitHubContentsBackend, LocalFileBackend
from orderrelay.constants import (
    DEFAULT_LEDGER_CAPACITY,
    DEFAULT_LEDGER_KEY,
    DEFAULT_RECONCILE_LOOKBACK_MINUTES,
)
from orderrelay.engine import ForwardingEngine
from orderrelay.runtime import (
    ENV_VARS,
    ConfigurationError,
    relay_from_env,
    settings_from_env,
)


_BASE_ENV = {
    "SQUARESPACE_API_KEY": "sq-key",
    "KLAVIYO_API_KEY": "kl-key",
}


class TestSettingsFromEnv:
    def test_defaults(self) -> None:
        settings = settings_from_env(dict(_BASE_ENV))
        assert settings.ledger_backend == "local"
        assert settings.local_root == "."
        assert settings.relay.dry_run is False
        assert settings.relay.reconcile_refunds is True
        assert settings.relay.reconcile_fulfillment is True
        assert settings.relay.reconcile_lookback_minutes == DEFAULT_RECONCILE_LOOKBACK_MINUTES
        assert settings.relay.ledger_capacity == DEFAULT_LEDGER_CAPACITY
        assert settings.relay.ledger_key == DEFAULT_LEDGER_KEY

    def test_dry_run_opt_in(self) -> None:
        settings = settings_from_env({**_BASE_ENV, "DRY_RUN": "true"})
        assert settings.relay.dry_run is True

    def test_test_forward_ignored_for_live_triggers(self) -> None:
        settings = settings_from_env({**_BASE_ENV, "TEST_FORWARD": "false"})
        assert settings.relay.dry_run is False

    def test_dry_run_default_needs_test_forward(self) -> None:
        assert settings_from_env(_BASE_ENV, default_dry_run=True).relay.dry_run is True
        nope = {**_BASE_ENV, "TEST_FORWARD": "nope"}
        assert settings_from_env(nope, default_dry_run=True).relay.dry_run is True
        forward = {**_BASE_ENV, "TEST_FORWARD": "true"}
        assert settings_from_env(forward, default_dry_run=True).relay.dry_run is False

    def test_dry_run_overrides_test_forward(self) -> None:
        env = {**_BASE_ENV, "TEST_FORWARD": "true", "DRY_RUN": "1"}
        assert settings_from_env(env, default_dry_run=True).relay.dry_run is True

    def test_zero_lookback_means_unbounded(self) -> None:
        settings = settings_from_env({**_BASE_ENV, "RECONCILE_LOOKBACK_MINUTES": "0"})
        assert settings.relay.reconcile_lookback_minutes is None

    def test_github_backend_inferred_from_repo(self) -> None:
        settings = settings_from_env({
            **_BASE_ENV,
            "GITHUB_REPO": "acme/orders",
            "GITHUB_TOKEN": "ghp",
            "GITHUB_BRANCH": "state",
        })
        assert settings.ledger_backend == "github"
        assert settings.github_repo == "acme/orders"
        assert settings.github_branch == "state"

    def test_explicit_local_backend_wins(self) -> None:
        settings = settings_from_env({
            **_BASE_ENV, "GITHUB_REPO": "acme/orders", "LEDGER_BACKEND": "Local",
        })
        assert settings.ledger_backend == "local"

    def test_unknown_backend_rejected(self) -> None:
        with pytest.raises(ConfigurationError, match="LEDGER_BACKEND"):
            settings_from_env({**_BASE_ENV, "LEDGER_BACKEND": "s3"})

    def test_numeric_and_boolean_overrides(self) -> None:
        settings = settings_from_env({
            **_BASE_ENV,
            "POLL_WINDOW_MINUTES": "60",
            "LEDGER_CAPACITY": "50",
            "RECONCILE_REFUNDS": "false",
            "RECONCILE_FULFILLMENT": "0",
            "RECONCILE_LOOKBACK_MINUTES": "10080",
            "PROCESSED_FILE_PATH": "state/ledger.json",
            "LEDGER_ROOT": "/var/lib/relay",
        })
        relay = settings.relay
        assert relay.poll_window_minutes == 60
        assert relay.ledger_capacity == 50
        assert relay.reconcile_refunds is False
        assert relay.reconcile_fulfillment is False
        assert relay.reconcile_lookback_minutes == 10080
        assert relay.ledger_key == "state/ledger.json"
        assert settings.local_root == "/var/lib/relay"

    def test_bad_integer(self) -> None:
        with pytest.raises(ConfigurationError, match="POLL_WINDOW_MINUTES"):
            settings_from_env({**_BASE_ENV, "POLL_WINDOW_MINUTES": "a day"})

    def test_blank_values_use_defaults(self) -> None:
        settings = settings_from_env({**_BASE_ENV, "LEDGER_CAPACITY": "  "})
        assert settings.relay.ledger_capacity == DEFAULT_LEDGER_CAPACITY


class TestValidate:
    def test_complete_settings_pass(self) -> None:
        settings_from_env({**_BASE_ENV, "TEST_FORWARD": "true"}).validate()

    def test_missing_squarespace_key(self) -> None:
        with pytest.raises(ConfigurationError, match="SQUARESPACE_API_KEY"):
            settings_from_env({"KLAVIYO_API_KEY": "kl"}).validate()

    def test_klaviyo_key_required_only_when_live(self) -> None:
        settings_from_env({"SQUARESPACE_API_KEY": "sq", "DRY_RUN": "true"}).validate()
        with pytest.raises(ConfigurationError, match="KLAVIYO_API_KEY"):
            settings_from_env({"SQUARESPACE_API_KEY": "sq"}).validate()

    def test_github_backend_needs_token(self) -> None:
        settings = settings_from_env({**_BASE_ENV, "LEDGER_BACKEND": "github"})
        with pytest.raises(ConfigurationError) as exc_info:
            settings.validate()
        assert "GITHUB_TOKEN" in str(exc_info.value)
        assert "GITHUB_REPO" in str(exc_info.value)


class TestEnvPresence:
    def test_reports_names_not_values(self) -> None:
        settings = settings_from_env({**_BASE_ENV, "GITHUB_TOKEN": "secret"})
        presence = settings.env_presence()
        assert set(presence) == set(ENV_VARS)
        assert presence["SQUARESPACE_API_KEY"] is True
        assert presence["GITHUB_TOKEN"] is True
        assert presence["GITHUB_REPO"] is False
        assert "secret" not in repr(presence)


class TestRelayFromEnv:
    @pytest.mark.asyncio
    async def test_builds_engine_with_local_backend(self, tmp_path) -> None:
        env = {**_BASE_ENV, "LEDGER_ROOT": str(tmp_path)}
        async with relay_from_env(env) as engine:
            assert isinstance(engine, ForwardingEngine)
            assert engine.config.dry_run is False
            assert isinstance(engine._store._backend, LocalFileBackend)

    @pytest.mark.asyncio
    async def test_builds_engine_with_github_backend(self) -> None:
        env = {**_BASE_ENV, "GITHUB_REPO": "acme/orders", "GITHUB_TOKEN": "ghp"}
        async with relay_from_env(env) as engine:
            assert isinstance(engine._store._backend, GitHubContentsBackend)

    @pytest.mark.asyncio
    async def test_invalid_settings_raise_before_yield(self) -> None:
        with pytest.raises(ConfigurationError):
            async with relay_from_env({}):
                pytest.fail("should not yield")

    @pytest.mark.asyncio
    async def test_dry_run_default_passed_through(self, tmp_path) -> None:
        env = {"SQUARESPACE_API_KEY": "sq", "LEDGER_ROOT": str(tmp_path)}
        async with relay_from_env(env, default_dry_run=True) as engine:
            assert engine.config.dry_run is True
