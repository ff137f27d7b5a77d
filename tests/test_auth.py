"""Tests for device-code authentication and the token cache file."""

from __future__ import annotations

import asyncio
import stat
from pathlib import Path
from typing import Any
from unittest.mock import Mock

import msal
import pytest

from project_online_to_smartsheet.auth import (
    AuthState,
    DeviceCodeAuthProvider,
    TokenCacheStore,
    scopes_for,
)
from project_online_to_smartsheet.exceptions import AuthDeclinedError, AuthExpiredError, AuthTimeoutError
from project_online_to_smartsheet.resilience import RetryExecutor, RetryPolicy


class FakeClock:
    def __init__(self, start: float = 1_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.now += seconds


def _flow(clock: FakeClock, *, expires_in: float = 30.0, interval: int = 5) -> dict[str, Any]:
    return {
        "user_code": "ABCD-1234",
        "verification_uri": "https://microsoft.com/devicelogin",
        "message": "Open https://microsoft.com/devicelogin and enter ABCD-1234",
        "interval": interval,
        "expires_at": clock.now + expires_in,
    }


def _make_provider(
    app: Mock,
    clock: FakeClock,
    *,
    cache_store: Mock | None = None,
    interactive: bool = True,
    display: Mock | None = None,
) -> DeviceCodeAuthProvider:
    executor = RetryExecutor(policy=RetryPolicy(max_attempts=2, jitter=(0.0, 0.0)), sleep=clock.sleep)
    return DeviceCodeAuthProvider(
        "tenant",
        "client",
        ["https://contoso.sharepoint.com/AllSites.Read"],
        executor=executor,
        cache_store=cache_store,
        interactive=interactive,
        display=display or Mock(),
        clock=clock,
        sleep=clock.sleep,
        app=app,
    )


def _make_app(*, accounts: list[dict[str, Any]] | None = None) -> Mock:
    app = Mock()
    app.get_accounts.return_value = accounts or []
    return app


@pytest.mark.unit
class TestScopes:
    def test_scopes_use_site_origin(self) -> None:
        assert scopes_for("https://contoso.sharepoint.com/sites/pwa") == [
            "https://contoso.sharepoint.com/AllSites.Read",
            "https://contoso.sharepoint.com/AllSites.Write",
        ]


@pytest.mark.unit
class TestDeviceCodeFlow:
    def test_never_approved_times_out_without_caching(self) -> None:
        clock = FakeClock()
        app = _make_app()
        app.initiate_device_flow.return_value = _flow(clock)
        app.acquire_token_by_device_flow.return_value = {"error": "authorization_pending"}
        store = Mock()
        display = Mock()
        provider = _make_provider(app, clock, cache_store=store, display=display)

        with pytest.raises(AuthTimeoutError, match="expired"):
            asyncio.run(provider.get_access_token())

        display.assert_called_once()
        store.save.assert_not_called()
        assert provider.state is AuthState.UNAUTHENTICATED
        # 30s code lifetime polled every 5s
        assert app.acquire_token_by_device_flow.call_count == 6

    def test_polls_one_request_at_a_time(self) -> None:
        clock = FakeClock()
        app = _make_app()
        app.initiate_device_flow.return_value = _flow(clock)
        app.acquire_token_by_device_flow.side_effect = [
            {"error": "authorization_pending"},
            {"access_token": "token-1", "expires_in": 3600},
        ]
        provider = _make_provider(app, clock)

        assert asyncio.run(provider.get_access_token()) == "token-1"
        exit_condition = app.acquire_token_by_device_flow.call_args.kwargs["exit_condition"]
        assert exit_condition({}) is True

    def test_approval_persists_cache(self) -> None:
        clock = FakeClock()
        app = _make_app()
        app.initiate_device_flow.return_value = _flow(clock)
        app.acquire_token_by_device_flow.return_value = {"access_token": "token-1", "expires_in": 3600}
        store = Mock()
        provider = _make_provider(app, clock, cache_store=store)

        assert asyncio.run(provider.get_access_token()) == "token-1"
        assert provider.state is AuthState.AUTHENTICATED
        store.save.assert_called_once()

    def test_declined(self) -> None:
        clock = FakeClock()
        app = _make_app()
        app.initiate_device_flow.return_value = _flow(clock)
        app.acquire_token_by_device_flow.return_value = {"error": "authorization_declined"}
        store = Mock()
        provider = _make_provider(app, clock, cache_store=store)

        with pytest.raises(AuthDeclinedError):
            asyncio.run(provider.get_access_token())
        store.save.assert_not_called()

    def test_server_reported_expiry(self) -> None:
        clock = FakeClock()
        app = _make_app()
        app.initiate_device_flow.return_value = _flow(clock, expires_in=900)
        app.acquire_token_by_device_flow.return_value = {"error": "expired_token"}
        provider = _make_provider(app, clock)

        with pytest.raises(AuthTimeoutError):
            asyncio.run(provider.get_access_token())

    def test_slow_down_increases_interval(self) -> None:
        clock = FakeClock()
        app = _make_app()
        app.initiate_device_flow.return_value = _flow(clock, expires_in=900, interval=5)
        app.acquire_token_by_device_flow.side_effect = [
            {"error": "slow_down"},
            {"access_token": "token-1", "expires_in": 3600},
        ]
        provider = _make_provider(app, clock)
        start = clock.now

        asyncio.run(provider.get_access_token())
        assert clock.now - start == 10

    def test_flow_start_failure(self) -> None:
        clock = FakeClock()
        app = _make_app()
        app.initiate_device_flow.return_value = {"error": "invalid_client", "error_description": "bad app"}
        provider = _make_provider(app, clock)

        with pytest.raises(AuthExpiredError, match="bad app"):
            asyncio.run(provider.get_access_token())

    def test_non_interactive_refuses_device_flow(self) -> None:
        clock = FakeClock()
        app = _make_app()
        provider = _make_provider(app, clock, interactive=False)

        with pytest.raises(AuthExpiredError, match="interactive"):
            asyncio.run(provider.get_access_token())
        app.initiate_device_flow.assert_not_called()


@pytest.mark.unit
class TestTokenLifecycle:
    def test_cached_token_reused_until_near_expiry(self) -> None:
        clock = FakeClock()
        app = _make_app(accounts=[{"username": "pm@contoso.com"}])
        app.acquire_token_silent.side_effect = [
            {"access_token": "token-1", "expires_in": 3600},
            {"access_token": "token-2", "expires_in": 3600},
        ]
        provider = _make_provider(app, clock)

        assert asyncio.run(provider.get_access_token()) == "token-1"
        clock.now += 3000
        assert asyncio.run(provider.get_access_token()) == "token-1"
        # Inside the 5-minute refresh buffer
        clock.now += 400
        assert asyncio.run(provider.get_access_token()) == "token-2"
        assert app.acquire_token_silent.call_count == 2
        app.initiate_device_flow.assert_not_called()

    def test_failed_silent_refresh_falls_back_to_device_flow(self) -> None:
        clock = FakeClock()
        app = _make_app(accounts=[{"username": "pm@contoso.com"}])
        app.acquire_token_silent.return_value = {"error": "invalid_grant", "error_description": "revoked"}
        app.initiate_device_flow.return_value = _flow(clock)
        app.acquire_token_by_device_flow.return_value = {"access_token": "fresh", "expires_in": 3600}
        provider = _make_provider(app, clock)

        assert asyncio.run(provider.get_access_token()) == "fresh"

    def test_invalidate_forces_refresh(self) -> None:
        clock = FakeClock()
        app = _make_app(accounts=[{"username": "pm@contoso.com"}])
        app.acquire_token_silent.side_effect = [
            {"access_token": "token-1", "expires_in": 3600},
            {"access_token": "token-2", "expires_in": 3600},
        ]
        provider = _make_provider(app, clock)

        asyncio.run(provider.get_access_token())
        provider.invalidate()
        assert provider.state is AuthState.UNAUTHENTICATED
        assert asyncio.run(provider.get_access_token()) == "token-2"
        assert app.acquire_token_silent.call_args.kwargs["force_refresh"] is True


@pytest.mark.unit
class TestTokenCacheStore:
    def test_round_trip_with_private_permissions(self, tmp_path: Path) -> None:
        store = TokenCacheStore(tmp_path / "tokens", "tenant", "client")
        cache = msal.SerializableTokenCache()
        cache.deserialize('{"AccessToken": {}}')

        store.save(cache)

        assert store.path == tmp_path / "tokens" / "tenant_client.json"
        assert stat.S_IMODE(store.path.stat().st_mode) == 0o600
        assert isinstance(store.load(), msal.SerializableTokenCache)

    def test_unreadable_file_loads_empty_cache(self, tmp_path: Path) -> None:
        store = TokenCacheStore(tmp_path, "tenant", "client")
        store.path.write_text("not json", encoding="utf-8")
        assert isinstance(store.load(), msal.SerializableTokenCache)

    def test_clear_removes_file(self, tmp_path: Path) -> None:
        store = TokenCacheStore(tmp_path, "tenant", "client")
        store.save(msal.SerializableTokenCache())
        store.clear()
        assert not store.path.exists()
