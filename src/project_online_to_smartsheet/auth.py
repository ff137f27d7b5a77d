"""
Azure AD device-code authentication for the Project Online OData API.

Tokens are obtained with MSAL and kept in a persistent SerializableTokenCache,
one file per tenant and client, so later runs refresh silently instead of
asking the user to sign in again.
"""

from __future__ import annotations

import asyncio
import logging
import os
import sys
import time
from collections.abc import Awaitable, Callable
from enum import StrEnum
from pathlib import Path
from typing import Any
from urllib.parse import urlparse

import msal

from .exceptions import AuthDeclinedError, AuthExpiredError, AuthTimeoutError
from .resilience import RetryExecutor

# Module-wide logger
logger: logging.Logger = logging.getLogger(__name__)

DeviceCodeDisplay = Callable[[dict[str, Any]], None]

DEFAULT_REFRESH_BUFFER = 300.0
_DEFAULT_POLL_INTERVAL = 5
_SLOW_DOWN_INCREMENT = 5


class AuthState(StrEnum):
    UNAUTHENTICATED = "unauthenticated"
    AWAITING_USER_APPROVAL = "awaiting_user_approval"
    AUTHENTICATED = "authenticated"
    EXPIRING = "expiring"


def scopes_for(project_online_url: str) -> list[str]:
    """Delegated SharePoint scopes for the tenant hosting the PWA site."""
    parsed = urlparse(project_online_url)
    origin = f"{parsed.scheme}://{parsed.netloc}"
    return [f"{origin}/AllSites.Read", f"{origin}/AllSites.Write"]


def print_device_code(flow: dict[str, Any]) -> None:
    """Show the verification URL and user code on stderr."""
    banner = "=" * 60
    print(f"\n{banner}\nMICROSOFT AUTHENTICATION\n{banner}", file=sys.stderr)
    print(flow.get("message") or f"Open {flow['verification_uri']} and enter code {flow['user_code']}", file=sys.stderr)
    print(f"{banner}\n", file=sys.stderr)


class TokenCacheStore:
    """Persists an MSAL token cache to `<directory>/<tenant>_<client>.json`."""

    def __init__(self, directory: Path, tenant_id: str, client_id: str) -> None:
        self.directory: Path = directory
        self.path: Path = directory / f"{tenant_id}_{client_id}.json"

    def load(self) -> msal.SerializableTokenCache:
        cache = msal.SerializableTokenCache()
        if self.path.exists():
            try:
                cache.deserialize(self.path.read_text(encoding="utf-8"))
                logger.debug(f"Loaded token cache from {self.path}")
            except (OSError, ValueError) as e:
                logger.warning(f"Ignoring unreadable token cache {self.path}: {e}")
        return cache

    def save(self, cache: msal.SerializableTokenCache) -> None:
        self.directory.mkdir(mode=0o700, parents=True, exist_ok=True)
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp.write_text(cache.serialize(), encoding="utf-8")
        os.chmod(tmp, 0o600)
        tmp.replace(self.path)
        logger.debug(f"Saved token cache to {self.path}")

    def clear(self) -> None:
        self.path.unlink(missing_ok=True)


class DeviceCodeAuthProvider:
    """Hands out access tokens, renewing them silently or through a device-code sign-in.

    get_access_token() returns the in-memory token while it has more than
    `refresh_buffer` seconds left. Otherwise it tries the refresh token held in
    the MSAL cache and, if that fails, starts a device-code flow (or raises
    AuthExpiredError when running non-interactively).
    """

    def __init__(
        self,
        tenant_id: str,
        client_id: str,
        scopes: list[str],
        *,
        executor: RetryExecutor,
        cache_store: TokenCacheStore | None = None,
        interactive: bool = True,
        display: DeviceCodeDisplay = print_device_code,
        refresh_buffer: float = DEFAULT_REFRESH_BUFFER,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        app: msal.PublicClientApplication | None = None,
    ) -> None:
        self.scopes: list[str] = scopes
        self.interactive: bool = interactive
        self.refresh_buffer: float = refresh_buffer
        self.state: AuthState = AuthState.UNAUTHENTICATED

        self._executor: RetryExecutor = executor
        self._cache_store: TokenCacheStore | None = cache_store
        self._display: DeviceCodeDisplay = display
        self._clock: Callable[[], float] = clock
        self._sleep: Callable[[float], Awaitable[None]] = sleep
        self._cache: msal.SerializableTokenCache = (
            cache_store.load() if cache_store is not None else msal.SerializableTokenCache()
        )
        self._app: msal.PublicClientApplication = app or msal.PublicClientApplication(
            client_id,
            authority=f"https://login.microsoftonline.com/{tenant_id}",
            token_cache=self._cache,
        )
        self._access_token: str | None = None
        self._expires_at: float = 0.0
        self._force_refresh: bool = False
        self._lock: asyncio.Lock = asyncio.Lock()

    async def get_access_token(self) -> str:
        async with self._lock:
            if self._access_token and self._clock() < self._expires_at - self.refresh_buffer:
                return self._access_token

            if self._access_token:
                self.state = AuthState.EXPIRING
                logger.info("Access token nearing expiry, refreshing")

            result = await self._acquire_silent()
            if result is None:
                if not self.interactive:
                    self.state = AuthState.UNAUTHENTICATED
                    msg = "No valid cached token and interactive sign-in is disabled"
                    raise AuthExpiredError(msg)
                result = await self._acquire_by_device_flow()

            return self._store(result)

    def invalidate(self) -> None:
        """Forget the in-memory token, e.g. after the API answered 401."""
        self._access_token = None
        self._expires_at = 0.0
        self._force_refresh = True
        self.state = AuthState.UNAUTHENTICATED
        logger.info("Access token invalidated")

    async def _acquire_silent(self) -> dict[str, Any] | None:
        accounts = self._app.get_accounts()
        if not accounts:
            return None
        force_refresh = self._force_refresh
        outcome = await self._executor.call_blocking(
            lambda: self._app.acquire_token_silent(self.scopes, account=accounts[0], force_refresh=force_refresh),
            description="silent token refresh",
        )
        result = outcome.unwrap()
        if result and "access_token" in result:
            logger.info("Token acquired silently")
            return result
        if result:
            logger.warning(f"Silent token refresh failed: {result.get('error_description', result.get('error'))}")
        return None

    async def _acquire_by_device_flow(self) -> dict[str, Any]:
        flow: dict[str, Any] = (
            await self._executor.call_blocking(
                lambda: self._app.initiate_device_flow(scopes=self.scopes),
                description="device code request",
            )
        ).unwrap()
        if "user_code" not in flow:
            msg = f"Could not start device authorization: {flow.get('error_description', flow)}"
            raise AuthExpiredError(msg)

        self.state = AuthState.AWAITING_USER_APPROVAL
        self._display(flow)

        interval = int(flow.get("interval", _DEFAULT_POLL_INTERVAL))
        expires_at = float(flow.get("expires_at") or self._clock() + float(flow.get("expires_in", 900)))

        while True:
            if self._clock() >= expires_at:
                self.state = AuthState.UNAUTHENTICATED
                msg = "Device code expired before sign-in was approved"
                raise AuthTimeoutError(msg)

            # One token-endpoint request per call; pacing is done here.
            result: dict[str, Any] = (
                await self._executor.call_blocking(
                    lambda: self._app.acquire_token_by_device_flow(flow, exit_condition=lambda flow: True),
                    description="device code poll",
                )
            ).unwrap()

            if "access_token" in result:
                logger.info("Device authorization approved")
                return result

            error = result.get("error")
            if error == "slow_down":
                interval += _SLOW_DOWN_INCREMENT
            elif error != "authorization_pending":
                self.state = AuthState.UNAUTHENTICATED
                description = result.get("error_description", "")
                if error == "authorization_declined":
                    msg = "Sign-in request was declined"
                    raise AuthDeclinedError(msg)
                if error in ("expired_token", "code_expired"):
                    msg = "Device code expired before sign-in was approved"
                    raise AuthTimeoutError(msg)
                msg = f"Device authorization failed: {error}: {description}"
                raise AuthExpiredError(msg)

            await self._sleep(interval)

    def _store(self, result: dict[str, Any]) -> str:
        token: str = result["access_token"]
        self._access_token = token
        self._expires_at = self._clock() + float(result.get("expires_in", 3600))
        self._force_refresh = False
        self.state = AuthState.AUTHENTICATED
        if self._cache_store is not None and self._cache.has_state_changed:
            try:
                self._cache_store.save(self._cache)
            except OSError as e:
                logger.warning(f"Failed to persist token cache: {e}")
        return token
