"""
Async client for the auth API.

The access token lives only on the `AuthSession` instance; it is never written
to disk. The refresh token stays in the HTTP client's cookie jar, as the
browser would keep the HttpOnly cookie. Open one session per user session and
close it (or use `async with`) to tear down the refresh timer.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Awaitable, Callable

import httpx

from storefront.utils.security import access_token_expiry

logger = logging.getLogger(__name__)


class AuthClientError(Exception):
    """Failure envelope returned by the API."""

    def __init__(self, status_code: int, body: dict):
        self.status_code = status_code
        self.body = body
        error = body.get("error") or {}
        self.code = error.get("code")
        self.kind = error.get("kind")
        super().__init__(body.get("message") or f"HTTP {status_code}")


class TokenRefreshScheduler:
    """
    Fires `callback` `margin` seconds before the observed access token expires.
    Each new token cancels the pending timer and schedules a fresh one.
    Advisory only: the server enforces expiry regardless.
    """

    def __init__(self, callback: Callable[[], Awaitable[object]], margin: float = 60.0):
        self.callback = callback
        self.margin = margin
        self._task: asyncio.Task | None = None

    def delay_for(self, token: str, now: datetime | None = None) -> float | None:
        expires_at = access_token_expiry(token)
        if expires_at is None:
            return None
        now = now or datetime.now(timezone.utc)
        return max(0.0, (expires_at - now).total_seconds() - self.margin)

    def schedule(self, token: str) -> None:
        self.cancel()
        delay = self.delay_for(token)
        if delay is None:
            return
        self._task = asyncio.create_task(self._fire_after(delay))

    async def _fire_after(self, delay: float) -> None:
        await asyncio.sleep(delay)
        try:
            await self.callback()
        except AuthClientError as e:
            logger.warning(f"Scheduled token refresh failed: {e.code}")
        except httpx.HTTPError as e:
            logger.warning(f"Scheduled token refresh failed: {e!r}")

    def cancel(self) -> None:
        # A timer that is itself running the refresh reschedules, it must not cancel itself
        if self._task is not None and not self._task.done() and self._task is not asyncio.current_task():
            self._task.cancel()
        self._task = None

    @property
    def pending(self) -> bool:
        return self._task is not None and not self._task.done()


class AuthSession:

    def __init__(
        self,
        base_url: str,
        *,
        http: httpx.AsyncClient | None = None,
        refresh_margin: float = 60.0,
        api_prefix: str = "/api/v1/auth",
    ):
        self._http = http or httpx.AsyncClient(base_url=base_url)
        self._owns_http = http is None
        self.api_prefix = api_prefix
        self.access_token: str | None = None
        self.user: dict | None = None
        self.scheduler = TokenRefreshScheduler(self.refresh, margin=refresh_margin)

    async def __aenter__(self) -> "AuthSession":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.close()

    async def close(self) -> None:
        self.scheduler.cancel()
        self.access_token = None
        self.user = None
        if self._owns_http:
            await self._http.aclose()

    @property
    def is_authenticated(self) -> bool:
        return self.access_token is not None

    # ─── Auth calls ───────────────────────────────────────────────────────────
    async def login(self, email: str, password: str) -> dict:
        data = await self._call("POST", "/login", json={"email": email, "password": password})
        self._observe(data)
        return data

    async def refresh(self) -> dict:
        try:
            data = await self._call("POST", "/refresh")
        except AuthClientError:
            self.scheduler.cancel()
            self.access_token = None
            self.user = None
            raise
        self._observe(data)
        return data

    async def logout(self) -> None:
        try:
            await self._call("POST", "/logout")
        finally:
            self.scheduler.cancel()
            self.access_token = None
            self.user = None

    async def get_me(self) -> dict:
        return await self._call("GET", "/me", authorized=True)

    async def request(self, method: str, url: str, **kwargs) -> httpx.Response:
        """Authorized request; on an expired access token refresh once and retry."""
        response = await self._http.request(method, url, headers=self._auth_headers(), **kwargs)
        if response.status_code == 401 and self._error_code(response) == "TOKEN_EXPIRED":
            await self.refresh()
            response = await self._http.request(method, url, headers=self._auth_headers(), **kwargs)
        return response

    # ─── Internals ────────────────────────────────────────────────────────────
    def _observe(self, data: dict) -> None:
        self.access_token = data["accessToken"]
        self.user = data.get("user")
        self.scheduler.schedule(self.access_token)

    def _auth_headers(self) -> dict:
        if not self.access_token:
            return {}
        return {"Authorization": f"Bearer {self.access_token}"}

    @staticmethod
    def _error_code(response: httpx.Response) -> str | None:
        try:
            return response.json().get("error", {}).get("code")
        except ValueError:
            return None

    async def _call(self, method: str, path: str, *, authorized: bool = False, **kwargs) -> dict:
        url = f"{self.api_prefix}{path}"
        if authorized:
            response = await self.request(method, url, **kwargs)
        else:
            response = await self._http.request(method, url, **kwargs)
        body = response.json()
        if response.status_code >= 400 or not body.get("success", False):
            raise AuthClientError(response.status_code, body)
        return body.get("data")
