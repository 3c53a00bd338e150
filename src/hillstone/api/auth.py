#!/usr/bin/env python3
"""Session management for the Hillstone firewall API.

The firewall authenticates with a form of cookie session: POST the
credentials to /login, keep the Set-Cookie values, and send them back on
every request. This module owns that lifecycle.

Features:
    - In-process session plus a shared cache copy, so several processes on
      one host reuse a single login
    - Double-checked asyncio.Lock so concurrent callers trigger one login
    - Optional validation probe against /api/system/status
    - Bounded retry with linear backoff (auth_retry_delay * attempt)
    - Typed failures: AuthenticationFailure carries the last underlying error

Example:
    >>> sessions = SessionManager(settings, cache=InMemoryCache())
    >>> await sessions.authenticate()
    True
    >>> session = await sessions.get_session()
    >>> session.cookie_header
    'PHPSESSID=abc; token=xyz'

Author: Hillstone Sync Team
"""
import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Optional

import aiohttp

from .cache import ICacheStore, InMemoryCache
from .exceptions import (
    AuthenticationFailure,
    ConnectionError,
    HillstoneError,
    NetworkError,
    TimeoutError,
)

if TYPE_CHECKING:
    from ..config import Settings

logger = logging.getLogger(__name__)

LOGIN_PATH = "/login"
STATUS_PATH = "/api/system/status"


@dataclass(frozen=True)
class Session:
    """An authenticated firewall session.

    Never mutated: a refresh replaces the whole object.

    Attributes:
        cookies: Session credentials taken from the login response
        expires_at: Unix timestamp after which the session is not used
    """

    cookies: dict[str, str] = field(default_factory=dict)
    expires_at: float = 0.0

    def is_valid(self, now: Optional[float] = None) -> bool:
        """Valid iff there are credentials and expiry is strictly in the future."""
        current = time.time() if now is None else now
        return bool(self.cookies) and self.expires_at > current

    def time_remaining(self, now: Optional[float] = None) -> float:
        current = time.time() if now is None else now
        return max(0.0, self.expires_at - current)

    @property
    def cookie_header(self) -> str:
        return build_cookie_header(self.cookies)

    def to_dict(self) -> dict[str, Any]:
        return {"cookies": dict(self.cookies), "expires_at": self.expires_at}

    @classmethod
    def from_dict(cls, data: Any) -> Optional["Session"]:
        if not isinstance(data, dict):
            return None
        cookies = data.get("cookies") or {}
        try:
            expires_at = float(data.get("expires_at") or 0)
        except (TypeError, ValueError):
            return None
        if not isinstance(cookies, dict):
            return None
        return cls(cookies={str(k): str(v) for k, v in cookies.items()}, expires_at=expires_at)


def build_cookie_header(cookies: dict[str, str]) -> str:
    """Render cookies as a Cookie header value: "k=v; k2=v2"."""
    return "; ".join(f"{name}={value}" for name, value in cookies.items())


def parse_set_cookie_headers(values: list[str]) -> dict[str, str]:
    """Extract name=value pairs from Set-Cookie header values.

    Only the first ';'-separated part of each header is used; attributes
    like Path or HttpOnly are dropped.
    """
    cookies: dict[str, str] = {}
    for header in values:
        first = header.split(";", 1)[0].strip()
        if "=" not in first:
            continue
        name, value = first.split("=", 1)
        name = name.strip()
        if name:
            cookies[name] = value.strip()
    return cookies


def client_timeout(settings: "Settings") -> aiohttp.ClientTimeout:
    conn = settings.connection
    return aiohttp.ClientTimeout(
        total=conn.timeout,
        connect=conn.connect_timeout,
        sock_read=conn.read_timeout,
    )


class SessionManager:
    """Owns acquisition, caching, expiry and invalidation of the session.

    The shared cache is injected; any ICacheStore works. Without one, an
    InMemoryCache private to this manager is used.

    Thread Safety:
        Logins are serialized with an asyncio.Lock. Callers that arrive while
        a login is in flight wait for it and reuse its result.
    """

    def __init__(
        self,
        settings: "Settings",
        cache: Optional[ICacheStore] = None,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.settings = settings
        self.cache = cache or InMemoryCache()
        self._clock = clock
        self._sleep = sleep
        self._session: Optional[Session] = None
        self._lock = asyncio.Lock()
        self.login_count = 0

    @property
    def cache_key(self) -> str:
        return self.settings.cache.auth_token_key

    @property
    def login_url(self) -> str:
        return f"{self.settings.connection.base_url}{LOGIN_PATH}"

    async def _cached_session(self) -> Optional[Session]:
        """Valid session from the in-process slot or the shared cache."""
        now = self._clock()
        if self._session and self._session.is_valid(now):
            return self._session

        shared = Session.from_dict(await self.cache.get(self.cache_key))
        if shared and shared.is_valid(now):
            self._session = shared
            return shared
        return None

    async def get_session(self) -> Session:
        """Return a valid session, logging in if needed.

        Raises:
            AuthenticationFailure: If every login attempt fails
        """
        session = await self._cached_session()
        if session:
            return session

        async with self._lock:
            session = await self._cached_session()
            if session:
                return session

            self._session = await self._login()
            return self._session

    async def authenticate(self) -> bool:
        """Ensure a valid session exists. True on success.

        A cached, unexpired session returns immediately without any request.
        """
        await self.get_session()
        return True

    async def is_authenticated(self) -> bool:
        return await self._cached_session() is not None

    async def invalidate(self) -> None:
        """Drop the session from both caches. Safe to call repeatedly."""
        self._session = None
        await self.cache.forget(self.cache_key)
        logger.info("Authentication cleared")

    async def _login(self) -> Session:
        auth = self.settings.auth
        max_attempts = max(1, auth.max_auth_attempts)
        last_error: Optional[HillstoneError] = None

        for attempt in range(1, max_attempts + 1):
            logger.info(f"Authenticating with Hillstone API (attempt {attempt}/{max_attempts})")
            try:
                session = await self._attempt_login()
                await self.cache.put(self.cache_key, session.to_dict(), auth.token_cache_ttl)
                self.login_count += 1
                logger.info(
                    f"Authenticated with Hillstone API, session valid for {auth.token_cache_ttl}s"
                )
                return session

            except AuthenticationFailure as e:
                last_error = e

            except aiohttp.ClientConnectionError as e:
                last_error = ConnectionError(
                    f"Failed to connect to login endpoint: {e}",
                    host=self.settings.connection.base_url,
                    cause=e,
                )

            except asyncio.TimeoutError as e:
                last_error = TimeoutError(
                    "Login request timed out",
                    timeout_seconds=self.settings.connection.timeout,
                    cause=e,
                )

            except aiohttp.ClientError as e:
                last_error = NetworkError(f"Network error during login: {e}", cause=e)

            logger.warning(
                f"Authentication attempt {attempt}/{max_attempts} failed: {last_error.message}"
            )

            if attempt < max_attempts:
                wait = auth.auth_retry_delay * attempt
                logger.debug(f"Waiting {wait}s before next authentication attempt")
                await self._sleep(wait)

        logger.error(f"Authentication failed after {max_attempts} attempts")
        raise AuthenticationFailure(
            f"Failed to authenticate after {max_attempts} attempts: {last_error.message}",
            attempts=max_attempts,
            cause=last_error,
        )

    async def _attempt_login(self) -> Session:
        conn = self.settings.connection
        payload = {
            "username": self.settings.auth.username,
            "password": self.settings.auth.password,
            "domain": conn.domain,
        }
        headers = {
            "Accept": "application/json",
            "Content-Type": "application/json",
        }

        async with aiohttp.ClientSession(timeout=client_timeout(self.settings)) as http:
            async with http.post(
                self.login_url,
                json=payload,
                headers=headers,
                ssl=conn.verify_ssl,
            ) as response:
                if not 200 <= response.status < 300:
                    body = await response.text()
                    raise AuthenticationFailure(
                        f"Login rejected with HTTP {response.status}",
                        status_code=response.status,
                        details={"response": body[:200]},
                    )
                cookies = parse_set_cookie_headers(response.headers.getall("Set-Cookie", []))

            if not cookies:
                raise AuthenticationFailure("No session cookies received from login")

            if self.settings.auth.validate_session and not await self._validate(http, cookies):
                raise AuthenticationFailure("Session validation failed")

        return Session(
            cookies=cookies,
            expires_at=self._clock() + self.settings.auth.token_cache_ttl,
        )

    async def _validate(self, http: aiohttp.ClientSession, cookies: dict[str, str]) -> bool:
        """Probe the status endpoint with the new cookies. Errors count as invalid."""
        url = f"{self.settings.connection.base_url}{STATUS_PATH}"
        try:
            async with http.get(
                url,
                headers={"Accept": "application/json", "Cookie": build_cookie_header(cookies)},
                ssl=self.settings.connection.verify_ssl,
            ) as response:
                return 200 <= response.status < 300
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.warning(f"Session validation request failed: {e}")
            return False

    async def status(self) -> dict[str, Any]:
        """Safe-to-log view of the session state (no cookie values)."""
        session = await self._cached_session()
        if not session:
            return {"authenticated": False}
        return {
            "authenticated": True,
            "cookie_names": sorted(session.cookies),
            "time_remaining_seconds": round(session.time_remaining(self._clock()), 1),
        }
