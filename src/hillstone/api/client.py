#!/usr/bin/env python3
"""HTTP client for the Hillstone firewall address-book API.

This module handles the transport concerns of talking to the firewall:

    - Cookie session injection via SessionManager
    - One re-login and one replay on 401/403, then AuthenticationFailure
    - Client-side token-bucket rate limiting before every request
    - Retry with backoff for transport errors, 5xx and 429 (never 401/403)
    - Envelope unwrapping and object normalization
    - Redacted request/response logging when enabled

Usage:
    async with HillstoneClient(settings, sessions) as client:
        objects = await client.list_all()
        web = await client.get_by_name("web")   # None on 404

Author: Hillstone Sync Team
"""
import asyncio
import json
import logging
import time
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Optional
from urllib.parse import quote

import aiohttp

from .auth import STATUS_PATH, SessionManager, client_timeout
from .exceptions import (
    AuthenticationFailure,
    ConnectionError,
    HillstoneError,
    NetworkError,
    RateLimitError,
    RequestFailure,
    ServerError,
    TimeoutError,
)
from .normalizer import normalize_object, unwrap_list, unwrap_single
from .rate_limit import TokenBucketRateLimiter
from .resilience import RetryPolicy, retry_async
from .sanitizer import RESPONSE_BODY_LIMIT, get_sanitizer

if TYPE_CHECKING:
    from ..config import Settings

logger = logging.getLogger(__name__)

OBJECTS_PATH = "/api/address-book/objects"
USER_AGENT = "hillstone-sync/1.0"


class SessionRejected(Exception):
    """A request came back 401/403. Handled by the auth-retry path only."""

    def __init__(self, status: int, endpoint: str):
        super().__init__(f"HTTP {status} for {endpoint}")
        self.status = status
        self.endpoint = endpoint


def _retry_after_seconds(headers, now: float) -> Optional[float]:
    """Wait hint from Retry-After, else X-RateLimit-Reset (epoch or seconds)."""
    retry_after = headers.get("Retry-After")
    if retry_after:
        try:
            return max(0.0, float(retry_after))
        except ValueError:
            pass

    reset = headers.get("X-RateLimit-Reset")
    if reset:
        try:
            value = float(reset)
        except ValueError:
            return None
        # Large values are absolute Unix timestamps
        return max(0.0, value - now) if value > 1_000_000_000 else max(0.0, value)
    return None


class HillstoneClient:
    """Authenticated, rate-limited access to address-book objects.

    Must be used as an async context manager unless an aiohttp session is
    passed in, in which case the caller owns that session's lifetime.
    """

    def __init__(
        self,
        settings: "Settings",
        session_manager: Optional[SessionManager] = None,
        rate_limiter: Optional[TokenBucketRateLimiter] = None,
        retry_policy: Optional[RetryPolicy] = None,
        http_session: Optional[aiohttp.ClientSession] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.settings = settings
        self.base_url = settings.connection.base_url
        self.sessions = session_manager or SessionManager(settings)
        self.rate_limiter = rate_limiter or TokenBucketRateLimiter.from_settings(settings)
        self.retry_policy = retry_policy or RetryPolicy.from_settings(settings)
        self._sleep = sleep
        self._http = http_session
        self._owns_http = http_session is None
        self._sanitizer = get_sanitizer()
        self.request_count = 0

    # ----------------------------------------
    # Context Manager Protocol
    # ----------------------------------------

    async def __aenter__(self) -> "HillstoneClient":
        if self._http is None:
            self._http = aiohttp.ClientSession(
                connector=aiohttp.TCPConnector(limit=10, limit_per_host=10),
                timeout=client_timeout(self.settings),
            )
            self._owns_http = True
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        if self._http and self._owns_http:
            await self._http.close()
            self._http = None

    # ----------------------------------------
    # Session delegation
    # ----------------------------------------

    async def authenticate(self) -> bool:
        return await self.sessions.authenticate()

    async def is_authenticated(self) -> bool:
        return await self.sessions.is_authenticated()

    # ----------------------------------------
    # Low-Level Request Methods
    # ----------------------------------------

    def _headers(self, cookie_header: Optional[str]) -> dict[str, str]:
        headers = {
            "Accept": "application/json",
            "Content-Type": "application/json",
            "User-Agent": USER_AGENT,
            "X-Requested-With": "XMLHttpRequest",
        }
        if cookie_header:
            headers["Cookie"] = cookie_header
        return headers

    async def _request(
        self,
        method: str,
        endpoint: str,
        allow_not_found: bool = False,
    ) -> Any:
        """Send one request. No retry, no re-login.

        Returns:
            Decoded JSON body, or None for a 404 when allow_not_found is set

        Raises:
            SessionRejected: On 401/403
            RateLimitError / ServerError / RequestFailure: On other non-2xx
            NetworkError: On transport failure
        """
        if self._http is None:
            raise RuntimeError(
                "HillstoneClient must be used as async context manager: "
                "async with HillstoneClient(...) as client:"
            )

        session = await self.sessions.get_session()
        await self.rate_limiter.acquire()

        url = f"{self.base_url}{endpoint}"
        headers = self._headers(session.cookie_header)
        if self.settings.logging.log_requests:
            logger.debug(
                f"Request {method} {endpoint} headers={self._sanitizer.headers(headers)}"
            )

        started = time.monotonic()
        self.request_count += 1
        try:
            async with self._http.request(
                method,
                url,
                headers=headers,
                ssl=self.settings.connection.verify_ssl,
            ) as response:
                status = response.status
                body = await response.text()
                response_headers = response.headers

        except aiohttp.ClientConnectionError as e:
            raise ConnectionError(
                f"Failed to connect to {self.base_url}",
                host=self.base_url,
                endpoint=endpoint,
                method=method,
                cause=e,
            )

        except asyncio.TimeoutError as e:
            raise TimeoutError(
                f"Request to {endpoint} timed out",
                timeout_seconds=self.settings.connection.timeout,
                endpoint=endpoint,
                method=method,
                cause=e,
            )

        except aiohttp.ClientError as e:
            raise NetworkError(
                f"Network error during {method} {endpoint}: {e}",
                endpoint=endpoint,
                method=method,
                cause=e,
            )

        elapsed_ms = (time.monotonic() - started) * 1000
        if self.settings.logging.log_responses:
            logger.debug(
                f"Response {status} for {method} {endpoint} in {elapsed_ms:.0f}ms: "
                f"{self._sanitizer.body(body, limit=RESPONSE_BODY_LIMIT)}"
            )

        if status in (401, 403):
            raise SessionRejected(status, endpoint)
        if status == 404 and allow_not_found:
            return None
        if not 200 <= status < 300:
            raise self._create_request_failure(status, method, endpoint, body, response_headers)

        if not body.strip():
            return None
        try:
            return json.loads(body)
        except ValueError as e:
            raise RequestFailure(
                f"Invalid JSON in response to {method} {endpoint}",
                status_code=status,
                endpoint=endpoint,
                response_body=body,
                method=method,
                cause=e,
            )

    def _create_request_failure(
        self,
        status: int,
        method: str,
        endpoint: str,
        body: str,
        headers,
    ) -> RequestFailure:
        if status == 429:
            return RateLimitError(
                f"Rate limit exceeded for {endpoint}",
                retry_after=_retry_after_seconds(headers, time.time()),
                endpoint=endpoint,
                response_body=body,
                method=method,
            )
        if status >= 500:
            return ServerError(
                f"Server error ({status}) for {method} {endpoint}",
                status_code=status,
                endpoint=endpoint,
                response_body=body,
                method=method,
            )
        return RequestFailure(
            f"{method} {endpoint} failed with HTTP {status}",
            status_code=status,
            endpoint=endpoint,
            response_body=body,
            method=method,
        )

    async def _send_with_retry(self, method: str, endpoint: str, allow_not_found: bool = False) -> Any:
        return await retry_async(
            self._request,
            method,
            endpoint,
            allow_not_found=allow_not_found,
            policy=self.retry_policy,
            sleep=self._sleep,
        )

    async def _execute_with_auth(
        self,
        method: str,
        endpoint: str,
        allow_not_found: bool = False,
    ) -> Any:
        """Send with retry; on 401/403 re-login once and replay once."""
        try:
            return await self._send_with_retry(method, endpoint, allow_not_found)
        except SessionRejected as e:
            logger.warning(f"Session rejected (HTTP {e.status}) for {endpoint}, re-authenticating")

        await self.sessions.invalidate()
        await self.sessions.authenticate()

        try:
            return await self._send_with_retry(method, endpoint, allow_not_found)
        except SessionRejected as e:
            raise AuthenticationFailure(
                f"Still unauthorized after re-authentication (HTTP {e.status})",
                status_code=e.status,
                details={"endpoint": endpoint},
            )

    # ----------------------------------------
    # Address-book operations
    # ----------------------------------------

    async def list_all(self) -> list[dict[str, Any]]:
        """Fetch every address-book object, normalized."""
        payload = await self._execute_with_auth("GET", OBJECTS_PATH)
        items = unwrap_list(payload)
        objects = [normalize_object(item) for item in items if isinstance(item, dict)]
        logger.info(f"Fetched {len(objects)} address-book objects")
        return objects

    async def get_by_name(self, name: str) -> Optional[dict[str, Any]]:
        """Fetch one object. None when the firewall answers 404."""
        endpoint = f"{OBJECTS_PATH}/{quote(name, safe='')}"
        payload = await self._execute_with_auth("GET", endpoint, allow_not_found=True)
        obj = unwrap_single(payload)
        if obj is None:
            logger.info(f"Address-book object '{name}' not found")
            return None
        return normalize_object(obj)

    async def test_connection(self) -> dict[str, Any]:
        """Probe reachability and credentials without raising."""
        result: dict[str, Any] = {
            "connectivity": False,
            "response_time_ms": None,
            "status_code": None,
            "authentication": False,
            "auth_error": None,
        }

        if self._http is None:
            raise RuntimeError("HillstoneClient must be used as async context manager")

        started = time.monotonic()
        try:
            async with self._http.get(
                f"{self.base_url}{STATUS_PATH}",
                headers=self._headers(None),
                ssl=self.settings.connection.verify_ssl,
            ) as response:
                result["status_code"] = response.status
                result["connectivity"] = True
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            result["error"] = str(e) or e.__class__.__name__
        result["response_time_ms"] = round((time.monotonic() - started) * 1000, 1)

        if result["connectivity"]:
            try:
                result["authentication"] = await self.sessions.authenticate()
            except HillstoneError as e:
                result["auth_error"] = e.message

        return result

    async def status(self) -> dict[str, Any]:
        conn = self.settings.connection
        return {
            "authentication": await self.sessions.status(),
            "rate_limiting": self.rate_limiter.status(),
            "configuration": {
                "base_url": conn.base_url,
                "domain": conn.domain,
                "timeout": conn.timeout,
                "verify_ssl": conn.verify_ssl,
            },
            "requests_sent": self.request_count,
        }
