#!/usr/bin/env python3
"""Unit tests for HillstoneClient.

Tests cover:
    - Cookie injection and request headers
    - Envelope unwrapping and normalization
    - 404 as "not found" for single-object lookups
    - One re-login and one replay on 401/403
    - Retry of 5xx and 429, never of auth failures
"""
import asyncio
import json
from unittest.mock import AsyncMock, MagicMock

import aiohttp
import pytest
from multidict import CIMultiDict

from src.hillstone.api.auth import Session
from src.hillstone.api.client import HillstoneClient, _retry_after_seconds
from src.hillstone.api.exceptions import (
    AuthenticationFailure,
    ConnectionError,
    RateLimitError,
    RequestFailure,
    ServerError,
    TimeoutError,
)
from src.hillstone.api.rate_limit import TokenBucketRateLimiter
from src.hillstone.api.resilience import RetryPolicy
from src.hillstone.config import AuthSettings, ConnectionSettings, Settings


def make_response(status=200, payload=None, body=None, headers=None):
    response = MagicMock()
    response.status = status
    if body is None:
        body = json.dumps(payload) if payload is not None else ""
    response.text = AsyncMock(return_value=body)
    response.headers = CIMultiDict(headers or {})
    response.__aenter__ = AsyncMock(return_value=response)
    response.__aexit__ = AsyncMock(return_value=None)
    return response


@pytest.fixture
def settings():
    return Settings(
        connection=ConnectionSettings(domain="root", base_url="https://fw.example.com"),
        auth=AuthSettings(username="api", password="secret"),
    )


@pytest.fixture
def sessions():
    manager = MagicMock()
    manager.get_session = AsyncMock(return_value=Session(cookies={"PHPSESSID": "abc"}, expires_at=1e12))
    manager.authenticate = AsyncMock(return_value=True)
    manager.invalidate = AsyncMock()
    manager.is_authenticated = AsyncMock(return_value=True)
    return manager


@pytest.fixture
def http():
    return MagicMock()


@pytest.fixture
def sleep():
    return AsyncMock()


@pytest.fixture
def client(settings, sessions, http, sleep):
    return HillstoneClient(
        settings,
        session_manager=sessions,
        rate_limiter=TokenBucketRateLimiter(enabled=False),
        retry_policy=RetryPolicy(max_attempts=3, delay=1.0, multiplier=2.0, max_delay=10.0),
        http_session=http,
        sleep=sleep,
    )


class TestRequests:
    @pytest.mark.asyncio
    async def test_requires_http_session(self, settings, sessions):
        client = HillstoneClient(settings, session_manager=sessions)
        with pytest.raises(RuntimeError, match="async context manager"):
            await client.list_all()

    @pytest.mark.asyncio
    async def test_list_all_sends_cookie_and_unwraps(self, client, http):
        http.request = MagicMock(return_value=make_response(payload={
            "data": [{"name": "web", "ip": ["10.0.0.1/32"]}, "junk"],
        }))

        objects = await client.list_all()

        assert [o["name"] for o in objects] == ["web"]
        assert objects[0]["object_data"]["ip"] == ["10.0.0.1/32"]
        method, url = http.request.call_args.args
        headers = http.request.call_args.kwargs["headers"]
        assert method == "GET"
        assert url == "https://fw.example.com/api/address-book/objects"
        assert headers["Cookie"] == "PHPSESSID=abc"
        assert headers["X-Requested-With"] == "XMLHttpRequest"

    @pytest.mark.asyncio
    async def test_get_by_name_quotes_name(self, client, http):
        http.request = MagicMock(return_value=make_response(payload={"data": {"name": "a b/c"}}))

        obj = await client.get_by_name("a b/c")

        assert obj["name"] == "a b/c"
        assert http.request.call_args.args[1].endswith("/objects/a%20b%2Fc")

    @pytest.mark.asyncio
    async def test_get_by_name_404_is_none(self, client, http):
        http.request = MagicMock(return_value=make_response(status=404, body="not found"))

        assert await client.get_by_name("missing") is None

    @pytest.mark.asyncio
    async def test_get_by_name_empty_envelope_is_none(self, client, http):
        http.request = MagicMock(return_value=make_response(payload={"data": []}))

        assert await client.get_by_name("missing") is None

    @pytest.mark.asyncio
    async def test_list_404_is_an_error(self, client, http):
        http.request = MagicMock(return_value=make_response(status=404, body="not found"))

        with pytest.raises(RequestFailure) as exc:
            await client.list_all()

        assert exc.value.status_code == 404
        assert exc.value.recoverable is False

    @pytest.mark.asyncio
    async def test_invalid_json(self, client, http):
        http.request = MagicMock(return_value=make_response(body="<html>"))

        with pytest.raises(RequestFailure, match="Invalid JSON"):
            await client.list_all()


class TestReauthentication:
    @pytest.mark.asyncio
    async def test_one_401_triggers_one_relogin(self, client, http, sessions):
        http.request = MagicMock(side_effect=[
            make_response(status=401),
            make_response(payload=[{"name": "web"}]),
        ])

        objects = await client.list_all()

        assert [o["name"] for o in objects] == ["web"]
        sessions.invalidate.assert_awaited_once()
        sessions.authenticate.assert_awaited_once()
        assert http.request.call_count == 2

    @pytest.mark.asyncio
    async def test_second_401_raises(self, client, http, sessions):
        http.request = MagicMock(side_effect=[make_response(status=401), make_response(status=403)])

        with pytest.raises(AuthenticationFailure) as exc:
            await client.list_all()

        assert exc.value.status_code == 403
        assert http.request.call_count == 2
        sessions.authenticate.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_auth_failures_are_not_backed_off(self, client, http, sleep):
        http.request = MagicMock(side_effect=[make_response(status=401), make_response(status=401)])

        with pytest.raises(AuthenticationFailure):
            await client.list_all()

        sleep.assert_not_awaited()


class TestRetry:
    @pytest.mark.asyncio
    async def test_server_error_retried(self, client, http, sleep):
        http.request = MagicMock(side_effect=[
            make_response(status=502, body="bad gateway"),
            make_response(payload=[]),
        ])

        assert await client.list_all() == []
        sleep.assert_awaited_once_with(1.0)

    @pytest.mark.asyncio
    async def test_server_error_exhausts_attempts(self, client, http):
        http.request = MagicMock(side_effect=[make_response(status=500) for _ in range(3)])

        with pytest.raises(ServerError):
            await client.list_all()

        assert http.request.call_count == 3

    @pytest.mark.asyncio
    async def test_rate_limit_honours_retry_after(self, client, http, sleep):
        http.request = MagicMock(side_effect=[
            make_response(status=429, headers={"Retry-After": "3"}),
            make_response(payload=[]),
        ])

        await client.list_all()

        sleep.assert_awaited_once_with(3.0)

    @pytest.mark.asyncio
    async def test_connection_error_mapped(self, client, http):
        failing = MagicMock()
        failing.__aenter__ = AsyncMock(side_effect=aiohttp.ClientConnectionError("refused"))
        failing.__aexit__ = AsyncMock(return_value=None)
        http.request = MagicMock(return_value=failing)

        with pytest.raises(ConnectionError):
            await client.list_all()

    @pytest.mark.asyncio
    async def test_timeout_mapped(self, client, http):
        failing = MagicMock()
        failing.__aenter__ = AsyncMock(side_effect=asyncio.TimeoutError())
        failing.__aexit__ = AsyncMock(return_value=None)
        http.request = MagicMock(return_value=failing)

        with pytest.raises(TimeoutError):
            await client.list_all()


class TestRetryAfter:
    def test_retry_after_header(self):
        assert _retry_after_seconds(CIMultiDict({"Retry-After": "7"}), 0) == 7.0

    def test_reset_epoch(self):
        now = 1_700_000_000.0
        headers = CIMultiDict({"X-RateLimit-Reset": str(now + 12)})
        assert _retry_after_seconds(headers, now) == 12.0

    def test_reset_seconds(self):
        assert _retry_after_seconds(CIMultiDict({"X-RateLimit-Reset": "4"}), 0) == 4.0

    def test_missing(self):
        assert _retry_after_seconds(CIMultiDict(), 0) is None

    def test_rate_limit_error_attributes(self):
        error = RateLimitError(retry_after=2.0)
        assert error.status_code == 429
        assert error.recoverable


class TestConnectionProbe:
    @pytest.mark.asyncio
    async def test_reachable_and_authenticated(self, client, http):
        http.get = MagicMock(return_value=make_response(status=200))

        result = await client.test_connection()

        assert result["connectivity"] is True
        assert result["authentication"] is True
        assert result["status_code"] == 200

    @pytest.mark.asyncio
    async def test_rejected_credentials(self, client, http, sessions):
        http.get = MagicMock(return_value=make_response(status=200))
        sessions.authenticate.side_effect = AuthenticationFailure("Login rejected with HTTP 401")

        result = await client.test_connection()

        assert result["authentication"] is False
        assert result["auth_error"] == "Login rejected with HTTP 401"

    @pytest.mark.asyncio
    async def test_unreachable(self, client, http, sessions):
        failing = MagicMock()
        failing.__aenter__ = AsyncMock(side_effect=aiohttp.ClientConnectionError("refused"))
        failing.__aexit__ = AsyncMock(return_value=None)
        http.get = MagicMock(return_value=failing)

        result = await client.test_connection()

        assert result["connectivity"] is False
        assert result["error"] == "refused"
        sessions.authenticate.assert_not_awaited()
