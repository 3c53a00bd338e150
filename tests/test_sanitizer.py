#!/usr/bin/env python3
"""Unit tests for credential redaction in request/response logs."""
import pytest

from src.hillstone.api.sanitizer import REDACTED, LogSanitizer, get_sanitizer


@pytest.fixture
def sanitizer():
    return LogSanitizer()


class TestText:
    @pytest.mark.parametrize(
        "message,secret",
        [
            ("Cookie: PHPSESSID=abc123; token=xyz", "abc123"),
            ("Authorization: Bearer eyJhbGciOi", "eyJhbGciOi"),
            ('{"password": "hunter2", "user": "api"}', "hunter2"),
            ("login failed password=hunter2&user=api", "hunter2"),
            ("connect postgresql://app:pw@db:5432/fw failed", "app:pw"),
        ],
    )
    def test_secrets_removed(self, sanitizer, message, secret):
        result = sanitizer.text(message)

        assert secret not in result.text
        assert result.was_sanitized

    def test_plain_text_untouched(self, sanitizer):
        result = sanitizer.text("Fetched 12 address-book objects")

        assert result.text == "Fetched 12 address-book objects"
        assert not result.was_sanitized

    def test_truncation(self, sanitizer):
        result = sanitizer.text("x" * 50, limit=10)

        assert result.truncated
        assert result.text == "x" * 10 + "... [TRUNCATED]"

    def test_empty(self, sanitizer):
        assert sanitizer.text("").text == ""


class TestStructured:
    def test_headers(self, sanitizer):
        headers = sanitizer.headers({"Cookie": "PHPSESSID=abc", "Accept": "application/json"})
        assert headers == {"Cookie": REDACTED, "Accept": "application/json"}

    def test_nested_fields(self, sanitizer):
        data = {"username": "api", "password": "s3", "items": [{"session_token": "t"}]}

        assert sanitizer.fields(data) == {
            "username": "api",
            "password": REDACTED,
            "items": [{"session_token": REDACTED}],
        }

    def test_body_from_json_string(self, sanitizer):
        body = sanitizer.body('{"password": "s3", "domain": "root"}')

        assert "s3" not in body
        assert '"domain": "root"' in body

    def test_body_from_bytes_and_text(self, sanitizer):
        assert "s3" not in sanitizer.body(b"password=s3")
        assert sanitizer.body(None) == ""

    def test_shared_instance(self):
        assert get_sanitizer() is get_sanitizer()
