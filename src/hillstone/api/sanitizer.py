"""Redaction of credentials in request/response logging.

When HILLSTONE_LOG_REQUESTS or HILLSTONE_LOG_RESPONSES is enabled the client
logs what it sends and receives. Session cookies and the login password
would otherwise end up in log files, so everything goes through here first.

Example:
    sanitizer = LogSanitizer()
    logger.debug(f"Request headers: {sanitizer.headers(headers)}")
    logger.debug(f"Request body: {sanitizer.body(payload, limit=1000)}")
"""
import json
import re
from dataclasses import dataclass
from typing import Any, Mapping, Optional

REDACTED = "[REDACTED]"

SENSITIVE_HEADERS = frozenset({
    "cookie",
    "set-cookie",
    "authorization",
    "x-api-key",
    "x-auth-token",
})

SENSITIVE_FIELDS = ("password", "token", "secret", "key", "cookie")

REQUEST_BODY_LIMIT = 1000
RESPONSE_BODY_LIMIT = 2000


@dataclass
class SanitizationResult:
    """Outcome of sanitizing a piece of text.

    Attributes:
        text: Sanitized text, safe to log
        redaction_count: Number of redactions made
        truncated: Whether the text was cut to the length limit
    """

    text: str
    redaction_count: int
    truncated: bool = False

    @property
    def was_sanitized(self) -> bool:
        return self.redaction_count > 0


class LogSanitizer:
    """Strip secrets from headers, JSON bodies and free text."""

    # Order matters: cookie headers before generic key=value pairs
    DEFAULT_PATTERNS: list[tuple[str, str]] = [
        (r'(cookie|set-cookie)\s*[:=]\s*[^\n]+', r'\1: [REDACTED]'),
        (r'authorization\s*[:=]\s*[^\s\n,;]+(\s+[^\s\n,;]+)?', 'Authorization: [REDACTED]'),
        (r'"(password|passwd|token|secret|api[-_]?key|session[-_]?id)"\s*:\s*"[^"]*"', r'"\1": "[REDACTED]"'),
        (r'\b(password|passwd|token|secret|api[-_]?key)=[^\s\n&,;]+', r'\1=[REDACTED]'),
        (r'postgres(ql)?://[^\s\n]+', '[DATABASE_URL]'),
    ]

    def __init__(self, patterns: Optional[list[tuple[str, str]]] = None):
        self.patterns = list(patterns or self.DEFAULT_PATTERNS)
        self._compiled = [
            (re.compile(pattern, re.IGNORECASE), replacement)
            for pattern, replacement in self.patterns
        ]

    def text(self, message: str, limit: Optional[int] = None) -> SanitizationResult:
        """Redact secrets in free text and optionally truncate it."""
        if not message:
            return SanitizationResult(text="", redaction_count=0)

        sanitized = message
        count = 0
        for pattern, replacement in self._compiled:
            sanitized, n = pattern.subn(replacement, sanitized)
            count += n

        truncated = False
        if limit is not None and len(sanitized) > limit:
            sanitized = sanitized[:limit] + "... [TRUNCATED]"
            truncated = True

        return SanitizationResult(text=sanitized, redaction_count=count, truncated=truncated)

    def headers(self, headers: Optional[Mapping[str, Any]]) -> dict[str, Any]:
        """Copy of headers with credential-bearing values redacted."""
        if not headers:
            return {}
        return {
            name: REDACTED if name.lower() in SENSITIVE_HEADERS else value
            for name, value in headers.items()
        }

    def fields(self, data: Any) -> Any:
        """Recursively redact values whose key names look secret."""
        if isinstance(data, Mapping):
            return {
                key: REDACTED if _is_sensitive_field(key) else self.fields(value)
                for key, value in data.items()
            }
        if isinstance(data, list):
            return [self.fields(item) for item in data]
        return data

    def body(self, body: Any, limit: int = REQUEST_BODY_LIMIT) -> str:
        """Loggable rendering of a request or response body."""
        if body is None:
            return ""
        if isinstance(body, (bytes, bytearray)):
            body = body.decode("utf-8", errors="replace")
        if isinstance(body, str):
            try:
                body = json.loads(body)
            except ValueError:
                return self.text(body, limit=limit).text
        rendered = json.dumps(self.fields(body), default=str)
        return self.text(rendered, limit=limit).text


def _is_sensitive_field(key: Any) -> bool:
    lowered = str(key).lower()
    return any(marker in lowered for marker in SENSITIVE_FIELDS)


_default_sanitizer: Optional[LogSanitizer] = None


def get_sanitizer() -> LogSanitizer:
    """Shared LogSanitizer instance."""
    global _default_sanitizer
    if _default_sanitizer is None:
        _default_sanitizer = LogSanitizer()
    return _default_sanitizer
