#!/usr/bin/env python3
"""Exception hierarchy for the Hillstone address-book synchronizer.

Every error raised by the client, the session manager, the local store and
the reconciliation engine derives from HillstoneError, so callers can catch
the whole family with one except clause and still branch on the concrete
failure when they need to.

Exception Hierarchy:
    HillstoneError (base)
    ├── ConfigurationError (unrecoverable - fix config)
    ├── AuthenticationFailure (login rejected or attempts exhausted)
    ├── RequestFailure (non-2xx response or transport error)
    │   ├── RateLimitError
    │   ├── ServerError
    │   └── NetworkError
    │       ├── ConnectionError
    │       └── TimeoutError
    ├── ValidationFailure (bad object data, nothing persisted)
    ├── PersistenceFailure (storage error, transaction rolled back)
    │   ├── ConnectionPoolError
    │   ├── TransactionError
    │   └── IntegrityError
    └── ReconciliationFailure (engine-level failure)
        ├── ObjectNotFoundError
        ├── SyncCancelledError
        └── SyncTimeoutError

Author: Hillstone Sync Team
"""
from datetime import UTC, datetime
from typing import Any, Optional

# ============================================
# Base Exception
# ============================================

class HillstoneError(Exception):
    """Base exception for all synchronizer errors.

    Attributes:
        message: Human-readable error description
        code: Machine-readable error code (e.g., "AUTHENTICATION_FAILURE")
        details: Additional context as a dictionary
        timestamp: When the error occurred
        cause: The original exception that caused this error
        recoverable: Whether a retry might succeed
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
        cause: Optional[Exception] = None,
        recoverable: bool = False,
    ):
        super().__init__(message)
        self.message = message
        self.code = code or self.__class__.__name__.upper()
        self.details = details or {}
        self.timestamp = datetime.now(UTC)
        self.cause = cause
        self.recoverable = recoverable

        if cause:
            self.__cause__ = cause

    def __str__(self) -> str:
        parts = [f"[{self.code}]", self.message]
        if self.details:
            detail_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            parts.append(f"({detail_str})")
        return " ".join(parts)

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"message={self.message!r}, "
            f"code={self.code!r}, "
            f"recoverable={self.recoverable})"
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for logging/serialization."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "code": self.code,
            "details": self.details,
            "timestamp": self.timestamp.isoformat(),
            "recoverable": self.recoverable,
            "cause": str(self.cause) if self.cause else None,
        }


# ============================================
# Configuration
# ============================================

class ConfigurationError(HillstoneError):
    """Raised when required settings are missing or malformed."""

    def __init__(
        self,
        message: str,
        missing_keys: Optional[list[str]] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if missing_keys:
            details["missing_keys"] = missing_keys
        super().__init__(
            message,
            code="CONFIGURATION_ERROR",
            details=details,
            recoverable=False,
            **kwargs,
        )
        self.missing_keys = missing_keys or []


# ============================================
# Authentication
# ============================================

class AuthenticationFailure(HillstoneError):
    """Raised when the firewall rejects our credentials.

    Covers a rejected login, a session that fails its validation probe,
    and a second consecutive 401/403 after one re-authentication.
    """

    def __init__(
        self,
        message: str,
        attempts: Optional[int] = None,
        status_code: Optional[int] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if attempts is not None:
            details["attempts"] = attempts
        if status_code is not None:
            details["status_code"] = status_code
        kwargs.setdefault("recoverable", False)
        super().__init__(
            message,
            code="AUTHENTICATION_FAILURE",
            details=details,
            **kwargs,
        )
        self.attempts = attempts
        self.status_code = status_code


# ============================================
# Request Errors
# ============================================

class RequestFailure(HillstoneError):
    """Raised for a non-2xx response that is not an auth problem.

    Attributes:
        status_code: HTTP status code, None for transport-level failures
        endpoint: API endpoint that was called
        response_body: Raw response body (may be truncated in details)
    """

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        endpoint: Optional[str] = None,
        response_body: Optional[str] = None,
        method: str = "GET",
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if status_code is not None:
            details["status_code"] = status_code
        if endpoint:
            details["endpoint"] = endpoint
        if method:
            details["method"] = method
        if response_body:
            details["response_body"] = response_body[:500]

        kwargs.setdefault(
            "recoverable",
            status_code is not None and (status_code == 429 or status_code >= 500),
        )
        kwargs.setdefault(
            "code",
            f"REQUEST_FAILURE_{status_code}" if status_code else "REQUEST_FAILURE",
        )
        super().__init__(message, details=details, **kwargs)
        self.status_code = status_code
        self.endpoint = endpoint
        self.response_body = response_body
        self.method = method


class RateLimitError(RequestFailure):
    """Raised when the firewall answers 429.

    Attributes:
        retry_after: Seconds to wait before retrying, when the server said
    """

    def __init__(
        self,
        message: str = "Rate limit exceeded",
        retry_after: Optional[float] = None,
        **kwargs,
    ):
        kwargs.setdefault("status_code", 429)
        details = kwargs.pop("details", {})
        if retry_after is not None:
            details["retry_after_seconds"] = retry_after
        super().__init__(
            message,
            code="RATE_LIMIT_EXCEEDED",
            details=details,
            recoverable=True,
            **kwargs,
        )
        self.retry_after = retry_after


class ServerError(RequestFailure):
    """Raised when the firewall returns a 5xx."""

    def __init__(self, message: str = "Server error", **kwargs):
        kwargs.setdefault("status_code", 500)
        super().__init__(
            message,
            code="SERVER_ERROR",
            recoverable=True,
            **kwargs,
        )


class NetworkError(RequestFailure):
    """Base class for transport failures. Always worth a retry."""

    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("recoverable", True)
        kwargs.setdefault("code", "NETWORK_ERROR")
        super().__init__(message, **kwargs)


class ConnectionError(NetworkError):
    """Raised when the connection to the firewall fails."""

    def __init__(
        self,
        message: str = "Failed to connect to firewall",
        host: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if host:
            details["host"] = host
        super().__init__(message, code="CONNECTION_ERROR", details=details, **kwargs)


class TimeoutError(NetworkError):
    """Raised when a request exceeds its connect or read timeout."""

    def __init__(
        self,
        message: str = "Request timed out",
        timeout_seconds: Optional[float] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if timeout_seconds:
            details["timeout_seconds"] = timeout_seconds
        super().__init__(message, code="TIMEOUT_ERROR", details=details, **kwargs)


# ============================================
# Validation
# ============================================

class ValidationFailure(HillstoneError):
    """Raised when object data is rejected before any write."""

    def __init__(self, message: str, field: Optional[str] = None, **kwargs):
        details = kwargs.pop("details", {})
        if field:
            details["field"] = field
        super().__init__(
            message,
            code="VALIDATION_FAILURE",
            details=details,
            recoverable=False,
            **kwargs,
        )
        self.field = field


# ============================================
# Persistence
# ============================================

class PersistenceFailure(HillstoneError):
    """Base class for storage errors. The transaction is always rolled back."""

    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("recoverable", True)
        kwargs.setdefault("code", "PERSISTENCE_FAILURE")
        super().__init__(message, **kwargs)


class ConnectionPoolError(PersistenceFailure):
    """Raised when the connection pool is exhausted or unavailable."""

    def __init__(self, message: str = "Database connection pool error", **kwargs):
        super().__init__(message, code="CONNECTION_POOL_ERROR", **kwargs)


class TransactionError(PersistenceFailure):
    """Raised when a database transaction fails."""

    def __init__(
        self,
        message: str = "Database transaction failed",
        operation: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if operation:
            details["operation"] = operation
        super().__init__(message, code="TRANSACTION_ERROR", details=details, **kwargs)


class IntegrityError(PersistenceFailure):
    """Raised when a constraint is violated."""

    def __init__(
        self,
        message: str = "Database integrity error",
        constraint: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if constraint:
            details["constraint"] = constraint
        super().__init__(
            message,
            code="INTEGRITY_ERROR",
            details=details,
            recoverable=False,
            **kwargs,
        )


# ============================================
# Reconciliation
# ============================================

class ReconciliationFailure(HillstoneError):
    """Base class for engine-level failures."""

    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("code", "RECONCILIATION_FAILURE")
        super().__init__(message, **kwargs)


class ObjectNotFoundError(ReconciliationFailure):
    """Raised when a targeted sync asks for an object the firewall lacks."""

    def __init__(self, name: str, **kwargs):
        details = kwargs.pop("details", {})
        details["name"] = name
        super().__init__(
            f"Object '{name}' not found in API",
            code="OBJECT_NOT_FOUND",
            details=details,
            **kwargs,
        )
        self.name = name


class SyncCancelledError(ReconciliationFailure):
    """Raised when a sync is stopped at a batch boundary on request."""

    def __init__(self, message: str = "Sync cancelled", **kwargs):
        super().__init__(message, code="SYNC_CANCELLED", recoverable=True, **kwargs)


class SyncTimeoutError(ReconciliationFailure):
    """Raised when a sync runs past its deadline."""

    def __init__(
        self,
        message: str = "Sync exceeded its time limit",
        timeout_seconds: Optional[float] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if timeout_seconds:
            details["timeout_seconds"] = timeout_seconds
        super().__init__(
            message,
            code="SYNC_TIMEOUT",
            details=details,
            recoverable=True,
            **kwargs,
        )


# ============================================
# Error Aggregation
# ============================================

class ErrorCollector:
    """Collect per-object errors during a batch.

    Example:
        collector = ErrorCollector()
        for obj in batch:
            try:
                await process(obj)
            except HillstoneError as e:
                collector.add(e, context={"name": obj["name"]})
    """

    def __init__(self, max_errors: int = 100):
        self.errors: list[tuple[Exception, dict[str, Any]]] = []
        self.max_errors = max_errors
        self.total = 0

    def add(self, error: Exception, context: Optional[dict[str, Any]] = None):
        """Record an error. Only the first max_errors keep their detail."""
        self.total += 1
        if len(self.errors) < self.max_errors:
            self.errors.append((error, context or {}))

    def has_errors(self) -> bool:
        return self.total > 0

    def count(self) -> int:
        return self.total

    def summary(self, limit: int = 5) -> list[str]:
        """Short messages for the first few errors, for logs and reports."""
        lines = []
        for error, context in self.errors[:limit]:
            name = context.get("name")
            prefix = f"{name}: " if name else ""
            lines.append(f"{prefix}{str(error)[:200]}")
        return lines

    def clear(self):
        self.errors.clear()
        self.total = 0


__all__ = [
    "HillstoneError",
    "ConfigurationError",
    "AuthenticationFailure",
    "RequestFailure",
    "RateLimitError",
    "ServerError",
    "NetworkError",
    "ConnectionError",
    "TimeoutError",
    "ValidationFailure",
    "PersistenceFailure",
    "ConnectionPoolError",
    "TransactionError",
    "IntegrityError",
    "ReconciliationFailure",
    "ObjectNotFoundError",
    "SyncCancelledError",
    "SyncTimeoutError",
    "ErrorCollector",
]
