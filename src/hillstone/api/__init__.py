"""Hillstone API modules.

This package provides the HTTP client, session handling and the shared
infrastructure (database pool, cache, error types) used by the sync layer.

Classes:
    HillstoneClient: HTTP client with rate limiting, retry and session replay
    SessionManager: Cookie session login and caching
    TokenBucketRateLimiter: Client-side request pacing
    RetryPolicy: Backoff configuration for retry_async

Cache:
    ICacheStore: TTL cache interface
    InMemoryCache: Process-local cache
    PostgresCache: Cache table shared across processes
    AdvisoryLock: Named lock on top of a cache

Exceptions:
    HillstoneError: Base exception for all errors
    ConfigurationError: Missing or invalid configuration
    AuthenticationFailure: Login rejected or session replay refused
    RequestFailure: API request failures
    RateLimitError: Rate limit exceeded
    NetworkError: Network connectivity issues
    ValidationFailure: Object data rejected before storage
    PersistenceFailure: Database operation failures
    ReconciliationFailure: Sync run failures
"""
from .auth import Session, SessionManager
from .cache import AdvisoryLock, ICacheStore, InMemoryCache, PostgresCache
from .client import HillstoneClient
from .database import (
    apply_schema,
    check_database_health,
    close_pool,
    create_pool,
    database_connection,
    database_transaction,
)
from .exceptions import (
    AuthenticationFailure,
    ConfigurationError,
    ConnectionPoolError,
    ErrorCollector,
    HillstoneError,
    IntegrityError,
    NetworkError,
    ObjectNotFoundError,
    PersistenceFailure,
    RateLimitError,
    ReconciliationFailure,
    RequestFailure,
    ServerError,
    SyncCancelledError,
    SyncTimeoutError,
    TransactionError,
    ValidationFailure,
)
from .normalizer import normalize_object
from .rate_limit import TokenBucketRateLimiter
from .resilience import RetryPolicy, retry_async
from .sanitizer import LogSanitizer, get_sanitizer

__all__ = [
    # Client
    "HillstoneClient",
    "Session",
    "SessionManager",
    "TokenBucketRateLimiter",
    "RetryPolicy",
    "retry_async",
    "normalize_object",
    # Cache
    "ICacheStore",
    "InMemoryCache",
    "PostgresCache",
    "AdvisoryLock",
    # Database
    "create_pool",
    "close_pool",
    "apply_schema",
    "check_database_health",
    "database_connection",
    "database_transaction",
    # Logging
    "LogSanitizer",
    "get_sanitizer",
    # Exceptions
    "HillstoneError",
    "ConfigurationError",
    "AuthenticationFailure",
    "RequestFailure",
    "RateLimitError",
    "ServerError",
    "NetworkError",
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
