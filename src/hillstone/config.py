"""Runtime settings for the Hillstone synchronizer.

Settings come from the process environment (a local .env file is loaded
first when present) and are grouped the same way the firewall integration
thinks about them: connection, authentication, sync behaviour, rate
limiting, cache naming and request logging.

Example:
    settings = Settings.from_env()
    settings.validate()
    async with HillstoneClient(settings, sessions) as client:
        ...
"""
import os
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from dotenv import load_dotenv

from .api.exceptions import ConfigurationError

load_dotenv()


class ConflictPolicy(str, Enum):
    """What to do when a remote object already exists locally."""

    LATEST_WINS = "latest_wins"
    SKIP_EXISTING = "skip_existing"


class BackoffStrategy(str, Enum):
    LINEAR = "linear"
    EXPONENTIAL = "exponential"


# ============================================
# Environment helpers
# ============================================

def _env_str(name: str, default: Optional[str] = None) -> Optional[str]:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    return value.strip()


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    return value.strip().lower() in ("true", "1", "yes", "on")


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    try:
        return int(value)
    except ValueError as e:
        raise ConfigurationError(f"{name} must be an integer, got {value!r}", cause=e)


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    try:
        return float(value)
    except ValueError as e:
        raise ConfigurationError(f"{name} must be a number, got {value!r}", cause=e)


def _env_enum(name: str, enum_cls, default):
    value = _env_str(name)
    if value is None:
        return default
    try:
        return enum_cls(value.lower())
    except ValueError as e:
        allowed = ", ".join(m.value for m in enum_cls)
        raise ConfigurationError(f"{name} must be one of: {allowed}", cause=e)


# ============================================
# Settings groups
# ============================================

@dataclass
class ConnectionSettings:
    domain: Optional[str] = None
    base_url: Optional[str] = None
    timeout: float = 30.0
    connect_timeout: float = 10.0
    read_timeout: float = 30.0
    verify_ssl: bool = True

    @classmethod
    def from_env(cls) -> "ConnectionSettings":
        base_url = _env_str("HILLSTONE_BASE_URL")
        return cls(
            domain=_env_str("HILLSTONE_DOMAIN"),
            base_url=base_url.rstrip("/") if base_url else None,
            timeout=_env_float("HILLSTONE_TIMEOUT", 30.0),
            connect_timeout=_env_float("HILLSTONE_CONNECT_TIMEOUT", 10.0),
            read_timeout=_env_float("HILLSTONE_READ_TIMEOUT", 30.0),
            verify_ssl=_env_bool("HILLSTONE_VERIFY_SSL", True),
        )


@dataclass
class AuthSettings:
    username: Optional[str] = None
    password: Optional[str] = field(default=None, repr=False)
    token_cache_ttl: int = 1200
    max_auth_attempts: int = 3
    auth_retry_delay: float = 5.0
    validate_session: bool = True

    @classmethod
    def from_env(cls) -> "AuthSettings":
        return cls(
            username=_env_str("HILLSTONE_USERNAME"),
            password=_env_str("HILLSTONE_PASSWORD"),
            token_cache_ttl=_env_int("HILLSTONE_TOKEN_CACHE_TTL", 1200),
            max_auth_attempts=_env_int("HILLSTONE_MAX_AUTH_ATTEMPTS", 3),
            auth_retry_delay=_env_float("HILLSTONE_AUTH_RETRY_DELAY", 5.0),
            validate_session=_env_bool("HILLSTONE_VALIDATE_SESSION", True),
        )


@dataclass
class SyncSettings:
    batch_size: int = 100
    retry_attempts: int = 3
    retry_delay: float = 5.0
    retry_multiplier: float = 2.0
    max_retry_delay: float = 60.0
    cleanup_after_days: int = 30
    cleanup_stale: bool = True
    prevent_concurrent_syncs: bool = True
    sync_timeout: float = 300.0
    conflict_resolution: ConflictPolicy = ConflictPolicy.LATEST_WINS

    @classmethod
    def from_env(cls) -> "SyncSettings":
        return cls(
            batch_size=_env_int("HILLSTONE_BATCH_SIZE", 100),
            retry_attempts=_env_int("HILLSTONE_RETRY_ATTEMPTS", 3),
            retry_delay=_env_float("HILLSTONE_RETRY_DELAY", 5.0),
            retry_multiplier=_env_float("HILLSTONE_RETRY_MULTIPLIER", 2.0),
            max_retry_delay=_env_float("HILLSTONE_MAX_RETRY_DELAY", 60.0),
            cleanup_after_days=_env_int("HILLSTONE_CLEANUP_AFTER_DAYS", 30),
            cleanup_stale=_env_bool("HILLSTONE_CLEANUP_STALE", True),
            prevent_concurrent_syncs=_env_bool("HILLSTONE_PREVENT_CONCURRENT_SYNCS", True),
            sync_timeout=_env_float("HILLSTONE_SYNC_TIMEOUT", 300.0),
            conflict_resolution=_env_enum(
                "HILLSTONE_CONFLICT_RESOLUTION", ConflictPolicy, ConflictPolicy.LATEST_WINS
            ),
        )


@dataclass
class RateLimitSettings:
    enabled: bool = True
    requests_per_minute: int = 60
    burst_limit: int = 10
    backoff_strategy: BackoffStrategy = BackoffStrategy.EXPONENTIAL

    @classmethod
    def from_env(cls) -> "RateLimitSettings":
        return cls(
            enabled=_env_bool("HILLSTONE_RATE_LIMIT_ENABLED", True),
            requests_per_minute=_env_int("HILLSTONE_RATE_LIMIT_REQUESTS_PER_MINUTE", 60),
            burst_limit=_env_int("HILLSTONE_RATE_LIMIT_BURST_LIMIT", 10),
            backoff_strategy=_env_enum(
                "HILLSTONE_RATE_LIMIT_BACKOFF_STRATEGY",
                BackoffStrategy,
                BackoffStrategy.EXPONENTIAL,
            ),
        )


@dataclass
class CacheSettings:
    prefix: str = "hillstone_"

    @property
    def auth_token_key(self) -> str:
        return f"{self.prefix}auth_token"

    @classmethod
    def from_env(cls) -> "CacheSettings":
        return cls(prefix=_env_str("HILLSTONE_CACHE_PREFIX", "hillstone_"))


@dataclass
class LoggingSettings:
    log_requests: bool = False
    log_responses: bool = False

    @classmethod
    def from_env(cls) -> "LoggingSettings":
        return cls(
            log_requests=_env_bool("HILLSTONE_LOG_REQUESTS", False),
            log_responses=_env_bool("HILLSTONE_LOG_RESPONSES", False),
        )


@dataclass
class Settings:
    """Every knob the synchronizer reads, grouped by concern."""

    connection: ConnectionSettings = field(default_factory=ConnectionSettings)
    auth: AuthSettings = field(default_factory=AuthSettings)
    sync: SyncSettings = field(default_factory=SyncSettings)
    rate_limiting: RateLimitSettings = field(default_factory=RateLimitSettings)
    cache: CacheSettings = field(default_factory=CacheSettings)
    logging: LoggingSettings = field(default_factory=LoggingSettings)
    database_url: Optional[str] = field(default=None, repr=False)

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            connection=ConnectionSettings.from_env(),
            auth=AuthSettings.from_env(),
            sync=SyncSettings.from_env(),
            rate_limiting=RateLimitSettings.from_env(),
            cache=CacheSettings.from_env(),
            logging=LoggingSettings.from_env(),
            database_url=_env_str("DATABASE_URL"),
        )

    def missing_keys(self) -> list[str]:
        """Names of required settings that are unset."""
        required = {
            "HILLSTONE_DOMAIN": self.connection.domain,
            "HILLSTONE_BASE_URL": self.connection.base_url,
            "HILLSTONE_USERNAME": self.auth.username,
            "HILLSTONE_PASSWORD": self.auth.password,
        }
        return [key for key, value in required.items() if not value]

    def validate(self) -> None:
        """Raise ConfigurationError if anything required is missing or nonsensical."""
        missing = self.missing_keys()
        if missing:
            raise ConfigurationError(
                f"Missing required configuration: {', '.join(missing)}",
                missing_keys=missing,
            )
        if self.sync.batch_size < 1:
            raise ConfigurationError("HILLSTONE_BATCH_SIZE must be at least 1")
        if self.auth.max_auth_attempts < 1:
            raise ConfigurationError("HILLSTONE_MAX_AUTH_ATTEMPTS must be at least 1")
        if self.sync.retry_attempts < 1:
            raise ConfigurationError("HILLSTONE_RETRY_ATTEMPTS must be at least 1")
