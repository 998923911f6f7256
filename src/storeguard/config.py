"""ABOUTME: Configuration management for the StoreGuard security core
ABOUTME: Loads environment variables and provides configuration objects and the security policy"""

import base64
import binascii
import logging
import os
import tempfile
from dataclasses import dataclass, field
from datetime import timedelta
from pathlib import Path

from cachelib.file import FileSystemCache
from dotenv import load_dotenv
from redis import Redis

load_dotenv()


class InvalidConfig(Exception):
    """Error for when the config is not valid"""


SQLITE_DB_URI = "sqlite:///:memory:"
DEV_SECRET_KEY = "dev-secret-key-change-in-production"  # noqa: S105


@dataclass(slots=True, kw_only=True)
class PostgresCfg:
    user: str
    password: str
    host: str
    port: int
    db_name: str

    def to_url(self) -> str:
        return f"postgresql://{self.user}:{self.password}@{self.host}:{self.port}/{self.db_name}"

    @classmethod
    def from_env(cls, default_db_name: str = "storeguard", user: str = "storeguard") -> "PostgresCfg":
        host = os.environ.get("DB_HOST", "localhost")
        default_port = 54321 if host == "localhost" else 5432
        return PostgresCfg(
            user=os.environ.get("DB_USER", user),
            password=os.environ.get("DB_PASSWORD", "abc123"),
            host=host,
            port=int(os.environ.get("DB_PORT", default_port)),
            db_name=os.environ.get("DB_NAME", default_db_name),
        )


def get_db_uri() -> str:
    return os.environ.get("DB_URI", PostgresCfg.from_env().to_url())


@dataclass(slots=True, kw_only=True)
class RedisCfg:
    host: str
    port: int
    db: str = ""

    def to_url(self) -> str:
        if self.db:
            return f"redis://{self.host}:{self.port}/{self.db}"
        return f"redis://{self.host}:{self.port}"

    @classmethod
    def from_env(cls) -> "RedisCfg":
        host = os.environ.get("REDIS_HOST", "localhost")
        default_port = 63791 if host == "localhost" else 6379
        port = int(os.environ.get("REDIS_PORT", default_port))
        return RedisCfg(host=host, port=port, db=os.environ.get("REDIS_DB", ""))


def to_bool(value: str | None, context_str: str = "") -> bool:
    """
    Convert string to boolean. Valid options (after stripping whitespace and making lower-case)
    - False: "false", "no", "off", "0", None, ""
    - True: "true", "yes", "on", "1"

    The `context_str` is there for the error message, to help find the issue.
    """
    if value is None:
        return False
    value = value.lower().strip()
    if value in ("false", "no", "off", "0", ""):
        return False
    if value in ("true", "yes", "on", "1"):
        return True
    raise ValueError(
        f"Cannot convert '{context_str}{value}' to boolean. Valid values are: true/false, 1/0, yes/no, on/off (case-insensitive)"
    )


def bool_environ_get(name: str, default: str = "") -> bool:
    return to_bool(os.environ.get(name, default), context_str=f"{name}=")


def get_log_level() -> int:
    level_name = os.environ.get("LOG_LEVEL", "INFO").upper().strip()
    level = logging.getLevelNamesMapping().get(level_name)
    if level is None:
        raise InvalidConfig(f"Unknown LOG_LEVEL '{level_name}'")
    return level


def is_development() -> bool:
    return os.environ.get("FLASK_ENV", "development").lower().strip() == "development"


def should_log_all_requests() -> bool:
    return bool_environ_get("LOG_ALL_REQUESTS")


def get_counter_store_backend() -> str:
    """Which shared store backs the cache and rate-limit windows: "redis" or "memory"."""
    backend = os.environ.get("COUNTER_STORE", "redis").lower().strip()
    if backend not in ("redis", "memory"):
        raise InvalidConfig(f"COUNTER_STORE must be 'redis' or 'memory', not '{backend}'")
    return backend


def get_totp_encryption_key() -> bytes:
    """Master key for encrypting TOTP secrets at rest, base64 encoded in the environment."""
    encoded_key = os.environ.get("TOTP_ENCRYPTION_KEY", "")
    if not encoded_key:
        raise ValueError("TOTP_ENCRYPTION_KEY environment variable must be set")
    try:
        key = base64.b64decode(encoded_key, validate=True)
    except binascii.Error as error:
        raise ValueError("TOTP_ENCRYPTION_KEY must be valid base64") from error
    if len(key) != 32:
        raise ValueError("TOTP_ENCRYPTION_KEY must decode to 32 bytes")
    return key


@dataclass(slots=True, kw_only=True, frozen=True)
class EndpointLimit:
    max_requests: int
    window: timedelta


DEFAULT_ENDPOINT_LIMIT = EndpointLimit(max_requests=100, window=timedelta(minutes=1))

# Tighter limits for the endpoints that get brute forced
DEFAULT_ENDPOINT_LIMITS: dict[str, EndpointLimit] = {
    "/api/auth/login": EndpointLimit(max_requests=5, window=timedelta(minutes=5)),
    "/api/auth/register": EndpointLimit(max_requests=3, window=timedelta(minutes=10)),
    "/api/auth/forgot-password": EndpointLimit(max_requests=3, window=timedelta(minutes=15)),
    "/api/auth/reset-password": EndpointLimit(max_requests=5, window=timedelta(minutes=15)),
    "/api/security/2fa/verify": EndpointLimit(max_requests=5, window=timedelta(minutes=5)),
    "/api/security/2fa/setup": EndpointLimit(max_requests=3, window=timedelta(minutes=10)),
    "/api/orders": EndpointLimit(max_requests=30, window=timedelta(minutes=1)),
    "/api/reviews": EndpointLimit(max_requests=10, window=timedelta(minutes=1)),
}

# Every request under these prefixes gets its own audit entry
DEFAULT_AUDITED_PATH_PREFIXES = ("/api/auth", "/api/orders", "/api/admin", "/api/security", "/api/users")


@dataclass(slots=True, kw_only=True)
class SecurityPolicy:
    """Limits, thresholds and failure policies of the security core."""

    ip_cache_ttl: timedelta = timedelta(minutes=5)
    # extra life given to a rate-limit key beyond its window
    rate_limit_key_grace: timedelta = timedelta(minutes=1)
    escalation_multiplier: int = 3
    auto_block_hours: int = 1
    auto_block_reason: str = "Rate limit exceeded multiple times"
    max_failed_2fa_attempts: int = 5
    two_factor_lockout: timedelta = timedelta(minutes=15)
    recovery_code_count: int = 10
    totp_issuer: str = "StoreGuard"
    totp_valid_window: int = 1
    ip_check_fail_closed: bool = True
    rate_limit_fail_open: bool = True
    session_token_hours: int = 168
    session_token_secret: str = field(default=DEV_SECRET_KEY, repr=False)
    endpoint_limits: dict[str, EndpointLimit] = field(default_factory=lambda: dict(DEFAULT_ENDPOINT_LIMITS))
    default_limit: EndpointLimit = DEFAULT_ENDPOINT_LIMIT
    inspect_request_content: bool = True
    audit_requests: bool = True
    audited_path_prefixes: tuple[str, ...] = DEFAULT_AUDITED_PATH_PREFIXES

    def limit_for(self, endpoint: str) -> EndpointLimit:
        """Exact match first, then the longest matching prefix, then the default."""
        path = endpoint.lower()
        if path in self.endpoint_limits:
            return self.endpoint_limits[path]
        prefixes = [prefix for prefix in self.endpoint_limits if path.startswith(prefix)]
        if prefixes:
            return self.endpoint_limits[max(prefixes, key=len)]
        return self.default_limit

    @classmethod
    def from_env(cls) -> "SecurityPolicy":
        return SecurityPolicy(
            ip_cache_ttl=timedelta(seconds=int(os.environ.get("IP_CACHE_TTL_SECONDS", "300"))),
            escalation_multiplier=int(os.environ.get("RATE_LIMIT_ESCALATION_MULTIPLIER", "3")),
            auto_block_hours=int(os.environ.get("RATE_LIMIT_AUTO_BLOCK_HOURS", "1")),
            max_failed_2fa_attempts=int(os.environ.get("TWO_FACTOR_MAX_FAILED_ATTEMPTS", "5")),
            two_factor_lockout=timedelta(minutes=int(os.environ.get("TWO_FACTOR_LOCKOUT_MINUTES", "15"))),
            totp_issuer=os.environ.get("TWO_FACTOR_ISSUER", "StoreGuard"),
            ip_check_fail_closed=bool_environ_get("IP_CHECK_FAIL_CLOSED", "true"),
            rate_limit_fail_open=bool_environ_get("RATE_LIMIT_FAIL_OPEN", "true"),
            inspect_request_content=bool_environ_get("INSPECT_REQUEST_CONTENT", "true"),
            audit_requests=bool_environ_get("AUDIT_REQUESTS", "true"),
            # 168 = 24 * 7 - so 7 days
            session_token_hours=int(os.environ.get("SESSION_TOKEN_HOURS", "168")),
            session_token_secret=os.environ.get("SESSION_TOKEN_SECRET", os.environ.get("SECRET_KEY", DEV_SECRET_KEY)),
        )


class FlaskBaseConfig:
    """Base configuration class that loads from environment variables."""

    TESTING = False

    def __init__(self) -> None:
        self.SQLALCHEMY_DATABASE_URI = get_db_uri()
        self.SECRET_KEY: str = os.environ.get("SECRET_KEY", DEV_SECRET_KEY)
        self.FLASK_ENV: str = os.environ.get("FLASK_ENV", "development")
        self.DEBUG: bool = to_bool(os.environ.get("DEBUG", "False"), context_str="DEBUG=")
        self.FORCE_HTTPS: bool = bool_environ_get("FORCE_HTTPS")
        self.COUNTER_STORE: str = get_counter_store_backend()
        # only used by the in-process store, Redis expires keys itself
        self.COUNTER_STORE_SWEEP_SECONDS = int(os.environ.get("COUNTER_STORE_SWEEP_SECONDS", "60"))
        self.SECURITY_POLICY = SecurityPolicy.from_env()


class FlaskConfig(FlaskBaseConfig):
    def __init__(self) -> None:
        super().__init__()
        # Session configuration
        redis_cfg = RedisCfg.from_env()
        self.SESSION_TYPE = "redis"
        self.SESSION_REDIS = Redis(host=redis_cfg.host, port=redis_cfg.port)


class FlaskTestSQLiteConfig(FlaskBaseConfig):
    """Test configuration that uses SQLite in-memory database."""

    TESTING = True

    def __init__(self) -> None:
        super().__init__()
        self.SQLALCHEMY_DATABASE_URI = SQLITE_DB_URI
        self.SECRET_KEY = "test-secret-key-aockgn298zx081238"  # noqa: S105
        self.FLASK_ENV = "testing"
        self.COUNTER_STORE = "memory"
        self.COUNTER_STORE_SWEEP_SECONDS = 0
        self.SECURITY_POLICY.session_token_secret = "test-session-secret-0123456789abcdef"  # noqa: S105

        # Use filesystem for session cache for testing
        self.SESSION_TYPE = "cachelib"
        session_file_dir = Path(tempfile.gettempdir()) / "storeguard_session"
        session_file_dir.mkdir(exist_ok=True)
        self.SESSION_CACHELIB = FileSystemCache(str(session_file_dir))


class FlaskProductionConfig(FlaskConfig):
    """Production configuration with stricter defaults."""

    def __init__(self) -> None:
        super().__init__()
        self.FLASK_ENV = "production"

        # Ensure production has proper secret key
        if self.SECRET_KEY == DEV_SECRET_KEY:
            raise InvalidConfig("SECRET_KEY must be set in production")
        if self.SECURITY_POLICY.session_token_secret == DEV_SECRET_KEY:
            raise InvalidConfig("SESSION_TOKEN_SECRET or SECRET_KEY must be set in production")


def get_config(config_name: str = "") -> FlaskBaseConfig:
    """Return the appropriate configuration based on FLASK_ENV or config_name."""
    env = config_name.strip() or os.environ.get("FLASK_ENV", "development")
    env = env.lower().strip()

    config_classes = {
        "development": FlaskConfig,
        "testing": FlaskTestSQLiteConfig,
        "testing_sqlite": FlaskTestSQLiteConfig,
        "production": FlaskProductionConfig,
    }

    # Fall back to development if unknown config
    config_cls = config_classes.get(env, FlaskConfig)
    return config_cls()
