"""ABOUTME: Unit tests for StoreGuard configuration module
ABOUTME: Tests environment variable loading, the security policy and configuration class behavior"""

import base64
import logging
from datetime import timedelta
from typing import ClassVar

import pytest

from storeguard.config import (
    DEFAULT_AUDITED_PATH_PREFIXES,
    DEV_SECRET_KEY,
    EndpointLimit,
    FlaskConfig,
    FlaskProductionConfig,
    FlaskTestSQLiteConfig,
    InvalidConfig,
    PostgresCfg,
    RedisCfg,
    SecurityPolicy,
    get_config,
    get_counter_store_backend,
    get_log_level,
    get_totp_encryption_key,
    to_bool,
)


class TestToBool:
    test_values: ClassVar = [
        ("true", True),
        ("True", True),
        ("TRUE", True),
        ("false", False),
        ("False", False),
        ("1", True),
        ("0", False),
        ("yes", True),
        ("no", False),
        ("on", True),
        ("off", False),
        ("", False),
        (None, False),
        ("  true  ", True),  # Test whitespace handling
    ]

    @pytest.mark.parametrize("bool_str,expected", test_values)
    def test_to_bool(self, bool_str: str, expected: bool) -> None:
        assert to_bool(bool_str) == expected

    def test_invalid_value_names_the_setting(self) -> None:
        with pytest.raises(ValueError, match="RATE_LIMIT_FAIL_OPEN=maybe"):
            to_bool("maybe", context_str="RATE_LIMIT_FAIL_OPEN=")


class TestConnectionConfig:
    def test_postgres_url(self, temp_env_vars):
        temp_env_vars(DB_HOST="db", DB_USER="shop", DB_PASSWORD="pw", DB_NAME="guard")  # pragma: allowlist secret

        assert PostgresCfg.from_env().to_url() == "postgresql://shop:pw@db:5432/guard"

    def test_redis_url_with_db(self, temp_env_vars):
        temp_env_vars(REDIS_HOST="cache", REDIS_PORT="6380", REDIS_DB="2")

        assert RedisCfg.from_env().to_url() == "redis://cache:6380/2"

    def test_redis_defaults_to_local_dev_port(self, clear_env_vars):
        clear_env_vars("REDIS_HOST", "REDIS_PORT", "REDIS_DB")

        assert RedisCfg.from_env().to_url() == "redis://localhost:63791"


class TestEnvironmentSettings:
    def test_log_level(self, temp_env_vars):
        temp_env_vars(LOG_LEVEL="warning")

        assert get_log_level() == logging.WARNING

    def test_unknown_log_level(self, temp_env_vars):
        temp_env_vars(LOG_LEVEL="chatty")

        with pytest.raises(InvalidConfig, match="LOG_LEVEL"):
            get_log_level()

    def test_counter_store_backend(self, temp_env_vars):
        temp_env_vars(COUNTER_STORE="Memory")

        assert get_counter_store_backend() == "memory"

    def test_unknown_counter_store_backend(self, temp_env_vars):
        temp_env_vars(COUNTER_STORE="memcached")

        with pytest.raises(InvalidConfig, match="COUNTER_STORE"):
            get_counter_store_backend()


class TestTotpEncryptionKey:
    def test_valid_key(self, temp_env_vars):
        raw_key = b"k" * 32
        temp_env_vars(TOTP_ENCRYPTION_KEY=base64.b64encode(raw_key).decode())

        assert get_totp_encryption_key() == raw_key

    def test_missing_key(self, clear_env_vars):
        clear_env_vars("TOTP_ENCRYPTION_KEY")

        with pytest.raises(ValueError, match="must be set"):
            get_totp_encryption_key()

    def test_key_must_be_base64(self, temp_env_vars):
        temp_env_vars(TOTP_ENCRYPTION_KEY="not base64!")

        with pytest.raises(ValueError, match="base64"):
            get_totp_encryption_key()

    def test_key_must_be_32_bytes(self, temp_env_vars):
        temp_env_vars(TOTP_ENCRYPTION_KEY=base64.b64encode(b"short").decode())

        with pytest.raises(ValueError, match="32 bytes"):
            get_totp_encryption_key()


class TestSecurityPolicy:
    """Test the SecurityPolicy defaults and overrides."""

    def test_defaults(self):
        policy = SecurityPolicy()

        assert policy.ip_cache_ttl == timedelta(minutes=5)
        assert policy.escalation_multiplier == 3
        assert policy.auto_block_hours == 1
        assert policy.max_failed_2fa_attempts == 5
        assert policy.two_factor_lockout == timedelta(minutes=15)
        assert policy.recovery_code_count == 10
        assert policy.ip_check_fail_closed is True
        assert policy.rate_limit_fail_open is True

    def test_secret_is_not_in_repr(self):
        assert "super-secret" not in repr(SecurityPolicy(session_token_secret="super-secret"))  # noqa: S106

    def test_from_env(self, temp_env_vars):
        temp_env_vars(
            IP_CACHE_TTL_SECONDS="60",
            RATE_LIMIT_ESCALATION_MULTIPLIER="4",
            RATE_LIMIT_AUTO_BLOCK_HOURS="2",
            TWO_FACTOR_MAX_FAILED_ATTEMPTS="3",
            TWO_FACTOR_LOCKOUT_MINUTES="30",
            IP_CHECK_FAIL_CLOSED="false",
            RATE_LIMIT_FAIL_OPEN="no",
            SESSION_TOKEN_SECRET="token-secret",  # pragma: allowlist secret
        )

        policy = SecurityPolicy.from_env()

        assert policy.ip_cache_ttl == timedelta(seconds=60)
        assert policy.escalation_multiplier == 4
        assert policy.auto_block_hours == 2
        assert policy.max_failed_2fa_attempts == 3
        assert policy.two_factor_lockout == timedelta(minutes=30)
        assert policy.ip_check_fail_closed is False
        assert policy.rate_limit_fail_open is False
        assert policy.session_token_secret == "token-secret"  # noqa: S105

    def test_request_hooks_are_on_by_default(self):
        policy = SecurityPolicy()

        assert policy.inspect_request_content is True
        assert policy.audit_requests is True
        assert policy.audited_path_prefixes == DEFAULT_AUDITED_PATH_PREFIXES

    def test_request_hooks_from_env(self, temp_env_vars):
        temp_env_vars(INSPECT_REQUEST_CONTENT="false", AUDIT_REQUESTS="0")

        policy = SecurityPolicy.from_env()

        assert policy.inspect_request_content is False
        assert policy.audit_requests is False


class TestLimitFor:
    @pytest.fixture
    def policy(self):
        return SecurityPolicy(
            endpoint_limits={
                "/api/auth": EndpointLimit(max_requests=20, window=timedelta(minutes=1)),
                "/api/auth/login": EndpointLimit(max_requests=5, window=timedelta(minutes=5)),
            },
            default_limit=EndpointLimit(max_requests=100, window=timedelta(minutes=1)),
        )

    def test_exact_match(self, policy):
        assert policy.limit_for("/api/auth/login").max_requests == 5

    def test_match_ignores_case(self, policy):
        assert policy.limit_for("/API/Auth/Login").max_requests == 5

    def test_longest_prefix_wins(self, policy):
        assert policy.limit_for("/api/auth/login/verify").max_requests == 5
        assert policy.limit_for("/api/auth/register").max_requests == 20

    def test_default_limit(self, policy):
        assert policy.limit_for("/api/products/42").max_requests == 100

    def test_built_in_limits(self):
        policy = SecurityPolicy()

        assert policy.limit_for("/api/auth/login") == EndpointLimit(max_requests=5, window=timedelta(minutes=5))
        assert policy.limit_for("/api/security/2fa/verify").max_requests == 5


class TestFlaskConfig:
    """Test the Flask configuration classes."""

    def test_get_config_testing(self):
        config = get_config("testing")

        assert isinstance(config, FlaskTestSQLiteConfig)
        assert config.TESTING is True
        assert config.COUNTER_STORE == "memory"
        assert config.SQLALCHEMY_DATABASE_URI == "sqlite:///:memory:"
        assert config.COUNTER_STORE_SWEEP_SECONDS == 0

    def test_counter_store_sweep_interval(self, temp_env_vars):
        temp_env_vars(COUNTER_STORE_SWEEP_SECONDS="30")

        assert FlaskConfig().COUNTER_STORE_SWEEP_SECONDS == 30

    def test_get_config_uses_flask_env(self, temp_env_vars):
        temp_env_vars(FLASK_ENV="testing")

        assert isinstance(get_config(), FlaskTestSQLiteConfig)

    def test_unknown_config_falls_back_to_development(self):
        assert type(get_config("staging")) is FlaskConfig

    def test_production_config_with_secret_key(self, temp_env_vars):
        """Test that ProductionConfig works with proper SECRET_KEY."""
        temp_env_vars(SECRET_KEY="production-secret-key")  # pragma: allowlist secret

        config = FlaskProductionConfig()

        assert config.SECRET_KEY == "production-secret-key"  # pragma: allowlist secret
        assert config.SECURITY_POLICY.session_token_secret == "production-secret-key"  # noqa: S105

    def test_production_config_without_secret_key(self, clear_env_vars):
        """Test that ProductionConfig raises error without proper SECRET_KEY."""
        clear_env_vars("SECRET_KEY", "SESSION_TOKEN_SECRET")

        with pytest.raises(InvalidConfig, match="SECRET_KEY must be set in production"):
            FlaskProductionConfig()

    def test_dev_secret_is_the_fallback(self, clear_env_vars):
        clear_env_vars("SECRET_KEY")

        assert FlaskConfig().SECRET_KEY == DEV_SECRET_KEY
