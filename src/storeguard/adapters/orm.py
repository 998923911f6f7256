"""ABOUTME: SQLAlchemy table definitions and imperative mapping for StoreGuard
ABOUTME: Defines the users, IP reputation, audit log and two-factor credential tables"""

import uuid
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from sqlalchemy import JSON, TIMESTAMP, Boolean, Column, ForeignKey, Index, Integer, String, Table, Text, TypeDecorator
from sqlalchemy.dialects.postgresql import UUID as PostgresUUID
from sqlalchemy.engine.interfaces import Dialect
from sqlalchemy.orm import registry
from sqlalchemy.sql.sqltypes import String as SQLString

from storeguard.domain.value_objects import AuditAction, AuditCategory, GlobalRole, RiskLevel


def aware_utcnow() -> datetime:  # pragma: no cover
    return datetime.now(UTC)


class EnumAsString(TypeDecorator):
    """Custom type for storing Python Enums as strings."""

    impl = String
    cache_ok = True

    def __init__(self, enum_class: type[Enum], *args: Any, **kwargs: Any) -> None:
        self.enum_class = enum_class
        super().__init__(*args, **kwargs)

    def process_bind_param(self, value: Any, dialect: Dialect) -> str | None:
        if value is None:  # pragma: no cover
            return value
        return value.value if hasattr(value, "value") else str(value)

    def process_result_value(self, value: Any, dialect: Dialect) -> Any:
        if value is None:  # pragma: no cover
            return value
        return self.enum_class(value)


class TZAwareDatetime(TypeDecorator):
    """Custom type for timezone-aware datetime objects."""

    impl = TIMESTAMP
    cache_ok = True

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        kwargs.setdefault("timezone", True)
        super().__init__(*args, **kwargs)

    def process_result_value(self, value: Any, dialect: Dialect) -> datetime | None:
        if value is None:
            return value

        # SQLite hands back naive datetimes, they were stored as UTC
        if isinstance(value, datetime) and value.tzinfo is None:
            return value.replace(tzinfo=UTC)

        return value


class CrossDatabaseUUID(TypeDecorator):
    """Cross-database UUID type that works with both PostgreSQL and SQLite."""

    impl = SQLString
    cache_ok = True

    def load_dialect_impl(self, dialect: Dialect) -> Any:
        if dialect.name == "postgresql":
            return dialect.type_descriptor(PostgresUUID(as_uuid=True))
        return dialect.type_descriptor(SQLString(36))

    def process_bind_param(self, value: Any, dialect: Dialect) -> str | uuid.UUID | None:
        if value is None:
            return value
        if isinstance(value, str):
            value = uuid.UUID(value)
        if not isinstance(value, uuid.UUID):
            raise TypeError(f"Expected UUID or string, got {type(value)}")
        return value if dialect.name == "postgresql" else str(value)

    def process_result_value(self, value: Any, dialect: Dialect) -> uuid.UUID | None:
        if value is None or isinstance(value, uuid.UUID):
            return value
        return uuid.UUID(str(value))


mapper_registry = registry()
metadata = mapper_registry.metadata

users = Table(
    "users",
    metadata,
    Column("id", CrossDatabaseUUID(), primary_key=True, default=uuid.uuid4),
    Column("email", String(255), nullable=False, unique=True),
    Column("password_hash", String(255), nullable=False),
    Column("first_name", String(100), nullable=False, default=""),
    Column("last_name", String(100), nullable=False, default=""),
    Column("global_role", EnumAsString(GlobalRole, 50), nullable=False),
    Column("created_at", TZAwareDatetime(), nullable=False, default=aware_utcnow),
    Column("is_active", Boolean, nullable=False, default=True),
)

ip_blocks = Table(
    "ip_blocks",
    metadata,
    Column("id", CrossDatabaseUUID(), primary_key=True, default=uuid.uuid4),
    # long enough for an IPv6 address with a zone
    Column("ip_address", String(64), nullable=False, unique=True),
    Column("reason", String(500), nullable=False),
    Column("created_by", CrossDatabaseUUID(), ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
    Column("is_automatic", Boolean, nullable=False, default=False),
    Column("expires_at", TZAwareDatetime(), nullable=True),
    Column("is_active", Boolean, nullable=False, default=True),
    Column("created_at", TZAwareDatetime(), nullable=False, default=aware_utcnow),
    Column("updated_at", TZAwareDatetime(), nullable=False, default=aware_utcnow),
)

ip_whitelist = Table(
    "ip_whitelist",
    metadata,
    Column("id", CrossDatabaseUUID(), primary_key=True, default=uuid.uuid4),
    Column("ip_address", String(64), nullable=False, unique=True),
    Column("description", String(500), nullable=True),
    Column("added_by", CrossDatabaseUUID(), ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
    Column("is_active", Boolean, nullable=False, default=True),
    Column("created_at", TZAwareDatetime(), nullable=False, default=aware_utcnow),
)

# No foreign key on user_id: the trail outlives the accounts it mentions
audit_log = Table(
    "audit_log",
    metadata,
    Column("id", CrossDatabaseUUID(), primary_key=True, default=uuid.uuid4),
    Column("user_id", CrossDatabaseUUID(), nullable=True),
    Column("user_email", String(255), nullable=True),
    Column("action", EnumAsString(AuditAction, 50), nullable=False),
    Column("category", EnumAsString(AuditCategory, 50), nullable=False),
    Column("entity_type", String(100), nullable=True),
    Column("entity_id", String(100), nullable=True),
    Column("before_value", JSON, nullable=True),
    Column("after_value", JSON, nullable=True),
    Column("details", JSON, nullable=True),
    Column("ip_address", String(64), nullable=True),
    Column("user_agent", String(500), nullable=True),
    Column("endpoint", String(500), nullable=True),
    Column("http_method", String(10), nullable=True),
    Column("is_successful", Boolean, nullable=False, default=True),
    Column("error_message", Text, nullable=True),
    Column("risk_level", EnumAsString(RiskLevel, 20), nullable=False),
    Column("created_at", TZAwareDatetime(), nullable=False, default=aware_utcnow),
)

two_factor_credentials = Table(
    "two_factor_credentials",
    metadata,
    Column("user_id", CrossDatabaseUUID(), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
    Column("secret_encrypted", Text, nullable=False),
    Column("recovery_code_hashes", JSON, nullable=False, default=list),
    Column("is_enabled", Boolean, nullable=False, default=False),
    Column("used_recovery_code_count", Integer, nullable=False, default=0),
    Column("failed_attempt_count", Integer, nullable=False, default=0),
    Column("locked_until", TZAwareDatetime(), nullable=True),
    Column("last_verified_at", TZAwareDatetime(), nullable=True),
    Column("created_at", TZAwareDatetime(), nullable=False, default=aware_utcnow),
    Column("updated_at", TZAwareDatetime(), nullable=False, default=aware_utcnow),
)

Index("ix_ip_blocks_active_expires", ip_blocks.c.is_active, ip_blocks.c.expires_at)
Index("ix_audit_log_created_at", audit_log.c.created_at)
Index("ix_audit_log_user_id", audit_log.c.user_id)
Index("ix_audit_log_action", audit_log.c.action)
Index("ix_audit_log_category_risk", audit_log.c.category, audit_log.c.risk_level)
Index("ix_audit_log_ip_address", audit_log.c.ip_address)
