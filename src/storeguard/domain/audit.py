"""ABOUTME: Audit trail domain models for security relevant events
ABOUTME: Contains the append-only AuditLogEntry plus the query filter, page and summary records"""

import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from .value_objects import AuditAction, AuditCategory, RiskLevel


class AuditLogEntry:
    """One security relevant event. Entries are never updated once written."""

    def __init__(
        self,
        action: AuditAction,
        category: AuditCategory,
        user_id: uuid.UUID | None = None,
        user_email: str | None = None,
        entity_type: str | None = None,
        entity_id: str | None = None,
        before_value: dict[str, Any] | None = None,
        after_value: dict[str, Any] | None = None,
        details: dict[str, Any] | None = None,
        ip_address: str | None = None,
        user_agent: str | None = None,
        endpoint: str | None = None,
        http_method: str | None = None,
        is_successful: bool = True,
        error_message: str | None = None,
        risk_level: RiskLevel = RiskLevel.LOW,
        entry_id: uuid.UUID | None = None,
        created_at: datetime | None = None,
    ):
        self.id = entry_id or uuid.uuid4()
        self.action = action
        self.category = category
        self.user_id = user_id
        self.user_email = user_email
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.before_value = before_value
        self.after_value = after_value
        self.details = details or {}
        self.ip_address = ip_address
        self.user_agent = user_agent
        self.endpoint = endpoint
        self.http_method = http_method
        self.is_successful = is_successful
        self.error_message = error_message
        self.risk_level = risk_level
        self.created_at = created_at or datetime.now(UTC)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": str(self.id),
            "action": self.action.value,
            "category": self.category.value,
            "user_id": str(self.user_id) if self.user_id else None,
            "user_email": self.user_email,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "before_value": self.before_value,
            "after_value": self.after_value,
            "details": self.details,
            "ip_address": self.ip_address,
            "user_agent": self.user_agent,
            "endpoint": self.endpoint,
            "http_method": self.http_method,
            "is_successful": self.is_successful,
            "error_message": self.error_message,
            "risk_level": self.risk_level.value,
            "created_at": self.created_at.isoformat(),
        }

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, AuditLogEntry):
            return False
        return self.id == other.id

    def __hash__(self) -> int:
        return hash(self.id)


@dataclass(slots=True, kw_only=True)
class AuditLogFilter:
    user_id: uuid.UUID | None = None
    category: AuditCategory | None = None
    action: AuditAction | None = None
    risk_level: RiskLevel | None = None
    ip_address: str | None = None
    is_successful: bool | None = None
    start_date: datetime | None = None
    end_date: datetime | None = None


@dataclass(slots=True, kw_only=True)
class AuditLogPage:
    items: list[AuditLogEntry] = field(default_factory=list)
    total_count: int = 0
    page: int = 1
    page_size: int = 50

    @property
    def total_pages(self) -> int:
        if self.page_size <= 0:
            return 0
        return -(-self.total_count // self.page_size)


@dataclass(slots=True, kw_only=True)
class SecuritySummary:
    total_login_attempts: int
    failed_login_attempts: int
    active_blocked_ips: int
    rate_limit_exceeded_count: int
    high_risk_event_count: int
    users_with_two_factor_enabled: int
    period_start: datetime
    period_end: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_login_attempts": self.total_login_attempts,
            "failed_login_attempts": self.failed_login_attempts,
            "active_blocked_ips": self.active_blocked_ips,
            "rate_limit_exceeded_count": self.rate_limit_exceeded_count,
            "high_risk_event_count": self.high_risk_event_count,
            "users_with_two_factor_enabled": self.users_with_two_factor_enabled,
            "period_start": self.period_start.isoformat(),
            "period_end": self.period_end.isoformat(),
        }
