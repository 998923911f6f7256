"""ABOUTME: Audit trail service for recording and querying security events
ABOUTME: Writes are best effort and never raise, reads support filtering, paging and period summaries"""

import uuid
from datetime import UTC, datetime
from typing import Any

import structlog

from storeguard.domain.audit import AuditLogEntry, AuditLogFilter, AuditLogPage, SecuritySummary
from storeguard.domain.value_objects import AuditAction, AuditCategory, RiskLevel
from storeguard.service_layer.unit_of_work import AbstractUnitOfWork

logger = structlog.get_logger(__name__)

MAX_PAGE_SIZE = 500


def record_entry(uow: AbstractUnitOfWork, entry: AuditLogEntry) -> None:
    """Append one entry to the audit trail.

    Never raises: a failure to persist is logged and dropped, so auditing can
    not change the outcome of the operation being audited.
    """
    try:
        with uow:
            uow.audit_log.add(entry)
    except Exception:
        logger.exception(
            "Failed to write audit log entry",
            action=entry.action.value,
            category=entry.category.value,
            user_id=str(entry.user_id) if entry.user_id else None,
            ip=entry.ip_address,
        )
        return

    if entry.risk_level.is_high_risk:
        logger.warning(
            "High risk security event",
            action=entry.action.value,
            risk_level=entry.risk_level.value,
            user_id=str(entry.user_id) if entry.user_id else None,
            ip=entry.ip_address,
            details=entry.details,
        )


def record_event(
    uow: AbstractUnitOfWork,
    action: AuditAction,
    category: AuditCategory,
    *,
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
) -> None:
    """Build an entry from its parts and record it. Never raises."""
    try:
        entry = AuditLogEntry(
            action=action,
            category=category,
            user_id=user_id,
            user_email=user_email,
            entity_type=entity_type,
            entity_id=entity_id,
            before_value=before_value,
            after_value=after_value,
            details=details,
            ip_address=ip_address,
            user_agent=user_agent[:500] if user_agent else user_agent,
            endpoint=endpoint,
            http_method=http_method,
            is_successful=is_successful,
            error_message=error_message,
            risk_level=risk_level,
        )
    except Exception:
        logger.exception("Failed to build audit log entry", action=getattr(action, "value", action))
        return
    record_entry(uow, entry)


def query(
    uow: AbstractUnitOfWork,
    audit_filter: AuditLogFilter | None = None,
    page: int = 1,
    page_size: int = 50,
) -> AuditLogPage:
    """Filtered audit entries, newest first."""
    audit_filter = audit_filter or AuditLogFilter()
    page = max(page, 1)
    page_size = min(max(page_size, 1), MAX_PAGE_SIZE)

    with uow:
        entries, total_count = uow.audit_log.filter_paginated(
            audit_filter, limit=page_size, offset=(page - 1) * page_size
        )

    return AuditLogPage(items=entries, total_count=total_count, page=page, page_size=page_size)


def summarize(
    uow: AbstractUnitOfWork, start_date: datetime, end_date: datetime, now: datetime | None = None
) -> SecuritySummary:
    """Security activity between start_date and end_date.

    Blocked addresses and 2FA enrolment are counted as they stand now, not as
    they stood during the period.
    """
    if start_date > end_date:
        raise ValueError("start_date must not be after end_date")
    now = now or datetime.now(UTC)

    with uow:
        total_logins = uow.audit_log.count(
            start_date, end_date, actions=[AuditAction.LOGIN, AuditAction.LOGIN_FAILED]
        )
        failed_logins = uow.audit_log.count(start_date, end_date, actions=[AuditAction.LOGIN_FAILED])
        rate_limited = uow.audit_log.count(start_date, end_date, actions=[AuditAction.RATE_LIMIT_EXCEEDED])
        high_risk = uow.audit_log.count(start_date, end_date, risk_levels=[RiskLevel.HIGH, RiskLevel.CRITICAL])
        blocked_ips = uow.ip_blocks.count_active(now)
        two_factor_users = uow.two_factor_credentials.count_enabled()

    return SecuritySummary(
        total_login_attempts=total_logins,
        failed_login_attempts=failed_logins,
        active_blocked_ips=blocked_ips,
        rate_limit_exceeded_count=rate_limited,
        high_risk_event_count=high_risk,
        users_with_two_factor_enabled=two_factor_users,
        period_start=start_date,
        period_end=end_date,
    )
