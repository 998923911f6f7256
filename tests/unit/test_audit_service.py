"""Unit tests for the audit trail service."""

import uuid
from datetime import UTC, datetime, timedelta

import pytest

from storeguard.domain.audit import AuditLogEntry, AuditLogFilter
from storeguard.domain.ip_reputation import IpBlockEntry
from storeguard.domain.two_factor import TwoFactorCredential
from storeguard.domain.value_objects import AuditAction, AuditCategory, RiskLevel
from storeguard.service_layer import audit_service
from tests.fakes import FailingAuditLogRepository, FakeUnitOfWork

NOW = datetime(2026, 3, 15, 12, 0, tzinfo=UTC)


def add_entry(uow, action, risk_level=RiskLevel.LOW, days_ago=1, **kwargs):
    entry = AuditLogEntry(
        action=action,
        category=kwargs.pop("category", AuditCategory.AUTH),
        risk_level=risk_level,
        created_at=NOW - timedelta(days=days_ago),
        **kwargs,
    )
    uow.audit_log.add(entry)
    return entry


class TestRecordEvent:
    """Tests for audit_service.record_event()."""

    def test_records_entry_with_all_fields(self, uow):
        user_id = uuid.uuid4()

        audit_service.record_event(
            uow,
            AuditAction.LOGIN,
            AuditCategory.AUTH,
            user_id=user_id,
            user_email="shopper@example.com",
            ip_address="10.0.0.1",
            user_agent="Mozilla/5.0",
            endpoint="/api/auth/login",
            http_method="POST",
            details={"method": "totp"},
        )

        entries = uow.audit_entries()
        assert len(entries) == 1
        entry = entries[0]
        assert entry.action == AuditAction.LOGIN
        assert entry.user_id == user_id
        assert entry.user_email == "shopper@example.com"
        assert entry.is_successful
        assert entry.risk_level == RiskLevel.LOW
        assert entry.details == {"method": "totp"}
        assert uow.committed

    def test_long_user_agent_is_truncated(self, uow):
        audit_service.record_event(uow, AuditAction.LOGIN, AuditCategory.AUTH, user_agent="x" * 2000)

        assert len(uow.audit_entries()[0].user_agent) == 500

    def test_failing_store_never_raises(self):
        uow = FakeUnitOfWork()
        uow.audit_log = FailingAuditLogRepository()

        audit_service.record_event(uow, AuditAction.LOGIN_FAILED, AuditCategory.AUTH, is_successful=False)

        assert not uow.committed

    def test_failing_unit_of_work_never_raises(self):
        class BrokenUnitOfWork(FakeUnitOfWork):
            def __enter__(self):
                raise ConnectionError("database is down")

        audit_service.record_event(BrokenUnitOfWork(), AuditAction.LOGIN, AuditCategory.AUTH)

    def test_record_entry_never_raises(self):
        uow = FakeUnitOfWork()
        uow.audit_log = FailingAuditLogRepository()

        audit_service.record_entry(uow, AuditLogEntry(action=AuditAction.LOGIN, category=AuditCategory.AUTH))


class TestQuery:
    """Tests for audit_service.query()."""

    def test_newest_first(self, uow):
        old = add_entry(uow, AuditAction.LOGIN, days_ago=3)
        new = add_entry(uow, AuditAction.LOGOUT, days_ago=1)

        page = audit_service.query(uow)

        assert page.items == [new, old]
        assert page.total_count == 2

    def test_filters_combine(self, uow):
        user_id = uuid.uuid4()
        wanted = add_entry(uow, AuditAction.LOGIN_FAILED, user_id=user_id, is_successful=False)
        add_entry(uow, AuditAction.LOGIN, user_id=user_id)
        add_entry(uow, AuditAction.LOGIN_FAILED, user_id=uuid.uuid4(), is_successful=False)

        page = audit_service.query(uow, AuditLogFilter(user_id=user_id, is_successful=False))

        assert page.items == [wanted]

    def test_filter_by_date_range(self, uow):
        add_entry(uow, AuditAction.LOGIN, days_ago=10)
        recent = add_entry(uow, AuditAction.LOGIN, days_ago=2)

        page = audit_service.query(uow, AuditLogFilter(start_date=NOW - timedelta(days=5), end_date=NOW))

        assert page.items == [recent]

    def test_paging(self, uow):
        for days_ago in range(1, 8):
            add_entry(uow, AuditAction.LOGIN, days_ago=days_ago)

        page = audit_service.query(uow, page=2, page_size=3)

        assert len(page.items) == 3
        assert page.total_count == 7
        assert page.total_pages == 3
        assert page.items[0].created_at == NOW - timedelta(days=4)

    def test_page_size_is_clamped(self, uow):
        page = audit_service.query(uow, page=0, page_size=100_000)

        assert page.page == 1
        assert page.page_size == audit_service.MAX_PAGE_SIZE


class TestSummarize:
    """Tests for audit_service.summarize()."""

    def test_counts_period_events(self, uow):
        add_entry(uow, AuditAction.LOGIN)
        add_entry(uow, AuditAction.LOGIN)
        add_entry(uow, AuditAction.LOGIN_FAILED, is_successful=False)
        add_entry(uow, AuditAction.RATE_LIMIT_EXCEEDED, RiskLevel.MEDIUM, category=AuditCategory.SECURITY)
        add_entry(uow, AuditAction.BLOCKED_IP, RiskLevel.HIGH, category=AuditCategory.SECURITY)
        add_entry(uow, AuditAction.SUSPICIOUS_ACTIVITY, RiskLevel.CRITICAL, category=AuditCategory.SECURITY)
        # outside the period
        add_entry(uow, AuditAction.LOGIN_FAILED, days_ago=40, is_successful=False)
        add_entry(uow, AuditAction.BLOCKED_IP, RiskLevel.HIGH, days_ago=40, category=AuditCategory.SECURITY)

        summary = audit_service.summarize(uow, NOW - timedelta(days=30), NOW, now=NOW)

        assert summary.total_login_attempts == 3
        assert summary.failed_login_attempts == 1
        assert summary.rate_limit_exceeded_count == 1
        assert summary.high_risk_event_count == 2
        assert summary.period_start == NOW - timedelta(days=30)
        assert summary.period_end == NOW

    def test_counts_current_blocks_and_two_factor_users(self, uow):
        uow.ip_blocks.add(IpBlockEntry(ip_address="10.0.0.1", reason="abuse"))
        uow.ip_blocks.add(IpBlockEntry(ip_address="10.0.0.2", reason="old", expires_at=NOW - timedelta(hours=1)))
        uow.two_factor_credentials.add(TwoFactorCredential(user_id=uuid.uuid4(), secret_encrypted="x", is_enabled=True))
        uow.two_factor_credentials.add(TwoFactorCredential(user_id=uuid.uuid4(), secret_encrypted="y"))

        summary = audit_service.summarize(uow, NOW - timedelta(days=30), NOW, now=NOW)

        assert summary.active_blocked_ips == 1
        assert summary.users_with_two_factor_enabled == 1

    def test_empty_period(self, uow):
        summary = audit_service.summarize(uow, NOW - timedelta(days=30), NOW, now=NOW)

        assert summary.total_login_attempts == 0
        assert summary.high_risk_event_count == 0

    def test_start_after_end_raises(self, uow):
        with pytest.raises(ValueError, match="start_date"):
            audit_service.summarize(uow, NOW, NOW - timedelta(days=1))
