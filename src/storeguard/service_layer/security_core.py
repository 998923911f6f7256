"""ABOUTME: SecurityCore, the single entry point to IP reputation, rate limiting, auditing and 2FA
ABOUTME: Applies the SecurityPolicy failure rules and gives every call its own unit of work"""

import math
import uuid
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from typing import Any

import structlog

from storeguard.adapters.counter_store import AbstractCounterStore
from storeguard.config import SecurityPolicy
from storeguard.domain.audit import AuditLogFilter, AuditLogPage, SecuritySummary
from storeguard.domain.ip_reputation import IpBlockEntry, IpWhitelistEntry
from storeguard.domain.rate_limit import RateLimitStatus
from storeguard.domain.two_factor import SessionCredential, TwoFactorSetup, TwoFactorStatus
from storeguard.domain.value_objects import AuditAction, AuditCategory, RiskLevel
from storeguard.service_layer import audit_service, ip_reputation_service, rate_limit_service, two_factor_service
from storeguard.service_layer.exceptions import IpBlocked, RateLimited, StoreUnavailable
from storeguard.service_layer.unit_of_work import AbstractUnitOfWork

logger = structlog.get_logger(__name__)

DEFAULT_SUMMARY_PERIOD = timedelta(days=30)


class SecurityCore:
    """Facade over the security services, configured by one SecurityPolicy.

    `uow_factory` is called once per operation so concurrent requests never share
    a unit of work.
    """

    def __init__(
        self,
        uow_factory: Callable[[], AbstractUnitOfWork],
        store: AbstractCounterStore,
        policy: SecurityPolicy | None = None,
    ) -> None:
        self.uow_factory = uow_factory
        self.store = store
        self.policy = policy or SecurityPolicy()

    # IP reputation

    def is_ip_blocked(self, ip_address: str) -> bool:
        try:
            return ip_reputation_service.is_blocked(
                self.uow_factory(), self.store, ip_address, self.policy.ip_cache_ttl
            )
        except StoreUnavailable as error:
            logger.error(
                "IP block check failed",
                ip=ip_address,
                fail_closed=self.policy.ip_check_fail_closed,
                error=str(error),
            )
            return self.policy.ip_check_fail_closed

    def is_ip_whitelisted(self, ip_address: str) -> bool:
        try:
            return ip_reputation_service.is_whitelisted(
                self.uow_factory(), self.store, ip_address, self.policy.ip_cache_ttl
            )
        except StoreUnavailable as error:
            logger.error("IP whitelist check failed", ip=ip_address, error=str(error))
            return False

    def block_ip(
        self,
        ip_address: str,
        reason: str,
        blocked_by: uuid.UUID | None = None,
        duration_hours: int | None = None,
        is_automatic: bool = False,
    ) -> IpBlockEntry:
        entry = ip_reputation_service.block(
            self.uow_factory(),
            self.store,
            ip_address,
            reason,
            blocked_by=blocked_by,
            duration_hours=duration_hours,
            is_automatic=is_automatic,
        )
        self.record_audit_event(
            AuditAction.BLOCKED_IP,
            AuditCategory.SECURITY,
            user_id=blocked_by,
            entity_type="IpBlock",
            entity_id=str(entry.id),
            ip_address=entry.ip_address,
            risk_level=RiskLevel.HIGH,
            details={"reason": reason, "durationHours": duration_hours, "isAutomatic": is_automatic},
        )
        return entry

    def unblock_ip(self, ip_address: str, unblocked_by: uuid.UUID | None = None) -> bool:
        unblocked = ip_reputation_service.unblock(self.uow_factory(), self.store, ip_address)
        if unblocked:
            self.record_audit_event(
                AuditAction.UNBLOCKED_IP,
                AuditCategory.SECURITY,
                user_id=unblocked_by,
                entity_type="IpBlock",
                ip_address=ip_reputation_service.normalise_ip(ip_address),
                risk_level=RiskLevel.MEDIUM,
            )
        return unblocked

    def whitelist_ip(
        self, ip_address: str, description: str | None = None, added_by: uuid.UUID | None = None
    ) -> IpWhitelistEntry:
        entry = ip_reputation_service.whitelist(
            self.uow_factory(), self.store, ip_address, description=description, added_by=added_by
        )
        self.record_audit_event(
            AuditAction.WHITELISTED_IP,
            AuditCategory.SECURITY,
            user_id=added_by,
            entity_type="IpWhitelist",
            entity_id=str(entry.id),
            ip_address=entry.ip_address,
            risk_level=RiskLevel.MEDIUM,
            details={"description": description},
        )
        return entry

    def remove_from_whitelist(self, ip_address: str, removed_by: uuid.UUID | None = None) -> bool:
        removed = ip_reputation_service.remove_from_whitelist(self.uow_factory(), self.store, ip_address)
        if removed:
            self.record_audit_event(
                AuditAction.UNWHITELISTED_IP,
                AuditCategory.SECURITY,
                user_id=removed_by,
                entity_type="IpWhitelist",
                ip_address=ip_reputation_service.normalise_ip(ip_address),
                risk_level=RiskLevel.MEDIUM,
            )
        return removed

    def list_blocked_ips(self) -> list[IpBlockEntry]:
        return ip_reputation_service.list_blocked(self.uow_factory())

    def list_whitelisted_ips(self) -> list[IpWhitelistEntry]:
        return ip_reputation_service.list_whitelisted(self.uow_factory())

    # Rate limiting

    def check_rate_limit(
        self,
        client_ip: str,
        endpoint: str,
        max_requests: int,
        window: timedelta,
        http_method: str | None = None,
        user_agent: str | None = None,
    ) -> bool:
        return rate_limit_service.check(
            self.uow_factory(),
            self.store,
            self.policy,
            client_ip,
            endpoint,
            max_requests,
            window,
            http_method=http_method,
            user_agent=user_agent,
        )

    def rate_limit_status(self, client_ip: str, endpoint: str) -> RateLimitStatus:
        return rate_limit_service.status(self.store, self.policy, client_ip, endpoint)

    def reset_rate_limit(self, client_ip: str, endpoint: str | None = None) -> int:
        return rate_limit_service.reset(self.store, client_ip, endpoint)

    def enforce_request(
        self,
        client_ip: str,
        endpoint: str,
        http_method: str | None = None,
        user_agent: str | None = None,
    ) -> None:
        """Gate one incoming request: blocked addresses first, then the endpoint's limit.

        A whitelisted address that is also blocked stays blocked.

        Raises:
            IpBlocked: the address is blocked, or the check failed closed
            RateLimited: the endpoint's limit is used up for this address
        """
        if self.is_ip_blocked(client_ip):
            logger.info("Request from blocked IP refused", ip=client_ip, endpoint=endpoint)
            raise IpBlocked()

        limit = self.policy.limit_for(endpoint)
        if self.check_rate_limit(client_ip, endpoint, limit.max_requests, limit.window, http_method, user_agent):
            return

        try:
            reset_time = self.rate_limit_status(client_ip, endpoint).reset_time
        except StoreUnavailable:
            reset_time = datetime.now(UTC) + limit.window
        retry_after = max(math.ceil((reset_time - datetime.now(UTC)).total_seconds()), 1)
        raise RateLimited(reset_time=reset_time, retry_after_seconds=retry_after)

    # Audit trail

    def record_audit_event(self, action: AuditAction, category: AuditCategory, **fields: Any) -> None:
        """Never raises, see audit_service.record_event for the accepted fields."""
        try:
            uow = self.uow_factory()
        except Exception:
            logger.exception("Failed to open a unit of work for auditing", action=action.value)
            return
        audit_service.record_event(uow, action, category, **fields)

    def query_audit_log(
        self, audit_filter: AuditLogFilter | None = None, page: int = 1, page_size: int = 50
    ) -> AuditLogPage:
        return audit_service.query(self.uow_factory(), audit_filter, page, page_size)

    def security_summary(
        self, start_date: datetime | None = None, end_date: datetime | None = None
    ) -> SecuritySummary:
        """Defaults to the last 30 days."""
        end_date = end_date or datetime.now(UTC)
        start_date = start_date or end_date - DEFAULT_SUMMARY_PERIOD
        return audit_service.summarize(self.uow_factory(), start_date, end_date)

    # Two-factor authentication

    def setup_2fa(self, user_id: uuid.UUID) -> TwoFactorSetup:
        return two_factor_service.setup(self.uow_factory(), self.store, self.policy, user_id)

    def enable_2fa(self, user_id: uuid.UUID, code: str, ip_address: str | None = None) -> bool:
        return two_factor_service.enable(self.uow_factory(), self.store, self.policy, user_id, code, ip_address)

    def disable_2fa(self, user_id: uuid.UUID, code: str, password: str, ip_address: str | None = None) -> bool:
        return two_factor_service.disable(
            self.uow_factory(), self.store, self.policy, user_id, code, password, ip_address
        )

    def verify_totp(self, user_id: uuid.UUID, code: str, ip_address: str | None = None) -> bool:
        return two_factor_service.verify_code(
            self.uow_factory(), self.store, self.policy, user_id, code, ip_address
        )

    def verify_recovery_code(self, user_id: uuid.UUID, code: str, ip_address: str | None = None) -> bool:
        return two_factor_service.verify_recovery_code(
            self.uow_factory(), self.store, self.policy, user_id, code, ip_address
        )

    def regenerate_recovery_codes(self, user_id: uuid.UUID, code: str, ip_address: str | None = None) -> list[str]:
        return two_factor_service.regenerate_recovery_codes(
            self.uow_factory(), self.store, self.policy, user_id, code, ip_address
        )

    def two_factor_status(self, user_id: uuid.UUID) -> TwoFactorStatus:
        return two_factor_service.get_status(self.uow_factory(), user_id)

    def complete_login_with_totp(
        self, user_id: uuid.UUID, code: str, ip_address: str | None = None, user_agent: str | None = None
    ) -> SessionCredential:
        return two_factor_service.complete_login_with_totp(
            self.uow_factory(), self.store, self.policy, user_id, code, ip_address, user_agent
        )

    def complete_login_with_recovery_code(
        self, email: str, code: str, ip_address: str | None = None, user_agent: str | None = None
    ) -> SessionCredential:
        return two_factor_service.complete_login_with_recovery_code(
            self.uow_factory(), self.store, self.policy, email, code, ip_address, user_agent
        )

    # Maintenance

    def sweep_expired(self) -> dict[str, int]:
        """Deactivate expired blocks and drop expired keys from the counter store."""
        blocks = ip_reputation_service.deactivate_expired_blocks(self.uow_factory())
        keys = self.store.sweep()
        logger.info("Expired security state swept", blocks=blocks, keys=keys)
        return {"blocks": blocks, "keys": keys}
