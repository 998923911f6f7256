"""ABOUTME: Sliding window rate limiting per client address and endpoint
ABOUTME: Rejections are audited and a sustained flood escalates into an automatic IP block"""

from datetime import UTC, datetime, timedelta

import structlog
from sqlalchemy.exc import SQLAlchemyError

from storeguard.adapters.counter_store import AbstractCounterStore
from storeguard.config import SecurityPolicy
from storeguard.domain.rate_limit import RateLimitStatus, WindowHit, client_keys_prefix, rate_limit_key, violations_key
from storeguard.domain.value_objects import AuditAction, AuditCategory, RiskLevel
from storeguard.service_layer import audit_service, ip_reputation_service
from storeguard.service_layer.exceptions import StoreUnavailable
from storeguard.service_layer.unit_of_work import AbstractUnitOfWork

logger = structlog.get_logger(__name__)


def check(
    uow: AbstractUnitOfWork,
    store: AbstractCounterStore,
    policy: SecurityPolicy,
    client_ip: str,
    endpoint: str,
    max_requests: int,
    window: timedelta,
    http_method: str | None = None,
    user_agent: str | None = None,
) -> bool:
    """Admit or reject one request from client_ip to endpoint.

    Whitelisted addresses are always admitted. Counter store failures follow
    policy.rate_limit_fail_open.
    """
    if max_requests <= 0:
        raise ValueError("max_requests must be positive")
    if window <= timedelta(0):
        raise ValueError("window must be positive")
    client_ip = ip_reputation_service.normalise_ip(client_ip)

    try:
        if ip_reputation_service.is_whitelisted(uow, store, client_ip, policy.ip_cache_ttl):
            return True
    except StoreUnavailable as error:
        logger.warning("Whitelist lookup failed, applying rate limit", ip=client_ip, error=str(error))

    key = rate_limit_key(client_ip, endpoint)
    try:
        hit = store.sliding_window_hit(key, max_requests, window, window + policy.rate_limit_key_grace)
    except StoreUnavailable as error:
        logger.error(
            "Rate limit check failed",
            ip=client_ip,
            endpoint=endpoint,
            fail_open=policy.rate_limit_fail_open,
            error=str(error),
        )
        return policy.rate_limit_fail_open

    if hit.allowed:
        return True

    _record_rejection(uow, client_ip, endpoint, max_requests, window, hit, http_method, user_agent)
    if hit.attempts == policy.escalation_multiplier * max_requests:
        _escalate(uow, store, policy, client_ip, endpoint, hit)
    return False


def _record_rejection(
    uow: AbstractUnitOfWork,
    client_ip: str,
    endpoint: str,
    max_requests: int,
    window: timedelta,
    hit: WindowHit,
    http_method: str | None = None,
    user_agent: str | None = None,
) -> None:
    logger.info("Rate limit exceeded", ip=client_ip, endpoint=endpoint, count=hit.count, rejected=hit.rejected)
    audit_service.record_event(
        uow,
        AuditAction.RATE_LIMIT_EXCEEDED,
        AuditCategory.SECURITY,
        ip_address=client_ip,
        endpoint=endpoint,
        http_method=http_method,
        user_agent=user_agent,
        is_successful=False,
        risk_level=RiskLevel.MEDIUM,
        details={
            "count": hit.count,
            "maxRequests": max_requests,
            "windowSeconds": int(window.total_seconds()),
        },
    )


def _escalate(
    uow: AbstractUnitOfWork,
    store: AbstractCounterStore,
    policy: SecurityPolicy,
    client_ip: str,
    endpoint: str,
    hit: WindowHit,
) -> None:
    try:
        ip_reputation_service.block(
            uow,
            store,
            client_ip,
            policy.auto_block_reason,
            duration_hours=policy.auto_block_hours,
            is_automatic=True,
        )
    except (StoreUnavailable, SQLAlchemyError) as error:
        logger.error("Automatic IP block failed", ip=client_ip, endpoint=endpoint, error=str(error))
        return

    audit_service.record_event(
        uow,
        AuditAction.BLOCKED_IP,
        AuditCategory.SECURITY,
        ip_address=client_ip,
        endpoint=endpoint,
        risk_level=RiskLevel.HIGH,
        details={
            "reason": policy.auto_block_reason,
            "durationHours": policy.auto_block_hours,
            "isAutomatic": True,
            "attempts": hit.attempts,
        },
    )


def status(
    store: AbstractCounterStore, policy: SecurityPolicy, client_ip: str, endpoint: str
) -> RateLimitStatus:
    """Where client_ip stands against the configured limit for endpoint. Does not count as a request."""
    client_ip = ip_reputation_service.normalise_ip(client_ip)
    limit = policy.limit_for(endpoint)
    now = datetime.now(UTC)
    entries = store.window_entries(rate_limit_key(client_ip, endpoint), limit.window, now=now.timestamp())

    count = len(entries)
    reset_time = datetime.fromtimestamp(entries[0], UTC) + limit.window if entries else now
    return RateLimitStatus(
        remaining=max(limit.max_requests - count, 0),
        limit=limit.max_requests,
        reset_time=reset_time,
        is_limited=count >= limit.max_requests,
    )


def reset(store: AbstractCounterStore, client_ip: str, endpoint: str | None = None) -> int:
    """Forget the windows for one endpoint, or every endpoint when none is given."""
    client_ip = ip_reputation_service.normalise_ip(client_ip)
    if endpoint:
        key = rate_limit_key(client_ip, endpoint)
        store.delete(key, violations_key(key))
        logger.info("Rate limit reset", ip=client_ip, endpoint=endpoint)
        return 1
    deleted = store.delete_matching(f"{client_keys_prefix(client_ip)}*")
    logger.info("Rate limits reset", ip=client_ip, keys=deleted)
    return deleted
