"""ABOUTME: IP reputation service managing the blacklist and whitelist
ABOUTME: Durable entries live in the database, answers are cached briefly in the shared counter store"""

import ipaddress
import uuid
from datetime import UTC, datetime, timedelta

import structlog
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from storeguard.adapters.counter_store import AbstractCounterStore
from storeguard.domain.ip_reputation import IpBlockEntry, IpWhitelistEntry, block_expiry
from storeguard.domain.value_objects import validate_ip_address
from storeguard.service_layer.exceptions import InvalidIpAddress, StoreUnavailable
from storeguard.service_layer.unit_of_work import AbstractUnitOfWork

logger = structlog.get_logger(__name__)


def blocked_cache_key(ip_address: str) -> str:
    return f"ip:blocked:{ip_address}"


def whitelisted_cache_key(ip_address: str) -> str:
    return f"ip:whitelisted:{ip_address}"


def normalise_ip(ip_address: str) -> str:
    """Validated address in canonical form, so every spelling of an IPv6 address shares one entry."""
    ip_address = (ip_address or "").strip().lower()
    try:
        validate_ip_address(ip_address)
        return ipaddress.ip_address(ip_address).compressed
    except ValueError as error:
        raise InvalidIpAddress(ip_address) from error


def _read_cache(store: AbstractCounterStore, key: str) -> bool | None:
    try:
        cached = store.get(key)
    except StoreUnavailable as error:
        logger.warning("IP reputation cache read failed, using the database", key=key, error=str(error))
        return None
    if cached is None:
        return None
    return cached == "1"


def _write_cache(store: AbstractCounterStore, key: str, flag: bool, ttl: timedelta) -> None:
    if ttl <= timedelta(0):
        return
    try:
        store.set(key, "1" if flag else "0", ttl)
    except StoreUnavailable as error:
        logger.warning("IP reputation cache write failed", key=key, error=str(error))


def _invalidate_cache(store: AbstractCounterStore, key: str) -> None:
    try:
        store.delete(key)
    except StoreUnavailable as error:
        # the stale answer lives until its TTL runs out
        logger.error("IP reputation cache invalidation failed", key=key, error=str(error))


def is_blocked(
    uow: AbstractUnitOfWork, store: AbstractCounterStore, ip_address: str, cache_ttl: timedelta
) -> bool:
    """Whether an active, unexpired block exists for the address.

    Raises StoreUnavailable when the database cannot answer.
    """
    ip_address = normalise_ip(ip_address)
    key = blocked_cache_key(ip_address)
    if cache_ttl > timedelta(0):
        cached = _read_cache(store, key)
        if cached is not None:
            return cached

    now = datetime.now(UTC)
    try:
        with uow:
            entry = uow.ip_blocks.get_by_ip(ip_address)
            blocked = entry is not None and entry.is_in_force(now)
            expires_at = entry.expires_at if blocked and entry is not None else None
    except SQLAlchemyError as error:
        raise StoreUnavailable("database", str(error)) from error

    # never cache a block past its own expiry
    ttl = cache_ttl if expires_at is None else min(cache_ttl, expires_at - now)
    _write_cache(store, key, blocked, ttl)
    return blocked


def is_whitelisted(
    uow: AbstractUnitOfWork, store: AbstractCounterStore, ip_address: str, cache_ttl: timedelta
) -> bool:
    """Raises StoreUnavailable when the database cannot answer."""
    ip_address = normalise_ip(ip_address)
    key = whitelisted_cache_key(ip_address)
    if cache_ttl > timedelta(0):
        cached = _read_cache(store, key)
        if cached is not None:
            return cached

    try:
        with uow:
            entry = uow.ip_whitelist.get_by_ip(ip_address)
            whitelisted = entry is not None and entry.is_active
    except SQLAlchemyError as error:
        raise StoreUnavailable("database", str(error)) from error

    _write_cache(store, key, whitelisted, cache_ttl)
    return whitelisted


def block(
    uow: AbstractUnitOfWork,
    store: AbstractCounterStore,
    ip_address: str,
    reason: str,
    blocked_by: uuid.UUID | None = None,
    duration_hours: int | None = None,
    is_automatic: bool = False,
) -> IpBlockEntry:
    """Block an address, or refresh the existing block for it.

    No duration means a permanent block.
    """
    ip_address = normalise_ip(ip_address)
    try:
        entry = _upsert_block(uow, ip_address, reason, blocked_by, duration_hours, is_automatic)
    except IntegrityError:
        # another request inserted the row first, so this time it updates
        entry = _upsert_block(uow, ip_address, reason, blocked_by, duration_hours, is_automatic)

    _invalidate_cache(store, blocked_cache_key(ip_address))
    logger.warning(
        "IP blocked",
        ip=ip_address,
        reason=reason,
        is_automatic=is_automatic,
        expires_at=entry.expires_at.isoformat() if entry.expires_at else None,
    )
    return entry


def _upsert_block(
    uow: AbstractUnitOfWork,
    ip_address: str,
    reason: str,
    blocked_by: uuid.UUID | None,
    duration_hours: int | None,
    is_automatic: bool,
) -> IpBlockEntry:
    with uow:
        entry = uow.ip_blocks.get_by_ip(ip_address)
        if entry is None:
            entry = IpBlockEntry(
                ip_address=ip_address,
                reason=reason,
                created_by=blocked_by,
                is_automatic=is_automatic,
                expires_at=block_expiry(datetime.now(UTC), duration_hours),
            )
            uow.ip_blocks.add(entry)
        else:
            entry.reactivate(reason, blocked_by, duration_hours, is_automatic)
    return entry


def unblock(uow: AbstractUnitOfWork, store: AbstractCounterStore, ip_address: str) -> bool:
    """Deactivate the block for an address. Returns False if it was not blocked."""
    ip_address = normalise_ip(ip_address)
    with uow:
        entry = uow.ip_blocks.get_by_ip(ip_address)
        if entry is None or not entry.is_active:
            return False
        entry.deactivate()

    _invalidate_cache(store, blocked_cache_key(ip_address))
    logger.info("IP unblocked", ip=ip_address)
    return True


def whitelist(
    uow: AbstractUnitOfWork,
    store: AbstractCounterStore,
    ip_address: str,
    description: str | None = None,
    added_by: uuid.UUID | None = None,
) -> IpWhitelistEntry:
    ip_address = normalise_ip(ip_address)
    with uow:
        entry = uow.ip_whitelist.get_by_ip(ip_address)
        if entry is None:
            entry = IpWhitelistEntry(
                ip_address=ip_address,
                description=description,
                added_by=added_by,
            )
            uow.ip_whitelist.add(entry)
        else:
            entry.reactivate(description, added_by)

    _invalidate_cache(store, whitelisted_cache_key(ip_address))
    logger.info("IP whitelisted", ip=ip_address)
    return entry


def remove_from_whitelist(uow: AbstractUnitOfWork, store: AbstractCounterStore, ip_address: str) -> bool:
    """Returns False if the address was not whitelisted."""
    ip_address = normalise_ip(ip_address)
    with uow:
        entry = uow.ip_whitelist.get_by_ip(ip_address)
        if entry is None or not entry.is_active:
            return False
        entry.deactivate()

    _invalidate_cache(store, whitelisted_cache_key(ip_address))
    logger.info("IP removed from whitelist", ip=ip_address)
    return True


def list_blocked(uow: AbstractUnitOfWork) -> list[IpBlockEntry]:
    with uow:
        return list(uow.ip_blocks.list_active(datetime.now(UTC)))


def list_whitelisted(uow: AbstractUnitOfWork) -> list[IpWhitelistEntry]:
    with uow:
        return list(uow.ip_whitelist.list_active())


def deactivate_expired_blocks(uow: AbstractUnitOfWork) -> int:
    with uow:
        return uow.ip_blocks.deactivate_expired(datetime.now(UTC))
