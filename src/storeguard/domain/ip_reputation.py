"""ABOUTME: IP reputation domain models for blocking and whitelisting client addresses
ABOUTME: Contains IpBlockEntry and IpWhitelistEntry as plain Python objects"""

import uuid
from datetime import UTC, datetime, timedelta
from typing import Any

from .value_objects import validate_ip_address


class IpBlockEntry:
    """A blocked client address. At most one entry exists per address."""

    def __init__(
        self,
        ip_address: str,
        reason: str,
        created_by: uuid.UUID | None = None,
        is_automatic: bool = False,
        expires_at: datetime | None = None,
        is_active: bool = True,
        entry_id: uuid.UUID | None = None,
        created_at: datetime | None = None,
        updated_at: datetime | None = None,
    ):
        validate_ip_address(ip_address)

        self.id = entry_id or uuid.uuid4()
        self.ip_address = ip_address
        self.reason = reason
        self.created_by = created_by
        self.is_automatic = is_automatic
        self.expires_at = expires_at
        self.is_active = is_active
        self.created_at = created_at or datetime.now(UTC)
        self.updated_at = updated_at or self.created_at

    @property
    def is_permanent(self) -> bool:
        return self.expires_at is None

    def is_expired(self, now: datetime | None = None) -> bool:
        if self.expires_at is None:
            return False
        return (now or datetime.now(UTC)) >= self.expires_at

    def is_in_force(self, now: datetime | None = None) -> bool:
        """Active and not yet expired."""
        return self.is_active and not self.is_expired(now)

    def reactivate(
        self,
        reason: str,
        created_by: uuid.UUID | None,
        duration_hours: int | None,
        is_automatic: bool,
    ) -> None:
        """Re-blocking an address refreshes the existing entry."""
        now = datetime.now(UTC)
        self.reason = reason
        self.created_by = created_by
        self.is_automatic = is_automatic
        self.expires_at = block_expiry(now, duration_hours)
        self.is_active = True
        self.updated_at = now

    def deactivate(self) -> None:
        self.is_active = False
        self.updated_at = datetime.now(UTC)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": str(self.id),
            "ip_address": self.ip_address,
            "reason": self.reason,
            "created_by": str(self.created_by) if self.created_by else None,
            "is_automatic": self.is_automatic,
            "is_permanent": self.is_permanent,
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
            "is_active": self.is_active,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, IpBlockEntry):
            return False
        return self.id == other.id

    def __hash__(self) -> int:
        return hash(self.id)

    def __repr__(self) -> str:
        return f"<IpBlockEntry {self.ip_address} active={self.is_active} expires_at={self.expires_at}>"


def block_expiry(now: datetime, duration_hours: int | None) -> datetime | None:
    """No duration means a permanent block."""
    if duration_hours is None:
        return None
    if duration_hours <= 0:
        raise ValueError("Block duration must be a positive number of hours")
    return now + timedelta(hours=duration_hours)


class IpWhitelistEntry:
    """A trusted client address. Whitelisting bypasses rate limiting, never a block."""

    def __init__(
        self,
        ip_address: str,
        description: str | None = None,
        added_by: uuid.UUID | None = None,
        is_active: bool = True,
        entry_id: uuid.UUID | None = None,
        created_at: datetime | None = None,
    ):
        validate_ip_address(ip_address)

        self.id = entry_id or uuid.uuid4()
        self.ip_address = ip_address
        self.description = description
        self.added_by = added_by
        self.is_active = is_active
        self.created_at = created_at or datetime.now(UTC)

    def reactivate(self, description: str | None, added_by: uuid.UUID | None) -> None:
        self.description = description
        self.added_by = added_by
        self.is_active = True

    def deactivate(self) -> None:
        self.is_active = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": str(self.id),
            "ip_address": self.ip_address,
            "description": self.description,
            "added_by": str(self.added_by) if self.added_by else None,
            "is_active": self.is_active,
            "created_at": self.created_at.isoformat(),
        }

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, IpWhitelistEntry):
            return False
        return self.id == other.id

    def __hash__(self) -> int:
        return hash(self.id)
