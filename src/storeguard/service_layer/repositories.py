"""ABOUTME: Abstract repository interfaces for domain objects
ABOUTME: Defines repository contracts to abstract database operations from business logic"""

from __future__ import annotations

import abc
import uuid
from collections.abc import Iterable
from datetime import datetime
from typing import Any

from storeguard.domain.audit import AuditLogEntry, AuditLogFilter
from storeguard.domain.ip_reputation import IpBlockEntry, IpWhitelistEntry
from storeguard.domain.two_factor import TwoFactorCredential
from storeguard.domain.users import User
from storeguard.domain.value_objects import AuditAction, RiskLevel


class AbstractRepository(abc.ABC):
    """Base repository interface providing common operations."""

    @abc.abstractmethod
    def add(self, item: Any) -> None:
        """Add an item to the repository."""
        raise NotImplementedError

    @abc.abstractmethod
    def get(self, item_id: uuid.UUID) -> Any | None:
        """Get an item by its ID."""
        raise NotImplementedError

    @abc.abstractmethod
    def all(self) -> Iterable[Any]:
        """List all items in the repository."""
        raise NotImplementedError


class UserRepository(AbstractRepository):
    """Repository interface for User domain objects."""

    @abc.abstractmethod
    def get_by_email(self, email: str) -> User | None:
        """Get a user by their email address (case-insensitive)."""
        raise NotImplementedError


class IpBlockRepository(AbstractRepository):
    """Repository interface for IpBlockEntry domain objects."""

    @abc.abstractmethod
    def get_by_ip(self, ip_address: str) -> IpBlockEntry | None:
        """Get the block entry for an address, active or not."""
        raise NotImplementedError

    @abc.abstractmethod
    def list_active(self, now: datetime) -> Iterable[IpBlockEntry]:
        """Active, unexpired blocks, newest first."""
        raise NotImplementedError

    @abc.abstractmethod
    def count_active(self, now: datetime) -> int:
        """Number of active, unexpired blocks."""
        raise NotImplementedError

    @abc.abstractmethod
    def deactivate_expired(self, now: datetime) -> int:
        """Deactivate every active block that has expired. Returns how many changed."""
        raise NotImplementedError


class IpWhitelistRepository(AbstractRepository):
    """Repository interface for IpWhitelistEntry domain objects."""

    @abc.abstractmethod
    def get_by_ip(self, ip_address: str) -> IpWhitelistEntry | None:
        """Get the whitelist entry for an address, active or not."""
        raise NotImplementedError

    @abc.abstractmethod
    def list_active(self) -> Iterable[IpWhitelistEntry]:
        """Active entries, newest first."""
        raise NotImplementedError


class AuditLogRepository(AbstractRepository):
    """Repository interface for the append-only audit trail."""

    @abc.abstractmethod
    def filter_paginated(
        self, audit_filter: AuditLogFilter, limit: int = 50, offset: int = 0
    ) -> tuple[list[AuditLogEntry], int]:
        """Matching entries newest first, with the total count before pagination."""
        raise NotImplementedError

    @abc.abstractmethod
    def count(
        self,
        start_date: datetime,
        end_date: datetime,
        actions: Iterable[AuditAction] | None = None,
        risk_levels: Iterable[RiskLevel] | None = None,
    ) -> int:
        """Count entries created in [start_date, end_date] matching any of the actions and risk levels."""
        raise NotImplementedError


class TwoFactorCredentialRepository(abc.ABC):
    """Repository interface for TwoFactorCredential, keyed by user id."""

    @abc.abstractmethod
    def add(self, item: TwoFactorCredential) -> None:
        raise NotImplementedError

    @abc.abstractmethod
    def get(self, user_id: uuid.UUID) -> TwoFactorCredential | None:
        raise NotImplementedError

    @abc.abstractmethod
    def get_for_update(self, user_id: uuid.UUID) -> TwoFactorCredential | None:
        """Get the credential, holding a row lock until the transaction ends."""
        raise NotImplementedError

    @abc.abstractmethod
    def delete(self, item: TwoFactorCredential) -> None:
        raise NotImplementedError

    @abc.abstractmethod
    def count_enabled(self) -> int:
        raise NotImplementedError
