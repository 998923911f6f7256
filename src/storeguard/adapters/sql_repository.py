"""ABOUTME: SQLAlchemy implementations of repository interfaces
ABOUTME: Provides concrete database operations using SQLAlchemy sessions"""

from __future__ import annotations

import uuid
from collections.abc import Iterable
from datetime import datetime

from sqlalchemy import func, or_, update
from sqlalchemy.orm import Query, Session

from storeguard.adapters import orm
from storeguard.domain.audit import AuditLogEntry, AuditLogFilter
from storeguard.domain.ip_reputation import IpBlockEntry, IpWhitelistEntry
from storeguard.domain.two_factor import TwoFactorCredential
from storeguard.domain.users import User
from storeguard.domain.value_objects import AuditAction, RiskLevel
from storeguard.service_layer.repositories import (
    AuditLogRepository,
    IpBlockRepository,
    IpWhitelistRepository,
    TwoFactorCredentialRepository,
    UserRepository,
)


class SqlAlchemyRepository:
    """Base SQLAlchemy repository with common functionality."""

    def __init__(self, session: Session) -> None:
        self.session = session


class SqlAlchemyUserRepository(SqlAlchemyRepository, UserRepository):
    """SQLAlchemy implementation of UserRepository."""

    def add(self, item: User) -> None:
        self.session.add(item)

    def get(self, item_id: uuid.UUID) -> User | None:
        return self.session.query(User).filter_by(id=item_id).first()

    def all(self) -> Iterable[User]:
        return self.session.query(User).all()

    def get_by_email(self, email: str) -> User | None:
        return self.session.query(User).filter(func.lower(orm.users.c.email) == email.lower().strip()).first()


class SqlAlchemyIpBlockRepository(SqlAlchemyRepository, IpBlockRepository):
    """SQLAlchemy implementation of IpBlockRepository."""

    def add(self, item: IpBlockEntry) -> None:
        self.session.add(item)

    def get(self, item_id: uuid.UUID) -> IpBlockEntry | None:
        return self.session.query(IpBlockEntry).filter_by(id=item_id).first()

    def all(self) -> Iterable[IpBlockEntry]:
        return self.session.query(IpBlockEntry).all()

    def get_by_ip(self, ip_address: str) -> IpBlockEntry | None:
        return self.session.query(IpBlockEntry).filter_by(ip_address=ip_address).first()

    def _active_query(self, now: datetime) -> Query:
        return self.session.query(IpBlockEntry).filter(
            orm.ip_blocks.c.is_active.is_(True),
            or_(orm.ip_blocks.c.expires_at.is_(None), orm.ip_blocks.c.expires_at > now),
        )

    def list_active(self, now: datetime) -> Iterable[IpBlockEntry]:
        return self._active_query(now).order_by(orm.ip_blocks.c.created_at.desc()).all()

    def count_active(self, now: datetime) -> int:
        return self._active_query(now).count()

    def deactivate_expired(self, now: datetime) -> int:
        result = self.session.execute(
            update(orm.ip_blocks)
            .where(
                orm.ip_blocks.c.is_active.is_(True),
                orm.ip_blocks.c.expires_at.is_not(None),
                orm.ip_blocks.c.expires_at <= now,
            )
            .values(is_active=False, updated_at=now)
        )
        return int(result.rowcount or 0)  # type: ignore[attr-defined]


class SqlAlchemyIpWhitelistRepository(SqlAlchemyRepository, IpWhitelistRepository):
    """SQLAlchemy implementation of IpWhitelistRepository."""

    def add(self, item: IpWhitelistEntry) -> None:
        self.session.add(item)

    def get(self, item_id: uuid.UUID) -> IpWhitelistEntry | None:
        return self.session.query(IpWhitelistEntry).filter_by(id=item_id).first()

    def all(self) -> Iterable[IpWhitelistEntry]:
        return self.session.query(IpWhitelistEntry).all()

    def get_by_ip(self, ip_address: str) -> IpWhitelistEntry | None:
        return self.session.query(IpWhitelistEntry).filter_by(ip_address=ip_address).first()

    def list_active(self) -> Iterable[IpWhitelistEntry]:
        return (
            self.session.query(IpWhitelistEntry)
            .filter(orm.ip_whitelist.c.is_active.is_(True))
            .order_by(orm.ip_whitelist.c.created_at.desc())
            .all()
        )


class SqlAlchemyAuditLogRepository(SqlAlchemyRepository, AuditLogRepository):
    """SQLAlchemy implementation of AuditLogRepository."""

    def add(self, item: AuditLogEntry) -> None:
        self.session.add(item)

    def get(self, item_id: uuid.UUID) -> AuditLogEntry | None:
        return self.session.query(AuditLogEntry).filter_by(id=item_id).first()

    def all(self) -> Iterable[AuditLogEntry]:
        return self.session.query(AuditLogEntry).order_by(orm.audit_log.c.created_at.desc()).all()

    def filter_paginated(
        self, audit_filter: AuditLogFilter, limit: int = 50, offset: int = 0
    ) -> tuple[list[AuditLogEntry], int]:
        audit_query = self.session.query(AuditLogEntry)
        columns = orm.audit_log.c

        if audit_filter.user_id is not None:
            audit_query = audit_query.filter(columns.user_id == audit_filter.user_id)
        if audit_filter.category is not None:
            audit_query = audit_query.filter(columns.category == audit_filter.category)
        if audit_filter.action is not None:
            audit_query = audit_query.filter(columns.action == audit_filter.action)
        if audit_filter.risk_level is not None:
            audit_query = audit_query.filter(columns.risk_level == audit_filter.risk_level)
        if audit_filter.ip_address:
            audit_query = audit_query.filter(columns.ip_address == audit_filter.ip_address)
        if audit_filter.is_successful is not None:
            audit_query = audit_query.filter(columns.is_successful.is_(audit_filter.is_successful))
        if audit_filter.start_date is not None:
            audit_query = audit_query.filter(columns.created_at >= audit_filter.start_date)
        if audit_filter.end_date is not None:
            audit_query = audit_query.filter(columns.created_at <= audit_filter.end_date)

        # Get total count before pagination
        total_count = audit_query.count()

        entries = audit_query.order_by(columns.created_at.desc()).limit(limit).offset(offset).all()

        return list(entries), total_count

    def count(
        self,
        start_date: datetime,
        end_date: datetime,
        actions: Iterable[AuditAction] | None = None,
        risk_levels: Iterable[RiskLevel] | None = None,
    ) -> int:
        columns = orm.audit_log.c
        audit_query = self.session.query(AuditLogEntry).filter(
            columns.created_at >= start_date,
            columns.created_at <= end_date,
        )
        if actions is not None:
            audit_query = audit_query.filter(columns.action.in_(list(actions)))
        if risk_levels is not None:
            audit_query = audit_query.filter(columns.risk_level.in_(list(risk_levels)))
        return audit_query.count()


class SqlAlchemyTwoFactorCredentialRepository(SqlAlchemyRepository, TwoFactorCredentialRepository):
    """SQLAlchemy implementation of TwoFactorCredentialRepository."""

    def add(self, item: TwoFactorCredential) -> None:
        self.session.add(item)

    def get(self, user_id: uuid.UUID) -> TwoFactorCredential | None:
        return self.session.query(TwoFactorCredential).filter_by(user_id=user_id).first()

    def get_for_update(self, user_id: uuid.UUID) -> TwoFactorCredential | None:
        # FOR UPDATE is ignored by SQLite, which serialises writers anyway
        return (
            self.session.query(TwoFactorCredential)
            .filter_by(user_id=user_id)
            .with_for_update()
            .populate_existing()
            .first()
        )

    def delete(self, item: TwoFactorCredential) -> None:
        self.session.delete(item)

    def count_enabled(self) -> int:
        return (
            self.session.query(TwoFactorCredential)
            .filter(orm.two_factor_credentials.c.is_enabled.is_(True))
            .count()
        )
