"""ABOUTME: Unit of Work pattern implementation for transaction management
ABOUTME: Coordinates repository operations within database transactions"""

from __future__ import annotations

import abc
from types import TracebackType

from sqlalchemy.orm import Session, sessionmaker

from storeguard.adapters.database import create_session_factory
from storeguard.adapters.sql_repository import (
    SqlAlchemyAuditLogRepository,
    SqlAlchemyIpBlockRepository,
    SqlAlchemyIpWhitelistRepository,
    SqlAlchemyTwoFactorCredentialRepository,
    SqlAlchemyUserRepository,
)
from storeguard.service_layer.repositories import (
    AuditLogRepository,
    IpBlockRepository,
    IpWhitelistRepository,
    TwoFactorCredentialRepository,
    UserRepository,
)


class AbstractUnitOfWork(abc.ABC):
    """Abstract Unit of Work interface."""

    users: UserRepository
    ip_blocks: IpBlockRepository
    ip_whitelist: IpWhitelistRepository
    audit_log: AuditLogRepository
    two_factor_credentials: TwoFactorCredentialRepository

    def __enter__(self) -> AbstractUnitOfWork:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        if exc_type is not None:
            self.rollback()
        else:
            self.commit()

    @abc.abstractmethod
    def commit(self) -> None:
        """Commit the current transaction."""
        raise NotImplementedError

    @abc.abstractmethod
    def rollback(self) -> None:
        """Rollback the current transaction."""
        raise NotImplementedError


class SqlAlchemyUnitOfWork(AbstractUnitOfWork):
    """SQLAlchemy implementation of Unit of Work pattern.

    Each `with` block gets a fresh session, so one instance can be entered
    several times in sequence. Blocks must not be nested.
    """

    def __init__(self, session_factory: sessionmaker | None = None) -> None:
        self.session_factory = session_factory or create_session_factory()
        self._session: Session | None = None

    @property
    def session(self) -> Session:
        if self._session is None:
            self._session = self.session_factory()
        assert isinstance(self._session, Session)
        return self._session

    def __enter__(self) -> SqlAlchemyUnitOfWork:
        self._session = self.session_factory()
        self.users = SqlAlchemyUserRepository(self.session)
        self.ip_blocks = SqlAlchemyIpBlockRepository(self.session)
        self.ip_whitelist = SqlAlchemyIpWhitelistRepository(self.session)
        self.audit_log = SqlAlchemyAuditLogRepository(self.session)
        self.two_factor_credentials = SqlAlchemyTwoFactorCredentialRepository(self.session)

        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        try:
            if exc_type is not None:
                self.rollback()
            else:
                self.commit()
        finally:
            self.session.close()
            self._session = None

    def commit(self) -> None:
        """Commit the current transaction."""
        self.session.commit()

    def rollback(self) -> None:
        """Rollback the current transaction."""
        self.session.rollback()

    def flush(self) -> None:
        """Flush pending changes to the database without committing."""
        self.session.flush()
