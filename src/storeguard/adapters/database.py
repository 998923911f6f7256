"""ABOUTME: Database connection setup and imperative mapping for StoreGuard
ABOUTME: Configures SQLAlchemy sessions and maps domain objects to tables"""

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import clear_mappers as sqla_clear_mappers
from sqlalchemy.orm import sessionmaker

from storeguard.adapters import orm
from storeguard.config import bool_environ_get, get_db_uri
from storeguard.domain import audit, ip_reputation, two_factor, users


class DatabaseError(Exception):
    """Base exception for database-related errors."""


def create_session_factory(database_url: str = "", echo: bool = False) -> sessionmaker:
    """Create a SQLAlchemy session factory with proper configuration."""
    database_url = database_url or get_db_uri()
    echo = bool_environ_get("DB_ECHO") or echo
    extra_args: dict[str, int | bool] = {}
    if database_url.startswith("postgresql://"):
        extra_args = {
            "pool_pre_ping": True,  # Verify connections before use
            "pool_recycle": 3600,  # Recycle connections after 1 hour
            "pool_size": 10,
            "max_overflow": 20,
        }
    engine = create_engine(database_url, echo=echo, **extra_args)

    return sessionmaker(bind=engine, expire_on_commit=False)


def create_tables(engine: Engine) -> None:
    """Create any missing tables and indexes."""
    orm.metadata.create_all(engine)


# Track if mappers have been started
_mappers_started = False


def start_mappers() -> None:
    """Start imperative mapping between domain objects and database tables.

    This function must be called before using any domain objects with SQLAlchemy.
    The mapping is done imperatively to keep domain objects independent of SQLAlchemy.
    """
    global _mappers_started

    if _mappers_started:
        return

    try:
        orm.mapper_registry.map_imperatively(users.User, orm.users)
        orm.mapper_registry.map_imperatively(ip_reputation.IpBlockEntry, orm.ip_blocks)
        orm.mapper_registry.map_imperatively(ip_reputation.IpWhitelistEntry, orm.ip_whitelist)
        orm.mapper_registry.map_imperatively(audit.AuditLogEntry, orm.audit_log)
        orm.mapper_registry.map_imperatively(two_factor.TwoFactorCredential, orm.two_factor_credentials)

        _mappers_started = True

    except Exception as e:  # pragma: no cover
        raise DatabaseError(f"Failed to start mappers: {e}") from e


def clear_mappers() -> None:
    sqla_clear_mappers()

    global _mappers_started
    _mappers_started = False
