"""ABOUTME: Pytest configuration and fixtures for StoreGuard tests
ABOUTME: Provides test fixtures and configuration for unit, integration, and e2e tests"""

import base64
import os
import secrets

import pytest
from click.testing import CliRunner
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from storeguard.adapters import database, orm
from storeguard.adapters.counter_store import InMemoryCounterStore
from storeguard.config import SecurityPolicy
from storeguard.service_layer.security_core import SecurityCore
from storeguard.service_layer.unit_of_work import SqlAlchemyUnitOfWork
from tests.data import TEST_SESSION_SECRET, make_user
from tests.fakes import FakeUnitOfWork


@pytest.fixture(autouse=True)
def set_test_env():
    """Automatically set test environment for all tests."""
    original_env = os.environ.get("FLASK_ENV")
    os.environ["FLASK_ENV"] = "testing"
    yield
    if original_env is not None:
        os.environ["FLASK_ENV"] = original_env
    else:
        os.environ.pop("FLASK_ENV", None)


@pytest.fixture(autouse=True)
def totp_encryption_key():
    """Every test gets its own TOTP master key."""
    original_key = os.environ.get("TOTP_ENCRYPTION_KEY")
    test_key = base64.b64encode(secrets.token_bytes(32)).decode()
    os.environ["TOTP_ENCRYPTION_KEY"] = test_key
    yield test_key
    if original_key is not None:
        os.environ["TOTP_ENCRYPTION_KEY"] = original_key
    else:
        os.environ.pop("TOTP_ENCRYPTION_KEY", None)


@pytest.fixture
def clear_env_vars():
    """Fixture to temporarily remove environment variables for testing."""
    original_vars = {}

    def _clear_env_vars(*args):
        for key in args:
            original_vars[key] = os.environ.get(key)
            os.environ.pop(key, None)

    yield _clear_env_vars

    # Restore original environment variables
    for key, value in original_vars.items():
        if value is not None:
            os.environ[key] = value


@pytest.fixture
def temp_env_vars():
    """Fixture to temporarily set environment variables for testing."""
    original_vars = {}

    def _set_env_vars(**kwargs):
        for key, value in kwargs.items():
            original_vars[key] = os.environ.get(key)
            os.environ[key] = value

    yield _set_env_vars

    # Restore original environment variables
    for key, value in original_vars.items():
        if value is not None:
            os.environ[key] = value
        else:
            os.environ.pop(key, None)


@pytest.fixture
def mappers():
    database.start_mappers()
    yield
    database.clear_mappers()


@pytest.fixture
def in_memory_sqlite_db():
    engine = create_engine("sqlite:///:memory:")
    return engine


@pytest.fixture
def sqlite_session_factory(in_memory_sqlite_db):
    orm.metadata.create_all(in_memory_sqlite_db)
    database.start_mappers()

    yield sessionmaker(bind=in_memory_sqlite_db, expire_on_commit=False)

    database.clear_mappers()
    orm.metadata.drop_all(in_memory_sqlite_db)


@pytest.fixture
def policy():
    return SecurityPolicy(session_token_secret=TEST_SESSION_SECRET)


@pytest.fixture
def store():
    return InMemoryCounterStore()


@pytest.fixture
def uow():
    return FakeUnitOfWork()


@pytest.fixture
def core(uow, store, policy):
    """SecurityCore over fakes. Every call shares the one FakeUnitOfWork."""
    return SecurityCore(lambda: uow, store, policy)


@pytest.fixture
def sqlite_core(sqlite_session_factory, store, policy):
    """SecurityCore over an in-memory SQLite database."""
    return SecurityCore(lambda: SqlAlchemyUnitOfWork(sqlite_session_factory), store, policy)


@pytest.fixture
def user(uow):
    """A customer stored in the fake unit of work."""
    customer = make_user()
    uow.users.add(customer)
    return customer


@pytest.fixture
def cli_runner():
    return CliRunner()
