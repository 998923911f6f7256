import pytest

from storeguard.adapters import database
from storeguard.domain.value_objects import GlobalRole
from storeguard.entrypoints.extensions import SECURITY_CORE_KEY, SESSION_FACTORY_KEY
from storeguard.entrypoints.flask_app import create_app
from storeguard.service_layer.unit_of_work import SqlAlchemyUnitOfWork
from storeguard.service_layer.user_service import create_user
from tests.data import TEST_PASSWORD
from tests.e2e.helpers import bearer_headers


@pytest.fixture
def app():
    """Create test Flask application on in-memory SQLite."""
    app = create_app("testing")
    database.create_tables(app.extensions[SESSION_FACTORY_KEY].kw["bind"])
    yield app
    database.clear_mappers()


@pytest.fixture
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture
def security_core(app):
    return app.extensions[SECURITY_CORE_KEY]


def _create_user(app, email: str, global_role: GlobalRole):
    return create_user(
        SqlAlchemyUnitOfWork(app.extensions[SESSION_FACTORY_KEY]),
        email=email,
        password=TEST_PASSWORD,
        first_name="Test",
        last_name=global_role.value.title(),
        global_role=global_role,
    )


@pytest.fixture
def admin_user(app):
    """Create an admin user for testing."""
    return _create_user(app, "admin@example.com", GlobalRole.ADMIN)


@pytest.fixture
def customer(app):
    """Create a customer for testing."""
    return _create_user(app, "shopper@example.com", GlobalRole.CUSTOMER)


@pytest.fixture
def admin_headers(app, admin_user):
    return bearer_headers(app, admin_user)


@pytest.fixture
def customer_headers(app, customer):
    return bearer_headers(app, customer)
