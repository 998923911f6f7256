"""ABOUTME: Flask extensions initialization and configuration
ABOUTME: Sets up Flask-Login, Flask-Session, security headers and the shared SecurityCore"""

import uuid
from datetime import timedelta

import jwt
from flask import Flask, Request, current_app, jsonify
from flask.typing import ResponseReturnValue
from flask_login import LoginManager
from flask_session import Session
from flask_talisman import Talisman

from storeguard import bootstrap
from storeguard.adapters import database
from storeguard.adapters.counter_store import InMemoryCounterStore, create_counter_store
from storeguard.config import FlaskBaseConfig
from storeguard.domain.users import User
from storeguard.service_layer import security
from storeguard.service_layer.security_core import SecurityCore

SECURITY_CORE_KEY = "storeguard.security_core"
SESSION_FACTORY_KEY = "storeguard.session_factory"

# Initialize extensions
login_manager = LoginManager()
session_store = Session()
talisman = Talisman()


def init_extensions(app: Flask, config: FlaskBaseConfig) -> None:
    """Initialize Flask extensions with app instance."""

    # Initialize Flask-Login
    login_manager.init_app(app)

    # Initialize Flask-Session
    session_store.init_app(app)

    # Initialize Flask-Talisman for security headers
    talisman.init_app(
        app,
        force_https=app.config.get("FORCE_HTTPS", False),  # False in development
        strict_transport_security=True,
        content_security_policy={
            "default-src": "'self'",
            "img-src": "'self' data:",
        },
    )

    store = create_counter_store(config.COUNTER_STORE)
    if isinstance(store, InMemoryCounterStore) and config.COUNTER_STORE_SWEEP_SECONDS > 0:
        # the Celery sweep runs in another process and cannot reach this store
        store.start_sweeper(timedelta(seconds=config.COUNTER_STORE_SWEEP_SECONDS))

    session_factory = database.create_session_factory(config.SQLALCHEMY_DATABASE_URI)
    app.extensions[SESSION_FACTORY_KEY] = session_factory
    app.extensions[SECURITY_CORE_KEY] = bootstrap.bootstrap_security_core(
        session_factory=session_factory,
        store=store,
        policy=config.SECURITY_POLICY,
    )


def get_security_core() -> SecurityCore:
    core = current_app.extensions[SECURITY_CORE_KEY]
    assert isinstance(core, SecurityCore)
    return core


def _load_detached_user(user_uuid: uuid.UUID) -> User | None:
    with get_security_core().uow_factory() as uow:
        db_user = uow.users.get(user_uuid)
        if db_user is None or not db_user.is_active:
            return None
        user = db_user.create_detached_copy()
        assert isinstance(user, User)
        return user


@login_manager.user_loader
def load_user(user_id: str) -> User | None:
    """Load user from database for Flask-Login."""
    try:
        return _load_detached_user(uuid.UUID(user_id))
    except (ValueError, TypeError):
        return None


@login_manager.request_loader
def load_user_from_token(request: Request) -> User | None:
    """Accept the session token issued after a completed 2FA login as a bearer token."""
    auth_header = request.headers.get("Authorization", "")
    if not auth_header.startswith("Bearer "):
        return None

    policy = get_security_core().policy
    try:
        claims = security.decode_session_token(auth_header.removeprefix("Bearer ").strip(), policy.session_token_secret)
        return _load_detached_user(uuid.UUID(claims["sub"]))
    except (jwt.InvalidTokenError, ValueError, TypeError) as error:
        current_app.logger.info(f"Rejected session token: {error}")
        return None


@login_manager.unauthorized_handler
def unauthorized() -> ResponseReturnValue:
    return jsonify({"error": "unauthorized", "message": "Authentication required"}), 401
