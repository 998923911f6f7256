"""ABOUTME: Security utilities for password hashing and session token issuing
ABOUTME: Werkzeug password hashes and HS256 JSON Web Tokens for logins that passed 2FA"""

import uuid
from datetime import UTC, datetime, timedelta
from typing import Any

import jwt
from werkzeug.security import check_password_hash, generate_password_hash

from storeguard.domain.two_factor import SessionCredential
from storeguard.domain.users import User

SESSION_TOKEN_ALGORITHM = "HS256"


def hash_password(password: str) -> str:
    """Hash a password using werkzeug's secure method."""
    return generate_password_hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    """Verify a password against its hash."""
    return check_password_hash(password_hash, password)


def issue_session_credential(user: User, secret: str, lifetime: timedelta) -> SessionCredential:
    now = datetime.now(UTC)
    expires_at = now + lifetime
    claims = {
        "sub": str(user.id),
        "email": user.email,
        "roles": user.role_names(),
        "2fa_verified": True,
        "iat": now,
        "exp": expires_at,
        "jti": uuid.uuid4().hex,
    }
    token = jwt.encode(claims, secret, algorithm=SESSION_TOKEN_ALGORITHM)
    return SessionCredential(token=token, user_id=user.id, email=user.email, expires_at=expires_at)


def decode_session_token(token: str, secret: str) -> dict[str, Any]:
    """Raises jwt.InvalidTokenError (or a subclass) for bad, tampered or expired tokens."""
    return jwt.decode(token, secret, algorithms=[SESSION_TOKEN_ALGORITHM], options={"require": ["sub", "exp"]})
