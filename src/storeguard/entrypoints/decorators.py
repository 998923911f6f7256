"""ABOUTME: Authorization decorators for Flask routes
ABOUTME: Provides role-based access control for the admin-only security API"""

from collections.abc import Callable
from functools import wraps
from typing import Any, TypeVar

from flask import current_app, jsonify, request
from flask_login import current_user

from storeguard.domain.value_objects import GlobalRole

F = TypeVar("F", bound=Callable[..., Any])


def require_global_role(required_role: GlobalRole) -> Callable[[F], F]:
    """Decorator that requires the current user to hold a global role.

    Anonymous callers get 401, authenticated callers without the role get 403.
    """

    def decorator(f: F) -> F:
        @wraps(f)
        def decorated_function(*args: Any, **kwargs: Any) -> Any:
            if not current_user.is_authenticated:
                return jsonify({"error": "unauthorized", "message": "Authentication required"}), 401

            if current_user.global_role != required_role:
                current_app.logger.warning(
                    f"User {current_user.id} attempted to access {request.endpoint} "
                    f"with role {current_user.global_role} (required: {required_role})"
                )
                return jsonify({"error": "forbidden", "message": "Access denied"}), 403

            return f(*args, **kwargs)

        return decorated_function  # type: ignore[return-value]

    return decorator


def require_admin(f: F) -> F:
    """Decorator that requires admin role."""
    return require_global_role(GlobalRole.ADMIN)(f)
