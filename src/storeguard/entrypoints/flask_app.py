"""ABOUTME: Flask application factory with configuration, blueprints, and error handling
ABOUTME: Creates the JSON API app, wires the request gate and maps security errors to HTTP responses"""

from flask import Flask, Response, g, jsonify
from flask.typing import ResponseReturnValue
from flask_login import current_user
from werkzeug.exceptions import HTTPException
from werkzeug.middleware.proxy_fix import ProxyFix

import storeguard.logging
from storeguard import config
from storeguard.entrypoints.extensions import init_extensions
from storeguard.entrypoints.middleware import (
    access_denied_response,
    rate_limited_response,
    register_request_audit,
    register_request_gate,
    register_request_inspection,
)
from storeguard.service_layer.exceptions import (
    InvalidCode,
    InvalidCredentials,
    InvalidIpAddress,
    IpBlocked,
    NotFoundError,
    RateLimited,
    StoreUnavailable,
    TwoFactorAlreadyEnabled,
    TwoFactorLocked,
    TwoFactorNotSetUp,
)


def create_app(config_name: str = "") -> Flask:
    """
    Flask application factory.

    Args:
        config_name: Configuration name (development, testing, production)

    Returns:
        Configured Flask application instance
    """
    storeguard.logging.logging_setup(config.get_log_level())

    app = Flask(__name__)

    # Load configuration
    flask_config = config.get_config(config_name)
    app.config.from_object(flask_config)

    # Trust 1 layer of proxy (the reverse proxy in front of the app)
    app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1, x_host=1)  # type: ignore[method-assign]

    init_extensions(app, flask_config)

    register_request_gate(app)

    register_request_inspection(app)

    register_request_audit(app)

    register_blueprints(app)

    register_error_handlers(app)

    register_after_request_handlers(app)

    app.logger.info("StoreGuard application startup")

    return app


def register_blueprints(app: Flask) -> None:
    """Register application blueprints."""
    from .blueprints.health import health_bp
    from .blueprints.security import security_bp

    app.register_blueprint(health_bp)
    app.register_blueprint(security_bp)


def _error(error: str, message: str, status: int) -> tuple[Response, int]:
    return jsonify({"error": error, "message": message}), status


def register_error_handlers(app: Flask) -> None:
    """Map security errors and common HTTP errors to JSON responses."""

    @app.errorhandler(InvalidCredentials)
    def invalid_credentials(error: InvalidCredentials) -> ResponseReturnValue:
        return _error("invalid_credentials", str(error), 401)

    @app.errorhandler(InvalidCode)
    def invalid_code(error: InvalidCode) -> ResponseReturnValue:
        return _error("invalid_code", str(error), 401)

    @app.errorhandler(IpBlocked)
    def ip_blocked(error: IpBlocked) -> ResponseReturnValue:
        return access_denied_response()

    @app.errorhandler(InvalidIpAddress)
    def invalid_ip_address(error: InvalidIpAddress) -> ResponseReturnValue:
        return _error("bad_request", str(error), 400)

    @app.errorhandler(NotFoundError)
    def not_found_error(error: NotFoundError) -> ResponseReturnValue:
        return _error("not_found", str(error), 404)

    @app.errorhandler(TwoFactorAlreadyEnabled)
    def two_factor_already_enabled(error: TwoFactorAlreadyEnabled) -> ResponseReturnValue:
        return _error("two_factor_already_enabled", str(error), 409)

    @app.errorhandler(TwoFactorNotSetUp)
    def two_factor_not_set_up(error: TwoFactorNotSetUp) -> ResponseReturnValue:
        return _error("two_factor_not_set_up", str(error), 409)

    @app.errorhandler(TwoFactorLocked)
    def two_factor_locked(error: TwoFactorLocked) -> ResponseReturnValue:
        body, status = _error("two_factor_locked", str(error), 423)
        return body, status, {"Retry-After": str(error.retry_after_seconds)}

    @app.errorhandler(RateLimited)
    def rate_limited(error: RateLimited) -> ResponseReturnValue:
        return rate_limited_response(error)

    @app.errorhandler(StoreUnavailable)
    def store_unavailable(error: StoreUnavailable) -> ResponseReturnValue:
        app.logger.error(f"Store unavailable: {error}")
        return _error("service_unavailable", "Service temporarily unavailable", 503)

    @app.errorhandler(HTTPException)
    def http_error(error: HTTPException) -> ResponseReturnValue:
        """Handle werkzeug HTTP errors such as 404 and 405."""
        return _error((error.name or "error").lower().replace(" ", "_"), error.description or "", error.code or 500)

    @app.errorhandler(500)
    def internal_error(error: Exception) -> ResponseReturnValue:
        """Handle 500 Internal Server errors."""
        app.logger.error(f"Server Error: {error}")
        g.request_error = str(getattr(error, "original_exception", None) or error)
        return _error("internal_server_error", "An unexpected error occurred", 500)


def register_after_request_handlers(app: Flask) -> None:
    """Register after request handlers."""

    @app.after_request
    def add_cache_headers_for_authenticated_users(response: Response) -> Response:
        """Stop browsers caching responses that carry user specific security data."""
        if current_user.is_authenticated:
            response.headers["Cache-Control"] = "no-cache, no-store, must-revalidate"
            response.headers["Pragma"] = "no-cache"
            response.headers["Expires"] = "0"

        return response
