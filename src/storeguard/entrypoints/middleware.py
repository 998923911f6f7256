"""ABOUTME: Request hooks run around every request
ABOUTME: Security gate (blocked 403, rate limited 429), content inspection for injection attempts and per-request auditing"""

from urllib.parse import unquote_plus

from flask import Flask, Response, g, jsonify, request
from flask.typing import ResponseReturnValue
from flask_login import current_user

from storeguard.domain.value_objects import AuditAction, AuditCategory
from storeguard.entrypoints.extensions import get_security_core
from storeguard.service_layer import request_inspection
from storeguard.service_layer.exceptions import InvalidIpAddress, IpBlocked, RateLimited
from storeguard.service_layer.ip_reputation_service import normalise_ip

EXEMPT_PATH_PREFIXES = ("/health", "/static")


def access_denied_response() -> tuple[Response, int]:
    return jsonify({"error": "access_denied", "message": "Access denied"}), 403


def rate_limited_response(error: RateLimited) -> tuple[Response, int, dict[str, str]]:
    body = jsonify({
        "error": "rate_limited",
        "message": "Too many requests, please slow down",
        "reset_time": error.reset_time.isoformat(),
    })
    return body, 429, {"Retry-After": str(error.retry_after_seconds)}


def security_violation_response() -> tuple[Response, int]:
    return jsonify({"error": "security_violation", "message": "Request rejected"}), 400


def client_ip() -> str:
    """The caller's address. ProxyFix has already applied X-Forwarded-For."""
    return request.remote_addr or ""


def audited_client_ip() -> str:
    """client_ip() in canonical form, or as given when it is not a usable address."""
    try:
        return normalise_ip(client_ip())
    except InvalidIpAddress:
        return client_ip()


def _refuse(response: ResponseReturnValue) -> ResponseReturnValue:
    # refused requests are audited by the hook that refused them, if at all
    g.request_refused = True
    return response


def register_request_gate(app: Flask) -> None:
    @app.before_request
    def enforce_security_gate() -> ResponseReturnValue | None:
        if request.path.startswith(EXEMPT_PATH_PREFIXES):
            return None

        try:
            get_security_core().enforce_request(
                client_ip(),
                request.path,
                http_method=request.method,
                user_agent=request.headers.get("User-Agent"),
            )
        except IpBlocked:
            return _refuse(access_denied_response())
        except RateLimited as error:
            return _refuse(rate_limited_response(error))
        except InvalidIpAddress:
            app.logger.warning(f"Refusing request with unusable client address {request.remote_addr!r}")
            return _refuse(access_denied_response())
        return None


def register_request_inspection(app: Flask) -> None:
    """Refuse POST, PUT and PATCH requests whose body or query string looks like XSS or SQL injection."""

    @app.before_request
    def inspect_request_content() -> ResponseReturnValue | None:
        core = get_security_core()
        if not core.policy.inspect_request_content or request.path.startswith(EXEMPT_PATH_PREFIXES):
            return None
        if not request_inspection.needs_content_check(request.method):
            return None

        # cache=True keeps the body readable for the view
        query = unquote_plus(request.query_string.decode("utf-8", "replace"))
        content = request.get_data(cache=True, as_text=True) + query
        finding = request_inspection.find_injection(content)
        if finding is None:
            return None

        app.logger.warning(f"{finding.reason} from IP {client_ip()}, path {request.path}")
        core.record_audit_event(
            AuditAction.SUSPICIOUS_ACTIVITY,
            AuditCategory.SECURITY,
            ip_address=audited_client_ip(),
            user_agent=request.headers.get("User-Agent"),
            endpoint=request.path,
            http_method=request.method,
            is_successful=False,
            risk_level=finding.risk_level,
            details={"reason": finding.reason},
        )
        return _refuse(security_violation_response())


def register_request_audit(app: Flask) -> None:
    """Write one audit entry for every answered request under the audited path prefixes."""

    @app.after_request
    def audit_request(response: Response) -> Response:
        core = get_security_core()
        if not core.policy.audit_requests or g.get("request_refused", False):
            return response
        if not request_inspection.should_audit(request.path, core.policy.audited_path_prefixes):
            return response

        status_code = response.status_code
        action = request_inspection.request_action(request.method, request.path, status_code)
        authenticated = current_user.is_authenticated
        core.record_audit_event(
            action,
            request_inspection.request_category(request.path, status_code),
            user_id=current_user.id if authenticated else None,
            user_email=current_user.email if authenticated else None,
            ip_address=audited_client_ip(),
            user_agent=request.headers.get("User-Agent"),
            endpoint=request.path,
            http_method=request.method,
            is_successful=status_code < 400,
            error_message=g.get("request_error"),
            risk_level=request_inspection.request_risk_level(action, status_code),
        )
        return response
