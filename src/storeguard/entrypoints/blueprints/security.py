"""ABOUTME: JSON API endpoints for two-factor authentication and security administration
ABOUTME: 2FA self-service for signed in users, IP lists, audit log, summary and rate limits for admins"""

import uuid
from datetime import UTC, datetime
from typing import Any

from flask import Blueprint, jsonify, request
from flask.typing import ResponseReturnValue
from flask_login import current_user, login_required

from storeguard.domain.audit import AuditLogFilter
from storeguard.domain.value_objects import AuditAction, AuditCategory, RiskLevel
from storeguard.entrypoints.decorators import require_admin
from storeguard.entrypoints.extensions import get_security_core
from storeguard.entrypoints.middleware import client_ip
from storeguard.service_layer.ip_reputation_service import normalise_ip

security_bp = Blueprint("security", __name__, url_prefix="/api/security")


class InvalidRequest(ValueError):
    """The request body or query string is missing something or malformed."""


def _json_body() -> dict[str, Any]:
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise InvalidRequest("No JSON data provided")
    return data


def _required(data: dict[str, Any], *names: str) -> list[str]:
    values = [str(data.get(name) or "").strip() for name in names]
    missing = [name for name, value in zip(names, values, strict=True) if not value]
    if missing:
        raise InvalidRequest(f"Missing required fields: {', '.join(missing)}")
    return values


def _parse_uuid(value: str, name: str) -> uuid.UUID:
    try:
        return uuid.UUID(value)
    except ValueError as error:
        raise InvalidRequest(f"{name} must be a UUID") from error


def _parse_datetime(value: str | None, name: str) -> datetime | None:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError as error:
        raise InvalidRequest(f"{name} must be an ISO 8601 date") from error
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)


def _parse_enum(enum_cls: Any, value: str | None, name: str) -> Any:
    if not value:
        return None
    try:
        return enum_cls(value)
    except ValueError as error:
        raise InvalidRequest(f"Unknown {name} '{value}'") from error


@security_bp.errorhandler(InvalidRequest)
def invalid_request(error: InvalidRequest) -> ResponseReturnValue:
    return jsonify({"error": "bad_request", "message": str(error)}), 400


# Two-factor authentication


@security_bp.route("/2fa/setup", methods=["POST"])
@login_required
def setup_2fa() -> ResponseReturnValue:
    setup = get_security_core().setup_2fa(current_user.id)
    return jsonify(setup.to_dict())


@security_bp.route("/2fa/enable", methods=["POST"])
@login_required
def enable_2fa() -> ResponseReturnValue:
    (code,) = _required(_json_body(), "code")
    get_security_core().enable_2fa(current_user.id, code, ip_address=client_ip())
    return jsonify({"success": True, "message": "Two-factor authentication enabled"})


@security_bp.route("/2fa/disable", methods=["POST"])
@login_required
def disable_2fa() -> ResponseReturnValue:
    code, password = _required(_json_body(), "code", "password")
    get_security_core().disable_2fa(current_user.id, code, password, ip_address=client_ip())
    return jsonify({"success": True, "message": "Two-factor authentication disabled"})


@security_bp.route("/2fa/verify", methods=["POST"])
def verify_2fa() -> ResponseReturnValue:
    """Second step of a login: exchange a TOTP code for a session token."""
    user_id, code = _required(_json_body(), "user_id", "code")
    credential = get_security_core().complete_login_with_totp(
        _parse_uuid(user_id, "user_id"),
        code,
        ip_address=client_ip(),
        user_agent=request.headers.get("User-Agent"),
    )
    return jsonify(credential.to_dict())


@security_bp.route("/2fa/recovery", methods=["POST"])
def login_with_recovery_code() -> ResponseReturnValue:
    email, recovery_code = _required(_json_body(), "email", "recovery_code")
    credential = get_security_core().complete_login_with_recovery_code(
        email,
        recovery_code,
        ip_address=client_ip(),
        user_agent=request.headers.get("User-Agent"),
    )
    return jsonify(credential.to_dict())


@security_bp.route("/2fa/status", methods=["GET"])
@login_required
def two_factor_status() -> ResponseReturnValue:
    return jsonify(get_security_core().two_factor_status(current_user.id).to_dict())


@security_bp.route("/2fa/regenerate-codes", methods=["POST"])
@login_required
def regenerate_recovery_codes() -> ResponseReturnValue:
    (code,) = _required(_json_body(), "code")
    codes = get_security_core().regenerate_recovery_codes(current_user.id, code, ip_address=client_ip())
    return jsonify({"recovery_codes": codes, "message": "New recovery codes generated"})


# IP management


@security_bp.route("/ip/blocked", methods=["GET"])
@require_admin
def list_blocked_ips() -> ResponseReturnValue:
    return jsonify([entry.to_dict() for entry in get_security_core().list_blocked_ips()])


@security_bp.route("/ip/whitelisted", methods=["GET"])
@require_admin
def list_whitelisted_ips() -> ResponseReturnValue:
    return jsonify([entry.to_dict() for entry in get_security_core().list_whitelisted_ips()])


@security_bp.route("/ip/block", methods=["POST"])
@require_admin
def block_ip() -> ResponseReturnValue:
    data = _json_body()
    ip_address, reason = _required(data, "ip_address", "reason")
    duration_hours = data.get("duration_hours")
    if duration_hours is not None and (not isinstance(duration_hours, int) or duration_hours <= 0):
        raise InvalidRequest("duration_hours must be a positive whole number")

    entry = get_security_core().block_ip(ip_address, reason, blocked_by=current_user.id, duration_hours=duration_hours)
    return jsonify({"message": f"IP address {entry.ip_address} blocked", "block": entry.to_dict()})


@security_bp.route("/ip/unblock", methods=["POST"])
@require_admin
def unblock_ip() -> ResponseReturnValue:
    (ip_address,) = _required(_json_body(), "ip_address")
    if not get_security_core().unblock_ip(ip_address, unblocked_by=current_user.id):
        return jsonify({"error": "not_found", "message": f"IP address {ip_address} is not blocked"}), 404
    return jsonify({"message": f"IP address {ip_address} unblocked"})


@security_bp.route("/ip/whitelist", methods=["POST"])
@require_admin
def whitelist_ip() -> ResponseReturnValue:
    data = _json_body()
    (ip_address,) = _required(data, "ip_address")
    entry = get_security_core().whitelist_ip(ip_address, description=data.get("description"), added_by=current_user.id)
    return jsonify({"message": f"IP address {entry.ip_address} whitelisted", "whitelist": entry.to_dict()})


@security_bp.route("/ip/whitelist/remove", methods=["POST"])
@require_admin
def remove_from_whitelist() -> ResponseReturnValue:
    (ip_address,) = _required(_json_body(), "ip_address")
    if not get_security_core().remove_from_whitelist(ip_address, removed_by=current_user.id):
        return jsonify({"error": "not_found", "message": f"IP address {ip_address} is not whitelisted"}), 404
    return jsonify({"message": f"IP address {ip_address} removed from the whitelist"})


# Audit log


@security_bp.route("/audit-logs", methods=["GET"])
@require_admin
def audit_logs() -> ResponseReturnValue:
    args = request.args
    is_successful = args.get("is_successful")
    audit_filter = AuditLogFilter(
        user_id=_parse_uuid(args["user_id"], "user_id") if args.get("user_id") else None,
        category=_parse_enum(AuditCategory, args.get("category"), "category"),
        action=_parse_enum(AuditAction, args.get("action"), "action"),
        risk_level=_parse_enum(RiskLevel, args.get("risk_level"), "risk_level"),
        ip_address=normalise_ip(args["ip_address"]) if args.get("ip_address") else None,
        is_successful=None if is_successful is None else is_successful.lower() in ("true", "1", "yes"),
        start_date=_parse_datetime(args.get("start_date"), "start_date"),
        end_date=_parse_datetime(args.get("end_date"), "end_date"),
    )
    page = get_security_core().query_audit_log(
        audit_filter,
        page=args.get("page", 1, type=int),
        page_size=args.get("page_size", 50, type=int),
    )
    return jsonify({
        "items": [entry.to_dict() for entry in page.items],
        "total_count": page.total_count,
        "page": page.page,
        "page_size": page.page_size,
        "total_pages": page.total_pages,
    })


@security_bp.route("/summary", methods=["GET"])
@require_admin
def security_summary() -> ResponseReturnValue:
    start_date = _parse_datetime(request.args.get("start_date"), "start_date")
    end_date = _parse_datetime(request.args.get("end_date"), "end_date")
    try:
        summary = get_security_core().security_summary(start_date, end_date)
    except ValueError as error:
        raise InvalidRequest(str(error)) from error
    return jsonify(summary.to_dict())


# Rate limiting


@security_bp.route("/rate-limit/status", methods=["GET"])
def rate_limit_status() -> ResponseReturnValue:
    endpoint = request.args.get("endpoint") or "default"
    return jsonify(get_security_core().rate_limit_status(client_ip(), endpoint).to_dict())


@security_bp.route("/rate-limit/reset", methods=["POST"])
@require_admin
def reset_rate_limit() -> ResponseReturnValue:
    data = _json_body()
    (ip_address,) = _required(data, "ip_address")
    get_security_core().reset_rate_limit(ip_address, data.get("endpoint") or None)
    return jsonify({"message": f"Rate limit reset for {ip_address}"})
