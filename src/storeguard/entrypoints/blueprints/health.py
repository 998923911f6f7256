"""ABOUTME: Health check endpoint for monitoring service status
ABOUTME: Reports database and counter store reachability as JSON"""

from flask import Blueprint, current_app, jsonify
from flask.typing import ResponseReturnValue
from sqlalchemy.exc import SQLAlchemyError

from storeguard import __version__
from storeguard.entrypoints.extensions import get_security_core

health_bp = Blueprint("health", __name__)


def check_database() -> tuple[bool, int | str]:
    """
    Check database connectivity and return the number of active blocks.

    Returns:
        Tuple of (success: bool, blocked_ip_count: int | "UNKNOWN")
    """
    try:
        return True, len(get_security_core().list_blocked_ips())
    except SQLAlchemyError as error:
        current_app.logger.error(f"Health check database error: {error}")
        return False, "UNKNOWN"


def check_counter_store() -> bool:
    return get_security_core().store.ping()


@health_bp.route("/health")
def health_check() -> ResponseReturnValue:
    """
    Health check endpoint returning JSON with system status.

    HTTP status 200 if everything is healthy, 500 if any check fails.
    """
    db_ok, blocked_ip_count = check_database()
    store_ok = check_counter_store()

    response_data = {
        "database_ok": db_ok,
        "blocked_ip_count": blocked_ip_count,
        "counter_store_ok": store_ok,
        "version": __version__,
    }

    status_code = 200 if db_ok and store_ok else 500
    return jsonify(response_data), status_code
