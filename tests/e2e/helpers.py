from datetime import timedelta

from flask import Flask

from storeguard.domain.users import User
from storeguard.entrypoints.extensions import SECURITY_CORE_KEY
from storeguard.service_layer.security import issue_session_credential


def bearer_headers(app: Flask, user: User, ip_address: str | None = None) -> dict[str, str]:
    """Authorization header with a session token for user, as a completed login would return."""
    policy = app.extensions[SECURITY_CORE_KEY].policy
    credential = issue_session_credential(user, policy.session_token_secret, timedelta(hours=1))
    headers = {"Authorization": f"Bearer {credential.token}"}
    if ip_address:
        headers["X-Forwarded-For"] = ip_address
    return headers


def from_ip(ip_address: str) -> dict[str, str]:
    """The reverse proxy header that makes a test request come from ip_address."""
    return {"X-Forwarded-For": ip_address}
