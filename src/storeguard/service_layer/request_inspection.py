"""ABOUTME: Request content inspection and per-request audit classification
ABOUTME: Spots XSS and SQL injection attempts in request content and maps requests to audit action, category and risk"""

import re
from collections.abc import Iterable
from dataclasses import dataclass

from storeguard.domain.value_objects import AuditAction, AuditCategory, RiskLevel

CONTENT_CHECKED_METHODS = frozenset({"POST", "PUT", "PATCH"})

XSS_PATTERNS = tuple(
    re.compile(pattern, re.IGNORECASE)
    for pattern in (
        r"<script[^>]*>",
        r"javascript:",
        r"on\w+\s*=",
        r"<iframe[^>]*>",
        r"<object[^>]*>",
        r"<embed[^>]*>",
        r"expression\s*\(",
        r"vbscript:",
    )
)

SQL_INJECTION_PATTERNS = (
    re.compile(r"(\s|^)(SELECT|INSERT|UPDATE|DELETE|DROP|UNION|ALTER|CREATE|EXEC|EXECUTE)\s", re.IGNORECASE),
    re.compile(r";\s*(SELECT|INSERT|UPDATE|DELETE|DROP)", re.IGNORECASE),
    re.compile(r"--\s*$"),
    re.compile(r"/\*.*?\*/"),
    re.compile(r"'\s*OR\s+'?1'?\s*=\s*'?1", re.IGNORECASE),
    re.compile(r"'\s*OR\s+''='", re.IGNORECASE),
    re.compile(r"'\s*;\s*--", re.IGNORECASE),
)


@dataclass(slots=True, kw_only=True, frozen=True)
class InjectionFinding:
    reason: str
    risk_level: RiskLevel


XSS_FINDING = InjectionFinding(reason="XSS attempt detected", risk_level=RiskLevel.HIGH)
SQL_INJECTION_FINDING = InjectionFinding(reason="SQL injection attempt detected", risk_level=RiskLevel.CRITICAL)


def needs_content_check(method: str) -> bool:
    return method.upper() in CONTENT_CHECKED_METHODS


def find_injection(content: str) -> InjectionFinding | None:
    """First injection pattern found in content. XSS is checked before SQL injection."""
    if not content:
        return None
    if any(pattern.search(content) for pattern in XSS_PATTERNS):
        return XSS_FINDING
    if any(pattern.search(content) for pattern in SQL_INJECTION_PATTERNS):
        return SQL_INJECTION_FINDING
    return None


def should_audit(path: str, prefixes: Iterable[str]) -> bool:
    path = path.lower()
    return any(path.startswith(prefix) for prefix in prefixes)


def request_action(method: str, path: str, status_code: int) -> AuditAction:
    path = path.lower()
    if status_code >= 500:
        return AuditAction.ERROR
    if "/login" in path:
        return AuditAction.LOGIN_FAILED if status_code >= 400 else AuditAction.LOGIN
    if "/register" in path:
        return AuditAction.REGISTER
    if "/logout" in path:
        return AuditAction.LOGOUT
    if "/2fa" in path:
        return AuditAction.TWO_FACTOR_OPERATION
    method_actions = {
        "POST": AuditAction.CREATE,
        "PUT": AuditAction.UPDATE,
        "PATCH": AuditAction.UPDATE,
        "DELETE": AuditAction.DELETE,
    }
    return method_actions.get(method.upper(), AuditAction.READ)


def request_category(path: str, status_code: int) -> AuditCategory:
    path = path.lower()
    if status_code >= 500:
        return AuditCategory.SYSTEM
    for marker, category in (
        ("/auth", AuditCategory.AUTH),
        ("/orders", AuditCategory.ORDER),
        ("/admin", AuditCategory.ADMIN),
        ("/security", AuditCategory.SECURITY),
        ("/users", AuditCategory.USER),
        ("/products", AuditCategory.PRODUCT),
    ):
        if marker in path:
            return category
    return AuditCategory.SYSTEM


def request_risk_level(action: AuditAction, status_code: int) -> RiskLevel:
    if status_code >= 500:
        return RiskLevel.HIGH
    if status_code in (401, 403):
        return RiskLevel.MEDIUM
    if action in (AuditAction.LOGIN_FAILED, AuditAction.DELETE):
        return RiskLevel.MEDIUM
    return RiskLevel.LOW
