"""ABOUTME: Value objects and enums for StoreGuard domain models
ABOUTME: Defines shared enums and validation functions used across domain objects"""

from enum import Enum

from django.core.exceptions import ValidationError
from django.core.validators import EmailValidator, validate_ipv46_address


class GlobalRole(Enum):
    ADMIN = "admin"
    CUSTOMER = "customer"


class AuditCategory(Enum):
    AUTH = "Auth"
    ORDER = "Order"
    PRODUCT = "Product"
    ADMIN = "Admin"
    SECURITY = "Security"
    USER = "User"
    PAYMENT = "Payment"
    SYSTEM = "System"


class AuditAction(Enum):
    # Auth
    LOGIN = "Login"
    LOGIN_FAILED = "LoginFailed"
    LOGOUT = "Logout"
    REGISTER = "Register"
    PASSWORD_RESET = "PasswordReset"
    PASSWORD_CHANGE = "PasswordChange"
    ENABLE_2FA = "Enable2FA"
    DISABLE_2FA = "Disable2FA"
    VERIFY_2FA = "Verify2FA"
    RECOVERY_CODE_USED = "RecoveryCodeUsed"
    RECOVERY_CODES_REGENERATED = "RecoveryCodesRegenerated"

    # Orders
    CREATE_ORDER = "CreateOrder"
    UPDATE_ORDER_STATUS = "UpdateOrderStatus"
    CANCEL_ORDER = "CancelOrder"
    REFUND_ORDER = "RefundOrder"

    # Products
    CREATE_PRODUCT = "CreateProduct"
    UPDATE_PRODUCT = "UpdateProduct"
    DELETE_PRODUCT = "DeleteProduct"
    UPDATE_STOCK = "UpdateStock"

    # Users and admin
    CREATE_USER = "CreateUser"
    UPDATE_USER = "UpdateUser"
    DELETE_USER = "DeleteUser"
    CHANGE_USER_ROLE = "ChangeUserRole"
    BAN_USER = "BanUser"
    UNBAN_USER = "UnbanUser"

    # Security
    RATE_LIMIT_EXCEEDED = "RateLimitExceeded"
    SUSPICIOUS_ACTIVITY = "SuspiciousActivity"
    BLOCKED_IP = "BlockedIp"
    UNBLOCKED_IP = "UnblockedIp"
    WHITELISTED_IP = "WhitelistedIp"
    UNWHITELISTED_IP = "UnwhitelistedIp"
    ACCESS_DENIED = "AccessDenied"

    # Per request entries written by the request audit hook
    CREATE = "Create"
    READ = "Read"
    UPDATE = "Update"
    DELETE = "Delete"
    TWO_FACTOR_OPERATION = "TwoFactorOperation"
    ERROR = "Error"


class RiskLevel(Enum):
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"
    CRITICAL = "Critical"

    @property
    def is_high_risk(self) -> bool:
        return self in (RiskLevel.HIGH, RiskLevel.CRITICAL)


def validate_email(email: str) -> None:
    """Basic email validation."""
    # Passing in the message stops the validator from lazily translating its
    # default message, which needs configured Django settings.
    validator = EmailValidator(message="Invalid email address")
    try:
        validator(email)
    except ValidationError as error:
        raise ValueError("Invalid email address") from error


def validate_ip_address(ip_address: str) -> None:
    """Accepts IPv4 and IPv6 addresses in their textual form."""
    try:
        validate_ipv46_address(ip_address)
    except ValidationError as error:
        raise ValueError(f"Invalid IP address: {ip_address!r}") from error
