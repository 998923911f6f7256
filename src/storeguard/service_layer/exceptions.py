"""ABOUTME: Custom exceptions for service layer operations
ABOUTME: Defines the security core's error taxonomy with deliberately generic messages"""

from datetime import datetime


class StoreGuardError(Exception):
    """Base exception for all our custom errors."""


class ServiceLayerError(StoreGuardError):
    """Base exception for all service layer errors."""


class StoreUnavailable(StoreGuardError):
    """The durable store or the shared counter store could not be reached."""

    def __init__(self, store: str = "", detail: str = "") -> None:
        message = f"{store or 'Store'} unavailable"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)
        self.store = store
        self.detail = detail


class InvalidCredentials(ServiceLayerError):
    """Raised when authentication fails due to invalid credentials."""

    def __init__(self, message: str = "") -> None:
        super().__init__(message or "Invalid email or password")


class InvalidCode(ServiceLayerError):
    """A TOTP or recovery code did not check out. Never says which part was wrong."""

    def __init__(self) -> None:
        super().__init__("Invalid authentication code")


class TwoFactorLocked(ServiceLayerError):
    """Too many failed codes, verification is refused until the lockout ends."""

    def __init__(self, retry_after_seconds: int) -> None:
        super().__init__("Too many failed attempts, try again later")
        self.retry_after_seconds = retry_after_seconds


class TwoFactorAlreadyEnabled(ServiceLayerError):
    def __init__(self) -> None:
        super().__init__("Two-factor authentication is already enabled")


class TwoFactorNotSetUp(ServiceLayerError):
    def __init__(self) -> None:
        super().__init__("Two-factor authentication is not set up")


class RateLimited(ServiceLayerError):
    """Too many requests for this client and endpoint."""

    def __init__(self, reset_time: datetime, retry_after_seconds: int) -> None:
        super().__init__("Too many requests, please slow down")
        self.reset_time = reset_time
        self.retry_after_seconds = retry_after_seconds


class IpBlocked(ServiceLayerError):
    """The client address is blocked. Carries no reason on purpose."""

    def __init__(self) -> None:
        super().__init__("Access denied")


class InvalidIpAddress(ServiceLayerError):
    def __init__(self, ip_address: str = "") -> None:
        super().__init__(f"Invalid IP address: {ip_address!r}" if ip_address else "Invalid IP address")
        self.ip_address = ip_address


class NotFoundError(ServiceLayerError):
    """Base exception for when a requested resource is not found."""


class UserNotFoundError(NotFoundError):
    """Raised when a user cannot be found."""

    def __init__(self, user_id: str = "") -> None:
        super().__init__(f"User {user_id} not found" if user_id else "User not found")
        self.user_id = user_id


class UserAlreadyExists(ServiceLayerError):
    """Raised when trying to create a user that already exists."""

    def __init__(self, email: str = "") -> None:
        super().__init__(f"User with email '{email}' already exists" if email else "User already exists")
        self.email = email
