"""ABOUTME: Two-factor authentication domain model and its result records
ABOUTME: TwoFactorCredential holds the encrypted TOTP secret, recovery code hashes and lockout state"""

import uuid
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any


class TwoFactorCredential:
    """Per-user TOTP credential.

    A user without a credential has 2FA unset. Setup creates a pending credential
    (is_enabled False) and a verified code enables it. Disabling deletes it.
    """

    def __init__(
        self,
        user_id: uuid.UUID,
        secret_encrypted: str,
        recovery_code_hashes: list[str] | None = None,
        is_enabled: bool = False,
        used_recovery_code_count: int = 0,
        failed_attempt_count: int = 0,
        locked_until: datetime | None = None,
        last_verified_at: datetime | None = None,
        created_at: datetime | None = None,
        updated_at: datetime | None = None,
    ):
        self.user_id = user_id
        self.secret_encrypted = secret_encrypted
        self.recovery_code_hashes = list(recovery_code_hashes or [])
        self.is_enabled = is_enabled
        self.used_recovery_code_count = used_recovery_code_count
        self.failed_attempt_count = failed_attempt_count
        self.locked_until = locked_until
        self.last_verified_at = last_verified_at
        self.created_at = created_at or datetime.now(UTC)
        self.updated_at = updated_at or self.created_at

    @property
    def remaining_recovery_codes(self) -> int:
        return len(self.recovery_code_hashes)

    def is_locked(self, now: datetime | None = None) -> bool:
        return self.locked_until is not None and self.locked_until > (now or datetime.now(UTC))

    def lock_remaining(self, now: datetime | None = None) -> timedelta:
        if not self.is_locked(now):
            return timedelta(0)
        assert self.locked_until is not None
        return self.locked_until - (now or datetime.now(UTC))

    def restart(self, secret_encrypted: str, recovery_code_hashes: list[str]) -> None:
        """Fresh secret and codes for a new pending setup."""
        self.secret_encrypted = secret_encrypted
        self.recovery_code_hashes = list(recovery_code_hashes)
        self.is_enabled = False
        self.used_recovery_code_count = 0
        self.failed_attempt_count = 0
        self.locked_until = None
        self._touch()

    def enable(self) -> None:
        self.is_enabled = True
        self._touch()

    def record_success(self, now: datetime | None = None) -> None:
        now = now or datetime.now(UTC)
        self.failed_attempt_count = 0
        self.locked_until = None
        self.last_verified_at = now
        self.updated_at = now

    def record_failure(self, max_attempts: int, lockout: timedelta, now: datetime | None = None) -> bool:
        """Count a failed attempt. Returns True when this failure triggered the lockout."""
        now = now or datetime.now(UTC)
        self.failed_attempt_count += 1
        self.updated_at = now
        if self.failed_attempt_count >= max_attempts:
            self.locked_until = now + lockout
            self.failed_attempt_count = 0
            return True
        return False

    def consume_recovery_code(self, code_hash: str) -> bool:
        if code_hash not in self.recovery_code_hashes:
            return False
        # assign a new list so the JSON column sees the change
        self.recovery_code_hashes = [h for h in self.recovery_code_hashes if h != code_hash]
        self.used_recovery_code_count += 1
        self._touch()
        return True

    def replace_recovery_codes(self, recovery_code_hashes: list[str]) -> None:
        self.recovery_code_hashes = list(recovery_code_hashes)
        self.used_recovery_code_count = 0
        self._touch()

    def _touch(self) -> None:
        self.updated_at = datetime.now(UTC)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, TwoFactorCredential):
            return False
        return self.user_id == other.user_id

    def __hash__(self) -> int:
        return hash(self.user_id)


@dataclass(slots=True, kw_only=True)
class TwoFactorSetup:
    """What the user needs to configure an authenticator app. Shown once."""

    qr_code_image: str
    manual_entry_key: str
    recovery_codes: list[str]

    def to_dict(self) -> dict[str, Any]:
        return {
            "qr_code_image": self.qr_code_image,
            "manual_entry_key": self.manual_entry_key,
            "recovery_codes": list(self.recovery_codes),
        }


@dataclass(slots=True, kw_only=True)
class TwoFactorStatus:
    is_enabled: bool
    last_verified_at: datetime | None
    remaining_recovery_codes: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "is_enabled": self.is_enabled,
            "last_verified_at": self.last_verified_at.isoformat() if self.last_verified_at else None,
            "remaining_recovery_codes": self.remaining_recovery_codes,
        }


@dataclass(slots=True, kw_only=True)
class SessionCredential:
    """Issued after a login has passed its second factor."""

    token: str
    user_id: uuid.UUID
    email: str
    expires_at: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "token": self.token,
            "user_id": str(self.user_id),
            "email": self.email,
            "expires_at": self.expires_at.isoformat(),
        }
