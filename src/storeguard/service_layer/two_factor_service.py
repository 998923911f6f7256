"""ABOUTME: Two-factor authentication orchestration service
ABOUTME: Setup, enable, disable and verification flows with recovery codes and a failed attempt lockout"""

import math
import uuid
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

import structlog

from storeguard.adapters.counter_store import AbstractCounterStore
from storeguard.config import SecurityPolicy
from storeguard.domain.two_factor import SessionCredential, TwoFactorCredential, TwoFactorSetup, TwoFactorStatus
from storeguard.domain.users import User
from storeguard.domain.value_objects import AuditAction, AuditCategory, RiskLevel
from storeguard.service_layer import audit_service, security, totp_service
from storeguard.service_layer.exceptions import (
    InvalidCode,
    InvalidCredentials,
    TwoFactorAlreadyEnabled,
    TwoFactorLocked,
    TwoFactorNotSetUp,
    UserNotFoundError,
)
from storeguard.service_layer.unit_of_work import AbstractUnitOfWork

logger = structlog.get_logger(__name__)

TOTP = "totp"
RECOVERY_CODE = "recovery_code"


@dataclass(slots=True, kw_only=True)
class _Attempt:
    verified: bool
    method: str
    lockout_started: bool = False
    remaining_recovery_codes: int = 0


def _user_lock_name(user_id: uuid.UUID) -> str:
    return f"2fa:{user_id}"


def _get_user(uow: AbstractUnitOfWork, user_id: uuid.UUID) -> User:
    with uow:
        user = uow.users.get(user_id)
        if user is None:
            raise UserNotFoundError(str(user_id))
        return user


def _attempt(
    uow: AbstractUnitOfWork,
    store: AbstractCounterStore,
    policy: SecurityPolicy,
    user_id: uuid.UUID,
    code: str,
    method: str,
    expect_enabled: bool = True,
    on_success: Callable[[AbstractUnitOfWork, TwoFactorCredential], None] | None = None,
) -> _Attempt:
    """Check one code for a user and update the failure counter.

    Runs under the per-user lock with the credential row locked, so concurrent
    attempts for one user are applied one at a time. A locked credential raises
    TwoFactorLocked without consuming an attempt.
    """
    with store.lock(_user_lock_name(user_id)):
        with uow:
            credential = uow.two_factor_credentials.get_for_update(user_id)
            if credential is None:
                raise TwoFactorNotSetUp()
            if expect_enabled and not credential.is_enabled:
                raise TwoFactorNotSetUp()
            if not expect_enabled and credential.is_enabled:
                raise TwoFactorAlreadyEnabled()

            now = datetime.now(UTC)
            if credential.is_locked(now):
                raise TwoFactorLocked(math.ceil(credential.lock_remaining(now).total_seconds()))

            if method == RECOVERY_CODE:
                verified = credential.consume_recovery_code(totp_service.hash_recovery_code(code))
            else:
                secret = totp_service.decrypt_totp_secret(credential.secret_encrypted, user_id)
                verified = totp_service.verify_totp_code(secret, code, policy.totp_valid_window)

            if verified:
                credential.record_success(now)
                remaining = credential.remaining_recovery_codes
                if on_success is not None:
                    on_success(uow, credential)
                return _Attempt(verified=True, method=method, remaining_recovery_codes=remaining)

            lockout_started = credential.record_failure(
                policy.max_failed_2fa_attempts, policy.two_factor_lockout, now
            )
            return _Attempt(verified=False, method=method, lockout_started=lockout_started)


def _audit_attempt(
    uow: AbstractUnitOfWork,
    policy: SecurityPolicy,
    user_id: uuid.UUID,
    attempt: _Attempt,
    ip_address: str | None = None,
    user_agent: str | None = None,
) -> None:
    if attempt.verified and attempt.method == RECOVERY_CODE:
        audit_service.record_event(
            uow,
            AuditAction.RECOVERY_CODE_USED,
            AuditCategory.AUTH,
            user_id=user_id,
            ip_address=ip_address,
            user_agent=user_agent,
            risk_level=RiskLevel.MEDIUM,
            details={"remainingCodes": attempt.remaining_recovery_codes},
        )
    if attempt.lockout_started:
        logger.warning("Two-factor verification locked", user_id=str(user_id))
        audit_service.record_event(
            uow,
            AuditAction.SUSPICIOUS_ACTIVITY,
            AuditCategory.SECURITY,
            user_id=user_id,
            ip_address=ip_address,
            user_agent=user_agent,
            is_successful=False,
            risk_level=RiskLevel.HIGH,
            details={
                "reason": "Too many failed two-factor attempts",
                "maxAttempts": policy.max_failed_2fa_attempts,
                "lockoutMinutes": int(policy.two_factor_lockout.total_seconds() // 60),
            },
        )


def _code_method(code: str) -> str:
    return TOTP if totp_service.looks_like_totp_code(code) else RECOVERY_CODE


def setup(
    uow: AbstractUnitOfWork, store: AbstractCounterStore, policy: SecurityPolicy, user_id: uuid.UUID
) -> TwoFactorSetup:
    """Start (or restart) 2FA setup with a fresh secret and recovery codes.

    Nothing is enforced until enable() sees a valid code. Only hashes of the
    recovery codes are stored, the plaintext codes are returned once.

    Raises:
        UserNotFoundError: unknown user
        TwoFactorAlreadyEnabled: 2FA is enabled, disable it first
    """
    secret = totp_service.generate_totp_secret()
    recovery_codes = totp_service.generate_recovery_codes(policy.recovery_code_count)
    code_hashes = [totp_service.hash_recovery_code(code) for code in recovery_codes]
    encrypted_secret = totp_service.encrypt_totp_secret(secret, user_id)

    with store.lock(_user_lock_name(user_id)):
        with uow:
            user = uow.users.get(user_id)
            if user is None:
                raise UserNotFoundError(str(user_id))
            email = user.email

            credential = uow.two_factor_credentials.get_for_update(user_id)
            if credential is None:
                uow.two_factor_credentials.add(
                    TwoFactorCredential(
                        user_id=user_id,
                        secret_encrypted=encrypted_secret,
                        recovery_code_hashes=code_hashes,
                    )
                )
            elif credential.is_enabled:
                raise TwoFactorAlreadyEnabled()
            else:
                credential.restart(encrypted_secret, code_hashes)

    logger.info("Two-factor setup started", user_id=str(user_id))
    return TwoFactorSetup(
        qr_code_image=totp_service.generate_qr_code_data_url(secret, email, policy.totp_issuer),
        manual_entry_key=secret,
        recovery_codes=recovery_codes,
    )


def enable(
    uow: AbstractUnitOfWork,
    store: AbstractCounterStore,
    policy: SecurityPolicy,
    user_id: uuid.UUID,
    code: str,
    ip_address: str | None = None,
) -> bool:
    """Turn on 2FA once the user proves their authenticator produces valid codes.

    Raises:
        TwoFactorNotSetUp: setup() was never called
        TwoFactorAlreadyEnabled: already on
        TwoFactorLocked: too many failed codes
        InvalidCode: the code did not verify, the credential stays pending
    """
    attempt = _attempt(
        uow,
        store,
        policy,
        user_id,
        code,
        TOTP,
        expect_enabled=False,
        on_success=lambda _uow, credential: credential.enable(),
    )
    _audit_attempt(uow, policy, user_id, attempt, ip_address=ip_address)
    if not attempt.verified:
        raise InvalidCode()

    logger.info("Two-factor authentication enabled", user_id=str(user_id))
    audit_service.record_event(
        uow,
        AuditAction.ENABLE_2FA,
        AuditCategory.AUTH,
        user_id=user_id,
        ip_address=ip_address,
        risk_level=RiskLevel.MEDIUM,
        details={"method": TOTP},
    )
    return True


def disable(
    uow: AbstractUnitOfWork,
    store: AbstractCounterStore,
    policy: SecurityPolicy,
    user_id: uuid.UUID,
    code: str,
    password: str,
    ip_address: str | None = None,
) -> bool:
    """Turn off 2FA. Needs the account password and a TOTP or recovery code.

    The secret and every recovery code are deleted.

    Raises:
        InvalidCredentials: wrong password, checked before any code is consumed
        TwoFactorNotSetUp: 2FA is not enabled
        TwoFactorLocked: too many failed codes
        InvalidCode: the code did not verify
    """
    user = _get_user(uow, user_id)
    if not security.verify_password(password, user.password_hash):
        audit_service.record_event(
            uow,
            AuditAction.DISABLE_2FA,
            AuditCategory.AUTH,
            user_id=user_id,
            user_email=user.email,
            ip_address=ip_address,
            is_successful=False,
            error_message="Invalid password",
            risk_level=RiskLevel.MEDIUM,
        )
        raise InvalidCredentials("Invalid password")

    attempt = _attempt(
        uow,
        store,
        policy,
        user_id,
        code,
        _code_method(code),
        on_success=lambda uow_, credential: uow_.two_factor_credentials.delete(credential),
    )
    _audit_attempt(uow, policy, user_id, attempt, ip_address=ip_address)
    if not attempt.verified:
        raise InvalidCode()

    logger.warning("Two-factor authentication disabled", user_id=str(user_id))
    audit_service.record_event(
        uow,
        AuditAction.DISABLE_2FA,
        AuditCategory.AUTH,
        user_id=user_id,
        user_email=user.email,
        ip_address=ip_address,
        risk_level=RiskLevel.HIGH,
        details={"method": attempt.method},
    )
    return True


def verify_code(
    uow: AbstractUnitOfWork,
    store: AbstractCounterStore,
    policy: SecurityPolicy,
    user_id: uuid.UUID,
    code: str,
    ip_address: str | None = None,
) -> bool:
    """Check a TOTP code. Raises TwoFactorLocked while locked out, TwoFactorNotSetUp without 2FA."""
    attempt = _attempt(uow, store, policy, user_id, code, TOTP)
    _audit_attempt(uow, policy, user_id, attempt, ip_address=ip_address)
    return attempt.verified


def verify_recovery_code(
    uow: AbstractUnitOfWork,
    store: AbstractCounterStore,
    policy: SecurityPolicy,
    user_id: uuid.UUID,
    code: str,
    ip_address: str | None = None,
) -> bool:
    """Consume a recovery code. Each code succeeds exactly once.

    Failures count towards the same lockout as TOTP codes.
    """
    attempt = _attempt(uow, store, policy, user_id, code, RECOVERY_CODE)
    _audit_attempt(uow, policy, user_id, attempt, ip_address=ip_address)
    return attempt.verified


def regenerate_recovery_codes(
    uow: AbstractUnitOfWork,
    store: AbstractCounterStore,
    policy: SecurityPolicy,
    user_id: uuid.UUID,
    code: str,
    ip_address: str | None = None,
) -> list[str]:
    """Replace every recovery code. Needs a valid TOTP code.

    Raises:
        TwoFactorNotSetUp: 2FA is not enabled
        TwoFactorLocked: too many failed codes
        InvalidCode: the code did not verify
    """
    recovery_codes = totp_service.generate_recovery_codes(policy.recovery_code_count)
    code_hashes = [totp_service.hash_recovery_code(recovery_code) for recovery_code in recovery_codes]

    attempt = _attempt(
        uow,
        store,
        policy,
        user_id,
        code,
        TOTP,
        on_success=lambda _uow, credential: credential.replace_recovery_codes(code_hashes),
    )
    _audit_attempt(uow, policy, user_id, attempt, ip_address=ip_address)
    if not attempt.verified:
        raise InvalidCode()

    audit_service.record_event(
        uow,
        AuditAction.RECOVERY_CODES_REGENERATED,
        AuditCategory.AUTH,
        user_id=user_id,
        ip_address=ip_address,
        risk_level=RiskLevel.MEDIUM,
        details={"count": len(recovery_codes)},
    )
    return recovery_codes


def get_status(uow: AbstractUnitOfWork, user_id: uuid.UUID) -> TwoFactorStatus:
    with uow:
        credential = uow.two_factor_credentials.get(user_id)
        if credential is None or not credential.is_enabled:
            return TwoFactorStatus(is_enabled=False, last_verified_at=None, remaining_recovery_codes=0)
        return TwoFactorStatus(
            is_enabled=True,
            last_verified_at=credential.last_verified_at,
            remaining_recovery_codes=credential.remaining_recovery_codes,
        )


def _complete_login(
    uow: AbstractUnitOfWork,
    store: AbstractCounterStore,
    policy: SecurityPolicy,
    user: User,
    code: str,
    method: str,
    ip_address: str | None,
    user_agent: str | None,
) -> SessionCredential:
    def audit_login(action: AuditAction, risk_level: RiskLevel, error_message: str | None = None) -> None:
        audit_service.record_event(
            uow,
            action,
            AuditCategory.AUTH,
            user_id=user.id,
            user_email=user.email,
            ip_address=ip_address,
            user_agent=user_agent,
            is_successful=error_message is None,
            error_message=error_message,
            risk_level=risk_level,
            details={"method": method, "twoFactor": True},
        )

    if not user.is_active:
        audit_login(AuditAction.LOGIN_FAILED, RiskLevel.MEDIUM, "Account inactive")
        raise InvalidCredentials()

    try:
        attempt = _attempt(uow, store, policy, user.id, code, method)
    except TwoFactorLocked:
        audit_login(AuditAction.LOGIN_FAILED, RiskLevel.HIGH, "Two-factor verification locked")
        raise
    except TwoFactorNotSetUp:
        audit_login(AuditAction.LOGIN_FAILED, RiskLevel.MEDIUM, "Two-factor authentication not set up")
        raise

    _audit_attempt(uow, policy, user.id, attempt, ip_address=ip_address, user_agent=user_agent)
    if not attempt.verified:
        audit_login(AuditAction.LOGIN_FAILED, RiskLevel.MEDIUM, "Invalid two-factor code")
        raise InvalidCode()

    audit_login(AuditAction.VERIFY_2FA, RiskLevel.LOW)
    audit_login(AuditAction.LOGIN, RiskLevel.LOW)
    return security.issue_session_credential(
        user, policy.session_token_secret, timedelta(hours=policy.session_token_hours)
    )


def complete_login_with_totp(
    uow: AbstractUnitOfWork,
    store: AbstractCounterStore,
    policy: SecurityPolicy,
    user_id: uuid.UUID,
    code: str,
    ip_address: str | None = None,
    user_agent: str | None = None,
) -> SessionCredential:
    """Second step of a login for a user whose password already checked out."""
    user = _get_user(uow, user_id)
    return _complete_login(uow, store, policy, user, code, TOTP, ip_address, user_agent)


def complete_login_with_recovery_code(
    uow: AbstractUnitOfWork,
    store: AbstractCounterStore,
    policy: SecurityPolicy,
    email: str,
    code: str,
    ip_address: str | None = None,
    user_agent: str | None = None,
) -> SessionCredential:
    """Log in with a recovery code when the authenticator is lost.

    An unknown email fails exactly like a wrong code.
    """
    with uow:
        user = uow.users.get_by_email(email)
    if user is None:
        audit_service.record_event(
            uow,
            AuditAction.LOGIN_FAILED,
            AuditCategory.AUTH,
            user_email=email,
            ip_address=ip_address,
            user_agent=user_agent,
            is_successful=False,
            error_message="Unknown account",
            risk_level=RiskLevel.MEDIUM,
            details={"method": RECOVERY_CODE, "twoFactor": True},
        )
        raise InvalidCode()
    return _complete_login(uow, store, policy, user, code, RECOVERY_CODE, ip_address, user_agent)
