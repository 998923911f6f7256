"""ABOUTME: User management service layer
ABOUTME: Creates the accounts that sign in to the security API and the admin CLI"""

import structlog

from storeguard.domain.users import User
from storeguard.domain.value_objects import AuditAction, AuditCategory, GlobalRole, RiskLevel

from . import audit_service
from .exceptions import UserAlreadyExists
from .security import hash_password
from .unit_of_work import AbstractUnitOfWork

logger = structlog.get_logger(__name__)


def create_user(
    uow: AbstractUnitOfWork,
    email: str,
    password: str,
    global_role: GlobalRole = GlobalRole.CUSTOMER,
    first_name: str = "",
    last_name: str = "",
) -> User:
    """
    Create a new user with a hashed password.

    Raises:
        UserAlreadyExists: If email already exists
        ValueError: If the email is invalid or the password empty
    """
    email = email.strip().lower()
    if not password:
        raise ValueError("Password must not be empty")

    with uow:
        if uow.users.get_by_email(email):
            raise UserAlreadyExists(email=email)

        user = User(
            email=email,
            password_hash=hash_password(password),
            global_role=global_role,
            first_name=first_name,
            last_name=last_name,
        )
        uow.users.add(user)
        detached_user = user.create_detached_copy()

    logger.info("User created", user_id=str(detached_user.id), role=global_role.value)
    audit_service.record_event(
        uow,
        AuditAction.CREATE_USER,
        AuditCategory.USER,
        user_id=detached_user.id,
        user_email=detached_user.email,
        entity_type="User",
        entity_id=str(detached_user.id),
        risk_level=RiskLevel.MEDIUM if global_role == GlobalRole.ADMIN else RiskLevel.LOW,
        details={"role": global_role.value},
    )
    return detached_user
