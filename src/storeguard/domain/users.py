"""ABOUTME: User domain model for StoreGuard authentication
ABOUTME: The minimal account view the security core needs, as a plain Python object"""

import uuid
from datetime import UTC, datetime

from .value_objects import GlobalRole, validate_email


class User:
    """User domain model for authentication and role checks."""

    def __init__(
        self,
        email: str,
        password_hash: str,
        global_role: GlobalRole = GlobalRole.CUSTOMER,
        first_name: str = "",
        last_name: str = "",
        user_id: uuid.UUID | None = None,
        created_at: datetime | None = None,
        is_active: bool = True,
    ):
        validate_email(email)

        if not password_hash:
            raise ValueError("User must have a password_hash")

        self.id = user_id or uuid.uuid4()
        self.email = email
        self.password_hash = password_hash
        self.global_role = global_role
        self.first_name = first_name
        self.last_name = last_name
        self.created_at = created_at or datetime.now(UTC)
        self.is_active = is_active

    # couple of things required for flask_login
    @property
    def is_authenticated(self) -> bool:
        return self.is_active

    @property
    def is_anonymous(self) -> bool:
        return False

    def get_id(self) -> str:
        return str(self.id)

    @property
    def display_name(self) -> str:
        """Get user's display name, preferring full name over email."""
        if self.first_name or self.last_name:
            return f"{self.first_name} {self.last_name}".strip()
        return self.email.split("@")[0]

    def is_admin(self) -> bool:
        return self.global_role == GlobalRole.ADMIN

    def role_names(self) -> list[str]:
        return [self.global_role.value]

    def create_detached_copy(self) -> "User":
        """Copy that is safe to use after the session that loaded it has closed."""
        return User(
            email=self.email,
            password_hash=self.password_hash,
            global_role=self.global_role,
            first_name=self.first_name,
            last_name=self.last_name,
            user_id=self.id,
            created_at=self.created_at,
            is_active=self.is_active,
        )

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, User):
            return False
        return self.id == other.id

    def __hash__(self) -> int:
        return hash(self.id)
