"""Pydantic schemas for authentication context."""

from uuid import UUID

from pydantic import BaseModel

from app.db.enums import Role, STAFF_ROLES


class UserSession(BaseModel):
    """
    Session context for authenticated requests.

    Returned by the get_current_session dependency.
    """
    user_id: UUID
    role: Role  # Validated enum
    email: str
    display_name: str
    is_blocked: bool = False

    @property
    def is_staff(self) -> bool:
        return self.role in STAFF_ROLES

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN
