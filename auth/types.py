"""Pydantic models for auth domain."""

from datetime import datetime
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, EmailStr, Field


class UserRole(str, Enum):
    """Role resolved for every request."""

    ADMIN = "admin"
    USER = "user"


class User(BaseModel):
    """A registered user of the system."""

    id: UUID
    email: EmailStr
    full_name: str | None = None
    role: UserRole = UserRole.USER
    is_active: bool = True
    created_at: datetime

    model_config = {"from_attributes": True}


class Caller(BaseModel):
    """The authenticated identity an operation runs on behalf of."""

    id: UUID
    role: UserRole

    model_config = {"frozen": True}

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN

    @classmethod
    def from_user(cls, user: User) -> "Caller":
        return cls(id=user.id, role=user.role)


class Session(BaseModel):
    """An active user session."""

    token: str = Field(..., description="Session token (opaque string)")
    user_id: UUID
    created_at: datetime
    expires_at: datetime
    last_activity_at: datetime
