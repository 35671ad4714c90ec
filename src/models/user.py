"""Rental Token Service - User model."""

from datetime import datetime
from enum import Enum

from sqlmodel import Field, SQLModel

from src.utils.helpers import utcnow


class UserRole(str, Enum):
    """Marketplace roles supplied by the auth collaborator."""

    TENANT = "tenant"
    OWNER = "owner"
    ADMIN = "admin"


class User(SQLModel, table=True):
    """User model - local mirror of the Clerk identity.

    Identity is owned by Clerk; this row only exists so ledger and payment
    records have something to reference.

    Attributes:
        id: Auto-increment primary key
        clerk_id: Unique Clerk user ID (indexed)
        email: User email address (indexed)
        role: Marketplace role
        is_active: Account status
    """

    __tablename__ = "users"

    id: int | None = Field(default=None, primary_key=True)
    clerk_id: str = Field(max_length=255, unique=True, index=True)
    email: str = Field(max_length=255, index=True)
    username: str | None = Field(default=None, max_length=255)
    role: UserRole = Field(default=UserRole.TENANT)
    is_active: bool = Field(default=True)

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN
