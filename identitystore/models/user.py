"""User data models for identitystore."""

from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class User(BaseModel):
    """User record as seen by callers of the store.

    The stored password hash is deliberately not part of this model.
    """

    id: int = Field(..., description="Internal surrogate key, owned by the store")
    pid: UUID = Field(..., description="Public identifier (UUIDv4), immutable")
    email: str = Field(..., description="User email address (case preserved)")
    name: str = Field(..., description="User display name")
    created_at: datetime = Field(..., description="User creation timestamp")
    updated_at: datetime = Field(..., description="User last update timestamp")


class UserUpdate(BaseModel):
    """Mutable user fields. Unset fields are left untouched."""

    model_config = ConfigDict(extra="forbid")

    email: Optional[str] = Field(None, description="New email address")
    name: Optional[str] = Field(None, description="New display name")
    password_hash: Optional[str] = Field(None, description="New password hash (never a raw password)")

    def changes(self) -> dict:
        """Return only the fields the caller actually set."""
        return self.model_dump(exclude_unset=True)
