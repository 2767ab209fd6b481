"""Data models for identitystore."""

from identitystore.models.user import User, UserUpdate

__all__ = [
    "User",
    "UserUpdate",
]
