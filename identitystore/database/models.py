"""SQLAlchemy database models for identitystore."""

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import Column, Integer, String, DateTime, Uuid

from identitystore.database.database import Base


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Normalize a datetime to aware UTC.

    Aware values are converted, so a stored wall time is always UTC. Naive
    values are UTC already: SQLite drops the offset of what was written.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class UserDB(Base):
    """Database model for User.

    The table itself is created by `SchemaManager`, not `create_all()`; this
    mapping must stay in sync with the DDL there.
    """

    __tablename__ = "users"

    # Surrogate key (SERIAL / AUTOINCREMENT, never reused)
    id = Column(Integer, primary_key=True, autoincrement=True)

    # Public identifier
    pid = Column(Uuid(as_uuid=True), nullable=False, unique=True)

    # User profile
    email = Column(String(255), nullable=False, unique=True)
    name = Column(String(255), nullable=False)

    # Salted password hash
    password = Column(String(255), nullable=False)

    # Timestamps (assigned explicitly by the repository)
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)

    def to_pydantic(self):
        """Convert database model to Pydantic model."""
        from identitystore.models.user import User
        return User(
            id=self.id,
            pid=self.pid,
            email=self.email,
            name=self.name,
            created_at=as_utc(self.created_at),
            updated_at=as_utc(self.updated_at),
        )
