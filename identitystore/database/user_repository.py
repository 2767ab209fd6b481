"""Repository for User database operations.

Each public method is one transaction: it commits on success and rolls back
on any failure. Uniqueness of `email` and `pid` is left to the database's
unique constraints; violations come back as `DuplicateEmail` / `DuplicatePid`.
"""

import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Callable, Mapping, Optional, Tuple, Union

from sqlalchemy import text
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from identitystore.auth.passwords import is_password_hash
from identitystore.database.models import UserDB, as_utc
from identitystore.errors import DuplicateEmail, DuplicatePid, NotFound
from identitystore.models.user import User, UserUpdate

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]
PidLike = Union[uuid.UUID, str]

MAX_FIELD_LENGTH = 255

# Substrings identifying each unique constraint in driver errors
# (PostgreSQL constraint names, SQLite "UNIQUE constraint failed: <table>.<column>").
_UNIQUE_MARKERS = {
    "pid": ("users_pid_key", "users.pid"),
    "email": ("users_email_key", "users.email"),
}


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _clean_text(value: Optional[str], field: str) -> str:
    if value is None:
        raise ValueError(f"{field} must not be empty")
    cleaned = value.strip()
    if not cleaned:
        raise ValueError(f"{field} must not be empty")
    if len(cleaned) > MAX_FIELD_LENGTH:
        raise ValueError(f"{field} must be at most {MAX_FIELD_LENGTH} characters")
    return cleaned


def _require_password_hash(value: Optional[str]) -> str:
    if value is None or not is_password_hash(value):
        raise ValueError("password must be a salted hash, not a raw password")
    return value


def _as_uuid(pid: PidLike) -> Optional[uuid.UUID]:
    if isinstance(pid, uuid.UUID):
        return pid
    try:
        return uuid.UUID(str(pid))
    except ValueError:
        return None


def _violated_unique_column(error: IntegrityError) -> Optional[str]:
    """Return "email" or "pid" when `error` is a unique violation on that column."""
    diag = getattr(error.orig, "diag", None)
    constraint = getattr(diag, "constraint_name", None)
    haystack = constraint if constraint else str(error.orig)
    for column, markers in _UNIQUE_MARKERS.items():
        if any(marker in haystack for marker in markers):
            return column
    return None


class UserRepository:
    """Repository for User database operations."""

    def __init__(self, db: Session, clock: Optional[Clock] = None):
        self.db = db
        self.clock = clock

    def _now(self) -> datetime:
        """Current time from the single authoritative clock.

        PostgreSQL: the transaction timestamp, which is also what the
        updated_at trigger writes. Elsewhere: the process UTC clock.
        """
        if self.clock is not None:
            return as_utc(self.clock())
        if self.db.get_bind().dialect.name == "postgresql":
            return as_utc(self.db.execute(text("SELECT CURRENT_TIMESTAMP")).scalar_one())
        return utc_now()

    def _end_transaction(self) -> None:
        # Reads autobegin a transaction; end it so every call is its own transaction.
        self.db.rollback()

    def _get_db_by_pid(self, pid: PidLike) -> UserDB:
        pid_value = _as_uuid(pid)
        user_db = None
        if pid_value is not None:
            user_db = self.db.query(UserDB).filter(UserDB.pid == pid_value).first()
        if user_db is None:
            raise NotFound(f"pid={pid}")
        return user_db

    def _get_db_by_email(self, email: str) -> UserDB:
        lookup = (email or "").strip()
        user_db = self.db.query(UserDB).filter(UserDB.email == lookup).first()
        if user_db is None:
            raise NotFound(f"email={lookup}")
        return user_db

    def _commit(self, action: str, user_db: UserDB, email: str, pid: uuid.UUID) -> User:
        """Commit the pending write and return the stored row as a User."""
        try:
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            column = _violated_unique_column(e)
            logger.error(f"Failed to {action} user {pid}: {type(e).__name__}: {str(e.orig)}")
            if column == "email":
                raise DuplicateEmail(email) from e
            if column == "pid":
                raise DuplicatePid(pid) from e
            raise
        except Exception as e:
            self.db.rollback()
            logger.error(f"Failed to {action} user {pid}: {type(e).__name__}: {str(e)}")
            raise
        try:
            self.db.refresh(user_db)
            return user_db.to_pydantic()
        finally:
            self._end_transaction()

    def create(self, email: str, name: str, password_hash: str) -> User:
        """Create a new user with a fresh pid.

        Args:
            email: Email address (surrounding whitespace stripped, case kept)
            name: Display name
            password_hash: Salted hash produced by `hash_password`

        Returns:
            The stored User; `created_at == updated_at`

        Raises:
            DuplicateEmail: email already taken
            DuplicatePid: generated pid collided (practically impossible)
        """
        email = _clean_text(email, "email")
        name = _clean_text(name, "name")
        password_hash = _require_password_hash(password_hash)

        pid = uuid.uuid4()
        try:
            now = self._now()
            user_db = UserDB(
                pid=pid,
                email=email,
                name=name,
                password=password_hash,
                created_at=now,
                updated_at=now,
            )
            self.db.add(user_db)
        except Exception:
            self.db.rollback()
            raise
        user = self._commit("create", user_db, email, pid)
        logger.debug(f"Created user {pid} (id={user.id})")
        return user

    def get_by_pid(self, pid: PidLike) -> User:
        """Get user by public id; malformed ids are reported as NotFound."""
        try:
            return self._get_db_by_pid(pid).to_pydantic()
        finally:
            self._end_transaction()

    def get_by_email(self, email: str) -> User:
        """Get user by exact email match."""
        try:
            return self._get_db_by_email(email).to_pydantic()
        finally:
            self._end_transaction()

    def get_credentials(self, email: str) -> Tuple[User, str]:
        """Return the user and stored password hash for authentication."""
        try:
            user_db = self._get_db_by_email(email)
            return user_db.to_pydantic(), user_db.password
        finally:
            self._end_transaction()

    def update(self, pid: PidLike, fields: Union[UserUpdate, Mapping]) -> User:
        """Apply field changes and refresh `updated_at`.

        The new `updated_at` is always strictly later than the previous one.
        """
        if not isinstance(fields, UserUpdate):
            fields = UserUpdate(**fields)
        changes = fields.changes()

        cleaned = {}
        for key, value in changes.items():
            if key == "password_hash":
                cleaned["password"] = _require_password_hash(value)
            else:
                cleaned[key] = _clean_text(value, key)

        try:
            user_db = self._get_db_by_pid(pid)
            now = self._now()
            previous = as_utc(user_db.updated_at)
            if now <= previous:
                now = previous + timedelta(microseconds=1)
            for key, value in cleaned.items():
                setattr(user_db, key, value)
            user_db.updated_at = now
            user_pid = user_db.pid
            email = user_db.email
        except Exception:
            self.db.rollback()
            raise

        user = self._commit("update", user_db, email, user_pid)
        logger.debug(f"Updated user {user_pid}: {sorted(changes)}")
        return user

    def delete(self, pid: PidLike) -> None:
        """Permanently delete a user."""
        try:
            user_db = self._get_db_by_pid(pid)
            user_pid = user_db.pid
            self.db.delete(user_db)
            self.db.commit()
        except NotFound:
            self.db.rollback()
            raise
        except Exception as e:
            self.db.rollback()
            logger.error(f"Failed to delete user {pid}: {type(e).__name__}: {str(e)}")
            raise
        logger.debug(f"Deleted user {user_pid}")

    def count(self) -> int:
        try:
            return self.db.query(UserDB).count()
        finally:
            self._end_transaction()
