"""Domain errors for identitystore.

Storage-level failures (unique constraint violations, missing rows) are
translated into these types by the repository layer so callers never have to
inspect driver exceptions.
"""

from typing import Optional


class IdentityStoreError(Exception):
    """Base class for all identitystore errors."""


class DuplicateUser(IdentityStoreError):
    """A uniqueness invariant on the users table was violated."""


class DuplicateEmail(DuplicateUser):
    def __init__(self, email: str):
        self.email = email
        super().__init__(f"A user with email {email!r} already exists")


class DuplicatePid(DuplicateUser):
    def __init__(self, pid):
        self.pid = pid
        super().__init__(f"A user with pid {pid} already exists")


class NotFound(IdentityStoreError):
    """No user matched the lookup."""

    def __init__(self, lookup: str):
        self.lookup = lookup
        super().__init__(f"User not found ({lookup})")


class InvalidCredentials(IdentityStoreError):
    def __init__(self):
        super().__init__("Invalid email or password")


class MigrationFailure(IdentityStoreError):
    """A migration step failed; the schema is left at `last_applied`."""

    def __init__(self, version: str, last_applied: Optional[str], cause: Optional[BaseException] = None):
        self.version = version
        self.last_applied = last_applied
        self.cause = cause
        detail = f": {type(cause).__name__}: {cause}" if cause else ""
        super().__init__(
            f"Migration {version} failed; last applied version is {last_applied or '<none>'}{detail}"
        )
