"""Account workflows built on the user repository: register, authenticate, change password."""

import logging

from identitystore.auth.passwords import hash_password, verify_password
from identitystore.database.user_repository import PidLike, UserRepository
from identitystore.errors import InvalidCredentials, NotFound
from identitystore.models.user import User, UserUpdate

logger = logging.getLogger(__name__)


class AccountService:
    def __init__(self, repository: UserRepository):
        self.repository = repository

    def register(self, email: str, name: str, password: str) -> User:
        """Hash the password and create the user."""
        return self.repository.create(email, name, hash_password(password))

    def authenticate(self, email: str, password: str) -> User:
        """Return the user if the password matches.

        Unknown email and wrong password raise the same error.
        """
        try:
            user, password_hash = self.repository.get_credentials(email)
        except NotFound:
            logger.debug("Authentication failed: unknown email")
            raise InvalidCredentials() from None
        if not verify_password(password, password_hash):
            logger.debug(f"Authentication failed for user {user.pid}")
            raise InvalidCredentials()
        return user

    def change_password(self, pid: PidLike, new_password: str) -> User:
        return self.repository.update(pid, UserUpdate(password_hash=hash_password(new_password)))
