"""Password hashing for stored credentials.

Raw passwords never reach the database: the repository only accepts values
that look like bcrypt hashes.
"""

import os
import re

import bcrypt
from dotenv import load_dotenv

load_dotenv()

BCRYPT_ROUNDS = int(os.getenv("BCRYPT_ROUNDS", "12"))

# bcrypt only reads the first 72 bytes of its input.
MAX_PASSWORD_BYTES = 72

# $2a$/$2b$/$2y$ + 2-digit cost + 53 chars of salt and digest
_BCRYPT_HASH_RE = re.compile(r"^\$2[aby]\$\d{2}\$[./A-Za-z0-9]{53}$")


def hash_password(password: str) -> str:
    """Hash a plain-text password with a fresh salt."""
    if not password:
        raise ValueError("Password must not be empty")
    if len(password.encode("utf-8")) > MAX_PASSWORD_BYTES:
        raise ValueError(f"Password must be at most {MAX_PASSWORD_BYTES} bytes when UTF-8 encoded")
    hashed = bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=BCRYPT_ROUNDS))
    return hashed.decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        return False


def is_password_hash(value: str) -> bool:
    """True if `value` is a bcrypt hash rather than a raw password."""
    return bool(value) and _BCRYPT_HASH_RE.match(value) is not None
