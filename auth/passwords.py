"""
auth/passwords.py -- Password hashing and constant-time login checks.

Passwords: bcrypt directly (no passlib wrapper). bcrypt's cost factor makes
brute-force of low-entropy secrets expensive. The _DUMMY_HASH constant enables
timing equalization in authenticate_user() so response time does not reveal
whether a username exists.

Layer rule: no imports from api/ or cache/.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import bcrypt

from core.errors import InvalidPasswordError

if TYPE_CHECKING:
    from auth.models import User
    from auth.store import UserStore

logger = logging.getLogger("identity.auth")

# bcrypt rejects (bcrypt>=5) or silently truncates longer inputs.
MAX_PASSWORD_BYTES = 72


def hash_password(plain: str) -> str:
    """Return a bcrypt hash of the given plaintext password.

    Raises InvalidPasswordError when the password exceeds MAX_PASSWORD_BYTES
    once encoded. The API models reject such passwords earlier with a 422.
    """
    encoded = plain.encode("utf-8")
    if len(encoded) > MAX_PASSWORD_BYTES:
        raise InvalidPasswordError()
    return bcrypt.hashpw(encoded, bcrypt.gensalt()).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash."""
    encoded = plain.encode("utf-8")
    if len(encoded) > MAX_PASSWORD_BYTES:
        # Nothing that long was ever hashed.
        return False
    try:
        return bcrypt.checkpw(encoded, hashed.encode("utf-8"))
    except ValueError:
        # Corrupt or non-bcrypt hash in the store.
        logger.warning("Stored password hash could not be parsed")
        return False


# Computed once at module load so the first login attempt is not measurably
# slower than subsequent ones.
_DUMMY_HASH: str = hash_password("identity_timing_dummy")


def authenticate_user(store: UserStore, username: str, password: str) -> User | None:
    """Authenticate a username/password pair with timing equalization.

    Always runs bcrypt whether or not the user exists:
    - Unknown username: bcrypt runs against _DUMMY_HASH (same cost as real check)
    - Wrong password: bcrypt runs against the real hash (same cost)

    Returns the User on success, None on any failure.
    """
    user = store.get_by_username(username)
    if user is None or user.hashed_password is None:
        verify_password(password, _DUMMY_HASH)
        return None
    if not verify_password(password, user.hashed_password):
        return None
    return user
