from __future__ import annotations

from argon2 import PasswordHasher, Type
from argon2.exceptions import InvalidHash, VerificationError

_pwd_hasher = PasswordHasher(type=Type.ID)


def hash_password(password: str) -> str:
    return _pwd_hasher.hash(password)


def verify_password(stored_hash: str, password: str) -> bool:
    """Compare a supplied password against a stored argon2id hash."""
    if not stored_hash:
        return False
    try:
        return _pwd_hasher.verify(stored_hash, password)
    except (InvalidHash, VerificationError):
        return False
