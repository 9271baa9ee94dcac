from __future__ import annotations

from functools import lru_cache

from argon2 import PasswordHasher
from argon2.exceptions import InvalidHashError, VerificationError


@lru_cache
def get_password_hasher() -> PasswordHasher:
    return PasswordHasher()


def hash_password(password: str) -> str:
    return get_password_hasher().hash(password)


def verify_password(password_hash: str, password: str) -> bool:
    if not password_hash or not password_hash.startswith("$argon2"):
        return False
    try:
        return get_password_hasher().verify(password_hash, password)
    except (VerificationError, InvalidHashError):
        return False
