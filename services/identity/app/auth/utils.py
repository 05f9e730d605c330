import asyncio
import re

from passlib.context import CryptContext

from app.auth.constants import PASSWORD_MAX_LENGTH, PASSWORD_MIN_LENGTH
from app.exceptions import WeakPassword

context = CryptContext(schemes=["argon2"], deprecated="auto")

# Verified against when the email is unknown so both login failure paths cost
# one hash verification.
_DUMMY_HASH = context.hash("not-a-real-password")

_PASSWORD_CLASSES = (
    re.compile(r"[a-z]"),
    re.compile(r"[A-Z]"),
    re.compile(r"\d"),
    re.compile(r"[^A-Za-z0-9]"),
)


def hash_password(password: str) -> str:
    return context.hash(password)


def verify_password(plain: str, hashed: str | None) -> bool:
    if not hashed:
        context.verify(plain, _DUMMY_HASH)
        return False
    return context.verify(plain, hashed)


async def hash_password_async(password: str) -> str:
    """Hash in a worker thread; argon2 is CPU-bound."""
    return await asyncio.to_thread(hash_password, password)


async def verify_password_async(plain: str, hashed: str | None) -> bool:
    return await asyncio.to_thread(verify_password, plain, hashed)


def validate_password_strength(password: str) -> None:
    """Raise WeakPassword unless the length and all four character classes are satisfied."""
    if not PASSWORD_MIN_LENGTH <= len(password) <= PASSWORD_MAX_LENGTH:
        raise WeakPassword()
    if not all(pattern.search(password) for pattern in _PASSWORD_CLASSES):
        raise WeakPassword()
