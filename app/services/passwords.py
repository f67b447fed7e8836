"""
Password Service - Argon2id hashing and the password strength policy.

Hashing is CPU-bound, so hash/verify run in the threadpool and never block
the event loop.
"""

import re

from argon2 import PasswordHasher
from argon2.exceptions import InvalidHashError, VerificationError, VerifyMismatchError
from starlette.concurrency import run_in_threadpool
from structlog import get_logger

logger = get_logger(__name__)

MIN_PASSWORD_LENGTH = 10
PASSWORD_SYMBOLS = "@$!%*?&"

_ALLOWED_CHARS = re.compile(rf"^[A-Za-z\d{re.escape(PASSWORD_SYMBOLS)}]*$")

# (rule message, predicate) evaluated in order
_STRENGTH_RULES: tuple[tuple[str, re.Pattern[str]], ...] = (
    ("must contain a lowercase letter", re.compile(r"[a-z]")),
    ("must contain an uppercase letter", re.compile(r"[A-Z]")),
    ("must contain a digit", re.compile(r"\d")),
    (
        f"must contain one of the symbols {PASSWORD_SYMBOLS}",
        re.compile(rf"[{re.escape(PASSWORD_SYMBOLS)}]"),
    ),
)


def check_strength(password: str) -> list[str]:
    """
    Evaluate the password policy.

    Returns:
        The unmet rules; an empty list means the password is strong enough.
    """
    problems: list[str] = []
    if len(password) < MIN_PASSWORD_LENGTH:
        problems.append(f"must be at least {MIN_PASSWORD_LENGTH} characters long")
    for message, pattern in _STRENGTH_RULES:
        if not pattern.search(password):
            problems.append(message)
    if not _ALLOWED_CHARS.match(password):
        problems.append(f"may only contain letters, digits and {PASSWORD_SYMBOLS}")
    return problems


class PasswordService:
    """Argon2id password hashing."""

    def __init__(self, hasher: PasswordHasher | None = None) -> None:
        self.password_hasher = hasher or PasswordHasher()

    async def hash(self, password: str) -> str:
        """Hash a plaintext password."""
        return await run_in_threadpool(self.password_hasher.hash, password)

    async def verify(self, password_hash: str, password: str) -> bool:
        """Check a plaintext password against a stored hash."""
        return await run_in_threadpool(self._verify_sync, password_hash, password)

    def needs_rehash(self, password_hash: str) -> bool:
        """True when the hash was produced with outdated parameters."""
        try:
            return self.password_hasher.check_needs_rehash(password_hash)
        except InvalidHashError:
            return True

    def _verify_sync(self, password_hash: str, password: str) -> bool:
        try:
            return self.password_hasher.verify(password_hash, password)
        except VerifyMismatchError:
            return False
        except (InvalidHashError, VerificationError) as e:
            logger.warning("password_hash_unverifiable", error=type(e).__name__)
            return False
