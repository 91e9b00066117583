"""
Password hashing helpers.

Uses bcrypt directly for adaptive hashing with automatic salting. Plaintext
passwords never leave these functions.
"""

import bcrypt
from loguru import logger

MIN_BCRYPT_ROUNDS = 10
# bcrypt only reads this many bytes and refuses longer input
MAX_PASSWORD_BYTES = 72


def password_too_long(password: str) -> bool:
    return len(password.encode("utf-8")) > MAX_PASSWORD_BYTES


def get_password_hash(password: str, rounds: int = 12) -> str:
    """
    Hash a password using bcrypt with automatic salt generation.

    Args:
        password: Plain text password to hash
        rounds: bcrypt cost factor (raised to at least 10)

    Returns:
        Bcrypt hash string (includes salt and cost factor)

    Raises:
        ValueError: Empty password or more than MAX_PASSWORD_BYTES of UTF-8
    """
    if not password:
        raise ValueError("Password cannot be empty")
    if password_too_long(password):
        raise ValueError(f"Password cannot be longer than {MAX_PASSWORD_BYTES} bytes")

    salt = bcrypt.gensalt(rounds=max(rounds, MIN_BCRYPT_ROUNDS))
    hashed = bcrypt.hashpw(password.encode("utf-8"), salt)
    return hashed.decode("utf-8")


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """
    Verify a plain password against a bcrypt hash.

    Args:
        plain_password: Plain text password to verify
        hashed_password: Bcrypt hash to verify against

    Returns:
        True if password matches, False otherwise
    """
    if not plain_password or not hashed_password:
        return False
    try:
        return bcrypt.checkpw(
            plain_password.encode("utf-8"), hashed_password.encode("utf-8")
        )
    except ValueError as e:
        logger.warning(f"Password verification failed: {e}")
        return False
