"""ABOUTME: Security utilities for password hashing and random credential generation
ABOUTME: Provides password hashing, session identifiers and numeric one-time codes"""

import secrets

from werkzeug.security import check_password_hash, generate_password_hash


def hash_password(password: str) -> str:
    """Hash a password using werkzeug's secure method."""
    return generate_password_hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    """Verify a password against its hash."""
    return check_password_hash(password_hash, password)


def generate_session_id() -> str:
    """Generate a high-entropy opaque session identifier."""
    return secrets.token_urlsafe(32)


def generate_numeric_code(length: int = 6) -> str:
    """Generate a numeric one-time code with no leading zero, so it is always `length` digits."""
    if length < 1:
        raise ValueError("Code length must be positive")
    lowest = 10 ** (length - 1)
    return str(lowest + secrets.randbelow(9 * lowest))
