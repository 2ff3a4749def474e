"""ABOUTME: Password reset domain model for secure password recovery
ABOUTME: Contains PasswordResetToken class for managing single-use reset tokens and expiration"""

import secrets
import uuid
from datetime import UTC, datetime, timedelta
from enum import Enum

DEFAULT_RESET_TOKEN_LIFETIME = timedelta(hours=24)


class TokenInvalidReason(Enum):
    NOT_FOUND = "not_found"
    EXPIRED = "expired"
    USED = "used"


def generate_reset_token(length: int = 32) -> str:
    """Generate a cryptographically secure URL-safe reset token."""
    return secrets.token_urlsafe(length)


class PasswordResetToken:
    """Password reset token domain model. Tokens are flagged used, never deleted."""

    def __init__(
        self,
        member_id: uuid.UUID,
        lifetime: timedelta = DEFAULT_RESET_TOKEN_LIFETIME,
        token_id: uuid.UUID | None = None,
        token: str | None = None,
        created_at: datetime | None = None,
        expires_at: datetime | None = None,
        used_at: datetime | None = None,
    ):
        if lifetime <= timedelta(0):
            raise ValueError("Token lifetime must be positive")

        current_time = created_at or datetime.now(UTC)

        self.id = token_id or uuid.uuid4()
        self.member_id = member_id
        self.token = token or generate_reset_token()
        self.created_at = current_time
        self.expires_at = expires_at or (current_time + lifetime)
        self.used_at = used_at

    @property
    def used(self) -> bool:
        return self.used_at is not None

    def is_expired(self, now: datetime | None = None) -> bool:
        """Check if token has expired."""
        return (now or datetime.now(UTC)) >= self.expires_at

    def invalid_reason(self, now: datetime | None = None) -> TokenInvalidReason | None:
        """Return why the token cannot be used, or None if it can. Expiry is checked before use."""
        if self.is_expired(now):
            return TokenInvalidReason.EXPIRED
        if self.used:
            return TokenInvalidReason.USED
        return None

    def is_valid(self, now: datetime | None = None) -> bool:
        return self.invalid_reason(now) is None

    def use(self, now: datetime | None = None) -> None:
        """Mark token as used."""
        reason = self.invalid_reason(now)
        if reason is not None:
            raise ValueError(f"Cannot use token: {reason.value}")
        self.used_at = now or datetime.now(UTC)

    def time_until_expiry(self, now: datetime | None = None) -> timedelta:
        """Get time remaining until expiry."""
        return self.expires_at - (now or datetime.now(UTC))

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, PasswordResetToken):  # pragma: no cover
            return False
        return self.id == other.id

    def __hash__(self) -> int:
        return hash(self.id)

    def create_detached_copy(self) -> "PasswordResetToken":
        """Create a detached copy of this token for use outside SQLAlchemy sessions"""
        return PasswordResetToken(
            member_id=self.member_id,
            token_id=self.id,
            token=self.token,
            created_at=self.created_at,
            expires_at=self.expires_at,
            used_at=self.used_at,
        )
