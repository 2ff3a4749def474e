"""Domain models for member authentication."""

from .password_reset import PasswordResetToken, TokenInvalidReason, generate_reset_token

__all__ = ["PasswordResetToken", "TokenInvalidReason", "generate_reset_token"]
