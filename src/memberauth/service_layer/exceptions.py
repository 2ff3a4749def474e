"""ABOUTME: Custom exceptions for service layer operations
ABOUTME: Defines the authentication error taxonomy with safe, generic user-facing messages"""

from datetime import timedelta

from memberauth.domain.password_reset import TokenInvalidReason
from memberauth.domain.value_objects import ChallengeStatus


def _format_wait(remaining: timedelta) -> str:
    total_seconds = max(int(remaining.total_seconds()), 0)
    minutes, seconds = divmod(total_seconds, 60)
    if minutes and seconds:
        return f"{minutes} minute(s) and {seconds} second(s)"
    if minutes:
        return f"{minutes} minute(s)"
    return f"{seconds} second(s)"


class MemberAuthError(Exception):
    """Base exception for all our custom errors."""


class ServiceLayerError(MemberAuthError):
    """Base exception for all service layer errors."""


class InvalidCredentials(ServiceLayerError):
    """Raised when authentication fails due to invalid credentials.

    The message never says whether the email exists.
    """

    def __init__(self, attempts_remaining: int | None = None, message: str = "") -> None:
        if not message:
            message = "Invalid email or password"
            if attempts_remaining is not None:
                message = f"{message}. {attempts_remaining} attempt(s) remaining before lockout"
        super().__init__(message)
        self.attempts_remaining = attempts_remaining


class AccountLocked(ServiceLayerError):
    """Raised when a login is attempted while the account is locked out."""

    def __init__(self, remaining: timedelta) -> None:
        super().__init__(f"Account is locked. Please try again in {_format_wait(remaining)}")
        self.remaining = remaining


class BotCheckFailed(ServiceLayerError):
    """Raised when the bot challenge is missing or rejected."""

    def __init__(self, message: str = "Bot verification failed. Please try again") -> None:
        super().__init__(message)


class ChallengeFailed(ServiceLayerError):
    """Raised when a two-factor code is not accepted."""

    MESSAGES = {
        ChallengeStatus.EXPIRED: "Verification code has expired. Please request a new one",
        ChallengeStatus.INCORRECT: "Invalid verification code",
        ChallengeStatus.EXHAUSTED: "Too many failed attempts",
        ChallengeStatus.NOT_CONFIGURED: "Two-factor authentication is not configured",
        ChallengeStatus.NO_ACTIVE_CODE: "No verification code is pending. Please request a new one",
        ChallengeStatus.NO_PENDING_LOGIN: "Please sign in with your email and password first",
    }

    def __init__(self, status: ChallengeStatus, attempts_remaining: int | None = None) -> None:
        message = self.MESSAGES.get(status, "Verification failed")
        if status == ChallengeStatus.INCORRECT and attempts_remaining is not None:
            message = f"{message}. {attempts_remaining} attempt(s) remaining"
        super().__init__(message)
        self.status = status
        self.attempts_remaining = attempts_remaining


class PolicyViolation(ServiceLayerError):
    """Raised when a new password breaks one or more complexity rules."""

    def __init__(self, rules: list[str]) -> None:
        super().__init__("; ".join(rules) if rules else "Password does not meet the requirements")
        self.rules = rules


class PasswordChangeTooSoon(ServiceLayerError):
    """Raised when the password was changed too recently to change again."""

    def __init__(self, remaining: timedelta) -> None:
        super().__init__(f"You must wait {_format_wait(remaining)} before changing your password again")
        self.remaining = remaining


class PasswordReused(ServiceLayerError):
    """Raised when the new password matches a recently used password."""

    def __init__(self, history_depth: int) -> None:
        super().__init__(f"You cannot reuse any of your last {history_depth} passwords")
        self.history_depth = history_depth


class TokenInvalid(ServiceLayerError):
    """Raised when a password reset token cannot be used.

    `reason` is for logging and auditing; the message is the same for every reason.
    """

    def __init__(self, reason: TokenInvalidReason) -> None:
        super().__init__("Invalid or expired password reset link")
        self.reason = reason


class MemberAlreadyExists(ServiceLayerError):
    """Raised when attempting to register an email that is already taken."""

    def __init__(self, email: str = "") -> None:
        message = f"Member with email '{email}' already exists" if email else "Member already exists"
        super().__init__(message)
        self.email = email


class TwoFactorSetupError(ServiceLayerError):
    """Raised when two-factor authentication cannot be enabled or disabled."""


class TransientError(ServiceLayerError):
    """The credential store or a collaborator is unavailable. Details are logged, not shown."""

    def __init__(self, message: str = "The service is temporarily unavailable. Please try again") -> None:
        super().__init__(message)


class ConcurrentUpdateError(TransientError):
    """Another request updated the same member at the same time."""


class NotFoundError(ServiceLayerError):
    """General error to indicate something cannot be found in a repository"""


class MemberNotFoundError(NotFoundError):
    """A member could not be found in the database"""
