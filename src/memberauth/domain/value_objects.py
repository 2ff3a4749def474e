"""ABOUTME: Value objects and enums for the member authentication domain
ABOUTME: Defines shared enums, request metadata and email validation used across domain objects"""

from dataclasses import dataclass
from enum import Enum

from django.core.exceptions import ValidationError
from django.core.validators import EmailValidator


class TwoFactorMethod(Enum):
    NONE = "none"
    EMAIL = "email"
    TOTP = "totp"


class ChallengeStatus(Enum):
    SUCCESS = "success"
    EXPIRED = "expired"
    INCORRECT = "incorrect"
    EXHAUSTED = "exhausted"
    NOT_CONFIGURED = "not_configured"
    NO_ACTIVE_CODE = "no_active_code"
    NO_PENDING_LOGIN = "no_pending_login"


class AuditAction(Enum):
    MEMBER_REGISTERED = "MemberRegistered"
    MEMBER_REGISTRATION_FAILED = "MemberRegistrationFailed"

    LOGIN_FAILED_BOT = "LoginFailedBot"
    LOGIN_FAILED = "LoginFailed"
    LOGIN_ATTEMPT_WHILE_LOCKED = "LoginAttemptWhileLocked"
    ACCOUNT_LOCKED = "AccountLocked"
    ACCOUNT_UNLOCKED = "AccountUnlocked"
    LOGIN_SUCCESS = "LoginSuccess"
    LOGOUT = "Logout"

    TWO_FACTOR_REQUIRED = "2FARequired"
    TWO_FACTOR_VERIFICATION_SUCCESS = "2FAVerificationSuccess"
    TWO_FACTOR_VERIFICATION_FAILED = "2FAVerificationFailed"
    EMAIL_OTP_GENERATED = "EmailOtpGenerated"
    TWO_FACTOR_ENABLED = "2FAEnabled"
    TWO_FACTOR_DISABLED = "2FADisabled"
    TWO_FACTOR_ATTEMPTS_RESET = "2FAAttemptsReset"

    PASSWORD_CHANGED = "PasswordChanged"
    PASSWORD_CHANGE_FAILED = "PasswordChangeFailed"
    PASSWORD_RESET_REQUESTED = "PasswordResetRequested"
    PASSWORD_RESET_TOKEN_GENERATED = "PasswordResetTokenGenerated"
    PASSWORD_RESET_TOKEN_INVALID = "PasswordResetTokenInvalid"
    PASSWORD_RESET_TOKEN_EXPIRED = "PasswordResetTokenExpired"
    PASSWORD_RESET_TOKEN_REUSED = "PasswordResetTokenReused"
    PASSWORD_RESET_FAILED = "PasswordResetFailed"
    PASSWORD_RESET = "PasswordReset"


@dataclass(frozen=True, slots=True)
class RequestInfo:
    """Where a request came from, as recorded on every audit event."""

    ip_address: str | None = None
    user_agent: str | None = None


ANONYMOUS_REQUEST = RequestInfo()


def normalise_email(email: str) -> str:
    """Case-fold an email address so lookups and uniqueness ignore case."""
    return email.strip().casefold()


def validate_email(email: str) -> None:
    """Basic email validation."""
    # we use the well-tested and maintained Django EmailValidator
    # Note that passing in the message is important - if we don't do that then
    # the validator will try to use the default message, which will trigger the
    # auto localisation of the string which then blows up.
    validator = EmailValidator(message="Invalid email address")
    try:
        validator(email)
    except ValidationError as error:
        raise ValueError("Invalid email address") from error
