"""ABOUTME: Member domain model for retail account authentication
ABOUTME: Holds credentials, lockout, session and two-factor state as a plain Python object"""

import uuid
from datetime import UTC, datetime, timedelta

from .value_objects import TwoFactorMethod, normalise_email, validate_email


class Member:
    """A retail account holder who signs in with email and password."""

    def __init__(
        self,
        email: str,
        password_hash: str,
        first_name: str = "",
        last_name: str = "",
        member_id: uuid.UUID | None = None,
        created_at: datetime | None = None,
        last_login_at: datetime | None = None,
        failed_login_count: int = 0,
        lockout_end: datetime | None = None,
        current_session_id: str | None = None,
        password_changed_at: datetime | None = None,
        two_factor_enabled: bool = False,
        two_factor_method: TwoFactorMethod = TwoFactorMethod.NONE,
        totp_secret_encrypted: str | None = None,
        email_otp: str | None = None,
        otp_generated_at: datetime | None = None,
        failed_two_factor_attempts: int = 0,
    ):
        email = normalise_email(email)
        validate_email(email)
        if not password_hash:
            raise ValueError("Member must have a password hash")

        self.id = member_id or uuid.uuid4()
        self.email = email
        self.password_hash = password_hash
        self.first_name = first_name
        self.last_name = last_name
        self.created_at = created_at or datetime.now(UTC)
        self.last_login_at = last_login_at
        self.failed_login_count = failed_login_count
        self.lockout_end = lockout_end
        self.current_session_id = current_session_id
        self.password_changed_at = password_changed_at or self.created_at
        self.two_factor_enabled = two_factor_enabled
        self.two_factor_method = two_factor_method
        self.totp_secret_encrypted = totp_secret_encrypted
        self.email_otp = email_otp
        self.otp_generated_at = otp_generated_at
        self.failed_two_factor_attempts = failed_two_factor_attempts

    @property
    def display_name(self) -> str:
        """Get member's display name, preferring full name over email."""
        if self.first_name or self.last_name:
            return f"{self.first_name} {self.last_name}".strip()
        return self.email.split("@")[0]

    # lockout

    def is_locked(self, now: datetime | None = None) -> bool:
        """A stale lockout_end in the past means unlocked; it is never cleared on read."""
        now = now or datetime.now(UTC)
        return self.lockout_end is not None and self.lockout_end > now

    def lockout_remaining(self, now: datetime | None = None) -> timedelta:
        now = now or datetime.now(UTC)
        if self.lockout_end is None or self.lockout_end <= now:
            return timedelta(0)
        return self.lockout_end - now

    def record_failed_login(self) -> int:
        self.failed_login_count += 1
        return self.failed_login_count

    def lock_until(self, until: datetime) -> None:
        self.lockout_end = until

    def unlock(self) -> None:
        self.failed_login_count = 0
        self.lockout_end = None

    def record_successful_login(self, now: datetime | None = None) -> None:
        self.unlock()
        self.last_login_at = now or datetime.now(UTC)

    # sessions

    def start_session(self, session_id: str) -> None:
        if not session_id:
            raise ValueError("Session id must not be empty")
        self.current_session_id = session_id

    def end_session(self) -> None:
        self.current_session_id = None

    # two-factor

    @property
    def requires_two_factor(self) -> bool:
        return self.two_factor_enabled and self.two_factor_method != TwoFactorMethod.NONE

    def enable_two_factor(self, method: TwoFactorMethod, totp_secret_encrypted: str | None = None) -> None:
        if method == TwoFactorMethod.NONE:
            raise ValueError("Choose a two-factor method to enable")
        if method == TwoFactorMethod.TOTP and not totp_secret_encrypted:
            raise ValueError("TOTP requires a secret")

        self.two_factor_enabled = True
        self.two_factor_method = method
        self.totp_secret_encrypted = totp_secret_encrypted if method == TwoFactorMethod.TOTP else None
        self.clear_email_otp()
        self.failed_two_factor_attempts = 0

    def disable_two_factor(self) -> None:
        self.two_factor_enabled = False
        self.two_factor_method = TwoFactorMethod.NONE
        self.totp_secret_encrypted = None
        self.clear_email_otp()
        self.failed_two_factor_attempts = 0

    def store_email_otp(self, code: str, generated_at: datetime | None = None) -> None:
        """Replace any pending code. A fresh code always starts with a clean failure counter."""
        self.email_otp = code
        self.otp_generated_at = generated_at or datetime.now(UTC)
        self.failed_two_factor_attempts = 0

    def clear_email_otp(self) -> None:
        self.email_otp = None
        self.otp_generated_at = None

    def email_otp_expired(self, lifetime: timedelta, now: datetime | None = None) -> bool:
        if self.otp_generated_at is None:
            return True
        now = now or datetime.now(UTC)
        return now - self.otp_generated_at >= lifetime

    def record_two_factor_failure(self) -> int:
        self.failed_two_factor_attempts += 1
        return self.failed_two_factor_attempts

    def reset_two_factor_failures(self) -> None:
        self.failed_two_factor_attempts = 0

    # passwords

    @property
    def password_age_anchor(self) -> datetime:
        if self.password_changed_at is None:
            return self.created_at
        return max(self.password_changed_at, self.created_at)

    def replace_password_hash(self, new_hash: str, now: datetime | None = None) -> str:
        """Swap in a new hash and return the superseded one for the history ledger."""
        if not new_hash:
            raise ValueError("Password hash must not be empty")
        old_hash = self.password_hash
        self.password_hash = new_hash
        self.password_changed_at = now or datetime.now(UTC)
        return old_hash

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Member):  # pragma: no cover
            return False
        return self.id == other.id

    def __hash__(self) -> int:
        return hash(self.id)

    def create_detached_copy(self) -> "Member":
        """Create a detached copy of this member for use outside SQLAlchemy sessions"""
        return Member(
            email=self.email,
            password_hash=self.password_hash,
            first_name=self.first_name,
            last_name=self.last_name,
            member_id=self.id,
            created_at=self.created_at,
            last_login_at=self.last_login_at,
            failed_login_count=self.failed_login_count,
            lockout_end=self.lockout_end,
            current_session_id=self.current_session_id,
            password_changed_at=self.password_changed_at,
            two_factor_enabled=self.two_factor_enabled,
            two_factor_method=self.two_factor_method,
            totp_secret_encrypted=self.totp_secret_encrypted,
            email_otp=self.email_otp,
            otp_generated_at=self.otp_generated_at,
            failed_two_factor_attempts=self.failed_two_factor_attempts,
        )
