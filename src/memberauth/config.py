"""ABOUTME: Configuration management for the member authentication core
ABOUTME: Loads environment variables and provides configuration objects for policy, storage and collaborators"""

import base64
import binascii
import logging
import os
from dataclasses import dataclass
from datetime import timedelta

from dotenv import load_dotenv

load_dotenv()


class InvalidConfig(Exception):
    """Error for when the config is not valid"""


SQLITE_DB_URI = "sqlite:///:memory:"


def to_bool(value: str | None, context_str: str = "") -> bool:
    """
    Convert string to boolean. Valid options (after stripping whitespace and making lower-case)
    - False: "false", "no", "off", "0", None, ""
    - True: "true", "yes", "on", "1"

    The `context_str` is there for the error message, to help find the issue.
    """
    if value is None:
        return False
    value = value.lower().strip()
    if value in ("false", "no", "off", "0", ""):
        return False
    if value in ("true", "yes", "on", "1"):
        return True
    raise ValueError(
        f"Cannot convert '{context_str}{value}' to boolean. Valid values are: true/false, 1/0, yes/no, on/off (case-insensitive)"
    )


def bool_environ_get(key: str, default: str = "") -> bool:
    return to_bool(os.environ.get(key, default), context_str=f"{key}=")


def _int_environ_get(key: str, default: int) -> int:
    raw = os.environ.get(key, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError as error:
        raise InvalidConfig(f"{key} must be an integer, got '{raw}'") from error


def is_development() -> bool:
    return os.environ.get("MEMBERAUTH_ENV", "development").lower().strip() == "development"


def get_log_level() -> int:
    level_name = os.environ.get("LOG_LEVEL", "INFO").upper().strip()
    level = logging.getLevelName(level_name)
    if not isinstance(level, int):
        raise InvalidConfig(f"Unknown LOG_LEVEL '{level_name}'")
    return level


@dataclass(slots=True, kw_only=True)
class PostgresCfg:
    user: str
    password: str
    host: str
    port: int
    db_name: str

    def to_url(self) -> str:
        return f"postgresql://{self.user}:{self.password}@{self.host}:{self.port}/{self.db_name}"

    @classmethod
    def from_env(cls, default_db_name: str = "memberauth", user: str = "memberauth") -> "PostgresCfg":
        host = os.environ.get("DB_HOST", "localhost")
        default_port = 54321 if host == "localhost" else 5432
        return PostgresCfg(
            user=os.environ.get("DB_USER", user),
            password=os.environ.get("DB_PASSWORD", "abc123"),
            host=host,
            port=int(os.environ.get("DB_PORT", default_port)),
            db_name=os.environ.get("DB_NAME", default_db_name),
        )


def get_db_uri() -> str:
    return os.environ.get("DB_URI", PostgresCfg.from_env().to_url())


@dataclass(slots=True, kw_only=True, frozen=True)
class SecurityPolicy:
    """Tunable thresholds for login, two-factor and password lifecycle rules."""

    lockout_threshold: int = 3
    lockout_window: timedelta = timedelta(minutes=15)
    lockout_duration: timedelta = timedelta(minutes=5)

    email_otp_length: int = 6
    email_otp_lifetime: timedelta = timedelta(minutes=10)
    max_two_factor_attempts: int = 3
    totp_issuer: str = "Bookworms Online"

    password_min_length: int = 12
    password_min_age: timedelta = timedelta(minutes=1)
    password_max_age: timedelta = timedelta(days=90)
    password_history_depth: int = 2
    reset_token_lifetime: timedelta = timedelta(hours=24)

    @classmethod
    def from_env(cls) -> "SecurityPolicy":
        defaults = cls()
        policy = SecurityPolicy(
            lockout_threshold=_int_environ_get("LOCKOUT_THRESHOLD", defaults.lockout_threshold),
            lockout_window=timedelta(
                minutes=_int_environ_get("LOCKOUT_WINDOW_MINUTES", int(defaults.lockout_window.total_seconds() // 60))
            ),
            lockout_duration=timedelta(
                minutes=_int_environ_get(
                    "LOCKOUT_DURATION_MINUTES", int(defaults.lockout_duration.total_seconds() // 60)
                )
            ),
            email_otp_length=_int_environ_get("EMAIL_OTP_LENGTH", defaults.email_otp_length),
            email_otp_lifetime=timedelta(
                minutes=_int_environ_get(
                    "EMAIL_OTP_LIFETIME_MINUTES", int(defaults.email_otp_lifetime.total_seconds() // 60)
                )
            ),
            max_two_factor_attempts=_int_environ_get("MAX_2FA_ATTEMPTS", defaults.max_two_factor_attempts),
            totp_issuer=os.environ.get("TOTP_ISSUER", defaults.totp_issuer),
            password_min_length=_int_environ_get("PASSWORD_MIN_LENGTH", defaults.password_min_length),
            password_min_age=timedelta(
                minutes=_int_environ_get(
                    "PASSWORD_MIN_AGE_MINUTES", int(defaults.password_min_age.total_seconds() // 60)
                )
            ),
            password_max_age=timedelta(days=_int_environ_get("PASSWORD_MAX_AGE_DAYS", defaults.password_max_age.days)),
            password_history_depth=_int_environ_get("PASSWORD_HISTORY_DEPTH", defaults.password_history_depth),
            reset_token_lifetime=timedelta(
                hours=_int_environ_get(
                    "RESET_TOKEN_LIFETIME_HOURS", int(defaults.reset_token_lifetime.total_seconds() // 3600)
                )
            ),
        )
        if policy.lockout_threshold < 1:
            raise InvalidConfig("LOCKOUT_THRESHOLD must be at least 1")
        if policy.email_otp_length < 4:
            raise InvalidConfig("EMAIL_OTP_LENGTH must be at least 4")
        if policy.max_two_factor_attempts < 1:
            raise InvalidConfig("MAX_2FA_ATTEMPTS must be at least 1")
        return policy


DEFAULT_POLICY = SecurityPolicy()


@dataclass(slots=True, kw_only=True)
class RecaptchaCfg:
    secret_key: str
    verify_url: str = "https://www.google.com/recaptcha/api/siteverify"
    minimum_score: float = 0.5
    timeout_seconds: float = 5.0
    enabled: bool = True

    @classmethod
    def from_env(cls) -> "RecaptchaCfg":
        return RecaptchaCfg(
            secret_key=os.environ.get("RECAPTCHA_SECRET_KEY", ""),
            verify_url=os.environ.get("RECAPTCHA_VERIFY_URL", "https://www.google.com/recaptcha/api/siteverify"),
            minimum_score=float(os.environ.get("RECAPTCHA_MIN_SCORE", "0.5")),
            timeout_seconds=float(os.environ.get("RECAPTCHA_TIMEOUT_SECONDS", "5")),
            enabled=to_bool(os.environ.get("RECAPTCHA_ENABLED", "true"), context_str="RECAPTCHA_ENABLED="),
        )


@dataclass(slots=True, kw_only=True)
class EmailCfg:
    backend: str
    host: str
    port: int
    username: str = ""
    password: str = ""
    use_tls: bool = True
    from_email: str = "noreply@bookworms.local"
    from_name: str = "Bookworms Online"

    @classmethod
    def from_env(cls) -> "EmailCfg":
        host = os.environ.get("EMAIL_HOST", "localhost")
        port = 11025 if host == "localhost" else 1025
        return EmailCfg(
            backend=os.environ.get("EMAIL_BACKEND", "console").lower().strip(),
            host=host,
            port=int(os.environ.get("EMAIL_PORT", port)),
            username=os.environ.get("EMAIL_USERNAME", ""),
            password=os.environ.get("EMAIL_PASSWORD", ""),
            use_tls=to_bool(os.environ.get("EMAIL_USE_TLS", "true"), context_str="EMAIL_USE_TLS="),
            from_email=os.environ.get("EMAIL_FROM", "noreply@bookworms.local"),
            from_name=os.environ.get("EMAIL_FROM_NAME", "Bookworms Online"),
        )


def get_totp_encryption_key() -> bytes:
    """Return the 32 byte master key used to derive per-member TOTP encryption keys."""
    raw = os.environ.get("TOTP_ENCRYPTION_KEY", "")
    if not raw:
        raise ValueError("TOTP_ENCRYPTION_KEY environment variable must be set")
    try:
        key = base64.b64decode(raw, validate=True)
    except binascii.Error as error:
        raise ValueError("TOTP_ENCRYPTION_KEY must be base64 encoded") from error
    if len(key) != 32:
        raise ValueError("TOTP_ENCRYPTION_KEY must decode to exactly 32 bytes")
    return key


def get_reset_link_base_url() -> str:
    return os.environ.get("RESET_LINK_BASE_URL", "http://localhost:5000").rstrip("/")
