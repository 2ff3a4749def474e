"""ABOUTME: SQLAlchemy table definitions and imperative mapping for member authentication
ABOUTME: Defines the members, audit, password history and reset token tables with their indexes"""

import uuid
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from sqlalchemy import TIMESTAMP, Boolean, Column, ForeignKey, Index, Integer, String, Table, Text, TypeDecorator
from sqlalchemy.dialects.postgresql import UUID as PostgresUUID
from sqlalchemy.engine.interfaces import Dialect
from sqlalchemy.orm import registry
from sqlalchemy.sql.sqltypes import String as SQLString

from memberauth.domain.value_objects import AuditAction, TwoFactorMethod


def aware_utcnow() -> datetime:  # pragma: no cover
    return datetime.now(UTC)


class EnumAsString(TypeDecorator):
    """Custom type for storing Python Enums as strings."""

    impl = String
    cache_ok = True

    def __init__(self, enum_class: type[Enum], *args: Any, **kwargs: Any) -> None:
        self.enum_class = enum_class
        super().__init__(*args, **kwargs)

    def process_bind_param(self, value: Any, dialect: Dialect) -> str | None:
        if value is None:  # pragma: no cover
            return value
        return value.value if hasattr(value, "value") else str(value)

    def process_result_value(self, value: Any, dialect: Dialect) -> Any:
        if value is None:  # pragma: no cover
            return value
        return self.enum_class(value)


class TZAwareDatetime(TypeDecorator):
    """Custom type for timezone-aware datetime objects."""

    impl = TIMESTAMP
    cache_ok = True

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        kwargs.setdefault("timezone", True)
        super().__init__(*args, **kwargs)

    def process_result_value(self, value: Any, dialect: Dialect) -> datetime | None:
        if value is None:
            return value

        # SQLite hands back naive datetimes; everything we store is UTC
        if isinstance(value, datetime) and value.tzinfo is None:
            return value.replace(tzinfo=UTC)

        return value


class CrossDatabaseUUID(TypeDecorator):
    """Cross-database UUID type that works with both PostgreSQL and SQLite."""

    impl = SQLString
    cache_ok = True

    def load_dialect_impl(self, dialect: Dialect) -> Any:
        if dialect.name == "postgresql":
            return dialect.type_descriptor(PostgresUUID(as_uuid=True))
        return dialect.type_descriptor(SQLString(36))

    def process_bind_param(self, value: Any, dialect: Dialect) -> str | None:
        if value is None:
            return value
        if isinstance(value, uuid.UUID):
            return str(value)
        if isinstance(value, str):
            try:
                uuid.UUID(value)
            except ValueError as e:
                raise ValueError(f"Invalid UUID string: {value}") from e
            return value
        raise TypeError(f"Expected UUID or string, got {type(value)}")

    def process_result_value(self, value: Any, dialect: Dialect) -> uuid.UUID | None:
        if value is None or isinstance(value, uuid.UUID):
            return value
        return uuid.UUID(str(value))


mapper_registry = registry()
metadata = mapper_registry.metadata

members = Table(
    "members",
    metadata,
    Column("id", CrossDatabaseUUID(), primary_key=True, default=uuid.uuid4),
    # always stored case-folded, so the unique constraint is case-insensitive
    Column("email", String(255), nullable=False, unique=True),
    Column("password_hash", String(255), nullable=False),
    Column("first_name", String(100), nullable=False, default=""),
    Column("last_name", String(100), nullable=False, default=""),
    Column("created_at", TZAwareDatetime(), nullable=False, default=aware_utcnow),
    Column("last_login_at", TZAwareDatetime(), nullable=True),
    Column("failed_login_count", Integer, nullable=False, default=0),
    Column("lockout_end", TZAwareDatetime(), nullable=True),
    Column("current_session_id", String(128), nullable=True),
    Column("password_changed_at", TZAwareDatetime(), nullable=True),
    Column("two_factor_enabled", Boolean, nullable=False, default=False),
    Column("two_factor_method", EnumAsString(TwoFactorMethod, 20), nullable=False, default=TwoFactorMethod.NONE),
    Column("totp_secret_encrypted", Text, nullable=True),
    Column("email_otp", String(20), nullable=True),
    Column("otp_generated_at", TZAwareDatetime(), nullable=True),
    Column("failed_two_factor_attempts", Integer, nullable=False, default=0),
    Column("version", Integer, nullable=False),
)

audit_events = Table(
    "audit_events",
    metadata,
    Column("id", CrossDatabaseUUID(), primary_key=True, default=uuid.uuid4),
    # no foreign key: pre-authentication events carry no member and the trail outlives accounts
    Column("member_id", CrossDatabaseUUID(), nullable=True),
    Column("action", EnumAsString(AuditAction, 50), nullable=False),
    Column("timestamp", TZAwareDatetime(), nullable=False, default=aware_utcnow),
    Column("ip_address", String(64), nullable=True),
    Column("user_agent", String(500), nullable=True),
    Column("details", Text, nullable=False, default=""),
)

password_history = Table(
    "password_history",
    metadata,
    Column("id", CrossDatabaseUUID(), primary_key=True, default=uuid.uuid4),
    Column("member_id", CrossDatabaseUUID(), ForeignKey("members.id", ondelete="CASCADE"), nullable=False),
    Column("password_hash", String(255), nullable=False),
    Column("superseded_at", TZAwareDatetime(), nullable=False, default=aware_utcnow),
)

password_reset_tokens = Table(
    "password_reset_tokens",
    metadata,
    Column("id", CrossDatabaseUUID(), primary_key=True, default=uuid.uuid4),
    Column("member_id", CrossDatabaseUUID(), ForeignKey("members.id", ondelete="CASCADE"), nullable=False),
    Column("token", String(100), nullable=False, unique=True),
    Column("created_at", TZAwareDatetime(), nullable=False, default=aware_utcnow),
    Column("expires_at", TZAwareDatetime(), nullable=False),
    Column("used_at", TZAwareDatetime(), nullable=True),
)

Index("ix_members_current_session_id", members.c.current_session_id)
Index(
    "ix_audit_events_member_action_timestamp",
    audit_events.c.member_id,
    audit_events.c.action,
    audit_events.c.timestamp,
)
Index("ix_password_history_member_superseded", password_history.c.member_id, password_history.c.superseded_at)
Index("ix_password_reset_tokens_member_id", password_reset_tokens.c.member_id)
