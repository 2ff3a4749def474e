"""ABOUTME: Abstract repository interfaces for domain objects
ABOUTME: Defines the credential store contracts used by the authentication services"""

from __future__ import annotations

import abc
import uuid
from collections.abc import Iterable
from datetime import datetime
from typing import Any

from memberauth.domain.audit import AuditEvent
from memberauth.domain.members import Member
from memberauth.domain.password_history import PasswordHistoryEntry
from memberauth.domain.password_reset import PasswordResetToken
from memberauth.domain.value_objects import AuditAction


class AbstractRepository(abc.ABC):
    """Base repository interface providing common operations."""

    @abc.abstractmethod
    def add(self, item: Any) -> None:
        """Add an item to the repository."""
        raise NotImplementedError

    @abc.abstractmethod
    def get(self, item_id: uuid.UUID) -> Any | None:
        """Get an item by its ID."""
        raise NotImplementedError

    @abc.abstractmethod
    def all(self) -> Iterable[Any]:
        """List all items in the repository."""
        raise NotImplementedError


class MemberRepository(AbstractRepository):
    """Repository interface for Member domain objects."""

    @abc.abstractmethod
    def get_by_email(self, email: str) -> Member | None:
        """Get a member by email address, ignoring case."""
        raise NotImplementedError

    @abc.abstractmethod
    def get_by_session_id(self, session_id: str) -> Member | None:
        """Get the member whose current session id matches."""
        raise NotImplementedError

    @abc.abstractmethod
    def get_for_update(self, member_id: uuid.UUID) -> Member | None:
        """Get a member, locking the row until the transaction ends."""
        raise NotImplementedError

    @abc.abstractmethod
    def get_session_id(self, member_id: uuid.UUID) -> str | None:
        """Get only the stored session id for a member, without loading the whole row."""
        raise NotImplementedError


class AuditEventRepository(AbstractRepository):
    """Repository interface for the append-only audit trail."""

    @abc.abstractmethod
    def count_events(self, member_id: uuid.UUID, action: AuditAction, since: datetime) -> int:
        """Count events of one action for a member at or after `since`."""
        raise NotImplementedError

    @abc.abstractmethod
    def events_for_member(self, member_id: uuid.UUID, limit: int = 50) -> list[AuditEvent]:
        """Get the most recent events for a member, newest first."""
        raise NotImplementedError


class PasswordHistoryRepository(AbstractRepository):
    """Repository interface for superseded password hashes."""

    @abc.abstractmethod
    def recent_for_member(self, member_id: uuid.UUID, limit: int) -> list[PasswordHistoryEntry]:
        """Get the `limit` most recently superseded hashes, newest first."""
        raise NotImplementedError


class PasswordResetTokenRepository(AbstractRepository):
    """Repository interface for PasswordResetToken domain objects."""

    @abc.abstractmethod
    def get_by_token(self, token: str) -> PasswordResetToken | None:
        """Get a reset token by its token string."""
        raise NotImplementedError

    @abc.abstractmethod
    def tokens_for_member(self, member_id: uuid.UUID) -> list[PasswordResetToken]:
        """Get all reset tokens issued to a member, newest first."""
        raise NotImplementedError
