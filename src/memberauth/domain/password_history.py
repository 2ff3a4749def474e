"""ABOUTME: Password history domain model used to block reuse of recent passwords
ABOUTME: Stores superseded password hashes with the time they were replaced"""

import uuid
from datetime import UTC, datetime


class PasswordHistoryEntry:
    """A password hash that was in use until superseded_at."""

    def __init__(
        self,
        member_id: uuid.UUID,
        password_hash: str,
        superseded_at: datetime | None = None,
        entry_id: uuid.UUID | None = None,
    ):
        if not password_hash:
            raise ValueError("Password history entry must have a hash")

        self.id = entry_id or uuid.uuid4()
        self.member_id = member_id
        self.password_hash = password_hash
        self.superseded_at = superseded_at or datetime.now(UTC)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, PasswordHistoryEntry):  # pragma: no cover
            return False
        return self.id == other.id

    def __hash__(self) -> int:
        return hash(self.id)
