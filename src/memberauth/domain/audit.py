"""ABOUTME: AuditEvent domain model for the append-only security event trail
ABOUTME: Each event records who, what, when and from where, and is never updated once written"""

import uuid
from datetime import UTC, datetime

from .value_objects import ANONYMOUS_REQUEST, AuditAction, RequestInfo


class AuditEvent:
    """A single security-relevant event. member_id is None for pre-authentication events."""

    def __init__(
        self,
        action: AuditAction,
        member_id: uuid.UUID | None = None,
        ip_address: str | None = None,
        user_agent: str | None = None,
        details: str = "",
        event_id: uuid.UUID | None = None,
        timestamp: datetime | None = None,
    ):
        self.id = event_id or uuid.uuid4()
        self.member_id = member_id
        self.action = action
        self.timestamp = timestamp or datetime.now(UTC)
        self.ip_address = ip_address
        self.user_agent = user_agent
        self.details = details

    @classmethod
    def from_request(
        cls,
        action: AuditAction,
        member_id: uuid.UUID | None = None,
        request: RequestInfo = ANONYMOUS_REQUEST,
        details: str = "",
    ) -> "AuditEvent":
        return cls(
            action=action,
            member_id=member_id,
            ip_address=request.ip_address,
            user_agent=request.user_agent,
            details=details,
        )

    def __repr__(self) -> str:
        return f"AuditEvent({self.action.value}, member_id={self.member_id}, timestamp={self.timestamp.isoformat()})"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, AuditEvent):  # pragma: no cover
            return False
        return self.id == other.id

    def __hash__(self) -> int:
        return hash(self.id)

    def create_detached_copy(self) -> "AuditEvent":
        """Create a detached copy of this event for use outside SQLAlchemy sessions"""
        return AuditEvent(
            action=self.action,
            member_id=self.member_id,
            ip_address=self.ip_address,
            user_agent=self.user_agent,
            details=self.details,
            event_id=self.id,
            timestamp=self.timestamp,
        )
