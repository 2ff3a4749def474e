"""ABOUTME: Audit sink for security events
ABOUTME: Appends audit events inside the caller's unit of work and answers time-window queries"""

import logging
import uuid
from datetime import UTC, datetime, timedelta

from memberauth.domain.audit import AuditEvent
from memberauth.domain.value_objects import ANONYMOUS_REQUEST, AuditAction, RequestInfo

from .unit_of_work import AbstractUnitOfWork

logger = logging.getLogger(__name__)


def record_event(
    uow: AbstractUnitOfWork,
    action: AuditAction,
    member_id: uuid.UUID | None = None,
    request: RequestInfo = ANONYMOUS_REQUEST,
    details: str = "",
) -> AuditEvent:
    """
    Append an audit event to the trail.

    Must be called inside an open unit of work. The event becomes durable when the
    caller commits, so callers commit before returning or raising a failure.

    Args:
        uow: Unit of Work for database operations
        action: What happened
        member_id: The member concerned, or None for anonymous events
        request: Origin IP and user agent of the triggering request
        details: Free-form detail. Never include passwords, codes or tokens

    Returns:
        The new AuditEvent
    """
    event = AuditEvent.from_request(action, member_id=member_id, request=request, details=details)
    uow.audit_events.add(event)
    logger.info(f"Audit {action.value}: member={member_id} ip={request.ip_address} {details}".rstrip())
    return event


def count_recent_events(
    uow: AbstractUnitOfWork,
    member_id: uuid.UUID,
    action: AuditAction,
    window: timedelta,
    now: datetime | None = None,
) -> int:
    """Count events of one action for a member within the trailing window ending now."""
    since = (now or datetime.now(UTC)) - window
    return uow.audit_events.count_events(member_id, action, since)


def recent_audit_events(uow: AbstractUnitOfWork, member_id: uuid.UUID, limit: int = 50) -> list[AuditEvent]:
    """Get a member's most recent audit events, newest first."""
    with uow:
        return [event.create_detached_copy() for event in uow.audit_events.events_for_member(member_id, limit)]
