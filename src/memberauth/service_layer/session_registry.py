"""ABOUTME: Single-active-session enforcement for members
ABOUTME: Issues session identifiers and validates them against the caller's per-request session context"""

import hmac
import logging
import uuid
from dataclasses import dataclass
from enum import Enum

from memberauth.domain.members import Member
from memberauth.domain.value_objects import ANONYMOUS_REQUEST, AuditAction, RequestInfo

from . import account_locks
from .audit_service import record_event
from .exceptions import MemberNotFoundError
from .security import generate_session_id
from .unit_of_work import AbstractUnitOfWork

logger = logging.getLogger(__name__)


class SessionStatus(Enum):
    VALID = "valid"
    INVALID = "invalid"
    ANONYMOUS = "anonymous"


@dataclass
class SessionContext:
    """The caller's transient per-request session state, passed in explicitly.

    The web layer loads this from its own session store and saves it back after the call.
    pending_two_factor_member_id is only ever set after a correct password, and is the
    one thing that lets a second-step code be checked.
    """

    member_id: uuid.UUID | None = None
    session_id: str | None = None
    pending_two_factor_member_id: uuid.UUID | None = None

    @property
    def is_authenticated(self) -> bool:
        return self.member_id is not None

    def sign_in(self, member_id: uuid.UUID, session_id: str) -> None:
        self.member_id = member_id
        self.session_id = session_id
        self.pending_two_factor_member_id = None

    def await_two_factor(self, member_id: uuid.UUID) -> None:
        self.member_id = None
        self.session_id = None
        self.pending_two_factor_member_id = member_id

    def clear(self) -> None:
        self.member_id = None
        self.session_id = None
        self.pending_two_factor_member_id = None


def start_new_session(member: Member) -> str:
    """Mint a session id on an already loaded member. Replacing it invalidates the previous one."""
    session_id = generate_session_id()
    member.start_session(session_id)
    return session_id


@account_locks.retry_on_conflict
def issue_session(uow: AbstractUnitOfWork, member_id: uuid.UUID) -> str:
    """
    Issue a fresh session id for a member and persist it as the only valid one.

    Args:
        uow: Unit of Work for database operations
        member_id: The member signing in

    Returns:
        The new session id, for the caller to keep in its session context

    Raises:
        MemberNotFoundError: If the member does not exist
    """
    with account_locks.hold(member_id):
        with uow:
            member = uow.members.get_for_update(member_id)
            if member is None:
                raise MemberNotFoundError(f"Member {member_id} not found")
            session_id = start_new_session(member)
            uow.commit()
    logger.info(f"Issued new session for member {member_id}")
    return session_id


def validate_session(uow: AbstractUnitOfWork, member_id: uuid.UUID, presented_session_id: str | None) -> SessionStatus:
    """Compare the presented session id with the stored one. Missing on either side is INVALID."""
    with uow:
        stored_session_id = uow.members.get_session_id(member_id)

    if not stored_session_id or not presented_session_id:
        return SessionStatus.INVALID
    if hmac.compare_digest(stored_session_id.encode(), presented_session_id.encode()):
        return SessionStatus.VALID
    return SessionStatus.INVALID


def enforce_session(uow: AbstractUnitOfWork, context: SessionContext) -> SessionStatus:
    """
    Validate the caller's context on every request that carries an identity.

    An invalid session clears the whole context, which signs the caller out.
    """
    if context.member_id is None:
        return SessionStatus.ANONYMOUS

    status = validate_session(uow, context.member_id, context.session_id)
    if status == SessionStatus.INVALID:
        logger.warning(f"Session mismatch for member {context.member_id}; forcing sign-out")
        context.clear()
    return status


def find_member_for_session(uow: AbstractUnitOfWork, session_id: str) -> Member | None:
    """Look up the member currently holding a session id."""
    if not session_id:
        return None
    with uow:
        member = uow.members.get_by_session_id(session_id)
        return member.create_detached_copy() if member else None


def end_session(uow: AbstractUnitOfWork, context: SessionContext, request: RequestInfo = ANONYMOUS_REQUEST) -> None:
    """
    Log out. The stored session id is cleared only if it is the one the caller holds,
    so a stale context cannot sign out a newer live session.
    """
    member_id = context.member_id
    presented_session_id = context.session_id
    context.clear()
    if member_id is not None:
        _end_stored_session(uow, member_id, presented_session_id, request)


@account_locks.retry_on_conflict
def _end_stored_session(
    uow: AbstractUnitOfWork, member_id: uuid.UUID, presented_session_id: str | None, request: RequestInfo
) -> None:
    with account_locks.hold(member_id):
        with uow:
            member = uow.members.get_for_update(member_id)
            if member is None:
                return
            if (
                member.current_session_id
                and presented_session_id
                and hmac.compare_digest(member.current_session_id.encode(), presented_session_id.encode())
            ):
                member.end_session()
            record_event(uow, AuditAction.LOGOUT, member_id=member_id, request=request, details="User logged out")
            uow.commit()
    logger.info(f"Member {member_id} logged out")
