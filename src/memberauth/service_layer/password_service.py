"""ABOUTME: Password lifecycle service for members
ABOUTME: Handles password change, reuse history, ageing, and single-use reset tokens"""

import logging
import uuid
from datetime import UTC, datetime

from memberauth.adapters.notifier import Notifier
from memberauth.adapters.url_generator import URLGenerator
from memberauth.config import DEFAULT_POLICY, SecurityPolicy
from memberauth.domain.members import Member
from memberauth.domain.password_history import PasswordHistoryEntry
from memberauth.domain.password_policy import validate_password_policy
from memberauth.domain.password_reset import PasswordResetToken, TokenInvalidReason
from memberauth.domain.value_objects import ANONYMOUS_REQUEST, AuditAction, RequestInfo, normalise_email

from . import account_locks
from .audit_service import record_event
from .exceptions import (
    InvalidCredentials,
    MemberNotFoundError,
    PasswordChangeTooSoon,
    PasswordReused,
    PolicyViolation,
    TokenInvalid,
)
from .security import hash_password, verify_password
from .unit_of_work import AbstractUnitOfWork

logger = logging.getLogger(__name__)

TOKEN_FAILURE_ACTIONS = {
    TokenInvalidReason.NOT_FOUND: AuditAction.PASSWORD_RESET_TOKEN_INVALID,
    TokenInvalidReason.EXPIRED: AuditAction.PASSWORD_RESET_TOKEN_EXPIRED,
    TokenInvalidReason.USED: AuditAction.PASSWORD_RESET_TOKEN_REUSED,
}


def _is_recent_password(uow: AbstractUnitOfWork, member: Member, password: str, depth: int) -> bool:
    # compared by verification, since every hash is salted. Only superseded
    # passwords count; the current one is not part of the history.
    return any(
        verify_password(password, entry.password_hash)
        for entry in uow.password_history.recent_for_member(member.id, depth)
    )


def _check_new_password(
    uow: AbstractUnitOfWork,
    member: Member,
    new_password: str,
    policy: SecurityPolicy,
    request: RequestInfo,
    failure_action: AuditAction,
    now: datetime,
    enforce_min_age: bool,
) -> None:
    """Run policy, minimum age and history checks, auditing and committing the first failure."""
    rules = validate_password_policy(new_password, policy.password_min_length)
    if rules:
        record_event(
            uow, failure_action, member_id=member.id, request=request, details=f"Policy violation: {'; '.join(rules)}"
        )
        uow.commit()
        raise PolicyViolation(rules)

    if enforce_min_age:
        changed_at = member.password_changed_at or member.created_at
        remaining = policy.password_min_age - (now - changed_at)
        if remaining.total_seconds() > 0:
            record_event(
                uow, failure_action, member_id=member.id, request=request, details="Minimum password age not reached"
            )
            uow.commit()
            raise PasswordChangeTooSoon(remaining)

    if _is_recent_password(uow, member, new_password, policy.password_history_depth):
        record_event(uow, failure_action, member_id=member.id, request=request, details="Password reuse attempted")
        uow.commit()
        raise PasswordReused(policy.password_history_depth)


def _apply_new_password(uow: AbstractUnitOfWork, member: Member, new_password: str, now: datetime) -> None:
    old_hash = member.replace_password_hash(hash_password(new_password), now)
    uow.password_history.add(PasswordHistoryEntry(member_id=member.id, password_hash=old_hash, superseded_at=now))


@account_locks.retry_on_conflict
def change_password(
    uow: AbstractUnitOfWork,
    member_id: uuid.UUID,
    current_password: str,
    new_password: str,
    policy: SecurityPolicy = DEFAULT_POLICY,
    request: RequestInfo = ANONYMOUS_REQUEST,
) -> None:
    """
    Change a member's password.

    Checks run in order: current password, complexity rules, minimum age, history.
    Every failure is audited and committed before it is raised.

    Args:
        uow: Unit of Work for database operations
        member_id: The member's UUID
        current_password: The password the member signs in with now
        new_password: The replacement password
        policy: Complexity, age and history settings
        request: Origin of the request, for the audit trail

    Raises:
        MemberNotFoundError: If the member does not exist
        InvalidCredentials: If the current password is wrong
        PolicyViolation: If the new password breaks any complexity rule
        PasswordChangeTooSoon: If the password was changed too recently
        PasswordReused: If the new password matches a recent one
    """
    with account_locks.hold(member_id):
        with uow:
            member = uow.members.get_for_update(member_id)
            if member is None:
                raise MemberNotFoundError(f"Member {member_id} not found")
            now = datetime.now(UTC)

            if not verify_password(current_password, member.password_hash):
                record_event(
                    uow,
                    AuditAction.PASSWORD_CHANGE_FAILED,
                    member_id=member_id,
                    request=request,
                    details="Current password incorrect",
                )
                uow.commit()
                raise InvalidCredentials(message="Current password is incorrect")

            _check_new_password(
                uow,
                member,
                new_password,
                policy,
                request,
                AuditAction.PASSWORD_CHANGE_FAILED,
                now,
                enforce_min_age=True,
            )

            _apply_new_password(uow, member, new_password, now)
            record_event(uow, AuditAction.PASSWORD_CHANGED, member_id=member_id, request=request)
            uow.commit()
    logger.info(f"Password changed for member {member_id}")


def is_password_expired(uow: AbstractUnitOfWork, member_id: uuid.UUID, policy: SecurityPolicy = DEFAULT_POLICY) -> bool:
    """True once the password is older than the maximum age, counted from the later of change and creation."""
    with uow:
        member = uow.members.get(member_id)
        if member is None:
            raise MemberNotFoundError(f"Member {member_id} not found")
        return datetime.now(UTC) - member.password_age_anchor > policy.password_max_age


def generate_reset_token(
    uow: AbstractUnitOfWork,
    email: str,
    policy: SecurityPolicy = DEFAULT_POLICY,
    request: RequestInfo = ANONYMOUS_REQUEST,
) -> str | None:
    """
    Create a password reset token for the member with this email.

    Returns None for an unknown email. Callers must respond the same way either way,
    so the response never reveals whether an account exists.
    """
    with uow:
        member = uow.members.get_by_email(email)
        if member is None:
            record_event(
                uow,
                AuditAction.PASSWORD_RESET_REQUESTED,
                request=request,
                details=f"Reset requested for unknown email: {normalise_email(email)}",
            )
            uow.commit()
            return None

        # earlier tokens stay valid until they expire or are used
        token = PasswordResetToken(member_id=member.id, lifetime=policy.reset_token_lifetime)
        uow.password_reset_tokens.add(token)
        record_event(uow, AuditAction.PASSWORD_RESET_TOKEN_GENERATED, member_id=member.id, request=request)
        uow.commit()
        return token.token


def request_password_reset(
    uow: AbstractUnitOfWork,
    email: str,
    notifier: Notifier,
    url_generator: URLGenerator,
    policy: SecurityPolicy = DEFAULT_POLICY,
    request: RequestInfo = ANONYMOUS_REQUEST,
) -> None:
    """
    Handle a "forgot password" request end to end.

    Nothing observable depends on whether the email belongs to a member. The token is
    committed before the link is sent, and a delivery failure is only logged.
    """
    token = generate_reset_token(uow, email, policy, request)
    if token is None:
        return

    reset_url = url_generator.generate_url("reset_password", token=token)
    if not notifier.send_password_reset_link(normalise_email(email), reset_url):
        logger.warning("Password reset token was stored but the link could not be delivered")


def _reject_token(
    uow: AbstractUnitOfWork,
    reason: TokenInvalidReason,
    member_id: uuid.UUID | None,
    request: RequestInfo,
) -> TokenInvalid:
    record_event(
        uow, TOKEN_FAILURE_ACTIONS[reason], member_id=member_id, request=request, details=f"Reason: {reason.value}"
    )
    uow.commit()
    return TokenInvalid(reason)


def validate_reset_token(
    uow: AbstractUnitOfWork, token_string: str, request: RequestInfo = ANONYMOUS_REQUEST
) -> PasswordResetToken:
    """
    Check a reset token before showing the reset form.

    Raises:
        TokenInvalid: With the specific reason; its message is generic
    """
    with uow:
        token = uow.password_reset_tokens.get_by_token(token_string)
        if token is None:
            raise _reject_token(uow, TokenInvalidReason.NOT_FOUND, None, request)
        reason = token.invalid_reason()
        if reason is not None:
            raise _reject_token(uow, reason, token.member_id, request)
        return token.create_detached_copy()


def reset_password_with_token(
    uow: AbstractUnitOfWork,
    token_string: str,
    new_password: str,
    policy: SecurityPolicy = DEFAULT_POLICY,
    request: RequestInfo = ANONYMOUS_REQUEST,
) -> None:
    """
    Set a new password using a reset token. A token succeeds exactly once.

    Runs the same complexity and history checks as change_password, but not the minimum age.

    Raises:
        TokenInvalid: If the token is unknown, expired or already used
        PolicyViolation: If the new password breaks any complexity rule
        PasswordReused: If the new password matches a recent one
    """
    with uow:
        token = uow.password_reset_tokens.get_by_token(token_string)
        if token is None:
            raise _reject_token(uow, TokenInvalidReason.NOT_FOUND, None, request)
        member_id = token.member_id

    _reset_password_locked(uow, member_id, token_string, new_password, policy, request)
    logger.info(f"Password reset with token for member {member_id}")


@account_locks.retry_on_conflict
def _reset_password_locked(
    uow: AbstractUnitOfWork,
    member_id: uuid.UUID,
    token_string: str,
    new_password: str,
    policy: SecurityPolicy,
    request: RequestInfo,
) -> None:
    with account_locks.hold(member_id):
        with uow:
            # read again under the lock so two concurrent resets cannot both use the token
            token = uow.password_reset_tokens.get_by_token(token_string)
            member = uow.members.get_for_update(member_id)
            if token is None or member is None:
                raise _reject_token(uow, TokenInvalidReason.NOT_FOUND, member_id, request)
            now = datetime.now(UTC)
            reason = token.invalid_reason(now)
            if reason is not None:
                raise _reject_token(uow, reason, member_id, request)

            _check_new_password(
                uow,
                member,
                new_password,
                policy,
                request,
                AuditAction.PASSWORD_RESET_FAILED,
                now,
                enforce_min_age=False,
            )

            token.use(now)
            _apply_new_password(uow, member, new_password, now)
            record_event(uow, AuditAction.PASSWORD_RESET, member_id=member_id, request=request)
            uow.commit()
