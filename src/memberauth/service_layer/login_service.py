"""ABOUTME: Login state machine for member authentication
ABOUTME: Orchestrates bot check, credential check, audit-driven lockout, two-factor branch and session issuance"""

import logging
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime

from memberauth.adapters.bot_challenge import BotChallengeVerifier
from memberauth.adapters.notifier import Notifier
from memberauth.config import DEFAULT_POLICY, SecurityPolicy
from memberauth.domain.members import Member
from memberauth.domain.value_objects import (
    ANONYMOUS_REQUEST,
    AuditAction,
    ChallengeStatus,
    RequestInfo,
    TwoFactorMethod,
    normalise_email,
)

from . import account_locks, two_factor_service
from .audit_service import count_recent_events, record_event
from .exceptions import (
    AccountLocked,
    BotCheckFailed,
    ChallengeFailed,
    InvalidCredentials,
    MemberNotFoundError,
    ServiceLayerError,
)
from .security import verify_password
from .session_registry import SessionContext, start_new_session
from .unit_of_work import AbstractUnitOfWork

logger = logging.getLogger(__name__)

LOGIN_ACTION = "login"
VERIFY_TWO_FACTOR_ACTION = "verify2fa"


@dataclass(frozen=True)
class Authenticated:
    member_id: uuid.UUID
    session_id: str


@dataclass(frozen=True)
class TwoFactorRequired:
    member_id: uuid.UUID
    method: TwoFactorMethod


@dataclass(frozen=True)
class Rejected:
    error: ServiceLayerError

    @property
    def reason(self) -> str:
        return str(self.error)


LoginOutcome = Authenticated | TwoFactorRequired | Rejected


def _check_bot(
    uow: AbstractUnitOfWork,
    bot_verifier: BotChallengeVerifier,
    bot_token: str | None,
    action: str,
    request: RequestInfo,
    member_id: uuid.UUID | None = None,
    details: str = "",
) -> Rejected | None:
    verification = bot_verifier.verify(bot_token, action, request.ip_address)
    if verification.accepted:
        return None
    with uow:
        record_event(
            uow,
            AuditAction.LOGIN_FAILED_BOT,
            member_id=member_id,
            request=request,
            details=f"{details}Bot check failed ({action}): {verification.error} score={verification.score:.2f}",
        )
        uow.commit()
    return Rejected(BotCheckFailed())


def authenticate(
    uow: AbstractUnitOfWork,
    email: str,
    password: str,
    bot_token: str | None,
    bot_verifier: BotChallengeVerifier,
    notifier: Notifier,
    policy: SecurityPolicy = DEFAULT_POLICY,
    request: RequestInfo = ANONYMOUS_REQUEST,
) -> LoginOutcome:
    """
    Run one login attempt.

    Args:
        uow: Unit of Work for database operations
        email: Email as typed; compared case-insensitively
        password: Password as typed
        bot_token: Token from the client-side bot challenge
        bot_verifier: Checks bot_token; any failure rejects the attempt
        notifier: Sends the email one-time code when two-factor is by email
        policy: Lockout and two-factor settings
        request: Origin of the request, for the audit trail

    Returns:
        Authenticated with a fresh session id, TwoFactorRequired when a second step is
        needed, or Rejected carrying InvalidCredentials, AccountLocked or BotCheckFailed
    """
    email = normalise_email(email)
    rejected = _check_bot(uow, bot_verifier, bot_token, LOGIN_ACTION, request, details=f"Email: {email}. ")
    if rejected is not None:
        return rejected

    with uow:
        member = uow.members.get_by_email(email)
        if member is None:
            record_event(uow, AuditAction.LOGIN_FAILED, request=request, details=f"Unknown email: {email}")
            uow.commit()
            return Rejected(InvalidCredentials())
        member_id = member.id

    outcome, pending_code, member_email = _attempt_login(uow, member_id, password, policy, request)

    if pending_code is not None:
        two_factor_service.deliver_email_otp(notifier, member_id, member_email, pending_code)
    return outcome


@account_locks.retry_on_conflict
def _attempt_login(
    uow: AbstractUnitOfWork,
    member_id: uuid.UUID,
    password: str,
    policy: SecurityPolicy,
    request: RequestInfo,
) -> tuple[LoginOutcome, str | None, str]:
    with account_locks.hold(member_id):
        with uow:
            member = uow.members.get_for_update(member_id)
            if member is None:
                raise MemberNotFoundError(f"Member {member_id} not found")
            now = datetime.now(UTC)

            if member.is_locked(now):
                remaining = member.lockout_remaining(now)
                record_event(
                    uow,
                    AuditAction.LOGIN_ATTEMPT_WHILE_LOCKED,
                    member_id=member_id,
                    request=request,
                    details=f"Locked until {member.lockout_end.isoformat() if member.lockout_end else ''}",
                )
                uow.commit()
                return Rejected(AccountLocked(remaining)), None, member.email

            if not verify_password(password, member.password_hash):
                outcome = _register_failed_password(uow, member, policy, request, now)
                uow.commit()
                return outcome, None, member.email

            member.record_successful_login(now)

            if member.requires_two_factor:
                code = None
                if member.two_factor_method == TwoFactorMethod.EMAIL:
                    code = two_factor_service.issue_email_otp(uow, member, policy, request, now)
                record_event(
                    uow,
                    AuditAction.TWO_FACTOR_REQUIRED,
                    member_id=member_id,
                    request=request,
                    details=f"Method: {member.two_factor_method.value}",
                )
                uow.commit()
                return TwoFactorRequired(member_id, member.two_factor_method), code, member.email

            session_id = start_new_session(member)
            record_event(uow, AuditAction.LOGIN_SUCCESS, member_id=member_id, request=request)
            uow.commit()
    logger.info(f"Member {member_id} signed in")
    return Authenticated(member_id, session_id), None, member.email


def _register_failed_password(
    uow: AbstractUnitOfWork,
    member: Member,
    policy: SecurityPolicy,
    request: RequestInfo,
    now: datetime,
) -> Rejected:
    """
    Count a wrong password. The lockout decision comes from LoginFailed events in the
    trailing window, counted before this attempt is logged. failed_login_count is kept
    for reporting only.
    """
    member.record_failed_login()
    recent_failures = count_recent_events(uow, member.id, AuditAction.LOGIN_FAILED, policy.lockout_window, now)

    if recent_failures >= policy.lockout_threshold - 1:
        member.lock_until(now + policy.lockout_duration)
        record_event(
            uow,
            AuditAction.ACCOUNT_LOCKED,
            member_id=member.id,
            request=request,
            details=f"{recent_failures + 1} failed attempts within {policy.lockout_window}",
        )
        logger.warning(f"Member {member.id} locked out until {member.lockout_end}")
        return Rejected(AccountLocked(policy.lockout_duration))

    remaining = policy.lockout_threshold - recent_failures - 1
    record_event(
        uow,
        AuditAction.LOGIN_FAILED,
        member_id=member.id,
        request=request,
        details=f"Invalid password. {remaining} attempt(s) remaining",
    )
    return Rejected(InvalidCredentials(attempts_remaining=remaining))


def complete_two_factor(
    uow: AbstractUnitOfWork,
    context: SessionContext,
    code: str,
    bot_token: str | None,
    bot_verifier: BotChallengeVerifier,
    policy: SecurityPolicy = DEFAULT_POLICY,
    request: RequestInfo = ANONYMOUS_REQUEST,
) -> LoginOutcome:
    """
    Finish a login that returned TwoFactorRequired.

    Only the member recorded as pending in the caller's context by sign_in can be
    completed, so a code on its own never signs anyone in. The lockout is checked
    again, since it may have started after the password step. On success the
    context is signed in.

    Returns:
        Authenticated with a fresh session id, or Rejected carrying ChallengeFailed,
        AccountLocked or BotCheckFailed
    """
    member_id = context.pending_two_factor_member_id
    if member_id is None:
        with uow:
            record_event(
                uow,
                AuditAction.TWO_FACTOR_VERIFICATION_FAILED,
                request=request,
                details="No password step pending",
            )
            uow.commit()
        return Rejected(ChallengeFailed(ChallengeStatus.NO_PENDING_LOGIN))

    rejected = _check_bot(uow, bot_verifier, bot_token, VERIFY_TWO_FACTOR_ACTION, request, member_id=member_id)
    if rejected is not None:
        return rejected

    outcome = _complete_two_factor_locked(uow, member_id, code, policy, request)
    if isinstance(outcome, Authenticated):
        context.sign_in(outcome.member_id, outcome.session_id)
    elif isinstance(outcome, Rejected) and isinstance(outcome.error, AccountLocked):
        context.clear()
    return outcome


@account_locks.retry_on_conflict
def _complete_two_factor_locked(
    uow: AbstractUnitOfWork,
    member_id: uuid.UUID,
    code: str,
    policy: SecurityPolicy,
    request: RequestInfo,
) -> LoginOutcome:
    with account_locks.hold(member_id):
        with uow:
            member = uow.members.get_for_update(member_id)
            if member is None:
                raise MemberNotFoundError(f"Member {member_id} not found")
            now = datetime.now(UTC)

            if member.is_locked(now):
                record_event(
                    uow,
                    AuditAction.LOGIN_ATTEMPT_WHILE_LOCKED,
                    member_id=member_id,
                    request=request,
                    details="Two-factor step attempted while locked",
                )
                uow.commit()
                return Rejected(AccountLocked(member.lockout_remaining(now)))

            result = two_factor_service.check_code(uow, member, code, policy, request)
            if not result.succeeded:
                uow.commit()
                return Rejected(result.to_error())

            session_id = start_new_session(member)
            record_event(
                uow,
                AuditAction.LOGIN_SUCCESS,
                member_id=member_id,
                request=request,
                details=f"Two-factor method: {member.two_factor_method.value}",
            )
            uow.commit()
    logger.info(f"Member {member_id} signed in with two-factor verification")
    return Authenticated(member_id, session_id)


def sign_in(context: SessionContext, outcome: LoginOutcome) -> None:
    """Store the outcome of authenticate in the caller's session context.

    A pending two-factor step is remembered so complete_two_factor can finish it.
    """
    if isinstance(outcome, Authenticated):
        context.sign_in(outcome.member_id, outcome.session_id)
    elif isinstance(outcome, TwoFactorRequired):
        context.await_two_factor(outcome.member_id)


@account_locks.retry_on_conflict
def unlock_member(uow: AbstractUnitOfWork, member_id: uuid.UUID, request: RequestInfo = ANONYMOUS_REQUEST) -> None:
    """Clear a lockout and the failure counter. Administrative recovery."""
    with account_locks.hold(member_id):
        with uow:
            member = uow.members.get_for_update(member_id)
            if member is None:
                raise MemberNotFoundError(f"Member {member_id} not found")
            member.unlock()
            record_event(uow, AuditAction.ACCOUNT_UNLOCKED, member_id=member_id, request=request)
            uow.commit()
    logger.info(f"Member {member_id} unlocked")
