"""ABOUTME: Two-factor authentication challenge and management service
ABOUTME: Generates and verifies email one-time codes and TOTP codes, and handles enrollment and recovery"""

import hmac
import logging
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime

from memberauth.adapters.notifier import Notifier
from memberauth.config import DEFAULT_POLICY, SecurityPolicy
from memberauth.domain.members import Member
from memberauth.domain.value_objects import (
    ANONYMOUS_REQUEST,
    AuditAction,
    ChallengeStatus,
    RequestInfo,
    TwoFactorMethod,
)

from . import account_locks, totp_service
from .audit_service import record_event
from .exceptions import ChallengeFailed, MemberNotFoundError, TwoFactorSetupError
from .security import generate_numeric_code
from .unit_of_work import AbstractUnitOfWork

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ChallengeResult:
    status: ChallengeStatus
    attempts_remaining: int | None = None

    @property
    def succeeded(self) -> bool:
        return self.status == ChallengeStatus.SUCCESS

    def to_error(self) -> ChallengeFailed:
        return ChallengeFailed(self.status, self.attempts_remaining)


@dataclass(frozen=True)
class TotpEnrollment:
    secret: str
    provisioning_uri: str
    qr_code_data_url: str


def _load_for_update(uow: AbstractUnitOfWork, member_id: uuid.UUID) -> Member:
    member = uow.members.get_for_update(member_id)
    if member is None:
        raise MemberNotFoundError(f"Member {member_id} not found")
    return member


# The functions below work on a member already loaded and locked by the caller.
# They record audit events but leave committing to the caller.


def issue_email_otp(
    uow: AbstractUnitOfWork,
    member: Member,
    policy: SecurityPolicy = DEFAULT_POLICY,
    request: RequestInfo = ANONYMOUS_REQUEST,
    now: datetime | None = None,
) -> str:
    code = generate_numeric_code(policy.email_otp_length)
    member.store_email_otp(code, now or datetime.now(UTC))
    record_event(uow, AuditAction.EMAIL_OTP_GENERATED, member_id=member.id, request=request)
    return code


def check_email_otp(
    uow: AbstractUnitOfWork,
    member: Member,
    code: str,
    policy: SecurityPolicy = DEFAULT_POLICY,
    request: RequestInfo = ANONYMOUS_REQUEST,
    now: datetime | None = None,
) -> ChallengeResult:
    now = now or datetime.now(UTC)

    def failed(details: str) -> None:
        record_event(
            uow, AuditAction.TWO_FACTOR_VERIFICATION_FAILED, member_id=member.id, request=request, details=details
        )

    if not member.email_otp:
        failed("Method: email. No OTP found")
        return ChallengeResult(ChallengeStatus.NO_ACTIVE_CODE)

    if member.email_otp_expired(policy.email_otp_lifetime, now):
        failed("Method: email. OTP expired")
        return ChallengeResult(ChallengeStatus.EXPIRED)

    if not hmac.compare_digest(code.strip().encode(), member.email_otp.encode()):
        failures = member.record_two_factor_failure()
        remaining = policy.max_two_factor_attempts - failures
        if remaining <= 0:
            # a fresh code must be requested
            member.clear_email_otp()
            failed("Method: email. Too many failed attempts")
            return ChallengeResult(ChallengeStatus.EXHAUSTED, 0)
        failed(f"Method: email. Invalid OTP, {remaining} attempt(s) remaining")
        return ChallengeResult(ChallengeStatus.INCORRECT, remaining)

    member.clear_email_otp()
    member.reset_two_factor_failures()
    record_event(
        uow, AuditAction.TWO_FACTOR_VERIFICATION_SUCCESS, member_id=member.id, request=request, details="Method: email"
    )
    return ChallengeResult(ChallengeStatus.SUCCESS)


def check_totp(
    uow: AbstractUnitOfWork,
    member: Member,
    code: str,
    policy: SecurityPolicy = DEFAULT_POLICY,
    request: RequestInfo = ANONYMOUS_REQUEST,
) -> ChallengeResult:
    def failed(details: str) -> None:
        record_event(
            uow, AuditAction.TWO_FACTOR_VERIFICATION_FAILED, member_id=member.id, request=request, details=details
        )

    if not member.totp_secret_encrypted:
        failed("Method: totp. TOTP not configured")
        return ChallengeResult(ChallengeStatus.NOT_CONFIGURED)

    # Exhaustion keeps the secret; only reset_two_factor_attempts lets the member try again
    if member.failed_two_factor_attempts >= policy.max_two_factor_attempts:
        failed("Method: totp. Too many failed attempts")
        return ChallengeResult(ChallengeStatus.EXHAUSTED, 0)

    secret = totp_service.decrypt_totp_secret(member.totp_secret_encrypted, member.id)
    if not totp_service.verify_totp_code(secret, code):
        failures = member.record_two_factor_failure()
        remaining = policy.max_two_factor_attempts - failures
        if remaining <= 0:
            failed("Method: totp. Too many failed attempts")
            return ChallengeResult(ChallengeStatus.EXHAUSTED, 0)
        failed(f"Method: totp. Invalid code, {remaining} attempt(s) remaining")
        return ChallengeResult(ChallengeStatus.INCORRECT, remaining)

    member.reset_two_factor_failures()
    record_event(
        uow, AuditAction.TWO_FACTOR_VERIFICATION_SUCCESS, member_id=member.id, request=request, details="Method: totp"
    )
    return ChallengeResult(ChallengeStatus.SUCCESS)


def check_code(
    uow: AbstractUnitOfWork,
    member: Member,
    code: str,
    policy: SecurityPolicy = DEFAULT_POLICY,
    request: RequestInfo = ANONYMOUS_REQUEST,
) -> ChallengeResult:
    """Verify a code with whichever method the member has enabled."""
    if member.requires_two_factor and member.two_factor_method == TwoFactorMethod.EMAIL:
        return check_email_otp(uow, member, code, policy, request)
    if member.requires_two_factor and member.two_factor_method == TwoFactorMethod.TOTP:
        return check_totp(uow, member, code, policy, request)
    record_event(
        uow,
        AuditAction.TWO_FACTOR_VERIFICATION_FAILED,
        member_id=member.id,
        request=request,
        details="Two-factor authentication not enabled",
    )
    return ChallengeResult(ChallengeStatus.NOT_CONFIGURED)


# Public operations. Each runs in its own unit of work under the member's lock.


def generate_email_otp(
    uow: AbstractUnitOfWork,
    member_id: uuid.UUID,
    notifier: Notifier,
    policy: SecurityPolicy = DEFAULT_POLICY,
    request: RequestInfo = ANONYMOUS_REQUEST,
) -> str:
    """
    Generate, store and send a fresh email one-time code.

    The code is committed before it is sent. A delivery failure is logged and the
    stored code stays valid.

    Args:
        uow: Unit of Work for database operations
        member_id: The member to challenge
        notifier: Delivers the code
        policy: Code length and lifetime
        request: Origin of the request, for the audit trail

    Returns:
        The generated code

    Raises:
        MemberNotFoundError: If the member does not exist
    """
    code, email = _store_email_otp(uow, member_id, policy, request)
    deliver_email_otp(notifier, member_id, email, code)
    return code


@account_locks.retry_on_conflict
def _store_email_otp(
    uow: AbstractUnitOfWork, member_id: uuid.UUID, policy: SecurityPolicy, request: RequestInfo
) -> tuple[str, str]:
    with account_locks.hold(member_id):
        with uow:
            member = _load_for_update(uow, member_id)
            code = issue_email_otp(uow, member, policy, request)
            email = member.email
            uow.commit()
    return code, email


def deliver_email_otp(notifier: Notifier, member_id: uuid.UUID, email: str, code: str) -> bool:
    sent = notifier.send_otp(email, code)
    if not sent:
        logger.warning(f"Email OTP for member {member_id} was stored but could not be delivered")
    return sent


def resend_two_factor_code(
    uow: AbstractUnitOfWork,
    member_id: uuid.UUID,
    notifier: Notifier,
    policy: SecurityPolicy = DEFAULT_POLICY,
    request: RequestInfo = ANONYMOUS_REQUEST,
) -> None:
    """
    Send a new email code during a pending two-factor login.

    Raises:
        TwoFactorSetupError: If the member does not use email two-factor
    """
    with uow:
        member = uow.members.get(member_id)
        if member is None:
            raise MemberNotFoundError(f"Member {member_id} not found")
        uses_email = member.requires_two_factor and member.two_factor_method == TwoFactorMethod.EMAIL
    if not uses_email:
        raise TwoFactorSetupError("A new code can only be sent for email verification")
    generate_email_otp(uow, member_id, notifier, policy, request)


@account_locks.retry_on_conflict
def verify_email_otp(
    uow: AbstractUnitOfWork,
    member_id: uuid.UUID,
    code: str,
    policy: SecurityPolicy = DEFAULT_POLICY,
    request: RequestInfo = ANONYMOUS_REQUEST,
) -> ChallengeResult:
    """
    Check an email one-time code.

    A code generated at T is accepted in [T, T + lifetime). Reaching the attempt limit
    clears the stored code so a fresh one has to be generated.
    """
    with account_locks.hold(member_id):
        with uow:
            member = _load_for_update(uow, member_id)
            result = check_email_otp(uow, member, code, policy, request)
            uow.commit()
    return result


@account_locks.retry_on_conflict
def verify_totp(
    uow: AbstractUnitOfWork,
    member_id: uuid.UUID,
    code: str,
    policy: SecurityPolicy = DEFAULT_POLICY,
    request: RequestInfo = ANONYMOUS_REQUEST,
) -> ChallengeResult:
    """Check a TOTP code, accepting one 30-second step of drift either way."""
    with account_locks.hold(member_id):
        with uow:
            member = _load_for_update(uow, member_id)
            result = check_totp(uow, member, code, policy, request)
            uow.commit()
    return result


def begin_totp_enrollment(
    uow: AbstractUnitOfWork, member_id: uuid.UUID, policy: SecurityPolicy = DEFAULT_POLICY
) -> TotpEnrollment:
    """Start TOTP setup. Nothing is stored until enable_two_factor confirms a code.

    Returns:
        The plaintext secret with its provisioning URI and a QR code for authenticator apps

    Raises:
        TwoFactorSetupError: If the member is missing or already uses TOTP
    """
    with uow:
        member = uow.members.get(member_id)
        if member is None:
            raise TwoFactorSetupError("Member not found")
        if member.requires_two_factor and member.two_factor_method == TwoFactorMethod.TOTP:
            raise TwoFactorSetupError("TOTP is already enabled for this member")
        email = member.email

    secret = totp_service.generate_totp_secret()
    return TotpEnrollment(
        secret=secret,
        provisioning_uri=totp_service.get_provisioning_uri(secret, email, policy.totp_issuer),
        qr_code_data_url=totp_service.generate_qr_code_data_url(secret, email, policy.totp_issuer),
    )


@account_locks.retry_on_conflict
def enable_two_factor(
    uow: AbstractUnitOfWork,
    member_id: uuid.UUID,
    method: TwoFactorMethod,
    totp_secret: str | None = None,
    totp_code: str | None = None,
    request: RequestInfo = ANONYMOUS_REQUEST,
) -> None:
    """
    Turn on two-factor verification for a member.

    Args:
        uow: Unit of Work for database operations
        member_id: The member's UUID
        method: EMAIL or TOTP
        totp_secret: For TOTP, the secret from begin_totp_enrollment
        totp_code: For TOTP, a current code proving the authenticator app is set up
        request: Origin of the request, for the audit trail

    Raises:
        TwoFactorSetupError: If the method or TOTP details are missing
        ChallengeFailed: If the TOTP confirmation code is wrong
    """
    if method == TwoFactorMethod.NONE:
        raise TwoFactorSetupError("Choose email or authenticator app verification")

    encrypted_secret = None
    if method == TwoFactorMethod.TOTP:
        if not totp_secret or not totp_code:
            raise TwoFactorSetupError("A TOTP secret and confirmation code are required")
        if not totp_service.verify_totp_code(totp_secret, totp_code):
            raise ChallengeFailed(ChallengeStatus.INCORRECT)
        encrypted_secret = totp_service.encrypt_totp_secret(totp_secret, member_id)

    with account_locks.hold(member_id):
        with uow:
            member = uow.members.get_for_update(member_id)
            if member is None:
                raise TwoFactorSetupError("Member not found")
            member.enable_two_factor(method, encrypted_secret)
            record_event(
                uow,
                AuditAction.TWO_FACTOR_ENABLED,
                member_id=member_id,
                request=request,
                details=f"Method: {method.value}",
            )
            uow.commit()
    logger.info(f"Two-factor authentication ({method.value}) enabled for member {member_id}")


@account_locks.retry_on_conflict
def disable_two_factor(
    uow: AbstractUnitOfWork,
    member_id: uuid.UUID,
    request: RequestInfo = ANONYMOUS_REQUEST,
    details: str = "",
) -> None:
    """Turn off two-factor verification and discard the secret and any pending code."""
    with account_locks.hold(member_id):
        with uow:
            member = uow.members.get_for_update(member_id)
            if member is None:
                raise TwoFactorSetupError("Member not found")
            if not member.two_factor_enabled:
                raise TwoFactorSetupError("Two-factor authentication is not enabled for this member")
            previous_method = member.two_factor_method
            member.disable_two_factor()
            record_event(
                uow,
                AuditAction.TWO_FACTOR_DISABLED,
                member_id=member_id,
                request=request,
                details=details or f"Method: {previous_method.value}",
            )
            uow.commit()
    logger.info(f"Two-factor authentication disabled for member {member_id}")


@account_locks.retry_on_conflict
def reset_two_factor_attempts(
    uow: AbstractUnitOfWork, member_id: uuid.UUID, request: RequestInfo = ANONYMOUS_REQUEST
) -> None:
    """Clear the two-factor failure counter. This is the way out of TOTP exhaustion."""
    with account_locks.hold(member_id):
        with uow:
            member = _load_for_update(uow, member_id)
            previous = member.failed_two_factor_attempts
            member.reset_two_factor_failures()
            record_event(
                uow,
                AuditAction.TWO_FACTOR_ATTEMPTS_RESET,
                member_id=member_id,
                request=request,
                details=f"Cleared {previous} failed attempt(s)",
            )
            uow.commit()
