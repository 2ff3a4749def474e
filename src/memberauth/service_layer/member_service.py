"""ABOUTME: Member management service layer
ABOUTME: Handles registration with case-insensitive unique emails and member lookups"""

import logging
import uuid

from memberauth.config import DEFAULT_POLICY, SecurityPolicy
from memberauth.domain.members import Member
from memberauth.domain.password_policy import validate_password_policy
from memberauth.domain.value_objects import ANONYMOUS_REQUEST, AuditAction, RequestInfo, normalise_email

from .audit_service import record_event
from .exceptions import MemberAlreadyExists, MemberNotFoundError, PolicyViolation
from .security import hash_password
from .unit_of_work import AbstractUnitOfWork

logger = logging.getLogger(__name__)


def register_member(
    uow: AbstractUnitOfWork,
    email: str,
    password: str,
    first_name: str = "",
    last_name: str = "",
    policy: SecurityPolicy = DEFAULT_POLICY,
    request: RequestInfo = ANONYMOUS_REQUEST,
) -> Member:
    """
    Register a new member.

    Args:
        uow: Unit of Work for database operations
        email: Email address; stored case-folded
        password: Plaintext password, checked against the complexity rules
        first_name: Member's first name
        last_name: Member's last name
        policy: Password complexity settings
        request: Origin of the request, for the audit trail

    Returns:
        Detached copy of the created Member

    Raises:
        ValueError: If the email address is not valid
        MemberAlreadyExists: If the email is taken, in any letter case
        PolicyViolation: If the password breaks any complexity rule
    """
    email = normalise_email(email)
    with uow:
        if uow.members.get_by_email(email) is not None:
            raise MemberAlreadyExists(email=email)

        rules = validate_password_policy(password, policy.password_min_length)
        if rules:
            # no member row exists yet, so the event is anonymous
            record_event(
                uow,
                AuditAction.MEMBER_REGISTRATION_FAILED,
                request=request,
                details=f"Policy violation for {email}: {'; '.join(rules)}",
            )
            uow.commit()
            raise PolicyViolation(rules)

        member = Member(email=email, password_hash=hash_password(password), first_name=first_name, last_name=last_name)
        uow.members.add(member)
        record_event(uow, AuditAction.MEMBER_REGISTERED, member_id=member.id, request=request)

        detached_member = member.create_detached_copy()
        uow.commit()
    logger.info(f"Registered member {detached_member.id}")
    return detached_member


def get_member(uow: AbstractUnitOfWork, member_id: uuid.UUID) -> Member:
    with uow:
        member = uow.members.get(member_id)
        if member is None:
            raise MemberNotFoundError(f"Member {member_id} not found")
        return member.create_detached_copy()


def get_member_by_email(uow: AbstractUnitOfWork, email: str) -> Member:
    with uow:
        member = uow.members.get_by_email(email)
        if member is None:
            raise MemberNotFoundError(f"Member with email '{normalise_email(email)}' not found")
        return member.create_detached_copy()
