"""Unit tests for the password lifecycle service."""

import uuid
from datetime import UTC, datetime, timedelta

import pytest

from memberauth.config import SecurityPolicy
from memberauth.domain.password_reset import TokenInvalidReason
from memberauth.domain.value_objects import AuditAction
from memberauth.service_layer import password_service
from memberauth.service_layer.exceptions import (
    InvalidCredentials,
    MemberNotFoundError,
    PasswordChangeTooSoon,
    PasswordReused,
    PolicyViolation,
    TokenInvalid,
)
from memberauth.service_layer.security import verify_password
from tests.fakes import (
    FOURTH_STRONG_PASSWORD,
    OTHER_STRONG_PASSWORD,
    STRONG_PASSWORD,
    TEST_REQUEST,
    THIRD_STRONG_PASSWORD,
    FakeNotifier,
    FakeURLGenerator,
    add_member,
)

START = datetime(2026, 3, 2, 9, 0, tzinfo=UTC)


@pytest.fixture
def aged_member(uow, time_machine):
    """A member whose password is old enough to be changed."""
    time_machine.move_to(START, tick=False)
    new_member = add_member(uow)
    time_machine.shift(timedelta(minutes=2))
    return new_member


class TestChangePassword:
    def test_successful_change(self, uow, aged_member):
        old_hash = aged_member.password_hash

        password_service.change_password(
            uow, aged_member.id, STRONG_PASSWORD, OTHER_STRONG_PASSWORD, request=TEST_REQUEST
        )

        assert verify_password(OTHER_STRONG_PASSWORD, aged_member.password_hash)
        assert aged_member.password_changed_at == START + timedelta(minutes=2)
        history = uow.password_history.recent_for_member(aged_member.id, 5)
        assert [entry.password_hash for entry in history] == [old_hash]
        assert uow.audit_events.actions() == [AuditAction.PASSWORD_CHANGED]

    def test_wrong_current_password(self, uow, aged_member):
        with pytest.raises(InvalidCredentials) as exc_info:
            password_service.change_password(uow, aged_member.id, "Wr0ng!Password", OTHER_STRONG_PASSWORD)

        assert str(exc_info.value) == "Current password is incorrect"
        assert uow.audit_events.actions() == [AuditAction.PASSWORD_CHANGE_FAILED]
        assert uow.committed

    def test_current_password_is_checked_before_policy(self, uow, aged_member):
        with pytest.raises(InvalidCredentials):
            password_service.change_password(uow, aged_member.id, "Wr0ng!Password", "weak")

    def test_policy_violation_lists_every_broken_rule(self, uow, aged_member):
        with pytest.raises(PolicyViolation) as exc_info:
            password_service.change_password(uow, aged_member.id, STRONG_PASSWORD, "short")

        assert len(exc_info.value.rules) == 4
        assert verify_password(STRONG_PASSWORD, aged_member.password_hash)
        assert uow.audit_events.actions() == [AuditAction.PASSWORD_CHANGE_FAILED]

    def test_policy_is_checked_before_minimum_age(self, uow, member):
        with pytest.raises(PolicyViolation):
            password_service.change_password(uow, member.id, STRONG_PASSWORD, "short")

    def test_change_too_soon(self, uow, time_machine):
        time_machine.move_to(START, tick=False)
        new_member = add_member(uow)
        time_machine.shift(timedelta(seconds=20))

        with pytest.raises(PasswordChangeTooSoon) as exc_info:
            password_service.change_password(uow, new_member.id, STRONG_PASSWORD, OTHER_STRONG_PASSWORD)

        assert exc_info.value.remaining == timedelta(seconds=40)
        assert "40 second(s)" in str(exc_info.value)

    def test_change_allowed_once_minimum_age_reached(self, uow, time_machine):
        time_machine.move_to(START, tick=False)
        new_member = add_member(uow)
        time_machine.shift(timedelta(minutes=1))

        password_service.change_password(uow, new_member.id, STRONG_PASSWORD, OTHER_STRONG_PASSWORD)

        assert verify_password(OTHER_STRONG_PASSWORD, new_member.password_hash)

    def test_current_password_is_not_part_of_history(self, uow, aged_member):
        password_service.change_password(uow, aged_member.id, STRONG_PASSWORD, STRONG_PASSWORD)

        assert verify_password(STRONG_PASSWORD, aged_member.password_hash)
        assert len(uow.password_history.recent_for_member(aged_member.id, 2)) == 1
        assert uow.audit_events.actions()[-1] == AuditAction.PASSWORD_CHANGED

    def test_previous_password_is_rejected(self, uow, aged_member, time_machine):
        password_service.change_password(uow, aged_member.id, STRONG_PASSWORD, OTHER_STRONG_PASSWORD)
        time_machine.shift(timedelta(minutes=2))

        with pytest.raises(PasswordReused):
            password_service.change_password(uow, aged_member.id, OTHER_STRONG_PASSWORD, STRONG_PASSWORD)
        assert uow.audit_events.actions()[-1] == AuditAction.PASSWORD_CHANGE_FAILED

    def test_last_two_passwords_cannot_be_reused(self, uow, aged_member, time_machine):
        password_service.change_password(uow, aged_member.id, STRONG_PASSWORD, OTHER_STRONG_PASSWORD)
        time_machine.shift(timedelta(minutes=2))
        password_service.change_password(uow, aged_member.id, OTHER_STRONG_PASSWORD, THIRD_STRONG_PASSWORD)
        time_machine.shift(timedelta(minutes=2))

        with pytest.raises(PasswordReused):
            password_service.change_password(uow, aged_member.id, THIRD_STRONG_PASSWORD, STRONG_PASSWORD)
        with pytest.raises(PasswordReused):
            password_service.change_password(uow, aged_member.id, THIRD_STRONG_PASSWORD, OTHER_STRONG_PASSWORD)

    def test_older_passwords_fall_out_of_history(self, uow, aged_member, time_machine):
        for current, new in [
            (STRONG_PASSWORD, OTHER_STRONG_PASSWORD),
            (OTHER_STRONG_PASSWORD, THIRD_STRONG_PASSWORD),
            (THIRD_STRONG_PASSWORD, FOURTH_STRONG_PASSWORD),
        ]:
            password_service.change_password(uow, aged_member.id, current, new)
            time_machine.shift(timedelta(minutes=2))

        password_service.change_password(uow, aged_member.id, FOURTH_STRONG_PASSWORD, STRONG_PASSWORD)

        assert verify_password(STRONG_PASSWORD, aged_member.password_hash)

    def test_unknown_member(self, uow):
        with pytest.raises(MemberNotFoundError):
            password_service.change_password(uow, uuid.uuid4(), STRONG_PASSWORD, OTHER_STRONG_PASSWORD)


class TestPasswordExpiry:
    def test_not_expired_at_exactly_max_age(self, uow, time_machine):
        time_machine.move_to(START, tick=False)
        new_member = add_member(uow)

        time_machine.shift(timedelta(days=90))

        assert not password_service.is_password_expired(uow, new_member.id)

    def test_expired_after_max_age(self, uow, time_machine):
        time_machine.move_to(START, tick=False)
        new_member = add_member(uow)

        time_machine.shift(timedelta(days=90, seconds=1))

        assert password_service.is_password_expired(uow, new_member.id)

    def test_change_restarts_the_clock(self, uow, aged_member, time_machine):
        time_machine.shift(timedelta(days=80))
        password_service.change_password(uow, aged_member.id, STRONG_PASSWORD, OTHER_STRONG_PASSWORD)

        time_machine.shift(timedelta(days=20))

        assert not password_service.is_password_expired(uow, aged_member.id)

    def test_max_age_comes_from_policy(self, uow, time_machine):
        time_machine.move_to(START, tick=False)
        new_member = add_member(uow)
        time_machine.shift(timedelta(days=31))

        policy = SecurityPolicy(password_max_age=timedelta(days=30))

        assert password_service.is_password_expired(uow, new_member.id, policy)


class TestGenerateResetToken:
    def test_known_email_gets_token(self, uow, member):
        token = password_service.generate_reset_token(uow, "READER@example.com", request=TEST_REQUEST)

        assert token
        stored = uow.password_reset_tokens.get_by_token(token)
        assert stored.member_id == member.id
        assert stored.expires_at - stored.created_at == timedelta(hours=24)
        assert uow.audit_events.actions() == [AuditAction.PASSWORD_RESET_TOKEN_GENERATED]

    def test_unknown_email_returns_none_and_is_audited(self, uow):
        assert password_service.generate_reset_token(uow, "nobody@example.com") is None
        assert uow.audit_events.actions() == [AuditAction.PASSWORD_RESET_REQUESTED]
        assert list(uow.password_reset_tokens.all()) == []


class TestRequestPasswordReset:
    def test_sends_link_with_token(self, uow, member):
        notifier = FakeNotifier()

        password_service.request_password_reset(uow, member.email, notifier, FakeURLGenerator())

        token = list(uow.password_reset_tokens.all())[0].token
        assert notifier.reset_links == [(member.email, f"https://example.com/reset_password?token={token}")]

    def test_unknown_email_sends_nothing(self, uow):
        notifier = FakeNotifier()

        result = password_service.request_password_reset(uow, "nobody@example.com", notifier, FakeURLGenerator())

        assert result is None
        assert notifier.reset_links == []

    def test_delivery_failure_keeps_token(self, uow, member):
        password_service.request_password_reset(uow, member.email, FakeNotifier(succeed=False), FakeURLGenerator())

        assert len(list(uow.password_reset_tokens.all())) == 1


class TestResetPasswordWithToken:
    def test_reset_sets_new_password_and_uses_token(self, uow, member):
        token = password_service.generate_reset_token(uow, member.email)

        password_service.reset_password_with_token(uow, token, OTHER_STRONG_PASSWORD, request=TEST_REQUEST)

        assert verify_password(OTHER_STRONG_PASSWORD, member.password_hash)
        assert uow.password_reset_tokens.get_by_token(token).used
        assert uow.audit_events.actions()[-1] == AuditAction.PASSWORD_RESET

    def test_reset_skips_minimum_age(self, uow, member):
        token = password_service.generate_reset_token(uow, member.email)

        password_service.reset_password_with_token(uow, token, OTHER_STRONG_PASSWORD)

        assert verify_password(OTHER_STRONG_PASSWORD, member.password_hash)

    def test_token_succeeds_only_once(self, uow, member):
        token = password_service.generate_reset_token(uow, member.email)
        password_service.reset_password_with_token(uow, token, OTHER_STRONG_PASSWORD)

        with pytest.raises(TokenInvalid) as exc_info:
            password_service.reset_password_with_token(uow, token, THIRD_STRONG_PASSWORD)

        assert exc_info.value.reason == TokenInvalidReason.USED
        assert str(exc_info.value) == "Invalid or expired password reset link"
        assert uow.audit_events.actions()[-1] == AuditAction.PASSWORD_RESET_TOKEN_REUSED
        assert verify_password(OTHER_STRONG_PASSWORD, member.password_hash)

    def test_expired_token(self, uow, member, time_machine):
        time_machine.move_to(START, tick=False)
        token = password_service.generate_reset_token(uow, member.email)
        time_machine.shift(timedelta(hours=24))

        with pytest.raises(TokenInvalid) as exc_info:
            password_service.reset_password_with_token(uow, token, OTHER_STRONG_PASSWORD)

        assert exc_info.value.reason == TokenInvalidReason.EXPIRED
        assert uow.audit_events.actions()[-1] == AuditAction.PASSWORD_RESET_TOKEN_EXPIRED

    def test_unknown_token(self, uow):
        with pytest.raises(TokenInvalid) as exc_info:
            password_service.reset_password_with_token(uow, "not-a-token", OTHER_STRONG_PASSWORD)

        assert exc_info.value.reason == TokenInvalidReason.NOT_FOUND
        assert uow.audit_events.actions() == [AuditAction.PASSWORD_RESET_TOKEN_INVALID]

    def test_every_reason_has_the_same_message(self):
        messages = {str(TokenInvalid(reason)) for reason in TokenInvalidReason}

        assert messages == {"Invalid or expired password reset link"}

    def test_policy_failure_leaves_token_usable(self, uow, member):
        token = password_service.generate_reset_token(uow, member.email)

        with pytest.raises(PolicyViolation):
            password_service.reset_password_with_token(uow, token, "weak")

        assert not uow.password_reset_tokens.get_by_token(token).used
        assert uow.audit_events.actions()[-1] == AuditAction.PASSWORD_RESET_FAILED

    def test_history_applies_to_reset(self, uow, member):
        first = password_service.generate_reset_token(uow, member.email)
        password_service.reset_password_with_token(uow, first, OTHER_STRONG_PASSWORD)
        token = password_service.generate_reset_token(uow, member.email)

        with pytest.raises(PasswordReused):
            password_service.reset_password_with_token(uow, token, STRONG_PASSWORD)


class TestValidateResetToken:
    def test_valid_token_returns_copy(self, uow, member):
        token = password_service.generate_reset_token(uow, member.email)

        checked = password_service.validate_reset_token(uow, token)

        assert checked.member_id == member.id
        assert not checked.used

    def test_used_token_is_rejected(self, uow, member):
        token = password_service.generate_reset_token(uow, member.email)
        password_service.reset_password_with_token(uow, token, OTHER_STRONG_PASSWORD)

        with pytest.raises(TokenInvalid) as exc_info:
            password_service.validate_reset_token(uow, token)

        assert exc_info.value.reason == TokenInvalidReason.USED
