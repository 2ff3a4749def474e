"""Unit tests for the two-factor challenge service."""

import uuid
from datetime import UTC, datetime, timedelta

import pyotp
import pytest

from memberauth.domain.value_objects import AuditAction, ChallengeStatus, TwoFactorMethod
from memberauth.service_layer import totp_service, two_factor_service
from memberauth.service_layer.exceptions import ChallengeFailed, MemberNotFoundError, TwoFactorSetupError
from tests.fakes import TEST_REQUEST, FakeNotifier, add_member

# a multiple of 30 seconds, so TOTP steps line up with whole minutes
START = datetime(2026, 3, 2, 9, 0, tzinfo=UTC)


def _wrong_code(secret: str, at: datetime) -> str:
    totp = pyotp.TOTP(secret)
    timestamp = int(at.timestamp())
    valid = {totp.at(timestamp + offset) for offset in (-30, 0, 30)}
    return next(code for code in ("000000", "111111", "222222", "333333") if code not in valid)


@pytest.fixture
def email_member(uow):
    return add_member(uow, two_factor_enabled=True, two_factor_method=TwoFactorMethod.EMAIL)


@pytest.fixture
def totp_secret():
    return totp_service.generate_totp_secret()


@pytest.fixture
def totp_member(uow, totp_secret):
    new_member = add_member(uow)
    new_member.enable_two_factor(TwoFactorMethod.TOTP, totp_service.encrypt_totp_secret(totp_secret, new_member.id))
    return new_member


class TestGenerateEmailOtp:
    def test_generates_six_digit_code_and_sends_it(self, uow, notifier, email_member):
        code = two_factor_service.generate_email_otp(uow, email_member.id, notifier, request=TEST_REQUEST)

        assert len(code) == 6
        assert code.isdigit()
        assert email_member.email_otp == code
        assert email_member.otp_generated_at is not None
        assert notifier.otps == [(email_member.email, code)]
        assert uow.audit_events.actions() == [AuditAction.EMAIL_OTP_GENERATED]

    def test_resets_failure_counter(self, uow, notifier, email_member):
        email_member.failed_two_factor_attempts = 2

        two_factor_service.generate_email_otp(uow, email_member.id, notifier)

        assert email_member.failed_two_factor_attempts == 0

    def test_code_is_stored_even_when_delivery_fails(self, uow, email_member):
        code = two_factor_service.generate_email_otp(uow, email_member.id, FakeNotifier(succeed=False))

        assert email_member.email_otp == code
        assert uow.committed

    def test_audit_details_never_contain_the_code(self, uow, notifier, email_member):
        code = two_factor_service.generate_email_otp(uow, email_member.id, notifier)

        assert all(code not in event.details for event in uow.audit_events.all())

    def test_unknown_member_raises(self, uow, notifier):
        with pytest.raises(MemberNotFoundError):
            two_factor_service.generate_email_otp(uow, uuid.uuid4(), notifier)


class TestVerifyEmailOtp:
    def test_correct_code_just_before_expiry_succeeds(self, uow, notifier, email_member, time_machine):
        time_machine.move_to(START, tick=False)
        code = two_factor_service.generate_email_otp(uow, email_member.id, notifier)

        time_machine.shift(timedelta(minutes=9, seconds=59))
        result = two_factor_service.verify_email_otp(uow, email_member.id, code)

        assert result.succeeded
        assert email_member.email_otp is None
        assert email_member.failed_two_factor_attempts == 0

    def test_correct_code_at_expiry_is_rejected(self, uow, notifier, email_member, time_machine):
        time_machine.move_to(START, tick=False)
        code = two_factor_service.generate_email_otp(uow, email_member.id, notifier)

        time_machine.shift(timedelta(minutes=10))
        result = two_factor_service.verify_email_otp(uow, email_member.id, code)

        assert result.status == ChallengeStatus.EXPIRED
        assert uow.audit_events.actions()[-1] == AuditAction.TWO_FACTOR_VERIFICATION_FAILED

    def test_code_is_single_use(self, uow, notifier, email_member):
        code = two_factor_service.generate_email_otp(uow, email_member.id, notifier)
        two_factor_service.verify_email_otp(uow, email_member.id, code)

        result = two_factor_service.verify_email_otp(uow, email_member.id, code)

        assert result.status == ChallengeStatus.NO_ACTIVE_CODE

    def test_incorrect_codes_count_down_then_exhaust(self, uow, notifier, email_member):
        code = two_factor_service.generate_email_otp(uow, email_member.id, notifier)

        results = [two_factor_service.verify_email_otp(uow, email_member.id, "000000") for _ in range(3)]

        assert [r.status for r in results] == [
            ChallengeStatus.INCORRECT,
            ChallengeStatus.INCORRECT,
            ChallengeStatus.EXHAUSTED,
        ]
        assert [r.attempts_remaining for r in results] == [2, 1, 0]
        assert email_member.email_otp is None
        # the stored code is gone, so even the right one no longer works
        assert two_factor_service.verify_email_otp(uow, email_member.id, code).status == ChallengeStatus.NO_ACTIVE_CODE

    def test_fresh_code_after_exhaustion_works(self, uow, notifier, email_member):
        two_factor_service.generate_email_otp(uow, email_member.id, notifier)
        for _ in range(3):
            two_factor_service.verify_email_otp(uow, email_member.id, "000000")

        code = two_factor_service.generate_email_otp(uow, email_member.id, notifier)

        assert two_factor_service.verify_email_otp(uow, email_member.id, code).succeeded

    def test_surrounding_whitespace_is_ignored(self, uow, notifier, email_member):
        code = two_factor_service.generate_email_otp(uow, email_member.id, notifier)

        assert two_factor_service.verify_email_otp(uow, email_member.id, f" {code}\n").succeeded

    def test_incorrect_result_maps_to_error_with_remaining(self, uow, notifier, email_member):
        two_factor_service.generate_email_otp(uow, email_member.id, notifier)

        error = two_factor_service.verify_email_otp(uow, email_member.id, "000000").to_error()

        assert isinstance(error, ChallengeFailed)
        assert str(error) == "Invalid verification code. 2 attempt(s) remaining"


class TestResendTwoFactorCode:
    def test_sends_a_new_code(self, uow, notifier, email_member):
        two_factor_service.generate_email_otp(uow, email_member.id, notifier)

        two_factor_service.resend_two_factor_code(uow, email_member.id, notifier)

        assert len(notifier.otps) == 2
        assert email_member.email_otp == notifier.last_otp
        assert uow.audit_events.actions().count(AuditAction.EMAIL_OTP_GENERATED) == 2

    def test_refuses_members_without_email_two_factor(self, uow, notifier, totp_member):
        with pytest.raises(TwoFactorSetupError):
            two_factor_service.resend_two_factor_code(uow, totp_member.id, notifier)
        assert notifier.otps == []


class TestVerifyTotp:
    def test_current_code_succeeds(self, uow, totp_member, totp_secret, time_machine):
        time_machine.move_to(START, tick=False)
        code = pyotp.TOTP(totp_secret).at(int(START.timestamp()))

        result = two_factor_service.verify_totp(uow, totp_member.id, code, request=TEST_REQUEST)

        assert result.succeeded
        assert uow.audit_events.actions() == [AuditAction.TWO_FACTOR_VERIFICATION_SUCCESS]

    @pytest.mark.parametrize("offset", [-30, 30])
    def test_one_step_of_drift_is_accepted(self, uow, totp_member, totp_secret, time_machine, offset):
        time_machine.move_to(START, tick=False)
        code = pyotp.TOTP(totp_secret).at(int(START.timestamp()) + offset)

        assert two_factor_service.verify_totp(uow, totp_member.id, code).succeeded

    @pytest.mark.parametrize("offset", [-90, 90])
    def test_more_drift_is_rejected(self, uow, totp_member, totp_secret, time_machine, offset):
        time_machine.move_to(START, tick=False)
        totp = pyotp.TOTP(totp_secret)
        now = int(START.timestamp())
        code = totp.at(now + offset)
        if code in {totp.at(now + step) for step in (-30, 0, 30)}:
            pytest.skip("drifted code collides with a valid one")

        result = two_factor_service.verify_totp(uow, totp_member.id, code)

        assert result.status == ChallengeStatus.INCORRECT
        assert result.attempts_remaining == 2

    def test_exhaustion_keeps_the_secret(self, uow, totp_member, totp_secret, time_machine):
        time_machine.move_to(START, tick=False)
        wrong = _wrong_code(totp_secret, START)

        results = [two_factor_service.verify_totp(uow, totp_member.id, wrong) for _ in range(3)]

        assert [r.status for r in results][-1] == ChallengeStatus.EXHAUSTED
        assert totp_member.totp_secret_encrypted is not None
        correct = pyotp.TOTP(totp_secret).at(int(START.timestamp()))
        assert two_factor_service.verify_totp(uow, totp_member.id, correct).status == ChallengeStatus.EXHAUSTED

    def test_reset_attempts_recovers_from_exhaustion(self, uow, totp_member, totp_secret, time_machine):
        time_machine.move_to(START, tick=False)
        wrong = _wrong_code(totp_secret, START)
        for _ in range(3):
            two_factor_service.verify_totp(uow, totp_member.id, wrong)

        two_factor_service.reset_two_factor_attempts(uow, totp_member.id, request=TEST_REQUEST)

        assert uow.audit_events.actions()[-1] == AuditAction.TWO_FACTOR_ATTEMPTS_RESET
        assert list(uow.audit_events.all())[-1].details == "Cleared 3 failed attempt(s)"
        correct = pyotp.TOTP(totp_secret).at(int(START.timestamp()))
        assert two_factor_service.verify_totp(uow, totp_member.id, correct).succeeded

    def test_not_configured(self, uow, member):
        result = two_factor_service.verify_totp(uow, member.id, "123456")

        assert result.status == ChallengeStatus.NOT_CONFIGURED

    def test_non_numeric_code_is_incorrect(self, uow, totp_member):
        result = two_factor_service.verify_totp(uow, totp_member.id, "abcdef")

        assert result.status == ChallengeStatus.INCORRECT


class TestTotpEnrollment:
    def test_begin_enrollment_returns_secret_and_qr_code(self, uow, member):
        enrollment = two_factor_service.begin_totp_enrollment(uow, member.id)

        assert len(enrollment.secret) == 32
        assert enrollment.provisioning_uri.startswith("otpauth://totp/")
        assert "Bookworms%20Online" in enrollment.provisioning_uri
        assert enrollment.qr_code_data_url.startswith("data:image/png;base64,")
        assert member.totp_secret_encrypted is None

    def test_enable_totp_with_confirmation_code(self, uow, member):
        enrollment = two_factor_service.begin_totp_enrollment(uow, member.id)
        code = pyotp.TOTP(enrollment.secret).now()

        two_factor_service.enable_two_factor(
            uow, member.id, TwoFactorMethod.TOTP, totp_secret=enrollment.secret, totp_code=code, request=TEST_REQUEST
        )

        assert member.requires_two_factor
        assert member.two_factor_method == TwoFactorMethod.TOTP
        assert member.totp_secret_encrypted != enrollment.secret
        assert totp_service.decrypt_totp_secret(member.totp_secret_encrypted, member.id) == enrollment.secret
        assert uow.audit_events.actions() == [AuditAction.TWO_FACTOR_ENABLED]

    def test_enable_totp_with_wrong_code_fails(self, uow, member, time_machine):
        time_machine.move_to(START, tick=False)
        secret = totp_service.generate_totp_secret()

        with pytest.raises(ChallengeFailed):
            two_factor_service.enable_two_factor(
                uow, member.id, TwoFactorMethod.TOTP, totp_secret=secret, totp_code=_wrong_code(secret, START)
            )
        assert not member.two_factor_enabled

    def test_enable_totp_requires_secret_and_code(self, uow, member):
        with pytest.raises(TwoFactorSetupError):
            two_factor_service.enable_two_factor(uow, member.id, TwoFactorMethod.TOTP)

    def test_cannot_enable_none(self, uow, member):
        with pytest.raises(TwoFactorSetupError):
            two_factor_service.enable_two_factor(uow, member.id, TwoFactorMethod.NONE)

    def test_begin_enrollment_refused_when_totp_already_enabled(self, uow, totp_member):
        with pytest.raises(TwoFactorSetupError):
            two_factor_service.begin_totp_enrollment(uow, totp_member.id)

    def test_enable_email(self, uow, member):
        two_factor_service.enable_two_factor(uow, member.id, TwoFactorMethod.EMAIL)

        assert member.two_factor_method == TwoFactorMethod.EMAIL
        assert member.totp_secret_encrypted is None


class TestDisableTwoFactor:
    def test_disable_discards_secret(self, uow, totp_member):
        two_factor_service.disable_two_factor(uow, totp_member.id, request=TEST_REQUEST)

        assert not totp_member.requires_two_factor
        assert totp_member.totp_secret_encrypted is None
        event = list(uow.audit_events.all())[-1]
        assert event.action == AuditAction.TWO_FACTOR_DISABLED
        assert event.details == "Method: totp"

    def test_disable_when_not_enabled_raises(self, uow, member):
        with pytest.raises(TwoFactorSetupError):
            two_factor_service.disable_two_factor(uow, member.id)
