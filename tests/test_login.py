"""
Unit tests for the login module.

Tests:
- Credential verification
- Failed-password rate limiting
- Two-step login: login -> complete_mfa, resend
"""

import pytest

from mfaguard.auth.errors import (
    AccountLocked, AlreadyUsed, Expired, IncorrectCode, InvalidAddress,
    InvalidCredentials, NoActiveChallenge, ResendThrottled, UserNotFound,
)
from mfaguard.auth.login import CredentialValidator, RateLimiter
from mfaguard.auth.models import Channel, Credentials, LoginStatus, User
from mfaguard.integration.event_logger import EventType
from tests.conftest import ALICE_PASSWORD, BOB_PASSWORD, wrong_code


def alice_code(outbox):
    return outbox.codes_for("alice@example.com")[-1]


class CountingHasher:
    """Wraps a hasher and counts verifications."""

    def __init__(self, inner):
        self._inner = inner
        self.verify_calls = 0

    def hash_password(self, password):
        return self._inner.hash_password(password)

    def verify_password(self, password, hash_str):
        self.verify_calls += 1
        return self._inner.verify_password(password, hash_str)


class TestCredentialValidator:
    """Tests for primary credential checks."""

    @pytest.fixture
    def validator(self, repo, hasher, clock):
        return CredentialValidator(repo, hasher=hasher, clock=clock)

    def test_username_login(self, validator):
        assert validator.authenticate(Credentials("alice", ALICE_PASSWORD)) == "u-alice"

    def test_email_login_case_insensitive(self, validator):
        assert validator.authenticate(
            Credentials("Alice@Example.com", ALICE_PASSWORD)) == "u-alice"

    def test_wrong_password(self, validator):
        with pytest.raises(InvalidCredentials):
            validator.authenticate(Credentials("alice", "Wr0ng!Password"))

    def test_unknown_user(self, validator):
        with pytest.raises(UserNotFound):
            validator.authenticate(Credentials("mallory", ALICE_PASSWORD))

    @pytest.mark.parametrize("identifier,secret", [
        ("", ALICE_PASSWORD),
        ("   ", ALICE_PASSWORD),
        ("alice", ""),
    ])
    def test_empty_input(self, validator, identifier, secret):
        with pytest.raises(InvalidCredentials):
            validator.authenticate(Credentials(identifier, secret))

    def test_locked_user_rejected_with_any_password(self, validator, repo, clock):
        repo.lock("u-alice", clock.now() + 100)
        with pytest.raises(AccountLocked) as exc_info:
            validator.authenticate(Credentials("alice", ALICE_PASSWORD))
        assert exc_info.value.retry_after == 100
        with pytest.raises(AccountLocked):
            validator.authenticate(Credentials("alice", "Wr0ng!Password"))

    def test_locked_user_pays_for_verification(self, repo, hasher, clock):
        """Locked, unknown and wrong-password paths all run one Argon2 verify."""
        counting = CountingHasher(hasher)
        validator = CredentialValidator(repo, hasher=counting, clock=clock)
        repo.lock("u-alice", clock.now() + 100)

        with pytest.raises(AccountLocked):
            validator.authenticate(Credentials("alice", "Wr0ng!Password"))
        assert counting.verify_calls == 1

        with pytest.raises(UserNotFound):
            validator.authenticate(Credentials("mallory", "Wr0ng!Password"))
        assert counting.verify_calls == 2

    def test_expired_lock_allows_login(self, validator, repo, clock):
        repo.lock("u-alice", clock.now() + 100)
        clock.advance(101)
        assert validator.authenticate(Credentials("alice", ALICE_PASSWORD)) == "u-alice"


class TestRateLimiter:
    """Tests for rate limiting."""

    @pytest.fixture
    def limiter(self, clock):
        return RateLimiter(max_attempts=3, lockout_duration=60,
                           window_seconds=300, clock=clock)

    def test_not_locked_initially(self, limiter):
        assert limiter.is_locked_out("alice") == (False, 0)
        assert limiter.get_remaining_attempts("alice") == 3

    def test_locked_after_max_failures(self, limiter):
        for _ in range(3):
            limiter.record_attempt("alice", False)
        is_locked, remaining = limiter.is_locked_out("alice")
        assert is_locked
        assert 0 < remaining <= 61
        assert limiter.get_remaining_attempts("alice") == 0

    def test_lockout_ends(self, limiter, clock):
        for _ in range(3):
            limiter.record_attempt("alice", False)
        clock.advance(61)
        assert limiter.is_locked_out("alice") == (False, 0)

    def test_success_clears_history(self, limiter):
        limiter.record_attempt("alice", False)
        limiter.record_attempt("alice", False)
        limiter.record_attempt("alice", True)
        assert limiter.get_remaining_attempts("alice") == 3

    def test_window_restarts_count(self, limiter, clock):
        limiter.record_attempt("alice", False)
        limiter.record_attempt("alice", False)
        clock.advance(301)
        limiter.record_attempt("alice", False)
        assert limiter.get_remaining_attempts("alice") == 2
        assert not limiter.is_locked_out("alice")[0]

    def test_identifiers_are_independent(self, limiter):
        for _ in range(3):
            limiter.record_attempt("alice", False)
        assert not limiter.is_locked_out("bob")[0]

    def test_stale_identifiers_evicted(self, limiter, clock):
        """Sprayed one-off identifiers do not accumulate forever."""
        for i in range(1000):
            limiter.record_attempt(f"ghost-{i}", False)
        assert limiter.tracked_count() == 1000

        clock.advance(10_000)
        limiter.record_attempt("fresh", False)
        assert limiter.tracked_count() == 1

    def test_active_lockout_survives_eviction(self, clock):
        limiter = RateLimiter(max_attempts=1, lockout_duration=3600,
                              window_seconds=60, clock=clock)
        limiter.record_attempt("alice", False)
        clock.advance(120)
        limiter.record_attempt("bob", False)
        assert limiter.is_locked_out("alice")[0]
        assert limiter.tracked_count() == 2

    def test_reset(self, limiter):
        for _ in range(3):
            limiter.record_attempt("alice", False)
        limiter.reset("alice")
        assert not limiter.is_locked_out("alice")[0]


class TestLogin:
    """Tests for the first login step."""

    def test_login_requires_mfa(self, orchestrator, email_outbox, clock):
        result = orchestrator.login(Credentials("alice", ALICE_PASSWORD))
        assert result.status is LoginStatus.PENDING_MFA
        assert result.requires_mfa and not result.authenticated
        assert result.user_id == "u-alice"
        assert result.channel is Channel.EMAIL
        assert result.expires_at == clock.now() + 300
        assert result.reference
        assert result.session is None
        assert len(email_outbox.codes_for("alice@example.com")) == 1

    def test_login_on_mobile(self, orchestrator, sms_outbox):
        result = orchestrator.login(Credentials("alice", ALICE_PASSWORD),
                                    channel=Channel.MOBILE)
        assert result.channel is Channel.MOBILE
        assert len(sms_outbox.codes_for("+14155550100")) == 1

    def test_mfa_disabled_user_authenticated_directly(self, orchestrator, email_outbox):
        result = orchestrator.login(Credentials("bob", BOB_PASSWORD))
        assert result.status is LoginStatus.AUTHENTICATED
        assert result.session.user_id == "u-bob"
        assert not result.session.mfa_verified
        assert result.reference is None
        assert email_outbox.outbox == []

    def test_wrong_password(self, orchestrator, email_outbox):
        with pytest.raises(InvalidCredentials):
            orchestrator.login(Credentials("alice", "Wr0ng!Password"))
        assert email_outbox.outbox == []

    def test_unknown_user_looks_like_wrong_password(self, orchestrator):
        with pytest.raises(InvalidCredentials):
            orchestrator.login(Credentials("mallory", "Wr0ng!Password"))

    def test_repeated_failures_rate_limited(self, orchestrator):
        for _ in range(5):
            with pytest.raises(InvalidCredentials):
                orchestrator.login(Credentials("alice", "Wr0ng!Password"))
        with pytest.raises(AccountLocked):
            orchestrator.login(Credentials("alice", ALICE_PASSWORD))

    def test_rate_limit_keyed_case_insensitively(self, orchestrator):
        for _ in range(5):
            with pytest.raises(InvalidCredentials):
                orchestrator.login(Credentials("ALICE", "Wr0ng!Password"))
        with pytest.raises(AccountLocked):
            orchestrator.login(Credentials("alice", ALICE_PASSWORD))

    def test_no_contact_address(self, orchestrator, repo, hasher):
        repo.add(User(user_id="u-dan", username="dan",
                      password_hash=hasher.hash_password(ALICE_PASSWORD)))
        with pytest.raises(InvalidAddress):
            orchestrator.login(Credentials("dan", ALICE_PASSWORD))

    def test_second_login_inside_cooldown_throttled(self, orchestrator, clock):
        first = orchestrator.login(Credentials("alice", ALICE_PASSWORD))
        clock.advance(10)
        with pytest.raises(ResendThrottled):
            orchestrator.login(Credentials("alice", ALICE_PASSWORD))
        # The earlier reference is still usable
        assert orchestrator.pending_count() == 1
        assert first.reference

    def test_new_login_supersedes_old_reference(self, orchestrator, email_outbox, clock):
        first = orchestrator.login(Credentials("alice", ALICE_PASSWORD))
        clock.advance(61)
        second = orchestrator.login(Credentials("alice", ALICE_PASSWORD))
        assert orchestrator.pending_count() == 1
        with pytest.raises(NoActiveChallenge):
            orchestrator.complete_mfa(first.reference, alice_code(email_outbox))
        session = orchestrator.complete_mfa(second.reference, alice_code(email_outbox))
        assert session.mfa_verified

    def test_login_is_audited(self, orchestrator, audit):
        orchestrator.login(Credentials("alice", ALICE_PASSWORD))
        with pytest.raises(InvalidCredentials):
            orchestrator.login(Credentials("alice", "Wr0ng!Password"))
        assert len(audit.get_events_by_type(EventType.LOGIN_SUCCESS)) == 1
        failed = audit.get_events_by_type(EventType.LOGIN_FAILED)
        assert [e.details['reason'] for e in failed] == ["bad_password"]

    def test_audit_records_stage_and_reason(self, orchestrator, audit):
        orchestrator.login(Credentials("alice", ALICE_PASSWORD))
        orchestrator.login(Credentials("bob", BOB_PASSWORD))
        with pytest.raises(InvalidCredentials):
            orchestrator.login(Credentials("mallory", "Wr0ng!Password"))

        succeeded = audit.get_events_by_type(EventType.LOGIN_SUCCESS)
        assert [e.details['stage'] for e in succeeded] == ["password", "complete"]
        failed = audit.get_events_by_type(EventType.LOGIN_FAILED)
        assert [e.details['reason'] for e in failed] == ["unknown_user"]


class TestCompleteMFA:
    """Tests for the second login step."""

    def test_correct_code(self, orchestrator, email_outbox):
        result = orchestrator.login(Credentials("alice", ALICE_PASSWORD))
        session = orchestrator.complete_mfa(result.reference, alice_code(email_outbox))
        assert session.user_id == "u-alice"
        assert session.mfa_verified
        assert orchestrator.pending_count() == 0

    def test_reference_is_single_use(self, orchestrator, email_outbox):
        result = orchestrator.login(Credentials("alice", ALICE_PASSWORD))
        code = alice_code(email_outbox)
        orchestrator.complete_mfa(result.reference, code)
        with pytest.raises(NoActiveChallenge):
            orchestrator.complete_mfa(result.reference, code)

    def test_unknown_reference(self, orchestrator):
        with pytest.raises(NoActiveChallenge):
            orchestrator.complete_mfa("not-a-reference", "123456")
        with pytest.raises(NoActiveChallenge):
            orchestrator.complete_mfa(None, "123456")

    def test_wrong_code_keeps_reference(self, orchestrator, email_outbox):
        result = orchestrator.login(Credentials("alice", ALICE_PASSWORD))
        code = alice_code(email_outbox)
        with pytest.raises(IncorrectCode) as exc_info:
            orchestrator.complete_mfa(result.reference, wrong_code(code))
        assert exc_info.value.attempts_remaining == 4
        assert orchestrator.complete_mfa(result.reference, code).mfa_verified

    def test_expired_code(self, orchestrator, email_outbox, clock):
        result = orchestrator.login(Credentials("alice", ALICE_PASSWORD))
        clock.advance(301)
        with pytest.raises(Expired):
            orchestrator.complete_mfa(result.reference, alice_code(email_outbox))
        assert orchestrator.pending_count() == 0

    def test_lockout_through_complete_mfa(self, orchestrator, email_outbox, clock):
        result = orchestrator.login(Credentials("alice", ALICE_PASSWORD))
        code = alice_code(email_outbox)
        for _ in range(4):
            with pytest.raises(IncorrectCode):
                orchestrator.complete_mfa(result.reference, wrong_code(code))
        with pytest.raises(IncorrectCode) as exc_info:
            orchestrator.complete_mfa(result.reference, wrong_code(code))
        assert exc_info.value.attempts_remaining == 0
        assert orchestrator.pending_count() == 0

        # Correct password is refused while the account is locked
        clock.advance(120)
        with pytest.raises(AccountLocked):
            orchestrator.login(Credentials("alice", ALICE_PASSWORD))

        clock.advance(900)
        again = orchestrator.login(Credentials("alice", ALICE_PASSWORD))
        assert again.requires_mfa

    def test_replayed_code_after_relogin(self, orchestrator, email_outbox, clock):
        first = orchestrator.login(Credentials("alice", ALICE_PASSWORD))
        old_code = alice_code(email_outbox)
        orchestrator.complete_mfa(first.reference, old_code)

        clock.advance(61)
        second = orchestrator.login(Credentials("alice", ALICE_PASSWORD))
        with pytest.raises(AlreadyUsed):
            orchestrator.complete_mfa(second.reference, old_code)
        assert orchestrator.pending_count() == 0


class TestResend:
    """Tests for resending a code on a pending login."""

    def test_resend_inside_cooldown(self, orchestrator):
        result = orchestrator.login(Credentials("alice", ALICE_PASSWORD))
        with pytest.raises(ResendThrottled) as exc_info:
            orchestrator.resend(result.reference)
        assert exc_info.value.retry_after == 61

    def test_resend_after_cooldown(self, orchestrator, email_outbox, clock):
        result = orchestrator.login(Credentials("alice", ALICE_PASSWORD))
        first_code = alice_code(email_outbox)
        clock.advance(60)
        resent = orchestrator.resend(result.reference)
        assert resent.reference == result.reference
        assert resent.expires_at == clock.now() + 300

        new_code = alice_code(email_outbox)
        if new_code != first_code:
            with pytest.raises(IncorrectCode):
                orchestrator.complete_mfa(result.reference, first_code)
        assert orchestrator.complete_mfa(result.reference, new_code).mfa_verified

    def test_resend_switches_channel(self, orchestrator, sms_outbox, clock):
        result = orchestrator.login(Credentials("alice", ALICE_PASSWORD))
        clock.advance(60)
        resent = orchestrator.resend(result.reference, channel=Channel.MOBILE)
        assert resent.channel is Channel.MOBILE
        code = sms_outbox.codes_for("+14155550100")[-1]
        assert orchestrator.complete_mfa(result.reference, code).mfa_verified

    def test_resend_unknown_reference(self, orchestrator):
        with pytest.raises(NoActiveChallenge):
            orchestrator.resend("missing")
