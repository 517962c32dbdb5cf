"""Shared fixtures: a manual clock, a fast hasher and a wired-up stack."""

import pytest

from mfaguard.auth.login import AuthenticationOrchestrator, CredentialValidator, RateLimiter
from mfaguard.auth.models import Channel, User
from mfaguard.auth.otp import OTPLifecycleManager
from mfaguard.auth.password import PasswordHasher_
from mfaguard.auth.repository import InMemoryUserRepository
from mfaguard.clock import ManualClock
from mfaguard.config import AuthPolicy
from mfaguard.integration.event_logger import EventLogger
from mfaguard.messaging.dispatcher import InMemoryTransport, NotificationDispatcher


START_TIME = 1_700_000_000.0
ALICE_PASSWORD = "Str0ng!Passw0rd"
BOB_PASSWORD = "An0ther#Secret9"


def wrong_code(code: str) -> str:
    """A code of the same length that is guaranteed to differ."""
    return "0" * len(code) if code != "0" * len(code) else "1" * len(code)


@pytest.fixture(scope="session")
def hasher():
    # Cheap parameters keep the suite fast
    return PasswordHasher_(time_cost=1, memory_cost=1024, parallelism=1)


@pytest.fixture
def clock():
    return ManualClock(START_TIME)


@pytest.fixture
def policy():
    return AuthPolicy(
        otp_length=6,
        otp_ttl_seconds=300,
        resend_cooldown_seconds=60,
        max_failed_otp_attempts=5,
        lockout_duration_seconds=900,
        max_login_attempts=5,
        dispatch_timeout_seconds=1.0,
    )


@pytest.fixture
def repo(hasher):
    repo = InMemoryUserRepository()
    repo.add(User(
        user_id="u-alice",
        username="alice",
        password_hash=hasher.hash_password(ALICE_PASSWORD),
        email="alice@example.com",
        mobile="+14155550100",
    ))
    repo.add(User(
        user_id="u-bob",
        username="bob",
        password_hash=hasher.hash_password(BOB_PASSWORD),
        email="bob@example.com",
        mfa_enabled=False,
    ))
    return repo


@pytest.fixture
def email_outbox():
    return InMemoryTransport()


@pytest.fixture
def sms_outbox():
    return InMemoryTransport()


@pytest.fixture
def dispatcher(email_outbox, sms_outbox):
    dispatcher = NotificationDispatcher(
        {Channel.EMAIL: email_outbox, Channel.MOBILE: sms_outbox}, timeout=1.0)
    yield dispatcher
    dispatcher.close()


@pytest.fixture
def audit(clock):
    return EventLogger(clock=clock.now)


@pytest.fixture
def lifecycle(repo, dispatcher, policy, clock, audit):
    return OTPLifecycleManager(repo, dispatcher, policy=policy, clock=clock, audit=audit)


@pytest.fixture
def orchestrator(repo, lifecycle, hasher, policy, clock, audit):
    return AuthenticationOrchestrator(
        repo,
        lifecycle,
        validator=CredentialValidator(repo, hasher=hasher, clock=clock),
        rate_limiter=RateLimiter.from_policy(policy, clock=clock),
        clock=clock,
        audit=audit,
    )
