"""
Wiring helpers.

Builds a ready-to-use orchestrator from a repository and transports.
"""

from typing import Dict, Optional

from .auth.login import AuthenticationOrchestrator, CredentialValidator, RateLimiter
from .auth.models import Channel
from .auth.otp import OTPLifecycleManager
from .auth.password import PasswordHasher_
from .auth.repository import UserRepository
from .clock import Clock, SystemClock
from .config import AuthPolicy, load_policy
from .integration.event_logger import EventLogger
from .messaging.dispatcher import NotificationDispatcher, NotificationTransport


def create_authenticator(repository: UserRepository,
                         transports: Dict[Channel, NotificationTransport],
                         policy: Optional[AuthPolicy] = None,
                         clock: Optional[Clock] = None,
                         hasher: Optional[PasswordHasher_] = None,
                         audit: Optional[EventLogger] = None
                         ) -> AuthenticationOrchestrator:
    """
    Create an orchestrator with its dispatcher, lifecycle manager and limiter.

    Args:
        repository: User store
        transports: Transport per delivery channel
        policy: Policy settings (environment defaults if None)
        clock: Time source shared by every component
        hasher: Password hasher for credential checks
        audit: Optional audit log shared by every component

    Returns:
        Configured AuthenticationOrchestrator. It owns a worker pool;
        call ``close()`` or use it as a context manager.
    """
    policy = policy or load_policy()
    clock = clock or SystemClock()
    dispatcher = NotificationDispatcher(
        transports,
        timeout=policy.dispatch_timeout_seconds,
        issuer=policy.issuer,
    )
    lifecycle = OTPLifecycleManager(
        repository, dispatcher, policy=policy, clock=clock, audit=audit)
    return AuthenticationOrchestrator(
        repository,
        lifecycle,
        validator=CredentialValidator(repository, hasher=hasher, clock=clock),
        rate_limiter=RateLimiter.from_policy(policy, clock=clock),
        clock=clock,
        audit=audit,
    )
