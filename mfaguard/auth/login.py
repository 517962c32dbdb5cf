"""
User Login Module

Primary credential checks and the two-step login flow.

Implements:
- Argon2id credential verification against the user repository
- Rate limiting of failed password attempts per identifier
- Password -> one-time code orchestration with opaque MFA references

Security considerations:
- Unknown users and wrong passwords are indistinguishable to callers
- Unknown users still pay for one Argon2 verification
- Never log sensitive data (passwords, codes, references)
"""

import logging
import secrets
import threading
from collections import defaultdict
from dataclasses import dataclass
from typing import Dict, Optional, Set, Tuple

from ..clock import Clock, SystemClock
from ..config import (
    LOGIN_ATTEMPT_WINDOW_SECONDS, LOGIN_LOCKOUT_SECONDS, MAX_LOGIN_ATTEMPTS,
    AuthPolicy,
)
from ..integration.event_logger import EventLogger
from .errors import (
    AccountLocked, AlreadyUsed, Expired, IncorrectCode, InvalidAddress,
    InvalidCredentials, NoActiveChallenge, UserNotFound,
)
from .models import (
    AuthSession, Channel, Credentials, LoginResult, LoginStatus, User,
)
from .otp import OTPLifecycleManager
from .password import PasswordHasher_
from .repository import UserRepository


logger = logging.getLogger(__name__)


MFA_REFERENCE_BYTES = 32


@dataclass
class LoginAttempt:
    """Track login attempts for rate limiting."""
    attempts: int = 0
    first_attempt_time: float = 0.0
    lockout_until: float = 0.0


class RateLimiter:
    """
    Rate limiter to prevent brute-force password guessing.

    Tracks failed attempts per identifier and enforces a lockout period
    after too many failures inside the window.
    """

    def __init__(self, max_attempts: int = MAX_LOGIN_ATTEMPTS,
                 lockout_duration: int = LOGIN_LOCKOUT_SECONDS,
                 window_seconds: int = LOGIN_ATTEMPT_WINDOW_SECONDS,
                 clock: Optional[Clock] = None):
        """
        Initialize rate limiter.

        Args:
            max_attempts: Maximum failed attempts before lockout
            lockout_duration: Lockout duration in seconds
            window_seconds: Time window for counting attempts
            clock: Time source
        """
        self._attempts: Dict[str, LoginAttempt] = defaultdict(LoginAttempt)
        self._max_attempts = max_attempts
        self._lockout_duration = lockout_duration
        self._window_seconds = window_seconds
        self._clock = clock or SystemClock()
        self._lock = threading.Lock()
        self._last_sweep = self._clock.now()

    @classmethod
    def from_policy(cls, policy: AuthPolicy,
                    clock: Optional[Clock] = None) -> 'RateLimiter':
        return cls(max_attempts=policy.max_login_attempts,
                   lockout_duration=policy.login_lockout_seconds,
                   window_seconds=policy.login_attempt_window_seconds,
                   clock=clock)

    def is_locked_out(self, identifier: str) -> Tuple[bool, int]:
        """
        Check if an identifier is locked out.

        Returns:
            Tuple of (is_locked, seconds_remaining)
        """
        with self._lock:
            attempt = self._attempts.get(identifier)
            if not attempt:
                return False, 0

            now = self._clock.now()
            if attempt.lockout_until > now:
                return True, int(attempt.lockout_until - now) + 1

            # Reset if window has passed
            if now - attempt.first_attempt_time > self._window_seconds:
                del self._attempts[identifier]
            return False, 0

    def record_attempt(self, identifier: str, success: bool) -> None:
        """Record a login attempt. Success clears the identifier's history."""
        with self._lock:
            if success:
                self._attempts.pop(identifier, None)
                return

            now = self._clock.now()
            self._evict_stale(now)
            attempt = self._attempts[identifier]

            if attempt.attempts and now - attempt.first_attempt_time > self._window_seconds:
                attempt = LoginAttempt()
                self._attempts[identifier] = attempt

            if attempt.attempts == 0:
                attempt.first_attempt_time = now
            attempt.attempts += 1

            if attempt.attempts >= self._max_attempts:
                attempt.lockout_until = now + self._lockout_duration
                logger.warning("Login identifier locked out for %ds after %d failures",
                               self._lockout_duration, attempt.attempts)

    def get_remaining_attempts(self, identifier: str) -> int:
        """Get number of remaining login attempts."""
        with self._lock:
            attempt = self._attempts.get(identifier)
            if not attempt:
                return self._max_attempts
            if self._clock.now() - attempt.first_attempt_time > self._window_seconds:
                return self._max_attempts
            return max(0, self._max_attempts - attempt.attempts)

    def reset(self, identifier: str) -> None:
        with self._lock:
            self._attempts.pop(identifier, None)

    def tracked_count(self) -> int:
        """Number of identifiers currently holding attempt history."""
        with self._lock:
            return len(self._attempts)

    def _evict_stale(self, now: float) -> None:
        """
        Drop identifiers whose window and lockout have both passed.

        Runs at most once per window. Caller holds the lock.
        """
        if now - self._last_sweep < self._window_seconds:
            return
        self._last_sweep = now
        stale = [
            key for key, attempt in self._attempts.items()
            if attempt.lockout_until <= now
            and now - attempt.first_attempt_time > self._window_seconds
        ]
        for key in stale:
            del self._attempts[key]
        if stale:
            logger.debug("Evicted %d stale login identifiers", len(stale))


class CredentialValidator:
    """
    Checks a username/email and password against the user repository.

    Example:
        >>> validator = CredentialValidator(repo)
        >>> validator.authenticate(Credentials("alice", "Str0ng!Passw0rd"))
        'u1'
    """

    def __init__(self, repository: UserRepository,
                 hasher: Optional[PasswordHasher_] = None,
                 clock: Optional[Clock] = None):
        self._repo = repository
        self._hasher = hasher or PasswordHasher_()
        self._clock = clock or SystemClock()
        self._dummy_hash: Optional[str] = None

    def _burn_verification(self, secret: str) -> None:
        """Spend one Argon2 verification so unknown users take as long as known ones."""
        if self._dummy_hash is None:
            self._dummy_hash = self._hasher.hash_password(secrets.token_urlsafe(16))
        self._hasher.verify_password(secret, self._dummy_hash)

    def authenticate(self, credentials: Credentials) -> str:
        """
        Verify primary credentials.

        Args:
            credentials: Identifier (username or email) and password

        Returns:
            The authenticated user's id

        Raises:
            InvalidCredentials: Empty input or wrong password
            UserNotFound: No user matches the identifier
            AccountLocked: The account is locked
        """
        identifier = (credentials.identifier or "").strip()
        if not identifier or not credentials.secret:
            raise InvalidCredentials()

        user = self._repo.find_by_identifier(identifier)
        if user is None:
            self._burn_verification(credentials.secret)
            raise UserNotFound()

        # Verify before the lock check so every known user costs one Argon2 run
        password_ok = self._hasher.verify_password(credentials.secret, user.password_hash)

        now = self._clock.now()
        if user.is_locked(now):
            raise AccountLocked(retry_after=user.lock_remaining(now))

        if not password_ok:
            raise InvalidCredentials()

        return user.user_id


@dataclass
class PendingMFA:
    """Server-side state behind an MFA reference."""
    user_id: str
    channel: Channel
    expires_at: float


class AuthenticationOrchestrator:
    """
    Runs the password -> one-time code login flow.

    Example:
        >>> result = orchestrator.login(Credentials("alice", "Str0ng!Passw0rd"))
        >>> result.requires_mfa
        True
        >>> session = orchestrator.complete_mfa(result.reference, "042917")
        >>> session.mfa_verified
        True
    """

    def __init__(self, repository: UserRepository,
                 lifecycle: OTPLifecycleManager,
                 validator: Optional[CredentialValidator] = None,
                 rate_limiter: Optional[RateLimiter] = None,
                 clock: Optional[Clock] = None,
                 audit: Optional[EventLogger] = None):
        """
        Initialize the orchestrator.

        Args:
            repository: User store
            lifecycle: OTP lifecycle manager
            validator: Credential validator (built on ``repository`` if None)
            rate_limiter: Failed-password limiter (built from the policy if None)
            clock: Time source
            audit: Optional security audit log
        """
        self._repo = repository
        self._lifecycle = lifecycle
        self._clock = clock or SystemClock()
        self._validator = validator or CredentialValidator(repository, clock=self._clock)
        self._rate_limiter = rate_limiter or RateLimiter.from_policy(
            lifecycle.policy, clock=self._clock)
        self._audit = audit

        self._pending: Dict[str, PendingMFA] = {}
        self._user_refs: Dict[str, Set[str]] = defaultdict(set)
        self._pending_lock = threading.Lock()

    @property
    def rate_limiter(self) -> RateLimiter:
        return self._rate_limiter

    def close(self) -> None:
        """Shut down code delivery. Pending references are discarded."""
        with self._pending_lock:
            self._pending.clear()
            self._user_refs.clear()
        self._lifecycle.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.close()

    def _audit_login(self, user_ref: str, success: bool, **details) -> None:
        if self._audit is not None:
            self._audit.log_login(user_ref, success, **details)

    # ========================================================================
    # Pending references
    # ========================================================================

    def _register(self, user_id: str, channel: Channel, expires_at: float) -> str:
        reference = secrets.token_urlsafe(MFA_REFERENCE_BYTES)
        now = self._clock.now()
        with self._pending_lock:
            self._prune_pending(now)
            for old in self._user_refs.pop(user_id, set()):
                self._pending.pop(old, None)
            self._pending[reference] = PendingMFA(user_id, channel, expires_at)
            self._user_refs[user_id].add(reference)
        return reference

    def _lookup(self, reference: str) -> PendingMFA:
        with self._pending_lock:
            pending = self._pending.get(reference or "")
        if pending is None:
            raise NoActiveChallenge()
        return pending

    def _drop(self, reference: str) -> None:
        with self._pending_lock:
            pending = self._pending.pop(reference, None)
            if pending is not None:
                refs = self._user_refs.get(pending.user_id)
                if refs is not None:
                    refs.discard(reference)
                    if not refs:
                        del self._user_refs[pending.user_id]

    def _prune_pending(self, now: float) -> None:
        """Forget references well past their challenge expiry. Caller holds the lock."""
        grace = self._lifecycle.policy.otp_ttl_seconds
        stale = [ref for ref, p in self._pending.items() if now > p.expires_at + grace]
        for ref in stale:
            pending = self._pending.pop(ref)
            refs = self._user_refs.get(pending.user_id)
            if refs is not None:
                refs.discard(ref)
                if not refs:
                    del self._user_refs[pending.user_id]

    def pending_count(self) -> int:
        with self._pending_lock:
            return len(self._pending)

    # ========================================================================
    # Login flow
    # ========================================================================

    def _check_primary(self, credentials: Credentials) -> str:
        key = (credentials.identifier or "").strip().lower()
        is_locked, remaining = self._rate_limiter.is_locked_out(key)
        if is_locked:
            self._audit_login(key, False, reason="rate_limited")
            raise AccountLocked(retry_after=remaining)

        try:
            user_id = self._validator.authenticate(credentials)
        except UserNotFound:
            self._rate_limiter.record_attempt(key, False)
            logger.info("Login attempt for unknown identifier")
            self._audit_login(key, False, reason="unknown_user")
            raise InvalidCredentials() from None
        except InvalidCredentials:
            self._rate_limiter.record_attempt(key, False)
            logger.info("Login with invalid credentials")
            self._audit_login(key, False, reason="bad_password")
            raise
        except AccountLocked:
            self._audit_login(key, False, reason="locked")
            raise

        self._rate_limiter.record_attempt(key, True)
        return user_id

    def _pick_channel(self, user: User, channel: Optional[Channel]) -> Channel:
        if channel is not None:
            return channel
        for candidate in (Channel.EMAIL, Channel.MOBILE):
            if user.address_for(candidate):
                return candidate
        raise InvalidAddress("No contact address on file")

    def login(self, credentials: Credentials,
              channel: Optional[Channel] = None) -> LoginResult:
        """
        First login step.

        Args:
            credentials: Identifier and password
            channel: Where to send the code (first available if None)

        Returns:
            AUTHENTICATED result, or PENDING_MFA with a reference

        Raises:
            InvalidCredentials: Unknown user or wrong password
            AccountLocked: Account or identifier locked out
            ResendThrottled: A code was sent moments ago; the earlier
                reference stays valid
            InvalidAddress: No valid address for the channel
            TransportFailure: The code could not be delivered
        """
        user_id = self._check_primary(credentials)
        user = self._repo.find(user_id)
        if user is None:
            raise InvalidCredentials()

        if not user.mfa_enabled:
            logger.info("User %s authenticated without MFA", user_id)
            self._audit_login(user_id, True, stage="complete")
            return LoginResult(
                status=LoginStatus.AUTHENTICATED,
                user_id=user_id,
                session=AuthSession(user_id, self._clock.now(), mfa_verified=False),
            )

        selected = self._pick_channel(user, channel)
        challenge = self._lifecycle.issue_challenge(user_id, selected)
        reference = self._register(user_id, selected, challenge.expires_at)

        self._audit_login(user_id, True, stage="password")
        return LoginResult(
            status=LoginStatus.PENDING_MFA,
            user_id=user_id,
            reference=reference,
            channel=selected,
            expires_at=challenge.expires_at,
        )

    def complete_mfa(self, reference: str, code: str) -> AuthSession:
        """
        Second login step.

        Args:
            reference: Reference from the PENDING_MFA result
            code: One-time code the user received

        Returns:
            Session marker for the authenticated user

        Raises:
            NoActiveChallenge: Unknown or spent reference
            IncorrectCode: Wrong code; the reference stays usable unless
                this attempt locked the account
            Expired, AlreadyUsed, AccountLocked: Terminal for the reference
        """
        pending = self._lookup(reference)
        try:
            self._lifecycle.validate(pending.user_id, code)
        except IncorrectCode as e:
            if e.attempts_remaining == 0:
                self._drop(reference)
            raise
        except (Expired, AlreadyUsed, NoActiveChallenge, AccountLocked):
            self._drop(reference)
            raise
        except UserNotFound:
            self._drop(reference)
            raise NoActiveChallenge() from None

        self._drop(reference)
        logger.info("User %s completed MFA", pending.user_id)
        return AuthSession(pending.user_id, self._clock.now(), mfa_verified=True)

    def resend(self, reference: str,
               channel: Optional[Channel] = None) -> LoginResult:
        """
        Send a fresh code for a pending login.

        Raises:
            NoActiveChallenge: Unknown reference
            ResendThrottled: Inside the cooldown
            AccountLocked, InvalidAddress, TransportFailure: As for ``login``
        """
        pending = self._lookup(reference)
        selected = channel or pending.channel
        challenge = self._lifecycle.issue_challenge(pending.user_id, selected)
        with self._pending_lock:
            pending.channel = selected
            pending.expires_at = challenge.expires_at
        return LoginResult(
            status=LoginStatus.PENDING_MFA,
            user_id=pending.user_id,
            reference=reference,
            channel=selected,
            expires_at=challenge.expires_at,
        )
