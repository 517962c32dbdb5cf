"""
One-Time Password Module

Issues, delivers and validates short-lived numeric codes.

Features:
- CSPRNG code generation (fixed width, zero-padded)
- Keyed HMAC-SHA256 code digests (HKDF-derived key); codes are never stored
- Expiry (TTL), resend cooldown, reuse history
- Failure counting with account lockout
- Per-user serialization of every state transition

State machine per user:

    NO_CHALLENGE -> PENDING -> CONSUMED
                            -> EXPIRED
    any state    -> LOCKED_OUT (after too many incorrect codes)
"""

import logging
import secrets
import threading
from dataclasses import replace
from typing import TYPE_CHECKING, Dict, Optional

from cryptography.hazmat.primitives import constant_time, hashes, hmac
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from ..clock import Clock, SystemClock
from ..config import AuthPolicy, load_policy
from ..integration.event_logger import EventLogger, EventType
from .errors import (
    AccountLocked, AlreadyUsed, Expired, IncorrectCode, InvalidAddress,
    NoActiveChallenge, ResendThrottled, TransportFailure, UserNotFound,
)
from .models import Channel, ChallengeState, OTPChallenge, UsedOTP, User
from .repository import UserRepository

if TYPE_CHECKING:
    from ..messaging.dispatcher import NotificationDispatcher


logger = logging.getLogger(__name__)


OTP_MIN_LENGTH = 4
OTP_MAX_LENGTH = 10
DIGEST_KEY_BYTES = 32
DIGEST_KEY_INFO = b"mfaguard otp digest"
# Attempts at drawing a code that is not in the reuse history
MAX_GENERATION_ATTEMPTS = 20


# ============================================================================
# Generation
# ============================================================================

def generate_otp(length: int = 6, random_source=None) -> str:
    """
    Generate a numeric one-time code.

    Args:
        length: Number of digits (4-10)
        random_source: Object with ``randrange``; a CSPRNG if None

    Returns:
        Zero-padded string of ``length`` digits
    """
    if not OTP_MIN_LENGTH <= length <= OTP_MAX_LENGTH:
        raise ValueError(
            f"OTP length must be between {OTP_MIN_LENGTH} and {OTP_MAX_LENGTH}")
    rng = random_source or secrets.SystemRandom()
    return str(rng.randrange(10 ** length)).zfill(length)


class OTPGenerator:
    """
    Fixed-length numeric code generator.

    Example:
        >>> gen = OTPGenerator()
        >>> code = gen.generate()
        >>> len(code), code.isdigit()
        (6, True)
    """

    def __init__(self, length: int = 6, random_source=None):
        if not OTP_MIN_LENGTH <= length <= OTP_MAX_LENGTH:
            raise ValueError(
                f"OTP length must be between {OTP_MIN_LENGTH} and {OTP_MAX_LENGTH}")
        self._length = length
        self._random = random_source or secrets.SystemRandom()

    @property
    def length(self) -> int:
        return self._length

    def generate(self) -> str:
        return generate_otp(self._length, self._random)


# ============================================================================
# Digests
# ============================================================================

def derive_digest_key(master_secret: bytes, salt: Optional[bytes] = None) -> bytes:
    """
    Derive the OTP digest key with HKDF-SHA256.

    Args:
        master_secret: Input key material
        salt: Optional salt

    Returns:
        32-byte key
    """
    hkdf = HKDF(
        algorithm=hashes.SHA256(),
        length=DIGEST_KEY_BYTES,
        salt=salt,
        info=DIGEST_KEY_INFO,
    )
    return hkdf.derive(master_secret)


class CodeDigester:
    """
    Keyed digests of one-time codes.

    HMAC-SHA256 over the user id and the code. The same digits issued to
    two users produce different digests.
    """

    def __init__(self, master_secret: Optional[bytes] = None):
        self._key = derive_digest_key(master_secret or secrets.token_bytes(32))

    def digest(self, user_id: str, code: str) -> bytes:
        mac = hmac.HMAC(self._key, hashes.SHA256())
        mac.update(user_id.encode())
        mac.update(b"\x00")
        mac.update(code.encode())
        return mac.finalize()

    def matches(self, user_id: str, code: str, expected: bytes) -> bool:
        """Constant-time comparison of ``code`` against a stored digest."""
        return constant_time.bytes_eq(self.digest(user_id, code), expected)


# ============================================================================
# Lifecycle
# ============================================================================

class OTPLifecycleManager:
    """
    Issues and validates OTP challenges and enforces lockout.

    Every operation on a user runs under that user's lock across the whole
    repository read-modify-write, so a code can be consumed exactly once even
    when submissions race.

    Example:
        >>> manager = OTPLifecycleManager(repo, dispatcher)
        >>> challenge = manager.issue_challenge("u1", Channel.EMAIL)
        >>> manager.validate("u1", challenge.code)
        >>> manager.state("u1")
        <ChallengeState.CONSUMED: 'consumed'>
    """

    def __init__(self, repository: UserRepository,
                 dispatcher: "NotificationDispatcher",
                 policy: Optional[AuthPolicy] = None,
                 clock: Optional[Clock] = None,
                 generator: Optional[OTPGenerator] = None,
                 digester: Optional[CodeDigester] = None,
                 audit: Optional[EventLogger] = None):
        """
        Initialize the lifecycle manager.

        Args:
            repository: User store
            dispatcher: Delivers codes to users
            policy: TTL, cooldown and lockout settings
            clock: Time source
            generator: Code generator (sized from the policy if None)
            digester: Code digester (keyed from the policy if None)
            audit: Optional security audit log
        """
        self._repo = repository
        self._dispatcher = dispatcher
        self._policy = policy or load_policy()
        self._clock = clock or SystemClock()
        self._generator = generator or OTPGenerator(self._policy.otp_length)
        if digester is None:
            key = self._policy.otp_digest_key
            digester = CodeDigester(key.encode() if key else None)
        self._digester = digester
        self._audit = audit

        self._user_locks: Dict[str, threading.Lock] = {}
        self._registry_lock = threading.Lock()

    @property
    def policy(self) -> AuthPolicy:
        return self._policy

    def _lock_for(self, user_id: str) -> threading.Lock:
        with self._registry_lock:
            lock = self._user_locks.get(user_id)
            if lock is None:
                lock = self._user_locks[user_id] = threading.Lock()
            return lock

    def _load(self, user_id: str) -> User:
        user = self._repo.find(user_id)
        if user is None:
            raise UserNotFound()
        return user

    def _audit_event(self, event_type: EventType, user_id: str, **details) -> None:
        if self._audit is not None:
            self._audit.record(event_type, user_id, **details)

    def _audit_mfa(self, user_id: str, success: bool, **details) -> None:
        if self._audit is not None:
            self._audit.log_mfa(user_id, success, **details)

    def _release_expired_lock(self, user: User, now: float) -> None:
        """Lift a timed lock that has run out. Caller holds the user lock."""
        if user.locked and not user.is_locked(now):
            self._repo.unlock(user.user_id)
            user.locked = False
            user.lock_expiry = None
            user.failed_otp_count = 0
            logger.info("Lockout expired for user %s", user.user_id)
            self._audit_event(EventType.ACCOUNT_UNLOCKED, user.user_id,
                              reason="expired")

    def _ensure_unlocked(self, user: User, now: float) -> None:
        self._release_expired_lock(user, now)
        if user.is_locked(now):
            raise AccountLocked(retry_after=user.lock_remaining(now))

    def _prune_history(self, user: User, now: float) -> None:
        horizon = now - self._policy.reuse_history_retention_seconds
        user.used_otp_history = {
            used for used in user.used_otp_history if used.issued_at >= horizon
        }

    def _is_spent(self, user: User, code: str) -> bool:
        return any(
            self._digester.matches(user.user_id, code, used.otp_digest)
            for used in user.used_otp_history
        )

    def _fresh_code(self, user: User) -> str:
        for _ in range(MAX_GENERATION_ATTEMPTS):
            code = self._generator.generate()
            if not self._is_spent(user, code):
                return code
        raise RuntimeError("Could not generate an unused one-time code")

    # ========================================================================
    # Operations
    # ========================================================================

    def issue_challenge(self, user_id: str, channel: Channel) -> OTPChallenge:
        """
        Generate, deliver and record a new challenge.

        Replaces any earlier challenge and resets the failure count.

        Args:
            user_id: Target user
            channel: Delivery channel

        Returns:
            The new challenge, with ``code`` filled in

        Raises:
            UserNotFound: Unknown user
            AccountLocked: User is locked out
            ResendThrottled: Inside the resend cooldown
            InvalidAddress: No valid address for ``channel``
            TransportFailure: Delivery failed; the cooldown still applies
        """
        with self._lock_for(user_id):
            now = self._clock.now()
            user = self._load(user_id)
            self._ensure_unlocked(user, now)

            if user.resend_disabled_until is not None and now < user.resend_disabled_until:
                retry_after = int(user.resend_disabled_until - now) + 1
                logger.info("Resend throttled for user %s (%ds left)",
                            user_id, retry_after)
                self._audit_event(EventType.RESEND_THROTTLED, user_id,
                                  retry_after=retry_after)
                raise ResendThrottled(retry_after=retry_after)

            self._prune_history(user, now)
            code = self._fresh_code(user)
            challenge = OTPChallenge(
                code_digest=self._digester.digest(user_id, code),
                issued_at=now,
                expires_at=now + self._policy.otp_ttl_seconds,
                channel=channel,
            )

            try:
                self._dispatcher.send(user, channel, code, challenge.ttl_seconds)
            except InvalidAddress:
                logger.info("User %s has no valid %s address",
                            user_id, channel.value)
                raise
            except TransportFailure:
                # The old code is superseded and the cooldown starts anyway
                user.challenge = None
                self._start_cooldown(user, now)
                self._repo.save(user)
                self._audit_event(EventType.DISPATCH_FAILED, user_id,
                                  channel=channel.value)
                raise

            user.challenge = challenge
            user.failed_otp_count = 0
            user.last_issued_at = now
            self._start_cooldown(user, now)
            self._repo.save(user)

            logger.info("Issued %s challenge to user %s, expires at %.0f",
                        channel.value, user_id, challenge.expires_at)
            self._audit_event(EventType.MFA_CHALLENGE_ISSUED, user_id,
                              channel=channel.value)
            return replace(challenge, code=code)

    def validate(self, user_id: str, submitted_code: str) -> None:
        """
        Check a submitted code against the user's pending challenge.

        Args:
            user_id: Target user
            submitted_code: Code entered by the user

        Raises:
            UserNotFound: Unknown user
            AccountLocked: User is locked out
            AlreadyUsed: Code was consumed before
            NoActiveChallenge: Nothing pending
            Expired: Pending challenge is past its TTL
            IncorrectCode: Code does not match
        """
        code = (submitted_code or "").strip()
        with self._lock_for(user_id):
            now = self._clock.now()
            user = self._load(user_id)
            self._ensure_unlocked(user, now)

            # A spent code is rejected even while its TTL would still allow it
            if code and self._is_spent(user, code):
                logger.warning("Replay of a consumed code for user %s", user_id)
                self._audit_mfa(user_id, False,
                                reason="already_used")
                raise AlreadyUsed()

            challenge = user.challenge
            if challenge is None or challenge.consumed or challenge.expired:
                raise NoActiveChallenge()

            if challenge.is_expired(now):
                challenge.expired = True
                self._repo.save(user)
                self._audit_mfa(user_id, False, reason="expired")
                raise Expired()

            if not self._digester.matches(user_id, code, challenge.code_digest):
                raise self._record_failure(user, now)

            challenge.consumed = True
            user.used_otp_history.add(
                UsedOTP(otp_digest=challenge.code_digest,
                        issued_at=challenge.issued_at))
            user.failed_otp_count = 0
            self._repo.save(user)

            logger.info("User %s verified one-time code", user_id)
            self._audit_mfa(user_id, True)

    def _record_failure(self, user: User, now: float) -> IncorrectCode:
        """Count an incorrect code, locking on the last allowed one."""
        user.failed_otp_count += 1
        remaining = max(0, self._policy.max_failed_otp_attempts - user.failed_otp_count)
        self._audit_mfa(user.user_id, False,
                        reason="incorrect_code", attempts_remaining=remaining)

        if remaining == 0:
            until = None
            if not self._policy.lockout_is_permanent:
                until = now + self._policy.lockout_duration_seconds
            user.challenge = None
            user.locked = True
            user.lock_expiry = until
            self._repo.save(user)
            self._repo.lock(user.user_id, until)
            logger.warning("User %s locked after %d incorrect codes",
                           user.user_id, user.failed_otp_count)
            self._audit_event(EventType.ACCOUNT_LOCKED, user.user_id,
                              failed_attempts=user.failed_otp_count,
                              permanent=until is None)
        else:
            self._repo.save(user)
            logger.info("Incorrect code for user %s, %d attempts left",
                        user.user_id, remaining)

        return IncorrectCode(attempts_remaining=remaining)

    def _start_cooldown(self, user: User, now: float) -> None:
        user.resend_disabled_until = now + self._policy.resend_cooldown_seconds

    def disable_resend(self, user_id: str) -> None:
        """Block new challenges for the cooldown period, starting now."""
        with self._lock_for(user_id):
            user = self._load(user_id)
            self._start_cooldown(user, self._clock.now())
            self._repo.save(user)

    def unlock(self, user_id: str) -> None:
        """Lift a lockout and clear the failure count."""
        with self._lock_for(user_id):
            self._load(user_id)
            self._repo.unlock(user_id)
            logger.info("User %s unlocked", user_id)
            self._audit_event(EventType.ACCOUNT_UNLOCKED, user_id, reason="manual")

    def close(self) -> None:
        """Release the dispatcher's delivery workers."""
        self._dispatcher.close()

    def state(self, user_id: str) -> ChallengeState:
        """Current lifecycle state for a user."""
        with self._lock_for(user_id):
            now = self._clock.now()
            user = self._load(user_id)
            if user.is_locked(now):
                return ChallengeState.LOCKED_OUT
            challenge = user.challenge
            if challenge is None:
                return ChallengeState.NO_CHALLENGE
            if challenge.is_active(now):
                return ChallengeState.PENDING
            if challenge.consumed:
                return ChallengeState.CONSUMED
            return ChallengeState.EXPIRED
