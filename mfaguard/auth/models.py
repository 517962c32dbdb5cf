"""
Authentication data model.

Plain dataclasses for users, credentials, OTP challenges and login outcomes.
The core never mutates a User in place outside the lifecycle manager; changes
reach storage only through the repository.
"""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Set


class Channel(Enum):
    """Delivery channels for one-time codes."""
    EMAIL = "email"
    MOBILE = "mobile"


class ChallengeState(Enum):
    """Lifecycle state of a user's OTP challenge."""
    NO_CHALLENGE = "no_challenge"
    PENDING = "pending"
    CONSUMED = "consumed"
    EXPIRED = "expired"
    LOCKED_OUT = "locked_out"


class LoginStatus(Enum):
    AUTHENTICATED = "authenticated"
    PENDING_MFA = "pending_mfa"


@dataclass(frozen=True)
class Credentials:
    """Transient login input. Never stored."""
    identifier: str
    secret: str = field(repr=False)


@dataclass(frozen=True)
class UsedOTP:
    """Reuse-history entry: digest of a consumed code and when it was issued."""
    otp_digest: bytes
    issued_at: float


@dataclass
class OTPChallenge:
    """
    An issued one-time code.

    Only the keyed digest is stored; ``code`` is filled in solely on the copy
    handed back to whoever issued the challenge.
    """
    code_digest: bytes = field(repr=False)
    issued_at: float
    expires_at: float
    channel: Channel
    consumed: bool = False
    expired: bool = False
    code: Optional[str] = field(default=None, repr=False, compare=False)

    def is_expired(self, now: float) -> bool:
        """True once ``now`` is past the expiry timestamp."""
        return self.expired or now > self.expires_at

    def is_active(self, now: float) -> bool:
        return not self.consumed and not self.is_expired(now)

    @property
    def ttl_seconds(self) -> int:
        return int(self.expires_at - self.issued_at)


@dataclass
class User:
    """
    Identity record owned by the user repository.

    Attributes:
        user_id: Stable unique identifier
        username: Login name
        password_hash: Argon2id hash of the primary secret
        email: Address for the EMAIL channel
        mobile: E.164 number for the MOBILE channel
        mfa_enabled: Whether login requires a one-time code
        locked: Lockout flag
        lock_expiry: When a timed lockout lifts (None = until unlocked)
        failed_otp_count: Consecutive incorrect codes
        resend_disabled_until: End of the resend cooldown
        last_issued_at: When the last challenge was issued
        used_otp_history: Digests of consumed codes
        challenge: Current (possibly spent) challenge
    """
    user_id: str
    username: str
    password_hash: str = field(repr=False)
    email: Optional[str] = None
    mobile: Optional[str] = None
    mfa_enabled: bool = True
    locked: bool = False
    lock_expiry: Optional[float] = None
    failed_otp_count: int = 0
    resend_disabled_until: Optional[float] = None
    last_issued_at: Optional[float] = None
    used_otp_history: Set[UsedOTP] = field(default_factory=set, repr=False)
    challenge: Optional[OTPChallenge] = None

    def address_for(self, channel: Channel) -> Optional[str]:
        """Contact address for a delivery channel."""
        if channel is Channel.EMAIL:
            return self.email
        if channel is Channel.MOBILE:
            return self.mobile
        return None

    def is_locked(self, now: float) -> bool:
        """True while the lockout is in force at ``now``."""
        if not self.locked:
            return False
        return self.lock_expiry is None or now < self.lock_expiry

    def lock_remaining(self, now: float) -> Optional[int]:
        """Seconds until the lock lifts, None for a permanent lock."""
        if self.lock_expiry is None:
            return None
        return max(0, int(self.lock_expiry - now))


@dataclass(frozen=True)
class AuthSession:
    """Marker for a fully authenticated login. Carries no token."""
    user_id: str
    authenticated_at: float = field(default_factory=time.time)
    mfa_verified: bool = False


@dataclass(frozen=True)
class LoginResult:
    """
    Outcome of a successful ``login`` step.

    ``session`` is set when authentication is complete; otherwise
    ``reference`` must be passed back with the one-time code.
    """
    status: LoginStatus
    user_id: str
    session: Optional[AuthSession] = None
    reference: Optional[str] = field(default=None, repr=False)
    channel: Optional[Channel] = None
    expires_at: Optional[float] = None

    @property
    def authenticated(self) -> bool:
        return self.status is LoginStatus.AUTHENTICATED

    @property
    def requires_mfa(self) -> bool:
        return self.status is LoginStatus.PENDING_MFA
