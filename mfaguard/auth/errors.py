"""
Authentication error taxonomy.

Every failure the core reports is an ``AuthError`` subclass carrying a stable
``kind`` and a message that is safe to show to the end user. None of them are
fatal; only ``TransportFailure`` is worth retrying as-is.
"""

from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Sequence


class ErrorKind(Enum):
    """Stable identifiers for every failure the core can report."""

    INVALID_CREDENTIALS = "invalid_credentials"
    USER_NOT_FOUND = "user_not_found"
    ACCOUNT_LOCKED = "account_locked"
    RESEND_THROTTLED = "resend_throttled"
    NO_ACTIVE_CHALLENGE = "no_active_challenge"
    EXPIRED = "expired"
    ALREADY_USED = "already_used"
    INCORRECT_CODE = "incorrect_code"
    INVALID_ADDRESS = "invalid_address"
    TRANSPORT_FAILURE = "transport_failure"
    TOO_SHORT = "too_short"
    MISSING_CHARACTER_CLASS = "missing_character_class"
    CONTAINS_IDENTIFIER = "contains_identifier"


# Shared by InvalidCredentials and UserNotFound so the two are indistinguishable
INVALID_LOGIN_MESSAGE = "Invalid username or password"


class AuthError(Exception):
    """Base class for all authentication failures."""

    kind: ErrorKind = ErrorKind.INVALID_CREDENTIALS
    default_message = "Authentication failed"
    retryable = False

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or self.default_message)

    @property
    def message(self) -> str:
        return self.args[0]


# ============================================================================
# Primary credentials
# ============================================================================

class InvalidCredentials(AuthError):
    kind = ErrorKind.INVALID_CREDENTIALS
    default_message = INVALID_LOGIN_MESSAGE


class UserNotFound(AuthError):
    """
    Raised when an identifier matches no user.

    Internal only: the orchestrator converts it to ``InvalidCredentials``
    before it reaches the caller.
    """

    kind = ErrorKind.USER_NOT_FOUND
    default_message = INVALID_LOGIN_MESSAGE


class AccountLocked(AuthError):
    """
    Raised when the account (or login identifier) is locked out.

    Attributes:
        retry_after: Seconds until the lock lifts, None if it is permanent
    """

    kind = ErrorKind.ACCOUNT_LOCKED
    default_message = "Account is locked due to too many failed attempts"

    def __init__(self, message: Optional[str] = None,
                 retry_after: Optional[int] = None):
        super().__init__(message)
        self.retry_after = retry_after


# ============================================================================
# OTP challenges
# ============================================================================

class OTPError(AuthError):
    """Base class for one-time password failures."""


class ResendThrottled(OTPError):
    """
    Raised when a new code is requested inside the resend cooldown.

    Attributes:
        retry_after: Seconds until a new code may be requested
    """

    kind = ErrorKind.RESEND_THROTTLED
    default_message = "Please wait before requesting a new code"

    def __init__(self, message: Optional[str] = None, retry_after: int = 0):
        super().__init__(message)
        self.retry_after = retry_after


class NoActiveChallenge(OTPError):
    kind = ErrorKind.NO_ACTIVE_CHALLENGE
    default_message = "No verification code is pending"


class Expired(OTPError):
    kind = ErrorKind.EXPIRED
    default_message = "Verification code has expired"


class AlreadyUsed(OTPError):
    kind = ErrorKind.ALREADY_USED
    default_message = "Verification code has already been used"


class IncorrectCode(OTPError):
    """
    Raised when the submitted code does not match the pending challenge.

    Attributes:
        attempts_remaining: Mismatches left before the account locks
    """

    kind = ErrorKind.INCORRECT_CODE
    default_message = "Invalid verification code"

    def __init__(self, message: Optional[str] = None,
                 attempts_remaining: int = 0):
        super().__init__(message)
        self.attempts_remaining = attempts_remaining


# ============================================================================
# Delivery
# ============================================================================

class DispatchError(AuthError):
    """Base class for code delivery failures."""


class InvalidAddress(DispatchError):
    kind = ErrorKind.INVALID_ADDRESS
    default_message = "No valid address for the selected channel"


class TransportFailure(DispatchError):
    """Delivery failed or timed out. The caller may retry after the cooldown."""

    kind = ErrorKind.TRANSPORT_FAILURE
    default_message = "Could not deliver the verification code"
    retryable = True


class TransportError(Exception):
    """Raised by notification transports when a send fails."""


# ============================================================================
# Password policy
# ============================================================================

@dataclass(frozen=True)
class PolicyViolation:
    """A single broken password rule."""
    kind: ErrorKind
    message: str


class PasswordPolicyError(AuthError):
    """
    Raised when a password breaks one or more policy rules.

    All violations are collected; ``kind`` is that of the first one.

    Attributes:
        violations: Every broken rule, in rule order
    """

    default_message = "Password does not meet the policy"

    def __init__(self, violations: Sequence[PolicyViolation]):
        if not violations:
            raise ValueError("PasswordPolicyError needs at least one violation")
        self.violations: List[PolicyViolation] = list(violations)
        super().__init__("; ".join(v.message for v in self.violations))

    @property
    def kind(self) -> ErrorKind:
        return self.violations[0].kind

    @property
    def kinds(self) -> List[ErrorKind]:
        """Distinct violation kinds, in rule order."""
        seen: List[ErrorKind] = []
        for violation in self.violations:
            if violation.kind not in seen:
                seen.append(violation.kind)
        return seen
