"""
Authentication policy configuration.

All policy knobs live in a single immutable ``AuthPolicy``. Values can be
passed explicitly or overridden through environment variables prefixed with
``MFAGUARD_`` (e.g. ``MFAGUARD_OTP_TTL_SECONDS=600``).
"""

from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


# OTP defaults
OTP_LENGTH = 6
OTP_TTL_SECONDS = 300              # 5 minutes
RESEND_COOLDOWN_SECONDS = 60
MAX_FAILED_OTP_ATTEMPTS = 5
LOCKOUT_DURATION_SECONDS = 900     # 15 minutes, 0 = until explicit unlock
REUSE_HISTORY_RETENTION_SECONDS = 86400
DISPATCH_TIMEOUT_SECONDS = 5.0

# Primary credential rate limiting
MAX_LOGIN_ATTEMPTS = 5
LOGIN_LOCKOUT_SECONDS = 300
LOGIN_ATTEMPT_WINDOW_SECONDS = 300

DEFAULT_ISSUER = "MFAGuard"


class AuthPolicy(BaseSettings):
    """Policy constants for OTP issuance, validation and lockout."""

    otp_length: int = Field(default=OTP_LENGTH, ge=4, le=10)
    otp_ttl_seconds: int = Field(default=OTP_TTL_SECONDS, gt=0)
    resend_cooldown_seconds: int = Field(default=RESEND_COOLDOWN_SECONDS, ge=0)
    max_failed_otp_attempts: int = Field(default=MAX_FAILED_OTP_ATTEMPTS, ge=1)
    lockout_duration_seconds: int = Field(default=LOCKOUT_DURATION_SECONDS, ge=0)
    reuse_history_retention_seconds: int = Field(
        default=REUSE_HISTORY_RETENTION_SECONDS, gt=0
    )
    dispatch_timeout_seconds: float = Field(default=DISPATCH_TIMEOUT_SECONDS, gt=0)

    max_login_attempts: int = Field(default=MAX_LOGIN_ATTEMPTS, ge=1)
    login_lockout_seconds: int = Field(default=LOGIN_LOCKOUT_SECONDS, gt=0)
    login_attempt_window_seconds: int = Field(
        default=LOGIN_ATTEMPT_WINDOW_SECONDS, gt=0
    )

    issuer: str = DEFAULT_ISSUER
    # Key material for OTP digests; a random per-process key is used when unset
    otp_digest_key: Optional[str] = Field(default=None, repr=False)

    model_config = SettingsConfigDict(
        env_prefix="MFAGUARD_",
        extra="ignore",
        frozen=True,
    )

    @property
    def lockout_is_permanent(self) -> bool:
        """True when OTP lockouts last until an explicit unlock."""
        return self.lockout_duration_seconds == 0


def load_policy(**overrides) -> AuthPolicy:
    """Build a policy from the environment plus explicit overrides."""
    return AuthPolicy(**overrides)
