# Authentication Module
"""
Authentication core including:
- Argon2id password hashing and complexity policy - password.py
- One-time code generation, delivery and lifecycle - otp.py
- Credential checks, rate limiting and login flow - login.py

Security features:
- Argon2id for password hashing (PHC winner)
- Constant-time comparison of code digests
- Cryptographically secure one-time codes
- Lockout after repeated incorrect codes
"""

from .errors import (
    ErrorKind,
    AuthError,
    InvalidCredentials,
    UserNotFound,
    AccountLocked,
    OTPError,
    ResendThrottled,
    NoActiveChallenge,
    Expired,
    AlreadyUsed,
    IncorrectCode,
    DispatchError,
    InvalidAddress,
    TransportFailure,
    TransportError,
    PolicyViolation,
    PasswordPolicyError,
)

from .models import (
    Channel,
    ChallengeState,
    LoginStatus,
    Credentials,
    UsedOTP,
    OTPChallenge,
    User,
    AuthSession,
    LoginResult,
)

from .repository import UserRepository, InMemoryUserRepository

from .password import (
    PasswordHasher_,
    PasswordPolicy,
    check_password,
    validate_password_strength,
    calculate_password_score,
)

from .otp import (
    OTPGenerator,
    CodeDigester,
    OTPLifecycleManager,
    generate_otp,
)

from .login import (
    RateLimiter,
    CredentialValidator,
    AuthenticationOrchestrator,
)

__all__ = [
    # Errors
    'ErrorKind',
    'AuthError',
    'InvalidCredentials',
    'UserNotFound',
    'AccountLocked',
    'OTPError',
    'ResendThrottled',
    'NoActiveChallenge',
    'Expired',
    'AlreadyUsed',
    'IncorrectCode',
    'DispatchError',
    'InvalidAddress',
    'TransportFailure',
    'TransportError',
    'PolicyViolation',
    'PasswordPolicyError',
    # Models
    'Channel',
    'ChallengeState',
    'LoginStatus',
    'Credentials',
    'UsedOTP',
    'OTPChallenge',
    'User',
    'AuthSession',
    'LoginResult',
    # Repository
    'UserRepository',
    'InMemoryUserRepository',
    # Password
    'PasswordHasher_',
    'PasswordPolicy',
    'check_password',
    'validate_password_strength',
    'calculate_password_score',
    # OTP
    'OTPGenerator',
    'CodeDigester',
    'OTPLifecycleManager',
    'generate_otp',
    # Login
    'RateLimiter',
    'CredentialValidator',
    'AuthenticationOrchestrator',
]
