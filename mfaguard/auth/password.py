"""
Password Module

Argon2id password hashing and the password complexity policy.

Features:
- Argon2id password hashing (winner of Password Hashing Competition)
- Parameter upgrades through rehash detection
- Stateless complexity policy (length, character classes, identifiers)
- Advisory strength score

Security considerations:
- Never store plaintext passwords
- Argon2 verification is constant-time
- Salt is automatically handled by argon2-cffi
"""

import re
from dataclasses import dataclass
from typing import Dict, List, Optional

from argon2 import PasswordHasher, Type
from argon2.exceptions import InvalidHashError, VerificationError, VerifyMismatchError

from .errors import ErrorKind, PasswordPolicyError, PolicyViolation


# Argon2id configuration
# - time_cost: number of iterations
# - memory_cost: memory usage in KiB
# - parallelism: number of parallel threads
# - hash_len: length of the hash output
# - salt_len: length of the random salt
ARGON2_CONFIG = {
    'time_cost': 3,
    'memory_cost': 65536,    # 64 MiB
    'parallelism': 4,
    'hash_len': 32,          # 256-bit hash
    'salt_len': 16,          # 128-bit salt
    'type': Type.ID          # Argon2id (hybrid)
}


# Password policy
PASSWORD_MIN_LENGTH = 12
PASSWORD_SYMBOLS = "!@#$%^&*()-_=+[]{};:'\",.<>/?\\|`~"


class PasswordHasher_:
    """
    Secure password hasher using Argon2id.

    Example:
        >>> hasher = PasswordHasher_()
        >>> stored = hasher.hash_password("Str0ng!Passw0rd")
        >>> hasher.verify_password("Str0ng!Passw0rd", stored)
        True
    """

    def __init__(self, **kwargs):
        """
        Initialize the password hasher with Argon2id.

        Args:
            **kwargs: Override default Argon2 parameters
        """
        config = ARGON2_CONFIG.copy()
        config.update(kwargs)

        self._hasher = PasswordHasher(
            time_cost=config['time_cost'],
            memory_cost=config['memory_cost'],
            parallelism=config['parallelism'],
            hash_len=config['hash_len'],
            salt_len=config['salt_len'],
            type=config['type']
        )

    def hash_password(self, password: str) -> str:
        """
        Hash a password using Argon2id.

        The policy is not applied here; run ``check_password`` first when
        accepting a new password.

        Args:
            password: Plaintext password to hash

        Returns:
            Argon2id hash string (includes salt and parameters)
        """
        return self._hasher.hash(password)

    def verify_password(self, password: str, hash_str: str) -> bool:
        """
        Verify a password against an Argon2id hash.

        Args:
            password: Plaintext password to verify
            hash_str: Argon2id hash string to verify against

        Returns:
            True if password matches, False otherwise
        """
        try:
            return self._hasher.verify(hash_str, password)
        except (VerifyMismatchError, VerificationError, InvalidHashError):
            return False

    def needs_rehash(self, hash_str: str) -> bool:
        """True if ``hash_str`` was made with different Argon2 parameters."""
        return self._hasher.check_needs_rehash(hash_str)


@dataclass(frozen=True)
class PasswordPolicy:
    """
    Complexity rules for new passwords.

    Every rule is evaluated and all violations are reported together.

    Example:
        >>> PasswordPolicy().check("Str0ng!Passw0rd", "bob", "bob@example.com")
        >>> PasswordPolicy().violations("short1!")[0].kind
        <ErrorKind.TOO_SHORT: 'too_short'>
    """
    min_length: int = PASSWORD_MIN_LENGTH
    symbols: str = PASSWORD_SYMBOLS
    require_uppercase: bool = True
    require_lowercase: bool = True
    require_digit: bool = True
    require_symbol: bool = True

    def violations(self, password: str, username: Optional[str] = None,
                   email: Optional[str] = None) -> List[PolicyViolation]:
        """
        Evaluate every rule.

        Args:
            password: Candidate password
            username: Account username, must not appear in the password
            email: Account email, must not appear in the password

        Returns:
            List of violations, empty if the password is acceptable
        """
        found = []

        if len(password) < self.min_length:
            found.append(PolicyViolation(
                ErrorKind.TOO_SHORT,
                f"Must be at least {self.min_length} characters"))

        classes = (
            (self.require_uppercase, str.isupper, "one uppercase letter"),
            (self.require_lowercase, str.islower, "one lowercase letter"),
            (self.require_digit, str.isdigit, "one digit"),
            (self.require_symbol, self.symbols.__contains__,
             f"one symbol from {self.symbols}"),
        )
        for required, predicate, label in classes:
            if required and not any(predicate(ch) for ch in password):
                found.append(PolicyViolation(
                    ErrorKind.MISSING_CHARACTER_CLASS,
                    f"Must contain at least {label}"))

        lowered = password.lower()
        for identifier in _identifiers(username, email):
            if identifier in lowered:
                found.append(PolicyViolation(
                    ErrorKind.CONTAINS_IDENTIFIER,
                    "Must not contain your username or email"))
                break

        return found

    def check(self, password: str, username: Optional[str] = None,
              email: Optional[str] = None) -> None:
        """
        Enforce the policy.

        Raises:
            PasswordPolicyError: With every violation, if any rule is broken
        """
        found = self.violations(password, username, email)
        if found:
            raise PasswordPolicyError(found)


def _identifiers(username: Optional[str], email: Optional[str]) -> List[str]:
    """Lowercased username, email and email local part; blanks skipped."""
    candidates = [username, email]
    if email and "@" in email:
        candidates.append(email.split("@", 1)[0])
    return [c.strip().lower() for c in candidates if c and c.strip()]


DEFAULT_POLICY = PasswordPolicy()


def check_password(password: str, username: Optional[str] = None,
                   email: Optional[str] = None,
                   policy: Optional[PasswordPolicy] = None) -> None:
    """Check ``password`` against ``policy`` (the default policy if None)."""
    (policy or DEFAULT_POLICY).check(password, username, email)


def validate_password_strength(password: str, username: Optional[str] = None,
                               email: Optional[str] = None) -> Dict:
    """
    Validate password against the default policy without raising.

    Args:
        password: Password to validate
        username: Optional username to exclude
        email: Optional email to exclude

    Returns:
        Dict with 'valid' bool, 'errors' list and advisory 'score'
    """
    errors = [v.message for v in DEFAULT_POLICY.violations(password, username, email)]
    return {
        'valid': len(errors) == 0,
        'errors': errors,
        'score': calculate_password_score(password)
    }


def calculate_password_score(password: str) -> int:
    """
    Calculate a password strength score (0-100).

    Args:
        password: Password to score

    Returns:
        Score from 0 (weak) to 100 (strong)
    """
    score = 0

    # Length scoring (up to 30 points)
    score += min(len(password) * 2, 30)

    # Character variety (up to 40 points)
    if re.search(r'[a-z]', password):
        score += 10
    if re.search(r'[A-Z]', password):
        score += 10
    if re.search(r'\d', password):
        score += 10
    if any(ch in PASSWORD_SYMBOLS for ch in password):
        score += 10

    # Bonus for length (up to 20 points)
    if len(password) >= 12:
        score += 10
    if len(password) >= 16:
        score += 10

    # Penalty for common patterns
    if re.search(r'(.)\1{2,}', password):  # Repeated characters
        score -= 10
    if re.search(r'(012|123|234|345|456|567|678|789)', password):
        score -= 10
    if re.search(r'(abc|bcd|cde|def|efg)', password.lower()):
        score -= 10

    return max(0, min(100, score))
