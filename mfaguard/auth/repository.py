"""
User repository port and an in-memory implementation.

The core depends only on the ``UserRepository`` protocol. Storage engines
(SQL, Redis, ...) are expected to implement it with atomic, durable writes.
"""

import copy
import logging
import threading
from typing import Dict, Optional, Protocol

from .models import User


logger = logging.getLogger(__name__)


class UserRepository(Protocol):
    """Capability interface the core uses to read and mutate users."""

    def find(self, user_id: str) -> Optional[User]:
        """Return the user with ``user_id`` or None."""
        ...

    def find_by_identifier(self, identifier: str) -> Optional[User]:
        """Return the user whose username or email matches ``identifier``."""
        ...

    def save(self, user: User) -> None:
        ...

    def lock(self, user_id: str, until: Optional[float] = None) -> None:
        """Lock the account, until ``until`` or indefinitely if None."""
        ...

    def unlock(self, user_id: str) -> None:
        ...


class InMemoryUserRepository:
    """
    Thread-safe dict-backed repository for tests and embedding.

    Users are copied on the way in and out, so changes only persist through
    ``save``, ``lock`` and ``unlock``, the same as with a real store.

    Example:
        >>> repo = InMemoryUserRepository()
        >>> repo.add(User(user_id="u1", username="alice", password_hash="..."))
        >>> repo.find_by_identifier("ALICE").user_id
        'u1'
    """

    def __init__(self):
        self._users: Dict[str, User] = {}
        self._lock = threading.RLock()

    def add(self, user: User) -> None:
        """Insert a new user. Usernames and emails must be unique."""
        with self._lock:
            if user.user_id in self._users:
                raise ValueError(f"User {user.user_id} already exists")
            for identifier in (user.username, user.email):
                if identifier and self._lookup(identifier) is not None:
                    raise ValueError("Username or email already registered")
            self._users[user.user_id] = copy.deepcopy(user)

    def find(self, user_id: str) -> Optional[User]:
        with self._lock:
            user = self._users.get(user_id)
            return copy.deepcopy(user) if user else None

    def find_by_identifier(self, identifier: str) -> Optional[User]:
        with self._lock:
            user = self._lookup(identifier)
            return copy.deepcopy(user) if user else None

    def save(self, user: User) -> None:
        with self._lock:
            if user.user_id not in self._users:
                raise KeyError(user.user_id)
            self._users[user.user_id] = copy.deepcopy(user)

    def lock(self, user_id: str, until: Optional[float] = None) -> None:
        with self._lock:
            user = self._users[user_id]
            user.locked = True
            user.lock_expiry = until
        logger.info("Locked user %s", user_id)

    def unlock(self, user_id: str) -> None:
        with self._lock:
            user = self._users[user_id]
            user.locked = False
            user.lock_expiry = None
            user.failed_otp_count = 0
        logger.info("Unlocked user %s", user_id)

    def __len__(self) -> int:
        with self._lock:
            return len(self._users)

    def _lookup(self, identifier: str) -> Optional[User]:
        needle = identifier.strip().lower()
        for user in self._users.values():
            if user.username.lower() == needle:
                return user
            if user.email and user.email.lower() == needle:
                return user
        return None
