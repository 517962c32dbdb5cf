"""
Event Logger Module

Security audit trail for the authentication core.

Features:
- Login, challenge, verification and lockout events
- Privacy-preserving user hashes (SHA-256)
- Tamper-evident log: every record is chained to the previous one's hash
- Subscriber callbacks for forwarding events elsewhere

Codes, passwords and contact addresses are never recorded.
"""

import hashlib
import json
import logging
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional


logger = logging.getLogger(__name__)


# ============================================================================
# Constants
# ============================================================================

EVENT_VERSION = "1.0"
GENESIS_HASH = "0" * 64


# ============================================================================
# Privacy Functions
# ============================================================================

def get_user_hash(user_ref: str) -> str:
    """
    Compute privacy-preserving hash of a user reference.

    Lets events for the same user be correlated without storing the
    identifier itself.

    Args:
        user_ref: User id, username or login identifier

    Returns:
        Hex-encoded SHA-256 hash
    """
    return hashlib.sha256(user_ref.encode()).hexdigest()


def get_user_hash_short(user_ref: str) -> str:
    """First 16 hex characters of the user hash."""
    return get_user_hash(user_ref)[:16]


# ============================================================================
# Event Types
# ============================================================================

class EventType(Enum):
    """Types of security events that can be logged."""

    LOGIN_SUCCESS = "login_success"
    LOGIN_FAILED = "login_failed"
    MFA_CHALLENGE_ISSUED = "mfa_challenge_issued"
    MFA_VERIFIED = "mfa_verified"
    MFA_FAILED = "mfa_failed"
    RESEND_THROTTLED = "resend_throttled"
    DISPATCH_FAILED = "dispatch_failed"
    ACCOUNT_LOCKED = "account_locked"
    ACCOUNT_UNLOCKED = "account_unlocked"


# ============================================================================
# Event Structure
# ============================================================================

@dataclass
class SecurityEvent:
    """
    A security event.

    All user-identifying information is hashed for privacy.
    """
    event_type: EventType
    user_hash: str
    timestamp: float
    details: Dict[str, Any] = field(default_factory=dict)

    def to_record(self) -> Dict[str, Any]:
        return {
            'version': EVENT_VERSION,
            'type': self.event_type.value,
            'user': self.user_hash,
            'time': self.timestamp,
            'iso_time': datetime.fromtimestamp(
                self.timestamp, tz=timezone.utc).isoformat(),
            'details': self.details,
        }

    @classmethod
    def from_record(cls, data: Dict[str, Any]) -> 'SecurityEvent':
        return cls(
            event_type=EventType(data['type']),
            user_hash=data['user'],
            timestamp=data['time'],
            details=data.get('details', {}),
        )

    def __str__(self) -> str:
        dt = datetime.fromtimestamp(self.timestamp, tz=timezone.utc)
        return (
            f"[{dt.strftime('%Y-%m-%d %H:%M:%S')}] "
            f"{self.event_type.value} | "
            f"user:{self.user_hash[:8]}..."
        )


@dataclass(frozen=True)
class AuditRecord:
    """A logged event plus its position in the hash chain."""
    index: int
    prev_hash: str
    hash: str
    event: SecurityEvent

    def to_dict(self) -> Dict[str, Any]:
        return {
            'index': self.index,
            'prev_hash': self.prev_hash,
            'hash': self.hash,
            'event': self.event.to_record(),
        }


def compute_record_hash(index: int, prev_hash: str, event: SecurityEvent) -> str:
    """SHA-256 over the record position, previous hash and event body."""
    body = json.dumps(event.to_record(), sort_keys=True, separators=(',', ':'))
    material = f"{index}|{prev_hash}|{body}".encode()
    return hashlib.sha256(material).hexdigest()


# ============================================================================
# Event Logger
# ============================================================================

class EventLogger:
    """
    Append-only, hash-chained security audit log.

    Example:
        >>> audit = EventLogger()
        >>> audit.log_login("alice", success=True)
        >>> audit.verify_integrity()
        True
    """

    def __init__(self, clock: Optional[Callable[[], float]] = None):
        """
        Initialize the event logger.

        Args:
            clock: Timestamp source (defaults to ``time.time``)
        """
        self._clock = clock or time.time
        self._records: List[AuditRecord] = []
        self._callbacks: List[Callable[[SecurityEvent], None]] = []
        self._lock = threading.Lock()

    def _add_event(self, event: SecurityEvent) -> SecurityEvent:
        with self._lock:
            index = len(self._records)
            prev_hash = self._records[-1].hash if self._records else GENESIS_HASH
            record = AuditRecord(
                index=index,
                prev_hash=prev_hash,
                hash=compute_record_hash(index, prev_hash, event),
                event=event,
            )
            self._records.append(record)
            callbacks = list(self._callbacks)

        logger.info("audit %s user=%s %s", event.event_type.value,
                    event.user_hash[:16], event.details)

        for callback in callbacks:
            try:
                callback(event)
            except Exception:
                logger.exception("Audit callback %r failed", callback)
        return event

    def record(self, event_type: EventType, user_ref: str,
               **details: Any) -> SecurityEvent:
        """
        Log an event for a user.

        Args:
            event_type: What happened
            user_ref: User id or login identifier (will be hashed)
            **details: Extra non-sensitive fields

        Returns:
            The logged event
        """
        event = SecurityEvent(
            event_type=event_type,
            user_hash=get_user_hash(user_ref),
            timestamp=self._clock(),
            details=details,
        )
        return self._add_event(event)

    def add_callback(self, callback: Callable[[SecurityEvent], None]) -> None:
        """Add a callback to be notified of new events."""
        with self._lock:
            self._callbacks.append(callback)

    def remove_callback(self, callback: Callable[[SecurityEvent], None]) -> None:
        with self._lock:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

    # ========================================================================
    # Authentication Events
    # ========================================================================

    def log_login(self, user_ref: str, success: bool,
                  reason: Optional[str] = None, **details: Any) -> SecurityEvent:
        """Log a primary credential check."""
        if reason:
            details['reason'] = reason
        event_type = EventType.LOGIN_SUCCESS if success else EventType.LOGIN_FAILED
        return self.record(event_type, user_ref, **details)

    def log_mfa(self, user_ref: str, success: bool,
                reason: Optional[str] = None, **details: Any) -> SecurityEvent:
        """Log a one-time code verification."""
        if reason:
            details['reason'] = reason
        event_type = EventType.MFA_VERIFIED if success else EventType.MFA_FAILED
        return self.record(event_type, user_ref, **details)

    # ========================================================================
    # Retrieval
    # ========================================================================

    @property
    def records(self) -> List[AuditRecord]:
        with self._lock:
            return list(self._records)

    def get_all_events(self) -> List[SecurityEvent]:
        return [r.event for r in self.records]

    def get_user_events(self, user_ref: str) -> List[SecurityEvent]:
        """All events for one user."""
        user_hash = get_user_hash(user_ref)
        return [e for e in self.get_all_events() if e.user_hash == user_hash]

    def get_events_by_type(self, event_type: EventType) -> List[SecurityEvent]:
        return [e for e in self.get_all_events() if e.event_type == event_type]

    def get_recent_events(self, count: int = 10) -> List[SecurityEvent]:
        return self.get_all_events()[-count:]

    def verify_integrity(self) -> bool:
        """Recompute the hash chain and report whether it is intact."""
        prev_hash = GENESIS_HASH
        for index, record in enumerate(self.records):
            if record.index != index or record.prev_hash != prev_hash:
                return False
            if record.hash != compute_record_hash(index, prev_hash, record.event):
                return False
            prev_hash = record.hash
        return True

    def export_log(self) -> str:
        """Export the audit log as JSON lines."""
        return "\n".join(
            json.dumps(r.to_dict(), sort_keys=True, separators=(',', ':'))
            for r in self.records
        )

    @classmethod
    def import_log(cls, data: str) -> 'EventLogger':
        """Rebuild a logger from ``export_log`` output. Hashes are kept as-is."""
        audit = cls()
        for line in data.splitlines():
            if not line.strip():
                continue
            raw = json.loads(line)
            audit._records.append(AuditRecord(
                index=raw['index'],
                prev_hash=raw['prev_hash'],
                hash=raw['hash'],
                event=SecurityEvent.from_record(raw['event']),
            ))
        return audit

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)
