# Messaging Module
"""
One-time code delivery including:
- Email and E.164 mobile address validation
- Pluggable per-channel transports
- Bounded delivery timeouts

Failures surface as InvalidAddress or TransportFailure; nothing is retried
internally.
"""

from .dispatcher import (
    NotificationTransport,
    NotificationDispatcher,
    InMemoryTransport,
    SentMessage,
    is_valid_email,
    is_valid_mobile,
    normalize_mobile,
    resolve_address,
    format_message,
)

__all__ = [
    'NotificationTransport',
    'NotificationDispatcher',
    'InMemoryTransport',
    'SentMessage',
    'is_valid_email',
    'is_valid_mobile',
    'normalize_mobile',
    'resolve_address',
    'format_message',
]
