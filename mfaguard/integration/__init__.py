# Integration Module
"""
Security audit trail shared by the authentication components.

All events are logged with privacy-preserving user hashes.
"""

# Lazy imports to avoid circular import issues
def __getattr__(name):
    """Lazy import to avoid circular import issues."""
    from . import event_logger
    return getattr(event_logger, name)

__all__ = [
    'EventType',
    'SecurityEvent',
    'AuditRecord',
    'EventLogger',
    'get_user_hash',
]
