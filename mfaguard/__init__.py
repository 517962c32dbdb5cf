"""
MFAGuard - password plus one-time code authentication core.

Modules:
- auth: credentials, password policy, OTP lifecycle, login orchestration
- messaging: code delivery over email and mobile transports
- integration: hash-chained security audit log
"""

from .auth import *  # noqa: F401,F403
from .auth import __all__ as _auth_all
from .clock import ManualClock, SystemClock
from .config import AuthPolicy, load_policy
from .factory import create_authenticator
from .integration.event_logger import EventLogger, EventType
from .messaging.dispatcher import InMemoryTransport, NotificationDispatcher

__version__ = "0.1.0"

__all__ = list(_auth_all) + [
    'AuthPolicy',
    'EventLogger',
    'EventType',
    'InMemoryTransport',
    'ManualClock',
    'NotificationDispatcher',
    'SystemClock',
    'create_authenticator',
    'load_policy',
]
