"""
Notification Dispatcher Module

Delivers one-time codes over a channel-specific transport.

Features:
- Per-channel address validation (email, E.164 mobile numbers)
- Pluggable transports behind a single ``send(address, message)`` interface
- Bounded delivery timeout on a worker pool
- Uniform ``TransportFailure`` for any transport error or timeout

The dispatcher never retries; a failure is reported to the caller, who can
offer a resend once the cooldown has passed.
"""

import logging
import re
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from dataclasses import dataclass
from typing import Dict, List, Optional, Protocol

from ..auth.errors import InvalidAddress, TransportError, TransportFailure
from ..auth.models import Channel, User
from ..config import DEFAULT_ISSUER, DISPATCH_TIMEOUT_SECONDS


logger = logging.getLogger(__name__)


EMAIL_MAX_LENGTH = 254
# local-part "@" domain "." TLD
_EMAIL_RE = re.compile(
    r"^[A-Z0-9.!#$%&'*+/=?^_`{|}~-]+@[A-Z0-9](?:[A-Z0-9-]*[A-Z0-9])?"
    r"(?:\.[A-Z0-9](?:[A-Z0-9-]*[A-Z0-9])?)*\.[A-Z]{2,}$",
    re.IGNORECASE,
)
# E.164: leading +, country code, up to 15 digits in total
_E164_RE = re.compile(r"^\+[1-9]\d{7,14}$")
_PHONE_SEPARATORS_RE = re.compile(r"[\s().-]")

DISPATCH_WORKERS = 4


class NotificationTransport(Protocol):
    """A channel-specific sender (SMTP relay, SMS gateway, ...)."""

    def send(self, address: str, message: str) -> None:
        """
        Deliver ``message`` to ``address``.

        Raises:
            TransportError: If delivery fails
        """
        ...


def is_valid_email(address: str) -> bool:
    """Check an email address is shaped ``local@domain.tld``."""
    if not address or len(address) > EMAIL_MAX_LENGTH:
        return False
    if ".." in address:
        return False
    return _EMAIL_RE.match(address) is not None


def normalize_mobile(number: str) -> str:
    """Strip spaces, dashes, dots and parentheses from a phone number."""
    return _PHONE_SEPARATORS_RE.sub("", number or "")


def is_valid_mobile(number: str) -> bool:
    """Check a phone number is valid E.164 after normalization."""
    return _E164_RE.match(normalize_mobile(number)) is not None


def resolve_address(user: User, channel: Channel) -> str:
    """
    Return the validated delivery address for ``channel``.

    Raises:
        InvalidAddress: If the user has no well-formed address for it
    """
    address = user.address_for(channel)
    if channel is Channel.EMAIL and address and is_valid_email(address):
        return address.strip()
    if channel is Channel.MOBILE and address and is_valid_mobile(address):
        return normalize_mobile(address)
    raise InvalidAddress(f"No valid {channel.value} address on file")


def format_message(code: str, ttl_seconds: int, issuer: str = DEFAULT_ISSUER) -> str:
    """Render the text sent to the user."""
    minutes = max(1, ttl_seconds // 60)
    unit = "minute" if minutes == 1 else "minutes"
    return (f"Your {issuer} verification code is {code}. "
            f"It expires in {minutes} {unit}.")


class NotificationDispatcher:
    """
    Sends one-time codes through per-channel transports.

    Example:
        >>> outbox = InMemoryTransport()
        >>> dispatcher = NotificationDispatcher({Channel.EMAIL: outbox})
        >>> dispatcher.send(user, Channel.EMAIL, "042917", ttl_seconds=300)
        >>> outbox.last_message.address
        'alice@example.com'
    """

    def __init__(self, transports: Dict[Channel, NotificationTransport],
                 timeout: float = DISPATCH_TIMEOUT_SECONDS,
                 issuer: str = DEFAULT_ISSUER,
                 max_workers: int = DISPATCH_WORKERS):
        """
        Initialize the dispatcher.

        Args:
            transports: Transport per channel
            timeout: Seconds to wait for a transport before giving up
            issuer: Service name shown in messages
            max_workers: Size of the delivery worker pool
        """
        if timeout <= 0:
            raise ValueError("Dispatch timeout must be positive")
        self._transports = dict(transports)
        self._timeout = timeout
        self._issuer = issuer
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="mfaguard-dispatch")

    @property
    def channels(self) -> List[Channel]:
        return list(self._transports)

    def supports(self, channel: Channel) -> bool:
        return channel in self._transports

    def send(self, user: User, channel: Channel, code: str,
             ttl_seconds: int) -> None:
        """
        Validate the destination and deliver ``code``.

        Args:
            user: Recipient
            channel: Delivery channel
            code: One-time code to deliver
            ttl_seconds: Validity shown in the message

        Raises:
            InvalidAddress: Missing or malformed address for the channel
            TransportFailure: No transport, transport error, or timeout
        """
        address = resolve_address(user, channel)

        transport = self._transports.get(channel)
        if transport is None:
            logger.error("No transport configured for channel %s", channel.value)
            raise TransportFailure(f"{channel.value} delivery is not available")

        message = format_message(code, ttl_seconds, self._issuer)
        try:
            future = self._executor.submit(transport.send, address, message)
            future.result(timeout=self._timeout)
        except FutureTimeout:
            future.cancel()
            logger.warning("%s delivery to user %s timed out after %.1fs",
                           channel.value, user.user_id, self._timeout)
            raise TransportFailure() from None
        except (TransportError, OSError) as e:
            logger.warning("%s delivery to user %s failed: %s",
                           channel.value, user.user_id, e)
            raise TransportFailure() from e
        except Exception as e:
            # Transport SDK errors, or a dispatcher that was already closed
            logger.exception("Unexpected error delivering %s code to user %s",
                             channel.value, user.user_id)
            raise TransportFailure() from e

        logger.debug("Delivered %s code to user %s", channel.value, user.user_id)

    def close(self) -> None:
        """Stop the worker pool without waiting for stalled transports."""
        self._executor.shutdown(wait=False)

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.close()


# ============================================================================
# Reference transport
# ============================================================================

@dataclass(frozen=True)
class SentMessage:
    address: str
    message: str
    sent_at: float


class InMemoryTransport:
    """
    Transport that keeps messages in memory. For tests and demos only.

    Can be told to fail (``fail_with``) or stall (``delay``) to exercise
    the dispatcher's error handling.
    """

    def __init__(self, delay: float = 0.0,
                 fail_with: Optional[Exception] = None):
        self.delay = delay
        self.fail_with = fail_with
        self._outbox: List[SentMessage] = []
        self._lock = threading.Lock()

    def send(self, address: str, message: str) -> None:
        if self.delay:
            time.sleep(self.delay)
        if self.fail_with is not None:
            raise self.fail_with
        with self._lock:
            self._outbox.append(SentMessage(address, message, time.time()))

    @property
    def outbox(self) -> List[SentMessage]:
        with self._lock:
            return list(self._outbox)

    @property
    def last_message(self) -> Optional[SentMessage]:
        with self._lock:
            return self._outbox[-1] if self._outbox else None

    def codes_for(self, address: str) -> List[str]:
        """Extract the codes delivered to ``address``, oldest first."""
        codes = []
        for sent in self.outbox:
            if sent.address == address:
                match = re.search(r"code is (\d+)", sent.message)
                if match:
                    codes.append(match.group(1))
        return codes
