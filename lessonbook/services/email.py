"""
Outbound email interface.

The core only needs send_email(to, subject, html_body) -> bool. Delivery
providers live outside this service; ConsoleEmailSender logs instead of
sending and is the default when no provider is wired in.
"""
import logging
from collections import deque
from typing import Deque, Optional, Tuple

from lessonbook.config import EMAIL_FROM
from lessonbook.errors import RetryExhaustedError
from lessonbook.services.retry import EMAIL_RETRY_POLICY, RetryPolicy, with_retry

logger = logging.getLogger(__name__)

MAX_RECORDED_EMAILS = 100


class EmailSender:
    """Interface for email providers. Raise EmailDeliveryError on provider failures."""

    async def send_email(self, to: str, subject: str, html_body: str) -> bool:
        raise NotImplementedError


class ConsoleEmailSender(EmailSender):
    """Logs emails instead of sending them (development and tests)"""

    def __init__(self, sender: str = EMAIL_FROM, max_recorded: int = MAX_RECORDED_EMAILS):
        self.sender = sender
        # Most recent messages only; the default sender lives for the whole process
        self.sent: Deque[Tuple[str, str, str]] = deque(maxlen=max_recorded)

    async def send_email(self, to: str, subject: str, html_body: str) -> bool:
        self.sent.append((to, subject, html_body))
        logger.info(f"Email from {self.sender} to {to}: {subject}")
        return True


async def send_email_with_retry(
    sender: EmailSender,
    to: str,
    subject: str,
    html_body: str,
    policy: RetryPolicy = EMAIL_RETRY_POLICY,
    sleep=None,
) -> bool:
    """
    Send an email under the email retry policy.

    Returns False (and logs) instead of raising when delivery ultimately
    fails, so a notification problem never fails the scheduling action
    that triggered it.
    """
    kwargs = {"sleep": sleep} if sleep is not None else {}

    async def _send():
        return await sender.send_email(to, subject, html_body)

    try:
        return await with_retry(_send, policy, operation_name=f"send_email:{subject}", **kwargs)
    except RetryExhaustedError as e:
        logger.error(f"Giving up on email to {to} ({subject}): {e.last_error}")
        return False
    except Exception as e:
        logger.error(f"Email to {to} ({subject}) rejected: {e}")
        return False


_sender: Optional[EmailSender] = None


def get_email_sender() -> EmailSender:
    """Get or create the global EmailSender instance."""
    global _sender
    if _sender is None:
        _sender = ConsoleEmailSender()
    return _sender


def set_email_sender(sender: EmailSender) -> None:
    """Install a delivery provider at startup."""
    global _sender
    _sender = sender
