"""
Retry wrapper with exponential backoff for transient failures.

Each call site picks a RetryPolicy: database work retries quickly on
connection/pool/deadlock errors, outbound email backs off longer to ride out
provider rate limits. Terminal errors (validation, not found, conflict,
integrity violations) are never retried.

Backoff before attempt n+1 is base_delay * backoff_factor ** (n - 1),
capped at max_delay.
"""
import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, TypeVar

from sqlalchemy import exc as sa_exc
from tenacity import (
    AsyncRetrying,
    RetryError,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from lessonbook.errors import (
    ConflictError,
    NotFoundError,
    RetryExhaustedError,
    TransientError,
    ValidationError,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Errors that will never succeed on retry
TERMINAL_ERRORS = (ValidationError, NotFoundError, ConflictError, sa_exc.IntegrityError)

_TRANSIENT_MESSAGE_MARKERS = ("connection", "timeout", "timed out", "econnreset", "deadlock")


class EmailDeliveryError(Exception):
    """Email provider rejected or failed a send; status mirrors the provider's HTTP status."""

    def __init__(self, message: str, status: Optional[int] = None):
        self.status = status
        super().__init__(message)


@dataclass(frozen=True)
class RetryPolicy:
    """How often and how patiently to retry one kind of operation."""

    name: str
    max_attempts: int
    base_delay: float  # seconds
    backoff_factor: float
    max_delay: float
    is_retryable: Callable[[BaseException], bool]

    def delay_for(self, attempt: int) -> float:
        """Wait after the given (1-based) failed attempt."""
        return min(self.base_delay * self.backoff_factor ** (attempt - 1), self.max_delay)


def is_transient_error(error: BaseException) -> bool:
    """General transient classification: network resets, timeouts, explicit TransientError."""
    if isinstance(error, TERMINAL_ERRORS):
        return False
    if isinstance(error, (TransientError, ConnectionError, TimeoutError, asyncio.TimeoutError)):
        return True
    message = str(error).lower()
    return any(marker in message for marker in _TRANSIENT_MESSAGE_MARKERS)


def is_retryable_database_error(error: BaseException) -> bool:
    """Connection pool timeouts, dropped connections, deadlocks and serialization failures."""
    if isinstance(error, TERMINAL_ERRORS):
        return False
    if isinstance(error, (sa_exc.TimeoutError, sa_exc.DisconnectionError, sa_exc.OperationalError)):
        return True
    if isinstance(error, sa_exc.DBAPIError) and error.connection_invalidated:
        return True
    return is_transient_error(error)


def is_retryable_email_error(error: BaseException) -> bool:
    """Rate limits (429), provider 5xx and network failures; not bad addresses or auth (4xx)."""
    if isinstance(error, EmailDeliveryError):
        if error.status is None:
            return True
        return error.status == 429 or 500 <= error.status < 600
    return is_transient_error(error)


def is_retryable_critical_error(error: BaseException) -> bool:
    """Financial writes retry on anything transient, database or network."""
    return is_retryable_database_error(error)


DATABASE_RETRY_POLICY = RetryPolicy(
    name="database",
    max_attempts=3,
    base_delay=0.5,
    backoff_factor=2,
    max_delay=5.0,
    is_retryable=is_retryable_database_error,
)

EMAIL_RETRY_POLICY = RetryPolicy(
    name="email",
    max_attempts=5,
    base_delay=2.0,
    backoff_factor=3,
    max_delay=60.0,
    is_retryable=is_retryable_email_error,
)

CRITICAL_RETRY_POLICY = RetryPolicy(
    name="critical",
    max_attempts=5,
    base_delay=1.0,
    backoff_factor=2.5,
    max_delay=30.0,
    is_retryable=is_retryable_critical_error,
)


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy = DATABASE_RETRY_POLICY,
    operation_name: Optional[str] = None,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> T:
    """
    Run an async operation, retrying retryable failures with exponential backoff.

    Args:
        operation: Zero-argument coroutine function to run (called once per attempt)
        policy: RetryPolicy for this call site
        operation_name: Label used in logs and in RetryExhaustedError
        sleep: Awaitable sleep function (injectable for tests)

    Returns:
        The operation's result

    Raises:
        RetryExhaustedError: A retryable error persisted through every attempt
        Exception: Any terminal error, unchanged, on the attempt it occurs
    """
    name = operation_name or getattr(operation, "__name__", "operation")

    def _log_retry(retry_state):
        error = retry_state.outcome.exception()
        logger.warning(
            f"Retrying {name} ({policy.name} policy) after attempt "
            f"{retry_state.attempt_number}/{policy.max_attempts}: {error}"
        )

    retrying = AsyncRetrying(
        stop=stop_after_attempt(policy.max_attempts),
        wait=wait_exponential(
            multiplier=policy.base_delay,
            exp_base=policy.backoff_factor,
            max=policy.max_delay,
        ),
        retry=retry_if_exception(policy.is_retryable),
        before_sleep=_log_retry,
        sleep=sleep,
    )

    # tenacity only awaits callables it recognises as coroutine functions,
    # so lambdas returning a coroutine are wrapped
    async def _attempt():
        return await operation()

    try:
        return await retrying(_attempt)
    except RetryError as e:
        last_error = e.last_attempt.exception()
        logger.error(
            f"{name} failed after {policy.max_attempts} attempts ({policy.name} policy): {last_error}"
        )
        raise RetryExhaustedError(name, policy.max_attempts, last_error) from last_error
