"""
Domain error taxonomy.

Validation, not-found and conflict errors are terminal and map to distinct
HTTP responses. TransientError is the only category the retry wrapper will
retry; once retries are exhausted the failure is surfaced as
RetryExhaustedError.
"""
from typing import Any, Dict, Optional


class DomainError(Exception):
    """Base exception for all booking and billing errors."""

    status_code = 500

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.message = message
        self.code = code or self.__class__.__name__
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "details": self.details,
        }


class ValidationError(DomainError):
    """Malformed input or a violated business rule."""

    status_code = 400


class NotFoundError(DomainError):
    """Unknown teacher, lesson, slot or subscription."""

    status_code = 404


class ConflictError(DomainError):
    """Requested time collides with an existing lesson or blocked interval."""

    status_code = 409


class TransientError(DomainError):
    """Temporary infrastructure failure that may succeed on retry."""

    status_code = 503


class RetryExhaustedError(DomainError):
    """A retryable operation kept failing until the attempt budget ran out."""

    status_code = 503

    def __init__(self, operation: str, attempts: int, last_error: BaseException) -> None:
        self.operation = operation
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(
            f"{operation} failed after {attempts} attempts: {last_error}",
            details={"operation": operation, "attempts": attempts},
        )
