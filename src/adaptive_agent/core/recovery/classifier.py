"""
Error classification.

Maps any raised object to a normalized ErrorDetails record. Recovery
strategies match on ``ErrorDetails.code``.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from adaptive_agent.core.domain.errors import error_message

NETWORK_ERROR = "NETWORK_ERROR"
RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"
TIMEOUT_ERROR = "TIMEOUT_ERROR"
CONTEXT_LENGTH_EXCEEDED = "CONTEXT_LENGTH_EXCEEDED"
UNKNOWN_ERROR = "UNKNOWN_ERROR"

RECOVERABLE_CODES = frozenset(
    {NETWORK_ERROR, RATE_LIMIT_EXCEEDED, TIMEOUT_ERROR, CONTEXT_LENGTH_EXCEEDED}
)

PREVENTION_HINTS = {
    NETWORK_ERROR: "Implement retry logic with exponential backoff",
    RATE_LIMIT_EXCEEDED: "Implement request throttling and queuing",
    TIMEOUT_ERROR: "Increase timeout values and implement async processing",
    CONTEXT_LENGTH_EXCEEDED: "Shorten prompts or summarize conversation history",
}
DEFAULT_PREVENTION_HINT = "Add comprehensive error handling and logging"


@dataclass(frozen=True)
class ErrorDetails:
    """
    Normalized view of a failure.

    Attributes:
        code: Classification code (NETWORK_ERROR, RATE_LIMIT_EXCEEDED,
              TIMEOUT_ERROR, HTTP_<status>, provider codes, UNKNOWN_ERROR)
        message: Error message
        recoverable: Whether retrying can plausibly help
        operation: Operation during which the error occurred
        status: HTTP status, when the error carried one
        error_type: Class name of the original exception
    """

    code: str
    message: str
    recoverable: bool
    operation: str | None = None
    status: int | None = None
    error_type: str | None = None
    timestamp: datetime = field(default_factory=datetime.now)

    @property
    def is_server_error(self) -> bool:
        return self.status is not None and self.status >= 500


def classify_error(error: Any, operation: str | None = None) -> ErrorDetails:
    """
    Classify an error.

    Rules are applied in order and later rules override earlier ones:
    an explicit ``code`` attribute, connection failures, an HTTP ``status``
    attribute, then "rate limit" / "timeout" in the message.
    """
    message = error_message(error)
    lowered = message.lower()

    code = UNKNOWN_ERROR
    explicit = getattr(error, "code", None)
    if isinstance(explicit, str) and explicit:
        code = explicit
    recoverable = code in RECOVERABLE_CODES

    if isinstance(error, ConnectionError) or "fetch" in lowered or "connection" in lowered:
        code = NETWORK_ERROR
        recoverable = True

    status = getattr(error, "status", None)
    if isinstance(status, int):
        code = f"HTTP_{status}"
        recoverable = status >= 500
    else:
        status = None

    if "rate limit" in lowered:
        code = RATE_LIMIT_EXCEEDED
        recoverable = True
    elif "timeout" in lowered or isinstance(error, (TimeoutError, asyncio.TimeoutError)):
        code = TIMEOUT_ERROR
        recoverable = True

    return ErrorDetails(
        code=code,
        message=message,
        recoverable=recoverable,
        operation=operation,
        status=status,
        error_type=type(error).__name__ if isinstance(error, BaseException) else None,
    )


def prevention_hint(code: str) -> str:
    return PREVENTION_HINTS.get(code, DEFAULT_PREVENTION_HINT)
