"""
Error Taxonomy for the Request-Processing Pipeline

Only two kinds of failure ever reach a caller: provider exhaustion
(RecoveryExhaustedError) and true top-level faults. Both are reported as a
failed AgentResult, never raised out of AdaptiveAgent.process(). Every other
error in this module is internal and degrades to a documented fallback.
"""

from typing import Any


class AgentError(Exception):
    """Base class for all pipeline errors."""


class RequestValidationError(AgentError):
    """Request is missing or malformed and must not enter the pipeline."""


class ProviderError(AgentError):
    """
    Completion provider call failed (transport, auth, quota, timeout).

    Attributes:
        code: Normalized error code used by error classification
              (e.g. RATE_LIMIT_EXCEEDED, TIMEOUT_ERROR, NETWORK_ERROR)
        status: Optional HTTP status reported by the provider
    """

    def __init__(self, message: str, code: str = "PROVIDER_ERROR", status: int | None = None):
        super().__init__(message)
        self.code = code
        self.status = status


class PlannerFallbackError(AgentError):
    """Planner could not build a plan; the fixed fallback plan is used."""


class PromptSynthesisFallbackError(AgentError):
    """Prompt synthesis failed; the raw request text is sent instead."""


class CheckExecutionError(AgentError):
    """A single quality check raised; the check counts as "no issue"."""

    def __init__(self, check_id: str, cause: BaseException):
        super().__init__(f"Quality check '{check_id}' failed: {cause}")
        self.check_id = check_id
        self.cause = cause


class RecoveryExhaustedError(AgentError):
    """All execution attempts and recovery strategies failed."""

    def __init__(self, attempts: int, last_error: BaseException | None):
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(
            f"Failed after {attempts} attempts. Last error: {error_message(last_error)}"
        )


def error_message(error: Any) -> str:
    """Return a printable message for any raised object."""
    if error is None:
        return "unknown error"
    if isinstance(error, BaseException):
        return str(error) or type(error).__name__
    return str(error)
