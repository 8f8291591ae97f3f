"""
Execution Core with Retry

Calls the completion provider with bounded retries and exponential backoff,
handing each failure to ErrorRecovery while attempts remain.

Per request, attempts are numbered 0..max_retries:
1. Call the provider. Success ends the run (recovery_used=False).
2. On failure, if recovery is enabled and attempts remain, run one recovery.
   A recovered result ends the run (recovery_used=True).
3. If attempts remain, sleep min(1000 * 2**attempt, 30000) ms and retry.
4. Otherwise fail with RecoveryExhaustedError.

Recovery is a side attempt: its provider call does not count as an attempt
and does not consume retry budget.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

import structlog

from adaptive_agent.core.domain.errors import ProviderError, RecoveryExhaustedError
from adaptive_agent.core.domain.models import Adaptation, AgentConfig, RequestContext
from adaptive_agent.core.interfaces.llm import CompletionProviderProtocol
from adaptive_agent.core.recovery.error_recovery import ErrorRecovery
from adaptive_agent.core.recovery.strategies import InvokeFunction, RecoveryContext
from adaptive_agent.observability.metrics import PerformanceMonitor

BASE_DELAY_MS = 1000
MAX_DELAY_MS = 30_000

SleepFunction = Callable[[float], Awaitable[Any]]


def backoff_delay_ms(attempt: int) -> int:
    """Delay before the retry that follows ``attempt`` (0-based)."""
    return min(BASE_DELAY_MS * 2**attempt, MAX_DELAY_MS)


@dataclass
class ExecutionOutcome:
    """Terminal state of one execute() call."""

    success: bool
    response: str
    attempts: int
    recovery_used: bool = False
    adaptations: list[Adaptation] = field(default_factory=list)
    strategy_used: str | None = None
    error: BaseException | None = None


class ExecutionCore:
    """
    Runs the retry state machine around the provider.

    Args:
        provider: Completion provider
        recovery: Error recovery coordinator
        config: Agent configuration; read on every call so updates apply
                to the next request
        monitor: Performance monitor for provider call timings
        sleep: Awaitable sleep taking seconds (replaced in tests)
        fallback_mode: Provider mode offered to the provider-switch strategy
    """

    def __init__(
        self,
        provider: CompletionProviderProtocol,
        recovery: ErrorRecovery,
        config: AgentConfig,
        monitor: PerformanceMonitor | None = None,
        sleep: SleepFunction = asyncio.sleep,
        fallback_mode: str | None = None,
    ):
        self.provider = provider
        self.recovery = recovery
        self.config = config
        self.monitor = monitor if monitor is not None else PerformanceMonitor()
        self.fallback_mode = fallback_mode
        self._sleep = sleep
        self.logger = structlog.get_logger().bind(component="execution_core")

    async def execute(
        self,
        prompt: str,
        context: RequestContext,
        operation_id: str,
        request: str | None = None,
    ) -> ExecutionOutcome:
        """
        Execute ``prompt`` with retries.

        Args:
            prompt: Synthesized prompt
            context: Request context (mode and credentials are used)
            operation_id: Id used in logs and metrics
            request: Raw request text, used by prompt simplification

        Returns:
            ExecutionOutcome. Never raises for provider failures; exhaustion
            is reported as ``success=False`` with a RecoveryExhaustedError.
        """
        max_retries = self.config.max_retries
        mode = context.mode
        last_error: BaseException | None = None
        attempts = 0

        for attempt in range(max_retries + 1):
            attempts += 1
            try:
                response = await self._call_provider(prompt, mode, context.credentials, operation_id)
                self.logger.info(
                    "execution_succeeded",
                    operation_id=operation_id,
                    attempts=attempts,
                )
                return ExecutionOutcome(success=True, response=response, attempts=attempts)
            except Exception as e:
                last_error = e
                self.logger.warning(
                    "execution_attempt_failed",
                    operation_id=operation_id,
                    attempt=attempt,
                    max_retries=max_retries,
                    error=str(e),
                    error_type=type(e).__name__,
                )

            has_attempts_left = attempt < max_retries
            if self.config.enable_error_recovery and has_attempts_left:
                outcome = await self.recovery.recover(
                    last_error,
                    RecoveryContext(
                        prompt=prompt,
                        request=request if request is not None else prompt,
                        mode=mode,
                        invoke=self.invoker(context, operation_id),
                        operation_id=operation_id,
                        adaptation_enabled=self.config.adaptation_enabled,
                        fallback_mode=self.fallback_mode,
                    ),
                )
                if outcome.recovered:
                    return ExecutionOutcome(
                        success=True,
                        response=outcome.result or "",
                        attempts=attempts,
                        recovery_used=True,
                        adaptations=list(outcome.adaptations),
                        strategy_used=outcome.strategy_used,
                    )

            if has_attempts_left:
                delay_ms = backoff_delay_ms(attempt)
                self.logger.debug("execution_backoff", operation_id=operation_id, delay_ms=delay_ms)
                await self._sleep(delay_ms / 1000)

        failure = RecoveryExhaustedError(attempts, last_error)
        self.logger.error(
            "execution_exhausted",
            operation_id=operation_id,
            attempts=attempts,
            error=str(last_error),
        )
        return ExecutionOutcome(
            success=False,
            response=str(failure),
            attempts=attempts,
            error=failure,
        )

    async def _call_provider(
        self,
        prompt: str,
        mode: str,
        credentials: dict[str, Any] | None,
        operation_id: str,
    ) -> str:
        timeout_ms = self.config.timeout_ms
        async with self.monitor.time_operation(
            "provider_call", "network", operation_id=operation_id, mode=mode
        ):
            try:
                response = await asyncio.wait_for(
                    self.provider.complete(prompt, mode, credentials),
                    timeout=timeout_ms / 1000,
                )
            except asyncio.TimeoutError as e:
                raise ProviderError(
                    f"Provider call timed out after {timeout_ms}ms", code="TIMEOUT_ERROR"
                ) from e
        if not isinstance(response, str):
            raise ProviderError(f"Provider returned {type(response).__name__}, expected text")
        return response

    def invoker(self, context: RequestContext, operation_id: str) -> InvokeFunction:
        """Return a single-call provider invoker for recovery strategies."""

        async def invoke(prompt: str, mode: str) -> str:
            return await self._call_provider(prompt, mode, context.credentials, operation_id)

        return invoke
