"""
Error Recovery

Classifies a failure, picks the first registered strategy that applies and
runs it once. Every invocation updates per-strategy statistics and the
failure-pattern table so operators can see which errors recur and which
strategies actually fix them.
"""

import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

import structlog

from adaptive_agent.core.domain.buffers import RingBuffer
from adaptive_agent.core.domain.models import RecoveryOutcome
from adaptive_agent.core.recovery.classifier import ErrorDetails, classify_error, prevention_hint
from adaptive_agent.core.recovery.strategies import (
    RecoveryContext,
    RecoveryStrategy,
    default_strategies,
)
from adaptive_agent.observability.metrics import PerformanceMonitor

DEFAULT_ERROR_LOG_SIZE = 100


@dataclass
class FailurePattern:
    """Recurring failure keyed by error code and operation."""

    pattern_id: str
    frequency: int = 0
    last_occurred: datetime = field(default_factory=datetime.now)
    proven_solutions: list[str] = field(default_factory=list)
    prevention_measures: list[str] = field(default_factory=list)


@dataclass
class StrategyStats:
    attempts: int = 0
    successes: int = 0

    @property
    def success_rate(self) -> float:
        return self.successes / self.attempts if self.attempts else 0.0


class ErrorRecovery:
    """
    Strategy-based recovery for failed provider calls.

    Exactly one strategy runs per recover() call: the first, in registration
    order, whose ``applies_to`` accepts the classified error.
    """

    def __init__(
        self,
        strategies: list[RecoveryStrategy] | None = None,
        monitor: PerformanceMonitor | None = None,
        error_log_size: int = DEFAULT_ERROR_LOG_SIZE,
    ):
        self._strategies: list[RecoveryStrategy] = []
        self._stats: dict[str, StrategyStats] = {}
        self._patterns: dict[str, FailurePattern] = {}
        self._error_log: RingBuffer[ErrorDetails] = RingBuffer(error_log_size)
        self._lock = threading.Lock()
        self.monitor = monitor if monitor is not None else PerformanceMonitor()
        self.logger = structlog.get_logger().bind(component="error_recovery")

        for strategy in default_strategies() if strategies is None else strategies:
            self.add_strategy(strategy)

    async def recover(self, error: BaseException, context: RecoveryContext) -> RecoveryOutcome:
        """
        Attempt to salvage a failed call.

        Never raises: a strategy that raises produces a failed outcome.

        Args:
            error: The error raised by the failed call
            context: Prompt, mode and invoke callable for the retry

        Returns:
            RecoveryOutcome; ``result`` is set only when recovered.
        """
        details = classify_error(error, operation=context.operation_id)
        self._error_log.append(details)

        strategy = self.select_strategy(details, context)
        if strategy is None:
            self.logger.warning(
                "no_recovery_strategy",
                operation_id=context.operation_id,
                error_code=details.code,
            )
            self._update_failure_pattern(details, recovered=False, strategy_id=None)
            return RecoveryOutcome.failed()

        metric_id = self.monitor.start_timing(
            "error_recovery", error_code=details.code, strategy=strategy.strategy_id
        )
        try:
            outcome = await strategy.attempt(details, context)
        except Exception as e:
            self.logger.warning(
                "recovery_strategy_failed",
                operation_id=context.operation_id,
                strategy=strategy.strategy_id,
                error_code=details.code,
                error=str(e),
            )
            outcome = RecoveryOutcome.failed(strategy.strategy_id)
        finally:
            self.monitor.end_timing(metric_id)

        self._record_attempt(strategy.strategy_id, outcome.recovered)
        self._update_failure_pattern(details, outcome.recovered, strategy.strategy_id)

        self.logger.info(
            "error_recovery_completed",
            operation_id=context.operation_id,
            strategy=strategy.strategy_id,
            recovered=outcome.recovered,
            adaptations=len(outcome.adaptations),
        )
        return outcome

    def select_strategy(
        self, details: ErrorDetails, context: RecoveryContext
    ) -> RecoveryStrategy | None:
        for strategy in self.get_strategies():
            if strategy.applies_to(details, context):
                return strategy
        return None

    def add_strategy(self, strategy: RecoveryStrategy) -> None:
        with self._lock:
            self._strategies = [s for s in self._strategies if s.strategy_id != strategy.strategy_id]
            self._strategies.append(strategy)
            self._stats.setdefault(strategy.strategy_id, StrategyStats())
        self.logger.debug("recovery_strategy_added", strategy=strategy.strategy_id)

    def remove_strategy(self, strategy_id: str) -> None:
        with self._lock:
            self._strategies = [s for s in self._strategies if s.strategy_id != strategy_id]

    def get_strategies(self) -> list[RecoveryStrategy]:
        with self._lock:
            return list(self._strategies)

    def get_strategy_stats(self) -> dict[str, dict[str, Any]]:
        with self._lock:
            return {
                strategy_id: {
                    "attempts": stats.attempts,
                    "successes": stats.successes,
                    "success_rate": stats.success_rate,
                }
                for strategy_id, stats in self._stats.items()
            }

    def get_failure_patterns(self) -> list[FailurePattern]:
        with self._lock:
            return list(self._patterns.values())

    def get_error_log(self, limit: int = 20) -> list[ErrorDetails]:
        """Return the newest classified errors, most recent first."""
        return list(reversed(self._error_log.latest(limit)))

    def _record_attempt(self, strategy_id: str, recovered: bool) -> None:
        with self._lock:
            stats = self._stats.setdefault(strategy_id, StrategyStats())
            stats.attempts += 1
            if recovered:
                stats.successes += 1

    def _update_failure_pattern(
        self, details: ErrorDetails, recovered: bool, strategy_id: str | None
    ) -> None:
        key = f"{details.code}_{details.operation or 'unknown'}"
        with self._lock:
            pattern = self._patterns.get(key)
            if pattern is None:
                pattern = FailurePattern(pattern_id=key)
                self._patterns[key] = pattern
            pattern.frequency += 1
            pattern.last_occurred = datetime.now()

            if recovered and strategy_id and strategy_id not in pattern.proven_solutions:
                pattern.proven_solutions.append(strategy_id)
            elif not recovered:
                hint = prevention_hint(details.code)
                if hint not in pattern.prevention_measures:
                    pattern.prevention_measures.append(hint)
