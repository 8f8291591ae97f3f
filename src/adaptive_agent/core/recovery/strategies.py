"""
Recovery strategies.

A strategy inspects a classified error and either declines (``applies_to``
returns False) or makes one salvage attempt through the invoke callable in
the RecoveryContext. Strategies that change the prompt or the provider mode
decline when adaptation is disabled.
"""

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

from adaptive_agent.core.domain.models import Adaptation, RecoveryOutcome
from adaptive_agent.core.recovery.classifier import (
    CONTEXT_LENGTH_EXCEEDED,
    NETWORK_ERROR,
    RATE_LIMIT_EXCEEDED,
    TIMEOUT_ERROR,
    ErrorDetails,
)

InvokeFunction = Callable[[str, str], Awaitable[str]]
SleepFunction = Callable[[float], Awaitable[Any]]


@dataclass
class RecoveryContext:
    """
    What a strategy may use to retry a failed call.

    Attributes:
        prompt: Prompt that failed
        request: Raw user request (the unoptimized prompt)
        mode: Provider mode used for the failed call
        invoke: ``(prompt, mode) -> text``; calls the provider once
        operation_id: Operation being recovered
        adaptation_enabled: Whether prompt/provider changes are allowed
        fallback_mode: Alternative provider mode, if one is configured
    """

    prompt: str
    request: str
    mode: str
    invoke: InvokeFunction
    operation_id: str | None = None
    adaptation_enabled: bool = True
    fallback_mode: str | None = None


class RecoveryStrategy(ABC):
    """Base class for recovery strategies."""

    strategy_id: str = ""
    name: str = ""
    description: str = ""
    handles: frozenset[str] = frozenset()
    requires_adaptation: bool = False

    def applies_to(self, details: ErrorDetails, context: RecoveryContext) -> bool:
        if self.requires_adaptation and not context.adaptation_enabled:
            return False
        return details.code in self.handles

    @abstractmethod
    async def attempt(self, details: ErrorDetails, context: RecoveryContext) -> RecoveryOutcome:
        """Make one salvage attempt; raise or return a failed outcome on failure."""


class RateLimitCooldownStrategy(RecoveryStrategy):
    """Wait for the provider's rate limit window, then re-send the same prompt."""

    strategy_id = "rate_limit_cooldown"
    name = "Rate Limit Cooldown"
    description = "Wait for the rate limit to reset before retrying"
    handles = frozenset({RATE_LIMIT_EXCEEDED})

    def __init__(self, cooldown_seconds: float = 60.0, sleep: SleepFunction = asyncio.sleep):
        self.cooldown_seconds = cooldown_seconds
        self._sleep = sleep

    async def attempt(self, details: ErrorDetails, context: RecoveryContext) -> RecoveryOutcome:
        await self._sleep(self.cooldown_seconds)
        result = await context.invoke(context.prompt, context.mode)
        return RecoveryOutcome(
            recovered=True,
            result=result,
            strategy_used=self.strategy_id,
            adaptations=(
                Adaptation(
                    kind="timing",
                    target="cooldown",
                    new_value=self.cooldown_seconds,
                    rationale="Rate limit exceeded; waited for the limit to reset",
                ),
            ),
        )


class PromptSimplificationStrategy(RecoveryStrategy):
    """Re-send the raw request instead of the optimized prompt."""

    strategy_id = "prompt_simplification"
    name = "Prompt Simplification"
    description = "Retry with the unoptimized request when the prompt is too heavy"
    handles = frozenset({TIMEOUT_ERROR, CONTEXT_LENGTH_EXCEEDED})
    requires_adaptation = True

    def applies_to(self, details: ErrorDetails, context: RecoveryContext) -> bool:
        return super().applies_to(details, context) and context.request != context.prompt

    async def attempt(self, details: ErrorDetails, context: RecoveryContext) -> RecoveryOutcome:
        result = await context.invoke(context.request, context.mode)
        return RecoveryOutcome(
            recovered=True,
            result=result,
            strategy_used=self.strategy_id,
            adaptations=(
                Adaptation(
                    kind="prompt",
                    target="prompt",
                    old_value=len(context.prompt),
                    new_value=len(context.request),
                    rationale=f"{details.code}: replaced optimized prompt with the raw request",
                ),
            ),
        )


class ProviderSwitchStrategy(RecoveryStrategy):
    """Re-send the prompt through the fallback provider mode."""

    strategy_id = "provider_switch"
    name = "Provider Switch"
    description = "Retry through an alternative provider mode on transport or server errors"
    handles = frozenset({NETWORK_ERROR})
    requires_adaptation = True

    def applies_to(self, details: ErrorDetails, context: RecoveryContext) -> bool:
        if not context.adaptation_enabled:
            return False
        if not context.fallback_mode or context.fallback_mode == context.mode:
            return False
        return details.code in self.handles or details.is_server_error

    async def attempt(self, details: ErrorDetails, context: RecoveryContext) -> RecoveryOutcome:
        fallback_mode = context.fallback_mode or context.mode
        result = await context.invoke(context.prompt, fallback_mode)
        return RecoveryOutcome(
            recovered=True,
            result=result,
            strategy_used=self.strategy_id,
            adaptations=(
                Adaptation(
                    kind="provider",
                    target="mode",
                    old_value=context.mode,
                    new_value=fallback_mode,
                    rationale=f"{details.code}: switched to fallback provider mode",
                ),
            ),
        )


def default_strategies(
    cooldown_seconds: float = 60.0, sleep: SleepFunction = asyncio.sleep
) -> list[RecoveryStrategy]:
    """Built-in strategies in registration order."""
    return [
        RateLimitCooldownStrategy(cooldown_seconds=cooldown_seconds, sleep=sleep),
        PromptSimplificationStrategy(),
        ProviderSwitchStrategy(),
    ]
