"""
Unit tests for error classification and recovery strategies.

Tests verify:
- Classification rules and their precedence
- First-applicable strategy selection in registration order
- Adaptation gating and failure handling
- Strategy statistics, failure patterns and the error log
"""

from unittest.mock import AsyncMock

import pytest

from adaptive_agent.core.domain.errors import ProviderError
from adaptive_agent.core.recovery.classifier import (
    CONTEXT_LENGTH_EXCEEDED,
    NETWORK_ERROR,
    RATE_LIMIT_EXCEEDED,
    TIMEOUT_ERROR,
    UNKNOWN_ERROR,
    classify_error,
    prevention_hint,
)
from adaptive_agent.core.recovery.error_recovery import ErrorRecovery
from adaptive_agent.core.recovery.strategies import (
    PromptSimplificationStrategy,
    ProviderSwitchStrategy,
    RateLimitCooldownStrategy,
    RecoveryContext,
    default_strategies,
)


def make_context(invoke=None, **overrides) -> RecoveryContext:
    values = {
        "prompt": "optimized prompt for: build an app",
        "request": "build an app",
        "mode": "code",
        "invoke": invoke or AsyncMock(return_value="recovered text"),
        "operation_id": "agent_test",
        "adaptation_enabled": True,
        "fallback_mode": "chat",
    }
    values.update(overrides)
    return RecoveryContext(**values)


@pytest.fixture
def no_sleep():
    return AsyncMock()


@pytest.fixture
def recovery(no_sleep):
    return ErrorRecovery(strategies=default_strategies(cooldown_seconds=60, sleep=no_sleep))


class TestClassifier:
    """Test suite for classify_error."""

    def test_explicit_code(self):
        """Test an explicit code attribute is used."""
        details = classify_error(ProviderError("quota", code=RATE_LIMIT_EXCEEDED))
        assert details.code == RATE_LIMIT_EXCEEDED
        assert details.recoverable is True

    def test_connection_errors(self):
        """Test connection failures classify as network errors."""
        assert classify_error(ConnectionError("reset")).code == NETWORK_ERROR
        assert classify_error(RuntimeError("failed to fetch")).code == NETWORK_ERROR

    def test_http_status(self):
        """Test HTTP status codes and server-error recoverability."""
        server = classify_error(ProviderError("bad gateway", status=502))
        client = classify_error(ProviderError("bad request", status=400))

        assert server.code == "HTTP_502"
        assert server.recoverable is True
        assert server.is_server_error is True
        assert client.code == "HTTP_400"
        assert client.recoverable is False

    def test_message_rules_override(self):
        """Test rate-limit and timeout messages take precedence."""
        assert classify_error(ProviderError("Rate limit hit", status=429)).code == RATE_LIMIT_EXCEEDED
        assert classify_error(TimeoutError()).code == TIMEOUT_ERROR
        assert classify_error(RuntimeError("request timeout")).code == TIMEOUT_ERROR

    def test_unknown(self):
        """Test anything else is unknown and unrecoverable."""
        details = classify_error(RuntimeError("boom"))
        assert details.code == UNKNOWN_ERROR
        assert details.recoverable is False
        assert details.error_type == "RuntimeError"

    def test_non_exception_values(self):
        """Test arbitrary raised values are classified by their string form."""
        assert classify_error("connection refused").code == NETWORK_ERROR

    def test_prevention_hint(self):
        """Test hints exist for known codes and fall back otherwise."""
        assert prevention_hint(RATE_LIMIT_EXCEEDED) == "Implement request throttling and queuing"
        assert prevention_hint("HTTP_418") == "Add comprehensive error handling and logging"


class TestStrategies:
    """Test suite for built-in strategies."""

    @pytest.mark.asyncio
    async def test_rate_limit_cooldown_sleeps_then_retries(self, no_sleep):
        """Test cooldown waits and re-sends the same prompt and mode."""
        strategy = RateLimitCooldownStrategy(cooldown_seconds=60, sleep=no_sleep)
        context = make_context()

        outcome = await strategy.attempt(classify_error(ProviderError("x", code=RATE_LIMIT_EXCEEDED)), context)

        no_sleep.assert_awaited_once_with(60)
        context.invoke.assert_awaited_once_with(context.prompt, "code")
        assert outcome.recovered is True
        assert outcome.adaptations[0].kind == "timing"

    @pytest.mark.asyncio
    async def test_prompt_simplification_uses_raw_request(self):
        """Test simplification re-sends the raw request."""
        strategy = PromptSimplificationStrategy()
        context = make_context()
        details = classify_error(ProviderError("too long", code=CONTEXT_LENGTH_EXCEEDED))

        assert strategy.applies_to(details, context)
        outcome = await strategy.attempt(details, context)

        context.invoke.assert_awaited_once_with("build an app", "code")
        assert outcome.adaptations[0].kind == "prompt"

    def test_prompt_simplification_declines_when_prompt_is_raw(self):
        """Test simplification is pointless when the prompt is the request."""
        strategy = PromptSimplificationStrategy()
        context = make_context(prompt="build an app")
        details = classify_error(ProviderError("slow", code=TIMEOUT_ERROR))

        assert not strategy.applies_to(details, context)

    def test_provider_switch_requires_distinct_fallback(self):
        """Test provider switch needs a fallback mode different from the current one."""
        strategy = ProviderSwitchStrategy()
        details = classify_error(ConnectionError("down"))

        assert strategy.applies_to(details, make_context())
        assert not strategy.applies_to(details, make_context(fallback_mode=None))
        assert not strategy.applies_to(details, make_context(fallback_mode="code"))

    def test_provider_switch_handles_server_errors(self):
        """Test 5xx responses trigger a provider switch."""
        strategy = ProviderSwitchStrategy()
        assert strategy.applies_to(classify_error(ProviderError("oops", status=503)), make_context())
        assert not strategy.applies_to(classify_error(ProviderError("bad", status=400)), make_context())

    def test_adaptation_disabled_blocks_mutating_strategies(self):
        """Test prompt and provider strategies decline when adaptation is off."""
        context = make_context(adaptation_enabled=False)

        assert not PromptSimplificationStrategy().applies_to(
            classify_error(ProviderError("x", code=TIMEOUT_ERROR)), context
        )
        assert not ProviderSwitchStrategy().applies_to(classify_error(ConnectionError("x")), context)
        assert RateLimitCooldownStrategy().applies_to(
            classify_error(ProviderError("x", code=RATE_LIMIT_EXCEEDED)), context
        )


class TestErrorRecovery:
    """Test suite for ErrorRecovery."""

    @pytest.mark.asyncio
    async def test_no_applicable_strategy(self, recovery):
        """Test unknown errors are not recovered and nothing is invoked."""
        context = make_context()

        outcome = await recovery.recover(RuntimeError("boom"), context)

        assert outcome.recovered is False
        assert outcome.result is None
        context.invoke.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_first_applicable_strategy_runs(self, recovery):
        """Test exactly one strategy runs and is reported."""
        context = make_context()

        outcome = await recovery.recover(ConnectionError("reset"), context)

        assert outcome.recovered is True
        assert outcome.result == "recovered text"
        assert outcome.strategy_used == "provider_switch"
        context.invoke.assert_awaited_once_with(context.prompt, "chat")

    @pytest.mark.asyncio
    async def test_strategy_failure_is_contained(self, recovery):
        """Test a raising strategy yields a failed outcome instead of an exception."""
        context = make_context(invoke=AsyncMock(side_effect=ProviderError("still down")))

        outcome = await recovery.recover(ConnectionError("reset"), context)

        assert outcome.recovered is False
        assert outcome.strategy_used == "provider_switch"
        stats = recovery.get_strategy_stats()["provider_switch"]
        assert stats["attempts"] == 1
        assert stats["successes"] == 0

    @pytest.mark.asyncio
    async def test_failure_patterns_and_error_log(self, recovery):
        """Test patterns count occurrences and record solutions or prevention hints."""
        await recovery.recover(ConnectionError("reset"), make_context())
        await recovery.recover(RuntimeError("boom"), make_context())

        patterns = {p.pattern_id: p for p in recovery.get_failure_patterns()}
        assert patterns["NETWORK_ERROR_agent_test"].proven_solutions == ["provider_switch"]
        assert patterns["UNKNOWN_ERROR_agent_test"].prevention_measures == [
            "Add comprehensive error handling and logging"
        ]
        assert [d.code for d in recovery.get_error_log()] == [UNKNOWN_ERROR, NETWORK_ERROR]

    def test_add_strategy_replaces_same_id(self, recovery):
        """Test re-registering a strategy id replaces it at the end."""
        recovery.add_strategy(RateLimitCooldownStrategy(cooldown_seconds=1))

        ids = [s.strategy_id for s in recovery.get_strategies()]
        assert ids == ["prompt_simplification", "provider_switch", "rate_limit_cooldown"]

        recovery.remove_strategy("provider_switch")
        assert "provider_switch" not in [s.strategy_id for s in recovery.get_strategies()]
