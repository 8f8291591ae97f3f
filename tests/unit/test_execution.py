"""
Unit tests for the execution core.

The provider is an AsyncMock and the backoff sleep is replaced so no test
waits in real time.
"""

import asyncio
from unittest.mock import AsyncMock

import pytest

from adaptive_agent.core.domain.errors import ProviderError, RecoveryExhaustedError
from adaptive_agent.core.domain.execution import ExecutionCore, backoff_delay_ms
from adaptive_agent.core.domain.models import AgentConfig, RequestContext
from adaptive_agent.core.recovery.error_recovery import ErrorRecovery
from adaptive_agent.core.recovery.strategies import default_strategies


@pytest.fixture
def provider():
    mock = AsyncMock()
    mock.complete = AsyncMock(return_value="done")
    return mock


@pytest.fixture
def sleep():
    return AsyncMock()


def make_core(provider, sleep, fallback_mode=None, **config) -> ExecutionCore:
    return ExecutionCore(
        provider=provider,
        recovery=ErrorRecovery(strategies=default_strategies(sleep=AsyncMock())),
        config=AgentConfig(**config),
        sleep=sleep,
        fallback_mode=fallback_mode,
    )


@pytest.mark.parametrize(
    "attempt,expected",
    [(0, 1000), (1, 2000), (2, 4000), (4, 16000), (5, 30000), (10, 30000)],
)
def test_backoff_delay_is_exponential_and_capped(attempt, expected):
    """Test backoff doubles per attempt and caps at 30s."""
    assert backoff_delay_ms(attempt) == expected


@pytest.mark.asyncio
async def test_first_attempt_success(provider, sleep):
    """Test a healthy provider is called once with the context's mode."""
    core = make_core(provider, sleep)

    outcome = await core.execute("prompt", RequestContext(mode="chat"), "op_1")

    assert outcome.success is True
    assert outcome.response == "done"
    assert outcome.attempts == 1
    assert outcome.recovery_used is False
    provider.complete.assert_awaited_once_with("prompt", "chat", None)
    sleep.assert_not_awaited()


@pytest.mark.asyncio
async def test_exhaustion_makes_max_retries_plus_one_attempts(provider, sleep):
    """Test a provider that always fails is called max_retries + 1 times."""
    provider.complete.side_effect = ProviderError("service unavailable")
    core = make_core(provider, sleep, max_retries=2, enable_error_recovery=False)

    outcome = await core.execute("prompt", RequestContext(), "op_1")

    assert outcome.success is False
    assert outcome.attempts == 3
    assert provider.complete.await_count == 3
    assert outcome.response == "Failed after 3 attempts. Last error: service unavailable"
    assert isinstance(outcome.error, RecoveryExhaustedError)
    assert [call.args[0] for call in sleep.await_args_list] == [1.0, 2.0]


@pytest.mark.asyncio
async def test_transient_failure_then_success(provider, sleep):
    """Test one failure followed by success takes two attempts without recovery."""
    provider.complete.side_effect = [ProviderError("boom"), "ok"]
    core = make_core(provider, sleep)

    outcome = await core.execute("prompt", RequestContext(), "op_1")

    assert outcome.success is True
    assert outcome.response == "ok"
    assert outcome.attempts == 2
    assert outcome.recovery_used is False
    sleep.assert_awaited_once_with(1.0)


@pytest.mark.asyncio
async def test_recovery_result_ends_the_run(provider, sleep):
    """Test a recovered result is returned with recovery_used set."""
    provider.complete.side_effect = [ConnectionError("connection reset"), "from fallback"]
    core = make_core(provider, sleep, fallback_mode="chat")

    outcome = await core.execute("prompt", RequestContext(mode="code"), "op_1")

    assert outcome.success is True
    assert outcome.response == "from fallback"
    assert outcome.attempts == 1
    assert outcome.recovery_used is True
    assert outcome.strategy_used == "provider_switch"
    assert outcome.adaptations[0].new_value == "chat"
    assert provider.complete.await_args_list[1].args[:2] == ("prompt", "chat")


@pytest.mark.asyncio
async def test_no_recovery_on_last_attempt(provider, sleep):
    """Test recovery is not attempted once no attempts remain."""
    provider.complete.side_effect = ConnectionError("connection reset")
    core = make_core(provider, sleep, fallback_mode="chat", max_retries=0)

    outcome = await core.execute("prompt", RequestContext(), "op_1")

    assert outcome.success is False
    assert provider.complete.await_count == 1


@pytest.mark.asyncio
async def test_provider_call_is_bounded_by_timeout(sleep):
    """Test a hanging provider fails with a timeout error."""

    class SlowProvider:
        async def complete(self, prompt, mode, credentials=None):
            await asyncio.sleep(5)
            return "late"

    core = make_core(SlowProvider(), sleep, timeout_ms=10, max_retries=0)

    outcome = await core.execute("prompt", RequestContext(), "op_1")

    assert outcome.success is False
    assert outcome.error.last_error.code == "TIMEOUT_ERROR"


@pytest.mark.asyncio
async def test_non_text_response_is_a_failure(provider, sleep):
    """Test a provider returning a non-string counts as a failed attempt."""
    provider.complete.return_value = {"content": "x"}
    core = make_core(provider, sleep, max_retries=0)

    outcome = await core.execute("prompt", RequestContext(), "op_1")

    assert outcome.success is False
    assert isinstance(outcome.error.last_error, ProviderError)


@pytest.mark.asyncio
async def test_credentials_are_passed_through(provider, sleep):
    """Test opaque credentials reach the provider untouched."""
    core = make_core(provider, sleep)
    credentials = {"api_key": "secret"}

    await core.execute("prompt", RequestContext(credentials=credentials), "op_1")

    provider.complete.assert_awaited_once_with("prompt", "code", credentials)
