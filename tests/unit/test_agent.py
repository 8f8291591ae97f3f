"""
Unit Tests for the AdaptiveAgent pipeline

Tests the orchestrator with a mocked completion provider to verify stage
ordering, degradation paths, learning and memory writes, and session
bookkeeping without any network I/O.
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from adaptive_agent.core.domain.agent import (
    AdaptiveAgent,
    PipelineStage,
    StageStatus,
    caller_history,
    validate_request,
)
from adaptive_agent.core.domain.errors import ProviderError, RequestValidationError
from adaptive_agent.core.domain.models import AgentConfig, RequestContext
from adaptive_agent.core.memory.learning_store import LearningStore
from adaptive_agent.core.memory.session_memory import SessionMemory


@pytest.fixture
def mock_provider():
    """Mock CompletionProviderProtocol."""
    mock = AsyncMock()
    mock.complete = AsyncMock(return_value="Here is your answer")
    return mock


@pytest.fixture
def agent(mock_provider):
    """Create AdaptiveAgent with a mocked provider and no real sleeping."""
    return AdaptiveAgent(provider=mock_provider, sleep=AsyncMock())


def test_validate_request():
    """Test blank and non-string requests are rejected."""
    assert validate_request("hello") == "hello"
    with pytest.raises(RequestValidationError):
        validate_request("   ")
    with pytest.raises(RequestValidationError):
        validate_request(None)


@pytest.mark.asyncio
async def test_successful_request_runs_every_stage(agent, mock_provider):
    """Test a healthy request passes all stages and is scored."""
    result = await agent.process("Explain the build", {"session_id": "s1"})

    assert result.success is True
    assert result.response == "Here is your answer"
    assert result.actions == []
    assert list(result.metadata.stages) == [stage.value for stage in PipelineStage]
    assert set(result.metadata.stages.values()) == {StageStatus.SUCCESS.value}
    assert result.quality_report is not None
    assert result.metadata.quality_score == result.quality_report.score
    assert result.metadata.reasoning_steps > 0
    assert result.metadata.attempts == 1
    assert result.metadata.session_id == "s1"
    mock_provider.complete.assert_awaited_once()


@pytest.mark.asyncio
async def test_injected_empty_collaborators_are_kept(mock_provider):
    """Test empty injected stores are used rather than replaced by defaults."""
    store = LearningStore(capacity=5)
    memory = SessionMemory()
    agent = AdaptiveAgent(provider=mock_provider, learning_store=store, memory=memory)

    await agent.process("hello there", {"session_id": "s1"})

    assert agent.learning_store is store
    assert agent.memory is memory
    assert store.capacity == 5
    assert len(store) == 1
    assert len(memory.get_conversation_history("s1")) == 1


@pytest.mark.asyncio
async def test_learning_and_memory_written_once(agent):
    """Test one learning record and one memory entry per request."""
    await agent.process("Explain the build", RequestContext(session_id="s1"))

    records = agent.get_learning_data()
    assert len(records) == 1
    assert records[0].success is True
    assert records[0].request == "Explain the build"

    history = agent.memory.get_conversation_history("s1")
    assert len(history) == 1
    assert history[0].outcome.success is True
    assert "credentials" not in history[0].context


@pytest.mark.asyncio
async def test_enriched_history_reaches_prompt(agent, mock_provider):
    """Test stored and caller-supplied history both reach the executed prompt."""
    await agent.process("First question", {"session_id": "s1"})

    await agent.process(
        "Follow-up question",
        {
            "session_id": "s1",
            "conversation_history": [{"request": "EARLIER_Q", "response": "EARLIER_A"}, {"note": "x"}],
        },
    )

    prompt = mock_provider.complete.await_args.args[0]
    assert "User: First question\nAI: Here is your answer" in prompt
    assert "User: EARLIER_Q\nAI: EARLIER_A" in prompt
    assert prompt.index("First question") < prompt.index("EARLIER_Q")


def test_caller_history_conversion():
    """Test supplied turns are converted newest first and empty turns dropped."""
    entries = caller_history("s1", [{"request": "a"}, {}, {"request": "b", "response": "B"}])

    assert [(e.request, e.response) for e in entries] == [("b", "B"), ("a", "")]
    assert caller_history("s1", None) == []


@pytest.mark.asyncio
async def test_learning_disabled(mock_provider):
    """Test the learning stage is skipped when disabled."""
    agent = AdaptiveAgent(provider=mock_provider, config=AgentConfig(enable_learning=False))

    result = await agent.process("Explain the build")

    assert result.metadata.stages["learn"] == StageStatus.SKIPPED.value
    assert agent.get_learning_data() == []


@pytest.mark.asyncio
async def test_quality_checks_disabled(mock_provider):
    """Test pre and post checks are skipped when disabled."""
    agent = AdaptiveAgent(provider=mock_provider, config=AgentConfig(enable_quality_checks=False))

    result = await agent.process("Explain the build")

    assert result.success is True
    assert result.quality_report is None
    assert result.metadata.stages["pre_check"] == StageStatus.SKIPPED.value
    assert result.metadata.stages["post_check"] == StageStatus.SKIPPED.value


@pytest.mark.asyncio
async def test_invalid_request_never_raises(agent, mock_provider):
    """Test invalid input yields a failed result without touching the provider."""
    result = await agent.process("")

    assert result.success is False
    assert result.response.startswith("Invalid request:")
    assert agent.get_learning_data() == []
    mock_provider.complete.assert_not_awaited()


@pytest.mark.asyncio
async def test_exhausted_execution_still_learns(mock_provider):
    """Test provider exhaustion fails the request but keeps learning and memory."""
    mock_provider.complete.side_effect = ProviderError("service unavailable")
    agent = AdaptiveAgent(
        provider=mock_provider,
        config=AgentConfig(max_retries=1, enable_error_recovery=False),
        sleep=AsyncMock(),
    )

    result = await agent.process("Explain the build", {"session_id": "s1"})

    assert result.success is False
    assert result.response == "Failed after 2 attempts. Last error: service unavailable"
    assert result.metadata.attempts == 2
    assert result.metadata.stages["execute"] == StageStatus.FAILED.value
    assert result.metadata.stages["post_check"] == StageStatus.SKIPPED.value
    assert agent.get_learning_data()[0].success is False
    assert agent.memory.get_conversation_history("s1")[0].outcome.success is False


@pytest.mark.asyncio
async def test_planner_fallback_is_tagged(mock_provider):
    """Test a failing request analysis yields a tagged fallback stage."""
    agent = AdaptiveAgent(provider=mock_provider)
    agent.planner.analyze_request = MagicMock(side_effect=RuntimeError("analysis failed"))

    result = await agent.process("Explain the build")

    assert result.success is True
    assert result.metadata.stages["plan"] == StageStatus.FALLBACK.value
    assert result.metadata.reasoning_steps == 3


@pytest.mark.asyncio
async def test_fatal_stage_without_recovery(mock_provider):
    """Test an exception escaping a stage is reported, not raised."""
    agent = AdaptiveAgent(provider=mock_provider, config=AgentConfig(enable_error_recovery=False))
    agent.planner = MagicMock()
    agent.planner.create_workflow_plan.side_effect = RuntimeError("planner crashed")

    result = await agent.process("Explain the build")

    assert result.success is False
    assert result.response == "An error occurred: planner crashed"
    assert result.metadata.stages["plan"] == StageStatus.FATAL.value
    assert result.metadata.error_recovery_used is False


@pytest.mark.asyncio
async def test_fatal_stage_with_failed_recovery(mock_provider):
    """Test top-level recovery that finds no strategy reports the failure."""
    agent = AdaptiveAgent(provider=mock_provider)
    agent.planner = MagicMock()
    agent.planner.create_workflow_plan.side_effect = RuntimeError("planner crashed")

    result = await agent.process("Explain the build")

    assert result.success is False
    assert result.response == "Processing failed and recovery unsuccessful: planner crashed"
    assert result.metadata.error_recovery_used is True


@pytest.mark.asyncio
async def test_fatal_stage_with_successful_recovery(mock_provider):
    """Test top-level recovery can salvage the request through the fallback mode."""
    agent = AdaptiveAgent(provider=mock_provider, fallback_mode="chat")
    agent.planner = MagicMock()
    agent.planner.create_workflow_plan.side_effect = ConnectionError("connection lost")

    result = await agent.process("Explain the build", {"mode": "code"})

    assert result.success is True
    assert result.response == "Here is your answer"
    assert result.metadata.error_recovery_used is True
    assert result.adaptations[0].new_value == "chat"
    mock_provider.complete.assert_awaited_once_with("Explain the build", "chat", None)


class TestSessions:
    """Test suite for session lifecycle."""

    @pytest.mark.asyncio
    async def test_session_counters(self, agent, mock_provider):
        """Test started sessions count requests and successes."""
        agent.start_session("s1")
        await agent.process("first request")
        mock_provider.complete.side_effect = RuntimeError("boom")
        agent.update_config(max_retries=0, enable_error_recovery=False)
        await agent.process("second request")

        sessions = agent.get_active_sessions()
        assert len(sessions) == 1
        assert sessions[0]["id"] == "s1"
        assert sessions[0]["request_count"] == 2
        assert sessions[0]["success_count"] == 1
        assert sessions[0]["success_rate"] == 0.5

    @pytest.mark.asyncio
    async def test_start_session_sets_default(self, agent):
        """Test requests without a session id use the started session."""
        agent.start_session("s2")

        result = await agent.process("hello there")

        assert result.metadata.session_id == "s2"
        assert agent.get_config().session_id == "s2"

    @pytest.mark.asyncio
    async def test_end_session_clears_memory(self, agent):
        """Test ending a session drops it and its conversation history."""
        agent.start_session("s1")
        await agent.process("hello there")

        record = agent.end_session("s1")

        assert record.request_count == 1
        assert agent.get_active_sessions() == []
        assert agent.memory.get_conversation_history("s1") == []
        assert agent.end_session("unknown") is None

    @pytest.mark.asyncio
    async def test_unregistered_sessions_are_not_tracked(self, agent):
        """Test requests for unstarted sessions do not create session records."""
        await agent.process("hello there", {"session_id": "adhoc"})

        assert agent.get_active_sessions() == []


class TestConfiguration:
    """Test suite for configuration and introspection."""

    def test_update_config(self, agent):
        """Test updates are validated and applied."""
        config = agent.update_config(max_retries=5)

        assert config.max_retries == 5
        assert agent.execution.config.max_retries == 5
        with pytest.raises(ValueError):
            agent.update_config(unknown_field=True)
        with pytest.raises(ValueError):
            agent.update_config(max_retries=-1)

    def test_get_config_is_a_copy(self, agent):
        """Test callers cannot mutate the live configuration."""
        agent.get_config().max_retries = 9

        assert agent.config.max_retries == 3

    @pytest.mark.asyncio
    async def test_performance_stats_and_clear_learning(self, agent):
        """Test request timings are aggregated and learning can be cleared."""
        await agent.process("hello there")
        await agent.process("hello again")

        stats = agent.get_performance_stats()
        assert stats.total_count == 2
        assert stats.success_rate == 1.0

        agent.clear_learning_data()
        assert agent.get_learning_data() == []


class TestConcurrency:
    """Test suite for concurrent requests across sessions."""

    @pytest.mark.asyncio
    async def test_concurrent_sessions_stay_isolated_and_ordered(self, mock_provider):
        """Test interleaved requests keep per-session isolation and insertion order."""

        async def yielding_complete(prompt, mode, credentials):
            await asyncio.sleep(0)
            return "done"

        mock_provider.complete = AsyncMock(side_effect=yielding_complete)
        agent = AdaptiveAgent(provider=mock_provider, sleep=AsyncMock())
        requests = [(f"s{i % 2}", f"request {i}") for i in range(20)]

        results = await asyncio.gather(
            *(agent.process(text, {"session_id": session_id}) for session_id, text in requests)
        )

        assert all(result.success for result in results)
        assert len(agent.get_learning_data()) == 20
        for session_id in ("s0", "s1"):
            expected = [text for sid, text in requests if sid == session_id]
            entries = list(reversed(agent.memory.get_conversation_history(session_id)))
            records = agent.learning_store.get_session_records(session_id)

            assert sorted(entry.request for entry in entries) == sorted(expected)
            assert {entry.session_id for entry in entries} == {session_id}
            assert [entry.request for entry in entries] == [record.request for record in records]
            timestamps = [entry.timestamp for entry in entries]
            assert timestamps == sorted(timestamps)
