"""
Unit tests for the ReasoningEngine planner.

Tests verify:
- Keyword analysis (type, complexity, requirements, constraints)
- Step layout for simple and complex requests
- Fallback plan when memory access fails
- Active plan registry
"""

from unittest.mock import MagicMock

import pytest

from adaptive_agent.core.domain.models import LearningInsights
from adaptive_agent.core.domain.planner import (
    ReasoningEngine,
    StepKind,
    WorkflowPlan,
    calculate_complexity,
    determine_request_type,
    extract_constraints,
    extract_requirements,
    generate_plan_name,
    success_probability,
)
from adaptive_agent.core.memory.session_memory import SessionMemory


@pytest.fixture
def planner():
    return ReasoningEngine(SessionMemory())


class TestRequestAnalysis:
    """Test suite for keyword analysis helpers."""

    @pytest.mark.parametrize(
        "request_text,expected",
        [
            ("Fix the login bug", "bugfix"),
            ("Refactor the payment module", "refactor"),
            ("Write a README", "documentation"),
            ("Install the toolchain", "setup"),
            ("Add a dark mode toggle", "feature"),
        ],
    )
    def test_request_type(self, request_text, expected):
        """Test request type detection from keywords."""
        assert determine_request_type(request_text) == expected

    def test_complexity_from_keywords(self):
        """Test complexity grows with keywords and stays within 1..10."""
        assert calculate_complexity("Add a button") == 1
        assert calculate_complexity("Integrate multiple complex services") == 4
        assert calculate_complexity("x" * 5000 + " multiple complex advanced integrate optimize") == 9

    def test_requirements_and_constraints(self):
        """Test sentences with requirement markers and constraint keywords."""
        request = "Build a quick simple API. It must validate input. Nice to have docs."

        assert extract_requirements(request) == ["It must validate input"]
        assert extract_constraints(request) == ["Time-sensitive request", "Keep implementation simple"]
        assert extract_requirements("Add a button") == ["Execute user request"]

    def test_plan_name_truncates(self):
        """Test plan names keep the first five words."""
        assert generate_plan_name("one two three four five six") == "Plan: one two three four five..."
        assert generate_plan_name("short request") == "Plan: short request"

    def test_success_probability_bounds(self):
        """Test probability falls with complexity and rises with successful patterns."""
        assert success_probability(1, LearningInsights()) == pytest.approx(0.8)
        assert success_probability(1, LearningInsights(successful_patterns=["python"])) == pytest.approx(0.9)
        assert success_probability(10, LearningInsights()) == pytest.approx(0.35)


class TestReasoningEngine:
    """Test suite for plan creation."""

    def test_simple_feature_plan(self, planner):
        """Test a simple feature gets analyze, plan, execute, validate, adapt."""
        plan = planner.create_workflow_plan("s1", "Add a dark mode toggle")

        assert plan.step_ids == ["analyze", "plan", "execute", "validate", "adapt"]
        assert plan.is_fallback is False
        assert plan.request_type == "feature"
        assert plan.estimated_duration == 65

    def test_bugfix_skips_validation(self, planner):
        """Test simple non-feature requests have no validation step."""
        plan = planner.create_workflow_plan("s1", "Fix the login bug")

        assert plan.step_ids == ["analyze", "plan", "execute", "adapt"]

    def test_complex_request_adds_research(self, planner):
        """Test complex requests add a research step before execution."""
        plan = planner.create_workflow_plan(
            "s1", "Integrate multiple complex advanced services and optimize throughput " + "x" * 400
        )

        assert "research" in plan.step_ids
        execute = next(step for step in plan.steps if step.step_id == "execute")
        assert execute.dependencies == ("research",)
        assert execute.kind is StepKind.EXECUTION

    def test_memory_failure_yields_fallback_plan(self):
        """Test planning degrades to the fixed three-step plan."""
        memory = MagicMock(spec=SessionMemory)
        memory.get_learning_insights.side_effect = RuntimeError("memory offline")
        planner = ReasoningEngine(memory)

        plan = planner.create_workflow_plan("s1", "Add a button")

        assert plan.is_fallback is True
        assert plan.step_ids == ["analyze", "execute", "validate"]

    def test_context_insights_are_used(self):
        """Test insights and project state supplied in the context skip the memory lookup."""
        memory = MagicMock(spec=SessionMemory)
        planner = ReasoningEngine(memory)
        insights = LearningInsights(successful_patterns=["python"])

        plan = planner.create_workflow_plan(
            "s1",
            "Add a button",
            {"learning_insights": insights, "project_state": {"framework": "django"}},
        )

        assert plan.is_fallback is False
        assert plan.success_probability == pytest.approx(0.9)
        assert plan.project_state == {"framework": "django"}
        memory.get_learning_insights.assert_not_called()

    def test_plan_requires_steps(self):
        """Test an empty plan cannot be constructed."""
        with pytest.raises(ValueError):
            WorkflowPlan(plan_id="p", name="n", description="d", steps=(), session_id="s1")

    def test_active_plan_registry(self):
        """Test plans are registered, bounded and cancellable."""
        planner = ReasoningEngine(SessionMemory(), max_active_plans=2)
        first = planner.create_workflow_plan("s1", "one")
        planner.create_workflow_plan("s1", "two")
        third = planner.create_workflow_plan("s1", "three")

        assert planner.get_plan(first.plan_id) is None
        assert len(planner.get_active_plans()) == 2
        assert planner.cancel_plan(third.plan_id) is True
        assert planner.cancel_plan(third.plan_id) is False
