"""
Reasoning Engine (Planner)

Turns a request plus its enriched context into an ordered WorkflowPlan.
Learning insights come from the context when the caller already gathered
them, otherwise from session memory.
Plans are used for observability and result metadata; nothing in the
execution path depends on plan contents beyond the number of steps.

Analysis is keyword-based:
- request type from verbs like "fix", "refactor", "document", "setup"
- complexity 1..10 from length and words like "complex" or "integrate"
- requirements from sentences containing "need", "should" or "must"
"""

import re
import threading
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

import structlog

from adaptive_agent.core.domain.errors import PlannerFallbackError
from adaptive_agent.core.domain.models import LearningInsights, new_id
from adaptive_agent.core.memory.session_memory import SessionMemory

COMPLEXITY_KEYWORDS = ("multiple", "complex", "advanced", "integrate", "optimize")
REQUIREMENT_MARKERS = ("need", "should", "must")
DEFAULT_MAX_ACTIVE_PLANS = 100


class StepKind(str, Enum):
    ANALYSIS = "analysis"
    PLANNING = "planning"
    EXECUTION = "execution"
    VALIDATION = "validation"
    ADAPTATION = "adaptation"


STEP_DURATIONS = {
    StepKind.ANALYSIS: 5,
    StepKind.PLANNING: 10,
    StepKind.EXECUTION: 30,
    StepKind.VALIDATION: 15,
    StepKind.ADAPTATION: 5,
}


@dataclass(frozen=True)
class PlanStep:
    """One step of a workflow plan."""

    step_id: str
    kind: StepKind
    description: str
    dependencies: tuple[str, ...] = ()
    confidence: float = 1.0
    status: str = "pending"


@dataclass(frozen=True)
class RequestAnalysis:
    request_type: str
    complexity: int
    requirements: tuple[str, ...]
    constraints: tuple[str, ...]
    description: str


@dataclass(frozen=True)
class WorkflowPlan:
    """
    Planner output.

    Attributes:
        plan_id: Unique plan id
        name: Short name derived from the request
        steps: Ordered, immutable step list (never empty)
        is_fallback: True when the fixed fallback plan was used
        complexity: Estimated complexity 1..10
        success_probability: Heuristic estimate in [0.1, 0.95]
        estimated_duration: Sum of nominal step durations (seconds)
    """

    plan_id: str
    name: str
    description: str
    steps: tuple[PlanStep, ...]
    session_id: str
    is_fallback: bool = False
    request_type: str = "feature"
    complexity: int = 1
    requirements: tuple[str, ...] = ()
    constraints: tuple[str, ...] = ()
    success_probability: float = 0.8
    estimated_duration: int = 0
    project_state: dict[str, Any] | None = None
    created_at: datetime = field(default_factory=datetime.now)

    def __post_init__(self) -> None:
        if not self.steps:
            raise ValueError("A workflow plan needs at least one step")

    @property
    def step_ids(self) -> list[str]:
        return [step.step_id for step in self.steps]


class ReasoningEngine:
    """Builds workflow plans and keeps a bounded registry of active ones."""

    def __init__(self, memory: SessionMemory, max_active_plans: int = DEFAULT_MAX_ACTIVE_PLANS):
        self.memory = memory
        self.max_active_plans = max_active_plans
        self._active_plans: dict[str, WorkflowPlan] = {}
        self._lock = threading.Lock()
        self.logger = structlog.get_logger().bind(component="reasoning_engine")

    def create_workflow_plan(
        self, session_id: str, request: str, context: dict[str, Any] | None = None
    ) -> WorkflowPlan:
        """
        Create a plan for ``request``.

        ``context`` may carry ``learning_insights`` and ``project_state``.

        Never raises; if planning fails the fixed three-step fallback plan
        (analyze, execute, validate) is returned with ``is_fallback=True``.
        """
        try:
            plan = self._build_plan(session_id, request, context or {})
        except PlannerFallbackError as e:
            self.logger.warning(
                "planner_fallback",
                session_id=session_id,
                error=str(e),
            )
            plan = self.create_fallback_plan(session_id, request)

        self._register(plan)
        self.logger.debug(
            "workflow_plan_created",
            plan_id=plan.plan_id,
            session_id=session_id,
            steps=len(plan.steps),
            complexity=plan.complexity,
            is_fallback=plan.is_fallback,
        )
        return plan

    def analyze_request(self, request: str) -> RequestAnalysis:
        return RequestAnalysis(
            request_type=determine_request_type(request),
            complexity=calculate_complexity(request),
            requirements=tuple(extract_requirements(request)),
            constraints=tuple(extract_constraints(request)),
            description=request[:100] + ("..." if len(request) > 100 else ""),
        )

    def create_fallback_plan(self, session_id: str, request: str) -> WorkflowPlan:
        steps = (
            PlanStep("analyze", StepKind.ANALYSIS, "Analyze user request"),
            PlanStep("execute", StepKind.EXECUTION, "Execute the request", ("analyze",)),
            PlanStep("validate", StepKind.VALIDATION, "Validate the result", ("execute",)),
        )
        return WorkflowPlan(
            plan_id=new_id("plan"),
            name=generate_plan_name(request),
            description="Fallback plan",
            steps=steps,
            session_id=session_id,
            is_fallback=True,
            estimated_duration=estimate_duration(steps),
        )

    def get_plan(self, plan_id: str) -> WorkflowPlan | None:
        with self._lock:
            return self._active_plans.get(plan_id)

    def get_active_plans(self) -> list[WorkflowPlan]:
        with self._lock:
            return list(self._active_plans.values())

    def cancel_plan(self, plan_id: str) -> bool:
        with self._lock:
            removed = self._active_plans.pop(plan_id, None)
        if removed is not None:
            self.logger.debug("workflow_plan_cancelled", plan_id=plan_id)
        return removed is not None

    def _build_plan(self, session_id: str, request: str, context: dict[str, Any]) -> WorkflowPlan:
        try:
            insights = context.get("learning_insights")
            if insights is None:
                insights = self.memory.get_learning_insights(session_id)
            analysis = self.analyze_request(request)
            steps = plan_steps(analysis)
            return WorkflowPlan(
                plan_id=new_id("plan"),
                name=generate_plan_name(request),
                description=analysis.description,
                steps=steps,
                session_id=session_id,
                request_type=analysis.request_type,
                complexity=analysis.complexity,
                requirements=analysis.requirements,
                constraints=analysis.constraints,
                success_probability=success_probability(analysis.complexity, insights),
                estimated_duration=estimate_duration(steps),
                project_state=context.get("project_state"),
            )
        except Exception as e:
            raise PlannerFallbackError(f"Could not plan request: {e}") from e

    def _register(self, plan: WorkflowPlan) -> None:
        with self._lock:
            self._active_plans[plan.plan_id] = plan
            while len(self._active_plans) > self.max_active_plans:
                del self._active_plans[next(iter(self._active_plans))]


def determine_request_type(request: str) -> str:
    lowered = request.lower()
    if "fix" in lowered or "bug" in lowered:
        return "bugfix"
    if "refactor" in lowered or "improve" in lowered:
        return "refactor"
    if "document" in lowered or "readme" in lowered:
        return "documentation"
    if "setup" in lowered or "install" in lowered:
        return "setup"
    return "feature"


def calculate_complexity(request: str) -> int:
    lowered = request.lower()
    complexity = 1 + min(3, len(request) // 200)
    complexity += sum(1 for keyword in COMPLEXITY_KEYWORDS if keyword in lowered)
    return max(1, min(10, complexity))


def extract_requirements(request: str) -> list[str]:
    requirements = [
        sentence.strip()
        for sentence in re.split(r"[.!?]+", request)
        if any(marker in sentence.lower() for marker in REQUIREMENT_MARKERS)
    ]
    return requirements or ["Execute user request"]


def extract_constraints(request: str) -> list[str]:
    lowered = request.lower()
    constraints = []
    if "quick" in lowered or "fast" in lowered:
        constraints.append("Time-sensitive request")
    if "simple" in lowered or "basic" in lowered:
        constraints.append("Keep implementation simple")
    return constraints


def plan_steps(analysis: RequestAnalysis) -> tuple[PlanStep, ...]:
    complex_request = analysis.complexity > 5
    steps = [
        PlanStep("analyze", StepKind.ANALYSIS, "Analyze user request and gather context", (), 0.95),
        PlanStep("plan", StepKind.PLANNING, "Create detailed execution plan", ("analyze",), 0.90),
    ]
    if complex_request:
        steps.append(
            PlanStep("research", StepKind.EXECUTION, "Research best practices and solutions", ("plan",), 0.85)
        )
    steps.append(
        PlanStep(
            "execute",
            StepKind.EXECUTION,
            "Execute the main task",
            ("research",) if complex_request else ("plan",),
            0.80,
        )
    )
    if analysis.request_type == "feature" or analysis.complexity > 3:
        steps.append(PlanStep("validate", StepKind.VALIDATION, "Validate the implementation", ("execute",), 0.88))
    steps.append(
        PlanStep("adapt", StepKind.ADAPTATION, "Learn from execution and adapt approach", ("execute",), 0.95)
    )
    return tuple(steps)


def generate_plan_name(request: str) -> str:
    words = " ".join(request.split(" ")[:5])
    return f"Plan: {words}{'...' if len(request) > len(words) else ''}"


def estimate_duration(steps: tuple[PlanStep, ...]) -> int:
    return sum(STEP_DURATIONS[step.kind] for step in steps)


def success_probability(complexity: int, insights: LearningInsights) -> float:
    probability = 0.8 - (complexity - 1) * 0.05
    if insights.successful_patterns:
        probability += 0.1
    return max(0.1, min(0.95, probability))
