"""
Adaptive Agent - Request-Processing Pipeline

The agent turns one natural-language request into a retried, quality-scored
response. The pipeline is an explicit state machine: PipelineStage lists the
stages in order and a single control loop runs one handler per stage. Each
handler returns a StageResult; normal degradation (fallback plan, fallback
prompt, exhausted retries) is a tagged result, not an exception.

Stages:
    ENRICH         session history, preferences and insights from memory
    PLAN           workflow plan (fallback plan on failure)
    PRE_CHECK      quality check of the request (if enabled)
    SYNTHESIZE     optimized prompt (raw request on failure)
    EXECUTE        provider call with retries and recovery
    POST_CHECK     quality check of the response (if enabled and successful)
    LEARN          one LearningRecord (if enabled)
    MEMORY_UPDATE  one ConversationEntry

An exception escaping a handler ends the run as FATAL. If error recovery is
enabled, one top-level recovery attempt runs before the failure result is
produced. process() never raises.
"""

import asyncio
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable

import structlog
from pydantic import ValidationError

from adaptive_agent.core.domain.errors import RequestValidationError, error_message
from adaptive_agent.core.domain.execution import ExecutionCore, ExecutionOutcome, SleepFunction
from adaptive_agent.core.domain.models import (
    AgentConfig,
    AgentResult,
    ConversationEntry,
    ConversationOutcome,
    LearningInsights,
    LearningRecord,
    RequestContext,
    ResultMetadata,
    SessionRecord,
    UserPreferences,
    new_id,
)
from adaptive_agent.core.domain.planner import ReasoningEngine, WorkflowPlan
from adaptive_agent.core.domain.prompt_engine import OptimizedPrompt, PromptContext, PromptEngine
from adaptive_agent.core.interfaces.llm import CompletionProviderProtocol
from adaptive_agent.core.memory.learning_store import LearningStore
from adaptive_agent.core.memory.session_memory import SessionMemory
from adaptive_agent.core.quality.models import QualityReport
from adaptive_agent.core.quality.pipeline import QualityPipeline
from adaptive_agent.core.recovery.error_recovery import ErrorRecovery
from adaptive_agent.core.recovery.strategies import RecoveryContext
from adaptive_agent.observability.metrics import PerformanceMonitor, PerformanceStats

HISTORY_LIMIT = 10


class PipelineStage(str, Enum):
    """Pipeline stages in execution order."""

    ENRICH = "enrich"
    PLAN = "plan"
    PRE_CHECK = "pre_check"
    SYNTHESIZE = "synthesize"
    EXECUTE = "execute"
    POST_CHECK = "post_check"
    LEARN = "learn"
    MEMORY_UPDATE = "memory_update"


class StageStatus(str, Enum):
    """
    Outcome tag of one stage.

    SUCCESS: stage did its job
    FALLBACK: stage degraded to its documented fallback
    SKIPPED: stage disabled by configuration or not applicable
    FAILED: stage completed but reports failure; the pipeline continues
    FATAL: stage raised; the pipeline stops
    """

    SUCCESS = "success"
    FALLBACK = "fallback"
    SKIPPED = "skipped"
    FAILED = "failed"
    FATAL = "fatal"


@dataclass(frozen=True)
class StageResult:
    status: StageStatus
    detail: str | None = None
    error: BaseException | None = None


@dataclass
class PipelineRun:
    """Mutable state threaded through the stages of one process() call."""

    operation_id: str
    session_id: str
    request: str
    context: RequestContext
    started: float = field(default_factory=time.perf_counter)
    history: list[ConversationEntry] = field(default_factory=list)
    preferences: UserPreferences | None = None
    insights: LearningInsights | None = None
    plan: WorkflowPlan | None = None
    pre_report: QualityReport | None = None
    prompt: OptimizedPrompt | None = None
    execution: ExecutionOutcome | None = None
    post_report: QualityReport | None = None
    stages: dict[str, str] = field(default_factory=dict)

    @property
    def elapsed_ms(self) -> int:
        return max(0, int((time.perf_counter() - self.started) * 1000))


StageHandler = Callable[[PipelineRun], Awaitable[StageResult]]


def validate_request(request: Any) -> str:
    """
    Reject requests that must not enter the pipeline.

    Raises:
        RequestValidationError: If the request is not a non-blank string
    """
    if not isinstance(request, str):
        raise RequestValidationError(f"Request must be a string, got {type(request).__name__}")
    if not request.strip():
        raise RequestValidationError("Request must not be empty")
    return request


def caller_history(
    session_id: str, turns: list[dict[str, Any]] | None
) -> list[ConversationEntry]:
    """
    Convert caller-supplied turns (oldest first) into entries, newest first.

    Turns without a request or a response are dropped.
    """
    entries = []
    for turn in reversed(turns or []):
        request = str(turn.get("request") or "")
        response = str(turn.get("response") or "")
        if request or response:
            entries.append(
                ConversationEntry(
                    entry_id=new_id("supplied"),
                    session_id=session_id,
                    request=request,
                    response=response,
                )
            )
    return entries


class AdaptiveAgent:
    """
    Orchestrator of the request-processing pipeline.

    All collaborators are injected; omitted ones are built with defaults
    sharing this agent's memory and performance monitor.

    Args:
        provider: Completion provider
        config: Agent configuration
        memory: Session memory store
        learning_store: Learning store
        quality: Quality pipeline
        planner: Reasoning engine
        prompt_engine: Prompt engine
        recovery: Error recovery coordinator
        monitor: Performance monitor
        sleep: Backoff sleep function (seconds)
        fallback_mode: Alternative provider mode for recovery
    """

    def __init__(
        self,
        provider: CompletionProviderProtocol,
        config: AgentConfig | None = None,
        memory: SessionMemory | None = None,
        learning_store: LearningStore | None = None,
        quality: QualityPipeline | None = None,
        planner: ReasoningEngine | None = None,
        prompt_engine: PromptEngine | None = None,
        recovery: ErrorRecovery | None = None,
        monitor: PerformanceMonitor | None = None,
        sleep: SleepFunction = asyncio.sleep,
        fallback_mode: str | None = None,
    ):
        self.config = config if config is not None else AgentConfig()
        self.monitor = monitor if monitor is not None else PerformanceMonitor()
        self.memory = memory if memory is not None else SessionMemory()
        self.learning_store = learning_store if learning_store is not None else LearningStore()
        self.quality = quality if quality is not None else QualityPipeline(monitor=self.monitor)
        self.planner = planner if planner is not None else ReasoningEngine(self.memory)
        self.prompt_engine = prompt_engine if prompt_engine is not None else PromptEngine(self.memory)
        self.recovery = recovery if recovery is not None else ErrorRecovery(monitor=self.monitor)
        self.execution = ExecutionCore(
            provider=provider,
            recovery=self.recovery,
            config=self.config,
            monitor=self.monitor,
            sleep=sleep,
            fallback_mode=fallback_mode,
        )
        self._sessions: dict[str, SessionRecord] = {}
        self._lock = threading.Lock()
        self.logger = structlog.get_logger().bind(component="adaptive_agent")

        self._handlers: dict[PipelineStage, StageHandler] = {
            PipelineStage.ENRICH: self._enrich,
            PipelineStage.PLAN: self._plan,
            PipelineStage.PRE_CHECK: self._pre_check,
            PipelineStage.SYNTHESIZE: self._synthesize,
            PipelineStage.EXECUTE: self._execute,
            PipelineStage.POST_CHECK: self._post_check,
            PipelineStage.LEARN: self._learn,
            PipelineStage.MEMORY_UPDATE: self._update_memory,
        }

    async def process(
        self,
        request: Any,
        context: RequestContext | dict[str, Any] | None = None,
    ) -> AgentResult:
        """
        Process one request end to end.

        Args:
            request: Natural-language request
            context: RequestContext or a mapping (unknown keys are dropped)

        Returns:
            AgentResult; failures are reported with ``success=False``.
        """
        operation_id = new_id("agent")
        started = time.perf_counter()

        try:
            request = validate_request(request)
            request_context = self._coerce_context(context)
        except (RequestValidationError, ValidationError) as e:
            self.logger.warning("request_rejected", operation_id=operation_id, error=str(e))
            return AgentResult(
                success=False,
                response=f"Invalid request: {error_message(e)}",
                metadata=ResultMetadata(
                    duration_ms=max(0, int((time.perf_counter() - started) * 1000)),
                    operation_id=operation_id,
                ),
            )

        run = PipelineRun(
            operation_id=operation_id,
            session_id=request_context.session_id or self.config.session_id,
            request=request,
            context=request_context,
            started=started,
        )
        metric_id = self.monitor.start_timing(
            "agent_request",
            operation_id=operation_id,
            session_id=run.session_id,
            request_length=len(request),
        )
        self.logger.info(
            "request_processing_started",
            operation_id=operation_id,
            session_id=run.session_id,
            request_length=len(request),
        )

        try:
            result = await self._run_pipeline(run)
        except Exception as e:
            # Only reachable if fatal handling itself fails.
            self.logger.exception("request_processing_crashed", operation_id=operation_id)
            result = self._failure_result(run, f"An error occurred: {error_message(e)}", False)

        self._record_session_outcome(run.session_id, result.success)
        self.monitor.end_timing(
            metric_id,
            success=result.success,
            quality_score=result.metadata.quality_score,
        )
        self.logger.info(
            "request_processing_completed",
            operation_id=operation_id,
            session_id=run.session_id,
            success=result.success,
            duration_ms=result.metadata.duration_ms,
            quality_score=result.metadata.quality_score,
            stages=run.stages,
        )
        return result

    # ------------------------------------------------------------------
    # Control loop
    # ------------------------------------------------------------------

    async def _run_pipeline(self, run: PipelineRun) -> AgentResult:
        for stage in PipelineStage:
            stage_metric = self.monitor.start_timing(
                f"stage_{stage.value}", operation_id=run.operation_id
            )
            try:
                result = await self._handlers[stage](run)
            except Exception as e:
                result = StageResult(StageStatus.FATAL, detail=error_message(e), error=e)
            finally:
                self.monitor.end_timing(stage_metric)

            run.stages[stage.value] = result.status.value
            if result.status is StageStatus.FALLBACK:
                self.logger.warning(
                    "pipeline_stage_fallback",
                    operation_id=run.operation_id,
                    stage=stage.value,
                    detail=result.detail,
                )
            elif result.status is StageStatus.FATAL:
                self.logger.error(
                    "pipeline_stage_fatal",
                    operation_id=run.operation_id,
                    stage=stage.value,
                    error=result.detail,
                    exc_info=result.error,
                )
                return await self._handle_fatal(run, result.error)

        return self._build_result(run)

    async def _handle_fatal(self, run: PipelineRun, error: BaseException | None) -> AgentResult:
        message = error_message(error)
        if not self.config.enable_error_recovery or error is None:
            return self._failure_result(run, f"An error occurred: {message}", False)

        outcome = await self.recovery.recover(
            error,
            RecoveryContext(
                prompt=run.prompt.final_prompt if run.prompt else run.request,
                request=run.request,
                mode=run.context.mode,
                invoke=self.execution.invoker(run.context, run.operation_id),
                operation_id=run.operation_id,
                adaptation_enabled=self.config.adaptation_enabled,
                fallback_mode=self.execution.fallback_mode,
            ),
        )
        if outcome.recovered:
            self.logger.info(
                "processing_error_recovered",
                operation_id=run.operation_id,
                strategy=outcome.strategy_used,
            )
            return AgentResult(
                success=True,
                response=outcome.result or "",
                adaptations=list(outcome.adaptations),
                metadata=ResultMetadata(
                    duration_ms=run.elapsed_ms,
                    reasoning_steps=len(run.plan.steps) if run.plan else 0,
                    error_recovery_used=True,
                    adaptations_applied=len(outcome.adaptations),
                    attempts=run.execution.attempts if run.execution else 0,
                    operation_id=run.operation_id,
                    session_id=run.session_id,
                    stages=dict(run.stages),
                ),
            )
        return self._failure_result(
            run, f"Processing failed and recovery unsuccessful: {message}", True
        )

    # ------------------------------------------------------------------
    # Stage handlers
    # ------------------------------------------------------------------

    async def _enrich(self, run: PipelineRun) -> StageResult:
        stored = self.memory.get_relevant_context(run.session_id, run.request, HISTORY_LIMIT)
        supplied = caller_history(run.session_id, run.context.conversation_history)
        run.history = (stored + supplied)[:HISTORY_LIMIT]
        run.preferences = self.memory.get_user_preferences()
        run.insights = self.memory.get_learning_insights(run.session_id)
        return StageResult(StageStatus.SUCCESS, detail=f"{len(run.history)} history entries")

    async def _plan(self, run: PipelineRun) -> StageResult:
        run.plan = self.planner.create_workflow_plan(
            run.session_id,
            run.request,
            {"project_state": run.context.project_state, "learning_insights": run.insights},
        )
        if run.plan.is_fallback:
            return StageResult(StageStatus.FALLBACK, detail="fallback plan")
        return StageResult(StageStatus.SUCCESS, detail=f"{len(run.plan.steps)} steps")

    async def _pre_check(self, run: PipelineRun) -> StageResult:
        if not self.config.enable_quality_checks:
            return StageResult(StageStatus.SKIPPED)
        run.pre_report = await self._quality_check(run, run.request, "user_request")
        if run.pre_report is None:
            return StageResult(StageStatus.FALLBACK, detail="quality check unavailable")
        return StageResult(StageStatus.SUCCESS, detail=f"score {run.pre_report.score}")

    async def _synthesize(self, run: PipelineRun) -> StageResult:
        run.prompt = self.prompt_engine.generate_optimized_prompt(
            "execution",
            PromptContext(
                session_id=run.session_id,
                request=run.request,
                project_state=run.context.project_state,
                current_step="execute",
                constraints=list(run.plan.constraints) if run.plan else [],
                user_preferences=run.context.user_preferences,
                history=run.history,
                preferences=run.preferences,
                insights=run.insights,
            ),
        )
        if run.prompt.is_fallback:
            return StageResult(StageStatus.FALLBACK, detail="raw request used as prompt")
        return StageResult(StageStatus.SUCCESS, detail=f"score {run.prompt.optimization_score}")

    async def _execute(self, run: PipelineRun) -> StageResult:
        prompt = run.prompt.final_prompt if run.prompt else run.request
        run.execution = await self.execution.execute(
            prompt, run.context, run.operation_id, request=run.request
        )
        if not run.execution.success:
            return StageResult(StageStatus.FAILED, detail=run.execution.response)
        return StageResult(StageStatus.SUCCESS, detail=f"{run.execution.attempts} attempts")

    async def _post_check(self, run: PipelineRun) -> StageResult:
        if not self.config.enable_quality_checks or not (run.execution and run.execution.success):
            return StageResult(StageStatus.SKIPPED)
        run.post_report = await self._quality_check(run, run.execution.response, "agent_response")
        if run.post_report is None:
            return StageResult(StageStatus.FALLBACK, detail="quality check unavailable")
        return StageResult(StageStatus.SUCCESS, detail=f"score {run.post_report.score}")

    async def _learn(self, run: PipelineRun) -> StageResult:
        if not self.config.enable_learning:
            return StageResult(StageStatus.SKIPPED)
        execution = run.execution
        self.learning_store.record(
            LearningRecord(
                session_id=run.session_id,
                request=run.request,
                response=execution.response if execution else "",
                success=bool(execution and execution.success),
                quality_score=run.post_report.score if run.post_report else None,
                context={
                    "operation_id": run.operation_id,
                    "mode": run.context.mode,
                    "plan_id": run.plan.plan_id if run.plan else None,
                    "attempts": execution.attempts if execution else 0,
                    "recovery_used": bool(execution and execution.recovery_used),
                },
            )
        )
        return StageResult(StageStatus.SUCCESS)

    async def _update_memory(self, run: PipelineRun) -> StageResult:
        execution = run.execution
        success = bool(execution and execution.success)
        entry_id = self.memory.add_conversation_entry(
            run.session_id,
            run.request,
            execution.response if execution else "",
            context_snapshot={
                "mode": run.context.mode,
                "project_state": run.context.project_state,
                "quality_score": run.post_report.score if run.post_report else None,
                "duration_ms": run.elapsed_ms,
            },
            outcome=ConversationOutcome(success=success),
        )
        return StageResult(StageStatus.SUCCESS, detail=entry_id)

    async def _quality_check(
        self, run: PipelineRun, content: str, target: str
    ) -> QualityReport | None:
        try:
            return await self.quality.run_quality_check(
                content, target, {"project_files": run.context.files or []}
            )
        except Exception as e:
            self.logger.warning(
                "quality_check_unavailable",
                operation_id=run.operation_id,
                target=target,
                error=str(e),
            )
            return None

    # ------------------------------------------------------------------
    # Results
    # ------------------------------------------------------------------

    def _build_result(self, run: PipelineRun) -> AgentResult:
        execution = run.execution
        if execution is None:
            return self._failure_result(run, "An error occurred: execution did not run", False)
        return AgentResult(
            success=execution.success,
            response=execution.response,
            quality_report=run.post_report,
            adaptations=list(execution.adaptations),
            metadata=ResultMetadata(
                duration_ms=run.elapsed_ms,
                reasoning_steps=len(run.plan.steps) if run.plan else 0,
                quality_score=run.post_report.score if run.post_report else None,
                error_recovery_used=execution.recovery_used,
                adaptations_applied=len(execution.adaptations),
                attempts=execution.attempts,
                operation_id=run.operation_id,
                session_id=run.session_id,
                stages=dict(run.stages),
            ),
        )

    @staticmethod
    def _failure_result(run: PipelineRun, response: str, recovery_used: bool) -> AgentResult:
        return AgentResult(
            success=False,
            response=response,
            metadata=ResultMetadata(
                duration_ms=run.elapsed_ms,
                reasoning_steps=len(run.plan.steps) if run.plan else 0,
                error_recovery_used=recovery_used,
                attempts=run.execution.attempts if run.execution else 0,
                operation_id=run.operation_id,
                session_id=run.session_id,
                stages=dict(run.stages),
            ),
        )

    @staticmethod
    def _coerce_context(context: RequestContext | dict[str, Any] | None) -> RequestContext:
        if context is None:
            return RequestContext()
        if isinstance(context, RequestContext):
            return context
        return RequestContext.model_validate(context)

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def start_session(self, session_id: str) -> SessionRecord:
        """Register a session and make it the default for requests without one."""
        record = SessionRecord(session_id=session_id)
        with self._lock:
            self._sessions[session_id] = record
        self.config.session_id = session_id
        self.logger.info("session_started", session_id=session_id)
        return record

    def end_session(self, session_id: str | None = None) -> SessionRecord | None:
        """
        End a session and clear its conversation memory.

        Ending an unknown session is a no-op.
        """
        target = session_id or self.config.session_id
        with self._lock:
            record = self._sessions.pop(target, None)
        if record is None:
            return None

        self.memory.clear_session(target)
        self.logger.info(
            "session_ended",
            session_id=target,
            request_count=record.request_count,
            success_rate=record.success_rate,
        )
        return record

    def get_active_sessions(self) -> list[dict[str, Any]]:
        with self._lock:
            return [record.to_dict() for record in self._sessions.values()]

    def _record_session_outcome(self, session_id: str, success: bool) -> None:
        with self._lock:
            record = self._sessions.get(session_id)
            if record is None:
                return
            record.request_count += 1
            if success:
                record.success_count += 1

    # ------------------------------------------------------------------
    # Configuration and introspection
    # ------------------------------------------------------------------

    def update_config(self, **updates: Any) -> AgentConfig:
        """
        Update configuration fields in place.

        Raises:
            ValueError: For unknown fields
            pydantic.ValidationError: For invalid values
        """
        unknown = set(updates) - set(AgentConfig.model_fields)
        if unknown:
            raise ValueError(f"Unknown config fields: {', '.join(sorted(unknown))}")
        validated = AgentConfig.model_validate({**self.config.model_dump(), **updates})
        for name in updates:
            setattr(self.config, name, getattr(validated, name))
        self.logger.debug("agent_config_updated", fields=sorted(updates))
        return self.get_config()

    def get_config(self) -> AgentConfig:
        return self.config.model_copy()

    def get_learning_data(self, limit: int = 100) -> list[LearningRecord]:
        return self.learning_store.get_recent(limit)

    def clear_learning_data(self) -> None:
        self.learning_store.clear()

    def get_performance_stats(self) -> PerformanceStats:
        return self.monitor.get_stats("agent_request")
