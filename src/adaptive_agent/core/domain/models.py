"""
Core Domain Models

This module defines the data models shared across the request-processing
pipeline: agent configuration, the typed request context, session and
conversation records, learning records, recovery adaptations and the final
AgentResult returned to callers.

Configuration and request context are pydantic models because they cross the
caller boundary and must be validated there. Everything produced inside the
pipeline is a plain dataclass.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, Mapping

from pydantic import BaseModel, ConfigDict, Field

if TYPE_CHECKING:
    from adaptive_agent.core.quality.models import QualityReport


def new_id(prefix: str) -> str:
    """Generate a unique, prefixed identifier (e.g. ``plan_1f3a...``)."""
    return f"{prefix}_{uuid.uuid4().hex[:12]}"


def freeze_mapping(values: Mapping[str, Any]) -> Mapping[str, Any]:
    """Read-only copy of ``values`` for storing on frozen records."""
    return MappingProxyType(dict(values))


class AgentConfig(BaseModel):
    """
    Per-agent tunables.

    Attributes:
        session_id: Default session used when a request context names none
        enable_learning: Gate on Learning Store writes
        enable_quality_checks: Gate on pre/post quality pipeline runs
        enable_error_recovery: Gate on recovery during retries and on
                               top-level failures
        max_retries: Retry bound; a request makes at most max_retries + 1
                     provider attempts
        timeout_ms: Budget for a single provider call
        adaptation_enabled: Whether recovery strategies may change the prompt
                            or the provider mode
    """

    model_config = ConfigDict(validate_assignment=True)

    session_id: str = "default"
    enable_learning: bool = True
    enable_quality_checks: bool = True
    enable_error_recovery: bool = True
    max_retries: int = Field(default=3, ge=0)
    timeout_ms: int = Field(default=300_000, gt=0)
    adaptation_enabled: bool = True


class RequestContext(BaseModel):
    """
    Typed context supplied with a request.

    Unknown keys are dropped when the context is built from a mapping, so
    nothing untyped is threaded through the pipeline.
    """

    model_config = ConfigDict(extra="ignore")

    session_id: str | None = None
    mode: str = "code"
    project_state: dict[str, Any] | None = None
    user_preferences: dict[str, Any] | None = None
    conversation_history: list[dict[str, Any]] | None = None
    credentials: dict[str, Any] | None = Field(default=None, repr=False)
    files: list[dict[str, Any]] | None = None


@dataclass
class SessionRecord:
    """Bookkeeping for one active session."""

    session_id: str
    started_at: datetime = field(default_factory=datetime.now)
    request_count: int = 0
    success_count: int = 0

    @property
    def success_rate(self) -> float:
        return self.success_count / self.request_count if self.request_count else 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.session_id,
            "started_at": self.started_at.isoformat(),
            "request_count": self.request_count,
            "success_count": self.success_count,
            "success_rate": self.success_rate,
        }


@dataclass(frozen=True)
class ConversationOutcome:
    """How a conversation turn ended."""

    success: bool
    feedback: str | None = None
    rating: int | None = None


@dataclass(frozen=True)
class ConversationEntry:
    """One request/response turn stored in session memory."""

    entry_id: str
    session_id: str
    request: str
    response: str
    context: Mapping[str, Any] = field(default_factory=dict)
    outcome: ConversationOutcome | None = None
    timestamp: datetime = field(default_factory=datetime.now)

    def __post_init__(self) -> None:
        object.__setattr__(self, "context", freeze_mapping(self.context))


@dataclass
class UserPreferences:
    """Preference snapshot used to tailor prompts."""

    indentation: str = "spaces"
    spacing: int = 4
    naming_convention: str = "snake_case"
    technology_preferences: list[str] = field(default_factory=lambda: ["python"])
    project_templates: list[str] = field(default_factory=list)
    communication_style: str = "detailed"  # concise | detailed | technical
    learning_mode: bool = True


@dataclass(frozen=True)
class LearningInsights:
    """Patterns derived from a session's conversation history."""

    successful_patterns: list[str] = field(default_factory=list)
    common_issues: list[str] = field(default_factory=list)
    improvement_areas: list[str] = field(default_factory=list)
    user_behavior_patterns: list[str] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not (
            self.successful_patterns
            or self.common_issues
            or self.improvement_areas
            or self.user_behavior_patterns
        )


@dataclass(frozen=True)
class LearningRecord:
    """Outcome of one interaction, kept for tuning future prompts."""

    session_id: str
    request: str
    response: str
    success: bool
    quality_score: int | None = None
    timestamp: datetime = field(default_factory=datetime.now)
    context: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "context", freeze_mapping(self.context))


@dataclass(frozen=True)
class Adaptation:
    """
    A change applied while recovering from a failure.

    Attributes:
        kind: Type of change (prompt, provider, timing)
        target: What was changed (e.g. "prompt", "mode")
        old_value: Value before the change
        new_value: Value after the change
        rationale: Why the change was made
    """

    kind: str
    target: str
    old_value: Any = None
    new_value: Any = None
    rationale: str = ""


@dataclass(frozen=True)
class RecoveryOutcome:
    """Result of a single recovery invocation."""

    recovered: bool
    result: str | None = None
    strategy_used: str | None = None
    adaptations: tuple[Adaptation, ...] = ()

    def __post_init__(self) -> None:
        if not self.recovered and self.result is not None:
            raise ValueError("An unrecovered outcome cannot carry a result")

    @classmethod
    def failed(cls, strategy_used: str | None = None) -> "RecoveryOutcome":
        return cls(recovered=False, strategy_used=strategy_used)


@dataclass
class ResultMetadata:
    """Metadata attached to every AgentResult."""

    duration_ms: int = 0
    reasoning_steps: int = 0
    quality_score: int | None = None
    error_recovery_used: bool = False
    adaptations_applied: int = 0
    attempts: int = 0
    operation_id: str | None = None
    session_id: str | None = None
    stages: dict[str, str] = field(default_factory=dict)


@dataclass
class AgentResult:
    """Unified output of AdaptiveAgent.process()."""

    success: bool
    response: str
    actions: list[dict[str, Any]] = field(default_factory=list)
    quality_report: "QualityReport | None" = None
    adaptations: list[Adaptation] = field(default_factory=list)
    metadata: ResultMetadata = field(default_factory=ResultMetadata)
