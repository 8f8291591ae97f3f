"""
Quality Assurance Models

Closed enumerations for severity and category, the finding a check returns,
the issue recorded in a report, the report itself and the pipeline
configuration.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable, Union

from pydantic import BaseModel, ConfigDict, Field


class Severity(str, Enum):
    """Issue severity, ordered from least to most severe."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def weight(self) -> int:
        return SEVERITY_WEIGHTS[self]

    @property
    def rank(self) -> int:
        return list(Severity).index(self)


SEVERITY_WEIGHTS: dict[Severity, int] = {
    Severity.LOW: 1,
    Severity.MEDIUM: 3,
    Severity.HIGH: 5,
    Severity.CRITICAL: 10,
}


class Category(str, Enum):
    """Issue category."""

    SYNTAX = "syntax"
    LOGIC = "logic"
    PERFORMANCE = "performance"
    SECURITY = "security"
    STYLE = "style"
    TESTING = "testing"
    DOCUMENTATION = "documentation"


@dataclass(frozen=True)
class CheckFinding:
    """
    What a check reports when it finds a problem.

    The pipeline turns a finding into a QualityIssue by adding ids, the
    target and a timestamp.
    """

    message: str
    severity: Severity
    category: Category
    suggestion: str | None = None
    line: int | None = None
    column: int | None = None
    snippet: str | None = None


@dataclass(frozen=True)
class QualityIssue:
    """One check finding recorded in a report."""

    issue_id: str
    check_id: str
    target: str
    message: str
    severity: Severity
    category: Category
    suggestion: str | None = None
    line: int | None = None
    column: int | None = None
    snippet: str | None = None
    auto_fix_available: bool = False
    timestamp: datetime = field(default_factory=datetime.now)


@dataclass(frozen=True)
class ReportSummary:
    """Counts over one report."""

    total_checks: int
    passed_checks: int
    failed_checks: int
    issues_by_severity: dict[str, int] = field(default_factory=dict)
    issues_by_category: dict[str, int] = field(default_factory=dict)


@dataclass(frozen=True)
class QualityReport:
    """
    Scored result of running a set of checks against one piece of content.

    score, grade and confidence are derived from ``issues`` and
    ``checks_executed`` by adaptive_agent.core.quality.scoring and never set
    independently.
    """

    report_id: str
    target: str
    issues: tuple[QualityIssue, ...]
    score: int
    grade: str
    confidence: float
    checks_executed: tuple[str, ...]
    summary: ReportSummary
    recommendations: tuple[str, ...] = ()
    duration_ms: int = 0
    created_at: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.report_id,
            "target": self.target,
            "score": self.score,
            "grade": self.grade,
            "confidence": self.confidence,
            "checks_executed": list(self.checks_executed),
            "issues": [
                {
                    "check_id": issue.check_id,
                    "severity": issue.severity.value,
                    "category": issue.category.value,
                    "message": issue.message,
                    "suggestion": issue.suggestion,
                }
                for issue in self.issues
            ],
            "recommendations": list(self.recommendations),
            "duration_ms": self.duration_ms,
        }


CheckFunction = Callable[
    [str, dict[str, Any]], Union[CheckFinding, None, Awaitable[CheckFinding | None]]
]
AutoFixFunction = Callable[[str, QualityIssue], str | None]


@dataclass
class QualityCheck:
    """
    A named, pluggable check.

    Attributes:
        check_id: Registry key, referenced by QualityPipelineConfig.enabled_checks
        name: Human-readable name
        category: Category of the issues this check reports
        severity: Nominal severity of the check (findings carry their own)
        description: What the check looks for
        check: ``(content, context) -> CheckFinding | None``; may be a
               coroutine function
        auto_fix: Optional ``(content, issue) -> fixed content | None``
    """

    check_id: str
    name: str
    category: Category
    severity: Severity
    description: str
    check: CheckFunction
    auto_fix: AutoFixFunction | None = None


class QualityPipelineConfig(BaseModel):
    """Configuration of the quality pipeline."""

    model_config = ConfigDict(validate_assignment=True)

    enabled_checks: list[str] = Field(
        default_factory=lambda: [
            "syntax_validation",
            "security_vulnerabilities",
            "performance_optimization",
        ]
    )
    severity_threshold: Severity = Severity.LOW
    auto_fix_enabled: bool = False
    parallel_execution: bool = True
    check_timeout_ms: int = Field(default=30_000, gt=0)


@dataclass(frozen=True)
class AutoFixResult:
    """Outcome of applying auto-fixes to a report's content."""

    fixed_content: str
    applied_fixes: tuple[QualityIssue, ...] = ()
    remaining_issues: tuple[QualityIssue, ...] = ()
