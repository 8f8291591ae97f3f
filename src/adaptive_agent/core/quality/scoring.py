"""
Deterministic report scoring.

Every value here is a pure function of the issues found and the number of
checks executed, so a report can always be re-scored from its contents.
"""

import math
from collections import Counter
from typing import Iterable, Sequence

from adaptive_agent.core.quality.models import Category, QualityIssue, ReportSummary, Severity

GRADE_BANDS: tuple[tuple[int, str], ...] = ((90, "A"), (80, "B"), (70, "C"), (60, "D"))

RECOMMEND_CRITICAL = "Address critical issues immediately before proceeding"
RECOMMEND_BREAK_DOWN = "Consider breaking down the code into smaller, more manageable pieces"
RECOMMEND_TESTS = "Improve test coverage to ensure code reliability"
RECOMMEND_DOCS = "Add comprehensive documentation for better maintainability"
RECOMMEND_EXCELLENT = "Code quality is excellent! Consider adding more advanced checks."


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def calculate_score(severities: Iterable[Severity], checks_executed: int) -> int:
    """
    Score issues on a 0..100 scale.

    Each executed check can contribute at most one critical issue, so the
    worst possible total is ``checks_executed * 10``.

    Returns:
        100 when no checks ran, otherwise
        ``round(max(0, 100 - weighted / (checks_executed * 10) * 100))``.
    """
    if checks_executed <= 0:
        return 100
    weighted = sum(severity.weight for severity in severities)
    max_possible = checks_executed * Severity.CRITICAL.weight
    return round_half_up(max(0.0, 100 - (weighted / max_possible) * 100))


def calculate_grade(score: int) -> str:
    for floor, grade in GRADE_BANDS:
        if score >= floor:
            return grade
    return "F"


def calculate_confidence(issue_count: int, checks_executed: int) -> float:
    if checks_executed <= 0:
        return 0.0
    return (checks_executed - issue_count) / checks_executed


def summarize(issues: Sequence[QualityIssue], checks_executed: int) -> ReportSummary:
    return ReportSummary(
        total_checks=checks_executed,
        passed_checks=checks_executed - len(issues),
        failed_checks=len(issues),
        issues_by_severity=dict(Counter(issue.severity.value for issue in issues)),
        issues_by_category=dict(Counter(issue.category.value for issue in issues)),
    )


def generate_recommendations(issues: Sequence[QualityIssue]) -> list[str]:
    severities = Counter(issue.severity for issue in issues)
    categories = {issue.category for issue in issues}

    recommendations: list[str] = []
    if severities[Severity.CRITICAL] > 0:
        recommendations.append(RECOMMEND_CRITICAL)
    if severities[Severity.HIGH] > 5:
        recommendations.append(RECOMMEND_BREAK_DOWN)
    if Category.TESTING in categories:
        recommendations.append(RECOMMEND_TESTS)
    if Category.DOCUMENTATION in categories:
        recommendations.append(RECOMMEND_DOCS)
    if not issues:
        recommendations.append(RECOMMEND_EXCELLENT)
    return recommendations
