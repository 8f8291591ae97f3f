"""
Quality Assurance Pipeline

Runs the enabled subset of a registry of named checks over a piece of text or
code and produces a scored QualityReport. Checks run concurrently or one by
one depending on configuration. A check that raises or times out is logged
and counted as "no issue found"; it never aborts the report.
"""

import asyncio
import inspect
import threading
import time
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Any

import structlog

from adaptive_agent.core.domain.errors import CheckExecutionError
from adaptive_agent.core.domain.models import new_id
from adaptive_agent.core.quality import scoring
from adaptive_agent.core.quality.checks import builtin_checks
from adaptive_agent.core.quality.models import (
    AutoFixResult,
    Category,
    CheckFinding,
    QualityCheck,
    QualityIssue,
    QualityPipelineConfig,
    QualityReport,
    Severity,
)
from adaptive_agent.observability.metrics import PerformanceMonitor

DEFAULT_MAX_REPORTS = 500


def normalize_finding(result: Any) -> CheckFinding | None:
    """
    Coerce a check result into a well-formed CheckFinding.

    Severity and category given as plain strings are converted to their
    enums.

    Raises:
        TypeError: If the result is not a CheckFinding
        ValueError: If the message is empty or severity/category is unknown
    """
    if result is None:
        return None
    if not isinstance(result, CheckFinding):
        raise TypeError(f"Check returned {type(result).__name__}, expected CheckFinding")
    if not isinstance(result.message, str) or not result.message:
        raise ValueError("Finding message must be a non-empty string")
    return replace(
        result,
        severity=Severity(result.severity),
        category=Category(result.category),
    )


class QualityPipeline:
    """
    Registry of checks plus a cache of the reports they produced.

    Args:
        config: Pipeline configuration (defaults enable syntax, security and
                performance checks, run in parallel)
        monitor: Performance monitor receiving one timing per report
        checks: Initial check registry (defaults to the built-in checks)
        max_reports: Reports kept in the cache before the oldest is dropped
    """

    def __init__(
        self,
        config: QualityPipelineConfig | None = None,
        monitor: PerformanceMonitor | None = None,
        checks: list[QualityCheck] | None = None,
        max_reports: int = DEFAULT_MAX_REPORTS,
    ):
        self.config = config if config is not None else QualityPipelineConfig()
        self.monitor = monitor if monitor is not None else PerformanceMonitor()
        self.max_reports = max_reports
        self._checks: dict[str, QualityCheck] = {}
        self._reports: dict[str, QualityReport] = {}
        self._lock = threading.Lock()
        self.logger = structlog.get_logger().bind(component="quality_pipeline")

        for check in builtin_checks() if checks is None else checks:
            self.add_check(check)

    async def run_quality_check(
        self,
        content: str,
        target: str,
        context: dict[str, Any] | None = None,
    ) -> QualityReport:
        """
        Run all enabled checks against ``content``.

        Args:
            content: Text or code to check
            target: Name of what is being checked (file path, "request", ...)
            context: Extra data for checks (``project_files`` etc.); the
                     target is passed to checks as ``file_path``

        Returns:
            The stored QualityReport
        """
        report_id = new_id("qa")
        started = time.perf_counter()
        check_context = {**(context or {}), "file_path": target}
        enabled = self.get_enabled_checks()

        async with self.monitor.time_operation(
            "quality_check", report_id=report_id, target=target, content_length=len(content)
        ):
            if self.config.parallel_execution:
                findings = await self._run_parallel(enabled, content, check_context)
            else:
                findings = await self._run_sequential(enabled, content, check_context)

            issues = [
                self._to_issue(check, finding, target)
                for check, finding in findings
                if finding.severity.rank >= self.config.severity_threshold.rank
            ]
            report = self._build_report(report_id, target, issues, enabled, started)

        self._store_report(report)
        self.logger.info(
            "quality_check_completed",
            report_id=report_id,
            target=target,
            issues=len(issues),
            score=report.score,
            grade=report.grade,
            duration_ms=report.duration_ms,
        )
        return report

    async def apply_auto_fixes(self, report: QualityReport, content: str) -> AutoFixResult:
        """
        Apply available auto-fixes to ``content`` one after another.

        Returns the content unchanged with every issue remaining when
        auto-fixing is disabled.
        """
        if not self.config.auto_fix_enabled:
            return AutoFixResult(fixed_content=content, remaining_issues=report.issues)

        current = content
        applied: list[QualityIssue] = []
        remaining: list[QualityIssue] = []
        for issue in report.issues:
            check = self._checks.get(issue.check_id)
            if not issue.auto_fix_available or check is None or check.auto_fix is None:
                remaining.append(issue)
                continue
            fixed = check.auto_fix(current, issue)
            if fixed is None:
                remaining.append(issue)
                continue
            current = fixed
            applied.append(issue)

        self.logger.info(
            "auto_fixes_applied",
            report_id=report.report_id,
            total_issues=len(report.issues),
            applied=len(applied),
        )
        return AutoFixResult(
            fixed_content=current,
            applied_fixes=tuple(applied),
            remaining_issues=tuple(remaining),
        )

    # ------------------------------------------------------------------
    # Check registry and configuration
    # ------------------------------------------------------------------

    def add_check(self, check: QualityCheck) -> None:
        with self._lock:
            self._checks[check.check_id] = check
        self.logger.debug("quality_check_added", check_id=check.check_id, category=check.category.value)

    def remove_check(self, check_id: str) -> None:
        with self._lock:
            self._checks.pop(check_id, None)
        self.logger.debug("quality_check_removed", check_id=check_id)

    def get_checks(self) -> list[QualityCheck]:
        with self._lock:
            return list(self._checks.values())

    def get_enabled_checks(self) -> list[QualityCheck]:
        enabled = set(self.config.enabled_checks)
        return [check for check in self.get_checks() if check.check_id in enabled]

    def update_config(self, **updates: Any) -> QualityPipelineConfig:
        self.config = QualityPipelineConfig.model_validate({**self.config.model_dump(), **updates})
        self.logger.debug("quality_config_updated", fields=sorted(updates))
        return self.get_config()

    def get_config(self) -> QualityPipelineConfig:
        return self.config.model_copy(deep=True)

    # ------------------------------------------------------------------
    # Report cache
    # ------------------------------------------------------------------

    def get_report(self, report_id: str) -> QualityReport | None:
        with self._lock:
            return self._reports.get(report_id)

    def get_all_reports(self) -> list[QualityReport]:
        with self._lock:
            return list(self._reports.values())

    def clear_old_reports(self, older_than_days: int = 30) -> int:
        """Drop reports created before the cutoff; returns how many were dropped."""
        cutoff = datetime.now() - timedelta(days=older_than_days)
        with self._lock:
            stale = [rid for rid, report in self._reports.items() if report.created_at < cutoff]
            for report_id in stale:
                del self._reports[report_id]
        self.logger.debug("old_reports_cleared", older_than_days=older_than_days, removed=len(stale))
        return len(stale)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _run_parallel(
        self, checks: list[QualityCheck], content: str, context: dict[str, Any]
    ) -> list[tuple[QualityCheck, CheckFinding]]:
        results = await asyncio.gather(
            *(self._execute_check(check, content, context) for check in checks),
            return_exceptions=True,
        )
        findings = []
        for check, result in zip(checks, results):
            if isinstance(result, BaseException):
                self._log_check_failure(check, result)
            elif result is not None:
                findings.append((check, result))
        return findings

    async def _run_sequential(
        self, checks: list[QualityCheck], content: str, context: dict[str, Any]
    ) -> list[tuple[QualityCheck, CheckFinding]]:
        findings = []
        for check in checks:
            try:
                finding = await self._execute_check(check, content, context)
            except CheckExecutionError as e:
                self._log_check_failure(check, e)
                continue
            if finding is not None:
                findings.append((check, finding))
        return findings

    async def _execute_check(
        self, check: QualityCheck, content: str, context: dict[str, Any]
    ) -> CheckFinding | None:
        try:
            result = check.check(content, dict(context))
            if inspect.isawaitable(result):
                result = await asyncio.wait_for(
                    result, timeout=self.config.check_timeout_ms / 1000
                )
            finding = normalize_finding(result)
        except Exception as e:
            raise CheckExecutionError(check.check_id, e) from e
        return finding

    def _log_check_failure(self, check: QualityCheck, error: BaseException) -> None:
        self.logger.warning(
            "quality_check_failed",
            operation="quality_check",
            check_id=check.check_id,
            check_name=check.name,
            error=str(error),
        )

    @staticmethod
    def _to_issue(check: QualityCheck, finding: CheckFinding, target: str) -> QualityIssue:
        return QualityIssue(
            issue_id=new_id("issue"),
            check_id=check.check_id,
            target=target,
            message=finding.message,
            severity=finding.severity,
            category=finding.category,
            suggestion=finding.suggestion,
            line=finding.line,
            column=finding.column,
            snippet=finding.snippet,
            auto_fix_available=check.auto_fix is not None,
        )

    @staticmethod
    def _build_report(
        report_id: str,
        target: str,
        issues: list[QualityIssue],
        executed: list[QualityCheck],
        started: float,
    ) -> QualityReport:
        executed_count = len(executed)
        score = scoring.calculate_score((issue.severity for issue in issues), executed_count)
        return QualityReport(
            report_id=report_id,
            target=target,
            issues=tuple(issues),
            score=score,
            grade=scoring.calculate_grade(score),
            confidence=scoring.calculate_confidence(len(issues), executed_count),
            checks_executed=tuple(check.check_id for check in executed),
            summary=scoring.summarize(issues, executed_count),
            recommendations=tuple(scoring.generate_recommendations(issues)),
            duration_ms=int((time.perf_counter() - started) * 1000),
        )

    def _store_report(self, report: QualityReport) -> None:
        with self._lock:
            self._reports[report.report_id] = report
            while len(self._reports) > self.max_reports:
                del self._reports[next(iter(self._reports))]
