"""
Built-in quality checks.

These are lightweight textual heuristics, not parsers. Each check function
has the signature ``(content, context) -> CheckFinding | None``; the context
may carry ``file_path`` and ``project_files`` (a list of ``{"path": ...}``).
"""

import re
from typing import Any

from adaptive_agent.core.quality.models import (
    Category,
    CheckFinding,
    QualityCheck,
    QualityIssue,
    Severity,
)

LONG_LINE_LENGTH = 100
LONG_LINE_RATIO = 0.1
MIN_DOCUMENTATION_RATIO = 0.5

_HARDCODED_PASSWORD = re.compile(r"password.*=.*['\"]", re.IGNORECASE)
_ZERO_DELAY_TIMER = re.compile(r"setTimeout.*0|setInterval.*0")
_FUNCTION_DEFINITION = re.compile(
    r"function\s+\w+|const\s+\w+\s*=\s*\([^)]*\)\s*=>|^\s*(?:async\s+)?def\s+\w+",
    re.MULTILINE,
)
_COMMENT = re.compile(r"//.*|/\*[\s\S]*?\*/|\"\"\"[\s\S]*?\"\"\"")
_DOC_MARKERS = ("@param", "@returns", "Args:", "Returns:")
_TEST_PATH_MARKERS = (".test.", ".spec.", "/__tests__/", "/tests/", "test_")


def check_syntax(content: str, context: dict[str, Any]) -> CheckFinding | None:
    if not any(keyword in content for keyword in ("function", "const", "let")):
        return None
    if content.count("{") != content.count("}"):
        return CheckFinding(
            message="Unmatched brackets detected",
            severity=Severity.HIGH,
            category=Category.SYNTAX,
            suggestion="Check for missing or extra brackets",
        )
    return None


def check_security(content: str, context: dict[str, Any]) -> CheckFinding | None:
    vulnerabilities = []
    if "eval(" in content:
        vulnerabilities.append("Use of eval() detected - potential security risk")
    if "innerHTML" in content:
        vulnerabilities.append("Direct innerHTML manipulation detected")
    if _HARDCODED_PASSWORD.search(content):
        vulnerabilities.append("Hardcoded password detected")

    if not vulnerabilities:
        return None
    return CheckFinding(
        message=f"Security issues found: {', '.join(vulnerabilities)}",
        severity=Severity.HIGH,
        category=Category.SECURITY,
        suggestion="Review and fix security vulnerabilities",
    )


def check_performance(content: str, context: dict[str, Any]) -> CheckFinding | None:
    problems = []
    if "for" in content and "length" in content and "array" in content:
        problems.append("Consider caching array length in loops")
    if _ZERO_DELAY_TIMER.search(content):
        problems.append("Avoid using setTimeout/setInterval with 0 delay")

    if not problems:
        return None
    return CheckFinding(
        message=f"Performance issues: {', '.join(problems)}",
        severity=Severity.MEDIUM,
        category=Category.PERFORMANCE,
        suggestion="Optimize performance-critical code sections",
    )


def _has_mixed_indentation(lines: list[str]) -> bool:
    for line in lines:
        indent = line[: len(line) - len(line.lstrip())]
        if " " in indent and "\t" in indent:
            return True
    return False


def check_style(content: str, context: dict[str, Any]) -> CheckFinding | None:
    lines = content.split("\n")
    problems = []

    if _has_mixed_indentation(lines):
        problems.append("Mixed tabs and spaces detected")

    long_lines = [line for line in lines if len(line) > LONG_LINE_LENGTH]
    if len(long_lines) > len(lines) * LONG_LINE_RATIO:
        problems.append("Many long lines detected - consider breaking them up")

    if not problems:
        return None
    return CheckFinding(
        message=f"Style issues: {', '.join(problems)}",
        severity=Severity.LOW,
        category=Category.STYLE,
        suggestion="Apply consistent code formatting",
    )


def fix_mixed_indentation(content: str, issue: QualityIssue, tab_width: int = 4) -> str | None:
    """Expand tabs in leading whitespace; returns None if nothing changed."""
    fixed_lines = []
    for line in content.split("\n"):
        stripped = line.lstrip(" \t")
        indent = line[: len(line) - len(stripped)]
        fixed_lines.append(indent.replace("\t", " " * tab_width) + stripped)
    fixed = "\n".join(fixed_lines)
    return fixed if fixed != content else None


def check_testing(content: str, context: dict[str, Any]) -> CheckFinding | None:
    file_path = context.get("file_path") or ""
    if any(marker in file_path for marker in _TEST_PATH_MARKERS):
        return None

    project_files = context.get("project_files") or []
    has_tests = any(
        any(marker in str(item.get("path", "")) for marker in _TEST_PATH_MARKERS)
        for item in project_files
    )
    if has_tests:
        return None
    return CheckFinding(
        message="No test files detected in project",
        severity=Severity.MEDIUM,
        category=Category.TESTING,
        suggestion="Add comprehensive test coverage",
    )


def check_documentation(content: str, context: dict[str, Any]) -> CheckFinding | None:
    functions = _FUNCTION_DEFINITION.findall(content)
    comments = _COMMENT.findall(content)
    documented = [c for c in comments if any(marker in c for marker in _DOC_MARKERS)]

    ratio = len(documented) / len(functions) if functions else 1.0
    if ratio >= MIN_DOCUMENTATION_RATIO:
        return None
    return CheckFinding(
        message=f"Low documentation coverage: {round(ratio * 100)}% of functions documented",
        severity=Severity.LOW,
        category=Category.DOCUMENTATION,
        suggestion="Add doc comments to public functions and complex logic",
    )


def builtin_checks() -> list[QualityCheck]:
    """Return fresh instances of all built-in checks."""
    return [
        QualityCheck(
            check_id="syntax_validation",
            name="Syntax Validation",
            category=Category.SYNTAX,
            severity=Severity.CRITICAL,
            description="Validates code syntax and structure",
            check=check_syntax,
        ),
        QualityCheck(
            check_id="security_vulnerabilities",
            name="Security Vulnerability Scan",
            category=Category.SECURITY,
            severity=Severity.HIGH,
            description="Scans for common security vulnerabilities",
            check=check_security,
        ),
        QualityCheck(
            check_id="performance_optimization",
            name="Performance Optimization Check",
            category=Category.PERFORMANCE,
            severity=Severity.MEDIUM,
            description="Identifies performance bottlenecks and optimization opportunities",
            check=check_performance,
        ),
        QualityCheck(
            check_id="code_style_consistency",
            name="Code Style Consistency",
            category=Category.STYLE,
            severity=Severity.LOW,
            description="Ensures consistent code formatting and style",
            check=check_style,
            auto_fix=fix_mixed_indentation,
        ),
        QualityCheck(
            check_id="testing_coverage",
            name="Testing Coverage Analysis",
            category=Category.TESTING,
            severity=Severity.MEDIUM,
            description="Analyzes test coverage and testing practices",
            check=check_testing,
        ),
        QualityCheck(
            check_id="documentation_completeness",
            name="Documentation Completeness",
            category=Category.DOCUMENTATION,
            severity=Severity.LOW,
            description="Checks for adequate documentation",
            check=check_documentation,
        ),
    ]
