"""Validation applier: run a compiled rule set over code and record outcomes."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from rulecascade.rules.errors import StoreError
from rulecascade.rules.models import Priority, RuleApplication
from rulecascade.rules.scopes import resolve_scopes

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence
    from pathlib import Path

    from rulecascade.rules.cache import CompiledRule, RuleCache
    from rulecascade.rules.store import RuleStore

logger = logging.getLogger(__name__)

# Extensions picked up when a directory is validated.
SOURCE_EXTENSIONS: frozenset[str] = frozenset(
    {".js", ".mjs", ".cjs", ".jsx", ".ts", ".tsx", ".py"}
)
SKIP_DIRS: frozenset[str] = frozenset({"node_modules", "dist", "build", "__pycache__"})

# ---------------------------------------------------------------------------
# Data classes
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Finding:
    """One reported issue instance."""

    rule_id: str
    file_path: str | None
    line: int  # 1-based
    column: int  # 1-based
    matched_text: str
    message: str
    suggestion: str
    severity: str  # "error" | "warning" | "suggestion"
    category: str
    scope: str
    auto_fix_replacement: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "rule_id": self.rule_id,
            "file_path": self.file_path,
            "line": self.line,
            "column": self.column,
            "matched_text": self.matched_text,
            "message": self.message,
            "suggestion": self.suggestion,
            "severity": self.severity,
            "category": self.category,
            "scope": self.scope,
            "auto_fix_replacement": self.auto_fix_replacement,
        }


@dataclass
class ValidationStats:
    rules_applied: int = 0
    rules_failed: int = 0
    findings: int = 0
    applications_recorded: int = 0
    elapsed_ms: float = 0.0
    cache_hit: bool = False


@dataclass
class ValidationResult:
    """Findings for one piece of code, split by severity."""

    file_path: str | None = None
    errors: list[Finding] = field(default_factory=list)
    warnings: list[Finding] = field(default_factory=list)
    suggestions: list[Finding] = field(default_factory=list)
    stats: ValidationStats = field(default_factory=ValidationStats)

    @property
    def findings(self) -> list[Finding]:
        return [*self.errors, *self.warnings, *self.suggestions]

    def add(self, finding: Finding) -> None:
        if finding.severity == Priority.ERROR.value:
            self.errors.append(finding)
        elif finding.severity == Priority.WARNING.value:
            self.warnings.append(finding)
        else:
            self.suggestions.append(finding)

    def to_dict(self) -> dict[str, Any]:
        return {
            "file_path": self.file_path,
            "errors": [f.to_dict() for f in self.errors],
            "warnings": [f.to_dict() for f in self.warnings],
            "suggestions": [f.to_dict() for f in self.suggestions],
            "stats": {
                "rules_applied": self.stats.rules_applied,
                "rules_failed": self.stats.rules_failed,
                "findings": self.stats.findings,
                "applications_recorded": self.stats.applications_recorded,
                "elapsed_ms": self.stats.elapsed_ms,
                "cache_hit": self.stats.cache_hit,
            },
        }


@dataclass
class ProjectValidation:
    """Combined results of validating several files."""

    results: list[ValidationResult] = field(default_factory=list)
    files_scanned: int = 0
    elapsed_ms: float = 0.0

    @property
    def errors(self) -> list[Finding]:
        return [f for r in self.results for f in r.errors]

    @property
    def warnings(self) -> list[Finding]:
        return [f for r in self.results for f in r.warnings]

    @property
    def suggestions(self) -> list[Finding]:
        return [f for r in self.results for f in r.suggestions]

    @property
    def rules_applied(self) -> int:
        return max((r.stats.rules_applied for r in self.results), default=0)


# ---------------------------------------------------------------------------
# Matching
# ---------------------------------------------------------------------------


def scan_rule(
    compiled: CompiledRule, lines: Sequence[str], file_path: str | None
) -> list[Finding]:
    """Apply one compiled rule to every line, returning its findings.

    Raises whatever the matcher raises; the caller isolates failures.
    """
    matcher = compiled.matcher
    if matcher is None:
        return []
    rule = compiled.rule
    findings: list[Finding] = []
    for idx, line in enumerate(lines):
        fix_line: str | None = None
        fix_done = False
        for m in matcher.iter_line(line):
            if compiled.auto_fix is not None and not fix_done:
                fix_line = compiled.auto_fix.apply(line)
                fix_done = True
            findings.append(
                Finding(
                    rule_id=rule.rule_id,
                    file_path=file_path,
                    line=idx + 1,
                    column=m.start + 1,
                    matched_text=m.text,
                    message=rule.message,
                    suggestion=rule.suggestion,
                    severity=rule.priority.value,
                    category=rule.category,
                    scope=rule.scope.value,
                    auto_fix_replacement=fix_line,
                )
            )
    return findings


def split_lines(content: str) -> list[str]:
    """Split on ``\\n`` and drop a trailing ``\\r`` so columns ignore CRLF."""
    return [line[:-1] if line.endswith("\r") else line for line in content.split("\n")]


def validate_content(
    cache: RuleCache,
    store: RuleStore,
    content: str,
    *,
    file_path: str | None,
    client_name: str | None,
    project_path: str | None,
    technologies: Sequence[str],
) -> ValidationResult:
    """Validate *content* against every rule that applies to client/project.

    Rules run in resolution order.  A rule that failed to compile, or whose
    matcher raises, is skipped and recorded as a failed application; the
    remaining rules still run.  Application records are written in one batch
    before returning; a recording failure is logged, never raised.
    """
    start = time.monotonic()
    result = ValidationResult(file_path=file_path)

    scopes = resolve_scopes(client_name, project_path)
    rule_set, cache_hit = cache.lookup(scopes, technologies, client_name, project_path)
    result.stats.cache_hit = cache_hit

    lines = split_lines(content)
    applications: list[RuleApplication] = []

    def _record(rule_id: str, line_number: int, *, success: bool, rule_start: float) -> None:
        applications.append(
            RuleApplication(
                rule_id=rule_id,
                project_path=project_path,
                client_name=client_name,
                file_path=file_path,
                line_number=line_number,
                success=success,
                execution_time_ms=(time.monotonic() - rule_start) * 1000,
            )
        )

    for compiled in rule_set:
        rule_start = time.monotonic()
        rule_id = compiled.rule.rule_id

        if compiled.matcher is None:
            result.stats.rules_failed += 1
            _record(rule_id, 0, success=False, rule_start=rule_start)
            continue

        try:
            findings = scan_rule(compiled, lines, file_path)
        except Exception as exc:  # isolate one misbehaving rule from the batch
            logger.warning("Error applying rule %s to %s: %s", rule_id, file_path, exc)
            result.stats.rules_failed += 1
            _record(rule_id, 0, success=False, rule_start=rule_start)
            continue

        result.stats.rules_applied += 1
        for finding in findings:
            result.add(finding)
            _record(rule_id, finding.line, success=True, rule_start=rule_start)
        if not findings:
            _record(rule_id, 0, success=False, rule_start=rule_start)

    result.stats.findings = len(result.findings)
    try:
        result.stats.applications_recorded = store.record_applications(applications)
    except StoreError as exc:
        logger.warning("Could not record rule applications for %s: %s", file_path, exc)

    result.stats.elapsed_ms = (time.monotonic() - start) * 1000
    return result


# ---------------------------------------------------------------------------
# File collection
# ---------------------------------------------------------------------------


def collect_source_files(paths: Iterable[Path]) -> list[Path]:
    """Expand files and directories into a sorted list of source files.

    Directories are walked recursively, skipping hidden directories and
    build output (``node_modules``, ``dist``, ``build``).
    """
    found: set[Path] = set()
    for path in paths:
        if path.is_file():
            found.add(path)
            continue
        if not path.is_dir():
            continue
        for candidate in path.rglob("*"):
            if candidate.suffix not in SOURCE_EXTENSIONS:
                continue
            rel_dirs = candidate.relative_to(path).parts[:-1]
            if any(d.startswith(".") or d in SKIP_DIRS for d in rel_dirs):
                continue
            if candidate.is_file():
                found.add(candidate)
    return sorted(found)
