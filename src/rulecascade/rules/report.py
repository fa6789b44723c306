"""Output formatters for validation results, rule listings and metrics."""

from __future__ import annotations

import json
from dataclasses import asdict
from io import StringIO
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Sequence

    from rulecascade.rules.applier import Finding, ProjectValidation
    from rulecascade.rules.models import ValidationRule
    from rulecascade.rules.promotion import PropagationStats
    from rulecascade.rules.store import PromotionRecord, RuleSummary

_SEVERITY_MARKS: dict[str, str] = {
    "error": "✗",
    "warning": "!",
    "suggestion": "·",
}


def _location(finding: Finding) -> str:
    path = finding.file_path or "<input>"
    return f"{path}:{finding.line}:{finding.column}"


# ---------------------------------------------------------------------------
# Validation results
# ---------------------------------------------------------------------------


def format_rich(result: ProjectValidation) -> str:
    """Format validation results as human-readable text.

    Example output::

        Files: 3 scanned, 7 rules applied

        ! src/app.js:2:1 [warning] console-log-call
          Avoid console.log in production code
          fix: logger.debug(1);

        1 finding (errors: 0, warnings: 1, suggestions: 0, 0.1s)
    """
    lines: list[str] = [
        f"Files: {result.files_scanned} scanned, {result.rules_applied} rules applied",
        "",
    ]

    findings = [*result.errors, *result.warnings, *result.suggestions]
    elapsed_str = f"{result.elapsed_ms / 1000:.1f}s"

    if not findings:
        lines.append(f"✓ No findings ({elapsed_str})")
        return "\n".join(lines)

    for f in findings:
        mark = _SEVERITY_MARKS.get(f.severity, "?")
        lines.append(f"{mark} {_location(f)} [{f.severity}] {f.rule_id}")
        lines.append(f"  {f.message}")
        if f.suggestion:
            lines.append(f"  hint: {f.suggestion}")
        if f.auto_fix_replacement is not None:
            lines.append(f"  fix: {f.auto_fix_replacement.strip()}")
        lines.append("")

    count = len(findings)
    noun = "finding" if count == 1 else "findings"
    lines.append(
        f"{count} {noun} (errors: {len(result.errors)}, warnings: {len(result.warnings)},"
        f" suggestions: {len(result.suggestions)}, {elapsed_str})"
    )
    return "\n".join(lines)


def format_json(result: ProjectValidation) -> str:
    """Format validation results as JSON with ``files`` and ``summary`` keys."""
    output: dict[str, object] = {
        "files": [r.to_dict() for r in result.results],
        "summary": {
            "files_scanned": result.files_scanned,
            "rules_applied": result.rules_applied,
            "errors": len(result.errors),
            "warnings": len(result.warnings),
            "suggestions": len(result.suggestions),
            "elapsed_ms": result.elapsed_ms,
        },
    }
    return json.dumps(output, indent=2)


def format_porcelain(result: ProjectValidation) -> str:
    """One line per finding: ``path:line:column:severity:rule_id:message``.

    Returns an empty string when there are no findings.
    """
    lines = [
        f"{_location(f)}:{f.severity}:{f.rule_id}:{f.message}"
        for f in [*result.errors, *result.warnings, *result.suggestions]
    ]
    return "\n".join(lines)


# ---------------------------------------------------------------------------
# Rules and metrics (rich tables)
# ---------------------------------------------------------------------------


def rules_to_json(rules: Sequence[ValidationRule]) -> str:
    return json.dumps([r.to_dict() for r in rules], indent=2, ensure_ascii=False)


def render_rules_table(rules: Sequence[ValidationRule]) -> str:
    from rich.console import Console
    from rich.table import Table

    buf = StringIO()
    console = Console(file=buf, force_terminal=False, width=120)

    if not rules:
        console.print("No active rules.")
        return buf.getvalue()

    table = Table(title=f"Rules ({len(rules)})", box=None, padding=(0, 1))
    table.add_column("Rule", style="cyan", no_wrap=True)
    table.add_column("Scope")
    table.add_column("Priority")
    table.add_column("Tech")
    table.add_column("Eff.", justify="right")
    table.add_column("Conf.", justify="right")
    table.add_column("Seen", justify="right")
    for r in rules:
        table.add_row(
            r.rule_id,
            r.scope.value,
            r.priority.value,
            r.technology,
            f"{r.effectiveness_score:.2f}",
            f"{r.confidence:.2f}",
            str(r.occurrences),
        )
    console.print(table)
    return buf.getvalue()


def summary_to_json(summary: RuleSummary) -> str:
    return json.dumps(asdict(summary), indent=2)


def render_summary(summary: RuleSummary) -> str:
    """Render store metrics as a rich table."""
    from rich.console import Console
    from rich.table import Table

    buf = StringIO()
    console = Console(file=buf, force_terminal=False, width=80)

    def _pct(value: float | None) -> str:
        return "n/a" if value is None else f"{value * 100:.0f}%"

    table = Table(title="Rule Engine", show_header=False, box=None, padding=(0, 1))
    table.add_column("metric", style="cyan")
    table.add_column("value", justify="right")
    table.add_row("Active rules", str(summary.total_rules))
    for scope_name, count in summary.rules_by_scope.items():
        table.add_row(f"  {scope_name}", str(count))
    table.add_row("Avg effectiveness", f"{summary.avg_effectiveness:.2f}")
    conf = "n/a" if summary.avg_confidence is None else f"{summary.avg_confidence:.2f}"
    table.add_row("Avg confidence", conf)
    table.add_row("Applications", str(summary.total_applications))
    table.add_row("Success rate", _pct(summary.avg_success_rate))
    table.add_row("Code patterns", str(summary.code_patterns))
    table.add_row("Promotions (7d)", str(summary.recent_promotions))
    table.add_row("Last propagation", summary.last_propagation or "never")
    console.print(table)
    return buf.getvalue()


def promotions_to_json(records: Sequence[PromotionRecord]) -> str:
    return json.dumps([asdict(r) for r in records], indent=2)


def render_promotions_table(records: Sequence[PromotionRecord]) -> str:
    from rich.console import Console
    from rich.table import Table

    buf = StringIO()
    console = Console(file=buf, force_terminal=False, width=120)

    if not records:
        console.print("No promotions recorded.")
        return buf.getvalue()

    table = Table(title=f"Promotions ({len(records)})", box=None, padding=(0, 1))
    table.add_column("When", no_wrap=True)
    table.add_column("Rule", style="cyan", no_wrap=True)
    table.add_column("From")
    table.add_column("To")
    table.add_column("Eff.", justify="right")
    table.add_column("Apps", justify="right")
    table.add_column("Success", justify="right")
    for r in records:
        table.add_row(
            r.promoted_at,
            r.rule_id,
            r.old_scope,
            r.new_scope,
            f"{r.effectiveness_score:.2f}",
            str(r.applications),
            f"{r.success_rate * 100:.0f}%",
        )
    console.print(table)
    return buf.getvalue()


def format_propagation(stats: PropagationStats) -> str:
    return (
        f"Promoted {stats.rules_promoted} of {stats.rules_analyzed} candidate(s), "
        f"deactivated {stats.rules_deactivated}, "
        f"adjusted confidence on {stats.confidence_adjusted} "
        f"({stats.elapsed_ms:.0f} ms)"
    )
