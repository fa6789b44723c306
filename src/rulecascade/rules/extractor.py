"""Pattern extraction: turn an error report into a candidate rule pattern.

Heuristics run most-specific first and the first structural match wins.
Nothing is fabricated: an error that no heuristic recognizes yields no
pattern.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from pathlib import PurePath
from typing import TYPE_CHECKING, Any

from rulecascade.rules.compiler import escape_sed
from rulecascade.rules.models import Priority, Scope

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping

# ---------------------------------------------------------------------------
# Data classes
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ErrorReport:
    """An observed error and the code that produced it."""

    error_message: str
    code_snippet: str = ""
    file_path: str | None = None
    line_number: int | None = None
    project_path: str | None = None
    client_name: str | None = None
    fix: str | None = None

    def to_context(self) -> dict[str, Any]:
        return {
            "errorMessage": self.error_message,
            "codeSnippet": self.code_snippet,
            "filePath": self.file_path,
            "lineNumber": self.line_number,
            "projectPath": self.project_path,
            "clientName": self.client_name,
        }


@dataclass(frozen=True)
class ExtractedPattern:
    """A candidate pattern produced by one heuristic."""

    pattern: str
    category: str
    confidence: float
    description: str
    heuristic: str
    pattern_type: str = "regex"
    metadata: dict[str, str] = field(default_factory=dict)


# ---------------------------------------------------------------------------
# Heuristics (ordered, most specific first)
# ---------------------------------------------------------------------------

CLASS_PROPERTY_PATTERN = r"this\.\w+\s*=\s*[^;]+;"
CLASS_PROPERTY_AUTO_FIX = r"s/this\.(\w+)\s*=\s*([^;]+);/get$1 = () => $2;/g"
GOVERNANCE_PATTERN = r"\b(search\.create|record\.load|record\.save)\b"

_UNDEFINED_RE = re.compile(
    r"(\w+)\s+is\s+not\s+defined"
    r"|Cannot\s+read\s+property\s+'(\w+)'"
    r"|Cannot\s+read\s+properties\s+of\s+\w+\s+\(reading\s+'(\w+)'\)"
)
_UNDEFINED_TRIGGERS = ("undefined", "not defined", "Cannot read propert")


def _class_property_assignment(report: ErrorReport) -> ExtractedPattern | None:
    if "Expected ( but found ." in report.error_message and "this." in report.code_snippet:
        return ExtractedPattern(
            pattern=CLASS_PROPERTY_PATTERN,
            category="syntax",
            confidence=0.9,
            description="Invalid class property assignment",
            heuristic="class-property-assignment",
        )
    return None


def _governance_limit(report: ErrorReport) -> ExtractedPattern | None:
    message = report.error_message
    if "governance" in message or "USAGE_LIMIT_EXCEEDED" in message:
        return ExtractedPattern(
            pattern=GOVERNANCE_PATTERN,
            category="performance",
            confidence=0.8,
            description="Potential governance issue",
            heuristic="governance-limit",
        )
    return None


def _undefined_identifier(report: ErrorReport) -> ExtractedPattern | None:
    message = report.error_message
    if not any(trigger in message for trigger in _UNDEFINED_TRIGGERS):
        return None
    for text in (message, report.code_snippet):
        m = _UNDEFINED_RE.search(text)
        if m is None:
            continue
        name = next(g for g in m.groups() if g)
        return ExtractedPattern(
            pattern=rf"\b{re.escape(name)}\b",
            category="general",
            confidence=0.7,
            description=f"Undefined variable: {name}",
            heuristic="undefined-identifier",
            metadata={"identifier": name},
        )
    return None


HEURISTICS: tuple[Callable[[ErrorReport], ExtractedPattern | None], ...] = (
    _class_property_assignment,
    _governance_limit,
    _undefined_identifier,
)


def extract_pattern(report: ErrorReport) -> ExtractedPattern | None:
    """Return the first heuristic match for *report*, or None.

    A report without a code snippet never yields a pattern.
    """
    if not report.code_snippet or not report.error_message:
        return None
    for heuristic in HEURISTICS:
        pattern = heuristic(report)
        if pattern is not None:
            return pattern
    return None


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------

_API_RE = re.compile(r"\b(api|netsuite|platform)\b", re.IGNORECASE)


def categorize_message(message: str) -> str:
    """Map error text onto a rule category by keyword."""
    lowered = message.lower()
    if "syntax" in lowered:
        return "syntax"
    if "performance" in lowered or "governance" in lowered:
        return "performance"
    if "security" in lowered:
        return "security"
    if "style" in lowered or "convention" in lowered:
        return "style"
    if _API_RE.search(message):
        return "api"
    return "general"


def resolve_category(pattern: ExtractedPattern, message: str) -> str:
    """Use the heuristic's category, refined from the message when generic."""
    if pattern.category != "general":
        return pattern.category
    return categorize_message(message)


def determine_priority(message: str) -> Priority:
    lowered = message.lower()
    if "error" in lowered or "syntax" in lowered:
        return Priority.ERROR
    if "warning" in lowered or "performance" in lowered:
        return Priority.WARNING
    return Priority.SUGGESTION


_PLATFORM_HINTS = ("suitescript", "netsuite", "platform-script")
_EXTENSION_TECHNOLOGY = {
    ".js": "javascript",
    ".mjs": "javascript",
    ".cjs": "javascript",
    ".jsx": "javascript",
    ".ts": "typescript",
    ".tsx": "typescript",
    ".py": "python",
}


def determine_technology(file_path: str | None, hints: str = "") -> str:
    """Infer the technology tag from the file extension and free-text hints.

    JavaScript files mentioning a platform-script API in *hints* are tagged
    ``platform-script``.
    """
    if not file_path:
        return "general"
    technology = _EXTENSION_TECHNOLOGY.get(PurePath(file_path).suffix.lower(), "general")
    if technology == "javascript" and any(h in hints.lower() for h in _PLATFORM_HINTS):
        return "platform-script"
    return technology


def determine_scope(
    category: str, message: str, client_name: str | None
) -> Scope:
    """Pick the starting scope for a newly learned rule.

    Language-level faults apply everywhere; governance limits apply to the
    whole organization; client API misuse stays with that client; anything
    else starts at the project.
    """
    if category == "syntax" or "SyntaxError" in message or "ReferenceError" in message:
        return Scope.GLOBAL
    if category == "performance" and ("governance" in message or "USAGE_LIMIT" in message):
        return Scope.ORGANIZATION
    if client_name and category == "api":
        return Scope.CLIENT
    return Scope.PROJECT


# ---------------------------------------------------------------------------
# Rule text
# ---------------------------------------------------------------------------

_MAX_MESSAGE_LEN = 200

_CATEGORY_SUGGESTIONS = {
    "syntax": "Rewrite the construct using syntax the target runtime accepts.",
    "performance": "Reduce governed API calls, e.g. batch loads or use a saved search.",
    "security": "Review the flagged code for unsafe input handling.",
    "style": "Follow the project's code conventions.",
    "api": "Check the API documentation for the correct usage.",
}


def generate_rule_message(pattern: ExtractedPattern, error_message: str) -> str:
    first_line = error_message.strip().splitlines()[0] if error_message.strip() else ""
    text = f"{pattern.description}: {first_line}" if first_line else pattern.description
    if len(text) > _MAX_MESSAGE_LEN:
        text = text[: _MAX_MESSAGE_LEN - 3] + "..."
    return text


def generate_suggestion(pattern: ExtractedPattern, category: str) -> str:
    if pattern.heuristic == "undefined-identifier":
        name = pattern.metadata.get("identifier", "the identifier")
        return f"Declare or import '{name}' before using it."
    return _CATEGORY_SUGGESTIONS.get(category, "Review the flagged code.")


def generate_auto_fix_pattern(pattern: ExtractedPattern, fix: str | None) -> str | None:
    """Build a sed-style auto-fix from the reported fix, if one was given."""
    if not fix:
        return None
    if pattern.pattern == CLASS_PROPERTY_PATTERN:
        return CLASS_PROPERTY_AUTO_FIX
    return f"s/{escape_sed(pattern.pattern)}/{escape_sed(fix)}/g"


def context_hints(report: ErrorReport, context: Mapping[str, Any] | None) -> str:
    """Flatten free-text hints used for technology detection."""
    parts = [report.error_message, report.code_snippet]
    if context:
        parts.extend(str(v) for v in context.values() if v is not None)
    return " ".join(parts)
