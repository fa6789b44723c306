"""Rule data model: scope ladder, priorities, rules, applications, code patterns."""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    import sqlite3

# ---------------------------------------------------------------------------
# Scope ladder
# ---------------------------------------------------------------------------


class Scope(str, Enum):
    """Breadth of applicability of a rule, narrowest first."""

    PROJECT = "project"
    CLIENT = "client"
    ORGANIZATION = "organization"
    GLOBAL = "global"


# Narrowest to broadest. Promotion walks forward, demotion walks back.
SCOPE_LADDER: tuple[Scope, ...] = (
    Scope.PROJECT,
    Scope.CLIENT,
    Scope.ORGANIZATION,
    Scope.GLOBAL,
)


def next_scope(scope: Scope) -> Scope | None:
    """Return the next broader scope, or ``None`` if *scope* is already global."""
    idx = SCOPE_LADDER.index(scope)
    if idx + 1 >= len(SCOPE_LADDER):
        return None
    return SCOPE_LADDER[idx + 1]


def previous_scope(scope: Scope) -> Scope | None:
    """Return the next narrower scope, or ``None`` if *scope* is project."""
    idx = SCOPE_LADDER.index(scope)
    if idx == 0:
        return None
    return SCOPE_LADDER[idx - 1]


def parse_scope(value: str) -> Scope:
    """Convert a stored scope string into a :class:`Scope`.

    Raises ``ValueError`` for unknown scope names.
    """
    try:
        return Scope(value)
    except ValueError:
        valid = [s.value for s in SCOPE_LADDER]
        msg = f"invalid scope '{value}', must be one of {valid}"
        raise ValueError(msg) from None


# ---------------------------------------------------------------------------
# Priorities and categories
# ---------------------------------------------------------------------------


class Priority(str, Enum):
    """Severity a rule reports its findings with."""

    ERROR = "error"
    WARNING = "warning"
    SUGGESTION = "suggestion"


PRIORITY_ORDER: tuple[Priority, ...] = (Priority.ERROR, Priority.WARNING, Priority.SUGGESTION)

VALID_CATEGORIES: frozenset[str] = frozenset(
    {"syntax", "performance", "security", "style", "api", "general"}
)
VALID_PATTERN_TYPES: frozenset[str] = frozenset({"regex"})


def make_rule_id(pattern_text: str, category: str, technology: str) -> str:
    """Derive the deterministic rule id, so identical patterns deduplicate."""
    digest = hashlib.md5(  # noqa: S324 - identity hash, not security
        f"{pattern_text}|{category}|{technology}".encode()
    ).hexdigest()
    return f"{category}-{technology}-{digest[:8]}"


def make_pattern_signature(pattern_text: str, category: str) -> str:
    """Signature of an error-derived pattern, independent of technology."""
    return hashlib.md5(f"{pattern_text}{category}".encode()).hexdigest()  # noqa: S324


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ValidationRule:
    """A learned or seeded code-quality rule stored at one scope."""

    rule_id: str
    scope: Scope
    category: str
    priority: Priority
    technology: str
    pattern_text: str
    message: str
    pattern_type: str = "regex"
    suggestion: str = ""
    auto_fix_pattern: str | None = None
    confidence: float = 0.5
    occurrences: int = 1
    effectiveness_score: float = 0.0
    is_active: bool = True
    learned_from: str | None = None
    created_at: str | None = None
    updated_at: str | None = None

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> ValidationRule:
        """Build a rule from a ``validation_rules`` row."""
        return cls(
            rule_id=row["rule_id"],
            scope=parse_scope(row["scope"]),
            category=row["category"],
            priority=Priority(row["priority"]),
            technology=row["technology"],
            pattern_text=row["pattern_text"],
            pattern_type=row["pattern_type"],
            message=row["message"],
            suggestion=row["suggestion"] or "",
            auto_fix_pattern=row["auto_fix_pattern"],
            confidence=float(row["confidence"]),
            occurrences=int(row["occurrences"]),
            effectiveness_score=float(row["effectiveness_score"]),
            is_active=bool(row["is_active"]),
            learned_from=row["learned_from"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "rule_id": self.rule_id,
            "scope": self.scope.value,
            "category": self.category,
            "priority": self.priority.value,
            "technology": self.technology,
            "pattern_text": self.pattern_text,
            "pattern_type": self.pattern_type,
            "message": self.message,
            "suggestion": self.suggestion,
            "auto_fix_pattern": self.auto_fix_pattern,
            "confidence": self.confidence,
            "occurrences": self.occurrences,
            "effectiveness_score": self.effectiveness_score,
            "is_active": self.is_active,
            "learned_from": self.learned_from,
        }


def rule_sort_key(rule: ValidationRule) -> tuple[int, int, float, float, str]:
    """Resolution order: most specific scope, then severity, effectiveness, confidence.

    ``rule_id`` is the final tie-breaker so the order is total and stable.
    """
    return (
        SCOPE_LADDER.index(rule.scope),
        PRIORITY_ORDER.index(rule.priority),
        -rule.effectiveness_score,
        -rule.confidence,
        rule.rule_id,
    )


@dataclass(frozen=True)
class RuleApplication:
    """One (rule, file, line) application event."""

    rule_id: str
    project_path: str | None
    client_name: str | None
    file_path: str | None
    line_number: int
    success: bool
    execution_time_ms: float = 0.0
    false_positive: bool = False
    fix_applied: bool = False
    applied_at: str | None = None


@dataclass(frozen=True)
class CodePattern:
    """Frequency-counted error-derived pattern, whether or not it became a rule."""

    signature: str
    pattern_text: str
    frequency: int
    classification: str
    confidence: float
    context: dict[str, Any] = field(default_factory=dict)
    file_type: str | None = None
    project_path: str | None = None
    client_name: str | None = None
    associated_rule_id: str | None = None

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> CodePattern:
        raw_context = row["pattern_context"]
        context: dict[str, Any] = json.loads(raw_context) if raw_context else {}
        return cls(
            signature=row["pattern_signature"],
            pattern_text=row["pattern_text"],
            frequency=int(row["frequency"]),
            classification=row["classification"],
            confidence=float(row["confidence"]),
            context=context,
            file_type=row["file_type"],
            project_path=row["project_path"],
            client_name=row["client_name"],
            associated_rule_id=row["associated_rule_id"],
        )


@dataclass(frozen=True)
class AggregatedRule:
    """A rule together with its aggregated application outcomes."""

    rule: ValidationRule
    applications: int
    successes: int
    false_positives: int = 0

    @property
    def success_rate(self) -> float:
        if self.applications <= 0:
            return 0.0
        return self.successes / self.applications

    @property
    def false_positive_rate(self) -> float:
        if self.applications <= 0:
            return 0.0
        return self.false_positives / self.applications
