"""Shared test fixtures for rulecascade."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import pytest

from rulecascade.rules.engine import RuleEngine
from rulecascade.rules.models import Priority, RuleApplication, Scope, ValidationRule
from rulecascade.rules.store import RuleStore

if TYPE_CHECKING:
    from collections.abc import Callable, Iterator
    from pathlib import Path


@pytest.fixture()
def tmp_project(tmp_path: Path) -> Path:
    """Create a minimal project structure for testing."""
    (tmp_path / ".rulecascade").mkdir()
    src_dir = tmp_path / "src"
    src_dir.mkdir()
    return tmp_path


@pytest.fixture()
def store(tmp_path: Path) -> Iterator[RuleStore]:
    """A fresh, empty rule store."""
    s = RuleStore.open(tmp_path / "store" / "rules.db")
    yield s
    s.close()


@pytest.fixture()
def engine(tmp_project: Path) -> Iterator[RuleEngine]:
    """An engine with default config over an empty store in *tmp_project*."""
    eng = RuleEngine.open(tmp_project)
    yield eng
    eng.close()


@pytest.fixture()
def make_rule() -> Callable[..., ValidationRule]:
    """Factory for rules with sensible defaults (global javascript warning)."""

    def _make(rule_id: str = "style-javascript-0001", **overrides: Any) -> ValidationRule:
        fields: dict[str, Any] = {
            "rule_id": rule_id,
            "scope": Scope.GLOBAL,
            "category": "style",
            "priority": Priority.WARNING,
            "technology": "javascript",
            "pattern_text": r"\bconsole\.log\s*\(",
            "message": "Avoid console.log in production code",
            "suggestion": "Use the project logger",
        }
        fields.update(overrides)
        return ValidationRule(**fields)

    return _make


@pytest.fixture()
def record_outcomes() -> Callable[..., None]:
    """Record *successes* hits and *failures* misses for a rule."""

    def _record(
        target: RuleStore,
        rule_id: str,
        *,
        successes: int = 0,
        failures: int = 0,
        false_positives: int = 0,
        fixes: int = 0,
    ) -> None:
        apps = [
            RuleApplication(
                rule_id=rule_id,
                project_path="proj",
                client_name="acme",
                file_path="a.js",
                line_number=i + 1,
                success=i < successes,
                false_positive=i < false_positives,
                fix_applied=i < fixes,
            )
            for i in range(successes + failures)
        ]
        target.record_applications(apps)

    return _record
