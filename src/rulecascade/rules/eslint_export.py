"""Export resolved rules as an ESLint config for the ``learned-rules`` plugin."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from rulecascade.rules.models import Priority

if TYPE_CHECKING:
    from collections.abc import Iterable

    from rulecascade.rules.models import ValidationRule

PLUGIN_NAME = "learned-rules"
RULE_PREFIX = "learned/"

# Suggestions stay off unless a project turns them on explicitly.
_SEVERITY: dict[Priority, str] = {
    Priority.ERROR: "error",
    Priority.WARNING: "warn",
    Priority.SUGGESTION: "off",
}


def rule_meta(rule: ValidationRule) -> dict[str, Any]:
    """ESLint ``meta`` block describing one learned rule."""
    return {
        "type": "problem" if rule.priority is Priority.ERROR else "suggestion",
        "docs": {
            "description": rule.message,
            "category": rule.category,
            "recommended": rule.confidence > 0.7,
        },
        "fixable": "code" if rule.auto_fix_pattern else None,
        "schema": [],
    }


def build_eslint_config(
    rules: Iterable[ValidationRule],
    project_path: str | None = None,
    client_name: str | None = None,
    *,
    db_path: str | None = None,
) -> dict[str, Any]:
    """Build an ESLint config dict from *rules* (already resolved for the project).

    Each rule becomes ``learned/<rule_id>`` with severity ``error``, ``warn``
    or ``off`` by priority.  Per-rule metadata and patterns go under
    ``settings`` so the plugin can build matchers without the database.
    """
    eslint_rules: dict[str, str] = {}
    definitions: dict[str, dict[str, Any]] = {}
    for rule in rules:
        eslint_rules[f"{RULE_PREFIX}{rule.rule_id}"] = _SEVERITY[rule.priority]
        definitions[rule.rule_id] = {
            "meta": rule_meta(rule),
            "pattern": rule.pattern_text,
            "pattern_type": rule.pattern_type,
            "auto_fix": rule.auto_fix_pattern,
        }

    return {
        "plugins": [PLUGIN_NAME],
        "rules": eslint_rules,
        "settings": {
            PLUGIN_NAME: {
                "projectPath": project_path,
                "clientName": client_name,
                "dbPath": db_path,
                "definitions": definitions,
            }
        },
    }
