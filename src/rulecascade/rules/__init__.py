"""Rules domain: models, scope resolution, pattern compilation, errors.

The engine, store and learning modules are NOT re-exported here; they pull
in the infrastructure layer, which itself imports from this package.
Import them directly::

    from rulecascade.rules.engine import RuleEngine
"""

from rulecascade.rules.compiler import AutoFix, Matcher, PatternCompiler, parse_auto_fix
from rulecascade.rules.errors import CompileError, ConfigError, RuleEngineError, StoreError
from rulecascade.rules.models import (
    SCOPE_LADDER,
    AggregatedRule,
    CodePattern,
    Priority,
    RuleApplication,
    Scope,
    ValidationRule,
    make_rule_id,
    next_scope,
    parse_scope,
    previous_scope,
)
from rulecascade.rules.scopes import resolve_scopes

__all__ = [
    "SCOPE_LADDER",
    "AggregatedRule",
    "AutoFix",
    "CodePattern",
    "CompileError",
    "ConfigError",
    "Matcher",
    "PatternCompiler",
    "Priority",
    "RuleApplication",
    "RuleEngineError",
    "Scope",
    "StoreError",
    "ValidationRule",
    "make_rule_id",
    "next_scope",
    "parse_auto_fix",
    "parse_scope",
    "previous_scope",
    "resolve_scopes",
]
