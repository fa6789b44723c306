"""Exception hierarchy for the rule engine."""

from __future__ import annotations


class RuleEngineError(Exception):
    """Base class for all rule engine failures."""


class CompileError(RuleEngineError):
    """Raised when a stored pattern cannot be turned into a matcher."""

    def __init__(self, pattern_text: str, pattern_type: str, reason: str) -> None:
        self.pattern_text = pattern_text
        self.pattern_type = pattern_type
        self.reason = reason
        super().__init__(f"Cannot compile {pattern_type} pattern {pattern_text!r}: {reason}")


class StoreError(RuleEngineError):
    """Raised when the rule store cannot be read or written."""


class ConfigError(RuleEngineError):
    """Raised when ``config.yml`` contains invalid engine settings."""
