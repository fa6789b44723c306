"""rulecascade - multi-scope validation rule engine that learns from errors."""

__version__ = "0.1.0"
