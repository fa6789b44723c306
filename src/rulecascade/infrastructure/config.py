"""Engine configuration: thresholds, TTLs, and paths from ``config.yml``."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

import yaml

from rulecascade.rules.errors import ConfigError
from rulecascade.rules.models import Scope, parse_scope

logger = logging.getLogger(__name__)

CONFIG_DIR = ".rulecascade"
CONFIG_FILE = "config.yml"
DEFAULT_DB_NAME = "rules.db"

# ---------------------------------------------------------------------------
# Data structures (all frozen)
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PromotionPolicy:
    """Thresholds gating scope promotion.

    Candidate filters use strict comparisons (``>``) for effectiveness and
    confidence; the promotion decision itself uses ``>=``.
    """

    promotable_scopes: tuple[Scope, ...] = (Scope.PROJECT, Scope.CLIENT)
    min_effectiveness: float = 0.7
    min_confidence: float = 0.8
    min_applications: int = 3
    promote_effectiveness: float = 0.8
    promote_success_rate: float = 0.7
    # Applications required to leave each rung.
    ladder: dict[Scope, int] = field(
        default_factory=lambda: {
            Scope.PROJECT: 5,
            Scope.CLIENT: 10,
            Scope.ORGANIZATION: 20,
        }
    )


@dataclass(frozen=True)
class DeactivationPolicy:
    """Criteria for switching off consistently ineffective rules."""

    enabled: bool = False
    min_applications: int = 10
    max_effectiveness: float = 0.2
    min_success_rate: float = 0.3
    success_rate_applications: int = 20
    max_false_positive_rate: float = 0.5


@dataclass(frozen=True)
class EngineConfig:
    """Top-level engine settings (``engine`` section of ``config.yml``)."""

    db_path: Path = Path(CONFIG_DIR) / DEFAULT_DB_NAME
    cache_ttl_seconds: float = 300.0
    default_technologies: tuple[str, ...] = ("javascript",)
    confidence_step: float = 0.05
    min_pattern_frequency: int = 1
    propagation_interval_hours: float = 24.0
    retention_days: int = 90
    promotion: PromotionPolicy = field(default_factory=PromotionPolicy)
    deactivation: DeactivationPolicy = field(default_factory=DeactivationPolicy)

    def resolve_db_path(self, project_root: Path) -> Path:
        """Return the database path, relative paths anchored at *project_root*."""
        if self.db_path.is_absolute():
            return self.db_path
        return project_root / self.db_path


# ---------------------------------------------------------------------------
# Parsing helpers
# ---------------------------------------------------------------------------


def _as_float(section: str, key: str, value: object) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        msg = f"{section}.{key} must be a number, got {value!r}"
        raise ConfigError(msg)
    return float(value)


def _as_int(section: str, key: str, value: object) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        msg = f"{section}.{key} must be an integer, got {value!r}"
        raise ConfigError(msg)
    return value


def _as_scope(section: str, value: object) -> Scope:
    try:
        return parse_scope(str(value))
    except ValueError as exc:
        msg = f"{section}: {exc}"
        raise ConfigError(msg) from exc


def _parse_promotion(data: dict[str, Any]) -> PromotionPolicy:
    defaults = PromotionPolicy()
    kwargs: dict[str, Any] = {}

    for key in ("min_effectiveness", "min_confidence", "promote_effectiveness",
                "promote_success_rate"):
        if key in data:
            kwargs[key] = _as_float("promotion", key, data[key])
    if "min_applications" in data:
        kwargs["min_applications"] = _as_int("promotion", "min_applications",
                                             data["min_applications"])

    scopes_raw = data.get("promotable_scopes")
    if scopes_raw is not None:
        if not isinstance(scopes_raw, list):
            msg = "promotion.promotable_scopes must be a list"
            raise ConfigError(msg)
        kwargs["promotable_scopes"] = tuple(
            _as_scope("promotion.promotable_scopes", s) for s in scopes_raw
        )

    ladder_raw = data.get("ladder")
    if ladder_raw is not None:
        if not isinstance(ladder_raw, dict):
            msg = "promotion.ladder must be a mapping of scope -> applications"
            raise ConfigError(msg)
        ladder = dict(defaults.ladder)
        for scope_name, needed in ladder_raw.items():
            scope = _as_scope("promotion.ladder", scope_name)
            if scope is Scope.GLOBAL:
                msg = "promotion.ladder: global is the top rung and cannot be promoted"
                raise ConfigError(msg)
            ladder[scope] = _as_int("promotion.ladder", str(scope_name), needed)
        kwargs["ladder"] = ladder

    return PromotionPolicy(**kwargs)


def _parse_deactivation(data: dict[str, Any]) -> DeactivationPolicy:
    kwargs: dict[str, Any] = {}
    if "enabled" in data:
        kwargs["enabled"] = bool(data["enabled"])
    for key in ("min_applications", "success_rate_applications"):
        if key in data:
            kwargs[key] = _as_int("deactivation", key, data[key])
    for key in ("max_effectiveness", "min_success_rate", "max_false_positive_rate"):
        if key in data:
            kwargs[key] = _as_float("deactivation", key, data[key])
    return DeactivationPolicy(**kwargs)


def parse_engine_config(data: dict[str, Any]) -> EngineConfig:
    """Build an :class:`EngineConfig` from the ``engine`` mapping.

    Missing keys keep their defaults; wrongly typed values raise
    :class:`ConfigError`.
    """
    kwargs: dict[str, Any] = {}

    if "db_path" in data:
        kwargs["db_path"] = Path(str(data["db_path"]))
    if "cache_ttl_seconds" in data:
        kwargs["cache_ttl_seconds"] = _as_float("engine", "cache_ttl_seconds",
                                                data["cache_ttl_seconds"])
    if "confidence_step" in data:
        kwargs["confidence_step"] = _as_float("engine", "confidence_step",
                                              data["confidence_step"])
    if "propagation_interval_hours" in data:
        kwargs["propagation_interval_hours"] = _as_float(
            "engine", "propagation_interval_hours", data["propagation_interval_hours"]
        )
    for key in ("min_pattern_frequency", "retention_days"):
        if key in data:
            kwargs[key] = _as_int("engine", key, data[key])

    techs = data.get("default_technologies")
    if techs is not None:
        if not isinstance(techs, list) or not techs:
            msg = "engine.default_technologies must be a non-empty list"
            raise ConfigError(msg)
        kwargs["default_technologies"] = tuple(str(t) for t in techs)

    promotion = data.get("promotion")
    if isinstance(promotion, dict):
        kwargs["promotion"] = _parse_promotion(promotion)
    deactivation = data.get("deactivation")
    if isinstance(deactivation, dict):
        kwargs["deactivation"] = _parse_deactivation(deactivation)

    return EngineConfig(**kwargs)


# ---------------------------------------------------------------------------
# Config loading
# ---------------------------------------------------------------------------


def config_path(project_root: Path) -> Path:
    return project_root / CONFIG_DIR / CONFIG_FILE


def load_engine_config(project_root: Path) -> EngineConfig:
    """Load engine settings from ``.rulecascade/config.yml``.

    Falls back to defaults for a missing file, a missing ``engine`` section,
    or an unreadable file.
    """
    path = config_path(project_root)
    if not path.is_file():
        return EngineConfig()

    try:
        with path.open("r", encoding="utf-8") as fh:
            data = yaml.safe_load(fh)
    except (OSError, yaml.YAMLError):
        logger.warning("Failed to read %s, using default engine settings", path)
        return EngineConfig()

    if not isinstance(data, dict):
        return EngineConfig()

    engine_section = data.get("engine")
    if not isinstance(engine_section, dict):
        return EngineConfig()

    return parse_engine_config(engine_section)


def default_config_yaml() -> str:
    """Render the default configuration as YAML (used by ``rulecascade init``)."""
    cfg = EngineConfig()
    promotion = {
        f.name: getattr(cfg.promotion, f.name)
        for f in fields(PromotionPolicy)
        if f.name not in ("promotable_scopes", "ladder")
    }
    promotion["promotable_scopes"] = [s.value for s in cfg.promotion.promotable_scopes]
    promotion["ladder"] = {s.value: n for s, n in cfg.promotion.ladder.items()}
    data = {
        "engine": {
            "db_path": str(cfg.db_path),
            "cache_ttl_seconds": cfg.cache_ttl_seconds,
            "default_technologies": list(cfg.default_technologies),
            "confidence_step": cfg.confidence_step,
            "min_pattern_frequency": cfg.min_pattern_frequency,
            "propagation_interval_hours": cfg.propagation_interval_hours,
            "retention_days": cfg.retention_days,
            "promotion": promotion,
            "deactivation": {
                f.name: getattr(cfg.deactivation, f.name) for f in fields(DeactivationPolicy)
            },
        }
    }
    return yaml.safe_dump(data, sort_keys=False)
