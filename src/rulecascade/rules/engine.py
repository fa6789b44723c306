"""Rule engine facade: one store, one compiler and one cache per instance."""

from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import TYPE_CHECKING, Any

from rulecascade.infrastructure.config import EngineConfig, load_engine_config
from rulecascade.rules import learning, promotion
from rulecascade.rules.applier import (
    ProjectValidation,
    ValidationResult,
    collect_source_files,
    validate_content,
)
from rulecascade.rules.cache import RuleCache
from rulecascade.rules.compiler import PatternCompiler
from rulecascade.rules.models import Scope
from rulecascade.rules.store import RuleStore

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping, Sequence

    from rulecascade.rules.cache import CompiledRuleSet
    from rulecascade.rules.extractor import ErrorReport
    from rulecascade.rules.models import ValidationRule
    from rulecascade.rules.promotion import PromotionResult, PropagationStats
    from rulecascade.rules.store import PromotionRecord, RuleSummary

logger = logging.getLogger(__name__)


class RuleEngine:
    """Validate code against scoped rules and learn new rules from errors.

    Validations may run concurrently from several threads; they share the
    engine's cache and compiler.  Writes go through the store, which clears
    the cache after each committed rule change.
    """

    def __init__(self, store: RuleStore, config: EngineConfig | None = None) -> None:
        self.config = config or EngineConfig()
        self.store = store
        self.compiler = PatternCompiler()
        self.cache = RuleCache(store, self.compiler, ttl_seconds=self.config.cache_ttl_seconds)

    @classmethod
    def open(cls, project_root: Path, config: EngineConfig | None = None) -> RuleEngine:
        """Open the engine for *project_root*, loading ``config.yml`` if not given.

        Raises
        ------
        ConfigError
            If the configuration file holds invalid values.
        StoreError
            If the database cannot be opened.
        """
        config = config or load_engine_config(project_root)
        store = RuleStore.open(config.resolve_db_path(project_root))
        return cls(store, config)

    def close(self) -> None:
        self.store.close()

    def __enter__(self) -> RuleEngine:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def _technologies(self, technologies: Sequence[str] | None) -> tuple[str, ...]:
        return tuple(technologies) if technologies else self.config.default_technologies

    # -- validation ---------------------------------------------------------

    def validate(
        self,
        content: str,
        file_path: str | None = None,
        client_name: str | None = None,
        project_path: str | None = None,
        technologies: Sequence[str] | None = None,
    ) -> ValidationResult:
        """Validate *content* and return its findings. Never raises for bad rules."""
        return validate_content(
            self.cache,
            self.store,
            content,
            file_path=file_path,
            client_name=client_name,
            project_path=project_path,
            technologies=self._technologies(technologies),
        )

    def validate_file(
        self,
        path: Path,
        client_name: str | None = None,
        project_path: str | None = None,
        technologies: Sequence[str] | None = None,
    ) -> ValidationResult:
        content = path.read_text(encoding="utf-8", errors="replace")
        return self.validate(content, str(path), client_name, project_path, technologies)

    def validate_paths(
        self,
        paths: Iterable[Path],
        client_name: str | None = None,
        project_path: str | None = None,
        technologies: Sequence[str] | None = None,
    ) -> ProjectValidation:
        """Validate every source file under *paths* (files or directories)."""
        start = time.monotonic()
        files = collect_source_files(paths)
        project = ProjectValidation(files_scanned=len(files))
        for path in files:
            try:
                result = self.validate_file(path, client_name, project_path, technologies)
            except OSError as exc:
                logger.warning("Cannot read %s: %s", path, exc)
                continue
            project.results.append(result)
        project.elapsed_ms = (time.monotonic() - start) * 1000
        return project

    def get_rules_for_scope(
        self,
        scopes: Sequence[Scope | str],
        technologies: Sequence[str] | None = None,
        client_name: str | None = None,
        project_path: str | None = None,
    ) -> CompiledRuleSet:
        return self.cache.resolve(
            scopes, self._technologies(technologies), client_name, project_path
        )

    # -- learning -----------------------------------------------------------

    def learn_from_error(
        self, report: ErrorReport, context: Mapping[str, Any] | None = None
    ) -> str | None:
        return learning.learn_from_error(
            self.store,
            report,
            context,
            confidence_step=self.config.confidence_step,
            min_pattern_frequency=self.config.min_pattern_frequency,
        )

    # -- effectiveness and promotion ----------------------------------------

    def propagate_effective_rules(self) -> PromotionResult:
        return promotion.propagate_effective_rules(self.store, self.config.promotion)

    def run_propagation_cycle(self) -> PropagationStats:
        return promotion.run_propagation_cycle(self.store, self.config)

    def deactivate_ineffective_rules(self) -> list[str]:
        return promotion.deactivate_ineffective_rules(self.store, self.config.deactivation)

    def deactivate_rule(self, rule_id: str) -> bool:
        deactivated = self.store.deactivate_rule(rule_id)
        if deactivated:
            logger.info("Deactivated rule %s", rule_id)
        return deactivated

    def demote_rule(self, rule_id: str) -> Scope | None:
        return promotion.demote_rule(self.store, rule_id)

    def record_feedback(
        self,
        rule_id: str,
        file_path: str | None,
        line_number: int,
        *,
        false_positive: bool = False,
        fix_applied: bool = False,
        note: str | None = None,
    ) -> bool:
        """Mark a reported finding as a false positive or as fixed.

        Returns False when no application of *rule_id* was recorded at
        *file_path*:*line_number*.  Scores change on the next rescore.
        """
        found = self.store.record_feedback(
            rule_id,
            file_path,
            line_number,
            false_positive=false_positive,
            fix_applied=fix_applied,
            note=note,
        )
        if found:
            logger.info(
                "Recorded feedback for %s at %s:%d (false_positive=%s, fixed=%s)",
                rule_id,
                file_path,
                line_number,
                false_positive,
                fix_applied,
            )
        return found

    def rescore(self) -> int:
        """Recompute effectiveness scores from recorded applications."""
        return self.store.recompute_effectiveness()

    def prune(self, max_age_days: int | None = None) -> int:
        days = self.config.retention_days if max_age_days is None else max_age_days
        deleted = self.store.prune_applications(days)
        logger.info("Pruned %d rule application(s) older than %d days", deleted, days)
        return deleted

    # -- inspection ---------------------------------------------------------

    def list_rules(
        self,
        scopes: Sequence[Scope | str] | None = None,
        technologies: Sequence[str] | None = None,
    ) -> list[ValidationRule]:
        """Active rules, optionally filtered by scope and technology."""
        rules = self.store.list_all_rules()
        if scopes:
            wanted = {Scope(s) for s in scopes}
            rules = [r for r in rules if r.scope in wanted]
        if technologies:
            rules = [r for r in rules if r.technology in technologies]
        return rules

    def summary(self) -> RuleSummary:
        return self.store.summary()

    def list_promotions(self, limit: int = 50) -> list[PromotionRecord]:
        """Most recent promotions, newest first."""
        return self.store.list_promotions(limit)
