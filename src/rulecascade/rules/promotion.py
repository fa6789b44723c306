"""Effectiveness and promotion: move proven rules up the scope ladder."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from rulecascade.infrastructure.config import DeactivationPolicy, PromotionPolicy
from rulecascade.rules.models import Scope, next_scope, previous_scope

if TYPE_CHECKING:
    from rulecascade.infrastructure.config import EngineConfig
    from rulecascade.rules.models import AggregatedRule
    from rulecascade.rules.store import RuleStore

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Data classes
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Promotion:
    """A scope change applied to one rule."""

    rule_id: str
    old_scope: Scope
    new_scope: Scope
    applications: int
    success_rate: float
    effectiveness_score: float


@dataclass
class PromotionResult:
    candidates: int = 0
    promotions: list[Promotion] = field(default_factory=list)

    @property
    def promoted(self) -> int:
        return len(self.promotions)


@dataclass
class PropagationStats:
    """Outcome of one full propagation cycle."""

    rules_rescored: int = 0
    rules_analyzed: int = 0
    rules_promoted: int = 0
    rules_deactivated: int = 0
    confidence_adjusted: int = 0
    elapsed_ms: float = 0.0


# ---------------------------------------------------------------------------
# Promotion
# ---------------------------------------------------------------------------


def calculate_new_scope(candidate: AggregatedRule, policy: PromotionPolicy) -> Scope:
    """Return the scope *candidate* should move to (its current scope if none).

    Only one rung is climbed per call, and only when both effectiveness and
    success rate clear the bar and the rung's application threshold is met.
    """
    rule = candidate.rule
    if (
        rule.effectiveness_score < policy.promote_effectiveness
        or candidate.success_rate < policy.promote_success_rate
    ):
        return rule.scope

    target = next_scope(rule.scope)
    needed = policy.ladder.get(rule.scope)
    if target is None or needed is None or candidate.applications < needed:
        return rule.scope
    return target


def propagate_effective_rules(
    store: RuleStore, policy: PromotionPolicy | None = None
) -> PromotionResult:
    """Promote every candidate rule that has earned a broader scope.

    Falling effectiveness only blocks promotion; nothing is demoted or
    deactivated here.

    Raises
    ------
    StoreError
        When candidates cannot be read or a promotion cannot be written.
    """
    policy = policy or PromotionPolicy()
    candidates = store.aggregate_effectiveness(
        policy.promotable_scopes,
        policy.min_effectiveness,
        policy.min_confidence,
        policy.min_applications,
    )
    result = PromotionResult(candidates=len(candidates))

    for candidate in candidates:
        rule = candidate.rule
        new_scope = calculate_new_scope(candidate, policy)
        if new_scope == rule.scope:
            continue
        store.set_scope(rule.rule_id, new_scope)
        store.log_promotion(
            rule.rule_id,
            rule.scope,
            new_scope,
            effectiveness_score=rule.effectiveness_score,
            applications=candidate.applications,
            success_rate=candidate.success_rate,
        )
        result.promotions.append(
            Promotion(
                rule_id=rule.rule_id,
                old_scope=rule.scope,
                new_scope=new_scope,
                applications=candidate.applications,
                success_rate=candidate.success_rate,
                effectiveness_score=rule.effectiveness_score,
            )
        )
        logger.info(
            "Promoted rule %s from %s to %s (%d applications, %.0f%% success)",
            rule.rule_id,
            rule.scope.value,
            new_scope.value,
            candidate.applications,
            candidate.success_rate * 100,
        )

    return result


def demote_rule(store: RuleStore, rule_id: str) -> Scope | None:
    """Move a rule one rung narrower. Returns the new scope, or None if it cannot move."""
    rule = store.get_rule(rule_id)
    if rule is None:
        return None
    target = previous_scope(rule.scope)
    if target is None:
        return None
    store.set_scope(rule_id, target)
    logger.info("Demoted rule %s from %s to %s", rule_id, rule.scope.value, target.value)
    return target


# ---------------------------------------------------------------------------
# Deactivation
# ---------------------------------------------------------------------------


def should_deactivate(candidate: AggregatedRule, policy: DeactivationPolicy) -> bool:
    if candidate.applications < policy.min_applications:
        return False
    return (
        candidate.rule.effectiveness_score < policy.max_effectiveness
        or (
            candidate.success_rate < policy.min_success_rate
            and candidate.applications > policy.success_rate_applications
        )
        or candidate.false_positive_rate > policy.max_false_positive_rate
    )


def deactivate_ineffective_rules(
    store: RuleStore, policy: DeactivationPolicy | None = None
) -> list[str]:
    """Switch off rules that keep failing. Returns the deactivated rule ids."""
    policy = policy or DeactivationPolicy()
    deactivated: list[str] = []
    for candidate in store.aggregate_active(policy.min_applications):
        if should_deactivate(candidate, policy):
            store.deactivate_rule(candidate.rule.rule_id)
            logger.info("Deactivated ineffective rule %s", candidate.rule.rule_id)
            deactivated.append(candidate.rule.rule_id)
    return deactivated


# ---------------------------------------------------------------------------
# Full cycle
# ---------------------------------------------------------------------------


def run_propagation_cycle(store: RuleStore, config: EngineConfig) -> PropagationStats:
    """Rescore, promote, optionally deactivate, then adjust confidence scores.

    Effectiveness is recomputed from recorded applications first so promotion
    and confidence adjustment see current scores.  Deactivation only runs
    when ``deactivation.enabled`` is set.
    """
    start = time.monotonic()
    stats = PropagationStats()
    try:
        stats.rules_rescored = store.recompute_effectiveness()
        promotion = propagate_effective_rules(store, config.promotion)
        stats.rules_analyzed = promotion.candidates
        stats.rules_promoted = promotion.promoted

        if config.deactivation.enabled:
            stats.rules_deactivated = len(
                deactivate_ineffective_rules(store, config.deactivation)
            )

        stats.confidence_adjusted = store.adjust_confidence_scores()
        store.mark_propagated()
    except Exception:
        logger.exception("Propagation cycle failed")
        raise

    stats.elapsed_ms = (time.monotonic() - start) * 1000
    logger.info(
        "Propagation cycle: %d promoted, %d deactivated, %d confidence adjusted (%.0f ms)",
        stats.rules_promoted,
        stats.rules_deactivated,
        stats.confidence_adjusted,
        stats.elapsed_ms,
    )
    return stats
