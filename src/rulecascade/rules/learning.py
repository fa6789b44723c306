"""Rule learning: create or reinforce rules from reported errors."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from rulecascade.rules.extractor import (
    context_hints,
    determine_priority,
    determine_scope,
    determine_technology,
    extract_pattern,
    generate_auto_fix_pattern,
    generate_rule_message,
    generate_suggestion,
    resolve_category,
)
from rulecascade.rules.models import ValidationRule, make_pattern_signature, make_rule_id

if TYPE_CHECKING:
    from collections.abc import Mapping

    from rulecascade.rules.extractor import ErrorReport
    from rulecascade.rules.store import RuleStore

logger = logging.getLogger(__name__)

DEFAULT_CONFIDENCE = 0.6


def learn_from_error(
    store: RuleStore,
    report: ErrorReport,
    context: Mapping[str, Any] | None = None,
    *,
    confidence_step: float = 0.05,
    min_pattern_frequency: int = 1,
) -> str | None:
    """Learn from one error report and return the affected rule id.

    Returns ``None`` when no heuristic recognizes the error, or when the
    pattern has not yet been seen *min_pattern_frequency* times.  A pattern
    already covered by an active rule for the same technology reinforces that
    rule (occurrences + 1, confidence + *confidence_step*) instead of
    creating a duplicate.

    Raises
    ------
    StoreError
        When the store cannot be written; learning signals are never dropped
        silently.
    """
    pattern = extract_pattern(report)
    if pattern is None:
        logger.info("Could not extract a pattern from error: %.80s", report.error_message)
        return None

    technology = (context or {}).get("technology") or determine_technology(
        report.file_path, context_hints(report, context)
    )
    category = resolve_category(pattern, report.error_message)

    ctx: dict[str, Any] = report.to_context()
    if context:
        ctx.update(context)
    signature = make_pattern_signature(pattern.pattern, category)
    frequency = store.track_code_pattern(
        signature,
        pattern.pattern,
        confidence=pattern.confidence,
        context=ctx,
        file_type=technology,
        project_path=report.project_path,
        client_name=report.client_name,
    )

    existing = store.find_rule_by_pattern_and_technology(pattern.pattern, technology)
    if existing is not None:
        store.update_rule_occurrence(existing.rule_id, confidence_step)
        logger.info("Reinforced rule %s (pattern seen %d times)", existing.rule_id, frequency)
        return existing.rule_id

    rule_id = make_rule_id(pattern.pattern, category, technology)
    if store.get_rule(rule_id) is not None:
        # Same identity but switched off: count it, do not resurrect it.
        store.update_rule_occurrence(rule_id, confidence_step)
        logger.info("Pattern matches inactive rule %s; left inactive", rule_id)
        return rule_id

    if frequency < min_pattern_frequency:
        logger.info(
            "Pattern %s seen %d/%d times; not creating a rule yet",
            signature[:8],
            frequency,
            min_pattern_frequency,
        )
        return None

    rule = ValidationRule(
        rule_id=rule_id,
        scope=determine_scope(category, report.error_message, report.client_name),
        category=category,
        priority=determine_priority(report.error_message),
        technology=technology,
        pattern_text=pattern.pattern,
        pattern_type=pattern.pattern_type,
        message=generate_rule_message(pattern, report.error_message),
        suggestion=report.fix or generate_suggestion(pattern, category),
        auto_fix_pattern=generate_auto_fix_pattern(pattern, report.fix),
        confidence=pattern.confidence or DEFAULT_CONFIDENCE,
        learned_from=report.project_path,
    )
    store.insert_rule(rule)
    store.link_code_pattern(signature, rule_id)
    logger.info("Created %s rule %s at %s scope", rule.priority.value, rule_id, rule.scope.value)
    return rule_id
