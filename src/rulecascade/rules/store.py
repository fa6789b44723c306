"""Rule store gateway: the only writer of persisted rule state (SQLite)."""

from __future__ import annotations

import contextlib
import json
import logging
import sqlite3
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

from rulecascade.infrastructure.db import (
    create_schema,
    get_meta,
    open_db,
    seed_default_rules,
    set_meta,
)
from rulecascade.rules.errors import StoreError
from rulecascade.rules.models import (
    SCOPE_LADDER,
    AggregatedRule,
    CodePattern,
    RuleApplication,
    Scope,
    ValidationRule,
)

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable, Iterator, Sequence
    from pathlib import Path

logger = logging.getLogger(__name__)

LAST_PROPAGATION_KEY = "last_propagation"

_RULE_COLUMNS = (
    "rule_id, scope, category, priority, technology, pattern_text, pattern_type,"
    " message, suggestion, auto_fix_pattern, learned_from, confidence, occurrences,"
    " effectiveness_score, is_active, created_at, updated_at"
)

# Mirrors models.rule_sort_key so SQL and Python agree on resolution order.
_RULE_ORDER_SQL = (
    "ORDER BY CASE r.scope"
    " WHEN 'project' THEN 0 WHEN 'client' THEN 1"
    " WHEN 'organization' THEN 2 WHEN 'global' THEN 3 END,"
    " CASE r.priority WHEN 'error' THEN 0 WHEN 'warning' THEN 1 ELSE 2 END,"
    " r.effectiveness_score DESC, r.confidence DESC, r.rule_id"
)


@dataclass(frozen=True)
class PromotionRecord:
    """A row of ``promotion_log``."""

    rule_id: str
    old_scope: str
    new_scope: str
    effectiveness_score: float
    applications: int
    success_rate: float
    promoted_at: str


@dataclass(frozen=True)
class RuleSummary:
    """Store-wide metrics.

    ``avg_confidence`` is taken over active rules and ``avg_success_rate``
    over recorded applications; neither stands in for the other.
    """

    total_rules: int
    rules_by_scope: dict[str, int] = field(default_factory=dict)
    avg_effectiveness: float = 0.0
    avg_confidence: float | None = None
    total_applications: int = 0
    avg_success_rate: float | None = None
    code_patterns: int = 0
    recent_promotions: int = 0
    last_propagation: str | None = None


class RuleStore:
    """SQLite-backed CRUD for rules, applications, and code patterns.

    One connection is shared by all threads and every statement runs under a
    lock.  Rule writes notify the registered listeners (the rule cache)
    after they commit.
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn
        self._lock = threading.RLock()
        self._listeners: list[Callable[[], None]] = []

    @classmethod
    def open(cls, db_path: Path) -> RuleStore:
        """Open (creating if needed) the database at *db_path*."""
        db_path.parent.mkdir(parents=True, exist_ok=True)
        try:
            conn = open_db(db_path)
        except sqlite3.Error as exc:
            msg = f"Cannot open rule store at {db_path}: {exc}"
            raise StoreError(msg) from exc
        try:
            create_schema(conn)
        except sqlite3.Error as exc:
            conn.close()
            msg = f"Cannot open rule store at {db_path}: {exc}"
            raise StoreError(msg) from exc
        return cls(conn)

    @property
    def connection(self) -> sqlite3.Connection:
        return self._conn

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    # -- plumbing -----------------------------------------------------------

    def add_write_listener(self, listener: Callable[[], None]) -> None:
        """Register a callback invoked after every committed rule write."""
        self._listeners.append(listener)

    def _notify(self) -> None:
        for listener in list(self._listeners):
            listener()

    @contextlib.contextmanager
    def _transaction(self, action: str) -> Iterator[sqlite3.Connection]:
        with self._lock:
            try:
                yield self._conn
                self._conn.commit()
            except sqlite3.Error as exc:
                with contextlib.suppress(sqlite3.Error):
                    self._conn.rollback()
                msg = f"Failed to {action}: {exc}"
                raise StoreError(msg) from exc

    # -- rules --------------------------------------------------------------

    def list_rules(
        self, scopes: Sequence[Scope | str], technologies: Sequence[str]
    ) -> list[ValidationRule]:
        """Return active rules in the given scopes and technologies, in resolution order."""
        if not scopes or not technologies:
            return []
        scope_values = [Scope(s).value for s in scopes]
        scope_ph = ",".join("?" for _ in scope_values)
        tech_ph = ",".join("?" for _ in technologies)
        with self._transaction("list rules") as conn:
            rows = conn.execute(
                f"SELECT {_RULE_COLUMNS} FROM validation_rules r"  # noqa: S608
                f" WHERE r.scope IN ({scope_ph}) AND r.technology IN ({tech_ph})"
                f" AND r.is_active = 1 {_RULE_ORDER_SQL}",
                (*scope_values, *technologies),
            ).fetchall()
        return [ValidationRule.from_row(row) for row in rows]

    def list_all_rules(self, *, include_inactive: bool = False) -> list[ValidationRule]:
        where = "" if include_inactive else "WHERE r.is_active = 1"
        with self._transaction("list rules") as conn:
            rows = conn.execute(
                f"SELECT {_RULE_COLUMNS} FROM validation_rules r {where} {_RULE_ORDER_SQL}"  # noqa: S608
            ).fetchall()
        return [ValidationRule.from_row(row) for row in rows]

    def get_rule(self, rule_id: str) -> ValidationRule | None:
        with self._transaction("read rule") as conn:
            row = conn.execute(
                f"SELECT {_RULE_COLUMNS} FROM validation_rules WHERE rule_id = ?",  # noqa: S608
                (rule_id,),
            ).fetchone()
        return ValidationRule.from_row(row) if row is not None else None

    def find_rule_by_pattern_and_technology(
        self, pattern_text: str, technology: str
    ) -> ValidationRule | None:
        """Return the active rule with this exact pattern and technology, if any."""
        with self._transaction("find rule") as conn:
            row = conn.execute(
                f"SELECT {_RULE_COLUMNS} FROM validation_rules"  # noqa: S608
                " WHERE pattern_text = ? AND technology = ? AND is_active = 1"
                " ORDER BY rule_id LIMIT 1",
                (pattern_text, technology),
            ).fetchone()
        return ValidationRule.from_row(row) if row is not None else None

    def insert_rule(self, rule: ValidationRule, *, created_by: str = "learning-system") -> None:
        """Persist a new rule.

        Raises
        ------
        StoreError
            If the write fails, including a duplicate ``rule_id``.
        """
        with self._transaction(f"insert rule {rule.rule_id}") as conn:
            conn.execute(
                "INSERT INTO validation_rules ("
                " rule_id, scope, category, priority, technology, pattern_text,"
                " pattern_type, message, suggestion, auto_fix_pattern, learned_from,"
                " confidence, occurrences, effectiveness_score, is_active, created_by"
                ") VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    rule.rule_id,
                    rule.scope.value,
                    rule.category,
                    rule.priority.value,
                    rule.technology,
                    rule.pattern_text,
                    rule.pattern_type,
                    rule.message,
                    rule.suggestion,
                    rule.auto_fix_pattern,
                    rule.learned_from,
                    rule.confidence,
                    rule.occurrences,
                    rule.effectiveness_score,
                    1 if rule.is_active else 0,
                    created_by,
                ),
            )
        self._notify()

    def update_rule_occurrence(self, rule_id: str, confidence_step: float = 0.05) -> None:
        """Count one more sighting and nudge confidence up (capped at 1.0)."""
        with self._transaction(f"update occurrences of {rule_id}") as conn:
            conn.execute(
                "UPDATE validation_rules"
                " SET occurrences = occurrences + 1,"
                "     confidence = MIN(1.0, confidence + ?),"
                "     updated_at = CURRENT_TIMESTAMP"
                " WHERE rule_id = ?",
                (confidence_step, rule_id),
            )
        self._notify()

    def set_scope(self, rule_id: str, new_scope: Scope) -> bool:
        """Rewrite a rule's scope. Returns False if the rule does not exist."""
        with self._transaction(f"set scope of {rule_id}") as conn:
            cursor = conn.execute(
                "UPDATE validation_rules SET scope = ?, updated_at = CURRENT_TIMESTAMP"
                " WHERE rule_id = ?",
                (Scope(new_scope).value, rule_id),
            )
        self._notify()
        return cursor.rowcount > 0

    def deactivate_rule(self, rule_id: str) -> bool:
        """Switch a rule off (``is_active = 0``). Returns False if unknown."""
        with self._transaction(f"deactivate {rule_id}") as conn:
            cursor = conn.execute(
                "UPDATE validation_rules SET is_active = 0, updated_at = CURRENT_TIMESTAMP"
                " WHERE rule_id = ?",
                (rule_id,),
            )
        self._notify()
        return cursor.rowcount > 0

    def seed_defaults(self) -> int:
        """Insert the built-in rules. Returns how many were new."""
        with self._transaction("seed default rules") as conn:
            inserted = seed_default_rules(conn)
        if inserted:
            self._notify()
        return inserted

    # -- applications -------------------------------------------------------

    def record_application(self, application: RuleApplication) -> None:
        self.record_applications([application])

    def record_applications(self, applications: Iterable[RuleApplication]) -> int:
        """Insert application records in one transaction. Returns the count."""
        rows = [
            (
                a.rule_id,
                a.project_path,
                a.client_name,
                a.file_path,
                a.line_number,
                1 if a.success else 0,
                1 if a.false_positive else 0,
                1 if a.fix_applied else 0,
                a.execution_time_ms,
            )
            for a in applications
        ]
        if not rows:
            return 0
        with self._transaction("record rule applications") as conn:
            conn.executemany(
                "INSERT INTO rule_applications ("
                " rule_id, project_path, client_name, file_path, line_number,"
                " success, false_positive, fix_applied, execution_time_ms"
                ") VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
                rows,
            )
        logger.debug("Recorded %d rule application(s)", len(rows))
        return len(rows)

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
        """Attach user feedback to the latest application at *file_path*:*line_number*.

        Flags only ever switch on; a note replaces any earlier one.  Scores
        pick the feedback up on the next rescore.  Returns ``False`` when no
        such application was recorded.
        """
        with self._transaction(f"record feedback for {rule_id}") as conn:
            cursor = conn.execute(
                "UPDATE rule_applications SET"
                " false_positive = MAX(false_positive, ?),"
                " fix_applied = MAX(fix_applied, ?),"
                " user_feedback = COALESCE(?, user_feedback)"
                " WHERE id = ("
                "   SELECT id FROM rule_applications"
                "   WHERE rule_id = ? AND file_path IS ? AND line_number = ?"
                "   ORDER BY id DESC LIMIT 1"
                " )",
                (
                    1 if false_positive else 0,
                    1 if fix_applied else 0,
                    note,
                    rule_id,
                    file_path,
                    line_number,
                ),
            )
        return cursor.rowcount > 0

    def _aggregate(
        self, where: str, params: Sequence[Any], min_applications: int
    ) -> list[AggregatedRule]:
        r_columns = ", ".join(f"r.{c.strip()}" for c in _RULE_COLUMNS.split(","))
        with self._transaction("aggregate rule applications") as conn:
            rows = conn.execute(
                f"SELECT {r_columns},"  # noqa: S608
                " COUNT(ra.id) AS applications,"
                " SUM(CASE WHEN ra.success = 1 THEN 1 ELSE 0 END) AS successes,"
                " SUM(CASE WHEN ra.false_positive = 1 THEN 1 ELSE 0 END) AS false_positives"
                " FROM validation_rules r"
                " JOIN rule_applications ra ON r.rule_id = ra.rule_id"
                f" WHERE {where}"
                " GROUP BY r.rule_id"
                " HAVING COUNT(ra.id) >= ?"
                " ORDER BY r.effectiveness_score DESC, applications DESC, r.rule_id",
                (*params, min_applications),
            ).fetchall()
        return [
            AggregatedRule(
                rule=ValidationRule.from_row(row),
                applications=int(row["applications"]),
                successes=int(row["successes"] or 0),
                false_positives=int(row["false_positives"] or 0),
            )
            for row in rows
        ]

    def aggregate_effectiveness(
        self,
        scope_filter: Sequence[Scope | str],
        min_effectiveness: float,
        min_confidence: float,
        min_applications: int,
    ) -> list[AggregatedRule]:
        """Promotion candidates: active rules in *scope_filter* above both bars.

        Effectiveness and confidence bars are strict; the application count
        bar is inclusive.
        """
        if not scope_filter:
            return []
        scope_values = [Scope(s).value for s in scope_filter]
        scope_ph = ",".join("?" for _ in scope_values)
        return self._aggregate(
            f"r.scope IN ({scope_ph}) AND r.is_active = 1"
            " AND r.effectiveness_score > ? AND r.confidence > ?",
            (*scope_values, min_effectiveness, min_confidence),
            min_applications,
        )

    def aggregate_active(self, min_applications: int) -> list[AggregatedRule]:
        """All active rules with at least *min_applications* recorded."""
        return self._aggregate("r.is_active = 1", (), min_applications)

    def recompute_effectiveness(self) -> int:
        """Rescore rules from their applications.

        ``effectiveness = true_positive_rate * 0.8 + fix_rate * 0.2`` where a
        true positive is a success that was not flagged as a false positive.
        Returns the number of rules rescored.
        """
        with self._transaction("recompute effectiveness") as conn:
            cursor = conn.execute(
                "UPDATE validation_rules SET"
                " effectiveness_score = ("
                "   SELECT (CAST(SUM(CASE WHEN ra.success = 1 AND ra.false_positive = 0"
                "            THEN 1 ELSE 0 END) AS REAL) / COUNT(*)) * 0.8"
                "        + (CAST(SUM(ra.fix_applied) AS REAL) / COUNT(*)) * 0.2"
                "   FROM rule_applications ra WHERE ra.rule_id = validation_rules.rule_id"
                " ),"
                " updated_at = CURRENT_TIMESTAMP"
                " WHERE rule_id IN (SELECT DISTINCT rule_id FROM rule_applications)"
            )
        self._notify()
        return cursor.rowcount

    def adjust_confidence_scores(
        self,
        *,
        raise_above: float = 0.8,
        lower_below: float = 0.3,
        step: float = 0.1,
        floor: float = 0.1,
    ) -> int:
        """Move confidence toward measured effectiveness for rules with applications."""
        with self._transaction("adjust confidence scores") as conn:
            cursor = conn.execute(
                "UPDATE validation_rules SET"
                " confidence = CASE"
                "   WHEN effectiveness_score > ? THEN MIN(1.0, confidence + ?)"
                "   ELSE MAX(?, confidence - ?) END,"
                " updated_at = CURRENT_TIMESTAMP"
                " WHERE is_active = 1"
                " AND (effectiveness_score > ? OR effectiveness_score < ?)"
                " AND rule_id IN (SELECT DISTINCT rule_id FROM rule_applications)",
                (raise_above, step, floor, step, raise_above, lower_below),
            )
        if cursor.rowcount:
            self._notify()
        return cursor.rowcount

    def prune_applications(self, max_age_days: int) -> int:
        """Delete old low-severity application records.

        Low severity means the rule is a ``suggestion`` or the record is a
        miss (``success = 0``).  Returns the number of rows deleted.
        """
        with self._transaction("prune rule applications") as conn:
            cursor = conn.execute(
                "DELETE FROM rule_applications"
                " WHERE applied_at < datetime('now', ?)"
                " AND (success = 0 OR rule_id IN ("
                "   SELECT rule_id FROM validation_rules WHERE priority = 'suggestion'"
                " ))",
                (f"-{int(max_age_days)} days",),
            )
        return cursor.rowcount

    # -- code patterns ------------------------------------------------------

    def track_code_pattern(
        self,
        signature: str,
        pattern_text: str,
        *,
        confidence: float,
        context: dict[str, Any] | None = None,
        file_type: str | None = None,
        project_path: str | None = None,
        client_name: str | None = None,
        classification: str = "bad",
    ) -> int:
        """Upsert a code pattern, bumping its frequency. Returns the new frequency."""
        with self._transaction("track code pattern") as conn:
            conn.execute(
                "INSERT INTO code_patterns ("
                " pattern_signature, pattern_text, pattern_context, file_type,"
                " project_path, client_name, classification, confidence"
                ") VALUES (?, ?, ?, ?, ?, ?, ?, ?)"
                " ON CONFLICT(pattern_signature) DO UPDATE SET"
                "   frequency = frequency + 1,"
                "   pattern_context = excluded.pattern_context,"
                "   confidence = MAX(confidence, excluded.confidence),"
                "   last_seen = CURRENT_TIMESTAMP",
                (
                    signature,
                    pattern_text,
                    json.dumps(context or {}, ensure_ascii=False, default=str),
                    file_type,
                    project_path,
                    client_name,
                    classification,
                    confidence,
                ),
            )
            row = conn.execute(
                "SELECT frequency FROM code_patterns WHERE pattern_signature = ?",
                (signature,),
            ).fetchone()
        return int(row["frequency"])

    def link_code_pattern(self, signature: str, rule_id: str) -> None:
        with self._transaction("link code pattern") as conn:
            conn.execute(
                "UPDATE code_patterns SET associated_rule_id = ? WHERE pattern_signature = ?",
                (rule_id, signature),
            )

    def get_code_pattern(self, signature: str) -> CodePattern | None:
        with self._transaction("read code pattern") as conn:
            row = conn.execute(
                "SELECT * FROM code_patterns WHERE pattern_signature = ?", (signature,)
            ).fetchone()
        return CodePattern.from_row(row) if row is not None else None

    # -- promotion log and metrics --------------------------------------------

    def log_promotion(
        self,
        rule_id: str,
        old_scope: Scope,
        new_scope: Scope,
        *,
        effectiveness_score: float,
        applications: int,
        success_rate: float,
    ) -> None:
        with self._transaction("log promotion") as conn:
            conn.execute(
                "INSERT INTO promotion_log ("
                " rule_id, old_scope, new_scope, effectiveness_score, applications,"
                " success_rate"
                ") VALUES (?, ?, ?, ?, ?, ?)",
                (
                    rule_id,
                    old_scope.value,
                    new_scope.value,
                    effectiveness_score,
                    applications,
                    success_rate,
                ),
            )

    def list_promotions(self, limit: int = 50) -> list[PromotionRecord]:
        with self._transaction("list promotions") as conn:
            rows = conn.execute(
                "SELECT rule_id, old_scope, new_scope, effectiveness_score, applications,"
                " success_rate, promoted_at FROM promotion_log"
                " ORDER BY promoted_at DESC, id DESC LIMIT ?",
                (limit,),
            ).fetchall()
        return [PromotionRecord(**dict(row)) for row in rows]

    def mark_propagated(self) -> None:
        """Stamp the completion time (UTC) of a propagation cycle."""
        stamp = datetime.now(tz=timezone.utc).strftime("%Y-%m-%d %H:%M:%S")
        with self._transaction("record propagation time") as conn:
            set_meta(conn, LAST_PROPAGATION_KEY, stamp)

    def summary(self, recent_days: int = 7) -> RuleSummary:
        """Aggregate store-wide metrics."""
        with self._transaction("summarize rules") as conn:
            scope_rows = conn.execute(
                "SELECT scope, COUNT(*) AS cnt FROM validation_rules"
                " WHERE is_active = 1 GROUP BY scope"
            ).fetchall()
            rule_row = conn.execute(
                "SELECT COUNT(*) AS total, AVG(effectiveness_score) AS eff,"
                " AVG(confidence) AS conf FROM validation_rules WHERE is_active = 1"
            ).fetchone()
            app_row = conn.execute(
                "SELECT COUNT(*) AS total, AVG(success) AS rate FROM rule_applications"
            ).fetchone()
            pattern_count = conn.execute("SELECT COUNT(*) FROM code_patterns").fetchone()[0]
            promo_count = conn.execute(
                "SELECT COUNT(*) FROM promotion_log WHERE promoted_at > datetime('now', ?)",
                (f"-{int(recent_days)} days",),
            ).fetchone()[0]
            last_propagation = get_meta(conn, LAST_PROPAGATION_KEY)

        by_scope = {s.value: 0 for s in SCOPE_LADDER}
        for row in scope_rows:
            by_scope[row["scope"]] = int(row["cnt"])

        return RuleSummary(
            total_rules=int(rule_row["total"]),
            rules_by_scope=by_scope,
            avg_effectiveness=float(rule_row["eff"] or 0.0),
            avg_confidence=float(rule_row["conf"]) if rule_row["conf"] is not None else None,
            total_applications=int(app_row["total"]),
            avg_success_rate=float(app_row["rate"]) if app_row["rate"] is not None else None,
            code_patterns=int(pattern_count),
            recent_promotions=int(promo_count),
            last_propagation=last_propagation,
        )
