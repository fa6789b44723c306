"""SQLite database layer: connection management, schema, meta helpers."""

from __future__ import annotations

import sqlite3
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from pathlib import Path

# Schema version; increment on breaking changes
SCHEMA_VERSION = "1"

_SCHEMA_SQL = """\
-- Validation rules, one row per rule_id
CREATE TABLE IF NOT EXISTS validation_rules (
    rule_id             TEXT PRIMARY KEY,
    scope               TEXT NOT NULL CHECK(scope IN (
        'global','organization','client','project'
    )),
    category            TEXT NOT NULL,
    priority            TEXT NOT NULL CHECK(priority IN ('error','warning','suggestion')),
    technology          TEXT NOT NULL,
    pattern_text        TEXT NOT NULL,
    pattern_type        TEXT NOT NULL DEFAULT 'regex',
    message             TEXT NOT NULL,
    suggestion          TEXT,
    auto_fix_pattern    TEXT,
    learned_from        TEXT,
    confidence          REAL NOT NULL DEFAULT 0.5,
    occurrences         INTEGER NOT NULL DEFAULT 1,
    effectiveness_score REAL NOT NULL DEFAULT 0.0,
    is_active           INTEGER NOT NULL DEFAULT 1,
    created_by          TEXT NOT NULL DEFAULT 'system',
    created_at          TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
    updated_at          TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
);

-- One row per (rule, file, line) application event
CREATE TABLE IF NOT EXISTS rule_applications (
    id                INTEGER PRIMARY KEY AUTOINCREMENT,
    rule_id           TEXT NOT NULL REFERENCES validation_rules(rule_id) ON DELETE CASCADE,
    project_path      TEXT,
    client_name       TEXT,
    file_path         TEXT,
    line_number       INTEGER NOT NULL DEFAULT 0,
    success           INTEGER NOT NULL,
    false_positive    INTEGER NOT NULL DEFAULT 0,
    fix_applied       INTEGER NOT NULL DEFAULT 0,
    user_feedback     TEXT,
    execution_time_ms REAL NOT NULL DEFAULT 0,
    applied_at        TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
);

-- Error-derived pattern signatures, counted whether or not they became rules
CREATE TABLE IF NOT EXISTS code_patterns (
    pattern_signature  TEXT PRIMARY KEY,
    pattern_text       TEXT NOT NULL,
    pattern_context    TEXT DEFAULT '{}',
    file_type          TEXT,
    project_path       TEXT,
    client_name        TEXT,
    frequency          INTEGER NOT NULL DEFAULT 1,
    classification     TEXT NOT NULL DEFAULT 'bad' CHECK(classification IN ('bad','good')),
    confidence         REAL NOT NULL DEFAULT 0.0,
    associated_rule_id TEXT REFERENCES validation_rules(rule_id) ON DELETE SET NULL,
    first_seen         TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
    last_seen          TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
);

-- Scope promotions, newest last
CREATE TABLE IF NOT EXISTS promotion_log (
    id                  INTEGER PRIMARY KEY AUTOINCREMENT,
    rule_id             TEXT NOT NULL,
    old_scope           TEXT NOT NULL,
    new_scope           TEXT NOT NULL,
    effectiveness_score REAL NOT NULL,
    applications        INTEGER NOT NULL,
    success_rate        REAL NOT NULL,
    promoted_at         TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
);

-- Store metadata
CREATE TABLE IF NOT EXISTS meta (
    key   TEXT PRIMARY KEY,
    value TEXT NOT NULL
);

-- Indexes
CREATE INDEX IF NOT EXISTS idx_rules_scope ON validation_rules(scope);
CREATE INDEX IF NOT EXISTS idx_rules_technology ON validation_rules(technology);
CREATE INDEX IF NOT EXISTS idx_rules_active ON validation_rules(is_active);
CREATE INDEX IF NOT EXISTS idx_rules_pattern ON validation_rules(pattern_text, technology);
CREATE INDEX IF NOT EXISTS idx_applications_rule ON rule_applications(rule_id);
CREATE INDEX IF NOT EXISTS idx_applications_applied_at ON rule_applications(applied_at);
CREATE INDEX IF NOT EXISTS idx_promotions_rule ON promotion_log(rule_id);
"""

# Built-in rules, inserted by `rulecascade init`.
_SEED_RULES: list[dict[str, object]] = [
    {
        "rule_id": "class-property-assignment-error",
        "scope": "global",
        "category": "syntax",
        "priority": "error",
        "technology": "javascript",
        "pattern_text": r"""this\.\w+\s*=\s*['"][^'"]+['"];""",
        "message": (
            "Invalid property assignment in class body. "
            "JavaScript classes do not allow standalone property assignments."
        ),
        "suggestion": "Use getter method syntax: getPropertyName = () => 'value'",
        "auto_fix_pattern": r"""s/this\.(\w+)\s*=\s*(['"])([^'"]+)\2;/get$1 = () => $2$3$2;/""",
        "learned_from": "seed",
        "confidence": 0.95,
    },
]


def open_db(db_path: Path) -> sqlite3.Connection:
    """Open (or create) a SQLite database with proper PRAGMAs.

    Sets WAL journal mode (persistent per-file) and enables foreign keys
    (per-connection, required on every open).  The connection may be shared
    across threads; callers serialize access themselves.

    Returns a connection with ``sqlite3.Row`` row factory.
    """
    conn = sqlite3.connect(str(db_path), check_same_thread=False)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL")
    conn.execute("PRAGMA foreign_keys=ON")
    return conn


def create_schema(conn: sqlite3.Connection) -> None:
    """Create all tables and indexes if they don't exist.

    Safe to call multiple times (uses IF NOT EXISTS).

    Raises
    ------
    sqlite3.DatabaseError
        If the database was written with a different schema version.
    """
    conn.executescript(_SCHEMA_SQL)
    stored = get_meta(conn, "schema_version")
    if stored is not None and stored != SCHEMA_VERSION:
        msg = f"unsupported schema version {stored} (expected {SCHEMA_VERSION})"
        raise sqlite3.DatabaseError(msg)
    set_meta(conn, "schema_version", SCHEMA_VERSION)


def seed_default_rules(conn: sqlite3.Connection) -> int:
    """Insert the built-in rules, leaving existing ones untouched.

    Returns the number of rows actually inserted.
    """
    inserted = 0
    for rule in _SEED_RULES:
        cursor = conn.execute(
            "INSERT OR IGNORE INTO validation_rules ("
            " rule_id, scope, category, priority, technology, pattern_text,"
            " message, suggestion, auto_fix_pattern, learned_from, confidence,"
            " created_by"
            ") VALUES (:rule_id, :scope, :category, :priority, :technology,"
            " :pattern_text, :message, :suggestion, :auto_fix_pattern,"
            " :learned_from, :confidence, 'seed')",
            rule,
        )
        inserted += cursor.rowcount
    conn.commit()
    return inserted


def get_meta(conn: sqlite3.Connection, key: str, default: str | None = None) -> str | None:
    """Read a value from the ``meta`` table.

    Returns *default* (``None``) if the key doesn't exist.
    """
    row = conn.execute("SELECT value FROM meta WHERE key = ?", (key,)).fetchone()
    if row is None:
        return default
    return str(row[0])


def set_meta(conn: sqlite3.Connection, key: str, value: str) -> None:
    """Insert or update a key in the ``meta`` table."""
    conn.execute(
        "INSERT INTO meta (key, value) VALUES (?, ?) "
        "ON CONFLICT(key) DO UPDATE SET value = excluded.value",
        (key, value),
    )
    conn.commit()
