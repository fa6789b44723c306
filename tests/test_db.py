"""Tests for rulecascade.infrastructure.db — SQLite schema and connection management."""

from __future__ import annotations

import sqlite3
from typing import TYPE_CHECKING

import pytest

from rulecascade.infrastructure.db import (
    SCHEMA_VERSION,
    create_schema,
    get_meta,
    open_db,
    seed_default_rules,
    set_meta,
)

if TYPE_CHECKING:
    from pathlib import Path


class TestOpenDb:
    """Tests for open_db() connection factory."""

    def test_creates_db_file(self, tmp_path: Path) -> None:
        db_path = tmp_path / "rules.db"
        conn = open_db(db_path)
        conn.close()
        assert db_path.exists()

    def test_wal_and_foreign_keys(self, tmp_path: Path) -> None:
        conn = open_db(tmp_path / "rules.db")
        assert conn.execute("PRAGMA journal_mode").fetchone()[0] == "wal"
        assert conn.execute("PRAGMA foreign_keys").fetchone()[0] == 1
        conn.close()

    def test_row_factory(self, tmp_path: Path) -> None:
        conn = open_db(tmp_path / "rules.db")
        assert conn.row_factory == sqlite3.Row
        conn.close()


class TestCreateSchema:
    """Tests for create_schema() — tables, constraints, seeding."""

    @pytest.fixture()
    def conn(self, tmp_path: Path) -> sqlite3.Connection:
        c = open_db(tmp_path / "rules.db")
        create_schema(c)
        return c

    def test_all_tables_exist(self, conn: sqlite3.Connection) -> None:
        tables = {
            row[0]
            for row in conn.execute("SELECT name FROM sqlite_master WHERE type='table'").fetchall()
        }
        expected = {
            "validation_rules",
            "rule_applications",
            "code_patterns",
            "promotion_log",
            "meta",
        }
        assert expected.issubset(tables)

    def test_idempotent(self, conn: sqlite3.Connection) -> None:
        create_schema(conn)
        assert get_meta(conn, "schema_version") == SCHEMA_VERSION

    def test_rejects_other_schema_version(self, conn: sqlite3.Connection) -> None:
        set_meta(conn, "schema_version", "99")
        with pytest.raises(sqlite3.DatabaseError, match="schema version 99"):
            create_schema(conn)
        assert get_meta(conn, "schema_version") == "99"

    def test_applications_carry_feedback(self, conn: sqlite3.Connection) -> None:
        columns = {row[1] for row in conn.execute("PRAGMA table_info(rule_applications)")}
        assert {"false_positive", "fix_applied", "user_feedback"} <= columns

    def test_scope_check(self, conn: sqlite3.Connection) -> None:
        with pytest.raises(sqlite3.IntegrityError):
            conn.execute(
                "INSERT INTO validation_rules (rule_id, scope, category, priority,"
                " technology, pattern_text, message) VALUES (?, ?, ?, ?, ?, ?, ?)",
                ("r1", "team", "style", "warning", "javascript", "x", "msg"),
            )

    def test_applications_require_rule(self, conn: sqlite3.Connection) -> None:
        with pytest.raises(sqlite3.IntegrityError):
            conn.execute(
                "INSERT INTO rule_applications (rule_id, success) VALUES (?, ?)",
                ("missing", 1),
            )

    def test_seed_default_rules(self, conn: sqlite3.Connection) -> None:
        assert seed_default_rules(conn) == 1
        row = conn.execute(
            "SELECT scope, category, priority, technology, created_by FROM validation_rules"
            " WHERE rule_id = 'class-property-assignment-error'"
        ).fetchone()
        assert tuple(row) == ("global", "syntax", "error", "javascript", "seed")

    def test_seed_is_idempotent(self, conn: sqlite3.Connection) -> None:
        seed_default_rules(conn)
        assert seed_default_rules(conn) == 0


class TestMeta:
    def test_get_missing_returns_default(self, tmp_path: Path) -> None:
        conn = open_db(tmp_path / "rules.db")
        create_schema(conn)
        assert get_meta(conn, "nope") is None
        assert get_meta(conn, "nope", "fallback") == "fallback"

    def test_set_overwrites(self, tmp_path: Path) -> None:
        conn = open_db(tmp_path / "rules.db")
        create_schema(conn)
        set_meta(conn, "last_propagation", "a")
        set_meta(conn, "last_propagation", "b")
        assert get_meta(conn, "last_propagation") == "b"
