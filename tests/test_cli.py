"""Tests for the rulecascade CLI commands."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING

from click.testing import CliRunner

from rulecascade import __version__
from rulecascade.cli import main
from rulecascade.infrastructure.config import config_path
from rulecascade.rules.engine import RuleEngine
from rulecascade.rules.models import Priority, Scope, ValidationRule

if TYPE_CHECKING:
    from pathlib import Path


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _init_project(tmp_path: Path) -> Path:
    project = tmp_path / "proj"
    project.mkdir()
    result = CliRunner().invoke(main, ["init", "--project", str(project)])
    assert result.exit_code == 0, result.output
    return project


def _add_rule(project: Path, rule_id: str, **overrides: object) -> None:
    fields: dict[str, object] = {
        "rule_id": rule_id,
        "scope": Scope.GLOBAL,
        "category": "style",
        "priority": Priority.WARNING,
        "technology": "javascript",
        "pattern_text": r"\bconsole\.log\s*\(",
        "message": "Avoid console.log in production code",
    }
    fields.update(overrides)
    with RuleEngine.open(project) as engine:
        engine.store.insert_rule(ValidationRule(**fields))  # type: ignore[arg-type]


def _learn(project: Path, *extra: str) -> str:
    result = CliRunner().invoke(
        main,
        [
            "learn",
            "--project", str(project),
            "-m", "ReferenceError: legacyHelper is not defined",
            "-s", "legacyHelper();",
            "--file", "src/app.js",
            *extra,
        ],
    )
    assert result.exit_code == 0, result.output
    return result.stdout.strip()


# ---------------------------------------------------------------------------
# Group
# ---------------------------------------------------------------------------


def test_version() -> None:
    result = CliRunner().invoke(main, ["--version"])
    assert result.exit_code == 0
    assert __version__ in result.output


def test_help_lists_commands() -> None:
    result = CliRunner().invoke(main, ["--help"])
    assert result.exit_code == 0
    for name in (
        "init",
        "validate",
        "learn",
        "propagate",
        "rules",
        "feedback",
        "promotions",
        "export-eslint",
    ):
        assert name in result.output


class TestInit:
    def test_creates_config_and_seeds(self, tmp_path: Path) -> None:
        project = tmp_path / "proj"
        project.mkdir()
        result = CliRunner().invoke(main, ["init", "--project", str(project)])
        assert result.exit_code == 0, result.output
        assert config_path(project).exists()
        assert (project / ".rulecascade" / "rules.db").exists()
        assert "Seeded 1 built-in rule(s)" in result.output

    def test_second_run_keeps_config(self, tmp_path: Path) -> None:
        project = _init_project(tmp_path)
        config_path(project).write_text("engine:\n  retention_days: 30\n", encoding="utf-8")
        result = CliRunner().invoke(main, ["init", "--project", str(project)])
        assert result.exit_code == 0, result.output
        assert "(kept)" in result.output
        assert "Seeded 0 built-in rule(s)" in result.output
        assert "retention_days: 30" in config_path(project).read_text(encoding="utf-8")


class TestValidate:
    def test_json_output(self, tmp_path: Path) -> None:
        project = _init_project(tmp_path)
        _add_rule(project, "console-log-call")
        src = project / "app.js"
        src.write_text("ok();\nconsole.log(1);\n")

        result = CliRunner().invoke(
            main, ["validate", str(src), "--project", str(project), "--format", "json"]
        )
        assert result.exit_code == 0, result.output
        data = json.loads(result.stdout)
        assert data["summary"]["warnings"] == 1
        warning = data["files"][0]["warnings"][0]
        assert (warning["rule_id"], warning["line"], warning["column"]) == (
            "console-log-call",
            2,
            1,
        )

    def test_strict_fails_on_errors(self, tmp_path: Path) -> None:
        project = _init_project(tmp_path)
        rule_id = _learn(project)
        src = project / "app.js"
        src.write_text("legacyHelper();\n")

        result = CliRunner().invoke(
            main,
            ["validate", str(src), "--project", str(project), "--format", "porcelain", "--strict"],
        )
        assert result.exit_code == 1
        assert f":error:{rule_id}:" in result.stdout

    def test_warnings_do_not_fail_strict(self, tmp_path: Path) -> None:
        project = _init_project(tmp_path)
        _add_rule(project, "console-log-call")
        src = project / "app.js"
        src.write_text("console.log(1);\n")
        result = CliRunner().invoke(
            main, ["validate", str(src), "--project", str(project), "--strict"]
        )
        assert result.exit_code == 0, result.output

    def test_rich_output(self, tmp_path: Path) -> None:
        project = _init_project(tmp_path)
        src = project / "app.js"
        src.write_text("ok();\n")
        result = CliRunner().invoke(
            main, ["validate", str(src), "--project", str(project), "--format", "rich"]
        )
        assert result.exit_code == 0, result.output
        assert "No findings" in result.stdout

    def test_bad_config_exits_2(self, tmp_path: Path) -> None:
        project = _init_project(tmp_path)
        config_path(project).write_text("engine:\n  cache_ttl_seconds: soon\n", encoding="utf-8")
        src = project / "app.js"
        src.write_text("ok();\n")
        result = CliRunner().invoke(main, ["validate", str(src), "--project", str(project)])
        assert result.exit_code == 2
        assert "Error:" in result.output

    def test_missing_path_is_usage_error(self, tmp_path: Path) -> None:
        result = CliRunner().invoke(main, ["validate", str(tmp_path / "nope.js")])
        assert result.exit_code == 2


class TestLearn:
    def test_prints_rule_id(self, tmp_path: Path) -> None:
        project = _init_project(tmp_path)
        rule_id = _learn(project)
        assert rule_id.startswith("general-javascript-")
        # Reporting the same error again reinforces the same rule.
        assert _learn(project) == rule_id

    def test_unrecognized_error(self, tmp_path: Path) -> None:
        project = _init_project(tmp_path)
        result = CliRunner().invoke(
            main, ["learn", "--project", str(project), "-m", "Something odd", "-s", "x()"]
        )
        assert result.exit_code == 0, result.output
        assert "No pattern extracted" in result.stdout

    def test_tech_override(self, tmp_path: Path) -> None:
        project = _init_project(tmp_path)
        assert "-typescript-" in _learn(project, "--tech", "typescript")


class TestRuleCommands:
    def test_rules_json(self, tmp_path: Path) -> None:
        project = _init_project(tmp_path)
        _add_rule(project, "console-log-call", scope=Scope.PROJECT)
        result = CliRunner().invoke(
            main, ["rules", "--project", str(project), "--json", "--scope", "project"]
        )
        assert result.exit_code == 0, result.output
        data = json.loads(result.stdout)
        assert [r["rule_id"] for r in data] == ["console-log-call"]

    def test_rules_table(self, tmp_path: Path) -> None:
        project = _init_project(tmp_path)
        result = CliRunner().invoke(main, ["rules", "--project", str(project)])
        assert result.exit_code == 0, result.output
        assert "class-property-assignment-error" in result.stdout

    def test_deactivate(self, tmp_path: Path) -> None:
        project = _init_project(tmp_path)
        result = CliRunner().invoke(
            main,
            ["deactivate", "class-property-assignment-error", "--project", str(project)],
        )
        assert result.exit_code == 0, result.output
        assert "Deactivated class-property-assignment-error" in result.stdout

        listing = CliRunner().invoke(main, ["rules", "--project", str(project), "--json"])
        assert json.loads(listing.stdout) == []

    def test_deactivate_unknown(self, tmp_path: Path) -> None:
        project = _init_project(tmp_path)
        result = CliRunner().invoke(main, ["deactivate", "nope", "--project", str(project)])
        assert result.exit_code == 1
        assert "unknown rule 'nope'" in result.output

    def test_demote(self, tmp_path: Path) -> None:
        project = _init_project(tmp_path)
        _add_rule(project, "r1", scope=Scope.CLIENT)
        result = CliRunner().invoke(main, ["demote", "r1", "--project", str(project)])
        assert result.exit_code == 0, result.output
        assert "Demoted r1 to project" in result.stdout

        again = CliRunner().invoke(main, ["demote", "r1", "--project", str(project)])
        assert again.exit_code == 1


class TestMaintenance:
    def test_rescore_and_prune(self, tmp_path: Path) -> None:
        project = _init_project(tmp_path)
        src = project / "app.js"
        src.write_text("ok();\n")
        CliRunner().invoke(main, ["validate", str(src), "--project", str(project)])

        result = CliRunner().invoke(main, ["rescore", "--project", str(project)])
        assert result.exit_code == 0, result.output
        assert "Rescored 1 rule(s)" in result.stdout

        result = CliRunner().invoke(main, ["prune", "--project", str(project), "--days", "30"])
        assert result.exit_code == 0, result.output
        assert "Deleted 0 application record(s)" in result.stdout

    def test_propagate_once(self, tmp_path: Path) -> None:
        project = _init_project(tmp_path)
        result = CliRunner().invoke(main, ["propagate", "--project", str(project)])
        assert result.exit_code == 0, result.output
        assert result.stdout.startswith("Promoted 0 of 0 candidate(s)")

    def test_propagate_rejects_short_interval(self, tmp_path: Path) -> None:
        project = _init_project(tmp_path)
        result = CliRunner().invoke(
            main, ["propagate", "--project", str(project), "--every", "0.5"]
        )
        assert result.exit_code == 2

    def test_stats_json(self, tmp_path: Path) -> None:
        project = _init_project(tmp_path)
        result = CliRunner().invoke(main, ["stats", "--project", str(project), "--json"])
        assert result.exit_code == 0, result.output
        data = json.loads(result.stdout)
        assert data["total_rules"] == 1
        assert data["rules_by_scope"]["global"] == 1
        assert data["rules_by_scope"]["project"] == 0
        assert data["last_propagation"] is None
        assert data["total_applications"] == 0

    def test_stats_table(self, tmp_path: Path) -> None:
        project = _init_project(tmp_path)
        result = CliRunner().invoke(main, ["stats", "--project", str(project)])
        assert result.exit_code == 0, result.output
        assert "Rule Engine" in result.stdout


    def test_stats_after_propagate(self, tmp_path: Path) -> None:
        project = _init_project(tmp_path)
        CliRunner().invoke(main, ["propagate", "--project", str(project)])
        result = CliRunner().invoke(main, ["stats", "--project", str(project)])
        assert result.exit_code == 0, result.output
        assert "Last propagation" in result.stdout
        assert "never" not in result.stdout

    def test_promotions_empty(self, tmp_path: Path) -> None:
        project = _init_project(tmp_path)
        result = CliRunner().invoke(main, ["promotions", "--project", str(project)])
        assert result.exit_code == 0, result.output
        assert "No promotions recorded." in result.stdout

    def test_promotions_json(self, tmp_path: Path) -> None:
        project = _init_project(tmp_path)
        with RuleEngine.open(project) as engine:
            engine.store.log_promotion(
                "class-property-assignment-error",
                Scope.PROJECT,
                Scope.CLIENT,
                effectiveness_score=0.9,
                applications=5,
                success_rate=1.0,
            )
        result = CliRunner().invoke(
            main, ["promotions", "--project", str(project), "--json", "--limit", "5"]
        )
        assert result.exit_code == 0, result.output
        data = json.loads(result.stdout)
        assert [(r["rule_id"], r["new_scope"]) for r in data] == [
            ("class-property-assignment-error", "client")
        ]


class TestFeedback:
    def _validated(self, tmp_path: Path) -> tuple[Path, Path]:
        project = _init_project(tmp_path)
        _add_rule(project, "console-log-call")
        src = project / "app.js"
        src.write_text("ok();\nconsole.log(1);\n")
        result = CliRunner().invoke(main, ["validate", str(src), "--project", str(project)])
        assert result.exit_code == 0, result.output
        return project, src

    def test_false_positive_feeds_rescore(self, tmp_path: Path) -> None:
        project, src = self._validated(tmp_path)
        result = CliRunner().invoke(
            main,
            [
                "feedback", "console-log-call",
                "--project", str(project),
                "--file", str(src),
                "--line", "2",
                "--false-positive",
                "--note", "intentional debug output",
            ],
        )
        assert result.exit_code == 0, result.output
        assert "Recorded feedback for console-log-call" in result.stdout

        CliRunner().invoke(main, ["rescore", "--project", str(project)])
        with RuleEngine.open(project) as engine:
            rule = engine.store.get_rule("console-log-call")
        assert rule is not None
        assert rule.effectiveness_score == 0.0

    def test_unknown_location_exits_1(self, tmp_path: Path) -> None:
        project, src = self._validated(tmp_path)
        result = CliRunner().invoke(
            main,
            [
                "feedback", "console-log-call",
                "--project", str(project),
                "--file", str(src),
                "--line", "9",
                "--fixed",
            ],
        )
        assert result.exit_code == 1
        assert "no application of 'console-log-call'" in result.output

    def test_requires_some_feedback(self, tmp_path: Path) -> None:
        project, src = self._validated(tmp_path)
        result = CliRunner().invoke(
            main,
            ["feedback", "console-log-call", "--project", str(project), "--line", "2"],
        )
        assert result.exit_code == 2


class TestExportEslint:
    def test_export(self, tmp_path: Path) -> None:
        project = _init_project(tmp_path)
        _add_rule(project, "console-log-call")
        _add_rule(project, "proj-only", scope=Scope.PROJECT, pattern_text="debugger")
        result = CliRunner().invoke(main, ["export-eslint", "--project", str(project)])
        assert result.exit_code == 0, result.output
        config = json.loads(result.stdout)
        assert config["rules"] == {
            "learned/class-property-assignment-error": "error",
            "learned/console-log-call": "warn",
        }
        settings = config["settings"]["learned-rules"]
        assert settings["dbPath"].endswith("rules.db")

    def test_export_for_project(self, tmp_path: Path) -> None:
        project = _init_project(tmp_path)
        _add_rule(project, "proj-only", scope=Scope.PROJECT, pattern_text="debugger")
        result = CliRunner().invoke(
            main,
            ["export-eslint", "--project", str(project), "--project-path", "/work/app"],
        )
        assert result.exit_code == 0, result.output
        config = json.loads(result.stdout)
        assert "learned/proj-only" in config["rules"]
        assert config["settings"]["learned-rules"]["projectPath"] == "/work/app"
