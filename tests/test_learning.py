"""Tests for rulecascade.rules.learning — creating and reinforcing rules."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import pytest

from rulecascade.rules.errors import StoreError
from rulecascade.rules.extractor import CLASS_PROPERTY_AUTO_FIX, ErrorReport
from rulecascade.rules.learning import learn_from_error
from rulecascade.rules.models import Priority, Scope, make_pattern_signature

if TYPE_CHECKING:
    from rulecascade.rules.store import RuleStore


def _undefined_report(**overrides: object) -> ErrorReport:
    fields: dict[str, object] = {
        "error_message": "ReferenceError: fooBar is not defined",
        "code_snippet": "fooBar();",
        "file_path": "src/app.js",
        "project_path": "/work/app",
    }
    fields.update(overrides)
    return ErrorReport(**fields)  # type: ignore[arg-type]


class TestCreateRule:
    def test_creates_rule(self, store: RuleStore) -> None:
        rule_id = learn_from_error(store, _undefined_report())
        assert rule_id is not None
        assert rule_id.startswith("general-javascript-")
        rule = store.get_rule(rule_id)
        assert rule is not None
        assert rule.pattern_text == r"\bfooBar\b"
        assert rule.scope is Scope.GLOBAL  # ReferenceError
        assert rule.priority is Priority.ERROR
        assert rule.confidence == pytest.approx(0.7)
        assert rule.learned_from == "/work/app"
        assert rule.occurrences == 1

    def test_class_property_rule(self, store: RuleStore) -> None:
        report = ErrorReport(
            error_message="SyntaxError: Expected ( but found .",
            code_snippet="this.name = 'x';",
            file_path="Suitelet.js",
            fix="getName = () => 'x';",
        )
        rule_id = learn_from_error(store, report, {"note": "SuiteScript 2.1"})
        assert rule_id is not None
        assert rule_id.startswith("syntax-platform-script-")
        rule = store.get_rule(rule_id)
        assert rule is not None
        assert rule.scope is Scope.GLOBAL
        assert rule.auto_fix_pattern == CLASS_PROPERTY_AUTO_FIX
        assert rule.suggestion == "getName = () => 'x';"

    def test_client_api_rule(self, store: RuleStore) -> None:
        report = _undefined_report(
            error_message="platform api: nlapiFoo is not defined",
            client_name="acme",
        )
        rule_id = learn_from_error(store, report)
        assert rule_id is not None
        rule = store.get_rule(rule_id)
        assert rule is not None
        assert rule.category == "api"
        assert rule.scope is Scope.CLIENT

    def test_technology_override(self, store: RuleStore) -> None:
        rule_id = learn_from_error(store, _undefined_report(), {"technology": "typescript"})
        assert rule_id is not None
        assert "-typescript-" in rule_id

    def test_unrecognized_error_creates_nothing(
        self, store: RuleStore, caplog: pytest.LogCaptureFixture
    ) -> None:
        report = ErrorReport(error_message="Something odd", code_snippet="x()")
        with caplog.at_level(logging.INFO, logger="rulecascade"):
            assert learn_from_error(store, report) is None
        assert store.list_all_rules(include_inactive=True) == []
        assert "Could not extract a pattern" in caplog.text

    def test_links_code_pattern(self, store: RuleStore) -> None:
        rule_id = learn_from_error(store, _undefined_report())
        pattern = store.get_code_pattern(make_pattern_signature(r"\bfooBar\b", "general"))
        assert pattern is not None
        assert pattern.associated_rule_id == rule_id
        assert pattern.context["filePath"] == "src/app.js"

    def test_code_pattern_uses_refined_category(self, store: RuleStore) -> None:
        report = _undefined_report(error_message="platform api: nlapiFoo is not defined")
        rule_id = learn_from_error(store, report)
        rule = store.get_rule(rule_id or "")
        assert rule is not None
        assert rule.category == "api"
        pattern = store.get_code_pattern(make_pattern_signature(r"\bnlapiFoo\b", "api"))
        assert pattern is not None
        assert pattern.associated_rule_id == rule_id
        assert store.get_code_pattern(make_pattern_signature(r"\bnlapiFoo\b", "general")) is None


class TestReinforce:
    def test_duplicate_report_reinforces(self, store: RuleStore) -> None:
        first = learn_from_error(store, _undefined_report())
        second = learn_from_error(store, _undefined_report())
        assert first == second
        rules = store.list_all_rules(include_inactive=True)
        assert len(rules) == 1
        assert rules[0].occurrences == 2
        assert rules[0].confidence == pytest.approx(0.75)

    def test_confidence_step_configurable(self, store: RuleStore) -> None:
        rule_id = learn_from_error(store, _undefined_report())
        learn_from_error(store, _undefined_report(), confidence_step=0.2)
        assert rule_id is not None
        rule = store.get_rule(rule_id)
        assert rule is not None
        assert rule.confidence == pytest.approx(0.9)

    def test_other_technology_is_a_new_rule(self, store: RuleStore) -> None:
        js = learn_from_error(store, _undefined_report())
        py = learn_from_error(store, _undefined_report(file_path="app.py"))
        assert js != py
        assert len(store.list_all_rules()) == 2

    def test_inactive_rule_not_resurrected(self, store: RuleStore) -> None:
        rule_id = learn_from_error(store, _undefined_report())
        assert rule_id is not None
        store.deactivate_rule(rule_id)
        assert learn_from_error(store, _undefined_report()) == rule_id
        rule = store.get_rule(rule_id)
        assert rule is not None
        assert rule.is_active is False
        assert rule.occurrences == 2


class TestFrequencyThreshold:
    def test_waits_for_frequency(self, store: RuleStore) -> None:
        assert learn_from_error(store, _undefined_report(), min_pattern_frequency=3) is None
        assert learn_from_error(store, _undefined_report(), min_pattern_frequency=3) is None
        rule_id = learn_from_error(store, _undefined_report(), min_pattern_frequency=3)
        assert rule_id is not None
        pattern = store.get_code_pattern(make_pattern_signature(r"\bfooBar\b", "general"))
        assert pattern is not None
        assert pattern.frequency == 3


class TestWriteFailures:
    def test_store_error_propagates(
        self, store: RuleStore, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        def _boom(*_args: object, **_kwargs: object) -> None:
            msg = "read-only database"
            raise StoreError(msg)

        monkeypatch.setattr(store, "insert_rule", _boom)
        with pytest.raises(StoreError, match="read-only"):
            learn_from_error(store, _undefined_report())
