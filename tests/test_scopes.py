"""Tests for rulecascade.rules.scopes — applicable scope resolution."""

from __future__ import annotations

from rulecascade.rules.models import Scope
from rulecascade.rules.scopes import resolve_scopes


class TestResolveScopes:
    def test_nothing_known_is_global_only(self) -> None:
        assert resolve_scopes() == [Scope.GLOBAL]
        assert resolve_scopes(None, None) == ["global"]

    def test_client_adds_organization_and_client(self) -> None:
        assert resolve_scopes("acme") == [Scope.GLOBAL, Scope.ORGANIZATION, Scope.CLIENT]

    def test_project_only(self) -> None:
        assert resolve_scopes(None, "/work/app") == [Scope.GLOBAL, Scope.PROJECT]

    def test_client_and_project(self) -> None:
        assert resolve_scopes("acme", "/work/app") == [
            Scope.GLOBAL,
            Scope.ORGANIZATION,
            Scope.CLIENT,
            Scope.PROJECT,
        ]

    def test_non_string_inputs_ignored(self) -> None:
        assert resolve_scopes(42, ["proj"]) == [Scope.GLOBAL]

    def test_blank_strings_ignored(self) -> None:
        assert resolve_scopes("", "   ") == [Scope.GLOBAL]
