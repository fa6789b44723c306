"""Scope resolution: which scopes apply to a client/project pair."""

from __future__ import annotations

from rulecascade.rules.models import Scope


def _is_known(value: object) -> bool:
    return isinstance(value, str) and bool(value.strip())


def resolve_scopes(client_name: object = None, project_path: object = None) -> list[Scope]:
    """Return the applicable scopes in canonical (broadest-first) order.

    ``global`` is always present.  A known client adds ``organization`` and
    ``client``; a known project path adds ``project``.  Anything that is not
    a non-empty string counts as unknown.
    """
    scopes = [Scope.GLOBAL]
    if _is_known(client_name):
        scopes.extend((Scope.ORGANIZATION, Scope.CLIENT))
    if _is_known(project_path):
        scopes.append(Scope.PROJECT)
    return scopes
