"""In-memory, time-bound cache of resolved and compiled rule sets."""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING

from rulecascade.rules.compiler import parse_auto_fix
from rulecascade.rules.errors import CompileError, StoreError
from rulecascade.rules.models import Scope

if TYPE_CHECKING:
    from collections.abc import Callable, Iterator, Sequence

    from rulecascade.rules.compiler import AutoFix, Matcher, PatternCompiler
    from rulecascade.rules.models import ValidationRule
    from rulecascade.rules.store import RuleStore

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 300.0

# Cache key: (scopes, technologies, client_name, project_path), order-sensitive.
CacheKey = tuple[tuple[str, ...], tuple[str, ...], str | None, str | None]


@dataclass(frozen=True)
class CompiledRule:
    """A rule paired with its executable matcher.

    ``matcher`` is None when the pattern failed to compile; ``compile_error``
    then says why.  The validator skips such rules.
    """

    rule: ValidationRule
    matcher: Matcher | None
    compile_error: CompileError | None = None
    auto_fix: AutoFix | None = None


@dataclass(frozen=True)
class CompiledRuleSet:
    """An ordered, immutable set of compiled rules."""

    rules: tuple[CompiledRule, ...]
    fetched_at: float

    def __iter__(self) -> Iterator[CompiledRule]:
        return iter(self.rules)

    def __len__(self) -> int:
        return len(self.rules)


def compile_rules(
    rules: Sequence[ValidationRule], compiler: PatternCompiler, *, fetched_at: float
) -> CompiledRuleSet:
    """Compile every rule, keeping failures in place so they can be reported."""
    compiled: list[CompiledRule] = []
    for rule in rules:
        matcher: Matcher | None = None
        error: CompileError | None = None
        try:
            matcher = compiler.compile(rule.pattern_text, rule.pattern_type)
        except CompileError as exc:
            logger.warning("Skipping rule %s: %s", rule.rule_id, exc)
            error = exc

        auto_fix: AutoFix | None = None
        if rule.auto_fix_pattern:
            try:
                auto_fix = parse_auto_fix(rule.auto_fix_pattern)
            except CompileError as exc:
                logger.warning("Ignoring auto-fix of rule %s: %s", rule.rule_id, exc)

        compiled.append(
            CompiledRule(rule=rule, matcher=matcher, compile_error=error, auto_fix=auto_fix)
        )
    return CompiledRuleSet(rules=tuple(compiled), fetched_at=fetched_at)


class RuleCache:
    """TTL cache of compiled rule sets keyed by (scopes, technologies, client, project).

    Any rule write clears the whole cache.  Clearing swaps in a fresh entry
    map, so a concurrent reader sees either the old map or the new one.
    The cache is an optimization only: with it empty, every resolve is a
    store fetch.
    """

    def __init__(
        self,
        store: RuleStore,
        compiler: PatternCompiler,
        *,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._store = store
        self._compiler = compiler
        self._ttl = ttl_seconds
        self._clock = clock
        self._entries: dict[CacheKey, CompiledRuleSet] = {}
        self._generation = 0
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0
        self.fetches = 0
        store.add_write_listener(self.invalidate)

    @staticmethod
    def make_key(
        scopes: Sequence[Scope | str],
        technologies: Sequence[str],
        client_name: str | None,
        project_path: str | None,
    ) -> CacheKey:
        return (
            tuple(Scope(s).value for s in scopes),
            tuple(technologies),
            client_name,
            project_path,
        )

    def lookup(
        self,
        scopes: Sequence[Scope | str],
        technologies: Sequence[str],
        client_name: str | None = None,
        project_path: str | None = None,
    ) -> tuple[CompiledRuleSet, bool]:
        """Return ``(rule_set, cache_hit)``.

        On a miss or expired entry the store is queried synchronously.  If
        the store fails, the expired entry is served when there is one,
        otherwise an empty rule set.
        """
        key = self.make_key(scopes, technologies, client_name, project_path)
        now = self._clock()
        entry = self._entries.get(key)
        if entry is not None and now - entry.fetched_at < self._ttl:
            with self._lock:
                self.hits += 1
            logger.debug("Rule cache hit for %s", key)
            return entry, True

        logger.debug("Rule cache miss for %s", key)
        with self._lock:
            self.misses += 1
            self.fetches += 1
            generation = self._generation
        try:
            rules = self._store.list_rules(scopes, technologies)
        except StoreError as exc:
            if entry is not None:
                logger.warning("Rule store unavailable, serving stale rules: %s", exc)
                return entry, False
            logger.warning("Rule store unavailable, validating with no rules: %s", exc)
            return CompiledRuleSet(rules=(), fetched_at=now), False

        rule_set = compile_rules(rules, self._compiler, fetched_at=now)
        with self._lock:
            # Skip storing if a write invalidated the cache while we fetched.
            if generation == self._generation:
                self._entries[key] = rule_set
        return rule_set, False

    def resolve(
        self,
        scopes: Sequence[Scope | str],
        technologies: Sequence[str],
        client_name: str | None = None,
        project_path: str | None = None,
    ) -> CompiledRuleSet:
        """Return the compiled rule set for the key, fetching on miss or expiry."""
        rule_set, _hit = self.lookup(scopes, technologies, client_name, project_path)
        return rule_set

    def invalidate(self) -> None:
        """Drop every entry (called after any rule write)."""
        with self._lock:
            self._entries = {}
            self._generation += 1
        logger.debug("Rule cache invalidated")

    def stats(self) -> dict[str, int]:
        """Return cache statistics."""
        with self._lock:
            return {
                "entries": len(self._entries),
                "hits": self.hits,
                "misses": self.misses,
                "fetches": self.fetches,
            }
