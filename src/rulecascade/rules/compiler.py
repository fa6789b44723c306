"""Pattern compiler: stored pattern specs -> executable matchers, cached by signature."""

from __future__ import annotations

import re
import threading
from dataclasses import dataclass
from typing import TYPE_CHECKING

from rulecascade.rules.errors import CompileError
from rulecascade.rules.models import VALID_PATTERN_TYPES

if TYPE_CHECKING:
    from collections.abc import Iterator

# Cache key: (pattern_text, pattern_type)
MatcherKey = tuple[str, str]


@dataclass(frozen=True)
class LineMatch:
    """A single match inside one line (column is 0-based here)."""

    start: int
    end: int
    text: str
    groups: tuple[str | None, ...]


@dataclass(frozen=True)
class Matcher:
    """Immutable executable form of a stored pattern.

    ``re.Pattern.finditer`` keeps its cursor in the returned iterator, so one
    matcher can be used by any number of threads at once.
    """

    pattern_text: str
    pattern_type: str
    regex: re.Pattern[str]

    def iter_line(self, line: str) -> Iterator[LineMatch]:
        """Yield every match in *line*, left to right.

        Zero-width matches are reported once per position, so a pattern
        like ``^`` cannot loop.
        """
        for m in self.regex.finditer(line):
            yield LineMatch(start=m.start(), end=m.end(), text=m.group(0), groups=m.groups())


class PatternCompiler:
    """Compile and memoize matchers for the lifetime of the process.

    Failures are memoized too: a malformed pattern never becomes valid, so
    it is reported once per signature and raised again from the cache.
    """

    def __init__(self) -> None:
        self._compiled: dict[MatcherKey, Matcher | CompileError] = {}
        self._lock = threading.Lock()

    def compile(self, pattern_text: str, pattern_type: str = "regex") -> Matcher:
        """Return the matcher for a pattern, compiling it on first use.

        Raises
        ------
        CompileError
            When the pattern type is unsupported or the pattern is malformed.
        """
        key: MatcherKey = (pattern_text, pattern_type)
        cached = self._compiled.get(key)
        if cached is None:
            cached = self._build(pattern_text, pattern_type)
            with self._lock:
                # Another thread may have won the race; keep the first result.
                cached = self._compiled.setdefault(key, cached)
        if isinstance(cached, CompileError):
            raise cached
        return cached

    def _build(self, pattern_text: str, pattern_type: str) -> Matcher | CompileError:
        if pattern_type not in VALID_PATTERN_TYPES:
            return CompileError(pattern_text, pattern_type, "unsupported pattern type")
        try:
            regex = re.compile(pattern_text, re.MULTILINE)
        except re.error as exc:
            return CompileError(pattern_text, pattern_type, str(exc))
        return Matcher(pattern_text=pattern_text, pattern_type=pattern_type, regex=regex)

    def clear(self) -> None:
        """Drop all memoized matchers (useful for testing)."""
        with self._lock:
            self._compiled = {}

    def __len__(self) -> int:
        return len(self._compiled)


# ---------------------------------------------------------------------------
# Auto-fix patterns (sed-style ``s/search/replacement/flags``)
# ---------------------------------------------------------------------------

_GROUP_REF_RE = re.compile(r"\$(\d|&)")
_VALID_FIX_FLAGS = frozenset("gi")


@dataclass(frozen=True)
class AutoFix:
    """Structured form of a sed-style substitution.

    ``replacement`` uses ``$1``..``$9`` for groups and ``$&`` or ``$0``
    for the whole match.
    """

    search: str
    replacement: str
    flags: str
    regex: re.Pattern[str]

    @property
    def replace_all(self) -> bool:
        return "g" in self.flags

    def _expand(self, match: re.Match[str]) -> str:
        def _group(ref: re.Match[str]) -> str:
            token = ref.group(1)
            if token in ("&", "0"):
                return match.group(0)
            idx = int(token)
            if idx > (self.regex.groups or 0):
                return ref.group(0)
            return match.group(idx) or ""

        return _GROUP_REF_RE.sub(_group, self.replacement)

    def apply(self, line: str) -> str | None:
        """Return *line* with the substitution applied, or None if nothing matched."""
        new_line, count = self.regex.subn(self._expand, line, count=0 if self.replace_all else 1)
        return new_line if count else None


def _split_sed(text: str) -> list[str]:
    """Split on unescaped ``/``; ``\\/`` becomes a literal slash."""
    parts: list[str] = []
    current: list[str] = []
    i = 0
    while i < len(text):
        ch = text[i]
        if ch == "\\" and i + 1 < len(text):
            nxt = text[i + 1]
            current.append("/" if nxt == "/" else ch + nxt)
            i += 2
            continue
        if ch == "/":
            parts.append("".join(current))
            current = []
        else:
            current.append(ch)
        i += 1
    parts.append("".join(current))
    return parts


def escape_sed(text: str) -> str:
    """Escape ``/`` so *text* can be embedded in a sed-style expression."""
    return text.replace("/", "\\/")


def parse_auto_fix(text: str) -> AutoFix:
    """Parse ``s/search/replacement/flags`` into an :class:`AutoFix`.

    Raises
    ------
    CompileError
        When the expression is not sed-style, has unknown flags, or the
        search half is not a valid regex.
    """
    if not text.startswith("s/"):
        raise CompileError(text, "sed", "auto-fix must start with 's/'")
    parts = _split_sed(text[2:])
    if len(parts) != 3:
        raise CompileError(text, "sed", "expected s/search/replacement/flags")
    search, replacement, flags = parts
    if not search:
        raise CompileError(text, "sed", "empty search pattern")
    unknown = set(flags) - _VALID_FIX_FLAGS
    if unknown:
        raise CompileError(text, "sed", f"unsupported flags {''.join(sorted(unknown))!r}")
    try:
        regex = re.compile(search, re.IGNORECASE if "i" in flags else 0)
    except re.error as exc:
        raise CompileError(text, "sed", str(exc)) from exc
    return AutoFix(search=search, replacement=replacement, flags=flags, regex=regex)
