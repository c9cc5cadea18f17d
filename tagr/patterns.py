"""
File-name pattern filtering.

Patterns are either globs or regexes, chosen explicitly by the caller; the
kind is never guessed from the pattern text. Both match against the full
stored path: a glob must match the whole path (``*`` also crosses ``/``),
a regex may match anywhere in it.
"""

import fnmatch
import re
from typing import Iterable

from .errors import PatternError
from .types import PatternType, SearchMode


class FilePatternFilter:
    """Compiled set of file-name patterns with an ALL/ANY combination mode."""

    def __init__(
        self,
        patterns: Iterable[str],
        pattern_type: PatternType = PatternType.GLOB,
        mode: SearchMode = SearchMode.ANY,
    ):
        """
        Raises:
            PatternError: If a pattern is empty or a regex does not compile
        """
        self.pattern_type = PatternType.coerce(pattern_type)
        self.mode = SearchMode.coerce(mode)
        self.patterns = list(patterns)
        self._compiled = [self._compile(p) for p in self.patterns]

    def _compile(self, pattern: str) -> re.Pattern:
        if not pattern:
            raise PatternError(pattern, "empty pattern")
        if self.pattern_type is PatternType.GLOB:
            return re.compile(fnmatch.translate(pattern))
        try:
            return re.compile(pattern)
        except re.error as e:
            raise PatternError(pattern, str(e)) from e

    def __bool__(self) -> bool:
        return bool(self._compiled)

    def _hit(self, regex: re.Pattern, path: str) -> bool:
        if self.pattern_type is PatternType.GLOB:
            return regex.match(path) is not None
        return regex.search(path) is not None

    def matches(self, path: str) -> bool:
        """True if path satisfies the patterns (always True with no patterns)."""
        if not self._compiled:
            return True
        if self.mode is SearchMode.ALL:
            return all(self._hit(r, path) for r in self._compiled)
        return any(self._hit(r, path) for r in self._compiled)

    def filter(self, paths: Iterable[str]) -> set[str]:
        return {p for p in paths if self.matches(p)}


def filter_paths(
    paths: Iterable[str],
    patterns: Iterable[str],
    pattern_type: PatternType = PatternType.GLOB,
    mode: SearchMode = SearchMode.ANY,
) -> set[str]:
    """One-shot form of FilePatternFilter(...).filter(paths)."""
    return FilePatternFilter(patterns, pattern_type, mode).filter(paths)
