"""
Virtual tag evaluation.

``evaluate()`` checks one predicate against one file. ``VirtualTagEngine``
filters a candidate set in parallel, turning per-file metadata failures into
warnings instead of aborting the batch.
"""

import fnmatch
import logging
import os
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import PurePath
from typing import Iterable, Optional

from ..config import VirtualTagConfig
from ..errors import EvaluationError, ParseError
from ..protocol import MetadataSource
from ..types import EvaluationWarning, SearchMode
from .cache import CachedMetadataSource, MetadataCache
from .git import GitInspector
from .metadata import FilesystemMetadataSource
from .parser import VirtualTagParser
from .types import (
    ExtensionPredicate,
    GitCondition,
    GitPredicate,
    LinesPredicate,
    PathKind,
    PathPredicate,
    Permission,
    PermissionPredicate,
    SizePredicate,
    TimeField,
    TimePredicate,
    VirtualPredicate,
)

logger = logging.getLogger(__name__)

_SECONDS_PER_DAY = 86400


def _in_window(ts: float, start: Optional[datetime], end: Optional[datetime]) -> bool:
    moment = datetime.fromtimestamp(ts)
    if start is not None and moment < start:
        return False
    if end is not None and moment >= end:
        return False
    return True


def _dir_matches(path: str, directory: str) -> bool:
    """Parent equals directory, or ends with it component-wise."""
    parent = PurePath(path).parent
    wanted = PurePath(directory)
    if parent == wanted:
        return True
    if wanted.is_absolute() or not wanted.parts:
        return False
    n = len(wanted.parts)
    return len(parent.parts) >= n and parent.parts[-n:] == wanted.parts


def evaluate(
    predicate: VirtualPredicate,
    path: str,
    source: MetadataSource,
    now: Optional[datetime] = None,
) -> bool:
    """
    Check one predicate against one file.

    Args:
        predicate: Parsed virtual tag
        path: File path as stored in the index
        source: Where metadata comes from
        now: Local time used for relative windows (defaults to now)

    Raises:
        EvaluationError: The metadata this predicate needs is unavailable
    """
    if isinstance(predicate, TimePredicate):
        st = source.stat(path)
        if predicate.time_field is TimeField.MODIFIED:
            ts = st.mtime
        elif predicate.time_field is TimeField.ACCESSED:
            ts = st.atime
        else:
            ts = st.birthtime
            if ts is None:
                raise EvaluationError(path, "creation time is not available on this platform")
        start, end = predicate.bounds(now or datetime.now())
        return _in_window(ts, start, end)

    if isinstance(predicate, SizePredicate):
        return predicate.comparison.matches(source.stat(path).size)

    if isinstance(predicate, ExtensionPredicate):
        ext = os.path.splitext(path)[1].lower()
        return bool(ext) and ext in predicate.extensions

    if isinstance(predicate, PathPredicate):
        if predicate.kind is PathKind.DIRECTORY:
            return _dir_matches(path, predicate.value)
        if predicate.kind is PathKind.GLOB:
            return fnmatch.fnmatchcase(path, predicate.value)
        if predicate.kind is PathKind.DEPTH:
            return predicate.depth.matches(len(PurePath(path).parts))
        raise TypeError(f"Unhandled path predicate: {predicate.kind!r}")

    if isinstance(predicate, PermissionPredicate):
        mode = source.stat(path).mode
        perm = predicate.permission
        if perm is Permission.EXECUTABLE:
            return mode & 0o111 != 0
        if perm is Permission.READABLE:
            return mode & 0o444 != 0
        if perm is Permission.WRITABLE:
            return mode & 0o222 != 0
        if perm is Permission.READONLY:
            return mode & 0o222 == 0
        raise TypeError(f"Unhandled permission: {perm!r}")

    if isinstance(predicate, LinesPredicate):
        if not source.stat(path).is_file:
            return False
        return predicate.comparison.matches(source.line_count(path))

    if isinstance(predicate, GitPredicate):
        status = source.git_status(path)
        cond = predicate.condition
        if cond is GitCondition.TRACKED:
            return status.tracked
        if cond is GitCondition.UNTRACKED:
            return status.untracked
        if cond is GitCondition.IGNORED:
            return status.ignored
        if cond is GitCondition.MODIFIED:
            return status.modified
        if cond is GitCondition.STAGED:
            return status.staged
        if cond is GitCondition.NEVER_COMMITTED:
            return status.last_commit is None
        now = now or datetime.now()
        if cond is GitCondition.COMMITTED_TODAY:
            midnight = now.replace(hour=0, minute=0, second=0, microsecond=0)
            return status.last_commit is not None and _in_window(status.last_commit, midnight, None)
        if cond is GitCondition.STALE:
            if status.last_commit is None:
                return False
            return now.timestamp() - status.last_commit > predicate.stale_days * _SECONDS_PER_DAY
        raise TypeError(f"Unhandled git condition: {cond!r}")

    raise TypeError(f"Not a virtual predicate: {predicate!r}")


@dataclass
class FilterOutcome:
    """Files that passed, plus one warning per file that could not be checked."""
    matched: set[str] = field(default_factory=set)
    warnings: list[EvaluationWarning] = field(default_factory=list)


class VirtualTagEngine:
    """
    Parses virtual tags and filters candidate files against them.

    Holds the metadata source (cached unless disabled) shared by every
    worker thread.
    """

    def __init__(
        self,
        config: Optional[VirtualTagConfig] = None,
        source: Optional[MetadataSource] = None,
        cache: Optional[MetadataCache] = None,
    ):
        """
        Args:
            config: Virtual tag settings (defaults if None)
            source: Metadata provider; the live filesystem if None
            cache: Cache to use when caching is enabled; a new one if None
        """
        self.config = config or VirtualTagConfig()
        self.parser = VirtualTagParser(self.config)

        if source is None:
            source = FilesystemMetadataSource(
                GitInspector(detect_repo=self.config.git.detect_repo),
                git_enabled=self.config.git.enabled,
            )
        self.cache: Optional[MetadataCache] = None
        if self.config.cache_metadata:
            self.cache = cache if cache is not None else MetadataCache(
                ttl_seconds=self.config.cache_ttl_seconds,
                capacity=self.config.cache_capacity,
            )
            source = CachedMetadataSource(source, self.cache)
        self.source = source

    def parse(self, expression: str) -> VirtualPredicate:
        """
        Raises:
            ParseError: Invalid expression, or virtual tags are disabled
        """
        if not self.config.enabled:
            raise ParseError(expression, "virtual tags are disabled in configuration")
        return self.parser.parse(expression)

    def parse_all(self, expressions: Iterable[str]) -> list[VirtualPredicate]:
        return [self.parse(e) for e in expressions]

    def _check(
        self,
        path: str,
        predicates: list[VirtualPredicate],
        mode: SearchMode,
        now: datetime,
    ) -> tuple[str, bool, Optional[EvaluationWarning]]:
        """
        Evaluate one file.

        ALL stops at the first false predicate. ANY evaluates every predicate,
        so an unreadable file is dropped with a warning whatever the order.
        """
        want_all = mode is SearchMode.ALL
        matched = False
        for predicate in predicates:
            try:
                ok = evaluate(predicate, path, self.source, now)
            except EvaluationError as e:
                return path, False, EvaluationWarning(path, predicate.expression, e.reason)
            if not ok and want_all:
                return path, False, None
            matched = matched or ok
        return path, want_all or matched, None

    def filter(
        self,
        paths: Iterable[str],
        predicates: list[VirtualPredicate],
        mode: SearchMode = SearchMode.ALL,
        now: Optional[datetime] = None,
    ) -> FilterOutcome:
        """
        Keep the files satisfying the predicates (all of them, or any).

        Files whose metadata cannot be read are dropped with a warning.
        Each file is evaluated independently on a bounded thread pool.
        """
        mode = SearchMode.coerce(mode)
        paths = list(dict.fromkeys(paths))
        if not predicates:
            return FilterOutcome(matched=set(paths))
        now = now or datetime.now()

        outcome = FilterOutcome()
        workers = max(1, min(self.config.max_workers, len(paths)))
        if workers == 1:
            results = [self._check(p, predicates, mode, now) for p in paths]
        else:
            with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="tagr-vtag-") as pool:
                futures = [pool.submit(self._check, p, predicates, mode, now) for p in paths]
                results = [f.result() for f in futures]

        for path, ok, warning in results:
            if warning is not None:
                logger.warning("Skipping %s", warning)
                outcome.warnings.append(warning)
            elif ok:
                outcome.matched.add(path)
        return outcome
