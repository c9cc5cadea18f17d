"""
Query planner.

Turns SearchCriteria into a file list, cheapest filters first:

1. tags, expanded through aliases and hierarchy, resolved with index lookups
   (or every tracked file when no tags are given)
2. exclusion tags, expanded the same way
3. file-name patterns
4. virtual tags, evaluated only on what is left
5. sorted, deduplicated result

Each stage only narrows the candidate set. All input is validated before
stage 1, so a bad pattern or virtual tag never costs an index read or a stat.
"""

import logging
import re
from typing import Optional

from .errors import PatternError, QueryError
from .patterns import FilePatternFilter
from .protocol import TagIndexProtocol
from .schema import TagSchema
from .types import SearchCriteria, SearchMode, SearchResult, normalize_tag
from .vtags import VirtualTagEngine

logger = logging.getLogger(__name__)


class QueryPlanner:
    """Composes the index, schema and virtual tag engine into one search."""

    def __init__(
        self,
        index: TagIndexProtocol,
        schema: TagSchema,
        engine: Optional[VirtualTagEngine] = None,
    ):
        self.index = index
        self.schema = schema
        self.engine = engine

    def expand(self, tag: str, criteria: SearchCriteria) -> set[str]:
        """Stored tag names one search term stands for."""
        try:
            return self.schema.expand_for_search(
                tag,
                include_hierarchy=not criteria.no_hierarchy,
                include_aliases=not criteria.no_aliases,
                index=self.index,
            )
        except ValueError as e:
            raise QueryError(str(e)) from e

    def _validate_tag_regexes(self, criteria: SearchCriteria) -> None:
        for pattern in criteria.tags:
            try:
                re.compile(pattern)
            except re.error as e:
                raise PatternError(pattern, str(e)) from e

    def _term_files(self, tag: str, criteria: SearchCriteria) -> set[str]:
        if criteria.regex_tags:
            return self.index.find_by_tag_regex(tag)
        return self.index.union(self.expand(tag, criteria))

    def _tag_candidates(self, criteria: SearchCriteria) -> set[str]:
        if not criteria.tags:
            return set(self.index.list_files())

        if criteria.tag_mode is SearchMode.ANY:
            result: set[str] = set()
            for tag in criteria.tags:
                result |= self._term_files(tag, criteria)
            return result

        candidates: Optional[set[str]] = None
        for tag in criteria.tags:
            files = self._term_files(tag, criteria)
            candidates = files if candidates is None else candidates & files
            if not candidates:
                return set()
        return candidates or set()

    def _excluded(self, criteria: SearchCriteria) -> set[str]:
        names: set[str] = set()
        for tag in criteria.exclude_tags:
            names |= self.expand(tag, criteria)
        return self.index.union(names)

    def search(self, criteria: SearchCriteria) -> SearchResult:
        """
        Run a search.

        Raises:
            ParseError: A virtual tag is malformed
            PatternError: A file pattern or tag regex does not compile
            QueryError: Virtual tags requested without an engine, or a bad tag
            StoreError: The index could not be read
        """
        # Validate everything before touching the index or the filesystem
        predicates = []
        if criteria.virtual_tags:
            if self.engine is None:
                raise QueryError("Virtual tags requested but no virtual tag engine is configured")
            predicates = self.engine.parse_all(criteria.virtual_tags)
        patterns = FilePatternFilter(criteria.file_patterns, criteria.pattern_type, criteria.file_mode)
        if criteria.regex_tags:
            self._validate_tag_regexes(criteria)
        else:
            for tag in [*criteria.tags, *criteria.exclude_tags]:
                try:
                    normalize_tag(tag)
                except ValueError as e:
                    raise QueryError(str(e)) from e

        candidates = self._tag_candidates(criteria)
        logger.debug("tags %s (%s): %d candidates", criteria.tags, criteria.tag_mode.value, len(candidates))

        if candidates and criteria.exclude_tags:
            candidates -= self._excluded(criteria)
            logger.debug("after exclusions %s: %d", criteria.exclude_tags, len(candidates))

        if candidates and patterns:
            candidates = patterns.filter(candidates)
            logger.debug("after patterns %s: %d", criteria.file_patterns, len(candidates))

        warnings = []
        if candidates and predicates:
            outcome = self.engine.filter(candidates, predicates, criteria.virtual_mode)
            candidates = outcome.matched
            warnings = outcome.warnings
            logger.debug("after virtual tags %s: %d", criteria.virtual_tags, len(candidates))

        return SearchResult(
            paths=sorted(candidates),
            warnings=sorted(warnings, key=lambda w: (w.path, w.expression)),
        )
