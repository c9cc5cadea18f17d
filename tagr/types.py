"""
Data types shared across the tagr engine.
"""

import os
from dataclasses import dataclass, field
from enum import Enum
from typing import Union

from .errors import InvalidPath


# Reserved character splitting a tag into parent:child levels
HIERARCHY_DELIMITER = ":"

MAX_TAG_LENGTH = 512

PathLike = Union[str, bytes, os.PathLike]


def path_key(path: PathLike) -> str:
    """
    Convert a path to the string used as its index key.

    The path is kept as given (absolute or relative). Bytes are decoded
    strictly as UTF-8; str paths that carry surrogate escapes from an
    undecodable filename are rejected.

    Raises:
        InvalidPath: If the path is empty, not valid UTF-8, or contains NUL
    """
    try:
        raw = os.fspath(path)
    except TypeError as e:
        raise InvalidPath(path, "not a path") from e

    if isinstance(raw, bytes):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError as e:
            raise InvalidPath(path, "path is not valid UTF-8") from e
    else:
        try:
            raw.encode("utf-8")
        except UnicodeEncodeError as e:
            raise InvalidPath(path, "path is not valid UTF-8") from e

    if not raw:
        raise InvalidPath(path, "empty path")
    if "\x00" in raw:
        raise InvalidPath(path, "path contains NUL")
    return raw


def normalize_tag(tag: str) -> str:
    """Strip surrounding whitespace and validate a tag name."""
    if not isinstance(tag, str):
        raise ValueError(f"Tag must be a string: {tag!r}")
    tag = tag.strip()
    if not tag or len(tag) > MAX_TAG_LENGTH:
        raise ValueError(f"Tag must be 1-{MAX_TAG_LENGTH} characters: {tag!r}")
    if any(ch in tag for ch in "\x00\n\r\t"):
        raise ValueError(f"Tag contains control characters: {tag!r}")
    if tag.startswith(HIERARCHY_DELIMITER) or tag.endswith(HIERARCHY_DELIMITER) \
            or HIERARCHY_DELIMITER * 2 in tag:
        raise ValueError(f"Tag has an empty hierarchy level: {tag!r}")
    return tag


def dedupe(items) -> list[str]:
    """Drop duplicates, keeping first-seen order."""
    return list(dict.fromkeys(items))


class SearchMode(Enum):
    """How multiple terms of one kind combine."""
    ALL = "all"
    ANY = "any"

    @classmethod
    def coerce(cls, value: Union["SearchMode", str]) -> "SearchMode":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).lower())
        except ValueError:
            raise ValueError(f"Unknown search mode: {value!r} (use 'all' or 'any')") from None


class PatternType(Enum):
    """Explicit typing for file-name patterns. There is no auto-detection."""
    GLOB = "glob"
    REGEX = "regex"

    @classmethod
    def coerce(cls, value: Union["PatternType", str]) -> "PatternType":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).lower())
        except ValueError:
            raise ValueError(f"Unknown pattern type: {value!r} (use 'glob' or 'regex')") from None


@dataclass
class SearchCriteria:
    """
    Everything a search can ask for.

    Attributes:
        tags: Requested tags (expanded through aliases/hierarchy unless disabled)
        tag_mode: ALL (file needs every tag) or ANY
        file_patterns: Glob or regex patterns matched against the full path
        file_mode: ALL or ANY over file_patterns
        pattern_type: How file_patterns are interpreted
        exclude_tags: A file holding any of these is dropped
        virtual_tags: Virtual tag expressions, e.g. "size:>1MB"
        virtual_mode: ALL or ANY over virtual_tags
        no_aliases: Disable alias canonicalization and synonym expansion
        no_hierarchy: Disable descendant expansion of hierarchical tags
        regex_tags: Treat each entry of tags as a regex over stored tag names
    """
    tags: list[str] = field(default_factory=list)
    tag_mode: SearchMode = SearchMode.ALL
    file_patterns: list[str] = field(default_factory=list)
    file_mode: SearchMode = SearchMode.ANY
    pattern_type: PatternType = PatternType.GLOB
    exclude_tags: list[str] = field(default_factory=list)
    virtual_tags: list[str] = field(default_factory=list)
    virtual_mode: SearchMode = SearchMode.ALL
    no_aliases: bool = False
    no_hierarchy: bool = False
    regex_tags: bool = False

    def __post_init__(self):
        # A bare string is one term, not a sequence of characters
        for name in ("tags", "file_patterns", "exclude_tags", "virtual_tags"):
            value = getattr(self, name)
            setattr(self, name, [value] if isinstance(value, str) else list(value))
        self.tag_mode = SearchMode.coerce(self.tag_mode)
        self.file_mode = SearchMode.coerce(self.file_mode)
        self.virtual_mode = SearchMode.coerce(self.virtual_mode)
        self.pattern_type = PatternType.coerce(self.pattern_type)


@dataclass(frozen=True)
class EvaluationWarning:
    """A file dropped from results because its metadata could not be read."""
    path: str
    expression: str
    message: str

    def __str__(self) -> str:
        return f"{self.path}: {self.expression}: {self.message}"


@dataclass
class SearchResult:
    """Sorted, deduplicated matches plus non-fatal per-file warnings."""
    paths: list[str] = field(default_factory=list)
    warnings: list[EvaluationWarning] = field(default_factory=list)

    def __iter__(self):
        return iter(self.paths)

    def __len__(self) -> int:
        return len(self.paths)

    def __contains__(self, path) -> bool:
        return path in self.paths


@dataclass
class CleanupReport:
    """Entries found (and, unless dry_run, purged) by Tagr.cleanup()."""
    missing: list[str] = field(default_factory=list)
    untagged: list[str] = field(default_factory=list)
    dry_run: bool = False

    @property
    def total(self) -> int:
        return len(self.missing) + len(self.untagged)
