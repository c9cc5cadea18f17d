"""
tagr

A local tag catalog for files: attach free-form tags to paths and query them
with set logic, aliases, tag hierarchies and live metadata filters.

Quick Start:
    from tagr import Tagr

    with Tagr() as t:
        t.tag("src/main.rs", ["lang:rust", "entrypoint"])
        t.add_alias("rs", "lang:rust")
        result = t.search(tags=["rs"], virtual_tags=["lines:>100"])
        result.paths, result.warnings

Default Store:
    ~/.tagr (created automatically).
    Override with TAGR_STORE_PATH or an explicit path argument.

Environment Variables:
    TAGR_STORE_PATH  - Override default store location
    TAGR_VERBOSE     - Show warnings from the tagr logger

Configuration is persisted in tagr.toml within the store directory; aliases
live in tag_schema.toml next to it.
"""

from .api import Tagr
from .errors import (
    AliasExists,
    AliasNotFound,
    CircularReference,
    EvaluationError,
    InvalidPath,
    ParseError,
    PathNotFound,
    PatternError,
    QueryError,
    ReservedDelimiter,
    SchemaError,
    SchemaLoadError,
    StoreError,
    TagrError,
    is_fatal,
)
from .query import QueryPlanner
from .schema import TagSchema
from .tag_index import TagIndex
from .types import (
    HIERARCHY_DELIMITER,
    CleanupReport,
    EvaluationWarning,
    PatternType,
    SearchCriteria,
    SearchMode,
    SearchResult,
)
from .vtags import VirtualTagEngine, parse as parse_virtual_tag

__version__ = "0.1.0"
__all__ = [
    "Tagr",
    "TagIndex",
    "TagSchema",
    "QueryPlanner",
    "VirtualTagEngine",
    "parse_virtual_tag",
    "SearchCriteria",
    "SearchMode",
    "PatternType",
    "SearchResult",
    "EvaluationWarning",
    "CleanupReport",
    "HIERARCHY_DELIMITER",
    "TagrError",
    "InvalidPath",
    "PathNotFound",
    "StoreError",
    "SchemaError",
    "ReservedDelimiter",
    "CircularReference",
    "AliasExists",
    "AliasNotFound",
    "SchemaLoadError",
    "QueryError",
    "ParseError",
    "PatternError",
    "EvaluationError",
    "is_fatal",
]
