"""
Virtual tags: computed filters over filesystem and git metadata.

    from tagr.vtags import VirtualTagEngine

    engine = VirtualTagEngine()
    predicates = engine.parse_all(["size:>1MB", "modified:this-week"])
    outcome = engine.filter(candidate_paths, predicates)
    outcome.matched, outcome.warnings

Virtual tags are never stored in the index.
"""

from .cache import CachedMetadataSource, MetadataCache
from .evaluator import FilterOutcome, VirtualTagEngine, evaluate
from .git import GitInspector
from .metadata import FilesystemMetadataSource
from .parser import VirtualTagParser, parse, parse_size
from .types import (
    Comparison,
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
    TimeWindow,
    VirtualPredicate,
)

__all__ = [
    "VirtualTagEngine",
    "FilterOutcome",
    "evaluate",
    "parse",
    "parse_size",
    "VirtualTagParser",
    "MetadataCache",
    "CachedMetadataSource",
    "FilesystemMetadataSource",
    "GitInspector",
    "VirtualPredicate",
    "Comparison",
    "TimePredicate",
    "TimeField",
    "TimeWindow",
    "SizePredicate",
    "ExtensionPredicate",
    "PathPredicate",
    "PathKind",
    "PermissionPredicate",
    "Permission",
    "LinesPredicate",
    "GitPredicate",
    "GitCondition",
]
