"""
Virtual tag predicates.

A closed set of frozen dataclasses, one per predicate family. Each keeps the
expression it was parsed from (for warnings) outside of equality.
"""

from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from enum import Enum
from typing import Optional, Union


@dataclass(frozen=True)
class Comparison:
    """
    Numeric bound check shared by size, depth and line-count predicates.

    Either bound may be open (None). ``>5`` is minimum=5 exclusive,
    ``3-7`` is [3, 7] inclusive, a size category is [lower, upper).
    """
    minimum: Optional[float] = None
    maximum: Optional[float] = None
    include_min: bool = True
    include_max: bool = True

    @classmethod
    def equal(cls, value: float) -> "Comparison":
        return cls(minimum=value, maximum=value)

    def matches(self, value: float) -> bool:
        if self.minimum is not None:
            if value < self.minimum or (value == self.minimum and not self.include_min):
                return False
        if self.maximum is not None:
            if value > self.maximum or (value == self.maximum and not self.include_max):
                return False
        return True


class TimeField(Enum):
    MODIFIED = "modified"
    CREATED = "created"
    ACCESSED = "accessed"


class TimeWindow(Enum):
    """Relative windows, resolved against the clock at evaluation time."""
    TODAY = "today"
    YESTERDAY = "yesterday"
    THIS_WEEK = "this-week"
    THIS_MONTH = "this-month"
    THIS_YEAR = "this-year"
    LAST_DAYS = "last-days"
    LAST_HOURS = "last-hours"
    ABSOLUTE = "absolute"


@dataclass(frozen=True)
class TimePredicate:
    """
    File timestamp inside a window.

    For ABSOLUTE windows, start/end are local calendar dates: the window is
    [start 00:00, end 00:00). Either may be None for an open side.
    """
    time_field: TimeField
    window: TimeWindow
    amount: int = 0
    start: Optional[date] = None
    end: Optional[date] = None
    expression: str = field(default="", compare=False)

    def bounds(self, now: datetime) -> tuple[Optional[datetime], Optional[datetime]]:
        """Resolve the window to naive local datetimes [start, end)."""
        midnight = now.replace(hour=0, minute=0, second=0, microsecond=0)
        w = self.window
        if w is TimeWindow.TODAY:
            return midnight, None
        if w is TimeWindow.YESTERDAY:
            return midnight - timedelta(days=1), midnight
        if w is TimeWindow.THIS_WEEK:
            return midnight - timedelta(days=midnight.weekday()), None
        if w is TimeWindow.THIS_MONTH:
            return midnight.replace(day=1), None
        if w is TimeWindow.THIS_YEAR:
            return midnight.replace(month=1, day=1), None
        if w is TimeWindow.LAST_DAYS:
            return now - timedelta(days=self.amount), None
        if w is TimeWindow.LAST_HOURS:
            return now - timedelta(hours=self.amount), None
        if w is TimeWindow.ABSOLUTE:
            start = datetime.combine(self.start, datetime.min.time()) if self.start else None
            end = datetime.combine(self.end, datetime.min.time()) if self.end else None
            return start, end
        raise TypeError(f"Unhandled time window: {w!r}")


@dataclass(frozen=True)
class SizePredicate:
    comparison: Comparison
    category: Optional[str] = None
    expression: str = field(default="", compare=False)


@dataclass(frozen=True)
class ExtensionPredicate:
    """Lower-cased extensions with a leading dot."""
    extensions: frozenset
    category: Optional[str] = None
    expression: str = field(default="", compare=False)


class PathKind(Enum):
    DIRECTORY = "dir"
    GLOB = "path"
    DEPTH = "depth"


@dataclass(frozen=True)
class PathPredicate:
    kind: PathKind
    value: str = ""
    depth: Optional[Comparison] = None
    expression: str = field(default="", compare=False)


class Permission(Enum):
    EXECUTABLE = "executable"
    READABLE = "readable"
    WRITABLE = "writable"
    READONLY = "readonly"


@dataclass(frozen=True)
class PermissionPredicate:
    permission: Permission
    expression: str = field(default="", compare=False)


@dataclass(frozen=True)
class LinesPredicate:
    comparison: Comparison
    expression: str = field(default="", compare=False)


class GitCondition(Enum):
    TRACKED = "tracked"
    UNTRACKED = "untracked"
    MODIFIED = "modified"
    STAGED = "staged"
    IGNORED = "ignored"
    COMMITTED_TODAY = "committed-today"
    NEVER_COMMITTED = "never-committed"
    STALE = "stale"


@dataclass(frozen=True)
class GitPredicate:
    condition: GitCondition
    stale_days: int = 180
    expression: str = field(default="", compare=False)


VirtualPredicate = Union[
    TimePredicate,
    SizePredicate,
    ExtensionPredicate,
    PathPredicate,
    PermissionPredicate,
    LinesPredicate,
    GitPredicate,
]

# Metadata each family reads; used as the second half of the cache key
METADATA_STAT = "stat"
METADATA_LINES = "lines"
METADATA_GIT = "git"
