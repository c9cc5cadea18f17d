"""
Virtual tag expression parser.

Expressions have the form ``family:value``, for example ``size:>1MB``,
``modified:last-7-days`` or ``git:staged``. Everything is validated here, so
a bad expression fails before any file is looked at.
"""

import re
from datetime import date, timedelta
from typing import Optional

from ..config import VirtualTagConfig
from ..errors import ParseError
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

# Binary multiples; "KB" and "KiB" are the same unit
SIZE_UNITS = {
    "": 1,
    "b": 1,
    "k": 1024, "kb": 1024, "kib": 1024,
    "m": 1024 ** 2, "mb": 1024 ** 2, "mib": 1024 ** 2,
    "g": 1024 ** 3, "gb": 1024 ** 3, "gib": 1024 ** 3,
    "t": 1024 ** 4, "tb": 1024 ** 4, "tib": 1024 ** 4,
}

_SIZE_RE = re.compile(r"^(\d+(?:\.\d+)?)\s*([a-zA-Z]*)$")
_LAST_RE = re.compile(r"^last-(\d+)-(days|hours)$")
_DATE_RE = r"\d{4}-\d{2}-\d{2}"
_BETWEEN_RE = re.compile(rf"^between-({_DATE_RE})-({_DATE_RE})$")
_OPERATOR_RE = re.compile(r"^(>=|<=|>|<|=)\s*(.+)$")

HUGE_CATEGORY = "huge"

EXPECTED = {
    "time": (
        "today, yesterday, this-week, this-month, this-year, recent, "
        "last-N-days, last-N-hours, after-DATE, before-DATE, "
        "between-DATE-DATE, DATE, >DATE, <DATE, >=DATE or <=DATE (DATE is YYYY-MM-DD)"
    ),
    "size": "empty, a category, >SIZE, <SIZE, >=SIZE, <=SIZE, =SIZE, SIZE or SIZE-SIZE (e.g. 10KB, 1.5MB)",
    "ext": "an extension such as rs or .rs",
    "ext-type": "one of the configured extension categories",
    "dir": "a directory path",
    "path": "a glob pattern over the full path",
    "number": ">N, <N, >=N, <=N, =N, N or N-M",
    "perm": "executable, readable, writable or readonly",
    "git": ", ".join(c.value for c in GitCondition),
}

FAMILIES = (
    "modified", "created", "accessed", "size", "ext", "ext-type",
    "dir", "path", "depth", "perm", "lines", "git",
)


def parse_size(text: str) -> int:
    """
    Parse a size with optional binary unit into bytes.

    Raises:
        ValueError: If text is not a number with a known unit
    """
    m = _SIZE_RE.match(text.strip())
    if not m:
        raise ValueError(f"not a size: {text!r}")
    number, unit = m.groups()
    multiplier = SIZE_UNITS.get(unit.lower())
    if multiplier is None:
        raise ValueError(f"unknown size unit: {unit!r}")
    return int(float(number) * multiplier)


def _parse_date(text: str) -> date:
    return date.fromisoformat(text)


class VirtualTagParser:
    """
    Turns expressions into predicates.

    Size categories, extension categories and day counts come from the
    virtual tag configuration and are fixed into the predicate at parse time.
    """

    def __init__(self, config: Optional[VirtualTagConfig] = None):
        self.config = config or VirtualTagConfig()
        self._size_categories = self._build_size_categories()

    def _build_size_categories(self) -> dict[str, Comparison]:
        bounds = []
        for name, value in self.config.size_categories.items():
            try:
                bounds.append((parse_size(value), name.lower()))
            except ValueError as e:
                raise ValueError(f"Invalid size category {name!r}: {e}") from None
        bounds.sort()

        categories: dict[str, Comparison] = {}
        lower = 0
        for upper, name in bounds:
            categories[name] = Comparison(minimum=lower, maximum=upper, include_max=False)
            lower = upper
        categories.setdefault(HUGE_CATEGORY, Comparison(minimum=lower))
        return categories

    def parse(self, expression: str) -> VirtualPredicate:
        """
        Parse one expression.

        Raises:
            ParseError: Unknown family or malformed value
        """
        if not isinstance(expression, str) or ":" not in expression:
            raise ParseError(
                str(expression), "missing family prefix",
                "family:value with family one of " + ", ".join(FAMILIES),
            )
        family, _, value = expression.strip().partition(":")
        family = family.strip().lower()
        value = value.strip()
        if not value:
            raise ParseError(expression, f"empty value for {family!r}")

        if family in ("modified", "created", "accessed"):
            return self._parse_time(expression, TimeField(family), value)
        if family == "size":
            return self._parse_size(expression, value)
        if family == "ext":
            ext = value.lower()
            if not ext.startswith("."):
                ext = "." + ext
            if ext == "." or "/" in ext:
                raise ParseError(expression, "invalid extension", EXPECTED["ext"])
            return ExtensionPredicate(frozenset([ext]), expression=expression)
        if family == "ext-type":
            return self._parse_ext_type(expression, value)
        if family == "dir":
            return PathPredicate(PathKind.DIRECTORY, value=value.rstrip("/") or "/", expression=expression)
        if family == "path":
            return PathPredicate(PathKind.GLOB, value=value, expression=expression)
        if family == "depth":
            return PathPredicate(
                PathKind.DEPTH, depth=self._parse_number(expression, value), expression=expression,
            )
        if family == "perm":
            try:
                return PermissionPredicate(Permission(value.lower()), expression=expression)
            except ValueError:
                raise ParseError(expression, f"unknown permission {value!r}", EXPECTED["perm"]) from None
        if family == "lines":
            return LinesPredicate(self._parse_number(expression, value), expression=expression)
        if family == "git":
            try:
                condition = GitCondition(value.lower())
            except ValueError:
                raise ParseError(expression, f"unknown git condition {value!r}", EXPECTED["git"]) from None
            return GitPredicate(condition, stale_days=self.config.time.stale, expression=expression)

        raise ParseError(
            expression, f"unknown family {family!r}",
            "one of " + ", ".join(FAMILIES),
        )

    # -------------------------------------------------------------------------
    # Families
    # -------------------------------------------------------------------------

    def _parse_time(self, expression: str, time_field: TimeField, value: str) -> TimePredicate:
        v = value.lower()
        named = {
            "today": TimeWindow.TODAY,
            "yesterday": TimeWindow.YESTERDAY,
            "this-week": TimeWindow.THIS_WEEK,
            "this-month": TimeWindow.THIS_MONTH,
            "this-year": TimeWindow.THIS_YEAR,
        }
        if v in named:
            return TimePredicate(time_field, named[v], expression=expression)
        if v == "recent":
            return TimePredicate(
                time_field, TimeWindow.LAST_DAYS, amount=self.config.time.recent, expression=expression,
            )

        m = _LAST_RE.match(v)
        if m:
            window = TimeWindow.LAST_DAYS if m.group(2) == "days" else TimeWindow.LAST_HOURS
            return TimePredicate(time_field, window, amount=int(m.group(1)), expression=expression)

        try:
            start, end = self._date_bounds(v)
        except ValueError as e:
            raise ParseError(expression, str(e), EXPECTED["time"]) from None
        if start is not None and end is not None and end <= start:
            raise ParseError(expression, "empty date range", EXPECTED["time"])
        return TimePredicate(time_field, TimeWindow.ABSOLUTE, start=start, end=end, expression=expression)

    @staticmethod
    def _date_bounds(v: str) -> tuple[Optional[date], Optional[date]]:
        """Calendar-date window [start, end) for the absolute time forms."""
        one_day = timedelta(days=1)
        if v.startswith("after-"):
            return _parse_date(v[len("after-"):]), None
        if v.startswith("before-"):
            return None, _parse_date(v[len("before-"):])
        if v.startswith("between-"):
            m = _BETWEEN_RE.match(v)
            if not m:
                raise ValueError("between needs two dates")
            # Both days are included
            return _parse_date(m.group(1)), _parse_date(m.group(2)) + one_day

        m = _OPERATOR_RE.match(v)
        if m:
            op, text = m.groups()
            day = _parse_date(text.strip())
            if op == ">":
                return day + one_day, None
            if op == ">=":
                return day, None
            if op == "<":
                return None, day
            if op == "<=":
                return None, day + one_day
            return day, day + one_day

        day = _parse_date(v)
        return day, day + one_day

    def _parse_size(self, expression: str, value: str) -> SizePredicate:
        v = value.lower()
        if v == "empty":
            return SizePredicate(Comparison.equal(0), category="empty", expression=expression)
        if v in self._size_categories:
            return SizePredicate(self._size_categories[v], category=v, expression=expression)
        try:
            comparison = _parse_comparison(value, parse_size)
        except ValueError as e:
            raise ParseError(expression, str(e), EXPECTED["size"]) from None
        return SizePredicate(comparison, expression=expression)

    def _parse_ext_type(self, expression: str, value: str) -> ExtensionPredicate:
        category = value.lower()
        types = {k.lower(): v for k, v in self.config.extension_types.items()}
        if category not in types:
            raise ParseError(
                expression, f"unknown extension category {value!r}",
                "one of " + ", ".join(sorted(types)),
            )
        extensions = frozenset(
            e.lower() if e.startswith(".") else "." + e.lower()
            for e in types[category]
        )
        return ExtensionPredicate(extensions, category=category, expression=expression)

    @staticmethod
    def _parse_number(expression: str, value: str) -> Comparison:
        def whole(text: str) -> int:
            text = text.strip()
            if not text.isdigit():
                raise ValueError(f"not a whole number: {text!r}")
            return int(text)

        try:
            return _parse_comparison(value, whole)
        except ValueError as e:
            raise ParseError(expression, str(e), EXPECTED["number"]) from None


def _parse_comparison(value: str, convert) -> Comparison:
    """
    Operator, bare value and range forms over any numeric converter.

    Raises:
        ValueError: On a malformed value or an inverted range
    """
    m = _OPERATOR_RE.match(value.strip())
    if m:
        op, text = m.groups()
        n = convert(text)
        if op == ">":
            return Comparison(minimum=n, include_min=False)
        if op == ">=":
            return Comparison(minimum=n)
        if op == "<":
            return Comparison(maximum=n, include_max=False)
        if op == "<=":
            return Comparison(maximum=n)
        return Comparison.equal(n)

    if "-" in value:
        parts = value.split("-")
        if len(parts) != 2:
            raise ValueError(f"range must be LOW-HIGH: {value!r}")
        low, high = convert(parts[0]), convert(parts[1])
        if low > high:
            raise ValueError(f"range is inverted: {value!r}")
        return Comparison(minimum=low, maximum=high)

    return Comparison.equal(convert(value))


def parse(expression: str, config: Optional[VirtualTagConfig] = None) -> VirtualPredicate:
    """Parse one virtual tag expression with the given (or default) configuration."""
    return VirtualTagParser(config).parse(expression)
