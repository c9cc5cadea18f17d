"""Tests for virtual tag expression parsing."""

from datetime import date

import pytest

from tagr.config import TimeConfig, VirtualTagConfig
from tagr.errors import ParseError, QueryError
from tagr.vtags import parse, parse_size
from tagr.vtags.parser import VirtualTagParser
from tagr.vtags.types import (
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
)

KB = 1024
MB = 1024 * 1024


class TestSizes:
    """Size values and units."""

    @pytest.mark.parametrize("text,expected", [
        ("0", 0),
        ("512", 512),
        ("10B", 10),
        ("1KB", KB),
        ("1kib", KB),
        ("1.5MB", int(1.5 * MB)),
        ("2G", 2 * 1024 ** 3),
        ("1TB", 1024 ** 4),
    ])
    def test_parse_size(self, text, expected):
        assert parse_size(text) == expected

    @pytest.mark.parametrize("text", ["", "MB", "1XB", "-1KB", "1..5MB"])
    def test_parse_size_invalid(self, text):
        with pytest.raises(ValueError):
            parse_size(text)

    def test_comparison_forms(self):
        assert parse("size:>1MB").comparison == Comparison(minimum=MB, include_min=False)
        assert parse("size:>=1MB").comparison == Comparison(minimum=MB)
        assert parse("size:<10KB").comparison == Comparison(maximum=10 * KB, include_max=False)
        assert parse("size:<=10KB").comparison == Comparison(maximum=10 * KB)
        assert parse("size:=100").comparison == Comparison.equal(100)
        assert parse("size:100").comparison == Comparison.equal(100)
        assert parse("size:1KB-1MB").comparison == Comparison(minimum=KB, maximum=MB)

    def test_empty(self):
        predicate = parse("size:empty")
        assert isinstance(predicate, SizePredicate)
        assert predicate.comparison.matches(0)
        assert not predicate.comparison.matches(1)

    def test_categories_partition_sizes(self):
        tiny, small, medium, large, huge = (
            parse(f"size:{c}").comparison for c in ("tiny", "small", "medium", "large", "huge")
        )
        assert tiny.matches(0) and tiny.matches(KB - 1) and not tiny.matches(KB)
        assert small.matches(KB) and not small.matches(100 * KB)
        assert medium.matches(100 * KB) and not medium.matches(MB)
        assert large.matches(MB) and not large.matches(10 * MB)
        assert huge.matches(10 * MB) and huge.matches(10 ** 12)

    def test_custom_categories(self):
        config = VirtualTagConfig(size_categories={"tiny": "10B", "small": "1KB"})
        parser = VirtualTagParser(config)
        assert parser.parse("size:small").comparison == Comparison(minimum=10, maximum=KB, include_max=False)
        assert parser.parse("size:huge").comparison == Comparison(minimum=KB)

    @pytest.mark.parametrize("expr", ["size:big", "size:>", "size:5-1", "size:1-2-3", "size:>>1"])
    def test_invalid(self, expr):
        with pytest.raises(ParseError) as exc_info:
            parse(expr)
        assert exc_info.value.expression == expr


class TestTime:
    """Time windows."""

    @pytest.mark.parametrize("value,window", [
        ("today", TimeWindow.TODAY),
        ("yesterday", TimeWindow.YESTERDAY),
        ("this-week", TimeWindow.THIS_WEEK),
        ("this-month", TimeWindow.THIS_MONTH),
        ("this-year", TimeWindow.THIS_YEAR),
    ])
    def test_named_windows(self, value, window):
        predicate = parse(f"modified:{value}")
        assert predicate == TimePredicate(TimeField.MODIFIED, window)

    def test_fields(self):
        assert parse("created:today").time_field is TimeField.CREATED
        assert parse("accessed:today").time_field is TimeField.ACCESSED

    def test_last_n(self):
        assert parse("modified:last-7-days") == TimePredicate(TimeField.MODIFIED, TimeWindow.LAST_DAYS, amount=7)
        assert parse("modified:last-3-hours") == TimePredicate(TimeField.MODIFIED, TimeWindow.LAST_HOURS, amount=3)

    def test_recent_uses_config(self):
        parser = VirtualTagParser(VirtualTagConfig(time=TimeConfig(recent=14)))
        assert parser.parse("modified:recent").amount == 14

    def test_absolute_forms(self):
        d = date(2024, 3, 10)
        after, next_day = d, date(2024, 3, 11)

        assert (parse("modified:after-2024-03-10").start, parse("modified:after-2024-03-10").end) == (after, None)
        assert parse("modified:before-2024-03-10").end == d
        assert parse("modified:2024-03-10").start == d
        assert parse("modified:2024-03-10").end == next_day
        assert parse("modified:>2024-03-10").start == next_day
        assert parse("modified:>=2024-03-10").start == d
        assert parse("modified:<2024-03-10").end == d
        assert parse("modified:<=2024-03-10").end == next_day

        between = parse("modified:between-2024-03-01-2024-03-10")
        assert between.window is TimeWindow.ABSOLUTE
        assert (between.start, between.end) == (date(2024, 3, 1), next_day)

    @pytest.mark.parametrize("expr", [
        "modified:sometime",
        "modified:2024-13-01",
        "modified:last-x-days",
        "modified:between-2024-03-10",
        "modified:between-2024-03-10-2024-03-01",
    ])
    def test_invalid(self, expr):
        with pytest.raises(ParseError):
            parse(expr)


class TestOtherFamilies:
    """Extension, path, permission, lines and git."""

    def test_extension(self):
        assert parse("ext:RS") == ExtensionPredicate(frozenset([".rs"]))
        assert parse("ext:.md") == ExtensionPredicate(frozenset([".md"]))

    def test_extension_type(self):
        predicate = parse("ext-type:source")
        assert ".py" in predicate.extensions and ".rs" in predicate.extensions
        assert predicate.category == "source"

    def test_extension_type_custom(self):
        parser = VirtualTagParser(VirtualTagConfig(extension_types={"notes": ["org", ".MD"]}))
        assert parser.parse("ext-type:notes").extensions == frozenset([".org", ".md"])
        with pytest.raises(ParseError):
            parser.parse("ext-type:source")

    def test_paths(self):
        assert parse("dir:src/") == PathPredicate(PathKind.DIRECTORY, value="src")
        assert parse("path:*/test_*.py") == PathPredicate(PathKind.GLOB, value="*/test_*.py")
        assert parse("depth:<4") == PathPredicate(PathKind.DEPTH, depth=Comparison(maximum=4, include_max=False))
        assert parse("depth:2-3").depth == Comparison(minimum=2, maximum=3)

    def test_permission(self):
        assert parse("perm:executable") == PermissionPredicate(Permission.EXECUTABLE)
        assert parse("perm:readonly").permission is Permission.READONLY

    def test_lines(self):
        assert parse("lines:>100") == LinesPredicate(Comparison(minimum=100, include_min=False))
        assert parse("lines:10-20").comparison == Comparison(minimum=10, maximum=20)
        assert parse("lines:42").comparison == Comparison.equal(42)

    @pytest.mark.parametrize("condition", list(GitCondition))
    def test_git(self, condition):
        predicate = parse(f"git:{condition.value}")
        assert isinstance(predicate, GitPredicate)
        assert predicate.condition is condition

    def test_git_stale_days_from_config(self):
        parser = VirtualTagParser(VirtualTagConfig(time=TimeConfig(stale=30)))
        assert parser.parse("git:stale").stale_days == 30

    def test_expression_kept_but_not_compared(self):
        a = parse("size:>1MB")
        b = parse("size: >1MB")
        assert a.expression == "size:>1MB"
        assert a == b

    @pytest.mark.parametrize("expr", [
        "nofamily",
        "color:red",
        "size:",
        "perm:sticky",
        "git:dirty",
        "lines:many",
        "lines:1.5",
        "depth:-1",
        "ext:.",
    ])
    def test_invalid(self, expr):
        with pytest.raises(ParseError) as exc_info:
            parse(expr)
        assert isinstance(exc_info.value, QueryError)
        assert expr in str(exc_info.value)

    def test_unknown_family_lists_expected(self):
        with pytest.raises(ParseError) as exc_info:
            parse("color:red")
        assert "modified" in exc_info.value.expected
