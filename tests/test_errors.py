"""Tests for the error taxonomy and the error log."""

import os
import stat

import pytest

from tagr.errors import (
    AliasExists,
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
    log_exception,
)


class TestTaxonomy:

    @pytest.mark.parametrize("exc,parent", [
        (PathNotFound("/x"), InvalidPath),
        (ReservedDelimiter("a:b", ":"), SchemaError),
        (CircularReference("a", "b", ["a", "b", "a"]), SchemaError),
        (AliasExists("a", "b"), SchemaError),
        (SchemaLoadError("/s.toml", "bad"), SchemaError),
        (ParseError("size:x", "bad"), QueryError),
        (PatternError("[", "bad"), QueryError),
        (EvaluationError("/x", "gone"), TagrError),
        (StoreError("disk"), TagrError),
    ])
    def test_hierarchy(self, exc, parent):
        assert isinstance(exc, parent)
        assert isinstance(exc, TagrError)

    @pytest.mark.parametrize("exc,fatal", [
        (StoreError("disk"), True),
        (CircularReference("a", "b"), True),
        (ParseError("size:x", "bad"), True),
        (PatternError("[", "bad"), True),
        (EvaluationError("/x", "gone"), False),
        (InvalidPath(b"\xff"), False),
        (OSError("other"), False),
    ])
    def test_is_fatal(self, exc, fatal):
        assert is_fatal(exc) is fatal

    def test_messages(self):
        assert "a → b → a" in str(CircularReference("a", "b", ["a", "b", "a"]))
        assert "expected >N" in str(ParseError("lines:x", "not a number", ">N"))
        assert str(EvaluationError("/f", "gone")) == "/f: gone"
        assert PathNotFound("/f").reason == "file not found"


class TestErrorLog:

    def test_log_exception(self, tmp_path, monkeypatch):
        monkeypatch.setenv("TAGR_STORE_PATH", str(tmp_path))
        try:
            raise StoreError("database is locked")
        except StoreError as e:
            path = log_exception(e, "tag")

        assert path == tmp_path / "tagr-errors.log"
        content = path.read_text()
        assert "tag" in content
        assert "StoreError: database is locked" in content
        assert stat.S_IMODE(os.stat(path).st_mode) == 0o600

    def test_appends(self, tmp_path, monkeypatch):
        monkeypatch.setenv("TAGR_STORE_PATH", str(tmp_path))
        log_exception(ValueError("one"))
        log_exception(ValueError("two"))
        content = (tmp_path / "tagr-errors.log").read_text()
        assert "one" in content and "two" in content
