"""
Shared pytest fixtures for tagr tests.

Provides a fake metadata source so virtual tag tests don't depend on the
real filesystem clock, platform stat fields or a git installation.
"""

import threading
import time
from pathlib import Path
from typing import Optional

import pytest

from tagr.errors import EvaluationError
from tagr.protocol import FileStat, GitStatus


class FakeMetadataSource:
    """
    In-memory MetadataSource.

    Paths that were never added raise EvaluationError, like a vanished file.
    Every call is recorded so tests can assert which files were looked at.
    """

    def __init__(self):
        self.stats: dict[str, FileStat] = {}
        self.lines: dict[str, int] = {}
        self.git: dict[str, GitStatus] = {}
        self.calls: list[tuple[str, str]] = []
        self._lock = threading.Lock()

    def add(
        self,
        path: str,
        *,
        size: int = 0,
        mode: int = 0o100644,
        mtime: Optional[float] = None,
        atime: Optional[float] = None,
        birthtime: Optional[float] = None,
        is_file: bool = True,
        lines: Optional[int] = None,
        git: Optional[GitStatus] = None,
    ) -> None:
        now = time.time()
        self.stats[path] = FileStat(
            size=size,
            mode=mode,
            mtime=now if mtime is None else mtime,
            atime=now if atime is None else atime,
            birthtime=birthtime,
            is_file=is_file,
            is_dir=not is_file,
        )
        if lines is not None:
            self.lines[path] = lines
        if git is not None:
            self.git[path] = git

    def _record(self, kind: str, path: str) -> None:
        with self._lock:
            self.calls.append((kind, path))

    def paths_seen(self) -> set[str]:
        with self._lock:
            return {p for _, p in self.calls}

    def stat(self, path: str) -> FileStat:
        self._record("stat", path)
        if path not in self.stats:
            raise EvaluationError(path, "No such file or directory")
        return self.stats[path]

    def line_count(self, path: str) -> int:
        self._record("lines", path)
        if path not in self.lines:
            raise EvaluationError(path, "No such file or directory")
        return self.lines[path]

    def git_status(self, path: str) -> GitStatus:
        self._record("git", path)
        if path not in self.git:
            raise EvaluationError(path, "not in a git repository")
        return self.git[path]


def git_status(**kwargs) -> GitStatus:
    """GitStatus with everything False/None unless given."""
    fields = dict(tracked=False, untracked=False, ignored=False,
                  modified=False, staged=False, last_commit=None)
    fields.update(kwargs)
    return GitStatus(**fields)


@pytest.fixture
def fake_source():
    """Create a fresh FakeMetadataSource instance."""
    return FakeMetadataSource()


@pytest.fixture
def index(tmp_path):
    """A TagIndex in a temporary directory, closed after the test."""
    from tagr.tag_index import TagIndex
    idx = TagIndex(tmp_path / "tags.db")
    yield idx
    idx.close()


@pytest.fixture
def make_file(tmp_path):
    """Factory writing files under tmp_path/files and returning their paths as str."""
    root = tmp_path / "files"

    def _make(name: str, content: bytes = b"", mode: Optional[int] = None) -> str:
        path = root / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(content)
        if mode is not None:
            path.chmod(mode)
        return str(path)

    return _make


@pytest.fixture
def store_path(tmp_path, monkeypatch) -> Path:
    """Store directory, also exported as TAGR_STORE_PATH so error logs stay inside tmp."""
    path = tmp_path / "store"
    monkeypatch.setenv("TAGR_STORE_PATH", str(path))
    return path


@pytest.fixture
def catalog(store_path):
    """A Tagr over a fresh store, closed after the test."""
    from tagr.api import Tagr
    t = Tagr(store_path)
    yield t
    t.close()
