"""
Protocol definitions for tagr's pluggable seams.

Defines interface contracts at two levels:
- TagIndexProtocol: the persistent file→tags / tag→files index
  (SQLite locally, entry-point backends elsewhere)
- MetadataSource: where virtual tags read filesystem and VCS metadata
  (the live filesystem, a cache in front of it, or a fake in tests)
"""

import os
import stat as stat_mod
from dataclasses import dataclass
from typing import Iterable, Iterator, Optional, Protocol, runtime_checkable


@runtime_checkable
class TagIndexProtocol(Protocol):
    """
    Synchronized file→tags and tag→files collections.

    Implemented by:
    - TagIndex (local SQLite store)
    """

    # -- Write operations --

    def upsert(self, path, tags: Iterable[str]) -> None: ...

    def add_tags(self, path, tags: Iterable[str]) -> None: ...

    def remove_tags(self, path, tags: Iterable[str]) -> None: ...

    def remove(self, path) -> bool: ...

    def flush(self) -> None: ...

    # -- Read operations --

    def get_tags(self, path) -> Optional[list[str]]: ...

    def lookup(self, tag: str) -> set[str]: ...

    def intersect(self, tags: Iterable[str]) -> set[str]: ...

    def union(self, tags: Iterable[str]) -> set[str]: ...

    def list_tags(self) -> set[str]: ...

    def list_files(self) -> set[str]: ...

    def tags_with_prefix(self, prefix: str) -> list[str]: ...

    def find_by_tag_regex(self, pattern: str) -> set[str]: ...

    def contains(self, path) -> bool: ...

    def count(self) -> int: ...

    def iter_entries(self) -> Iterator[tuple[str, list[str]]]: ...

    # -- Maintenance --

    def remove_tag_globally(self, tag: str) -> int: ...

    def rename_tag(self, old_tag: str, new_tag: str) -> int: ...

    def check_consistency(self) -> list[str]: ...

    def rebuild_reverse_index(self) -> int: ...

    def close(self) -> None: ...


@dataclass(frozen=True)
class FileStat:
    """The subset of stat() the virtual tags need."""
    size: int
    mode: int
    mtime: float
    atime: float
    birthtime: Optional[float]
    is_file: bool
    is_dir: bool

    @classmethod
    def from_stat_result(cls, st: os.stat_result) -> "FileStat":
        return cls(
            size=st.st_size,
            mode=st.st_mode,
            mtime=st.st_mtime,
            atime=st.st_atime,
            birthtime=getattr(st, "st_birthtime", None),
            is_file=stat_mod.S_ISREG(st.st_mode),
            is_dir=stat_mod.S_ISDIR(st.st_mode),
        )


@dataclass(frozen=True)
class GitStatus:
    """Version-control facts about one file."""
    tracked: bool
    untracked: bool
    ignored: bool
    modified: bool
    staged: bool
    last_commit: Optional[float]  # unix time of the last commit touching the file


@runtime_checkable
class MetadataSource(Protocol):
    """
    Provider of per-file metadata for virtual tag evaluation.

    Every method raises EvaluationError when the metadata cannot be read.
    """

    def stat(self, path: str) -> FileStat: ...

    def line_count(self, path: str) -> int: ...

    def git_status(self, path: str) -> GitStatus: ...
