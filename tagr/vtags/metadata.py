"""
Live filesystem metadata for virtual tags.
"""

import os
from typing import Optional

from ..errors import EvaluationError
from ..protocol import FileStat, GitStatus
from .git import GitInspector

_CHUNK = 1 << 16


def _reason(e: OSError) -> str:
    return e.strerror or str(e)


class FilesystemMetadataSource:
    """Reads stat(), file contents and git status directly."""

    def __init__(self, git: Optional[GitInspector] = None, git_enabled: bool = True):
        """
        Args:
            git: Inspector for git predicates (a default one if None)
            git_enabled: If False, every git predicate fails per file
        """
        self.git_enabled = git_enabled
        self._git = git if git is not None else GitInspector()

    def stat(self, path: str) -> FileStat:
        try:
            return FileStat.from_stat_result(os.stat(path))
        except OSError as e:
            raise EvaluationError(path, _reason(e)) from e

    def line_count(self, path: str) -> int:
        """Newline count, plus one for a final line without a newline."""
        count = 0
        last = b""
        try:
            with open(path, "rb") as f:
                while True:
                    chunk = f.read(_CHUNK)
                    if not chunk:
                        break
                    count += chunk.count(b"\n")
                    last = chunk[-1:]
        except OSError as e:
            raise EvaluationError(path, _reason(e)) from e
        if last and last != b"\n":
            count += 1
        return count

    def git_status(self, path: str) -> GitStatus:
        if not self.git_enabled:
            raise EvaluationError(path, "git virtual tags are disabled")
        return self._git.status(path)
