"""
Git status for virtual tags, read through the git CLI.
"""

import logging
import os
import shutil
import subprocess
import threading
from pathlib import Path
from typing import Optional

from ..errors import EvaluationError
from ..protocol import GitStatus

logger = logging.getLogger(__name__)


class GitInspector:
    """Git repository facts about individual files."""

    def __init__(self, detect_repo: bool = True, git_binary: str = "git", timeout: float = 10.0):
        """
        Args:
            detect_repo: Find the repository from each file's directory.
                If False, git runs in the current working directory.
            git_binary: Name or path of the git executable
            timeout: Seconds allowed per git invocation
        """
        self.detect_repo = detect_repo
        self.git_binary = git_binary
        self.timeout = timeout
        self._available: Optional[bool] = None
        # working directory → inside a work tree?
        self._repo_dirs: dict[str, bool] = {}
        self._lock = threading.Lock()

    def _run_git(self, args: list[str], cwd: Path, path: str) -> subprocess.CompletedProcess:
        """Run a git command; failures to start git become EvaluationError."""
        try:
            return subprocess.run(
                [self.git_binary] + args,
                cwd=cwd,
                capture_output=True,
                text=True,
                timeout=self.timeout,
            )
        except subprocess.TimeoutExpired as e:
            raise EvaluationError(path, f"git timed out after {self.timeout}s") from e
        except OSError as e:
            raise EvaluationError(path, f"cannot run git: {e}") from e

    def _check_available(self, path: str) -> None:
        if self._available is None:
            self._available = shutil.which(self.git_binary) is not None
            if not self._available:
                logger.warning("git executable %r not found; git virtual tags will fail", self.git_binary)
        if not self._available:
            raise EvaluationError(path, "git is not installed")

    def _workdir(self, path: str) -> Path:
        """Directory git should run in, verified to be inside a work tree."""
        if self.detect_repo:
            p = Path(path).absolute()
            cwd = p if p.is_dir() else p.parent
            if not cwd.is_dir():
                raise EvaluationError(path, "file not found")
        else:
            cwd = Path.cwd()

        key = str(cwd)
        with self._lock:
            known = self._repo_dirs.get(key)
        if known is None:
            result = self._run_git(["rev-parse", "--is-inside-work-tree"], cwd, path)
            known = result.returncode == 0 and result.stdout.strip() == "true"
            with self._lock:
                self._repo_dirs[key] = known
        if not known:
            raise EvaluationError(path, "not in a git repository")
        return cwd

    def status(self, path: str) -> GitStatus:
        """
        Tracked/untracked/ignored/modified/staged state and last commit time.

        Raises:
            EvaluationError: git missing, file outside any repository,
                or git reports an error
        """
        self._check_available(path)
        cwd = self._workdir(path)
        target = os.path.abspath(path)

        ls = self._run_git(["ls-files", "--error-unmatch", "--", target], cwd, path)
        if ls.returncode not in (0, 1):
            raise EvaluationError(path, ls.stderr.strip() or "git ls-files failed")
        tracked = ls.returncode == 0

        st = self._run_git(
            ["status", "--porcelain=v1", "--ignored", "-z", "--", target], cwd, path,
        )
        if st.returncode != 0:
            raise EvaluationError(path, st.stderr.strip() or "git status failed")
        code = st.stdout[:2] if st.stdout else "  "

        last_commit = None
        if tracked:
            log = self._run_git(["log", "-1", "--format=%ct", "--", target], cwd, path)
            if log.returncode == 0 and log.stdout.strip():
                last_commit = float(log.stdout.strip())

        return GitStatus(
            tracked=tracked,
            untracked=code == "??",
            ignored=code == "!!",
            modified=code not in ("??", "!!") and code[1] != " ",
            staged=code not in ("??", "!!") and code[0] != " ",
            last_commit=last_commit,
        )
