"""
Error types and error logging for tagr.

The taxonomy mirrors how failures are handled by callers:

- InvalidPath, StoreError: index failures, returned to the immediate caller
- SchemaError and subclasses: alias graph violations and malformed schema files
- QueryError (ParseError, PatternError): bad query input, rejected before any
  evaluation happens
- EvaluationError: per-file metadata failure, isolated by the virtual tag engine
  and turned into a warning

Logs full stack traces for debugging while showing clean messages to users.
"""

import os
import traceback
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional


class TagrError(Exception):
    """Base class for all tagr errors."""


# ---------------------------------------------------------------------------
# Index errors
# ---------------------------------------------------------------------------

class InvalidPath(TagrError):
    """Path is not valid UTF-8, is empty, or is otherwise unusable as a key."""

    def __init__(self, path, reason: str = "invalid path"):
        self.path = path
        self.reason = reason
        super().__init__(f"{reason}: {path!r}")


class PathNotFound(InvalidPath):
    """Path does not exist on the filesystem."""

    def __init__(self, path):
        super().__init__(path, "file not found")


class StoreError(TagrError):
    """Backend I/O or decoding failure. Fatal for the current operation."""


# ---------------------------------------------------------------------------
# Schema errors
# ---------------------------------------------------------------------------

class SchemaError(TagrError):
    """Alias graph violation or unusable schema file."""


class ReservedDelimiter(SchemaError):
    """Alias name contains the hierarchy delimiter."""

    def __init__(self, alias: str, delimiter: str):
        self.alias = alias
        self.delimiter = delimiter
        super().__init__(
            f"Alias {alias!r} contains reserved delimiter {delimiter!r}"
        )


class CircularReference(SchemaError):
    """Adding an alias edge would close a cycle in the alias graph."""

    def __init__(self, alias: str, canonical: str, chain: Optional[list[str]] = None):
        self.alias = alias
        self.canonical = canonical
        self.chain = chain or []
        detail = " → ".join(self.chain) if self.chain else f"{canonical} → … → {alias}"
        super().__init__(
            f"Adding alias {alias!r} → {canonical!r} would create a cycle ({detail})"
        )


class AliasExists(SchemaError):
    """Alias is already mapped to a different canonical tag."""

    def __init__(self, alias: str, existing: str):
        self.alias = alias
        self.existing = existing
        super().__init__(f"Alias {alias!r} already exists for {existing!r}")


class AliasNotFound(SchemaError):
    """Alias is not defined in the schema."""

    def __init__(self, alias: str):
        self.alias = alias
        super().__init__(f"Alias {alias!r} not found in schema")


class SchemaLoadError(SchemaError):
    """Persisted schema file is malformed."""

    def __init__(self, path, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"Cannot load schema {path}: {reason}")


# ---------------------------------------------------------------------------
# Query errors
# ---------------------------------------------------------------------------

class QueryError(TagrError):
    """Search input could not be turned into a query."""


class ParseError(QueryError):
    """Virtual tag expression is not valid."""

    def __init__(self, expression: str, reason: str, expected: str = ""):
        self.expression = expression
        self.reason = reason
        self.expected = expected
        msg = f"Invalid virtual tag {expression!r}: {reason}"
        if expected:
            msg += f" (expected {expected})"
        super().__init__(msg)


class PatternError(QueryError):
    """File or tag pattern failed to compile."""

    def __init__(self, pattern: str, reason: str):
        self.pattern = pattern
        self.reason = reason
        super().__init__(f"Invalid pattern {pattern!r}: {reason}")


# ---------------------------------------------------------------------------
# Evaluation errors
# ---------------------------------------------------------------------------

class EvaluationError(TagrError):
    """Metadata for one file could not be read. Never aborts a batch."""

    def __init__(self, path: str, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"{path}: {reason}")


_FATAL = (StoreError, SchemaError, QueryError)


def is_fatal(exc: BaseException) -> bool:
    """True for errors that should end a command with a non-zero exit code.

    Per-file EvaluationErrors are reported as warnings instead.
    """
    return isinstance(exc, _FATAL)


# ---------------------------------------------------------------------------
# Error log
# ---------------------------------------------------------------------------

def _error_log_path() -> Path:
    """Resolve error log path, respecting TAGR_STORE_PATH."""
    store = os.environ.get("TAGR_STORE_PATH")
    if store:
        return Path(store) / "tagr-errors.log"
    return Path.home() / ".tagr" / "tagr-errors.log"


def log_exception(exc: Exception, context: str = "") -> Path:
    """
    Log exception with full traceback to file.

    Args:
        exc: The exception that occurred
        context: Optional context string (e.g., operation name)

    Returns:
        Path to the error log file
    """
    log_path = _error_log_path()
    timestamp = datetime.now(timezone.utc).isoformat()
    try:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(log_path, os.O_WRONLY | os.O_CREAT | os.O_APPEND, 0o600)
        with os.fdopen(fd, "a") as f:
            f.write(f"\n{'='*60}\n")
            f.write(f"[{timestamp}]")
            if context:
                f.write(f" {context}")
            f.write("\n")
            f.write("".join(traceback.format_exception(type(exc), exc, exc.__traceback__)))
    except OSError:
        pass  # Can't write error log; don't crash over it
    return log_path
