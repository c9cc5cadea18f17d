"""
Tag index using SQLite.

Maintains two synchronized collections over one embedded database:

- files: file path → ordered, deduplicated list of canonical tags
- tags:  canonical tag → ordered, deduplicated list of file paths (reverse index)

Each collection is a table keyed by its primary key, so keys iterate in
order and tag prefixes can be range-scanned. Values are msgpack-encoded
string lists.

Every mutation runs in a single IMMEDIATE transaction that writes the forward
entry first and then the reverse entries, so a reader (in this process or
another) sees either the state before the mutation or after it, never a mix.
A crash mid-transaction is rolled back by SQLite; ``rebuild_reverse_index()``
replays the reverse index from the forward collection if it ever drifts.

The reverse index only stores literal tags. Hierarchy ancestors are never
written; they are derived at query time.
"""

import logging
import re
import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Iterable, Iterator, Optional

import msgpack

from .errors import PatternError, StoreError
from .types import dedupe, normalize_tag, path_key

logger = logging.getLogger(__name__)

# Bumped when the on-disk layout changes
STORE_FORMAT_VERSION = 1


def _pack(items: list[str]) -> bytes:
    return msgpack.packb(items, use_bin_type=True)


def _unpack(data: bytes, what: str) -> list[str]:
    try:
        items = msgpack.unpackb(data, raw=False)
    except (msgpack.exceptions.UnpackException, msgpack.exceptions.ExtraData, ValueError) as e:
        raise StoreError(f"Corrupt {what}: {e}") from e
    if not isinstance(items, list) or not all(isinstance(i, str) for i in items):
        raise StoreError(f"Corrupt {what}: expected a list of strings")
    return items


def _prefix_upper_bound(prefix: str) -> str:
    """Smallest string greater than every string starting with prefix."""
    return prefix[:-1] + chr(ord(prefix[-1]) + 1)


class TagIndex:
    """
    SQLite-backed reverse-indexed tag store.

    Lookups by tag are a single primary-key read. Set operations over
    several tags are built from those reads, never from a scan of all
    files.
    """

    def __init__(self, db_path: Path, *, keep_empty_entries: bool = False):
        """
        Args:
            db_path: Path to SQLite database file
            keep_empty_entries: Keep a file's entry (with no tags) when its
                last tag is removed, instead of deleting it
        """
        self._db_path = Path(db_path)
        self._keep_empty = keep_empty_entries
        self._conn: Optional[sqlite3.Connection] = None
        self._lock = threading.RLock()
        self._init_db()

    def _init_db(self) -> None:
        """Initialize the SQLite database."""
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        try:
            # isolation_level=None gives us manual transaction control
            # so each mutation is exactly one BEGIN IMMEDIATE ... COMMIT
            self._conn = sqlite3.connect(
                str(self._db_path), check_same_thread=False,
                isolation_level=None,
            )
            self._conn.execute("PRAGMA journal_mode=WAL")
            self._conn.execute("PRAGMA busy_timeout=5000")

            self._conn.execute("""
                CREATE TABLE IF NOT EXISTS files (
                    path TEXT PRIMARY KEY,
                    tags BLOB NOT NULL
                ) WITHOUT ROWID
            """)
            self._conn.execute("""
                CREATE TABLE IF NOT EXISTS tags (
                    tag TEXT PRIMARY KEY,
                    files BLOB NOT NULL
                ) WITHOUT ROWID
            """)

            version = self._conn.execute("PRAGMA user_version").fetchone()[0]
            if version > STORE_FORMAT_VERSION:
                raise StoreError(
                    f"Tag store format {version} is newer than supported "
                    f"({STORE_FORMAT_VERSION}): {self._db_path}"
                )
            if version < STORE_FORMAT_VERSION:
                self._conn.execute(f"PRAGMA user_version={STORE_FORMAT_VERSION}")
        except sqlite3.Error as e:
            raise StoreError(f"Cannot open tag store {self._db_path}: {e}") from e

    @property
    def path(self) -> Path:
        return self._db_path

    # -------------------------------------------------------------------------
    # Transactions
    # -------------------------------------------------------------------------

    def _require_conn(self) -> sqlite3.Connection:
        if self._conn is None:
            raise StoreError("Tag store is closed")
        return self._conn

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        """One write transaction. Rolled back on any error."""
        with self._lock:
            conn = self._require_conn()
            try:
                conn.execute("BEGIN IMMEDIATE")
            except sqlite3.Error as e:
                raise StoreError(f"Cannot start transaction: {e}") from e
            try:
                yield conn
            except BaseException as e:
                try:
                    conn.execute("ROLLBACK")
                except sqlite3.Error:
                    logger.warning("Rollback failed after %s", type(e).__name__)
                if isinstance(e, sqlite3.Error):
                    raise StoreError(f"Tag store write failed: {e}") from e
                raise
            try:
                conn.execute("COMMIT")
            except sqlite3.Error as e:
                raise StoreError(f"Tag store commit failed: {e}") from e

    @contextmanager
    def _snapshot(self) -> Iterator[sqlite3.Connection]:
        """Read transaction: several reads see one consistent state."""
        with self._lock:
            conn = self._require_conn()
            try:
                conn.execute("BEGIN")
                try:
                    yield conn
                finally:
                    conn.execute("COMMIT")
            except sqlite3.Error as e:
                raise StoreError(f"Tag store read failed: {e}") from e

    # -------------------------------------------------------------------------
    # Primitive reads and writes (caller holds a transaction)
    # -------------------------------------------------------------------------

    @staticmethod
    def _read_tags(conn: sqlite3.Connection, key: str) -> Optional[list[str]]:
        row = conn.execute("SELECT tags FROM files WHERE path = ?", (key,)).fetchone()
        if row is None:
            return None
        return _unpack(row[0], f"tag list for {key!r}")

    @staticmethod
    def _read_files(conn: sqlite3.Connection, tag: str) -> list[str]:
        row = conn.execute("SELECT files FROM tags WHERE tag = ?", (tag,)).fetchone()
        if row is None:
            return []
        return _unpack(row[0], f"file list for tag {tag!r}")

    def _link(self, conn: sqlite3.Connection, tag: str, key: str) -> None:
        files = self._read_files(conn, tag)
        if key in files:
            return
        files.append(key)
        conn.execute(
            "INSERT OR REPLACE INTO tags (tag, files) VALUES (?, ?)",
            (tag, _pack(files)),
        )

    def _unlink(self, conn: sqlite3.Connection, tag: str, key: str) -> None:
        files = self._read_files(conn, tag)
        if key not in files:
            return
        files = [f for f in files if f != key]
        if files:
            conn.execute(
                "INSERT OR REPLACE INTO tags (tag, files) VALUES (?, ?)",
                (tag, _pack(files)),
            )
        else:
            # Never leave an orphan (empty) reverse entry behind
            conn.execute("DELETE FROM tags WHERE tag = ?", (tag,))

    def _apply(
        self,
        conn: sqlite3.Connection,
        key: str,
        old: Optional[list[str]],
        new: Optional[list[str]],
    ) -> None:
        """
        Move one file from its old tag list to a new one.

        ``None`` means "no forward entry". Only the symmetric difference of the
        two lists touches the reverse index. Forward entry is written first.
        """
        old_set = set(old or ())
        new_set = set(new or ())

        if new is None:
            conn.execute("DELETE FROM files WHERE path = ?", (key,))
        else:
            conn.execute(
                "INSERT OR REPLACE INTO files (path, tags) VALUES (?, ?)",
                (key, _pack(new)),
            )

        for tag in old or ():
            if tag not in new_set:
                self._unlink(conn, tag, key)
        for tag in new or ():
            if tag not in old_set:
                self._link(conn, tag, key)

    def _settle(self, tags: list[str]) -> Optional[list[str]]:
        """Decide what an empty tag list means for the forward entry."""
        if tags or self._keep_empty:
            return tags
        return None

    @staticmethod
    def _clean(tags: Iterable[str]) -> list[str]:
        if isinstance(tags, str):
            tags = [tags]
        return dedupe(normalize_tag(t) for t in tags)

    # -------------------------------------------------------------------------
    # Write Operations
    # -------------------------------------------------------------------------

    def upsert(self, path, tags: Iterable[str]) -> None:
        """
        Replace the full tag set of a file.

        Args:
            path: File path (str, bytes or PathLike)
            tags: New tags; order is kept, duplicates dropped

        Raises:
            InvalidPath: If the path is not valid UTF-8
            StoreError: If the write fails
        """
        key = path_key(path)
        new = self._settle(self._clean(tags))
        with self._transaction() as conn:
            old = self._read_tags(conn, key)
            if old == new:
                return
            self._apply(conn, key, old, new)
        logger.debug("upsert %s: %s", key, new)

    def add_tags(self, path, tags: Iterable[str]) -> None:
        """
        Add tags to a file, keeping its existing tags.

        Adding tags the file already has is a no-op.
        """
        key = path_key(path)
        additions = self._clean(tags)
        with self._transaction() as conn:
            old = self._read_tags(conn, key)
            merged = dedupe([*(old or ()), *additions])
            if old is not None and merged == old:
                return
            new = self._settle(merged)
            if old is None and new is None:
                return
            self._apply(conn, key, old, new)
        logger.debug("add_tags %s: %s", key, additions)

    def remove_tags(self, path, tags: Iterable[str]) -> None:
        """
        Remove specific tags from a file.

        When the last tag goes, the file entry is deleted unless the index
        was opened with keep_empty_entries. Unknown paths are ignored.
        """
        key = path_key(path)
        removals = set(self._clean(tags))
        with self._transaction() as conn:
            old = self._read_tags(conn, key)
            if old is None:
                return
            remaining = [t for t in old if t not in removals]
            new = self._settle(remaining)
            if new == old:
                return
            self._apply(conn, key, old, new)
        logger.debug("remove_tags %s: %s", key, sorted(removals))

    def remove(self, path) -> bool:
        """
        Delete a file entry and prune it from every tag it held.

        Returns:
            True if the file was tracked
        """
        key = path_key(path)
        with self._transaction() as conn:
            old = self._read_tags(conn, key)
            if old is None:
                return False
            self._apply(conn, key, old, None)
        logger.debug("remove %s", key)
        return True

    def remove_tag_globally(self, tag: str) -> int:
        """
        Remove a tag from every file that has it.

        Returns:
            Number of files that lost the tag
        """
        tag = normalize_tag(tag)
        with self._transaction() as conn:
            files = self._read_files(conn, tag)
            for key in files:
                old = self._read_tags(conn, key) or []
                self._apply(conn, key, old, self._settle([t for t in old if t != tag]))
        if files:
            logger.info("Removed tag %r from %d files", tag, len(files))
        return len(files)

    def rename_tag(self, old_tag: str, new_tag: str) -> int:
        """
        Rename a tag on every file that has it, merging into new_tag if
        some files already carry it.

        Returns:
            Number of files updated
        """
        old_tag = normalize_tag(old_tag)
        new_tag = normalize_tag(new_tag)
        if old_tag == new_tag:
            return 0
        with self._transaction() as conn:
            files = self._read_files(conn, old_tag)
            for key in files:
                old = self._read_tags(conn, key) or []
                renamed = dedupe(new_tag if t == old_tag else t for t in old)
                self._apply(conn, key, old, renamed)
        if files:
            logger.info("Renamed tag %r → %r on %d files", old_tag, new_tag, len(files))
        return len(files)

    def clear(self) -> None:
        """Delete every entry in both collections. Irreversible."""
        with self._transaction() as conn:
            conn.execute("DELETE FROM files")
            conn.execute("DELETE FROM tags")
        logger.info("Cleared tag store %s", self._db_path)

    # -------------------------------------------------------------------------
    # Read Operations
    # -------------------------------------------------------------------------

    def get_tags(self, path) -> Optional[list[str]]:
        """
        Tags of a file.

        Returns:
            The tag list, or None if the file is not tracked
        """
        key = path_key(path)
        with self._snapshot() as conn:
            return self._read_tags(conn, key)

    def contains(self, path) -> bool:
        """Check if a file is tracked."""
        key = path_key(path)
        with self._snapshot() as conn:
            row = conn.execute("SELECT 1 FROM files WHERE path = ?", (key,)).fetchone()
        return row is not None

    def lookup(self, tag: str) -> set[str]:
        """Files holding exactly this tag. Single reverse-index read."""
        with self._snapshot() as conn:
            return set(self._read_files(conn, tag))

    def files_for_tag(self, tag: str) -> list[str]:
        """Like lookup(), in the order files were tagged."""
        with self._snapshot() as conn:
            return self._read_files(conn, tag)

    def intersect(self, tags: Iterable[str]) -> set[str]:
        """
        Files holding every one of the tags.

        An empty tag list matches nothing.
        """
        tags = dedupe(tags)
        if not tags:
            return set()
        with self._snapshot() as conn:
            result: Optional[set[str]] = None
            for tag in tags:
                files = set(self._read_files(conn, tag))
                result = files if result is None else result & files
                if not result:
                    return set()
        return result or set()

    def union(self, tags: Iterable[str]) -> set[str]:
        """Files holding at least one of the tags."""
        result: set[str] = set()
        with self._snapshot() as conn:
            for tag in dedupe(tags):
                result.update(self._read_files(conn, tag))
        return result

    def list_tags(self) -> set[str]:
        """All distinct tags. Reads only the reverse-index keys."""
        with self._snapshot() as conn:
            return {row[0] for row in conn.execute("SELECT tag FROM tags")}

    def list_files(self) -> set[str]:
        """All tracked files. Reads only the forward-index keys."""
        with self._snapshot() as conn:
            return {row[0] for row in conn.execute("SELECT path FROM files")}

    def tags_with_prefix(self, prefix: str) -> list[str]:
        """
        Stored tags starting with prefix, in key order.

        Uses a primary-key range scan rather than a scan of every tag.
        """
        if not prefix:
            return sorted(self.list_tags())
        with self._snapshot() as conn:
            cursor = conn.execute(
                "SELECT tag FROM tags WHERE tag >= ? AND tag < ? ORDER BY tag",
                (prefix, _prefix_upper_bound(prefix)),
            )
            return [row[0] for row in cursor]

    def find_by_tag_regex(self, pattern: str) -> set[str]:
        """
        Files holding any tag whose name matches a regex.

        Raises:
            PatternError: If the regex does not compile
        """
        try:
            regex = re.compile(pattern)
        except re.error as e:
            raise PatternError(pattern, str(e)) from e
        matching = [t for t in self.list_tags() if regex.search(t)]
        if not matching:
            return set()
        return self.union(matching)

    def iter_entries(self) -> Iterator[tuple[str, list[str]]]:
        """Yield (path, tags) for every tracked file, in path order."""
        with self._snapshot() as conn:
            rows = conn.execute("SELECT path, tags FROM files ORDER BY path").fetchall()
        for key, blob in rows:
            yield key, _unpack(blob, f"tag list for {key!r}")

    def count(self) -> int:
        """Number of tracked files."""
        with self._snapshot() as conn:
            return conn.execute("SELECT COUNT(*) FROM files").fetchone()[0]

    def tag_count(self) -> int:
        """Number of distinct tags."""
        with self._snapshot() as conn:
            return conn.execute("SELECT COUNT(*) FROM tags").fetchone()[0]

    # -------------------------------------------------------------------------
    # Consistency
    # -------------------------------------------------------------------------

    def check_consistency(self) -> list[str]:
        """
        Compare the two collections.

        Returns:
            Human-readable descriptions of every mismatch (empty when healthy)
        """
        problems: list[str] = []
        with self._snapshot() as conn:
            forward: dict[str, list[str]] = {}
            for key, blob in conn.execute("SELECT path, tags FROM files"):
                forward[key] = _unpack(blob, f"tag list for {key!r}")
            reverse: dict[str, list[str]] = {}
            for tag, blob in conn.execute("SELECT tag, files FROM tags"):
                reverse[tag] = _unpack(blob, f"file list for tag {tag!r}")

        for key, tags in forward.items():
            for tag in tags:
                if key not in reverse.get(tag, ()):
                    problems.append(f"{key}: tag {tag!r} missing from reverse index")
        for tag, files in reverse.items():
            if not files:
                problems.append(f"tag {tag!r}: empty reverse entry")
            for key in files:
                if tag not in forward.get(key, ()):
                    problems.append(f"tag {tag!r}: references {key} which lacks it")
        return problems

    def rebuild_reverse_index(self) -> int:
        """
        Recompute the reverse index from the forward collection.

        Idempotent; safe to run after a crash or on a healthy store.

        Returns:
            Number of distinct tags written
        """
        with self._transaction() as conn:
            reverse: dict[str, list[str]] = {}
            for key, blob in conn.execute("SELECT path, tags FROM files ORDER BY path").fetchall():
                for tag in _unpack(blob, f"tag list for {key!r}"):
                    reverse.setdefault(tag, []).append(key)
            conn.execute("DELETE FROM tags")
            conn.executemany(
                "INSERT INTO tags (tag, files) VALUES (?, ?)",
                [(tag, _pack(dedupe(files))) for tag, files in reverse.items()],
            )
        logger.info("Rebuilt reverse index: %d tags", len(reverse))
        return len(reverse)

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def flush(self) -> None:
        """Force a durability checkpoint of everything written so far."""
        with self._lock:
            if self._conn is None:
                return
            try:
                if self._conn.in_transaction:
                    self._conn.execute("COMMIT")
                self._conn.execute("PRAGMA wal_checkpoint(FULL)")
            except sqlite3.Error as e:
                raise StoreError(f"Flush failed: {e}") from e

    def close(self) -> None:
        """Flush and close the database connection."""
        with self._lock:
            if self._conn is None:
                return
            try:
                self.flush()
            finally:
                self._conn.close()
                self._conn = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False

    def __del__(self):
        try:
            self.close()
        except Exception:
            # Interpreter shutdown; nothing left to report to
            pass
