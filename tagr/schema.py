"""
Tag schema: aliases and implicit hierarchy.

Aliases map an alternative name to a canonical tag (``js`` → ``javascript``).
Alias names are matched case-insensitively and may not contain the hierarchy
delimiter; canonical tags may (``k8s`` → ``devops:kubernetes``).

Hierarchy is never stored. ``a:b:c`` has ancestors ``a`` and ``a:b`` by
syntax alone; which descendants of a tag exist is a question for the index.

The schema persists as a TOML document::

    [aliases]
    js = "javascript"
    k8s = "devops:kubernetes"

and is rewritten wholesale on every change.
"""

import logging
import os
import tempfile
import threading
import tomllib
from collections import deque
from pathlib import Path
from typing import Any, Mapping, Optional

import tomli_w

from .errors import (
    AliasExists,
    AliasNotFound,
    CircularReference,
    ReservedDelimiter,
    SchemaError,
    SchemaLoadError,
)
from .protocol import TagIndexProtocol
from .types import HIERARCHY_DELIMITER, normalize_tag

logger = logging.getLogger(__name__)


def _key(name: str) -> str:
    return name.casefold()


def find_cycle(
    edges: Mapping[str, str],
    alias: str,
    canonical: str,
) -> Optional[list[str]]:
    """
    Check whether adding ``alias → canonical`` would close a cycle.

    Pure reachability over the existing edges (keys already casefolded):
    breadth-first from canonical, looking for alias. Nothing is mutated.

    Returns:
        The offending chain ``[alias, canonical, ..., alias]``, or None
    """
    start, target = _key(canonical), _key(alias)
    if start == target:
        return None

    parents: dict[str, Optional[str]] = {start: None}
    queue = deque([start])
    while queue:
        node = queue.popleft()
        nxt = edges.get(node)
        if nxt is None:
            continue
        nxt = _key(nxt)
        if nxt == target:
            chain = [nxt, node]
            while parents[node] is not None:
                node = parents[node]
                chain.append(node)
            chain.reverse()
            return [target, *chain]
        if nxt not in parents:
            parents[nxt] = node
            queue.append(nxt)
    return None


class TagSchema:
    """
    Alias graph plus hierarchy rules.

    Loaded once at startup and passed to whoever needs it. Safe to read from
    several threads while evaluation runs; mutation is serialized.
    """

    def __init__(self, path: Optional[Path] = None, delimiter: str = HIERARCHY_DELIMITER):
        """
        Args:
            path: Schema file used by save(); None keeps the schema in memory
            delimiter: Hierarchy delimiter, reserved in alias names
        """
        self._path = Path(path) if path is not None else None
        self._delimiter = delimiter
        # casefolded alias → (alias as written, canonical tag)
        self._aliases: dict[str, tuple[str, str]] = {}
        self._lock = threading.RLock()

    @property
    def path(self) -> Optional[Path]:
        return self._path

    @property
    def delimiter(self) -> str:
        return self._delimiter

    def __len__(self) -> int:
        return len(self._aliases)

    def __contains__(self, alias: str) -> bool:
        return _key(alias.strip()) in self._aliases

    # -------------------------------------------------------------------------
    # Construction and persistence
    # -------------------------------------------------------------------------

    @classmethod
    def from_dict(
        cls,
        aliases: Mapping[str, str],
        path: Optional[Path] = None,
        delimiter: str = HIERARCHY_DELIMITER,
    ) -> "TagSchema":
        """
        Build a schema from an alias → canonical mapping.

        Every entry goes through add_alias(), so a mapping with a reserved
        delimiter or a cycle raises the same SchemaError a single call would.
        """
        schema = cls(path=path, delimiter=delimiter)
        for alias, canonical in aliases.items():
            schema.add_alias(alias, canonical)
        return schema

    def to_dict(self) -> dict[str, str]:
        """Alias (as written) → canonical, sorted by alias."""
        with self._lock:
            entries = sorted(self._aliases.values(), key=lambda e: _key(e[0]))
        return {alias: canonical for alias, canonical in entries}

    @classmethod
    def load(cls, path: Path, delimiter: str = HIERARCHY_DELIMITER) -> "TagSchema":
        """
        Load a schema file. A missing file yields an empty schema bound to path.

        Raises:
            SchemaLoadError: If the file is unreadable, not TOML, or holds an
                entry that violates the alias rules
        """
        path = Path(path)
        if not path.exists():
            logger.debug("No schema at %s, starting empty", path)
            return cls(path=path, delimiter=delimiter)

        try:
            with open(path, "rb") as f:
                data = tomllib.load(f)
        except (OSError, tomllib.TOMLDecodeError) as e:
            logger.error("Cannot read schema %s: %s", path, e)
            raise SchemaLoadError(path, str(e)) from e

        aliases = _validate_document(path, data)
        try:
            schema = cls.from_dict(aliases, path=path, delimiter=delimiter)
        except (SchemaError, ValueError) as e:
            logger.error("Invalid schema %s: %s", path, e)
            raise SchemaLoadError(path, str(e)) from e

        logger.debug("Loaded %d aliases from %s", len(schema), path)
        return schema

    def save(self, path: Optional[Path] = None) -> Path:
        """
        Write the schema atomically (temp file + rename).

        Returns:
            The path written
        """
        target = Path(path) if path is not None else self._path
        if target is None:
            raise SchemaError("Schema has no file to save to")
        target.parent.mkdir(parents=True, exist_ok=True)

        data = {"aliases": self.to_dict()}
        fd, tmp = tempfile.mkstemp(dir=target.parent, prefix=".schema-", suffix=".toml")
        try:
            with os.fdopen(fd, "wb") as f:
                tomli_w.dump(data, f)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp, target)
        except BaseException:
            try:
                os.unlink(tmp)
            except OSError:
                pass
            raise
        logger.debug("Saved %d aliases to %s", len(data["aliases"]), target)
        return target

    # -------------------------------------------------------------------------
    # Alias management
    # -------------------------------------------------------------------------

    def add_alias(self, alias: str, canonical: str) -> bool:
        """
        Map alias to canonical.

        Returns:
            True if the schema changed; False for a self-reference or an
            identical existing mapping

        Raises:
            ReservedDelimiter: alias contains the hierarchy delimiter
            AliasExists: alias already points somewhere else
            CircularReference: the edge would close a cycle
            SchemaError: alias or canonical is not a valid tag name
        """
        alias = _checked(alias)
        canonical = _checked(canonical)
        if self._delimiter in alias:
            raise ReservedDelimiter(alias, self._delimiter)
        if _key(alias) == _key(canonical):
            return False

        with self._lock:
            existing = self._aliases.get(_key(alias))
            if existing is not None:
                if existing[1] == canonical:
                    return False
                raise AliasExists(alias, existing[1])

            edges = {k: target for k, (_, target) in self._aliases.items()}
            chain = find_cycle(edges, alias, canonical)
            if chain is not None:
                raise CircularReference(alias, canonical, chain)

            self._aliases[_key(alias)] = (alias, canonical)
        logger.info("Added alias %s → %s", alias, canonical)
        return True

    def remove_alias(self, alias: str) -> str:
        """
        Remove an alias.

        Returns:
            The canonical tag it pointed to

        Raises:
            AliasNotFound: alias is not defined
        """
        alias = alias.strip()
        with self._lock:
            entry = self._aliases.pop(_key(alias), None)
        if entry is None:
            raise AliasNotFound(alias)
        logger.info("Removed alias %s → %s", entry[0], entry[1])
        return entry[1]

    def list_aliases(self) -> list[tuple[str, str]]:
        """(alias, canonical) pairs sorted by alias."""
        return list(self.to_dict().items())

    def get_alias(self, alias: str) -> Optional[str]:
        """Direct target of an alias, without following chains."""
        entry = self._aliases.get(_key(alias.strip()))
        return entry[1] if entry else None

    # -------------------------------------------------------------------------
    # Resolution
    # -------------------------------------------------------------------------

    def _resolve(self, name: str) -> str:
        """Follow alias edges from a single name to a fixed point."""
        seen = {_key(name)}
        while True:
            entry = self._aliases.get(_key(name))
            if entry is None:
                return name
            name = entry[1]
            k = _key(name)
            if k in seen:
                # Unreachable while add_alias guards cycles
                return name
            seen.add(k)

    def canonicalize(self, tag: str, allow_alias: bool = True) -> str:
        """
        Canonical form of a tag.

        A flat tag follows its alias chain. A hierarchical tag has each level
        resolved on its own, so ``js:react`` becomes ``javascript:react``.
        Unknown tags, and all tags when allow_alias is False, come back as
        given (stripped).
        """
        tag = tag.strip()
        if not allow_alias or not self._aliases:
            return tag
        with self._lock:
            if self._delimiter in tag:
                return self._delimiter.join(
                    self._resolve(part) for part in tag.split(self._delimiter)
                )
            return self._resolve(tag)

    def synonyms_of(self, tag: str) -> set[str]:
        """
        Every alias that resolves to the same canonical tag.

        The canonical tag itself is not included.
        """
        canonical = self.canonicalize(tag)
        target = _key(canonical)
        with self._lock:
            return {
                alias for alias, _ in self._aliases.values()
                if _key(self._resolve(alias)) == target
            }

    def expand_for_search(
        self,
        tag: str,
        include_hierarchy: bool = True,
        include_aliases: bool = True,
        *,
        index: Optional[TagIndexProtocol] = None,
    ) -> set[str]:
        """
        All stored tag names a search term should match.

        Includes the term itself, its canonical form and synonyms (unless
        include_aliases is False) and, when include_hierarchy is set and an
        index is given, every descendant of those names present in the index
        (``lang:rust`` → ``lang:rust:async``). Ancestors are never added.
        """
        tag = normalize_tag(tag)
        terms = {tag}
        if include_aliases:
            canonical = self.canonicalize(tag)
            terms.add(canonical)
            terms.update(self.synonyms_of(canonical))

        if include_hierarchy and index is not None:
            for term in list(terms):
                terms.update(index.tags_with_prefix(term + self._delimiter))
        return terms


def _checked(name: Any) -> str:
    try:
        return normalize_tag(name)
    except ValueError as e:
        raise SchemaError(str(e)) from e


def _validate_document(path: Path, data: dict[str, Any]) -> dict[str, str]:
    """Type-check a parsed schema document, naming the first bad entry."""
    unknown = set(data) - {"aliases"}
    if unknown:
        logger.warning("Ignoring unknown schema sections in %s: %s", path, sorted(unknown))

    aliases = data.get("aliases", {})
    if not isinstance(aliases, dict):
        logger.error("Schema %s: [aliases] is not a table", path)
        raise SchemaLoadError(path, "[aliases] must be a table")

    for alias, canonical in aliases.items():
        if not isinstance(canonical, str):
            logger.error("Schema %s: alias %r has non-string target", path, alias)
            raise SchemaLoadError(
                path, f"alias {alias!r}: target must be a string, got {type(canonical).__name__}"
            )
    return aliases

