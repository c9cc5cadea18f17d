"""
Core API for the tag catalog.

``Tagr`` owns one store directory: its configuration, the tag index, the
tag schema and the virtual tag engine. Tags pass through the schema before
they reach the index, so the index only ever holds canonical tags.

    with Tagr() as t:
        t.tag("notes/rust.md", ["lang:rust", "todo"])
        t.add_alias("rs", "lang:rust")
        t.search(tags=["rs"], virtual_tags=["modified:this-week"]).paths
"""

import logging
import os
from pathlib import Path
from typing import Iterable, Optional, Union

from .config import StoreConfig, get_default_store_path, load_or_create_config
from .errors import PathNotFound
from .protocol import MetadataSource, TagIndexProtocol
from .query import QueryPlanner
from .schema import TagSchema
from .types import (
    CleanupReport,
    SearchCriteria,
    SearchResult,
    dedupe,
    normalize_tag,
    path_key,
)
from .vtags import VirtualPredicate, VirtualTagEngine

logger = logging.getLogger(__name__)


class Tagr:
    """
    Tag catalog over one store directory.

    Example:
        t = Tagr()
        t.tag("/home/me/report.pdf", ["work", "finance:2024"])
        t.search(tags=["finance"]).paths
    """

    def __init__(
        self,
        store_path: Optional[Union[str, Path]] = None,
        *,
        config: Optional[StoreConfig] = None,
        index: Optional[TagIndexProtocol] = None,
        schema: Optional[TagSchema] = None,
        metadata_source: Optional[MetadataSource] = None,
    ) -> None:
        """
        Open (creating if needed) a tag store.

        Args:
            store_path: Store directory. Defaults to $TAGR_STORE_PATH or ~/.tagr.
            config: Pre-loaded StoreConfig (skips filesystem config discovery).
            index: Injected tag index (skips default backend creation).
            schema: Injected tag schema (skips loading the schema file).
            metadata_source: Metadata provider for virtual tags (the live
                filesystem by default).
        """
        # --- Config resolution ---
        if config is not None:
            self._config = config
            self._store_path = config.path
        else:
            self._store_path = (
                Path(store_path).expanduser().resolve() if store_path is not None
                else get_default_store_path()
            )
            self._config = load_or_create_config(self._store_path)

        # --- Storage backend (injected or factory-created) ---
        if index is not None:
            self._index = index
        else:
            from .backend import create_index
            self._index = create_index(self._config).index

        # --- Schema, loaded once and passed down ---
        try:
            self._schema = schema if schema is not None else TagSchema.load(self._config.schema_path)
        except Exception:
            self._index.close()
            raise

        self._engine = VirtualTagEngine(self._config.virtual_tags, source=metadata_source)
        self._planner = QueryPlanner(self._index, self._schema, self._engine)

        # --- Persistent operations log ---
        from .logging_config import configure_ops_log
        self._ops_log_handler = configure_ops_log(self._store_path)
        logger.debug("Opened tag store %s", self._store_path)

    @property
    def store_path(self) -> Path:
        return self._store_path

    @property
    def config(self) -> StoreConfig:
        return self._config

    @property
    def index(self) -> TagIndexProtocol:
        return self._index

    @property
    def schema(self) -> TagSchema:
        return self._schema

    @property
    def engine(self) -> VirtualTagEngine:
        return self._engine

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _existing_key(self, path) -> str:
        key = path_key(path)
        if self._config.index.require_existing and not os.path.exists(key):
            raise PathNotFound(key)
        return key

    def _canonical(self, tags: Union[str, Iterable[str]]) -> list[str]:
        """Validate, canonicalize and dedupe tags. Raises ValueError on a bad tag."""
        if isinstance(tags, str):
            tags = [tags]
        return dedupe(self._schema.canonicalize(normalize_tag(t)) for t in tags)

    # -------------------------------------------------------------------------
    # Tagging
    # -------------------------------------------------------------------------

    def tag(self, path, tags: Union[str, Iterable[str]]) -> list[str]:
        """
        Add tags to a file.

        Returns:
            The file's full tag list afterwards

        Raises:
            PathNotFound: The file does not exist (when require_existing)
            InvalidPath: The path is not valid UTF-8
            ValueError: A tag is empty or malformed
            StoreError: The index write failed
        """
        key = self._existing_key(path)
        canonical = self._canonical(tags)
        self._index.add_tags(key, canonical)
        logger.info("Tagged %s: %s", key, ", ".join(canonical))
        return self._index.get_tags(key) or []

    def untag(self, path, tags: Union[str, Iterable[str]]) -> list[str]:
        """
        Remove tags from a file. Unknown tags and untracked files are ignored.

        Returns:
            The file's remaining tags
        """
        key = path_key(path)
        canonical = self._canonical(tags)
        self._index.remove_tags(key, canonical)
        logger.info("Untagged %s: %s", key, ", ".join(canonical))
        return self._index.get_tags(key) or []

    def set_tags(self, path, tags: Union[str, Iterable[str]]) -> list[str]:
        """Replace a file's tags entirely. Returns the stored tag list."""
        key = self._existing_key(path)
        canonical = self._canonical(tags)
        self._index.upsert(key, canonical)
        logger.info("Set tags on %s: %s", key, ", ".join(canonical))
        return self._index.get_tags(key) or []

    def get_tags(self, path) -> list[str]:
        """Tags of a file; empty if the file is not tracked."""
        return self._index.get_tags(path_key(path)) or []

    def forget(self, path) -> bool:
        """Stop tracking a file. Returns True if it was tracked."""
        key = path_key(path)
        removed = self._index.remove(key)
        if removed:
            logger.info("Forgot %s", key)
        return removed

    # -------------------------------------------------------------------------
    # Listing
    # -------------------------------------------------------------------------

    def list_tags(self) -> list[str]:
        return sorted(self._index.list_tags())

    def list_files(self) -> list[str]:
        return sorted(self._index.list_files())

    def files_with_tag(
        self,
        tag: str,
        include_hierarchy: bool = True,
        include_aliases: bool = True,
    ) -> list[str]:
        """Files holding a tag, its synonyms, or (by default) its descendants."""
        names = self._schema.expand_for_search(
            tag, include_hierarchy, include_aliases, index=self._index,
        )
        return sorted(self._index.union(names))

    def count(self) -> int:
        """Number of tracked files."""
        return self._index.count()

    # -------------------------------------------------------------------------
    # Aliases
    # -------------------------------------------------------------------------

    def add_alias(self, alias: str, canonical: str) -> bool:
        """
        Add an alias and save the schema.

        Returns:
            False if the alias already existed with this target (or is a
            self-reference); the schema file is left untouched then

        Raises:
            ReservedDelimiter, CircularReference, AliasExists, SchemaError
        """
        changed = self._schema.add_alias(alias, canonical)
        if changed:
            self._save_schema()
        return changed

    def remove_alias(self, alias: str) -> str:
        """
        Remove an alias and save the schema.

        Returns:
            The canonical tag it pointed to

        Raises:
            AliasNotFound: alias is not defined
        """
        canonical = self._schema.remove_alias(alias)
        self._save_schema()
        return canonical

    def list_aliases(self) -> list[tuple[str, str]]:
        return self._schema.list_aliases()

    def synonyms_of(self, tag: str) -> set[str]:
        return self._schema.synonyms_of(tag)

    def _save_schema(self) -> None:
        if self._schema.path is None:
            self._schema.save(self._config.schema_path)
        else:
            self._schema.save()

    # -------------------------------------------------------------------------
    # Querying
    # -------------------------------------------------------------------------

    def search(self, criteria: Optional[SearchCriteria] = None, **kwargs) -> SearchResult:
        """
        Search the catalog.

        Accepts either a SearchCriteria or its fields as keyword arguments:

            t.search(tags=["x", "y"], tag_mode="any", virtual_tags=["size:>1MB"])

        Raises:
            QueryError: Bad virtual tag, pattern or tag (ParseError, PatternError)
            StoreError: The index could not be read
        """
        if criteria is None:
            criteria = SearchCriteria(**kwargs)
        elif kwargs:
            raise TypeError("Pass either a SearchCriteria or keyword arguments, not both")
        result = self._planner.search(criteria)
        if result.warnings:
            logger.info("Search skipped %d files with unreadable metadata", len(result.warnings))
        return result

    def parse_virtual_tag(self, expression: str) -> VirtualPredicate:
        """
        Validate a virtual tag without running a search.

        Raises:
            ParseError: The expression is malformed
        """
        return self._engine.parse(expression)

    # -------------------------------------------------------------------------
    # Maintenance
    # -------------------------------------------------------------------------

    def cleanup(self, dry_run: bool = False) -> CleanupReport:
        """
        Purge entries for files that no longer exist, and empty entries.

        Args:
            dry_run: Only report what would be removed
        """
        report = CleanupReport(dry_run=dry_run)
        for key, tags in self._index.iter_entries():
            if not os.path.lexists(key):
                report.missing.append(key)
            elif not tags:
                report.untagged.append(key)

        if not dry_run:
            for key in report.missing + report.untagged:
                self._index.remove(key)
            if report.total:
                logger.info(
                    "Cleanup removed %d missing and %d untagged entries",
                    len(report.missing), len(report.untagged),
                )
        return report

    def rename_tag(self, old_tag: str, new_tag: str) -> int:
        """
        Rename a tag on every file. Both names are canonicalized first, so an
        alias renames the tag it stands for.

        Returns:
            Number of files updated
        """
        return self._index.rename_tag(self._canonical(old_tag)[0], self._canonical(new_tag)[0])

    def remove_tag_globally(self, tag: str) -> int:
        """Remove a tag (or the tag an alias stands for) from every file."""
        return self._index.remove_tag_globally(self._canonical(tag)[0])

    def check_consistency(self) -> list[str]:
        """Forward/reverse index mismatches (empty when healthy)."""
        return self._index.check_consistency()

    def repair(self) -> int:
        """Rebuild the reverse index from the forward entries. Returns the tag count."""
        problems = self._index.check_consistency()
        if problems:
            logger.warning("Repairing %d index inconsistencies", len(problems))
        return self._index.rebuild_reverse_index()

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def flush(self) -> None:
        self._index.flush()

    def close(self) -> None:
        """Flush and close the index, detach the operations log."""
        if getattr(self, "_index", None) is not None:
            self._index.close()
            self._index = None

        if getattr(self, "_ops_log_handler", None) is not None:
            from .logging_config import remove_ops_log
            remove_ops_log(self._ops_log_handler)
            self._ops_log_handler = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
