"""
Tag index backend factory.

Creates the tag index based on configuration. The only backend is
``local``: a SQLite file in the store directory. Callers needing another
store pass any TagIndexProtocol implementation to Tagr directly.
"""

from typing import NamedTuple

from .config import StoreConfig
from .protocol import TagIndexProtocol


class IndexBundle(NamedTuple):
    """Tag index returned by the factory."""
    index: TagIndexProtocol
    is_local: bool  # True for filesystem-backed stores


def create_index(config: StoreConfig) -> IndexBundle:
    """
    Create the tag index from configuration.

    For ``backend = "local"`` (default), opens the SQLite TagIndex at
    ``<store>/tags.db``.

    Raises:
        ValueError: For any other backend name
    """
    if config.backend != "local":
        raise ValueError(f"Unknown backend: {config.backend!r} (only 'local' is supported)")
    return _create_local_index(config)


def _create_local_index(config: StoreConfig) -> IndexBundle:
    """Create the default local tag index."""
    from .tag_index import TagIndex

    index = TagIndex(
        config.database_path,
        keep_empty_entries=config.index.keep_empty_entries,
    )
    return IndexBundle(index=index, is_local=True)
