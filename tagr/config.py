"""
Configuration management for tagr stores.

The configuration is stored as a TOML file in the store directory.
It specifies the storage backend, index behaviour, where the tag schema
lives, and how virtual tags are evaluated.
"""

import os
import tomllib
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import tomli_w


CONFIG_FILENAME = "tagr.toml"
CONFIG_VERSION = 1

DEFAULT_SCHEMA_FILENAME = "tag_schema.toml"
DEFAULT_CACHE_TTL_SECONDS = 300


def _default_extension_types() -> dict[str, list[str]]:
    return {
        "source": [".rs", ".py", ".js", ".go", ".cpp", ".c", ".java", ".ts"],
        "document": [".md", ".txt", ".pdf", ".doc", ".docx", ".org"],
        "config": [".toml", ".yaml", ".yml", ".json", ".ini", ".conf"],
        "image": [".png", ".jpg", ".jpeg", ".gif", ".svg", ".webp"],
        "archive": [".zip", ".tar", ".gz", ".7z", ".rar", ".bz2"],
    }


def _default_size_categories() -> dict[str, str]:
    # Upper bound (exclusive) of each category, smallest first.
    # "huge" is everything at or above the largest bound.
    return {
        "tiny": "1KB",
        "small": "100KB",
        "medium": "1MB",
        "large": "10MB",
    }


@dataclass
class IndexConfig:
    """Tag index behaviour."""
    keep_empty_entries: bool = False
    require_existing: bool = True


@dataclass
class TimeConfig:
    """Day counts used by time-relative virtual tags."""
    recent: int = 7
    stale: int = 180


@dataclass
class GitConfig:
    enabled: bool = True
    detect_repo: bool = True


@dataclass
class VirtualTagConfig:
    """Virtual tag evaluation settings."""
    enabled: bool = True
    cache_metadata: bool = True
    cache_ttl_seconds: int = DEFAULT_CACHE_TTL_SECONDS
    cache_capacity: int = 10_000
    max_workers: int = field(default_factory=lambda: min(32, (os.cpu_count() or 1) + 4))
    size_categories: dict[str, str] = field(default_factory=_default_size_categories)
    extension_types: dict[str, list[str]] = field(default_factory=_default_extension_types)
    time: TimeConfig = field(default_factory=TimeConfig)
    git: GitConfig = field(default_factory=GitConfig)


@dataclass
class StoreConfig:
    """Complete store configuration."""
    path: Path
    version: int = CONFIG_VERSION
    created: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    backend: str = "local"
    schema_file: str = DEFAULT_SCHEMA_FILENAME

    index: IndexConfig = field(default_factory=IndexConfig)
    virtual_tags: VirtualTagConfig = field(default_factory=VirtualTagConfig)

    @property
    def config_path(self) -> Path:
        """Path to the TOML config file."""
        return self.path / CONFIG_FILENAME

    @property
    def schema_path(self) -> Path:
        """Path to the tag schema file (relative entries resolve against the store)."""
        p = Path(self.schema_file).expanduser()
        return p if p.is_absolute() else self.path / p

    @property
    def database_path(self) -> Path:
        return self.path / "tags.db"

    def exists(self) -> bool:
        """Check if config file exists."""
        return self.config_path.exists()


def get_default_store_path() -> Path:
    """
    Resolve the default store directory.

    Priority:
    1. TAGR_STORE_PATH environment variable
    2. ~/.tagr
    """
    env_path = os.environ.get("TAGR_STORE_PATH")
    if env_path:
        return Path(env_path).expanduser().resolve()
    return Path.home() / ".tagr"


def _parse_virtual_tags(section: dict[str, Any]) -> VirtualTagConfig:
    defaults = VirtualTagConfig()
    time_section = section.get("time", {})
    git_section = section.get("git", {})

    size_categories = dict(defaults.size_categories)
    size_categories.update(section.get("size_categories", {}))
    extension_types = dict(defaults.extension_types)
    extension_types.update(section.get("extension_types", {}))

    return VirtualTagConfig(
        enabled=section.get("enabled", defaults.enabled),
        cache_metadata=section.get("cache_metadata", defaults.cache_metadata),
        cache_ttl_seconds=int(section.get("cache_ttl_seconds", defaults.cache_ttl_seconds)),
        cache_capacity=int(section.get("cache_capacity", defaults.cache_capacity)),
        max_workers=int(section.get("max_workers", defaults.max_workers)),
        size_categories=size_categories,
        extension_types=extension_types,
        time=TimeConfig(
            recent=int(time_section.get("recent", defaults.time.recent)),
            stale=int(time_section.get("stale", defaults.time.stale)),
        ),
        git=GitConfig(
            enabled=git_section.get("enabled", defaults.git.enabled),
            detect_repo=git_section.get("detect_repo", defaults.git.detect_repo),
        ),
    )


def load_config(store_path: Path) -> StoreConfig:
    """
    Load configuration from a store directory.

    Raises:
        FileNotFoundError: If config doesn't exist
        ValueError: If config is invalid
    """
    config_path = store_path / CONFIG_FILENAME

    if not config_path.exists():
        raise FileNotFoundError(f"Config not found: {config_path}")

    with open(config_path, "rb") as f:
        try:
            data = tomllib.load(f)
        except tomllib.TOMLDecodeError as e:
            raise ValueError(f"Invalid config {config_path}: {e}") from e

    store = data.get("store", {})
    version = store.get("version", 1)
    if version > CONFIG_VERSION:
        raise ValueError(f"Config version {version} is newer than supported ({CONFIG_VERSION})")

    index = data.get("index", {})
    schema = data.get("schema", {})

    return StoreConfig(
        path=store_path,
        version=version,
        created=store.get("created", ""),
        backend=store.get("backend", "local"),
        schema_file=schema.get("file", DEFAULT_SCHEMA_FILENAME),
        index=IndexConfig(
            keep_empty_entries=index.get("keep_empty_entries", False),
            require_existing=index.get("require_existing", True),
        ),
        virtual_tags=_parse_virtual_tags(data.get("virtual_tags", {})),
    )


def save_config(config: StoreConfig) -> None:
    """
    Save configuration to the store directory.

    Creates the directory if it doesn't exist.
    """
    config.path.mkdir(parents=True, exist_ok=True)

    vt = config.virtual_tags
    data = {
        "store": {
            "version": config.version,
            "created": config.created,
            "backend": config.backend,
        },
        "index": {
            "keep_empty_entries": config.index.keep_empty_entries,
            "require_existing": config.index.require_existing,
        },
        "schema": {
            "file": config.schema_file,
        },
        "virtual_tags": {
            "enabled": vt.enabled,
            "cache_metadata": vt.cache_metadata,
            "cache_ttl_seconds": vt.cache_ttl_seconds,
            "cache_capacity": vt.cache_capacity,
            "max_workers": vt.max_workers,
            "size_categories": dict(vt.size_categories),
            "extension_types": {k: list(v) for k, v in vt.extension_types.items()},
            "time": {"recent": vt.time.recent, "stale": vt.time.stale},
            "git": {"enabled": vt.git.enabled, "detect_repo": vt.git.detect_repo},
        },
    }

    with open(config.config_path, "wb") as f:
        tomli_w.dump(data, f)


def load_or_create_config(store_path: Path) -> StoreConfig:
    """
    Load existing config or create a new one with defaults.

    This is the main entry point for config management.
    """
    config_path = store_path / CONFIG_FILENAME

    if config_path.exists():
        return load_config(store_path)
    config = StoreConfig(path=store_path)
    save_config(config)
    return config
