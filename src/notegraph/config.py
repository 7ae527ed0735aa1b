"""Configuration management for notegraph.

This module contains all configurable constants for the vault engine.
Magic numbers are documented here rather than scattered throughout the codebase.

Settings are layered: built-in defaults, then environment variables, then an
optional ``.notegraph.yaml`` file in the vault root.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, ValidationError

from .errors import ConfigurationError

# =============================================================================
# Vault Layout
# =============================================================================

# Optional per-vault settings file, read from the vault root
SETTINGS_FILENAME = ".notegraph.yaml"

# Default glob used when enumerating notes
NOTE_GLOB = "**/*.md"

# Directories never descended into when listing notes (dot-prefixed
# directories such as .obsidian/ and .trash/ are always skipped as well)
SYSTEM_DIRECTORIES = frozenset({"node_modules"})


# =============================================================================
# Caches
# =============================================================================

# Document content cache: raw note text keyed by normalized path.
# 50 MiB / 100 notes / 1 hour idle time.
CONTENT_CACHE_MAX_SIZE = 50 * 1024 * 1024
CONTENT_CACHE_MAX_ITEMS = 100
CONTENT_CACHE_TTL = 3600.0

# Query result cache: serialized search responses keyed by their parameters.
# 10 MiB / 50 queries / 30 minutes idle time.
QUERY_CACHE_MAX_SIZE = 10 * 1024 * 1024
QUERY_CACHE_MAX_ITEMS = 50
QUERY_CACHE_TTL = 1800.0

# Lifetime of a built link graph snapshot. Mutations invalidate it earlier.
GRAPH_CACHE_TTL = 1800.0


# =============================================================================
# I/O Limits
# =============================================================================

# Files above this size are never cached and are scanned line by line
LARGE_FILE_THRESHOLD = 5 * 1024 * 1024

# In-flight reads during vault-wide scans (graph build, duplicates, statistics)
MAX_CONCURRENT_READS = 10

# Chunk size for streaming content hashes
HASH_CHUNK_SIZE = 64 * 1024


# =============================================================================
# Graph Queries
# =============================================================================

# Number of hub notes reported with a built graph
HUB_COUNT = 10

# Default limit for most-connected queries
DEFAULT_CONNECTED_LIMIT = 10

# Builds attempted before a query settles for a snapshot that a concurrent
# mutation has already outdated
GRAPH_BUILD_ATTEMPTS = 3


# =============================================================================
# Similarity / Duplicate Detection
# =============================================================================

# Notes larger than this (bytes) are never loaded for string comparison.
# Pairs involving such a note fall back to a content hash.
SAFE_COMPARISON_CEILING = 50 * 1024

# Longest string (characters) fed to a full Levenshtein matrix.
# The matrix is O(n*m) in time and space.
LEVENSHTEIN_CEILING = 1000

# Sampled similarity: number and width of the compared windows
SAMPLE_WINDOW = 500
SAMPLE_COUNT = 5

# Hash-tier comparison only runs when sizes differ by less than this fraction
SIZE_PROXIMITY = 0.1

# Sampled similarity returns 0 when min/max length falls below this ratio
MIN_LENGTH_RATIO = 0.5

# Minimum similarity for two notes to be grouped as duplicates
DUPLICATE_THRESHOLD = 0.8

# Minimum score for find_similar_notes results
SIMILAR_NOTES_MIN_SCORE = 0.3


# =============================================================================
# Search
# =============================================================================

DEFAULT_SEARCH_LIMIT = 50

# Lines of context on each side of a text match
SEARCH_CONTEXT_LINES = 2

# Matches collected per large (streamed) file before stopping
LARGE_FILE_MAX_MATCHES = 10


# =============================================================================
# Settings Models
# =============================================================================


class CacheSettings(BaseModel):
    """Limits for one bounded cache instance."""

    max_size: int = Field(gt=0)  # bytes
    max_items: int = Field(gt=0)
    ttl: float = Field(gt=0)  # seconds


class SimilaritySettings(BaseModel):
    """Size gates and scoring constants for duplicate detection."""

    safe_comparison_ceiling: int = Field(default=SAFE_COMPARISON_CEILING, gt=0)
    levenshtein_ceiling: int = Field(default=LEVENSHTEIN_CEILING, gt=0)
    sample_window: int = Field(default=SAMPLE_WINDOW, gt=0)
    sample_count: int = Field(default=SAMPLE_COUNT, gt=0)
    size_proximity: float = Field(default=SIZE_PROXIMITY, gt=0, le=1)
    min_length_ratio: float = Field(default=MIN_LENGTH_RATIO, ge=0, le=1)
    duplicate_threshold: float = Field(default=DUPLICATE_THRESHOLD, ge=0, le=1)


class NotegraphSettings(BaseModel):
    """Runtime settings for a vault."""

    content_cache: CacheSettings = Field(
        default_factory=lambda: CacheSettings(
            max_size=CONTENT_CACHE_MAX_SIZE,
            max_items=CONTENT_CACHE_MAX_ITEMS,
            ttl=CONTENT_CACHE_TTL,
        )
    )
    query_cache: CacheSettings = Field(
        default_factory=lambda: CacheSettings(
            max_size=QUERY_CACHE_MAX_SIZE,
            max_items=QUERY_CACHE_MAX_ITEMS,
            ttl=QUERY_CACHE_TTL,
        )
    )
    graph_cache_ttl: float = Field(default=GRAPH_CACHE_TTL, gt=0)
    max_concurrent_reads: int = Field(default=MAX_CONCURRENT_READS, gt=0)
    large_file_threshold: int = Field(default=LARGE_FILE_THRESHOLD, gt=0)
    similarity: SimilaritySettings = Field(default_factory=SimilaritySettings)


# Environment variable -> (settings section, key) overrides
_ENV_OVERRIDES: dict[str, tuple[str | None, str]] = {
    "NOTEGRAPH_FILE_CACHE_SIZE": ("content_cache", "max_size"),
    "NOTEGRAPH_SEARCH_CACHE_SIZE": ("query_cache", "max_size"),
    "NOTEGRAPH_MAX_CONCURRENT_READS": (None, "max_concurrent_reads"),
}


def get_vault_root() -> Path:
    """Get the vault root directory from NOTEGRAPH_VAULT_ROOT.

    Raises:
        ConfigurationError: If the variable is unset or not a directory.
    """
    root = os.environ.get("NOTEGRAPH_VAULT_ROOT")
    if not root:
        raise ConfigurationError(
            "No vault configured. Set NOTEGRAPH_VAULT_ROOT to a directory of Markdown notes."
        )
    path = Path(root).expanduser()
    if not path.is_dir():
        raise ConfigurationError(f"Vault root is not a directory: {path}")
    return path


def _deep_merge(target: dict[str, Any], source: dict[str, Any]) -> dict[str, Any]:
    merged = dict(target)
    for key, value in source.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def _env_overrides() -> dict[str, Any]:
    overrides: dict[str, Any] = {}
    for env_name, (section, key) in _ENV_OVERRIDES.items():
        raw = os.environ.get(env_name)
        if raw is None or raw.strip() == "":
            continue
        try:
            value = int(raw)
        except ValueError as e:
            raise ConfigurationError(f"{env_name} must be an integer, got {raw!r}") from e
        if section is None:
            overrides[key] = value
        else:
            overrides.setdefault(section, {})[key] = value
    return overrides


def _file_overrides(vault_root: Path) -> dict[str, Any]:
    config_file = vault_root / SETTINGS_FILENAME
    if not config_file.exists():
        return {}
    try:
        data = yaml.safe_load(config_file.read_text(encoding="utf-8")) or {}
    except (OSError, yaml.YAMLError) as e:
        raise ConfigurationError(f"Failed to load {config_file}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigurationError(f"{config_file} must contain a mapping")
    return data


def load_settings(vault_root: Path | None = None) -> NotegraphSettings:
    """Load settings from defaults, environment and the vault settings file.

    Args:
        vault_root: Vault whose ``.notegraph.yaml`` should be applied, if any.

    Returns:
        Validated settings.

    Raises:
        ConfigurationError: If any value is malformed or non-positive.
    """
    merged = NotegraphSettings().model_dump()
    merged = _deep_merge(merged, _env_overrides())
    if vault_root is not None:
        merged = _deep_merge(merged, _file_overrides(vault_root))

    try:
        return NotegraphSettings.model_validate(merged)
    except ValidationError as e:
        errors = []
        for error in e.errors():
            loc = ".".join(str(x) for x in error["loc"])
            errors.append(f"  - {loc}: {error['msg']}")
        raise ConfigurationError("Invalid configuration:\n" + "\n".join(errors)) from e
