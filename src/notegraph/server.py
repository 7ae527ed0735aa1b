"""FastMCP server for notegraph.

This module provides MCP protocol wrappers around the vault service.
All actual logic lives in core.py - this file just handles envelope
serialization and error translation.
"""

from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable

from fastmcp import FastMCP
from pydantic import BaseModel

from .config import DEFAULT_CONNECTED_LIMIT, DEFAULT_SEARCH_LIMIT, SIMILAR_NOTES_MIN_SCORE, get_vault_root
from .core import Vault
from .errors import NotegraphError, error_payload
from .models import OperationResult

log = logging.getLogger(__name__)

mcp = FastMCP(
    name="notegraph",
    instructions=(
        "Markdown vault with a link graph. Notes are addressed by vault-relative path "
        "('folder/note' or 'folder/note.md'). Links use [[wiki]] or [text](path) syntax."
    ),
)

_vault: Vault | None = None


def get_vault() -> Vault:
    """Vault for NOTEGRAPH_VAULT_ROOT, created on first use."""
    global _vault
    if _vault is None:
        root = get_vault_root()
        log.info("Opening vault at %s", root)
        _vault = Vault(root)
    return _vault


def reset_vault() -> None:
    global _vault
    _vault = None


def _ok(data: Any) -> dict[str, Any]:
    if isinstance(data, BaseModel):
        data = data.model_dump(mode="json")
    return {"success": True, "data": data}


def _failure(exc: Exception) -> dict[str, Any]:
    return {"success": False, "error": error_payload(exc)}


async def _envelope(call: Awaitable[Any]) -> dict[str, Any]:
    """Await a core call and render its result or failure as an envelope."""
    try:
        result = await call
    except (NotegraphError, ValueError) as e:
        log.debug("Operation failed: %s", e)
        return _failure(e)
    if isinstance(result, OperationResult):
        return result.to_envelope()
    return _ok(result)


def _vault_or_failure() -> Vault | dict[str, Any]:
    try:
        return get_vault()
    except NotegraphError as e:
        return _failure(e)


async def _run(call: Callable[[Vault], Awaitable[Any]]) -> dict[str, Any]:
    """Run ``call`` against the configured vault and render the envelope."""
    vault = _vault_or_failure()
    if isinstance(vault, dict):
        return vault
    return await _envelope(call(vault))


# ─────────────────────────────────────────────────────────────────────────────
# Notes
# ─────────────────────────────────────────────────────────────────────────────


@mcp.tool(name="read_note", description="Read a note with its frontmatter, tags and links.")
async def read_note_tool(path: str) -> dict:
    return await _run(lambda vault: vault.read_note(path))


@mcp.tool(
    name="read_notes",
    description="Read several notes at once. Notes that cannot be read are listed in `errors`.",
)
async def read_notes_tool(paths: list[str]) -> dict:
    return await _run(lambda vault: vault.read_notes(paths))


@mcp.tool(
    name="write_note",
    description="Create or replace a note. Optional frontmatter is written as a YAML block.",
)
async def write_note_tool(
    path: str,
    content: str,
    frontmatter: dict[str, Any] | None = None,
    overwrite: bool = True,
) -> dict:
    return await _run(lambda vault: vault.write_note(path, content, frontmatter=frontmatter, overwrite=overwrite))


@mcp.tool(name="update_frontmatter", description="Merge keys into a note's frontmatter, optionally removing some.")
async def update_frontmatter_tool(
    path: str,
    updates: dict[str, Any],
    remove: list[str] | None = None,
) -> dict:
    return await _run(lambda vault: vault.update_frontmatter(path, updates, remove=remove))


@mcp.tool(name="delete_note", description="Delete a note.")
async def delete_note_tool(path: str) -> dict:
    return await _run(lambda vault: vault.delete_note(path))


@mcp.tool(
    name="rename_note",
    description="Rename or move a note. By default rewrites every link that pointed at it.",
)
async def rename_note_tool(old_path: str, new_path: str, update_links: bool = True) -> dict:
    return await _run(lambda vault: vault.rename_note(old_path, new_path, update_links=update_links))


# ─────────────────────────────────────────────────────────────────────────────
# Link graph
# ─────────────────────────────────────────────────────────────────────────────


@mcp.tool(name="get_backlinks", description="Notes that link to the given note.")
async def get_backlinks_tool(path: str) -> dict:
    return await _run(lambda vault: vault.graph.get_backlinks(path))


@mcp.tool(name="get_forward_links", description="Notes the given note links to.")
async def get_forward_links_tool(path: str) -> dict:
    return await _run(lambda vault: vault.graph.get_forward_links(path))


@mcp.tool(
    name="search_by_links",
    description=(
        "Notes linked with the given notes. direction 'to' finds notes linking to them, "
        "'from' finds notes they link to, 'both' finds either."
    ),
)
async def search_by_links_tool(paths: list[str], direction: str = "both", match_all: bool = False) -> dict:
    return await _run(lambda vault: vault.graph.search_by_links(paths, direction=direction, match_all=match_all))


@mcp.tool(name="find_orphaned_notes", description="Notes with no incoming and no outgoing links.")
async def find_orphaned_notes_tool() -> dict:
    return await _run(lambda vault: vault.graph.find_orphaned_notes())


@mcp.tool(
    name="get_note_connections",
    description="Notes within `depth` link hops of a note, following links in both directions.",
)
async def get_note_connections_tool(path: str, depth: int = 1) -> dict:
    return await _run(lambda vault: vault.graph.get_note_connections(path, depth=depth))


@mcp.tool(name="find_most_connected_notes", description="Notes ranked by total incoming plus outgoing links.")
async def find_most_connected_notes_tool(limit: int = DEFAULT_CONNECTED_LIMIT) -> dict:
    return await _run(lambda vault: vault.graph.find_most_connected_notes(limit=limit))


@mcp.tool(
    name="find_shortest_path",
    description="Shortest chain of forward links between two notes. Empty when unreachable.",
)
async def find_shortest_path_tool(source: str, target: str) -> dict:
    return await _run(lambda vault: vault.graph.find_shortest_path(source, target))


@mcp.tool(name="get_graph_statistics", description="Note, link and orphan counts for the link graph.")
async def get_graph_statistics_tool() -> dict:
    return await _run(lambda vault: vault.graph.get_graph_statistics())


@mcp.tool(name="find_notes_within_distance", description="Notes within N link hops, with their distance.")
async def find_notes_within_distance_tool(path: str, max_distance: int = 2) -> dict:
    return await _run(lambda vault: vault.graph.find_notes_within_distance(path, max_distance))


@mcp.tool(name="find_link_clusters", description="Groups of notes connected by links, largest first.")
async def find_link_clusters_tool() -> dict:
    return await _run(lambda vault: vault.graph.find_link_clusters())


@mcp.tool(name="find_broken_links", description="Links whose target note does not exist.")
async def find_broken_links_tool() -> dict:
    return await _run(lambda vault: vault.graph.find_broken_links())


# ─────────────────────────────────────────────────────────────────────────────
# Similarity, search and tags
# ─────────────────────────────────────────────────────────────────────────────


@mcp.tool(
    name="find_duplicate_notes",
    description="Group near-duplicate notes by content and/or file name similarity.",
)
async def find_duplicate_notes_tool(
    threshold: float | None = None,
    check_content: bool = True,
    check_titles: bool = True,
) -> dict:
    return await _run(
        lambda vault: vault.duplicates.find_duplicate_notes(
            threshold=threshold,
            check_content=check_content,
            check_titles=check_titles,
        )
    )


@mcp.tool(name="find_similar_notes", description="Notes most similar to the given note.")
async def find_similar_notes_tool(
    path: str,
    limit: int = 10,
    min_similarity: float = SIMILAR_NOTES_MIN_SCORE,
) -> dict:
    return await _run(
        lambda vault: vault.duplicates.find_similar_notes(path, limit=limit, min_similarity=min_similarity)
    )


@mcp.tool(name="search_text", description="Line-by-line text or regex search across all notes.")
async def search_text_tool(
    query: str,
    case_sensitive: bool = False,
    whole_word: bool = False,
    regex: bool = False,
    limit: int = DEFAULT_SEARCH_LIMIT,
) -> dict:
    return await _run(
        lambda vault: vault.search_text(
            query,
            case_sensitive=case_sensitive,
            whole_word=whole_word,
            regex=regex,
            limit=limit,
        )
    )


@mcp.tool(name="search_by_tags", description="Notes with any (or all) of the given tags.")
async def search_by_tags_tool(tags: list[str], match_all: bool = False) -> dict:
    return await _run(lambda vault: vault.search_by_tags(tags, match_all=match_all))


@mcp.tool(name="get_all_tags", description="Every tag used in the vault with the number of notes carrying it.")
async def get_all_tags_tool() -> dict:
    return await _run(lambda vault: vault.get_all_tags())


# ─────────────────────────────────────────────────────────────────────────────
# Vault maintenance
# ─────────────────────────────────────────────────────────────────────────────


@mcp.tool(name="get_vault_statistics", description="File, folder, size, tag and link totals for the vault.")
async def get_vault_statistics_tool() -> dict:
    return await _run(lambda vault: vault.get_vault_statistics())


@mcp.tool(
    name="cleanup_vault",
    description="Remove orphaned notes and strip broken links. Dry run by default.",
)
async def cleanup_vault_tool(
    fix_broken_links: bool = True,
    remove_orphans: bool = False,
    dry_run: bool = True,
) -> dict:
    return await _run(
        lambda vault: vault.cleanup_vault(
            fix_broken_links=fix_broken_links,
            remove_orphans=remove_orphans,
            dry_run=dry_run,
        )
    )


@mcp.tool(name="cache_stats", description="Item counts and sizes of the content and query caches.")
async def cache_stats_tool() -> dict:
    vault = _vault_or_failure()
    if isinstance(vault, dict):
        return vault
    return _ok({name: stats.model_dump() for name, stats in vault.cache_stats().items()})


def main():
    """Run the MCP server."""
    from ._logging import configure_logging

    configure_logging()
    mcp.run()


if __name__ == "__main__":
    main()
