"""Core business logic for notegraph.

This module contains the vault service used by both the CLI and the MCP
server.

Design principles:
- Vault owns every piece of derived state (caches, link graph) for one root
- All operations are async for consistency
- Single-note operations raise; batch operations return per-note errors
"""

from __future__ import annotations

import asyncio
import json
import logging
import posixpath
import re
from collections import Counter, deque
from pathlib import Path
from typing import Any, Iterable

from .batching import collect_errors, gather_bounded, summarize
from .cache import BoundedCache, json_byte_size
from .config import (
    DEFAULT_SEARCH_LIMIT,
    LARGE_FILE_MAX_MATCHES,
    SEARCH_CONTEXT_LINES,
    NotegraphSettings,
    load_settings,
)
from .errors import InvalidQueryError, NotegraphError, NoteExistsError, NoteNotFoundError
from .graph import LinkGraphEngine
from .models import (
    BrokenLink,
    CacheStats,
    CleanupResult,
    NoteDocument,
    NoteFrontmatter,
    NoteSummary,
    OperationError,
    OperationResult,
    RenameResult,
    ResponseMetadata,
    SearchHit,
    SearchMatch,
    TaggedNote,
    TagCount,
    VaultStatistics,
)
from .parser import (
    extract_all_links,
    extract_tags,
    get_note_title,
    parse_frontmatter,
    relative_link_target,
    remove_link,
    resolve_link_target,
    rewrite_links,
    stringify_with_frontmatter,
)
from .similarity import DuplicateDetector
from .store import ContentStore

log = logging.getLogger(__name__)

# Number of entries in the largest/recent lists of vault statistics
STATISTICS_TOP_N = 10


def _scan_lines(
    lines: Iterable[str],
    pattern: re.Pattern[str],
    context: int = SEARCH_CONTEXT_LINES,
    max_matches: int | None = None,
) -> list[SearchMatch]:
    """Match ``pattern`` line by line, keeping ``context`` lines around hits.

    Works on any iterable so large files can be scanned without buffering.
    """
    before: deque[str] = deque(maxlen=context)
    matches: list[SearchMatch] = []
    awaiting_after: list[tuple[SearchMatch, int]] = []

    for number, line in enumerate(lines, start=1):
        still_open = []
        for match, remaining in awaiting_after:
            match.context.append(line)
            if remaining > 1:
                still_open.append((match, remaining - 1))
        awaiting_after = still_open

        if max_matches is not None and len(matches) >= max_matches:
            if not awaiting_after:
                break
        elif pattern.search(line):
            match = SearchMatch(line_number=number, line=line, context=list(before))
            matches.append(match)
            if context > 0:
                awaiting_after.append((match, context))
        before.append(line)

    return matches


def _compile_query(query: str, case_sensitive: bool, whole_word: bool, regex: bool) -> re.Pattern[str]:
    if not query:
        raise InvalidQueryError("Search query must not be empty")
    flags = 0 if case_sensitive else re.IGNORECASE
    source = query if regex else re.escape(query)
    if whole_word:
        source = rf"\b{source}\b"
    try:
        return re.compile(source, flags)
    except re.error as e:
        raise InvalidQueryError(f"Invalid regular expression {query!r}: {e}") from e


def _retarget(raw: str, source: str, target_path: str) -> str:
    """Raw link target that reaches ``target_path`` from ``source``.

    Keeps the ``.md`` suffix and heading anchor of ``raw``.
    """
    target, _, fragment = raw.partition("#")
    replacement = relative_link_target(source, target_path)
    if target.endswith(".md"):
        replacement += ".md"
    if fragment:
        replacement += f"#{fragment}"
    return replacement


class Vault:
    """A directory of Markdown notes with its caches and link graph.

    Every mutation made through the vault drops the touched content cache
    entries, clears the query cache and marks the link graph stale.
    """

    def __init__(self, root: Path, settings: NotegraphSettings | None = None) -> None:
        self.root = Path(root)
        self.settings = settings or load_settings(self.root)

        self.content_cache: BoundedCache[str] = BoundedCache(**self.settings.content_cache.model_dump())
        self.query_cache: BoundedCache[dict[str, Any]] = BoundedCache(**self.settings.query_cache.model_dump())
        self.store = ContentStore(
            self.root,
            cache=self.content_cache,
            large_file_threshold=self.settings.large_file_threshold,
        )
        self.graph = LinkGraphEngine(
            self.store,
            concurrency=self.settings.max_concurrent_reads,
            ttl=self.settings.graph_cache_ttl,
        )
        self.duplicates = DuplicateDetector(
            self.store,
            self.settings.similarity,
            concurrency=self.settings.max_concurrent_reads,
        )
        self.store.add_invalidation_listener(self.graph.invalidate)
        self.store.add_invalidation_listener(self._clear_query_cache)

    def _clear_query_cache(self, paths: list[str]) -> None:
        self.query_cache.clear()

    # ─────────────────────────────────────────────────────────────────────
    # Single-note operations
    # ─────────────────────────────────────────────────────────────────────

    async def read_note(self, path: str) -> NoteDocument:
        """Read and parse one note.

        Raises:
            NoteNotFoundError: If the note does not exist.
            ParseError: If its frontmatter is malformed.
        """
        key = self.store.ensure_md(path)
        raw = await self.store.read_async(key)
        parsed = parse_frontmatter(raw, key)
        return NoteDocument(
            path=key,
            content=raw,
            frontmatter=NoteFrontmatter.model_validate(parsed.data),
            body=parsed.body,
            title=get_note_title(parsed.data, key),
            tags=extract_tags(parsed.body, parsed.data),
            links=extract_all_links(parsed.body),
        )

    async def read_notes(self, paths: list[str]) -> OperationResult[list[NoteDocument]]:
        """Read several notes at once.

        Notes that are missing or cannot be parsed are reported in ``errors``
        and left out of ``data``; the rest keep the order of ``paths``.
        """
        outcomes = await gather_bounded(paths, self.read_note, self.settings.max_concurrent_reads)
        return OperationResult(
            data=[outcome.value for outcome in outcomes if outcome.ok],
            errors=collect_errors(outcomes, "read_notes"),
            metadata=summarize(outcomes),
        )

    async def write_note(
        self,
        path: str,
        content: str,
        frontmatter: dict[str, Any] | None = None,
        overwrite: bool = True,
    ) -> str:
        """Write a note, optionally prefixing a frontmatter block.

        Returns:
            The normalized note path.
        """
        key = self.store.ensure_md(path)
        if not overwrite and self.store.exists(key):
            raise NoteExistsError(key)
        self.store.write(key, stringify_with_frontmatter(frontmatter or {}, content))
        return key

    async def update_frontmatter(
        self,
        path: str,
        updates: dict[str, Any],
        remove: list[str] | None = None,
    ) -> NoteFrontmatter:
        """Merge ``updates`` into a note's frontmatter and drop ``remove`` keys."""
        key = self.store.ensure_md(path)
        parsed = parse_frontmatter(await self.store.read_async(key), key)
        data = dict(parsed.data)
        data.update(updates)
        for name in remove or []:
            data.pop(name, None)
        self.store.write(key, stringify_with_frontmatter(data, parsed.body))
        return NoteFrontmatter.model_validate(data)

    async def delete_note(self, path: str) -> str:
        key = self.store.ensure_md(path)
        self.store.delete(key)
        return key

    async def _links_to(self, source: str, target: str) -> list[str]:
        """Raw link targets in ``source`` that resolve to ``target``."""
        parsed = parse_frontmatter(await self.store.read_async(source), source)
        raws: list[str] = []
        for link in extract_all_links(parsed.body):
            if link.kind == "external" or link.target in raws:
                continue
            if resolve_link_target(link.target, source) == target:
                raws.append(link.target)
        return raws

    async def _own_link_rewrites(self, old_key: str, new_key: str) -> dict[str, str]:
        """Rewrites that keep a moved note's own links pointing where they did.

        Relative targets change meaning when the note changes directory, and
        links back to the note itself must follow it to ``new_key``.
        """
        parsed = parse_frontmatter(await self.store.read_async(old_key), old_key)
        rewrites: dict[str, str] = {}
        for link in extract_all_links(parsed.body):
            raw = link.target
            if link.kind == "external" or raw in rewrites:
                continue
            resolved = resolve_link_target(raw, old_key)
            if resolved is None:
                continue
            wanted = new_key if resolved == old_key else resolved
            if resolve_link_target(raw, new_key) != wanted:
                rewrites[raw] = _retarget(raw, new_key, wanted)
        return rewrites

    async def rename_note(self, old_path: str, new_path: str, update_links: bool = True) -> OperationResult[RenameResult]:
        """Rename a note and point every link that resolved to it at the new path.

        Links inside the renamed note are rewritten too, so that they still
        reach the same notes from its new location.

        Raises:
            NoteNotFoundError: If ``old_path`` does not exist.
            NoteExistsError: If ``new_path`` already exists.
        """
        old_key = self.store.ensure_md(old_path)
        new_key = self.store.ensure_md(new_path)
        if not self.store.exists(old_key):
            raise NoteNotFoundError(old_key)
        if self.store.exists(new_key):
            raise NoteExistsError(new_key)

        errors: list[OperationError] = []
        referrers: dict[str, dict[str, str]] = {}
        own_rewrites: dict[str, str] = {}
        if update_links:
            others = [p for p in self.store.list() if p != old_key]
            outcomes = await gather_bounded(
                others,
                lambda source: self._links_to(source, old_key),
                self.settings.max_concurrent_reads,
            )
            errors.extend(collect_errors(outcomes, "rename_note"))
            referrers = {
                outcome.item: {raw: _retarget(raw, outcome.item, new_key) for raw in outcome.value}
                for outcome in outcomes
                if outcome.value
            }
            try:
                own_rewrites = await self._own_link_rewrites(old_key, new_key)
            except NotegraphError as e:
                log.warning("Could not read links in %s: %s", old_key, e)
                errors.append(OperationError(path=old_key, operation="rename_note", message=str(e)))

        self.store.rename(old_key, new_key)
        log.info("Renamed %s -> %s", old_key, new_key)

        if own_rewrites:
            referrers[new_key] = own_rewrites

        updated: list[str] = []
        for source, rewrites in referrers.items():
            try:
                content = await self.store.read_async(source)
                self.store.write(source, rewrite_links(content, rewrites))
                updated.append(source)
            except NotegraphError as e:
                log.warning("Could not update links in %s: %s", source, e)
                errors.append(OperationError(path=source, operation="rename_note", message=str(e)))

        return OperationResult(
            data=RenameResult(old_path=old_key, new_path=new_key, updated_notes=updated),
            errors=errors,
            metadata=ResponseMetadata(
                total_processed=len(referrers),
                success_count=len(updated),
                error_count=len(errors),
            ),
        )

    # ─────────────────────────────────────────────────────────────────────
    # Search
    # ─────────────────────────────────────────────────────────────────────

    async def _search_note(self, path: str, pattern: re.Pattern[str]) -> list[SearchMatch]:
        note_stat = await asyncio.to_thread(self.store.stat, path)
        if note_stat.size > self.store.large_file_threshold:
            return await asyncio.to_thread(
                _scan_lines,
                self.store.iter_lines(path),
                pattern,
                SEARCH_CONTEXT_LINES,
                LARGE_FILE_MAX_MATCHES,
            )
        content = await self.store.read_async(path)
        return _scan_lines(content.split("\n"), pattern)

    async def search_text(
        self,
        query: str,
        case_sensitive: bool = False,
        whole_word: bool = False,
        regex: bool = False,
        limit: int = DEFAULT_SEARCH_LIMIT,
    ) -> OperationResult[list[SearchHit]]:
        """Line-oriented text search across all notes.

        Results are cached in the query cache until the next mutation.

        Raises:
            InvalidQueryError: If the query is empty or not a valid regex.
        """
        pattern = _compile_query(query, case_sensitive, whole_word, regex)
        cache_key = json.dumps(
            {
                "operation": "search_text",
                "query": query,
                "case_sensitive": case_sensitive,
                "whole_word": whole_word,
                "regex": regex,
                "limit": limit,
            },
            sort_keys=True,
        )
        cached = self.query_cache.get(cache_key)
        if cached is not None:
            return OperationResult[list[SearchHit]].model_validate(cached)

        paths = self.store.list()
        outcomes = await gather_bounded(
            paths,
            lambda path: self._search_note(path, pattern),
            self.settings.max_concurrent_reads,
        )
        hits = [SearchHit(path=outcome.item, matches=outcome.value) for outcome in outcomes if outcome.value]
        result = OperationResult(
            data=hits[: max(0, limit)],
            errors=collect_errors(outcomes, "search_text"),
            metadata=summarize(outcomes),
        )

        dumped = result.model_dump(mode="json")
        size = json_byte_size(dumped)
        if size is not None:
            self.query_cache.set(cache_key, dumped, size)
        return result

    async def search_by_tags(self, tags: list[str], match_all: bool = False) -> OperationResult[list[TaggedNote]]:
        """Notes carrying any (or, with ``match_all``, every) of ``tags``."""
        wanted = [tag.lstrip("#") for tag in tags if tag.lstrip("#")]
        graph = await self.graph.get_graph()
        matches = []
        for node in graph.data.nodes:
            present = [tag in node.tags for tag in wanted]
            if wanted and (all(present) if match_all else any(present)):
                matches.append(TaggedNote(path=node.path, title=node.title, tags=node.tags))
        return OperationResult(data=matches, errors=graph.errors, metadata=graph.metadata)

    async def get_all_tags(self) -> OperationResult[list[TagCount]]:
        """Every distinct tag in the vault with the number of notes using it."""
        graph = await self.graph.get_graph()
        counts: Counter[str] = Counter()
        for node in graph.data.nodes:
            counts.update(set(node.tags))
        tags = [TagCount(tag=tag, count=count) for tag, count in sorted(counts.items())]
        return OperationResult(data=tags, errors=graph.errors, metadata=graph.metadata)

    # ─────────────────────────────────────────────────────────────────────
    # Vault-wide maintenance
    # ─────────────────────────────────────────────────────────────────────

    async def get_vault_statistics(self) -> OperationResult[VaultStatistics]:
        """Size, folder, tag and link totals for the whole vault."""
        files = self.store.list("*")
        outcomes = await gather_bounded(
            files,
            lambda path: asyncio.to_thread(self.store.stat, path),
            self.settings.max_concurrent_reads,
        )
        graph = await self.graph.get_graph()

        stats = VaultStatistics(
            total_notes=sum(1 for path in files if path.endswith(".md")),
            total_links=len(graph.data.edges),
            total_tags=len({tag for node in graph.data.nodes for tag in node.tags}),
        )
        folders: set[str] = set()
        summaries: list[NoteSummary] = []
        for outcome in outcomes:
            if outcome.value is None:
                continue
            path = outcome.item
            folder = posixpath.dirname(path)
            if folder:
                folders.add(folder)
            ext = posixpath.splitext(path)[1] or "(none)"
            stats.file_types[ext] = stats.file_types.get(ext, 0) + 1
            stats.total_size += outcome.value.size
            summaries.append(NoteSummary(path=path, size=outcome.value.size, modified=outcome.value.modified))

        stats.total_folders = len(folders)
        stats.largest_notes = sorted(summaries, key=lambda s: s.size, reverse=True)[:STATISTICS_TOP_N]
        stats.recent_notes = sorted(summaries, key=lambda s: s.modified, reverse=True)[:STATISTICS_TOP_N]

        errors = collect_errors(outcomes, "get_vault_statistics") + graph.errors
        metadata = summarize(outcomes)
        metadata.error_count = len(errors)
        return OperationResult(data=stats, errors=errors, metadata=metadata)

    async def cleanup_vault(
        self,
        fix_broken_links: bool = True,
        remove_orphans: bool = False,
        dry_run: bool = True,
    ) -> OperationResult[CleanupResult]:
        """Remove orphaned notes and strip broken links.

        With ``dry_run`` (the default) nothing is changed; the result lists
        what would have been removed or fixed.
        """
        errors: list[OperationError] = []
        orphans: list[str] = []
        broken: list[BrokenLink] = []

        if remove_orphans:
            found = await self.graph.find_orphaned_notes()
            orphans = found.data
            errors.extend(found.errors)
        if fix_broken_links:
            found_links = await self.graph.find_broken_links()
            broken = found_links.data
            if not remove_orphans:
                errors.extend(found_links.errors)

        result = CleanupResult(dry_run=dry_run)
        if dry_run:
            result.orphans_removed = orphans
            result.links_fixed = broken
            return OperationResult(data=result, errors=errors)

        for path in orphans:
            try:
                self.store.delete(path)
                result.orphans_removed.append(path)
            except NotegraphError as e:
                errors.append(OperationError(path=path, operation="cleanup_vault", message=str(e)))

        by_source: dict[str, list[BrokenLink]] = {}
        for link in broken:
            by_source.setdefault(link.source, []).append(link)
        for source, links in by_source.items():
            try:
                content = await self.store.read_async(source)
                for link in links:
                    content = remove_link(content, link.target)
                self.store.write(source, content)
                result.links_fixed.extend(links)
            except NotegraphError as e:
                errors.append(OperationError(path=source, operation="cleanup_vault", message=str(e)))

        log.info(
            "Cleanup removed %d orphans and fixed %d links",
            len(result.orphans_removed),
            len(result.links_fixed),
        )
        return OperationResult(data=result, errors=errors)

    def cache_stats(self) -> dict[str, CacheStats]:
        return {
            "content": self.content_cache.get_stats(),
            "query": self.query_cache.get_stats(),
        }
