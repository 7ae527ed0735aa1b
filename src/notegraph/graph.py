"""Link graph built from wiki and Markdown links between notes.

The graph is an in-memory snapshot owned by a LinkGraphEngine. It is built
lazily on the first query, reused until it is invalidated (every store
mutation does this) or older than its TTL, and then rebuilt from scratch.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, TypeVar

from .batching import collect_errors, gather_bounded, summarize
from .config import (
    DEFAULT_CONNECTED_LIMIT,
    GRAPH_BUILD_ATTEMPTS,
    GRAPH_CACHE_TTL,
    HUB_COUNT,
    MAX_CONCURRENT_READS,
)
from .models import (
    BrokenLink,
    ConnectedNote,
    GraphEdge,
    GraphNode,
    GraphStatistics,
    LinkGraph,
    NoteConnection,
    NoteDistance,
    NoteLink,
    OperationError,
    OperationResult,
    ResponseMetadata,
)
from .parser import extract_all_links, extract_tags, get_note_title, parse_frontmatter, resolve_link_target
from .store import ContentStore

log = logging.getLogger(__name__)

T = TypeVar("T")

LINK_DIRECTIONS = ("to", "from", "both")


class GraphState(Enum):
    UNINITIALIZED = "uninitialized"
    BUILT = "built"
    STALE = "stale"


@dataclass
class NoteScan:
    """Links and metadata read from one note during a build."""

    path: str
    title: str
    tags: list[str] = field(default_factory=list)
    links: list[tuple[NoteLink, str | None]] = field(default_factory=list)  # (link, resolved)


@dataclass
class GraphSnapshot:
    graph: LinkGraph
    scans: dict[str, NoteScan]
    errors: list[OperationError]
    metadata: ResponseMetadata
    built_at: float

    @property
    def paths(self) -> set[str]:
        return set(self.graph.forward)


class LinkGraphEngine:
    """Builds and queries the vault link graph.

    Args:
        store: Content store the notes are read from.
        concurrency: Maximum notes read at once during a build.
        ttl: Seconds a built graph is reused before rebuilding.
    """

    def __init__(
        self,
        store: ContentStore,
        concurrency: int = MAX_CONCURRENT_READS,
        ttl: float = GRAPH_CACHE_TTL,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.store = store
        self.concurrency = concurrency
        self.ttl = ttl
        self._clock = clock
        self._state = GraphState.UNINITIALIZED
        self._snapshot: GraphSnapshot | None = None
        self._lock = asyncio.Lock()
        # Bumped by every invalidation, including ones that land mid-build
        self._generation = 0

    @property
    def state(self) -> GraphState:
        if (
            self._state is GraphState.BUILT
            and self._snapshot is not None
            and self._clock() - self._snapshot.built_at > self.ttl
        ):
            return GraphState.STALE
        return self._state

    def invalidate(self, paths: list[str] | None = None) -> None:
        """Mark the graph stale. The next query rebuilds it."""
        self._generation += 1
        if self._state is GraphState.BUILT:
            log.debug("Link graph invalidated by %s", paths or "caller")
            self._state = GraphState.STALE

    # ─────────────────────────────────────────────────────────────────────
    # Build
    # ─────────────────────────────────────────────────────────────────────

    async def _scan_note(self, path: str) -> NoteScan:
        raw = await self.store.read_async(path)
        parsed = parse_frontmatter(raw, path)
        links = [
            (link, resolve_link_target(link.target, path))
            for link in extract_all_links(parsed.body)
            if link.kind != "external"
        ]
        return NoteScan(
            path=path,
            title=get_note_title(parsed.data, path),
            tags=extract_tags(parsed.body, parsed.data),
            links=links,
        )

    async def _build(self) -> GraphSnapshot:
        paths = self.store.list()
        outcomes = await gather_bounded(paths, self._scan_note, self.concurrency)

        scans: dict[str, NoteScan] = {}
        forward: dict[str, list[str]] = {}
        edges: list[GraphEdge] = []

        # Pass 1: forward sets; unreadable notes count as having no links
        for outcome in outcomes:
            path = outcome.item
            scan = outcome.value if outcome.value is not None else NoteScan(path=path, title=get_note_title({}, path))
            scans[path] = scan
            targets: list[str] = []
            for link, resolved in scan.links:
                if resolved is None or resolved == path or resolved in targets:
                    continue
                targets.append(resolved)
                edges.append(GraphEdge(source=path, target=resolved, kind=link.kind))
            forward[path] = targets

        # Pass 2: invert
        backward: dict[str, list[str]] = {path: [] for path in paths}
        for source, targets in forward.items():
            for target in targets:
                backward.setdefault(target, []).append(source)

        nodes = [
            GraphNode(
                path=path,
                title=scans[path].title,
                tags=scans[path].tags,
                out_degree=len(forward[path]),
                in_degree=len(backward[path]),
            )
            for path in paths
        ]
        orphans = [node.path for node in nodes if node.out_degree == 0 and node.in_degree == 0]
        ranked = sorted(nodes, key=lambda n: n.out_degree + n.in_degree, reverse=True)
        hubs = [node.path for node in ranked[:HUB_COUNT]]

        errors = collect_errors(outcomes, "build_link_graph")
        graph = LinkGraph(
            nodes=nodes,
            edges=edges,
            forward=forward,
            backward=backward,
            orphans=orphans,
            hubs=hubs,
        )
        log.info("Built link graph: %d notes, %d links, %d errors", len(nodes), len(edges), len(errors))
        return GraphSnapshot(
            graph=graph,
            scans=scans,
            errors=errors,
            metadata=summarize(outcomes),
            built_at=self._clock(),
        )

    async def _ensure_snapshot(self, force: bool = False) -> GraphSnapshot:
        async with self._lock:
            if not force and self.state is GraphState.BUILT and self._snapshot is not None:
                return self._snapshot

            for attempt in range(1, GRAPH_BUILD_ATTEMPTS + 1):
                generation = self._generation
                snapshot = await self._build()
                if generation == self._generation:
                    self._snapshot = snapshot
                    self._state = GraphState.BUILT
                    return snapshot
                log.debug("Link graph changed during build %d, rebuilding", attempt)

            # Still churning: answer from the latest build but leave it stale
            self._snapshot = snapshot
            self._state = GraphState.STALE
            return snapshot

    def _result(self, snapshot: GraphSnapshot, data: T) -> OperationResult[T]:
        return OperationResult(data=data, errors=list(snapshot.errors), metadata=snapshot.metadata)

    async def build_link_graph(self) -> OperationResult[LinkGraph]:
        """Rebuild the graph now, regardless of its state.

        The returned graph is a copy; changing it never affects later queries.
        """
        snapshot = await self._ensure_snapshot(force=True)
        return self._result(snapshot, snapshot.graph.model_copy(deep=True))

    async def get_graph(self) -> OperationResult[LinkGraph]:
        snapshot = await self._ensure_snapshot()
        return self._result(snapshot, snapshot.graph.model_copy(deep=True))

    # ─────────────────────────────────────────────────────────────────────
    # Queries
    # ─────────────────────────────────────────────────────────────────────

    async def get_backlinks(self, path: str) -> OperationResult[list[str]]:
        """Notes linking to ``path``, in the order they were discovered."""
        key = self.store.ensure_md(path)
        snapshot = await self._ensure_snapshot()
        return self._result(snapshot, list(snapshot.graph.backward.get(key, [])))

    async def get_forward_links(self, path: str) -> OperationResult[list[str]]:
        key = self.store.ensure_md(path)
        snapshot = await self._ensure_snapshot()
        return self._result(snapshot, list(snapshot.graph.forward.get(key, [])))

    async def search_by_links(
        self,
        paths: list[str],
        direction: str = "both",
        match_all: bool = False,
    ) -> OperationResult[list[str]]:
        """Notes linked with ``paths``.

        Args:
            paths: Notes to match against.
            direction: ``"to"`` finds notes linking to ``paths``, ``"from"``
                finds notes that ``paths`` link to, ``"both"`` finds either.
            match_all: Require a link with every one of ``paths`` rather
                than any of them.
        """
        if direction not in LINK_DIRECTIONS:
            raise ValueError(f"direction must be one of {', '.join(LINK_DIRECTIONS)}, got {direction!r}")
        keys = list(dict.fromkeys(self.store.ensure_md(p) for p in paths))
        snapshot = await self._ensure_snapshot()
        if not keys:
            return self._result(snapshot, [])

        graph = snapshot.graph
        combine = all if match_all else any
        matches = []
        for node in graph.nodes:
            if node.path in keys:
                continue
            outgoing = graph.forward.get(node.path, [])
            incoming = graph.backward.get(node.path, [])
            links_to = combine(key in outgoing for key in keys)
            linked_from = combine(key in incoming for key in keys)
            if (
                (direction in ("to", "both") and links_to)
                or (direction in ("from", "both") and linked_from)
            ):
                matches.append(node.path)
        return self._result(snapshot, matches)

    async def find_orphaned_notes(self) -> OperationResult[list[str]]:
        snapshot = await self._ensure_snapshot()
        return self._result(snapshot, list(snapshot.graph.orphans))

    def _neighbors(self, graph: LinkGraph, node: str) -> list[str]:
        neighbors = list(graph.forward.get(node, []))
        neighbors.extend(n for n in graph.backward.get(node, []) if n not in neighbors)
        return neighbors

    def _distances(self, graph: LinkGraph, start: str, max_depth: int) -> dict[str, int]:
        # BFS in either direction; first-reached depth is the shortest hop count
        distances = {start: 0}
        queue = deque([start])
        while queue:
            node = queue.popleft()
            depth = distances[node]
            if depth >= max_depth:
                continue
            for neighbor in self._neighbors(graph, node):
                if neighbor not in distances:
                    distances[neighbor] = depth + 1
                    queue.append(neighbor)
        return distances

    async def get_note_connections(self, path: str, depth: int = 1) -> OperationResult[dict[str, NoteConnection]]:
        """Notes within ``depth`` hops of ``path``, following links both ways.

        Returns an empty mapping when ``path`` is not a note in the vault.
        """
        if depth < 0:
            raise ValueError(f"depth must not be negative, got {depth}")
        key = self.store.ensure_md(path)
        snapshot = await self._ensure_snapshot()
        graph = snapshot.graph
        if key not in graph.forward:
            return self._result(snapshot, {})

        connections = {
            node: NoteConnection(
                path=node,
                backlinks=list(graph.backward.get(node, [])),
                forward_links=list(graph.forward.get(node, [])),
                depth=distance,
            )
            for node, distance in self._distances(graph, key, depth).items()
        }
        return self._result(snapshot, connections)

    async def find_notes_within_distance(self, path: str, max_distance: int) -> OperationResult[list[NoteDistance]]:
        key = self.store.ensure_md(path)
        snapshot = await self._ensure_snapshot()
        if key not in snapshot.graph.forward:
            return self._result(snapshot, [])
        distances = self._distances(snapshot.graph, key, max_distance)
        return self._result(snapshot, [NoteDistance(path=p, distance=d) for p, d in distances.items()])

    def _ranked(self, graph: LinkGraph) -> list[ConnectedNote]:
        ranked = [
            ConnectedNote(
                path=node.path,
                connections=node.in_degree + node.out_degree,
                backlinks=node.in_degree,
                forward_links=node.out_degree,
            )
            for node in graph.nodes
        ]
        ranked.sort(key=lambda n: n.connections, reverse=True)
        return ranked

    async def find_most_connected_notes(self, limit: int = DEFAULT_CONNECTED_LIMIT) -> OperationResult[list[ConnectedNote]]:
        snapshot = await self._ensure_snapshot()
        return self._result(snapshot, self._ranked(snapshot.graph)[: max(0, limit)])

    async def find_shortest_path(self, source: str, target: str) -> OperationResult[list[str]]:
        """Shortest chain of forward links from ``source`` to ``target``.

        Returns ``[source]`` when both are the same note and ``[]`` when
        ``target`` is unreachable.
        """
        start = self.store.ensure_md(source)
        goal = self.store.ensure_md(target)
        snapshot = await self._ensure_snapshot()
        if start == goal:
            return self._result(snapshot, [start])

        forward = snapshot.graph.forward
        parents: dict[str, str | None] = {start: None}
        queue = deque([start])
        while queue:
            node = queue.popleft()
            for neighbor in forward.get(node, []):
                if neighbor in parents:
                    continue
                parents[neighbor] = node
                if neighbor == goal:
                    path = [goal]
                    while parents[path[-1]] is not None:
                        path.append(parents[path[-1]])
                    return self._result(snapshot, list(reversed(path)))
                queue.append(neighbor)
        return self._result(snapshot, [])

    async def get_graph_statistics(self) -> OperationResult[GraphStatistics]:
        snapshot = await self._ensure_snapshot()
        graph = snapshot.graph
        ranked = self._ranked(graph)
        total = len(graph.nodes)
        stats = GraphStatistics(
            total_notes=total,
            total_links=len(graph.edges),
            orphaned_notes=len(graph.orphans),
            most_connected_notes=ranked[:DEFAULT_CONNECTED_LIMIT],
            average_connections=sum(n.connections for n in ranked) / total if total else 0.0,
        )
        return self._result(snapshot, stats)

    async def find_link_clusters(self) -> OperationResult[list[list[str]]]:
        """Weakly connected groups of two or more notes, largest first."""
        snapshot = await self._ensure_snapshot()
        graph = snapshot.graph
        visited: set[str] = set()
        clusters: list[list[str]] = []

        for node in graph.forward:
            if node in visited:
                continue
            cluster = []
            stack = [node]
            visited.add(node)
            while stack:
                current = stack.pop()
                cluster.append(current)
                for neighbor in self._neighbors(graph, current):
                    if neighbor not in visited:
                        visited.add(neighbor)
                        stack.append(neighbor)
            if len(cluster) > 1:
                clusters.append(sorted(cluster))

        clusters.sort(key=len, reverse=True)
        return self._result(snapshot, clusters)

    async def find_broken_links(self) -> OperationResult[list[BrokenLink]]:
        """Links whose target is not a note in the vault or cannot be resolved."""
        snapshot = await self._ensure_snapshot()
        existing = snapshot.paths
        broken = []
        for source, scan in snapshot.scans.items():
            for link, resolved in scan.links:
                if resolved is not None and (resolved in existing or resolved == source):
                    continue
                broken.append(
                    BrokenLink(
                        source=source,
                        target=link.target,
                        resolved=resolved,
                        link_text=link.display_text or link.target,
                        kind=link.kind,
                    )
                )
        return self._result(snapshot, broken)
