"""Size-gated note similarity and duplicate detection.

Comparison strategy depends on size so that no pair ever builds an
unbounded edit-distance matrix:

- either note above ``safe_comparison_ceiling`` bytes: streaming content
  hash, attempted only when the sizes are within ``size_proximity``;
- longer text above ``levenshtein_ceiling`` characters: sampled windows;
- otherwise: full Levenshtein distance.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import PurePosixPath

from .batching import collect_errors, gather_bounded
from .config import MAX_CONCURRENT_READS, SIMILAR_NOTES_MIN_SCORE, SimilaritySettings
from .errors import NotegraphError, NoteNotFoundError
from .models import (
    DuplicateGroup,
    NoteStat,
    OperationError,
    OperationResult,
    ResponseMetadata,
    SimilarityResult,
    SimilarNote,
)
from .store import ContentStore

log = logging.getLogger(__name__)

DEFAULT_SETTINGS = SimilaritySettings()


def levenshtein_distance(a: str, b: str, ceiling: int = DEFAULT_SETTINGS.levenshtein_ceiling) -> int:
    """Edit distance between ``a`` and ``b``.

    Inputs longer than ``ceiling`` are refused: unequal strings then report
    the maximum possible distance instead of allocating the matrix.
    """
    if a == b:
        return 0
    if max(len(a), len(b)) > ceiling:
        return max(len(a), len(b))
    if not a:
        return len(b)
    if not b:
        return len(a)

    previous = list(range(len(b) + 1))
    for i, ca in enumerate(a, start=1):
        current = [i]
        for j, cb in enumerate(b, start=1):
            cost = 0 if ca == cb else 1
            current.append(min(previous[j] + 1, current[j - 1] + 1, previous[j - 1] + cost))
        previous = current
    return previous[-1]


def _window_similarity(a: str, b: str, ceiling: int) -> float:
    longer = max(len(a), len(b))
    if longer == 0:
        return 1.0
    return (longer - levenshtein_distance(a, b, ceiling)) / longer


def sampled_similarity(a: str, b: str, settings: SimilaritySettings = DEFAULT_SETTINGS) -> float:
    """Approximate similarity of long strings from fixed-size windows.

    Windows are taken at the same offsets in both strings and scored with
    true Levenshtein distance; the result blends the length ratio (30%) with
    the mean window score (70%).
    """
    if a == b:
        return 1.0
    shorter, longer = sorted((len(a), len(b)))
    ratio = shorter / longer
    if ratio < settings.min_length_ratio:
        return 0.0

    window = settings.sample_window
    span = max(0, shorter - window)
    ceiling = max(window, settings.levenshtein_ceiling)
    scores = []
    for i in range(settings.sample_count):
        offset = int((i / settings.sample_count) * span)
        scores.append(_window_similarity(a[offset : offset + window], b[offset : offset + window], ceiling))

    return 0.3 * ratio + 0.7 * (sum(scores) / len(scores))


def string_similarity(a: str, b: str, settings: SimilaritySettings = DEFAULT_SETTINGS) -> float:
    """Similarity in [0, 1]; identical strings (including two empty ones) score 1."""
    longer = max(len(a), len(b))
    if longer == 0 or a == b:
        return 1.0
    if longer > settings.levenshtein_ceiling:
        return sampled_similarity(a, b, settings)
    return (longer - levenshtein_distance(a, b, settings.levenshtein_ceiling)) / longer


def title_similarity(path_a: str, path_b: str, settings: SimilaritySettings = DEFAULT_SETTINGS) -> float:
    """Compare file names without extension, ignoring case."""
    return string_similarity(PurePosixPath(path_a).stem.lower(), PurePosixPath(path_b).stem.lower(), settings)


def _strategy(a: str, b: str, settings: SimilaritySettings) -> str:
    if a == b:
        return "exact"
    if max(len(a), len(b)) > settings.levenshtein_ceiling:
        return "sampled"
    return "levenshtein"


class DuplicateDetector:
    """Finds near-duplicate notes in a content store."""

    def __init__(
        self,
        store: ContentStore,
        settings: SimilaritySettings | None = None,
        concurrency: int = MAX_CONCURRENT_READS,
    ) -> None:
        self.store = store
        self.settings = settings or SimilaritySettings()
        self.concurrency = concurrency

    async def _stat(self, path: str) -> NoteStat:
        return await asyncio.to_thread(self.store.stat, path)

    async def _content_similarity(self, a: str, b: str, size_a: int, size_b: int) -> SimilarityResult:
        settings = self.settings
        ceiling = settings.safe_comparison_ceiling

        if size_a > ceiling or size_b > ceiling:
            average = (size_a + size_b) / 2
            if abs(size_a - size_b) / average >= settings.size_proximity:
                return SimilarityResult(similarity=0.0, type="content", strategy="skipped")
            hash_a = await asyncio.to_thread(self.store.file_hash, a)
            hash_b = await asyncio.to_thread(self.store.file_hash, b)
            return SimilarityResult(similarity=1.0 if hash_a == hash_b else 0.0, type="content", strategy="hash")

        text_a = await self.store.read_async(a)
        text_b = await self.store.read_async(b)
        return SimilarityResult(
            similarity=string_similarity(text_a, text_b, settings),
            type="content",
            strategy=_strategy(text_a, text_b, settings),
        )

    async def compare_notes(
        self,
        path_a: str,
        path_b: str,
        check_content: bool = True,
        check_titles: bool = True,
        stop_at: float | None = None,
        sizes: dict[str, int] | None = None,
    ) -> SimilarityResult:
        """Similarity of two notes, keeping the higher of title and content.

        Args:
            path_a: First note.
            path_b: Second note.
            check_content: Compare note contents.
            check_titles: Compare file names.
            stop_at: Skip the content comparison once the title score reaches this.
            sizes: Known byte sizes, to avoid re-statting during scans.

        Raises:
            NoteNotFoundError: If either note does not exist.
            IOFailureError: If either note cannot be read.
        """
        a = self.store.ensure_md(path_a)
        b = self.store.ensure_md(path_b)
        best = SimilarityResult(similarity=0.0, type="content", strategy="skipped")

        if check_titles:
            stem_a, stem_b = PurePosixPath(a).stem.lower(), PurePosixPath(b).stem.lower()
            best = SimilarityResult(
                similarity=string_similarity(stem_a, stem_b, self.settings),
                type="title",
                strategy=_strategy(stem_a, stem_b, self.settings),
            )

        if check_content and (stop_at is None or best.similarity < stop_at):
            known = sizes or {}
            size_a = known[a] if a in known else (await self._stat(a)).size
            size_b = known[b] if b in known else (await self._stat(b)).size
            content = await self._content_similarity(a, b, size_a, size_b)
            if content.similarity > best.similarity or not check_titles:
                best = content

        return best

    async def _sizes(self, paths: list[str], operation: str) -> tuple[dict[str, int], list[OperationError]]:
        outcomes = await gather_bounded(paths, self._stat, self.concurrency)
        sizes = {outcome.item: outcome.value.size for outcome in outcomes if outcome.value is not None}
        return sizes, collect_errors(outcomes, operation)

    async def find_duplicate_notes(
        self,
        threshold: float | None = None,
        check_content: bool = True,
        check_titles: bool = True,
    ) -> OperationResult[list[DuplicateGroup]]:
        """Group notes whose similarity to a group's anchor reaches ``threshold``.

        Each note anchors at most one group and joins at most one group, so the
        result is a partition rather than a full similarity graph.
        """
        threshold = self.settings.duplicate_threshold if threshold is None else threshold
        paths = self.store.list()
        sizes, errors = await self._sizes(paths, "find_duplicate_notes")
        candidates = [path for path in paths if path in sizes]

        processed: set[str] = set()
        groups: list[DuplicateGroup] = []
        for i, anchor in enumerate(candidates):
            if anchor in processed:
                continue
            members = [anchor]
            scores: list[SimilarityResult] = []
            for other in candidates[i + 1 :]:
                if other in processed:
                    continue
                try:
                    result = await self.compare_notes(
                        anchor, other, check_content, check_titles, stop_at=threshold, sizes=sizes
                    )
                except NotegraphError as e:
                    log.warning("Could not compare %s with %s: %s", anchor, other, e)
                    errors.append(
                        OperationError(path=other, operation="find_duplicate_notes", message=f"{anchor}: {e}")
                    )
                    continue
                if result.similarity >= threshold:
                    members.append(other)
                    scores.append(result)

            if scores:
                processed.update(members)
                lowest = min(scores, key=lambda r: r.similarity)
                groups.append(DuplicateGroup(paths=members, similarity=lowest.similarity, type=lowest.type))

        metadata = ResponseMetadata(
            total_processed=len(paths),
            success_count=len(candidates),
            error_count=len(errors),
        )
        return OperationResult(data=groups, errors=errors, metadata=metadata)

    async def find_similar_notes(
        self,
        path: str,
        limit: int = 10,
        min_similarity: float = SIMILAR_NOTES_MIN_SCORE,
    ) -> OperationResult[list[SimilarNote]]:
        """Notes most similar to ``path``, best first.

        Raises:
            NoteNotFoundError: If ``path`` does not exist.
        """
        reference = self.store.ensure_md(path)
        if not self.store.exists(reference):
            raise NoteNotFoundError(reference)

        others = [p for p in self.store.list() if p != reference]
        sizes, errors = await self._sizes([reference, *others], "find_similar_notes")

        similar: list[SimilarNote] = []
        for other in others:
            if other not in sizes:
                continue
            try:
                result = await self.compare_notes(reference, other, sizes=sizes)
            except NotegraphError as e:
                errors.append(OperationError(path=other, operation="find_similar_notes", message=str(e)))
                continue
            if result.similarity >= min_similarity:
                similar.append(SimilarNote(path=other, similarity=result.similarity, type=result.type))

        similar.sort(key=lambda n: n.similarity, reverse=True)
        metadata = ResponseMetadata(
            total_processed=len(others),
            success_count=len(others) - len(errors),
            error_count=len(errors),
        )
        return OperationResult(data=similar[: max(0, limit)], errors=errors, metadata=metadata)
