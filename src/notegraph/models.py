"""Pydantic models for the vault engine."""

from datetime import datetime
from typing import Any, Generic, Literal, TypeVar

from pydantic import BaseModel, ConfigDict, Field, field_validator

T = TypeVar("T")

LinkKind = Literal["wiki", "markdown", "external"]


def _as_list(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, (list, tuple, set)):
        return [str(v) for v in value if v is not None]
    return [str(value)]


class NoteFrontmatter(BaseModel):
    """Frontmatter of a note.

    Only ``title``, ``tags`` and ``aliases`` are interpreted; every other key is
    kept verbatim in the model's extra fields.
    """

    model_config = ConfigDict(extra="allow")

    title: str | None = None
    tags: list[str] = Field(default_factory=list)
    aliases: list[str] = Field(default_factory=list)

    @field_validator("tags", mode="before")
    @classmethod
    def _coerce_tags(cls, value: Any) -> list[str]:
        return [t.lstrip("#") for t in _as_list(value) if t.lstrip("#")]

    @field_validator("aliases", mode="before")
    @classmethod
    def _coerce_aliases(cls, value: Any) -> list[str]:
        return _as_list(value)

    @field_validator("title", mode="before")
    @classmethod
    def _coerce_title(cls, value: Any) -> str | None:
        return None if value is None else str(value)

    @property
    def extra_fields(self) -> dict[str, Any]:
        """Keys outside the well-known fields."""
        return dict(self.model_extra or {})


class NoteLink(BaseModel):
    """A link found in a note body."""

    kind: LinkKind
    target: str  # Raw target as written
    display_text: str | None = None
    start: int  # Offset of the first character of the link in the body
    end: int  # Offset one past the last character


class Heading(BaseModel):
    level: int
    text: str
    slug: str


class CodeBlock(BaseModel):
    language: str | None = None
    code: str


# ─────────────────────────────────────────────────────────────────────────────
# Envelope
# ─────────────────────────────────────────────────────────────────────────────


class OperationError(BaseModel):
    """A per-item failure inside a batch operation."""

    path: str | None = None
    operation: str | None = None
    message: str


class ResponseMetadata(BaseModel):
    total_processed: int = 0
    success_count: int = 0
    error_count: int = 0


class OperationResult(BaseModel, Generic[T]):
    """Result of a core operation: payload plus any per-item failures.

    A populated ``errors`` list never means the operation failed as a whole;
    ``data`` still carries every successfully produced result.
    """

    data: T
    errors: list[OperationError] = Field(default_factory=list)
    metadata: ResponseMetadata | None = None

    def to_envelope(self) -> dict[str, Any]:
        """Render the JSON-ready envelope returned to callers."""
        envelope: dict[str, Any] = {"success": True}
        dumped = self.model_dump(mode="json")
        envelope["data"] = dumped["data"]
        if self.errors:
            envelope["errors"] = dumped["errors"]
        if self.metadata is not None:
            envelope["metadata"] = dumped["metadata"]
        return envelope


# ─────────────────────────────────────────────────────────────────────────────
# Link graph
# ─────────────────────────────────────────────────────────────────────────────


class GraphNode(BaseModel):
    path: str
    title: str
    tags: list[str] = Field(default_factory=list)
    out_degree: int = 0
    in_degree: int = 0


class GraphEdge(BaseModel):
    source: str
    target: str
    kind: Literal["wiki", "markdown"]


class LinkGraph(BaseModel):
    """Snapshot of the vault's link structure."""

    nodes: list[GraphNode] = Field(default_factory=list)  # In listing order
    edges: list[GraphEdge] = Field(default_factory=list)
    forward: dict[str, list[str]] = Field(default_factory=dict)
    backward: dict[str, list[str]] = Field(default_factory=dict)
    orphans: list[str] = Field(default_factory=list)
    hubs: list[str] = Field(default_factory=list)


class NoteConnection(BaseModel):
    path: str
    backlinks: list[str] = Field(default_factory=list)
    forward_links: list[str] = Field(default_factory=list)
    depth: int  # Hops from the starting note, first reached


class ConnectedNote(BaseModel):
    path: str
    connections: int
    backlinks: int
    forward_links: int


class GraphStatistics(BaseModel):
    total_notes: int
    total_links: int
    orphaned_notes: int
    most_connected_notes: list[ConnectedNote] = Field(default_factory=list)
    average_connections: float


class NoteDistance(BaseModel):
    path: str
    distance: int


class BrokenLink(BaseModel):
    source: str
    target: str  # Raw target as written
    resolved: str | None = None  # None when the target could not be normalised
    link_text: str
    kind: Literal["wiki", "markdown"]


# ─────────────────────────────────────────────────────────────────────────────
# Similarity
# ─────────────────────────────────────────────────────────────────────────────


class SimilarityResult(BaseModel):
    similarity: float
    type: Literal["content", "title"]
    strategy: Literal["exact", "levenshtein", "sampled", "hash", "skipped"]


class DuplicateGroup(BaseModel):
    paths: list[str]
    similarity: float  # Lowest anchor-to-member score in the group
    type: Literal["content", "title"]


class SimilarNote(BaseModel):
    path: str
    similarity: float
    type: Literal["content", "title"]


# ─────────────────────────────────────────────────────────────────────────────
# Documents and vault operations
# ─────────────────────────────────────────────────────────────────────────────


class NoteStat(BaseModel):
    size: int  # bytes
    created: datetime
    modified: datetime


class NoteDocument(BaseModel):
    """A fully parsed note."""

    path: str
    content: str
    frontmatter: NoteFrontmatter
    body: str
    title: str
    tags: list[str] = Field(default_factory=list)
    links: list[NoteLink] = Field(default_factory=list)


class SearchMatch(BaseModel):
    line_number: int  # 1-based
    line: str
    context: list[str] = Field(default_factory=list)


class SearchHit(BaseModel):
    path: str
    matches: list[SearchMatch] = Field(default_factory=list)


class TaggedNote(BaseModel):
    path: str
    title: str
    tags: list[str] = Field(default_factory=list)


class TagCount(BaseModel):
    tag: str
    count: int  # Notes carrying the tag


class NoteSummary(BaseModel):
    path: str
    size: int
    modified: datetime


class VaultStatistics(BaseModel):
    total_notes: int = 0
    total_folders: int = 0
    total_size: int = 0  # bytes
    total_tags: int = 0  # Distinct tags
    total_links: int = 0
    file_types: dict[str, int] = Field(default_factory=dict)
    largest_notes: list[NoteSummary] = Field(default_factory=list)
    recent_notes: list[NoteSummary] = Field(default_factory=list)


class RenameResult(BaseModel):
    old_path: str
    new_path: str
    updated_notes: list[str] = Field(default_factory=list)


class CleanupResult(BaseModel):
    dry_run: bool
    orphans_removed: list[str] = Field(default_factory=list)
    links_fixed: list[BrokenLink] = Field(default_factory=list)


class CacheStats(BaseModel):
    item_count: int
    total_size: int
    max_size: int
    average_access_count: float
