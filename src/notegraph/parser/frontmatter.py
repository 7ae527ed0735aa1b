"""YAML frontmatter splitting and serialization."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import frontmatter
from frontmatter.default_handlers import YAMLHandler

from ..errors import NotegraphError

# Only YAML frontmatter is recognised; a note opening with "+++" or "{" is plain text
_HANDLER = YAMLHandler()


class ParseError(NotegraphError):
    """Raised when a note's frontmatter cannot be parsed."""

    code = "PARSE_ERROR"

    def __init__(self, path: str | None, message: str) -> None:
        super().__init__(f"{path}: {message}" if path else message, path=path)


@dataclass
class ParsedNote:
    data: dict[str, Any] = field(default_factory=dict)
    body: str = ""


def has_frontmatter(raw: str) -> bool:
    return bool(_HANDLER.detect(raw))


def parse_frontmatter(raw: str, path: str | None = None) -> ParsedNote:
    """Split a leading ``---`` YAML block from the note body.

    Args:
        raw: Full note text.
        path: Note path, used only in error messages.

    Returns:
        ParsedNote. Without a frontmatter block ``data`` is empty and ``body``
        is ``raw`` unchanged.

    Raises:
        ParseError: If the YAML block is malformed.
    """
    if not has_frontmatter(raw):
        return ParsedNote(data={}, body=raw)

    try:
        post = frontmatter.loads(raw, handler=_HANDLER)
    except Exception as e:
        raise ParseError(path, f"Failed to parse frontmatter: {e}") from e

    return ParsedNote(data=dict(post.metadata), body=post.content)


def stringify_with_frontmatter(data: dict[str, Any], body: str) -> str:
    """Inverse of :func:`parse_frontmatter`.

    Empty ``data`` returns ``body`` unchanged so that notes without metadata
    round-trip losslessly.
    """
    if not data:
        return body

    post = frontmatter.Post(body)
    post.metadata.update(data)
    return frontmatter.dumps(post, handler=_HANDLER, sort_keys=False) + "\n"
