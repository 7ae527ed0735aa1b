"""Tags, titles, headings and previews from Markdown bodies."""

import re
from pathlib import PurePosixPath
from typing import Any

from ..models import CodeBlock, Heading

# Inline #tags: letters, digits, _, - and / (nested tags). The lookbehind keeps
# URL fragments and HTML entities such as &#39; out.
INLINE_TAG_PATTERN = re.compile(r"(?<![\w&/#])#([A-Za-z0-9_/-]+)")

HEADING_PATTERN = re.compile(r"^(#{1,6})\s+(.+)$", re.MULTILINE)

CODE_BLOCK_PATTERN = re.compile(r"```(\w*)\n([\s\S]*?)```")


def _frontmatter_tags(data: dict[str, Any]) -> list[str]:
    raw = data.get("tags")
    if raw is None:
        return []
    if isinstance(raw, (list, tuple, set)):
        values = [str(v) for v in raw if v is not None]
    else:
        values = [str(raw)]
    return [v.strip().lstrip("#") for v in values if v.strip().lstrip("#")]


def extract_tags(body: str, data: dict[str, Any] | None = None) -> list[str]:
    """Union of frontmatter ``tags`` and inline ``#tag`` tokens, sorted.

    Args:
        body: Note body (without frontmatter).
        data: Parsed frontmatter; ``tags`` may be a scalar or a list.

    Returns:
        Unique tags in lexicographic order, without leading ``#``.
    """
    tags = set(_frontmatter_tags(data or {}))
    tags.update(INLINE_TAG_PATTERN.findall(body))
    return sorted(tags)


def get_note_title(data: dict[str, Any], path: str) -> str:
    """Frontmatter title if present, else the filename without extension."""
    title = data.get("title")
    if title is not None and str(title).strip():
        return str(title)
    return PurePosixPath(path).stem


def create_slug(text: str) -> str:
    slug = re.sub(r"[^\w\s-]", "", text.lower()).strip()
    return re.sub(r"\s+", "-", slug)


def extract_headings(body: str) -> list[Heading]:
    return [
        Heading(level=len(match.group(1)), text=match.group(2).strip(), slug=create_slug(match.group(2)))
        for match in HEADING_PATTERN.finditer(body)
    ]


def extract_code_blocks(body: str) -> list[CodeBlock]:
    return [
        CodeBlock(language=match.group(1) or None, code=match.group(2))
        for match in CODE_BLOCK_PATTERN.finditer(body)
    ]


def remove_code_blocks(body: str) -> str:
    return CODE_BLOCK_PATTERN.sub("", body)


def extract_preview(body: str, max_length: int = 200) -> str:
    """First prose paragraph of a note, cut on a word boundary.

    Code blocks and headings are skipped. Text longer than ``max_length`` is
    truncated at the last space before the limit and suffixed with "...".
    """
    text = HEADING_PATTERN.sub("", remove_code_blocks(body))
    paragraph = ""
    for block in re.split(r"\n\s*\n", text):
        if block.strip():
            paragraph = " ".join(block.split())
            break

    if len(paragraph) <= max_length:
        return paragraph

    cut = paragraph[:max_length]
    space = cut.rfind(" ")
    if space > 0:
        cut = cut[:space]
    return cut + "..."
