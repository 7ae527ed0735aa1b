"""Markdown parsing with frontmatter, tag and link extraction."""

from .frontmatter import ParsedNote, ParseError, has_frontmatter, parse_frontmatter, stringify_with_frontmatter
from .links import (
    extract_all_links,
    extract_markdown_links,
    extract_wiki_links,
    is_external,
    relative_link_target,
    remove_link,
    resolve_link_target,
    rewrite_links,
    update_links,
)
from .markdown import (
    create_slug,
    extract_code_blocks,
    extract_headings,
    extract_preview,
    extract_tags,
    get_note_title,
    remove_code_blocks,
)

__all__ = [
    "ParseError",
    "ParsedNote",
    "has_frontmatter",
    "parse_frontmatter",
    "stringify_with_frontmatter",
    "extract_tags",
    "extract_wiki_links",
    "extract_markdown_links",
    "extract_all_links",
    "is_external",
    "update_links",
    "rewrite_links",
    "remove_link",
    "resolve_link_target",
    "relative_link_target",
    "get_note_title",
    "create_slug",
    "extract_headings",
    "extract_code_blocks",
    "remove_code_blocks",
    "extract_preview",
]
