"""Wiki and Markdown link extraction, rewriting and resolution."""

from __future__ import annotations

import logging
import posixpath
import re

from ..models import NoteLink

log = logging.getLogger(__name__)

# [[target]] and [[target|display]]
WIKI_LINK_PATTERN = re.compile(r"\[\[([^\]]+)\]\]")

# [text](target)
MARKDOWN_LINK_PATTERN = re.compile(r"\[([^\]]*)\]\(([^)]+)\)")

EXTERNAL_PREFIXES = ("http://", "https://")


def is_external(target: str) -> bool:
    return target.strip().lower().startswith(EXTERNAL_PREFIXES)


def _split_wiki(inner: str) -> tuple[str, str | None]:
    target, sep, display = inner.partition("|")
    return target.strip(), (display.strip() if sep else None)


def _strip_md(target: str) -> str:
    return target[:-3] if target.endswith(".md") else target


def extract_wiki_links(body: str) -> list[NoteLink]:
    """Extract ``[[target|display]]`` links in order of appearance."""
    links = []
    for match in WIKI_LINK_PATTERN.finditer(body):
        target, display = _split_wiki(match.group(1))
        if not target:
            continue
        links.append(
            NoteLink(
                kind="wiki",
                target=target,
                display_text=display,
                start=match.start(),
                end=match.end(),
            )
        )
    return links


def extract_markdown_links(body: str) -> list[NoteLink]:
    """Extract ``[text](target)`` links in order of appearance.

    Targets starting with http:// or https:// are tagged ``external``.
    """
    links = []
    for match in MARKDOWN_LINK_PATTERN.finditer(body):
        text, target = match.group(1), match.group(2).strip()
        links.append(
            NoteLink(
                kind="external" if is_external(target) else "markdown",
                target=target,
                display_text=text or None,
                start=match.start(),
                end=match.end(),
            )
        )
    return links


def extract_all_links(body: str) -> list[NoteLink]:
    links = extract_wiki_links(body) + extract_markdown_links(body)
    links.sort(key=lambda link: link.start)
    return links


def _matches(raw: str, old_target: str) -> bool:
    raw = raw.strip()
    return raw == old_target or raw == _strip_md(old_target)


def update_links(body: str, old_target: str, new_target: str) -> str:
    """Point every link whose raw target is ``old_target`` at ``new_target``.

    ``old_target`` also matches without its ``.md`` suffix. Display text is
    preserved; wiki links are written without the suffix.
    """
    return rewrite_links(body, {old_target: new_target})


def rewrite_links(body: str, replacements: dict[str, str]) -> str:
    """Apply several :func:`update_links` rewrites in a single pass.

    Each link is rewritten at most once, so a new target that equals another
    old target is left alone. An exact raw match wins over a suffix match.
    """

    def lookup(raw: str) -> str | None:
        raw = raw.strip()
        if raw in replacements:
            return replacements[raw]
        for old_target, new_target in replacements.items():
            if _matches(raw, old_target):
                return new_target
        return None

    def replace_wiki(match: re.Match[str]) -> str:
        target, display = _split_wiki(match.group(1))
        new_target = lookup(target)
        if new_target is None:
            return match.group(0)
        wiki_target = _strip_md(new_target)
        if display is not None:
            return f"[[{wiki_target}|{display}]]"
        return f"[[{wiki_target}]]"

    def replace_markdown(match: re.Match[str]) -> str:
        new_target = lookup(match.group(2))
        if new_target is None:
            return match.group(0)
        return f"[{match.group(1)}]({new_target})"

    body = WIKI_LINK_PATTERN.sub(replace_wiki, body)
    return MARKDOWN_LINK_PATTERN.sub(replace_markdown, body)


def remove_link(body: str, target: str) -> str:
    """Replace links to ``target`` with their display text (or nothing)."""

    def replace_wiki(match: re.Match[str]) -> str:
        raw, display = _split_wiki(match.group(1))
        if not _matches(raw, target):
            return match.group(0)
        return display or ""

    def replace_markdown(match: re.Match[str]) -> str:
        if not _matches(match.group(2), target):
            return match.group(0)
        return match.group(1)

    body = WIKI_LINK_PATTERN.sub(replace_wiki, body)
    return MARKDOWN_LINK_PATTERN.sub(replace_markdown, body)


def resolve_link_target(target: str, source: str) -> str | None:
    """Resolve a raw link target to a vault-relative note path.

    Args:
        target: Target as written in the link.
        source: Vault-relative path of the note containing the link.

    Returns:
        The resolved path with a ``.md`` suffix, or None for external links
        and targets that are empty or escape the vault root. A bare heading
        anchor such as ``#intro`` resolves to ``source`` itself.

    A leading ``/`` is relative to the vault root; anything else, bare names
    included, is relative to the source note's directory. No vault-wide name
    lookup is attempted.
    """
    cleaned = target.strip().replace("\\", "/")
    if is_external(cleaned):
        return None

    # Heading anchors do not change the target note
    cleaned, _, fragment = cleaned.partition("#")
    if not cleaned.strip() and fragment.strip():
        return source
    cleaned = _strip_md(cleaned)
    if not cleaned.strip("/"):
        log.debug("Empty link target %r in %s", target, source)
        return None

    if cleaned.startswith("/"):
        candidate = cleaned.lstrip("/")
    else:
        candidate = posixpath.join(posixpath.dirname(source), cleaned)

    resolved = posixpath.normpath(candidate)
    if resolved in (".", "..") or resolved.startswith("../"):
        log.debug("Link target %r in %s escapes the vault", target, source)
        return None
    return f"{resolved}.md"


def relative_link_target(source: str, target_path: str) -> str:
    """Shortest raw target that resolves from ``source`` to ``target_path``.

    Siblings get a bare name; other notes get a relative path. The result
    carries no ``.md`` suffix.
    """
    source_dir = posixpath.dirname(source)
    stem = _strip_md(target_path)
    if posixpath.dirname(stem) == source_dir:
        return posixpath.basename(stem)
    return posixpath.relpath(stem, source_dir or ".")
