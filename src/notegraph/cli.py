#!/usr/bin/env python3
"""
ng: CLI for notegraph Markdown vaults

Usage:
    ng backlinks path/to/note      # Notes linking here
    ng path a.md c.md              # Shortest link chain
    ng orphans                     # Unlinked notes
    ng duplicates                  # Near-duplicate notes
    ng rename old.md new.md        # Rename and rewrite links
"""

from __future__ import annotations

import asyncio
import json
import sys
from pathlib import Path
from typing import Any, Awaitable, Callable, NoReturn, TypeVar

import click

from . import __version__ as NOTEGRAPH_VERSION

T = TypeVar("T")


def run_async(coro):
    """Run async function synchronously."""
    return asyncio.run(coro)


def format_table(rows: list[dict], columns: list[str], max_widths: dict | None = None) -> str:
    """Format rows as a simple table."""
    if not rows:
        return ""

    max_widths = max_widths or {}

    def cell(row: dict, col: str) -> str:
        val = str(row.get(col, ""))
        limit = max_widths.get(col, 50)
        return val[: limit - 3] + "..." if len(val) > limit else val

    widths = {col: max([len(col)] + [len(cell(row, col)) for row in rows]) for col in columns}
    lines = [
        "  ".join(col.upper().ljust(widths[col]) for col in columns),
        "  ".join("-" * widths[col] for col in columns),
    ]
    for row in rows:
        lines.append("  ".join(cell(row, col).ljust(widths[col]) for col in columns))
    return "\n".join(lines)


def output(data, as_json: bool = False):
    """Output data as JSON or formatted text."""
    if as_json:
        click.echo(json.dumps(data, indent=2, default=str))
    else:
        click.echo(data)


def _handle_error(ctx: click.Context, error: Exception, exit_code: int = 1) -> NoReturn:
    """Report an error as text, or as a failed envelope with --json-errors."""
    from .errors import error_payload

    json_errors = ctx.obj.get("json_errors", False) if ctx.obj else False
    if json_errors:
        click.echo(json.dumps({"success": False, "error": error_payload(error)}), err=True)
    else:
        click.echo(f"Error: {getattr(error, 'message', None) or error}", err=True)
    sys.exit(exit_code)


def _execute(ctx: click.Context, operation: Callable[[Any], Awaitable[T]]) -> T:
    """Open the vault and run one async operation against it."""
    from .config import get_vault_root
    from .core import Vault
    from .errors import ConfigurationError, NotegraphError

    try:
        vault_arg = ctx.obj.get("vault") if ctx.obj else None
        root = Path(vault_arg) if vault_arg else get_vault_root()
        if not root.is_dir():
            raise ConfigurationError(f"Vault root is not a directory: {root}")
        vault = Vault(root)
        return run_async(operation(vault))
    except (NotegraphError, ValueError) as exc:
        _handle_error(ctx, exc)


def _warn_partial(result) -> None:
    """Print per-note failures of a batch result to stderr."""
    if not result.errors:
        return
    click.echo(f"Warning: {len(result.errors)} note(s) could not be processed:", err=True)
    for error in result.errors:
        click.echo(f"  {error.path}: {error.message}", err=True)


def _emit_result(result, as_json: bool, render: Callable[[Any], None]) -> None:
    if as_json:
        output(result.to_envelope(), as_json=True)
        return
    _warn_partial(result)
    render(result.data)


def _echo_paths(paths: list[str], empty: str) -> None:
    if not paths:
        click.echo(empty)
        return
    for path in paths:
        click.echo(path)


json_option = click.option("--json", "as_json", is_flag=True, help="Output as JSON envelope")


# ─────────────────────────────────────────────────────────────────────────────
# Main CLI Group
# ─────────────────────────────────────────────────────────────────────────────


@click.group()
@click.version_option(version=NOTEGRAPH_VERSION, prog_name="ng")
@click.option(
    "--vault",
    type=click.Path(file_okay=False, path_type=Path),
    envvar="NOTEGRAPH_VAULT_ROOT",
    help="Vault root directory (default: $NOTEGRAPH_VAULT_ROOT)",
)
@click.option(
    "--json-errors",
    "json_errors",
    is_flag=True,
    help="Output errors as JSON (for programmatic use)",
)
@click.pass_context
def cli(ctx: click.Context, vault: Path | None, json_errors: bool):
    """ng: link graph tools for a directory of Markdown notes.

    \b
    Links:
      ng backlinks note.md          # Who links here
      ng links note.md              # Where this note links
      ng connections note.md -d 2   # Neighbourhood within 2 hops
      ng path a.md b.md             # Shortest chain of links

    \b
    Vault health:
      ng orphans | ng broken-links | ng duplicates
      ng cleanup --remove-orphans --apply
    """
    from ._logging import configure_logging

    configure_logging()
    ctx.ensure_object(dict)
    ctx.obj["vault"] = vault
    ctx.obj["json_errors"] = json_errors


# ─────────────────────────────────────────────────────────────────────────────
# Link Graph Commands
# ─────────────────────────────────────────────────────────────────────────────


@cli.command()
@click.argument("path")
@json_option
@click.pass_context
def backlinks(ctx: click.Context, path: str, as_json: bool):
    """Show notes that link to PATH.

    \b
    Examples:
      ng backlinks projects/alpha
      ng backlinks projects/alpha.md --json
    """
    result = _execute(ctx, lambda vault: vault.graph.get_backlinks(path))
    _emit_result(result, as_json, lambda data: _echo_paths(data, "No backlinks found."))


@cli.command()
@click.argument("path")
@json_option
@click.pass_context
def links(ctx: click.Context, path: str, as_json: bool):
    """Show notes that PATH links to."""
    result = _execute(ctx, lambda vault: vault.graph.get_forward_links(path))
    _emit_result(result, as_json, lambda data: _echo_paths(data, "No forward links found."))


@cli.command()
@click.argument("paths", nargs=-1, required=True)
@click.option(
    "--direction",
    type=click.Choice(["to", "from", "both"]),
    default="both",
    show_default=True,
    help="'to': notes linking to PATHS, 'from': notes PATHS link to",
)
@click.option("--all", "match_all", is_flag=True, help="Require a link with every one of PATHS")
@json_option
@click.pass_context
def linked(ctx: click.Context, paths: tuple[str, ...], direction: str, match_all: bool, as_json: bool):
    """List notes linked with any (or --all) of PATHS.

    \b
    Examples:
      ng linked projects/alpha --direction to
      ng linked alpha beta --all
    """
    result = _execute(
        ctx,
        lambda vault: vault.graph.search_by_links(list(paths), direction=direction, match_all=match_all),
    )
    _emit_result(result, as_json, lambda data: _echo_paths(data, "No linked notes found."))


@cli.command()
@json_option
@click.pass_context
def orphans(ctx: click.Context, as_json: bool):
    """List notes with no incoming and no outgoing links."""
    result = _execute(ctx, lambda vault: vault.graph.find_orphaned_notes())
    _emit_result(result, as_json, lambda data: _echo_paths(data, "No orphaned notes."))


@cli.command()
@click.argument("path")
@click.option("--depth", "-d", type=int, default=1, show_default=True, help="Link hops to follow")
@json_option
@click.pass_context
def connections(ctx: click.Context, path: str, depth: int, as_json: bool):
    """Show notes within DEPTH hops of PATH, following links both ways."""

    def render(data: dict) -> None:
        if not data:
            click.echo(f"Note not in graph: {path}")
            return
        rows = [
            {
                "path": conn.path,
                "depth": conn.depth,
                "backlinks": len(conn.backlinks),
                "forward": len(conn.forward_links),
            }
            for conn in data.values()
        ]
        click.echo(format_table(rows, ["path", "depth", "backlinks", "forward"], {"path": 60}))

    result = _execute(ctx, lambda vault: vault.graph.get_note_connections(path, depth=depth))
    _emit_result(result, as_json, render)


@cli.command()
@click.option("--limit", "-n", type=int, default=10, show_default=True, help="Max notes to show")
@json_option
@click.pass_context
def hubs(ctx: click.Context, limit: int, as_json: bool):
    """Show the most connected notes.

    \b
    Examples:
      ng hubs
      ng hubs --limit=5
    """

    def render(data: list) -> None:
        if not data:
            click.echo("No notes found.")
            return
        rows = [note.model_dump() for note in data]
        click.echo(format_table(rows, ["path", "backlinks", "forward_links", "connections"], {"path": 50}))

    result = _execute(ctx, lambda vault: vault.graph.find_most_connected_notes(limit=limit))
    _emit_result(result, as_json, render)


@cli.command("path")
@click.argument("source")
@click.argument("target")
@json_option
@click.pass_context
def shortest_path(ctx: click.Context, source: str, target: str, as_json: bool):
    """Show the shortest chain of links from SOURCE to TARGET."""

    def render(data: list[str]) -> None:
        if not data:
            click.echo(f"No path from {source} to {target}.")
        else:
            click.echo(" -> ".join(data))

    result = _execute(ctx, lambda vault: vault.graph.find_shortest_path(source, target))
    _emit_result(result, as_json, render)


@cli.command()
@json_option
@click.pass_context
def stats(ctx: click.Context, as_json: bool):
    """Show link graph statistics."""

    def render(data) -> None:
        click.echo(f"Notes:               {data.total_notes}")
        click.echo(f"Links:               {data.total_links}")
        click.echo(f"Orphaned notes:      {data.orphaned_notes}")
        click.echo(f"Average connections: {data.average_connections:.2f}")
        if data.most_connected_notes:
            click.echo("\nMost connected:")
            for note in data.most_connected_notes:
                click.echo(f"  {note.path} ({note.connections})")

    result = _execute(ctx, lambda vault: vault.graph.get_graph_statistics())
    _emit_result(result, as_json, render)


@cli.command("broken-links")
@json_option
@click.pass_context
def broken_links(ctx: click.Context, as_json: bool):
    """List links whose target note does not exist."""

    def render(data: list) -> None:
        if not data:
            click.echo("No broken links.")
            return
        rows = [{"source": link.source, "target": link.target, "kind": link.kind} for link in data]
        click.echo(format_table(rows, ["source", "target", "kind"]))

    result = _execute(ctx, lambda vault: vault.graph.find_broken_links())
    _emit_result(result, as_json, render)


@cli.command()
@json_option
@click.pass_context
def clusters(ctx: click.Context, as_json: bool):
    """List groups of notes connected by links, largest first."""

    def render(data: list[list[str]]) -> None:
        if not data:
            click.echo("No clusters found.")
            return
        for i, cluster in enumerate(data, start=1):
            click.echo(f"Cluster {i} ({len(cluster)} notes):")
            for path in cluster:
                click.echo(f"  {path}")

    result = _execute(ctx, lambda vault: vault.graph.find_link_clusters())
    _emit_result(result, as_json, render)


# ─────────────────────────────────────────────────────────────────────────────
# Similarity and Search Commands
# ─────────────────────────────────────────────────────────────────────────────


@cli.command()
@click.option("--threshold", type=float, default=None, help="Minimum similarity (default 0.8)")
@click.option("--content/--no-content", "check_content", default=True, help="Compare note contents")
@click.option("--titles/--no-titles", "check_titles", default=True, help="Compare file names")
@json_option
@click.pass_context
def duplicates(ctx: click.Context, threshold: float | None, check_content: bool, check_titles: bool, as_json: bool):
    """Find groups of near-duplicate notes."""

    def render(data: list) -> None:
        if not data:
            click.echo("No duplicates found.")
            return
        for group in data:
            click.echo(f"{group.type} similarity {group.similarity:.2f}:")
            for path in group.paths:
                click.echo(f"  {path}")

    result = _execute(
        ctx,
        lambda vault: vault.duplicates.find_duplicate_notes(
            threshold=threshold, check_content=check_content, check_titles=check_titles
        ),
    )
    _emit_result(result, as_json, render)


@cli.command()
@click.argument("path")
@click.option("--limit", "-n", type=int, default=10, show_default=True)
@click.option("--min-similarity", type=float, default=0.3, show_default=True)
@json_option
@click.pass_context
def similar(ctx: click.Context, path: str, limit: int, min_similarity: float, as_json: bool):
    """Find notes similar to PATH."""

    def render(data: list) -> None:
        if not data:
            click.echo("No similar notes found.")
            return
        rows = [{"path": n.path, "similarity": f"{n.similarity:.2f}", "type": n.type} for n in data]
        click.echo(format_table(rows, ["path", "similarity", "type"]))

    result = _execute(
        ctx,
        lambda vault: vault.duplicates.find_similar_notes(path, limit=limit, min_similarity=min_similarity),
    )
    _emit_result(result, as_json, render)


@cli.command()
@click.argument("query")
@click.option("--case-sensitive", is_flag=True)
@click.option("--whole-word", is_flag=True)
@click.option("--regex", is_flag=True, help="Treat QUERY as a regular expression")
@click.option("--limit", "-n", type=int, default=50, show_default=True, help="Max notes to show")
@json_option
@click.pass_context
def search(
    ctx: click.Context,
    query: str,
    case_sensitive: bool,
    whole_word: bool,
    regex: bool,
    limit: int,
    as_json: bool,
):
    """Search note text line by line.

    \b
    Examples:
      ng search "deploy"
      ng search "TODO|FIXME" --regex
    """

    def render(data: list) -> None:
        if not data:
            click.echo("No matches.")
            return
        for hit in data:
            for match in hit.matches:
                click.echo(f"{hit.path}:{match.line_number}: {match.line}")

    result = _execute(
        ctx,
        lambda vault: vault.search_text(
            query, case_sensitive=case_sensitive, whole_word=whole_word, regex=regex, limit=limit
        ),
    )
    _emit_result(result, as_json, render)


@cli.command()
@click.argument("tags", nargs=-1, required=True)
@click.option("--all", "match_all", is_flag=True, help="Require every tag")
@json_option
@click.pass_context
def tags(ctx: click.Context, tags: tuple[str, ...], match_all: bool, as_json: bool):
    """List notes tagged with any (or --all) of TAGS."""

    def render(data: list) -> None:
        if not data:
            click.echo("No notes found.")
            return
        rows = [{"path": n.path, "title": n.title, "tags": ", ".join(n.tags)} for n in data]
        click.echo(format_table(rows, ["path", "title", "tags"]))

    result = _execute(ctx, lambda vault: vault.search_by_tags(list(tags), match_all=match_all))
    _emit_result(result, as_json, render)


@cli.command("all-tags")
@json_option
@click.pass_context
def all_tags(ctx: click.Context, as_json: bool):
    """List every tag in the vault with its note count."""

    def render(data: list) -> None:
        if not data:
            click.echo("No tags found.")
            return
        rows = [{"tag": t.tag, "notes": t.count} for t in data]
        click.echo(format_table(rows, ["tag", "notes"]))

    result = _execute(ctx, lambda vault: vault.get_all_tags())
    _emit_result(result, as_json, render)


# ─────────────────────────────────────────────────────────────────────────────
# Vault Commands
# ─────────────────────────────────────────────────────────────────────────────


@cli.command()
@click.argument("paths", nargs=-1, required=True)
@json_option
@click.pass_context
def read(ctx: click.Context, paths: tuple[str, ...], as_json: bool):
    """Print one or more notes.

    Notes that cannot be read are reported on stderr; the rest are printed.
    """

    def render(data: list) -> None:
        for index, doc in enumerate(data):
            if index:
                click.echo()
            click.echo(f"==> {doc.path} <==")
            click.echo(doc.content.rstrip("\n"))

    result = _execute(ctx, lambda vault: vault.read_notes(list(paths)))
    _emit_result(result, as_json, render)


@cli.command()
@click.argument("old_path")
@click.argument("new_path")
@click.option("--update-links/--no-update-links", default=True, show_default=True)
@json_option
@click.pass_context
def rename(ctx: click.Context, old_path: str, new_path: str, update_links: bool, as_json: bool):
    """Rename OLD_PATH to NEW_PATH and rewrite links to it."""

    def render(data) -> None:
        click.echo(f"Renamed {data.old_path} -> {data.new_path}")
        if data.updated_notes:
            click.echo(f"Updated links in {len(data.updated_notes)} note(s):")
            for path in data.updated_notes:
                click.echo(f"  {path}")

    result = _execute(ctx, lambda vault: vault.rename_note(old_path, new_path, update_links=update_links))
    _emit_result(result, as_json, render)


@cli.command("vault-stats")
@json_option
@click.pass_context
def vault_stats(ctx: click.Context, as_json: bool):
    """Show file, folder, tag and link totals."""

    def render(data) -> None:
        click.echo(f"Notes:   {data.total_notes}")
        click.echo(f"Folders: {data.total_folders}")
        click.echo(f"Size:    {data.total_size} bytes")
        click.echo(f"Tags:    {data.total_tags}")
        click.echo(f"Links:   {data.total_links}")
        if data.file_types:
            types = ", ".join(f"{ext}: {count}" for ext, count in sorted(data.file_types.items()))
            click.echo(f"Types:   {types}")

    result = _execute(ctx, lambda vault: vault.get_vault_statistics())
    _emit_result(result, as_json, render)


@cli.command()
@click.option("--fix-links/--no-fix-links", default=True, show_default=True, help="Strip broken links")
@click.option("--remove-orphans", is_flag=True, help="Delete notes with no links")
@click.option("--apply", is_flag=True, help="Make changes (default is a dry run)")
@json_option
@click.pass_context
def cleanup(ctx: click.Context, fix_links: bool, remove_orphans: bool, apply: bool, as_json: bool):
    """Remove orphaned notes and strip broken links.

    Nothing is changed unless --apply is given.
    """

    def render(data) -> None:
        verb = "Would remove" if data.dry_run else "Removed"
        for path in data.orphans_removed:
            click.echo(f"{verb} orphan: {path}")
        verb = "Would fix" if data.dry_run else "Fixed"
        for link in data.links_fixed:
            click.echo(f"{verb} link in {link.source}: {link.target}")
        if not data.orphans_removed and not data.links_fixed:
            click.echo("Nothing to clean up.")

    result = _execute(
        ctx,
        lambda vault: vault.cleanup_vault(
            fix_broken_links=fix_links, remove_orphans=remove_orphans, dry_run=not apply
        ),
    )
    _emit_result(result, as_json, render)


def main():
    cli()


if __name__ == "__main__":
    main()
