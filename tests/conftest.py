"""Shared test fixtures for the notegraph test suite.

Design:
- tmp_vault: isolated vault directory, exported as NOTEGRAPH_VAULT_ROOT
- vault: Vault service over tmp_vault with default settings
- create_note: helper for writing notes with optional frontmatter
"""

from pathlib import Path

import pytest
from click.testing import CliRunner

from notegraph.config import NotegraphSettings
from notegraph.core import Vault

_ENV_VARS = (
    "NOTEGRAPH_VAULT_ROOT",
    "NOTEGRAPH_FILE_CACHE_SIZE",
    "NOTEGRAPH_SEARCH_CACHE_SIZE",
    "NOTEGRAPH_MAX_CONCURRENT_READS",
)


def create_note(
    root: Path,
    path: str,
    body: str = "",
    title: str | None = None,
    tags: list[str] | None = None,
) -> Path:
    """Write a note under ``root``, with frontmatter when title or tags are given."""
    note = root / path
    note.parent.mkdir(parents=True, exist_ok=True)
    lines = []
    if title is not None or tags:
        lines.append("---")
        if title is not None:
            lines.append(f"title: {title}")
        if tags:
            lines.append(f"tags: [{', '.join(tags)}]")
        lines.append("---")
    lines.append(body)
    note.write_text("\n".join(lines), encoding="utf-8")
    return note


# ─────────────────────────────────────────────────────────────────────────────
# Core Fixtures
# ─────────────────────────────────────────────────────────────────────────────


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Keep the developer's environment out of the tests."""
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("NOTEGRAPH_LOG_LEVEL", "WARNING")


@pytest.fixture
def runner() -> CliRunner:
    """CLI runner with isolated environment."""
    return CliRunner()


@pytest.fixture
def tmp_vault(tmp_path: Path, monkeypatch) -> Path:
    """Create an empty vault directory and point NOTEGRAPH_VAULT_ROOT at it."""
    root = tmp_path / "vault"
    root.mkdir()
    monkeypatch.setenv("NOTEGRAPH_VAULT_ROOT", str(root))
    return root


@pytest.fixture
def vault(tmp_vault: Path) -> Vault:
    """Vault service over tmp_vault with default settings."""
    return Vault(tmp_vault, NotegraphSettings())


@pytest.fixture
def linked_vault(tmp_vault: Path) -> Path:
    """Three notes: a -> b, b -> c, b -> a."""
    create_note(tmp_vault, "a.md", "Start here, then [[b]].")
    create_note(tmp_vault, "b.md", "Go to [[c]] or back to [A](a.md).")
    create_note(tmp_vault, "c.md", "End of the chain.")
    return tmp_vault
