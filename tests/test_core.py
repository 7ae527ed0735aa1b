"""Tests for the Vault service in core.py."""

import pytest

from conftest import create_note
from notegraph.config import LARGE_FILE_MAX_MATCHES, NotegraphSettings
from notegraph.core import Vault
from notegraph.errors import InvalidQueryError, NoteExistsError, NoteNotFoundError
from notegraph.graph import GraphState


# ─────────────────────────────────────────────────────────────────────────────
# Single-note operations
# ─────────────────────────────────────────────────────────────────────────────


class TestNotes:
    @pytest.mark.asyncio
    async def test_read_note(self, tmp_vault, vault):
        create_note(tmp_vault, "a.md", "Body [[b]] #z", title="T", tags=["x", "y"])
        doc = await vault.read_note("a")

        assert doc.path == "a.md"
        assert doc.title == "T"
        assert doc.body == "Body [[b]] #z"
        assert doc.tags == ["x", "y", "z"]
        assert doc.frontmatter.tags == ["x", "y"]
        assert [link.target for link in doc.links] == ["b"]

    @pytest.mark.asyncio
    async def test_read_missing(self, vault):
        with pytest.raises(NoteNotFoundError):
            await vault.read_note("ghost")

    @pytest.mark.asyncio
    async def test_read_notes_reports_failures(self, tmp_vault, vault):
        create_note(tmp_vault, "a.md", "first", title="A")
        create_note(tmp_vault, "b.md", "second")

        result = await vault.read_notes(["b", "ghost", "a.md"])

        assert [doc.path for doc in result.data] == ["b.md", "a.md"]
        assert result.data[1].title == "A"
        assert [(e.path, e.operation) for e in result.errors] == [("ghost", "read_notes")]
        assert result.metadata.model_dump() == {"total_processed": 3, "success_count": 2, "error_count": 1}

    @pytest.mark.asyncio
    async def test_write_note_with_frontmatter(self, tmp_vault, vault):
        key = await vault.write_note("new", "Hello", frontmatter={"title": "New"})

        assert key == "new.md"
        assert (tmp_vault / "new.md").read_text(encoding="utf-8").startswith("---\n")
        doc = await vault.read_note("new.md")
        assert doc.title == "New"
        assert doc.body == "Hello"

    @pytest.mark.asyncio
    async def test_write_without_overwrite(self, tmp_vault, vault):
        create_note(tmp_vault, "a.md", "original")

        with pytest.raises(NoteExistsError):
            await vault.write_note("a.md", "replacement", overwrite=False)
        assert (tmp_vault / "a.md").read_text(encoding="utf-8") == "original"

    @pytest.mark.asyncio
    async def test_update_frontmatter(self, tmp_vault, vault):
        create_note(tmp_vault, "a.md", "Keep this body", title="T", tags=["x"])
        fm = await vault.update_frontmatter("a.md", {"status": "done"}, remove=["tags"])

        assert fm.title == "T"
        assert fm.tags == []
        assert fm.extra_fields == {"status": "done"}
        doc = await vault.read_note("a.md")
        assert doc.body == "Keep this body"
        assert "tags" not in doc.content

    @pytest.mark.asyncio
    async def test_delete_note_invalidates_graph(self, linked_vault, vault):
        assert (await vault.graph.get_backlinks("a.md")).data == ["b.md"]

        await vault.delete_note("b.md")
        assert vault.graph.state is GraphState.STALE
        assert (await vault.graph.get_backlinks("a.md")).data == []


# ─────────────────────────────────────────────────────────────────────────────
# Rename
# ─────────────────────────────────────────────────────────────────────────────


class TestRename:
    @pytest.mark.asyncio
    async def test_rename_rewrites_links(self, tmp_vault, vault):
        create_note(tmp_vault, "old.md", "I am old")
        create_note(tmp_vault, "other.md", "See [[old]] for details")

        # Prime the content cache and the graph
        await vault.read_note("old.md")
        assert (await vault.graph.get_forward_links("other.md")).data == ["old.md"]

        result = await vault.rename_note("old.md", "new.md")

        content = (tmp_vault / "other.md").read_text(encoding="utf-8")
        assert "[[new]]" in content
        assert "[[old]]" not in content
        assert result.data.updated_notes == ["other.md"]
        assert not vault.content_cache.has("old.md")
        assert (await vault.graph.get_forward_links("other.md")).data == ["new.md"]

    @pytest.mark.asyncio
    async def test_rename_into_folder_keeps_suffix_and_anchor(self, tmp_vault, vault):
        create_note(tmp_vault, "old.md", "x")
        create_note(tmp_vault, "other.md", "[[old|Old note]] and [see](old.md#sec)", title="Other")

        await vault.rename_note("old", "archive/new")

        content = (tmp_vault / "other.md").read_text(encoding="utf-8")
        assert content.startswith("---\ntitle: Other\n---\n")
        assert "[[archive/new|Old note]]" in content
        assert "[see](archive/new.md#sec)" in content

    @pytest.mark.asyncio
    async def test_rename_from_nested_referrer(self, tmp_vault, vault):
        create_note(tmp_vault, "old.md", "x")
        create_note(tmp_vault, "dir/ref.md", "[[../old]]")

        await vault.rename_note("old.md", "new.md")

        assert (tmp_vault / "dir/ref.md").read_text(encoding="utf-8") == "[[../new]]"

    @pytest.mark.asyncio
    async def test_rename_rewrites_links_back_to_itself(self, tmp_vault, vault):
        create_note(tmp_vault, "old.md", "See [[old#Top]] above. Also [[sib]] and [here](#top).")
        create_note(tmp_vault, "sib.md", "sibling")

        result = await vault.rename_note("old.md", "new.md")

        content = (tmp_vault / "new.md").read_text(encoding="utf-8")
        assert content == "See [[new#Top]] above. Also [[sib]] and [here](#top)."
        assert result.data.updated_notes == ["new.md"]
        assert (await vault.graph.find_broken_links()).data == []

    @pytest.mark.asyncio
    async def test_moved_note_keeps_its_relative_links(self, tmp_vault, vault):
        create_note(tmp_vault, "old.md", "[[sib]], [S](sib.md#part), [[/top]] and [[old]]")
        create_note(tmp_vault, "sib.md")
        create_note(tmp_vault, "top.md")

        await vault.rename_note("old.md", "dir/moved.md")

        content = (tmp_vault / "dir/moved.md").read_text(encoding="utf-8")
        assert content == "[[../sib]], [S](../sib.md#part), [[/top]] and [[moved]]"
        assert (await vault.graph.get_forward_links("dir/moved.md")).data == ["sib.md", "top.md"]
        assert (await vault.graph.find_broken_links()).data == []

    @pytest.mark.asyncio
    async def test_rename_without_link_updates(self, tmp_vault, vault):
        create_note(tmp_vault, "old.md", "x")
        create_note(tmp_vault, "other.md", "[[old]]")

        result = await vault.rename_note("old.md", "new.md", update_links=False)

        assert result.data.updated_notes == []
        assert (tmp_vault / "other.md").read_text(encoding="utf-8") == "[[old]]"
        assert (tmp_vault / "new.md").exists()

    @pytest.mark.asyncio
    async def test_rename_errors(self, tmp_vault, vault):
        create_note(tmp_vault, "a.md")
        create_note(tmp_vault, "b.md")

        with pytest.raises(NoteExistsError):
            await vault.rename_note("a.md", "b.md")
        with pytest.raises(NoteNotFoundError):
            await vault.rename_note("ghost.md", "c.md")


# ─────────────────────────────────────────────────────────────────────────────
# Search
# ─────────────────────────────────────────────────────────────────────────────


class TestSearch:
    @pytest.mark.asyncio
    async def test_matches_with_context(self, tmp_vault, vault):
        create_note(tmp_vault, "a.md", "l1\nfoo here\nl3\nl4\nl5")
        result = await vault.search_text("FOO")

        assert len(result.data) == 1
        match = result.data[0].matches[0]
        assert match.line_number == 2
        assert match.line == "foo here"
        assert match.context == ["l1", "l3", "l4"]

    @pytest.mark.asyncio
    async def test_case_and_word_options(self, tmp_vault, vault):
        create_note(tmp_vault, "a.md", "Deploy\ndeployment")

        assert await _lines(vault, "deploy", case_sensitive=True) == ["deployment"]
        assert await _lines(vault, "deploy", whole_word=True) == ["Deploy"]
        assert await _lines(vault, r"^dep\w+t$", regex=True) == ["deployment"]

    @pytest.mark.asyncio
    async def test_invalid_queries(self, vault):
        with pytest.raises(InvalidQueryError):
            await vault.search_text("")
        with pytest.raises(InvalidQueryError):
            await vault.search_text("(unclosed", regex=True)

    @pytest.mark.asyncio
    async def test_results_cached_until_mutation(self, tmp_vault, vault):
        create_note(tmp_vault, "a.md", "needle")
        first = await vault.search_text("needle")
        assert len(vault.query_cache) == 1

        second = await vault.search_text("needle")
        assert second.model_dump() == first.model_dump()

        await vault.write_note("b.md", "another needle")
        assert len(vault.query_cache) == 0
        assert [hit.path for hit in (await vault.search_text("needle")).data] == ["a.md", "b.md"]

    @pytest.mark.asyncio
    async def test_limit(self, tmp_vault, vault):
        for i in range(3):
            create_note(tmp_vault, f"n{i}.md", "common")
        assert len((await vault.search_text("common", limit=2)).data) == 2

    @pytest.mark.asyncio
    async def test_large_notes_scanned_line_by_line(self, tmp_vault):
        vault = Vault(tmp_vault, NotegraphSettings(large_file_threshold=100))
        blocks = [f"before {i}\nneedle {i}\nafter {i}" for i in range(15)]
        create_note(tmp_vault, "big.md", "\n".join(blocks))

        result = await vault.search_text("needle")

        matches = result.data[0].matches
        assert len(matches) == LARGE_FILE_MAX_MATCHES
        assert matches[0].line_number == 2
        assert matches[0].context == ["before 0", "after 0", "before 1"]
        assert matches[-1].line == "needle 9"
        assert not vault.content_cache.has("big.md")

    @pytest.mark.asyncio
    async def test_search_by_tags(self, tmp_vault, vault):
        create_note(tmp_vault, "a.md", "#inline", tags=["x"])
        create_note(tmp_vault, "b.md", "", tags=["x", "y"])
        create_note(tmp_vault, "c.md", "untagged")

        any_x = await vault.search_by_tags(["#x"])
        assert [n.path for n in any_x.data] == ["a.md", "b.md"]
        both = await vault.search_by_tags(["x", "y"], match_all=True)
        assert [n.path for n in both.data] == ["b.md"]
        inline = await vault.search_by_tags(["inline"])
        assert inline.data[0].tags == ["inline", "x"]
        assert (await vault.search_by_tags([])).data == []

    @pytest.mark.asyncio
    async def test_get_all_tags(self, tmp_vault, vault):
        create_note(tmp_vault, "a.md", "#inline and #shared", tags=["x"])
        create_note(tmp_vault, "b.md", "#shared #shared", tags=["x"])
        create_note(tmp_vault, "c.md", "untagged")

        result = await vault.get_all_tags()

        assert [(t.tag, t.count) for t in result.data] == [("inline", 1), ("shared", 2), ("x", 2)]
        assert result.metadata.total_processed == 3


async def _lines(vault, query, **options) -> list[str]:
    result = await vault.search_text(query, **options)
    return [m.line for hit in result.data for m in hit.matches]


# ─────────────────────────────────────────────────────────────────────────────
# Maintenance
# ─────────────────────────────────────────────────────────────────────────────


class TestMaintenance:
    @pytest.mark.asyncio
    async def test_vault_statistics(self, tmp_vault, vault):
        create_note(tmp_vault, "a.md", "[[b]] #one", tags=["two"])
        create_note(tmp_vault, "dir/b.md", "plain")
        (tmp_vault / "dir/image.png").write_bytes(b"1234")

        stats = (await vault.get_vault_statistics()).data
        assert stats.total_notes == 2
        assert stats.total_folders == 1
        assert stats.file_types == {".md": 2, ".png": 1}
        assert stats.total_tags == 2
        assert stats.total_links == 1
        assert stats.largest_notes[0].path == "a.md"
        assert len(stats.recent_notes) == 3

    @pytest.mark.asyncio
    async def test_cleanup_dry_run_changes_nothing(self, tmp_vault, vault):
        create_note(tmp_vault, "a.md", "[[ghost|Ghost]] text")
        create_note(tmp_vault, "lonely.md", "nobody links here")

        result = await vault.cleanup_vault(remove_orphans=True)

        assert result.data.dry_run is True
        assert result.data.orphans_removed == ["lonely.md"]
        assert [link.target for link in result.data.links_fixed] == ["ghost"]
        assert (tmp_vault / "lonely.md").exists()
        assert "[[ghost|Ghost]]" in (tmp_vault / "a.md").read_text(encoding="utf-8")

    @pytest.mark.asyncio
    async def test_cleanup_apply(self, tmp_vault, vault):
        create_note(tmp_vault, "a.md", "[[ghost|Ghost]] text")
        create_note(tmp_vault, "lonely.md", "nobody links here")

        result = await vault.cleanup_vault(remove_orphans=True, dry_run=False)

        assert result.data.orphans_removed == ["lonely.md"]
        assert not (tmp_vault / "lonely.md").exists()
        assert (tmp_vault / "a.md").read_text(encoding="utf-8") == "Ghost text"
        assert (await vault.graph.find_broken_links()).data == []

    @pytest.mark.asyncio
    async def test_cleanup_keeps_heading_anchor_links(self, tmp_vault, vault):
        body = "# Intro\nJump to [[#Intro]] or [usage](#usage) or [[ghost]]\n## Usage"
        create_note(tmp_vault, "a.md", body)

        result = await vault.cleanup_vault(dry_run=False)

        assert [link.target for link in result.data.links_fixed] == ["ghost"]
        content = (tmp_vault / "a.md").read_text(encoding="utf-8")
        assert "[[#Intro]]" in content
        assert "[usage](#usage)" in content
        assert "[[ghost]]" not in content

    @pytest.mark.asyncio
    async def test_cache_stats(self, tmp_vault, vault):
        create_note(tmp_vault, "a.md", "abc")
        await vault.read_note("a.md")

        stats = vault.cache_stats()
        assert stats["content"].item_count == 1
        assert stats["content"].total_size == 3
        assert stats["query"].item_count == 0
