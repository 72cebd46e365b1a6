"""MetadataIndex: migrations, transactions, error mapping."""

from __future__ import annotations

import pytest

from grimoire.db import MIGRATIONS, MetadataIndex
from grimoire.errors import IndexStoreError


def _insert_prompt(index, prompt_id="p1", file_path="/prompts/p1.md"):
    index.execute(
        "INSERT INTO prompts(id, name, content_hash, file_path, created_at, updated_at) "
        "VALUES (?, ?, ?, ?, ?, ?)",
        (prompt_id, prompt_id, "h", file_path, "2026-10-18T09:00:00+00:00", "2026-10-18T09:00:00+00:00"),
    )


def test_migrate_is_applied_once(tmp_path):
    index = MetadataIndex(tmp_path / "grimoire.db")
    assert index.schema_version() == 0
    assert index.migrate() == [m.version for m in MIGRATIONS]
    assert index.migrate() == []
    assert index.schema_version() == MIGRATIONS[-1].version
    index.close()

    reopened = MetadataIndex(tmp_path / "grimoire.db")
    assert reopened.migrate() == []
    reopened.close()


def test_schema_after_migrations(index):
    columns = {r["name"] for r in index.query("PRAGMA table_info(prompts)")}
    assert {"id", "name", "content_hash", "file_path", "version", "is_template",
            "is_favorite", "favorite_order", "is_pinned", "pin_order"} <= columns
    tables = {r["name"] for r in index.query("SELECT name FROM sqlite_master WHERE type = 'table'")}
    assert {"prompts", "tags", "prompt_tags", "prompts_fts", "schema_migrations"} <= tables


def test_tag_names_are_unique_ignoring_case(index):
    index.execute("INSERT INTO tags(name) VALUES ('JS')")
    with pytest.raises(IndexStoreError):
        index.execute("INSERT INTO tags(name) VALUES ('js')")
    assert index.query_one("SELECT name FROM tags WHERE name = 'js'")["name"] == "JS"


def test_tag_keys_are_casefolded_and_unique(index):
    assert index.query_one("SELECT casefold('ÉCLAIR') AS k")["k"] == "éclair"
    index.execute("INSERT INTO tags(name, name_key) VALUES ('Éclair', casefold('Éclair'))")
    with pytest.raises(IndexStoreError):
        index.execute("INSERT INTO tags(name, name_key) VALUES ('éclair', casefold('éclair'))")


def test_casefold_migration_merges_non_ascii_spellings(tmp_path):
    index = MetadataIndex(tmp_path / "grimoire.db")
    index.migrate(MIGRATIONS[:3])
    _insert_prompt(index, "p1", "/prompts/p1.md")
    _insert_prompt(index, "p2", "/prompts/p2.md")
    index.execute("INSERT INTO tags(name) VALUES ('Éclair'), ('éclair')")
    index.execute("INSERT INTO prompt_tags SELECT 'p1', id FROM tags WHERE name = 'Éclair'")
    index.execute("INSERT INTO prompt_tags SELECT 'p2', id FROM tags WHERE name = 'éclair'")

    assert index.migrate() == [4]
    [tag] = index.query("SELECT id, name, name_key FROM tags")
    assert (tag["name"], tag["name_key"]) == ("Éclair", "éclair")
    linked = index.query("SELECT prompt_id FROM prompt_tags WHERE tag_id = ? ORDER BY prompt_id", (tag["id"],))
    assert [r["prompt_id"] for r in linked] == ["p1", "p2"]
    index.close()


def test_sqlite_errors_carry_the_sql(index):
    with pytest.raises(IndexStoreError) as exc_info:
        index.query("SELECT * FROM no_such_table")
    assert exc_info.value.sql == "SELECT * FROM no_such_table"
    assert exc_info.value.code == "index"


def test_transaction_rolls_back_on_error(index):
    with pytest.raises(RuntimeError), index.transaction():
        _insert_prompt(index)
        raise RuntimeError("boom")
    assert index.query("SELECT id FROM prompts") == []


def test_nested_transaction_joins_outer(index):
    with pytest.raises(RuntimeError), index.transaction():
        _insert_prompt(index, "p1", "/prompts/p1.md")
        with index.transaction():
            _insert_prompt(index, "p2", "/prompts/p2.md")
        raise RuntimeError("boom")
    assert index.query("SELECT id FROM prompts") == []

    with index.transaction():
        with index.transaction():
            _insert_prompt(index, "p3", "/prompts/p3.md")
    assert [r["id"] for r in index.query("SELECT id FROM prompts")] == ["p3"]


def test_deleting_a_prompt_cascades_to_links(index):
    _insert_prompt(index)
    index.execute("INSERT INTO tags(name) VALUES ('coding')")
    index.execute("INSERT INTO prompt_tags(prompt_id, tag_id) VALUES ('p1', 1)")
    index.execute("DELETE FROM prompts WHERE id = 'p1'")
    assert index.query("SELECT * FROM prompt_tags") == []


def test_total_changes_counts_writes(index):
    before = index.total_changes
    index.query("SELECT * FROM prompts")
    assert index.total_changes == before
    _insert_prompt(index)
    assert index.total_changes == before + 1


def test_empty_db_file_is_rejected(tmp_path):
    db_path = tmp_path / "grimoire.db"
    db_path.touch()
    with pytest.raises(IndexStoreError, match="0 bytes"):
        MetadataIndex(db_path)


def test_memory_index():
    with MetadataIndex.memory() as index:
        index.migrate()
        _insert_prompt(index)
        assert index.query_one("SELECT COUNT(*) AS n FROM prompts")["n"] == 1
