"""ArchiveService: list, restore, purge."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from grimoire.errors import DuplicateNameError, NotFoundError, StorageIOError


def test_list_archived(prompts, archive):
    a = prompts.create("A", "a")
    b = prompts.create("B", "b")
    prompts.create("C", "c")
    prompts.delete(a.id)
    prompts.delete(b.id)

    items = archive.list()
    assert [i.name for i in items] == ["B", "A"]
    assert all(i.archived_at is not None for i in items)
    assert {i.id for i in items} == {a.id, b.id}


def test_archived_prompts_are_invisible(prompts, archive):
    p = prompts.create("Hidden", "secret words\n", tags=["gone"])
    prompts.delete(p.id)
    assert prompts.get_all() == []
    assert prompts.search("secret") == []
    assert prompts.find_by_tags(["gone"]) == []


def test_restore(prompts, archive, indexer, store):
    p = prompts.create("A", "body\n", tags=["t"])
    prompts.delete(p.id)

    restored = archive.restore(p.id)
    assert restored.id == p.id
    assert restored.content == "body\n"
    assert restored.version == 1
    fm, _ = store.load(store.path_for(p.id))
    assert fm.archived_at is None
    assert archive.list() == []
    assert prompts.find_by_tags(["t"])[0].id == p.id
    assert indexer.check_integrity().is_valid


def test_restore_unknown(archive):
    with pytest.raises(NotFoundError):
        archive.restore("nope")


def test_restore_name_collision(prompts, archive, store):
    p = prompts.create("A", "old")
    prompts.delete(p.id)
    prompts.create("A", "new")

    with pytest.raises(DuplicateNameError):
        archive.restore(p.id)
    assert store.exists(store.archive_path_for(p.id))


def test_failed_restore_keeps_the_archived_copy(prompts, archive, store, monkeypatch):
    p = prompts.create("A", "body\n")
    prompts.delete(p.id)

    def fail(*args, **kwargs):
        raise StorageIOError("disk full")

    monkeypatch.setattr(store, "write", fail)
    with pytest.raises(StorageIOError):
        archive.restore(p.id)
    monkeypatch.undo()

    assert [i.id for i in archive.list()] == [p.id]
    assert store.list() == []
    assert archive.restore(p.id).content == "body\n"


def test_purge_all(prompts, archive, store):
    for name in ("A", "B"):
        prompts.delete(prompts.create(name, "x").id)
    assert archive.purge() == 2
    assert store.list_archived() == []


def test_purge_older_than(prompts, archive, store):
    old = prompts.create("Old", "x")
    new = prompts.create("New", "y")
    prompts.delete(old.id)
    prompts.delete(new.id)

    path = store.archive_path_for(old.id)
    fm, body = store.load(path)
    fm.archived_at = datetime.now(UTC) - timedelta(days=60)
    store.write(path, fm, body)

    assert archive.purge(datetime.now(UTC) - timedelta(days=30)) == 1
    assert [i.name for i in archive.list()] == ["New"]
