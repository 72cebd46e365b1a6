"""FileStore: atomic writes, listing, read failures."""

from __future__ import annotations

import pytest

from grimoire.errors import NotReadableError, StorageIOError, ValidationError
from grimoire.hashing import content_hash

from .conftest import T0


def test_write_then_load(store, make_file):
    path = make_file("Coding Assistant", "You are a careful engineer.\n", tags=["coding"])
    fm, body = store.load(path)
    assert fm.name == "Coding Assistant"
    assert fm.tags == ["coding"]
    assert fm.created == T0
    assert body == "You are a careful engineer.\n"
    assert store.hash(body) == content_hash(body)


def test_path_layout(store):
    assert store.path_for("abc") == store.prompts_dir / "abc.md"
    assert store.archive_path_for("abc") == store.archive_dir / "abc.md"


def test_write_leaves_no_temp_file(store, make_file):
    path = make_file("A")
    assert sorted(p.name for p in store.prompts_dir.iterdir()) == [path.name]


def test_write_overwrites(store, make_file):
    path = make_file("A", "one\n")
    header, _ = store.read(path)
    store.write(path, header, "two\n")
    assert store.read(path)[1] == "two\n"


def test_crlf_body_is_kept_byte_for_byte(store, make_file):
    path = make_file("A", "line one\r\nline two\r\n")
    _, body = store.read(path)
    assert body == "line one\r\nline two\r\n"
    assert b"\r\n" in path.read_bytes()


def test_list_only_sees_prompt_files(store, make_file):
    a = make_file("A")
    b = make_file("B")
    (store.prompts_dir / "notes.txt").write_text("x")
    (store.prompts_dir / ".hidden.md").write_text("x")
    (store.prompts_dir / "sub").mkdir()
    assert sorted(store.list()) == sorted([a, b])
    assert store.list_archived() == []


def test_read_missing_file(store):
    with pytest.raises(NotReadableError) as exc_info:
        store.read(store.path_for("nope"))
    assert isinstance(exc_info.value, StorageIOError)
    assert exc_info.value.code == "not_readable"


def test_read_non_utf8(store):
    path = store.path_for("bad")
    path.write_bytes(b"---\nname: \xff\xfe\n---\n")
    with pytest.raises(NotReadableError, match="UTF-8"):
        store.read(path)


def test_read_unterminated_header_names_the_file(store):
    path = store.path_for("open")
    path.write_text("---\nid: open\nname: x\n")
    with pytest.raises(NotReadableError, match="open.md"):
        store.read(path)


def test_load_validates_header(store):
    path = store.path_for("noid")
    path.write_text("---\nname: x\n---\nbody\n")
    header, body = store.read(path)
    assert header == {"name": "x"}
    with pytest.raises(ValidationError):
        store.load(path)


def test_remove(store, make_file):
    path = make_file("A")
    store.remove(path)
    assert not path.exists()
    assert store.list() == []
    with pytest.raises(NotReadableError):
        store.remove(path)
