"""Watcher: change detection and the handlers it drives."""

from __future__ import annotations

import threading
import time

from grimoire import watcher
from grimoire.config import load_config


def _ids(index):
    return {r["id"] for r in index.query("SELECT id FROM prompts")}


def test_scan_reports_new_changed_and_deleted(indexer, store, make_file):
    seen: dict = {}
    a = make_file("A")
    changed, deleted = watcher.scan(indexer, seen)
    assert changed == {a}
    assert not deleted

    assert watcher.scan(indexer, seen) == (set(), False)

    b = make_file("B")
    (store.prompts_dir / ".a.md.tmp").write_text("partial")
    changed, deleted = watcher.scan(indexer, seen)
    assert changed == {b}

    a.unlink()
    changed, deleted = watcher.scan(indexer, seen)
    assert changed == set()
    assert deleted


def test_apply_changes_syncs_files(indexer, index, make_file):
    a = make_file("A")
    b = make_file("B")
    watcher.apply_changes(indexer, {a, b})
    assert _ids(index) == {a.stem, b.stem}


def test_apply_changes_on_delete_runs_full_sync(indexer, index, make_file):
    a = make_file("A")
    b = make_file("B")
    indexer.full_sync()
    a.unlink()
    watcher.apply_changes(indexer, set(), deleted=True)
    assert _ids(index) == {b.stem}


def test_apply_changes_logs_and_continues(indexer, index, store, make_file, caplog):
    bad = store.prompts_dir / "bad.md"
    bad.write_text("---\nname: no id\n---\n")
    good = make_file("Good")
    with caplog.at_level("ERROR", logger="grimoire.watcher"):
        watcher.apply_changes(indexer, {bad, good})
    assert _ids(index) == {good.stem}
    assert "bad.md" in caplog.text


def test_is_prompt_name():
    assert watcher._is_prompt_name("abc.md")
    assert not watcher._is_prompt_name(".abc.md.tmp")
    assert not watcher._is_prompt_name(".abc.md")
    assert not watcher._is_prompt_name("notes.txt")
    assert not watcher._is_prompt_name("")


def _wait_for(predicate, timeout: float = 5.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.02)
    return False


def test_poll_loop_tracks_files(tmp_path, index, make_file):
    # `index` is a second connection to the same db file the watcher writes
    cfg = load_config(tmp_path)
    cfg.watcher.poll_interval = 0.05
    early = make_file("Before Start")
    stop = threading.Event()
    thread = threading.Thread(target=watcher.run, args=(cfg,), kwargs={"stop": stop, "force_poll": True})
    thread.start()
    try:
        assert _wait_for(lambda: _ids(index) == {early.stem})
        late = make_file("While Watching")
        assert _wait_for(lambda: _ids(index) == {early.stem, late.stem})
        early.unlink()
        assert _wait_for(lambda: _ids(index) == {late.stem})
    finally:
        stop.set()
        thread.join(timeout=5)
    assert not thread.is_alive()
