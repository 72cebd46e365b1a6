"""grimoire.toml loading, root resolution and app wiring."""

from __future__ import annotations

import pytest

from grimoire.app import Grimoire
from grimoire.config import CONFIG_FILENAME, init_config, load_config, resolve_root
from grimoire.errors import ValidationError


def test_defaults_without_config_file(tmp_path):
    cfg = load_config(tmp_path)
    assert cfg.root == tmp_path.resolve()
    assert cfg.name == tmp_path.name
    assert cfg.prompts_dir == cfg.root / "prompts"
    assert cfg.archive_dir == cfg.root / "archive"
    assert cfg.db_path == cfg.root / ".index" / "grimoire.db"
    assert cfg.log_path == cfg.root / ".index" / "errors.log"
    assert cfg.search.limit == 50
    assert cfg.watcher.debounce_ms == 150


def test_config_file_overrides(tmp_path):
    (tmp_path / CONFIG_FILENAME).write_text(
        '[grimoire]\nname = "mine"\nprompts_dir = "p"\nindex_dir = "idx"\n'
        "[search]\nlimit = 5\n"
        "[watcher]\npoll_interval = 0.5\n"
        '[logging]\nlevel = "debug"\n'
    )
    cfg = load_config(tmp_path)
    assert cfg.name == "mine"
    assert cfg.prompts_dir == cfg.root / "p"
    assert cfg.db_path == cfg.root / "idx" / "grimoire.db"
    assert cfg.search.limit == 5
    assert cfg.watcher.poll_interval == 0.5
    assert cfg.logging.level == "DEBUG"


def test_bad_config_is_a_validation_error(tmp_path):
    (tmp_path / CONFIG_FILENAME).write_text("[grimoire\n")
    with pytest.raises(ValidationError):
        load_config(tmp_path)

    (tmp_path / CONFIG_FILENAME).write_text('[search]\nlimit = "lots"\n')
    with pytest.raises(ValidationError):
        load_config(tmp_path)


def test_root_resolution(tmp_path, monkeypatch):
    nested = tmp_path / "a" / "b"
    nested.mkdir(parents=True)
    (tmp_path / CONFIG_FILENAME).write_text("")
    monkeypatch.delenv("GRIMOIRE_HOME", raising=False)
    monkeypatch.chdir(nested)
    assert resolve_root() == tmp_path.resolve()

    home = tmp_path / "home"
    monkeypatch.setenv("GRIMOIRE_HOME", str(home))
    assert resolve_root() == home.resolve()
    assert resolve_root(tmp_path / "explicit") == (tmp_path / "explicit").resolve()


def test_init_config(tmp_path):
    path = init_config(tmp_path, name="lib")
    assert load_config(tmp_path).name == "lib"
    with pytest.raises(FileExistsError):
        init_config(tmp_path)
    assert path.name == CONFIG_FILENAME


def test_open_creates_dirs_and_migrates(tmp_path):
    cfg = load_config(tmp_path)
    with Grimoire.open(cfg) as g:
        assert cfg.prompts_dir.is_dir()
        assert cfg.archive_dir.is_dir()
        assert (cfg.index_dir / ".gitignore").read_text() == "*\n"
        assert g.index.schema_version() >= 3
        p = g.prompts.create("A", "body")
        assert g.prompts.get_by_id(p.id).content == "body"


def test_index_is_rebuildable_from_files(tmp_path):
    cfg = load_config(tmp_path)
    with Grimoire.open(cfg) as g:
        g.prompts.create("Coding Assistant", "code review\n", tags=["coding"])
        g.prompts.create("Writing Helper", "essays\n", tags=["writing"])

    for f in cfg.index_dir.glob("grimoire.db*"):
        f.unlink()

    with Grimoire.open(cfg) as g:
        assert g.prompts.get_all() == []
        result = g.indexer.full_sync()
        assert result.created == 2
        assert [p.name for p in g.prompts.find_by_tags(["coding"])] == ["Coding Assistant"]
