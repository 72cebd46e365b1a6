"""GrimoireConfig: where the prompt files and the index live.

Default layout (all relative to the store root):

    grimoire.toml         # config (optional)
    prompts/              # live prompt files, <id>.md (source of truth)
    archive/              # soft-deleted prompt files
    .index/
        grimoire.db       # SQLite derived cache, safe to delete
        errors.log        # warnings and errors from every run
        .gitignore        # auto-written: ignores everything in .index/

The root is the explicit argument, else $GRIMOIRE_HOME, else the nearest
directory above cwd holding grimoire.toml, else ~/.grimoire.

grimoire.toml example:

    [grimoire]
    name = "my-prompts"
    # prompts_dir = "prompts"
    # archive_dir = "archive"
    # index_dir = ".index"

    [search]
    limit = 50

    [watcher]
    poll_interval = 1.0
    debounce_ms = 150

    [logging]
    level = "INFO"
"""

from __future__ import annotations

import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from grimoire.errors import ValidationError

CONFIG_FILENAME = "grimoire.toml"
ENV_HOME = "GRIMOIRE_HOME"
_DEFAULT_HOME = "~/.grimoire"
_DEFAULT_PROMPTS_DIR = "prompts"
_DEFAULT_ARCHIVE_DIR = "archive"
_DEFAULT_INDEX_DIR = ".index"
_GITIGNORE_CONTENT = "*\n"


@dataclass
class SearchConfig:
    limit: int = 50


@dataclass
class WatcherConfig:
    poll_interval: float = 1.0    # seconds, polling fallback only
    debounce_ms: int = 150


@dataclass
class LoggingConfig:
    level: str = "INFO"


@dataclass
class GrimoireConfig:
    """Resolved configuration for one prompt store."""

    root: Path
    name: str = ""
    prompts_dir: Path = field(default_factory=Path)
    archive_dir: Path = field(default_factory=Path)
    index_dir: Path = field(default_factory=Path)
    search: SearchConfig = field(default_factory=SearchConfig)
    watcher: WatcherConfig = field(default_factory=WatcherConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @property
    def db_path(self) -> Path:
        return self.index_dir / "grimoire.db"

    @property
    def log_path(self) -> Path:
        return self.index_dir / "errors.log"

    def ensure_dirs(self) -> None:
        """Create the store directories if they don't exist."""
        self.prompts_dir.mkdir(parents=True, exist_ok=True)
        self.archive_dir.mkdir(parents=True, exist_ok=True)
        self.index_dir.mkdir(parents=True, exist_ok=True)
        gitignore = self.index_dir / ".gitignore"
        if not gitignore.exists():
            gitignore.write_text(_GITIGNORE_CONTENT)


def _section(raw: dict[str, Any], name: str) -> dict[str, Any]:
    value = raw.get(name, {})
    if not isinstance(value, dict):
        msg = f"{CONFIG_FILENAME}: [{name}] must be a table"
        raise ValidationError(msg, field=name)
    return value


def load_config(root: Path | str | None = None) -> GrimoireConfig:
    """Load grimoire.toml from the resolved root. A missing file means defaults."""
    root_path = resolve_root(root)
    config_path = root_path / CONFIG_FILENAME

    raw: dict[str, Any] = {}
    if config_path.exists():
        try:
            with config_path.open("rb") as f:
                raw = tomllib.load(f)
        except tomllib.TOMLDecodeError as exc:
            msg = f"{config_path}: {exc}"
            raise ValidationError(msg) from exc

    main = _section(raw, "grimoire")
    srch = _section(raw, "search")
    watch = _section(raw, "watcher")
    logs = _section(raw, "logging")

    try:
        return GrimoireConfig(
            root=root_path,
            name=str(main.get("name", root_path.name)),
            prompts_dir=root_path / main.get("prompts_dir", _DEFAULT_PROMPTS_DIR),
            archive_dir=root_path / main.get("archive_dir", _DEFAULT_ARCHIVE_DIR),
            index_dir=root_path / main.get("index_dir", _DEFAULT_INDEX_DIR),
            search=SearchConfig(limit=int(srch.get("limit", 50))),
            watcher=WatcherConfig(
                poll_interval=float(watch.get("poll_interval", 1.0)),
                debounce_ms=int(watch.get("debounce_ms", 150)),
            ),
            logging=LoggingConfig(level=str(logs.get("level", "INFO")).upper()),
        )
    except (TypeError, ValueError) as exc:
        msg = f"{config_path}: {exc}"
        raise ValidationError(msg) from exc


def resolve_root(root: Path | str | None = None) -> Path:
    if root:
        return Path(root).expanduser().resolve()
    env = os.environ.get(ENV_HOME)
    if env:
        return Path(env).expanduser().resolve()
    found = _find_root(Path.cwd())
    if found is not None:
        return found
    return Path(_DEFAULT_HOME).expanduser()


def _find_root(start: Path) -> Path | None:
    """Walk upward from start looking for grimoire.toml."""
    for directory in (start, *start.parents):
        if (directory / CONFIG_FILENAME).exists():
            return directory
    return None


def init_config(root: Path, name: str | None = None) -> Path:
    """Write a default grimoire.toml at root. Raises if already exists."""
    config_path = root / CONFIG_FILENAME
    if config_path.exists():
        msg = f"{CONFIG_FILENAME} already exists at {config_path}"
        raise FileExistsError(msg)

    store_name = name or root.name
    content = f"""\
[grimoire]
name = "{store_name}"
# prompts_dir = "prompts"   # default
# archive_dir = "archive"   # default
# index_dir = ".index"      # default, derived cache: safe to delete

# [search]
# limit = 50                # max results per search

# [watcher]
# poll_interval = 1.0       # seconds, used when inotify is unavailable
# debounce_ms = 150         # collapse editor save bursts into one sync

# [logging]
# level = "INFO"            # errors.log in index_dir always gets WARNING and up
"""
    root.mkdir(parents=True, exist_ok=True)
    config_path.write_text(content)
    return config_path
