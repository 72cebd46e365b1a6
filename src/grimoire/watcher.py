"""Keep the index live while prompt files are edited outside grimoire.

    grimoire watch            (or: python -m grimoire.watcher ROOT)

On startup: one full_sync, so edits made while nothing was watching are
picked up.

Then, for the live prompts directory:
    created / written / moved in  -> sync_file(path)
    deleted / moved out           -> full_sync()

Events are debounced (debounce_ms, default 150) so an editor's save burst
triggers a single sync. Uses inotify_simple on Linux and falls back to
mtime polling if it is unavailable (macOS, some containers).
"""

from __future__ import annotations

import logging
import sys
import time
from pathlib import Path
from typing import TYPE_CHECKING

from grimoire.app import Grimoire
from grimoire.config import load_config
from grimoire.errors import GrimoireError
from grimoire.reader import PROMPT_SUFFIX

if TYPE_CHECKING:
    import threading

    from grimoire.config import GrimoireConfig
    from grimoire.indexer import Indexer

logger = logging.getLogger("grimoire.watcher")

_INOTIFY_TIMEOUT_MS = 1000


def _is_prompt_name(name: str) -> bool:
    # our own temp files are dotfiles: .<id>.md.tmp
    return bool(name) and name.endswith(PROMPT_SUFFIX) and not name.startswith(".")


def _stopped(stop: threading.Event | None) -> bool:
    return stop is not None and stop.is_set()


# ---------------------------------------------------------------------------
# Handlers
# ---------------------------------------------------------------------------

def apply_changes(indexer: Indexer, changed: set[Path], *, deleted: bool = False) -> None:
    """Re-index after a batch of file events. Errors are logged, never raised."""
    if deleted:
        try:
            indexer.full_sync()
        except GrimoireError:
            logger.exception("full sync failed")
        return

    for path in sorted(changed):
        if not path.is_file():
            continue
        try:
            outcome = indexer.sync_file(path)
        except GrimoireError:
            logger.exception("failed to index %s", path)
            continue
        if outcome != "unchanged":
            logger.info("%s: %s", outcome, path)


def startup_sync(indexer: Indexer) -> None:
    logger.info("startup: syncing %s", indexer.store.prompts_dir)
    result = indexer.full_sync()
    for path, error in result.errors.items():
        logger.warning("startup: %s: %s", path, error)
    logger.info("startup: index complete")


# ---------------------------------------------------------------------------
# inotify watcher
# ---------------------------------------------------------------------------

def watch_inotify(indexer: Indexer, *, debounce_ms: int = 150, stop: threading.Event | None = None) -> None:
    """Watch using inotify_simple (Linux). Blocks until stop is set."""
    import inotify_simple  # type: ignore[import]

    prompts_dir = indexer.store.prompts_dir
    inotify = inotify_simple.INotify()
    flags = inotify_simple.flags  # type: ignore[attr-defined]
    gone = flags.DELETE | flags.MOVED_FROM
    inotify.add_watch(str(prompts_dir), flags.CLOSE_WRITE | flags.MOVED_TO | gone)
    logger.info("inotify watching %s", prompts_dir)

    try:
        while not _stopped(stop):
            # read_delay: after the first event, wait for the burst to settle
            events = inotify.read(timeout=_INOTIFY_TIMEOUT_MS, read_delay=debounce_ms)
            changed: set[Path] = set()
            deleted = False
            for event in events:
                if not _is_prompt_name(event.name):
                    continue
                if event.mask & gone:
                    deleted = True
                else:
                    changed.add(prompts_dir / event.name)
            if changed or deleted:
                apply_changes(indexer, changed, deleted=deleted)
    finally:
        inotify.close()


# ---------------------------------------------------------------------------
# Polling fallback
# ---------------------------------------------------------------------------

def scan(indexer: Indexer, seen: dict[Path, float]) -> tuple[set[Path], bool]:
    """Diff the prompts directory against `seen` (path -> mtime) and update it.

    Returns (changed or new paths, whether any file disappeared).
    """
    current: dict[Path, float] = {}
    for path in indexer.store.list():
        try:
            current[path] = path.stat().st_mtime
        except OSError:
            continue
    changed = {p for p, mtime in current.items() if seen.get(p) != mtime}
    deleted = bool(seen.keys() - current.keys())
    seen.clear()
    seen.update(current)
    return changed, deleted


def watch_poll(indexer: Indexer, *, interval: float = 1.0, stop: threading.Event | None = None) -> None:
    """Polling fallback. Checks mtimes every interval seconds."""
    # Empty on entry: the first pass re-syncs every file, a no-op for unchanged ones
    seen: dict[Path, float] = {}
    logger.info("polling %s interval=%.1fs", indexer.store.prompts_dir, interval)

    while not _stopped(stop):
        changed, deleted = scan(indexer, seen)
        if changed or deleted:
            apply_changes(indexer, changed, deleted=deleted)
        if stop is not None:
            stop.wait(interval)
        else:
            time.sleep(interval)


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

def run(cfg: GrimoireConfig, *, stop: threading.Event | None = None, force_poll: bool = False) -> None:
    with Grimoire.open(cfg) as g:
        startup_sync(g.indexer)
        if not force_poll:
            try:
                watch_inotify(g.indexer, debounce_ms=cfg.watcher.debounce_ms, stop=stop)
                return
            except ImportError:
                logger.warning("inotify_simple not available, falling back to polling")
        watch_poll(g.indexer, interval=cfg.watcher.poll_interval, stop=stop)


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(name)s %(message)s")
    root = Path(sys.argv[1]) if len(sys.argv) > 1 else None
    run(load_config(root))
