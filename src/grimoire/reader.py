"""Read and write prompt Markdown files.

FileStore is the public API:
    store = FileStore("/path/to/prompts", "/path/to/archive")
    header, body = store.read(path)
    fm, body = store.load(path)              # validated Frontmatter
    store.write(store.path_for(fm.id), fm, body)

Layout:
    prompts/<id>.md     live prompts (source of truth)
    archive/<id>.md     soft-deleted prompts, same format plus archivedAt

Writes go to a sibling temp file under flock, then os.replace onto the
target, so a reader never sees a half-written prompt.
"""

from __future__ import annotations

import contextlib
import fcntl
import os
from pathlib import Path
from typing import Any

from grimoire import frontmatter
from grimoire.errors import NotReadableError, StorageIOError
from grimoire.hashing import content_hash
from grimoire.models import Frontmatter

PROMPT_SUFFIX = ".md"
_TMP_SUFFIX = ".tmp"


class FileStore:
    """Markdown-backed prompt store."""

    def __init__(self, prompts_dir: Path | str, archive_dir: Path | str) -> None:
        self.prompts_dir = Path(prompts_dir)
        self.archive_dir = Path(archive_dir)
        try:
            self.prompts_dir.mkdir(parents=True, exist_ok=True)
            self.archive_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            msg = f"Cannot create prompt directories under {self.prompts_dir.parent}: {exc}"
            raise StorageIOError(msg, self.prompts_dir) from exc

    # ------------------------------------------------------------------
    # Paths
    # ------------------------------------------------------------------

    def path_for(self, prompt_id: str) -> Path:
        return self.prompts_dir / f"{prompt_id}{PROMPT_SUFFIX}"

    def archive_path_for(self, prompt_id: str) -> Path:
        return self.archive_dir / f"{prompt_id}{PROMPT_SUFFIX}"

    def exists(self, path: Path | str) -> bool:
        return Path(path).is_file()

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    def read(self, path: Path | str) -> tuple[dict[str, Any], str]:
        """Return the raw header mapping and body of a prompt file."""
        path = Path(path)
        try:
            # newline="" keeps \r\n intact so the fingerprint sees the bytes on disk
            with path.open(encoding="utf-8", newline="") as f:
                text = f.read()
        except FileNotFoundError as exc:
            msg = f"Prompt file not found: {path}"
            raise NotReadableError(msg, path) from exc
        except UnicodeDecodeError as exc:
            msg = f"Prompt file is not valid UTF-8: {path}"
            raise NotReadableError(msg, path) from exc
        except OSError as exc:
            msg = f"Failed to read prompt file {path}: {exc}"
            raise NotReadableError(msg, path) from exc

        try:
            return frontmatter.parse(text)
        except NotReadableError as exc:
            msg = f"{path}: {exc}"
            raise NotReadableError(msg, path) from exc

    def load(self, path: Path | str) -> tuple[Frontmatter, str]:
        """Read and validate. Raises ValidationError on a malformed header."""
        header, body = self.read(path)
        return Frontmatter.from_header(header), body

    def hash(self, text: str) -> str:
        return content_hash(text)

    def list(self) -> list[Path]:
        """All live prompt files. Order is not part of the contract."""
        return self._list_dir(self.prompts_dir)

    def list_archived(self) -> list[Path]:
        return self._list_dir(self.archive_dir)

    def _list_dir(self, directory: Path) -> list[Path]:
        if not directory.exists():
            return []
        try:
            return sorted(
                p for p in directory.iterdir()
                if p.suffix == PROMPT_SUFFIX and not p.name.startswith(".") and p.is_file()
            )
        except OSError as exc:
            msg = f"Failed to list {directory}: {exc}"
            raise StorageIOError(msg, directory) from exc

    # ------------------------------------------------------------------
    # Write
    # ------------------------------------------------------------------

    def write(self, path: Path | str, fm: Frontmatter | dict[str, Any], body: str) -> None:
        """Atomically write header + body, overwriting any existing file."""
        path = Path(path)
        header = fm.to_header() if isinstance(fm, Frontmatter) else dict(fm)
        text = frontmatter.render(header, body)

        tmp = path.with_name(f".{path.name}{_TMP_SUFFIX}")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with tmp.open("w", encoding="utf-8", newline="") as f:
                fcntl.flock(f, fcntl.LOCK_EX)
                f.write(text)
                f.flush()
                os.fsync(f.fileno())
            tmp.replace(path)
        except OSError as exc:
            with contextlib.suppress(OSError):
                tmp.unlink()
            msg = f"Failed to write prompt file {path}: {exc}"
            raise StorageIOError(msg, path) from exc

    def remove(self, path: Path | str) -> None:
        path = Path(path)
        try:
            path.unlink()
        except FileNotFoundError as exc:
            msg = f"Prompt file not found: {path}"
            raise NotReadableError(msg, path) from exc
        except OSError as exc:
            msg = f"Failed to delete prompt file {path}: {exc}"
            raise StorageIOError(msg, path) from exc
