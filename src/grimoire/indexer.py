"""Reconcile prompt files into the metadata index.

Indexer is the only writer of index rows:
    indexer.sync_file(path)     upsert one prompt from its file
    indexer.remove(prompt_id)   drop one prompt's rows
    indexer.full_sync()         bring the whole index in line with the files
    indexer.check_integrity()   read-only drift report
    indexer.rebuild()           wipe the index, then full_sync

Change detection is by SHA-256 of the body plus a comparison of the header
projection, so re-syncing an unchanged file writes nothing.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING, Literal

from grimoire.errors import StorageIOError, ValidationError
from grimoire.hashing import content_hash
from grimoire.models import IntegrityReport, SyncResult

if TYPE_CHECKING:
    import sqlite3

    from grimoire.db import MetadataIndex
    from grimoire.models import Frontmatter
    from grimoire.reader import FileStore

logger = logging.getLogger("grimoire.indexer")

SyncOutcome = Literal["created", "updated", "unchanged"]

# prompts columns mirrored from the file, in _projection() order
_COLUMNS = (
    "name", "content_hash", "file_path", "created_at", "updated_at", "version",
    "is_template", "is_favorite", "favorite_order", "is_pinned", "pin_order",
)


def _projection(fm: Frontmatter, digest: str, file_path: str) -> tuple:
    return (
        fm.name,
        digest,
        file_path,
        fm.created.isoformat(),
        fm.updated.isoformat(),
        fm.version,
        int(fm.is_template),
        int(bool(fm.is_favorite)),
        fm.favorite_order,
        int(bool(fm.is_pinned)),
        fm.pin_order,
    )


class Indexer:
    def __init__(self, store: FileStore, index: MetadataIndex) -> None:
        self.store = store
        self.index = index

    # ------------------------------------------------------------------
    # Single file
    # ------------------------------------------------------------------

    def sync_file(self, path: Path | str) -> SyncOutcome:
        """Project one prompt file into the index.

        Raises NotReadableError/ValidationError if the file cannot be used, and
        ValidationError if its id or path is already claimed by another file.
        """
        path = Path(path)
        fm, body = self.store.load(path)
        file_path = str(path)
        values = _projection(fm, content_hash(body), file_path)

        with self.index.transaction():
            owner = self.index.query_one("SELECT id FROM prompts WHERE file_path = ?", (file_path,))
            if owner is not None and owner["id"] != fm.id:
                msg = f"{path}: id changed from {owner['id']} to {fm.id}; remove the old row first"
                raise ValidationError(msg, field="id")

            row = self.index.query_one("SELECT * FROM prompts WHERE id = ?", (fm.id,))
            if row is None:
                self._insert(fm.id, values, body)
                self._link_tags(fm.id, fm.tags)
                logger.debug("indexed %s (%s)", fm.id, path)
                return "created"

            if row["file_path"] != file_path and Path(row["file_path"]).is_file():
                msg = f"duplicate prompt id {fm.id}: {path} and {row['file_path']}"
                raise ValidationError(msg, field="id")

            current = self._tags_of(fm.id)
            wanted = {t.casefold(): t for t in fm.tags}
            stored = tuple(row[c] for c in _COLUMNS)
            if stored == values and set(current) == set(wanted):
                return "unchanged"

            self.index.execute(
                f"UPDATE prompts SET {', '.join(f'{c} = ?' for c in _COLUMNS)} WHERE id = ?",
                (*values, fm.id),
            )
            if row["name"] != fm.name or row["content_hash"] != values[1]:
                self.index.execute("DELETE FROM prompts_fts WHERE prompt_id = ?", (fm.id,))
                self.index.execute(
                    "INSERT INTO prompts_fts(prompt_id, name, content) VALUES (?, ?, ?)",
                    (fm.id, fm.name, body),
                )

            self._link_tags(fm.id, [t for k, t in wanted.items() if k not in current])
            dropped = [tag_id for k, tag_id in current.items() if k not in wanted]
            for tag_id in dropped:
                self.index.execute(
                    "DELETE FROM prompt_tags WHERE prompt_id = ? AND tag_id = ?", (fm.id, tag_id)
                )
            self._prune_tags(dropped)
            logger.debug("re-indexed %s (%s)", fm.id, path)
            return "updated"

    def remove(self, prompt_id: str) -> bool:
        """Drop a prompt's row, search entry and tag links. False if it was not indexed."""
        with self.index.transaction():
            tag_ids = list(self._tags_of(prompt_id).values())
            self.index.execute("DELETE FROM prompts_fts WHERE prompt_id = ?", (prompt_id,))
            # prompt_tags rows go with the prompt (ON DELETE CASCADE)
            removed = self.index.execute("DELETE FROM prompts WHERE id = ?", (prompt_id,)) > 0
            self._prune_tags(tag_ids)
        if removed:
            logger.debug("removed %s from index", prompt_id)
        return removed

    # ------------------------------------------------------------------
    # Whole store
    # ------------------------------------------------------------------

    def full_sync(self) -> SyncResult:
        """Sync every prompt file and drop rows whose file is gone.

        Per-file read or validation failures are collected in result.errors and
        never stop the pass. An IndexStoreError propagates.
        """
        result = SyncResult()
        seen: set[str] = set()
        for path in self.store.list():
            result.scanned += 1
            seen.add(str(path))
            try:
                outcome = self.sync_file(path)
            except (StorageIOError, ValidationError) as exc:
                logger.warning("skipping %s: %s", path, exc)
                result.errors[str(path)] = str(exc)
                continue
            setattr(result, outcome, getattr(result, outcome) + 1)

        for row in self.index.query("SELECT id, file_path FROM prompts"):
            if row["file_path"] not in seen and self.remove(row["id"]):
                logger.info("removed orphaned row %s (%s)", row["id"], row["file_path"])
                result.removed += 1

        logger.info(
            "sync: %d scanned, %d created, %d updated, %d unchanged, %d removed, %d errors",
            result.scanned, result.created, result.updated, result.unchanged,
            result.removed, len(result.errors),
        )
        return result

    def check_integrity(self) -> IntegrityReport:
        """Compare files against index rows. Never writes to either store."""
        on_disk = {str(p) for p in self.store.list()}
        indexed = {
            r["file_path"]: r["content_hash"]
            for r in self.index.query("SELECT file_path, content_hash FROM prompts")
        }

        report = IntegrityReport(
            missing_files=sorted(on_disk - indexed.keys()),
            orphaned_records=sorted(indexed.keys() - on_disk),
        )
        for file_path in sorted(indexed.keys() & on_disk):
            try:
                _, body = self.store.read(file_path)
            except StorageIOError as exc:
                logger.warning("integrity: cannot read %s: %s", file_path, exc)
                report.hash_mismatches.append(file_path)
                continue
            if content_hash(body) != indexed[file_path]:
                report.hash_mismatches.append(file_path)
        return report

    def rebuild(self) -> SyncResult:
        """Delete every index row, then re-index from the files."""
        with self.index.transaction():
            for table in ("prompt_tags", "prompts_fts", "prompts", "tags"):
                self.index.execute(f"DELETE FROM {table}")  # noqa: S608
        logger.info("index cleared, re-indexing from %s", self.store.prompts_dir)
        return self.full_sync()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _insert(self, prompt_id: str, values: tuple, body: str) -> None:
        self.index.execute(
            f"INSERT INTO prompts(id, {', '.join(_COLUMNS)}) "
            f"VALUES (?, {', '.join('?' for _ in _COLUMNS)})",
            (prompt_id, *values),
        )
        self.index.execute(
            "INSERT INTO prompts_fts(prompt_id, name, content) VALUES (?, ?, ?)",
            (prompt_id, values[0], body),
        )

    def _tags_of(self, prompt_id: str) -> dict[str, int]:
        """Case-folded tag name -> tag id for one prompt."""
        rows: list[sqlite3.Row] = self.index.query(
            "SELECT t.id, t.name FROM prompt_tags pt JOIN tags t ON t.id = pt.tag_id "
            "WHERE pt.prompt_id = ?",
            (prompt_id,),
        )
        return {r["name"].casefold(): r["id"] for r in rows}

    def _link_tags(self, prompt_id: str, names: list[str]) -> None:
        for name in names:
            key = name.casefold()
            # an existing spelling of the same key is reused
            self.index.execute("INSERT OR IGNORE INTO tags(name, name_key) VALUES (?, ?)", (name, key))
            tag = self.index.query_one("SELECT id FROM tags WHERE name_key = ?", (key,))
            self.index.execute(
                "INSERT OR IGNORE INTO prompt_tags(prompt_id, tag_id) VALUES (?, ?)",
                (prompt_id, tag["id"]),
            )

    def _prune_tags(self, tag_ids: list[int]) -> None:
        for tag_id in tag_ids:
            self.index.execute(
                "DELETE FROM tags WHERE id = ? "
                "AND NOT EXISTS (SELECT 1 FROM prompt_tags WHERE tag_id = ?)",
                (tag_id, tag_id),
            )
