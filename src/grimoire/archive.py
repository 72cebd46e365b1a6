"""Soft-deleted prompts.

Archived prompts are plain prompt files under archive_dir with an
`archivedAt` header. They have no index rows, so they never show up in live
queries and their names may be reused.
"""

from __future__ import annotations

import dataclasses
import logging
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from grimoire.errors import DuplicateNameError, NotFoundError, StorageIOError, ValidationError
from grimoire.models import ArchivedPrompt, Prompt

if TYPE_CHECKING:
    from grimoire.db import MetadataIndex
    from grimoire.indexer import Indexer
    from grimoire.reader import FileStore

logger = logging.getLogger("grimoire.archive")

_EPOCH = datetime.min.replace(tzinfo=UTC)


class ArchiveService:
    def __init__(self, store: FileStore, index: MetadataIndex, indexer: Indexer) -> None:
        self.store = store
        self.index = index
        self.indexer = indexer

    def list(self) -> list[ArchivedPrompt]:
        """Archived prompts, most recently archived first."""
        items: list[ArchivedPrompt] = []
        for path in self.store.list_archived():
            try:
                fm, _ = self.store.load(path)
            except (StorageIOError, ValidationError) as exc:
                logger.warning("skipping archived file %s: %s", path, exc)
                continue
            items.append(ArchivedPrompt(fm.id, fm.name, fm.archived_at, str(path)))
        items.sort(key=lambda a: a.archived_at or _EPOCH, reverse=True)
        return items

    def restore(self, prompt_id: str) -> Prompt:
        """Put an archived prompt back into the live store and index it."""
        src = self.store.archive_path_for(prompt_id)
        if not self.store.exists(src):
            raise NotFoundError(prompt_id)
        fm, body = self.store.load(src)

        if self.index.query_one("SELECT id FROM prompts WHERE name = ?", (fm.name,)) is not None:
            raise DuplicateNameError(fm.name)
        dest = self.store.path_for(prompt_id)
        if self.store.exists(dest):
            msg = f"{dest} already exists; cannot restore {prompt_id} over it"
            raise ValidationError(msg, field="id")

        fm = dataclasses.replace(fm, archived_at=None)
        self.store.write(dest, fm, body)
        self.store.remove(src)
        self.indexer.sync_file(dest)
        logger.info("restored prompt %s (%r)", prompt_id, fm.name)
        return Prompt.from_frontmatter(fm, body, str(dest))

    def purge(self, older_than: datetime | None = None) -> int:
        """Permanently delete archived files, all or those archived before `older_than`."""
        if older_than is not None and older_than.tzinfo is None:
            older_than = older_than.replace(tzinfo=UTC)
        count = 0
        for path in self.store.list_archived():
            if older_than is not None:
                try:
                    fm, _ = self.store.load(path)
                except (StorageIOError, ValidationError) as exc:
                    logger.warning("not purging unreadable %s: %s", path, exc)
                    continue
                if fm.archived_at is None or fm.archived_at >= older_than:
                    continue
            self.store.remove(path)
            count += 1
        logger.info("purged %d archived prompts", count)
        return count
