"""Wire the stores and services together for one prompt store.

    with Grimoire.open(load_config()) as g:
        g.prompts.create("Coding Assistant", "You are...")
        g.indexer.full_sync()
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from grimoire.archive import ArchiveService
from grimoire.db import MetadataIndex
from grimoire.indexer import Indexer
from grimoire.reader import FileStore
from grimoire.service import PromptService
from grimoire.tags import TagService

if TYPE_CHECKING:
    from grimoire.config import GrimoireConfig


@dataclass
class Grimoire:
    cfg: GrimoireConfig
    store: FileStore
    index: MetadataIndex
    indexer: Indexer
    prompts: PromptService
    tags: TagService
    archive: ArchiveService

    @classmethod
    def open(cls, cfg: GrimoireConfig) -> Grimoire:
        """Create directories, open and migrate the index."""
        cfg.ensure_dirs()
        store = FileStore(cfg.prompts_dir, cfg.archive_dir)
        index = MetadataIndex(cfg.db_path)
        try:
            index.migrate()
        except BaseException:
            index.close()
            raise
        indexer = Indexer(store, index)
        prompts = PromptService(store, index, indexer, search_limit=cfg.search.limit)
        return cls(
            cfg=cfg,
            store=store,
            index=index,
            indexer=indexer,
            prompts=prompts,
            tags=TagService(index, prompts),
            archive=ArchiveService(store, index, indexer),
        )

    def close(self) -> None:
        self.index.close()

    def __enter__(self) -> Grimoire:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()
