"""Shared fixtures: a fresh prompt store + index under tmp_path for every test."""

from __future__ import annotations

from datetime import UTC, datetime
from pathlib import Path

import pytest

from grimoire.archive import ArchiveService
from grimoire.db import MetadataIndex
from grimoire.indexer import Indexer
from grimoire.models import Frontmatter, new_prompt_id
from grimoire.reader import FileStore
from grimoire.service import PromptService
from grimoire.tags import TagService

T0 = datetime(2026, 10, 18, 9, 0, tzinfo=UTC)


@pytest.fixture
def store(tmp_path: Path) -> FileStore:
    return FileStore(tmp_path / "prompts", tmp_path / "archive")


@pytest.fixture
def index(tmp_path: Path):
    idx = MetadataIndex(tmp_path / ".index" / "grimoire.db")
    idx.migrate()
    yield idx
    idx.close()


@pytest.fixture
def indexer(store: FileStore, index: MetadataIndex) -> Indexer:
    return Indexer(store, index)


@pytest.fixture
def prompts(store: FileStore, index: MetadataIndex, indexer: Indexer) -> PromptService:
    return PromptService(store, index, indexer)


@pytest.fixture
def tags(index: MetadataIndex, prompts: PromptService) -> TagService:
    return TagService(index, prompts)


@pytest.fixture
def archive(store: FileStore, index: MetadataIndex, indexer: Indexer) -> ArchiveService:
    return ArchiveService(store, index, indexer)


@pytest.fixture
def make_file(store: FileStore):
    """Write a prompt file directly, as an external editor would."""

    def _make(name: str, body: str = "body\n", *, tags: list[str] | None = None,
              prompt_id: str | None = None, **fields) -> Path:
        fm = Frontmatter(
            id=prompt_id or new_prompt_id(),
            name=name,
            created=T0,
            updated=T0,
            tags=list(tags or []),
            **fields,
        )
        path = store.path_for(fm.id)
        store.write(path, fm, body)
        return path

    return _make
