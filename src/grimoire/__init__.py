"""File-based prompt store: Markdown files as source of truth, SQLite as derived index.

Layout:
    prompts/
        <id>.md           # YAML frontmatter + body (git-tracked)
    archive/
        <id>.md           # soft-deleted prompts, with archivedAt
    .index/
        grimoire.db       # SQLite: metadata, tags, FTS5 (fully reconstructable)

Prompt file:
    ---
    id: 0b7c1e9a-...
    name: Coding Assistant
    tags: [coding]
    created: '2026-10-18T09:00:00+00:00'
    updated: '2026-10-18T09:00:00+00:00'
    version: 1
    isTemplate: false
    ---
    body, stored verbatim

Writes go file first, then index. The index is only ever repaired from the
files (full_sync / reindex), never the other way round.
"""

from grimoire.app import Grimoire
from grimoire.config import GrimoireConfig, init_config, load_config
from grimoire.models import Prompt
from grimoire.reader import FileStore

__all__ = ["FileStore", "Grimoire", "GrimoireConfig", "Prompt", "init_config", "load_config"]
