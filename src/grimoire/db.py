"""SQLite metadata index: connection, query primitives, schema migrations.

The index is a pure derived cache of the prompt files. Delete it and run
`grimoire reindex` at any time.

Tables:
    prompts       one row per live prompt (metadata + content_hash + file_path)
    tags          tag names, unique by name_key (the casefolded name)
    prompt_tags   prompt <-> tag join
    prompts_fts   FTS5 shadow over (name, content), keyed by prompt_id

No business rules live here beyond foreign keys and tag-name uniqueness; the
indexer is free to overwrite anything.
"""

from __future__ import annotations

import contextlib
import logging
import sqlite3
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any

from grimoire.errors import IndexStoreError

if TYPE_CHECKING:
    from collections.abc import Iterator, Sequence

logger = logging.getLogger("grimoire.db")


@dataclass(frozen=True)
class Migration:
    version: int
    description: str
    statements: tuple[str, ...]


# Forward-only. Never edit an applied migration; append a new one.
MIGRATIONS: tuple[Migration, ...] = (
    Migration(1, "prompts, tags and prompt_tags", (
        """CREATE TABLE IF NOT EXISTS prompts (
            id TEXT PRIMARY KEY,
            name TEXT NOT NULL,
            content_hash TEXT NOT NULL,
            file_path TEXT NOT NULL UNIQUE,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL,
            version INTEGER NOT NULL DEFAULT 1,
            is_template INTEGER NOT NULL DEFAULT 0
        )""",
        "CREATE INDEX IF NOT EXISTS prompts_name ON prompts(name)",
        """CREATE TABLE IF NOT EXISTS tags (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            name TEXT NOT NULL UNIQUE COLLATE NOCASE
        )""",
        """CREATE TABLE IF NOT EXISTS prompt_tags (
            prompt_id TEXT NOT NULL REFERENCES prompts(id) ON DELETE CASCADE,
            tag_id INTEGER NOT NULL REFERENCES tags(id) ON DELETE CASCADE,
            PRIMARY KEY (prompt_id, tag_id)
        )""",
        "CREATE INDEX IF NOT EXISTS prompt_tags_tag ON prompt_tags(tag_id)",
    )),
    Migration(2, "FTS5 search over name and content", (
        # Self-contained FTS5 table (no content= link): it stores its own copy
        # of the body, which the prompts table does not have.
        """CREATE VIRTUAL TABLE IF NOT EXISTS prompts_fts USING fts5(
            prompt_id UNINDEXED,
            name,
            content,
            tokenize='porter unicode61'
        )""",
    )),
    Migration(3, "favorite and pin flags", (
        "ALTER TABLE prompts ADD COLUMN is_favorite INTEGER NOT NULL DEFAULT 0",
        "ALTER TABLE prompts ADD COLUMN favorite_order INTEGER",
        "ALTER TABLE prompts ADD COLUMN is_pinned INTEGER NOT NULL DEFAULT 0",
        "ALTER TABLE prompts ADD COLUMN pin_order INTEGER",
    )),
    Migration(4, "casefolded tag key", (
        # NOCASE only folds ASCII; name_key holds str.casefold(name) so SQL and
        # Python agree on which spellings are one tag.
        "ALTER TABLE tags ADD COLUMN name_key TEXT",
        "UPDATE tags SET name_key = casefold(name)",
        # fold spellings that only differed outside ASCII onto the oldest row
        """INSERT OR IGNORE INTO prompt_tags(prompt_id, tag_id)
           SELECT pt.prompt_id, (SELECT MIN(k.id) FROM tags k WHERE k.name_key = t.name_key)
           FROM prompt_tags pt JOIN tags t ON t.id = pt.tag_id""",
        "DELETE FROM tags WHERE id NOT IN (SELECT MIN(id) FROM tags GROUP BY name_key)",
        "CREATE UNIQUE INDEX IF NOT EXISTS tags_name_key ON tags(name_key)",
    )),
)


def _casefold(value: object) -> object:
    return value.casefold() if isinstance(value, str) else value


def _check_not_empty(db_path: Path) -> None:
    # A 0-byte DB (interrupted WAL checkpoint, virtiofs) gives an opaque
    # "disk I/O error" later; fail early with the fix instead.
    if db_path.exists() and db_path.stat().st_size == 0:
        msg = (
            f"SQLite DB is empty (0 bytes): {db_path}\n"
            f"Fix: rm {db_path}* && grimoire reindex"
        )
        raise IndexStoreError(msg)


class MetadataIndex:
    """Thin wrapper over a sqlite3 connection that maps errors to IndexStoreError."""

    def __init__(self, db_path: Path | str) -> None:
        self.db_path = Path(db_path) if db_path != ":memory:" else None
        if self.db_path is not None:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            _check_not_empty(self.db_path)
        target = str(self.db_path) if self.db_path is not None else ":memory:"
        try:
            # isolation_level=None: transactions are explicit, see transaction()
            self.conn = sqlite3.connect(target, isolation_level=None)
            self.conn.row_factory = sqlite3.Row
            self.conn.create_function("casefold", 1, _casefold, deterministic=True)
            if self.db_path is not None:
                self.conn.execute("PRAGMA journal_mode=WAL")
            self.conn.execute("PRAGMA foreign_keys=ON")
        except sqlite3.Error as exc:
            msg = (
                f"Failed to open DB {target}: may be corrupt.\n"
                f"Fix: rm {target}* && grimoire reindex\n"
                f"Original error: {exc}"
            )
            raise IndexStoreError(msg) from exc
        self._depth = 0

    @classmethod
    def memory(cls) -> MetadataIndex:
        return cls(":memory:")

    # ------------------------------------------------------------------
    # Primitives
    # ------------------------------------------------------------------

    def query(self, sql: str, params: Sequence[Any] = ()) -> list[sqlite3.Row]:
        try:
            return self.conn.execute(sql, tuple(params)).fetchall()
        except sqlite3.Error as exc:
            raise IndexStoreError(f"Query failed: {exc}", sql=sql) from exc

    def query_one(self, sql: str, params: Sequence[Any] = ()) -> sqlite3.Row | None:
        rows = self.query(sql, params)
        return rows[0] if rows else None

    def execute(self, sql: str, params: Sequence[Any] = ()) -> int:
        """Run a write statement. Returns the number of rows affected."""
        try:
            return self.conn.execute(sql, tuple(params)).rowcount
        except sqlite3.Error as exc:
            raise IndexStoreError(f"Statement failed: {exc}", sql=sql) from exc

    @contextlib.contextmanager
    def transaction(self) -> Iterator[MetadataIndex]:
        """BEGIN/COMMIT, ROLLBACK on any exception. Nested calls join the outer one."""
        if self._depth:
            self._depth += 1
            try:
                yield self
            finally:
                self._depth -= 1
            return

        try:
            self.conn.execute("BEGIN")
        except sqlite3.Error as exc:
            raise IndexStoreError(f"Failed to begin transaction: {exc}") from exc
        self._depth = 1
        try:
            yield self
        except BaseException:
            self._depth = 0
            with contextlib.suppress(sqlite3.Error):
                self.conn.execute("ROLLBACK")
            raise
        self._depth = 0
        try:
            self.conn.execute("COMMIT")
        except sqlite3.Error as exc:
            with contextlib.suppress(sqlite3.Error):
                self.conn.execute("ROLLBACK")
            raise IndexStoreError(f"Failed to commit transaction: {exc}") from exc

    @property
    def total_changes(self) -> int:
        """Rows inserted/updated/deleted on this connection since it was opened."""
        return self.conn.total_changes

    # ------------------------------------------------------------------
    # Migrations
    # ------------------------------------------------------------------

    def schema_version(self) -> int:
        row = self.query_one(
            "SELECT name FROM sqlite_master WHERE type = 'table' AND name = 'schema_migrations'"
        )
        if row is None:
            return 0
        version = self.query_one("SELECT MAX(version) AS v FROM schema_migrations")
        return int(version["v"] or 0) if version is not None else 0

    def migrate(self, migrations: Sequence[Migration] = MIGRATIONS) -> list[int]:
        """Apply pending migrations in order. Returns the versions applied."""
        self.execute(
            """CREATE TABLE IF NOT EXISTS schema_migrations (
                version INTEGER PRIMARY KEY,
                description TEXT NOT NULL,
                applied_at TEXT NOT NULL
            )"""
        )
        current = self.schema_version()
        applied: list[int] = []
        for migration in sorted(migrations, key=lambda m: m.version):
            if migration.version <= current:
                continue
            with self.transaction():
                for statement in migration.statements:
                    self.execute(statement)
                self.execute(
                    "INSERT INTO schema_migrations(version, description, applied_at) VALUES (?, ?, ?)",
                    (migration.version, migration.description, datetime.now(UTC).isoformat()),
                )
            logger.info("applied migration %d: %s", migration.version, migration.description)
            applied.append(migration.version)
        return applied

    # ------------------------------------------------------------------

    def close(self) -> None:
        with contextlib.suppress(sqlite3.Error):
            self.conn.close()

    def __enter__(self) -> MetadataIndex:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()
