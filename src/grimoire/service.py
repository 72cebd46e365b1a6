"""Prompt operations: every write goes file first, then index.

    svc = PromptService(store, index, indexer)
    p = svc.create("Coding Assistant", "You are...", tags=["coding"])
    svc.update(p.id, content="You are a careful...")
    svc.search("careful", tags=["coding"])
    svc.search_hits("careful")       # with excerpt + highlight ranges
    svc.delete(p.id)                 # soft: moves the file to the archive
    svc.delete(p.id, hard=True)      # gone for good

Reads go to the index for lookup/filter/search and to the file only for the
body. If a file write fails nothing is indexed; if indexing fails after a
successful write the file stays and the next full_sync picks it up.
"""

from __future__ import annotations

import dataclasses
import logging
import re
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING

from grimoire.errors import (
    DuplicateNameError,
    IndexStoreError,
    NotFoundError,
    StorageIOError,
    ValidationError,
)
from grimoire.models import (
    Frontmatter,
    Prompt,
    SearchHit,
    new_prompt_id,
    normalize_tags,
    parse_timestamp,
    utcnow,
)

if TYPE_CHECKING:
    import sqlite3

    from grimoire.db import MetadataIndex
    from grimoire.indexer import Indexer
    from grimoire.reader import FileStore

logger = logging.getLogger("grimoire.service")

DEFAULT_SEARCH_LIMIT = 50

# snippet() highlight markers: control characters, not expected in prompt text
_MARK_START, _MARK_END = "\x02", "\x03"
_SNIPPET_TOKENS = 32

_STOPWORDS = frozenset({
    "a", "about", "above", "after", "again", "against", "all", "am", "an",
    "and", "any", "are", "as", "at", "be", "because", "been", "before",
    "being", "below", "between", "both", "but", "by", "can", "did",
    "do", "does", "doing", "down", "during", "each", "few",
    "for", "from", "further", "had", "has", "have", "having",
    "he", "her", "here", "hers", "him", "his", "how", "i",
    "if", "in", "into", "is", "it", "its", "itself", "just",
    "me", "more", "most", "my", "no", "nor",
    "not", "now", "of", "off", "on", "once", "only", "or", "other", "our",
    "out", "over", "own", "same", "she",
    "should", "so", "some", "such", "than", "that", "the", "their",
    "them", "then", "there", "these", "they", "this", "those",
    "through", "to", "too", "under", "until", "up", "very", "was", "we",
    "were", "what", "when", "where", "which", "while", "who", "whom", "why",
    "will", "with", "you", "your",
})


def _build_fts_query(query: str) -> str | None:
    """Split query into OR-joined prefix terms, filtering stopwords. Returns None if empty.

    'how to write unit tests' -> 'write* OR unit* OR tests*'
    """
    terms = [w for w in re.split(r"[\s\W]+", query.lower()) if w and w not in _STOPWORDS]
    if not terms:
        return None
    return " OR ".join(f"{t}*" for t in terms)


def _filters(
    tags: list[str] | None, date_from: datetime | None, date_to: datetime | None,
) -> tuple[str, list]:
    """Extra ` AND ...` clauses on prompts p for tag and creation-date filters."""
    clauses: list[str] = []
    params: list = []
    wanted = [t.casefold() for t in normalize_tags(tags)]
    if wanted:
        placeholders = ", ".join("?" for _ in wanted)
        clauses.append(
            "p.id IN (SELECT pt.prompt_id FROM prompt_tags pt JOIN tags t ON t.id = pt.tag_id "
            f"WHERE t.name_key IN ({placeholders}))"
        )
        params.extend(wanted)
    if date_from is not None:
        clauses.append("julianday(p.created_at) >= julianday(?)")
        params.append(_as_utc(date_from).isoformat())
    if date_to is not None:
        clauses.append("julianday(p.created_at) <= julianday(?)")
        params.append(_as_utc(date_to).isoformat())
    return "".join(f" AND {c}" for c in clauses), params


def _as_utc(ts: datetime) -> datetime:
    return ts.replace(tzinfo=UTC) if ts.tzinfo is None else ts


def _split_marks(marked: str) -> tuple[str, list[tuple[int, int]]]:
    """Drop snippet() markers. Returns the clean text and the marked ranges in it."""
    text = ""
    ranges: list[tuple[int, int]] = []
    for i, part in enumerate(re.split(f"[{_MARK_START}{_MARK_END}]", marked)):
        # odd parts sit between a start and an end marker
        if i % 2 and part:
            ranges.append((len(text), len(text) + len(part)))
        text += part
    return text, ranges


def _excerpt(text: str, needle: str, width: int = 80) -> tuple[str, list[tuple[int, int]]]:
    """A window of text around the first case-insensitive occurrence of needle."""
    folded = text.casefold()
    # casefold can change length (ß -> ss); offsets only line up when it did not
    at = folded.find(needle) if needle and len(folded) == len(text) else -1
    if at < 0:
        return text[:width], []
    start = max(0, at - width // 2)
    end = min(len(text), at + len(needle) + width // 2)
    prefix = "..." if start else ""
    suffix = "..." if end < len(text) else ""
    offset = len(prefix) + at - start
    return f"{prefix}{text[start:end]}{suffix}", [(offset, offset + len(needle))]


class PromptService:
    def __init__(
        self,
        store: FileStore,
        index: MetadataIndex,
        indexer: Indexer,
        *,
        search_limit: int = DEFAULT_SEARCH_LIMIT,
    ) -> None:
        self.store = store
        self.index = index
        self.indexer = indexer
        self.search_limit = search_limit

    # ------------------------------------------------------------------
    # Create / update / delete
    # ------------------------------------------------------------------

    def create(
        self,
        name: str,
        content: str,
        *,
        tags: list[str] | None = None,
        is_template: bool = False,
        is_favorite: bool | None = None,
        favorite_order: int | None = None,
        is_pinned: bool | None = None,
        pin_order: int | None = None,
    ) -> Prompt:
        name = self._check_name(name)
        self._check_name_free(name)
        if is_favorite and favorite_order is None:
            favorite_order = self._next_order("favorite_order")
        if is_pinned and pin_order is None:
            pin_order = self._next_order("pin_order")

        now = utcnow()
        fm = Frontmatter(
            id=new_prompt_id(),
            name=name,
            created=now,
            updated=now,
            tags=normalize_tags(tags),
            version=1,
            is_template=is_template,
            is_favorite=is_favorite,
            favorite_order=favorite_order,
            is_pinned=is_pinned,
            pin_order=pin_order,
        )
        path = self.store.path_for(fm.id)
        self.store.write(path, fm, content)
        self.indexer.sync_file(path)
        logger.info("created prompt %s (%r)", fm.id, name)
        return Prompt.from_frontmatter(fm, content, str(path))

    def update(
        self,
        prompt_id: str,
        *,
        name: str | None = None,
        content: str | None = None,
        tags: list[str] | None = None,
        is_template: bool | None = None,
        is_favorite: bool | None = None,
        favorite_order: int | None = None,
        is_pinned: bool | None = None,
        pin_order: int | None = None,
    ) -> Prompt:
        """Rewrite a prompt. Fields left as None keep their current value."""
        row = self._require_row(prompt_id)
        path = Path(row["file_path"])
        fm, body = self.store.load(path)

        changes: dict = {"version": fm.version + 1, "updated": utcnow()}
        if name is not None:
            name = self._check_name(name)
            self._check_name_free(name, exclude_id=prompt_id)
            changes["name"] = name
        if tags is not None:
            changes["tags"] = normalize_tags(tags)
        if is_template is not None:
            changes["is_template"] = is_template
        if is_favorite is not None:
            changes["is_favorite"] = is_favorite
            if not is_favorite:
                changes["favorite_order"] = None
        if favorite_order is not None:
            changes["favorite_order"] = favorite_order
        if is_pinned is not None:
            changes["is_pinned"] = is_pinned
            if not is_pinned:
                changes["pin_order"] = None
        if pin_order is not None:
            changes["pin_order"] = pin_order
        if content is not None:
            body = content

        fm = dataclasses.replace(fm, **changes)
        self.store.write(path, fm, body)
        self.indexer.sync_file(path)
        logger.info("updated prompt %s to version %d", prompt_id, fm.version)
        return Prompt.from_frontmatter(fm, body, str(path))

    def delete(self, prompt_id: str, *, hard: bool = False) -> None:
        """Soft delete moves the file to the archive; hard delete removes it."""
        row = self._require_row(prompt_id)
        path = Path(row["file_path"])

        if hard:
            if self.store.exists(path):
                self.store.remove(path)
            self.indexer.remove(prompt_id)
            logger.info("deleted prompt %s", prompt_id)
            return

        fm, body = self.store.load(path)
        dest = self.store.archive_path_for(prompt_id)
        # archived copy first: if it cannot be written the live prompt is untouched
        self.store.write(dest, dataclasses.replace(fm, archived_at=utcnow()), body)
        self.store.remove(path)
        self.indexer.remove(prompt_id)
        logger.info("archived prompt %s to %s", prompt_id, dest)

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def get_by_id(self, prompt_id: str) -> Prompt:
        return self._read(self._require_row(prompt_id))

    def get_by_name(self, name: str) -> Prompt:
        row = self.index.query_one("SELECT * FROM prompts WHERE name = ?", (name,))
        if row is None:
            raise NotFoundError(name)
        return self._read(row)

    def get_all(self, *, with_content: bool = True) -> list[Prompt]:
        """All live prompts, most recently updated first."""
        rows = self.index.query("SELECT * FROM prompts ORDER BY updated_at DESC, name")
        return self._hydrate(rows, with_content)

    def find_by_tags(self, tags: list[str], *, with_content: bool = True) -> list[Prompt]:
        """Prompts carrying any of the tags (case-insensitive)."""
        wanted = normalize_tags(tags)
        if not wanted:
            return []
        placeholders = ", ".join("?" for _ in wanted)
        rows = self.index.query(
            "SELECT DISTINCT p.* FROM prompts p "
            "JOIN prompt_tags pt ON pt.prompt_id = p.id "
            "JOIN tags t ON t.id = pt.tag_id "
            f"WHERE t.name_key IN ({placeholders}) "
            "ORDER BY p.updated_at DESC, p.name",
            [t.casefold() for t in wanted],
        )
        return self._hydrate(rows, with_content)

    def search(
        self,
        query: str,
        *,
        tags: list[str] | None = None,
        date_from: datetime | None = None,
        date_to: datetime | None = None,
        limit: int | None = None,
        with_content: bool = True,
    ) -> list[Prompt]:
        """Full-text search over name and body, best match first.

        tags narrows to prompts carrying any of them; date_from/date_to bound
        the creation time (inclusive, naive values are UTC). Falls back to a
        case-insensitive substring match when the query has no usable terms or
        FTS5 rejects it.
        """
        rows = self._search_rows(query, tags, date_from, date_to, limit)
        return self._hydrate(rows, with_content)

    def search_hits(
        self,
        query: str,
        *,
        tags: list[str] | None = None,
        date_from: datetime | None = None,
        date_to: datetime | None = None,
        limit: int | None = None,
    ) -> list[SearchHit]:
        """Same matches as search(), each with an excerpt and highlight ranges."""
        needle = query.strip().casefold() if query else ""
        hits: list[SearchHit] = []
        for row in self._search_rows(query, tags, date_from, date_to, limit):
            try:
                prompt = self._read(row)
            except (StorageIOError, ValidationError) as exc:
                logger.warning("skipping prompt %s (%s): %s", row["id"], row["file_path"], exc)
                continue
            if row["snippet"] is None:
                snippet, highlights = _excerpt(prompt.content or "", needle)
            else:
                snippet, highlights = _split_marks(row["snippet"])
            hits.append(SearchHit(prompt, snippet, row["score"], highlights))
        return hits

    def suggest(self, prefix: str, *, limit: int = 10) -> list[str]:
        """Prompt names containing prefix, names that start with it first."""
        needle = prefix.strip().casefold() if prefix else ""
        if not needle:
            return []
        rows = self.index.query(
            """SELECT name FROM prompts
               WHERE instr(casefold(name), ?) > 0
               ORDER BY instr(casefold(name), ?) != 1, casefold(name), name
               LIMIT ?""",
            (needle, needle, limit),
        )
        return [r["name"] for r in rows]

    # ------------------------------------------------------------------
    # Favorites / pins
    # ------------------------------------------------------------------

    def toggle_favorite(self, prompt_id: str) -> bool:
        """Flip the favorite flag. Returns the new state."""
        row = self._require_row(prompt_id)
        if row["is_favorite"]:
            self.update(prompt_id, is_favorite=False)
            return False
        self.update(prompt_id, is_favorite=True, favorite_order=self._next_order("favorite_order"))
        return True

    def toggle_pin(self, prompt_id: str) -> bool:
        row = self._require_row(prompt_id)
        if row["is_pinned"]:
            self.update(prompt_id, is_pinned=False)
            return False
        self.update(prompt_id, is_pinned=True, pin_order=self._next_order("pin_order"))
        return True

    def favorites(self, *, with_content: bool = True) -> list[Prompt]:
        rows = self.index.query(
            "SELECT * FROM prompts WHERE is_favorite = 1 ORDER BY favorite_order IS NULL, favorite_order, name"
        )
        return self._hydrate(rows, with_content)

    def pinned(self, *, with_content: bool = True) -> list[Prompt]:
        rows = self.index.query(
            "SELECT * FROM prompts WHERE is_pinned = 1 ORDER BY pin_order IS NULL, pin_order, name"
        )
        return self._hydrate(rows, with_content)

    def reorder_favorites(self, prompt_ids: list[str]) -> int:
        """Number favorites 1.. in the given order.

        Favorites not listed follow in their current order. Returns the number
        of prompts rewritten.
        """
        return self._reorder(prompt_ids, "is_favorite", "favorite_order")

    def reorder_pins(self, prompt_ids: list[str]) -> int:
        return self._reorder(prompt_ids, "is_pinned", "pin_order")

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _require_row(self, prompt_id: str) -> sqlite3.Row:
        row = self.index.query_one("SELECT * FROM prompts WHERE id = ?", (prompt_id,))
        if row is None:
            raise NotFoundError(prompt_id)
        return row

    @staticmethod
    def _check_name(name: str) -> str:
        if not isinstance(name, str) or not name.strip():
            msg = "name: must not be blank"
            raise ValidationError(msg, field="name")
        return name.strip()

    def _check_name_free(self, name: str, *, exclude_id: str | None = None) -> None:
        row = self.index.query_one("SELECT id FROM prompts WHERE name = ?", (name,))
        if row is not None and row["id"] != exclude_id:
            raise DuplicateNameError(name)

    def _search_rows(
        self,
        query: str,
        tags: list[str] | None,
        date_from: datetime | None,
        date_to: datetime | None,
        limit: int | None,
    ) -> list[sqlite3.Row]:
        """prompts rows plus `snippet` (NULL for substring matches) and `score`."""
        if not query or not query.strip():
            return []
        if limit is None:
            limit = self.search_limit
        where, params = _filters(tags, date_from, date_to)

        fts_query = _build_fts_query(query)
        if fts_query is not None:
            try:
                return self.index.query(
                    f"""SELECT p.*,
                              snippet(prompts_fts, 2, ?, ?, '...', {_SNIPPET_TOKENS}) AS snippet,
                              bm25(prompts_fts) AS score
                       FROM prompts_fts
                       JOIN prompts p ON p.id = prompts_fts.prompt_id
                       WHERE prompts_fts MATCH ?{where}
                       ORDER BY score
                       LIMIT ?""",
                    (_MARK_START, _MARK_END, fts_query, *params, limit),
                )
            except IndexStoreError as exc:
                logger.debug("FTS rejected %r: %s", fts_query, exc)

        needle = query.strip().casefold()
        return self.index.query(
            f"""SELECT p.*, NULL AS snippet, 0.0 AS score
               FROM prompts p
               JOIN prompts_fts ON prompts_fts.prompt_id = p.id
               WHERE (instr(casefold(p.name), ?) > 0
                      OR instr(casefold(prompts_fts.content), ?) > 0){where}
               ORDER BY p.updated_at DESC
               LIMIT ?""",
            (needle, needle, *params, limit),
        )

    def _reorder(self, prompt_ids: list[str], flag: str, column: str) -> int:
        if len(set(prompt_ids)) != len(prompt_ids):
            msg = f"{column}: prompt ids must not repeat"
            raise ValidationError(msg, field=column)
        for prompt_id in prompt_ids:
            if not self._require_row(prompt_id)[flag]:
                msg = f"{column}: prompt {prompt_id} is not marked {flag}"
                raise ValidationError(msg, field=column)

        listed = set(prompt_ids)
        rest = self.index.query(
            f"SELECT id FROM prompts WHERE {flag} = 1 ORDER BY {column} IS NULL, {column}, name"  # noqa: S608
        )
        rewritten = 0
        order = [*prompt_ids, *(r["id"] for r in rest if r["id"] not in listed)]
        for position, prompt_id in enumerate(order, 1):
            if self._require_row(prompt_id)[column] != position:
                self.update(prompt_id, **{column: position})
                rewritten += 1
        logger.info("reordered %s: %d prompts rewritten", column, rewritten)
        return rewritten

    def _next_order(self, column: str) -> int:
        row = self.index.query_one(f"SELECT MAX({column}) AS m FROM prompts")  # noqa: S608
        return (row["m"] or 0) + 1 if row is not None else 1

    def _read(self, row: sqlite3.Row) -> Prompt:
        fm, body = self.store.load(row["file_path"])
        return Prompt.from_frontmatter(fm, body, row["file_path"])

    def _hydrate(self, rows: list[sqlite3.Row], with_content: bool) -> list[Prompt]:
        if not with_content:
            tags = self._tags_by_prompt([r["id"] for r in rows])
            return [self._from_row(r, tags.get(r["id"], [])) for r in rows]

        prompts: list[Prompt] = []
        for row in rows:
            try:
                prompts.append(self._read(row))
            except (StorageIOError, ValidationError) as exc:
                logger.warning("skipping prompt %s (%s): %s", row["id"], row["file_path"], exc)
        return prompts

    def _tags_by_prompt(self, prompt_ids: list[str]) -> dict[str, list[str]]:
        if not prompt_ids:
            return {}
        placeholders = ", ".join("?" for _ in prompt_ids)
        result: dict[str, list[str]] = {}
        for r in self.index.query(
            "SELECT pt.prompt_id, t.name FROM prompt_tags pt JOIN tags t ON t.id = pt.tag_id "
            f"WHERE pt.prompt_id IN ({placeholders}) ORDER BY t.name_key",
            prompt_ids,
        ):
            result.setdefault(r["prompt_id"], []).append(r["name"])
        return result

    @staticmethod
    def _from_row(row: sqlite3.Row, tags: list[str]) -> Prompt:
        return Prompt(
            id=row["id"],
            name=row["name"],
            created=parse_timestamp(row["created_at"], "created"),
            updated=parse_timestamp(row["updated_at"], "updated"),
            version=row["version"],
            tags=tags,
            content=None,
            file_path=row["file_path"],
            is_template=bool(row["is_template"]),
            is_favorite=bool(row["is_favorite"]),
            favorite_order=row["favorite_order"],
            is_pinned=bool(row["is_pinned"]),
            pin_order=row["pin_order"],
        )
