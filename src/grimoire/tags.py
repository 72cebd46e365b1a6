"""Tag listing and bulk tag edits.

Tags live in each prompt's frontmatter; the index only mirrors them. Every
edit here therefore rewrites the affected prompt files through
PromptService.update (version bump included) and lets the indexer drop tag
rows that lose their last prompt.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from grimoire.errors import ValidationError
from grimoire.models import Prompt, TagCount, normalize_tags

if TYPE_CHECKING:
    from grimoire.db import MetadataIndex
    from grimoire.service import PromptService

logger = logging.getLogger("grimoire.tags")


def _clean(tag: str) -> str:
    if not isinstance(tag, str) or not tag.strip():
        msg = "tag: must not be blank"
        raise ValidationError(msg, field="tag")
    return tag.strip()


class TagService:
    def __init__(self, index: MetadataIndex, prompts: PromptService) -> None:
        self.index = index
        self.prompts = prompts

    def list_tags(self) -> list[TagCount]:
        """Tags in use, most used first."""
        rows = self.index.query(
            """SELECT t.name, COUNT(pt.prompt_id) AS n
               FROM tags t JOIN prompt_tags pt ON pt.tag_id = t.id
               GROUP BY t.id
               ORDER BY n DESC, t.name_key"""
        )
        return [TagCount(r["name"], r["n"]) for r in rows]

    def add_tag(self, prompt_id: str, tag: str) -> Prompt:
        tag = _clean(tag)
        prompt = self.prompts.get_by_id(prompt_id)
        if tag.casefold() in {t.casefold() for t in prompt.tags}:
            return prompt
        return self.prompts.update(prompt_id, tags=[*prompt.tags, tag])

    def remove_tag(self, prompt_id: str, tag: str) -> Prompt:
        tag = _clean(tag)
        prompt = self.prompts.get_by_id(prompt_id)
        kept = [t for t in prompt.tags if t.casefold() != tag.casefold()]
        if len(kept) == len(prompt.tags):
            return prompt
        return self.prompts.update(prompt_id, tags=kept)

    def rename_tag(self, old: str, new: str) -> int:
        """Rename a tag on every prompt. Returns the number of prompts rewritten.

        Fails if `new` is already a different tag; use merge_tags for that.
        """
        old, new = _clean(old), _clean(new)
        if old.casefold() == new.casefold():
            return 0
        if self._prompt_ids(new):
            msg = f"tag {new!r} already exists; merge {old!r} into it instead"
            raise ValidationError(msg, field="tag")
        count = self._retag(old, new)
        logger.info("renamed tag %r to %r on %d prompts", old, new, count)
        return count

    def merge_tags(self, source: str, target: str) -> int:
        """Replace `source` with `target` everywhere. Returns the number of prompts rewritten."""
        source, target = _clean(source), _clean(target)
        if source.casefold() == target.casefold():
            return 0
        # merging into an existing tag keeps its spelling
        existing = self.index.query_one(
            "SELECT name FROM tags WHERE name_key = ?", (target.casefold(),)
        )
        if existing is not None:
            target = existing["name"]
        count = self._retag(source, target)
        logger.info("merged tag %r into %r on %d prompts", source, target, count)
        return count

    def _prompt_ids(self, tag: str) -> list[str]:
        rows = self.index.query(
            "SELECT pt.prompt_id FROM prompt_tags pt JOIN tags t ON t.id = pt.tag_id "
            "WHERE t.name_key = ?",
            (tag.casefold(),),
        )
        return [r["prompt_id"] for r in rows]

    def _retag(self, old: str, new: str) -> int:
        count = 0
        for prompt_id in self._prompt_ids(old):
            prompt = self.prompts.get_by_id(prompt_id)
            tags = normalize_tags([new if t.casefold() == old.casefold() else t for t in prompt.tags])
            self.prompts.update(prompt_id, tags=tags)
            count += 1
        return count
