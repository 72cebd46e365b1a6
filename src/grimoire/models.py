"""Data models for the file-based prompt store."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import UTC, date, datetime
from typing import Any

from grimoire.errors import ValidationError

# Header key on disk -> Frontmatter attribute, in write order.
_HEADER_KEYS: dict[str, str] = {
    "id": "id",
    "name": "name",
    "tags": "tags",
    "created": "created",
    "updated": "updated",
    "version": "version",
    "isTemplate": "is_template",
    "isFavorite": "is_favorite",
    "favoriteOrder": "favorite_order",
    "isPinned": "is_pinned",
    "pinOrder": "pin_order",
    "archivedAt": "archived_at",
}


def new_prompt_id() -> str:
    """Generate a fresh prompt id (uuid4, never reused)."""
    return str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.now(UTC)


def normalize_tags(tags: list[str] | tuple[str, ...] | None) -> list[str]:
    """Strip, drop empties, de-duplicate case-insensitively keeping the first spelling."""
    seen: set[str] = set()
    result: list[str] = []
    for tag in tags or []:
        name = str(tag).strip()
        if not name or name.casefold() in seen:
            continue
        seen.add(name.casefold())
        result.append(name)
    return result


def parse_timestamp(value: Any, field_name: str) -> datetime:
    """Accept ISO strings or YAML-decoded datetimes. Naive values are UTC."""
    if isinstance(value, datetime):
        ts = value
    elif isinstance(value, date):
        ts = datetime(value.year, value.month, value.day)
    elif isinstance(value, str):
        try:
            ts = datetime.fromisoformat(value.strip())
        except ValueError as exc:
            msg = f"{field_name}: not an ISO timestamp: {value!r}"
            raise ValidationError(msg, field=field_name) from exc
    else:
        msg = f"{field_name}: expected a timestamp, got {type(value).__name__}"
        raise ValidationError(msg, field=field_name)
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=UTC)
    return ts


def _require_str(data: dict[str, Any], key: str) -> str:
    value = data.get(key)
    if not isinstance(value, str) or not value.strip():
        msg = f"{key}: required non-empty string"
        raise ValidationError(msg, field=key)
    return value


def _optional_bool(data: dict[str, Any], key: str) -> bool | None:
    value = data.get(key)
    if value is None or isinstance(value, bool):
        return value
    msg = f"{key}: expected true/false, got {value!r}"
    raise ValidationError(msg, field=key)


def _optional_int(data: dict[str, Any], key: str) -> int | None:
    value = data.get(key)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int):
        msg = f"{key}: expected an integer, got {value!r}"
        raise ValidationError(msg, field=key)
    return value


@dataclass
class Frontmatter:
    """The YAML header of a prompt file."""

    id: str
    name: str
    created: datetime
    updated: datetime
    tags: list[str] = field(default_factory=list)
    version: int = 1
    is_template: bool = False
    is_favorite: bool | None = None
    favorite_order: int | None = None
    is_pinned: bool | None = None
    pin_order: int | None = None
    archived_at: datetime | None = None
    # Unknown header keys, written back untouched.
    extra: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_header(cls, data: dict[str, Any]) -> Frontmatter:
        """Validate a parsed header. Raises ValidationError naming the bad field."""
        for key in ("id", "name", "created", "updated"):
            if key not in data:
                msg = f"{key}: required field missing"
                raise ValidationError(msg, field=key)

        tags = data.get("tags")
        if tags is None:
            tags = []
        if not isinstance(tags, list) or not all(isinstance(t, str) for t in tags):
            msg = "tags: expected a list of strings"
            raise ValidationError(msg, field="tags")

        version = _optional_int(data, "version")
        if version is None:
            version = 1
        if version < 1:
            msg = f"version: must be >= 1, got {version}"
            raise ValidationError(msg, field="version")

        archived = data.get("archivedAt")
        return cls(
            id=_require_str(data, "id").strip(),
            name=_require_str(data, "name"),
            created=parse_timestamp(data["created"], "created"),
            updated=parse_timestamp(data["updated"], "updated"),
            tags=normalize_tags(tags),
            version=version,
            is_template=bool(_optional_bool(data, "isTemplate")),
            is_favorite=_optional_bool(data, "isFavorite"),
            favorite_order=_optional_int(data, "favoriteOrder"),
            is_pinned=_optional_bool(data, "isPinned"),
            pin_order=_optional_int(data, "pinOrder"),
            archived_at=parse_timestamp(archived, "archivedAt") if archived is not None else None,
            extra={k: v for k, v in data.items() if k not in _HEADER_KEYS},
        )

    def to_header(self) -> dict[str, Any]:
        """Header mapping for serialisation. Optional flags are omitted when unset."""
        d: dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "tags": list(self.tags),
            "created": self.created.isoformat(),
            "updated": self.updated.isoformat(),
            "version": self.version,
            "isTemplate": self.is_template,
        }
        if self.is_favorite is not None:
            d["isFavorite"] = self.is_favorite
        if self.favorite_order is not None:
            d["favoriteOrder"] = self.favorite_order
        if self.is_pinned is not None:
            d["isPinned"] = self.is_pinned
        if self.pin_order is not None:
            d["pinOrder"] = self.pin_order
        if self.archived_at is not None:
            d["archivedAt"] = self.archived_at.isoformat()
        d.update(self.extra)
        return d


@dataclass
class Prompt:
    """A prompt as seen by callers: metadata plus (optionally) its body."""

    id: str
    name: str
    created: datetime
    updated: datetime
    version: int = 1
    tags: list[str] = field(default_factory=list)
    content: str | None = None          # None when only metadata was loaded
    file_path: str = ""
    is_template: bool = False
    is_favorite: bool = False
    favorite_order: int | None = None
    is_pinned: bool = False
    pin_order: int | None = None

    @classmethod
    def from_frontmatter(cls, fm: Frontmatter, content: str | None, file_path: str) -> Prompt:
        return cls(
            id=fm.id,
            name=fm.name,
            created=fm.created,
            updated=fm.updated,
            version=fm.version,
            tags=list(fm.tags),
            content=content,
            file_path=file_path,
            is_template=fm.is_template,
            is_favorite=bool(fm.is_favorite),
            favorite_order=fm.favorite_order,
            is_pinned=bool(fm.is_pinned),
            pin_order=fm.pin_order,
        )


@dataclass
class SearchHit:
    """One search result: the prompt, a plain-text excerpt and where it matched.

    highlights are (start, end) offsets into snippet. rank is bm25 (lower is
    better), 0.0 for substring matches.
    """

    prompt: Prompt
    snippet: str
    rank: float = 0.0
    highlights: list[tuple[int, int]] = field(default_factory=list)


@dataclass
class TagCount:
    name: str
    count: int


@dataclass
class SyncResult:
    """Tally of a full reconciliation pass."""

    scanned: int = 0
    created: int = 0
    updated: int = 0
    unchanged: int = 0
    removed: int = 0
    errors: dict[str, str] = field(default_factory=dict)   # path -> message

    @property
    def ok(self) -> bool:
        return not self.errors


@dataclass
class IntegrityReport:
    """Read-only comparison of the file store against the index.

    missing_files     on disk, but missing from the index
    orphaned_records  indexed, but the file is gone
    hash_mismatches   indexed and on disk, fingerprints disagree
    """

    missing_files: list[str] = field(default_factory=list)
    orphaned_records: list[str] = field(default_factory=list)
    hash_mismatches: list[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not (self.missing_files or self.orphaned_records or self.hash_mismatches)


@dataclass
class ArchivedPrompt:
    id: str
    name: str
    archived_at: datetime | None
    file_path: str
