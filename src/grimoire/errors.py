"""Error taxonomy shared by every layer.

Each error carries a stable ``code`` so callers (CLI, watcher) can branch on
the kind of failure without string matching:

    not_found       lookup by id/name failed
    duplicate_name  create/rename/restore collision
    storage_io      file read/write/delete failure
    not_readable    file absent, unparseable, or header unterminated
    index           SQLite failure (constraint, connection, corrupt DB)
    validation      malformed frontmatter or bad input
"""

from __future__ import annotations


class GrimoireError(Exception):
    """Base class. ``str(err)`` is always fit to show to a user."""

    code = "error"


class NotFoundError(GrimoireError):
    code = "not_found"

    def __init__(self, key: str) -> None:
        self.key = key
        super().__init__(f"Prompt not found: {key}")


class DuplicateNameError(GrimoireError):
    code = "duplicate_name"

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"A prompt named {name!r} already exists")


class StorageIOError(GrimoireError):
    code = "storage_io"

    def __init__(self, message: str, path: object = None) -> None:
        self.path = str(path) if path is not None else None
        super().__init__(message)


class NotReadableError(StorageIOError):
    code = "not_readable"


class IndexStoreError(GrimoireError):
    code = "index"

    def __init__(self, message: str, sql: str | None = None) -> None:
        self.sql = sql
        super().__init__(message)


class ValidationError(GrimoireError):
    code = "validation"

    def __init__(self, message: str, field: str | None = None) -> None:
        self.field = field
        super().__init__(message)
