"""Split, parse and render ``---`` delimited YAML frontmatter.

A prompt file is an optional YAML header followed by the body, verbatim:

    ---
    id: 0b7c...
    name: Coding Assistant
    ---
    body text

No opening delimiter means no header; the whole file is body.  An opening
delimiter without a closing one is an error.
"""

from __future__ import annotations

from typing import Any

import yaml

from grimoire.errors import NotReadableError, ValidationError

DELIMITER = "---"
_BOM = "\ufeff"


def split(text: str) -> tuple[str | None, str]:
    """Return (header_text, body). header_text is None when there is no header."""
    if text.startswith(_BOM):
        text = text[len(_BOM):]

    lines = text.splitlines(keepends=True)
    if not lines or lines[0].rstrip("\r\n") != DELIMITER:
        return None, text

    for i in range(1, len(lines)):
        if lines[i].rstrip("\r\n") == DELIMITER:
            header = "".join(lines[1:i])
            body = "".join(lines[i + 1:])
            return header, body

    msg = "unterminated frontmatter: opening '---' has no closing '---'"
    raise NotReadableError(msg)


def parse(text: str) -> tuple[dict[str, Any], str]:
    """Parse a file's text into (header mapping, body)."""
    header_text, body = split(text)
    if header_text is None:
        return {}, body

    try:
        data = yaml.safe_load(header_text)
    except yaml.YAMLError as exc:
        msg = f"invalid YAML in frontmatter: {exc}"
        raise NotReadableError(msg) from exc

    if data is None:
        return {}, body
    if not isinstance(data, dict):
        msg = f"frontmatter must be a mapping, got {type(data).__name__}"
        raise ValidationError(msg)
    return data, body


def _body_is_unambiguous(body: str) -> bool:
    """True if body can be written without a header and read back unchanged."""
    first = body.lstrip(_BOM).split("\n", 1)[0].rstrip("\r")
    return first != DELIMITER and not body.startswith(_BOM)


def render(header: dict[str, Any], body: str) -> str:
    """Serialise header + body. parse(render(h, b)) returns b unchanged."""
    if not header and _body_is_unambiguous(body):
        return body
    dumped = yaml.safe_dump(header, sort_keys=False, allow_unicode=True, default_flow_style=False)
    return f"{DELIMITER}\n{dumped}{DELIMITER}\n{body}"
