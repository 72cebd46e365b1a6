"""Frontmatter codec, content hashing and header validation."""

from __future__ import annotations

from datetime import UTC, datetime

import pytest

from grimoire import frontmatter
from grimoire.errors import NotReadableError, ValidationError
from grimoire.hashing import content_hash
from grimoire.models import Frontmatter, normalize_tags


def test_content_hash_known_values():
    assert content_hash("") == "e3b0c44298fc1c149afbf4c8996fb92427ae41e4649b934ca495991b7852b855"
    assert content_hash("abc") == "ba7816bf8f01cfea414140de5dae2223b00361a396177a9cb410ff61f20015ad"


def test_content_hash_is_utf8_sensitive():
    assert content_hash("café") != content_hash("cafe")
    assert len(content_hash("café")) == 64


def test_no_opening_delimiter_means_no_header():
    header, body = frontmatter.split("just a body\n---\nmore\n")
    assert header is None
    assert body == "just a body\n---\nmore\n"
    assert frontmatter.parse("just a body") == ({}, "just a body")


def test_unterminated_header_is_not_readable():
    with pytest.raises(NotReadableError, match="unterminated"):
        frontmatter.parse("---\nname: x\nbody without closing\n")


def test_invalid_yaml_is_not_readable():
    with pytest.raises(NotReadableError):
        frontmatter.parse("---\nname: [unclosed\n---\nbody\n")


def test_non_mapping_header_is_a_validation_error():
    with pytest.raises(ValidationError):
        frontmatter.parse("---\n- a\n- b\n---\nbody\n")


def test_empty_header_parses_to_empty_mapping():
    assert frontmatter.parse("---\n---\nbody") == ({}, "body")


def test_leading_bom_is_ignored():
    header, body = frontmatter.parse("\ufeff---\nname: x\n---\nbody\n")
    assert header == {"name": "x"}
    assert body == "body\n"


@pytest.mark.parametrize("body", [
    "",
    "plain\n",
    "\n\nleading blank lines and trailing spaces   \n\n",
    "a body with\n---\na delimiter line inside\n",
    "windows\r\nline endings\r\n",
    "no trailing newline",
    "unicode: ünïcödé ✓\n",
])
def test_render_then_parse_keeps_body_verbatim(body):
    header = {"id": "p1", "name": "Example", "tags": ["a", "b"]}
    parsed_header, parsed_body = frontmatter.parse(frontmatter.render(header, body))
    assert parsed_header == header
    assert parsed_body == body


def test_render_without_header_adds_one_when_body_looks_like_a_header():
    text = frontmatter.render({}, "---\nnot a header\n")
    assert frontmatter.parse(text) == ({}, "---\nnot a header\n")
    assert frontmatter.render({}, "plain\n") == "plain\n"


def test_header_keys_keep_their_order():
    text = frontmatter.render({"id": "1", "name": "n", "version": 1}, "")
    assert text.splitlines()[1:4] == ["id: '1'", "name: n", "version: 1"]


# ---------------------------------------------------------------------------
# Frontmatter model
# ---------------------------------------------------------------------------

_VALID = {
    "id": "p1",
    "name": "Coding Assistant",
    "created": "2026-10-18T09:00:00+00:00",
    "updated": "2026-10-18T09:00:00+00:00",
}


def test_from_header_defaults():
    fm = Frontmatter.from_header(dict(_VALID))
    assert fm.tags == []
    assert fm.version == 1
    assert fm.is_template is False
    assert fm.is_favorite is None
    assert fm.created == datetime(2026, 10, 18, 9, 0, tzinfo=UTC)


@pytest.mark.parametrize("missing", ["id", "name", "created", "updated"])
def test_from_header_requires_core_fields(missing):
    data = dict(_VALID)
    del data[missing]
    with pytest.raises(ValidationError) as exc_info:
        Frontmatter.from_header(data)
    assert exc_info.value.field == missing


@pytest.mark.parametrize(("key", "value"), [
    ("tags", "coding"),
    ("tags", [1, 2]),
    ("version", 0),
    ("version", "two"),
    ("isTemplate", "yes"),
    ("created", "yesterday"),
    ("name", "   "),
])
def test_from_header_rejects_bad_values(key, value):
    with pytest.raises(ValidationError):
        Frontmatter.from_header({**_VALID, key: value})


def test_yaml_datetimes_are_accepted():
    header, _ = frontmatter.parse(
        "---\nid: p1\nname: n\ncreated: 2026-10-18 09:00:00\nupdated: 2026-10-18T10:00:00Z\n---\n"
    )
    fm = Frontmatter.from_header(header)
    assert fm.created == datetime(2026, 10, 18, 9, 0, tzinfo=UTC)
    assert fm.updated == datetime(2026, 10, 18, 10, 0, tzinfo=UTC)


def test_unknown_keys_survive_a_round_trip():
    fm = Frontmatter.from_header({**_VALID, "model": "gpt", "temperature": 0.2})
    assert fm.extra == {"model": "gpt", "temperature": 0.2}
    header = fm.to_header()
    assert header["model"] == "gpt"
    assert Frontmatter.from_header(header) == fm


def test_to_header_omits_unset_flags():
    header = Frontmatter.from_header(dict(_VALID)).to_header()
    assert "isFavorite" not in header
    assert "archivedAt" not in header
    assert header["isTemplate"] is False


def test_normalize_tags():
    assert normalize_tags(["Coding", " coding ", "", "python", "PYTHON"]) == ["Coding", "python"]
    assert normalize_tags(None) == []
