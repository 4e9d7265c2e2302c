r"""Serialization of semantic tags and management of the in-document tag block.

Wire format, one tag per line inside the block::

    %%--- SEMANTIC TAGS ---%%
    %%tag::TYPE::UUID::"Label"::parentUUIDOrNull%%
    %%--- END SEMANTIC TAGS ---%%

``TYPE`` is a :class:`TagType` value or ``Custom:<name>``. Labels are quoted
and backslash-escaped (``\\``, ``\"``, ``\n``, ``\r``, ``\%``) so that any
label survives a write/read cycle. Backslashes that do not start one of
those escapes are read literally, so blocks written without escaping still
decode.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from enum import Enum
import logging
import re

from semtag.tagging.models import CustomKind, ParsedTag, SemanticTag, kind_from_wire

logger = logging.getLogger(__name__)

BLOCK_START_MARKER = "%%--- SEMANTIC TAGS ---%%"
BLOCK_END_MARKER = "%%--- END SEMANTIC TAGS ---%%"
NULL_PARENT = "null"

_TAG_RE = re.compile(
    r"%%tag::"
    r"(?P<type>[^:%\n]+(?::[^:%\n]*)?)::"
    r"(?P<id>[^:%\n\"]+)::"
    r"\"(?P<label>(?:[^\"\\\n]|\\.)*\\?)\"::"
    r"(?P<parent>[^:%\n\"]*)%%"
)
_ESCAPE_RE = re.compile(r"\\([\\\"nr%])")
_UNESCAPES = {"n": "\n", "r": "\r"}
_FORBIDDEN_FIELD_RE = re.compile(r"[:%\n\r\"]")


class WriteMode(str, Enum):
    REPLACE = "replace"
    MERGE = "merge"


class TagFormatError(ValueError):
    """Raised when a tag cannot be represented in the wire format."""


def escape_label(label: str) -> str:
    return (
        label.replace("\\", "\\\\")
        .replace('"', '\\"')
        .replace("\n", "\\n")
        .replace("\r", "\\r")
        .replace("%", "\\%")
    )


def unescape_label(raw: str) -> str:
    return _ESCAPE_RE.sub(lambda match: _UNESCAPES.get(match.group(1), match.group(1)), raw)


def _check_field(name: str, value: str) -> None:
    if not value or _FORBIDDEN_FIELD_RE.search(value):
        raise TagFormatError(f"Tag {name} is empty or contains reserved characters: {value!r}")


def encode_tag(tag: SemanticTag) -> str:
    """Format a single tag as one ``%%tag::...%%`` fragment."""
    _check_field("id", tag.id)
    if tag.parent_id is not None:
        _check_field("parent id", tag.parent_id)
    if isinstance(tag.kind, CustomKind) and tag.kind.name:
        _check_field("custom type name", tag.kind.name)

    parent = tag.parent_id or NULL_PARENT
    return f'%%tag::{tag.type_key}::{tag.id}::"{escape_label(tag.label)}"::{parent}%%'


def _decode_match(match: re.Match[str]) -> SemanticTag | None:
    try:
        kind = kind_from_wire(match.group("type"))
    except ValueError:
        return None

    tag_id = match.group("id").strip()
    if not tag_id:
        return None

    parent = match.group("parent").strip()
    return SemanticTag(
        kind=kind,
        id=tag_id,
        label=unescape_label(match.group("label")),
        parent_id=None if parent in ("", NULL_PARENT) else parent,
    )


def decode_all_with_stats(text: str) -> tuple[list[ParsedTag], int]:
    """Return every decodable tag in ``text`` plus the number of skipped fragments.

    Scanning is line based and ignores block markers, so tags are still
    recovered when the markers are damaged.
    """
    parsed: list[ParsedTag] = []
    skipped = 0

    for line_number, line in enumerate(text.split("\n"), start=1):
        if "%%tag::" not in line:
            continue

        matches = list(_TAG_RE.finditer(line))
        for match in matches:
            tag = _decode_match(match)
            if tag is None:
                skipped += 1
                continue
            parsed.append(ParsedTag(raw=match.group(0), tag=tag, line_number=line_number))

        # Fragments that look like tags but never matched the grammar.
        skipped += max(line.count("%%tag::") - len(matches), 0)

    if skipped:
        logger.debug("Skipped %s malformed tag fragments", skipped)
    return parsed, skipped


def decode_all(text: str) -> list[ParsedTag]:
    parsed, _ = decode_all_with_stats(text)
    return parsed


def _block_span(text: str) -> tuple[int, int] | None:
    """Locate the first well-formed block.

    The block is anchored on its end marker and opens at the nearest start
    marker before it, so an orphaned start marker never swallows the text
    that follows it.
    """
    search_from = 0
    while True:
        end = text.find(BLOCK_END_MARKER, search_from)
        if end == -1:
            return None
        start = text.rfind(BLOCK_START_MARKER, search_from, end)
        if start != -1:
            return start, end + len(BLOCK_END_MARKER)
        search_from = end + len(BLOCK_END_MARKER)


def has_block(text: str) -> bool:
    return _block_span(text) is not None


def extract_block(text: str) -> str | None:
    span = _block_span(text)
    if span is None:
        return None
    return text[span[0] : span[1]]


def remove_block(text: str) -> str:
    """Strip the tag block together with the whitespace that precedes it.

    Text is returned unchanged when no start marker is followed by an end
    marker.
    """
    span = _block_span(text)
    if span is None:
        return text
    return text[: span[0]].rstrip() + text[span[1] :]


def build_block(tags: Sequence[SemanticTag]) -> str:
    if not tags:
        return ""
    lines = "\n".join(encode_tag(tag) for tag in tags)
    return f"\n\n{BLOCK_START_MARKER}\n{lines}\n{BLOCK_END_MARKER}"


def _unique_by_id(tags: Iterable[SemanticTag]) -> list[SemanticTag]:
    seen: set[str] = set()
    unique: list[SemanticTag] = []
    for tag in tags:
        if tag.id in seen:
            continue
        seen.add(tag.id)
        unique.append(tag)
    return unique


def write_block(
    text: str,
    tags: Sequence[SemanticTag],
    mode: WriteMode = WriteMode.REPLACE,
) -> str:
    """Return ``text`` with its tag block rewritten.

    In merge mode tags already present in the document keep their current
    form and only unseen ids are appended.
    """
    if mode is WriteMode.MERGE:
        existing = [parsed.tag for parsed in decode_all(extract_block(text) or "")]
        combined = _unique_by_id([*existing, *tags])
    else:
        combined = _unique_by_id(tags)

    body = remove_block(text).rstrip()
    return body + build_block(combined)


def tag_counts(tags: Iterable[SemanticTag]) -> dict[str, int]:
    counts: dict[str, int] = {}
    for tag in tags:
        counts[tag.type_key] = counts.get(tag.type_key, 0) + 1
    return counts


def build_hierarchy(tags: Iterable[SemanticTag]) -> dict[str, list[SemanticTag]]:
    """Group tags by parent id; top-level tags sit under ``"root"``."""
    hierarchy: dict[str, list[SemanticTag]] = {}
    for tag in tags:
        hierarchy.setdefault(tag.parent_id or "root", []).append(tag)
    return hierarchy


def find_related_tags(tags: Sequence[SemanticTag], tag_id: str) -> list[SemanticTag]:
    """Siblings, then children, then the parent of the given tag."""
    target = next((tag for tag in tags if tag.id == tag_id), None)
    if target is None:
        return []

    related: list[SemanticTag] = []
    if target.parent_id:
        related.extend(tag for tag in tags if tag.parent_id == target.parent_id and tag.id != tag_id)
    related.extend(tag for tag in tags if tag.parent_id == tag_id)
    if target.parent_id:
        parent = next((tag for tag in tags if tag.id == target.parent_id), None)
        if parent is not None:
            related.append(parent)
    return related


def strip_for_display(text: str, show_tags: bool) -> str:
    if show_tags:
        return text
    return remove_block(text)
