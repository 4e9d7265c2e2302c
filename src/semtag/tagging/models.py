"""Canonical annotation structures shared by the codec, store and indexer."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Union


class TagType(str, Enum):
    """Fixed annotation vocabulary understood by the wire format."""

    AXIOM = "Axiom"
    CLAIM = "Claim"
    EVIDENCE_BUNDLE = "EvidenceBundle"
    SCIENTIFIC_PROCESS = "ScientificProcess"
    RELATIONSHIP = "Relationship"
    INTERNAL_LINK = "InternalLink"
    EXTERNAL_LINK = "ExternalLink"
    PROPER_NAME = "ProperName"
    FORWARD_LINK = "ForwardLink"
    WORD_ONTOLOGY = "WordOntology"
    SENTENCE = "Sentence"
    PARAGRAPH = "Paragraph"
    CUSTOM = "Custom"


CUSTOM_PREFIX = "Custom:"
TAG_TYPE_VOCABULARY = tuple(tag_type.value for tag_type in TagType)


@dataclass(frozen=True, slots=True)
class StandardKind:
    """One of the fixed tag types (never ``TagType.CUSTOM``)."""

    type: TagType

    def __post_init__(self) -> None:
        if self.type is TagType.CUSTOM:
            raise ValueError("Use CustomKind for custom tag types")

    @property
    def wire_name(self) -> str:
        return self.type.value


@dataclass(frozen=True, slots=True)
class CustomKind:
    """User-defined tag type carried as ``Custom:<name>`` on the wire."""

    name: str = ""

    @property
    def type(self) -> TagType:
        return TagType.CUSTOM

    @property
    def wire_name(self) -> str:
        if not self.name:
            return TagType.CUSTOM.value
        return f"{CUSTOM_PREFIX}{self.name}"


TagKind = Union[StandardKind, CustomKind]


def kind_from_wire(value: str) -> TagKind:
    """Parse the TYPE field of a serialized tag.

    Raises ``ValueError`` for names outside the fixed vocabulary.
    """
    value = value.strip()
    if value.startswith(CUSTOM_PREFIX):
        return CustomKind(value[len(CUSTOM_PREFIX):].strip())
    tag_type = TagType(value)
    if tag_type is TagType.CUSTOM:
        return CustomKind()
    return StandardKind(tag_type)


def make_kind(tag_type: TagType | str, custom_name: str | None = None) -> TagKind:
    if isinstance(tag_type, str) and tag_type.startswith(CUSTOM_PREFIX):
        return kind_from_wire(tag_type)
    resolved = TagType(tag_type)
    if resolved is TagType.CUSTOM:
        return CustomKind(custom_name or "")
    return StandardKind(resolved)


def as_type_key(value: TagKind | TagType | str) -> str:
    """Return the wire spelling for a kind, enum member or raw string."""
    if isinstance(value, (StandardKind, CustomKind)):
        return value.wire_name
    if isinstance(value, TagType):
        return value.value
    return str(value)


@dataclass(frozen=True, slots=True)
class SemanticTag:
    """A typed, identified, labeled assertion attached to a document.

    ``metadata`` lives only in memory; the block format has no field for it.
    """

    kind: TagKind
    id: str
    label: str
    parent_id: str | None = None
    metadata: dict[str, Any] | None = None

    @property
    def type(self) -> TagType:
        return self.kind.type

    @property
    def custom_type_name(self) -> str | None:
        if isinstance(self.kind, CustomKind):
            return self.kind.name or None
        return None

    @property
    def type_key(self) -> str:
        return self.kind.wire_name

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type.value,
            "customTypeName": self.custom_type_name,
            "id": self.id,
            "label": self.label,
            "parentId": self.parent_id,
            "metadata": self.metadata,
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "SemanticTag":
        return cls(
            kind=make_kind(payload["type"], payload.get("customTypeName")),
            id=str(payload["id"]),
            label=str(payload["label"]),
            parent_id=payload.get("parentId"),
            metadata=payload.get("metadata"),
        )


@dataclass(frozen=True, slots=True)
class ParsedTag:
    """A tag recovered from document text with its raw fragment."""

    raw: str
    tag: SemanticTag
    line_number: int
