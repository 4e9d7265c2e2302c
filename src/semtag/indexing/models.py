"""Index snapshot structures produced by the indexing engine."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Mapping

from semtag.tagging.models import SemanticTag


class IndexScope(str, Enum):
    FOLDER = "folder"
    VAULT = "vault"


class RunState(str, Enum):
    IDLE = "idle"
    SCANNING = "scanning"
    AGGREGATING_RELATIONS = "aggregating_relations"
    SKIPPING_RELATIONS = "skipping_relations"
    DONE = "done"
    ABORTED = "aborted"


@dataclass(frozen=True, slots=True)
class ConceptOccurrence:
    document_path: str
    document_name: str
    annotation_id: str
    type: str
    label: str
    line_number: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "document_path": self.document_path,
            "document_name": self.document_name,
            "annotation_id": self.annotation_id,
            "type": self.type,
            "label": self.label,
            "line_number": self.line_number,
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "ConceptOccurrence":
        return cls(
            document_path=payload["document_path"],
            document_name=payload["document_name"],
            annotation_id=payload["annotation_id"],
            type=payload["type"],
            label=payload["label"],
            line_number=payload.get("line_number"),
        )


@dataclass(frozen=True, slots=True)
class FirstSeen:
    document_path: str
    document_name: str
    timestamp: str


@dataclass(frozen=True, slots=True)
class ConceptEntry:
    """Corpus statistics for one normalized label; rebuilt on every run."""

    label: str
    normalized_label: str
    occurrences: tuple[ConceptOccurrence, ...]
    first_seen: FirstSeen
    total_count: int
    distinct_document_count: int
    types_seen: tuple[str, ...]
    related_concept_labels: tuple[str, ...] = ()

    @property
    def document_paths(self) -> tuple[str, ...]:
        return tuple(dict.fromkeys(occurrence.document_path for occurrence in self.occurrences))

    def to_dict(self) -> dict[str, Any]:
        return {
            "label": self.label,
            "normalized_label": self.normalized_label,
            "occurrences": [occurrence.to_dict() for occurrence in self.occurrences],
            "first_seen": {
                "document_path": self.first_seen.document_path,
                "document_name": self.first_seen.document_name,
                "timestamp": self.first_seen.timestamp,
            },
            "total_count": self.total_count,
            "distinct_document_count": self.distinct_document_count,
            "types_seen": list(self.types_seen),
            "related_concept_labels": list(self.related_concept_labels),
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "ConceptEntry":
        first_seen = payload["first_seen"]
        return cls(
            label=payload["label"],
            normalized_label=payload["normalized_label"],
            occurrences=tuple(ConceptOccurrence.from_dict(item) for item in payload["occurrences"]),
            first_seen=FirstSeen(
                document_path=first_seen["document_path"],
                document_name=first_seen["document_name"],
                timestamp=first_seen["timestamp"],
            ),
            total_count=int(payload["total_count"]),
            distinct_document_count=int(payload["distinct_document_count"]),
            types_seen=tuple(payload["types_seen"]),
            related_concept_labels=tuple(payload.get("related_concept_labels", ())),
        )


@dataclass(frozen=True, slots=True)
class CrossDocumentRelation:
    """Shared-concept link between two documents, ``document_a < document_b``."""

    document_a: str
    document_b: str
    shared_labels: tuple[str, ...]
    strength: float

    def involves(self, path: str) -> bool:
        return path in (self.document_a, self.document_b)

    def to_dict(self) -> dict[str, Any]:
        return {
            "document_a": self.document_a,
            "document_b": self.document_b,
            "shared_labels": list(self.shared_labels),
            "strength": self.strength,
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "CrossDocumentRelation":
        return cls(
            document_a=payload["document_a"],
            document_b=payload["document_b"],
            shared_labels=tuple(payload["shared_labels"]),
            strength=float(payload["strength"]),
        )


@dataclass(frozen=True, slots=True)
class IndexMetadata:
    last_updated: str
    scope: IndexScope
    scope_path: str
    total_documents: int
    total_annotations: int
    total_concepts: int
    processing_time_ms: int
    skipped_relations: bool = False
    skipped_related_concepts: bool = False
    truncated_documents: int = 0
    was_aborted: bool = False
    warnings: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "last_updated": self.last_updated,
            "scope": self.scope.value,
            "scope_path": self.scope_path,
            "total_documents": self.total_documents,
            "total_annotations": self.total_annotations,
            "total_concepts": self.total_concepts,
            "processing_time_ms": self.processing_time_ms,
            "skipped_relations": self.skipped_relations,
            "skipped_related_concepts": self.skipped_related_concepts,
            "truncated_documents": self.truncated_documents,
            "was_aborted": self.was_aborted,
            "warnings": list(self.warnings),
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "IndexMetadata":
        return cls(
            last_updated=payload["last_updated"],
            scope=IndexScope(payload["scope"]),
            scope_path=payload["scope_path"],
            total_documents=int(payload["total_documents"]),
            total_annotations=int(payload["total_annotations"]),
            total_concepts=int(payload["total_concepts"]),
            processing_time_ms=int(payload["processing_time_ms"]),
            skipped_relations=bool(payload.get("skipped_relations", False)),
            skipped_related_concepts=bool(payload.get("skipped_related_concepts", False)),
            truncated_documents=int(payload.get("truncated_documents", 0)),
            was_aborted=bool(payload.get("was_aborted", False)),
            warnings=tuple(payload.get("warnings", ())),
        )


@dataclass(frozen=True, slots=True)
class IndexSnapshot:
    """Point-in-time index; a new run replaces it wholesale."""

    metadata: IndexMetadata
    concepts: Mapping[str, ConceptEntry]
    relations: tuple[CrossDocumentRelation, ...]
    document_annotations: Mapping[str, tuple[SemanticTag, ...]]
    errors: tuple[Mapping[str, str], ...] = field(default_factory=tuple)

    @classmethod
    def build(
        cls,
        *,
        metadata: IndexMetadata,
        concepts: Mapping[str, ConceptEntry],
        relations: list[CrossDocumentRelation] | tuple[CrossDocumentRelation, ...],
        document_annotations: Mapping[str, list[SemanticTag] | tuple[SemanticTag, ...]],
        errors: list[dict[str, str]] | tuple[dict[str, str], ...] = (),
    ) -> "IndexSnapshot":
        return cls(
            metadata=metadata,
            concepts=MappingProxyType(dict(concepts)),
            relations=tuple(relations),
            document_annotations=MappingProxyType(
                {path: tuple(tags) for path, tags in document_annotations.items()}
            ),
            errors=tuple(MappingProxyType(dict(error)) for error in errors),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "metadata": self.metadata.to_dict(),
            "concepts": {key: entry.to_dict() for key, entry in self.concepts.items()},
            "relations": [relation.to_dict() for relation in self.relations],
            "document_annotations": {
                path: [tag.to_dict() for tag in tags] for path, tags in self.document_annotations.items()
            },
            "errors": [dict(error) for error in self.errors],
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "IndexSnapshot":
        return cls.build(
            metadata=IndexMetadata.from_dict(payload["metadata"]),
            concepts={key: ConceptEntry.from_dict(entry) for key, entry in payload["concepts"].items()},
            relations=[CrossDocumentRelation.from_dict(item) for item in payload["relations"]],
            document_annotations={
                path: [SemanticTag.from_dict(tag) for tag in tags]
                for path, tags in payload["document_annotations"].items()
            },
            errors=[dict(error) for error in payload.get("errors", [])],
        )


@dataclass(frozen=True, slots=True)
class JourneyStep:
    order: int
    occurrence: ConceptOccurrence

    def to_dict(self) -> dict[str, Any]:
        return {"order": self.order, **self.occurrence.to_dict()}


@dataclass(frozen=True, slots=True)
class TypeProgression:
    type: str
    document_path: str
    count: int

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "document_path": self.document_path, "count": self.count}


@dataclass(frozen=True, slots=True)
class ConceptJourney:
    """How one concept and its aliases travel through the documents of a snapshot."""

    concept: str
    aliases: tuple[str, ...]
    steps: tuple[JourneyStep, ...]
    type_progression: tuple[TypeProgression, ...]
    related_concepts: tuple[str, ...]

    @property
    def document_paths(self) -> tuple[str, ...]:
        return tuple(dict.fromkeys(step.occurrence.document_path for step in self.steps))

    def to_dict(self) -> dict[str, Any]:
        return {
            "concept": self.concept,
            "aliases": list(self.aliases),
            "steps": [step.to_dict() for step in self.steps],
            "type_progression": [item.to_dict() for item in self.type_progression],
            "related_concepts": list(self.related_concepts),
        }


@dataclass(frozen=True, slots=True)
class IndexCostEstimate:
    document_count: int
    total_characters: int
    estimated_tokens: int
    estimated_cost_usd: float
    warning: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "document_count": self.document_count,
            "total_characters": self.total_characters,
            "estimated_tokens": self.estimated_tokens,
            "estimated_cost_usd": self.estimated_cost_usd,
            "warning": self.warning,
        }
