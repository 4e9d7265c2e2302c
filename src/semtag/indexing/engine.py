"""Cross-document concept indexing with batched, cancellable runs."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
import json
import logging
import math
from pathlib import PurePosixPath
import time
from typing import Any, Callable, Iterable

from semtag.config import IndexerConfig
from semtag.indexing.models import (
    ConceptEntry,
    ConceptJourney,
    ConceptOccurrence,
    CrossDocumentRelation,
    FirstSeen,
    IndexCostEstimate,
    IndexMetadata,
    IndexScope,
    IndexSnapshot,
    JourneyStep,
    RunState,
    TypeProgression,
)
from semtag.indexing.relations import iter_related_concepts, iter_relation_rows
from semtag.registry.concept_registry import ConceptRegistry, normalize_label
from semtag.storage.filesystem import DocumentStorage, decode_document
from semtag.tagging.models import CUSTOM_PREFIX, SemanticTag, TagKind, TagType, as_type_key
from semtag.tagging.tag_store import DocumentTagStore

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int, str], None]

CHARACTERS_PER_TOKEN = 4
LARGE_SCOPE_DOCUMENTS = 100
VERY_LARGE_SCOPE_DOCUMENTS = 500
STRONG_RELATION_THRESHOLD = 0.3
JOURNEY_RELATED_LIMIT = 20

# USD per one million input tokens.
MODEL_INPUT_PRICING = {
    "gpt-4o": 2.50,
    "gpt-4o-mini": 0.15,
    "gpt-4-turbo": 10.00,
    "gpt-3.5-turbo": 0.50,
    "claude-3-opus": 15.00,
    "claude-3-sonnet": 3.00,
    "claude-3-haiku": 0.25,
}
DEFAULT_PRICING_MODEL = "gpt-4o-mini"


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def estimate_tokens(character_count: int) -> int:
    return math.ceil(character_count / CHARACTERS_PER_TOKEN)


def estimate_cost_usd(tokens: int, model_name: str) -> float:
    price = MODEL_INPUT_PRICING.get(model_name, MODEL_INPUT_PRICING[DEFAULT_PRICING_MODEL])
    return tokens / 1_000_000 * price


class CancellationToken:
    """Advisory stop flag observed at the engine's scheduling points."""

    __slots__ = ("_cancelled",)

    def __init__(self) -> None:
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled


@dataclass(slots=True)
class _ConceptAccumulator:
    label: str
    normalized_label: str
    first_seen: FirstSeen
    occurrences: list[ConceptOccurrence] = field(default_factory=list)
    documents: dict[str, None] = field(default_factory=dict)
    types_seen: dict[str, None] = field(default_factory=dict)

    def add(self, occurrence: ConceptOccurrence) -> None:
        self.occurrences.append(occurrence)
        self.documents[occurrence.document_path] = None
        self.types_seen[occurrence.type] = None

    def freeze(self, related: tuple[str, ...]) -> ConceptEntry:
        return ConceptEntry(
            label=self.label,
            normalized_label=self.normalized_label,
            occurrences=tuple(self.occurrences),
            first_seen=self.first_seen,
            total_count=len(self.occurrences),
            distinct_document_count=len(self.documents),
            types_seen=tuple(self.types_seen),
            related_concept_labels=related,
        )


@dataclass(slots=True)
class _ScanResult:
    scanned: int = 0
    total_annotations: int = 0
    concepts: dict[str, _ConceptAccumulator] = field(default_factory=dict)
    document_annotations: dict[str, list[SemanticTag]] = field(default_factory=dict)
    document_concepts: dict[str, dict[str, None]] = field(default_factory=dict)
    errors: list[dict[str, str]] = field(default_factory=list)
    aborted: bool = False


class IndexingEngine:
    """Aggregates document tags into concept entries and document relations.

    Runs are single-threaded and cooperative: control returns to the event
    loop after every batch of documents and every ``relation_yield_every``
    rows of the pairwise loops, and those are the only places a cancellation
    request is observed. Starting a run aborts the one in flight.
    """

    def __init__(
        self,
        storage: DocumentStorage,
        *,
        tag_store: DocumentTagStore | None = None,
        registry: ConceptRegistry | None = None,
        config: IndexerConfig | None = None,
    ) -> None:
        self._storage = storage
        self._tag_store = tag_store or DocumentTagStore(storage)
        self._registry = registry
        self._config = config or IndexerConfig()
        self._token: CancellationToken | None = None
        self._snapshot: IndexSnapshot | None = None
        self._state = RunState.IDLE
        self._run_counter = 0

    @property
    def config(self) -> IndexerConfig:
        return self._config

    @property
    def state(self) -> RunState:
        return self._state

    @property
    def snapshot(self) -> IndexSnapshot | None:
        return self._snapshot

    def set_config(self, **changes: Any) -> None:
        self._config = replace(self._config, **changes)

    def abort(self) -> None:
        if self._token is not None:
            self._token.cancel()
            self._token = None

    def is_indexing(self) -> bool:
        return self._token is not None

    def clear_index(self) -> None:
        self._snapshot = None

    # ------------------------------------------------------------------
    # Scope
    # ------------------------------------------------------------------
    def documents_in_scope(
        self,
        scope: IndexScope | str = IndexScope.VAULT,
        folder_path: str | None = None,
    ) -> tuple[list[str], int]:
        """Return the capped document list and how many documents the cap dropped."""
        paths = self._storage.list_documents()

        if IndexScope(scope) is IndexScope.FOLDER and folder_path:
            prefix = folder_path.strip("/") + "/"
            paths = [path for path in paths if path.startswith(prefix)]

        patterns = [pattern.lower() for pattern in self._config.exclude_patterns if pattern]
        paths = [path for path in paths if not any(pattern in path.lower() for pattern in patterns)]

        truncated = max(len(paths) - self._config.max_files, 0)
        return paths[: self._config.max_files], truncated

    def _concept_key(self, label: str) -> tuple[str, str]:
        if self._registry is not None:
            entry = self._registry.resolve(label)
            if entry is not None:
                return entry.normalized_label, entry.canonical_label
        return normalize_label(label), label

    # ------------------------------------------------------------------
    # Cost estimate
    # ------------------------------------------------------------------
    async def estimate_cost(
        self,
        scope: IndexScope | str = IndexScope.VAULT,
        folder_path: str | None = None,
    ) -> IndexCostEstimate:
        paths, _ = self.documents_in_scope(scope, folder_path)
        total_characters = 0

        for index, path in enumerate(paths, start=1):
            try:
                total_characters += len(decode_document(self._storage.read_bytes(path)))
            except (OSError, UnicodeDecodeError, ValueError) as exc:
                logger.warning("Failed to read %s for cost estimate: %s", path, exc)
            if index % self._config.batch_size == 0:
                await asyncio.sleep(0)

        tokens = estimate_tokens(total_characters)
        cost = estimate_cost_usd(tokens, self._config.model_name)

        warning: str | None = None
        if len(paths) > VERY_LARGE_SCOPE_DOCUMENTS:
            warning = (
                f"Very large scope: {len(paths)} documents. Consider indexing specific folders instead. "
                f"Estimated cost: ~${cost:.4f}."
            )
        elif len(paths) > LARGE_SCOPE_DOCUMENTS:
            warning = f"Large scope: {len(paths)} documents. This may take a while and cost ~${cost:.4f}."

        return IndexCostEstimate(
            document_count=len(paths),
            total_characters=total_characters,
            estimated_tokens=tokens,
            estimated_cost_usd=cost,
            warning=warning,
        )

    # ------------------------------------------------------------------
    # Index build
    # ------------------------------------------------------------------
    async def build_index(
        self,
        scope: IndexScope | str = IndexScope.VAULT,
        folder_path: str | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> IndexSnapshot:
        """Scan the scope and return a fresh snapshot.

        Cancellation yields a partial snapshot with ``was_aborted`` set; it is
        never raised as an error.
        """
        self.abort()
        token = CancellationToken()
        self._token = token
        self._run_counter += 1
        run_id = self._run_counter
        try:
            snapshot = await self._run(token, IndexScope(scope), folder_path, on_progress)
        finally:
            if self._token is token:
                self._token = None

        if run_id == self._run_counter:
            self._snapshot = snapshot
            self._state = RunState.ABORTED if snapshot.metadata.was_aborted else RunState.DONE
        return snapshot

    async def _run(
        self,
        token: CancellationToken,
        scope: IndexScope,
        folder_path: str | None,
        on_progress: ProgressCallback | None,
    ) -> IndexSnapshot:
        started = time.perf_counter()
        config = self._config
        warnings: list[str] = []

        self._state = RunState.SCANNING
        paths, truncated = self.documents_in_scope(scope, folder_path)
        if truncated:
            message = (
                f"Limited to {config.max_files} documents; {truncated} more were not indexed. "
                "Consider indexing specific folders."
            )
            logger.warning(message)
            warnings.append(message)

        scan = await self._scan(paths, token, on_progress)
        aborted = scan.aborted

        relations: list[CrossDocumentRelation] = []
        related: dict[str, tuple[str, ...]] = {}
        skipped_relations = False
        skipped_related = False

        documents_with_tags = [path for path, keys in scan.document_concepts.items() if keys]
        if not aborted:
            if len(documents_with_tags) <= config.max_relation_files:
                self._state = RunState.AGGREGATING_RELATIONS
                aborted = await self._collect_relations(
                    {path: scan.document_concepts[path] for path in documents_with_tags},
                    relations,
                    token,
                )
            else:
                self._state = RunState.SKIPPING_RELATIONS
                skipped_relations = True
                message = f"Skipped cross-document relations for {len(documents_with_tags)} documents (too large)"
                logger.warning(message)
                warnings.append(message)

        if not aborted:
            if len(scan.concepts) <= config.max_concepts_for_related:
                aborted = await self._collect_related(scan.concepts, related, token)
            else:
                skipped_related = True
                message = f"Skipped related concepts for {len(scan.concepts)} concepts (too large)"
                logger.warning(message)
                warnings.append(message)

        if aborted:
            logger.info("Indexing aborted after %s of %s documents", scan.scanned, len(paths))
            warnings.append("Indexing was aborted; partial results only")

        metadata = IndexMetadata(
            last_updated=_now_iso(),
            scope=scope,
            scope_path=folder_path or "/",
            total_documents=scan.scanned,
            total_annotations=scan.total_annotations,
            total_concepts=len(scan.concepts),
            processing_time_ms=int((time.perf_counter() - started) * 1000),
            skipped_relations=skipped_relations,
            skipped_related_concepts=skipped_related,
            truncated_documents=truncated,
            was_aborted=aborted,
            warnings=tuple(warnings),
        )
        return IndexSnapshot.build(
            metadata=metadata,
            concepts={key: acc.freeze(related.get(key, ())) for key, acc in scan.concepts.items()},
            relations=relations,
            document_annotations=scan.document_annotations,
            errors=scan.errors,
        )

    async def _scan(
        self,
        paths: list[str],
        token: CancellationToken,
        on_progress: ProgressCallback | None,
    ) -> _ScanResult:
        result = _ScanResult()
        batch_size = self._config.batch_size

        for batch_start in range(0, len(paths), batch_size):
            for position, path in enumerate(paths[batch_start : batch_start + batch_size], start=batch_start + 1):
                result.scanned += 1
                name = PurePosixPath(path).name
                if on_progress is not None:
                    try:
                        on_progress(position, len(paths), name)
                    except Exception:
                        logger.exception("Progress callback failed for %s", path)
                self._index_document(path, name, result)

            if batch_start + batch_size < len(paths):
                await asyncio.sleep(self._config.batch_delay_seconds)
            if token.cancelled:
                result.aborted = True
                break

        return result

    def _index_document(self, path: str, name: str, result: _ScanResult) -> None:
        try:
            parsed_tags = self._tag_store.read_parsed(path)
        except (OSError, UnicodeDecodeError, ValueError) as exc:
            logger.warning("Failed to index document %s: %s", path, exc)
            result.errors.append({"document_path": path, "error": str(exc)})
            return

        result.document_annotations[path] = [parsed.tag for parsed in parsed_tags]
        result.total_annotations += len(parsed_tags)
        keys = result.document_concepts.setdefault(path, {})

        for parsed in parsed_tags:
            tag = parsed.tag
            key, label = self._concept_key(tag.label)
            if not key:
                logger.debug("Ignoring tag %s in %s with an empty normalized label", tag.id, path)
                continue

            accumulator = result.concepts.get(key)
            if accumulator is None:
                accumulator = _ConceptAccumulator(
                    label=label,
                    normalized_label=key,
                    first_seen=FirstSeen(document_path=path, document_name=name, timestamp=_now_iso()),
                )
                result.concepts[key] = accumulator

            accumulator.add(
                ConceptOccurrence(
                    document_path=path,
                    document_name=name,
                    annotation_id=tag.id,
                    type=tag.type_key,
                    label=tag.label,
                    line_number=parsed.line_number,
                )
            )
            keys[key] = None

    async def _collect_relations(
        self,
        document_concepts: dict[str, dict[str, None]],
        relations: list[CrossDocumentRelation],
        token: CancellationToken,
    ) -> bool:
        every = self._config.relation_yield_every
        for row_index, row in enumerate(iter_relation_rows(document_concepts), start=1):
            relations.extend(row)
            if row_index % every == 0:
                await asyncio.sleep(0)
                if token.cancelled:
                    return True
        return token.cancelled

    async def _collect_related(
        self,
        concepts: dict[str, _ConceptAccumulator],
        related: dict[str, tuple[str, ...]],
        token: CancellationToken,
    ) -> bool:
        every = self._config.relation_yield_every
        rows = iter_related_concepts(
            {key: accumulator.documents for key, accumulator in concepts.items()},
            limit=self._config.max_related_concepts,
        )
        for row_index, (key, related_keys) in enumerate(rows, start=1):
            related[key] = tuple(concepts[other].label for other in related_keys)
            if row_index % every == 0:
                await asyncio.sleep(0)
                if token.cancelled:
                    return True
        return token.cancelled

    # ------------------------------------------------------------------
    # Queries over the last snapshot
    # ------------------------------------------------------------------
    def search_concepts(self, query: str) -> list[ConceptEntry]:
        if self._snapshot is None:
            return []

        normalized_query = normalize_label(query)
        lowered = query.lower()
        matches = [
            entry
            for key, entry in self._snapshot.concepts.items()
            if normalized_query in key or lowered in entry.label.lower()
        ]
        return sorted(matches, key=lambda entry: entry.total_count, reverse=True)

    def get_concept(self, label: str) -> ConceptEntry | None:
        if self._snapshot is None:
            return None
        key, _ = self._concept_key(label)
        return self._snapshot.concepts.get(key)

    def get_related_documents(self, path: str) -> list[CrossDocumentRelation]:
        if self._snapshot is None:
            return []
        related = [relation for relation in self._snapshot.relations if relation.involves(path)]
        return sorted(related, key=lambda relation: relation.strength, reverse=True)

    def get_top_concepts(self, limit: int = 20) -> list[ConceptEntry]:
        if self._snapshot is None:
            return []
        ranked = sorted(self._snapshot.concepts.values(), key=lambda entry: entry.total_count, reverse=True)
        return ranked[:limit]

    def get_concepts_by_type(self, tag_type: TagKind | TagType | str) -> list[ConceptEntry]:
        """Concepts seen with a type; plain ``Custom`` matches every custom type."""
        if self._snapshot is None:
            return []

        key = as_type_key(tag_type)
        any_custom = key == TagType.CUSTOM.value
        matches = [
            entry
            for entry in self._snapshot.concepts.values()
            if key in entry.types_seen
            or (any_custom and any(seen.startswith(CUSTOM_PREFIX) for seen in entry.types_seen))
        ]
        return sorted(matches, key=lambda entry: entry.total_count, reverse=True)

    def get_concept_journey(self, label: str, aliases: Iterable[str] = ()) -> ConceptJourney:
        """Trace a concept and its aliases through the documents of the snapshot.

        A concept belongs to the journey when its key and one of the search
        terms contain each other. Registry aliases are added to the caller's
        aliases. Steps are numbered in document path order; related concepts
        are the other concepts sharing a document with the journey.
        """
        term = normalize_label(label)
        candidates = [normalize_label(alias) for alias in aliases]
        if self._registry is not None:
            entry = self._registry.resolve(label)
            if entry is not None:
                candidates = [entry.normalized_label, *entry.aliases, *candidates]
        alias_terms = tuple(dict.fromkeys(alias for alias in candidates if alias and alias != term))

        if self._snapshot is None or not term:
            return ConceptJourney(
                concept=label, aliases=alias_terms, steps=(), type_progression=(), related_concepts=()
            )

        search_terms = (term, *alias_terms)
        matched: list[ConceptEntry] = []
        others: list[ConceptEntry] = []
        for key, entry in self._snapshot.concepts.items():
            if any(search in key or key in search for search in search_terms):
                matched.append(entry)
            else:
                others.append(entry)

        occurrences = sorted(
            (occurrence for entry in matched for occurrence in entry.occurrences),
            key=lambda occurrence: occurrence.document_path,
        )

        counts: dict[tuple[str, str], int] = {}
        for occurrence in occurrences:
            pair = (occurrence.type, occurrence.document_path)
            counts[pair] = counts.get(pair, 0) + 1

        documents = {occurrence.document_path for occurrence in occurrences}
        related = [entry.label for entry in others if documents.intersection(entry.document_paths)]

        return ConceptJourney(
            concept=label,
            aliases=alias_terms,
            steps=tuple(
                JourneyStep(order=order, occurrence=occurrence)
                for order, occurrence in enumerate(occurrences, start=1)
            ),
            type_progression=tuple(
                TypeProgression(type=tag_type, document_path=path, count=count)
                for (tag_type, path), count in counts.items()
            ),
            related_concepts=tuple(related[:JOURNEY_RELATED_LIMIT]),
        )

    def get_statistics(self) -> dict[str, Any] | None:
        if self._snapshot is None:
            return None

        total_occurrences = 0
        repeated = 0
        multi_document = 0
        type_breakdown: dict[str, int] = {}
        for entry in self._snapshot.concepts.values():
            total_occurrences += entry.total_count
            if entry.total_count > 1:
                repeated += 1
            if entry.distinct_document_count > 1:
                multi_document += 1
            for seen in entry.types_seen:
                type_breakdown[seen] = type_breakdown.get(seen, 0) + 1

        total_concepts = len(self._snapshot.concepts)
        strong = sum(1 for relation in self._snapshot.relations if relation.strength > STRONG_RELATION_THRESHOLD)
        return {
            "total_concepts": total_concepts,
            "total_occurrences": total_occurrences,
            "avg_occurrences_per_concept": total_occurrences / total_concepts if total_concepts else 0.0,
            "concepts_appearing_multiple_times": repeated,
            "concepts_in_multiple_documents": multi_document,
            "total_relations": len(self._snapshot.relations),
            "strong_relationships": strong,
            "type_breakdown": type_breakdown,
        }

    def export_json(self) -> str:
        if self._snapshot is None:
            return "{}"
        return json.dumps(self._snapshot.to_dict(), ensure_ascii=False, indent=2)

    def import_json(self, raw: str) -> IndexSnapshot:
        self._snapshot = IndexSnapshot.from_dict(json.loads(raw))
        return self._snapshot
