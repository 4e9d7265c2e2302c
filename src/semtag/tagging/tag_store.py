"""Per-document tag operations built on the codec and a storage backend."""

from __future__ import annotations

import dataclasses
import logging
from typing import Any, Iterable, Sequence

from semtag.classification.responses import ClassificationResponse, Classifier
from semtag.registry.concept_registry import ConceptRegistry
from semtag.storage.filesystem import DocumentStorage, decode_document, encode_document
from semtag.tagging.codec import WriteMode, decode_all, remove_block, write_block
from semtag.tagging.models import TAG_TYPE_VOCABULARY, ParsedTag, SemanticTag, make_kind

logger = logging.getLogger(__name__)

_UPDATABLE_FIELDS = frozenset({"kind", "label", "parent_id"})


class DocumentTagStore:
    """Read-modify-write access to the tag block of one document at a time.

    Every call rewrites the whole document; concurrent writers to the same
    path are not coordinated.
    """

    def __init__(self, storage: DocumentStorage) -> None:
        self._storage = storage

    @property
    def storage(self) -> DocumentStorage:
        return self._storage

    def _read_text(self, path: str) -> str:
        return decode_document(self._storage.read_bytes(path))

    def _write_text(self, path: str, text: str) -> None:
        self._storage.write_bytes(path, encode_document(text))

    def read_parsed(self, path: str) -> list[ParsedTag]:
        return decode_all(self._read_text(path))

    def read(self, path: str) -> list[SemanticTag]:
        return [parsed.tag for parsed in self.read_parsed(path)]

    def write(
        self,
        path: str,
        tags: Sequence[SemanticTag],
        mode: WriteMode = WriteMode.MERGE,
    ) -> list[SemanticTag]:
        """Write ``tags`` into the document and return the resulting tag list."""
        updated = write_block(self._read_text(path), tags, mode)
        self._write_text(path, updated)
        return [parsed.tag for parsed in decode_all(updated)]

    def remove(self, path: str, tag_ids: Iterable[str]) -> int:
        """Drop tags by id; the block disappears when nothing remains."""
        doomed = set(tag_ids)
        text = self._read_text(path)
        existing = [parsed.tag for parsed in decode_all(text)]
        remaining = [tag for tag in existing if tag.id not in doomed]
        removed = len(existing) - len(remaining)
        if removed:
            self._write_text(path, write_block(text, remaining, WriteMode.REPLACE))
        return removed

    def update(self, path: str, tag_id: str, **changes: Any) -> SemanticTag | None:
        """Change fields of one tag in place. The id never changes."""
        changes.pop("id", None)
        unknown = set(changes) - _UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Unsupported tag fields: {', '.join(sorted(unknown))}")

        text = self._read_text(path)
        tags = [parsed.tag for parsed in decode_all(text)]
        updated_tag: SemanticTag | None = None
        for index, tag in enumerate(tags):
            if tag.id == tag_id:
                updated_tag = dataclasses.replace(tag, **changes)
                tags[index] = updated_tag

        if updated_tag is None:
            return None
        self._write_text(path, write_block(text, tags, WriteMode.REPLACE))
        return updated_tag

    def apply_classifications(
        self,
        path: str,
        responses: Sequence[ClassificationResponse],
        registry: ConceptRegistry,
        *,
        mode: WriteMode = WriteMode.MERGE,
    ) -> list[SemanticTag]:
        """Turn classifier output into registry-backed tags and write them.

        ``parent_label`` links only to labels proposed in the same batch.
        The registry is left dirty; the caller decides when to save it.
        """
        pending: list[tuple[ClassificationResponse, SemanticTag]] = []
        label_to_id: dict[str, str] = {}
        for response in responses:
            try:
                kind = make_kind(response.type, response.custom_type)
            except ValueError:
                logger.warning("Skipping classification with unknown type %r in %s", response.type, path)
                continue

            concept_id = registry.get_or_create(response.label, kind, path)
            metadata = dict(response.metadata or {})
            if response.confidence is not None:
                metadata["confidence"] = response.confidence
            pending.append(
                (response, SemanticTag(kind=kind, id=concept_id, label=response.label, metadata=metadata or None))
            )
            label_to_id.setdefault(response.label, concept_id)

        linked: list[SemanticTag] = []
        for response, tag in pending:
            parent_id = label_to_id.get(response.parent_label) if response.parent_label else None
            if parent_id is not None and parent_id != tag.id:
                tag = dataclasses.replace(tag, parent_id=parent_id)
            linked.append(tag)

        if linked:
            self.write(path, linked, mode)
        return linked

    def classify(
        self,
        path: str,
        classifier: Classifier,
        registry: ConceptRegistry,
        *,
        mode: WriteMode = WriteMode.MERGE,
    ) -> list[SemanticTag]:
        """Ask ``classifier`` about the document body and store what it proposes.

        The existing tag block is hidden from the classifier.
        """
        body = remove_block(self._read_text(path))
        responses = classifier.classify(body, TAG_TYPE_VOCABULARY)
        logger.info("Classifier proposed %s annotations for %s", len(responses), path)
        return self.apply_classifications(path, responses, registry, mode=mode)
