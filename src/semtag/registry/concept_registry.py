"""Corpus-wide registry mapping normalized labels to stable concept ids."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
import json
import logging
import re
from typing import Any
import uuid

from semtag.storage.filesystem import DocumentStorage, decode_document, encode_document
from semtag.tagging.models import TagKind, TagType, as_type_key

logger = logging.getLogger(__name__)

REGISTRY_VERSION = "1.0.0"
DEFAULT_REGISTRY_PATH = ".semtag/concept-registry.json"

_STRIP_RE = re.compile(r"[^\w\s-]", re.UNICODE)
_SPACE_RE = re.compile(r"\s+", re.UNICODE)


def normalize_label(label: str) -> str:
    """Fold case, punctuation and whitespace so equivalent labels compare equal."""
    lowered = label.lower().strip()
    lowered = _STRIP_RE.sub("", lowered)
    return _SPACE_RE.sub(" ", lowered).strip()


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass(slots=True)
class ConceptRegistryEntry:
    id: str
    canonical_label: str
    normalized_label: str
    type: str
    first_seen_document: str
    first_seen_timestamp: str
    aliases: list[str] = field(default_factory=list)
    metadata: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "canonicalLabel": self.canonical_label,
            "normalizedLabel": self.normalized_label,
            "type": self.type,
            "firstSeenDocument": self.first_seen_document,
            "firstSeenTimestamp": self.first_seen_timestamp,
            "aliases": list(self.aliases),
            "metadata": self.metadata,
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "ConceptRegistryEntry":
        return cls(
            id=str(payload["id"]),
            canonical_label=str(payload["canonicalLabel"]),
            normalized_label=str(payload["normalizedLabel"]),
            type=str(payload.get("type", TagType.CUSTOM.value)),
            first_seen_document=str(payload.get("firstSeenDocument", "")),
            first_seen_timestamp=str(payload.get("firstSeenTimestamp", "")),
            aliases=[str(alias) for alias in payload.get("aliases", [])],
            metadata=payload.get("metadata"),
        )


class ConceptRegistry:
    """Single source of truth for concept identity across the vault.

    The registry is an explicitly owned component: construct it once, call
    :meth:`load`, pass it to whatever needs identity resolution and call
    :meth:`save` after a batch of mutations. Nothing is saved automatically.

    Merged concepts leave a redirect from their old id to the surviving id,
    so ids already written into documents keep resolving through
    :meth:`get_by_uuid`.
    """

    def __init__(self, storage: DocumentStorage, path: str = DEFAULT_REGISTRY_PATH) -> None:
        self._storage = storage
        self._path = path
        self._concepts: dict[str, ConceptRegistryEntry] = {}
        self._uuid_index: dict[str, str] = {}
        self._redirects: dict[str, str] = {}
        self._version = REGISTRY_VERSION
        self._last_updated = _now_iso()
        self._loaded = False
        self._dirty = False

    @property
    def path(self) -> str:
        return self._path

    @property
    def is_loaded(self) -> bool:
        return self._loaded

    @property
    def is_dirty(self) -> bool:
        return self._dirty

    @property
    def last_updated(self) -> str:
        return self._last_updated

    def __len__(self) -> int:
        return len(self._concepts)

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------
    def _reset(self) -> None:
        self._concepts = {}
        self._uuid_index = {}
        self._redirects = {}
        self._version = REGISTRY_VERSION
        self._last_updated = _now_iso()

    def load(self) -> None:
        """Load persisted state; unreadable or corrupt files start a fresh registry."""
        if not self._path:
            logger.error("Concept registry path is empty, starting with an empty registry")
            self._reset()
            self._loaded = True
            return

        try:
            exists = self._storage.exists(self._path)
        except (OSError, ValueError) as exc:
            logger.error("Failed to check concept registry %s: %s", self._path, exc)
            self._reset()
            self._loaded = True
            return

        if not exists:
            logger.info("No concept registry at %s, creating one", self._path)
            self._reset()
            self.save(force=True)
            self._loaded = True
            return

        try:
            payload = json.loads(decode_document(self._storage.read_bytes(self._path)))
            self._apply_payload(payload)
        except (OSError, UnicodeDecodeError, ValueError, KeyError, TypeError, AttributeError) as exc:
            logger.error("Failed to load concept registry %s: %s", self._path, exc)
            self._reset()
            self._dirty = False
        self._loaded = True

    def _apply_payload(self, payload: dict[str, Any]) -> None:
        if not isinstance(payload, dict) or not isinstance(payload.get("concepts"), dict):
            raise ValueError("Registry payload must be an object with a 'concepts' mapping")

        concepts = {
            str(key): ConceptRegistryEntry.from_dict(entry) for key, entry in payload["concepts"].items()
        }
        uuid_index = {str(key): str(value) for key, value in (payload.get("uuidIndex") or {}).items()}
        for key, entry in concepts.items():
            uuid_index.setdefault(entry.id, key)

        self._concepts = concepts
        self._uuid_index = uuid_index
        self._redirects = {str(key): str(value) for key, value in (payload.get("redirects") or {}).items()}
        self._version = payload.get("version")
        self._last_updated = str(payload.get("lastUpdated") or _now_iso())
        self._dirty = False

        if self._version != REGISTRY_VERSION:
            self._migrate(self._version)

    def _migrate(self, from_version: object) -> None:
        # No schema changes yet; only the stamp moves forward.
        logger.info("Migrating concept registry from version %s to %s", from_version, REGISTRY_VERSION)
        self._version = REGISTRY_VERSION
        self._dirty = True

    def to_payload(self) -> dict[str, Any]:
        return {
            "version": self._version,
            "lastUpdated": self._last_updated,
            "concepts": {key: entry.to_dict() for key, entry in self._concepts.items()},
            "uuidIndex": dict(self._uuid_index),
            "redirects": dict(self._redirects),
        }

    def save(self, *, force: bool = False) -> bool:
        """Persist the registry when dirty. Returns True when a write happened."""
        if not force and self._loaded and not self._dirty:
            return False

        self._last_updated = _now_iso()
        content = json.dumps(self.to_payload(), ensure_ascii=False, indent=2)
        try:
            self._storage.write_bytes(self._path, encode_document(content))
        except (OSError, ValueError) as exc:
            logger.error("Failed to save concept registry %s: %s", self._path, exc)
            return False

        self._dirty = False
        return True

    # ------------------------------------------------------------------
    # Identity resolution
    # ------------------------------------------------------------------
    def _find_alias_owner(self, normalized: str) -> ConceptRegistryEntry | None:
        for entry in self._concepts.values():
            if normalized in entry.aliases:
                return entry
        return None

    def resolve(self, label: str) -> ConceptRegistryEntry | None:
        """Look a label up by primary key, then by alias, without creating anything."""
        normalized = normalize_label(label)
        entry = self._concepts.get(normalized)
        if entry is not None:
            return entry
        return self._find_alias_owner(normalized)

    def get_or_create(self, label: str, tag_type: TagKind | TagType | str, source_document: str) -> str:
        """Return the stable id for ``label``, minting one on first sight."""
        entry = self.resolve(label)
        if entry is not None:
            return entry.id

        normalized = normalize_label(label)
        concept_id = self._generate_unique_id()
        self._concepts[normalized] = ConceptRegistryEntry(
            id=concept_id,
            canonical_label=label,
            normalized_label=normalized,
            type=as_type_key(tag_type),
            first_seen_document=source_document,
            first_seen_timestamp=_now_iso(),
        )
        self._uuid_index[concept_id] = normalized
        self._dirty = True
        return concept_id

    def _generate_unique_id(self) -> str:
        while True:
            candidate = str(uuid.uuid4())
            if candidate not in self._uuid_index and candidate not in self._redirects:
                return candidate

    def get_uuid(self, label: str) -> str | None:
        entry = self.resolve(label)
        return entry.id if entry is not None else None

    def get_by_uuid(self, concept_id: str) -> ConceptRegistryEntry | None:
        """Resolve an id, following merge redirects to the surviving concept."""
        visited: set[str] = set()
        current = concept_id
        while current in self._redirects and current not in visited:
            visited.add(current)
            current = self._redirects[current]

        normalized = self._uuid_index.get(current)
        if normalized is None:
            return None
        return self._concepts.get(normalized)

    def get_by_label(self, label: str) -> ConceptRegistryEntry | None:
        return self._concepts.get(normalize_label(label))

    def exists(self, label: str) -> bool:
        return normalize_label(label) in self._concepts

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------
    def add_alias(self, label: str, alias: str) -> bool:
        """Attach ``alias`` to the concept ``label``.

        Returns False when ``label`` is unknown or when the alias is already
        claimed by a different concept (as its key or one of its aliases).
        """
        entry = self._concepts.get(normalize_label(label))
        if entry is None:
            return False

        normalized_alias = normalize_label(alias)
        if not normalized_alias or normalized_alias == entry.normalized_label:
            return True

        owner = self._concepts.get(normalized_alias) or self._find_alias_owner(normalized_alias)
        if owner is not None and owner is not entry:
            logger.warning(
                "Alias %r for %r already belongs to concept %r",
                normalized_alias,
                entry.normalized_label,
                owner.normalized_label,
            )
            return False

        if normalized_alias not in entry.aliases:
            entry.aliases.append(normalized_alias)
            self._dirty = True
        return True

    def merge(self, keep_label: str, merge_label: str) -> bool:
        """Fold ``merge_label`` into ``keep_label``; the merged id becomes a redirect."""
        keep_key = normalize_label(keep_label)
        merge_key = normalize_label(merge_label)
        if keep_key == merge_key:
            return False

        keep_entry = self._concepts.get(keep_key)
        merge_entry = self._concepts.get(merge_key)
        if keep_entry is None or merge_entry is None:
            return False

        for alias in [merge_key, *merge_entry.aliases]:
            if alias not in keep_entry.aliases and alias != keep_key:
                keep_entry.aliases.append(alias)

        self._uuid_index.pop(merge_entry.id, None)
        del self._concepts[merge_key]
        self._redirects[merge_entry.id] = keep_entry.id
        self._dirty = True
        return True

    def update_metadata(self, label: str, metadata: dict[str, Any]) -> bool:
        entry = self._concepts.get(normalize_label(label))
        if entry is None:
            return False
        entry.metadata = {**(entry.metadata or {}), **metadata}
        self._dirty = True
        return True

    def clear(self) -> None:
        """Drop every concept. Existing document ids stop resolving."""
        self._reset()
        self._dirty = True

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------
    def all_concepts(self) -> list[ConceptRegistryEntry]:
        return list(self._concepts.values())

    def concepts_by_type(self, tag_type: TagKind | TagType | str) -> list[ConceptRegistryEntry]:
        key = as_type_key(tag_type)
        return [entry for entry in self._concepts.values() if entry.type == key]

    def search(self, query: str) -> list[ConceptRegistryEntry]:
        normalized_query = normalize_label(query)
        return [
            entry
            for entry in self._concepts.values()
            if normalized_query in entry.normalized_label
            or any(normalized_query in alias for alias in entry.aliases)
        ]

    def stats(self) -> dict[str, Any]:
        by_type: dict[str, int] = {}
        with_aliases = 0
        for entry in self._concepts.values():
            by_type[entry.type] = by_type.get(entry.type, 0) + 1
            if entry.aliases:
                with_aliases += 1

        return {
            "total_concepts": len(self._concepts),
            "by_type": by_type,
            "with_aliases": with_aliases,
            "redirects": len(self._redirects),
            "last_updated": self._last_updated,
        }

    def export_json(self) -> str:
        return json.dumps(self.to_payload(), ensure_ascii=False, indent=2)

    def import_json(self, raw: str, *, overwrite: bool = False) -> int:
        """Merge concepts from an exported registry; returns how many were taken."""
        payload = json.loads(raw)
        if not isinstance(payload, dict) or not isinstance(payload.get("concepts"), dict):
            raise ValueError("Registry payload must be an object with a 'concepts' mapping")

        imported = 0
        for key, raw_entry in payload["concepts"].items():
            if not overwrite and key in self._concepts:
                continue
            entry = ConceptRegistryEntry.from_dict(raw_entry)
            previous = self._concepts.get(key)
            if previous is not None:
                self._uuid_index.pop(previous.id, None)
            self._concepts[key] = entry
            self._uuid_index[entry.id] = key
            imported += 1

        for old_id, new_id in (payload.get("redirects") or {}).items():
            self._redirects.setdefault(str(old_id), str(new_id))

        self._dirty = True
        return imported
