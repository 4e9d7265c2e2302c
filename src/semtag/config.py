"""Runtime configuration for indexing and registry tooling."""

from __future__ import annotations

from dataclasses import dataclass, field
import os
from pathlib import Path
from typing import Mapping

from semtag.registry.concept_registry import DEFAULT_REGISTRY_PATH


DEFAULT_VAULT_PATH = "vault"
DEFAULT_MAX_FILES = 1000
DEFAULT_MAX_RELATION_FILES = 200
DEFAULT_MAX_CONCEPTS_FOR_RELATED = 500
DEFAULT_MAX_RELATED_CONCEPTS = 20
DEFAULT_BATCH_SIZE = 50
DEFAULT_BATCH_DELAY_SECONDS = 0.01
DEFAULT_RELATION_YIELD_EVERY = 50
DEFAULT_MODEL_NAME = "gpt-4o-mini"
DEFAULT_EXCLUDE_PATTERNS = (
    ".obsidian",
    "node_modules",
    ".git",
    "_archive",
    ".trash",
    "trash",
)


def _parse_positive_int(*, name: str, raw_value: str, minimum: int = 1) -> int:
    value = int(raw_value)
    if value < minimum:
        raise ValueError(f"{name} must be >= {minimum}")
    return value


@dataclass(frozen=True, slots=True)
class IndexerConfig:
    """Limits and pacing for one indexing run."""

    max_files: int = DEFAULT_MAX_FILES
    max_relation_files: int = DEFAULT_MAX_RELATION_FILES
    max_concepts_for_related: int = DEFAULT_MAX_CONCEPTS_FOR_RELATED
    max_related_concepts: int = DEFAULT_MAX_RELATED_CONCEPTS
    exclude_patterns: tuple[str, ...] = DEFAULT_EXCLUDE_PATTERNS
    batch_size: int = DEFAULT_BATCH_SIZE
    batch_delay_seconds: float = DEFAULT_BATCH_DELAY_SECONDS
    relation_yield_every: int = DEFAULT_RELATION_YIELD_EVERY
    model_name: str = DEFAULT_MODEL_NAME

    def __post_init__(self) -> None:
        for name in (
            "max_files",
            "max_relation_files",
            "max_concepts_for_related",
            "max_related_concepts",
            "batch_size",
            "relation_yield_every",
        ):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive")
        if self.batch_delay_seconds < 0:
            raise ValueError("batch_delay_seconds cannot be negative")


@dataclass(frozen=True, slots=True)
class IndexerSettings:
    """Validated environment settings shared by the CLI entrypoints."""

    vault_path: Path
    registry_path: str = DEFAULT_REGISTRY_PATH
    indexer: IndexerConfig = field(default_factory=IndexerConfig)

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "IndexerSettings":
        source: Mapping[str, str] = os.environ if environ is None else environ

        vault_path_raw = source.get("SEMTAG_VAULT_PATH", DEFAULT_VAULT_PATH).strip()
        if not vault_path_raw:
            raise ValueError("SEMTAG_VAULT_PATH cannot be empty")

        registry_path = source.get("SEMTAG_REGISTRY_PATH", DEFAULT_REGISTRY_PATH).strip()
        if not registry_path:
            raise ValueError("SEMTAG_REGISTRY_PATH cannot be empty")

        max_files_raw = source.get("SEMTAG_MAX_FILES", str(DEFAULT_MAX_FILES)).strip()
        relation_raw = source.get("SEMTAG_MAX_RELATION_FILES", str(DEFAULT_MAX_RELATION_FILES)).strip()
        related_raw = source.get("SEMTAG_MAX_RELATED_CONCEPTS", str(DEFAULT_MAX_RELATED_CONCEPTS)).strip()
        batch_raw = source.get("SEMTAG_BATCH_SIZE", str(DEFAULT_BATCH_SIZE)).strip()
        model_name = source.get("SEMTAG_MODEL_NAME", DEFAULT_MODEL_NAME).strip()
        exclude_raw = source.get("SEMTAG_EXCLUDE_PATTERNS")

        if not model_name:
            raise ValueError("SEMTAG_MODEL_NAME cannot be empty")

        if exclude_raw is None:
            exclude_patterns = DEFAULT_EXCLUDE_PATTERNS
        else:
            exclude_patterns = tuple(part.strip() for part in exclude_raw.split(",") if part.strip())

        indexer = IndexerConfig(
            max_files=_parse_positive_int(name="SEMTAG_MAX_FILES", raw_value=max_files_raw),
            max_relation_files=_parse_positive_int(name="SEMTAG_MAX_RELATION_FILES", raw_value=relation_raw),
            max_related_concepts=_parse_positive_int(name="SEMTAG_MAX_RELATED_CONCEPTS", raw_value=related_raw),
            batch_size=_parse_positive_int(name="SEMTAG_BATCH_SIZE", raw_value=batch_raw),
            exclude_patterns=exclude_patterns,
            model_name=model_name,
        )
        return cls(vault_path=Path(vault_path_raw), registry_path=registry_path, indexer=indexer)
