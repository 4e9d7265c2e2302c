"""Concept identity registry."""

from .concept_registry import (
    DEFAULT_REGISTRY_PATH,
    REGISTRY_VERSION,
    ConceptRegistry,
    ConceptRegistryEntry,
    normalize_label,
)

__all__ = [
    "DEFAULT_REGISTRY_PATH",
    "REGISTRY_VERSION",
    "ConceptRegistry",
    "ConceptRegistryEntry",
    "normalize_label",
]
