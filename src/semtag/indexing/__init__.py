"""Cross-document concept indexing."""

from .engine import CancellationToken, IndexingEngine
from .models import (
    ConceptEntry,
    ConceptOccurrence,
    CrossDocumentRelation,
    IndexCostEstimate,
    IndexMetadata,
    IndexScope,
    IndexSnapshot,
    RunState,
)

__all__ = [
    "CancellationToken",
    "ConceptEntry",
    "ConceptOccurrence",
    "CrossDocumentRelation",
    "IndexCostEstimate",
    "IndexMetadata",
    "IndexScope",
    "IndexSnapshot",
    "IndexingEngine",
    "RunState",
]
