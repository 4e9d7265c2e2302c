"""Pairwise document relations and concept co-occurrence over incidence matrices.

Both computations are exposed as row generators so the caller can insert
scheduling points and cancellation checks between rows.
"""

from __future__ import annotations

from collections.abc import Collection, Iterator, Mapping

import numpy as np

from semtag.indexing.models import CrossDocumentRelation


def _incidence(groups: Mapping[str, Collection[str]]) -> tuple[list[str], list[str], np.ndarray]:
    """Build a 0/1 matrix with one row per group and one column per member."""
    keys = list(groups)
    members = list(dict.fromkeys(member for key in keys for member in groups[key]))
    column = {member: index for index, member in enumerate(members)}

    matrix = np.zeros((len(keys), len(members)), dtype=np.int32)
    for row, key in enumerate(keys):
        for member in groups[key]:
            matrix[row, column[member]] = 1
    return keys, members, matrix


def relation_strength(shared: int, size_a: int, size_b: int) -> float:
    larger = max(size_a, size_b)
    if larger == 0:
        return 0.0
    return shared / larger


def iter_relation_rows(
    document_concepts: Mapping[str, Collection[str]],
) -> Iterator[list[CrossDocumentRelation]]:
    """Yield, for each document in order, its relations to every later document.

    Only pairs with at least one shared label are emitted. Each unordered pair
    appears once with its paths in lexicographic order.
    """
    paths, labels, matrix = _incidence(document_concepts)
    sizes = matrix.sum(axis=1)

    for i in range(len(paths)):
        row: list[CrossDocumentRelation] = []
        if i + 1 < len(paths):
            shared_counts = matrix[i + 1 :] @ matrix[i]
            for offset in np.flatnonzero(shared_counts):
                j = i + 1 + int(offset)
                shared_columns = np.flatnonzero(matrix[i] & matrix[j])
                document_a, document_b = sorted((paths[i], paths[j]))
                row.append(
                    CrossDocumentRelation(
                        document_a=document_a,
                        document_b=document_b,
                        shared_labels=tuple(labels[int(column)] for column in shared_columns),
                        strength=relation_strength(
                            int(shared_counts[offset]), int(sizes[i]), int(sizes[j])
                        ),
                    )
                )
        yield row


def iter_related_concepts(
    concept_documents: Mapping[str, Collection[str]],
    *,
    limit: int,
) -> Iterator[tuple[str, list[str]]]:
    """Yield ``(concept_key, related_keys)`` for concepts sharing a document.

    Related keys keep discovery order and are truncated to ``limit``.
    """
    keys, _, matrix = _incidence(concept_documents)

    for i, key in enumerate(keys):
        overlaps = matrix @ matrix[i]
        overlaps[i] = 0
        related = [keys[int(index)] for index in np.flatnonzero(overlaps)[:limit]]
        yield key, related
