"""Classification collaborator contract and tolerant parsing of model output."""

from __future__ import annotations

from dataclasses import dataclass
import json
import logging
import re
from typing import Any, Protocol, Sequence, runtime_checkable

logger = logging.getLogger(__name__)

_FENCE_RE = re.compile(r"```(?:json)?\s*([\s\S]*?)```")
_ARRAY_RE = re.compile(r"\[[\s\S]*\]")
_OBJECT_RE = re.compile(r"\{[^{}]*\}")


class ClassificationParseError(ValueError):
    """Raised when model output holds no recoverable classification objects."""


@dataclass(frozen=True, slots=True)
class ClassificationResponse:
    """One candidate annotation proposed by a classifier."""

    type: str
    label: str
    parent_label: str | None = None
    confidence: float | None = None
    custom_type: str | None = None
    metadata: dict[str, Any] | None = None

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "ClassificationResponse | None":
        tag_type = str(payload.get("type") or "").strip()
        label = str(payload.get("label") or "").strip()
        if not tag_type or not label:
            return None

        confidence = payload.get("confidence")
        parent_label = str(payload.get("parentLabel") or payload.get("parent_label") or "").strip()
        custom_type = str(payload.get("customType") or payload.get("custom_type") or "").strip()
        metadata = payload.get("metadata")
        return cls(
            type=tag_type,
            label=label,
            parent_label=parent_label or None,
            confidence=float(confidence) if isinstance(confidence, (int, float)) else None,
            custom_type=custom_type or None,
            metadata=metadata if isinstance(metadata, dict) else None,
        )


@runtime_checkable
class Classifier(Protocol):
    """Anything that turns document text into candidate annotations."""

    def classify(self, text: str, type_vocabulary: Sequence[str]) -> list[ClassificationResponse]:
        """Return candidate annotations for ``text`` restricted to the vocabulary."""


def _responses_from(items: list[Any]) -> list[ClassificationResponse]:
    responses: list[ClassificationResponse] = []
    for item in items:
        if not isinstance(item, dict):
            continue
        response = ClassificationResponse.from_dict(item)
        if response is not None:
            responses.append(response)
    return responses


def parse_classification_payload(raw: str) -> list[ClassificationResponse]:
    """Parse a model reply into responses.

    Accepts a bare JSON array or object, a fenced ```json block, or prose
    around an array. When the JSON is broken, flat ``{...}`` objects are
    salvaged one by one.
    """
    text = raw.strip()
    fenced = _FENCE_RE.search(text)
    if fenced:
        text = fenced.group(1).strip()
    array = _ARRAY_RE.search(text)
    if array:
        text = array.group(0)

    try:
        parsed = json.loads(text)
    except json.JSONDecodeError:
        logger.warning("Classifier reply is not valid JSON, salvaging partial objects")
        salvaged: list[Any] = []
        for fragment in _OBJECT_RE.findall(text):
            try:
                salvaged.append(json.loads(fragment))
            except json.JSONDecodeError:
                continue
        if not salvaged:
            raise ClassificationParseError("Failed to parse classifier reply as JSON") from None
        return _responses_from(salvaged)

    if isinstance(parsed, dict):
        parsed = parsed["tags"] if isinstance(parsed.get("tags"), list) else [parsed]
    if not isinstance(parsed, list):
        raise ClassificationParseError("Classifier reply must be a JSON object or array")
    return _responses_from(parsed)
