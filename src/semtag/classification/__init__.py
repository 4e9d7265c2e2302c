"""Classification collaborator interface."""

from .responses import (
    ClassificationParseError,
    ClassificationResponse,
    Classifier,
    parse_classification_payload,
)

__all__ = [
    "ClassificationParseError",
    "ClassificationResponse",
    "Classifier",
    "parse_classification_payload",
]
