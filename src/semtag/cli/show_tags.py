"""CLI for printing, stripping or filling in the semantic tags of one document."""

from __future__ import annotations

import argparse
import json
import logging
from pathlib import Path

from semtag.classification.responses import ClassificationParseError, parse_classification_payload
from semtag.registry.concept_registry import DEFAULT_REGISTRY_PATH, ConceptRegistry
from semtag.storage.filesystem import FileSystemStorage
from semtag.tagging.codec import build_hierarchy, tag_counts
from semtag.tagging.tag_store import DocumentTagStore


LOGGER = logging.getLogger(__name__)


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Show the semantic tags stored in a document")
    parser.add_argument("document", help="Document path relative to the vault root")
    parser.add_argument("--vault-path", default=".", help="Vault root directory")
    parser.add_argument("--strip", action="store_true", help="Remove every tag from the document")
    parser.add_argument(
        "--apply-reply",
        default=None,
        help="File holding a classifier reply whose annotations are merged into the document",
    )
    parser.add_argument(
        "--registry-path",
        default=DEFAULT_REGISTRY_PATH,
        help="Registry path inside the vault, used with --apply-reply",
    )
    args = parser.parse_args(argv)

    storage = FileSystemStorage(args.vault_path)
    store = DocumentTagStore(storage)
    applied: list[str] = []
    try:
        if args.apply_reply:
            responses = parse_classification_payload(Path(args.apply_reply).read_text(encoding="utf-8"))
            registry = ConceptRegistry(storage, args.registry_path)
            registry.load()
            applied = [tag.id for tag in store.apply_classifications(args.document, responses, registry)]
            registry.save()
        parsed = store.read_parsed(args.document)
    except ClassificationParseError as error:
        LOGGER.error("Cannot use classifier reply %s: %s", args.apply_reply, error)
        return 2
    except (OSError, ValueError) as error:
        LOGGER.error("Cannot read %s: %s", args.document, error)
        return 2

    tags = [item.tag for item in parsed]
    removed = store.remove(args.document, [tag.id for tag in tags]) if args.strip else 0

    payload = {
        "document": args.document,
        "counts": tag_counts(tags),
        "roots": [tag.id for tag in build_hierarchy(tags).get("root", [])],
        "tags": [{**item.tag.to_dict(), "line_number": item.line_number} for item in parsed],
        "applied": applied,
        "removed": removed,
    }
    print(json.dumps(payload, ensure_ascii=False, indent=2))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
