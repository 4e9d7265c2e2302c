"""CLI entrypoint for building a cross-document concept index."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

from semtag.config import IndexerSettings
from semtag.indexing.engine import IndexingEngine
from semtag.indexing.models import IndexScope
from semtag.registry.concept_registry import ConceptRegistry
from semtag.storage.filesystem import FileSystemStorage


LOGGER = logging.getLogger(__name__)


def _parse_args(argv: list[str] | None, settings: IndexerSettings) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Index semantic tags across a vault of markdown documents")
    parser.add_argument("--vault-path", default=str(settings.vault_path), help="Vault root directory")
    parser.add_argument("--registry-path", default=settings.registry_path, help="Registry path inside the vault")
    parser.add_argument("--folder", default=None, help="Restrict indexing to one folder of the vault")
    parser.add_argument("--estimate-only", action="store_true", help="Only estimate size and cost")
    parser.add_argument("--top", type=int, default=10, help="Number of top concepts to print")
    parser.add_argument("--export-path", default=None, help="Write the full snapshot as JSON to this file")
    parser.add_argument("--journey", default=None, help="Also trace one concept through the indexed documents")
    return parser.parse_args(argv)


async def _run(args: argparse.Namespace, settings: IndexerSettings) -> dict:
    storage = FileSystemStorage(args.vault_path)
    registry = ConceptRegistry(storage, args.registry_path)
    registry.load()

    engine = IndexingEngine(storage, registry=registry, config=settings.indexer)
    scope = IndexScope.FOLDER if args.folder else IndexScope.VAULT

    if args.estimate_only:
        estimate = await engine.estimate_cost(scope, args.folder)
        return {"estimate": estimate.to_dict()}

    def _on_progress(current: int, total: int, name: str) -> None:
        LOGGER.debug("Indexed %s/%s: %s", current, total, name)

    snapshot = await engine.build_index(scope, args.folder, on_progress=_on_progress)
    if args.export_path:
        Path(args.export_path).write_text(engine.export_json(), encoding="utf-8")

    payload = {
        "metadata": snapshot.metadata.to_dict(),
        "statistics": engine.get_statistics(),
        "top_concepts": [
            {
                "label": entry.label,
                "total_count": entry.total_count,
                "distinct_document_count": entry.distinct_document_count,
            }
            for entry in engine.get_top_concepts(args.top)
        ],
        "errors": [dict(error) for error in snapshot.errors],
    }
    if args.journey:
        payload["journey"] = engine.get_concept_journey(args.journey).to_dict()
    return payload


def main(argv: list[str] | None = None) -> int:
    logging.basicConfig(
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        level=logging.INFO,
    )
    try:
        settings = IndexerSettings.from_env()
    except ValueError as error:
        LOGGER.error("Configuration error: %s", error)
        return 2

    args = _parse_args(argv, settings)
    if not Path(args.vault_path).is_dir():
        LOGGER.error("vault-path must exist and be a directory: %s", args.vault_path)
        return 2

    payload = asyncio.run(_run(args, settings))
    print(json.dumps(payload, ensure_ascii=False, indent=2))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
