"""CLI for inspecting and curating the concept registry."""

from __future__ import annotations

import argparse
import json
import logging
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

from semtag.config import IndexerSettings
from semtag.registry.concept_registry import ConceptRegistry
from semtag.storage.filesystem import FileSystemStorage


LOGGER = logging.getLogger(__name__)


def _build_parser(settings: IndexerSettings) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Inspect and curate the semantic concept registry")
    parser.add_argument("--vault-path", default=str(settings.vault_path), help="Vault root directory")
    parser.add_argument("--registry-path", default=settings.registry_path, help="Registry path inside the vault")

    commands = parser.add_subparsers(dest="command", required=True)
    commands.add_parser("stats", help="Print registry statistics")

    search = commands.add_parser("search", help="Find concepts by label or alias")
    search.add_argument("query")

    alias = commands.add_parser("add-alias", help="Attach an alternative label to a concept")
    alias.add_argument("label")
    alias.add_argument("alias")

    merge = commands.add_parser("merge", help="Fold one concept into another")
    merge.add_argument("keep_label")
    merge.add_argument("merge_label")
    return parser


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

    args = _build_parser(settings).parse_args(argv)
    if not Path(args.vault_path).is_dir():
        LOGGER.error("vault-path must exist and be a directory: %s", args.vault_path)
        return 2

    registry = ConceptRegistry(FileSystemStorage(args.vault_path), args.registry_path)
    registry.load()

    exit_code = 0
    if args.command == "stats":
        payload: dict = registry.stats()
    elif args.command == "search":
        matches = registry.search(args.query)
        payload = {"query": args.query, "results": [entry.to_dict() for entry in matches]}
    elif args.command == "add-alias":
        added = registry.add_alias(args.label, args.alias)
        payload = {"label": args.label, "alias": args.alias, "added": added}
        exit_code = 0 if added else 1
    else:
        merged = registry.merge(args.keep_label, args.merge_label)
        payload = {"keep_label": args.keep_label, "merge_label": args.merge_label, "merged": merged}
        exit_code = 0 if merged else 1

    payload["saved"] = registry.save()
    print(json.dumps(payload, ensure_ascii=False, indent=2))
    return exit_code


if __name__ == "__main__":
    raise SystemExit(main())
