from __future__ import annotations

import json
from pathlib import Path
import uuid

import pytest

from semtag.cli.index_vault import main as index_vault_main
from semtag.cli.manage_registry import main as manage_registry_main
from semtag.cli.show_tags import main as show_tags_main
from semtag.tagging.codec import BLOCK_START_MARKER, write_block
from semtag.tagging.models import SemanticTag, StandardKind, TagType


def _write_tagged(path: Path, labels: list[str], parent_first: bool = False) -> list[str]:
    path.parent.mkdir(parents=True, exist_ok=True)
    ids = [str(uuid.uuid4()) for _ in labels]
    tags = [
        SemanticTag(
            kind=StandardKind(TagType.CLAIM),
            id=tag_id,
            label=label,
            parent_id=ids[0] if parent_first and index else None,
        )
        for index, (tag_id, label) in enumerate(zip(ids, labels))
    ]
    path.write_text(write_block(f"# {path.stem}\n\nBody.", tags), encoding="utf-8")
    return ids


@pytest.fixture(autouse=True)
def _clean_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in (
        "SEMTAG_VAULT_PATH",
        "SEMTAG_REGISTRY_PATH",
        "SEMTAG_MAX_FILES",
        "SEMTAG_MAX_RELATION_FILES",
        "SEMTAG_MAX_RELATED_CONCEPTS",
        "SEMTAG_BATCH_SIZE",
        "SEMTAG_EXCLUDE_PATTERNS",
        "SEMTAG_MODEL_NAME",
    ):
        monkeypatch.delenv(name, raising=False)


def test_index_cli_prints_metadata_and_top_concepts(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    _write_tagged(tmp_path / "notes" / "a.md", ["Energy", "Heat flows"])
    _write_tagged(tmp_path / "notes" / "b.md", ["Energy"])
    export_path = tmp_path / "snapshot.json"

    exit_code = index_vault_main(
        ["--vault-path", str(tmp_path), "--top", "1", "--export-path", str(export_path)]
    )
    payload = json.loads(capsys.readouterr().out)

    assert exit_code == 0
    assert payload["metadata"]["total_documents"] == 2
    assert payload["metadata"]["total_concepts"] == 2
    assert payload["top_concepts"] == [{"label": "Energy", "total_count": 2, "distinct_document_count": 2}]
    assert payload["statistics"]["total_relations"] == 1
    assert payload["errors"] == []
    assert json.loads(export_path.read_text(encoding="utf-8"))["metadata"]["total_documents"] == 2
    assert (tmp_path / ".semtag" / "concept-registry.json").exists()
    assert "journey" not in payload


def test_index_cli_traces_concept_journey(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    _write_tagged(tmp_path / "notes" / "b.md", ["Energy"])
    _write_tagged(tmp_path / "notes" / "a.md", ["Energy", "Heat flows"])

    assert index_vault_main(["--vault-path", str(tmp_path), "--journey", "energy"]) == 0
    journey = json.loads(capsys.readouterr().out)["journey"]

    assert journey["concept"] == "energy"
    assert [(step["order"], step["document_path"]) for step in journey["steps"]] == [
        (1, "notes/a.md"),
        (2, "notes/b.md"),
    ]
    assert journey["related_concepts"] == ["Heat flows"]


def test_index_cli_estimate_only_for_folder(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    (tmp_path / "notes").mkdir()
    (tmp_path / "notes" / "a.md").write_text("x" * 8, encoding="utf-8")
    (tmp_path / "other.md").write_text("y" * 100, encoding="utf-8")

    exit_code = index_vault_main(["--vault-path", str(tmp_path), "--folder", "notes", "--estimate-only"])
    payload = json.loads(capsys.readouterr().out)

    assert exit_code == 0
    assert payload["estimate"]["document_count"] == 1
    assert payload["estimate"]["estimated_tokens"] == 2


def test_index_cli_rejects_missing_vault(tmp_path: Path) -> None:
    assert index_vault_main(["--vault-path", str(tmp_path / "missing")]) == 2


def test_index_cli_reports_configuration_errors(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("SEMTAG_MAX_FILES", "zero")
    assert index_vault_main(["--vault-path", str(tmp_path)]) == 2


def test_registry_cli_alias_merge_and_search(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    registry_path = tmp_path / ".semtag" / "concept-registry.json"
    registry_path.parent.mkdir()
    registry_path.write_text(
        json.dumps(
            {
                "version": "1.0.0",
                "concepts": {
                    key: {
                        "id": concept_id,
                        "canonicalLabel": label,
                        "normalizedLabel": key,
                        "type": "Axiom",
                        "aliases": [],
                    }
                    for key, label, concept_id in (
                        ("energy", "Energy", "11111111-1111-4111-8111-111111111111"),
                        ("vis viva", "Vis viva", "22222222-2222-4222-8222-222222222222"),
                    )
                },
            }
        ),
        encoding="utf-8",
    )
    base = ["--vault-path", str(tmp_path)]

    assert manage_registry_main([*base, "add-alias", "Energy", "Kinetic capacity"]) == 0
    added = json.loads(capsys.readouterr().out)
    assert added["added"] is True
    assert added["saved"] is True

    assert manage_registry_main([*base, "add-alias", "Vis viva", "energy"]) == 1
    rejected = json.loads(capsys.readouterr().out)
    assert rejected["added"] is False
    assert rejected["saved"] is False

    assert manage_registry_main([*base, "merge", "Energy", "Vis viva"]) == 0
    assert json.loads(capsys.readouterr().out)["merged"] is True

    assert manage_registry_main([*base, "search", "vis"]) == 0
    results = json.loads(capsys.readouterr().out)["results"]
    assert [item["id"] for item in results] == ["11111111-1111-4111-8111-111111111111"]

    assert manage_registry_main([*base, "stats"]) == 0
    stats = json.loads(capsys.readouterr().out)
    assert stats["total_concepts"] == 1
    assert stats["redirects"] == 1


def test_show_tags_cli_lists_and_strips(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    document = tmp_path / "notes" / "a.md"
    ids = _write_tagged(document, ["Energy", "Heat flows"], parent_first=True)

    assert show_tags_main(["notes/a.md", "--vault-path", str(tmp_path)]) == 0
    listed = json.loads(capsys.readouterr().out)
    assert listed["counts"] == {"Claim": 2}
    assert listed["roots"] == [ids[0]]
    assert [tag["line_number"] for tag in listed["tags"]] == [6, 7]
    assert listed["tags"][1]["parentId"] == ids[0]
    assert listed["removed"] == 0

    assert show_tags_main(["notes/a.md", "--vault-path", str(tmp_path), "--strip"]) == 0
    stripped = json.loads(capsys.readouterr().out)
    assert stripped["removed"] == 2
    assert BLOCK_START_MARKER not in document.read_text(encoding="utf-8")


def test_show_tags_cli_missing_document(tmp_path: Path) -> None:
    assert show_tags_main(["absent.md", "--vault-path", str(tmp_path)]) == 2


def test_show_tags_cli_applies_classifier_reply(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    document = tmp_path / "notes" / "a.md"
    ids = _write_tagged(document, ["Energy"])
    reply = tmp_path / "reply.txt"
    reply.write_text(
        'Here you go:\n```json\n{"tags": [{"type": "Axiom", "label": "Entropy", "confidence": 0.8}]}\n```',
        encoding="utf-8",
    )

    assert show_tags_main(["notes/a.md", "--vault-path", str(tmp_path), "--apply-reply", str(reply)]) == 0
    payload = json.loads(capsys.readouterr().out)

    assert payload["counts"] == {"Claim": 1, "Axiom": 1}
    assert [tag["label"] for tag in payload["tags"]] == ["Energy", "Entropy"]
    assert payload["tags"][0]["id"] == ids[0]
    assert payload["applied"] == [payload["tags"][1]["id"]]

    registry = json.loads((tmp_path / ".semtag" / "concept-registry.json").read_text(encoding="utf-8"))
    assert registry["concepts"]["entropy"]["id"] == payload["applied"][0]


def test_show_tags_cli_rejects_unreadable_reply(tmp_path: Path) -> None:
    _write_tagged(tmp_path / "a.md", ["Energy"])
    reply = tmp_path / "reply.txt"
    reply.write_text("no annotations here", encoding="utf-8")

    assert show_tags_main(["a.md", "--vault-path", str(tmp_path), "--apply-reply", str(reply)]) == 2
    assert "Entropy" not in (tmp_path / "a.md").read_text(encoding="utf-8")
