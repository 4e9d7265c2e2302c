from __future__ import annotations

from pathlib import Path

import pytest

from semtag.classification.responses import ClassificationResponse, Classifier, parse_classification_payload
from semtag.registry.concept_registry import ConceptRegistry
from semtag.storage.filesystem import FileSystemStorage
from semtag.tagging.codec import BLOCK_START_MARKER, WriteMode
from semtag.tagging.models import CustomKind, SemanticTag, StandardKind, TagType
from semtag.tagging.tag_store import DocumentTagStore


def _tag(tag_id: str, label: str, tag_type: TagType = TagType.CLAIM, parent_id: str | None = None) -> SemanticTag:
    return SemanticTag(kind=StandardKind(tag_type), id=tag_id, label=label, parent_id=parent_id)


def _make_store(tmp_path: Path, body: str = "# Physics\n\nEnergy notes.\n") -> DocumentTagStore:
    (tmp_path / "notes").mkdir()
    (tmp_path / "notes" / "physics.md").write_text(body, encoding="utf-8")
    return DocumentTagStore(FileSystemStorage(tmp_path))


def test_write_then_read_returns_tags(tmp_path: Path) -> None:
    store = _make_store(tmp_path)
    tags = [_tag("a-1", "Energy is conserved"), _tag("b-2", "Heat flows", parent_id="a-1")]

    written = store.write("notes/physics.md", tags)

    assert written == tags
    assert store.read("notes/physics.md") == tags
    text = (tmp_path / "notes" / "physics.md").read_text(encoding="utf-8")
    assert text.startswith("# Physics\n\nEnergy notes.\n\n" + BLOCK_START_MARKER)


def test_write_merge_keeps_existing_and_replace_overwrites(tmp_path: Path) -> None:
    store = _make_store(tmp_path)
    store.write("notes/physics.md", [_tag("a-1", "First")])

    merged = store.write("notes/physics.md", [_tag("b-2", "Second")])
    assert [tag.id for tag in merged] == ["a-1", "b-2"]

    replaced = store.write("notes/physics.md", [_tag("c-3", "Third")], WriteMode.REPLACE)
    assert [tag.id for tag in replaced] == ["c-3"]


def test_read_parsed_keeps_line_numbers(tmp_path: Path) -> None:
    store = _make_store(tmp_path)
    store.write("notes/physics.md", [_tag("a-1", "First"), _tag("b-2", "Second")])

    parsed = store.read_parsed("notes/physics.md")

    # Body has three lines, then a blank line and the start marker.
    assert [item.line_number for item in parsed] == [6, 7]


def test_remove_drops_selected_tags_and_empty_block(tmp_path: Path) -> None:
    store = _make_store(tmp_path)
    store.write("notes/physics.md", [_tag("a-1", "First"), _tag("b-2", "Second")])

    assert store.remove("notes/physics.md", ["a-1", "missing"]) == 1
    assert [tag.id for tag in store.read("notes/physics.md")] == ["b-2"]

    assert store.remove("notes/physics.md", ["b-2"]) == 1
    text = (tmp_path / "notes" / "physics.md").read_text(encoding="utf-8")
    assert BLOCK_START_MARKER not in text
    assert text == "# Physics\n\nEnergy notes."


def test_remove_without_matches_leaves_file_untouched(tmp_path: Path) -> None:
    store = _make_store(tmp_path, body="No tags here\n\n")

    assert store.remove("notes/physics.md", ["a-1"]) == 0
    assert (tmp_path / "notes" / "physics.md").read_text(encoding="utf-8") == "No tags here\n\n"


def test_update_changes_fields_but_not_id(tmp_path: Path) -> None:
    store = _make_store(tmp_path)
    store.write("notes/physics.md", [_tag("a-1", "First"), _tag("b-2", "Second")])

    updated = store.update(
        "notes/physics.md",
        "b-2",
        id="ignored",
        label="Second, revised",
        kind=CustomKind("Hypothesis"),
        parent_id="a-1",
    )

    assert updated is not None
    assert updated.id == "b-2"
    assert updated.type_key == "Custom:Hypothesis"
    reread = store.read("notes/physics.md")
    assert reread[1] == updated
    assert reread[0].label == "First"


def test_update_unknown_id_returns_none_and_rejects_unknown_fields(tmp_path: Path) -> None:
    store = _make_store(tmp_path)
    store.write("notes/physics.md", [_tag("a-1", "First")])

    assert store.update("notes/physics.md", "missing", label="x") is None
    with pytest.raises(ValueError):
        store.update("notes/physics.md", "a-1", metadata={"x": 1})


def test_read_missing_document_raises(tmp_path: Path) -> None:
    store = DocumentTagStore(FileSystemStorage(tmp_path))
    with pytest.raises(OSError):
        store.read("absent.md")


def test_apply_classifications_uses_registry_ids_and_links_parents(tmp_path: Path) -> None:
    store = _make_store(tmp_path)
    registry = ConceptRegistry(FileSystemStorage(tmp_path))
    registry.load()
    existing_id = registry.get_or_create("Conservation of Energy", TagType.AXIOM, "notes/other.md")

    responses = [
        ClassificationResponse(type="Axiom", label="conservation of energy!", confidence=0.9),
        ClassificationResponse(
            type="Claim",
            label="Energy is conserved in closed systems",
            parent_label="conservation of energy!",
        ),
        ClassificationResponse(type="Custom", label="Perpetual motion", custom_type="Hypothesis"),
        ClassificationResponse(type="Bogus", label="Ignored"),
    ]

    tags = store.apply_classifications("notes/physics.md", responses, registry)

    assert len(tags) == 3
    assert tags[0].id == existing_id
    assert tags[0].metadata == {"confidence": 0.9}
    assert tags[1].parent_id == existing_id
    assert tags[2].type_key == "Custom:Hypothesis"
    assert registry.get_uuid("Perpetual motion") == tags[2].id
    assert registry.is_dirty

    stored = store.read("notes/physics.md")
    assert [tag.id for tag in stored] == [tag.id for tag in tags]
    assert stored[1].parent_id == existing_id


def test_apply_classifications_ignores_unknown_parent(tmp_path: Path) -> None:
    store = _make_store(tmp_path)
    registry = ConceptRegistry(FileSystemStorage(tmp_path))
    registry.load()

    tags = store.apply_classifications(
        "notes/physics.md",
        [ClassificationResponse(type="Claim", label="Orphan claim", parent_label="Not in batch")],
        registry,
    )

    assert tags[0].parent_id is None


class _ReplyClassifier:
    def __init__(self, reply: str) -> None:
        self.reply = reply
        self.calls: list[tuple[str, tuple[str, ...]]] = []

    def classify(self, text: str, type_vocabulary) -> list[ClassificationResponse]:
        self.calls.append((text, tuple(type_vocabulary)))
        return parse_classification_payload(self.reply)


def test_classify_sends_body_without_block_and_writes_tags(tmp_path: Path) -> None:
    store = _make_store(tmp_path)
    store.write("notes/physics.md", [_tag("old-1", "Heat flows")])
    registry = ConceptRegistry(FileSystemStorage(tmp_path))
    registry.load()
    classifier = _ReplyClassifier(
        '```json\n[{"type": "Axiom", "label": "Energy"}, '
        '{"type": "Claim", "label": "Energy is conserved", "parentLabel": "Energy"}]\n```'
    )
    assert isinstance(classifier, Classifier)

    tags = store.classify("notes/physics.md", classifier, registry)

    [(text, vocabulary)] = classifier.calls
    assert text == "# Physics\n\nEnergy notes."
    assert BLOCK_START_MARKER not in text
    assert "Axiom" in vocabulary and "Custom" in vocabulary
    assert [tag.label for tag in tags] == ["Energy", "Energy is conserved"]
    assert tags[1].parent_id == registry.get_uuid("Energy")
    assert [tag.id for tag in store.read("notes/physics.md")] == ["old-1", tags[0].id, tags[1].id]
