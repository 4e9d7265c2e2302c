from __future__ import annotations

from pathlib import Path

import pytest

from semtag.storage.filesystem import DocumentStorage, FileSystemStorage, decode_document


def test_decode_document_prefers_utf8() -> None:
    assert decode_document("Закон сохранения энергии".encode("utf-8")) == "Закон сохранения энергии"


def test_decode_document_detects_legacy_encoding() -> None:
    text = "Закон сохранения энергии утверждает, что энергия замкнутой системы постоянна. " * 5
    assert decode_document(text.encode("cp1251")) == text


def test_list_documents_returns_sorted_markdown_paths(tmp_path: Path) -> None:
    (tmp_path / "b").mkdir()
    (tmp_path / "b" / "z.md").write_text("z", encoding="utf-8")
    (tmp_path / "a.md").write_text("a", encoding="utf-8")
    (tmp_path / "image.png").write_bytes(b"\x89PNG")
    (tmp_path / "b" / "UPPER.MD").write_text("u", encoding="utf-8")

    storage = FileSystemStorage(tmp_path)

    assert isinstance(storage, DocumentStorage)
    assert storage.list_documents() == ["a.md", "b/UPPER.MD", "b/z.md"]


def test_list_documents_for_missing_root_is_empty(tmp_path: Path) -> None:
    assert FileSystemStorage(tmp_path / "missing").list_documents() == []


def test_write_creates_parent_folders(tmp_path: Path) -> None:
    storage = FileSystemStorage(tmp_path)

    storage.write_bytes("deep/nested/note.md", b"hello")

    assert storage.exists("deep/nested/note.md")
    assert storage.read_bytes("deep/nested/note.md") == b"hello"
    assert not storage.exists("deep/nested/other.md")


@pytest.mark.parametrize("path", ["../escape.md", "/etc/passwd", "notes/../../escape.md"])
def test_paths_outside_vault_are_rejected(tmp_path: Path, path: str) -> None:
    storage = FileSystemStorage(tmp_path)
    with pytest.raises(ValueError):
        storage.read_bytes(path)
