"""Host storage collaborator: byte-level document access keyed by vault path."""

from __future__ import annotations

from pathlib import Path, PurePosixPath
from typing import Protocol, runtime_checkable

from charset_normalizer import from_bytes

DEFAULT_DOCUMENT_SUFFIXES = (".md",)


@runtime_checkable
class DocumentStorage(Protocol):
    """Protocol every document backend must implement.

    Paths are vault-relative POSIX strings such as ``"notes/physics.md"``.
    """

    def read_bytes(self, path: str) -> bytes:
        """Return the raw bytes stored at ``path``."""

    def write_bytes(self, path: str, data: bytes) -> None:
        """Create or overwrite ``path``; parent folders are created as needed."""

    def exists(self, path: str) -> bool:
        """Return True when a document exists at ``path``."""

    def list_documents(self) -> list[str]:
        """Return every document path in a stable order."""


def decode_document(raw: bytes) -> str:
    """Decode document bytes, preferring UTF-8 and falling back to detection."""
    try:
        return raw.decode("utf-8")
    except UnicodeDecodeError:
        pass

    best = from_bytes(raw).best()
    if best is None or not best.encoding:
        raise UnicodeDecodeError("unknown", raw, 0, len(raw), "Could not detect document encoding")
    return raw.decode(best.encoding)


def encode_document(text: str) -> bytes:
    return text.encode("utf-8")


class FileSystemStorage:
    """Vault rooted at a local directory."""

    def __init__(self, root: str | Path, *, suffixes: tuple[str, ...] = DEFAULT_DOCUMENT_SUFFIXES) -> None:
        self._root = Path(root)
        self._suffixes = tuple(suffix.lower() for suffix in suffixes)

    @property
    def root(self) -> Path:
        return self._root

    def _resolve(self, path: str) -> Path:
        relative = PurePosixPath(path)
        if relative.is_absolute() or ".." in relative.parts:
            raise ValueError(f"Document path must be relative to the vault root: {path}")
        return self._root.joinpath(*relative.parts)

    def read_bytes(self, path: str) -> bytes:
        return self._resolve(path).read_bytes()

    def write_bytes(self, path: str, data: bytes) -> None:
        target = self._resolve(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(data)

    def exists(self, path: str) -> bool:
        return self._resolve(path).is_file()

    def list_documents(self) -> list[str]:
        if not self._root.is_dir():
            return []
        return sorted(
            candidate.relative_to(self._root).as_posix()
            for candidate in self._root.rglob("*")
            if candidate.is_file() and candidate.suffix.lower() in self._suffixes
        )
