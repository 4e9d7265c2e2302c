"""Document storage backends."""

from .filesystem import DocumentStorage, FileSystemStorage, decode_document, encode_document

__all__ = ["DocumentStorage", "FileSystemStorage", "decode_document", "encode_document"]
