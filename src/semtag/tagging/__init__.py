"""Semantic tag model and wire codec."""

from .codec import TagFormatError, WriteMode, decode_all, encode_tag, remove_block, write_block
from .models import CustomKind, ParsedTag, SemanticTag, StandardKind, TagKind, TagType

__all__ = [
    "CustomKind",
    "ParsedTag",
    "SemanticTag",
    "StandardKind",
    "TagFormatError",
    "TagKind",
    "TagType",
    "WriteMode",
    "decode_all",
    "encode_tag",
    "remove_block",
    "write_block",
]
