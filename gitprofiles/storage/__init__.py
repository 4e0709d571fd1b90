"""Durable fragment storage."""

from .codec import decode_text, document_to_fragment, encode_text, fragment_to_document
from .store import FragmentStore

__all__ = [
    "FragmentStore",
    "decode_text",
    "document_to_fragment",
    "encode_text",
    "fragment_to_document",
]
