"""
Cache storage layer.

This package holds the blob store, the metadata index and ContentKey
derivation.
"""

from .index import MetadataIndex, record_from_dict, record_to_dict
from .keys import content_key, is_legacy_key, legacy_content_key, normalize_url
from .store import CacheStore, atomic_write_text

__all__ = [
    "CacheStore",
    "MetadataIndex",
    "atomic_write_text",
    "content_key",
    "is_legacy_key",
    "legacy_content_key",
    "normalize_url",
    "record_from_dict",
    "record_to_dict",
]
