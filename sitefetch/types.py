"""
Core data types for the SiteFetch cache.

This module defines the structures shared across the cache layers:
- CacheRecord: Metadata describing one captured URL
- FetchOutcome: Result of a single orchestrated fetch
- ResourceDescriptor: One addressable resource derived from the index
- OperationResult: Structured success/failure result returned by operations
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any


@dataclass(frozen=True)
class CacheRecord:
    """Metadata for one captured URL.

    Records are replaced wholesale, never mutated in place.

    Attributes:
        source_url: The URL the content was captured from
        captured_at: Timezone-aware UTC capture timestamp
        title: Optional title derived from the captured content
        size_bytes: Optional size of the stored blob in UTF-8 bytes
    """
    source_url: str
    captured_at: datetime
    title: str | None = None
    size_bytes: int | None = None


@dataclass
class FetchOutcome:
    """Result of FetchOrchestrator.fetch.

    Attributes:
        url: The normalized source URL
        key: ContentKey of the blob
        content: The captured text
        record: Index record for fresh captures; None on cache hits, which
            never read or touch the index
        from_cache: True when the content was served without invoking the crawler
    """
    url: str
    key: str
    content: str
    record: CacheRecord | None = None
    from_cache: bool = False


@dataclass
class ResourceDescriptor:
    """One captured site exposed as an addressable resource."""
    identifier: str
    display_name: str
    description: str
    url: str
    captured_at: datetime
    size_bytes: int | None = None
    path: str | None = None


@dataclass
class OperationResult:
    """Structured result returned by every externally callable operation.

    Either ok is True and text describes the outcome, or ok is False and
    kind names the error kind (e.g. "FetchFailure") with text as the message.

    Attributes:
        ok: Whether the operation succeeded
        text: Human-readable outcome or error message
        kind: Error kind on failure, None on success
        data: Machine-readable payload (counts, identifiers, descriptors)
    """
    ok: bool
    text: str
    kind: str | None = None
    data: dict[str, Any] = field(default_factory=dict)
