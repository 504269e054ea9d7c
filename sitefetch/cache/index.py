"""
Persisted metadata index for captured sites.

The index is a single JSON document mapping ContentKey to a record::

    {
      "<key>": {
        "url": "https://example.com",
        "fetchedAt": "2026-10-17T09:30:00+00:00",
        "title": "Example Domain",
        "sizeBytes": 1256
      }
    }

``title`` and ``sizeBytes`` are optional so documents written before those
fields existed still load. A missing document is an empty index; a document
that exists but cannot be parsed is a MetadataCorruption error.

All read-modify-write sequences are serialized behind ``MetadataIndex.lock``.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
import json
import logging
from pathlib import Path
from typing import Any

from ..errors import CacheWriteFailure, MetadataCorruption
from ..logging_utils import get_logger
from ..types import CacheRecord
from .store import atomic_write_text, is_content_key


def record_to_dict(record: CacheRecord) -> dict[str, Any]:
    """Serialize a CacheRecord into its persisted JSON shape."""
    data: dict[str, Any] = {
        "url": record.source_url,
        "fetchedAt": record.captured_at.isoformat(),
    }
    if record.title is not None:
        data["title"] = record.title
    if record.size_bytes is not None:
        data["sizeBytes"] = record.size_bytes
    return data


def record_from_dict(key: str, data: Any) -> CacheRecord:
    """Parse one persisted entry.

    Raises:
        MetadataCorruption: If the key is not a content key, or the entry is
            missing required fields or has wrong types
    """
    if not is_content_key(key):
        raise MetadataCorruption(f"Metadata key {key!r} is not a content key")
    if not isinstance(data, dict):
        raise MetadataCorruption(f"Metadata entry {key} is not an object")
    url = data.get("url")
    if not isinstance(url, str) or not url:
        raise MetadataCorruption(f"Metadata entry {key} has no url")
    fetched_at = data.get("fetchedAt")
    if not isinstance(fetched_at, str):
        raise MetadataCorruption(f"Metadata entry {key} has no fetchedAt timestamp")
    try:
        captured_at = _parse_timestamp(fetched_at)
    except ValueError as exc:
        raise MetadataCorruption(f"Metadata entry {key} has invalid fetchedAt {fetched_at!r}") from exc

    title = data.get("title")
    if title is not None and not isinstance(title, str):
        raise MetadataCorruption(f"Metadata entry {key} has a non-string title")
    size_bytes = data.get("sizeBytes")
    if size_bytes is not None and (not isinstance(size_bytes, int) or isinstance(size_bytes, bool)):
        raise MetadataCorruption(f"Metadata entry {key} has a non-integer sizeBytes")

    return CacheRecord(
        source_url=url,
        captured_at=captured_at,
        title=title,
        size_bytes=size_bytes,
    )


def _parse_timestamp(value: str) -> datetime:
    # JavaScript's toISOString() writes a trailing "Z"
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class MetadataIndex:
    """Single-writer JSON index mapping ContentKey to CacheRecord.

    ``load`` and ``save`` do not take the lock themselves. Callers that batch
    several mutations hold ``lock`` and use them directly; single updates go
    through ``upsert`` and ``remove``, which take the lock.

    Attributes:
        path: Location of the JSON document
        lock: Index-wide lock serializing every read-modify-write
    """

    def __init__(self, path: Path, logger: logging.Logger | None = None):
        self.path = path
        self.lock = asyncio.Lock()
        self.logger = logger or get_logger("index")

    def load(self) -> dict[str, CacheRecord]:
        """Return the persisted mapping.

        Raises:
            MetadataCorruption: If the document exists but cannot be parsed
        """
        try:
            raw = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return {}
        except (OSError, UnicodeDecodeError) as exc:
            raise MetadataCorruption(f"Cannot read metadata document {self.path}: {exc}") from exc

        try:
            data = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise MetadataCorruption(f"Metadata document {self.path} is not valid JSON: {exc}") from exc
        if not isinstance(data, dict):
            raise MetadataCorruption(f"Metadata document {self.path} is not a JSON object")

        return {key: record_from_dict(key, value) for key, value in data.items()}

    def save(self, mapping: dict[str, CacheRecord]) -> None:
        """Persist the full mapping atomically.

        Raises:
            CacheWriteFailure: If the document cannot be written
        """
        payload = {key: record_to_dict(record) for key, record in mapping.items()}
        try:
            text = json.dumps(payload, ensure_ascii=False, indent=2)
        except (TypeError, ValueError) as exc:
            raise CacheWriteFailure(f"Cannot serialize metadata: {exc}") from exc
        atomic_write_text(self.path, text + "\n")

    def initialize(self) -> None:
        """Create an empty document on first run; leave an existing one untouched."""
        if self.path.exists():
            return
        self.save({})
        self.logger.debug("Created metadata document %s", self.path)

    async def upsert(self, key: str, record: CacheRecord) -> None:
        async with self.lock:
            self.upsert_locked(key, record)

    def upsert_locked(self, key: str, record: CacheRecord) -> None:
        """Load, replace one record, save. Caller must hold ``lock``."""
        mapping = self.load()
        mapping[key] = record
        self.save(mapping)

    async def remove(self, key: str) -> CacheRecord | None:
        async with self.lock:
            return self.remove_locked(key)

    def remove_locked(self, key: str) -> CacheRecord | None:
        """Drop one record if present. Caller must hold ``lock``."""
        mapping = self.load()
        record = mapping.pop(key, None)
        if record is not None:
            self.save(mapping)
        return record

    async def snapshot(self) -> dict[str, CacheRecord]:
        """Load under the lock so readers never race a concurrent save."""
        async with self.lock:
            return self.load()
