"""Tests for MetadataIndex persistence."""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
import json

import pytest

from sitefetch.cache import MetadataIndex, content_key
from sitefetch.cache import store as store_module
from sitefetch.errors import CacheWriteFailure, MetadataCorruption
from sitefetch.types import CacheRecord


def _record(url: str, title: str | None = None, size: int | None = None) -> CacheRecord:
    return CacheRecord(
        source_url=url,
        captured_at=datetime(2026, 10, 17, 9, 30, tzinfo=timezone.utc),
        title=title,
        size_bytes=size,
    )


def test_missing_document_loads_empty(index: MetadataIndex):
    assert not index.path.exists()
    assert index.load() == {}


def test_initialize_creates_empty_document_once(index: MetadataIndex):
    index.initialize()
    assert json.loads(index.path.read_text(encoding="utf-8")) == {}

    key = content_key("https://example.com")
    index.save({key: _record("https://example.com")})
    index.initialize()
    assert key in index.load()


@pytest.mark.parametrize(
    "document",
    [
        "{not json",
        "",
        "[]",
        '{"%s": "just a string"}' % ("a" * 64),
        '{"%s": {"fetchedAt": "2026-10-17T09:30:00Z"}}' % ("a" * 64),
        '{"%s": {"url": "https://example.com", "fetchedAt": "yesterday"}}' % ("a" * 64),
        '{"not-a-key": {"url": "https://example.com", "fetchedAt": "2026-10-17T09:30:00Z"}}',
    ],
)
def test_unparseable_document_raises_corruption(index: MetadataIndex, document: str):
    index.path.parent.mkdir(parents=True, exist_ok=True)
    index.path.write_text(document, encoding="utf-8")

    with pytest.raises(MetadataCorruption):
        index.load()


def test_save_and_load_preserve_records(index: MetadataIndex):
    key = content_key("https://example.com/ü?q=1")
    record = _record("https://example.com/ü?q=1", title="Example", size=42)

    index.save({key: record})

    assert index.load() == {key: record}
    raw = json.loads(index.path.read_text(encoding="utf-8"))
    assert raw[key] == {
        "url": "https://example.com/ü?q=1",
        "fetchedAt": "2026-10-17T09:30:00+00:00",
        "title": "Example",
        "sizeBytes": 42,
    }


def test_optional_fields_are_omitted(index: MetadataIndex):
    key = content_key("https://example.com")
    index.save({key: _record("https://example.com")})

    raw = json.loads(index.path.read_text(encoding="utf-8"))
    assert set(raw[key]) == {"url", "fetchedAt"}


def test_loads_document_written_by_node_server(index: MetadataIndex):
    """Documents from the Node.js server use MD5 keys and toISOString stamps."""
    legacy_key = "5ababd603b22780302dd8d83498e5172"
    index.path.parent.mkdir(parents=True, exist_ok=True)
    index.path.write_text(
        json.dumps({legacy_key: {"url": "https://example.com", "fetchedAt": "2025-04-01T12:00:00.000Z"}}),
        encoding="utf-8",
    )

    loaded = index.load()

    assert loaded[legacy_key].source_url == "https://example.com"
    assert loaded[legacy_key].captured_at == datetime(2025, 4, 1, 12, 0, tzinfo=timezone.utc)
    assert loaded[legacy_key].title is None


def test_upsert_and_remove(index: MetadataIndex):
    first = content_key("https://a.example")
    second = content_key("https://b.example")

    async def run() -> None:
        await index.upsert(first, _record("https://a.example"))
        await index.upsert(second, _record("https://b.example"))
        assert await index.remove(first) is not None
        assert await index.remove(first) is None

    asyncio.run(run())

    assert list(index.load()) == [second]


def test_concurrent_upserts_do_not_lose_updates(index: MetadataIndex):
    urls = [f"https://site{n}.example" for n in range(20)]

    async def run() -> None:
        await asyncio.gather(*(index.upsert(content_key(url), _record(url)) for url in urls))

    asyncio.run(run())

    assert {record.source_url for record in index.load().values()} == set(urls)


def test_failed_save_keeps_previous_document(index: MetadataIndex, monkeypatch):
    key = content_key("https://example.com")
    index.save({key: _record("https://example.com")})
    before = index.path.read_bytes()

    def broken_replace(src, dst):
        raise OSError("read-only file system")

    monkeypatch.setattr(store_module.os, "replace", broken_replace)

    with pytest.raises(CacheWriteFailure):
        index.save({})

    assert index.path.read_bytes() == before
