"""Tests for the externally callable operations."""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
import hashlib

from sitefetch.cache import content_key
from sitefetch.config import AppConfig
from sitefetch.operations import NO_SITES_TEXT, build_operations
from sitefetch.resources import from_identifier, to_identifier
from sitefetch.types import CacheRecord

from conftest import FakeCrawler


URL = "https://example.com/docs"


def test_fetch_site_reports_identifier_and_length(ops, crawler):
    result = asyncio.run(ops.fetch_site(URL))

    assert result.ok
    assert result.kind is None
    identifier = to_identifier(URL)
    content = ops.store.get(content_key(URL))
    assert result.text.startswith(f"Successfully fetched site content from {URL}.")
    assert f"The content is available as a resource at {identifier}" in result.text
    assert f"Content length: {len(content)} characters" in result.text
    assert result.data["identifier"] == identifier
    assert result.data["from_cache"] is False
    assert result.data["title"] == f"Page for {URL}"


def test_fetch_site_second_call_is_served_from_cache(ops, crawler):
    asyncio.run(ops.fetch_site(URL))
    again = asyncio.run(ops.fetch_site(URL))

    assert again.ok
    assert again.data["from_cache"] is True
    assert "Served from cache." in again.text
    assert crawler.calls == [URL]


def test_fetch_site_notifies_unless_disabled(ops):
    seen: list[str] = []
    ops.notifier = seen.append

    first = asyncio.run(ops.fetch_site(URL))
    second = asyncio.run(ops.fetch_site(URL, add_to_context=False))

    assert seen == [to_identifier(URL)]
    assert first.data["notified"] is True
    assert second.data["notified"] is False


def test_async_notifier_is_awaited(ops):
    seen: list[str] = []

    async def notifier(identifier: str) -> None:
        seen.append(identifier)

    ops.notifier = notifier
    asyncio.run(ops.fetch_site(URL))

    assert seen == [to_identifier(URL)]


def test_failing_notifier_does_not_change_outcome(ops):
    def notifier(identifier: str) -> None:
        raise RuntimeError("client went away")

    ops.notifier = notifier
    result = asyncio.run(ops.fetch_site(URL))

    assert result.ok
    assert result.data["notified"] is False
    assert ops.store.exists(content_key(URL))


def test_fetch_site_failure_is_a_result(ops, failing_crawler):
    result = asyncio.run(ops.fetch_site(URL))

    assert not result.ok
    assert result.kind == "FetchFailure"
    assert result.text == "Failed to fetch site: network unreachable"


def test_fetch_site_invalid_url(ops, crawler):
    result = asyncio.run(ops.fetch_site("ftp://example.com"))

    assert not result.ok
    assert result.kind == "InvalidUrl"
    assert crawler.calls == []


def test_list_sites_empty_returns_sentinel(ops):
    result = asyncio.run(ops.list_sites())

    assert result.ok
    assert result.text == NO_SITES_TEXT
    assert result.data["sites"] == []


def test_list_sites_enumerates_every_fetch(ops):
    urls = ["https://a.example/", "https://b.example/page", "https://c.example/?q=1"]
    for url in urls:
        asyncio.run(ops.fetch_site(url))

    result = asyncio.run(ops.list_sites())

    assert result.ok
    assert result.text.startswith("Fetched sites:\n\n1. https://a.example/")
    assert [item.url for item in result.data["sites"]] == urls
    for position, url in enumerate(urls, start=1):
        assert f"{position}. {url}" in result.text
        assert f"Resource: {to_identifier(url)}" in result.text
    assert "Fetched 2026-10-17 09:00 UTC" in result.text
    assert "Title: Page for https://a.example/" in result.text


def test_list_sites_reports_corruption(ops):
    ops.index.path.write_text("not json", encoding="utf-8")

    result = asyncio.run(ops.list_sites())

    assert not result.ok
    assert result.kind == "MetadataCorruption"


def test_clear_cache_counts_and_empties(ops):
    for url in ["https://a.example", "https://b.example", "https://c.example"]:
        asyncio.run(ops.fetch_site(url))

    result = asyncio.run(ops.clear_cache())

    assert result.ok
    assert result.text == "Cleared cache for 3 sites."
    assert result.data["count"] == 3
    assert ops.store.keys() == []
    assert ops.index.load() == {}
    assert asyncio.run(ops.list_sites()).text == NO_SITES_TEXT


def test_clear_cache_survives_missing_blob(ops):
    asyncio.run(ops.fetch_site("https://a.example"))
    asyncio.run(ops.fetch_site("https://b.example"))
    ops.store.path_for(content_key("https://a.example")).unlink()

    result = asyncio.run(ops.clear_cache())

    assert result.ok
    assert result.data["count"] == 2
    assert ops.index.load() == {}
    assert ops.store.keys() == []


def test_clear_cache_on_empty_cache(ops):
    result = asyncio.run(ops.clear_cache())

    assert result.text == "Cleared cache for 0 sites."


def test_fetch_after_clear_captures_again(ops, crawler):
    asyncio.run(ops.fetch_site(URL))
    asyncio.run(ops.clear_cache())

    result = asyncio.run(ops.fetch_site(URL))

    assert result.data["from_cache"] is False
    assert crawler.calls == [URL, URL]


def test_add_to_context_requires_cached_site(ops, crawler):
    seen: list[str] = []
    ops.notifier = seen.append

    missing = asyncio.run(ops.add_to_context(URL))
    assert not missing.ok
    assert missing.kind == "NotCached"
    assert crawler.calls == []

    asyncio.run(ops.fetch_site(URL, add_to_context=False))
    added = asyncio.run(ops.add_to_context(URL))

    assert added.ok
    assert added.data == {"added": True, "identifier": to_identifier(URL), "notified": True}
    assert seen == [to_identifier(URL)]
    assert crawler.calls == [URL]


def test_remove_site(ops):
    asyncio.run(ops.fetch_site(URL))
    asyncio.run(ops.fetch_site("https://other.example"))

    removed = asyncio.run(ops.remove_site(URL))
    again = asyncio.run(ops.remove_site(URL))

    assert removed.ok
    assert not ops.store.exists(content_key(URL))
    assert list(ops.index.load()) == [content_key("https://other.example")]
    assert not again.ok
    assert again.kind == "NotCached"


def test_read_resource_serves_cached_text(ops, crawler):
    asyncio.run(ops.fetch_site(URL))
    identifier = to_identifier(URL)

    result = asyncio.run(ops.read_resource(identifier))

    assert result.ok
    assert result.text == ops.store.get(content_key(URL))
    assert result.data == {"uri": identifier, "mimeType": "text/plain", "url": URL}
    assert crawler.calls == [URL]


def test_read_resource_captures_uncached_site(ops, crawler):
    url = "https://example.com/search?q=a%20b&x=é"

    result = asyncio.run(ops.read_resource(to_identifier(url)))

    assert result.ok
    assert crawler.calls == [url]
    assert from_identifier(result.data["uri"]) == url


def test_read_resource_rejects_malformed_identifier(ops, crawler):
    result = asyncio.run(ops.read_resource("sitefetch://https%3A%2"))

    assert not result.ok
    assert result.kind == "MalformedIdentifier"
    assert crawler.calls == []


def test_reconcile_repairs_both_directions(ops):
    asyncio.run(ops.fetch_site("https://kept.example"))
    asyncio.run(ops.fetch_site("https://dangling.example"))
    ops.store.path_for(content_key("https://dangling.example")).unlink()
    orphan = content_key("https://orphan.example")
    ops.store.put(orphan, "stray")
    (ops.store.staging_dir / "leftover.txt").write_text("partial", encoding="utf-8")

    result = asyncio.run(ops.reconcile_cache())

    assert result.ok
    assert result.data == {"legacy_records": 0, "dangling_records": 1, "orphan_blobs": 1, "staging_files": 1}
    assert list(ops.index.load()) == [content_key("https://kept.example")]
    assert ops.store.keys() == [content_key("https://kept.example")]


def test_reconcile_clean_cache_changes_nothing(ops):
    asyncio.run(ops.fetch_site(URL))
    document = ops.index.path.read_bytes()

    result = asyncio.run(ops.reconcile_cache())

    assert result.data == {"legacy_records": 0, "dangling_records": 0, "orphan_blobs": 0, "staging_files": 0}
    assert ops.index.path.read_bytes() == document


def test_build_operations_initializes_storage(tmp_path):
    cfg = AppConfig()
    root = tmp_path / "fresh"

    ops = build_operations(cfg, crawler=FakeCrawler(), cache_dir=root)

    assert root.is_dir()
    assert ops.store.staging_dir.is_dir()
    assert ops.index.path == root / "sitefetch_metadata.json"
    assert ops.index.load() == {}
    assert asyncio.run(ops.list_sites()).text == NO_SITES_TEXT


def _seed_legacy(ops, url: str, content: str = "legacy text\n") -> str:
    """Write a blob and record the way the Node.js server keyed them."""
    legacy = hashlib.md5(url.encode("utf-8")).hexdigest()
    ops.store.put(legacy, content)
    mapping = ops.index.load()
    mapping[legacy] = CacheRecord(
        source_url=url,
        captured_at=datetime(2025, 4, 1, 12, 0, tzinfo=timezone.utc),
    )
    ops.index.save(mapping)
    return legacy


def _assert_index_matches_blobs(ops) -> None:
    assert sorted(ops.index.load()) == ops.store.keys()


def test_unexpected_crawler_error_is_a_fetch_failure(ops, crawler):
    crawler.fail_with = RuntimeError("remote blew up")

    result = asyncio.run(ops.fetch_site(URL))

    assert not result.ok
    assert result.kind == "FetchFailure"
    assert "RuntimeError: remote blew up" in result.text
    assert ops.store.keys() == []


def test_malformed_port_is_rejected_before_capture(ops, crawler):
    result = asyncio.run(ops.fetch_site("http://example.com:abc/"))

    assert result.kind == "InvalidUrl"
    assert crawler.calls == []


def test_undecodable_blob_is_captured_again(ops, crawler):
    asyncio.run(ops.fetch_site(URL))
    ops.store.path_for(content_key(URL)).write_bytes(b"\xff\xfe broken \xc3")

    result = asyncio.run(ops.fetch_site(URL))

    assert result.ok
    assert result.data["from_cache"] is False
    assert "v2" in ops.store.get(content_key(URL))
    assert crawler.calls == [URL, URL]


def test_clear_during_capture_leaves_index_and_blobs_agreeing(ops, crawler):
    asyncio.run(ops.fetch_site("https://other.example"))

    async def run():
        crawler.gate = asyncio.Event()
        fetch = asyncio.create_task(ops.fetch_site(URL))
        await asyncio.sleep(0.01)
        cleared = await ops.clear_cache()
        crawler.gate.set()
        return cleared, await fetch

    cleared, fetched = asyncio.run(run())

    assert cleared.data["count"] == 1
    assert fetched.ok
    assert list(ops.index.load()) == [content_key(URL)]
    _assert_index_matches_blobs(ops)


def test_remove_during_refresh_leaves_index_and_blobs_agreeing(ops, crawler):
    asyncio.run(ops.fetch_site(URL))

    async def run():
        crawler.gate = asyncio.Event()
        refresh = asyncio.create_task(ops.fetch_site(URL, force_refresh=True))
        await asyncio.sleep(0.01)
        removed = await ops.remove_site(URL)
        crawler.gate.set()
        return removed, await refresh

    removed, refreshed = asyncio.run(run())

    assert removed.ok
    assert refreshed.ok
    assert refreshed.data["from_cache"] is False
    assert "v2" in ops.store.get(content_key(URL))
    _assert_index_matches_blobs(ops)


def test_legacy_md5_entry_is_served_and_moved(ops, crawler):
    legacy = _seed_legacy(ops, URL)

    result = asyncio.run(ops.fetch_site(URL))
    listed = asyncio.run(ops.list_sites())

    assert result.ok
    assert result.data["from_cache"] is True
    assert crawler.calls == []
    assert ops.store.get(content_key(URL)) == "legacy text\n"
    assert not ops.store.exists(legacy)
    assert list(ops.index.load()) == [content_key(URL)]
    assert [item.url for item in listed.data["sites"]] == [URL]
    assert listed.data["sites"][0].description == "Fetched 2025-04-01 12:00 UTC"


def test_legacy_entry_counts_for_add_to_context_and_remove(ops, crawler):
    _seed_legacy(ops, URL)

    added = asyncio.run(ops.add_to_context(URL))
    removed = asyncio.run(ops.remove_site(URL))

    assert added.ok
    assert removed.ok
    assert ops.index.load() == {}
    assert ops.store.keys() == []
    assert crawler.calls == []


def test_reconcile_merges_legacy_duplicates(ops):
    asyncio.run(ops.fetch_site(URL))
    _seed_legacy(ops, URL, content="older copy\n")
    moved = "https://moved.example/"
    _seed_legacy(ops, moved)

    result = asyncio.run(ops.reconcile_cache())

    assert result.data["legacy_records"] == 2
    assert sorted(ops.index.load()) == sorted([content_key(URL), content_key(moved)])
    assert "v1" in ops.store.get(content_key(URL))
    assert ops.store.get(content_key(moved)) == "legacy text\n"
    _assert_index_matches_blobs(ops)
