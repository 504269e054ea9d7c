"""Shared fixtures: a scriptable in-memory crawler and wired-up operations."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from sitefetch.cache import CacheStore, MetadataIndex
from sitefetch.crawl import Crawler
from sitefetch.errors import FetchFailure
from sitefetch.operations import SiteFetchOperations


class FakeCrawler(Crawler):
    """Crawler double that records calls and returns canned text."""

    name = "fake"

    def __init__(self, pages: dict[str, str] | None = None):
        self.pages = dict(pages or {})
        self.calls: list[str] = []
        self.fail_with: Exception | None = None
        self.delay = 0.0
        self.gate: asyncio.Event | None = None
        self.version = 0

    async def capture(self, url: str) -> str:
        self.calls.append(url)
        if self.gate is not None:
            await self.gate.wait()
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail_with is not None:
            raise self.fail_with
        self.version += 1
        return self.pages.get(url, f"<page>\n  <title>Page for {url}</title>\n  <content>v{self.version}</content>\n</page>\n")


class StepClock:
    """Deterministic clock advancing one minute per call."""

    def __init__(self, start: datetime | None = None):
        self.current = start or datetime(2026, 10, 17, 9, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        value = self.current
        self.current = self.current + timedelta(minutes=1)
        return value


def snapshot_dir(root: Path) -> dict[str, bytes]:
    """Relative path -> bytes for every file under root."""
    if not root.exists():
        return {}
    return {
        str(path.relative_to(root)): path.read_bytes()
        for path in sorted(root.rglob("*"))
        if path.is_file()
    }


@pytest.fixture
def cache_root(tmp_path: Path) -> Path:
    return tmp_path / "cache"


@pytest.fixture
def store(cache_root: Path) -> CacheStore:
    store = CacheStore(cache_root)
    store.ensure_dirs()
    return store


@pytest.fixture
def index(cache_root: Path) -> MetadataIndex:
    return MetadataIndex(cache_root / "sitefetch_metadata.json")


@pytest.fixture
def crawler() -> FakeCrawler:
    return FakeCrawler()


@pytest.fixture
def ops(store: CacheStore, index: MetadataIndex, crawler: FakeCrawler) -> SiteFetchOperations:
    index.initialize()
    operations = SiteFetchOperations(store, index, crawler)
    operations.orchestrator.clock = StepClock()
    return operations


@pytest.fixture
def failing_crawler(crawler: FakeCrawler) -> FakeCrawler:
    crawler.fail_with = FetchFailure("network unreachable")
    return crawler
