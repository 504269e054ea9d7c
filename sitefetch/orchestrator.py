"""
Fetch orchestration: cache hit/miss decisions, capture and ingestion.

Each fetch ends as a CacheHit or moves through CacheMiss -> Fetching ->
Ingesting -> Done, with Failed reachable from Fetching and Ingesting.
Content cached by older versions under an MD5 key is moved to its
ContentKey before the hit check.

Durability contract:
- A cache hit only reads the blob; the index is not touched.
- Crawler output is held in memory (or the crawler's own staging file) until
  capture completes. A failed, timed out or cancelled capture leaves both
  stores exactly as they were.
- On ingestion the blob is committed before its index record, and both
  happen under the index lock, so clear/remove never interleave with an
  ingestion and no index entry ever points at a missing blob.

Concurrency: one lock per ContentKey. A caller that waited on another
caller's capture re-checks the cache and observes its result as a hit.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
import logging
from typing import Callable

from .cache import CacheStore, MetadataIndex, content_key, legacy_content_key, normalize_url
from .crawl import Crawler, derive_title
from .errors import CorruptBlob, FetchFailure, NotCached, SiteFetchError
from .logging_utils import get_logger, log_event
from .types import CacheRecord, FetchOutcome


class FetchState(str, Enum):
    CACHE_HIT = "cache_hit"
    CACHE_MISS = "cache_miss"
    FETCHING = "fetching"
    INGESTING = "ingesting"
    DONE = "done"
    FAILED = "failed"


@dataclass
class FetchStats:
    """Counters collected across fetches.

    Attributes:
        cache_hits: Number served from cache
        captures: Successful crawler captures
        failures: Failed captures or ingestions
    """
    cache_hits: int = 0
    captures: int = 0
    failures: int = 0


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class FetchOrchestrator:
    """Serves cached site content and captures it on a miss or forced refresh.

    Attributes:
        store: Blob storage
        index: Metadata index (its lock also guards ingestion)
        crawler: Capture collaborator
        timeout: Default upper bound in seconds for one capture, or None
        stats: Running FetchStats
    """

    def __init__(
        self,
        store: CacheStore,
        index: MetadataIndex,
        crawler: Crawler,
        timeout: float | None = None,
        clock: Callable[[], datetime] = _utcnow,
        logger: logging.Logger | None = None,
    ):
        self.store = store
        self.index = index
        self.crawler = crawler
        self.timeout = timeout
        self.clock = clock
        self.logger = logger or get_logger("orchestrator")
        self.stats = FetchStats()
        self._key_locks: dict[str, asyncio.Lock] = {}
        self._key_users: dict[str, int] = {}
        self._active_captures = 0

    @property
    def active_captures(self) -> int:
        """Number of captures currently in Fetching or Ingesting."""
        return self._active_captures

    def _lock_for(self, key: str) -> asyncio.Lock:
        lock = self._key_locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._key_locks[key] = lock
        return lock

    async def fetch(
        self,
        url: str,
        force_refresh: bool = False,
        timeout: float | None = None,
    ) -> FetchOutcome:
        """Return content for url, capturing it if needed.

        Args:
            url: Source URL (http or https)
            force_refresh: Capture again even when a blob exists
            timeout: Per-call capture bound overriding the default

        Raises:
            InvalidUrl: Before any store is touched
            FetchFailure: If the crawler fails or times out
            CacheWriteFailure: If the blob or index cannot be written
            MetadataCorruption: If the index document cannot be parsed
        """
        url = normalize_url(url)
        key = content_key(url)
        await self.adopt_legacy(url, key)

        if not force_refresh:
            outcome = self._try_hit(url, key)
            if outcome is not None:
                return outcome

        self._key_users[key] = self._key_users.get(key, 0) + 1
        try:
            return await self._fetch_locked(url, key, force_refresh, timeout)
        finally:
            self._key_users[key] -= 1
            if self._key_users[key] == 0:
                del self._key_users[key]
                self._key_locks.pop(key, None)

    async def _fetch_locked(
        self,
        url: str,
        key: str,
        force_refresh: bool,
        timeout: float | None,
    ) -> FetchOutcome:
        lock = self._lock_for(key)
        waited = lock.locked()
        async with lock:
            # Another caller may have captured it while this one waited
            if not force_refresh:
                outcome = self._try_hit(url, key)
                if outcome is not None:
                    return outcome

            state = FetchState.FETCHING
            self._active_captures += 1
            try:
                log_event(
                    self.logger,
                    f"Fetching site: {url}",
                    event="capture_start",
                    state=(FetchState.FETCHING if force_refresh else FetchState.CACHE_MISS).value,
                    url=url,
                    key=key,
                    force_refresh=force_refresh,
                    waited=waited,
                    crawler=self.crawler.name,
                )
                content = await self._capture(url, timeout if timeout is not None else self.timeout)

                state = FetchState.INGESTING
                record = await self._ingest(url, key, content)
            except SiteFetchError as exc:
                self.stats.failures += 1
                log_event(
                    self.logger,
                    f"Failed to fetch site: {url}",
                    level=logging.WARNING,
                    event="capture_failed",
                    url=url,
                    key=key,
                    state=FetchState.FAILED.value,
                    failed_in=state.value,
                    kind=exc.kind,
                    error=exc.message,
                )
                raise
            finally:
                self._active_captures -= 1

        self.stats.captures += 1
        return FetchOutcome(url=url, key=key, content=content, record=record, from_cache=False)

    def _try_hit(self, url: str, key: str) -> FetchOutcome | None:
        try:
            content = self.store.get(key)
        except NotCached:
            return None
        except CorruptBlob as exc:
            # Treated as a miss; the next capture overwrites it
            self.logger.warning("%s; capturing %s again", exc.message, url)
            return None
        self.stats.cache_hits += 1
        log_event(
            self.logger,
            f"Using cached content for: {url}",
            event="cache_hit",
            state=FetchState.CACHE_HIT.value,
            url=url,
            key=key,
        )
        return FetchOutcome(url=url, key=key, content=content, record=None, from_cache=True)

    async def _capture(self, url: str, timeout: float | None) -> str:
        try:
            if timeout is None:
                content = await self.crawler.capture(url)
            else:
                content = await asyncio.wait_for(self.crawler.capture(url), timeout=timeout)
        except asyncio.TimeoutError as exc:
            raise FetchFailure(f"Timed out after {timeout}s capturing {url}") from exc
        except FetchFailure:
            raise
        except Exception as exc:  # noqa: BLE001
            raise FetchFailure(f"Failed to capture {url}: {type(exc).__name__}: {exc}") from exc

        if not isinstance(content, str) or not content.strip():
            raise FetchFailure(f"Crawler returned no content for {url}")
        return content

    async def _ingest(self, url: str, key: str, content: str) -> CacheRecord:
        record = CacheRecord(
            source_url=url,
            captured_at=self.clock(),
            title=derive_title(content),
            size_bytes=len(content.encode("utf-8")),
        )
        async with self.index.lock:
            # Parse the index first so a corrupt document fails before any write
            mapping = self.index.load()
            previous = self._read_previous(key)
            self.store.put(key, content)
            mapping[key] = record
            try:
                self.index.save(mapping)
            except SiteFetchError:
                self._restore_blob(key, previous)
                raise
        log_event(
            self.logger,
            f"Cached {record.size_bytes} bytes for {url}",
            event="ingested",
            state=FetchState.DONE.value,
            url=url,
            key=key,
            title=record.title,
            size_bytes=record.size_bytes,
        )
        return record

    async def adopt_legacy(self, url: str, key: str) -> None:
        """Move a blob cached under the older MD5 key to its ContentKey.

        The record moves with it; a legacy blob without a record gets a fresh
        one. Nothing happens when the ContentKey already has a blob.
        """
        legacy = legacy_content_key(url)
        if self.store.exists(key) or not self.store.exists(legacy):
            return
        async with self.index.lock:
            if self.store.exists(key) or not self.store.exists(legacy):
                return
            try:
                content = self.store.get(legacy)
            except CorruptBlob:
                return
            mapping = self.index.load()
            record = mapping.pop(legacy, None) or CacheRecord(
                source_url=url,
                captured_at=self.clock(),
                title=derive_title(content),
                size_bytes=len(content.encode("utf-8")),
            )
            self.store.put(key, content)
            mapping[key] = record
            try:
                self.index.save(mapping)
            except SiteFetchError:
                self._restore_blob(key, None)
                raise
            self.store.delete(legacy)
        log_event(
            self.logger,
            f"Moved legacy cache entry for {url}",
            event="legacy_adopted",
            url=url,
            key=key,
            legacy_key=legacy,
        )

    def _read_previous(self, key: str) -> str | None:
        try:
            return self.store.get(key)
        except (NotCached, CorruptBlob):
            return None

    def _restore_blob(self, key: str, previous: str | None) -> None:
        """Put the blob back the way it was after the index write failed."""
        try:
            if previous is None:
                self.store.delete(key)
            else:
                self.store.put(key, previous)
        except (OSError, SiteFetchError) as exc:
            self.logger.error("Could not restore blob %s after failed ingestion: %s", key, exc)
