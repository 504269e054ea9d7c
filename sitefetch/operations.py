"""
Externally callable operations built on the orchestrator and addressor.

Every operation returns an OperationResult. Core errors never escape as
exceptions: they become failure results carrying the error kind and message.
The "add to context" notifier is a best-effort side channel whose failure
never changes an operation's outcome.
"""

from __future__ import annotations

import inspect
import logging
from pathlib import Path
from typing import Any, Awaitable, Callable

from .cache import CacheStore, MetadataIndex, content_key, is_legacy_key, normalize_url
from .config import AppConfig, get_cache_dir
from .crawl import Crawler, create_crawler
from .errors import CorruptBlob, InvalidUrl, NotCached, SiteFetchError
from .logging_utils import get_logger, log_event
from .orchestrator import FetchOrchestrator
from .resources import MIME_TYPE, ResourceAddressor, from_identifier, to_identifier
from .types import CacheRecord, OperationResult


NO_SITES_TEXT = "No sites have been fetched yet."

Notifier = Callable[[str], "Awaitable[None] | None"]


def _failure(exc: SiteFetchError, prefix: str = "Error") -> OperationResult:
    return OperationResult(ok=False, text=f"{prefix}: {exc.message}", kind=exc.kind)


class SiteFetchOperations:
    """The fetch-site / list-sites / clear-cache / add-to-context surface.

    Attributes:
        store: Blob storage
        index: Metadata index
        orchestrator: Fetch state machine
        addressor: Resource identifier mapping and listing
        notifier: Optional callback told about identifiers newly added to context
    """

    def __init__(
        self,
        store: CacheStore,
        index: MetadataIndex,
        crawler: Crawler,
        notifier: Notifier | None = None,
        timeout: float | None = None,
        logger: logging.Logger | None = None,
    ):
        self.store = store
        self.index = index
        self.orchestrator = FetchOrchestrator(store, index, crawler, timeout=timeout)
        self.addressor = ResourceAddressor(index, store)
        self.notifier = notifier
        self.logger = logger or get_logger("operations")

    async def _notify(self, identifier: str) -> bool:
        if self.notifier is None:
            return False
        try:
            result = self.notifier(identifier)
            if inspect.isawaitable(result):
                await result
        except Exception as exc:  # noqa: BLE001
            log_event(
                self.logger,
                "Context notification failed",
                level=logging.WARNING,
                event="notify_failed",
                identifier=identifier,
                error=f"{type(exc).__name__}: {exc}",
            )
            return False
        return True

    async def fetch_site(
        self,
        url: str,
        force_refresh: bool = False,
        add_to_context: bool = True,
        timeout: float | None = None,
    ) -> OperationResult:
        try:
            outcome = await self.orchestrator.fetch(url, force_refresh=force_refresh, timeout=timeout)
        except SiteFetchError as exc:
            return _failure(exc, "Failed to fetch site")

        identifier = to_identifier(outcome.url)
        path = self.store.path_for(outcome.key)
        notified = await self._notify(identifier) if add_to_context else False
        source = "Served from cache." if outcome.from_cache else "Freshly captured."
        text = (
            f"Successfully fetched site content from {outcome.url}.\n\n"
            f"The content is available as a resource at {identifier}\n\n"
            f"Content length: {len(outcome.content)} characters\n"
            f"Stored at: {path}\n"
            f"{source}"
        )
        return OperationResult(
            ok=True,
            text=text,
            data={
                "url": outcome.url,
                "identifier": identifier,
                "path": str(path),
                "length": len(outcome.content),
                "from_cache": outcome.from_cache,
                "title": outcome.record.title if outcome.record else None,
                "notified": notified,
            },
        )

    async def list_sites(self) -> OperationResult:
        try:
            descriptors = await self.addressor.list()
        except SiteFetchError as exc:
            return _failure(exc, "Error listing sites")

        if not descriptors:
            return OperationResult(ok=True, text=NO_SITES_TEXT, data={"sites": []})

        lines = []
        for position, item in enumerate(descriptors, start=1):
            entry = f"{position}. {item.url}\n   Resource: {item.identifier}\n   {item.description}"
            if item.display_name != item.url:
                entry += f"\n   Title: {item.display_name}"
            entry += f"\n   File: {item.path}"
            lines.append(entry)
        return OperationResult(
            ok=True,
            text="Fetched sites:\n\n" + "\n\n".join(lines),
            data={"sites": descriptors},
        )

    async def clear_cache(self) -> OperationResult:
        """Delete every indexed blob, then reset the index to empty.

        Per-blob deletion failures are logged and skipped; the index reset is
        authoritative. The count is the number of records present at the start.
        """
        try:
            async with self.index.lock:
                mapping = self.index.load()
                count = len(mapping)
                for key, record in mapping.items():
                    try:
                        if self.store.delete(key):
                            self.logger.debug("Deleted file: %s", self.store.path_for(key))
                        else:
                            self.logger.warning("Cached file already missing for %s", record.source_url)
                    except OSError as exc:
                        log_event(
                            self.logger,
                            f"Failed to delete file {self.store.path_for(key)}",
                            level=logging.WARNING,
                            event="clear_delete_failed",
                            url=record.source_url,
                            error=str(exc),
                        )
                self.index.save({})
        except SiteFetchError as exc:
            return _failure(exc, "Error clearing cache")

        log_event(self.logger, f"Cleared cache for {count} sites", event="cache_cleared", count=count)
        return OperationResult(ok=True, text=f"Cleared cache for {count} sites.", data={"count": count})

    async def add_to_context(self, url: str) -> OperationResult:
        try:
            url = normalize_url(url)
            key = content_key(url)
            await self.orchestrator.adopt_legacy(url, key)
            if not self.store.exists(key):
                raise NotCached(f"{url} has not been fetched yet; call fetch-site first")
        except SiteFetchError as exc:
            return _failure(exc)

        identifier = to_identifier(url)
        notified = await self._notify(identifier)
        return OperationResult(
            ok=True,
            text=f"Added {identifier} to context.",
            data={"added": True, "identifier": identifier, "notified": notified},
        )

    async def remove_site(self, url: str) -> OperationResult:
        """Evict one site: blob and index entry, under the clear lock discipline."""
        try:
            url = normalize_url(url)
            key = content_key(url)
            await self.orchestrator.adopt_legacy(url, key)
            async with self.index.lock:
                # Index entry goes first so it never outlives its blob
                record = self.index.remove_locked(key)
                try:
                    removed_blob = self.store.delete(key)
                except OSError as exc:
                    self.logger.warning("Failed to delete file %s: %s", self.store.path_for(key), exc)
                    removed_blob = False
            if not removed_blob and record is None:
                raise NotCached(f"{url} is not cached")
        except SiteFetchError as exc:
            return _failure(exc)

        log_event(self.logger, f"Removed {url} from cache", event="site_removed", url=url)
        return OperationResult(
            ok=True,
            text=f"Removed {url} from cache.",
            data={"url": url, "identifier": to_identifier(url)},
        )

    async def read_resource(self, identifier: str) -> OperationResult:
        """Serve a resource, capturing it first if it is not cached yet."""
        try:
            url = from_identifier(identifier)
            outcome = await self.orchestrator.fetch(url)
        except SiteFetchError as exc:
            return _failure(exc, "Failed to fetch site")
        return OperationResult(
            ok=True,
            text=outcome.content,
            data={"uri": identifier, "mimeType": MIME_TYPE, "url": outcome.url},
        )

    def _merge_legacy_locked(self, mapping: dict[str, CacheRecord]) -> int:
        """Re-key legacy MD5 entries in place. Caller must hold the index lock.

        The legacy blobs are left behind as orphans for the caller to sweep
        once the index is saved.
        """
        merged = 0
        for key in [key for key in mapping if is_legacy_key(key)]:
            record = mapping[key]
            try:
                current = content_key(record.source_url)
            except InvalidUrl:
                continue
            if current not in mapping:
                if not self.store.exists(key):
                    continue
                try:
                    self.store.put(current, self.store.get(key))
                except CorruptBlob:
                    continue
                mapping[current] = record
            del mapping[key]
            merged += 1
        return merged

    async def reconcile_cache(self) -> OperationResult:
        """Restore the blob/index invariants.

        Moves entries still stored under legacy MD5 keys to their ContentKey
        (dropping them where a current entry for the same URL exists), drops
        index entries whose blob is missing and deletes orphan blobs.
        Staging leftovers are purged only while no capture is in flight.
        """
        try:
            async with self.index.lock:
                mapping = self.index.load()
                legacy = self._merge_legacy_locked(mapping)
                dangling = [key for key in mapping if not self.store.exists(key)]
                for key in dangling:
                    del mapping[key]
                if dangling or legacy:
                    self.index.save(mapping)
                orphans = [key for key in self.store.keys() if key not in mapping]
                for key in orphans:
                    self.store.delete(key)
                staged = 0
                if self.orchestrator.active_captures == 0:
                    staged = self.store.purge_staging()
        except SiteFetchError as exc:
            return _failure(exc, "Error reconciling cache")

        counts: dict[str, Any] = {
            "legacy_records": legacy,
            "dangling_records": len(dangling),
            "orphan_blobs": len(orphans),
            "staging_files": staged,
        }
        log_event(self.logger, "Reconciled cache", event="cache_reconciled", **counts)
        return OperationResult(
            ok=True,
            text=(
                f"Removed {len(dangling)} index entries without content, "
                f"{len(orphans)} orphan files and {staged} staging files. "
                f"Merged {legacy} legacy entries."
            ),
            data=counts,
        )


def build_operations(
    cfg: AppConfig,
    notifier: Notifier | None = None,
    crawler: Crawler | None = None,
    cache_dir: Path | None = None,
) -> SiteFetchOperations:
    """Wire store, index and crawler from config and create the storage on first run."""
    root = cache_dir or get_cache_dir(cfg.cache)
    store = CacheStore(root)
    store.ensure_dirs()
    index = MetadataIndex(root / cfg.cache.metadata_filename)
    index.initialize()
    if crawler is None:
        crawler = create_crawler(cfg.crawler, store.staging_dir)
    get_logger().info("Storage initialized at: %s", root)
    return SiteFetchOperations(
        store,
        index,
        crawler,
        notifier=notifier,
        timeout=cfg.crawler.timeout_seconds,
    )
