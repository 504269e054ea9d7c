"""
Blob storage for captured site content.

Each blob is stored as ``<ContentKey>.txt`` directly under the cache root.
Writes go to a temporary file in the same directory and are renamed into
place, so a reader never observes a partially written blob.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
import re
import uuid

from ..errors import CacheWriteFailure, CorruptBlob, NotCached
from ..logging_utils import get_logger


BLOB_SUFFIX = ".txt"
STAGING_DIRNAME = ".staging"
# SHA-256 keys; 32-character MD5 keys from older caches are still addressable
_KEY_RE = re.compile(r"^[0-9a-f]{32,64}$")


def is_content_key(value: str) -> bool:
    return bool(_KEY_RE.match(value))


def atomic_write_text(path: Path, text: str) -> None:
    """Write text to a temporary sibling file and atomically replace path.

    Raises:
        CacheWriteFailure: If any step of the write or rename fails
    """
    tmp = path.with_name(f"{path.name}.tmp.{uuid.uuid4().hex}")
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with tmp.open("w", encoding="utf-8", newline="") as handle:
            handle.write(text)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(tmp, path)
    except OSError as exc:
        tmp.unlink(missing_ok=True)
        raise CacheWriteFailure(f"Failed to write {path}: {exc}") from exc


class CacheStore:
    """Content-addressable text storage keyed by ContentKey."""

    def __init__(self, root: Path, logger: logging.Logger | None = None):
        self.root = root
        self.logger = logger or get_logger("store")

    @property
    def staging_dir(self) -> Path:
        """Directory where crawlers write raw output before it is promoted."""
        return self.root / STAGING_DIRNAME

    def ensure_dirs(self) -> None:
        try:
            self.root.mkdir(parents=True, exist_ok=True)
            self.staging_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise CacheWriteFailure(f"Failed to create cache directory {self.root}: {exc}") from exc

    def path_for(self, key: str) -> Path:
        if not is_content_key(key):
            raise ValueError(f"Not a content key: {key!r}")
        return self.root / f"{key}{BLOB_SUFFIX}"

    def put(self, key: str, content: str) -> None:
        atomic_write_text(self.path_for(key), content)

    def get(self, key: str) -> str:
        """Read the blob for key.

        Raises:
            NotCached: If there is no blob
            CorruptBlob: If the blob cannot be decoded
        """
        path = self.path_for(key)
        try:
            return path.read_text(encoding="utf-8")
        except FileNotFoundError as exc:
            raise NotCached(f"No cached content for key {key}") from exc
        except UnicodeDecodeError as exc:
            raise CorruptBlob(f"Cached content for key {key} is not valid UTF-8") from exc

    def exists(self, key: str) -> bool:
        return self.path_for(key).is_file()

    def delete(self, key: str) -> bool:
        """Remove the blob for key. Deleting an absent key is not an error.

        Returns:
            True if a file was removed, False if nothing was there
        """
        path = self.path_for(key)
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        return True

    def keys(self) -> list[str]:
        """Return the ContentKeys of every blob currently on disk."""
        if not self.root.is_dir():
            return []
        found = []
        for path in self.root.iterdir():
            if path.suffix != BLOB_SUFFIX or not path.is_file():
                continue
            if is_content_key(path.stem):
                found.append(path.stem)
        return sorted(found)

    def purge_staging(self) -> int:
        """Delete leftover staging files from interrupted captures."""
        if not self.staging_dir.is_dir():
            return 0
        removed = 0
        for path in self.staging_dir.iterdir():
            if not path.is_file():
                continue
            try:
                path.unlink()
                removed += 1
            except OSError as exc:
                self.logger.warning("Failed to delete staging file %s: %s", path, exc)
        return removed
