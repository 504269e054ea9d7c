"""
Error kinds raised by the cache core.

Every error carries a short ``kind`` string so outer layers (tool server,
CLI) can report a structured failure without inspecting exception types.
"""

from __future__ import annotations


class SiteFetchError(Exception):
    """Base class for all cache-core failures."""

    kind = "SiteFetchError"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InvalidUrl(SiteFetchError):
    """The input URL was rejected before any store was touched."""

    kind = "InvalidUrl"


class FetchFailure(SiteFetchError):
    """The crawler could not capture the page (network, timeout, remote error)."""

    kind = "FetchFailure"


class CacheWriteFailure(SiteFetchError):
    """A blob or the metadata document could not be written."""

    kind = "CacheWriteFailure"


class MetadataCorruption(SiteFetchError):
    """The metadata document exists but cannot be parsed."""

    kind = "MetadataCorruption"


class NotCached(SiteFetchError):
    """The operation needs content that has not been fetched yet."""

    kind = "NotCached"


class MalformedIdentifier(SiteFetchError):
    """A resource identifier does not match the scheme or fails to decode."""

    kind = "MalformedIdentifier"


class CorruptBlob(SiteFetchError):
    """A cached blob exists but is not readable UTF-8 text."""

    kind = "CorruptBlob"
