"""
Resource addressing for captured sites.

Captured content is exposed under ``sitefetch://<percent-encoded URL>``. The
encoding matches JavaScript's ``encodeURIComponent``: ASCII letters, digits
and ``-_.!~*'()`` stay as they are, everything else becomes UTF-8 percent
escapes. Decoding exactly inverts it.
"""

from __future__ import annotations

from datetime import datetime, timezone
from urllib.parse import quote, unquote

from .cache import CacheStore, MetadataIndex
from .errors import MalformedIdentifier
from .types import CacheRecord, ResourceDescriptor


SCHEME = "sitefetch"
PREFIX = f"{SCHEME}://"
URI_TEMPLATE = f"{PREFIX}{{url}}"
MIME_TYPE = "text/plain"

# quote() never escapes letters, digits and "_.-~"; add the rest of
# encodeURIComponent's unreserved set
_SAFE = "!*'()"


def to_identifier(url: str) -> str:
    return PREFIX + quote(url, safe=_SAFE)


def from_identifier(identifier: str) -> str:
    """Decode a resource identifier back into its source URL.

    Raises:
        MalformedIdentifier: On a foreign scheme, an empty payload, or an
            invalid percent-escape / UTF-8 sequence
    """
    if not isinstance(identifier, str) or not identifier.startswith(PREFIX):
        raise MalformedIdentifier(f"Not a {SCHEME} identifier: {identifier!r}")
    payload = identifier[len(PREFIX):]
    if not payload:
        raise MalformedIdentifier(f"Identifier has no URL: {identifier!r}")
    _check_escapes(identifier, payload)
    try:
        return unquote(payload, errors="strict")
    except UnicodeDecodeError as exc:
        raise MalformedIdentifier(f"Identifier is not valid UTF-8: {identifier!r}") from exc


def _check_escapes(identifier: str, payload: str) -> None:
    # unquote() passes stray "%" through silently; decodeURIComponent rejects it
    index = payload.find("%")
    while index != -1:
        escape = payload[index + 1:index + 3]
        if len(escape) != 2 or any(ch not in "0123456789abcdefABCDEF" for ch in escape):
            raise MalformedIdentifier(f"Invalid percent-escape in identifier: {identifier!r}")
        index = payload.find("%", index + 3)


def describe_captured_at(captured_at: datetime) -> str:
    stamp = captured_at.astimezone(timezone.utc).strftime("%Y-%m-%d %H:%M UTC")
    return f"Fetched {stamp}"


class ResourceAddressor:
    """Maps URLs to identifiers and enumerates captured sites from the index."""

    def __init__(self, index: MetadataIndex, store: CacheStore | None = None):
        self.index = index
        self.store = store

    to_identifier = staticmethod(to_identifier)
    from_identifier = staticmethod(from_identifier)

    def descriptor(self, key: str, record: CacheRecord) -> ResourceDescriptor:
        return ResourceDescriptor(
            identifier=to_identifier(record.source_url),
            display_name=record.title or record.source_url,
            description=describe_captured_at(record.captured_at),
            url=record.source_url,
            captured_at=record.captured_at,
            size_bytes=record.size_bytes,
            path=str(self.store.path_for(key)) if self.store is not None else None,
        )

    async def list(self) -> list[ResourceDescriptor]:
        """Return every captured site, re-derived from the index on each call."""
        mapping = await self.index.snapshot()
        items = sorted(mapping.items(), key=lambda item: item[1].captured_at)
        return [self.descriptor(key, record) for key, record in items]
