"""
URL validation and ContentKey derivation.

A ContentKey is the SHA-256 hex digest of the normalized source URL. The
same URL string always yields the same key, which doubles as the blob
filename stem and the metadata index key.
"""

from __future__ import annotations

import hashlib
from urllib.parse import urlsplit

from ..errors import InvalidUrl


ALLOWED_SCHEMES = ("http", "https")
LEGACY_KEY_LENGTH = 32


def normalize_url(url: str) -> str:
    """Validate a source URL and return its normalized form.

    Normalization only strips surrounding whitespace so the stored URL is
    exactly what the caller asked for.

    Args:
        url: The URL supplied by the caller

    Returns:
        The normalized URL

    Raises:
        InvalidUrl: If the URL is empty, not http(s), has no host or has a
            malformed port
    """
    if not isinstance(url, str):
        raise InvalidUrl(f"URL must be a string, got {type(url).__name__}")
    candidate = url.strip()
    if not candidate:
        raise InvalidUrl("URL must not be empty")
    if any(ch.isspace() for ch in candidate):
        raise InvalidUrl(f"URL must not contain whitespace: {candidate!r}")
    try:
        parts = urlsplit(candidate)
        # Raises on a non-numeric or out-of-range port
        parts.port
    except ValueError as exc:
        raise InvalidUrl(f"Invalid URL {candidate!r}: {exc}") from exc
    if parts.scheme.lower() not in ALLOWED_SCHEMES:
        raise InvalidUrl(f"Unsupported URL scheme in {candidate!r}; expected http or https")
    if not parts.netloc or not parts.hostname:
        raise InvalidUrl(f"URL has no host: {candidate!r}")
    return candidate


def content_key(url: str) -> str:
    """Return the ContentKey (64 hex characters) for a URL."""
    return hashlib.sha256(normalize_url(url).encode("utf-8")).hexdigest()


def legacy_content_key(url: str) -> str:
    """Return the 32-character MD5 key older caches stored this URL under."""
    return hashlib.md5(normalize_url(url).encode("utf-8")).hexdigest()


def is_legacy_key(key: str) -> bool:
    return len(key) == LEGACY_KEY_LENGTH
