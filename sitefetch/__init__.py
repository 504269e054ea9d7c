"""
SiteFetch - reusable website text for LLM tool calls.

This package captures the full text of a website through a crawler, caches
it on disk with a small metadata index, and serves it back through stable
``sitefetch://`` resource identifiers.

Main entry point is the CLI via the `sitefetch` command.

Example:
    $ sitefetch serve
    $ sitefetch fetch https://example.com
"""

__all__ = [
    "__version__",
    "CacheRecord",
    "CacheStore",
    "FetchOrchestrator",
    "MetadataIndex",
    "OperationResult",
    "ResourceAddressor",
    "SiteFetchOperations",
    "build_operations",
]
__version__ = "1.0.0"

from .cache import CacheStore, MetadataIndex
from .operations import SiteFetchOperations, build_operations
from .orchestrator import FetchOrchestrator
from .resources import ResourceAddressor
from .types import CacheRecord, OperationResult
