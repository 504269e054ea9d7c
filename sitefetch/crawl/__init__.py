"""
Crawler collaborators.

This package defines the abstract Crawler capability and its concrete
backends: the sitefetch CLI, a remote Crawl4AI API, and a single-page
httpx fetcher.
"""

from .base import Crawler
from .crawl4ai_api import Crawl4AIApiCrawler
from .extractor import derive_title, extract_page, extract_text
from .factory import available_crawlers, create_crawler
from .single_page import HttpxCrawler
from .sitefetch_cli import SitefetchCliCrawler

__all__ = [
    "Crawler",
    "Crawl4AIApiCrawler",
    "HttpxCrawler",
    "SitefetchCliCrawler",
    "available_crawlers",
    "create_crawler",
    "derive_title",
    "extract_page",
    "extract_text",
]
