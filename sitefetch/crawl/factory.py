"""Crawler factory and registry for swappable capture backends."""

from __future__ import annotations

from pathlib import Path

from ..config import CrawlerConfig, get_crawl4ai_api_auth, get_crawl4ai_api_url
from .base import Crawler
from .crawl4ai_api import Crawl4AIApiCrawler
from .single_page import HttpxCrawler
from .sitefetch_cli import SitefetchCliCrawler


def _build_sitefetch(cfg: CrawlerConfig, staging_dir: Path) -> Crawler:
    return SitefetchCliCrawler(staging_dir, command=cfg.command, concurrency=cfg.concurrency)


def _build_crawl4ai_api(cfg: CrawlerConfig, staging_dir: Path) -> Crawler:
    api_url = get_crawl4ai_api_url(cfg)
    if not api_url:
        raise ValueError("crawl4ai_api backend requires crawler.crawl4ai_api_url or CRAWL4AI_API_URL")
    return Crawl4AIApiCrawler(
        api_url,
        timeout=cfg.timeout_seconds or 60.0,
        retries=cfg.retries,
        user_agent=cfg.user_agent,
        auth=get_crawl4ai_api_auth(cfg),
    )


def _build_httpx(cfg: CrawlerConfig, staging_dir: Path) -> Crawler:
    return HttpxCrawler(
        timeout=cfg.timeout_seconds or 20.0,
        retries=cfg.retries,
        user_agent=cfg.user_agent,
        extract_primary=cfg.extract_primary,
        extract_fallback=cfg.extract_fallback,
    )


_CRAWLER_REGISTRY = {
    "sitefetch": _build_sitefetch,
    "crawl4ai_api": _build_crawl4ai_api,
    "crawl4ai-api": _build_crawl4ai_api,
    "httpx": _build_httpx,
}


def available_crawlers() -> list[str]:
    """Return the set of registered crawler backend names."""
    return sorted(_CRAWLER_REGISTRY.keys())


def create_crawler(cfg: CrawlerConfig, staging_dir: Path) -> Crawler:
    """Build a crawler instance from runtime config."""
    name = cfg.backend.lower().strip()
    builder = _CRAWLER_REGISTRY.get(name)
    if builder is None:
        supported = ", ".join(available_crawlers())
        raise ValueError(f"Unsupported crawler backend: {cfg.backend}. Supported: {supported}")
    return builder(cfg, staging_dir)
