"""
Configuration management using YAML files and dataclasses.

This module defines all configuration dataclasses and provides loading
from YAML files with defaults. Configuration sections:
- CacheConfig: Cache directory and metadata document settings
- CrawlerConfig: Crawler backend selection and tuning
- LoggingConfig: Logging behavior
- ServerConfig: Tool server identity
- AppConfig: Root configuration container
"""

from __future__ import annotations

from dataclasses import dataclass, field
import os
from pathlib import Path
from typing import Any

import yaml


DEFAULT_CACHE_DIR = Path.home() / ".cache" / "sitefetch"
CACHE_DIR_ENV = "SITEFETCH_CACHE_DIR"


@dataclass
class CacheConfig:
    """Configuration for cache storage.

    Attributes:
        dir: Cache root directory (falls back to SITEFETCH_CACHE_DIR, then ~/.cache/sitefetch)
        metadata_filename: Name of the metadata JSON document stored beside the blobs
    """

    dir: str | None = None
    metadata_filename: str = "sitefetch_metadata.json"


@dataclass
class CrawlerConfig:
    """Configuration for the crawler collaborator.

    Attributes:
        backend: "sitefetch" to run the sitefetch CLI, "crawl4ai_api" for a remote
            Crawl4AI service, "httpx" for a single-page fetch with local extraction
        command: Argument vector used to launch the sitefetch CLI
        concurrency: Parallelism hint passed to the sitefetch CLI
        timeout_seconds: Upper bound for a single capture, or None for no bound
        retries: Backend-level retry attempts after the initial failure
        user_agent: HTTP User-Agent header string
        crawl4ai_api_url: Remote Crawl4AI API URL (uses environment variable if not set)
        crawl4ai_api_username: Optional Basic Auth username for the Crawl4AI API
        crawl4ai_api_password: Optional Basic Auth password for the Crawl4AI API
        extract_primary: Primary extraction method for the httpx backend
        extract_fallback: Fallback extraction methods for the httpx backend
    """

    backend: str = "sitefetch"
    command: list[str] = field(default_factory=lambda: ["npx", "sitefetch"])
    concurrency: int = 10
    timeout_seconds: float | None = None
    retries: int = 0
    user_agent: str = (
        "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) "
        "AppleWebKit/537.36 (KHTML, like Gecko) "
        "Chrome/120.0.0.0 Safari/537.36"
    )
    crawl4ai_api_url: str | None = None
    crawl4ai_api_username: str | None = None
    crawl4ai_api_password: str | None = None
    extract_primary: str = "trafilatura"
    extract_fallback: list[str] = field(default_factory=lambda: ["readability", "bs4"])


@dataclass
class LoggingConfig:
    """Configuration for logging behavior.

    Attributes:
        level: Logging level ("DEBUG", "INFO", "WARNING", "ERROR")
        console: Whether to log to the console (always stderr)
        file: Whether to log to a file inside the cache directory
        format: Log file format ("jsonl" or "plain")
        filename: Name of the log file
    """

    level: str = "INFO"
    console: bool = True
    file: bool = False
    format: str = "jsonl"
    filename: str = "sitefetch.jsonl"


@dataclass
class ServerConfig:
    """Identity reported by the tool server during initialization."""

    name: str = "SiteFetch MCP Server"
    version: str = "1.0.0"


@dataclass
class AppConfig:
    """Root configuration container aggregating all config sections."""

    cache: CacheConfig = field(default_factory=CacheConfig)
    crawler: CrawlerConfig = field(default_factory=CrawlerConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    server: ServerConfig = field(default_factory=ServerConfig)


def load_config(path: str | None) -> AppConfig:
    """Load configuration from a YAML file with defaults."""
    if not path:
        return AppConfig()

    with open(path, "r", encoding="utf-8") as f:
        raw = yaml.safe_load(f) or {}

    return _merge_config(AppConfig(), raw)


def _merge_config(base: AppConfig, raw: dict[str, Any]) -> AppConfig:
    """Merge raw YAML config into base AppConfig."""
    data = _asdict(base)
    for key, value in raw.items():
        if key not in data:
            continue
        if isinstance(value, dict) and isinstance(data[key], dict):
            data[key].update({k: v for k, v in value.items() if k in data[key]})
        else:
            data[key] = value
    return _fromdict(data)


def _asdict(cfg: AppConfig) -> dict[str, Any]:
    """Convert AppConfig to nested dictionary."""
    return {
        "cache": {
            "dir": cfg.cache.dir,
            "metadata_filename": cfg.cache.metadata_filename,
        },
        "crawler": {
            "backend": cfg.crawler.backend,
            "command": list(cfg.crawler.command),
            "concurrency": cfg.crawler.concurrency,
            "timeout_seconds": cfg.crawler.timeout_seconds,
            "retries": cfg.crawler.retries,
            "user_agent": cfg.crawler.user_agent,
            "crawl4ai_api_url": cfg.crawler.crawl4ai_api_url,
            "crawl4ai_api_username": cfg.crawler.crawl4ai_api_username,
            "crawl4ai_api_password": cfg.crawler.crawl4ai_api_password,
            "extract_primary": cfg.crawler.extract_primary,
            "extract_fallback": list(cfg.crawler.extract_fallback),
        },
        "logging": {
            "level": cfg.logging.level,
            "console": cfg.logging.console,
            "file": cfg.logging.file,
            "format": cfg.logging.format,
            "filename": cfg.logging.filename,
        },
        "server": {
            "name": cfg.server.name,
            "version": cfg.server.version,
        },
    }


def _fromdict(data: dict[str, Any]) -> AppConfig:
    """Reconstruct AppConfig from nested dictionary."""
    return AppConfig(
        cache=CacheConfig(**data["cache"]),
        crawler=CrawlerConfig(**data["crawler"]),
        logging=LoggingConfig(**data["logging"]),
        server=ServerConfig(**data.get("server", {})),
    )


def get_cache_dir(cfg: CacheConfig) -> Path:
    """Get cache root from inline config, environment variable, or the per-user default."""
    if cfg.dir:
        return Path(cfg.dir).expanduser()
    env_dir = os.getenv(CACHE_DIR_ENV)
    if env_dir:
        return Path(env_dir).expanduser()
    return DEFAULT_CACHE_DIR


def get_crawl4ai_api_url(cfg: CrawlerConfig) -> str | None:
    """Get Crawl4AI API URL from inline config or environment variable."""
    if cfg.crawl4ai_api_url:
        return cfg.crawl4ai_api_url
    return os.getenv("CRAWL4AI_API_URL")


def get_crawl4ai_api_auth(cfg: CrawlerConfig) -> tuple[str, str] | None:
    """Get Crawl4AI API Basic Auth credentials from config or environment variables.

    Returns (username, password) tuple if both are configured, None otherwise.
    """
    username = cfg.crawl4ai_api_username or os.getenv("CRAWL4AI_API_USERNAME")
    password = cfg.crawl4ai_api_password or os.getenv("CRAWL4AI_API_PASSWORD")
    if username and password:
        return (username, password)
    return None
