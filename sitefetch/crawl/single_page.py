"""
Single-page crawler using httpx and local text extraction.

Useful where Node.js is unavailable. Only the requested page is captured.
"""

from __future__ import annotations

import asyncio
import logging

import httpx

from ..errors import FetchFailure
from ..logging_utils import get_logger, log_event
from .base import Crawler
from .extractor import extract_page


class HttpxCrawler(Crawler):
    name = "httpx"

    def __init__(
        self,
        timeout: float = 20.0,
        retries: int = 0,
        user_agent: str | None = None,
        extract_primary: str = "trafilatura",
        extract_fallback: list[str] | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        logger: logging.Logger | None = None,
    ):
        self.timeout = timeout
        self.retries = retries
        self.user_agent = user_agent
        self.extract_primary = extract_primary
        self.extract_fallback = list(extract_fallback or ["readability", "bs4"])
        self.transport = transport
        self.logger = logger or get_logger("crawl")

    async def capture(self, url: str) -> str:
        headers = {"User-Agent": self.user_agent} if self.user_agent else {}
        last_error: str | None = None

        for attempt in range(self.retries + 1):
            try:
                async with httpx.AsyncClient(
                    timeout=self.timeout,
                    headers=headers,
                    follow_redirects=True,
                    trust_env=True,
                    transport=self.transport,
                ) as client:
                    resp = await client.get(url)
                resp.raise_for_status()
                return self._to_text(url, resp.text)
            except httpx.HTTPStatusError as exc:
                last_error = f"HTTP {exc.response.status_code}"
            except httpx.HTTPError as exc:
                last_error = f"{type(exc).__name__}: {exc}"

            log_event(
                self.logger,
                "HTTP capture attempt failed",
                level=logging.WARNING,
                event="crawler_attempt_failed",
                url=url,
                attempt=attempt + 1,
                error=last_error,
            )
            if attempt < self.retries:
                # Linear backoff: 0.5s, 1.0s, 1.5s...
                await asyncio.sleep(0.5 * (attempt + 1))

        raise FetchFailure(f"Failed to capture {url}: {last_error}")

    def _to_text(self, url: str, html: str) -> str:
        text = extract_page(html, self.extract_primary, self.extract_fallback)
        if not text:
            raise FetchFailure(f"No text could be extracted from {url}")
        return text
