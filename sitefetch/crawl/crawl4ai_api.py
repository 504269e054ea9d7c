"""
Crawler backed by a remote Crawl4AI API service.

The service handles JavaScript rendering and anti-bot detection and returns
the page as markdown.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any

import httpx

from ..errors import FetchFailure
from ..logging_utils import get_logger, log_event
from .base import Crawler


class Crawl4AIApiCrawler(Crawler):
    """Captures a page through a remote Crawl4AI ``/crawl`` endpoint."""

    name = "crawl4ai_api"

    def __init__(
        self,
        api_url: str,
        timeout: float = 60.0,
        retries: int = 0,
        user_agent: str | None = None,
        auth: tuple[str, str] | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        logger: logging.Logger | None = None,
    ):
        self.endpoint = f"{api_url.rstrip('/')}/crawl"
        self.timeout = timeout
        self.retries = retries
        self.user_agent = user_agent
        self.auth = auth
        self.transport = transport
        self.logger = logger or get_logger("crawl")

    def _payload(self, url: str) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "urls": [url],  # API expects 'urls' as a list
            "timeout": int(self.timeout * 1000),
        }
        if self.user_agent:
            payload["user_agent"] = self.user_agent
        return payload

    async def capture(self, url: str) -> str:
        # Connect is short, read is long (for slow crawls)
        timeout_config = httpx.Timeout(connect=10.0, read=max(self.timeout, 10.0) + 60.0, write=10.0, pool=10.0)
        last_error: str | None = None

        for attempt in range(self.retries + 1):
            try:
                async with httpx.AsyncClient(
                    timeout=timeout_config,
                    trust_env=True,
                    auth=self.auth,
                    transport=self.transport,
                ) as client:
                    resp = await client.post(
                        self.endpoint,
                        json=self._payload(url),
                        headers={"Accept": "application/json"},
                    )
                if resp.status_code != 200:
                    last_error = f"Crawl4AI API HTTP Error: {resp.status_code} {resp.text[:200]}"
                else:
                    text, last_error = _parse_response(resp.json())
                    if text is not None:
                        return text
            except httpx.TimeoutException as exc:
                last_error = f"TimeoutError: {exc}"
            except json.JSONDecodeError as exc:
                last_error = f"JSONDecodeError: {exc}"
            except httpx.HTTPError as exc:
                last_error = f"{type(exc).__name__}: {exc}"

            log_event(
                self.logger,
                "Crawl4AI attempt failed",
                level=logging.WARNING,
                event="crawler_attempt_failed",
                url=url,
                attempt=attempt + 1,
                error=last_error,
            )
            if attempt < self.retries:
                await asyncio.sleep(0.5 * (attempt + 1))

        raise FetchFailure(f"Failed to capture {url}: {last_error}")


def _parse_response(data: Any) -> tuple[str | None, str | None]:
    """Pull the markdown text out of a Crawl4AI response.

    Returns:
        (text, None) on success or (None, error message) on failure
    """
    # API returns a dict with 'results' array when using 'urls'
    if isinstance(data, dict) and "results" in data:
        results = data["results"]
        if not isinstance(results, list) or not results:
            return None, "Crawl4AI API Error: empty results array"
        data = results[0]
    elif isinstance(data, list):
        if not data:
            return None, "Crawl4AI API Error: empty response list"
        data = data[0]

    if not isinstance(data, dict):
        return None, "Crawl4AI API Error: unexpected response shape"
    if not data.get("success", True):
        return None, f"Crawl4AI API Error: {data.get('error') or data.get('error_message') or 'Unknown API error'}"

    text = None
    markdown = data.get("markdown")
    if isinstance(markdown, dict):
        text = markdown.get("raw_markdown") or markdown.get("fit_markdown")
    elif isinstance(markdown, str):
        text = markdown
    elif isinstance(data.get("html"), str):
        # Fallback to HTML if markdown not available
        text = data["html"]

    if not text or not text.strip():
        return None, "Crawl4AI API Error: empty response"
    return text, None
