"""
Text and title extraction for captured content.

This module provides a chain of HTML-to-text extraction methods:
1. trafilatura: Fast, purpose-built for article content (default)
2. readability: Mozilla's readability algorithm (fallback)
3. bs4: BeautifulSoup plain text extraction (last resort)

It also derives a best-effort title from whatever a crawler returned:
sitefetch page dumps, markdown, or raw HTML.
"""

from __future__ import annotations

import html as html_lib
import re
from typing import Callable

from bs4 import BeautifulSoup
import trafilatura
from readability import Document


MAX_TITLE_CHARS = 200

_TITLE_TAG_RE = re.compile(r"<title>(.*?)</title>", re.IGNORECASE | re.DOTALL)
_MARKDOWN_HEADING_RE = re.compile(r"^\s{0,3}#{1,2}\s+(.+?)\s*#*\s*$", re.MULTILINE)
_HTML_HINT_RE = re.compile(r"<\s*(html|head|body)\b", re.IGNORECASE)


def extract_text(html: str, primary: str, fallback: list[str]) -> str | None:
    """Extract plain text from HTML using a chain of extractors.

    Methods are tried in order (primary first, then each fallback once) until
    one produces non-empty output. Unknown method names are skipped.

    Args:
        html: The HTML content to extract text from
        primary: Name of the primary extraction method to try first
        fallback: List of fallback method names to try if primary fails

    Returns:
        Extracted text with leading/trailing whitespace stripped,
        or None if all methods fail
    """
    order = [primary] + [name for name in fallback if name != primary]
    for method in order:
        extractor = _EXTRACTORS.get(method)
        if extractor is None:
            continue
        text = extractor(html)
        if text and text.strip():
            return text.strip()
    return None


def extract_page(html: str, primary: str, fallback: list[str]) -> str | None:
    """Turn one HTML page into cacheable text headed by its document title.

    The title becomes a leading ``# <title>`` line so ``derive_title`` finds
    it again when the text is ingested.

    Returns:
        The page text, or None if no extractor produced any
    """
    text = extract_text(html, primary, fallback)
    if not text:
        return None
    soup = BeautifulSoup(html, "html.parser")
    title = _clean_title(soup.title.get_text()) if soup.title else None
    if title:
        return f"# {title}\n\n{text}\n"
    return f"{text}\n"


def derive_title(content: str) -> str | None:
    """Derive a title from captured content, or None if there is none.

    Looks for, in order: the first ``<title>`` element (sitefetch wraps every
    page in ``<page><title>..</title>..</page>``), the HTML document title via
    BeautifulSoup when the content is a full HTML page, and the first level
    one or two markdown heading.
    """
    if not content:
        return None

    if _HTML_HINT_RE.search(content):
        soup = BeautifulSoup(content, "html.parser")
        if soup.title and soup.title.string:
            return _clean_title(soup.title.string)

    match = _TITLE_TAG_RE.search(content)
    if match:
        title = _clean_title(html_lib.unescape(match.group(1)))
        if title:
            return title

    match = _MARKDOWN_HEADING_RE.search(content)
    if match:
        return _clean_title(match.group(1))
    return None


def _clean_title(raw: str) -> str | None:
    title = " ".join(raw.split())
    if not title:
        return None
    return title[:MAX_TITLE_CHARS]


def _extract_trafilatura(html: str) -> str | None:
    return trafilatura.extract(html, include_tables=True, output_format="markdown")


def _extract_readability(html: str) -> str | None:
    return _extract_bs4(Document(html).summary())


def _extract_bs4(html: str) -> str | None:
    soup = BeautifulSoup(html, "html.parser")
    for tag in soup(["script", "style", "noscript", "template", "title"]):
        tag.decompose()
    lines = (line.strip() for line in soup.get_text(separator="\n").splitlines())
    return "\n".join(line for line in lines if line) or None


_EXTRACTORS: dict[str, Callable[[str], str | None]] = {
    "trafilatura": _extract_trafilatura,
    "readability": _extract_readability,
    "bs4": _extract_bs4,
}
