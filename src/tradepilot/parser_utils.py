"""Parsing utilities shared by the fetchers and the listing extractor."""

from __future__ import annotations

import re
from typing import Optional
from urllib.parse import urlparse

from bs4 import BeautifulSoup

HEADING_TAGS = ("h1", "h2", "h3", "h4", "h5", "h6")
DROPPED_TAGS = ("script", "style", "noscript", "svg", "iframe")

_BLANK_LINES = re.compile(r"\n{3,}")


def html_to_text(html: Optional[str]) -> str:
    """Flatten an HTML page into markdown-like text.

    Headings become ``#`` lines and ``<strong>``/``<b>`` spans become
    ``**bold**`` so the listing extractor can treat HTML pages and hosted
    markdown the same way.
    """
    if not html:
        return ""
    soup = BeautifulSoup(html, "lxml")

    for tag in soup(list(DROPPED_TAGS)):
        tag.decompose()

    for tag in soup.find_all(list(HEADING_TAGS)):
        level = int(tag.name[1])
        text = tag.get_text(" ", strip=True)
        tag.replace_with(f"\n{'#' * level} {text}\n" if text else "")

    for tag in soup.find_all(["strong", "b"]):
        text = tag.get_text(" ", strip=True)
        tag.replace_with(f"**{text}**" if text else "")

    body = soup.body or soup
    text = body.get_text("\n")
    lines = [line.strip() for line in text.splitlines()]
    return _BLANK_LINES.sub("\n\n", "\n".join(lines)).strip()


def extract_domain(url: str) -> str:
    """Return the host of a URL without a leading ``www.``."""
    try:
        host = urlparse(url).hostname
    except ValueError:
        return "unknown"
    if not host:
        return "unknown"
    return host[4:] if host.startswith("www.") else host


def truncate(value: str, length: int, suffix: str = "") -> str:
    if len(value) <= length:
        return value
    return value[:length] + suffix


