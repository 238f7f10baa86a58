"""Listing page fetchers.

A fetcher turns one URL into a :class:`FetchOutcome`: the page content on
success, or a ``blocked``/``error`` status with a human-readable reason.
Fetchers never retry and never raise for per-URL problems.
"""

from __future__ import annotations

import asyncio
import random
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Optional, Sequence
from urllib.parse import urlparse

import httpx

from .extractor import extract_listing_fields, extract_listing_from_html
from .http_client import HTTPClient
from .logging_config import get_logger
from .models import (
    RAW_CONTENT_LIMIT,
    STATUS_BLOCKED,
    STATUS_ERROR,
    STATUS_SUCCESS,
    FetchConfig,
    FetchStats,
    ListingRecord,
    utc_timestamp,
)
from .parser_utils import extract_domain, html_to_text, truncate

logger = get_logger("fetcher")

USER_AGENTS: Sequence[str] = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:121.0) Gecko/20100101 Firefox/121.0",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 14_2) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/17.2 Safari/605.1.15",
)
BOT_MARKERS: Sequence[str] = ("captcha", "robot", "blocked")
BLOCKED_STATUS_CODES = frozenset({403, 429})
MIN_CONTENT_LENGTH = 50
INVALID_URL_REASON = "invalid URL"

CONTENT_HTML = "html"
CONTENT_MARKDOWN = "markdown"

DEFAULT_HOSTED_API_URL = "https://api.firecrawl.dev"


def validate_url(url: Optional[str]) -> Optional[str]:
    """Return a rejection reason for a malformed URL, or None when it is usable."""
    if not url or not url.strip():
        return INVALID_URL_REASON
    try:
        parsed = urlparse(url.strip())
    except ValueError:
        return INVALID_URL_REASON
    if parsed.scheme not in ("http", "https") or not parsed.netloc or not parsed.hostname:
        return INVALID_URL_REASON
    return None


@dataclass
class FetchOutcome:
    """Result of fetching a single URL."""

    url: str
    status: str
    content: Optional[str] = None
    content_type: str = CONTENT_HTML
    title_hint: Optional[str] = None
    error: Optional[str] = None
    elapsed_seconds: float = 0.0

    @property
    def ok(self) -> bool:
        return self.status == STATUS_SUCCESS

    @classmethod
    def blocked(cls, url: str, reason: str) -> "FetchOutcome":
        return cls(url=url, status=STATUS_BLOCKED, error=reason)

    @classmethod
    def failed(cls, url: str, reason: str) -> "FetchOutcome":
        return cls(url=url, status=STATUS_ERROR, error=reason)


def _readable_text(content: str, content_type: str) -> str:
    return html_to_text(content) if content_type == CONTENT_HTML else content


def screen_content(url: str, content: Optional[str], content_type: str) -> Optional[FetchOutcome]:
    """Reject challenge pages and near-empty pages.

    Markers are searched in the readable text so that markup such as
    ``<meta name="robots">`` does not trip the check.
    """
    text = _readable_text(content or "", content_type)
    lowered = text.lower()
    if any(marker in lowered for marker in BOT_MARKERS):
        return FetchOutcome.blocked(url, "Bot detection triggered")
    if len(text.strip()) < MIN_CONTENT_LENGTH:
        return FetchOutcome.failed(url, "Insufficient content scraped - site may be blocking")
    return None


class BaseFetcher(ABC):
    """Abstract base for listing page fetchers."""

    name = "base"

    def __init__(self, http_client: Optional[HTTPClient] = None, config: Optional[FetchConfig] = None) -> None:
        self.config = config or FetchConfig(name=self.name)
        self.http_client = http_client or HTTPClient(config=self.config)

    async def fetch(self, url: str, stats: Optional[FetchStats] = None) -> FetchOutcome:
        """Fetch one URL, converting every failure mode into an outcome."""
        started = time.monotonic()
        reason = validate_url(url)
        if reason:
            return FetchOutcome.failed(url, reason)

        try:
            # Overall deadline; httpx timeouts only bound each read
            outcome = await asyncio.wait_for(self._fetch(url, stats), timeout=self.config.timeout_seconds)
        except httpx.HTTPStatusError as exc:
            outcome = self._classify_status(url, exc.response.status_code)
        except (httpx.TimeoutException, asyncio.TimeoutError):
            outcome = FetchOutcome.failed(url, f"Request timed out after {self.config.timeout_seconds:g}s")
        except httpx.RequestError as exc:
            outcome = FetchOutcome.failed(url, f"Connection failed: {exc}" if str(exc) else "Connection failed")

        outcome.elapsed_seconds = time.monotonic() - started
        if stats and outcome.status == STATUS_BLOCKED:
            stats.blocked += 1
        elif stats and outcome.status == STATUS_ERROR:
            stats.errors += 1

        if outcome.ok:
            logger.info(f"[{self.name}] Fetched {url} in {outcome.elapsed_seconds:.2f}s")
        else:
            logger.warning(f"[{self.name}] Failed to fetch {url}: {outcome.status} - {outcome.error}")
        return outcome

    @staticmethod
    def _classify_status(url: str, status_code: int) -> FetchOutcome:
        if status_code in BLOCKED_STATUS_CODES:
            return FetchOutcome.blocked(url, f"Access denied ({status_code})")
        return FetchOutcome.failed(url, f"HTTP {status_code}")

    @abstractmethod
    async def _fetch(self, url: str, stats: Optional[FetchStats]) -> FetchOutcome:
        """Fetch the URL; httpx errors propagate to :meth:`fetch`."""


class DirectFetcher(BaseFetcher):
    """Fetch listing pages directly with a randomized desktop user agent."""

    name = "direct"

    def __init__(
        self,
        http_client: Optional[HTTPClient] = None,
        config: Optional[FetchConfig] = None,
        *,
        user_agents: Sequence[str] = USER_AGENTS,
        rng: Optional[random.Random] = None,
    ) -> None:
        super().__init__(http_client=http_client, config=config)
        self.user_agents = list(user_agents)
        self.rng = rng or random.Random()

    def random_user_agent(self) -> str:
        return self.rng.choice(self.user_agents)

    async def _fetch(self, url: str, stats: Optional[FetchStats]) -> FetchOutcome:
        response = await self.http_client.get_async(
            url,
            headers={"User-Agent": self.random_user_agent()},
            stats=stats,
        )
        content = response.text
        rejected = screen_content(url, content, CONTENT_HTML)
        if rejected:
            return rejected
        return FetchOutcome(url=url, status=STATUS_SUCCESS, content=content, content_type=CONTENT_HTML)


class HostedScrapeFetcher(BaseFetcher):
    """Fetch rendered page markdown through a hosted scraping API.

    Speaks the Firecrawl ``/v1/scrape`` protocol, which renders JavaScript
    and handles most anti-bot measures on its side.
    """

    name = "hosted"

    def __init__(
        self,
        api_key: str,
        *,
        api_url: str = DEFAULT_HOSTED_API_URL,
        wait_for_ms: int = 3000,
        timeout_ms: int = 30000,
        only_main_content: bool = True,
        http_client: Optional[HTTPClient] = None,
        config: Optional[FetchConfig] = None,
    ) -> None:
        config = config or FetchConfig(name=self.name, timeout_seconds=timeout_ms / 1000 + 15)
        super().__init__(http_client=http_client, config=config)
        if not api_key:
            raise ValueError("A hosted scrape API key is required")
        self.api_key = api_key
        self.api_url = api_url.rstrip("/")
        self.wait_for_ms = wait_for_ms
        self.timeout_ms = timeout_ms
        self.only_main_content = only_main_content

    @staticmethod
    def _classify_status(url: str, status_code: int) -> FetchOutcome:
        # Status codes here come from the hosted API, not the listing site
        return FetchOutcome.failed(url, f"Hosted scrape API returned HTTP {status_code}")

    def build_payload(self, url: str) -> Dict[str, Any]:
        return {
            "url": url,
            "formats": ["markdown"],
            "waitFor": self.wait_for_ms,
            "timeout": self.timeout_ms,
            "onlyMainContent": self.only_main_content,
        }

    async def _fetch(self, url: str, stats: Optional[FetchStats]) -> FetchOutcome:
        logger.debug(f"[{self.name}] Scraping {url}")
        response = await self.http_client.post_async(
            f"{self.api_url}/v1/scrape",
            json=self.build_payload(url),
            headers={"Authorization": f"Bearer {self.api_key}"},
            stats=stats,
        )
        try:
            body = response.json()
        except ValueError:
            return FetchOutcome.failed(url, "Hosted scrape API returned invalid JSON")

        if not isinstance(body, dict):
            return FetchOutcome.failed(url, "Hosted scrape API returned an unexpected response")
        if body.get("error") or not body.get("success"):
            return FetchOutcome.failed(url, str(body.get("error") or "Hosted scrape API returned unsuccessful response"))

        data = body.get("data") or {}
        content = data.get("markdown") or data.get("content") or ""
        content_type = CONTENT_MARKDOWN
        if not content and data.get("html"):
            content = data["html"]
            content_type = CONTENT_HTML

        rejected = screen_content(url, content, content_type)
        if rejected:
            return rejected

        metadata = data.get("metadata") or {}
        return FetchOutcome(
            url=url,
            status=STATUS_SUCCESS,
            content=content,
            content_type=content_type,
            title_hint=metadata.get("title") or None,
        )


class ListingScraper:
    """Fetch a listing page and turn it into a :class:`ListingRecord`."""

    def __init__(self, fetcher: BaseFetcher) -> None:
        self.fetcher = fetcher

    async def scrape(self, url: str, stats: Optional[FetchStats] = None) -> ListingRecord:
        source = extract_domain(url)
        try:
            outcome = await self.fetcher.fetch(url, stats)
            if not outcome.ok:
                return ListingRecord.failure(url, source, outcome.status, outcome.error or "Unknown error")
            return self._build_record(url, source, outcome)
        except Exception as exc:
            logger.exception(f"Unexpected failure while scraping {url}: {exc}")
            return ListingRecord.failure(url, source, STATUS_ERROR, str(exc) or type(exc).__name__)

    @staticmethod
    def _build_record(url: str, source: str, outcome: FetchOutcome) -> ListingRecord:
        content = outcome.content or ""
        if outcome.content_type == CONTENT_HTML:
            fields = extract_listing_from_html(content)
        else:
            fields = extract_listing_fields(content)

        title = fields.pop("title", None) or outcome.title_hint
        if not title and fields.get("price") is None:
            return ListingRecord.failure(url, source, STATUS_ERROR, "Could not extract listing data")

        return ListingRecord(
            url=url,
            source=source,
            status=STATUS_SUCCESS,
            scraped_at=utc_timestamp(),
            title=title,
            raw_content=truncate(_readable_text(content, outcome.content_type), RAW_CONTENT_LIMIT),
            **fields,
        )
