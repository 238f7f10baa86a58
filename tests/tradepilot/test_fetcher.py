"""Tests for listing page fetchers and the listing scraper."""

import asyncio
import random
import time

import httpx
import pytest

from tradepilot.fetcher import (
    INVALID_URL_REASON,
    DirectFetcher,
    FetchOutcome,
    HostedScrapeFetcher,
    ListingScraper,
    screen_content,
    validate_url,
)
from tradepilot.models import STATUS_BLOCKED, STATUS_ERROR, STATUS_SUCCESS, FetchConfig, FetchStats

LISTING_HTML = """
<html>
  <head><title>2019 Hyundai i30</title><meta name="robots" content="index, follow"></head>
  <body>
    <h1>2019 Hyundai i30 Active</h1>
    <div class="price">$18,750</div>
    <p>61,000 km, automatic petrol hatch. Dealer: Parramatta Hyundai, Sydney NSW.</p>
  </body>
</html>
"""


class FakeHTTPClient:
    """Answers every request with a scripted response or exception."""

    def __init__(self, reply):
        self.reply = reply
        self.calls = []

    async def _answer(self, method, url, kwargs):
        self.calls.append((method, url, kwargs))
        if isinstance(self.reply, Exception):
            raise self.reply
        return self.reply

    async def get_async(self, url, **kwargs):
        return await self._answer("GET", url, kwargs)

    async def post_async(self, url, **kwargs):
        return await self._answer("POST", url, kwargs)


def status_error(status_code, url="https://example.com/listing"):
    request = httpx.Request("GET", url)
    return httpx.HTTPStatusError("failed", request=request, response=httpx.Response(status_code, request=request))


def test_validate_url():
    assert validate_url("https://www.carsales.com.au/cars/1") is None
    assert validate_url("http://example.com") is None
    assert validate_url("ftp://example.com/file") == INVALID_URL_REASON
    assert validate_url("not a url") == INVALID_URL_REASON
    assert validate_url("   ") == INVALID_URL_REASON
    assert validate_url(None) == INVALID_URL_REASON


def test_screen_content_ignores_markup_markers():
    """Bot markers in tags or attributes should not count as a challenge page."""
    assert screen_content("https://example.com", LISTING_HTML, "html") is None


def test_screen_content_detects_challenge_text():
    html = "<body><p>Please complete the CAPTCHA to prove you are not a robot before continuing.</p></body>"
    outcome = screen_content("https://example.com", html, "html")

    assert outcome.status == STATUS_BLOCKED
    assert outcome.error == "Bot detection triggered"


def test_screen_content_rejects_short_pages():
    outcome = screen_content("https://example.com", "Loading...", "markdown")

    assert outcome.status == STATUS_ERROR
    assert outcome.error == "Insufficient content scraped - site may be blocking"


@pytest.mark.asyncio
async def test_direct_fetcher_success_sends_user_agent():
    http = FakeHTTPClient(httpx.Response(200, text=LISTING_HTML))
    fetcher = DirectFetcher(http_client=http, user_agents=["TestAgent/1.0"])

    outcome = await fetcher.fetch("https://example.com/listing")

    assert outcome.ok
    assert outcome.content_type == "html"
    assert http.calls[0][2]["headers"] == {"User-Agent": "TestAgent/1.0"}


def test_direct_fetcher_random_user_agent_uses_pool():
    fetcher = DirectFetcher(http_client=FakeHTTPClient(None), rng=random.Random(7))
    agents = {fetcher.random_user_agent() for _ in range(50)}

    assert agents <= set(fetcher.user_agents)
    assert len(agents) > 1


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "status_code, expected_status, expected_error",
    [
        (403, STATUS_BLOCKED, "Access denied (403)"),
        (429, STATUS_BLOCKED, "Access denied (429)"),
        (404, STATUS_ERROR, "HTTP 404"),
        (500, STATUS_ERROR, "HTTP 500"),
    ],
)
async def test_direct_fetcher_classifies_status_codes(status_code, expected_status, expected_error):
    fetcher = DirectFetcher(http_client=FakeHTTPClient(status_error(status_code)))
    stats = FetchStats()

    outcome = await fetcher.fetch("https://example.com/listing", stats)

    assert outcome.status == expected_status
    assert outcome.error == expected_error
    if expected_status == STATUS_BLOCKED:
        assert stats.blocked == 1
    else:
        assert stats.errors == 1


@pytest.mark.asyncio
async def test_direct_fetcher_timeout_and_connection_errors():
    request = httpx.Request("GET", "https://example.com/listing")

    timeout = DirectFetcher(http_client=FakeHTTPClient(httpx.ReadTimeout("slow", request=request)))
    outcome = await timeout.fetch("https://example.com/listing")
    assert outcome.status == STATUS_ERROR
    assert outcome.error == "Request timed out after 15s"

    refused = DirectFetcher(http_client=FakeHTTPClient(httpx.ConnectError("refused", request=request)))
    outcome = await refused.fetch("https://example.com/listing")
    assert outcome.status == STATUS_ERROR
    assert outcome.error == "Connection failed: refused"


@pytest.mark.asyncio
async def test_invalid_url_is_never_requested():
    http = FakeHTTPClient(httpx.Response(200, text=LISTING_HTML))
    fetcher = DirectFetcher(http_client=http)

    outcome = await fetcher.fetch("javascript:alert(1)")

    assert outcome.status == STATUS_ERROR
    assert outcome.error == INVALID_URL_REASON
    assert http.calls == []


@pytest.mark.asyncio
async def test_hosted_fetcher_posts_scrape_request():
    body = {
        "success": True,
        "data": {
            "markdown": "# 2018 Ford Ranger XLT\n\n**Price:** $42,000\n\n120,000 km diesel ute, private sale in Perth.",
            "metadata": {"title": "Ford Ranger XLT"},
        },
    }
    http = FakeHTTPClient(httpx.Response(200, json=body))
    fetcher = HostedScrapeFetcher("fc-key", api_url="https://scrape.example.com/", http_client=http)

    outcome = await fetcher.fetch("https://www.gumtree.com.au/s-ad/123")

    method, url, kwargs = http.calls[0]
    assert method == "POST"
    assert url == "https://scrape.example.com/v1/scrape"
    assert kwargs["headers"] == {"Authorization": "Bearer fc-key"}
    assert kwargs["json"] == {
        "url": "https://www.gumtree.com.au/s-ad/123",
        "formats": ["markdown"],
        "waitFor": 3000,
        "timeout": 30000,
        "onlyMainContent": True,
    }
    assert outcome.ok
    assert outcome.content_type == "markdown"
    assert outcome.title_hint == "Ford Ranger XLT"


@pytest.mark.asyncio
async def test_hosted_fetcher_reports_api_failure():
    http = FakeHTTPClient(httpx.Response(200, json={"success": False, "error": "Rate limit exceeded"}))
    fetcher = HostedScrapeFetcher("fc-key", http_client=http)

    outcome = await fetcher.fetch("https://example.com/listing")

    assert outcome.status == STATUS_ERROR
    assert outcome.error == "Rate limit exceeded"


def test_hosted_fetcher_requires_key():
    with pytest.raises(ValueError):
        HostedScrapeFetcher("")


@pytest.mark.asyncio
@pytest.mark.parametrize("status_code", [403, 429, 500])
async def test_hosted_api_status_errors_are_not_reported_as_blocked(status_code):
    fetcher = HostedScrapeFetcher("fc-key", http_client=FakeHTTPClient(status_error(status_code)))
    stats = FetchStats()

    outcome = await fetcher.fetch("https://www.carsales.com.au/cars/details/42", stats)

    assert outcome.status == STATUS_ERROR
    assert outcome.error == f"Hosted scrape API returned HTTP {status_code}"
    assert stats.errors == 1
    assert stats.blocked == 0


class StalledHTTPClient:
    """Never finishes a request within any reasonable deadline."""

    async def get_async(self, url, **kwargs):
        await asyncio.sleep(30)


@pytest.mark.asyncio
async def test_fetch_deadline_covers_the_whole_request():
    fetcher = DirectFetcher(http_client=StalledHTTPClient(), config=FetchConfig(timeout_seconds=0.2))

    outcome = await fetcher.fetch("https://example.com/listing")

    assert outcome.status == STATUS_ERROR
    assert outcome.error == "Request timed out after 0.2s"
    assert outcome.elapsed_seconds < 5


@pytest.mark.asyncio
async def test_slow_dripping_server_is_cut_off(monkeypatch):
    for name in ("HTTP_PROXY", "HTTPS_PROXY", "ALL_PROXY", "http_proxy", "https_proxy", "all_proxy"):
        monkeypatch.delenv(name, raising=False)

    async def drip(reader, writer):
        await reader.readuntil(b"\r\n\r\n")
        writer.write(b"HTTP/1.1 200 OK\r\nContent-Type: text/html\r\nTransfer-Encoding: chunked\r\n\r\n")
        try:
            # Each chunk lands well inside the per-read timeout
            for _ in range(30):
                writer.write(b"1\r\n<\r\n")
                await writer.drain()
                await asyncio.sleep(0.1)
        except ConnectionError:
            pass
        finally:
            writer.close()

    server = await asyncio.start_server(drip, "127.0.0.1", 0)
    port = server.sockets[0].getsockname()[1]
    async with server:
        fetcher = DirectFetcher(config=FetchConfig(timeout_seconds=0.5))
        started = time.monotonic()
        outcome = await fetcher.fetch(f"http://127.0.0.1:{port}/listing")
        elapsed = time.monotonic() - started

    assert outcome.status == STATUS_ERROR
    assert outcome.error == "Request timed out after 0.5s"
    assert elapsed < 2


class StaticFetcher:
    """Returns a fixed outcome for every URL."""

    name = "static"

    def __init__(self, outcome=None, error=None):
        self.outcome = outcome
        self.error = error

    async def fetch(self, url, stats=None):
        if self.error:
            raise self.error
        return FetchOutcome(url=url, **self.outcome)


@pytest.mark.asyncio
async def test_listing_scraper_builds_record_from_html():
    scraper = ListingScraper(StaticFetcher({"status": STATUS_SUCCESS, "content": LISTING_HTML}))

    record = await scraper.scrape("https://www.carsales.com.au/cars/details/42")

    assert record.is_success
    assert record.source == "carsales.com.au"
    assert record.title == "2019 Hyundai i30 Active"
    assert record.price == 18750.0
    assert record.mileage == 61000
    assert record.make == "Hyundai"
    assert record.seller_type == "dealer"
    assert record.scraped_at.endswith("Z")
    assert "Hyundai" in record.raw_content
    assert "<div" not in record.raw_content


@pytest.mark.asyncio
async def test_listing_scraper_uses_title_hint():
    content = "Well looked after, regular servicing and a long list of extras included with the car."
    scraper = ListingScraper(
        StaticFetcher({"status": STATUS_SUCCESS, "content": content, "content_type": "markdown", "title_hint": "Page title"})
    )

    record = await scraper.scrape("https://example.com/ad")

    assert record.is_success
    assert record.title == "Page title"
    assert record.price is None


@pytest.mark.asyncio
async def test_listing_scraper_fails_without_title_or_price():
    content = "Well looked after, regular servicing and a long list of extras included with the car."
    scraper = ListingScraper(StaticFetcher({"status": STATUS_SUCCESS, "content": content, "content_type": "markdown"}))

    record = await scraper.scrape("https://example.com/ad")

    assert record.status == STATUS_ERROR
    assert record.error == "Could not extract listing data"
    assert record.title is None


@pytest.mark.asyncio
async def test_listing_scraper_converts_unexpected_errors():
    scraper = ListingScraper(StaticFetcher(error=RuntimeError("parser exploded")))

    record = await scraper.scrape("https://example.com/ad")

    assert record.status == STATUS_ERROR
    assert record.error == "parser exploded"


@pytest.mark.asyncio
async def test_listing_scraper_keeps_blocked_status():
    scraper = ListingScraper(StaticFetcher({"status": STATUS_BLOCKED, "error": "Access denied (403)"}))

    record = await scraper.scrape("https://example.com/ad")

    assert record.status == STATUS_BLOCKED
    assert record.error == "Access denied (403)"
