"""Tests for listing URL discovery."""

import httpx
import pytest

from tradepilot.discovery import (
    UrlDiscoverer,
    parse_search_results,
    should_discover_more_urls,
    site_search_urls,
    unwrap_result_link,
)
from tradepilot.models import FailedUrl, ListingRecord, ScrapeBatchResult

SEARCH_HTML = """
<html><body>
  <div class="result"><a class="result__a" href="//duckduckgo.com/l/?uddg=https%3A%2F%2Fwww.carsales.com.au%2Fcars%2Fdetails%2F2020-toyota-camry%2F123&amp;rut=abc">2020 Toyota Camry Ascent | carsales</a></div>
  <div class="result"><a class="result__a" href="https://en.wikipedia.org/wiki/Toyota_Camry">Toyota Camry - Wikipedia</a></div>
  <div class="result"><a class="result__a" href="https://www.gumtree.com.au/s-ad/sydney/cars/camry/999">Camry for sale | Gumtree</a></div>
  <div class="result"><a class="result__a">No link</a></div>
</body></html>
"""


def _result(scraped, failed):
    listings = [
        ListingRecord(
            url=f"https://example.com/{index}",
            source="example.com",
            status="success",
            scraped_at="2026-03-15T00:00:00Z",
            title="Car",
        )
        for index in range(scraped)
    ]
    failures = [FailedUrl(url=f"https://example.com/f{index}", error="HTTP 500") for index in range(failed)]
    return ScrapeBatchResult(listings=listings, failed_urls=failures)


@pytest.mark.parametrize(
    "scraped, failed, expected",
    [(0, 0, True), (0, 3, True), (1, 2, True), (2, 2, False), (3, 1, False), (5, 0, False)],
)
def test_should_discover_more_urls(scraped, failed, expected):
    assert should_discover_more_urls(_result(scraped, failed)) is expected


def test_unwrap_result_link():
    href = "//duckduckgo.com/l/?uddg=https%3A%2F%2Fwww.drive.com.au%2Fcars-for-sale%2F&rut=1"
    assert unwrap_result_link(href) == "https://www.drive.com.au/cars-for-sale/"
    assert unwrap_result_link("https://www.gumtree.com.au/x") == "https://www.gumtree.com.au/x"


def test_parse_search_results_keeps_known_sites():
    results = parse_search_results(SEARCH_HTML, max_urls=10)

    assert [item.url for item in results] == [
        "https://www.carsales.com.au/cars/details/2020-toyota-camry/123",
        "https://www.gumtree.com.au/s-ad/sydney/cars/camry/999",
    ]
    assert results[0].source == "carsales.com.au"
    assert results[0].title == "2020 Toyota Camry Ascent | carsales"


def test_parse_search_results_honours_limit():
    assert len(parse_search_results(SEARCH_HTML, max_urls=1)) == 1


def test_site_search_urls():
    urls = site_search_urls(2020, "Land Rover", "Range Rover Sport")

    assert len(urls) == 6
    assert urls[0].url == "https://www.carsales.com.au/cars/land-rover/range-rover-sport/?q=2020%20Land%20Rover%20Range%20Rover%20Sport"
    assert urls[4].url == "https://www.drive.com.au/cars-for-sale/?make=Land+Rover&model=Range+Rover+Sport&year=2020"
    assert {item.source for item in urls} >= {"carsales.com.au", "gumtree.com.au", "pickles.com.au"}


class SearchClient:
    def __init__(self, reply):
        self.reply = reply
        self.calls = []

    async def get_async(self, url, **kwargs):
        self.calls.append((url, kwargs))
        if isinstance(self.reply, Exception):
            raise self.reply
        return self.reply


@pytest.mark.asyncio
async def test_discover_combines_search_and_site_pages():
    client = SearchClient(httpx.Response(200, text=SEARCH_HTML))

    results = await UrlDiscoverer(http_client=client).discover(2020, "Toyota", "Camry", max_urls=5)

    assert len(results) == 5
    assert results[0].source == "carsales.com.au"
    assert results[1].source == "gumtree.com.au"
    assert results[2].title == "2020 Toyota Camry on Carsales"
    assert client.calls[0][1]["params"] == {"q": "2020 Toyota Camry for sale Australia"}


@pytest.mark.asyncio
async def test_discover_falls_back_to_site_pages_when_search_fails():
    request = httpx.Request("GET", "https://html.duckduckgo.com/html/")
    client = SearchClient(httpx.ConnectError("offline", request=request))

    results = await UrlDiscoverer(http_client=client).discover(2020, "Toyota", "Camry")

    assert [item.url for item in results] == [item.url for item in site_search_urls(2020, "Toyota", "Camry")]
