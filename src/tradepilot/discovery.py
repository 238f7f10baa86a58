"""Discovery of listing URLs when user-supplied URLs mostly fail."""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Sequence
from urllib.parse import parse_qs, quote, urlencode, urlparse

import httpx
from bs4 import BeautifulSoup

from .http_client import HTTPClient
from .logging_config import get_logger
from .models import FetchConfig, ScrapeBatchResult

logger = get_logger("discovery")

SEARCH_URL = "https://html.duckduckgo.com/html/"
SEARCH_USER_AGENT = "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36"

AUSTRALIAN_CAR_SITES: Sequence[str] = (
    "carsales.com.au",
    "gumtree.com.au",
    "autotrader.com.au",
    "carsguide.com.au",
    "drive.com.au",
    "pickles.com.au",
    "manheim.com.au",
    "graysauctions.com",
    "facebook.com/marketplace",
    "carfact.com.au",
)


@dataclass(frozen=True)
class DiscoveredUrl:
    url: str
    title: str
    source: str


def should_discover_more_urls(result: ScrapeBatchResult) -> bool:
    """True when nothing was scraped or more than half of the attempts failed."""
    if result.total_scraped == 0:
        return True
    return result.total_failed / (result.total_scraped + result.total_failed) > 0.5


def _slug(value: str) -> str:
    return "-".join(value.lower().split())


def site_search_urls(year: int, make: str, model: str) -> List[DiscoveredUrl]:
    """Search result pages on the major Australian car sites."""
    make_slug = _slug(make)
    model_slug = _slug(model)
    query = quote(f"{year} {make} {model}", safe="")
    label = f"{year} {make} {model}"
    drive_query = urlencode({"make": make, "model": model, "year": year})

    return [
        DiscoveredUrl(
            url=f"https://www.carsales.com.au/cars/{make_slug}/{model_slug}/?q={query}",
            title=f"{label} on Carsales",
            source="carsales.com.au",
        ),
        DiscoveredUrl(
            url=f"https://www.gumtree.com.au/s-cars-vans-utes/{make_slug}+{model_slug}/k0c18320?search={query}",
            title=f"{label} on Gumtree",
            source="gumtree.com.au",
        ),
        DiscoveredUrl(
            url=f"https://www.autotrader.com.au/cars/{make_slug}/{model_slug}",
            title=f"{label} on AutoTrader",
            source="autotrader.com.au",
        ),
        DiscoveredUrl(
            url=f"https://www.carsguide.com.au/buy-a-car/{make_slug}/{model_slug}",
            title=f"{label} on CarsGuide",
            source="carsguide.com.au",
        ),
        DiscoveredUrl(
            url=f"https://www.drive.com.au/cars-for-sale/?{drive_query}",
            title=f"{label} on Drive",
            source="drive.com.au",
        ),
        DiscoveredUrl(
            url=f"https://www.pickles.com.au/cars/search?q={query}",
            title=f"{label} on Pickles Auctions",
            source="pickles.com.au",
        ),
    ]


def unwrap_result_link(href: str) -> str:
    """Return the target of a search-engine redirect link (``uddg=`` parameter)."""
    query = parse_qs(urlparse(href).query)
    targets = query.get("uddg")
    if targets:
        return targets[0]
    return href


def parse_search_results(html: str, max_urls: int) -> List[DiscoveredUrl]:
    """Pick result links that point at known car listing sites."""
    soup = BeautifulSoup(html, "lxml")
    discovered: List[DiscoveredUrl] = []
    for anchor in soup.select("a.result__a"):
        if len(discovered) >= max_urls:
            break
        href = anchor.get("href")
        if not href:
            continue
        target = unwrap_result_link(href)
        site = next((site for site in AUSTRALIAN_CAR_SITES if site in target), None)
        if site is None:
            continue
        discovered.append(DiscoveredUrl(url=target, title=anchor.get_text(strip=True), source=site))
    return discovered


class UrlDiscoverer:
    """Finds listing URLs through web search, padded with site search pages."""

    def __init__(self, http_client: Optional[HTTPClient] = None) -> None:
        self.http_client = http_client or HTTPClient(
            FetchConfig(name="discovery", headers={"User-Agent": SEARCH_USER_AGENT})
        )

    async def discover(self, year: int, make: str, model: str, max_urls: int = 10) -> List[DiscoveredUrl]:
        query = f"{year} {make} {model} for sale Australia"
        discovered: List[DiscoveredUrl] = []

        try:
            response = await self.http_client.get_async(SEARCH_URL, params={"q": query})
            discovered = parse_search_results(response.text, max_urls)
        except httpx.HTTPError as exc:
            logger.warning(f"Web search for '{query}' failed: {exc}")

        seen = {item.url for item in discovered}
        for candidate in site_search_urls(year, make, model):
            if len(discovered) >= max_urls:
                break
            if candidate.url not in seen:
                discovered.append(candidate)
                seen.add(candidate.url)

        logger.info(f"Discovered {len(discovered)} candidate URLs for {year} {make} {model}")
        return discovered[:max_urls]
