"""Tests for market metrics."""

import pytest

from tradepilot.metrics import extract_listing_metrics, format_listings_for_ai
from tradepilot.models import STATUS_BLOCKED, STATUS_SUCCESS, ListingRecord


def make_listing(index, price=None, **fields):
    fields.setdefault("title", f"Listing {index}")
    return ListingRecord(
        url=f"https://example.com/{index}",
        source="example.com",
        status=STATUS_SUCCESS,
        scraped_at="2026-03-15T00:00:00Z",
        price=price,
        **fields,
    )


def test_no_priced_listings_yields_none():
    listings = [make_listing(1), ListingRecord.failure("https://example.com/2", "example.com", STATUS_BLOCKED, "blocked")]
    assert extract_listing_metrics(listings) is None
    assert extract_listing_metrics([]) is None


def test_price_range_uses_midpoint_median():
    listings = [make_listing(index, price) for index, price in enumerate([30000, 10000, 40000, 20000])]

    metrics = extract_listing_metrics(listings)

    assert metrics.count == 4
    assert metrics.price_range.min == 10000
    assert metrics.price_range.max == 40000
    assert metrics.price_range.median == 30000
    assert metrics.price_range.mean == 25000


def test_odd_count_median_is_middle_value():
    listings = [make_listing(index, price) for index, price in enumerate([22000, 18000, 35000])]
    assert extract_listing_metrics(listings).price_range.median == 22000


def test_mean_rounds_half_up_and_stays_in_range():
    listings = [make_listing(1, 10000.5), make_listing(2, 10001.0)]
    price_range = extract_listing_metrics(listings).price_range

    assert price_range.mean == 10001
    assert price_range.min <= price_range.mean <= price_range.max


def test_equal_prices_give_degenerate_range():
    listings = [make_listing(index, 15000) for index in range(3)]
    price_range = extract_listing_metrics(listings).price_range

    assert price_range.min == price_range.median == price_range.max == price_range.mean == 15000


@pytest.mark.parametrize(
    "prices",
    [[1], [5, 5, 6], [19990, 21500, 23000, 17999.99], [100, 250000], [3, 1, 2, 2, 7, 9]],
)
def test_summary_statistics_are_ordered(prices):
    listings = [make_listing(index, price) for index, price in enumerate(prices)]
    price_range = extract_listing_metrics(listings).price_range

    assert price_range.min <= price_range.median <= price_range.max
    assert price_range.min <= price_range.mean <= price_range.max


def test_mileage_year_sellers_and_locations():
    listings = [
        make_listing(1, 20000, mileage=40000, year=2019, seller_type="dealer", location="Sydney"),
        make_listing(2, 22000, mileage=61000, year=2021, seller_type="private", location="Perth"),
        make_listing(3, 21000, seller_type="dealer", location="Sydney"),
        make_listing(4, None, mileage=999999, year=1990, location="Hobart"),
    ]

    metrics = extract_listing_metrics(listings)

    assert metrics.count == 3
    assert metrics.mileage_range.min == 40000
    assert metrics.mileage_range.max == 61000
    assert metrics.mileage_range.mean == 50500
    assert metrics.year_range.min == 2019
    assert metrics.year_range.max == 2021
    assert metrics.seller_types == {"dealer": 2, "private": 1, "unknown": 0}
    assert metrics.locations == ["Sydney", "Perth"]


def test_missing_mileage_and_year_ranges_are_none():
    metrics = extract_listing_metrics([make_listing(1, 18000)])

    assert metrics.mileage_range is None
    assert metrics.year_range is None
    assert metrics.to_dict()["price_range"]["median"] == 18000


def test_format_listings_for_ai():
    listings = [
        make_listing(
            1,
            24990,
            currency="AUD",
            year=2019,
            make="Toyota",
            model="Corolla",
            mileage=45000,
            mileage_unit="km",
            transmission="Automatic",
            seller="Sydney City Toyota",
            seller_type="dealer",
            features=["Reversing camera"],
            description="x" * 600,
        )
    ]

    text = format_listings_for_ai(listings)

    assert text.startswith("# Scraped Car Listings (1 total)")
    assert "## Listing 1: Listing 1" in text
    assert "**Price:** AUD24,990" in text
    assert "**Vehicle:** 2019 Toyota Corolla" in text
    assert "**Mileage:** 45,000 km" in text
    assert "**Transmission:** Automatic" in text
    assert "**Seller:** Sydney City Toyota (dealer)" in text
    assert "**Features:** Reversing camera" in text
    assert "x" * 500 + "..." in text
    assert "x" * 501 not in text


def test_format_listings_for_ai_empty():
    assert format_listings_for_ai([]) == "No listings were successfully scraped."
