"""Market metrics over scraped listings."""

from __future__ import annotations

import math
from typing import Dict, Iterable, List, Optional, Sequence

from .models import (
    SELLER_TYPES,
    ListingRecord,
    MarketMetrics,
    MileageRange,
    PriceRange,
    YearRange,
)
from .parser_utils import truncate

DESCRIPTION_PREVIEW_LENGTH = 500


def _rounded_mean(values: Sequence[float]) -> int:
    """Arithmetic mean rounded half up to an integer, kept within the value range."""
    mean = math.floor(sum(values) / len(values) + 0.5)
    return int(min(max(mean, min(values)), max(values)))


def _unique_preserve_order(values: Iterable[Optional[str]]) -> List[str]:
    seen = set()
    result: List[str] = []
    for value in values:
        if not value or value in seen:
            continue
        seen.add(value)
        result.append(value)
    return result


def extract_listing_metrics(listings: Sequence[ListingRecord]) -> Optional[MarketMetrics]:
    """Summarise priced listings.

    Returns None when no successful listing carries a price. The median is
    the element at the array midpoint (the upper-middle element for an even
    count), without interpolation.
    """
    priced = [listing for listing in listings if listing.is_success and listing.price is not None]
    if not priced:
        return None

    prices = sorted(listing.price for listing in priced)
    price_range = PriceRange(
        min=prices[0],
        max=prices[-1],
        median=prices[len(prices) // 2],
        mean=_rounded_mean(prices),
    )

    mileages = [listing.mileage for listing in priced if listing.mileage is not None]
    mileage_range = None
    if mileages:
        mileage_range = MileageRange(min=min(mileages), max=max(mileages), mean=_rounded_mean(mileages))

    years = [listing.year for listing in priced if listing.year is not None]
    year_range = YearRange(min=min(years), max=max(years)) if years else None

    seller_types: Dict[str, int] = {seller_type: 0 for seller_type in SELLER_TYPES}
    for listing in priced:
        seller_types[listing.seller_type] += 1

    return MarketMetrics(
        count=len(priced),
        price_range=price_range,
        mileage_range=mileage_range,
        year_range=year_range,
        seller_types=seller_types,
        locations=_unique_preserve_order(listing.location for listing in priced),
    )


def format_listings_for_ai(listings: Sequence[ListingRecord]) -> str:
    """Render scraped listings as markdown for a language model prompt."""
    if not listings:
        return "No listings were successfully scraped."

    lines: List[str] = [f"# Scraped Car Listings ({len(listings)} total)", ""]
    for index, listing in enumerate(listings, start=1):
        lines.append(f"## Listing {index}: {listing.title or 'Unknown'}")
        lines.append("")
        lines.append(f"**URL:** {listing.url}")
        if listing.price is not None:
            lines.append(f"**Price:** {listing.currency or '$'}{listing.price:,.0f}")
        vehicle = " ".join(str(part) for part in (listing.year, listing.make, listing.model) if part)
        if vehicle:
            lines.append(f"**Vehicle:** {vehicle}")
        if listing.mileage is not None:
            lines.append(f"**Mileage:** {listing.mileage:,} {listing.mileage_unit or 'km'}")

        labelled = (
            ("Condition", listing.condition),
            ("Transmission", listing.transmission),
            ("Fuel Type", listing.fuel_type),
            ("Body Type", listing.body_type),
            ("Color", listing.color),
            ("Location", listing.location),
        )
        for label, value in labelled:
            if value:
                lines.append(f"**{label}:** {value}")
        if listing.seller:
            lines.append(f"**Seller:** {listing.seller} ({listing.seller_type})")
        if listing.features:
            lines.append(f"**Features:** {', '.join(listing.features)}")
        if listing.description:
            lines.append("")
            lines.append("**Description:**")
            lines.append(truncate(listing.description, DESCRIPTION_PREVIEW_LENGTH, "..."))

        lines.extend(["", "---", ""])

    return "\n".join(lines)
