"""Data models for the TradePilot market analysis core."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

STATUS_SUCCESS = "success"
STATUS_BLOCKED = "blocked"
STATUS_ERROR = "error"
STATUS_INVALID = "invalid"
LISTING_STATUSES = (STATUS_SUCCESS, STATUS_BLOCKED, STATUS_ERROR)

SELLER_DEALER = "dealer"
SELLER_PRIVATE = "private"
SELLER_UNKNOWN = "unknown"
SELLER_TYPES = (SELLER_DEALER, SELLER_PRIVATE, SELLER_UNKNOWN)

RECOMMENDATION_STRONG_BUY = "STRONG_BUY"
RECOMMENDATION_MAYBE = "MAYBE"
RECOMMENDATION_SKIP = "SKIP"
RECOMMENDATIONS = (RECOMMENDATION_STRONG_BUY, RECOMMENDATION_MAYBE, RECOMMENDATION_SKIP)

VALUATION_SOURCE_AI = "ai"
VALUATION_SOURCE_HEURISTIC = "heuristic"

RAW_CONTENT_LIMIT = 5000


def utc_timestamp(moment: Optional[datetime] = None) -> str:
    """Return an ISO8601 UTC timestamp with second precision and a Z suffix."""
    moment = moment or datetime.now(timezone.utc)
    if moment.tzinfo is not None:
        moment = moment.astimezone(timezone.utc)
    return moment.replace(microsecond=0, tzinfo=None).isoformat() + "Z"


@dataclass
class VehicleSpec:
    """Attributes of the vehicle being evaluated."""

    year: int
    make: str
    model: str
    variant: Optional[str] = None
    odometer: Optional[int] = None
    odometer_min: Optional[int] = None
    odometer_max: Optional[int] = None
    transmission: Optional[str] = None
    fuel_type: Optional[str] = None
    body_type: Optional[str] = None
    colour: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "VehicleSpec":
        """Build vehicle attributes from a request payload (camelCase or snake_case keys)."""

        def pick(*keys: str) -> Any:
            for key in keys:
                value = data.get(key)
                if value not in (None, ""):
                    return value
            return None

        def as_int(value: Any) -> Optional[int]:
            return int(value) if value is not None else None

        return cls(
            year=as_int(pick("year")),
            make=pick("make"),
            model=pick("model"),
            variant=pick("variant"),
            odometer=as_int(pick("odometer")),
            odometer_min=as_int(pick("odometer_min", "odometerMin")),
            odometer_max=as_int(pick("odometer_max", "odometerMax")),
            transmission=pick("transmission"),
            fuel_type=pick("fuel_type", "fuelType"),
            body_type=pick("body_type", "bodyType"),
            colour=pick("colour", "color"),
        )

    @property
    def title(self) -> str:
        parts = [str(self.year), self.make, self.model]
        if self.variant:
            parts.append(self.variant)
        return " ".join(parts)

    @property
    def has_odometer_range(self) -> bool:
        return bool(self.odometer_min and self.odometer_max)

    def odometer_description(self, default: str = "Unknown") -> str:
        """Describe the odometer reading or target range in kilometres."""
        if self.has_odometer_range:
            return f"{self.odometer_min:,} - {self.odometer_max:,} km range"
        if self.odometer:
            return f"{self.odometer:,} km"
        if self.odometer_min:
            return f"Minimum {self.odometer_min:,} km"
        if self.odometer_max:
            return f"Maximum {self.odometer_max:,} km"
        return default

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class ListingRecord:
    """One scraped comparable listing.

    Records are created once per scrape attempt and never mutated. A
    successful record carries at least a title or a price; a failed record
    carries neither and always explains itself through ``error``.
    """

    url: str
    source: str
    status: str
    scraped_at: str
    title: Optional[str] = None
    price: Optional[float] = None
    currency: Optional[str] = None
    make: Optional[str] = None
    model: Optional[str] = None
    year: Optional[int] = None
    mileage: Optional[int] = None
    mileage_unit: Optional[str] = None
    location: Optional[str] = None
    seller: Optional[str] = None
    seller_type: str = SELLER_UNKNOWN
    condition: Optional[str] = None
    transmission: Optional[str] = None
    fuel_type: Optional[str] = None
    body_type: Optional[str] = None
    color: Optional[str] = None
    description: Optional[str] = None
    features: List[str] = field(default_factory=list)
    raw_content: Optional[str] = None
    error: Optional[str] = None

    def __post_init__(self) -> None:
        if self.status not in LISTING_STATUSES:
            raise ValueError(f"Unknown listing status: {self.status!r}")
        if self.seller_type not in SELLER_TYPES:
            raise ValueError(f"Unknown seller type: {self.seller_type!r}")
        if self.status == STATUS_SUCCESS:
            if self.price is None and not self.title:
                raise ValueError("A successful listing needs a title or a price")
        else:
            if self.price is not None or self.title:
                raise ValueError("A failed listing cannot carry a title or a price")
            if not self.error:
                raise ValueError("A failed listing needs an error message")

    @property
    def is_success(self) -> bool:
        return self.status == STATUS_SUCCESS

    @classmethod
    def failure(cls, url: str, source: str, status: str, error: str) -> "ListingRecord":
        return cls(url=url, source=source, status=status, scraped_at=utc_timestamp(), error=error)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class FailedUrl:
    """A URL that could not be scraped, with the reason."""

    url: str
    error: str
    status: str = STATUS_ERROR

    @property
    def is_blocked(self) -> bool:
        return self.status == STATUS_BLOCKED


@dataclass
class ScrapeBatchResult:
    """Aggregate outcome of scraping a list of URLs."""

    listings: List[ListingRecord] = field(default_factory=list)
    failed_urls: List[FailedUrl] = field(default_factory=list)

    @property
    def total_scraped(self) -> int:
        return len(self.listings)

    @property
    def total_failed(self) -> int:
        return len(self.failed_urls)

    @property
    def blocked_count(self) -> int:
        return sum(1 for failure in self.failed_urls if failure.is_blocked)

    @property
    def success(self) -> bool:
        return bool(self.listings)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "listings": [listing.to_dict() for listing in self.listings],
            "failed_urls": [asdict(failure) for failure in self.failed_urls],
            "total_scraped": self.total_scraped,
            "total_failed": self.total_failed,
        }


@dataclass(frozen=True)
class PriceRange:
    min: float
    max: float
    median: float
    mean: int


@dataclass(frozen=True)
class MileageRange:
    min: int
    max: int
    mean: int


@dataclass(frozen=True)
class YearRange:
    min: int
    max: int


@dataclass(frozen=True)
class MarketMetrics:
    """Summary statistics over priced comparable listings."""

    count: int
    price_range: PriceRange
    mileage_range: Optional[MileageRange]
    year_range: Optional[YearRange]
    seller_types: Dict[str, int]
    locations: List[str]

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class MarketData:
    """Market context handed to the valuation prompt."""

    comparable_prices: List[float] = field(default_factory=list)
    average_market_price: Optional[float] = None
    average_odometer: Optional[float] = None
    listings_found: int = 0


@dataclass(frozen=True)
class ValuationResult:
    """Pricing verdict for a single vehicle."""

    fair_value_low: float
    fair_value_high: float
    recommended_buy_price: float
    target_sell_price: float
    estimated_margin: float
    estimated_days_to_sell: int
    risk_score: int
    recommendation: str
    confidence: int
    reasoning: str
    source: str = VALUATION_SOURCE_AI

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class ComparableListing:
    """An AI-estimated comparable listing."""

    source: str
    title: str
    price: float
    year: int
    odometer: Optional[int] = None
    notes: str = ""
    is_estimated: bool = True


@dataclass
class MarketSummary:
    average_price: float
    price_low: float
    price_high: float
    average_odometer: Optional[float] = None
    demand_level: str = "MEDIUM"
    supply_level: str = "MEDIUM"
    market_trend: str = "STABLE"
    best_time_to_sell: str = ""
    popular_variants: List[str] = field(default_factory=list)


@dataclass
class MarketResearchResult:
    """AI market research, always flagged as estimated data."""

    data_source: str
    data_freshness: str
    disclaimer: str
    comparable_listings: List[ComparableListing]
    market_summary: MarketSummary
    insights: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class UsageCheck:
    """Result of a usage gate check for one organization."""

    allowed: bool
    current_usage: int
    limit: int
    plan: str
    remaining: int

    @property
    def is_unlimited(self) -> bool:
        return self.limit == -1

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["is_unlimited"] = self.is_unlimited
        return data


@dataclass
class UsageStats:
    """Usage totals for an organization over recent periods."""

    today: int
    this_week: int
    this_month: int
    plan: str
    daily_limit: int
    remaining: int

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class FetchConfig:
    """Timeout, retry and header settings for outbound HTTP requests."""

    name: str = "default"
    timeout_seconds: float = 15.0
    connect_timeout_seconds: float = 10.0
    max_retries: int = 0
    retry_base_delay: float = 1.0
    retry_exponential_base: float = 2.0
    retry_max_delay: float = 10.0
    headers: Dict[str, str] = field(default_factory=dict)


@dataclass
class FetchStats:
    """Counters updated while fetching listing pages."""

    http_requests: int = 0
    retry_attempts: int = 0
    blocked: int = 0
    errors: int = 0
