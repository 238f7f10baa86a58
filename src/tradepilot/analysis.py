"""Market analysis workflow.

Admits a request through the usage gate, scrapes candidate listings,
summarises them, adds AI market research and produces a valuation. Every
outcome, including failures, is returned as an :class:`AnalysisOutcome`.
"""

from __future__ import annotations

import math
from dataclasses import asdict, dataclass, field
from datetime import date, datetime, timezone
from typing import Any, Dict, List, Mapping, Optional, Sequence
from urllib.parse import urlparse

from .advisor import DealAdvisor
from .ai_client import AIClient
from .config import TradePilotConfig
from .database import TradePilotDatabase
from .discovery import UrlDiscoverer, should_discover_more_urls
from .errors import ValidationError
from .fetcher import BaseFetcher, DirectFetcher, HostedScrapeFetcher, ListingScraper
from .logging_config import get_logger
from .market_research import MarketResearcher
from .metrics import extract_listing_metrics
from .models import (
    FetchConfig,
    FetchStats,
    MarketData,
    MarketMetrics,
    MarketResearchResult,
    ScrapeBatchResult,
    UsageCheck,
    ValuationResult,
    VehicleSpec,
)
from .prompts import PromptRenderer
from .scrape_manager import ScrapeManager, partition_urls
from .usage import PLAN_CONFIG, UsageGate, upgrade_message, usage_message
from .valuation import ValuationEngine, ValuationRequest

logger = get_logger("analysis")

MAX_URLS_PER_REQUEST = 10
MIN_VEHICLE_YEAR = 1900
ANALYZE_CONCURRENCY = 2
SCRAPE_CONCURRENCY = 3

ERROR_VALIDATION = "validation_error"
ERROR_QUOTA = "quota_exceeded"
ERROR_INTERNAL = "internal_error"

LISTING_SCRAPED = "scraped"
LISTING_AI_RESEARCHED = "ai-researched"

SCRAPED_DATA_SOURCE = "Scraped listings (primary) + AI Market Research (supplementary)"
SCRAPED_FRESHNESS = "Real-time scraped data"
SCRAPED_DISCLAIMER = (
    "Primary analysis based on real scraped data from the provided URLs. "
    "AI research supplements where needed."
)
ALL_BLOCKED_NOTE = (
    "Web scraping was blocked by all sites. Analysis uses AI market research instead. "
    "This is common for Australian car sites which have strong anti-bot protections."
)
QUOTA_MESSAGE = "Daily analysis limit reached"


def _rounded_mean(values: Sequence[float]) -> Optional[int]:
    if not values:
        return None
    return int(math.floor(sum(values) / len(values) + 0.5))


def _host(url: str) -> str:
    try:
        return urlparse(url).hostname or url
    except ValueError:
        return url


@dataclass
class AnalysisRequest:
    """A validated market analysis request."""

    vehicle: VehicleSpec
    ask_price: Optional[float] = None
    urls: List[str] = field(default_factory=list)
    location: Optional[str] = None

    @classmethod
    def from_dict(
        cls,
        data: Mapping[str, Any],
        max_urls: int = MAX_URLS_PER_REQUEST,
        current_year: Optional[int] = None,
    ) -> "AnalysisRequest":
        """Build a request from a payload.

        Args:
            data: Request payload, camelCase or snake_case keys
            max_urls: Most listing URLs accepted
            current_year: Latest acceptable model year (default: this UTC year)

        Raises:
            ValidationError: Missing vehicle fields, bad numbers or too many URLs
        """
        if not data.get("year") or not data.get("make") or not data.get("model"):
            raise ValidationError("Year, make, and model are required")
        try:
            vehicle = VehicleSpec.from_dict(dict(data))
        except (TypeError, ValueError) as exc:
            raise ValidationError(f"Invalid vehicle attributes: {exc}") from exc

        current_year = current_year or datetime.now(timezone.utc).year
        if vehicle.year > current_year:
            raise ValidationError(f"Year cannot be in the future (latest is {current_year})")
        if vehicle.year < MIN_VEHICLE_YEAR:
            raise ValidationError(f"Year must be {MIN_VEHICLE_YEAR} or later")
        for reading in (vehicle.odometer, vehicle.odometer_min, vehicle.odometer_max):
            if reading is not None and reading < 0:
                raise ValidationError("Odometer must not be negative")
        if vehicle.has_odometer_range and vehicle.odometer_min > vehicle.odometer_max:
            raise ValidationError("Odometer minimum must not exceed the maximum")

        ask_price = data.get("ask_price", data.get("askPrice"))
        if ask_price in ("", None):
            ask_price = None
        else:
            try:
                ask_price = float(ask_price)
            except (TypeError, ValueError) as exc:
                raise ValidationError("Ask price must be a number") from exc
            if ask_price < 0 or not math.isfinite(ask_price):
                raise ValidationError("Ask price must be a positive number")

        raw_urls = data.get("urls") or []
        if isinstance(raw_urls, str):
            raw_urls = [raw_urls]
        urls = [str(url).strip() for url in raw_urls if url and str(url).strip()]
        if len(urls) > max_urls:
            raise ValidationError(f"Maximum {max_urls} URLs allowed per request")

        return cls(vehicle=vehicle, ask_price=ask_price, urls=urls, location=data.get("location"))


@dataclass
class ListingSummary:
    """A listing as shown to the trader, scraped or AI researched."""

    url: str
    source: str
    status: str
    title: str
    price: Optional[float] = None
    year: Optional[int] = None
    odometer: Optional[int] = None
    location: Optional[str] = None
    seller: Optional[str] = None
    seller_type: Optional[str] = None
    condition: Optional[str] = None
    transmission: Optional[str] = None
    fuel_type: Optional[str] = None
    description: Optional[str] = None
    features: List[str] = field(default_factory=list)
    scraped_at: Optional[str] = None
    notes: Optional[str] = None


@dataclass
class AnalysisResult:
    vehicle: VehicleSpec
    ask_price: Optional[float]
    valuation: ValuationResult
    metrics: Optional[MarketMetrics]
    listings: List[ListingSummary]
    scraping_stats: Dict[str, int]
    scraping_errors: List[str]
    data_source: str
    data_freshness: str
    disclaimer: str
    market_research: Dict[str, Any]
    usage: Dict[str, Any]
    scraping_note: Optional[str] = None
    listing_analysis: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class AnalysisOutcome:
    """Result-level success or failure of one analysis request."""

    success: bool
    result: Optional[AnalysisResult] = None
    error: Optional[str] = None
    message: Optional[str] = None
    usage: Optional[Dict[str, Any]] = None

    @classmethod
    def failure(cls, error: str, message: str, usage: Optional[Dict[str, Any]] = None) -> "AnalysisOutcome":
        return cls(success=False, error=error, message=message, usage=usage)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"success": self.success}
        if self.result is not None:
            data["result"] = self.result.to_dict()
        if self.error:
            data["error"] = self.error
            data["message"] = self.message
        if self.usage is not None:
            data["usage"] = self.usage
        return data


def usage_snapshot(check: UsageCheck) -> Dict[str, Any]:
    return {
        "used": check.current_usage,
        "limit": check.limit,
        "remaining": check.remaining,
        "is_unlimited": check.is_unlimited,
        "plan": check.plan,
        "plan_name": PLAN_CONFIG[check.plan].name,
        "message": usage_message(check),
    }


def quota_snapshot(check: UsageCheck) -> Dict[str, Any]:
    return {
        "current_usage": check.current_usage,
        "limit": check.limit,
        "remaining": check.remaining,
        "plan": check.plan,
        "plan_name": PLAN_CONFIG[check.plan].name,
        "upgrade_message": upgrade_message(check),
    }


def combine_market_data(scraped: ScrapeBatchResult, research: MarketResearchResult) -> MarketData:
    """Merge scraped and AI-researched prices into valuation context."""
    prices = [listing.price for listing in scraped.listings if listing.price]
    prices += [listing.price for listing in research.comparable_listings]
    odometers = [listing.mileage for listing in scraped.listings if listing.mileage]
    odometers += [listing.odometer for listing in research.comparable_listings if listing.odometer]

    average_price = _rounded_mean(prices)
    average_odometer = _rounded_mean(odometers)
    return MarketData(
        comparable_prices=prices,
        average_market_price=average_price if average_price is not None else research.market_summary.average_price,
        average_odometer=(
            average_odometer if average_odometer is not None else research.market_summary.average_odometer
        ),
        listings_found=scraped.total_scraped + len(research.comparable_listings),
    )


def summarize_listings(scraped: ScrapeBatchResult, research: MarketResearchResult) -> List[ListingSummary]:
    """Scraped listings first, then AI researched comparables."""
    summaries = [
        ListingSummary(
            url=listing.url,
            source=_host(listing.url),
            status=LISTING_SCRAPED,
            title=listing.title or "Unknown",
            price=listing.price,
            year=listing.year,
            odometer=listing.mileage,
            location=listing.location,
            seller=listing.seller,
            seller_type=listing.seller_type,
            condition=listing.condition,
            transmission=listing.transmission,
            fuel_type=listing.fuel_type,
            description=listing.description,
            features=list(listing.features),
            scraped_at=listing.scraped_at,
        )
        for listing in scraped.listings
    ]
    for comparable in research.comparable_listings:
        summaries.append(
            ListingSummary(
                url=f"https://{comparable.source.replace('www.', '')}",
                source=comparable.source,
                status=LISTING_AI_RESEARCHED,
                title=comparable.title,
                price=comparable.price,
                year=comparable.year,
                odometer=comparable.odometer,
                notes=comparable.notes or None,
            )
        )
    return summaries


class MarketAnalysisService:
    """Runs the analyse-market workflow for one organization at a time."""

    def __init__(
        self,
        usage_gate: UsageGate,
        valuation_engine: ValuationEngine,
        researcher: MarketResearcher,
        scrape_manager: Optional[ScrapeManager] = None,
        discoverer: Optional[UrlDiscoverer] = None,
        advisor: Optional[DealAdvisor] = None,
        *,
        max_urls: int = MAX_URLS_PER_REQUEST,
        concurrency: int = ANALYZE_CONCURRENCY,
        location: str = "Australia",
        strict_quota: bool = False,
    ) -> None:
        self.usage_gate = usage_gate
        self.valuation_engine = valuation_engine
        self.researcher = researcher
        self.scrape_manager = scrape_manager
        self.discoverer = discoverer
        self.advisor = advisor or DealAdvisor()
        self.max_urls = max_urls
        self.concurrency = concurrency
        self.location = location
        self.strict_quota = strict_quota

    async def analyze(self, organization_id: str, payload: Mapping[str, Any]) -> AnalysisOutcome:
        """Analyse one vehicle for an organization.

        Never raises: validation problems, quota rejections and unexpected
        errors all come back as failed outcomes.
        """
        try:
            request = self._parse_request(payload)
        except ValidationError as exc:
            return AnalysisOutcome.failure(ERROR_VALIDATION, str(exc))

        claimed_on: Optional[date] = None
        try:
            if self.strict_quota:
                claimed_on = self.usage_gate.today()
                check = self.usage_gate.try_consume(organization_id, usage_date=claimed_on)
                if not check.allowed:
                    claimed_on = None
            else:
                check = self.usage_gate.can_perform_analysis(organization_id)
            if not check.allowed:
                logger.info(f"Rejected analysis for {organization_id}: daily limit {check.limit} reached")
                return AnalysisOutcome.failure(ERROR_QUOTA, QUOTA_MESSAGE, usage=quota_snapshot(check))

            result = await self._run(request)

            if not self.strict_quota:
                self.usage_gate.increment_usage(organization_id)
            claimed_on = None
            result.usage = usage_snapshot(self.usage_gate.can_perform_analysis(organization_id))
            return AnalysisOutcome(success=True, result=result, usage=result.usage)
        except Exception as exc:
            logger.exception(f"Analysis failed for {organization_id}: {exc}")
            if claimed_on is not None:
                self.usage_gate.release(organization_id, claimed_on)
            return AnalysisOutcome.failure(ERROR_INTERNAL, "Failed to analyze vehicle")

    def _parse_request(self, payload: Mapping[str, Any]) -> AnalysisRequest:
        return AnalysisRequest.from_dict(
            payload,
            max_urls=self.max_urls,
            current_year=self.valuation_engine.today().year,
        )

    async def _scrape(self, request: AnalysisRequest) -> ScrapeBatchResult:
        if not request.urls or self.scrape_manager is None:
            return ScrapeBatchResult()

        stats = FetchStats()
        result = await self.scrape_manager.scrape_all(
            request.urls,
            concurrency=self.concurrency,
            on_progress=lambda done, total: logger.info(f"Scrape progress: {done}/{total}"),
            stats=stats,
        )

        if self.discoverer is not None and should_discover_more_urls(result):
            vehicle = request.vehicle
            attempted = set(request.urls)
            discovered = await self.discoverer.discover(vehicle.year, vehicle.make, vehicle.model, self.max_urls)
            extra = [item.url for item in discovered if item.url not in attempted]
            if extra:
                logger.info(f"Scraping {len(extra)} discovered URLs after a mostly failed scrape")
                more = await self.scrape_manager.scrape_all(extra, concurrency=self.concurrency, stats=stats)
                result.listings.extend(more.listings)
                result.failed_urls.extend(more.failed_urls)

        logger.info(
            f"Scrape for {request.vehicle.title}: {result.total_scraped} success, {result.total_failed} failed "
            f"({stats.http_requests} requests)"
        )
        return result

    async def _run(self, request: AnalysisRequest) -> AnalysisResult:
        vehicle = request.vehicle
        scraped = await self._scrape(request)
        metrics = extract_listing_metrics(scraped.listings)
        listing_analysis = await self.researcher.analyze_listings(vehicle, scraped.listings, metrics, request.ask_price)

        research = await self.researcher.research(vehicle, request.urls)
        market_data = combine_market_data(scraped, research)
        valuation = await self.valuation_engine.valuate(
            ValuationRequest(
                vehicle=vehicle,
                ask_price=request.ask_price,
                location=request.location or self.location,
                market_data=market_data,
            )
        )

        listings = summarize_listings(scraped, research)
        scraping_errors = [f"{_host(failure.url)}: {failure.error}" for failure in scraped.failed_urls]
        has_scraped = scraped.total_scraped > 0

        return AnalysisResult(
            vehicle=vehicle,
            ask_price=request.ask_price,
            valuation=valuation,
            metrics=metrics,
            listings=listings,
            scraping_stats={
                "total": len(listings),
                "success": len(listings),
                "failed": scraped.total_failed,
                "blocked": scraped.blocked_count,
                "scraped": scraped.total_scraped,
                "ai_researched": len(research.comparable_listings),
            },
            scraping_errors=scraping_errors,
            scraping_note=ALL_BLOCKED_NOTE if scraping_errors and not has_scraped else None,
            data_source=SCRAPED_DATA_SOURCE if has_scraped else research.data_source,
            data_freshness=SCRAPED_FRESHNESS if has_scraped else research.data_freshness,
            disclaimer=SCRAPED_DISCLAIMER if has_scraped else research.disclaimer,
            market_research={
                "summary": asdict(research.market_summary),
                "insights": list(research.insights),
            },
            listing_analysis=listing_analysis,
            usage={},
        )

    async def summarize_deal(self, payload: Mapping[str, Any]) -> Dict[str, Any]:
        """Value a vehicle without market data and write a short deal verdict.

        Raises:
            ValidationError: Missing vehicle fields or a bad ask price
        """
        request = self._parse_request(payload)
        valuation = await self.valuation_engine.valuate(
            ValuationRequest(
                vehicle=request.vehicle,
                ask_price=request.ask_price,
                location=request.location or self.location,
            )
        )
        summary = await self.advisor.summarize_deal(request.vehicle, request.ask_price, valuation)
        return {"vehicle": request.vehicle.to_dict(), "valuation": valuation.to_dict(), "summary": summary}

    async def draft_message(
        self,
        payload: Mapping[str, Any],
        *,
        message_type: str = "inquiry",
        tone: str = "polite",
        recommended_offer: Optional[float] = None,
        seller_name: Optional[str] = None,
    ) -> str:
        """Draft a message to the seller of a vehicle.

        Raises:
            ValidationError: Missing vehicle fields, unknown type or tone
        """
        request = self._parse_request(payload)
        return await self.advisor.draft_message(
            request.vehicle,
            message_type=message_type,
            tone=tone,
            ask_price=request.ask_price,
            recommended_offer=recommended_offer,
            seller_name=seller_name,
        )

    async def scrape_listings(self, urls: Sequence[str]) -> Dict[str, Any]:
        """Scrape URLs and summarise them without touching the usage counter.

        Raises:
            ValidationError: No usable URL given or too many URLs
        """
        cleaned = [str(url).strip() for url in urls if url and str(url).strip()]
        if not cleaned:
            raise ValidationError("Please provide at least one URL to scrape")
        if len(cleaned) > self.max_urls:
            raise ValidationError(f"Maximum {self.max_urls} URLs allowed per request")
        if self.scrape_manager is None:
            raise ValidationError("Scraping is not configured")

        valid, _ = partition_urls(cleaned)
        result = await self.scrape_manager.scrape_all(
            cleaned,
            concurrency=SCRAPE_CONCURRENCY,
            on_progress=lambda done, total: logger.info(f"Scrape progress: {done}/{total}"),
        )
        metrics = extract_listing_metrics(result.listings)
        logger.info(f"Scraped {len(valid)} valid URLs: {result.total_scraped} success, {result.total_failed} failed")
        return {
            "scraping": result.to_dict(),
            "metrics": metrics.to_dict() if metrics else None,
        }


def build_fetcher(config: TradePilotConfig) -> BaseFetcher:
    """Hosted scraping when an API key is configured, direct fetches otherwise."""
    if config.hosted_scraper_configured:
        return HostedScrapeFetcher(config.firecrawl_api_key, api_url=config.firecrawl_api_url)
    return DirectFetcher(config=FetchConfig(name="direct", timeout_seconds=config.scrape_timeout_seconds))


def build_service(
    config: TradePilotConfig,
    *,
    database: Optional[TradePilotDatabase] = None,
    ai_client: Optional[AIClient] = None,
    fetcher: Optional[BaseFetcher] = None,
    strict_quota: bool = False,
) -> MarketAnalysisService:
    """Wire up a service from configuration; every client is built once here."""
    database = database or TradePilotDatabase(config.db_path)
    if ai_client is None:
        ai_client = AIClient.from_api_key(
            config.openai_api_key,
            model=config.openai_model,
            timeout=config.openai_timeout_seconds,
        )
    renderer = PromptRenderer()
    scrape_manager = ScrapeManager(
        ListingScraper(fetcher or build_fetcher(config)),
        concurrency=config.scrape_concurrency,
        batch_delay=config.scrape_batch_delay_seconds,
    )

    return MarketAnalysisService(
        usage_gate=UsageGate(database),
        valuation_engine=ValuationEngine(ai_client, renderer, market=config.market, currency=config.currency),
        researcher=MarketResearcher(ai_client, renderer, market=config.market, currency=config.currency),
        scrape_manager=scrape_manager,
        discoverer=UrlDiscoverer() if config.discovery_enabled else None,
        advisor=DealAdvisor(ai_client, renderer),
        max_urls=config.max_urls,
        concurrency=config.scrape_concurrency,
        location=config.location,
        strict_quota=strict_quota,
    )
