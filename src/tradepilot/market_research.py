"""AI market research that supplements scraped listing data."""

from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Sequence

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .ai_client import AIClient
from .errors import AIClientError, AIResponseError
from .logging_config import get_logger
from .metrics import format_listings_for_ai
from .models import (
    ComparableListing,
    ListingRecord,
    MarketMetrics,
    MarketResearchResult,
    MarketSummary,
    VehicleSpec,
)
from .prompts import (
    LISTING_ANALYSIS_SYSTEM_PROMPT,
    LISTING_ANALYSIS_TEMPLATE,
    MARKET_RESEARCH_SYSTEM_PROMPT,
    MARKET_RESEARCH_TEMPLATE,
    PromptRenderer,
)

logger = get_logger("market_research")

DATA_SOURCE_AI_ESTIMATED = "ai-estimated"

AI_FRESHNESS = "AI estimate based on training data (not real-time market data)"
AI_DISCLAIMER = (
    "These prices are AI-generated estimates based on historical market patterns. "
    "For accurate valuations, verify with live listings on carsales.com.au, Redbook, or Glass's Guide."
)
FALLBACK_FRESHNESS = "Fallback estimate (AI unavailable)"
FALLBACK_DISCLAIMER = (
    "AI service unavailable. These are rough estimates only. Please verify with live market data."
)
FALLBACK_INSIGHTS = (
    "AI market research unavailable - using rough estimates",
    "Verify prices on carsales.com.au, gumtree.com.au, or autotrader.com.au",
    "Consider using Redbook or Glass's Guide for accurate valuations",
)


class _ReplyModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore", allow_inf_nan=False)


class ComparableReply(_ReplyModel):
    source: str
    title: str
    price: float = Field(gt=0)
    year: int
    odometer: Optional[int] = Field(default=None, ge=0)
    notes: str = ""


class PriceBand(_ReplyModel):
    low: float
    high: float


class MarketSummaryReply(_ReplyModel):
    average_price: float = Field(alias="averagePrice")
    price_range: PriceBand = Field(alias="priceRange")
    average_odometer: Optional[float] = Field(default=None, alias="averageOdometer")
    demand_level: str = Field(default="MEDIUM", alias="demandLevel")
    supply_level: str = Field(default="MEDIUM", alias="supplyLevel")
    market_trend: str = Field(default="STABLE", alias="marketTrend")
    best_time_to_sell: str = Field(default="", alias="bestTimeToSell")
    popular_variants: List[str] = Field(default_factory=list, alias="popularVariants")


class MarketResearchReply(_ReplyModel):
    comparable_listings: List[ComparableReply] = Field(alias="comparableListings")
    market_summary: MarketSummaryReply = Field(alias="marketSummary")
    insights: List[str] = Field(default_factory=list)


class ListingAnalysisReply(_ReplyModel):
    market_position: str = Field(default="", alias="marketPosition")
    price_analysis: str = Field(default="", alias="priceAnalysis")
    best_deals: List[str] = Field(default_factory=list, alias="bestDeals")
    overpriced: List[str] = Field(default_factory=list)
    recommendations: List[str] = Field(default_factory=list)
    negotiation_leverage: str = Field(default="", alias="negotiationLeverage")


def _utc_today() -> date:
    return datetime.now(timezone.utc).date()


def fallback_market_research(vehicle: VehicleSpec, current_year: int) -> MarketResearchResult:
    """Rough age-based estimate used when the model cannot be reached."""
    age = current_year - vehicle.year
    base_price = 30000 - age * 2500
    average_price = max(base_price, 10000)
    average_odometer = 50000 + age * 12000

    comparable = ComparableListing(
        source="Fallback Estimate",
        title=f"{vehicle.year} {vehicle.make} {vehicle.model}",
        price=average_price,
        year=vehicle.year,
        odometer=average_odometer,
        notes="Rough estimate - verify with live listings",
    )
    summary = MarketSummary(
        average_price=average_price,
        price_low=max(base_price * 0.85, 8000),
        price_high=max(base_price * 1.15, 15000),
        average_odometer=average_odometer,
        demand_level="MEDIUM",
        supply_level="MEDIUM",
        market_trend="STABLE",
        best_time_to_sell="Anytime - market is stable",
        popular_variants=["Standard"],
    )
    return MarketResearchResult(
        data_source=DATA_SOURCE_AI_ESTIMATED,
        data_freshness=FALLBACK_FRESHNESS,
        disclaimer=FALLBACK_DISCLAIMER,
        comparable_listings=[comparable],
        market_summary=summary,
        insights=list(FALLBACK_INSIGHTS),
    )


def parse_market_research(payload: Dict[str, Any]) -> MarketResearchResult:
    """Validate a research reply and flag every comparable as estimated."""
    try:
        reply = MarketResearchReply.model_validate(payload)
    except ValidationError as exc:
        raise AIResponseError(f"AI market research has an invalid shape: {exc.error_count()} error(s)") from exc

    summary = reply.market_summary
    return MarketResearchResult(
        data_source=DATA_SOURCE_AI_ESTIMATED,
        data_freshness=AI_FRESHNESS,
        disclaimer=AI_DISCLAIMER,
        comparable_listings=[
            ComparableListing(
                source=item.source,
                title=item.title,
                price=item.price,
                year=item.year,
                odometer=item.odometer,
                notes=item.notes,
                is_estimated=True,
            )
            for item in reply.comparable_listings
        ],
        market_summary=MarketSummary(
            average_price=summary.average_price,
            price_low=summary.price_range.low,
            price_high=summary.price_range.high,
            average_odometer=summary.average_odometer,
            demand_level=summary.demand_level,
            supply_level=summary.supply_level,
            market_trend=summary.market_trend,
            best_time_to_sell=summary.best_time_to_sell,
            popular_variants=list(summary.popular_variants),
        ),
        insights=list(reply.insights),
    )


class MarketResearcher:
    """Asks the model for comparable listings and market conditions.

    Research never fails: any model error yields the age-based fallback.
    The scraped-listing analysis is optional and returns None on failure.
    """

    def __init__(
        self,
        ai_client: Optional[AIClient] = None,
        renderer: Optional[PromptRenderer] = None,
        *,
        market: str = "Australian",
        currency: str = "AUD",
        today: Callable[[], date] = _utc_today,
    ) -> None:
        self.ai_client = ai_client
        self.renderer = renderer or PromptRenderer()
        self.market = market
        self.currency = currency
        self.today = today

    @property
    def available(self) -> bool:
        return self.ai_client is not None and self.ai_client.configured

    async def research(
        self,
        vehicle: VehicleSpec,
        reference_urls: Optional[Sequence[str]] = None,
    ) -> MarketResearchResult:
        if not self.available:
            return fallback_market_research(vehicle, self.today().year)

        prompt = self.renderer.render(
            MARKET_RESEARCH_TEMPLATE,
            vehicle=vehicle,
            reference_urls=list(reference_urls or []),
            market=self.market,
            currency=self.currency,
        )
        try:
            payload = await self.ai_client.complete_json(
                system=MARKET_RESEARCH_SYSTEM_PROMPT,
                prompt=prompt,
                temperature=0.4,
                max_tokens=2000,
                step="market_research",
            )
            result = parse_market_research(payload)
        except AIClientError as exc:
            logger.warning(f"AI market research failed for {vehicle.title}, using fallback: {exc}")
            return fallback_market_research(vehicle, self.today().year)

        logger.info(f"AI market research for {vehicle.title}: {len(result.comparable_listings)} comparables")
        return result

    async def analyze_listings(
        self,
        vehicle: VehicleSpec,
        listings: Sequence[ListingRecord],
        metrics: Optional[MarketMetrics],
        ask_price: Optional[float] = None,
    ) -> Optional[Dict[str, Any]]:
        """Ask the model to interpret real scraped listings."""
        if not listings or not self.available:
            return None

        prompt = self.renderer.render(
            LISTING_ANALYSIS_TEMPLATE,
            vehicle=vehicle,
            formatted_listings=format_listings_for_ai(listings),
            metrics=metrics,
            ask_price=ask_price,
        )
        try:
            payload = await self.ai_client.complete_json(
                system=LISTING_ANALYSIS_SYSTEM_PROMPT,
                prompt=prompt,
                temperature=0.3,
                max_tokens=1500,
                step="listing_analysis",
            )
            reply = ListingAnalysisReply.model_validate(payload)
        except AIClientError as exc:
            logger.warning(f"Scraped listing analysis failed for {vehicle.title}: {exc}")
            return None
        except ValidationError as exc:
            logger.warning(f"Scraped listing analysis has an invalid shape: {exc.error_count()} error(s)")
            return None

        return reply.model_dump(by_alias=True)
