"""Vehicle valuation.

The engine makes exactly one language model call per valuation. The reply is
validated against a strict schema; any failure (API error, timeout,
unparseable or out-of-shape reply) switches to a deterministic heuristic
estimate, so callers always receive a result.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Any, Callable, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from .ai_client import AIClient
from .errors import AIClientError, AIResponseError
from .logging_config import get_logger
from .models import (
    RECOMMENDATION_MAYBE,
    RECOMMENDATION_SKIP,
    RECOMMENDATION_STRONG_BUY,
    VALUATION_SOURCE_AI,
    VALUATION_SOURCE_HEURISTIC,
    MarketData,
    ValuationResult,
    VehicleSpec,
)
from .prompts import VALUATION_SYSTEM_PROMPT, VALUATION_TEMPLATE, PromptRenderer

logger = get_logger("valuation")

DEFAULT_BASE_VALUE = 20000
DEFAULT_MARGIN_PERCENT = 15.0
HEURISTIC_CONFIDENCE = 50
HEURISTIC_REASONING = (
    "This is a heuristic estimate. AI valuation unavailable. "
    "Based on age, mileage, and asking price."
)


def round_half_up(value: float, digits: int = 0) -> float:
    """Round with ties going up, matching how prices are usually rounded."""
    factor = 10 ** digits
    return math.floor(value * factor + 0.5) / factor


def _utc_today() -> date:
    return datetime.now(timezone.utc).date()


@dataclass
class ValuationRequest:
    """Inputs for a single valuation."""

    vehicle: VehicleSpec
    ask_price: Optional[float] = None
    location: str = "Australia"
    market_data: Optional[MarketData] = None


class ValuationReply(BaseModel):
    """Schema of the JSON object the model must return."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore", allow_inf_nan=False)

    fair_value_low: float = Field(alias="fairValueLow", ge=0)
    fair_value_high: float = Field(alias="fairValueHigh", ge=0)
    recommended_buy_price: float = Field(alias="recommendedBuyPrice", ge=0)
    target_sell_price: float = Field(alias="targetSellPrice", ge=0)
    estimated_margin: float = Field(alias="estimatedMargin")
    estimated_days_to_sell: float = Field(alias="estimatedDaysToSell", ge=0)
    risk_score: float = Field(alias="riskScore")
    recommendation: str
    confidence: float
    reasoning: str = Field(min_length=1)

    @field_validator("recommendation", mode="before")
    @classmethod
    def _normalise_recommendation(cls, value: Any) -> Any:
        if isinstance(value, str):
            value = value.strip().upper().replace(" ", "_").replace("-", "_")
        if value not in (RECOMMENDATION_STRONG_BUY, RECOMMENDATION_MAYBE, RECOMMENDATION_SKIP):
            raise ValueError(f"unknown recommendation {value!r}")
        return value

    @field_validator("risk_score", "confidence")
    @classmethod
    def _clamp_score(cls, value: float) -> float:
        return min(100.0, max(0.0, value))

    @model_validator(mode="after")
    def _check_bands(self) -> "ValuationReply":
        if self.fair_value_low > self.fair_value_high:
            raise ValueError("fairValueLow exceeds fairValueHigh")
        if self.recommended_buy_price > self.target_sell_price:
            raise ValueError("recommendedBuyPrice exceeds targetSellPrice")
        return self

    def to_result(self) -> ValuationResult:
        return ValuationResult(
            fair_value_low=self.fair_value_low,
            fair_value_high=self.fair_value_high,
            recommended_buy_price=self.recommended_buy_price,
            target_sell_price=self.target_sell_price,
            estimated_margin=self.estimated_margin,
            estimated_days_to_sell=int(round_half_up(self.estimated_days_to_sell)),
            risk_score=int(round_half_up(self.risk_score)),
            recommendation=self.recommendation,
            confidence=int(round_half_up(self.confidence)),
            reasoning=self.reasoning.strip(),
            source=VALUATION_SOURCE_AI,
        )


def parse_valuation_reply(payload: Dict[str, Any]) -> ValuationResult:
    """Validate a parsed model reply and convert it to a result."""
    try:
        return ValuationReply.model_validate(payload).to_result()
    except ValidationError as exc:
        raise AIResponseError(f"AI valuation has an invalid shape: {exc.error_count()} error(s)") from exc


def depreciation_factor(age: int) -> float:
    """Value retained after ``age`` years: 8% per year, never below 50%."""
    return max(0.5, 1 - age * 0.08)


def mileage_penalty(odometer: Optional[int]) -> float:
    """Value retained for the odometer reading; a flat 0.9 when unknown."""
    if not odometer:
        return 0.9
    return max(0.7, 1 - (odometer / 200000) * 0.3)


def heuristic_valuation(
    vehicle: VehicleSpec,
    ask_price: Optional[float],
    current_year: int,
) -> ValuationResult:
    """Deterministic valuation from age, odometer and asking price."""
    age = max(0, current_year - vehicle.year)
    base_value = ask_price or DEFAULT_BASE_VALUE
    estimated_value = base_value * depreciation_factor(age) * mileage_penalty(vehicle.odometer)

    fair_value_low = round_half_up(estimated_value * 0.9)
    fair_value_high = round_half_up(estimated_value * 1.1)
    recommended_buy_price = round_half_up(estimated_value * 0.85)
    target_sell_price = round_half_up(estimated_value * 1.05)

    if ask_price:
        margin = round_half_up((target_sell_price - ask_price) / ask_price * 100, 1)
    else:
        margin = DEFAULT_MARGIN_PERCENT

    if age <= 3:
        days_to_sell, risk_score = 21, 25
    elif age <= 7:
        days_to_sell, risk_score = 35, 45
    else:
        days_to_sell, risk_score = 50, 65

    recommendation = RECOMMENDATION_MAYBE
    if ask_price and ask_price < recommended_buy_price:
        recommendation = RECOMMENDATION_STRONG_BUY
    if ask_price and ask_price > fair_value_high:
        recommendation = RECOMMENDATION_SKIP

    return ValuationResult(
        fair_value_low=fair_value_low,
        fair_value_high=fair_value_high,
        recommended_buy_price=recommended_buy_price,
        target_sell_price=target_sell_price,
        estimated_margin=margin,
        estimated_days_to_sell=days_to_sell,
        risk_score=risk_score,
        recommendation=recommendation,
        confidence=HEURISTIC_CONFIDENCE,
        reasoning=HEURISTIC_REASONING,
        source=VALUATION_SOURCE_HEURISTIC,
    )


class ValuationEngine:
    """Produces exactly one :class:`ValuationResult` per request."""

    def __init__(
        self,
        ai_client: Optional[AIClient] = None,
        renderer: Optional[PromptRenderer] = None,
        *,
        temperature: float = 0.3,
        max_tokens: int = 1000,
        market: str = "Australian",
        currency: str = "AUD",
        today: Callable[[], date] = _utc_today,
    ) -> None:
        self.ai_client = ai_client
        self.renderer = renderer or PromptRenderer()
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.market = market
        self.currency = currency
        self.today = today

    def build_prompt(self, request: ValuationRequest) -> str:
        return self.renderer.render(
            VALUATION_TEMPLATE,
            vehicle=request.vehicle,
            ask_price=request.ask_price,
            location=request.location,
            market_data=request.market_data,
            market=self.market,
            currency=self.currency,
        )

    def fallback(self, request: ValuationRequest) -> ValuationResult:
        return heuristic_valuation(request.vehicle, request.ask_price, self.today().year)

    async def valuate(self, request: ValuationRequest) -> ValuationResult:
        """Value a vehicle, falling back to the heuristic when the AI path fails."""
        if self.ai_client is None or not self.ai_client.configured:
            logger.info(f"AI unavailable; heuristic valuation for {request.vehicle.title}")
            return self.fallback(request)

        try:
            payload = await self.ai_client.complete_json(
                system=VALUATION_SYSTEM_PROMPT,
                prompt=self.build_prompt(request),
                temperature=self.temperature,
                max_tokens=self.max_tokens,
                step="valuation",
            )
            result = parse_valuation_reply(payload)
        except AIClientError as exc:
            logger.warning(f"AI valuation failed for {request.vehicle.title}, using heuristic: {exc}")
            return self.fallback(request)

        logger.info(
            f"AI valuation for {request.vehicle.title}: {result.recommendation} "
            f"(confidence {result.confidence})"
        )
        return result
