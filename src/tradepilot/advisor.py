"""Trader-facing text: deal summaries and messages to sellers."""

from __future__ import annotations

from typing import Optional

from .ai_client import AIClient
from .errors import AIClientError, ValidationError
from .logging_config import get_logger
from .models import ValuationResult, VehicleSpec
from .prompts import (
    DEAL_SUMMARY_SYSTEM_PROMPT,
    DEAL_SUMMARY_TEMPLATE,
    MESSAGE_SYSTEM_PROMPT,
    MESSAGE_TEMPLATE,
    PromptRenderer,
)

logger = get_logger("advisor")

SUMMARY_FALLBACK = "AI summary unavailable. Please check vehicle details and pricing manually."

MESSAGE_TYPES = {
    "inquiry": "initial inquiry about the vehicle",
    "offer": "making an offer on the vehicle",
    "followup": "following up on a previous inquiry",
}
MESSAGE_TONES = ("polite", "firm", "urgent", "casual")


def fallback_message(vehicle: VehicleSpec, seller_name: Optional[str] = None) -> str:
    greeting = f"Hi {seller_name}," if seller_name else "Hi,"
    return (
        f"{greeting}\n\nI'm interested in the {vehicle.year} {vehicle.make} {vehicle.model} "
        "you have listed. Is it still available?\n\nThanks"
    )


class DealAdvisor:
    """Short free-text completions with fixed fallbacks."""

    def __init__(self, ai_client: Optional[AIClient] = None, renderer: Optional[PromptRenderer] = None) -> None:
        self.ai_client = ai_client
        self.renderer = renderer or PromptRenderer()

    async def _complete(self, *, system: str, prompt: str, temperature: float, max_tokens: int, step: str) -> Optional[str]:
        if self.ai_client is None or not self.ai_client.configured:
            return None
        try:
            return await self.ai_client.complete(
                system=system,
                prompt=prompt,
                temperature=temperature,
                max_tokens=max_tokens,
                step=step,
            )
        except AIClientError as exc:
            logger.warning(f"AI {step} failed, using fallback text: {exc}")
            return None

    async def summarize_deal(
        self,
        vehicle: VehicleSpec,
        ask_price: Optional[float] = None,
        valuation: Optional[ValuationResult] = None,
    ) -> str:
        """Write a 3-4 sentence verdict on the deal."""
        prompt = self.renderer.render(
            DEAL_SUMMARY_TEMPLATE,
            vehicle=vehicle,
            ask_price=ask_price,
            fair_value_low=valuation.fair_value_low if valuation else None,
            fair_value_high=valuation.fair_value_high if valuation else None,
            estimated_margin=valuation.estimated_margin if valuation else None,
            risk_score=valuation.risk_score if valuation else None,
        )
        text = await self._complete(
            system=DEAL_SUMMARY_SYSTEM_PROMPT,
            prompt=prompt,
            temperature=0.5,
            max_tokens=500,
            step="deal_summary",
        )
        return text or SUMMARY_FALLBACK

    async def draft_message(
        self,
        vehicle: VehicleSpec,
        message_type: str = "inquiry",
        tone: str = "polite",
        ask_price: Optional[float] = None,
        recommended_offer: Optional[float] = None,
        seller_name: Optional[str] = None,
    ) -> str:
        """Draft an SMS/email to a seller.

        Raises:
            ValidationError: Unknown message type or tone
        """
        if message_type not in MESSAGE_TYPES:
            raise ValidationError(f"Unknown message type: {message_type}")
        if tone not in MESSAGE_TONES:
            raise ValidationError(f"Unknown tone: {tone}")

        prompt = self.renderer.render(
            MESSAGE_TEMPLATE,
            vehicle=vehicle,
            tone=tone,
            message_description=MESSAGE_TYPES[message_type],
            ask_price=ask_price,
            recommended_offer=recommended_offer,
            seller_name=seller_name,
        )
        text = await self._complete(
            system=MESSAGE_SYSTEM_PROMPT,
            prompt=prompt,
            temperature=0.7,
            max_tokens=300,
            step="message",
        )
        return text or fallback_message(vehicle, seller_name)
