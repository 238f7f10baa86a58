"""Exception hierarchy for TradePilot."""

from __future__ import annotations


class TradePilotError(Exception):
    """Base class for all TradePilot errors."""


class ValidationError(TradePilotError):
    """Raised when a request fails pre-flight validation."""


class AIClientError(TradePilotError):
    """Raised when the language model call fails or is not configured."""


class AIResponseError(AIClientError):
    """Raised when the language model reply cannot be parsed or has the wrong shape."""


class UnknownPlanError(TradePilotError):
    """Raised when a plan identifier is not one of the configured tiers."""
