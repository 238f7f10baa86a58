"""TradePilot package namespace."""

from importlib import import_module
from typing import Any

__all__ = [
    "AIClient",
    "AnalysisOutcome",
    "MarketAnalysisService",
    "build_service",
    "TradePilotConfig",
    "TradePilotDatabase",
    "UsageGate",
    "ValuationEngine",
    "ScrapeManager",
    "extract_listing_fields",
    "extract_listing_metrics",
]


def __getattr__(name: str) -> Any:
    if name in ("AnalysisOutcome", "MarketAnalysisService", "build_service"):
        module = import_module("tradepilot.analysis")
        return getattr(module, name)
    elif name == "AIClient":
        module = import_module("tradepilot.ai_client")
        return getattr(module, name)
    elif name == "TradePilotConfig":
        module = import_module("tradepilot.config")
        return getattr(module, name)
    elif name == "TradePilotDatabase":
        module = import_module("tradepilot.database")
        return getattr(module, name)
    elif name == "UsageGate":
        module = import_module("tradepilot.usage")
        return getattr(module, name)
    elif name == "ValuationEngine":
        module = import_module("tradepilot.valuation")
        return getattr(module, name)
    elif name == "ScrapeManager":
        module = import_module("tradepilot.scrape_manager")
        return getattr(module, name)
    elif name == "extract_listing_fields":
        module = import_module("tradepilot.extractor")
        return getattr(module, name)
    elif name == "extract_listing_metrics":
        module = import_module("tradepilot.metrics")
        return getattr(module, name)
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


def __dir__() -> list[str]:
    return sorted(__all__)
