"""Prompt rendering for language model calls."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Optional, Union

from jinja2 import Environment, FileSystemLoader, StrictUndefined, select_autoescape

DEFAULT_TEMPLATE_DIR = Path(__file__).resolve().parent / "templates"

VALUATION_TEMPLATE = "valuation.txt"
MARKET_RESEARCH_TEMPLATE = "market_research.txt"
LISTING_ANALYSIS_TEMPLATE = "listing_analysis.txt"
DEAL_SUMMARY_TEMPLATE = "deal_summary.txt"
MESSAGE_TEMPLATE = "message.txt"

VALUATION_SYSTEM_PROMPT = "You are a car valuation expert AI. Always respond with valid JSON only."
MARKET_RESEARCH_SYSTEM_PROMPT = (
    "You are an expert Australian car market research agent with deep knowledge of "
    "carsales.com.au, gumtree, autotrader, and auction house pricing. "
    "Always respond with valid JSON only."
)
LISTING_ANALYSIS_SYSTEM_PROMPT = (
    "You are a car market analyst. Analyze the REAL scraped data provided. Respond with valid JSON."
)
DEAL_SUMMARY_SYSTEM_PROMPT = "You are a helpful car trading assistant. Be concise and practical."
MESSAGE_SYSTEM_PROMPT = "You are helping a car trader write messages to sellers. Be professional but human."


def money(value: Optional[Union[int, float]]) -> str:
    """Format an amount as whole dollars with thousands separators."""
    if value is None:
        return "-"
    return f"${value:,.0f}"


def thousands(value: Optional[Union[int, float]]) -> str:
    if value is None:
        return "-"
    return f"{value:,.0f}"


class PromptRenderer:
    """Renders prompt templates with Jinja2."""

    def __init__(self, template_dir: Optional[Union[str, Path]] = None) -> None:
        self.template_dir = Path(template_dir) if template_dir else DEFAULT_TEMPLATE_DIR
        self.jinja_env = Environment(
            loader=FileSystemLoader(str(self.template_dir)),
            autoescape=select_autoescape(["html", "xml"]),
            undefined=StrictUndefined,
            trim_blocks=True,
            lstrip_blocks=True,
            keep_trailing_newline=False,
        )
        self.jinja_env.filters["money"] = money
        self.jinja_env.filters["thousands"] = thousands

    def render(self, template_name: str, **context: Any) -> str:
        template = self.jinja_env.get_template(template_name)
        return template.render(**context).strip()
