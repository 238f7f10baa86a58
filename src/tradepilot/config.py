"""Configuration loader for TradePilot.

Settings come from a YAML file (``config/tradepilot.yaml`` by default) and
are overlaid with environment variables for secrets and deployment paths.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Union

import yaml

from .ai_client import DEFAULT_MODEL, DEFAULT_TIMEOUT_SECONDS
from .fetcher import DEFAULT_HOSTED_API_URL
from .scrape_manager import DEFAULT_BATCH_DELAY_SECONDS

PLACEHOLDER_KEYS = frozenset(
    {
        "your-firecrawl-api-key-here",
        "your-openai-api-key-here",
        "changeme",
    }
)


def _clean_key(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = str(value).strip()
    if not value or value.lower() in PLACEHOLDER_KEYS:
        return None
    return value


@dataclass
class TradePilotConfig:
    """Runtime settings for the analysis service."""

    openai_api_key: Optional[str] = None
    openai_model: str = DEFAULT_MODEL
    openai_timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS
    firecrawl_api_key: Optional[str] = None
    firecrawl_api_url: str = DEFAULT_HOSTED_API_URL
    db_path: str = "database/tradepilot.db"
    scrape_concurrency: int = 2
    scrape_batch_delay_seconds: float = DEFAULT_BATCH_DELAY_SECONDS
    scrape_timeout_seconds: float = 15.0
    max_urls: int = 10
    discovery_enabled: bool = False
    market: str = "Australian"
    currency: str = "AUD"
    location: str = "Australia"
    log_level: str = "INFO"
    log_file: Optional[str] = None

    DEFAULT_CONFIG_PATH = Path("config/tradepilot.yaml")

    def __post_init__(self) -> None:
        self.openai_api_key = _clean_key(self.openai_api_key)
        self.firecrawl_api_key = _clean_key(self.firecrawl_api_key)
        if self.scrape_concurrency < 1:
            raise ValueError("scrape concurrency must be at least 1")
        if self.max_urls < 1:
            raise ValueError("max_urls must be at least 1")

    @property
    def ai_configured(self) -> bool:
        return self.openai_api_key is not None

    @property
    def hosted_scraper_configured(self) -> bool:
        return self.firecrawl_api_key is not None

    @classmethod
    def _load_yaml(cls, config_path: Optional[Union[str, Path]]) -> Dict[str, Any]:
        path = Path(config_path) if config_path else cls.DEFAULT_CONFIG_PATH
        if not path.is_absolute():
            path = Path.cwd() / path
        if not path.exists():
            return {}
        with open(path, "r", encoding="utf-8") as handle:
            return yaml.safe_load(handle) or {}

    @classmethod
    def from_file(cls, config_path: Optional[Union[str, Path]] = None) -> "TradePilotConfig":
        """Load settings from YAML; a missing file yields the defaults."""
        data = cls._load_yaml(config_path)
        openai_section = data.get("openai", {}) or {}
        firecrawl_section = data.get("firecrawl", {}) or {}
        scraping = data.get("scraping", {}) or {}
        market = data.get("market", {}) or {}
        logging_section = data.get("logging", {}) or {}
        database = data.get("database", {}) or {}

        return cls(
            openai_api_key=openai_section.get("api_key"),
            openai_model=openai_section.get("model", DEFAULT_MODEL),
            openai_timeout_seconds=float(openai_section.get("timeout_seconds", DEFAULT_TIMEOUT_SECONDS)),
            firecrawl_api_key=firecrawl_section.get("api_key"),
            firecrawl_api_url=firecrawl_section.get("api_url", DEFAULT_HOSTED_API_URL),
            db_path=str(database.get("path", "database/tradepilot.db")),
            scrape_concurrency=int(scraping.get("concurrency", 2)),
            scrape_batch_delay_seconds=float(scraping.get("batch_delay_seconds", DEFAULT_BATCH_DELAY_SECONDS)),
            scrape_timeout_seconds=float(scraping.get("timeout_seconds", 15.0)),
            max_urls=int(scraping.get("max_urls", 10)),
            discovery_enabled=bool(scraping.get("discovery_enabled", False)),
            market=market.get("name", "Australian"),
            currency=market.get("currency", "AUD"),
            location=market.get("location", "Australia"),
            log_level=str(logging_section.get("level", "INFO")).upper(),
            log_file=logging_section.get("file"),
        )

    @classmethod
    def from_env(
        cls,
        config_path: Optional[Union[str, Path]] = None,
        environ: Optional[Mapping[str, str]] = None,
    ) -> "TradePilotConfig":
        """Load the YAML file, then apply environment overrides."""
        env = os.environ if environ is None else environ
        config = cls.from_file(config_path)

        if env.get("OPENAI_API_KEY"):
            config.openai_api_key = _clean_key(env["OPENAI_API_KEY"])
        if env.get("OPENAI_MODEL"):
            config.openai_model = env["OPENAI_MODEL"]
        if env.get("FIRECRAWL_API_KEY"):
            config.firecrawl_api_key = _clean_key(env["FIRECRAWL_API_KEY"])
        if env.get("FIRECRAWL_API_URL"):
            config.firecrawl_api_url = env["FIRECRAWL_API_URL"].rstrip("/")
        if env.get("TRADEPILOT_DB_PATH"):
            config.db_path = env["TRADEPILOT_DB_PATH"]
        if env.get("TRADEPILOT_LOG_LEVEL"):
            config.log_level = env["TRADEPILOT_LOG_LEVEL"].upper()
        return config
