"""TradePilot command line runner.

Runs a market analysis, scrapes listing URLs, drafts deal summaries and seller
messages, and inspects or changes an organization's usage plan. Exit codes:
0 on success, 1 on failure, 2 when an operation completed but some listing
URLs could not be scraped.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

from .advisor import MESSAGE_TONES, MESSAGE_TYPES
from .analysis import ERROR_QUOTA, AnalysisOutcome, MarketAnalysisService, build_service
from .config import TradePilotConfig
from .database import TradePilotDatabase
from .errors import TradePilotError, UnknownPlanError, ValidationError
from .logging_config import get_logger, setup_logging
from .usage import PLAN_CONFIG, UsageGate, usage_message

logger = get_logger("cli")

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_PARTIAL = 2


def _print_json(payload: Dict[str, Any]) -> None:
    print(json.dumps(payload, indent=2, ensure_ascii=False, default=str))


def _money(value: Optional[float]) -> str:
    return "-" if value is None else f"${value:,.0f}"


def _analysis_payload(args: argparse.Namespace) -> Dict[str, Any]:
    return {
        "year": args.year,
        "make": args.make,
        "model": args.model,
        "variant": args.variant,
        "odometer": args.odometer,
        "odometer_min": args.odometer_min,
        "odometer_max": args.odometer_max,
        "transmission": args.transmission,
        "fuel_type": args.fuel_type,
        "body_type": args.body_type,
        "colour": args.colour,
        "ask_price": args.ask_price,
        "location": getattr(args, "location", None),
        "urls": getattr(args, "urls", None) or [],
    }


def _print_analysis(outcome: AnalysisOutcome) -> None:
    if not outcome.success:
        print(f"Analysis failed ({outcome.error}): {outcome.message}")
        if outcome.usage:
            print(outcome.usage.get("upgrade_message", ""))
        return

    result = outcome.result
    valuation = result.valuation
    print(f"Vehicle: {result.vehicle.title}")
    print(f"Recommendation: {valuation.recommendation} (confidence {valuation.confidence}, {valuation.source})")
    print(f"Fair value: {_money(valuation.fair_value_low)} - {_money(valuation.fair_value_high)}")
    print(f"Buy at or below: {_money(valuation.recommended_buy_price)}")
    print(f"Target sell: {_money(valuation.target_sell_price)}")
    print(f"Estimated margin: {valuation.estimated_margin}%")
    print(f"Days to sell: {valuation.estimated_days_to_sell}  Risk: {valuation.risk_score}/100")
    print(f"Reasoning: {valuation.reasoning}")
    if result.metrics:
        prices = result.metrics.price_range
        print(
            f"Scraped market: {result.metrics.count} listings, {_money(prices.min)} - {_money(prices.max)} "
            f"(median {_money(prices.median)})"
        )
    for error in result.scraping_errors:
        print(f"  failed: {error}")
    if result.scraping_note:
        print(result.scraping_note)
    print(f"Data source: {result.data_source}")
    print(f"Usage: {result.usage.get('message')}")


def _analysis_exit_code(outcome: AnalysisOutcome) -> int:
    if not outcome.success:
        return EXIT_FAILURE
    if outcome.result.scraping_errors:
        return EXIT_PARTIAL
    return EXIT_OK


def run_analyze(args: argparse.Namespace, config: TradePilotConfig) -> int:
    service = build_service(config, strict_quota=args.strict_quota)
    outcome = asyncio.run(service.analyze(args.org, _analysis_payload(args)))
    if args.json:
        _print_json(outcome.to_dict())
    else:
        _print_analysis(outcome)
    if outcome.error == ERROR_QUOTA:
        logger.warning(f"Organization {args.org} is over its daily limit")
    return _analysis_exit_code(outcome)


def run_scrape(args: argparse.Namespace, config: TradePilotConfig) -> int:
    service: MarketAnalysisService = build_service(config)
    try:
        report = asyncio.run(service.scrape_listings(args.urls))
    except ValidationError as exc:
        if args.json:
            _print_json({"success": False, "error": str(exc)})
        else:
            print(f"Scrape failed: {exc}")
        return EXIT_FAILURE

    scraping = report["scraping"]
    if args.json:
        _print_json(report)
    else:
        print(f"Scraped {scraping['total_scraped']} listings, {scraping['total_failed']} failed")
        for listing in scraping["listings"]:
            print(f"  {_money(listing['price'])}  {listing['title']}  ({listing['url']})")
        for failure in scraping["failed_urls"]:
            print(f"  failed [{failure['status']}]: {failure['url']}: {failure['error']}")

    if not scraping["success"]:
        return EXIT_FAILURE
    return EXIT_PARTIAL if scraping["total_failed"] else EXIT_OK


def run_usage(args: argparse.Namespace, config: TradePilotConfig) -> int:
    gate = UsageGate(TradePilotDatabase(config.db_path))
    check = gate.can_perform_analysis(args.org)
    stats = gate.get_usage_stats(args.org)
    plan = PLAN_CONFIG[check.plan]
    payload = {
        "organization_id": args.org,
        "plan": check.plan,
        "plan_name": plan.name,
        "allowed": check.allowed,
        "usage": stats.to_dict(),
        "is_unlimited": check.is_unlimited,
        "message": usage_message(check),
    }
    if args.json:
        _print_json(payload)
    else:
        print(f"Organization: {args.org} ({plan.name} plan)")
        print(f"Today: {stats.today}  Last 7 days: {stats.this_week}  Last month: {stats.this_month}")
        print(payload["message"])
    return EXIT_OK


def run_plan(args: argparse.Namespace, config: TradePilotConfig) -> int:
    gate = UsageGate(TradePilotDatabase(config.db_path))
    try:
        plan = gate.update_organization_plan(args.org, args.plan)
    except UnknownPlanError as exc:
        print(str(exc), file=sys.stderr)
        return EXIT_FAILURE
    payload = {
        "organization_id": args.org,
        "plan": args.plan,
        "plan_name": plan.name,
        "price": plan.price,
        "daily_limit": plan.analysis_limit,
        "features": list(plan.features),
    }
    if args.json:
        _print_json(payload)
    else:
        print(f"Organization {args.org} is now on the {plan.name} plan (${plan.price}/month)")
    return EXIT_OK


def run_summary(args: argparse.Namespace, config: TradePilotConfig) -> int:
    service = build_service(config)
    report = asyncio.run(service.summarize_deal(_analysis_payload(args)))
    if args.json:
        _print_json(report)
    else:
        valuation = report["valuation"]
        print(f"Recommendation: {valuation['recommendation']} ({valuation['source']})")
        print(f"Fair value: {_money(valuation['fair_value_low'])} - {_money(valuation['fair_value_high'])}")
        print(report["summary"])
    return EXIT_OK


def run_message(args: argparse.Namespace, config: TradePilotConfig) -> int:
    service = build_service(config)
    text = asyncio.run(
        service.draft_message(
            _analysis_payload(args),
            message_type=args.message_type,
            tone=args.tone,
            recommended_offer=args.offer,
            seller_name=args.seller,
        )
    )
    if args.json:
        _print_json({"message": text})
    else:
        print(text)
    return EXIT_OK


def _add_vehicle_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--year", type=int, required=True)
    parser.add_argument("--make", required=True)
    parser.add_argument("--model", required=True)
    parser.add_argument("--variant")
    parser.add_argument("--odometer", type=int)
    parser.add_argument("--odometer-min", type=int)
    parser.add_argument("--odometer-max", type=int)
    parser.add_argument("--transmission")
    parser.add_argument("--fuel-type")
    parser.add_argument("--body-type")
    parser.add_argument("--colour")
    parser.add_argument("--ask-price", type=float)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="tradepilot",
        description="TradePilot - car listing scraper, AI valuation and usage gate",
    )
    parser.add_argument("--config", type=Path, help="Path to YAML configuration (default: config/tradepilot.yaml)")
    parser.add_argument("--db-path", type=Path, help="Path to the SQLite database")
    parser.add_argument("--log-file", type=Path, help="Write logs to file")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable verbose logging")
    parser.add_argument("--json", action="store_true", help="Output results as JSON")

    subparsers = parser.add_subparsers(dest="command", required=True)

    analyze = subparsers.add_parser("analyze", help="Analyse the market for a vehicle")
    analyze.add_argument("--org", required=True, help="Organization ID")
    _add_vehicle_arguments(analyze)
    analyze.add_argument("--location")
    analyze.add_argument("--url", dest="urls", action="append", help="Listing URL to scrape (repeatable)")
    analyze.add_argument(
        "--strict-quota",
        action="store_true",
        help="Claim the analysis atomically before running instead of counting it afterwards",
    )
    analyze.set_defaults(handler=run_analyze)

    scrape = subparsers.add_parser("scrape", help="Scrape listing URLs and summarise them")
    scrape.add_argument("urls", nargs="+", help="Listing URLs")
    scrape.set_defaults(handler=run_scrape)

    usage = subparsers.add_parser("usage", help="Show an organization's usage")
    usage.add_argument("--org", required=True, help="Organization ID")
    usage.set_defaults(handler=run_usage)

    plan = subparsers.add_parser("plan", help="Change an organization's plan")
    plan.add_argument("--org", required=True, help="Organization ID")
    plan.add_argument("plan", choices=sorted(PLAN_CONFIG), help="New plan")
    plan.set_defaults(handler=run_plan)

    summary = subparsers.add_parser("summary", help="Value a vehicle and write a short deal summary")
    _add_vehicle_arguments(summary)
    summary.set_defaults(handler=run_summary)

    message = subparsers.add_parser("message", help="Draft a message to a seller")
    _add_vehicle_arguments(message)
    message.add_argument("--type", dest="message_type", choices=sorted(MESSAGE_TYPES), default="inquiry")
    message.add_argument("--tone", choices=MESSAGE_TONES, default="polite")
    message.add_argument("--offer", type=float, help="Offer amount to mention")
    message.add_argument("--seller", help="Seller name")
    message.set_defaults(handler=run_message)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """CLI entry point for TradePilot."""
    parser = build_parser()
    args = parser.parse_args(argv)

    config = TradePilotConfig.from_env(args.config)
    if args.db_path:
        config.db_path = str(args.db_path)

    level = logging.DEBUG if args.verbose else getattr(logging, config.log_level, logging.INFO)
    log_file = args.log_file or (Path(config.log_file) if config.log_file else None)
    setup_logging(log_file=log_file, level=level)

    try:
        return args.handler(args, config)
    except TradePilotError as exc:
        logger.error(f"{args.command} failed: {exc}")
        return EXIT_FAILURE
    except Exception as exc:
        logger.exception(f"Unexpected error in {args.command}: {exc}")
        return EXIT_FAILURE


if __name__ == "__main__":
    sys.exit(main())
