"""
Market data service entry point.

Usage:
    python main.py "Cape Town" --property-type house --period 6months
    python main.py "Sea Point" --cached-only
    python main.py --health
    python main.py --options
"""

import argparse
import asyncio
import json
import sys

from loguru import logger

from marketdata.datasource.models import DATA_PERIODS, get_options
from marketdata.services.errors import MarketDataError
from marketdata.services.market_data import (
    close_market_data_service,
    get_market_data_service,
)
from marketdata.settings import global_settings


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Fetch market data and comparable sales")
    parser.add_argument("location", nargs="?", help="Suburb or city, e.g. 'Cape Town'")
    parser.add_argument("--property-type", default=None, help="Defaults to 'house'")
    parser.add_argument("--period", choices=DATA_PERIODS, default=None)
    parser.add_argument(
        "--cached-only",
        action="store_true",
        help="Serve from cache or database only, never call the origin",
    )
    parser.add_argument("--health", action="store_true", help="Run the health check")
    parser.add_argument("--options", action="store_true", help="List supported values")
    return parser.parse_args(argv)


async def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)

    logger.remove()
    logger.add(sys.stderr, level=global_settings.log_level.upper())

    if args.options:
        print(json.dumps(get_options(), indent=2))
        return 0

    if not args.health and not args.location:
        logger.error("A location is required unless --health or --options is given")
        return 2

    service = await get_market_data_service()
    try:
        if args.health:
            healthy = await service.health_check()
            print(json.dumps({"healthy": healthy, **service.get_status()}, indent=2))
            return 0 if healthy else 1

        request = {
            "location": args.location,
            "propertyType": args.property_type,
            "period": args.period,
        }
        if args.cached_only:
            result = await service.get_cached_market_data(request)
        else:
            result = await service.get_market_data(request)
        print(result.model_dump_json(by_alias=True, indent=2))
        return 0

    except MarketDataError as e:
        hint = " (retry later)" if e.retryable else ""
        logger.error(f"{type(e).__name__}: {e}{hint}")
        return 1
    finally:
        await close_market_data_service()


def run() -> None:
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    run()
