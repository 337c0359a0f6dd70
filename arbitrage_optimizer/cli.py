#!/usr/bin/env python3
"""
Storage Arbitrage Optimizer CLI

Fetches day-ahead prices for one or more days, optimizes a charge/discharge
schedule and logs the resulting KPIs.
"""

import argparse
import asyncio
import logging
import os
from datetime import datetime
from pathlib import Path

import yaml

from .config import Config
from .optimizer import ArbitrageOptimizer
from .price_cache import PriceCache
from .price_source import PriceSource

logger = logging.getLogger(__name__)


def setup_logging() -> None:
    """Lambda uses CloudWatch via stdout, local uses file + stdout"""
    if logging.getLogger().handlers:
        return
    _is_lambda = os.environ.get('AWS_LAMBDA_FUNCTION_NAME') is not None
    handlers = [logging.StreamHandler()]
    if not _is_lambda:
        Path('logs').mkdir(exist_ok=True)
        handlers.append(logging.FileHandler('logs/arbitrage_optimizer.log'))
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(levelname)s - %(message)s',
        handlers=handlers
    )


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Storage Arbitrage Optimizer - HMM-guided charge/discharge schedule for day-ahead prices"
    )
    parser.add_argument("--date", type=str, metavar="YYYY-MM-DD",
                        help="First day to optimize (defaults to today).")
    parser.add_argument("--days", type=int, default=1, help="Number of consecutive days in the horizon.")
    parser.add_argument("--config", type=str, default="config.yaml", help="Path to the YAML config file.")
    parser.add_argument("--method", type=str, help="Regime classification method (overrides config).")
    parser.add_argument("--seed", type=int, help="Random seed for a reproducible run (overrides config).")
    parser.add_argument("--quarter-hourly", action="store_true",
                        help="Use 15-minute prices instead of hourly prices.")
    return parser.parse_args(argv)


async def run(args: argparse.Namespace) -> bool:
    config = Config(args.config)
    optimizer = ArbitrageOptimizer.from_config(config)
    source = PriceSource(PriceCache(config.get('price_cache_dir')))

    start = datetime.strptime(args.date, '%Y-%m-%d').date() if args.date else datetime.now().date()
    prices, timestamps = await source.get_price_series(start, args.days, hourly=not args.quarter_hourly)
    if not prices:
        logger.error("Cannot proceed without price data")
        return False

    result = optimizer.optimize(
        prices,
        config.battery_parameters(),
        args.method or config.classification_method(),
        config.classification_options(),
        timestamps,
        seed=args.seed,
    )
    if not result.success:
        logger.error(f"✗ Optimization failed ({result.error_type}): {result.error}")
        return False

    logger.info(f"{'=' * 50}")
    logger.info(f"🔋 Schedule for {timestamps[0]} .. {timestamps[-1]} [{result.method}]")
    logger.info(f"Revenue: {result.total_revenue:.2f}  avg price: {result.avg_price:.2f}")
    logger.info(f"Charged: {result.total_energy_charged:.2f}  discharged: {result.total_energy_discharged:.2f}  "
                f"efficiency: {result.operational_efficiency:.2%}")
    logger.info(f"VWAP charge: {result.vwap_charge:.2f}  VWAP discharge: {result.vwap_discharge:.2f}  "
                f"half-cycles: {result.cycles}")
    logger.info(f"Actions: {result.schedule.action_counts()}")
    return True


def main(argv=None) -> int:
    setup_logging()
    args = parse_args(argv)
    if args.days < 1:
        logger.error(f"Invalid --days: {args.days}. Must be at least 1.")
        return 2
    try:
        success = asyncio.run(run(args))
    except (ValueError, OSError, yaml.YAMLError) as e:
        logger.error(f"Invalid input: {e}")
        return 2
    logger.info("✓ Optimization completed" if success else "✗ Optimization failed")
    return 0 if success else 1


if __name__ == "__main__":
    raise SystemExit(main())
