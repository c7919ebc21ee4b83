#!/usr/bin/env python3
"""
Run Flow Monitor

Headless runner for the whaleflow session: connects to the Derive feed,
keeps the classified working set fresh and logs a summary after every
trade-history refresh.

Usage:
    # Run with default config (config/whaleflow.yaml)
    python scripts/run_flow_monitor.py

    # BTC flow with a lower premium floor, verbose logging
    python scripts/run_flow_monitor.py --currency BTC --min-premium 5000 --log-level DEBUG

    # Stop after 5 minutes
    python scripts/run_flow_monitor.py --duration 300
"""

import argparse
import asyncio
import signal
import sys
from datetime import datetime
from typing import Optional

from loguru import logger

from whaleflow.config import load_flow_config
from whaleflow.core import format_usd_compact
from whaleflow.data import FlowSession
from whaleflow.utils import configure_logging


def parse_args():
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Monitor unusual options flow on Derive",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument(
        "--config",
        type=str,
        default="config/whaleflow.yaml",
        help="Path to flow config file",
    )
    parser.add_argument("--currency", type=str, default=None, help="Underlying currency (ETH, BTC, SOL)")
    parser.add_argument("--min-premium", type=float, default=None, help="LARGE_PREMIUM threshold in USD")
    parser.add_argument("--log-level", type=str, default=None, help="Console log level")
    parser.add_argument("--duration", type=float, default=None, help="Seconds to run (default: until interrupted)")
    parser.add_argument("--top", type=int, default=5, help="Number of largest trades to log")
    return parser.parse_args()


def log_summary(session: FlowSession, top: int) -> None:
    """Log stats, spot price and the largest trades."""
    stats = session.stats
    spot = session.spot_price
    spot_text = "stale" if spot.is_stale else f"{spot.price:,.2f} ({spot.change_24h_percent:+.2f}%)"

    logger.info(
        f"{session.currency} | spot {spot_text} | {stats.count} trades | "
        f"{stats.unusual_count} unusual | {format_usd_compact(stats.total_premium)} premium"
    )
    for trade in session.top_trades(top):
        flags = ", ".join(flag.label for flag in trade.flags) or "-"
        logger.info(
            f"  {trade.trade.instrument_name:<28} {trade.side.value:<4} "
            f"qty {trade.abs_quantity:>10.2f}  premium {format_usd_compact(trade.premium):>10}  {flags}"
        )


async def run(args) -> int:
    config = load_flow_config(args.config)
    if args.currency:
        config.query.currency = args.currency.upper()
    if args.min_premium is not None:
        config.thresholds.min_premium_usd = args.min_premium
    if args.log_level:
        config.logging.level = args.log_level.upper()

    errors = config.validate()
    if errors:
        for error in errors:
            logger.error(f"Config error: {error}")
        return 1

    configure_logging(
        level=config.logging.level,
        log_file=config.logging.file,
        rotation=config.logging.rotation,
        retention=config.logging.retention,
    )

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop_event.set)

    logger.info("=" * 60)
    logger.info("whaleflow - Unusual Options Flow Monitor")
    logger.info("=" * 60)

    last_seen: Optional[datetime] = None
    started = loop.time()

    async with FlowSession(config) as session:
        while not stop_event.is_set():
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=1.0)
            except asyncio.TimeoutError:
                pass

            if session.last_update != last_seen:
                last_seen = session.last_update
                log_summary(session, args.top)
            if session.error:
                logger.debug(f"Status: {session.error}")
            if args.duration is not None and loop.time() - started >= args.duration:
                break

    logger.info("✓ Flow monitor stopped cleanly")
    return 0


def main() -> int:
    args = parse_args()
    try:
        return asyncio.run(run(args))
    except ValueError as e:
        logger.error(str(e))
        return 1


if __name__ == "__main__":
    sys.exit(main())
