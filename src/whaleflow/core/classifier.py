"""
Unusual-flow classification.

Two independent checks run per trade:
- LARGE_PREMIUM: premium (price × |quantity|) at or above min_premium_usd
- HIGH_OI_RATIO: |quantity| at or above oi_percentage of open interest

A trade is unusual iff at least one check fires. Classification is a pure
function of (trade, thresholds, open_interest).
"""

from typing import Optional

from whaleflow.core.instrument import parse_instrument
from whaleflow.core.models import (
    ClassifiedTrade,
    Flag,
    FlagKind,
    FlowThresholds,
    RawTrade,
)


def format_usd_compact(amount: float, decimals: int = 2) -> str:
    """Format a dollar amount as $1.50M / $12.50K / $950.00."""
    if amount >= 1_000_000:
        return f"${amount / 1_000_000:.{decimals}f}M"
    if amount >= 1_000:
        return f"${amount / 1_000:.{decimals}f}K"
    return f"${amount:.{decimals}f}"


def classify_trade(
    trade: RawTrade,
    thresholds: FlowThresholds,
    open_interest: Optional[float] = None,
) -> ClassifiedTrade:
    """
    Compute premium and unusual-flow flags for one trade.

    Args:
        trade: Raw trade from the feed
        thresholds: Active unusual-flow thresholds
        open_interest: Open interest of the trade's instrument, if known

    Returns:
        ClassifiedTrade value
    """
    size = abs(trade.quantity)
    premium = abs(trade.price * size)
    flags: list[Flag] = []

    if premium >= thresholds.min_premium_usd:
        flags.append(Flag(FlagKind.LARGE_PREMIUM, f"{format_usd_compact(premium)} Premium"))

    # Unknown or non-positive OI skips the ratio check
    if open_interest is not None and open_interest > 0:
        oi_ratio = size / open_interest * 100
        if oi_ratio >= thresholds.oi_percentage:
            flags.append(Flag(FlagKind.HIGH_OI_RATIO, f"{oi_ratio:.1f}% of OI"))

    return ClassifiedTrade(
        trade=trade,
        premium=premium,
        flags=tuple(flags),
        instrument=parse_instrument(trade.instrument_name),
    )
