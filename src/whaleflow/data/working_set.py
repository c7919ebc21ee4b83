"""
Working set of classified trades.

Holds the canonical list (most recent full trade-history snapshot, classified
and sorted) plus the current spot-price snapshot. Derived views (filters,
top-N, stats) are computed on demand from the canonical list so they are
never stale.

Canonical order: unusual trades first, then newest first. The sort is
stable, so trades sharing both keys keep feed order.
"""

from typing import Iterable, Mapping, Optional, Sequence, Union

import polars as pl
from loguru import logger

from whaleflow.core.classifier import classify_trade
from whaleflow.core.models import (
    ClassifiedTrade,
    FlowStats,
    FlowThresholds,
    OptionSide,
    OptionTypeFilter,
    RawTrade,
    SpotPriceSnapshot,
)

FRAME_SCHEMA = {
    "timestamp": pl.Int64,
    "instrument_name": pl.Utf8,
    "trade_id": pl.Utf8,
    "currency": pl.Utf8,
    "expiry": pl.Utf8,
    "strike": pl.Utf8,
    "side": pl.Utf8,
    "quantity": pl.Float64,
    "price": pl.Float64,
    "premium": pl.Float64,
    "is_unusual": pl.Boolean,
    "flags": pl.Utf8,
}


def canonical_sort(trades: Iterable[ClassifiedTrade]) -> list[ClassifiedTrade]:
    """Unusual first, then timestamp descending; stable for ties."""
    return sorted(trades, key=lambda t: (not t.is_unusual, -t.timestamp))


class TradeWorkingSet:
    """
    Canonical classified-trade list and spot-price snapshot.

    **Snapshot-replace:**
    replace_trades() swaps the whole list in one assignment; readers only
    ever see a complete list. Raw trades are retained so threshold or open
    interest changes can reclassify them into new values.

    Example:
        ```python
        working_set = TradeWorkingSet(FlowThresholds(min_premium_usd=10000))
        working_set.replace_trades(raw_trades)
        calls = working_set.filtered(OptionTypeFilter.CALL, min_premium=5000)
        stats = working_set.summary_stats(calls)
        ```
    """

    def __init__(self, thresholds: Optional[FlowThresholds] = None):
        self._thresholds = thresholds or FlowThresholds()
        self._raw_trades: tuple[RawTrade, ...] = ()
        self._open_interest: dict[str, float] = {}
        self._trades: tuple[ClassifiedTrade, ...] = ()
        self._spot_price = SpotPriceSnapshot()
        self.replace_count = 0

    @property
    def trades(self) -> tuple[ClassifiedTrade, ...]:
        """Canonical list snapshot."""
        return self._trades

    @property
    def thresholds(self) -> FlowThresholds:
        return self._thresholds

    @property
    def open_interest(self) -> dict[str, float]:
        return dict(self._open_interest)

    @property
    def spot_price(self) -> SpotPriceSnapshot:
        return self._spot_price

    def replace_trades(
        self,
        raw_trades: Iterable[Union[RawTrade, dict]],
        thresholds: Optional[FlowThresholds] = None,
        open_interest: Optional[Mapping[str, float]] = None,
    ) -> None:
        """
        Classify, sort and install a full trade-history snapshot.

        Args:
            raw_trades: Trades from the feed (RawTrade or raw payload dicts)
            thresholds: New active thresholds (default: keep current)
            open_interest: Replacement instrument → open interest map (default: keep current)
        """
        if thresholds is not None:
            self._thresholds = thresholds
        if open_interest is not None:
            self._open_interest = dict(open_interest)

        self._raw_trades = tuple(
            t if isinstance(t, RawTrade) else RawTrade.from_feed(t) for t in raw_trades
        )
        self._rebuild()
        self.replace_count += 1

        logger.debug(
            f"Working set replaced: {len(self._trades)} trades, "
            f"{sum(1 for t in self._trades if t.is_unusual)} unusual"
        )

    def update_open_interest(self, open_interest: Mapping[str, float]) -> None:
        """Merge open interest values and reclassify affected snapshots."""
        changed = False
        for name, value in open_interest.items():
            if self._open_interest.get(name) != value:
                self._open_interest[name] = value
                changed = True

        if changed and any(t.instrument_name in open_interest for t in self._raw_trades):
            self._rebuild()

    def clear_open_interest(self) -> None:
        self._open_interest = {}

    def set_thresholds(self, thresholds: FlowThresholds) -> None:
        """Install new thresholds and reclassify the current snapshot."""
        self._thresholds = thresholds
        self._rebuild()
        logger.info(
            f"Thresholds updated: premium >= {thresholds.min_premium_usd}, "
            f"OI >= {thresholds.oi_percentage}%"
        )

    def replace_spot_price(self, snapshot: SpotPriceSnapshot) -> None:
        self._spot_price = snapshot

    def mark_spot_stale(self) -> None:
        if not self._spot_price.is_stale:
            self._spot_price = SpotPriceSnapshot(
                price=self._spot_price.price,
                change_24h_percent=self._spot_price.change_24h_percent,
                is_stale=True,
            )

    def clear(self) -> None:
        """Drop trades, open interest and spot price (currency switch)."""
        self._raw_trades = ()
        self._trades = ()
        self._open_interest = {}
        self._spot_price = SpotPriceSnapshot()

    def filtered(
        self,
        option_type: Union[OptionTypeFilter, str] = OptionTypeFilter.ALL,
        min_premium: float = 0.0,
    ) -> list[ClassifiedTrade]:
        """
        Trades matching side and minimum premium, in canonical order.

        Args:
            option_type: ALL, CALL or PUT
            min_premium: Inclusive premium floor
        """
        option_type = OptionTypeFilter(option_type)
        wanted = None if option_type == OptionTypeFilter.ALL else OptionSide(option_type.value)
        return [
            t for t in self._trades
            if (wanted is None or t.side == wanted) and t.premium >= min_premium
        ]

    def top_by_quantity(self, n: int = 5) -> list[ClassifiedTrade]:
        """Largest trades by |quantity|; ties keep canonical order."""
        if n <= 0:
            return []
        return sorted(self._trades, key=lambda t: -t.abs_quantity)[:n]

    def summary_stats(self, subset: Optional[Sequence[ClassifiedTrade]] = None) -> FlowStats:
        """Count, unusual count and total premium over subset (default: canonical list)."""
        trades = self._trades if subset is None else subset
        return FlowStats(
            count=len(trades),
            unusual_count=sum(1 for t in trades if t.is_unusual),
            total_premium=sum(t.premium for t in trades),
        )

    def to_frame(self, subset: Optional[Sequence[ClassifiedTrade]] = None) -> pl.DataFrame:
        """Tabular view of subset (default: canonical list) as a polars DataFrame."""
        trades = self._trades if subset is None else subset
        return pl.DataFrame([t.to_dict() for t in trades], schema=FRAME_SCHEMA)

    def _rebuild(self) -> None:
        classified = [
            classify_trade(t, self._thresholds, self._open_interest.get(t.instrument_name))
            for t in self._raw_trades
        ]
        self._trades = tuple(canonical_sort(classified))
