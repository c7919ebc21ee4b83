"""
Flow session: one mounted view's ingestion engine.

Wires the feed connection, correlator and working set together and owns
every timer for the view:

- trade-history refresh (default 60s)
- spot-price refresh (default 10s)
- reconnect delay (owned by the connection manager, default 3s)

Construct on mount, close() on unmount. All state is per-instance, so any
number of sessions can run side by side.

Presentation boundary:
- read: trades, filtered_trades, top_trades, stats, spot_price,
  connection_state, error, last_update, snapshot()
- intent: select_currency, set_type_filter, set_min_premium,
  set_time_window, set_thresholds, refresh, set_foreground
"""

import asyncio
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Awaitable, Callable, Optional, Union

from loguru import logger

from whaleflow.config.flow_config import FlowConfig
from whaleflow.core.instrument import is_perp_instrument, perp_instrument_name
from whaleflow.core.models import (
    ClassifiedTrade,
    ConnectionState,
    FlowStats,
    FlowThresholds,
    OptionTypeFilter,
    PendingCall,
    RawTrade,
    RpcError,
    SpotPriceSnapshot,
    coerce_float,
)
from whaleflow.data.correlator import (
    METHOD_SPOT_FEED_HISTORY,
    METHOD_TICKER,
    METHOD_TRADE_HISTORY,
    ResponseCorrelator,
)
from whaleflow.data.working_set import TradeWorkingSet
from whaleflow.utils.feed_connection import FeedConnectionManager


@dataclass(frozen=True, slots=True)
class FlowSnapshot:
    """Everything the presentation layer reads, captured at one instant."""
    currency: str
    trades: tuple[ClassifiedTrade, ...]
    filtered_trades: tuple[ClassifiedTrade, ...]
    top_trades: tuple[ClassifiedTrade, ...]
    stats: FlowStats
    spot_price: SpotPriceSnapshot
    connection_state: ConnectionState
    error: Optional[str]
    last_update: Optional[datetime]


class FlowSession:
    """
    View-scoped owner of the feed connection, correlator and working set.

    **Refresh on reconnect:**
    Registers a state listener on the connection manager; every transition
    into CONNECTED issues a fresh trade-history and spot-price request.

    **Ordering:**
    Responses are matched by call id / payload shape, not awaited. When two
    trade-history requests are in flight, whichever response arrives last
    replaces the canonical list.

    Example:
        ```python
        async with FlowSession(config) as session:
            await session.select_currency("BTC")
            session.set_min_premium(5000)
            view = session.snapshot()
        ```
    """

    def __init__(
        self,
        config: Optional[FlowConfig] = None,
        connection: Optional[FeedConnectionManager] = None,
        clock: Callable[[], float] = time.time,
    ):
        """
        Initialize session.

        Args:
            config: Flow configuration (default: built-in defaults)
            connection: Feed connection (default: built from config.feed)
            clock: Wall clock in seconds, used for trade-history time windows
        """
        self.config = config or FlowConfig()
        self.connection = connection or FeedConnectionManager.from_config(self.config.feed)
        thresholds = self.config.thresholds
        self.working_set = TradeWorkingSet(
            FlowThresholds(thresholds.min_premium_usd, thresholds.oi_percentage)
        )
        self.correlator = ResponseCorrelator(self.connection.pop_pending, self)

        self.connection.set_message_handler(self.correlator.on_message)
        self.connection.add_state_listener(self._on_connection_state)

        self._clock = clock
        self._currency = self.config.query.currency
        self._type_filter = OptionTypeFilter.ALL
        self._min_premium = 0.0
        self._time_window_hours = self.config.query.time_window_hours
        self._upstream_error: Optional[str] = None
        self.last_update: Optional[datetime] = None

        self._trade_timer: Optional[asyncio.Task] = None
        self._spot_timer: Optional[asyncio.Task] = None
        self._tasks: set[asyncio.Task] = set()
        self._is_running = False

    async def start(self) -> None:
        """Connect and arm the refresh timers (mount)."""
        if self._is_running:
            logger.warning("FlowSession already running")
            return

        logger.info(f"Starting flow session ({self._currency}, {self._time_window_hours}h window)")
        self._is_running = True
        self._start_timers()
        await self.connection.connect()

    async def close(self) -> None:
        """Cancel every timer and pending task, close the connection (unmount)."""
        self._is_running = False

        tasks = [t for t in (self._trade_timer, self._spot_timer) if t is not None]
        tasks.extend(self._tasks)
        self._trade_timer = None
        self._spot_timer = None
        self._tasks.clear()

        current = asyncio.current_task()
        for task in tasks:
            if task is not current and not task.done():
                task.cancel()
        for task in tasks:
            if task is current:
                continue
            try:
                await task
            except asyncio.CancelledError:
                pass

        self.connection.remove_state_listener(self._on_connection_state)
        await self.connection.close()
        logger.info("✓ Flow session closed")

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    @property
    def is_running(self) -> bool:
        return self._is_running

    @property
    def currency(self) -> str:
        return self._currency

    @property
    def type_filter(self) -> OptionTypeFilter:
        return self._type_filter

    @property
    def min_premium(self) -> float:
        return self._min_premium

    @property
    def time_window_hours(self) -> float:
        return self._time_window_hours

    @property
    def trades(self) -> tuple[ClassifiedTrade, ...]:
        return self.working_set.trades

    @property
    def filtered_trades(self) -> list[ClassifiedTrade]:
        return self.working_set.filtered(self._type_filter, self._min_premium)

    def top_trades(self, n: int = 5) -> list[ClassifiedTrade]:
        return self.working_set.top_by_quantity(n)

    @property
    def stats(self) -> FlowStats:
        return self.working_set.summary_stats()

    @property
    def filtered_stats(self) -> FlowStats:
        return self.working_set.summary_stats(self.filtered_trades)

    @property
    def spot_price(self) -> SpotPriceSnapshot:
        return self.working_set.spot_price

    @property
    def connection_state(self) -> ConnectionState:
        return self.connection.state

    @property
    def is_connected(self) -> bool:
        return self.connection.is_connected

    @property
    def error(self) -> Optional[str]:
        """Latest upstream error, else the connection's transport error."""
        return self._upstream_error or self.connection.error

    def snapshot(self) -> FlowSnapshot:
        return FlowSnapshot(
            currency=self._currency,
            trades=self.trades,
            filtered_trades=tuple(self.filtered_trades),
            top_trades=tuple(self.top_trades()),
            stats=self.stats,
            spot_price=self.spot_price,
            connection_state=self.connection_state,
            error=self.error,
            last_update=self.last_update,
        )

    async def select_currency(self, currency: str) -> None:
        """
        Switch the underlying currency.

        Clears open interest, marks the spot price stale, re-arms both refresh
        timers and requests fresh data immediately.

        Raises:
            ValueError: If currency is not configured
        """
        currency = currency.upper()
        if currency not in self.config.query.currencies:
            raise ValueError(f"Unsupported currency {currency}, expected one of {self.config.query.currencies}")
        if currency == self._currency:
            return

        logger.info(f"Currency {self._currency} → {currency}")
        self._currency = currency
        self.working_set.clear_open_interest()
        self.working_set.mark_spot_stale()

        if self._is_running:
            self._start_timers()
        await self.refresh()

    def set_type_filter(self, option_type: Union[OptionTypeFilter, str]) -> None:
        self._type_filter = OptionTypeFilter(option_type)

    def set_min_premium(self, min_premium: float) -> None:
        if min_premium < 0:
            raise ValueError(f"min_premium must be >= 0: {min_premium}")
        self._min_premium = float(min_premium)

    async def set_time_window(self, hours: float) -> None:
        """Change the trade-history window and re-request."""
        if hours <= 0:
            raise ValueError(f"time window must be > 0 hours: {hours}")
        self._time_window_hours = float(hours)
        await self.refresh_trades()

    def set_thresholds(
        self,
        min_premium_usd: Optional[float] = None,
        oi_percentage: Optional[float] = None,
    ) -> None:
        """
        Adjust unusual-flow thresholds at runtime and reclassify.

        Raises:
            ValueError: If the resulting thresholds are invalid
        """
        current = self.working_set.thresholds
        thresholds = FlowThresholds(
            min_premium_usd=current.min_premium_usd if min_premium_usd is None else float(min_premium_usd),
            oi_percentage=current.oi_percentage if oi_percentage is None else float(oi_percentage),
        )
        errors = thresholds.validate()
        if errors:
            raise ValueError("; ".join(errors))
        self.working_set.set_thresholds(thresholds)

    def set_foreground(self, visible: bool) -> None:
        """Visibility hook: backgrounded sessions do not reconnect."""
        self.connection.set_foreground(visible)

    async def refresh(self) -> Optional[int]:
        """
        Manual refresh: request trade history and the spot price.

        Returns:
            Trade-history call id, or None if not connected
        """
        call_id = await self.refresh_trades()
        await self.refresh_spot_price()
        return call_id

    async def refresh_trades(self) -> Optional[int]:
        now_ms = int(self._clock() * 1000)
        window_ms = int(self._time_window_hours * 60 * 60 * 1000)
        params = {
            "currency": self._currency,
            "instrument_type": "option",
            "from_timestamp": now_ms - window_ms,
            "to_timestamp": now_ms,
            "page_size": self.config.query.page_size,
        }
        self._upstream_error = None
        call_id = await self.connection.send(METHOD_TRADE_HISTORY, params)
        if call_id is None:
            logger.debug("Trade-history refresh skipped: not connected")
        return call_id

    async def refresh_spot_price(self) -> Optional[int]:
        return await self.connection.send(
            METHOD_TICKER, {"instrument_name": perp_instrument_name(self._currency)}
        )

    def on_trade_history(self, trades: list, call: Optional[PendingCall]) -> None:
        raw_trades = [RawTrade.from_feed(t) for t in trades]
        self.working_set.replace_trades(raw_trades)
        self.last_update = datetime.now()

        stats = self.working_set.summary_stats()
        logger.info(
            f"✓ Trade history: {stats.count} trades, {stats.unusual_count} unusual, "
            f"${stats.total_premium:,.0f} premium"
        )

        if raw_trades and self.config.query.max_ticker_instruments > 0:
            self._spawn(self._request_open_interest(raw_trades))

    def on_ticker(self, ticker: dict, call: Optional[PendingCall]) -> None:
        name = ticker.get("instrument_name")
        if not name and call is not None:
            name = call.params.get("instrument_name")

        if name and not is_perp_instrument(name):
            if "open_interest" in ticker:
                self.working_set.update_open_interest({name: coerce_float(ticker, "open_interest")})
            return

        if name and name.upper() != perp_instrument_name(self._currency):
            logger.debug(f"Ignoring spot ticker for {name} after switch to {self._currency}")
            return

        stats = ticker.get("stats")
        price = coerce_float(ticker, "mark_price", "index_price", "best_bid_price")
        change = coerce_float(stats, "price_change") if isinstance(stats, dict) else 0.0
        self.working_set.replace_spot_price(
            SpotPriceSnapshot(price=max(price, 0.0), change_24h_percent=change, is_stale=False)
        )
        logger.debug(f"Spot {name or self._currency}: {price:.2f} ({change:+.2f}%)")

    def on_spot_feed(self, prices: list, call: Optional[PendingCall]) -> None:
        if call is not None and call.params.get("currency", self._currency) != self._currency:
            logger.debug(f"Ignoring spot feed for {call.params['currency']} after switch to {self._currency}")
            return
        if not prices or not isinstance(prices[0], dict):
            logger.debug("Spot feed history returned no prices")
            return
        price = coerce_float(prices[0], "price")
        self.working_set.replace_spot_price(
            SpotPriceSnapshot(price=max(price, 0.0), change_24h_percent=0.0, is_stale=False)
        )

    def on_error(self, error: RpcError, call: Optional[PendingCall]) -> None:
        if call is not None and call.method == METHOD_TICKER:
            instrument = call.params.get("instrument_name")
            if not is_perp_instrument(instrument):
                # Missing open interest only skips the ratio check
                logger.debug(f"Open interest unavailable for {instrument}: {error.message}")
                return
            self._upstream_error = error.message
            self._spawn(self._request_spot_fallback())
            return

        self._upstream_error = error.message
        if call is not None and call.method == METHOD_SPOT_FEED_HISTORY:
            self.working_set.replace_spot_price(SpotPriceSnapshot(price=0.0, change_24h_percent=0.0, is_stale=True))

    def _on_connection_state(self, state: ConnectionState) -> None:
        if state == ConnectionState.CONNECTED:
            self._spawn(self.refresh())
        elif state == ConnectionState.DISCONNECTED:
            self.working_set.mark_spot_stale()

    async def _request_open_interest(self, raw_trades: list[RawTrade]) -> None:
        names: list[str] = []
        for trade in raw_trades:
            name = trade.instrument_name
            if name and not is_perp_instrument(name) and name not in names:
                names.append(name)
        names = names[: self.config.query.max_ticker_instruments]

        for name in names:
            if await self.connection.send(METHOD_TICKER, {"instrument_name": name}) is None:
                logger.debug("Open interest requests stopped: not connected")
                return
        logger.debug(f"Requested open interest for {len(names)} instruments")

    async def _request_spot_fallback(self) -> None:
        logger.info(f"Spot ticker failed, falling back to spot feed for {self._currency}")
        await self.connection.send(METHOD_SPOT_FEED_HISTORY, {"currency": self._currency, "page_size": 1})

    def _start_timers(self) -> None:
        for task in (self._trade_timer, self._spot_timer):
            if task is not None and not task.done():
                task.cancel()

        intervals = self.config.refresh_intervals
        self._trade_timer = asyncio.create_task(
            self._periodic(intervals.trade_history, self.refresh_trades, "trade history")
        )
        self._spot_timer = asyncio.create_task(
            self._periodic(intervals.spot_price, self.refresh_spot_price, "spot price")
        )

    async def _periodic(
        self,
        interval: float,
        action: Callable[[], Awaitable[Optional[int]]],
        name: str,
    ) -> None:
        while self._is_running:
            try:
                await asyncio.sleep(interval)
                if self._is_running:
                    await action()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.exception(f"{name} refresh failed: {e}")

    def _spawn(self, coro: Awaitable) -> None:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
