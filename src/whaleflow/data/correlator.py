"""
Request/response correlation for the JSON-RPC feed.

Every inbound message passes through ResponseCorrelator.on_message:

1. Decode the envelope (malformed messages are logged and dropped)
2. Resolve the response id against the pending-call table
3. Error envelopes go to the error handler; nothing else is processed
4. Results are routed by the pending call's method when the id is known,
   and by payload shape otherwise (unsolicited pushes, unknown ids)

Unrecognized payload shapes are ignored so additive upstream fields
never break ingestion.
"""

import json
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Optional, Protocol, runtime_checkable

from loguru import logger

from whaleflow.core.models import PendingCall, RpcError

METHOD_TRADE_HISTORY = "public/get_trade_history"
METHOD_TICKER = "public/get_ticker"
METHOD_SPOT_FEED_HISTORY = "public/get_spot_feed_history"


class EnvelopeDecodeError(Exception):
    """Inbound message is not a decodable JSON-RPC envelope."""


class Route(str, Enum):
    """Destination for a result payload."""

    TRADE_HISTORY = "trade_history"
    TICKER = "ticker"
    SPOT_FEED = "spot_feed"


METHOD_ROUTES = {
    METHOD_TRADE_HISTORY: Route.TRADE_HISTORY,
    METHOD_TICKER: Route.TICKER,
    METHOD_SPOT_FEED_HISTORY: Route.SPOT_FEED,
}


@runtime_checkable
class FeedMessageHandler(Protocol):
    """Protocol for consumers of routed feed payloads."""

    def on_trade_history(self, trades: list, call: Optional[PendingCall]) -> None:
        """Handle a trade-history result (full snapshot)."""
        ...

    def on_ticker(self, ticker: dict, call: Optional[PendingCall]) -> None:
        """Handle a ticker result."""
        ...

    def on_spot_feed(self, prices: list, call: Optional[PendingCall]) -> None:
        """Handle a spot-feed history result."""
        ...

    def on_error(self, error: RpcError, call: Optional[PendingCall]) -> None:
        """Handle an upstream error envelope."""
        ...


@dataclass(slots=True)
class CorrelatorStats:
    """Counters for inbound traffic."""
    received: int = 0
    dropped: int = 0
    errors: int = 0
    ignored: int = 0
    unmatched: int = 0


def decode_envelope(raw: Any) -> dict:
    """
    Decode one inbound message into an envelope dict.

    Raises:
        EnvelopeDecodeError: If the message is not a JSON object
    """
    if isinstance(raw, (bytes, bytearray)):
        raw = raw.decode("utf-8", errors="replace")
    try:
        envelope = json.loads(raw)
    except (TypeError, ValueError) as e:
        raise EnvelopeDecodeError(f"invalid JSON: {e}") from e
    if not isinstance(envelope, dict):
        raise EnvelopeDecodeError(f"envelope is {type(envelope).__name__}, expected object")
    return envelope


def parse_rpc_error(error: Any) -> RpcError:
    """Normalize an envelope's error member."""
    if isinstance(error, dict):
        code = error.get("code")
        return RpcError(
            message=str(error.get("message") or "API Error"),
            code=code if isinstance(code, int) else None,
            data=error.get("data"),
        )
    return RpcError(message=str(error) if error else "API Error")


def route_for(call: Optional[PendingCall], result: dict) -> Optional[Route]:
    """
    Pick the destination for a result payload.

    The recorded method wins when the call is known; otherwise the payload
    shape decides. Returns None for unrecognized shapes.
    """
    if call is not None and call.method in METHOD_ROUTES:
        return METHOD_ROUTES[call.method]

    if "trades" in result:
        return Route.TRADE_HISTORY
    if "mark_price" in result or "index_price" in result:
        return Route.TICKER
    if "prices" in result:
        return Route.SPOT_FEED
    return None


class ResponseCorrelator:
    """
    Routes inbound envelopes to a FeedMessageHandler.

    Attributes:
        stats: Inbound traffic counters
    """

    def __init__(
        self,
        resolve_call: Callable[[Any], Optional[PendingCall]],
        handler: FeedMessageHandler,
    ):
        """
        Initialize correlator.

        Args:
            resolve_call: Pops the pending call for a response id (None if unknown)
            handler: Receives routed payloads
        """
        self._resolve_call = resolve_call
        self._handler = handler
        self.stats = CorrelatorStats()

    def on_message(self, raw: Any) -> None:
        """Process one inbound transport message to completion."""
        self.stats.received += 1

        try:
            envelope = decode_envelope(raw)
        except EnvelopeDecodeError as e:
            self.stats.dropped += 1
            logger.warning(f"Dropping malformed feed message: {e}")
            return

        call = self._resolve_call(envelope.get("id"))
        if call is None and "id" in envelope:
            self.stats.unmatched += 1

        if envelope.get("error") is not None:
            self.stats.errors += 1
            error = parse_rpc_error(envelope["error"])
            method = call.method if call else "unknown call"
            logger.warning(f"Feed error for {method} (id={envelope.get('id')}): {error.message}")
            self._handler.on_error(error, call)
            return

        result = envelope.get("result")
        if not isinstance(result, dict):
            self.stats.ignored += 1
            logger.debug(f"Ignoring envelope without result object (id={envelope.get('id')})")
            return

        route = route_for(call, result)
        if route is None:
            self.stats.ignored += 1
            logger.debug(f"Ignoring unrecognized payload keys: {sorted(result)[:8]}")
            return

        if route == Route.TRADE_HISTORY:
            trades = result.get("trades")
            self._handler.on_trade_history(trades if isinstance(trades, list) else [], call)
        elif route == Route.TICKER:
            self._handler.on_ticker(result, call)
        else:
            prices = result.get("prices")
            self._handler.on_spot_feed(prices if isinstance(prices, list) else [], call)
