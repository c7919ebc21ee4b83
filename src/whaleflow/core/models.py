"""
Data models for the whaleflow ingestion engine.

This module contains the value types shared by the parser, classifier,
working set and feed session, kept here to avoid circular imports.

Key patterns:
- dataclass(frozen=True, slots=True) for trade values (never mutated after creation)
- str Enums so values serialize cleanly to logs and frames
- Feed payloads are coerced on entry; bad numeric fields fall back to zero
"""

import math
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional


class OptionSide(str, Enum):
    """Option side decoded from an instrument name."""

    CALL = "CALL"
    PUT = "PUT"
    UNKNOWN = "UNKNOWN"


class OptionTypeFilter(str, Enum):
    """Side filter applied to the working set."""

    ALL = "ALL"
    CALL = "CALL"
    PUT = "PUT"


class FlagKind(str, Enum):
    """Unusual-flow heuristic that fired for a trade."""

    LARGE_PREMIUM = "LARGE_PREMIUM"  # premium >= min_premium_usd
    HIGH_OI_RATIO = "HIGH_OI_RATIO"  # size >= oi_percentage of open interest


class ConnectionState(str, Enum):
    """
    Feed connection states.

    Transitions:
        DISCONNECTED → CONNECTING: connect requested
        CONNECTING → CONNECTED: transport open
        CONNECTING/CONNECTED → DISCONNECTED: transport close or error
    """

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


def coerce_float(payload: dict, *names: str) -> float:
    """
    Read the first present, non-empty field from payload as a float.

    Fields are tried in order (primary name first, then legacy aliases).
    A numeric zero counts as absent and falls through to the next alias;
    the string "0" does not. Missing or unparseable values resolve to 0.0.

    Args:
        payload: Raw feed dict
        *names: Candidate field names in priority order

    Returns:
        Parsed float, or 0.0
    """
    for name in names:
        value = payload.get(name)
        if value is None or value == "" or (not isinstance(value, str) and value == 0):
            continue
        try:
            number = float(value)
        except (TypeError, ValueError, OverflowError):
            return 0.0
        return number if math.isfinite(number) else 0.0
    return 0.0


@dataclass(frozen=True, slots=True)
class RawTrade:
    """
    Trade record as received from the feed.

    Attributes:
        instrument_name: Exchange instrument identifier (e.g. ETH-20240315-3000-C)
        price: Trade price in quote currency
        quantity: Signed traded size (only the magnitude is meaningful)
        timestamp: Trade time in milliseconds since epoch
        trade_id: Opaque exchange trade identifier
        raw: Original payload, kept for debugging
    """

    instrument_name: str
    price: float
    quantity: float
    timestamp: int
    trade_id: str = ""
    raw: dict = field(default_factory=dict, compare=False, repr=False)

    @classmethod
    def from_feed(cls, payload: dict) -> "RawTrade":
        """Build a RawTrade from a get_trade_history item without raising."""
        if not isinstance(payload, dict):
            payload = {}
        return cls(
            instrument_name=str(payload.get("instrument_name") or ""),
            price=coerce_float(payload, "trade_price", "price"),
            quantity=coerce_float(payload, "trade_amount", "amount"),
            timestamp=int(coerce_float(payload, "timestamp")),
            trade_id=str(payload.get("trade_id") or ""),
            raw=payload,
        )


@dataclass(frozen=True, slots=True)
class ParsedInstrument:
    """Instrument name decomposed into its parts."""

    currency: str
    expiry: str
    strike: str
    side: OptionSide


@dataclass(frozen=True, slots=True)
class Flag:
    """A fired heuristic plus its display label."""

    kind: FlagKind
    label: str


@dataclass(frozen=True, slots=True)
class ClassifiedTrade:
    """
    RawTrade enriched with premium, flags and parsed instrument.

    Created once per RawTrade during ingestion and never updated; a new
    classification produces a new value.

    Attributes:
        trade: Source trade
        premium: price × |quantity|, never negative
        flags: Heuristics that fired (empty when the trade is ordinary)
        instrument: Parsed instrument name
    """

    trade: RawTrade
    premium: float
    flags: tuple[Flag, ...]
    instrument: ParsedInstrument

    @property
    def is_unusual(self) -> bool:
        return len(self.flags) > 0

    @property
    def timestamp(self) -> int:
        return self.trade.timestamp

    @property
    def quantity(self) -> float:
        return self.trade.quantity

    @property
    def abs_quantity(self) -> float:
        return abs(self.trade.quantity)

    @property
    def side(self) -> OptionSide:
        return self.instrument.side

    def has_flag(self, kind: FlagKind) -> bool:
        return any(flag.kind == kind for flag in self.flags)

    def to_dict(self) -> dict[str, Any]:
        """Flatten to a row dict for frame construction."""
        return {
            "timestamp": self.trade.timestamp,
            "instrument_name": self.trade.instrument_name,
            "trade_id": self.trade.trade_id,
            "currency": self.instrument.currency,
            "expiry": self.instrument.expiry,
            "strike": self.instrument.strike,
            "side": self.instrument.side.value,
            "quantity": self.abs_quantity,
            "price": self.trade.price,
            "premium": self.premium,
            "is_unusual": self.is_unusual,
            "flags": ", ".join(flag.label for flag in self.flags),
        }


@dataclass(frozen=True, slots=True)
class SpotPriceSnapshot:
    """
    Reference spot price for the selected currency.

    Replaced wholesale on each ticker result, never merged.
    """

    price: float = 0.0
    change_24h_percent: float = 0.0
    is_stale: bool = True

    def __post_init__(self):
        if self.price < 0:
            raise ValueError(f"Spot price cannot be negative: {self.price}")


@dataclass(frozen=True, slots=True)
class PendingCall:
    """
    Outbound request awaiting its response.

    Attributes:
        id: Monotonic call id assigned by the connection manager
        method: JSON-RPC method name
        issued_at: When the request was transmitted
        params: Request params (used to tell spot tickers from option tickers)
    """

    id: int
    method: str
    issued_at: datetime
    params: dict = field(default_factory=dict, compare=False)


@dataclass(slots=True)
class FlowThresholds:
    """
    Unusual-flow thresholds.

    Attributes:
        min_premium_usd: Premium at or above which LARGE_PREMIUM fires
        oi_percentage: Share of open interest (percent) at or above which HIGH_OI_RATIO fires
    """

    min_premium_usd: float = 10000.0
    oi_percentage: float = 2.0

    def validate(self) -> list[str]:
        errors = []
        if self.min_premium_usd < 0:
            errors.append(f"min_premium_usd must be >= 0: {self.min_premium_usd}")
        if self.oi_percentage <= 0:
            errors.append(f"oi_percentage must be > 0: {self.oi_percentage}")
        return errors


@dataclass(frozen=True, slots=True)
class FlowStats:
    """Summary over a set of classified trades."""

    count: int = 0
    unusual_count: int = 0
    total_premium: float = 0.0


@dataclass(frozen=True, slots=True)
class RpcError:
    """Upstream error object from a JSON-RPC envelope."""

    message: str
    code: Optional[int] = None
    data: Any = None
