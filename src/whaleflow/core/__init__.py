"""
Core value types and pure functions: instrument parsing and trade classification.
"""

from whaleflow.core.classifier import classify_trade, format_usd_compact
from whaleflow.core.instrument import parse_instrument, perp_instrument_name
from whaleflow.core.models import (
    ClassifiedTrade,
    ConnectionState,
    Flag,
    FlagKind,
    FlowStats,
    FlowThresholds,
    OptionSide,
    OptionTypeFilter,
    ParsedInstrument,
    PendingCall,
    RawTrade,
    RpcError,
    SpotPriceSnapshot,
)

__all__ = [
    "ClassifiedTrade",
    "ConnectionState",
    "Flag",
    "FlagKind",
    "FlowStats",
    "FlowThresholds",
    "OptionSide",
    "OptionTypeFilter",
    "ParsedInstrument",
    "PendingCall",
    "RawTrade",
    "RpcError",
    "SpotPriceSnapshot",
    "classify_trade",
    "format_usd_compact",
    "parse_instrument",
    "perp_instrument_name",
]
