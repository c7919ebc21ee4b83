"""
whaleflow Data Package

- Request/response correlation for the JSON-RPC feed
- Working set of classified trades and the spot-price snapshot
- Flow session tying connection, correlator and working set to one view
"""

from whaleflow.data.correlator import (
    EnvelopeDecodeError,
    FeedMessageHandler,
    ResponseCorrelator,
)
from whaleflow.data.flow_session import FlowSession, FlowSnapshot
from whaleflow.data.working_set import TradeWorkingSet

__all__ = [
    "EnvelopeDecodeError",
    "FeedMessageHandler",
    "FlowSession",
    "FlowSnapshot",
    "ResponseCorrelator",
    "TradeWorkingSet",
]
