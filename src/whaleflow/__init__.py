"""
whaleflow - unusual options flow ingestion for the Derive exchange.

Streams option trade history over a JSON-RPC WebSocket, flags unusual
trades (large premium, high share of open interest) and keeps a live,
filterable working set plus a reference spot price.
"""

__version__ = "0.1.0"
