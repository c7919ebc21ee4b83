"""Integration tests for whaleflow.

End-to-end flow tests that run a FlowSession against the in-memory feed
transport: connect, ingest, reconnect and overlapping refreshes.
"""
