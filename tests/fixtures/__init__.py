"""Test fixtures for whaleflow tests.

This package provides reusable test fixtures for:
- In-memory feed transport (FakeWebSocket, FakeConnector)
- Connection managers and started flow sessions
- Derive JSON-RPC payload builders

Fixtures are auto-discovered by pytest through conftest.py.
"""

from tests.fixtures.feed_fixtures import (
    connection,
    fake_connector,
    flow_config,
    flow_session,
)

__all__ = [
    "connection",
    "fake_connector",
    "flow_config",
    "flow_session",
]
