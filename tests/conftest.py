"""Shared pytest fixtures for whaleflow tests."""

import sys
from pathlib import Path

# Add project root and src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

# Import all fixtures for global availability
from tests.fixtures.feed_fixtures import *  # noqa: E402,F401,F403
