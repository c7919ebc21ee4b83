from whaleflow.utils.feed_connection import FeedConnectionManager
from whaleflow.utils.log_setup import configure_logging

__all__ = ["FeedConnectionManager", "configure_logging"]
