"""
whaleflow Configuration Module
"""

from whaleflow.config.flow_config import (
    FeedConfig,
    FlowConfig,
    LoggingConfig,
    QueryConfig,
    RefreshIntervals,
    load_flow_config,
)

__all__ = [
    "FeedConfig",
    "FlowConfig",
    "LoggingConfig",
    "QueryConfig",
    "RefreshIntervals",
    "load_flow_config",
]
