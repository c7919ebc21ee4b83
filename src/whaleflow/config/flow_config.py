"""
Flow Configuration Loader

Loads and validates whaleflow configuration from a YAML file, with
environment variable overrides.

Config location: config/whaleflow.yaml

Schema:
- feed: WebSocket endpoint and reconnect settings
- refresh_intervals: Periodic request intervals (seconds)
- thresholds: Unusual-flow thresholds
- query: Currency selection and trade-history request shape
- logging: loguru sink settings
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from loguru import logger

from whaleflow.core.models import FlowThresholds
from whaleflow.utils.feed_connection import DERIVE_WS_URL


@dataclass
class FeedConfig:
    """Feed connection configuration."""
    url: str = DERIVE_WS_URL
    connect_timeout: float = 10.0
    reconnect_delay: float = 3.0


@dataclass
class RefreshIntervals:
    """Refresh interval configuration (seconds)."""
    trade_history: float = 60.0   # 1 minute
    spot_price: float = 10.0


@dataclass
class QueryConfig:
    """Trade-history query configuration."""
    currency: str = "ETH"
    currencies: List[str] = field(default_factory=lambda: ["ETH", "BTC", "SOL"])
    time_window_hours: float = 24.0
    page_size: int = 100
    max_ticker_instruments: int = 30


@dataclass
class LoggingConfig:
    """Logging sink configuration."""
    level: str = "INFO"
    file: Optional[str] = None
    rotation: str = "10 MB"
    retention: str = "7 days"


@dataclass
class FlowConfig:
    """Complete whaleflow configuration."""

    feed: FeedConfig = field(default_factory=FeedConfig)
    refresh_intervals: RefreshIntervals = field(default_factory=RefreshIntervals)
    thresholds: FlowThresholds = field(default_factory=FlowThresholds)
    query: QueryConfig = field(default_factory=QueryConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @classmethod
    def from_dict(cls, data: dict) -> "FlowConfig":
        """Create config from dictionary with nested dataclass instantiation."""
        feed = data.get("feed") or {}
        intervals = data.get("refresh_intervals") or {}
        thresholds = data.get("thresholds") or {}
        query = data.get("query") or {}
        log = data.get("logging") or {}

        return cls(
            feed=FeedConfig(
                url=feed.get("url", DERIVE_WS_URL),
                connect_timeout=float(feed.get("connect_timeout", 10.0)),
                reconnect_delay=float(feed.get("reconnect_delay", 3.0)),
            ),
            refresh_intervals=RefreshIntervals(
                trade_history=float(intervals.get("trade_history", 60.0)),
                spot_price=float(intervals.get("spot_price", 10.0)),
            ),
            thresholds=FlowThresholds(
                min_premium_usd=float(thresholds.get("min_premium_usd", 10000.0)),
                oi_percentage=float(thresholds.get("oi_percentage", 2.0)),
            ),
            query=QueryConfig(
                currency=str(query.get("currency", "ETH")).upper(),
                currencies=[str(c).upper() for c in query.get("currencies", ["ETH", "BTC", "SOL"])],
                time_window_hours=float(query.get("time_window_hours", 24.0)),
                page_size=int(query.get("page_size", 100)),
                max_ticker_instruments=int(query.get("max_ticker_instruments", 30)),
            ),
            logging=LoggingConfig(
                level=str(log.get("level", "INFO")).upper(),
                file=log.get("file"),
                rotation=log.get("rotation", "10 MB"),
                retention=log.get("retention", "7 days"),
            ),
        )

    def validate(self) -> List[str]:
        """
        Validate configuration.

        Returns:
            List of validation errors (empty if valid)
        """
        errors = []

        if not self.feed.url.startswith(("ws://", "wss://")):
            errors.append(f"Invalid feed url (expected ws:// or wss://): {self.feed.url}")
        if self.feed.connect_timeout <= 0:
            errors.append(f"Invalid connect_timeout: {self.feed.connect_timeout}")
        if self.feed.reconnect_delay < 0:
            errors.append(f"Invalid reconnect_delay: {self.feed.reconnect_delay}")

        if self.refresh_intervals.trade_history < 1:
            errors.append("trade_history must be >= 1 second")
        if self.refresh_intervals.spot_price < 1:
            errors.append("spot_price must be >= 1 second")

        errors.extend(self.thresholds.validate())

        if not self.query.currencies:
            errors.append("currencies cannot be empty")
        elif self.query.currency not in self.query.currencies:
            errors.append(f"currency {self.query.currency} not in {self.query.currencies}")
        if self.query.time_window_hours <= 0:
            errors.append(f"time_window_hours must be > 0: {self.query.time_window_hours}")
        if not (1 <= self.query.page_size <= 1000):
            errors.append(f"page_size must be between 1 and 1000: {self.query.page_size}")
        if self.query.max_ticker_instruments < 0:
            errors.append(f"max_ticker_instruments must be >= 0: {self.query.max_ticker_instruments}")

        if self.logging.level not in ("TRACE", "DEBUG", "INFO", "SUCCESS", "WARNING", "ERROR", "CRITICAL"):
            errors.append(f"Invalid log level: {self.logging.level}")

        return errors


def merge_config_with_env(config_data: Dict[str, Any]) -> Dict[str, Any]:
    """
    Merge configuration with environment variables.

    Environment variables override config file settings.

    Examples:
        WHALEFLOW_WS_URL=wss://api-demo.lyra.finance/ws
        WHALEFLOW_CURRENCY=BTC
        WHALEFLOW_MIN_PREMIUM_USD=25000

    Args:
        config_data: Configuration data from file

    Returns:
        Merged configuration with env vars applied
    """
    env_mapping = {
        "WHALEFLOW_WS_URL": ("feed", "url"),
        "WHALEFLOW_CURRENCY": ("query", "currency"),
        "WHALEFLOW_MIN_PREMIUM_USD": ("thresholds", "min_premium_usd"),
        "WHALEFLOW_OI_PERCENTAGE": ("thresholds", "oi_percentage"),
        "WHALEFLOW_LOG_LEVEL": ("logging", "level"),
        "WHALEFLOW_LOG_FILE": ("logging", "file"),
    }

    for env_var, (section, key) in env_mapping.items():
        env_value = os.environ.get(env_var)
        if env_value is None:
            continue

        section_data = config_data.get(section) or {}
        if key in ("min_premium_usd", "oi_percentage"):
            section_data[key] = float(env_value)
        else:
            section_data[key] = env_value
        config_data[section] = section_data

        logger.debug(f"Overriding {section}.{key} from env: {env_var}")

    return config_data


def load_flow_config(config_path: Optional[str] = None) -> FlowConfig:
    """
    Load whaleflow configuration from YAML file.

    Args:
        config_path: Path to config file (default: config/whaleflow.yaml)

    Returns:
        FlowConfig object

    Raises:
        ValueError: If configuration is invalid
    """
    if config_path is None:
        config_path = Path("config") / "whaleflow.yaml"

    config_file = Path(config_path)
    data: Dict[str, Any] = {}

    if not config_file.exists():
        logger.warning(f"Flow config file not found: {config_file}, using defaults")
    else:
        try:
            with open(config_file, "r") as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ValueError(f"Error parsing YAML config: {e}")

        if not data:
            logger.warning(f"Empty config file: {config_file}, using defaults")

    config = FlowConfig.from_dict(merge_config_with_env(data))

    errors = config.validate()
    if errors:
        error_msg = "Configuration validation errors:\n" + "\n".join(f"  - {e}" for e in errors)
        raise ValueError(error_msg)

    logger.info(f"✓ Loaded flow config ({config_file if config_file.exists() else 'defaults'})")
    logger.debug(f"  Feed: {config.feed.url}")
    logger.debug(f"  Currency: {config.query.currency}, window {config.query.time_window_hours}h")
    logger.debug(
        f"  Thresholds: premium >= {config.thresholds.min_premium_usd}, "
        f"OI >= {config.thresholds.oi_percentage}%"
    )

    return config
