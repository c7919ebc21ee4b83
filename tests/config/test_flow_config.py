"""
Tests for flow configuration loading.
"""

import pytest

from whaleflow.config.flow_config import FlowConfig, load_flow_config, merge_config_with_env
from whaleflow.utils.feed_connection import DERIVE_WS_URL

SAMPLE_YAML = """
feed:
  url: wss://api-demo.lyra.finance/ws
  reconnect_delay: 5
refresh_intervals:
  trade_history: 30
thresholds:
  min_premium_usd: 25000
  oi_percentage: 1.5
query:
  currency: btc
  time_window_hours: 12
logging:
  level: debug
  file: logs/whaleflow.log
"""

ENV_VARS = [
    "WHALEFLOW_WS_URL",
    "WHALEFLOW_CURRENCY",
    "WHALEFLOW_MIN_PREMIUM_USD",
    "WHALEFLOW_OI_PERCENTAGE",
    "WHALEFLOW_LOG_LEVEL",
    "WHALEFLOW_LOG_FILE",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "whaleflow.yaml"
    path.write_text(SAMPLE_YAML)
    return path


class TestDefaults:
    def test_default_values(self):
        config = FlowConfig()

        assert config.feed.url == DERIVE_WS_URL
        assert config.feed.reconnect_delay == 3.0
        assert config.refresh_intervals.trade_history == 60.0
        assert config.refresh_intervals.spot_price == 10.0
        assert config.thresholds.min_premium_usd == 10000.0
        assert config.thresholds.oi_percentage == 2.0
        assert config.query.currency == "ETH"
        assert config.query.currencies == ["ETH", "BTC", "SOL"]
        assert config.query.time_window_hours == 24.0
        assert config.query.page_size == 100
        assert config.query.max_ticker_instruments == 30
        assert config.validate() == []

    def test_from_empty_dict(self):
        assert FlowConfig.from_dict({}) == FlowConfig()


class TestValidate:
    @pytest.mark.parametrize(
        "data,fragment",
        [
            ({"feed": {"url": "https://example.com"}}, "Invalid feed url"),
            ({"refresh_intervals": {"spot_price": 0}}, "spot_price"),
            ({"thresholds": {"min_premium_usd": -1}}, "min_premium_usd"),
            ({"thresholds": {"oi_percentage": 0}}, "oi_percentage"),
            ({"query": {"currency": "DOGE"}}, "currency DOGE"),
            ({"query": {"page_size": 5000}}, "page_size"),
            ({"query": {"time_window_hours": 0}}, "time_window_hours"),
            ({"logging": {"level": "LOUD"}}, "Invalid log level"),
        ],
    )
    def test_invalid_values(self, data, fragment):
        errors = FlowConfig.from_dict(data).validate()

        assert any(fragment in e for e in errors)


class TestLoadFlowConfig:
    def test_load_yaml(self, config_file):
        config = load_flow_config(str(config_file))

        assert config.feed.url == "wss://api-demo.lyra.finance/ws"
        assert config.feed.reconnect_delay == 5.0
        assert config.refresh_intervals.trade_history == 30.0
        assert config.refresh_intervals.spot_price == 10.0
        assert config.thresholds.min_premium_usd == 25000.0
        assert config.thresholds.oi_percentage == 1.5
        assert config.query.currency == "BTC"
        assert config.query.time_window_hours == 12.0
        assert config.logging.level == "DEBUG"
        assert config.logging.file == "logs/whaleflow.log"

    def test_missing_file_uses_defaults(self, tmp_path):
        config = load_flow_config(str(tmp_path / "missing.yaml"))

        assert config == FlowConfig()

    def test_empty_file_uses_defaults(self, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("")

        assert load_flow_config(str(path)) == FlowConfig()

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "broken.yaml"
        path.write_text("feed: [unclosed\n")

        with pytest.raises(ValueError, match="Error parsing YAML"):
            load_flow_config(str(path))

    def test_invalid_values_raise(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("thresholds:\n  oi_percentage: -2\n")

        with pytest.raises(ValueError, match="Configuration validation errors"):
            load_flow_config(str(path))

    def test_env_overrides(self, config_file, monkeypatch):
        monkeypatch.setenv("WHALEFLOW_CURRENCY", "sol")
        monkeypatch.setenv("WHALEFLOW_MIN_PREMIUM_USD", "50000")
        monkeypatch.setenv("WHALEFLOW_LOG_LEVEL", "warning")

        config = load_flow_config(str(config_file))

        assert config.query.currency == "SOL"
        assert config.query.time_window_hours == 12.0
        assert config.thresholds.min_premium_usd == 50000.0
        assert config.logging.level == "WARNING"


class TestMergeConfigWithEnv:
    def test_creates_missing_sections(self, monkeypatch):
        monkeypatch.setenv("WHALEFLOW_WS_URL", "ws://localhost:9000")
        monkeypatch.setenv("WHALEFLOW_OI_PERCENTAGE", "3")

        merged = merge_config_with_env({})

        assert merged == {"feed": {"url": "ws://localhost:9000"}, "thresholds": {"oi_percentage": 3.0}}

    def test_no_env_leaves_data_untouched(self):
        data = {"query": {"currency": "ETH"}}

        assert merge_config_with_env(data) == {"query": {"currency": "ETH"}}
