"""
Unit tests for unusual-flow classification.

Covers premium computation, both heuristic checks, label formatting and
fallback behaviour for malformed trades.
"""

import pytest

from whaleflow.core.classifier import classify_trade, format_usd_compact
from whaleflow.core.models import FlagKind, FlowThresholds, OptionSide, RawTrade


def trade(price: float, quantity: float, name: str = "ETH-20240315-3000-C") -> RawTrade:
    return RawTrade(instrument_name=name, price=price, quantity=quantity, timestamp=1_000, trade_id="t1")


@pytest.fixture
def thresholds():
    return FlowThresholds(min_premium_usd=10000, oi_percentage=2)


class TestPremium:
    """Test premium = price × |quantity|."""

    @pytest.mark.parametrize(
        "price,quantity,expected",
        [
            (500, 25, 12500),
            (500, -25, 12500),
            (0.5, 3, 1.5),
            (0, 100, 0),
            (100, 0, 0),
        ],
    )
    def test_premium(self, thresholds, price, quantity, expected):
        classified = classify_trade(trade(price, quantity), thresholds)

        assert classified.premium == pytest.approx(expected)
        assert classified.premium >= 0

    def test_parsed_instrument_attached(self, thresholds):
        classified = classify_trade(trade(1, 1, "BTC-20240628-65000-P"), thresholds)

        assert classified.instrument.currency == "BTC"
        assert classified.side == OptionSide.PUT


class TestLargePremium:
    """Test LARGE_PREMIUM check."""

    def test_above_threshold_flags(self, thresholds):
        classified = classify_trade(trade(500, 25), thresholds)

        assert classified.has_flag(FlagKind.LARGE_PREMIUM)
        assert classified.is_unusual
        assert classified.flags[0].label == "$12.50K Premium"

    def test_just_below_threshold_not_flagged(self, thresholds):
        classified = classify_trade(trade(9999.99, 1), thresholds)

        assert not classified.has_flag(FlagKind.LARGE_PREMIUM)
        assert not classified.is_unusual
        assert classified.flags == ()

    def test_threshold_is_inclusive(self, thresholds):
        assert classify_trade(trade(10000, 1), thresholds).has_flag(FlagKind.LARGE_PREMIUM)


class TestHighOiRatio:
    """Test HIGH_OI_RATIO check."""

    def test_ratio_above_threshold_flags(self, thresholds):
        classified = classify_trade(trade(1, 21), thresholds, open_interest=1000)

        assert classified.has_flag(FlagKind.HIGH_OI_RATIO)
        assert classified.flags[0].label == "2.1% of OI"

    def test_ratio_below_threshold_not_flagged(self, thresholds):
        classified = classify_trade(trade(1, 19), thresholds, open_interest=1000)

        assert not classified.has_flag(FlagKind.HIGH_OI_RATIO)

    def test_negative_quantity_uses_magnitude(self, thresholds):
        assert classify_trade(trade(1, -21), thresholds, open_interest=1000).has_flag(FlagKind.HIGH_OI_RATIO)

    @pytest.mark.parametrize("open_interest", [None, 0, -50])
    def test_unknown_or_non_positive_oi_skips_check(self, thresholds, open_interest):
        classified = classify_trade(trade(1, 1_000_000), thresholds, open_interest=open_interest)

        assert not classified.has_flag(FlagKind.HIGH_OI_RATIO)

    def test_both_flags_independent(self, thresholds):
        classified = classify_trade(trade(1000, 50), thresholds, open_interest=100)

        assert [f.kind for f in classified.flags] == [FlagKind.LARGE_PREMIUM, FlagKind.HIGH_OI_RATIO]


class TestPurity:
    """classify_trade depends only on its inputs."""

    def test_same_inputs_same_output(self, thresholds):
        raw = trade(600, 25)

        assert classify_trade(raw, thresholds, 500) == classify_trade(raw, thresholds, 500)

    def test_thresholds_change_result(self):
        raw = trade(50, 10)

        assert not classify_trade(raw, FlowThresholds(min_premium_usd=10000)).is_unusual
        assert classify_trade(raw, FlowThresholds(min_premium_usd=100)).is_unusual


class TestMalformedTrades:
    """Missing or bad numeric fields fall back to zero."""

    def test_missing_fields(self, thresholds):
        raw = RawTrade.from_feed({"instrument_name": "ETH-20240315-3000-C"})
        classified = classify_trade(raw, thresholds)

        assert classified.premium == 0
        assert not classified.is_unusual

    def test_unparseable_fields(self, thresholds):
        raw = RawTrade.from_feed({"trade_price": "abc", "trade_amount": None})

        assert classify_trade(raw, thresholds).premium == 0


class TestFormatUsdCompact:
    @pytest.mark.parametrize(
        "amount,expected",
        [
            (950, "$950.00"),
            (12500, "$12.50K"),
            (1_500_000, "$1.50M"),
        ],
    )
    def test_format(self, amount, expected):
        assert format_usd_compact(amount) == expected
