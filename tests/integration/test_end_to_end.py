"""
End-to-end flow tests.

Runs a FlowSession against the in-memory feed from connect through
ingestion, reconnect and racing trade-history responses.
"""

import pytest

from tests.fixtures.feed_fixtures import (
    TEST_NOW,
    make_trade,
    result_envelope,
    wait_until,
)
from whaleflow.core.models import FlagKind, FlowStats, OptionSide
from whaleflow.data.correlator import METHOD_TICKER, METHOD_TRADE_HISTORY
from whaleflow.data.flow_session import FlowSession
from whaleflow.utils.feed_connection import FeedConnectionManager

NOW_MS = int(TEST_NOW * 1000)


def history(*trades: dict) -> dict:
    return {"trades": list(trades), "pagination": {"num_pages": 1, "count": len(trades)}}


class TestEndToEnd:
    @pytest.mark.asyncio
    async def test_ingest_classify_and_view(self, flow_session, fake_connector):
        """One large call and one small put flow through to the views."""
        ws = fake_connector.latest

        ws.push(result_envelope(1, history(
            make_trade("ETH-20240315-3000-C", price=600, amount=25, timestamp=NOW_MS - 60_000, trade_id="large"),
            make_trade("ETH-20240315-2500-P", price=50, amount=10, timestamp=NOW_MS - 1_000, trade_id="small"),
        )))
        ws.push(result_envelope(2, {
            "instrument_name": "ETH-PERP",
            "mark_price": "3012.40",
            "index_price": "3011.00",
            "stats": {"price_change": "-1.25", "volume": "1000"},
        }))
        await wait_until(lambda: len(flow_session.trades) == 2 and not flow_session.spot_price.is_stale)

        assert flow_session.stats == FlowStats(count=2, unusual_count=1, total_premium=15500.0)

        large, small = flow_session.trades
        assert large.trade.trade_id == "large"
        assert large.has_flag(FlagKind.LARGE_PREMIUM)
        assert large.flags[0].label == "$15.00K Premium"
        assert large.instrument.strike == "3000"
        assert small.side == OptionSide.PUT
        assert not small.is_unusual

        assert flow_session.spot_price.price == 3012.40
        assert flow_session.spot_price.change_24h_percent == -1.25

        frame = flow_session.working_set.to_frame()
        assert frame["trade_id"].to_list() == ["large", "small"]

    @pytest.mark.asyncio
    async def test_reconnect_refreshes_and_keeps_data(self, flow_session, fake_connector):
        """A dropped socket reconnects and re-requests, data survives meanwhile."""
        first = fake_connector.latest
        first.push(result_envelope(1, history(make_trade(price=600, amount=25, trade_id="kept"))))
        await wait_until(lambda: len(flow_session.trades) == 1)

        first.drop()
        await wait_until(lambda: len(fake_connector.sockets) == 2)
        second = fake_connector.latest
        await wait_until(lambda: len(second.requests(METHOD_TRADE_HISTORY)) == 1)

        assert flow_session.is_connected
        assert [t.trade.trade_id for t in flow_session.trades] == ["kept"]
        assert second.requests(METHOD_TICKER)[0]["params"] == {"instrument_name": "ETH-PERP"}

        request_id = second.last_request(METHOD_TRADE_HISTORY)["id"]
        second.push(result_envelope(request_id, history(make_trade(price=1, amount=1, trade_id="fresh"))))
        await wait_until(lambda: flow_session.trades[0].trade.trade_id == "fresh")

        assert fake_connector.calls == 2

    @pytest.mark.parametrize("arrival", [("old", "new"), ("new", "old")])
    @pytest.mark.asyncio
    async def test_overlapping_trade_history_last_response_wins(self, flow_session, fake_connector, arrival):
        """Two trade-history requests in flight: whichever answer lands last is shown."""
        ws = fake_connector.latest
        new_id = await flow_session.refresh_trades()
        ids = {"old": 1, "new": new_id}

        for label in arrival:
            ws.push(result_envelope(ids[label], history(make_trade(trade_id=label))))
        await wait_until(lambda: flow_session.working_set.replace_count == 2)

        assert [t.trade.trade_id for t in flow_session.trades] == [arrival[-1]]

    @pytest.mark.asyncio
    async def test_independent_sessions(self, flow_config, fake_connector):
        """Two sessions on separate connections share no state."""
        sessions = [
            FlowSession(
                flow_config,
                connection=FeedConnectionManager.from_config(flow_config.feed, connector=fake_connector),
                clock=lambda: TEST_NOW,
            )
            for _ in range(2)
        ]
        for session in sessions:
            await session.start()
        await wait_until(lambda: len(fake_connector.sockets) == 2 and all(len(s.sent) >= 2 for s in fake_connector.sockets))

        first_ws, second_ws = fake_connector.sockets
        first_ws.push(result_envelope(1, history(make_trade(trade_id="only-first"))))
        await wait_until(lambda: len(sessions[0].trades) == 1)

        assert sessions[1].trades == ()
        assert first_ws.sent[0]["id"] == second_ws.sent[0]["id"] == 1

        await sessions[0].close()
        assert sessions[1].is_connected
        await sessions[1].close()
