"""
Unit tests for TradeStore.
"""
import pytest
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from lastcall.domain.market import Side
from lastcall.domain.results import AssetScanResult, ScanSummary
from lastcall.domain.trade import Trade, TradeStatus, TradeType, new_trade_id


MARKET = "0x" + "cd" * 32


def make_trade(
    market_id: str = MARKET,
    status: TradeStatus = TradeStatus.OPEN,
    side: Side = Side.UP,
    price: str = "0.93",
    shares: str = "96",
    asset: str = "btc",
    created_at: datetime = None,
    **kwargs,
) -> Trade:
    return Trade(
        trade_id=new_trade_id(),
        market_id=market_id,
        market_label="Bitcoin Up or Down - 3PM ET",
        asset=asset,
        side=side,
        token_id="111111" if side is Side.UP else "222222",
        entry_price=Decimal(price),
        size_shares=Decimal(shares),
        cost=Decimal(price) * Decimal(shares),
        status=status,
        created_at=created_at or datetime.now(timezone.utc),
        **kwargs,
    )


class TestTradeRecords:
    """Test trade persistence."""

    @pytest.mark.asyncio
    async def test_save_and_get_round_trip(self, store):
        trade = make_trade(primary_order_id="order-1")
        await store.save_trade(trade)

        loaded = await store.get_trade(trade.trade_id)

        assert loaded.trade_id == trade.trade_id
        assert loaded.side is Side.UP
        assert loaded.status is TradeStatus.OPEN
        assert loaded.entry_price == Decimal("0.93")
        assert loaded.cost == Decimal("89.28")
        assert loaded.primary_order_id == "order-1"
        assert loaded.created_at == trade.created_at

    @pytest.mark.asyncio
    async def test_get_missing_trade(self, store):
        assert await store.get_trade("trade-missing") is None

    @pytest.mark.asyncio
    async def test_update_trade(self, store):
        trade = make_trade(status=TradeStatus.PENDING)
        await store.save_trade(trade)

        assert await store.update_trade(trade.copy(status=TradeStatus.FAILED, error="no balance"))

        loaded = await store.get_trade(trade.trade_id)
        assert loaded.status is TradeStatus.FAILED
        assert loaded.error == "no balance"

    @pytest.mark.asyncio
    async def test_update_unsaved_trade_returns_false(self, store):
        assert await store.update_trade(make_trade()) is False


class TestActiveTradeLookup:
    """Test the duplicate-trade lookups."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "status", [TradeStatus.PENDING, TradeStatus.PARTIAL, TradeStatus.OPEN]
    )
    async def test_active_statuses_found(self, store, status):
        trade = make_trade(status=status)
        await store.save_trade(trade)

        found = await store.find_open_trade_by_market(MARKET)
        assert found.trade_id == trade.trade_id

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "status", [TradeStatus.RESOLVED, TradeStatus.FAILED, TradeStatus.CANCELLED]
    )
    async def test_closed_statuses_ignored(self, store, status):
        await store.save_trade(make_trade(status=status))
        assert await store.find_open_trade_by_market(MARKET) is None

    @pytest.mark.asyncio
    async def test_find_by_secondary_token(self, store):
        trade = make_trade(
            trade_type=TradeType.STRADDLE,
            secondary_token_id="222222",
            secondary_price=Decimal("0.08"),
            secondary_size=Decimal("500"),
        )
        await store.save_trade(trade)

        found = await store.find_open_trade_by_token("222222")
        assert found.trade_id == trade.trade_id
        assert await store.find_open_trade_by_token("333333") is None

    @pytest.mark.asyncio
    async def test_open_and_recent_trades(self, store):
        now = datetime.now(timezone.utc)
        older = make_trade(market_id="m1", created_at=now - timedelta(minutes=5))
        newer = make_trade(market_id="m2", asset="eth", created_at=now)
        failed = make_trade(market_id="m3", status=TradeStatus.FAILED, created_at=now)
        for trade in (older, newer, failed):
            await store.save_trade(trade)

        open_ids = [t.trade_id for t in await store.get_open_trades()]
        recent = await store.get_recent_trades(limit=2)
        eth_only = await store.get_recent_trades(asset="ETH")

        assert open_ids == [older.trade_id, newer.trade_id]
        assert len(recent) == 2
        assert older.trade_id not in [t.trade_id for t in recent]
        assert [t.trade_id for t in eth_only] == [newer.trade_id]


class TestResolution:
    """Test realized PnL on market resolution."""

    @pytest.mark.asyncio
    async def test_winning_trade(self, store):
        trade = make_trade(side=Side.UP)
        await store.save_trade(trade)

        resolved = await store.resolve_trades_for_market(MARKET, Side.UP)

        assert len(resolved) == 1
        assert resolved[0].pnl == Decimal("96") - Decimal("89.28")
        loaded = await store.get_trade(trade.trade_id)
        assert loaded.status is TradeStatus.RESOLVED
        assert loaded.pnl == Decimal("6.72")
        assert loaded.resolved_at is not None

    @pytest.mark.asyncio
    async def test_losing_trade(self, store):
        await store.save_trade(make_trade(side=Side.UP))

        resolved = await store.resolve_trades_for_market(MARKET, Side.DOWN)
        assert resolved[0].pnl == Decimal("-89.28")

    @pytest.mark.asyncio
    async def test_straddle_pays_winning_leg(self, store):
        trade = make_trade(
            price="0.50",
            shares="90",
            trade_type=TradeType.STRADDLE,
            secondary_token_id="222222",
            secondary_price=Decimal("0.45"),
            secondary_size=Decimal("100"),
        )
        trade = trade.copy(cost=Decimal("90"))
        await store.save_trade(trade)

        resolved = await store.resolve_trades_for_market(MARKET, Side.DOWN)
        assert resolved[0].pnl == Decimal("10")

    @pytest.mark.asyncio
    async def test_unknown_winner_changes_nothing(self, store):
        trade = make_trade()
        await store.save_trade(trade)

        assert await store.resolve_trades_for_market(MARKET, None) == []
        assert (await store.get_trade(trade.trade_id)).status is TradeStatus.OPEN

    @pytest.mark.asyncio
    async def test_only_open_trades_are_resolved(self, store):
        await store.save_trade(make_trade(status=TradeStatus.FAILED))
        await store.save_trade(make_trade(status=TradeStatus.CANCELLED))

        assert await store.resolve_trades_for_market(MARKET, Side.UP) == []

    @pytest.mark.asyncio
    async def test_stats(self, store):
        await store.save_trade(make_trade(market_id="win"))
        await store.save_trade(make_trade(market_id="loss"))
        await store.save_trade(make_trade(market_id="open"))
        await store.resolve_trades_for_market("win", Side.UP)
        await store.resolve_trades_for_market("loss", Side.DOWN)

        stats = await store.get_stats()

        assert stats["total_trades"] == 3
        assert stats["open_trades"] == 1
        assert stats["wins"] == 1
        assert stats["losses"] == 1
        assert stats["win_rate"] == 0.5
        assert stats["realized_pnl"] == Decimal("-82.56")


class TestHistory:
    """Test scan and claim history."""

    @pytest.mark.asyncio
    async def test_scan_summary(self, store):
        summary = ScanSummary(forced=True)
        summary.add(AssetScanResult(asset="btc", markets_seen=2, opportunities=1, trades_executed=1))
        summary.finished_at = datetime.now(timezone.utc)
        await store.record_scan_summary(summary)

        history = await store.get_scan_history()

        assert len(history) == 1
        assert history[0]["forced"] is True
        assert history[0]["trades_executed"] == 1
        assert history[0]["assets"][0]["asset"] == "btc"

    @pytest.mark.asyncio
    async def test_claims_newest_first(self, store):
        await store.record_claim("m1", "success", asset="btc", tx_hash="0xaa")
        await store.record_claim("m2", "failed", asset="btc", error="reverted")

        claims = await store.get_claim_history()

        assert [c["market_id"] for c in claims] == ["m2", "m1"]
        assert claims[1]["tx_hash"] == "0xaa"
        assert claims[0]["error"] == "reverted"
