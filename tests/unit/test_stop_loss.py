"""
Unit tests for StopLossMonitor.
"""
import asyncio
import pytest
from decimal import Decimal
from unittest.mock import AsyncMock

from lastcall.core.errors import StopLossInProgressError
from lastcall.domain.market import Position, Side
from lastcall.domain.settings import StopLossSettings
from lastcall.domain.trade import Trade, TradeStatus, new_trade_id
from lastcall.services.execution import ExecutionEngine
from lastcall.services.stop_loss import StopLossMonitor


def position(token_id: str = "111111", price: str = "0.60", size: str = "95", **kwargs) -> Position:
    return Position(
        token_id=token_id,
        size_shares=Decimal(size),
        current_price=Decimal(price),
        **kwargs,
    )


@pytest.fixture
def engine(mock_clob, store):
    return ExecutionEngine(mock_clob, store, leg_delay_seconds=0)


@pytest.fixture
def monitor(mock_clob, engine, store):
    return StopLossMonitor(mock_clob, engine, store, StopLossSettings())


class TestShouldSell:
    @pytest.mark.parametrize(
        "pos,expected",
        [
            (position(price="0.69"), True),
            (position(price="0.70"), False),
            (position(price="0.95"), False),
            (position(price="0.10", resolved=True), False),
            (position(price="0.10", size="0"), False),
        ],
    )
    def test_threshold(self, monitor, pos, expected):
        assert monitor.should_sell(pos) is expected


class TestStopLossPass:
    """Test full passes over held positions."""

    @pytest.mark.asyncio
    async def test_sells_only_below_threshold(self, monitor, mock_clob):
        mock_clob.get_positions.return_value = [
            position("111111", price="0.60"),
            position("333333", price="0.92"),
        ]

        report = await monitor.tick()

        assert report.checked == 2
        assert report.sold == 1
        mock_clob.submit_order.assert_awaited_once()
        assert mock_clob.submit_order.await_args.args[0] == "111111"

    @pytest.mark.asyncio
    async def test_threshold_boundary_scenario(self, monitor, mock_clob):
        mock_clob.get_positions.return_value = [
            position("111111", price="0.65"),
            position("333333", price="0.75"),
        ]

        report = await monitor.tick()

        assert report.sold == 1
        mock_clob.submit_order.assert_awaited_once()
        token_id, _, size, _ = mock_clob.submit_order.await_args.args
        assert token_id == "111111"
        assert size == Decimal("95")

    @pytest.mark.asyncio
    async def test_store_failure_does_not_stop_pass(self, monitor, mock_clob, store):
        store.find_open_trade_by_token = AsyncMock(side_effect=RuntimeError("database is locked"))
        mock_clob.get_positions.return_value = [
            position("111111", price="0.60"),
            position("333333", price="0.60"),
        ]

        report = await monitor.check_now()

        assert report.sold == 2
        assert report.failed == 0
        assert mock_clob.submit_order.await_count == 2
        assert not monitor.is_checking

    @pytest.mark.asyncio
    async def test_closes_matching_trade(self, monitor, mock_clob, store):
        trade = Trade(
            trade_id=new_trade_id(),
            market_id="m1",
            market_label="",
            asset="btc",
            side=Side.UP,
            token_id="111111",
            entry_price=Decimal("0.92"),
            size_shares=Decimal("95"),
            cost=Decimal("87.40"),
            status=TradeStatus.OPEN,
        )
        await store.save_trade(trade)
        mock_clob.get_positions.return_value = [position("111111", price="0.60")]

        await monitor.tick()

        loaded = await store.get_trade(trade.trade_id)
        assert loaded.status is TradeStatus.RESOLVED
        assert loaded.error == "stop-loss exit"
        # Sold 95 shares at the 0.90 bid
        assert loaded.pnl == Decimal("85.50") - Decimal("87.40")

    @pytest.mark.asyncio
    async def test_failed_sell_is_reported(self, monitor, mock_clob):
        mock_clob.get_positions.return_value = [position("111111", price="0.60", size="0.5")]

        report = await monitor.tick()

        assert report.sold == 0
        assert report.failed == 1
        assert not report.sells[0].success

    @pytest.mark.asyncio
    async def test_disabled_tick_does_nothing(self, monitor, mock_clob):
        monitor.update_settings(StopLossSettings(enabled=False))

        assert await monitor.tick() is None
        mock_clob.get_positions.assert_not_called()

    @pytest.mark.asyncio
    async def test_check_now_ignores_enabled_flag(self, monitor, mock_clob):
        monitor.update_settings(StopLossSettings(enabled=False))
        mock_clob.get_positions.return_value = [position(price="0.50")]

        report = await monitor.check_now()

        assert report.sold == 1
        assert monitor.last_report is report
        assert monitor.last_check_at is not None

    @pytest.mark.asyncio
    async def test_overlap(self, monitor, mock_clob):
        release = asyncio.Event()

        async def slow_positions():
            await release.wait()
            return []

        mock_clob.get_positions = AsyncMock(side_effect=slow_positions)

        first = asyncio.create_task(monitor.tick())
        await asyncio.sleep(0)

        assert await monitor.tick() is None
        with pytest.raises(StopLossInProgressError):
            await monitor.check_now()

        release.set()
        await first
        assert not monitor.is_checking

    @pytest.mark.asyncio
    async def test_positions_failure_clears_flag(self, monitor, mock_clob):
        mock_clob.get_positions.side_effect = RuntimeError("data api down")

        with pytest.raises(RuntimeError):
            await monitor.tick()
        assert not monitor.is_checking
