"""
Unit tests for ExecutionEngine.
"""
import pytest
from decimal import Decimal
from unittest.mock import AsyncMock

from lastcall.core.errors import (
    DuplicateTradeError,
    InsufficientBalanceError,
    NetworkError,
    OrderRejectedError,
    RejectionError,
)
from lastcall.domain.market import OrderSide, Position
from lastcall.domain.results import OrderAck
from lastcall.domain.trade import TradeStatus, TradeType
from lastcall.services.execution import ExecutionEngine
from lastcall.strategies.threshold import evaluate


BAND = (Decimal("0.90"), Decimal("0.94"))


@pytest.fixture
def engine(mock_clob, store):
    return ExecutionEngine(mock_clob, store, leg_delay_seconds=0)


@pytest.fixture
def opportunity(quote):
    return evaluate(quote, *BAND, Decimal("90"))


class TestSubmit:
    """Test single-leg submission."""

    @pytest.mark.asyncio
    async def test_accepted_order_opens_trade(self, engine, mock_clob, store, opportunity):
        trade = await engine.submit(opportunity)

        # Book ask 0.93 plus one tick; 90 / 0.94 floors to 95 shares
        mock_clob.submit_order.assert_awaited_once_with(
            "111111", Decimal("0.94"), Decimal("95"), OrderSide.BUY
        )
        assert trade.status is TradeStatus.OPEN
        assert trade.primary_order_id == "order-1"
        assert trade.entry_price == Decimal("0.94")
        assert trade.size_shares == Decimal("95")
        assert trade.cost == Decimal("89.30")

        stored = await store.get_trade(trade.trade_id)
        assert stored.status is TradeStatus.OPEN
        assert stored.primary_order_id == "order-1"

    @pytest.mark.asyncio
    async def test_duplicate_market_never_reaches_broker(self, engine, mock_clob, opportunity):
        await engine.submit(opportunity)

        with pytest.raises(DuplicateTradeError) as exc_info:
            await engine.submit(opportunity)

        assert exc_info.value.market_id == opportunity.market_id
        assert mock_clob.submit_order.await_count == 1

    @pytest.mark.asyncio
    async def test_failed_trade_allows_retry_next_tick(self, engine, mock_clob, opportunity):
        mock_clob.submit_order.side_effect = InsufficientBalanceError("not enough balance")
        failed = await engine.submit(opportunity)

        assert failed.status is TradeStatus.FAILED
        assert "not enough balance" in failed.error

        mock_clob.submit_order.side_effect = None
        mock_clob.submit_order.return_value = OrderAck(
            order_id="order-9",
            token_id="111111",
            price=Decimal("0.94"),
            size=Decimal("95"),
            side="BUY",
        )
        retried = await engine.submit(opportunity)
        assert retried.status is TradeStatus.OPEN

    @pytest.mark.asyncio
    async def test_unexpected_error_marks_failed_and_propagates(self, engine, mock_clob, store, opportunity):
        mock_clob.submit_order.side_effect = NetworkError("connection reset")

        with pytest.raises(NetworkError):
            await engine.submit(opportunity)

        trades = await store.get_recent_trades()
        assert trades[0].status is TradeStatus.FAILED

    @pytest.mark.asyncio
    async def test_read_only_simulates(self, engine, mock_clob, store, opportunity):
        mock_clob.is_read_only = True

        trade = await engine.submit(opportunity)

        mock_clob.submit_order.assert_not_called()
        assert trade.status is TradeStatus.OPEN
        assert trade.simulated is True
        assert trade.primary_order_id.startswith("simulated-")
        assert (await store.get_trade(trade.trade_id)).simulated is True

    @pytest.mark.asyncio
    async def test_empty_book_uses_opportunity_price(self, engine, mock_clob, opportunity):
        mock_clob.get_order_book = AsyncMock(side_effect=NetworkError("book down"))

        await engine.submit(opportunity)

        args = mock_clob.submit_order.await_args.args
        assert args[1] == Decimal("0.92")
        assert args[2] == Decimal("97")


class TestStraddle:
    """Test two-leg straddle with rollback."""

    @pytest.mark.asyncio
    async def test_both_legs_fill(self, engine, mock_clob, quote_factory):
        trade = await engine.submit_straddle(quote_factory("0.50", "0.48"), Decimal("90"))

        assert trade.trade_type is TradeType.STRADDLE
        assert trade.status is TradeStatus.OPEN
        assert trade.order_ids == ["order-1", "order-2"]
        assert trade.secondary_token_id == "222222"
        assert mock_clob.submit_order.await_count == 2
        first, second = mock_clob.submit_order.await_args_list
        assert first.args[0] == "111111"
        assert second.args[0] == "222222"

    @pytest.mark.asyncio
    async def test_second_leg_rejection_rolls_back(self, engine, mock_clob, store, quote_factory):
        first_ack = OrderAck(
            order_id="order-up",
            token_id="111111",
            price=Decimal("0.94"),
            size=Decimal("47"),
            side="BUY",
        )
        mock_clob.submit_order.side_effect = [first_ack, OrderRejectedError("book moved")]

        trade = await engine.submit_straddle(quote_factory("0.50", "0.48"), Decimal("90"))

        mock_clob.cancel_order.assert_awaited_once_with("order-up")
        assert trade.status is TradeStatus.FAILED
        assert (await store.get_trade(trade.trade_id)).status is TradeStatus.FAILED

    @pytest.mark.asyncio
    async def test_rollback_failure_still_fails_trade(self, engine, mock_clob, quote_factory):
        first_ack = OrderAck(
            order_id="order-up",
            token_id="111111",
            price=Decimal("0.94"),
            size=Decimal("47"),
            side="BUY",
        )
        mock_clob.submit_order.side_effect = [first_ack, OrderRejectedError("book moved")]
        mock_clob.cancel_order.return_value = False

        trade = await engine.submit_straddle(quote_factory("0.50", "0.48"), Decimal("90"))
        assert trade.status is TradeStatus.FAILED

    @pytest.mark.asyncio
    async def test_straddle_respects_duplicate_check(self, engine, opportunity, quote):
        await engine.submit(opportunity)

        with pytest.raises(DuplicateTradeError):
            await engine.submit_straddle(quote, Decimal("90"))


class TestSellPosition:
    """Test market sells for stop-loss exits."""

    @pytest.fixture
    def position(self):
        return Position(token_id="111111", size_shares=Decimal("95.5"), current_price=Decimal("0.60"))

    @pytest.mark.asyncio
    async def test_sells_through_best_bid(self, engine, mock_clob, position):
        result = await engine.sell_position(position)

        mock_clob.submit_order.assert_awaited_once_with(
            "111111", Decimal("0.90"), Decimal("95.5"), OrderSide.SELL
        )
        assert result.success
        assert result.proceeds == Decimal("0.90") * Decimal("95.5")

    @pytest.mark.asyncio
    async def test_rejection_returns_failed_result(self, engine, mock_clob, position):
        mock_clob.submit_order.side_effect = OrderRejectedError("no liquidity")

        result = await engine.sell_position(position)

        assert not result.success
        assert "no liquidity" in result.error

    @pytest.mark.asyncio
    async def test_dust_position_not_sold(self, engine, mock_clob):
        dust = Position(token_id="111111", size_shares=Decimal("0.4"), current_price=Decimal("0.5"))

        result = await engine.sell_position(dust)

        assert not result.success
        mock_clob.submit_order.assert_not_called()

    @pytest.mark.asyncio
    async def test_read_only_does_not_sell(self, engine, mock_clob, position):
        mock_clob.is_read_only = True

        result = await engine.sell_position(position)

        assert result.error == "read-only mode"
        mock_clob.submit_order.assert_not_called()


class TestCancelTrade:
    @pytest.mark.asyncio
    async def test_cancel_open_trade(self, engine, mock_clob, opportunity):
        trade = await engine.submit(opportunity)

        cancelled = await engine.cancel_trade(trade.trade_id)

        mock_clob.cancel_order.assert_awaited_once_with("order-1")
        assert cancelled.status is TradeStatus.CANCELLED
        assert cancelled.resolved_at is not None

    @pytest.mark.asyncio
    async def test_cancel_unknown_trade(self, engine):
        with pytest.raises(RejectionError):
            await engine.cancel_trade("trade-missing")

    @pytest.mark.asyncio
    async def test_cancel_failed_trade_rejected(self, engine, mock_clob, opportunity):
        mock_clob.submit_order.side_effect = OrderRejectedError("rejected")
        trade = await engine.submit(opportunity)

        with pytest.raises(RejectionError):
            await engine.cancel_trade(trade.trade_id)

    @pytest.mark.asyncio
    async def test_cancel_simulated_skips_broker(self, engine, mock_clob, opportunity):
        mock_clob.is_read_only = True
        trade = await engine.submit(opportunity)
        mock_clob.is_read_only = False

        await engine.cancel_trade(trade.trade_id)
        mock_clob.cancel_order.assert_not_called()
