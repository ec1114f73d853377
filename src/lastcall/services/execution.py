"""Execution Engine - turns opportunities into exchange orders.

This service:
- Re-checks the store for an active trade on the market before every submission
- Simulates fills when the broker client is read-only
- Prices orders one tick through the book and applies exchange precision
- Runs the two-leg straddle mode with rollback of the first leg
- Sells positions at market for stop-loss exits
- Cancels open or partial trades on operator request

Order submission is never retried. A rejection is recorded on the trade
(status ``failed`` with the broker's message) and the trade is returned.
"""

import asyncio
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

import structlog

from lastcall.core.errors import (
    DuplicateTradeError,
    LastCallError,
    MissingOrderIdError,
    RejectionError,
)
from lastcall.domain.market import MarketQuote, OrderBook, OrderSide, Position, Side
from lastcall.domain.results import OrderAck, SellResult
from lastcall.domain.trade import Opportunity, Trade, TradeStatus, TradeType, new_trade_id
from lastcall.integrations.polymarket.clob import CLOBClient
from lastcall.services.metrics import MetricsEmitter
from lastcall.services.precision import marketable_price, size_buy_order, size_sell_order
from lastcall.services.trade_store import TradeStore

log = structlog.get_logger()

SIMULATED_ORDER_PREFIX = "simulated-"


class ExecutionEngine:
    """Submits single-leg and straddle trades through the CLOB client."""

    def __init__(
        self,
        clob: CLOBClient,
        store: TradeStore,
        leg_delay_seconds: float = 0.5,
        metrics: Optional[MetricsEmitter] = None,
    ):
        self._clob = clob
        self._store = store
        self._leg_delay = leg_delay_seconds
        self._metrics = metrics
        self._log = log.bind(component="execution_engine")

    @property
    def is_read_only(self) -> bool:
        return self._clob.is_read_only

    @property
    def wallet_address(self) -> Optional[str]:
        return self._clob.address

    async def _ensure_no_active_trade(self, market_id: str) -> None:
        existing = await self._store.find_open_trade_by_market(market_id)
        if existing is not None:
            raise DuplicateTradeError(market_id, existing.trade_id)

    async def _order_book(self, token_id: str) -> Optional[OrderBook]:
        try:
            return await self._clob.get_order_book(token_id)
        except Exception as e:
            self._log.warning("order_book_unavailable", token_id=token_id[:16], error=str(e))
            return None

    async def _buy(self, token_id: str, spend: Decimal, fallback_price: Decimal) -> OrderAck:
        book = await self._order_book(token_id)
        price = marketable_price(book, OrderSide.BUY, fallback_price)
        shares = size_buy_order(spend, price)
        return await self._clob.submit_order(token_id, price, shares, OrderSide.BUY)

    async def _finish(self, trade: Trade) -> Trade:
        await self._store.update_trade(trade)
        if self._metrics:
            self._metrics.record_trade(trade.asset, trade.status.value)
        return trade

    async def _fail(self, trade: Trade, error: Exception) -> Trade:
        self._log.warning(
            "trade_failed",
            trade_id=trade.trade_id,
            market_id=trade.market_id,
            error_type=type(error).__name__,
            error=str(error),
        )
        return await self._finish(trade.copy(status=TradeStatus.FAILED, error=str(error)))

    # =========================================================================
    # Single leg
    # =========================================================================

    async def submit(self, opportunity: Opportunity) -> Trade:
        """Buy the opportunity's side.

        Returns the trade in its final state: ``open`` on acceptance (or
        simulation), ``failed`` on rejection.

        Raises:
            DuplicateTradeError: Market already has an active trade. The
                broker is not called.
        """
        await self._ensure_no_active_trade(opportunity.market_id)
        trade = Trade.from_opportunity(opportunity)

        if self._clob.is_read_only:
            trade = trade.copy(
                status=TradeStatus.OPEN,
                primary_order_id=f"{SIMULATED_ORDER_PREFIX}{trade.trade_id}",
                simulated=True,
            )
            await self._store.save_trade(trade)
            if self._metrics:
                self._metrics.record_trade(trade.asset, trade.status.value)
            self._log.info(
                "trade_simulated",
                trade_id=trade.trade_id,
                market_id=trade.market_id,
                side=trade.side.value,
                price=str(trade.entry_price),
                bet_size=str(opportunity.bet_size),
            )
            return trade

        await self._store.save_trade(trade)

        try:
            ack = await self._buy(opportunity.token_id, opportunity.bet_size, opportunity.price)
        except (RejectionError, MissingOrderIdError) as e:
            return await self._fail(trade, e)
        except Exception as e:
            await self._fail(trade, e)
            raise

        trade = trade.copy(
            status=TradeStatus.OPEN,
            primary_order_id=ack.order_id,
            entry_price=ack.price,
            size_shares=ack.size,
            cost=ack.price * ack.size,
        )
        self._log.info(
            "trade_opened",
            trade_id=trade.trade_id,
            market_id=trade.market_id,
            side=trade.side.value,
            order_id=ack.order_id,
            price=str(ack.price),
            shares=str(ack.size),
        )
        return await self._finish(trade)

    # =========================================================================
    # Straddle
    # =========================================================================

    async def submit_straddle(self, quote: MarketQuote, bet_size: Decimal) -> Trade:
        """Buy both sides with half the bet each, up leg first.

        If the second leg is rejected the first leg's order is cancelled
        and the trade ends ``failed``.

        Raises:
            DuplicateTradeError: Market already has an active trade.
        """
        await self._ensure_no_active_trade(quote.market_id)
        half = bet_size / 2
        trade = Trade(
            trade_id=new_trade_id(),
            market_id=quote.market_id,
            market_label=quote.label,
            asset=quote.asset,
            side=Side.UP,
            token_id=quote.up_token_id,
            entry_price=quote.up_price,
            size_shares=half / quote.up_price if quote.up_price > 0 else Decimal("0"),
            cost=bet_size,
            trade_type=TradeType.STRADDLE,
            secondary_token_id=quote.down_token_id,
            secondary_price=quote.down_price,
            secondary_size=half / quote.down_price if quote.down_price > 0 else Decimal("0"),
        )

        if self._clob.is_read_only:
            trade = trade.copy(
                status=TradeStatus.OPEN,
                primary_order_id=f"{SIMULATED_ORDER_PREFIX}{trade.trade_id}-up",
                secondary_order_id=f"{SIMULATED_ORDER_PREFIX}{trade.trade_id}-down",
                simulated=True,
            )
            await self._store.save_trade(trade)
            self._log.info("straddle_simulated", trade_id=trade.trade_id, market_id=trade.market_id)
            return trade

        await self._store.save_trade(trade)

        try:
            first = await self._buy(quote.up_token_id, half, quote.up_price)
        except (RejectionError, MissingOrderIdError) as e:
            return await self._fail(trade, e)
        except Exception as e:
            await self._fail(trade, e)
            raise

        trade = trade.copy(
            status=TradeStatus.PARTIAL,
            primary_order_id=first.order_id,
            entry_price=first.price,
            size_shares=first.size,
            cost=first.price * first.size,
        )
        await self._store.update_trade(trade)
        self._log.info("straddle_first_leg_filled", trade_id=trade.trade_id, order_id=first.order_id)

        if self._leg_delay > 0:
            await asyncio.sleep(self._leg_delay)

        try:
            second = await self._buy(quote.down_token_id, half, quote.down_price)
        except (RejectionError, MissingOrderIdError) as e:
            cancelled = await self._clob.cancel_order(first.order_id)
            if not cancelled:
                self._log.error(
                    "straddle_rollback_failed",
                    trade_id=trade.trade_id,
                    order_id=first.order_id,
                )
            return await self._fail(trade, e)

        trade = trade.copy(
            status=TradeStatus.OPEN,
            secondary_order_id=second.order_id,
            secondary_price=second.price,
            secondary_size=second.size,
            cost=trade.cost + second.price * second.size,
        )
        self._log.info(
            "straddle_opened",
            trade_id=trade.trade_id,
            market_id=trade.market_id,
            cost=str(trade.cost),
        )
        return await self._finish(trade)

    # =========================================================================
    # Exits
    # =========================================================================

    async def sell_position(self, position: Position) -> SellResult:
        """Sell a full position at market. Failures come back as results."""
        if self._clob.is_read_only:
            self._log.info("sell_skipped_read_only", token_id=position.token_id[:16])
            return SellResult(token_id=position.token_id, success=False, error="read-only mode")

        book = await self._order_book(position.token_id)
        try:
            price = marketable_price(book, OrderSide.SELL, position.current_price)
            shares = size_sell_order(position.size_shares, price)
            ack = await self._clob.submit_order(position.token_id, price, shares, OrderSide.SELL)
        except LastCallError as e:
            self._log.warning(
                "position_sell_failed",
                token_id=position.token_id[:16],
                error=str(e),
            )
            return SellResult(token_id=position.token_id, success=False, error=str(e))

        self._log.info(
            "position_sold",
            token_id=position.token_id[:16],
            order_id=ack.order_id,
            price=str(ack.price),
            shares=str(ack.size),
        )
        return SellResult(
            token_id=position.token_id,
            success=True,
            order_id=ack.order_id,
            price=ack.price,
            size=ack.size,
        )

    async def cancel_trade(self, trade_id: str) -> Trade:
        """Cancel broker orders of an open or partial trade.

        Raises:
            RejectionError: Unknown trade or a status other than open/partial.
        """
        trade = await self._store.get_trade(trade_id)
        if trade is None:
            raise RejectionError(f"Unknown trade {trade_id}")
        if trade.status not in (TradeStatus.OPEN, TradeStatus.PARTIAL):
            raise RejectionError(
                f"Trade {trade_id} is {trade.status.value}; only open or partial trades can be cancelled"
            )

        if not trade.simulated and not self._clob.is_read_only:
            for order_id in trade.order_ids:
                await self._clob.cancel_order(order_id)

        trade = trade.copy(
            status=TradeStatus.CANCELLED,
            resolved_at=datetime.now(timezone.utc),
        )
        self._log.info("trade_cancelled", trade_id=trade_id, market_id=trade.market_id)
        return await self._finish(trade)
