"""Stop-loss monitor.

Sells the full size of any held position whose current price has dropped
below the configured threshold, then closes the matching trade with the
realized PnL. Runs on its own interval, independent of the scan cycle.
"""

from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

import structlog

from lastcall.core.errors import StopLossInProgressError
from lastcall.domain.market import Position
from lastcall.domain.results import StopLossReport
from lastcall.domain.settings import StopLossSettings
from lastcall.domain.trade import TradeStatus
from lastcall.integrations.polymarket.clob import CLOBClient
from lastcall.services.execution import ExecutionEngine
from lastcall.services.metrics import MetricsEmitter
from lastcall.services.trade_store import TradeStore

log = structlog.get_logger()


class StopLossMonitor:
    """Threshold-based position exits."""

    def __init__(
        self,
        clob: CLOBClient,
        engine: ExecutionEngine,
        store: TradeStore,
        settings: StopLossSettings,
        metrics: Optional[MetricsEmitter] = None,
    ):
        self._clob = clob
        self._engine = engine
        self._store = store
        self._settings = settings
        self._metrics = metrics
        self._is_checking = False
        self._last_report: Optional[StopLossReport] = None
        self._last_check_at: Optional[datetime] = None
        self._log = log.bind(component="stop_loss")

    @property
    def is_checking(self) -> bool:
        return self._is_checking

    @property
    def settings(self) -> StopLossSettings:
        return self._settings

    @property
    def last_report(self) -> Optional[StopLossReport]:
        return self._last_report

    @property
    def last_check_at(self) -> Optional[datetime]:
        return self._last_check_at

    def update_settings(self, settings: StopLossSettings) -> None:
        self._settings = settings

    def should_sell(self, position: Position) -> bool:
        if position.resolved or position.size_shares <= 0:
            return False
        return position.current_price < self._settings.threshold

    async def tick(self) -> Optional[StopLossReport]:
        """Periodic entry point. Drops silently when disabled or overlapping."""
        if not self._settings.enabled or self._is_checking:
            return None
        return await self._run()

    async def check_now(self) -> StopLossReport:
        """Operator-triggered pass, regardless of the enabled flag.

        Raises:
            StopLossInProgressError: A pass is already running.
        """
        if self._is_checking:
            raise StopLossInProgressError("Stop-loss check already in progress")
        return await self._run()

    async def _run(self) -> StopLossReport:
        self._is_checking = True
        report = StopLossReport()
        try:
            positions = await self._clob.get_positions()
            for position in positions:
                report.checked += 1
                if not self.should_sell(position):
                    continue

                self._log.info(
                    "stop_loss_triggered",
                    token_id=position.token_id[:16],
                    title=position.title,
                    price=str(position.current_price),
                    threshold=str(self._settings.threshold),
                    shares=str(position.size_shares),
                )
                result = await self._engine.sell_position(position)
                report.sells.append(result)
                if self._metrics:
                    self._metrics.record_stop_loss_sell(result.success)

                if not result.success:
                    report.failed += 1
                    continue

                report.sold += 1
                await self._close_trade(position, result.proceeds)
        finally:
            self._is_checking = False
            self._last_check_at = datetime.now(timezone.utc)
            self._last_report = report

        if report.sold or report.failed:
            self._log.info(
                "stop_loss_pass_finished",
                checked=report.checked,
                sold=report.sold,
                failed=report.failed,
            )
        return report

    async def _close_trade(self, position: Position, proceeds: Decimal) -> None:
        """Resolve the sold position's trade; store errors are logged, not raised."""
        try:
            await self._resolve_trade(position, proceeds)
        except Exception as e:
            self._log.error(
                "stop_loss_trade_close_failed", token_id=position.token_id[:16], error=str(e)
            )

    async def _resolve_trade(self, position: Position, proceeds: Decimal) -> None:
        trade = await self._store.find_open_trade_by_token(position.token_id)
        if trade is None:
            self._log.debug("stop_loss_no_trade", token_id=position.token_id[:16])
            return
        closed = trade.copy(
            status=TradeStatus.RESOLVED,
            pnl=proceeds - trade.cost,
            resolved_at=datetime.now(timezone.utc),
            error="stop-loss exit",
        )
        await self._store.update_trade(closed)
        self._log.info("trade_closed_by_stop_loss", trade_id=trade.trade_id, pnl=str(closed.pnl))
