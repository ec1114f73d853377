"""Trading Scheduler - orchestrates scanning, exits and claims.

This service:
- Runs the periodic scan: quotes -> opportunities -> gates -> execution
- Owns the stop-loss loop and the auto-claim loop
- Holds the in-flight guards (scan, claim, stop-loss); each activity is
  non-reentrant with itself and concurrent with the others
- Exposes the operator controls (settings changes, emergency stop, forced
  scan, background claim/approval) and the status/live-market views

Per asset, the quote snapshot is refreshed every scan even when the asset
is disabled or gated. Only execution is skipped.
"""

import time
from datetime import datetime, timezone
from typing import Any, Callable, Optional

import structlog

from lastcall.core.errors import (
    ClaimInProgressError,
    DuplicateTradeError,
    OperationInProgressError,
    ReadOnlyModeError,
    ScanInProgressError,
)
from lastcall.core.lifecycle import BaseComponent, ComponentHealth
from lastcall.core.tasks import BackgroundTasks, PeriodicTask, TaskRecord
from lastcall.domain.results import (
    AssetScanResult,
    AssetScanState,
    ScanSummary,
    StopLossReport,
)
from lastcall.domain.settings import SUPPORTED_ASSETS, AssetSettings, BotSettings
from lastcall.domain.trade import Trade, TradeStatus
from lastcall.integrations.chain.ctf import CTFClient
from lastcall.services.execution import ExecutionEngine
from lastcall.services.market_data import MarketDataService
from lastcall.services.metrics import MetricsEmitter
from lastcall.services.risk_gates import TradingWindowGate, VolatilityGate
from lastcall.services.settings import SettingsManager
from lastcall.services.settlement import ClaimService
from lastcall.services.stop_loss import StopLossMonitor
from lastcall.services.trade_store import TradeStore
from lastcall.strategies.threshold import WinRateTable, analyze, find_opportunities

log = structlog.get_logger()

DEFAULT_MIN_FETCH_INTERVAL = 3.0
DEFAULT_STOP_LOSS_INTERVAL = 30.0


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TradingScheduler(BaseComponent):
    """Scan-decide-execute loop plus background loops and operator controls."""

    def __init__(
        self,
        settings: SettingsManager,
        market_data: MarketDataService,
        engine: ExecutionEngine,
        store: TradeStore,
        volatility_gate: VolatilityGate,
        stop_loss: StopLossMonitor,
        claims: ClaimService,
        ctf: Optional[CTFClient] = None,
        win_rate_table: Optional[WinRateTable] = None,
        min_fetch_interval: float = DEFAULT_MIN_FETCH_INTERVAL,
        stop_loss_interval: float = DEFAULT_STOP_LOSS_INTERVAL,
        straddle_mode: bool = False,
        metrics: Optional[MetricsEmitter] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        super().__init__("trading_scheduler")
        self._settings = settings
        self._market_data = market_data
        self._engine = engine
        self._store = store
        self._volatility_gate = volatility_gate
        self._stop_loss = stop_loss
        self._claims = claims
        self._ctf = ctf
        self._table = win_rate_table or WinRateTable()
        self._min_fetch_interval = min_fetch_interval
        self._straddle_mode = straddle_mode
        self._metrics = metrics
        self._clock = clock

        self._is_scanning = False
        self._last_fetch_monotonic: Optional[float] = None
        self._last_scan_at: Optional[datetime] = None
        self._last_summary: Optional[ScanSummary] = None
        self._snapshots: dict[str, list[dict[str, Any]]] = {}
        self._snapshot_times: dict[str, datetime] = {}

        current = settings.settings
        self._scan_task = PeriodicTask(
            "scan", current.advanced.scan_interval_seconds, self.tick
        )
        self._stop_loss_task = PeriodicTask(
            "stop_loss", stop_loss_interval, self._stop_loss.tick
        )
        self._claim_task = PeriodicTask(
            "auto_claim", current.auto_claim.interval_minutes * 60, self._auto_claim_tick
        )
        self._tasks = BackgroundTasks()
        self._log = log.bind(component="trading_scheduler")

        settings.add_listener(self._on_settings_changed)
        if metrics:
            metrics.set_trading_enabled(current.global_trading_enabled)

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def _on_start(self) -> None:
        self._scan_task.start()
        self._stop_loss_task.start()
        self._claim_task.start()
        self._log.info(
            "scheduler_started",
            global_trading_enabled=self._settings.settings.global_trading_enabled,
            read_only=self._engine.is_read_only,
        )

    async def _on_stop(self) -> None:
        await self._scan_task.stop()
        await self._stop_loss_task.stop()
        await self._claim_task.stop()
        await self._tasks.cancel_all()
        self._log.info("scheduler_stopped")

    def _report_health(self) -> ComponentHealth:
        summary = self._last_summary
        if summary is not None and summary.errors:
            return ComponentHealth(
                self.name, ok=False, detail="last scan had asset errors",
                extra={"errors": list(summary.errors)},
            )
        return ComponentHealth(self.name, ok=True)

    def _on_settings_changed(self, settings: BotSettings) -> None:
        self._scan_task.set_interval(settings.advanced.scan_interval_seconds)
        self._claim_task.set_interval(settings.auto_claim.interval_minutes * 60)
        self._stop_loss.update_settings(settings.stop_loss)
        if self._ctf is not None:
            self._ctf.set_gas_speed(settings.advanced.gas_speed)
        if self._metrics:
            self._metrics.set_trading_enabled(settings.global_trading_enabled)

    @property
    def is_scanning(self) -> bool:
        return self._is_scanning

    @property
    def background_tasks(self) -> BackgroundTasks:
        return self._tasks

    def _tradeable_assets(self) -> list[str]:
        return [a for a in SUPPORTED_ASSETS if self._market_data.series_id(a)]

    # =========================================================================
    # Scanning
    # =========================================================================

    async def tick(self) -> Optional[ScanSummary]:
        """Periodic scan. Overlapping or too-early ticks are no-ops."""
        if self._is_scanning:
            return None
        now = time.monotonic()
        if (
            self._last_fetch_monotonic is not None
            and now - self._last_fetch_monotonic < self._min_fetch_interval
        ):
            return None
        return await self._scan(list(SUPPORTED_ASSETS), forced=False)

    async def force_scan(self, asset: Optional[str] = None) -> ScanSummary:
        """Scan one or all assets now, ignoring each asset's enabled flag.

        The trading window and the global trading flag still apply.

        Raises:
            ScanInProgressError: A scan is already running.
            ValueError: Unknown asset.
        """
        if self._is_scanning:
            raise ScanInProgressError("Scan already in progress")
        if asset is not None:
            asset = asset.lower()
            if asset not in SUPPORTED_ASSETS:
                raise ValueError(f"Unknown asset: {asset}")
        assets = [asset] if asset else list(SUPPORTED_ASSETS)
        return await self._scan(assets, forced=True)

    async def _scan(self, assets: list[str], forced: bool) -> ScanSummary:
        self._is_scanning = True
        self._last_fetch_monotonic = time.monotonic()
        summary = ScanSummary(forced=forced)
        settings = self._settings.settings
        now = self._clock()
        window = TradingWindowGate.from_settings(settings.trading_window)

        try:
            for asset in assets:
                result = AssetScanResult(asset=asset)
                try:
                    await self._scan_asset(asset, settings, window, now, forced, result)
                except Exception as e:
                    result.state = AssetScanState.ERROR
                    result.error = str(e)
                    self._log.error("asset_scan_failed", asset=asset, error=str(e), exc_info=True)
                summary.add(result)
        finally:
            summary.finished_at = _utcnow()
            self._is_scanning = False
            self._last_scan_at = summary.finished_at
            self._last_summary = summary
            try:
                await self._store.record_scan_summary(summary)
            except Exception as e:
                self._log.error("scan_summary_record_failed", error=str(e))
            if self._metrics:
                self._metrics.record_scan(summary)

        self._log.info(
            "scan_finished",
            forced=forced,
            markets_seen=summary.markets_seen,
            opportunities=summary.opportunities,
            trades_executed=summary.trades_executed,
            errors=len(summary.errors),
        )
        return summary

    async def _scan_asset(
        self,
        asset: str,
        settings: BotSettings,
        window: TradingWindowGate,
        now: datetime,
        forced: bool,
        result: AssetScanResult,
    ) -> None:
        if not self._market_data.series_id(asset):
            result.state = AssetScanState.SKIPPED
            result.skip_reasons.append("no market series configured")
            return

        asset_settings = settings.asset(asset)
        quotes = await self._market_data.list_open_markets(asset)
        self._snapshots[asset] = [analyze(q, asset_settings, self._table) for q in quotes]
        self._snapshot_times[asset] = _utcnow()
        result.markets_seen = len(quotes)

        opportunities = find_opportunities(quotes, asset_settings, self._table)
        result.opportunities = len(opportunities)

        reasons = []
        if not forced and not asset_settings.enabled:
            reasons.append("asset disabled")
        if not settings.global_trading_enabled:
            reasons.append("trading disabled")
        window_result = window.check(now)
        if not window_result.can_trade:
            reasons.extend(window_result.reasons)
            if opportunities and self._metrics:
                self._metrics.record_gate_block(window.name)

        if reasons:
            result.state = AssetScanState.SKIPPED
            result.skip_reasons.extend(reasons)
            if opportunities:
                self._log.info(
                    "execution_skipped",
                    asset=asset,
                    opportunities=len(opportunities),
                    reasons=reasons,
                )
            return

        if not opportunities:
            return

        gate = await self._volatility_gate.check(
            asset, opportunities[0].token_id, settings.volatility, now
        )
        if not gate.can_trade:
            result.state = AssetScanState.SKIPPED
            result.skip_reasons.extend(gate.reasons)
            if self._metrics:
                self._metrics.record_gate_block(gate.gate)
            return

        for opportunity in opportunities:
            try:
                trade = await self._execute(opportunity, asset_settings)
            except DuplicateTradeError as e:
                self._log.info(
                    "opportunity_skipped_duplicate",
                    market_id=e.market_id[:16],
                    existing_trade_id=e.existing_trade_id,
                )
                continue
            if trade.status is TradeStatus.OPEN:
                result.trades_executed += 1

    async def _execute(self, opportunity, asset_settings: AssetSettings) -> Trade:
        if self._straddle_mode:
            return await self._engine.submit_straddle(opportunity.market, asset_settings.bet_size)
        return await self._engine.submit(opportunity)

    # =========================================================================
    # Background loops
    # =========================================================================

    def _claim_assets(self, settings: BotSettings) -> list[str]:
        return [
            a for a in self._tradeable_assets()
            if settings.asset(a).auto_claim_enabled
        ]

    async def _auto_claim_tick(self) -> None:
        settings = self._settings.settings
        if not settings.auto_claim.enabled or self._claims.is_claiming:
            return
        await self._claims.claim_all(
            settings.auto_claim.days_back, self._claim_assets(settings)
        )

    # =========================================================================
    # Operator controls
    # =========================================================================

    def set_asset_enabled(self, asset: str, enabled: bool) -> AssetSettings:
        settings = self._settings.update_asset(asset, enabled=enabled)
        self._log.info("asset_toggled", asset=asset, enabled=enabled)
        return settings.asset(asset)

    def update_asset_settings(self, asset: str, **changes: Any) -> AssetSettings:
        return self._settings.update_asset(asset, **changes).asset(asset)

    def emergency_stop(self) -> None:
        """Disable all new executions. Stop-loss and claims keep running."""
        self._settings.set_global_trading(False)
        self._log.warning("emergency_stop_activated")

    def resume_trading(self) -> None:
        self._settings.set_global_trading(True)
        self._log.info("trading_resumed")

    async def trigger_stop_loss_check(self) -> StopLossReport:
        """Raises StopLossInProgressError when a pass is running."""
        return await self._stop_loss.check_now()

    async def cancel_trade(self, trade_id: str) -> Trade:
        return await self._engine.cancel_trade(trade_id)

    def export_settings(self) -> str:
        return self._settings.export_json()

    def import_settings(self, text: str) -> BotSettings:
        return self._settings.import_json(text)

    def start_claim_all(self, days_back: Optional[int] = None) -> TaskRecord:
        """Run a claim sweep in the background.

        Raises:
            ClaimInProgressError: A sweep is already running.
        """
        if self._claims.is_claiming or self._tasks.is_active("claim_all"):
            raise ClaimInProgressError("Claim sweep already in progress")
        settings = self._settings.settings
        days = days_back if days_back is not None else settings.auto_claim.days_back
        return self._tasks.spawn(
            "claim_all", self._claims.claim_all(days, self._tradeable_assets())
        )

    def start_approval(self) -> TaskRecord:
        """Run USDC approvals in the background.

        Raises:
            OperationInProgressError: An approval is already running.
        """
        if self._ctf is None:
            raise ReadOnlyModeError("Settlement client not configured")
        if self._tasks.is_active("approve_usdc"):
            raise OperationInProgressError("USDC approval already in progress")
        return self._tasks.spawn("approve_usdc", self._ctf.approve_usdc())

    def get_task(self, task_id: str) -> Optional[dict[str, Any]]:
        record = self._tasks.get(task_id)
        return record.to_dict() if record else None

    def get_live_markets(self) -> dict[str, Any]:
        return {
            asset: {
                "updated_at": self._snapshot_times[asset].isoformat(),
                "markets": list(markets),
            }
            for asset, markets in self._snapshots.items()
        }

    def get_status(self) -> dict[str, Any]:
        settings = self._settings.settings
        now = self._clock()
        window = TradingWindowGate.from_settings(settings.trading_window)
        claim_summary = self._claims.last_summary
        stop_loss_report = self._stop_loss.last_report
        return {
            "running": self.is_running,
            "health": self.health().to_dict(),
            "is_scanning": self._is_scanning,
            "is_claiming": self._claims.is_claiming,
            "is_checking_stop_loss": self._stop_loss.is_checking,
            "global_trading_enabled": settings.global_trading_enabled,
            "read_only": self._engine.is_read_only,
            "wallet": self._engine.wallet_address,
            "straddle_mode": self._straddle_mode,
            "in_trading_window": window.is_in_window(now.minute),
            "minutes_until_window": window.minutes_until_window(now.minute),
            "enabled_assets": [a for a, s in settings.assets.items() if s.enabled],
            "last_scan_at": self._last_scan_at.isoformat() if self._last_scan_at else None,
            "last_scan": self._last_summary.to_dict() if self._last_summary else None,
            "last_claim": claim_summary.to_dict() if claim_summary else None,
            "last_stop_loss": stop_loss_report.to_dict() if stop_loss_report else None,
            "tasks": [r.to_dict() for r in self._tasks.records()],
        }
