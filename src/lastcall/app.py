"""
lastcall application lifecycle and component wiring.

Every service is constructed exactly once here and injected into the
services that need it. Shutdown order:
1. Stop the scheduler (periodic loops, background operator tasks)
2. Stop the metrics endpoint
3. Close upstream clients (CLOB, Gamma, Binance)
4. Close the trade store
"""
import asyncio
import signal
from concurrent.futures import ThreadPoolExecutor
from typing import Optional

import structlog
from prometheus_client import start_http_server

from lastcall import __version__
from lastcall.core.config import ConfigManager
from lastcall.core.lifecycle import BaseComponent, ComponentHealth
from lastcall.domain.settings import BotSettings
from lastcall.integrations.chain import CTFClient, GasOracle, RpcPool, build_rpc_urls
from lastcall.integrations.chain.gas import GAS_STATION_URL
from lastcall.integrations.polymarket import CLOBClient, GammaClient, PolymarketSettings
from lastcall.integrations.price_feeds import BINANCE_REST_URL, BinancePriceFeed
from lastcall.services.execution import ExecutionEngine
from lastcall.services.market_data import MarketDataService, series_ids_from_config
from lastcall.services.metrics import MetricsEmitter
from lastcall.services.risk_gates import VolatilityGate
from lastcall.services.scheduler import TradingScheduler
from lastcall.services.settings import SettingsManager
from lastcall.services.settlement import DEFAULT_SKIP_SIGNATURES, ClaimService
from lastcall.services.stop_loss import StopLossMonitor
from lastcall.services.trade_store import TradeStore
from lastcall.strategies.threshold import WinRateTable


class LastCallApp(BaseComponent):
    """Main application.

    Usage:
        app = LastCallApp(ConfigManager(Path("config/default.toml")))
        await app.run_forever()  # until SIGTERM/SIGINT

    One-shot CLI commands use connect()/close() without starting the
    periodic loops.
    """

    def __init__(self, config: ConfigManager) -> None:
        super().__init__(name="LastCallApp")
        self._config = config
        self._log = structlog.get_logger("lastcall.app")
        self._executor = ThreadPoolExecutor(max_workers=4)
        self._shutdown_event = asyncio.Event()
        self._metrics_server = None
        self._connected = False

        self.metrics = MetricsEmitter()

        self.settings = SettingsManager.from_config(config)
        bot = self.settings.load()

        polymarket = PolymarketSettings.from_config(config)
        self.clob = CLOBClient(
            polymarket,
            order_type=config.get("execution.order_type", "FAK"),
            executor=self._executor,
        )
        self.gamma = GammaClient(polymarket)
        self.price_feed = BinancePriceFeed(
            base_url=config.get("price_feeds.binance_url", BINANCE_REST_URL),
            timeout=config.get_float("price_feeds.timeout_seconds", 10.0),
        )
        self.store = TradeStore(config=config)

        self._extra_rpc_urls = config.get_list("settlement.rpc_urls")
        self.rpc_pool = RpcPool(
            build_rpc_urls(bot.advanced.rpc_url, self._extra_rpc_urls),
            timeout=config.get_float("settlement.rpc_timeout_seconds", 10.0),
            executor=self._executor,
        )
        self.gas_oracle = GasOracle(
            url=config.get("settlement.gas_station_url", GAS_STATION_URL),
            executor=self._executor,
        )
        self.ctf = CTFClient(
            self.rpc_pool,
            self.gas_oracle,
            private_key=polymarket.private_key,
            gas_speed=bot.advanced.gas_speed,
            receipt_timeout=config.get_float("settlement.receipt_timeout_seconds", 120.0),
            executor=self._executor,
        )

        self.market_data = MarketDataService(
            self.gamma,
            self.clob,
            series_ids=series_ids_from_config(config),
            lookahead_hours=config.get_float("markets.lookahead_hours", 2.0),
        )
        self.engine = ExecutionEngine(
            self.clob,
            self.store,
            leg_delay_seconds=config.get_float("execution.leg_delay_seconds", 0.5),
            metrics=self.metrics,
        )
        self.stop_loss = StopLossMonitor(
            self.clob, self.engine, self.store, bot.stop_loss, metrics=self.metrics
        )
        self.claims = ClaimService(
            self.market_data,
            self.ctf,
            self.store,
            skip_signatures=config.get_list(
                "settlement.skip_signatures", list(DEFAULT_SKIP_SIGNATURES)
            ),
            success_delay=config.get_float("settlement.success_delay_seconds", 5.0),
            skip_delay=config.get_float("settlement.skip_delay_seconds", 1.0),
            metrics=self.metrics,
        )
        self.scheduler = TradingScheduler(
            self.settings,
            self.market_data,
            self.engine,
            self.store,
            VolatilityGate(self.price_feed, self.clob),
            self.stop_loss,
            self.claims,
            ctf=self.ctf,
            win_rate_table=WinRateTable.from_config(config.get("strategy.win_rate_table")),
            min_fetch_interval=config.get_float("scheduler.min_fetch_interval_seconds", 3.0),
            stop_loss_interval=config.get_float("stop_loss.check_interval_seconds", 30.0),
            straddle_mode=config.get_bool("execution.straddle_mode", False),
            metrics=self.metrics,
        )

        self.settings.add_listener(self._on_settings_changed)

    @property
    def config(self) -> ConfigManager:
        return self._config

    def _on_settings_changed(self, settings: BotSettings) -> None:
        self.rpc_pool.set_urls(build_rpc_urls(settings.advanced.rpc_url, self._extra_rpc_urls))

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def connect(self) -> None:
        """Open the store and upstream clients."""
        if self._connected:
            return
        await self.store.connect()
        await self.clob.connect()
        await self.gamma.connect()
        await self.price_feed.connect()
        self._connected = True

    async def close(self) -> None:
        if not self._connected:
            return
        await self.price_feed.close()
        await self.gamma.close()
        await self.clob.close()
        await self.store.close()
        self._executor.shutdown(wait=False)
        self._connected = False

    async def _on_start(self) -> None:
        self._log.info("starting_lastcall", version=__version__)
        await self.connect()

        port = self._config.get_int("metrics.port", 0)
        if port > 0:
            self._metrics_server, _ = start_http_server(port, registry=self.metrics.registry)
            self._log.info("metrics_server_started", port=port)

        await self.scheduler.start()
        self._log.info(
            "lastcall_started",
            read_only=self.clob.is_read_only,
            wallet=self.clob.address,
        )

    async def _on_stop(self) -> None:
        self._log.info("stopping_lastcall", health=self.health().to_dict())
        await self.scheduler.stop()
        if self._metrics_server is not None:
            self._metrics_server.shutdown()
            self._metrics_server = None
        await self.close()
        self._log.info("lastcall_stopped")

    def _report_health(self) -> ComponentHealth:
        scheduler = self.scheduler.health()
        if not scheduler.ok:
            return ComponentHealth(self.name, ok=False, detail=f"scheduler: {scheduler.detail}")
        return ComponentHealth(self.name, ok=True, extra={"read_only": self.clob.is_read_only})

    def request_shutdown(self) -> None:
        self._log.info("shutdown_requested")
        self._shutdown_event.set()

    def _install_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            try:
                loop.add_signal_handler(sig, self.request_shutdown)
            except (NotImplementedError, RuntimeError):
                # Not supported on this platform's event loop
                self._log.debug("signal_handler_unavailable", signal=sig.name)

    async def run_forever(self, shutdown_event: Optional[asyncio.Event] = None) -> None:
        """Run until SIGTERM/SIGINT (or the given event is set)."""
        if shutdown_event is not None:
            self._shutdown_event = shutdown_event
        self._install_signal_handlers()
        await self.start()
        try:
            await self._shutdown_event.wait()
        finally:
            await self.stop()
