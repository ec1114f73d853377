"""
Prometheus metrics emission for lastcall.

All metrics use the 'lastcall_' prefix and live in the emitter's own
registry, so several emitters (e.g. one per test) never collide.
"""
from decimal import Decimal
from typing import Optional

from prometheus_client import (
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    Info,
    generate_latest,
)

from lastcall import __version__


class MetricsEmitter:
    """Prometheus metrics emission (emit only, no reading).

    Usage:
        emitter = MetricsEmitter()
        emitter.record_scan(summary)
        emitter.record_trade("btc", "open")
        metrics_output = emitter.get_metrics()
    """

    def __init__(self, registry: Optional[CollectorRegistry] = None) -> None:
        self._registry = registry or CollectorRegistry()

        self._info = Info(
            "lastcall",
            "lastcall trading bot information",
            registry=self._registry,
        )
        self._info.info({"version": __version__, "component": "lastcall"})

        self._scans_total = Counter(
            "lastcall_scans_total",
            "Scan cycles completed",
            ["forced"],
            registry=self._registry,
        )

        self._markets_seen_total = Counter(
            "lastcall_markets_seen_total",
            "Markets quoted during scans",
            ["asset"],
            registry=self._registry,
        )

        self._opportunities_total = Counter(
            "lastcall_opportunities_total",
            "Opportunities found inside the price band",
            ["asset"],
            registry=self._registry,
        )

        self._trades_total = Counter(
            "lastcall_trades_total",
            "Trades by final submission status",
            ["asset", "status"],
            registry=self._registry,
        )

        self._gate_blocks_total = Counter(
            "lastcall_gate_blocks_total",
            "Executions blocked by a risk gate",
            ["gate"],
            registry=self._registry,
        )

        self._claims_total = Counter(
            "lastcall_claims_total",
            "Redemption attempts by outcome",
            ["outcome"],
            registry=self._registry,
        )

        self._stop_loss_sells_total = Counter(
            "lastcall_stop_loss_sells_total",
            "Stop-loss market sells",
            ["status"],
            registry=self._registry,
        )

        self._scan_latency = Histogram(
            "lastcall_scan_duration_seconds",
            "Scan cycle duration",
            buckets=[0.1, 0.25, 0.5, 1, 2.5, 5, 10, 30],
            registry=self._registry,
        )

        self._trading_enabled = Gauge(
            "lastcall_trading_enabled",
            "1 when global trading is enabled",
            registry=self._registry,
        )

        self._realized_pnl = Gauge(
            "lastcall_realized_pnl_usd",
            "Realized PnL of resolved trades",
            registry=self._registry,
        )

    @property
    def registry(self) -> CollectorRegistry:
        return self._registry

    def record_scan(self, summary) -> None:
        """Record a finished ScanSummary."""
        self._scans_total.labels(forced=str(summary.forced).lower()).inc()
        self._scan_latency.observe(summary.duration_seconds)
        for result in summary.assets:
            if result.markets_seen:
                self._markets_seen_total.labels(asset=result.asset).inc(result.markets_seen)
            if result.opportunities:
                self._opportunities_total.labels(asset=result.asset).inc(result.opportunities)

    def record_trade(self, asset: str, status: str) -> None:
        self._trades_total.labels(asset=asset, status=status).inc()

    def record_gate_block(self, gate: str) -> None:
        self._gate_blocks_total.labels(gate=gate or "unknown").inc()

    def record_claim(self, outcome: str) -> None:
        self._claims_total.labels(outcome=outcome).inc()

    def record_stop_loss_sell(self, success: bool) -> None:
        self._stop_loss_sells_total.labels(status="sold" if success else "failed").inc()

    def set_trading_enabled(self, enabled: bool) -> None:
        self._trading_enabled.set(1 if enabled else 0)

    def set_realized_pnl(self, pnl: Decimal) -> None:
        self._realized_pnl.set(float(pnl))

    def get_metrics(self) -> bytes:
        """Metrics in Prometheus text exposition format."""
        return generate_latest(self._registry)
