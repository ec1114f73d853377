"""Services - market data, execution, settlement, scheduling, persistence."""

from lastcall.services.execution import ExecutionEngine
from lastcall.services.market_data import MarketDataService
from lastcall.services.metrics import MetricsEmitter
from lastcall.services.risk_gates import TradingWindowGate, VolatilityGate
from lastcall.services.scheduler import TradingScheduler
from lastcall.services.settings import SettingsManager
from lastcall.services.settlement import ClaimService
from lastcall.services.stop_loss import StopLossMonitor
from lastcall.services.trade_store import TradeStore

__all__ = [
    "ClaimService",
    "ExecutionEngine",
    "MarketDataService",
    "MetricsEmitter",
    "SettingsManager",
    "StopLossMonitor",
    "TradeStore",
    "TradingScheduler",
    "TradingWindowGate",
    "VolatilityGate",
]
