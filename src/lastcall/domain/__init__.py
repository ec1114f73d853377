"""Domain models - pure data structures with no I/O dependencies."""

from lastcall.domain.market import (
    MarketQuote,
    OrderBook,
    OrderBookLevel,
    OrderSide,
    Position,
    ResolvedMarket,
    Side,
)
from lastcall.domain.results import (
    AssetScanResult,
    AssetScanState,
    ClaimOutcome,
    ClaimSummary,
    OrderAck,
    RedemptionReceipt,
    RedemptionStatus,
    ScanSummary,
    SellResult,
    StopLossReport,
)
from lastcall.domain.risk import GateResult
from lastcall.domain.settings import (
    AssetSettings,
    BotSettings,
    SettingsValidationError,
)
from lastcall.domain.trade import (
    ACTIVE_STATUSES,
    Opportunity,
    Trade,
    TradeStatus,
    TradeType,
)

__all__ = [
    # Market models
    "MarketQuote",
    "OrderBook",
    "OrderBookLevel",
    "OrderSide",
    "Position",
    "ResolvedMarket",
    "Side",
    # Trades
    "ACTIVE_STATUSES",
    "Opportunity",
    "Trade",
    "TradeStatus",
    "TradeType",
    # Results
    "AssetScanResult",
    "AssetScanState",
    "ClaimOutcome",
    "ClaimSummary",
    "OrderAck",
    "RedemptionReceipt",
    "RedemptionStatus",
    "ScanSummary",
    "SellResult",
    "StopLossReport",
    # Risk
    "GateResult",
    # Settings
    "AssetSettings",
    "BotSettings",
    "SettingsValidationError",
]
