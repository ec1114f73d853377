"""
Structured results returned by public operations.

Each result distinguishes success, expected no-op (skipped) and unexpected
failure so callers never have to infer outcomes from exceptions.
"""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Optional


@dataclass(frozen=True)
class OrderAck:
    """Broker acknowledgement of an accepted order."""
    order_id: str
    token_id: str
    price: Decimal
    size: Decimal
    side: str
    status: str = ""
    raw: dict[str, Any] = field(default_factory=dict, compare=False)


@dataclass(frozen=True)
class SellResult:
    """Outcome of a market sell (stop-loss exit)."""
    token_id: str
    success: bool
    order_id: Optional[str] = None
    price: Optional[Decimal] = None
    size: Optional[Decimal] = None
    error: Optional[str] = None

    @property
    def proceeds(self) -> Decimal:
        if self.price is None or self.size is None:
            return Decimal("0")
        return self.price * self.size


class RedemptionStatus(str, Enum):
    CONFIRMED = "confirmed"
    UNKNOWN = "unknown"  # receipt wait timed out


@dataclass(frozen=True)
class RedemptionReceipt:
    condition_id: str
    tx_hash: str
    status: RedemptionStatus
    block_number: Optional[int] = None
    gas_used: Optional[int] = None
    neg_risk: bool = False


class ClaimOutcome(str, Enum):
    SUCCESS = "success"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass
class ClaimSummary:
    """Counts for one claim sweep. attempted == success + skipped + failed."""
    attempted: int = 0
    success: int = 0
    skipped: int = 0
    failed: int = 0
    errors: list[dict[str, str]] = field(default_factory=list)
    days_back: int = 0
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: Optional[datetime] = None

    def record(self, outcome: ClaimOutcome, market_id: str = "", error: str = "") -> None:
        self.attempted += 1
        if outcome is ClaimOutcome.SUCCESS:
            self.success += 1
        elif outcome is ClaimOutcome.SKIPPED:
            self.skipped += 1
        else:
            self.failed += 1
            self.errors.append({"market_id": market_id, "error": error})

    def to_dict(self) -> dict[str, Any]:
        return {
            "attempted": self.attempted,
            "success": self.success,
            "skipped": self.skipped,
            "failed": self.failed,
            "errors": list(self.errors),
            "days_back": self.days_back,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
        }


@dataclass
class StopLossReport:
    checked: int = 0
    sold: int = 0
    failed: int = 0
    sells: list[SellResult] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "checked": self.checked,
            "sold": self.sold,
            "failed": self.failed,
            "sells": [
                {
                    "token_id": s.token_id,
                    "success": s.success,
                    "order_id": s.order_id,
                    "price": str(s.price) if s.price is not None else None,
                    "size": str(s.size) if s.size is not None else None,
                    "error": s.error,
                }
                for s in self.sells
            ],
        }


class AssetScanState(str, Enum):
    """Terminal state of one asset within a scan cycle."""
    EVALUATED = "evaluated"
    SKIPPED = "skipped"
    ERROR = "error"


@dataclass
class AssetScanResult:
    asset: str
    state: AssetScanState = AssetScanState.EVALUATED
    markets_seen: int = 0
    opportunities: int = 0
    trades_executed: int = 0
    skip_reasons: list[str] = field(default_factory=list)
    error: Optional[str] = None


@dataclass
class ScanSummary:
    """Summary of one multi-asset scan."""
    markets_seen: int = 0
    opportunities: int = 0
    trades_executed: int = 0
    forced: bool = False
    assets: list[AssetScanResult] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: Optional[datetime] = None

    def add(self, result: AssetScanResult) -> None:
        self.assets.append(result)
        self.markets_seen += result.markets_seen
        self.opportunities += result.opportunities
        self.trades_executed += result.trades_executed
        if result.error:
            self.errors.append(f"{result.asset}: {result.error}")

    @property
    def duration_seconds(self) -> float:
        if self.finished_at is None:
            return 0.0
        return (self.finished_at - self.started_at).total_seconds()

    def to_dict(self) -> dict[str, Any]:
        return {
            "markets_seen": self.markets_seen,
            "opportunities": self.opportunities,
            "trades_executed": self.trades_executed,
            "forced": self.forced,
            "errors": list(self.errors),
            "assets": [
                {
                    "asset": a.asset,
                    "state": a.state.value,
                    "markets_seen": a.markets_seen,
                    "opportunities": a.opportunities,
                    "trades_executed": a.trades_executed,
                    "skip_reasons": list(a.skip_reasons),
                    "error": a.error,
                }
                for a in self.assets
            ],
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
        }
