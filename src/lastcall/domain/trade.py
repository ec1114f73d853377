"""
Trade and opportunity models.

An Opportunity lives for one scan tick. A Trade is the durable unit of
execution persisted by the TradeStore.
"""
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Optional

from lastcall.domain.market import MarketQuote, Side


class TradeStatus(str, Enum):
    """Trade lifecycle status."""
    PENDING = "pending"
    PARTIAL = "partial"
    OPEN = "open"
    RESOLVED = "resolved"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_active(self) -> bool:
        return self in ACTIVE_STATUSES


ACTIVE_STATUSES = frozenset({TradeStatus.PENDING, TradeStatus.PARTIAL, TradeStatus.OPEN})


class TradeType(str, Enum):
    SINGLE_LEG = "single_leg"
    STRADDLE = "straddle"


@dataclass(frozen=True)
class Opportunity:
    """A single-sided candidate trade inside the configured price band."""
    market: MarketQuote
    side: Side
    price: Decimal
    size_shares: Decimal
    bet_size: Decimal
    expected_win_rate: Decimal
    expected_value: Decimal

    @property
    def market_id(self) -> str:
        return self.market.market_id

    @property
    def token_id(self) -> str:
        return self.market.token_id(self.side)

    def to_dict(self) -> dict[str, Any]:
        return {
            "market_id": self.market_id,
            "label": self.market.label,
            "side": self.side.value,
            "price": str(self.price),
            "size_shares": str(self.size_shares.quantize(Decimal("0.01"))),
            "bet_size": str(self.bet_size),
            "expected_win_rate": str(self.expected_win_rate),
            "expected_value": str(self.expected_value.quantize(Decimal("0.01"))),
        }


def new_trade_id() -> str:
    return f"trade-{uuid.uuid4().hex[:12]}"


@dataclass
class Trade:
    """A recorded trade.

    entry_price and size_shares hold the submitted (rounded) values once an
    order has been placed. For straddles the up leg is primary and the down
    leg secondary.
    """
    trade_id: str
    market_id: str
    market_label: str
    asset: str
    side: Side
    token_id: str
    entry_price: Decimal
    size_shares: Decimal
    cost: Decimal
    status: TradeStatus = TradeStatus.PENDING
    trade_type: TradeType = TradeType.SINGLE_LEG
    primary_order_id: Optional[str] = None
    secondary_order_id: Optional[str] = None
    secondary_token_id: Optional[str] = None
    secondary_price: Optional[Decimal] = None
    secondary_size: Optional[Decimal] = None
    pnl: Optional[Decimal] = None
    error: Optional[str] = None
    simulated: bool = False
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    resolved_at: Optional[datetime] = None

    @classmethod
    def from_opportunity(cls, opportunity: Opportunity) -> "Trade":
        market = opportunity.market
        return cls(
            trade_id=new_trade_id(),
            market_id=market.market_id,
            market_label=market.label,
            asset=market.asset,
            side=opportunity.side,
            token_id=opportunity.token_id,
            entry_price=opportunity.price,
            size_shares=opportunity.size_shares,
            cost=opportunity.bet_size,
        )

    @property
    def order_ids(self) -> list[str]:
        return [o for o in (self.primary_order_id, self.secondary_order_id) if o]

    @property
    def is_active(self) -> bool:
        return self.status.is_active

    def copy(self, **changes: Any) -> "Trade":
        return replace(self, **changes)

    def to_dict(self) -> dict[str, Any]:
        return {
            "trade_id": self.trade_id,
            "market_id": self.market_id,
            "market_label": self.market_label,
            "asset": self.asset,
            "trade_type": self.trade_type.value,
            "side": self.side.value,
            "token_id": self.token_id,
            "entry_price": str(self.entry_price),
            "size_shares": str(self.size_shares),
            "cost": str(self.cost),
            "status": self.status.value,
            "order_ids": self.order_ids,
            "pnl": str(self.pnl) if self.pnl is not None else None,
            "error": self.error,
            "simulated": self.simulated,
            "created_at": self.created_at.isoformat(),
            "resolved_at": self.resolved_at.isoformat() if self.resolved_at else None,
        }
