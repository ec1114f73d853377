"""
Market domain models.

Quotes, order books, resolved markets and positions for hourly up/down
markets. Everything here is normalized; upstream payload shapes never leak
past lastcall.integrations.polymarket.normalize.
"""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Optional


class Side(str, Enum):
    """Outcome side of a binary up/down market."""
    UP = "up"
    DOWN = "down"


class OrderSide(str, Enum):
    BUY = "BUY"
    SELL = "SELL"


@dataclass(frozen=True)
class MarketQuote:
    """Current two-sided quote for one open market.

    Prices are order-book mid prices in (0, 1]; up + down need not sum to 1.
    """
    asset: str
    market_id: str  # condition id
    label: str
    end_time: Optional[datetime]
    up_token_id: str
    down_token_id: str
    up_price: Decimal
    down_price: Decimal
    neg_risk: bool = False

    def price(self, side: Side) -> Decimal:
        return self.up_price if side is Side.UP else self.down_price

    def token_id(self, side: Side) -> str:
        return self.up_token_id if side is Side.UP else self.down_token_id

    def to_dict(self) -> dict[str, Any]:
        return {
            "asset": self.asset,
            "market_id": self.market_id,
            "label": self.label,
            "end_time": self.end_time.isoformat() if self.end_time else None,
            "up_token_id": self.up_token_id,
            "down_token_id": self.down_token_id,
            "up_price": str(self.up_price),
            "down_price": str(self.down_price),
            "neg_risk": self.neg_risk,
        }


@dataclass(frozen=True)
class ResolvedMarket:
    """A market that has closed and can be redeemed."""
    asset: str
    market_id: str  # condition id
    resolved_at: Optional[datetime]
    neg_risk: bool = False
    up_token_id: Optional[str] = None
    down_token_id: Optional[str] = None
    winning_side: Optional[Side] = None
    label: str = ""

    @property
    def token_ids(self) -> tuple[str, ...]:
        return tuple(t for t in (self.up_token_id, self.down_token_id) if t)


@dataclass(frozen=True)
class Position:
    """Read-only view of a held outcome token position."""
    token_id: str
    size_shares: Decimal
    current_price: Decimal
    resolved: bool = False
    market_id: Optional[str] = None
    outcome: Optional[str] = None
    title: str = ""
    neg_risk: bool = False


@dataclass(frozen=True)
class OrderBookLevel:
    price: Decimal
    size: Decimal


@dataclass
class OrderBook:
    """Order book for one token. Bids sorted high to low, asks low to high."""
    token_id: str
    bids: list[OrderBookLevel] = field(default_factory=list)
    asks: list[OrderBookLevel] = field(default_factory=list)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def best_bid(self) -> Optional[Decimal]:
        return self.bids[0].price if self.bids else None

    @property
    def best_ask(self) -> Optional[Decimal]:
        return self.asks[0].price if self.asks else None

    @property
    def mid_price(self) -> Optional[Decimal]:
        """Mid if both sides exist, else whichever side exists."""
        if self.best_bid is not None and self.best_ask is not None:
            return (self.best_bid + self.best_ask) / 2
        if self.best_ask is not None:
            return self.best_ask
        return self.best_bid

    @property
    def spread(self) -> Optional[Decimal]:
        if self.best_bid is not None and self.best_ask is not None:
            return self.best_ask - self.best_bid
        return None
