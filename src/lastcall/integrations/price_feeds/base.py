"""Base protocol for spot price feeds.

Spot feeds supply reference prices of the underlying asset, used by the
volatility gate to measure short-horizon price swings.
"""

from abc import abstractmethod
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional, Protocol


@dataclass(frozen=True)
class Candle:
    """One OHLC candle."""

    open_time: datetime
    open: Decimal
    high: Decimal
    low: Decimal
    close: Decimal
    volume: Decimal


class SpotPriceFeed(Protocol):
    """Protocol for external spot price feeds."""

    @abstractmethod
    async def get_price(self, asset: str) -> Optional[Decimal]:
        """Latest spot price for an asset (e.g. "btc"), None if unavailable."""
        ...

    @abstractmethod
    async def get_candles(self, asset: str, interval: str, limit: int) -> list[Candle]:
        """Most recent candles, oldest first."""
        ...


def swing_percent(candles: list[Candle]) -> Optional[Decimal]:
    """Price swing over the candles: (max high - min low) / mid * 100."""
    if not candles:
        return None
    high = max(c.high for c in candles)
    low = min(c.low for c in candles)
    mid = (high + low) / 2
    if mid <= 0:
        return None
    return (high - low) / mid * 100
