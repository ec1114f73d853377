"""Risk gates applied before execution.

Gates answer "may we trade now?" and never mutate state. Scanning and
quote snapshots happen regardless; only execution is gated.

- TradingWindowGate: minute-of-hour window [start, end], inclusive.
- VolatilityGate: volatile hours (America/New_York), spot price swing
  from Binance klines, and order-book spread. Feed or book failures
  degrade to pass with a warning.
"""

from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional
from zoneinfo import ZoneInfo

import structlog

from lastcall.domain.risk import GateResult
from lastcall.domain.settings import TradingWindowSettings, VolatilitySettings
from lastcall.integrations.polymarket.clob import CLOBClient
from lastcall.integrations.price_feeds.base import SpotPriceFeed, swing_percent

log = structlog.get_logger()

EASTERN = ZoneInfo("America/New_York")
KLINE_INTERVAL = "5m"
KLINE_LIMIT = 12
# Spread reported when a book side is empty
EMPTY_BOOK_SPREAD_CENTS = Decimal("100")


class TradingWindowGate:
    """Execution allowed only between start and end minute of each hour."""

    name = "trading_window"

    def __init__(self, start_minute: int = 45, end_minute: int = 59):
        if not (0 <= start_minute <= end_minute <= 59):
            raise ValueError(f"Invalid trading window {start_minute}..{end_minute}")
        self.start_minute = start_minute
        self.end_minute = end_minute

    @classmethod
    def from_settings(cls, settings: TradingWindowSettings) -> "TradingWindowGate":
        return cls(settings.start_minute, settings.end_minute)

    def is_in_window(self, minute: int) -> bool:
        return self.start_minute <= minute <= self.end_minute

    def minutes_until_window(self, minute: int) -> int:
        if self.is_in_window(minute):
            return 0
        if minute < self.start_minute:
            return self.start_minute - minute
        return 60 - minute + self.start_minute

    def check(self, now: Optional[datetime] = None) -> GateResult:
        now = now or datetime.now(timezone.utc)
        if self.is_in_window(now.minute):
            return GateResult.passed(gate=self.name)
        return GateResult.blocked(
            f"outside trading window {self.start_minute}-{self.end_minute} "
            f"(minute {now.minute}, opens in {self.minutes_until_window(now.minute)}m)",
            gate=self.name,
        )


class VolatilityGate:
    """Blocks trading in volatile conditions."""

    name = "volatility"

    def __init__(self, price_feed: SpotPriceFeed, clob: CLOBClient):
        self._price_feed = price_feed
        self._clob = clob
        self._log = log.bind(component="volatility_gate")

    def check_volatile_hours(
        self,
        settings: VolatilitySettings,
        now: Optional[datetime] = None,
    ) -> GateResult:
        now = now or datetime.now(timezone.utc)
        hour = now.astimezone(EASTERN).hour
        if settings.skip_volatile_hours and hour in settings.volatile_hours_et:
            return GateResult.blocked(f"volatile hour {hour}:00 ET", gate=self.name)
        return GateResult.passed(gate=self.name)

    async def check_price_swing(self, asset: str, settings: VolatilitySettings) -> GateResult:
        if not settings.check_realtime_volatility:
            return GateResult.passed(gate=self.name)
        try:
            candles = await self._price_feed.get_candles(asset, KLINE_INTERVAL, KLINE_LIMIT)
        except Exception as e:
            self._log.warning("volatility_feed_unavailable", asset=asset, error=str(e))
            return GateResult.passed(gate=self.name)

        swing = swing_percent(candles)
        if swing is None:
            self._log.warning("volatility_feed_empty", asset=asset)
            return GateResult.passed(gate=self.name)
        if swing > settings.max_hourly_volatility_percent:
            return GateResult.blocked(
                f"{asset} swing {swing:.2f}% exceeds {settings.max_hourly_volatility_percent}%",
                gate=self.name,
            )
        return GateResult.passed(gate=self.name)

    async def check_spread(self, token_id: str, settings: VolatilitySettings) -> GateResult:
        if not settings.check_spread:
            return GateResult.passed(gate=self.name)
        try:
            book = await self._clob.get_order_book(token_id)
        except Exception as e:
            self._log.warning("spread_book_unavailable", token_id=token_id[:16], error=str(e))
            return GateResult.passed(gate=self.name)

        spread = book.spread
        spread_cents = spread * 100 if spread is not None else EMPTY_BOOK_SPREAD_CENTS
        if spread_cents > settings.max_spread_cents:
            return GateResult.blocked(
                f"spread {spread_cents:.1f}c exceeds {settings.max_spread_cents}c",
                gate=self.name,
            )
        return GateResult.passed(gate=self.name)

    async def check(
        self,
        asset: str,
        token_id: Optional[str],
        settings: VolatilitySettings,
        now: Optional[datetime] = None,
    ) -> GateResult:
        """Run every enabled sub-check; reasons of all failures are combined."""
        if not settings.enabled:
            return GateResult.passed(gate=self.name)

        result = self.check_volatile_hours(settings, now)
        result = result.combine(await self.check_price_swing(asset, settings))
        if token_id:
            result = result.combine(await self.check_spread(token_id, settings))

        if not result.can_trade:
            self._log.info("volatility_gate_blocked", asset=asset, reasons=list(result.reasons))
        return result
