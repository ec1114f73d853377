"""Market Data Service - quotes for hourly up/down markets.

This service:
- Discovers an asset's hourly markets through its Gamma series
- Prices both sides from the CLOB order book mid, falling back to Gamma's
  outcome prices when a book is empty or unavailable
- Enumerates recently closed markets for the claim sweep

Zero markets is a normal answer (between hourly listings, or for an asset
without a configured series).
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Optional

import structlog

from lastcall.core.config import ConfigManager
from lastcall.domain.market import MarketQuote, ResolvedMarket
from lastcall.integrations.polymarket.clob import CLOBClient
from lastcall.integrations.polymarket.gamma import GammaClient
from lastcall.integrations.polymarket.types import GammaMarket

log = structlog.get_logger()

# Gamma series of the hourly "Up or Down" markets
DEFAULT_SERIES_IDS = {
    "btc": "10114",
}


def series_ids_from_config(config: ConfigManager) -> dict[str, str]:
    ids = dict(DEFAULT_SERIES_IDS)
    for asset, series_id in config.get_section("markets.series_ids").items():
        if series_id:
            ids[asset.lower()] = str(series_id)
    for asset in ("btc", "eth", "sol"):
        override = config.get(f"markets.series_ids.{asset}")
        if override:
            ids[asset] = str(override)
    return ids


class MarketDataService:
    """Market quotes from Gamma discovery plus CLOB order books."""

    def __init__(
        self,
        gamma: GammaClient,
        clob: CLOBClient,
        series_ids: Optional[dict[str, str]] = None,
        lookahead_hours: float = 2.0,
    ):
        self._gamma = gamma
        self._clob = clob
        self._series_ids = {k.lower(): v for k, v in (series_ids or DEFAULT_SERIES_IDS).items()}
        self._lookahead = timedelta(hours=lookahead_hours)
        self._log = log.bind(component="market_data")

    def series_id(self, asset: str) -> Optional[str]:
        return self._series_ids.get(asset.lower())

    async def _mid_price(self, token_id: str) -> Optional[Decimal]:
        try:
            book = await self._clob.get_order_book(token_id)
        except Exception as e:
            self._log.debug("order_book_fetch_failed", token_id=token_id[:16], error=str(e))
            return None
        return book.mid_price

    async def _quote(self, asset: str, market: GammaMarket) -> Optional[MarketQuote]:
        up_price = await self._mid_price(market.up_token_id) or market.up_price
        down_price = await self._mid_price(market.down_token_id) or market.down_price
        if up_price is None or down_price is None:
            self._log.debug("market_unpriced", market_id=market.condition_id[:16])
            return None
        return MarketQuote(
            asset=asset,
            market_id=market.condition_id,
            label=market.question or market.slug,
            end_time=market.end_time,
            up_token_id=market.up_token_id,
            down_token_id=market.down_token_id,
            up_price=up_price,
            down_price=down_price,
            neg_risk=market.neg_risk,
        )

    async def list_open_markets(self, asset: str) -> list[MarketQuote]:
        """Open markets of the asset closing within the lookahead, soonest first."""
        asset = asset.lower()
        series_id = self.series_id(asset)
        if not series_id:
            self._log.warning("series_not_configured", asset=asset)
            return []

        now = datetime.now(timezone.utc)
        markets = await self._gamma.get_series_markets(
            series_id,
            closed=False,
            end_date_min=now,
            end_date_max=now + self._lookahead,
        )

        quotes = []
        for market in markets:
            if market.closed or (market.end_time is not None and market.end_time <= now):
                continue
            quote = await self._quote(asset, market)
            if quote is not None:
                quotes.append(quote)

        quotes.sort(key=lambda q: q.end_time or now)
        self._log.debug("open_markets_listed", asset=asset, markets=len(quotes))
        return quotes

    async def list_resolved_markets(self, asset: str, since_days: int) -> list[ResolvedMarket]:
        """Markets of the asset that closed within the last since_days days."""
        asset = asset.lower()
        series_id = self.series_id(asset)
        if not series_id:
            self._log.warning("series_not_configured", asset=asset)
            return []

        now = datetime.now(timezone.utc)
        markets = await self._gamma.get_series_markets(
            series_id,
            closed=True,
            end_date_min=now - timedelta(days=since_days),
            end_date_max=now,
            limit=500,
        )

        resolved = []
        seen: set[str] = set()
        for market in markets:
            if not market.closed or market.condition_id in seen:
                continue
            seen.add(market.condition_id)
            resolved.append(
                ResolvedMarket(
                    asset=asset,
                    market_id=market.condition_id,
                    resolved_at=market.closed_time or market.end_time,
                    neg_risk=market.neg_risk,
                    up_token_id=market.up_token_id,
                    down_token_id=market.down_token_id,
                    winning_side=market.winning_side,
                    label=market.question,
                )
            )
        self._log.debug("resolved_markets_listed", asset=asset, markets=len(resolved))
        return resolved
