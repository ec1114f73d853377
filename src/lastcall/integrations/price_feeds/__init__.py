"""Spot price feeds for the volatility gate."""

from lastcall.integrations.price_feeds.base import Candle, SpotPriceFeed, swing_percent
from lastcall.integrations.price_feeds.binance import BINANCE_REST_URL, BinancePriceFeed

__all__ = ["BINANCE_REST_URL", "BinancePriceFeed", "Candle", "SpotPriceFeed", "swing_percent"]
