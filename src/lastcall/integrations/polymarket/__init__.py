"""Polymarket integrations - CLOB (orders, books, positions) and Gamma (discovery)."""

from lastcall.integrations.polymarket.clob import CLOBClient, CLOBClientError
from lastcall.integrations.polymarket.gamma import GammaClient
from lastcall.integrations.polymarket.types import (
    GammaMarket,
    OrderResponse,
    PolymarketSettings,
)

__all__ = [
    "CLOBClient",
    "CLOBClientError",
    "GammaClient",
    "GammaMarket",
    "OrderResponse",
    "PolymarketSettings",
]
