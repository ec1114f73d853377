"""Binance spot price feed (REST).

Only used for on-demand lookups by the volatility gate, so there is no
streaming connection: each call hits the public REST API.
"""

from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Optional

import httpx
import structlog

from lastcall.core.errors import retry_transient, wrap_http_error
from lastcall.integrations.price_feeds.base import Candle

log = structlog.get_logger()

BINANCE_REST_URL = "https://api.binance.com/api/v3"

ASSET_SYMBOLS = {
    "btc": "BTCUSDT",
    "eth": "ETHUSDT",
    "sol": "SOLUSDT",
    "xrp": "XRPUSDT",
}


def symbol_for(asset: str) -> str:
    try:
        return ASSET_SYMBOLS[asset.lower()]
    except KeyError:
        raise ValueError(f"No Binance symbol for asset {asset!r}") from None


class BinancePriceFeed:
    """Binance REST client for spot prices and klines.

    Usage:
        async with BinancePriceFeed() as feed:
            candles = await feed.get_candles("btc", "5m", 12)
    """

    def __init__(self, base_url: str = BINANCE_REST_URL, timeout: float = 10.0):
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._client: Optional[httpx.AsyncClient] = None
        self._log = log.bind(component="binance_feed")

    @property
    def name(self) -> str:
        return "binance"

    async def connect(self) -> None:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self._base_url,
                timeout=httpx.Timeout(self._timeout),
            )

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "BinancePriceFeed":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    @retry_transient()
    async def _get(self, path: str, params: dict[str, Any]) -> Any:
        await self.connect()
        try:
            response = await self._client.get(path, params=params)
            response.raise_for_status()
            return response.json()
        except httpx.HTTPError as e:
            raise wrap_http_error(e, f"binance {path}") from e

    async def get_price(self, asset: str) -> Optional[Decimal]:
        symbol = symbol_for(asset)
        data = await self._get("/ticker/price", {"symbol": symbol})
        price = data.get("price") if isinstance(data, dict) else None
        return Decimal(str(price)) if price is not None else None

    async def get_candles(self, asset: str, interval: str = "5m", limit: int = 12) -> list[Candle]:
        """Fetch klines, oldest first.

        Binance kline rows are arrays:
        [open_time_ms, open, high, low, close, volume, close_time_ms, ...]
        """
        symbol = symbol_for(asset)
        rows = await self._get(
            "/klines", {"symbol": symbol, "interval": interval, "limit": limit}
        )
        candles = []
        for row in rows or []:
            try:
                candles.append(
                    Candle(
                        open_time=datetime.fromtimestamp(int(row[0]) / 1000, tz=timezone.utc),
                        open=Decimal(str(row[1])),
                        high=Decimal(str(row[2])),
                        low=Decimal(str(row[3])),
                        close=Decimal(str(row[4])),
                        volume=Decimal(str(row[5])),
                    )
                )
            except (IndexError, TypeError, ValueError) as e:
                self._log.debug("kline_row_skipped", symbol=symbol, error=str(e))
        return candles
