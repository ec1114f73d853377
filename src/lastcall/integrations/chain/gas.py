"""Gas price selection for Polygon transactions.

Two tiers:
1. Polygon gas station, at the configured speed tier (safeLow/standard/fast).
2. On any oracle failure, the connected provider's suggested gas price
   plus a fixed 10% margin.

Used for every transaction type (approvals and redemptions).
"""

import asyncio
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Optional

import httpx
import structlog

from lastcall.core.errors import NetworkError

log = structlog.get_logger()

GAS_STATION_URL = "https://gasstation.polygon.technology/v2"
SPEED_TIERS = ("safeLow", "standard", "fast")
FALLBACK_MARGIN_PERCENT = 10
GWEI = 10**9


@dataclass(frozen=True)
class GasPrice:
    wei: int
    source: str  # "oracle" or "provider"
    tier: str

    @property
    def gwei(self) -> Decimal:
        return Decimal(self.wei) / Decimal(GWEI)


class GasOracle:
    """Gas price lookup with provider fallback."""

    def __init__(
        self,
        url: str = GAS_STATION_URL,
        timeout: float = 5.0,
        executor: Optional[ThreadPoolExecutor] = None,
    ):
        self._url = url
        self._timeout = timeout
        self._executor = executor or ThreadPoolExecutor(max_workers=1)
        self._log = log.bind(component="gas_oracle")

    async def _fetch_oracle(self, tier: str) -> int:
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            response = await client.get(self._url)
            response.raise_for_status()
            data = response.json()
        fee = data[tier]["maxFee"]
        wei = int(Decimal(str(fee)) * GWEI)
        if wei <= 0:
            raise ValueError(f"gas station returned non-positive fee {fee}")
        return wei

    async def _provider_price(self, w3: Any) -> int:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._executor, lambda: w3.eth.gas_price)

    async def get_gas_price(self, w3: Any, tier: str = "standard") -> GasPrice:
        """Gas price in wei for the tier.

        Raises:
            ValueError: Unknown tier.
            NetworkError: Both the oracle and the provider failed.
        """
        if tier not in SPEED_TIERS:
            raise ValueError(f"Unknown gas speed tier {tier!r}")

        try:
            wei = await self._fetch_oracle(tier)
            self._log.debug("gas_price_oracle", tier=tier, gwei=str(Decimal(wei) / GWEI))
            return GasPrice(wei=wei, source="oracle", tier=tier)
        except Exception as e:
            self._log.warning("gas_oracle_failed", tier=tier, error=str(e))

        try:
            base = await self._provider_price(w3)
        except Exception as e:
            raise NetworkError("provider gas price unavailable", cause=e) from e

        wei = int(base) * (100 + FALLBACK_MARGIN_PERCENT) // 100
        self._log.info("gas_price_provider_fallback", tier=tier, base_wei=int(base), wei=wei)
        return GasPrice(wei=wei, source="provider", tier=tier)
