"""Polymarket-specific types.

Connection settings and the normalized shapes produced by
lastcall.integrations.polymarket.normalize.
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from lastcall.core.config import ConfigManager
from lastcall.domain.market import Side

CLOB_URL = "https://clob.polymarket.com"
GAMMA_URL = "https://gamma-api.polymarket.com"
DATA_API_URL = "https://data-api.polymarket.com"
POLYGON_CHAIN_ID = 137


@dataclass(frozen=True)
class PolymarketSettings:
    """Connection settings for Polymarket.

    Attributes:
        private_key: Wallet private key. Empty means read-only mode.
        funder_address: Proxy wallet holding funds (signature types 1 and 2).
        signature_type: 0=EOA, 1=Magic/email, 2=browser proxy.
        clob_url: CLOB HTTP API base URL.
        gamma_url: Gamma API base URL for market discovery.
        data_api_url: Data API base URL for positions.
        chain_id: Polygon chain id.
    """

    private_key: str = ""
    funder_address: str = ""
    signature_type: int = 0
    clob_url: str = CLOB_URL
    gamma_url: str = GAMMA_URL
    data_api_url: str = DATA_API_URL
    chain_id: int = POLYGON_CHAIN_ID
    http_timeout: float = 15.0

    @classmethod
    def from_config(cls, config: ConfigManager) -> "PolymarketSettings":
        return cls(
            private_key=str(config.get("polymarket.private_key", "") or ""),
            funder_address=str(config.get("polymarket.funder_address", "") or ""),
            signature_type=config.get_int("polymarket.signature_type", 0),
            clob_url=config.get("polymarket.clob_url", CLOB_URL),
            gamma_url=config.get("polymarket.gamma_url", GAMMA_URL),
            data_api_url=config.get("polymarket.data_api_url", DATA_API_URL),
            chain_id=config.get_int("polymarket.chain_id", POLYGON_CHAIN_ID),
            http_timeout=config.get_float("polymarket.http_timeout_seconds", 15.0),
        )

    @property
    def has_signer(self) -> bool:
        return bool(self.private_key)


@dataclass(frozen=True)
class GammaMarket:
    """A Gamma market normalized to up/down sides.

    up_price/down_price come from Gamma's outcomePrices and are only a
    fallback; live quotes use the CLOB order book.
    """

    condition_id: str
    question: str
    slug: str
    up_token_id: str
    down_token_id: str
    up_price: Optional[Decimal]
    down_price: Optional[Decimal]
    end_time: Optional[datetime]
    closed_time: Optional[datetime] = None
    closed: bool = False
    resolved: bool = False
    neg_risk: bool = False
    winning_side: Optional[Side] = None


@dataclass(frozen=True)
class OrderResponse:
    """Interpreted post_order response. Accepted iff error is None."""

    order_id: Optional[str]
    error: Optional[str]
    status: str = ""
    raw: dict[str, Any] = field(default_factory=dict, compare=False)

    @property
    def accepted(self) -> bool:
        return self.error is None and bool(self.order_id)
