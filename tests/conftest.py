"""
Shared pytest fixtures for lastcall tests.
"""
import itertools
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio

from lastcall.domain.market import MarketQuote, OrderBook, OrderBookLevel
from lastcall.domain.results import OrderAck


def make_quote(
    up: str = "0.92",
    down: str = "0.08",
    market_id: str = "0x" + "ab" * 32,
    asset: str = "btc",
) -> MarketQuote:
    return MarketQuote(
        asset=asset,
        market_id=market_id,
        label="Bitcoin Up or Down - 3PM ET",
        end_time=datetime.now(timezone.utc) + timedelta(minutes=10),
        up_token_id="111111",
        down_token_id="222222",
        up_price=Decimal(up),
        down_price=Decimal(down),
    )


def make_book(token_id: str, bid: str = None, ask: str = None) -> OrderBook:
    return OrderBook(
        token_id=token_id,
        bids=[OrderBookLevel(Decimal(bid), Decimal("100"))] if bid else [],
        asks=[OrderBookLevel(Decimal(ask), Decimal("100"))] if ask else [],
    )


@pytest.fixture
def quote() -> MarketQuote:
    return make_quote()


@pytest.fixture
def quote_factory():
    return make_quote


@pytest.fixture
def book_factory():
    return make_book


@pytest.fixture
def mock_config():
    """ConfigManager mock answering from a plain dict."""
    values: dict = {}

    config = MagicMock()
    config.values = values
    config.get.side_effect = lambda key, default=None: values.get(key, default)
    config.get_int.side_effect = lambda key, default=0: int(values.get(key, default))
    config.get_float.side_effect = lambda key, default=0.0: float(values.get(key, default))
    config.get_bool.side_effect = lambda key, default=False: bool(values.get(key, default))
    config.get_list.side_effect = lambda key, default=None: values.get(key, default or [])
    config.get_section.side_effect = lambda key: values.get(key, {})
    return config


@pytest.fixture
def mock_clob():
    """Signing CLOB client mock; books quote 0.91/0.93 and every order is accepted."""
    counter = itertools.count(1)

    async def submit(token_id, price, size, side):
        return OrderAck(
            order_id=f"order-{next(counter)}",
            token_id=token_id,
            price=price,
            size=size,
            side=side.value,
            status="matched",
        )

    clob = MagicMock()
    clob.is_read_only = False
    clob.address = "0x" + "12" * 20
    clob.get_order_book = AsyncMock(
        side_effect=lambda token_id: make_book(token_id, bid="0.91", ask="0.93")
    )
    clob.submit_order = AsyncMock(side_effect=submit)
    clob.cancel_order = AsyncMock(return_value=True)
    clob.get_positions = AsyncMock(return_value=[])
    return clob


@pytest_asyncio.fixture
async def store(tmp_path):
    """Real TradeStore on a temporary database."""
    from lastcall.services.trade_store import TradeStore

    trade_store = TradeStore(db_path=str(tmp_path / "lastcall.db"))
    await trade_store.connect()
    yield trade_store
    await trade_store.close()
