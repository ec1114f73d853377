"""
Unit tests for the Polymarket CLOB and Gamma clients and the Binance feed.

HTTP is served by httpx.MockTransport; py-clob-client is mocked.
"""
import json
from decimal import Decimal
from unittest.mock import MagicMock

import httpx
import pytest

from lastcall.core.errors import (
    InsufficientBalanceError,
    MissingOrderIdError,
    NetworkError,
    OrderRejectedError,
    ReadOnlyModeError,
    RejectionError,
)
from lastcall.domain.market import OrderSide
from lastcall.integrations.polymarket.clob import CLOBClient, CLOBClientError
from lastcall.integrations.polymarket.gamma import GammaClient
from lastcall.integrations.polymarket.types import PolymarketSettings
from lastcall.integrations.price_feeds.binance import BinancePriceFeed


PRIVATE_KEY = "0x" + "11" * 32
WALLET = "0x" + "12" * 20


def event(event_id: str = "9001", markets=None):
    return {
        "id": event_id,
        "title": "Bitcoin Up or Down - June 3, 3PM ET",
        "endDate": "2024-06-03T20:00:00Z",
        "markets": markets if markets is not None else [
            {
                "conditionId": "0x" + "ab" * 32,
                "question": "Bitcoin Up or Down - June 3, 3PM ET",
                "outcomes": '["Up", "Down"]',
                "outcomePrices": '["0.92", "0.08"]',
                "clobTokenIds": '["111111", "222222"]',
                "endDate": "2024-06-03T20:00:00Z",
                "closed": False,
            }
        ],
    }


@pytest.fixture
def signing_clob():
    clob = CLOBClient(PolymarketSettings(private_key=PRIVATE_KEY, funder_address=WALLET))
    clob._client = MagicMock()
    clob._client.create_order.return_value = "signed-order"
    clob._client.post_order.return_value = {
        "success": True,
        "orderID": "0xorder",
        "status": "matched",
    }
    clob._connected = True
    return clob


class TestCLOBOrders:
    """Tests for order submission and cancellation."""

    @pytest.mark.asyncio
    async def test_accepted_order(self, signing_clob):
        ack = await signing_clob.submit_order("111111", Decimal("0.94"), Decimal("95"), OrderSide.BUY)

        assert ack.order_id == "0xorder"
        assert ack.price == Decimal("0.94")
        assert ack.status == "matched"
        order_args = signing_clob._client.create_order.call_args.args[0]
        assert order_args.token_id == "111111"
        assert order_args.price == 0.94
        assert order_args.side == "BUY"

    @pytest.mark.asyncio
    async def test_post_exception_with_balance_message(self, signing_clob):
        signing_clob._client.post_order.side_effect = Exception("not enough balance / allowance")

        with pytest.raises(InsufficientBalanceError):
            await signing_clob.submit_order("111111", Decimal("0.94"), Decimal("95"), OrderSide.BUY)

    @pytest.mark.asyncio
    async def test_error_in_response_body(self, signing_clob):
        signing_clob._client.post_order.return_value = {
            "success": False,
            "errorMsg": "order crosses book",
        }

        with pytest.raises(OrderRejectedError) as exc_info:
            await signing_clob.submit_order("111111", Decimal("0.94"), Decimal("95"), OrderSide.BUY)

        assert not isinstance(exc_info.value, InsufficientBalanceError)

    @pytest.mark.asyncio
    async def test_missing_order_id(self, signing_clob):
        signing_clob._client.post_order.return_value = {"success": True, "status": "matched"}

        with pytest.raises(MissingOrderIdError):
            await signing_clob.submit_order("111111", Decimal("0.94"), Decimal("95"), OrderSide.BUY)

    @pytest.mark.asyncio
    async def test_read_only_cannot_submit(self):
        clob = CLOBClient(PolymarketSettings())
        clob._client = MagicMock()
        clob._connected = True

        assert clob.is_read_only
        with pytest.raises(ReadOnlyModeError):
            await clob.submit_order("111111", Decimal("0.94"), Decimal("95"), OrderSide.BUY)

    @pytest.mark.asyncio
    async def test_not_connected(self):
        with pytest.raises(CLOBClientError):
            await CLOBClient(PolymarketSettings()).get_order_book("111111")

    @pytest.mark.asyncio
    async def test_cancel_failure_returns_false(self, signing_clob):
        signing_clob._client.cancel.side_effect = Exception("order not found")

        assert await signing_clob.cancel_order("0xorder") is False

    @pytest.mark.asyncio
    async def test_order_book(self, signing_clob):
        signing_clob._client.get_order_book.return_value = {
            "bids": [{"price": "0.90", "size": "10"}, {"price": "0.91", "size": "4"}],
            "asks": [{"price": "0.93", "size": "8"}],
        }

        book = await signing_clob.get_order_book("111111")

        assert book.best_bid == Decimal("0.91")
        assert book.mid_price == Decimal("0.92")


class TestCLOBPositions:
    @pytest.mark.asyncio
    async def test_positions_from_data_api(self, signing_clob):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.params["user"] == WALLET
            return httpx.Response(200, json=[
                {"asset": "111111", "size": 95, "curPrice": 0.62, "redeemable": False},
                {"size": 1},
            ])

        signing_clob._http = httpx.AsyncClient(
            base_url="https://data-api.example", transport=httpx.MockTransport(handler)
        )

        positions = await signing_clob.get_positions()

        assert len(positions) == 1
        assert positions[0].current_price == Decimal("0.62")
        await signing_clob._http.aclose()

    @pytest.mark.asyncio
    async def test_positions_http_error_wrapped(self, signing_clob):
        signing_clob._http = httpx.AsyncClient(
            base_url="https://data-api.example",
            transport=httpx.MockTransport(lambda request: httpx.Response(503)),
        )

        with pytest.raises(NetworkError):
            await signing_clob.get_positions()
        await signing_clob._http.aclose()


class TestGammaClient:
    """Tests for series discovery."""

    @staticmethod
    def gamma_with(handler) -> GammaClient:
        gamma = GammaClient(PolymarketSettings(gamma_url="https://gamma.example"))
        gamma._client = httpx.AsyncClient(
            base_url="https://gamma.example", transport=httpx.MockTransport(handler)
        )
        return gamma

    @pytest.mark.asyncio
    async def test_series_markets(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen.update(request.url.params)
            return httpx.Response(200, json=[event()])

        gamma = self.gamma_with(handler)
        markets = await gamma.get_series_markets("10114", closed=False)
        await gamma.close()

        assert seen["series_id"] == "10114"
        assert seen["closed"] == "false"
        assert len(markets) == 1
        assert markets[0].up_token_id == "111111"

    @pytest.mark.asyncio
    async def test_event_without_markets_fetched_individually(self):
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path == "/events/9001":
                return httpx.Response(200, content=json.dumps(event()))
            return httpx.Response(200, json=[event(markets=[])])

        gamma = self.gamma_with(handler)
        markets = await gamma.get_series_markets("10114", closed=True)
        await gamma.close()

        assert len(markets) == 1

    @pytest.mark.asyncio
    async def test_server_error_is_transient(self):
        gamma = self.gamma_with(lambda request: httpx.Response(502))

        with pytest.raises(NetworkError):
            await gamma.get_series_events("10114", closed=False)
        await gamma.close()

    @pytest.mark.asyncio
    async def test_missing_event(self):
        gamma = self.gamma_with(lambda request: httpx.Response(404))

        assert await gamma.get_event("404") is None
        await gamma.close()


class TestBinanceFeed:
    @staticmethod
    def feed_with(handler) -> BinancePriceFeed:
        feed = BinancePriceFeed("https://binance.example")
        feed._client = httpx.AsyncClient(
            base_url="https://binance.example", transport=httpx.MockTransport(handler)
        )
        return feed

    @pytest.mark.asyncio
    async def test_candles(self):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.params["symbol"] == "BTCUSDT"
            return httpx.Response(200, json=[
                [1717444800000, "67000.1", "67100.0", "66950.5", "67050.0", "12.3", 1717445099999],
                ["bad-row"],
            ])

        feed = self.feed_with(handler)
        candles = await feed.get_candles("btc", "5m", 12)
        await feed.close()

        assert len(candles) == 1
        assert candles[0].high == Decimal("67100.0")

    @pytest.mark.asyncio
    async def test_client_error_is_rejection(self):
        feed = self.feed_with(lambda request: httpx.Response(400))

        with pytest.raises(RejectionError):
            await feed.get_price("btc")
        await feed.close()

    @pytest.mark.asyncio
    async def test_unknown_asset(self):
        with pytest.raises(ValueError):
            await BinancePriceFeed().get_candles("doge")
