"""
Unit tests for MarketDataService.
"""
import pytest
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

from lastcall.domain.market import Side
from lastcall.integrations.polymarket.types import GammaMarket
from lastcall.services.market_data import MarketDataService


def gamma_market(condition_id: str, minutes: int = 10, closed: bool = False, **kwargs) -> GammaMarket:
    fields = dict(
        condition_id=condition_id,
        question=f"Bitcoin Up or Down {condition_id}",
        slug=condition_id,
        up_token_id=f"{condition_id}-up",
        down_token_id=f"{condition_id}-down",
        up_price=Decimal("0.90"),
        down_price=Decimal("0.10"),
        end_time=datetime.now(timezone.utc) + timedelta(minutes=minutes),
        closed=closed,
    )
    fields.update(kwargs)
    return GammaMarket(**fields)


@pytest.fixture
def gamma():
    gamma = MagicMock()
    gamma.get_series_markets = AsyncMock(return_value=[])
    return gamma


@pytest.fixture
def clob(book_factory):
    clob = MagicMock()
    clob.get_order_book = AsyncMock(
        side_effect=lambda token_id: book_factory(token_id, "0.92", "0.94")
    )
    return clob


@pytest.fixture
def service(gamma, clob):
    return MarketDataService(gamma, clob, series_ids={"BTC": "10114"})


class TestOpenMarkets:
    """Tests for open market quotes."""

    @pytest.mark.asyncio
    async def test_quotes_from_book_mid(self, service, gamma):
        gamma.get_series_markets.return_value = [gamma_market("m1")]

        quotes = await service.list_open_markets("BTC")

        assert len(quotes) == 1
        assert quotes[0].asset == "btc"
        assert quotes[0].up_price == Decimal("0.93")
        assert quotes[0].down_price == Decimal("0.93")
        args, kwargs = gamma.get_series_markets.call_args
        assert args == ("10114",)
        assert kwargs["closed"] is False

    @pytest.mark.asyncio
    async def test_falls_back_to_gamma_prices(self, service, gamma, clob):
        gamma.get_series_markets.return_value = [gamma_market("m1")]
        clob.get_order_book.side_effect = RuntimeError("book unavailable")

        quotes = await service.list_open_markets("btc")

        assert quotes[0].up_price == Decimal("0.90")
        assert quotes[0].down_price == Decimal("0.10")

    @pytest.mark.asyncio
    async def test_empty_book_falls_back(self, service, gamma, clob, book_factory):
        gamma.get_series_markets.return_value = [gamma_market("m1")]
        clob.get_order_book.side_effect = lambda token_id: book_factory(token_id)

        quotes = await service.list_open_markets("btc")

        assert quotes[0].up_price == Decimal("0.90")

    @pytest.mark.asyncio
    async def test_unpriced_market_dropped(self, service, gamma, clob, book_factory):
        gamma.get_series_markets.return_value = [
            gamma_market("m1", up_price=None, down_price=None)
        ]
        clob.get_order_book.side_effect = lambda token_id: book_factory(token_id)

        assert await service.list_open_markets("btc") == []

    @pytest.mark.asyncio
    async def test_closed_and_expired_skipped(self, service, gamma):
        gamma.get_series_markets.return_value = [
            gamma_market("closed", closed=True),
            gamma_market("expired", minutes=-5),
            gamma_market("live"),
        ]

        quotes = await service.list_open_markets("btc")

        assert [q.market_id for q in quotes] == ["live"]

    @pytest.mark.asyncio
    async def test_sorted_by_end_time(self, service, gamma):
        gamma.get_series_markets.return_value = [
            gamma_market("later", minutes=70),
            gamma_market("sooner", minutes=10),
        ]

        quotes = await service.list_open_markets("btc")

        assert [q.market_id for q in quotes] == ["sooner", "later"]

    @pytest.mark.asyncio
    async def test_asset_without_series(self, service, gamma):
        assert await service.list_open_markets("sol") == []
        gamma.get_series_markets.assert_not_called()

    def test_series_lookup_case_insensitive(self, service):
        assert service.series_id("btc") == "10114"
        assert service.series_id("BTC") == "10114"
        assert service.series_id("eth") is None


class TestResolvedMarkets:
    @pytest.mark.asyncio
    async def test_resolved_markets_deduplicated(self, service, gamma):
        resolved_at = datetime(2024, 6, 3, 20, 0, tzinfo=timezone.utc)
        gamma.get_series_markets.return_value = [
            gamma_market("m1", minutes=-60, closed=True, closed_time=resolved_at,
                         neg_risk=True, winning_side=Side.UP),
            gamma_market("m1", minutes=-60, closed=True),
            gamma_market("m2", minutes=-5),
        ]

        markets = await service.list_resolved_markets("btc", since_days=7)

        assert len(markets) == 1
        assert markets[0].market_id == "m1"
        assert markets[0].resolved_at == resolved_at
        assert markets[0].neg_risk
        assert markets[0].winning_side is Side.UP
        assert markets[0].up_token_id == "m1-up"
        kwargs = gamma.get_series_markets.call_args.kwargs
        assert kwargs["closed"] is True
        assert kwargs["end_date_max"] - kwargs["end_date_min"] == timedelta(days=7)

    @pytest.mark.asyncio
    async def test_asset_without_series(self, service):
        assert await service.list_resolved_markets("eth", since_days=7) == []
