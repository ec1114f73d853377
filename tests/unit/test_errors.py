"""
Unit tests for the error taxonomy and retry helpers.
"""
import httpx
import pytest
from unittest.mock import AsyncMock

from lastcall.core.errors import (
    ClaimInProgressError,
    DuplicateTradeError,
    ErrorCategory,
    InsufficientBalanceError,
    NetworkError,
    OperationInProgressError,
    RateLimitError,
    RejectionError,
    retry_transient,
    wrap_http_error,
)


def status_error(status: int, headers=None) -> httpx.HTTPStatusError:
    request = httpx.Request("GET", "https://gamma.example/events")
    response = httpx.Response(status, headers=headers, request=request)
    return httpx.HTTPStatusError("error", request=request, response=response)


def delegate(mock):
    async def call():
        return await mock()
    return call


class TestErrorHierarchy:
    """Test error categories."""

    def test_categories(self):
        assert NetworkError("x").category is ErrorCategory.TRANSIENT
        assert InsufficientBalanceError("x").category is ErrorCategory.REJECTION
        assert DuplicateTradeError("m1", "t1").category is ErrorCategory.INVARIANT

    def test_duplicate_trade_context(self):
        error = DuplicateTradeError("m1", "trade-1")

        assert error.market_id == "m1"
        assert error.existing_trade_id == "trade-1"
        assert "trade-1" in str(error)

    def test_cause_in_message(self):
        error = NetworkError("order book", cause=ConnectionError("reset"))
        assert str(error) == "order book (caused by: reset)"

    def test_in_progress_guards_share_a_base(self):
        assert issubclass(ClaimInProgressError, OperationInProgressError)


class TestWrapHttpError:
    def test_rate_limit(self):
        error = wrap_http_error(status_error(429, {"retry-after": "2"}), "gamma")

        assert isinstance(error, RateLimitError)
        assert error.retry_after == 2.0

    def test_server_error_is_transient(self):
        assert isinstance(wrap_http_error(status_error(503), "gamma"), NetworkError)

    def test_client_error_is_rejection(self):
        assert isinstance(wrap_http_error(status_error(400), "gamma"), RejectionError)

    def test_transport_error(self):
        error = wrap_http_error(httpx.ConnectError("refused"), "binance")

        assert isinstance(error, NetworkError)
        assert "ConnectError" in str(error)


class TestRetryTransient:
    """Test the tenacity-backed retry decorator."""

    @pytest.mark.asyncio
    async def test_retries_transient_then_succeeds(self):
        func = AsyncMock(side_effect=[NetworkError("blip"), "ok"])
        wrapped = retry_transient(max_attempts=3, min_wait=0, max_wait=0)(delegate(func))

        assert await wrapped() == "ok"
        assert func.await_count == 2

    @pytest.mark.asyncio
    async def test_gives_up_after_max_attempts(self):
        func = AsyncMock(side_effect=NetworkError("down"))
        wrapped = retry_transient(max_attempts=2, min_wait=0, max_wait=0)(delegate(func))

        with pytest.raises(NetworkError):
            await wrapped()
        assert func.await_count == 2

    @pytest.mark.asyncio
    async def test_rejections_not_retried(self):
        func = AsyncMock(side_effect=RejectionError("bad request"))
        wrapped = retry_transient(min_wait=0, max_wait=0)(delegate(func))

        with pytest.raises(RejectionError):
            await wrapped()
        assert func.await_count == 1

    def test_sync_functions_rejected(self):
        with pytest.raises(TypeError):
            retry_transient()(lambda: None)
