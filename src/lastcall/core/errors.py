"""
Error taxonomy and retry helpers.

Three categories drive how callers react:
- TRANSIENT: upstream unreachable or rate limited. Retried for read-only
  calls, failed over, or degraded to pass. Never fatal.
- REJECTION: a business outcome (order too small, insufficient balance,
  nothing to redeem). Classified and reported, never retried.
- INVARIANT: a programming invariant was violated (duplicate trade, missing
  order id). Aborts the current unit of work only.

Usage:
    from lastcall.core.errors import retry_transient, NetworkError

    @retry_transient()
    async def fetch_events():
        ...
"""

import asyncio
from datetime import datetime, timezone
from enum import Enum
from functools import wraps
from typing import Any, Callable, Optional, TypeVar

import httpx
import structlog
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

log = structlog.get_logger()


class ErrorCategory(str, Enum):
    """Classification of error types."""

    TRANSIENT = "transient"
    REJECTION = "rejection"
    INVARIANT = "invariant"
    UNKNOWN = "unknown"


class LastCallError(Exception):
    """Base exception for all lastcall errors."""

    category: ErrorCategory = ErrorCategory.UNKNOWN

    def __init__(self, message: str, cause: Optional[Exception] = None):
        super().__init__(message)
        self.message = message
        self.cause = cause
        self.timestamp = datetime.now(timezone.utc)

    def __str__(self) -> str:
        if self.cause:
            return f"{self.message} (caused by: {self.cause})"
        return self.message


# ---------------------------------------------------------------------------
# Transient
# ---------------------------------------------------------------------------


class TransientError(LastCallError):
    """Error that may succeed on retry."""

    category = ErrorCategory.TRANSIENT


class NetworkError(TransientError):
    """Network-related transient error."""

    pass


class RateLimitError(TransientError):
    """Upstream rate limit exceeded."""

    def __init__(
        self,
        message: str,
        retry_after: Optional[float] = None,
        cause: Optional[Exception] = None,
    ):
        super().__init__(message, cause)
        self.retry_after = retry_after


class AllEndpointsFailedError(TransientError):
    """Every configured RPC endpoint failed its liveness probe."""

    pass


# ---------------------------------------------------------------------------
# Business rejections
# ---------------------------------------------------------------------------


class RejectionError(LastCallError):
    """Business rejection - reported, never retried automatically."""

    category = ErrorCategory.REJECTION


class OrderTooSmallError(RejectionError):
    """Order rounds down to less than one share."""

    pass


class OrderRejectedError(RejectionError):
    """Broker rejected the order (error field or missing order id)."""

    pass


class InsufficientBalanceError(OrderRejectedError):
    """Broker rejected the order for balance or allowance."""

    pass


class ReadOnlyModeError(RejectionError):
    """Operation needs a signing key but the client is read-only."""

    pass


class NothingToRedeemError(RejectionError):
    """No position balance to redeem for the condition."""

    pass


class RedemptionFailedError(RejectionError):
    """Redemption transaction reverted or could not be sent."""

    def __init__(
        self,
        message: str,
        tx_hash: Optional[str] = None,
        cause: Optional[Exception] = None,
    ):
        super().__init__(message, cause)
        self.tx_hash = tx_hash


# ---------------------------------------------------------------------------
# Invariant violations
# ---------------------------------------------------------------------------


class InvariantViolation(LastCallError):
    """Programming invariant violated; abort the current unit of work."""

    category = ErrorCategory.INVARIANT


class DuplicateTradeError(InvariantViolation):
    """An open/pending/partial trade already exists for the market."""

    def __init__(self, market_id: str, existing_trade_id: str):
        super().__init__(
            f"Trade {existing_trade_id} already active for market {market_id}"
        )
        self.market_id = market_id
        self.existing_trade_id = existing_trade_id


class MissingOrderIdError(InvariantViolation):
    """Broker acknowledged an order without an order id."""

    pass


# ---------------------------------------------------------------------------
# Operation guards
# ---------------------------------------------------------------------------


class OperationInProgressError(LastCallError):
    """A non-reentrant activity is already in flight."""

    pass


class ScanInProgressError(OperationInProgressError):
    pass


class ClaimInProgressError(OperationInProgressError):
    pass


class StopLossInProgressError(OperationInProgressError):
    pass


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

F = TypeVar("F", bound=Callable[..., Any])


def wrap_http_error(error: Exception, context: str) -> LastCallError:
    """Translate an httpx exception into the lastcall taxonomy.

    Status 429 and 5xx responses and transport failures are transient.
    Anything else is a rejection.
    """
    if isinstance(error, httpx.HTTPStatusError):
        status = error.response.status_code
        if status == 429:
            retry_after = error.response.headers.get("retry-after")
            return RateLimitError(
                f"{context}: rate limited",
                retry_after=float(retry_after) if retry_after else None,
                cause=error,
            )
        if status >= 500:
            return NetworkError(f"{context}: upstream {status}", cause=error)
        return RejectionError(f"{context}: HTTP {status}", cause=error)
    if isinstance(error, httpx.TransportError):
        return NetworkError(f"{context}: {type(error).__name__}", cause=error)
    return NetworkError(f"{context}: {error}", cause=error)


def _log_retry(state: RetryCallState) -> None:
    exception = state.outcome.exception() if state.outcome else None
    log.warning(
        "retry_attempt",
        function=getattr(state.fn, "__name__", None),
        attempt=state.attempt_number,
        error=str(exception) if exception else None,
        wait_seconds=state.next_action.sleep if state.next_action else 0,
    )


def retry_transient(
    max_attempts: int = 3,
    min_wait: float = 1.0,
    max_wait: float = 10.0,
) -> Callable[[F], F]:
    """Retry an async function on TransientError with exponential backoff.

    Only for read-only calls. Order submission and redemption must not be
    wrapped.
    """

    def decorator(func: F) -> F:
        if not asyncio.iscoroutinefunction(func):
            raise TypeError("retry_transient only wraps coroutine functions")

        @wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> Any:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(max_attempts),
                wait=wait_exponential(multiplier=1, min=min_wait, max=max_wait),
                retry=retry_if_exception_type(TransientError),
                before_sleep=_log_retry,
                reraise=True,
            ):
                with attempt:
                    return await func(*args, **kwargs)

        return wrapper  # type: ignore

    return decorator
