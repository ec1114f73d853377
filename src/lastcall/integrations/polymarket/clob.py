"""Polymarket CLOB client for order execution.

Wraps the synchronous py-clob-client library with asyncio support using a
thread pool executor. Positions come from the Polymarket data API, which
the CLOB itself does not expose.

Read-only mode is explicit client state: without a private key (or when
signer initialization fails) the client can still read order books and
positions, and ``is_read_only`` is True. Callers check it before trading.
"""

import asyncio
from concurrent.futures import ThreadPoolExecutor
from decimal import Decimal
from typing import Any, Optional

import httpx
import structlog
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from lastcall.core.errors import (
    InsufficientBalanceError,
    MissingOrderIdError,
    NetworkError,
    OrderRejectedError,
    ReadOnlyModeError,
    wrap_http_error,
)
from lastcall.domain.market import OrderBook, OrderSide, Position
from lastcall.domain.results import OrderAck
from lastcall.integrations.polymarket.normalize import (
    normalize_order_book,
    normalize_order_response,
    normalize_position,
)
from lastcall.integrations.polymarket.types import PolymarketSettings

log = structlog.get_logger()

RETRY_ATTEMPTS = 3
RETRY_WAIT_MIN = 1
RETRY_WAIT_MAX = 10

# Broker error messages that mean the wallet cannot cover the order
BALANCE_SIGNATURES = ("balance", "allowance")


class CLOBClientError(Exception):
    """Client used before connect()."""


def classify_rejection(message: str) -> OrderRejectedError:
    lowered = message.lower()
    if any(sig in lowered for sig in BALANCE_SIGNATURES):
        return InsufficientBalanceError(message)
    return OrderRejectedError(message)


class CLOBClient:
    """Async client for the Polymarket CLOB.

    Usage:
        async with CLOBClient(settings) as clob:
            book = await clob.get_order_book(token_id)
            if not clob.is_read_only:
                ack = await clob.submit_order(token_id, price, size, OrderSide.BUY)
    """

    def __init__(
        self,
        settings: PolymarketSettings,
        order_type: str = "FAK",
        executor: Optional[ThreadPoolExecutor] = None,
    ):
        """Initialize the CLOB client.

        Args:
            settings: Polymarket connection settings including credentials.
            order_type: py-clob-client OrderType name used for submissions.
                FAK (fill-and-kill) and FOK are immediate-or-cancel styles.
            executor: Optional thread pool for async execution.
        """
        self._settings = settings
        self._order_type = order_type.upper()
        self._executor = executor or ThreadPoolExecutor(max_workers=4)
        self._client = None  # py-clob-client ClobClient instance
        self._http: Optional[httpx.AsyncClient] = None
        self._read_only = not settings.has_signer
        self._address: Optional[str] = settings.funder_address or None
        self._connected = False
        self._log = log.bind(component="clob_client")

    @property
    def is_read_only(self) -> bool:
        return self._read_only

    @property
    def address(self) -> Optional[str]:
        """Wallet whose positions are tracked (funder if set, else signer)."""
        return self._address

    @property
    def is_connected(self) -> bool:
        return self._connected

    async def connect(self) -> None:
        """Initialize the underlying CLOB client.

        A signer that fails to initialize degrades the client to read-only
        instead of raising.
        """
        if self._connected:
            return

        from py_clob_client.client import ClobClient

        host = self._settings.clob_url.rstrip("/")
        if self._settings.has_signer:
            try:
                self._client = await self._run_sync(self._create_signing_client, ClobClient, host)
                self._read_only = False
            except Exception as e:
                self._log.error("clob_signer_init_failed", error=str(e))
                self._client = ClobClient(host, chain_id=self._settings.chain_id)
                self._read_only = True
        else:
            self._client = ClobClient(host, chain_id=self._settings.chain_id)
            self._read_only = True

        self._http = httpx.AsyncClient(
            base_url=self._settings.data_api_url.rstrip("/"),
            timeout=self._settings.http_timeout,
            headers={"Accept": "application/json"},
        )
        self._connected = True
        self._log.info(
            "clob_client_connected",
            url=host,
            read_only=self._read_only,
            address=self._address,
        )

    def _create_signing_client(self, clob_cls: Any, host: str) -> Any:
        kwargs: dict[str, Any] = {
            "key": self._settings.private_key,
            "chain_id": self._settings.chain_id,
            "signature_type": self._settings.signature_type,
        }
        if self._settings.funder_address:
            kwargs["funder"] = self._settings.funder_address
        client = clob_cls(host, **kwargs)
        client.set_api_creds(client.create_or_derive_api_creds())
        if not self._address:
            self._address = client.get_address()
        return client

    async def close(self) -> None:
        if self._http is not None:
            await self._http.aclose()
            self._http = None
        self._client = None
        self._connected = False
        self._log.info("clob_client_closed")

    async def __aenter__(self) -> "CLOBClient":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    def _ensure_connected(self):
        if not self._connected or self._client is None:
            raise CLOBClientError("Client not connected. Call connect() first.")
        return self._client

    def _ensure_signer(self):
        client = self._ensure_connected()
        if self._read_only:
            raise ReadOnlyModeError("CLOB client is read-only (no signing key)")
        return client

    async def _run_sync(self, func, *args, **kwargs):
        """Run a synchronous function in the thread pool."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(
            self._executor, lambda: func(*args, **kwargs)
        )

    # =========================================================================
    # Market data
    # =========================================================================

    @retry(
        stop=stop_after_attempt(RETRY_ATTEMPTS),
        wait=wait_exponential(multiplier=1, min=RETRY_WAIT_MIN, max=RETRY_WAIT_MAX),
        retry=retry_if_exception_type(NetworkError),
        reraise=True,
    )
    async def get_order_book(self, token_id: str) -> OrderBook:
        client = self._ensure_connected()
        try:
            raw_book = await self._run_sync(client.get_order_book, token_id)
        except (OSError, httpx.TransportError) as e:
            raise NetworkError(f"order book {token_id[:16]}", cause=e) from e
        return normalize_order_book(token_id, raw_book)

    async def get_positions(self) -> list[Position]:
        """Open positions of the tracked wallet from the data API."""
        self._ensure_connected()
        if not self._address:
            self._log.debug("positions_skipped", reason="no wallet address")
            return []
        try:
            raw = await self._get_positions_raw(self._address)
        except httpx.HTTPError as e:
            raise wrap_http_error(e, "data-api positions") from e

        positions = []
        for item in raw if isinstance(raw, list) else []:
            position = normalize_position(item)
            if position is not None:
                positions.append(position)
        return positions

    @retry(
        stop=stop_after_attempt(RETRY_ATTEMPTS),
        wait=wait_exponential(multiplier=1, min=RETRY_WAIT_MIN, max=RETRY_WAIT_MAX),
        retry=retry_if_exception_type((httpx.TransportError, httpx.TimeoutException)),
        reraise=True,
    )
    async def _get_positions_raw(self, address: str) -> Any:
        response = await self._http.get(
            "/positions",
            params={"user": address, "sizeThreshold": "0.01", "limit": 500},
        )
        response.raise_for_status()
        return response.json()

    # =========================================================================
    # Orders
    # =========================================================================

    async def submit_order(
        self,
        token_id: str,
        price: Decimal,
        size: Decimal,
        side: OrderSide,
    ) -> OrderAck:
        """Sign and post an immediate-or-cancel order.

        price and size must already satisfy exchange precision. The call is
        never retried.

        Raises:
            ReadOnlyModeError: Client has no signer.
            InsufficientBalanceError: Broker reported balance/allowance.
            OrderRejectedError: Any other broker error or success=false.
            MissingOrderIdError: Response had no error but no order id.
        """
        client = self._ensure_signer()

        from py_clob_client.clob_types import OrderArgs, OrderType

        order_type = getattr(OrderType, self._order_type)
        args = OrderArgs(
            token_id=token_id,
            price=float(price),
            size=float(size),
            side=side.value,
        )

        self._log.info(
            "submitting_order",
            token_id=token_id[:16],
            side=side.value,
            price=str(price),
            size=str(size),
            order_type=self._order_type,
        )

        try:
            signed = await self._run_sync(client.create_order, args)
            raw = await self._run_sync(client.post_order, signed, order_type)
        except Exception as e:
            message = getattr(e, "error_msg", None) or str(e)
            self._log.warning("order_post_failed", token_id=token_id[:16], error=str(message))
            raise classify_rejection(str(message)) from e

        response = normalize_order_response(raw)
        if not response.accepted:
            self._log.warning(
                "order_rejected",
                token_id=token_id[:16],
                error=response.error,
                status=response.status,
            )
            if response.error == "missing order id":
                raise MissingOrderIdError("Broker acknowledged order without an order id")
            raise classify_rejection(response.error or "order rejected")

        self._log.info(
            "order_accepted",
            order_id=response.order_id,
            status=response.status,
        )
        return OrderAck(
            order_id=response.order_id,
            token_id=token_id,
            price=price,
            size=size,
            side=side.value,
            status=response.status,
            raw=response.raw,
        )

    async def cancel_order(self, order_id: str) -> bool:
        """Cancel a single order. Failures are logged and return False."""
        client = self._ensure_signer()
        try:
            await self._run_sync(client.cancel, order_id)
            self._log.info("order_cancelled", order_id=order_id)
            return True
        except Exception as e:
            self._log.warning("cancel_failed", order_id=order_id, error=str(e))
            return False
