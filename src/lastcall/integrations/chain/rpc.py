"""Polygon RPC endpoint failover.

Every operation that needs a live connection calls ``RpcPool.connect()``,
which probes the configured endpoints in order and returns a Web3 instance
for the first one that answers. Nothing is cached between calls: an
endpoint that worked a minute ago is probed again.
"""

import asyncio
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, Iterable, Optional

import structlog

from lastcall.core.errors import AllEndpointsFailedError
from lastcall.integrations.chain.contracts import DEFAULT_RPC_URLS

log = structlog.get_logger()


def default_web3_factory(url: str, timeout: float) -> Any:
    from web3 import Web3

    return Web3(Web3.HTTPProvider(url, request_kwargs={"timeout": timeout}))


def build_rpc_urls(preferred: str = "", extra: Iterable[str] = ()) -> list[str]:
    """Operator RPC first, then configured extras, then the defaults, deduplicated."""
    urls: list[str] = []
    for url in [preferred, *extra, *DEFAULT_RPC_URLS]:
        url = (url or "").strip()
        if url and url not in urls:
            urls.append(url)
    return urls


class RpcPool:
    """Ordered list of candidate RPC endpoints with a liveness probe."""

    def __init__(
        self,
        urls: Iterable[str],
        timeout: float = 10.0,
        executor: Optional[ThreadPoolExecutor] = None,
        web3_factory: Callable[[str, float], Any] = default_web3_factory,
    ):
        self._urls = list(urls)
        if not self._urls:
            raise ValueError("RpcPool needs at least one endpoint")
        self._timeout = timeout
        self._executor = executor or ThreadPoolExecutor(max_workers=2)
        self._web3_factory = web3_factory
        self._log = log.bind(component="rpc_pool")

    @property
    def urls(self) -> list[str]:
        return list(self._urls)

    def set_urls(self, urls: Iterable[str]) -> None:
        urls = list(urls)
        if urls:
            self._urls = urls

    async def _run_sync(self, func, *args, **kwargs):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(
            self._executor, lambda: func(*args, **kwargs)
        )

    def _probe_sync(self, url: str) -> Optional[Any]:
        w3 = self._web3_factory(url, self._timeout)
        if not w3.is_connected():
            return None
        # is_connected can pass on endpoints that refuse real calls
        w3.eth.block_number
        return w3

    async def probe(self, url: str) -> Optional[Any]:
        """Return a Web3 for url if it answers the liveness probe, else None."""
        try:
            return await self._run_sync(self._probe_sync, url)
        except Exception as e:
            self._log.warning("rpc_probe_failed", url=url, error=str(e))
            return None

    async def connect(self) -> Any:
        """First live endpoint, in configured order.

        Raises:
            AllEndpointsFailedError: No endpoint answered.
        """
        for url in self._urls:
            w3 = await self.probe(url)
            if w3 is not None:
                self._log.debug("rpc_selected", url=url)
                return w3
        self._log.error("rpc_all_endpoints_failed", endpoints=len(self._urls))
        raise AllEndpointsFailedError(
            f"All {len(self._urls)} RPC endpoints failed the liveness probe"
        )
