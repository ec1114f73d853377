"""Polymarket Gamma API client for market discovery.

Hourly up/down markets are grouped into a Gamma *series* per asset. Each
hour is an event holding one binary market. The client pulls events by
series id and normalizes their markets.
"""

from datetime import datetime, timezone
from typing import Any, Optional

import httpx
import structlog
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from lastcall.core.errors import wrap_http_error
from lastcall.integrations.polymarket.normalize import normalize_event_markets
from lastcall.integrations.polymarket.types import GammaMarket, PolymarketSettings

log = structlog.get_logger()

RETRY_ATTEMPTS = 3
RETRY_WAIT_MIN = 1
RETRY_WAIT_MAX = 10


def _iso(dt: datetime) -> str:
    return dt.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


class GammaClient:
    """Async HTTP client for the Polymarket Gamma API."""

    def __init__(self, settings: PolymarketSettings):
        self._base_url = settings.gamma_url.rstrip("/")
        self._timeout = settings.http_timeout
        self._client: Optional[httpx.AsyncClient] = None
        self._log = log.bind(component="gamma_client")

    async def connect(self) -> None:
        if self._client is not None:
            return
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            timeout=self._timeout,
            headers={"Accept": "application/json"},
        )
        self._log.info("gamma_client_connected", base_url=self._base_url)

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
            self._log.info("gamma_client_closed")

    async def __aenter__(self) -> "GammaClient":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    @retry(
        stop=stop_after_attempt(RETRY_ATTEMPTS),
        wait=wait_exponential(multiplier=1, min=RETRY_WAIT_MIN, max=RETRY_WAIT_MAX),
        retry=retry_if_exception_type((httpx.TransportError, httpx.TimeoutException)),
        reraise=True,
    )
    async def _get_json(self, path: str, params: Optional[dict[str, Any]] = None) -> Any:
        await self.connect()
        response = await self._client.get(path, params=params)
        response.raise_for_status()
        return response.json()

    async def get_series_events(
        self,
        series_id: str,
        closed: bool,
        end_date_min: Optional[datetime] = None,
        end_date_max: Optional[datetime] = None,
        limit: int = 50,
    ) -> list[dict[str, Any]]:
        """Events of a series, ordered by end date ascending.

        Raises:
            LastCallError: NetworkError/RateLimitError for transient
                failures, RejectionError for other HTTP errors.
        """
        params: dict[str, Any] = {
            "series_id": series_id,
            "closed": "true" if closed else "false",
            "limit": limit,
            "order": "endDate",
            "ascending": "true",
        }
        if end_date_min is not None:
            params["end_date_min"] = _iso(end_date_min)
        if end_date_max is not None:
            params["end_date_max"] = _iso(end_date_max)

        try:
            data = await self._get_json("/events", params)
        except httpx.HTTPError as e:
            raise wrap_http_error(e, f"gamma series {series_id}") from e

        if isinstance(data, dict):
            data = data.get("data") or data.get("events") or []
        return [e for e in data if isinstance(e, dict)]

    async def get_event(self, event_id: str) -> Optional[dict[str, Any]]:
        try:
            data = await self._get_json(f"/events/{event_id}")
        except httpx.HTTPStatusError as e:
            if e.response.status_code == 404:
                return None
            raise wrap_http_error(e, f"gamma event {event_id}") from e
        except httpx.HTTPError as e:
            raise wrap_http_error(e, f"gamma event {event_id}") from e
        return data if isinstance(data, dict) else None

    async def get_series_markets(
        self,
        series_id: str,
        closed: bool,
        end_date_min: Optional[datetime] = None,
        end_date_max: Optional[datetime] = None,
        limit: int = 50,
    ) -> list[GammaMarket]:
        """Normalized markets of a series.

        Events returned without nested markets are fetched individually.
        """
        events = await self.get_series_events(
            series_id, closed, end_date_min, end_date_max, limit
        )
        markets: list[GammaMarket] = []
        for event in events:
            if not event.get("markets") and event.get("id"):
                event = await self.get_event(str(event["id"])) or event
            markets.extend(normalize_event_markets(event))

        self._log.debug(
            "series_markets_fetched",
            series_id=series_id,
            closed=closed,
            events=len(events),
            markets=len(markets),
        )
        return markets
