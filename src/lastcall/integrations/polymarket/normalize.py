"""Tolerant parsing of Polymarket payloads.

Gamma, CLOB and data-api responses differ in field names (camelCase vs
snake_case), encode lists as JSON strings, and return either dicts or
py-clob-client objects. Everything is normalized here into fixed types so
the rest of the package never touches raw payloads.
"""

import json
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

import structlog

from lastcall.domain.market import OrderBook, OrderBookLevel, Position, Side
from lastcall.integrations.polymarket.types import GammaMarket, OrderResponse

log = structlog.get_logger()

UP_OUTCOMES = ("up", "yes")
DOWN_OUTCOMES = ("down", "no")


def get_field(data: Any, *keys: str, default: Any = None) -> Any:
    """First non-None value among keys, for dicts or attribute objects."""
    for key in keys:
        if isinstance(data, dict):
            value = data.get(key)
        else:
            value = getattr(data, key, None)
        if value is not None:
            return value
    return default


def parse_decimal(value: Any, default: Optional[Decimal] = None) -> Optional[Decimal]:
    if value is None or value == "":
        return default
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        return default


def parse_bool(value: Any, default: bool = False) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() in ("true", "1", "yes")
    return bool(value)


def parse_json_list(value: Any) -> list[Any]:
    """Gamma encodes lists like outcomes as JSON strings."""
    if value is None:
        return []
    if isinstance(value, list):
        return value
    if isinstance(value, str):
        try:
            parsed = json.loads(value)
        except json.JSONDecodeError:
            return [v.strip() for v in value.split(",") if v.strip()]
        return parsed if isinstance(parsed, list) else []
    return []


def parse_datetime(value: Any) -> Optional[datetime]:
    """ISO-8601 strings (with or without Z), or epoch seconds/milliseconds."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, (int, float)) or (isinstance(value, str) and value.isdigit()):
        ts = float(value)
        if ts > 1e12:
            ts /= 1000
        return datetime.fromtimestamp(ts, tz=timezone.utc)
    if isinstance(value, str):
        text = value.strip().replace("Z", "+00:00")
        if " " in text and "T" not in text:
            text = text.replace(" ", "T", 1)
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    return None


def _side_indexes(outcomes: list[Any]) -> tuple[int, int]:
    """Indexes of the up and down outcomes. Defaults to (0, 1)."""
    names = [str(o).strip().lower() for o in outcomes]
    up = next((i for i, n in enumerate(names) if n in UP_OUTCOMES), 0)
    down = next((i for i, n in enumerate(names) if n in DOWN_OUTCOMES), 1)
    return up, down


def normalize_gamma_market(raw: dict[str, Any], event: Optional[dict[str, Any]] = None) -> Optional[GammaMarket]:
    """Normalize a Gamma market (optionally nested in an event).

    Returns None for markets without a condition id or two token ids.
    """
    event = event or {}
    condition_id = get_field(raw, "conditionId", "condition_id")
    token_ids = [str(t) for t in parse_json_list(get_field(raw, "clobTokenIds", "clob_token_ids"))]
    if not condition_id or len(token_ids) < 2:
        log.debug("gamma_market_skipped", market_id=raw.get("id"), reason="missing ids")
        return None

    outcomes = parse_json_list(get_field(raw, "outcomes"))
    prices = [parse_decimal(p) for p in parse_json_list(get_field(raw, "outcomePrices", "outcome_prices"))]
    up_idx, down_idx = _side_indexes(outcomes)

    def price_at(i: int) -> Optional[Decimal]:
        return prices[i] if i < len(prices) else None

    up_price = price_at(up_idx)
    down_price = price_at(down_idx)

    closed = parse_bool(get_field(raw, "closed"), parse_bool(get_field(event, "closed")))
    resolution_status = str(get_field(raw, "umaResolutionStatus", default="")).lower()
    winning_side = None
    if closed and up_price is not None and down_price is not None:
        if up_price >= Decimal("0.99") and down_price <= Decimal("0.01"):
            winning_side = Side.UP
        elif down_price >= Decimal("0.99") and up_price <= Decimal("0.01"):
            winning_side = Side.DOWN

    return GammaMarket(
        condition_id=str(condition_id),
        question=str(get_field(raw, "question", "title", default=get_field(event, "title", default=""))),
        slug=str(get_field(raw, "slug", default="")),
        up_token_id=token_ids[up_idx],
        down_token_id=token_ids[down_idx],
        up_price=up_price,
        down_price=down_price,
        end_time=parse_datetime(get_field(raw, "endDate", "end_date_iso", "endDateIso", default=get_field(event, "endDate"))),
        closed_time=parse_datetime(get_field(raw, "closedTime", "closed_time", "umaEndDate")),
        closed=closed,
        resolved=closed and (resolution_status == "resolved" or winning_side is not None),
        neg_risk=parse_bool(get_field(raw, "negRisk", "neg_risk", default=get_field(event, "negRisk"))),
        winning_side=winning_side,
    )


def normalize_event_markets(event: dict[str, Any]) -> list[GammaMarket]:
    markets = []
    for raw in event.get("markets") or []:
        market = normalize_gamma_market(raw, event)
        if market is not None:
            markets.append(market)
    return markets


def normalize_position(raw: Any) -> Optional[Position]:
    """Normalize a data-api position record.

    Returns None when the record has no token id.
    """
    token_id = get_field(raw, "asset", "tokenId", "token_id", "asset_id")
    if not token_id:
        return None
    size = parse_decimal(get_field(raw, "size", "shares", "balance"), Decimal("0"))
    price = parse_decimal(
        get_field(raw, "curPrice", "currentPrice", "current_price", "price"), Decimal("0")
    )
    return Position(
        token_id=str(token_id),
        size_shares=size,
        current_price=price,
        resolved=parse_bool(get_field(raw, "redeemable", "resolved", "closed")),
        market_id=get_field(raw, "conditionId", "condition_id", "market"),
        outcome=get_field(raw, "outcome"),
        title=str(get_field(raw, "title", "question", default="")),
        neg_risk=parse_bool(get_field(raw, "negativeRisk", "negRisk", "neg_risk")),
    )


def _parse_levels(levels: Any) -> list[OrderBookLevel]:
    parsed = []
    for level in levels or []:
        if isinstance(level, (list, tuple)) and len(level) >= 2:
            price, size = parse_decimal(level[0]), parse_decimal(level[1])
        else:
            price = parse_decimal(get_field(level, "price"))
            size = parse_decimal(get_field(level, "size"))
        if price is None or size is None or size <= 0:
            continue
        parsed.append(OrderBookLevel(price=price, size=size))
    return parsed


def normalize_order_book(token_id: str, raw: Any) -> OrderBook:
    """Normalize a CLOB book (dict or OrderBookSummary object).

    The CLOB does not guarantee level ordering, so bids are sorted high to
    low and asks low to high.
    """
    bids = sorted(_parse_levels(get_field(raw, "bids")), key=lambda lv: lv.price, reverse=True)
    asks = sorted(_parse_levels(get_field(raw, "asks")), key=lambda lv: lv.price)
    return OrderBook(token_id=token_id, bids=bids, asks=asks)


def normalize_order_response(raw: Any) -> OrderResponse:
    """Interpret a post_order response.

    An error field, success=false, or a missing order id all count as a
    rejection even when the HTTP call itself succeeded.
    """
    if raw is None:
        return OrderResponse(order_id=None, error="empty response")
    if not isinstance(raw, dict):
        raw = dict(getattr(raw, "__dict__", {}))

    error = get_field(raw, "errorMsg", "error", "error_msg")
    order_id = get_field(raw, "orderID", "orderId", "order_id", "id")
    status = str(get_field(raw, "status", default=""))
    success = raw.get("success")

    if error:
        return OrderResponse(order_id=order_id or None, error=str(error), status=status, raw=raw)
    if success is False:
        return OrderResponse(order_id=order_id or None, error="order not successful", status=status, raw=raw)
    if not order_id:
        return OrderResponse(order_id=None, error="missing order id", status=status, raw=raw)
    return OrderResponse(order_id=str(order_id), error=None, status=status, raw=raw)
