"""Exchange precision rules for order price and size.

The CLOB accepts prices with two decimals and requires the order's
collateral amount (price x shares) to have at most two decimals too.

- Buys: whole shares, floor(spend / price), decremented until the joint
  constraint holds.
- Sells: position size floored to 0.01 shares, decremented the same way.

Anything that ends below one share is rejected with OrderTooSmallError.
"""

from decimal import ROUND_DOWN, ROUND_HALF_UP, Decimal
from typing import Optional

from lastcall.core.errors import OrderTooSmallError
from lastcall.domain.market import OrderBook, OrderSide

TICK = Decimal("0.01")
MIN_PRICE = Decimal("0.01")
MAX_PRICE = Decimal("0.99")
MIN_SHARES = Decimal("1")
SELL_SHARE_STEP = Decimal("0.01")


def round_price(price: Decimal) -> Decimal:
    """Round to a two-decimal tick, clamped to [0.01, 0.99]."""
    price = price.quantize(TICK, rounding=ROUND_HALF_UP)
    return min(max(price, MIN_PRICE), MAX_PRICE)


def has_two_decimals(amount: Decimal) -> bool:
    return amount == amount.quantize(TICK, rounding=ROUND_DOWN)


def marketable_price(
    book: Optional[OrderBook],
    side: OrderSide,
    fallback: Decimal,
) -> Decimal:
    """Aggressive limit price one tick through the touch.

    Buys cross the best ask, sells the best bid. An empty book side falls
    back to the given price.
    """
    if book is not None:
        if side is OrderSide.BUY and book.best_ask is not None:
            return round_price(book.best_ask + TICK)
        if side is OrderSide.SELL and book.best_bid is not None:
            return round_price(book.best_bid - TICK)
    return round_price(fallback)


def size_buy_order(spend: Decimal, price: Decimal) -> Decimal:
    """Whole shares purchasable with spend at price.

    Raises:
        OrderTooSmallError: Fewer than one share.
    """
    price = round_price(price)
    shares = (spend / price).to_integral_value(rounding=ROUND_DOWN)
    while shares >= MIN_SHARES and not has_two_decimals(price * shares):
        shares -= 1
    if shares < MIN_SHARES:
        raise OrderTooSmallError(
            f"Spend {spend} at {price} buys {shares} shares, minimum is {MIN_SHARES}"
        )
    return shares


def size_sell_order(size: Decimal, price: Decimal) -> Decimal:
    """Sellable shares of a position at price, on a 0.01-share grid.

    Raises:
        OrderTooSmallError: Fewer than one share.
    """
    price = round_price(price)
    shares = size.quantize(SELL_SHARE_STEP, rounding=ROUND_DOWN)
    # At most 99 steps: a multiple of 1.00 share always satisfies the constraint
    for _ in range(100):
        if shares < MIN_SHARES or has_two_decimals(price * shares):
            break
        shares -= SELL_SHARE_STEP
    if shares < MIN_SHARES:
        raise OrderTooSmallError(
            f"Position of {size} shares at {price} is below {MIN_SHARES} share"
        )
    return shares
