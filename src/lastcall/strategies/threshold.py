"""Price-threshold strategy calculator.

Buys the side of an hourly up/down market whose price sits inside the
configured band [min_price, max_price]. Expected value is computed from an
empirical win-rate table rather than the market-implied probability:

    EV = (win_rate - price) * size_shares

The default table was observed on historical hourly markets and has no
stated confidence interval. It is configuration, not a constant; override
it with ``strategy.win_rate_table`` in the TOML config.

Everything here is pure. No I/O, no state between calls.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Iterable, Optional, Sequence

from lastcall.domain.market import MarketQuote, Side
from lastcall.domain.settings import AssetSettings
from lastcall.domain.trade import Opportunity

# Sides are evaluated in this order; the first qualifying side wins.
SIDE_ORDER = (Side.UP, Side.DOWN)


@dataclass(frozen=True)
class WinRateBand:
    min_price: Decimal
    win_rate: Decimal


class WinRateTable:
    """Maps a price to an assumed win probability.

    Bands are matched by descending price floor. Prices below every floor
    fall back to the price itself (market-implied probability).
    """

    DEFAULT_BANDS: tuple[tuple[str, str], ...] = (
        ("0.80", "0.99"),
        ("0.70", "0.98"),
        ("0.60", "0.93"),
        ("0.50", "0.80"),
    )

    def __init__(self, bands: Optional[Iterable[WinRateBand]] = None) -> None:
        if bands is None:
            bands = [
                WinRateBand(Decimal(p), Decimal(w)) for p, w in self.DEFAULT_BANDS
            ]
        self._bands = sorted(bands, key=lambda b: b.min_price, reverse=True)
        for band in self._bands:
            if not (Decimal("0") <= band.win_rate <= Decimal("1")):
                raise ValueError(f"win_rate out of range: {band.win_rate}")

    @classmethod
    def from_config(cls, rows: Optional[Sequence[Any]]) -> "WinRateTable":
        """Build from config rows of ``[min_price, win_rate]`` pairs or
        ``{min_price = .., win_rate = ..}`` tables. Empty means default."""
        if not rows:
            return cls()
        bands = []
        for row in rows:
            if isinstance(row, dict):
                bands.append(
                    WinRateBand(Decimal(str(row["min_price"])), Decimal(str(row["win_rate"])))
                )
            else:
                min_price, win_rate = row
                bands.append(WinRateBand(Decimal(str(min_price)), Decimal(str(win_rate))))
        return cls(bands)

    @property
    def bands(self) -> list[WinRateBand]:
        return list(self._bands)

    def win_rate(self, price: Decimal) -> Decimal:
        for band in self._bands:
            if price >= band.min_price:
                return band.win_rate
        return price


_DEFAULT_TABLE = WinRateTable()


def expected_value(
    price: Decimal,
    size_shares: Decimal,
    table: WinRateTable = _DEFAULT_TABLE,
) -> Decimal:
    return (table.win_rate(price) - price) * size_shares


def evaluate(
    quote: MarketQuote,
    min_price: Decimal,
    max_price: Decimal,
    bet_size: Decimal,
    table: WinRateTable = _DEFAULT_TABLE,
) -> Optional[Opportunity]:
    """Return an Opportunity for the first side priced inside the band.

    Args:
        quote: Current market quote.
        min_price: Lower band edge (inclusive).
        max_price: Upper band edge (inclusive).
        bet_size: USD to spend; shares = bet_size / price.
        table: Win-rate table used for the EV estimate.

    Returns:
        Opportunity, or None when neither side is in the band.

    Raises:
        ValueError: If min_price > max_price or bet_size is not positive.
    """
    if min_price > max_price:
        raise ValueError(f"min_price {min_price} exceeds max_price {max_price}")
    if bet_size <= 0:
        raise ValueError(f"bet_size must be positive, got {bet_size}")

    for side in SIDE_ORDER:
        price = quote.price(side)
        if price <= 0:
            continue
        if min_price <= price <= max_price:
            size_shares = bet_size / price
            win_rate = table.win_rate(price)
            return Opportunity(
                market=quote,
                side=side,
                price=price,
                size_shares=size_shares,
                bet_size=bet_size,
                expected_win_rate=win_rate,
                expected_value=(win_rate - price) * size_shares,
            )
    return None


def find_opportunities(
    quotes: Iterable[MarketQuote],
    settings: AssetSettings,
    table: WinRateTable = _DEFAULT_TABLE,
) -> list[Opportunity]:
    """Evaluate every quote, preserving the data source's order."""
    found = []
    for quote in quotes:
        opportunity = evaluate(
            quote, settings.min_price, settings.max_price, settings.bet_size, table
        )
        if opportunity is not None:
            found.append(opportunity)
    return found


def analyze(
    quote: MarketQuote,
    settings: AssetSettings,
    table: WinRateTable = _DEFAULT_TABLE,
) -> dict[str, Any]:
    """Display view of one quote for the live-markets snapshot."""
    opportunity = evaluate(
        quote, settings.min_price, settings.max_price, settings.bet_size, table
    )
    return {
        **quote.to_dict(),
        "in_band": opportunity is not None,
        "opportunity": opportunity.to_dict() if opportunity else None,
    }
