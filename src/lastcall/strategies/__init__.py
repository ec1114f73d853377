"""Trading strategies."""

from lastcall.strategies.threshold import (
    WinRateBand,
    WinRateTable,
    analyze,
    evaluate,
    expected_value,
    find_opportunities,
)

__all__ = [
    "WinRateBand",
    "WinRateTable",
    "analyze",
    "evaluate",
    "expected_value",
    "find_opportunities",
]
