"""lastcall - hourly up/down threshold trading bot for Polymarket."""

__version__ = "0.1.0"
