"""External integrations - Polymarket, Polygon chain, spot price feeds."""
