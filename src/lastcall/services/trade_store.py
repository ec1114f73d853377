"""Trade Record Store - async SQLite persistence layer.

This service:
- Persists trades through their lifecycle (pending -> open -> resolved ...)
- Answers the duplicate-trade lookup made before every submission
- Keeps scan summaries and claim attempts for the operator history views
- Computes realized PnL statistics
"""

import asyncio
import json
from datetime import datetime, timezone
from decimal import Decimal
from pathlib import Path
from typing import Any, Optional

import aiosqlite
import structlog

from lastcall.core.config import ConfigManager
from lastcall.domain.market import Side
from lastcall.domain.results import ScanSummary
from lastcall.domain.trade import ACTIVE_STATUSES, Trade, TradeStatus, TradeType

log = structlog.get_logger()

SCHEMA_VERSION = 1

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS trades (
    trade_id TEXT PRIMARY KEY,
    market_id TEXT NOT NULL,
    market_label TEXT NOT NULL DEFAULT '',
    asset TEXT NOT NULL,
    trade_type TEXT NOT NULL DEFAULT 'single_leg',
    side TEXT NOT NULL,
    token_id TEXT NOT NULL,
    entry_price REAL NOT NULL,
    size_shares REAL NOT NULL,
    cost REAL NOT NULL,
    status TEXT NOT NULL DEFAULT 'pending',
    primary_order_id TEXT,
    secondary_order_id TEXT,
    secondary_token_id TEXT,
    secondary_price REAL,
    secondary_size REAL,
    pnl REAL,
    error TEXT,
    simulated INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL,
    resolved_at TEXT,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS scan_history (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    started_at TEXT NOT NULL,
    finished_at TEXT,
    forced INTEGER NOT NULL DEFAULT 0,
    markets_seen INTEGER NOT NULL DEFAULT 0,
    opportunities INTEGER NOT NULL DEFAULT 0,
    trades_executed INTEGER NOT NULL DEFAULT 0,
    errors TEXT NOT NULL DEFAULT '[]',
    details TEXT NOT NULL DEFAULT '[]'
);

CREATE TABLE IF NOT EXISTS claims (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    market_id TEXT NOT NULL,
    asset TEXT NOT NULL DEFAULT '',
    outcome TEXT NOT NULL,
    tx_hash TEXT,
    error TEXT,
    attempted_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_trades_market ON trades(market_id);
CREATE INDEX IF NOT EXISTS idx_trades_status ON trades(status);
CREATE INDEX IF NOT EXISTS idx_trades_token ON trades(token_id);
CREATE INDEX IF NOT EXISTS idx_trades_created ON trades(created_at);
CREATE INDEX IF NOT EXISTS idx_claims_market ON claims(market_id);

CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY
);
INSERT OR IGNORE INTO schema_version (version) VALUES (1);
"""

_ACTIVE_SQL = ", ".join(f"'{s.value}'" for s in sorted(ACTIVE_STATUSES, key=lambda s: s.value))


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _dec(value: Any) -> Optional[Decimal]:
    if value is None:
        return None
    return Decimal(str(value))


def _num(value: Optional[Decimal]) -> Optional[float]:
    return float(value) if value is not None else None


def _dt(value: Any) -> Optional[datetime]:
    if not value:
        return None
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value)


class ConnectionPool:
    """Single aiosqlite connection guarded by a lock.

    SQLite serializes writers anyway; WAL mode lets reads proceed while a
    write is in progress.
    """

    def __init__(self, db_path: str):
        self._db_path = db_path
        self._connection: Optional[aiosqlite.Connection] = None
        self._lock = asyncio.Lock()
        self._connected = False

    async def connect(self) -> None:
        async with self._lock:
            if self._connected:
                return

            if self._db_path != ":memory:":
                Path(self._db_path).parent.mkdir(parents=True, exist_ok=True)

            self._connection = await aiosqlite.connect(self._db_path)
            self._connection.row_factory = aiosqlite.Row

            await self._connection.execute("PRAGMA journal_mode=WAL")
            await self._connection.execute("PRAGMA synchronous=NORMAL")
            await self._connection.execute("PRAGMA busy_timeout=5000")

            self._connected = True

    async def close(self) -> None:
        async with self._lock:
            if self._connection:
                await self._connection.close()
                self._connection = None
            self._connected = False

    @property
    def is_connected(self) -> bool:
        return self._connected

    async def acquire(self) -> aiosqlite.Connection:
        """Raises RuntimeError if the pool is not connected."""
        if not self._connected or not self._connection:
            raise RuntimeError("Connection pool not connected")
        return self._connection

    @property
    def lock(self) -> asyncio.Lock:
        return self._lock


class TradeStore:
    """SQLite-based persistence for trades, scan history and claims."""

    def __init__(
        self,
        db_path: Optional[str] = None,
        config: Optional[ConfigManager] = None,
    ):
        """Initialize the store.

        Args:
            db_path: Direct path to database file (takes precedence).
            config: Configuration manager, read for ``database.path``.
        """
        self._log = log.bind(component="trade_store")

        if db_path:
            self._db_path = db_path
        elif config:
            self._db_path = config.get("database.path", "./data/lastcall.db")
        else:
            self._db_path = "./data/lastcall.db"

        self._pool = ConnectionPool(self._db_path)

    @property
    def is_connected(self) -> bool:
        return self._pool.is_connected

    async def connect(self) -> None:
        """Connect to the database and create the schema."""
        self._log.info("connecting_trade_store", db_path=str(self._db_path))
        await self._pool.connect()

        conn = await self._pool.acquire()
        async with self._pool.lock:
            await conn.executescript(SCHEMA_SQL)
            await conn.commit()

        self._log.info("trade_store_connected")

    async def close(self) -> None:
        await self._pool.close()
        self._log.info("trade_store_closed")

    # ============ Trade Operations ============

    async def save_trade(self, trade: Trade) -> None:
        """Insert or replace a trade record."""
        conn = await self._pool.acquire()
        async with self._pool.lock:
            await conn.execute(
                """
                INSERT OR REPLACE INTO trades
                (trade_id, market_id, market_label, asset, trade_type, side,
                 token_id, entry_price, size_shares, cost, status,
                 primary_order_id, secondary_order_id, secondary_token_id,
                 secondary_price, secondary_size, pnl, error, simulated,
                 created_at, resolved_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                self._trade_params(trade),
            )
            await conn.commit()

        self._log.debug(
            "trade_saved",
            trade_id=trade.trade_id,
            market_id=trade.market_id,
            status=trade.status.value,
        )

    async def update_trade(self, trade: Trade) -> bool:
        """Update an existing trade. Returns False if it was never saved."""
        conn = await self._pool.acquire()
        params = self._trade_params(trade)
        async with self._pool.lock:
            cursor = await conn.execute(
                """
                UPDATE trades SET
                    market_id = ?, market_label = ?, asset = ?, trade_type = ?,
                    side = ?, token_id = ?, entry_price = ?, size_shares = ?,
                    cost = ?, status = ?, primary_order_id = ?,
                    secondary_order_id = ?, secondary_token_id = ?,
                    secondary_price = ?, secondary_size = ?, pnl = ?, error = ?,
                    simulated = ?, created_at = ?, resolved_at = ?, updated_at = ?
                WHERE trade_id = ?
                """,
                params[1:] + (trade.trade_id,),
            )
            await conn.commit()
            updated = cursor.rowcount > 0

        if not updated:
            self._log.warning("trade_update_missing", trade_id=trade.trade_id)
        return updated

    def _trade_params(self, trade: Trade) -> tuple:
        return (
            trade.trade_id,
            trade.market_id,
            trade.market_label,
            trade.asset,
            trade.trade_type.value,
            trade.side.value,
            trade.token_id,
            float(trade.entry_price),
            float(trade.size_shares),
            float(trade.cost),
            trade.status.value,
            trade.primary_order_id,
            trade.secondary_order_id,
            trade.secondary_token_id,
            _num(trade.secondary_price),
            _num(trade.secondary_size),
            _num(trade.pnl),
            trade.error,
            1 if trade.simulated else 0,
            trade.created_at.isoformat(),
            trade.resolved_at.isoformat() if trade.resolved_at else None,
            _now(),
        )

    async def get_trade(self, trade_id: str) -> Optional[Trade]:
        conn = await self._pool.acquire()
        async with conn.execute(
            "SELECT * FROM trades WHERE trade_id = ?", (trade_id,)
        ) as cursor:
            row = await cursor.fetchone()
        return self._row_to_trade(row) if row else None

    async def find_open_trade_by_market(self, market_id: str) -> Optional[Trade]:
        """Most recent pending/partial/open trade for a market, if any."""
        conn = await self._pool.acquire()
        async with conn.execute(
            f"""
            SELECT * FROM trades
            WHERE market_id = ? AND status IN ({_ACTIVE_SQL})
            ORDER BY created_at DESC LIMIT 1
            """,
            (market_id,),
        ) as cursor:
            row = await cursor.fetchone()
        return self._row_to_trade(row) if row else None

    async def find_open_trade_by_token(self, token_id: str) -> Optional[Trade]:
        """Active trade holding token_id on either leg."""
        conn = await self._pool.acquire()
        async with conn.execute(
            f"""
            SELECT * FROM trades
            WHERE (token_id = ? OR secondary_token_id = ?)
              AND status IN ({_ACTIVE_SQL})
            ORDER BY created_at DESC LIMIT 1
            """,
            (token_id, token_id),
        ) as cursor:
            row = await cursor.fetchone()
        return self._row_to_trade(row) if row else None

    async def get_open_trades(self) -> list[Trade]:
        return await self._query_trades(
            f"SELECT * FROM trades WHERE status IN ({_ACTIVE_SQL}) ORDER BY created_at",
            (),
        )

    async def get_recent_trades(
        self,
        limit: int = 50,
        asset: Optional[str] = None,
    ) -> list[Trade]:
        """Trades ordered newest first."""
        query = "SELECT * FROM trades"
        params: list[Any] = []
        if asset:
            query += " WHERE asset = ?"
            params.append(asset.lower())
        query += " ORDER BY created_at DESC LIMIT ?"
        params.append(limit)
        return await self._query_trades(query, params)

    async def _query_trades(self, query: str, params: Any) -> list[Trade]:
        conn = await self._pool.acquire()
        trades = []
        async with conn.execute(query, params) as cursor:
            async for row in cursor:
                trades.append(self._row_to_trade(row))
        return trades

    async def resolve_trades_for_market(
        self,
        market_id: str,
        winning_side: Optional[Side],
        resolved_at: Optional[datetime] = None,
    ) -> list[Trade]:
        """Close open/partial trades of a resolved market with realized PnL.

        A winning leg pays 1 per share, so PnL is ``shares - cost`` for a
        win and ``-cost`` for a loss. Without a known winner nothing changes.
        """
        if winning_side is None:
            return []

        resolved_at = resolved_at or datetime.now(timezone.utc)
        candidates = await self._query_trades(
            "SELECT * FROM trades WHERE market_id = ? AND status IN ('open', 'partial')",
            (market_id,),
        )

        resolved = []
        for trade in candidates:
            payout = Decimal("0")
            if trade.trade_type is TradeType.STRADDLE:
                # Primary leg is always up
                if winning_side is Side.UP:
                    payout = trade.size_shares
                elif trade.secondary_size is not None:
                    payout = trade.secondary_size
            elif trade.side is winning_side:
                payout = trade.size_shares

            closed = trade.copy(
                status=TradeStatus.RESOLVED,
                pnl=payout - trade.cost,
                resolved_at=resolved_at,
            )
            await self.update_trade(closed)
            resolved.append(closed)
            self._log.info(
                "trade_resolved",
                trade_id=trade.trade_id,
                market_id=market_id,
                winning_side=winning_side.value,
                pnl=str(closed.pnl),
            )
        return resolved

    def _row_to_trade(self, row: aiosqlite.Row) -> Trade:
        return Trade(
            trade_id=row["trade_id"],
            market_id=row["market_id"],
            market_label=row["market_label"],
            asset=row["asset"],
            trade_type=TradeType(row["trade_type"]),
            side=Side(row["side"]),
            token_id=row["token_id"],
            entry_price=_dec(row["entry_price"]),
            size_shares=_dec(row["size_shares"]),
            cost=_dec(row["cost"]),
            status=TradeStatus(row["status"]),
            primary_order_id=row["primary_order_id"],
            secondary_order_id=row["secondary_order_id"],
            secondary_token_id=row["secondary_token_id"],
            secondary_price=_dec(row["secondary_price"]),
            secondary_size=_dec(row["secondary_size"]),
            pnl=_dec(row["pnl"]),
            error=row["error"],
            simulated=bool(row["simulated"]),
            created_at=_dt(row["created_at"]),
            resolved_at=_dt(row["resolved_at"]),
        )

    # ============ Scan History ============

    async def record_scan_summary(self, summary: ScanSummary) -> None:
        data = summary.to_dict()
        conn = await self._pool.acquire()
        async with self._pool.lock:
            await conn.execute(
                """
                INSERT INTO scan_history
                (started_at, finished_at, forced, markets_seen, opportunities,
                 trades_executed, errors, details)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    data["started_at"],
                    data["finished_at"],
                    1 if summary.forced else 0,
                    summary.markets_seen,
                    summary.opportunities,
                    summary.trades_executed,
                    json.dumps(data["errors"]),
                    json.dumps(data["assets"]),
                ),
            )
            await conn.commit()

    async def get_scan_history(self, limit: int = 20) -> list[dict[str, Any]]:
        conn = await self._pool.acquire()
        history = []
        async with conn.execute(
            "SELECT * FROM scan_history ORDER BY id DESC LIMIT ?", (limit,)
        ) as cursor:
            async for row in cursor:
                history.append({
                    "started_at": row["started_at"],
                    "finished_at": row["finished_at"],
                    "forced": bool(row["forced"]),
                    "markets_seen": row["markets_seen"],
                    "opportunities": row["opportunities"],
                    "trades_executed": row["trades_executed"],
                    "errors": json.loads(row["errors"]),
                    "assets": json.loads(row["details"]),
                })
        return history

    # ============ Claims ============

    async def record_claim(
        self,
        market_id: str,
        outcome: str,
        asset: str = "",
        tx_hash: Optional[str] = None,
        error: Optional[str] = None,
    ) -> None:
        conn = await self._pool.acquire()
        async with self._pool.lock:
            await conn.execute(
                """
                INSERT INTO claims (market_id, asset, outcome, tx_hash, error, attempted_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (market_id, asset, outcome, tx_hash, error, _now()),
            )
            await conn.commit()

    async def get_claim_history(self, limit: int = 50) -> list[dict[str, Any]]:
        conn = await self._pool.acquire()
        claims = []
        async with conn.execute(
            "SELECT * FROM claims ORDER BY id DESC LIMIT ?", (limit,)
        ) as cursor:
            async for row in cursor:
                claims.append({
                    "market_id": row["market_id"],
                    "asset": row["asset"],
                    "outcome": row["outcome"],
                    "tx_hash": row["tx_hash"],
                    "error": row["error"],
                    "attempted_at": row["attempted_at"],
                })
        return claims

    # ============ Statistics ============

    async def get_stats(self) -> dict[str, Any]:
        """Trade counts by status, win/loss counts and realized PnL."""
        conn = await self._pool.acquire()

        by_status: dict[str, int] = {s.value: 0 for s in TradeStatus}
        async with conn.execute(
            "SELECT status, COUNT(*) AS n FROM trades GROUP BY status"
        ) as cursor:
            async for row in cursor:
                by_status[row["status"]] = row["n"]

        wins = losses = 0
        realized = Decimal("0")
        async with conn.execute(
            "SELECT pnl FROM trades WHERE status = 'resolved' AND pnl IS NOT NULL"
        ) as cursor:
            async for row in cursor:
                pnl = _dec(row["pnl"])
                realized += pnl
                if pnl > 0:
                    wins += 1
                else:
                    losses += 1

        decided = wins + losses
        return {
            "total_trades": sum(by_status.values()),
            "by_status": by_status,
            "open_trades": sum(by_status[s.value] for s in ACTIVE_STATUSES),
            "wins": wins,
            "losses": losses,
            "win_rate": round(wins / decided, 4) if decided else None,
            "realized_pnl": realized.quantize(Decimal("0.01")),
        }
