from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

import psycopg
from psycopg import sql
from psycopg.rows import dict_row

from walletsync.config.settings import DATABASE_URL, DB_CONNECT_TIMEOUT_SEC, UNKNOWN_TOKEN_NAME
from walletsync.core.errors import PersistenceError, ValidationError
from walletsync.core.models import PersistedTrade, ZERO
from walletsync.core.validation import VALID_SORT_FIELDS, VALID_SORT_ORDERS
from walletsync.ports.trade_store_port import TradeStorePort

logger = logging.getLogger(__name__)

TABLE_NAME = "trades"

_COLUMNS = (
    "id",
    "wallet",
    "token_name",
    "token_address",
    "first_trade",
    "last_trade",
    "buys",
    "sells",
    "invested_sol",
    "total_sol_received",
    "realized_pnl",
    "roi",
    "invested_sol_usd",
    "realized_pnl_usd",
)

UPSERT_SQL = sql.SQL(
    """
    INSERT INTO {table} ({columns})
    VALUES ({values})
    ON CONFLICT (id) DO UPDATE SET
        token_name = EXCLUDED.token_name,
        first_trade = EXCLUDED.first_trade,
        last_trade = EXCLUDED.last_trade,
        buys = EXCLUDED.buys,
        sells = EXCLUDED.sells,
        invested_sol = EXCLUDED.invested_sol,
        total_sol_received = EXCLUDED.total_sol_received,
        realized_pnl = EXCLUDED.realized_pnl,
        roi = EXCLUDED.roi,
        invested_sol_usd = EXCLUDED.invested_sol_usd,
        realized_pnl_usd = EXCLUDED.realized_pnl_usd,
        updated_at = NOW()
    """
).format(
    table=sql.Identifier(TABLE_NAME),
    columns=sql.SQL(", ").join(sql.Identifier(c) for c in _COLUMNS),
    values=sql.SQL(", ").join(sql.Placeholder(c) for c in _COLUMNS),
)


def open_connection(dsn: str = DATABASE_URL, connect_timeout: int = DB_CONNECT_TIMEOUT_SEC) -> psycopg.Connection:
    # autocommit for reads; writes open an explicit transaction block
    return psycopg.connect(dsn, connect_timeout=connect_timeout, autocommit=True)


def trade_to_params(t: PersistedTrade) -> Dict[str, Any]:
    return {
        "id": t.id,
        "wallet": t.wallet,
        "token_name": t.token_name,
        "token_address": t.token_address,
        "first_trade": t.first_trade,
        "last_trade": t.last_trade,
        "buys": t.buys,
        "sells": t.sells,
        "invested_sol": t.invested_sol,
        "total_sol_received": t.total_sol_received,
        "realized_pnl": t.realized_pnl,
        "roi": t.roi,
        "invested_sol_usd": t.invested_sol_usd,
        "realized_pnl_usd": t.realized_pnl_usd,
    }


def row_to_trade(row: Dict[str, Any]) -> PersistedTrade:
    return PersistedTrade(
        wallet=row["wallet"],
        token_address=row["token_address"],
        token_name=row.get("token_name") or UNKNOWN_TOKEN_NAME,
        first_trade=row.get("first_trade"),
        last_trade=row.get("last_trade"),
        buys=int(row.get("buys") or 0),
        sells=int(row.get("sells") or 0),
        invested_sol=row.get("invested_sol") if row.get("invested_sol") is not None else ZERO,
        total_sol_received=row.get("total_sol_received") if row.get("total_sol_received") is not None else ZERO,
        realized_pnl=row.get("realized_pnl") if row.get("realized_pnl") is not None else ZERO,
        roi=row.get("roi") if row.get("roi") is not None else ZERO,
        invested_sol_usd=row.get("invested_sol_usd"),
        realized_pnl_usd=row.get("realized_pnl_usd"),
    )


class PostgresTradeStore(TradeStorePort):
    """
    Trade rows in Postgres. The connection is owned by whoever created it
    (CLI main, HTTP lifespan); `close()` is a convenience for that owner.
    """

    def __init__(self, conn: psycopg.Connection) -> None:
        self._conn = conn

    @classmethod
    def connect(cls, dsn: str = DATABASE_URL) -> "PostgresTradeStore":
        return cls(open_connection(dsn))

    @property
    def connection(self) -> psycopg.Connection:
        return self._conn

    def close(self) -> None:
        self._conn.close()

    # ---------- reads ----------

    @staticmethod
    def _order_clause(sort_by: str, order: str) -> sql.Composable:
        if sort_by not in VALID_SORT_FIELDS:
            raise ValidationError("Invalid sort field", [sort_by])
        direction = str(order or "").upper()
        if direction not in VALID_SORT_ORDERS:
            raise ValidationError("Invalid sort order", [order])
        return sql.SQL("ORDER BY {} {} NULLS LAST").format(sql.Identifier(sort_by), sql.SQL(direction))

    def _select(self, column: str, value: str, sort_by: str, order: str) -> List[PersistedTrade]:
        query = sql.SQL("SELECT * FROM {table} WHERE {column} = %s {order}").format(
            table=sql.Identifier(TABLE_NAME),
            column=sql.Identifier(column),
            order=self._order_clause(sort_by, order),
        )
        try:
            with self._conn.cursor(row_factory=dict_row) as cur:
                cur.execute(query, (value,))
                rows = cur.fetchall()
        except psycopg.Error as e:
            logger.error("Reading trades by %s=%s failed: %s", column, value, e)
            raise PersistenceError(f"Failed to read trades for {value}: {e}") from e
        return [row_to_trade(r) for r in rows]

    def read_by_wallet(self, wallet: str, sort_by: str = "last_trade", order: str = "DESC") -> List[PersistedTrade]:
        return self._select("wallet", wallet, sort_by, order)

    def read_by_token(self, token_address: str, sort_by: str = "last_trade", order: str = "DESC") -> List[PersistedTrade]:
        return self._select("token_address", token_address, sort_by, order)

    def read_latest_timestamp(self, wallet: str) -> Optional[datetime]:
        query = sql.SQL("SELECT MAX(last_trade) AS latest_trade FROM {table} WHERE wallet = %s").format(
            table=sql.Identifier(TABLE_NAME),
        )
        try:
            with self._conn.cursor(row_factory=dict_row) as cur:
                cur.execute(query, (wallet,))
                row = cur.fetchone()
        except psycopg.Error as e:
            raise PersistenceError(f"Failed to read latest trade for {wallet}: {e}") from e
        return (row or {}).get("latest_trade")

    # ---------- writes ----------

    def upsert_batch(self, trades: Sequence[PersistedTrade]) -> bool:
        if not trades:
            return True
        params = [trade_to_params(t) for t in trades]
        try:
            with self._conn.transaction():
                with self._conn.cursor() as cur:
                    cur.executemany(UPSERT_SQL, params)
        except psycopg.Error:
            logger.exception("Upserting %d trade(s) failed; batch rolled back", len(params))
            return False
        logger.info("Upserted %d trade(s)", len(params))
        return True
