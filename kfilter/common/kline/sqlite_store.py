from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

import aiosqlite
from loguru import logger

from kfilter.common.errors import StoreError
from kfilter.common.kline.codec import bars_from_json, bars_to_json
from kfilter.common.kline.types import SymbolHistory, SymbolRef


SCHEMA_SQL = """
PRAGMA journal_mode=WAL;
PRAGMA synchronous=NORMAL;

CREATE TABLE IF NOT EXISTS stock_info (
  symbol TEXT PRIMARY KEY NOT NULL,
  name TEXT NOT NULL,
  info TEXT,
  daily TEXT,                -- JSON array of bars, ascending by date
  weekly TEXT,
  monthly TEXT,
  updated_at INTEGER NOT NULL,   -- epoch ms of last successful refresh
  created_at INTEGER NOT NULL
);

CREATE INDEX IF NOT EXISTS stock_info_updated_at_idx
  ON stock_info (updated_at);
"""


def _row_to_history(row) -> SymbolHistory:
    symbol, name, info, daily, weekly, monthly, updated_at, created_at = row
    try:
        return SymbolHistory(
            symbol=str(symbol),
            name=str(name),
            info=info,
            daily=bars_from_json(daily) or [],
            weekly=bars_from_json(weekly),
            monthly=bars_from_json(monthly),
            updated_at_ms=int(updated_at),
            created_at_ms=int(created_at),
        )
    except (ValueError, KeyError, TypeError, json.JSONDecodeError) as e:
        raise StoreError(f"corrupt stock_info row symbol={symbol!r}: {e}") from e


@dataclass
class KlineStore:
    """
    SymbolHistory persistence over a single aiosqlite connection.

    Each upsert is one INSERT .. ON CONFLICT statement committed under a write lock,
    so concurrent writers (batch workers, on-demand refresh) never interleave a
    half-written record. updated_at only moves forward.
    """

    db_path: Path
    conn: aiosqlite.Connection
    _write_lock: asyncio.Lock = field(default_factory=asyncio.Lock)

    @classmethod
    async def open(cls, db_path: Path) -> "KlineStore":
        db_path.parent.mkdir(parents=True, exist_ok=True)
        try:
            conn = await aiosqlite.connect(str(db_path))
            await conn.executescript(SCHEMA_SQL)
            await conn.commit()
        except aiosqlite.Error as e:
            raise StoreError(f"cannot open kline store {db_path}: {e}") from e
        logger.info("KlineStore ready: {}", db_path)
        return cls(db_path=db_path, conn=conn)

    async def close(self) -> None:
        await self.conn.close()
        logger.info("KlineStore closed")

    async def get(self, symbol: str) -> Optional[SymbolHistory]:
        try:
            async with self.conn.execute(
                """
                SELECT symbol, name, info, daily, weekly, monthly, updated_at, created_at
                FROM stock_info
                WHERE symbol=?
                """,
                (symbol,),
            ) as cur:
                row = await cur.fetchone()
        except aiosqlite.Error as e:
            raise StoreError(f"read failed symbol={symbol!r}: {e}") from e
        return _row_to_history(row) if row else None

    async def upsert(self, history: SymbolHistory) -> None:
        params = (
            history.symbol,
            history.name,
            history.info,
            bars_to_json(history.daily),
            bars_to_json(history.weekly),
            bars_to_json(history.monthly),
            int(history.updated_at_ms),
            int(history.created_at_ms),
        )
        async with self._write_lock:
            try:
                await self.conn.execute(
                    """
                    INSERT INTO stock_info (symbol, name, info, daily, weekly, monthly, updated_at, created_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT(symbol) DO UPDATE SET
                      name=excluded.name,
                      info=COALESCE(excluded.info, stock_info.info),
                      daily=excluded.daily,
                      weekly=COALESCE(excluded.weekly, stock_info.weekly),
                      monthly=COALESCE(excluded.monthly, stock_info.monthly),
                      updated_at=MAX(stock_info.updated_at, excluded.updated_at)
                    """,
                    params,
                )
                await self.conn.commit()
            except aiosqlite.Error as e:
                raise StoreError(f"upsert failed symbol={history.symbol!r}: {e}") from e

    async def list_all_symbols(self) -> List[SymbolRef]:
        try:
            async with self.conn.execute(
                "SELECT symbol, name, updated_at FROM stock_info ORDER BY rowid"
            ) as cur:
                rows = await cur.fetchall()
        except aiosqlite.Error as e:
            raise StoreError(f"symbol listing failed: {e}") from e
        return [
            SymbolRef(symbol=str(s), name=str(n), updated_at_ms=None if u is None else int(u))
            for s, n, u in rows
        ]
