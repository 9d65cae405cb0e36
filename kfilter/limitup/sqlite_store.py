from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from pathlib import Path
from typing import List

import aiosqlite
from loguru import logger

from kfilter.common.datetime_utils import now_ms
from kfilter.common.errors import StoreError
from kfilter.limitup.types import Block, LimitUpStock


SCHEMA_SQL = """
PRAGMA journal_mode=WAL;
PRAGMA synchronous=NORMAL;

CREATE TABLE IF NOT EXISTS block_data (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  date TEXT NOT NULL,
  code TEXT NOT NULL,
  name TEXT NOT NULL,
  change REAL,
  limit_up_num INTEGER,
  continuous_plate_num INTEGER,
  high TEXT,
  high_num INTEGER,
  days INTEGER,
  created_at INTEGER NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_block_data_date ON block_data (date);

CREATE TABLE IF NOT EXISTS stock_data (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  date TEXT NOT NULL,
  block_code TEXT NOT NULL,
  code TEXT NOT NULL,
  symbol TEXT,
  name TEXT NOT NULL,
  latest REAL,
  change_rate REAL,
  continue_num INTEGER,
  high TEXT,
  high_days INTEGER,
  first_limit_up_time TEXT,
  last_limit_up_time TEXT,
  reason_type TEXT,
  reason_info TEXT,
  is_new INTEGER,
  is_st INTEGER,
  market_type TEXT,
  created_at INTEGER NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_stock_data_date ON stock_data (date);
"""

_BLOCK_COLS = "date, code, name, change, limit_up_num, continuous_plate_num, high, high_num, days"
_STOCK_COLS = (
    "date, block_code, code, symbol, name, latest, change_rate, continue_num, high, high_days, "
    "first_limit_up_time, last_limit_up_time, reason_type, reason_info, is_new, is_st, market_type"
)


@dataclass
class BlockStore:
    db_path: Path
    conn: aiosqlite.Connection
    _write_lock: asyncio.Lock = field(default_factory=asyncio.Lock)

    @classmethod
    async def open(cls, db_path: Path) -> "BlockStore":
        db_path.parent.mkdir(parents=True, exist_ok=True)
        try:
            conn = await aiosqlite.connect(str(db_path))
            await conn.executescript(SCHEMA_SQL)
            await conn.commit()
        except aiosqlite.Error as e:
            raise StoreError(f"cannot open block store {db_path}: {e}") from e
        logger.info("BlockStore ready: {}", db_path)
        return cls(db_path=db_path, conn=conn)

    async def close(self) -> None:
        await self.conn.close()
        logger.info("BlockStore closed")

    async def has_date(self, day: str) -> bool:
        try:
            async with self.conn.execute("SELECT 1 FROM block_data WHERE date=? LIMIT 1", (day,)) as cur:
                row = await cur.fetchone()
        except aiosqlite.Error as e:
            raise StoreError(f"block lookup failed date={day}: {e}") from e
        return row is not None

    async def insert_snapshot(self, blocks: List[Block], stocks: List[LimitUpStock]) -> None:
        """Blocks and their stocks land in one transaction."""
        ts = now_ms()
        block_rows = [
            (
                b.date, b.code, b.name, b.change, b.limit_up_num, b.continuous_plate_num,
                b.high, b.high_num, b.days, ts,
            )
            for b in blocks
        ]
        stock_rows = [
            (
                s.date, s.block_code, s.code, s.symbol, s.name, s.latest, s.change_rate,
                s.continue_num, s.high, s.high_days, s.first_limit_up_time, s.last_limit_up_time,
                s.reason_type, s.reason_info, s.is_new, s.is_st, s.market_type, ts,
            )
            for s in stocks
        ]
        async with self._write_lock:
            try:
                if block_rows:
                    await self.conn.executemany(
                        f"INSERT INTO block_data ({_BLOCK_COLS}, created_at) VALUES ({', '.join('?' * 10)})",
                        block_rows,
                    )
                if stock_rows:
                    await self.conn.executemany(
                        f"INSERT INTO stock_data ({_STOCK_COLS}, created_at) VALUES ({', '.join('?' * 18)})",
                        stock_rows,
                    )
                await self.conn.commit()
            except aiosqlite.Error as e:
                await self.conn.rollback()
                raise StoreError(f"block snapshot insert failed: {e}") from e

    async def load_snapshot(self, day: str) -> tuple[List[Block], List[LimitUpStock]]:
        try:
            async with self.conn.execute(
                f"SELECT {_BLOCK_COLS} FROM block_data WHERE date=? ORDER BY id", (day,)
            ) as cur:
                block_rows = await cur.fetchall()
            async with self.conn.execute(
                f"SELECT {_STOCK_COLS} FROM stock_data WHERE date=? ORDER BY id", (day,)
            ) as cur:
                stock_rows = await cur.fetchall()
        except aiosqlite.Error as e:
            raise StoreError(f"block snapshot read failed date={day}: {e}") from e

        blocks = [Block(*r) for r in block_rows]
        stocks = [LimitUpStock(*r) for r in stock_rows]
        return blocks, stocks
