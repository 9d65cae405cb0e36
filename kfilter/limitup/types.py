from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from typing import Optional, Protocol


@dataclass(frozen=True)
class Block:
    date: str  # YYYY-MM-DD
    code: str
    name: str
    change: Optional[float]             # block change %
    limit_up_num: Optional[int]         # limit-up stocks in block
    continuous_plate_num: Optional[int]  # consecutive-limit-up stocks
    high: Optional[str]                 # highest streak, e.g. "3板"
    high_num: Optional[int]
    days: Optional[int]                 # days on the board


@dataclass(frozen=True)
class LimitUpStock:
    date: str
    block_code: str
    code: str
    symbol: Optional[str]  # exchange-prefixed; None when the code maps to no exchange
    name: str
    latest: Optional[float]
    change_rate: Optional[float]
    continue_num: Optional[int]
    high: Optional[str]
    high_days: Optional[int]
    first_limit_up_time: str  # HH:MM:SS market time, "" when unknown
    last_limit_up_time: str
    reason_type: Optional[str]
    reason_info: Optional[str]
    is_new: Optional[int]
    is_st: Optional[int]
    market_type: Optional[str]


@dataclass(frozen=True)
class BlockSnapshot:
    date: str
    blocks: list[Block] = field(default_factory=list)
    stocks: list[LimitUpStock] = field(default_factory=list)
    from_cache: bool = False
    error: Optional[str] = None


class BlockSource(Protocol):
    async def fetch_block_top(self, day: date) -> str:
        """Raw response body of the limit-up block ranking for `day`."""
        ...
