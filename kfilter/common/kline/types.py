from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Optional, Protocol

from kfilter.common.datetime_utils import ms_to_market_datetime
from kfilter.common.types import Adjustment


@dataclass(frozen=True)
class Bar:
    date: str  # YYYY-MM-DD
    open: float
    close: float
    high: float
    low: float
    amount: float

    def to_dict(self) -> dict:
        return {
            "date": self.date,
            "open": self.open,
            "close": self.close,
            "high": self.high,
            "low": self.low,
            "amount": self.amount,
        }

    @classmethod
    def from_dict(cls, d: dict) -> "Bar":
        return cls(
            date=str(d["date"]),
            open=float(d["open"]),
            close=float(d["close"]),
            high=float(d["high"]),
            low=float(d["low"]),
            amount=float(d["amount"]),
        )


@dataclass(frozen=True)
class SymbolHistory:
    symbol: str  # exchange-prefixed, e.g. "sz000001"
    name: str
    daily: list[Bar]
    updated_at_ms: int
    created_at_ms: int
    weekly: Optional[list[Bar]] = None
    monthly: Optional[list[Bar]] = None
    info: Optional[str] = None

    @property
    def last_refreshed_at(self) -> datetime:
        return ms_to_market_datetime(self.updated_at_ms)


@dataclass(frozen=True)
class SymbolRef:
    symbol: str
    name: str
    updated_at_ms: Optional[int]


@dataclass(frozen=True)
class ChunkFailure:
    year: Optional[int]  # None for single-request (weekly/monthly) fetches
    error: Exception


@dataclass(frozen=True)
class FetchResult:
    symbol: str
    bars: list[Bar]
    name: Optional[str] = None
    failures: tuple[ChunkFailure, ...] = field(default_factory=tuple)

    @property
    def ok(self) -> bool:
        return bool(self.bars)


class KlineSource(Protocol):
    async def fetch_daily(
        self,
        symbol: str,
        start: date,
        end: date,
        adjustment: Adjustment | None = None,
    ) -> FetchResult:
        """Return daily bars in [start, end] sorted ascending by date. Never raises on upstream trouble."""
        ...


class HistoryStore(Protocol):
    async def get(self, symbol: str) -> SymbolHistory | None: ...

    async def upsert(self, history: SymbolHistory) -> None:
        """Atomic per symbol. Existing rows keep created_at_ms."""
        ...

    async def list_all_symbols(self) -> list[SymbolRef]: ...
