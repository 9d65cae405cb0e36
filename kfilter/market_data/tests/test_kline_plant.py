from __future__ import annotations

import asyncio
import tempfile
from dataclasses import dataclass, field
from datetime import date
from pathlib import Path
from typing import Optional

import pytest

from kfilter.common.errors import StoreError
from kfilter.common.kline.sqlite_store import KlineStore
from kfilter.common.kline.types import Bar, FetchResult, SymbolHistory
from kfilter.market_data.plant import KlinePlant
from kfilter.market_data.types import TriggerOutcome

TODAY = date(2024, 6, 4)
FRESH_MS = 1_717_480_800_000  # 2024-06-04 14:00 Beijing
STALE_MS = 1_717_221_600_000  # 2024-06-01 14:00 Beijing


def _bars(*dates: str) -> list[Bar]:
    return [Bar(date=d, open=1.0, close=2.0, high=3.0, low=0.5, amount=10.0) for d in dates]


def _hist(symbol: str, name: str, ts: int, *dates: str) -> SymbolHistory:
    return SymbolHistory(symbol=symbol, name=name, daily=_bars(*dates), updated_at_ms=ts, created_at_ms=ts)


@dataclass
class MemoryStore:
    rows: dict = field(default_factory=dict)
    drop_writes: bool = False

    async def get(self, symbol: str) -> Optional[SymbolHistory]:
        return self.rows.get(symbol)

    async def upsert(self, history: SymbolHistory) -> None:
        if self.drop_writes:
            return
        prev = self.rows.get(history.symbol)
        if prev is not None:
            history = SymbolHistory(
                symbol=history.symbol,
                name=history.name,
                daily=history.daily,
                updated_at_ms=history.updated_at_ms,
                created_at_ms=prev.created_at_ms,
            )
        self.rows[history.symbol] = history

    async def list_all_symbols(self):
        return []


@dataclass
class CannedSource:
    bars: list = field(default_factory=list)
    name: Optional[str] = None
    calls: list = field(default_factory=list)

    async def fetch_daily(self, symbol, start, end, adjustment=None) -> FetchResult:
        self.calls.append((symbol, start, end))
        return FetchResult(symbol=symbol, bars=list(self.bars), name=self.name)


def _plant(store, source) -> KlinePlant:
    return KlinePlant(store=store, source=source, today=lambda: TODAY)


def test_fresh_cache_is_served_without_fetching():
    store = MemoryStore(rows={"sz000001": _hist("sz000001", "平安银行", FRESH_MS, "2024-06-03")})
    source = CannedSource(bars=_bars("2024-06-04"))

    h = asyncio.run(_plant(store, source).get_or_refresh_symbol("sz000001"))

    assert source.calls == []
    assert h is store.rows["sz000001"]


def test_stale_cache_is_refetched_and_persisted():
    store = MemoryStore(rows={"sz000001": _hist("sz000001", "平安银行", STALE_MS, "2024-05-31")})
    source = CannedSource(bars=_bars("2024-05-31", "2024-06-03"), name="平安银行")

    h = asyncio.run(_plant(store, source).get_or_refresh_symbol("sz000001"))

    assert source.calls == [("sz000001", date(2021, 1, 1), TODAY)]
    assert [b.date for b in h.daily] == ["2024-05-31", "2024-06-03"]
    assert h.updated_at_ms > STALE_MS
    assert h.created_at_ms == STALE_MS


def test_force_update_bypasses_fresh_cache():
    store = MemoryStore(rows={"sz000001": _hist("sz000001", "平安银行", FRESH_MS, "2024-06-03")})
    source = CannedSource(bars=_bars("2024-06-03", "2024-06-04"))

    h = asyncio.run(_plant(store, source).get_or_refresh_symbol("sz000001", force_update=True))

    assert len(source.calls) == 1
    assert [b.date for b in h.daily] == ["2024-06-03", "2024-06-04"]


def test_unknown_symbol_is_fetched_and_created():
    store = MemoryStore()
    source = CannedSource(bars=_bars("2024-06-03"), name="贵州茅台")

    h = asyncio.run(_plant(store, source).get_or_refresh_symbol("sh600519"))

    assert h.name == "贵州茅台"
    assert "sh600519" in store.rows


@pytest.mark.parametrize(
    "arg_name, fetched_name, cached_name, expected",
    [
        ("Caller", "Upstream", "Cached", "Caller"),
        (None, "Upstream", "Cached", "Upstream"),
        (None, None, "Cached", "Cached"),
        (None, None, None, "sz000002"),
    ],
)
def test_display_name_priority(arg_name, fetched_name, cached_name, expected):
    rows = {}
    if cached_name is not None:
        rows["sz000002"] = _hist("sz000002", cached_name, STALE_MS, "2024-05-31")
    store = MemoryStore(rows=rows)
    source = CannedSource(bars=_bars("2024-06-03"), name=fetched_name)

    h = asyncio.run(_plant(store, source).get_or_refresh_symbol("sz000002", arg_name))
    assert h.name == expected


def test_empty_fetch_serves_stale_cache_untouched():
    cached = _hist("sz000001", "平安银行", STALE_MS, "2024-05-31")
    store = MemoryStore(rows={"sz000001": cached})

    h = asyncio.run(_plant(store, CannedSource()).get_or_refresh_symbol("sz000001"))

    assert h is cached
    assert store.rows["sz000001"].updated_at_ms == STALE_MS


def test_empty_fetch_without_cache_returns_transient_record():
    store = MemoryStore()

    h = asyncio.run(_plant(store, CannedSource()).get_or_refresh_symbol("bj830799", "艾融软件"))

    assert h.symbol == "bj830799"
    assert h.name == "艾融软件"
    assert h.daily == []
    assert store.rows == {}


def test_missing_row_after_upsert_raises_store_error():
    store = MemoryStore(drop_writes=True)
    source = CannedSource(bars=_bars("2024-06-03"))

    with pytest.raises(StoreError):
        asyncio.run(_plant(store, source).get_or_refresh_symbol("sz000001"))


def test_trading_day_navigation_on_strings():
    # Fri -> Mon, Mon -> Fri, across the national day closure
    assert KlinePlant.next_trading_day("2024-05-31") == "2024-06-03"
    assert KlinePlant.previous_trading_day("2024-06-03") == "2024-05-31"
    assert KlinePlant.next_trading_day("2024-09-30") == "2024-10-02"
    assert KlinePlant.previous_trading_day("20240102") == "2023-12-29"


def test_plant_with_sqlite_store_and_batch_status():
    with tempfile.TemporaryDirectory() as tmp:

        async def run():
            store = await KlineStore.open(Path(tmp) / "kline.sqlite")
            try:
                plant = _plant(store, CannedSource(bars=_bars("2024-06-03"), name="平安银行"))
                h = await plant.get_or_refresh_symbol("sz000001")
                again = await plant.get_or_refresh_symbol("sz000001")

                # refreshed "now", so nothing is due for the batch either
                res = await plant.trigger_batch_refresh(TODAY)
                return h, again, res, plant.get_batch_status()
            finally:
                await store.close()

        h, again, res, st = asyncio.run(run())

    assert h == again
    assert h.name == "平安银行"
    assert res.outcome is TriggerOutcome.NOTHING_DUE
    assert not st.running
