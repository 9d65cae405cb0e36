from __future__ import annotations

from datetime import date
from typing import Callable, Optional

from loguru import logger

from kfilter.common.config import RefreshConfig
from kfilter.common.datetime_utils import now_ms, parse_date, today_in_market
from kfilter.common.errors import StoreError
from kfilter.common.kline.types import HistoryStore, KlineSource, SymbolHistory
from kfilter.common.trading_calendar import next_trading_day, previous_trading_day
from kfilter.market_data.refresh import BatchRefresher, history_window
from kfilter.market_data.staleness import due_for_refresh
from kfilter.market_data.types import JobStatus, TriggerResult


class KlinePlant:
    """
    Single owner of the K-line lifecycle:
    - on-demand refresh of one symbol (awaited by the caller)
    - the background batch refresh (delegates to BatchRefresher)
    - trading-day navigation

    Both refresh paths write through the same store and share no in-memory state;
    the store's per-symbol upsert is the only coordination between them.
    """

    def __init__(
        self,
        *,
        store: HistoryStore,
        source: KlineSource,
        cfg: RefreshConfig | None = None,
        today: Callable[[], date] = today_in_market,
    ):
        self.cfg = cfg or RefreshConfig()
        self._store = store
        self._source = source
        self._today = today
        self.batch = BatchRefresher(store=store, source=source, cfg=self.cfg, today=today)

    async def trigger_batch_refresh(self, target_date: date | None = None) -> TriggerResult:
        return await self.batch.trigger(target_date)

    def get_batch_status(self) -> JobStatus:
        return self.batch.status()

    async def get_or_refresh_symbol(
        self,
        symbol: str,
        name: Optional[str] = None,
        force_update: bool = False,
    ) -> SymbolHistory:
        today = self._today()
        cached = await self._store.get(symbol)

        if cached is not None and not force_update and not due_for_refresh(cached.last_refreshed_at, today):
            return cached

        start, end = history_window(today, self.cfg.history_years)
        logger.info(
            "Refreshing symbol={} force={} cached={} range=[{}..{}]",
            symbol,
            force_update,
            cached is not None,
            start,
            end,
        )
        result = await self._source.fetch_daily(symbol, start, end)

        if not result.ok:
            logger.warning("No bars fetched symbol={} - serving {}", symbol, "cache" if cached else "empty")
            if cached is not None:
                return cached
            ts = now_ms()
            return SymbolHistory(
                symbol=symbol,
                name=name or symbol,
                daily=[],
                updated_at_ms=ts,
                created_at_ms=ts,
            )

        display_name = name or result.name or (cached.name if cached else None) or symbol
        ts = now_ms()
        await self._store.upsert(
            SymbolHistory(
                symbol=symbol,
                name=display_name,
                daily=result.bars,
                updated_at_ms=ts,
                created_at_ms=ts,
            )
        )

        stored = await self._store.get(symbol)
        if stored is None:
            raise StoreError(f"symbol={symbol!r} missing right after upsert")
        return stored

    @staticmethod
    def previous_trading_day(day: str) -> str:
        return previous_trading_day(parse_date(day)).isoformat()

    @staticmethod
    def next_trading_day(day: str) -> str:
        return next_trading_day(parse_date(day)).isoformat()
