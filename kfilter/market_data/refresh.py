from __future__ import annotations

import asyncio
from datetime import date
from typing import Callable, Optional

from loguru import logger

from kfilter.common.config import RefreshConfig
from kfilter.common.datetime_utils import now_ms, today_in_market
from kfilter.common.kline.types import HistoryStore, KlineSource, SymbolHistory
from kfilter.market_data.staleness import compute_due_set
from kfilter.market_data.types import (
    JobStatus,
    RefreshState,
    TriggerOutcome,
    TriggerResult,
    WorkItem,
)


def history_window(target_date: date, history_years: int) -> tuple[date, date]:
    return date(target_date.year - history_years, 1, 1), target_date


class BatchRefresher:
    """
    Single-flight background refresh of every stale symbol in the store.

    - trigger() while a job is running (or being armed) is a no-op
    - N workers drain one shared queue; a claim is get_nowait(), so no item is taken twice
    - a symbol's failure is counted and never stops the job
    - workers sleep cfg.pace_ms after each item to stay under the provider's rate limit

    Counters are only touched between awaits, so updates from different workers
    cannot be lost on the event loop.
    """

    def __init__(
        self,
        *,
        store: HistoryStore,
        source: KlineSource,
        cfg: RefreshConfig | None = None,
        today: Callable[[], date] = today_in_market,
    ):
        self._store = store
        self._source = source
        self.cfg = cfg or RefreshConfig()
        self._today = today

        self._arming = False
        self._task: Optional[asyncio.Task] = None

        self._state = RefreshState.IDLE
        self._total = 0
        self._completed = 0
        self._failed = 0
        self._started_at_ms: Optional[int] = None
        self._finished_at_ms: Optional[int] = None
        self._target_date: Optional[date] = None

    def status(self) -> JobStatus:
        return JobStatus(
            state=self._state,
            total=self._total,
            completed=self._completed,
            failed=self._failed,
            started_at_ms=self._started_at_ms,
            finished_at_ms=self._finished_at_ms,
            target_date=self._target_date,
        )

    async def trigger(self, target_date: date | None = None) -> TriggerResult:
        if self._arming or self._state is RefreshState.RUNNING:
            logger.info("Batch refresh already running - trigger ignored")
            return TriggerResult(outcome=TriggerOutcome.ALREADY_RUNNING, status=self.status())

        # Claimed before the first await: a second trigger in the same tick sees it.
        self._arming = True
        try:
            day = target_date or self._today()
            refs = await self._store.list_all_symbols()
            due = compute_due_set(refs, day)

            if not due:
                logger.info("Batch refresh: nothing due target_date={} known={}", day, len(refs))
                return TriggerResult(outcome=TriggerOutcome.NOTHING_DUE, status=self.status())

            self._state = RefreshState.RUNNING
            self._total = len(due)
            self._completed = 0
            self._failed = 0
            self._started_at_ms = now_ms()
            self._finished_at_ms = None
            self._target_date = day

            queue: asyncio.Queue[WorkItem] = asyncio.Queue()
            for item in due:
                queue.put_nowait(item)

            logger.info(
                "Batch refresh started target_date={} due={} known={} workers={}",
                day,
                len(due),
                len(refs),
                self.cfg.workers,
            )
            self._task = asyncio.create_task(self._run(queue))
        finally:
            self._arming = False

        return TriggerResult(outcome=TriggerOutcome.STARTED, status=self.status())

    async def wait(self) -> JobStatus:
        """Block until the in-flight job (if any) has drained."""
        task = self._task
        if task is not None:
            await asyncio.shield(task)
        return self.status()

    async def _run(self, queue: "asyncio.Queue[WorkItem]") -> None:
        # target_date only selects who is due; every refresh stores history up to today.
        start, end = history_window(self._today(), self.cfg.history_years)
        workers = min(self.cfg.workers, queue.qsize())
        try:
            await asyncio.gather(*(self._worker(i, queue, start, end) for i in range(workers)))
        finally:
            self._state = RefreshState.IDLE
            self._finished_at_ms = now_ms()
            logger.info(
                "Batch refresh complete total={} completed={} failed={} elapsed_ms={}",
                self._total,
                self._completed,
                self._failed,
                self._finished_at_ms - (self._started_at_ms or self._finished_at_ms),
            )

    async def _worker(self, worker_id: int, queue: "asyncio.Queue[WorkItem]", start: date, end: date) -> None:
        while True:
            try:
                item = queue.get_nowait()
            except asyncio.QueueEmpty:
                return

            try:
                ok = await self._refresh_one(item, start, end)
            except Exception:
                logger.exception("Batch refresh worker={} symbol={} failed", worker_id, item.symbol)
                ok = False

            if ok:
                self._completed += 1
            else:
                self._failed += 1

            done = self._completed + self._failed
            if done % self.cfg.progress_every == 0:
                logger.info(
                    "Batch refresh progress {}/{} completed={} failed={}",
                    done,
                    self._total,
                    self._completed,
                    self._failed,
                )

            await asyncio.sleep(self.cfg.pace_s)

    async def _refresh_one(self, item: WorkItem, start: date, end: date) -> bool:
        result = await self._source.fetch_daily(item.symbol, start, end)
        if not result.ok:
            logger.warning(
                "Batch refresh got no bars symbol={} chunk_failures={}",
                item.symbol,
                len(result.failures),
            )
            return False

        ts = now_ms()
        await self._store.upsert(
            SymbolHistory(
                symbol=item.symbol,
                name=result.name or item.name,
                daily=result.bars,
                updated_at_ms=ts,
                created_at_ms=ts,
            )
        )
        return True
