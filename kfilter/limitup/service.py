from __future__ import annotations

from datetime import date
from typing import Optional

from loguru import logger

from kfilter.common.errors import MalformedPayload, StoreError, TransportError
from kfilter.limitup.codec import decode_block_top
from kfilter.limitup.sqlite_store import BlockStore
from kfilter.limitup.types import BlockSnapshot, BlockSource
from kfilter.market_data.refresh import BatchRefresher

FETCH_FAILED = "failed to fetch block data"


class LimitUpService:
    """
    Cache-first access to a trading day's limit-up blocks.

    A day is fetched from the source at most once: as soon as any block for the
    date is stored, later reads are served from the store. Freshly stored data
    means a new trading day was observed, which kicks off a batch K-line refresh
    when a refresher is attached.
    """

    def __init__(
        self,
        *,
        store: BlockStore,
        source: BlockSource,
        refresher: Optional[BatchRefresher] = None,
    ):
        self._store = store
        self._source = source
        self._refresher = refresher

    async def get_block_data(self, day: date) -> BlockSnapshot:
        d = day.isoformat()

        if await self._store.has_date(d):
            blocks, stocks = await self._store.load_snapshot(d)
            return BlockSnapshot(date=d, blocks=blocks, stocks=stocks, from_cache=True)

        try:
            raw = await self._source.fetch_block_top(day)
            blocks, stocks = decode_block_top(raw, day)
        except (TransportError, MalformedPayload) as e:
            logger.warning("Block data unavailable date={}: {}", d, e)
            return BlockSnapshot(date=d, from_cache=False, error=FETCH_FAILED)

        if not blocks:
            logger.info("Block data empty date={}", d)
            return BlockSnapshot(date=d, from_cache=False)

        await self._store.insert_snapshot(blocks, stocks)
        logger.info("Stored block data date={} blocks={} stocks={}", d, len(blocks), len(stocks))

        if self._refresher is not None:
            try:
                res = await self._refresher.trigger(day)
            except StoreError as e:
                logger.warning("New trading day {} observed - batch refresh not started: {}", d, e)
            else:
                logger.info("New trading day {} observed - batch refresh {}", d, res.outcome.value)

        blocks, stocks = await self._store.load_snapshot(d)
        return BlockSnapshot(date=d, blocks=blocks, stocks=stocks, from_cache=False)
