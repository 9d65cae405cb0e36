from __future__ import annotations

import argparse
import asyncio
from pathlib import Path
from typing import List, Optional

from loguru import logger

from kfilter.adapters.tencent.kline import TencentKlineAdapter
from kfilter.common.config import load_kfilter_config
from kfilter.common.datetime_utils import parse_date
from kfilter.common.kline.sqlite_store import KlineStore
from kfilter.common.types import market_symbol
from kfilter.market_data.plant import KlinePlant
from kfilter.market_data.types import TriggerOutcome


def _split_csv(v: Optional[str]) -> List[str]:
    if v is None:
        return []
    return [p.strip() for p in v.split(",") if p.strip()]


def _parse_args() -> argparse.Namespace:
    p = argparse.ArgumentParser(description="kfilter batch K-line refresh (stale symbols only).")

    p.add_argument("--provider-path", default="config/provider.yaml", help="Provider yaml path")
    p.add_argument("--refresh-path", default="config/refresh.yaml", help="Refresh yaml path")
    p.add_argument("--data-path", default="config/data.yaml", help="Data yaml path")

    p.add_argument("--db-path", default=None, help="SQLite path override")
    p.add_argument("--target-date", default=None, help="Data date YYYY-MM-DD (default: today, market time)")
    p.add_argument(
        "--seed",
        default=None,
        help="Comma-separated codes/symbols to fetch first if unknown, e.g. 600519,sz000001",
    )
    p.add_argument("--poll-seconds", type=float, default=5.0, help="Progress log interval")

    return p.parse_args()


async def main_async() -> None:
    args = _parse_args()

    cfg = load_kfilter_config(
        provider_path=Path(args.provider_path),
        refresh_path=Path(args.refresh_path),
        data_path=Path(args.data_path),
    )
    db_path = Path(args.db_path or cfg.data.db_path)
    target = parse_date(args.target_date) if args.target_date else None

    store = await KlineStore.open(db_path)
    try:
        plant = KlinePlant(store=store, source=TencentKlineAdapter(cfg=cfg.provider), cfg=cfg.refresh)

        for raw in _split_csv(args.seed):
            symbol = market_symbol(raw)
            if await store.get(symbol) is None:
                h = await plant.get_or_refresh_symbol(symbol)
                logger.info("Seeded symbol={} name={} bars={}", h.symbol, h.name, len(h.daily))

        res = await plant.trigger_batch_refresh(target)
        if res.outcome is not TriggerOutcome.STARTED:
            logger.info("Refresher: {} (nothing to wait for)", res.outcome.value)
            return

        while plant.get_batch_status().running:
            await asyncio.sleep(args.poll_seconds)
            st = plant.get_batch_status()
            logger.info("Refresher progress {}/{} failed={}", st.processed, st.total, st.failed)

        st = await plant.batch.wait()
        logger.info(
            "Refresher complete db={} total={} completed={} failed={}",
            db_path,
            st.total,
            st.completed,
            st.failed,
        )
    finally:
        await store.close()


def main() -> None:
    asyncio.run(main_async())


if __name__ == "__main__":
    main()
