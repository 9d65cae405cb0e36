from __future__ import annotations

import argparse
import asyncio
from pathlib import Path

from loguru import logger

from kfilter.adapters.tencent.kline import TencentKlineAdapter
from kfilter.common.config import load_kfilter_config
from kfilter.common.datetime_utils import format_market_ts
from kfilter.common.kline.sqlite_store import KlineStore
from kfilter.common.types import market_symbol
from kfilter.market_data.plant import KlinePlant


def _parse_args() -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Show (and refresh when stale) one symbol's daily K-line history.")
    p.add_argument("symbol", help="Code or exchange-prefixed symbol, e.g. 600519 or sz000001")
    p.add_argument("--name", default=None, help="Display name to store with the symbol")
    p.add_argument("--force", action="store_true", help="Refetch even if refreshed today")
    p.add_argument("--tail", type=int, default=5, help="Print the last N bars")

    p.add_argument("--provider-path", default="config/provider.yaml")
    p.add_argument("--refresh-path", default="config/refresh.yaml")
    p.add_argument("--data-path", default="config/data.yaml")
    p.add_argument("--db-path", default=None, help="SQLite path override")
    return p.parse_args()


async def main_async() -> None:
    args = _parse_args()
    cfg = load_kfilter_config(
        provider_path=Path(args.provider_path),
        refresh_path=Path(args.refresh_path),
        data_path=Path(args.data_path),
    )

    store = await KlineStore.open(Path(args.db_path or cfg.data.db_path))
    try:
        plant = KlinePlant(store=store, source=TencentKlineAdapter(cfg=cfg.provider), cfg=cfg.refresh)
        h = await plant.get_or_refresh_symbol(market_symbol(args.symbol), args.name, args.force)

        logger.info(
            "symbol={} name={} bars={} last_refreshed={}",
            h.symbol,
            h.name,
            len(h.daily),
            format_market_ts(h.updated_at_ms),
        )
        for b in h.daily[-args.tail:] if args.tail > 0 else []:
            logger.info(
                "{} O={} H={} L={} C={} amount={}",
                b.date,
                b.open,
                b.high,
                b.low,
                b.close,
                b.amount,
            )

        today = h.last_refreshed_at.date().isoformat()
        logger.info(
            "trading days around {}: prev={} next={}",
            today,
            plant.previous_trading_day(today),
            plant.next_trading_day(today),
        )
    finally:
        await store.close()


def main() -> None:
    asyncio.run(main_async())


if __name__ == "__main__":
    main()
