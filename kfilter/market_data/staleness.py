from __future__ import annotations

from datetime import date, datetime
from typing import Iterable, Optional

from kfilter.common.datetime_utils import ms_to_market_datetime
from kfilter.common.kline.types import SymbolRef
from kfilter.market_data.types import WorkItem


def due_for_refresh(last_refreshed_at: Optional[datetime], target_date: date) -> bool:
    """
    Day granularity: a symbol refreshed at any time on day D is fresh for target D
    and stale for every later target.
    """
    if last_refreshed_at is None:
        return True
    return last_refreshed_at.date() < target_date


def compute_due_set(refs: Iterable[SymbolRef], target_date: date) -> list[WorkItem]:
    out: list[WorkItem] = []
    for r in refs:
        last = None if r.updated_at_ms is None else ms_to_market_datetime(r.updated_at_ms)
        if due_for_refresh(last, target_date):
            out.append(WorkItem(symbol=r.symbol, name=r.name))
    return out
