from __future__ import annotations

from datetime import date, datetime, timezone

from kfilter.common.constants import MARKET_TZ


def ms_to_market_datetime(ts_ms: int) -> datetime:
    return datetime.fromtimestamp(ts_ms / 1000, tz=MARKET_TZ)


def format_market_ts(ts_ms: int) -> str:
    """
    Epoch ms -> market wall-clock string, e.g. 1717400000000 -> "2024-06-03 15:33:20"
    """
    return ms_to_market_datetime(ts_ms).strftime("%Y-%m-%d %H:%M:%S")


def parse_date(s: str) -> date:
    """'YYYY-MM-DD' (or 'YYYYMMDD') -> date."""
    ss = s.strip()
    if len(ss) == 8 and ss.isdigit():
        ss = f"{ss[:4]}-{ss[4:6]}-{ss[6:]}"
    return date.fromisoformat(ss)


def now_ms() -> int:
    return int(datetime.now(tz=timezone.utc).timestamp() * 1000)


def today_in_market() -> date:
    return datetime.now(tz=MARKET_TZ).date()
