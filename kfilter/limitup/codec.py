from __future__ import annotations

import json
from datetime import date, datetime
from typing import Any, Optional

from kfilter.common.constants import MARKET_TZ
from kfilter.common.errors import MalformedPayload
from kfilter.common.types import market_symbol
from kfilter.limitup.types import Block, LimitUpStock


def format_limit_up_time(raw: Any) -> str:
    """Epoch seconds (as sent by the provider) -> 'HH:MM:SS' market time."""
    if raw is None:
        return ""
    s = str(raw).strip()
    if not s:
        return ""
    try:
        ts = int(s)
    except ValueError:
        return s
    return datetime.fromtimestamp(ts, tz=MARKET_TZ).strftime("%H:%M:%S")


def _opt_float(v: Any) -> Optional[float]:
    if v is None or v == "":
        return None
    try:
        return float(v)
    except (TypeError, ValueError):
        return None


def _opt_int(v: Any) -> Optional[int]:
    if v is None or v == "":
        return None
    try:
        return int(float(v))
    except (TypeError, ValueError):
        return None


def _opt_str(v: Any) -> Optional[str]:
    return None if v is None else str(v)


def _safe_symbol(code: str) -> Optional[str]:
    try:
        return market_symbol(code)
    except ValueError:
        return None


def decode_block_top(raw_text: str, day: date) -> tuple[list[Block], list[LimitUpStock]]:
    # A JSON document never starts with markup; an error page always does.
    if raw_text.lstrip().startswith("<"):
        raise MalformedPayload(f"HTML page instead of block data: {raw_text[:120]!r}")

    try:
        doc = json.loads(raw_text)
    except json.JSONDecodeError as e:
        raise MalformedPayload(f"invalid JSON in block data: {e}") from e

    if not isinstance(doc, dict):
        raise MalformedPayload("block data is not a JSON object")

    status = doc.get("status_code")
    if status != 0:
        raise MalformedPayload(f"block data status_code={status!r}")

    data = doc.get("data")
    if not isinstance(data, list):
        raise MalformedPayload("block data has no 'data' list")

    d = day.isoformat()
    blocks: list[Block] = []
    stocks: list[LimitUpStock] = []

    for b in data:
        if not isinstance(b, dict) or not b.get("code"):
            continue
        block_code = str(b["code"])
        blocks.append(
            Block(
                date=d,
                code=block_code,
                name=str(b.get("name") or ""),
                change=_opt_float(b.get("change")),
                limit_up_num=_opt_int(b.get("limit_up_num")),
                continuous_plate_num=_opt_int(b.get("continuous_plate_num")),
                high=_opt_str(b.get("high")),
                high_num=_opt_int(b.get("high_num")),
                days=_opt_int(b.get("days")),
            )
        )

        for s in b.get("stock_list") or []:
            if not isinstance(s, dict) or not s.get("code"):
                continue
            code = str(s["code"])
            stocks.append(
                LimitUpStock(
                    date=d,
                    block_code=block_code,
                    code=code,
                    symbol=_safe_symbol(code),
                    name=str(s.get("name") or ""),
                    latest=_opt_float(s.get("latest")),
                    change_rate=_opt_float(s.get("change_rate")),
                    continue_num=_opt_int(s.get("continue_num")),
                    high=_opt_str(s.get("high")),
                    high_days=_opt_int(s.get("high_days")),
                    first_limit_up_time=format_limit_up_time(s.get("first_limit_up_time")),
                    last_limit_up_time=format_limit_up_time(s.get("last_limit_up_time")),
                    reason_type=_opt_str(s.get("reason_type")),
                    reason_info=_opt_str(s.get("reason_info")),
                    is_new=_opt_int(s.get("is_new")),
                    is_st=_opt_int(s.get("is_st")),
                    market_type=_opt_str(s.get("market_type")),
                )
            )

    return blocks, stocks
