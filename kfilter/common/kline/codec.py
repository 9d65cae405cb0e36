from __future__ import annotations

import json
from datetime import date
from typing import Any, Iterable, Optional, Sequence

from loguru import logger

from kfilter.common.errors import MalformedPayload
from kfilter.common.kline.types import Bar
from kfilter.common.types import Adjustment, Period

_WRAPPER_MARKER = "={"
_HTML_MARKERS = ("<!DOCTYPE", "<!doctype", "<html", "<h1>")

# Provider keys per period and adjustment. Lookups go through this table only.
_PERIOD_KEYS: dict[str, dict[str, str]] = {
    "day": {"qfq": "qfqday", "hfq": "hfqday", "raw": "day"},
    "week": {"qfq": "qfqweek", "hfq": "hfqweek", "raw": "week"},
    "month": {"qfq": "qfqmonth", "hfq": "hfqmonth", "raw": "month"},
}

# Tried in this order after the requested adjustment.
FALLBACK_ORDER: tuple[Adjustment, ...] = ("qfq", "hfq", "raw")

MIN_ROW_FIELDS = 6


def extract_json(raw_text: str) -> dict[str, Any]:
    """
    The provider wraps JSON in a JS assignment: `kline_dayqfq2024={...};`
    Everything from the first '={' marker's brace onward is the document.
    """
    idx = raw_text.find(_WRAPPER_MARKER)
    # Only the text ahead of the wrapper is sniffed; quote names may contain anything.
    head = raw_text if idx < 0 else raw_text[:idx]
    if any(m in head for m in _HTML_MARKERS):
        raise MalformedPayload(f"HTML page instead of payload: {raw_text[:120]!r}")

    if idx < 0:
        raise MalformedPayload(f"missing '=' wrapper marker: {raw_text[:120]!r}")

    body = raw_text[idx + 1 :].rstrip()
    if body.endswith(";"):
        body = body[:-1]

    try:
        doc = json.loads(body)
    except json.JSONDecodeError as e:
        raise MalformedPayload(f"invalid JSON in payload: {e}") from e

    if not isinstance(doc, dict):
        raise MalformedPayload(f"payload is not a JSON object (got {type(doc).__name__})")
    return doc


def candidate_keys(period: Period, adjustment: Adjustment) -> tuple[str, ...]:
    keys = _PERIOD_KEYS.get(period)
    if keys is None:
        raise ValueError(f"Unsupported period={period!r}. Supported: {sorted(_PERIOD_KEYS)}")
    if adjustment not in keys:
        raise ValueError(f"Unsupported adjustment={adjustment!r}. Supported: {list(FALLBACK_ORDER)}")

    out: list[str] = [keys[adjustment]]
    for adj in FALLBACK_ORDER:
        k = keys[adj]
        if k not in out:
            out.append(k)
    return tuple(out)


def _symbol_node(payload: dict[str, Any], symbol: str) -> Optional[dict[str, Any]]:
    data = payload.get("data")
    if not isinstance(data, dict):
        # The provider answers unknown symbols with `"data": []`.
        return None
    node = data.get(symbol)
    return node if isinstance(node, dict) else None


def select_rows(payload: dict[str, Any], symbol: str, period: Period, adjustment: Adjustment) -> list:
    node = _symbol_node(payload, symbol)
    if node is None:
        return []

    for key in candidate_keys(period, adjustment):
        if key in node:
            rows = node[key]
            return rows if isinstance(rows, list) else []
    return []


def decode_rows(rows: Iterable[Any]) -> list[Bar]:
    out: list[Bar] = []
    dropped = 0
    for row in rows:
        if not isinstance(row, (list, tuple)) or len(row) < MIN_ROW_FIELDS:
            dropped += 1
            continue
        try:
            out.append(
                Bar(
                    date=str(row[0]),
                    open=float(row[1]),
                    close=float(row[2]),
                    high=float(row[3]),
                    low=float(row[4]),
                    amount=float(row[5]),
                )
            )
        except (TypeError, ValueError):
            dropped += 1
    if dropped:
        logger.debug("decode_rows dropped {} unusable rows", dropped)
    return out


def parse_provider_payload(
    raw_text: str,
    symbol: str,
    period: Period = "day",
    adjustment: Adjustment = "qfq",
) -> list[Bar]:
    payload = extract_json(raw_text)
    return decode_rows(select_rows(payload, symbol, period, adjustment))


def extract_display_name(payload: dict[str, Any], symbol: str) -> Optional[str]:
    # data[symbol]["qt"][symbol] is a quote row: [market, name, code, last, ...]
    node = _symbol_node(payload, symbol)
    if node is None:
        return None
    qt = node.get("qt")
    if not isinstance(qt, dict):
        return None
    quote = qt.get(symbol)
    if not isinstance(quote, list) or len(quote) < 2:
        return None
    name = str(quote[1]).strip()
    return name or None


def deduplicate_and_filter(bars: Iterable[Bar], start: date, end: date) -> list[Bar]:
    """
    Collapse bars sharing a date (the LAST one seen wins), then keep start <= date <= end.
    Output order is not guaranteed; see sort_bars().
    """
    by_date: dict[str, Bar] = {}
    for b in bars:
        by_date[b.date] = b

    lo = start.isoformat()
    hi = end.isoformat()
    return [b for d, b in by_date.items() if lo <= d <= hi]


def sort_bars(bars: Sequence[Bar]) -> list[Bar]:
    return sorted(bars, key=lambda b: b.date)


def bars_to_json(bars: Optional[Sequence[Bar]]) -> Optional[str]:
    if bars is None:
        return None
    return json.dumps([b.to_dict() for b in bars], ensure_ascii=False, separators=(",", ":"))


def bars_from_json(text: Optional[str]) -> Optional[list[Bar]]:
    if text is None:
        return None
    raw = json.loads(text)
    if not isinstance(raw, list):
        raise ValueError("stored bar column is not a JSON array")
    return [Bar.from_dict(d) for d in raw]
