from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass, field
from datetime import date

from kfilter.adapters.tencent.kline import TencentKlineAdapter
from kfilter.common.config import ProviderConfig
from kfilter.common.errors import MalformedPayload, TransportError


def _row(d: str, close: float) -> list:
    return [d, "10.00", f"{close:.2f}", "12.00", "9.00", "1000.000"]


def _payload(symbol: str, key: str, rows: list, name: str | None = None) -> str:
    node: dict = {key: rows}
    if name:
        node["qt"] = {symbol: ["51", name, symbol[2:], "10.50"]}
    return "kline_dayqfq=" + json.dumps({"code": 0, "msg": "", "data": {symbol: node}}) + ";"


@dataclass
class ScriptedAdapter(TencentKlineAdapter):
    """Serves canned bodies per window start instead of hitting the network."""

    by_window: dict = field(default_factory=dict)
    calls: list = field(default_factory=list)

    async def _request(self, *, symbol, period, adjustment, window_start, window_end, row_limit, var_name):
        self.calls.append((symbol, period, adjustment, window_start, window_end, row_limit, var_name))
        body = self.by_window.get(window_start)
        if isinstance(body, Exception):
            raise body
        if body is None:
            raise TransportError("connection refused")
        return body


def test_daily_fetch_is_year_chunked_with_overlapping_windows():
    a = ScriptedAdapter(
        today=lambda: date(2024, 6, 10),
        by_window={
            "2022-01-01": _payload("sz000001", "qfqday", [_row("2022-12-30", 1.0), _row("2023-01-03", 2.0)]),
            "2023-01-01": _payload("sz000001", "qfqday", [_row("2023-01-03", 3.0), _row("2023-06-01", 4.0)]),
            "2024-01-01": _payload("sz000001", "qfqday", [_row("2024-06-03", 5.0)], name="平安银行"),
        },
    )

    res = asyncio.run(a.fetch_daily("sz000001", date(2022, 1, 1), date(2024, 6, 10)))

    windows = [(c[3], c[4]) for c in a.calls]
    assert windows == [
        ("2022-01-01", "2023-12-31"),
        ("2023-01-01", "2024-12-31"),
        ("2024-01-01", "2025-12-31"),
    ]
    assert all(c[1] == "day" and c[2] == "qfq" and c[5] == 640 for c in a.calls)

    assert res.ok
    assert res.failures == ()
    assert res.name == "平安银行"
    # 2023-01-03 appears in two chunks: the later chunk wins.
    assert [(b.date, b.close) for b in res.bars] == [
        ("2022-12-30", 1.0),
        ("2023-01-03", 3.0),
        ("2023-06-01", 4.0),
        ("2024-06-03", 5.0),
    ]


def test_daily_fetch_never_asks_for_future_years():
    a = ScriptedAdapter(
        today=lambda: date(2024, 3, 1),
        by_window={"2024-01-01": _payload("sh600519", "qfqday", [_row("2024-02-01", 1.0)])},
    )
    res = asyncio.run(a.fetch_daily("sh600519", date(2024, 1, 1), date(2026, 12, 31)))
    assert [c[3] for c in a.calls] == ["2024-01-01"]
    assert [b.date for b in res.bars] == ["2024-02-01"]


def test_failed_year_is_skipped_not_fatal():
    a = ScriptedAdapter(
        today=lambda: date(2024, 12, 31),
        by_window={
            "2022-01-01": _payload("sz000001", "qfqday", [_row("2022-03-01", 1.0)]),
            "2023-01-01": "<!DOCTYPE html><h1>403</h1>",
            # 2024 missing -> TransportError
        },
    )
    res = asyncio.run(a.fetch_daily("sz000001", date(2022, 1, 1), date(2024, 12, 31)))

    assert len(a.calls) == 3
    assert [b.date for b in res.bars] == ["2022-03-01"]
    assert [f.year for f in res.failures] == [2023, 2024]
    assert isinstance(res.failures[0].error, MalformedPayload)
    assert isinstance(res.failures[1].error, TransportError)


def test_unreachable_upstream_yields_empty_result():
    a = ScriptedAdapter(today=lambda: date(2024, 12, 31))
    res = asyncio.run(a.fetch_daily("sz000001", date(2023, 5, 1), date(2024, 5, 1)))
    assert not res.ok
    assert res.bars == []
    assert len(res.failures) == 2


def test_daily_fetch_filters_to_requested_range():
    a = ScriptedAdapter(
        today=lambda: date(2024, 12, 31),
        by_window={
            "2024-01-01": _payload(
                "sz000001",
                "qfqday",
                [_row("2024-03-29", 1.0), _row("2024-04-01", 2.0), _row("2024-04-30", 3.0), _row("2024-05-06", 4.0)],
            )
        },
    )
    res = asyncio.run(a.fetch_daily("sz000001", date(2024, 4, 1), date(2024, 4, 30)))
    assert [b.date for b in res.bars] == ["2024-04-01", "2024-04-30"]


def test_adjustment_from_config_and_raw_suffix():
    a = ScriptedAdapter(
        cfg=ProviderConfig(adjustment="raw"),
        today=lambda: date(2024, 12, 31),
        by_window={"2024-01-01": _payload("sz000001", "day", [_row("2024-04-01", 2.0)])},
    )
    res = asyncio.run(a.fetch_daily("sz000001", date(2024, 1, 1), date(2024, 12, 31)))
    assert res.ok
    assert a.calls[0][2] == "raw"
    assert a.calls[0][6] == "kline_day2024"

    params = a._params(
        symbol="sz000001",
        period="day",
        adjustment="raw",
        window_start="2024-01-01",
        window_end="2025-12-31",
        row_limit=640,
        var_name="kline_day2024",
    )
    assert params["_var"] == "kline_day2024"
    assert params["param"] == "sz000001,day,2024-01-01,2025-12-31,640,"
    assert params["r"]


def test_weekly_is_single_request_with_key_fallback():
    a = ScriptedAdapter(
        today=lambda: date(2024, 12, 31),
        by_window={
            "2020-01-01": _payload(
                "sz000001", "hfqweek", [_row("2020-01-03", 1.0), _row("2024-06-07", 2.0)]
            )
        },
    )
    res = asyncio.run(a.fetch_weekly("sz000001", date(2020, 1, 1), date(2024, 12, 31)))
    assert len(a.calls) == 1
    assert a.calls[0][1] == "week"
    assert a.calls[0][5] == 2000
    assert [b.date for b in res.bars] == ["2020-01-03", "2024-06-07"]


def test_monthly_failure_reports_without_raising():
    a = ScriptedAdapter(today=lambda: date(2024, 12, 31))
    res = asyncio.run(a.fetch_monthly("sz000001", date(2020, 1, 1), date(2024, 12, 31)))
    assert res.bars == []
    assert len(res.failures) == 1
    assert res.failures[0].year is None
