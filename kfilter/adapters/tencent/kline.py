from __future__ import annotations

import asyncio
import random
from dataclasses import dataclass, field
from datetime import date
from typing import Callable, Optional

import aiohttp
from loguru import logger

from kfilter.common.config import ProviderConfig
from kfilter.common.datetime_utils import today_in_market
from kfilter.common.errors import MalformedPayload, TransportError
from kfilter.common.kline.codec import (
    decode_rows,
    deduplicate_and_filter,
    extract_display_name,
    extract_json,
    select_rows,
    sort_bars,
)
from kfilter.common.kline.types import Bar, ChunkFailure, FetchResult
from kfilter.common.types import Adjustment, Period

# `param` suffix per adjustment; raw prices carry an empty suffix.
_ADJUSTMENT_SUFFIX: dict[str, str] = {"qfq": "qfq", "hfq": "hfq", "raw": ""}


def _decode_body(body: bytes, charset: Optional[str]) -> str:
    try:
        return body.decode(charset or "utf-8")
    except (UnicodeDecodeError, LookupError) as e:
        raise MalformedPayload(f"undecodable kline body (charset={charset}): {e}") from e


@dataclass
class TencentKlineAdapter:
    """
    K-line client for the Tencent fqkline endpoint.

    The endpoint caps rows per response, so daily history is fetched one calendar
    year at a time. Each year's window runs to Dec 31 of the FOLLOWING year; the
    overlap is resolved by date dedup (last chunk wins).
    """

    cfg: ProviderConfig = field(default_factory=ProviderConfig)
    today: Callable[[], date] = today_in_market

    async def fetch_daily(
        self,
        symbol: str,
        start: date,
        end: date,
        adjustment: Adjustment | None = None,
    ) -> FetchResult:
        adj = adjustment or self.cfg.adjustment
        last_year = min(end.year, self.today().year)

        collected: list[Bar] = []
        failures: list[ChunkFailure] = []
        name: Optional[str] = None

        for year in range(start.year, last_year + 1):
            window_start = f"{year}-01-01"
            window_end = f"{year + 1}-12-31"
            try:
                text = await self._request(
                    symbol=symbol,
                    period="day",
                    adjustment=adj,
                    window_start=window_start,
                    window_end=window_end,
                    row_limit=self.cfg.daily_row_limit,
                    var_name=f"kline_day{_ADJUSTMENT_SUFFIX[adj]}{year}",
                )
                payload = extract_json(text)
            except (TransportError, MalformedPayload) as e:
                logger.warning("Daily chunk skipped symbol={} year={}: {}", symbol, year, e)
                failures.append(ChunkFailure(year=year, error=e))
                continue

            rows = decode_rows(select_rows(payload, symbol, "day", adj))
            collected.extend(rows)
            if name is None:
                name = extract_display_name(payload, symbol)

            logger.debug("Daily chunk symbol={} year={} rows={}", symbol, year, len(rows))

        bars = sort_bars(deduplicate_and_filter(collected, start, end))
        if not bars:
            logger.warning(
                "No daily bars symbol={} [{}..{}] chunk_failures={}",
                symbol,
                start,
                end,
                len(failures),
            )
        return FetchResult(symbol=symbol, bars=bars, name=name, failures=tuple(failures))

    async def fetch_weekly(
        self,
        symbol: str,
        start: date,
        end: date,
        adjustment: Adjustment | None = None,
    ) -> FetchResult:
        return await self._fetch_single(symbol, "week", start, end, adjustment)

    async def fetch_monthly(
        self,
        symbol: str,
        start: date,
        end: date,
        adjustment: Adjustment | None = None,
    ) -> FetchResult:
        return await self._fetch_single(symbol, "month", start, end, adjustment)

    async def _fetch_single(
        self,
        symbol: str,
        period: Period,
        start: date,
        end: date,
        adjustment: Adjustment | None,
    ) -> FetchResult:
        adj = adjustment or self.cfg.adjustment
        try:
            text = await self._request(
                symbol=symbol,
                period=period,
                adjustment=adj,
                window_start=start.isoformat(),
                window_end=end.isoformat(),
                row_limit=self.cfg.period_row_limit,
                var_name=f"kline_{period}{_ADJUSTMENT_SUFFIX[adj]}",
            )
            payload = extract_json(text)
        except (TransportError, MalformedPayload) as e:
            logger.warning("{} fetch failed symbol={}: {}", period, symbol, e)
            return FetchResult(symbol=symbol, bars=[], failures=(ChunkFailure(year=None, error=e),))

        rows = decode_rows(select_rows(payload, symbol, period, adj))
        bars = sort_bars(deduplicate_and_filter(rows, start, end))
        return FetchResult(symbol=symbol, bars=bars, name=extract_display_name(payload, symbol))

    def _params(
        self,
        *,
        symbol: str,
        period: Period,
        adjustment: Adjustment,
        window_start: str,
        window_end: str,
        row_limit: int,
        var_name: str,
    ) -> dict[str, str]:
        param = ",".join(
            [symbol, period, window_start, window_end, str(row_limit), _ADJUSTMENT_SUFFIX[adjustment]]
        )
        return {"_var": var_name, "param": param, "r": f"{random.random():.16f}"}

    async def _request(
        self,
        *,
        symbol: str,
        period: Period,
        adjustment: Adjustment,
        window_start: str,
        window_end: str,
        row_limit: int,
        var_name: str,
    ) -> str:
        params = self._params(
            symbol=symbol,
            period=period,
            adjustment=adjustment,
            window_start=window_start,
            window_end=window_end,
            row_limit=row_limit,
            var_name=var_name,
        )
        headers = {"User-Agent": self.cfg.user_agent, "Referer": self.cfg.referer}
        timeout = aiohttp.ClientTimeout(total=self.cfg.request_timeout_s)

        last_err: Optional[BaseException] = None
        for attempt in range(1, self.cfg.max_retries + 1):
            try:
                async with aiohttp.ClientSession(timeout=timeout, headers=headers) as sess:
                    async with sess.get(self.cfg.base_url, params=params) as resp:
                        body = await resp.read()
                        if resp.status != 200:
                            raise TransportError(f"kline HTTP {resp.status}: {body[:200]!r}")
                        return _decode_body(body, resp.charset)

            except (aiohttp.ClientError, asyncio.TimeoutError, TransportError) as e:
                last_err = e
                if attempt < self.cfg.max_retries:
                    base = min(self.cfg.retry_backoff_s * 2 ** (attempt - 1), 10)
                    await asyncio.sleep(base + random.uniform(0, 0.25))

        raise TransportError(
            f"kline request failed after {self.cfg.max_retries} attempts symbol={symbol} "
            f"window=[{window_start}..{window_end}]: {last_err}"
        ) from last_err
