from __future__ import annotations

from datetime import date, timedelta

# (month, day) closures observed every year. Lunar holidays (Spring Festival,
# Dragon Boat, Mid-Autumn) are not modelled.
FIXED_HOLIDAYS: frozenset[tuple[int, int]] = frozenset({(1, 1), (5, 1), (10, 1)})

_ONE_DAY = timedelta(days=1)


def is_non_trading_day(day: date) -> bool:
    if day.weekday() >= 5:
        return True
    return (day.month, day.day) in FIXED_HOLIDAYS


def previous_trading_day(day: date) -> date:
    d = day - _ONE_DAY
    while is_non_trading_day(d):
        d -= _ONE_DAY
    return d


def next_trading_day(day: date) -> date:
    d = day + _ONE_DAY
    while is_non_trading_day(d):
        d += _ONE_DAY
    return d
